"""
Rollup aggregators - per-project counts summed into organization totals.

Each project is processed into its own ``RollupCounters``; totals are an
explicit fold over those accumulators, so project tasks can run in
parallel without sharing mutable state. Every count goes through
``safe_count``: a failed or malformed sub-request contributes 0.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from functools import reduce
from typing import Any, Sequence

from .ado_client import Failure, safe_count
from .models import ALERT_CATEGORIES, Project, Repository, RollupCounters, UserRecord
from .tools import AzureDevOpsTools
from .utils import CancellationToken, ProgressTracker, run_parallel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UserSummary:
    """Organization users; ``available`` is False when the listing failed."""
    total: int = 0
    users: tuple[UserRecord, ...] = ()
    access_levels: dict[str, int] = field(default_factory=dict)
    available: bool = False


def distinct_pipeline_repositories(payload: Any) -> int:
    """Number of distinct repositories referenced by build definitions."""
    if isinstance(payload, Failure) or not isinstance(getattr(payload, "data", None), dict):
        return 0
    values = payload.data.get("value")
    if not isinstance(values, list):
        return 0
    repo_ids = {
        item["repository"].get("id")
        for item in values
        if isinstance(item, dict) and isinstance(item.get("repository"), dict)
    }
    repo_ids.discard(None)
    return len(repo_ids)


def hook_consumer_types(payload: Any) -> set[str]:
    """Distinct integration consumer types among hook subscriptions."""
    if isinstance(payload, Failure) or not isinstance(getattr(payload, "data", None), dict):
        return set()
    values = payload.data.get("value")
    if not isinstance(values, list):
        return set()
    return {
        item["consumerType"]
        for item in values
        if isinstance(item, dict) and isinstance(item.get("consumerType"), str)
    }


def parse_users(payload: Any) -> list[UserRecord]:
    """UserRecords from a user-entitlement listing."""
    data = getattr(payload, "data", None)
    if not isinstance(data, dict):
        return []
    items = data.get("items")
    if not isinstance(items, list):
        # Older API versions return "members"
        items = data.get("members")
    if not isinstance(items, list):
        return []
    users = []
    for item in items:
        if not isinstance(item, dict):
            continue
        user = item.get("user") if isinstance(item.get("user"), dict) else {}
        access = item.get("accessLevel") if isinstance(item.get("accessLevel"), dict) else {}
        users.append(UserRecord(
            display_name=str(user.get("displayName") or ""),
            email=str(user.get("mailAddress") or ""),
            access_level=str(access.get("accountLicenseType") or "unknown"),
            last_accessed=item.get("lastAccessedDate"),
        ))
    return users


class RollupAggregator:
    """Computes per-project rollups and folds them into totals."""

    def __init__(
        self,
        tools: AzureDevOpsTools,
        max_workers: int = 8,
        cancellation: CancellationToken | None = None,
    ):
        self.tools = tools
        self.max_workers = max_workers
        self.cancellation = cancellation

    def advanced_security_enabled(self) -> bool:
        """Capability probe for the paid Advanced Security add-on."""
        result = self.tools.probe_advanced_security()
        if result.ok:
            logger.info("Advanced Security is enabled for this organization")
            return True
        logger.info("Advanced Security is NOT enabled for this organization")
        return False

    def repository_alerts(self, repo: Repository) -> Counter:
        """Active alert counts per category for one repository."""
        counts: Counter = Counter()
        for category in ALERT_CATEGORIES:
            result = self.tools.list_alerts(repo.project, repo.id, category)
            counts[category] = safe_count(result, ".count")
        return counts

    def project_rollup(
        self,
        project: Project,
        repositories: Sequence[Repository],
        include_alerts: bool = False,
    ) -> RollupCounters:
        """All counters for a single project."""
        name = project.name
        logger.debug(f"  Checking metadata for project: {name}")
        counters = RollupCounters()

        counters.work_items = safe_count(self.tools.query_work_items(name), ".workItems|length")

        for repo in repositories:
            counters.pull_requests += safe_count(self.tools.list_pull_requests(name, repo.id), ".count")

        pipelines = self.tools.list_build_definitions(name)
        counters.pipelines = safe_count(pipelines, ".count")
        if counters.pipelines > 0:
            counters.repos_with_pipelines = distinct_pipeline_repositories(pipelines)

        hooks = self.tools.list_hook_subscriptions(name)
        counters.service_hooks = safe_count(hooks, ".count")
        if counters.service_hooks > 0:
            counters.hook_consumer_types = hook_consumer_types(hooks)

        counters.teams = safe_count(self.tools.list_teams(name), ".count")
        counters.projects_with_teams = 1 if counters.teams > 0 else 0

        if include_alerts:
            for repo in repositories:
                alerts = self.repository_alerts(repo)
                counters.alerts += alerts
                if any(alerts[category] > 0 for category in ALERT_CATEGORIES):
                    counters.repos_with_alerts += 1
                    logger.info(
                        f"  {repo.full_name}: {alerts['secret']} secret, "
                        f"{alerts['dependency']} dependency, {alerts['code']} code alerts"
                    )

        return counters

    def aggregate(
        self,
        projects: Sequence[Project],
        repositories_by_project: dict[str, Sequence[Repository]],
        include_alerts: bool = False,
    ) -> tuple[RollupCounters, list[RollupCounters]]:
        """
        Roll up every project and fold the results.

        Returns:
            Tuple of (organization totals, per-project counters in project order)
        """
        progress = ProgressTracker("Project rollups", total=len(projects))

        def rollup(project: Project) -> RollupCounters:
            counters = self.project_rollup(
                project,
                repositories_by_project.get(project.name, ()),
                include_alerts=include_alerts,
            )
            progress.advance(project.name)
            return counters

        per_project = run_parallel(
            rollup,
            projects,
            self.max_workers,
            cancellation=self.cancellation,
            fallback=lambda project: RollupCounters(),
        )
        totals = reduce(RollupCounters.merge, per_project, RollupCounters())
        return totals, per_project

    def collect_users(self) -> UserSummary:
        """Organization-level user entitlements."""
        result = self.tools.list_user_entitlements()
        if not result.ok:
            logger.warning(f"Could not retrieve user entitlements: {result.reason}")
            return UserSummary()
        users = parse_users(result)
        total = safe_count(result, ".totalCount") or len(users)
        levels = Counter(user.access_level for user in users)
        return UserSummary(
            total=total,
            users=tuple(users),
            access_levels=dict(sorted(levels.items())),
            available=True,
        )
