"""
Data model for a scoping run.

Everything here is created once per run and never mutated afterwards,
except ``RollupCounters``, which is a per-task accumulator folded with
``merge`` at the join point.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any

from .utils import bytes_to_gb, bytes_to_mb


@dataclass(frozen=True)
class Project:
    """A named grouping of repositories within the organization."""
    name: str
    id: str | None = None


@dataclass(frozen=True)
class Repository:
    """A git repository, tagged with the project it was listed under."""
    project: str
    name: str
    id: str
    size_bytes: int | None = None
    default_branch: str | None = None
    remote_url: str = ""

    @property
    def key(self) -> tuple[str, str]:
        return (self.project, self.id)

    @property
    def full_name(self) -> str:
        return f"{self.project}/{self.name}"

    @property
    def has_size(self) -> bool:
        return self.size_bytes is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "project": self.project,
            "name": self.name,
            "id": self.id,
            "sizeBytes": self.size_bytes,
            "defaultBranch": self.default_branch,
            "remoteUrl": self.remote_url,
        }


@dataclass(frozen=True)
class CommitRecord:
    """Earliest commit of a repository; ``date`` is normalized UTC."""
    repository: Repository
    date: str
    commit_id: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "repository": self.repository.full_name,
            "project": self.repository.project,
            "name": self.repository.name,
            "date": self.date,
            "commitId": self.commit_id,
        }


@dataclass(frozen=True)
class LargeBlobRecord:
    """A blob somewhere in a repository's history above the size threshold."""
    repository: Repository
    path: str
    size_bytes: int

    @property
    def size_mb(self) -> float:
        return round(self.size_bytes / 1024 / 1024, 2)

    def to_dict(self) -> dict[str, Any]:
        return {
            "repository": self.repository.full_name,
            "path": self.path,
            "sizeMB": self.size_mb,
        }


@dataclass(frozen=True)
class DeepScanResult:
    """Outcome of scanning one repository's full history."""
    repository: Repository
    blobs: tuple[LargeBlobRecord, ...] = ()
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class UserRecord:
    """An organization member from the user-entitlement listing."""
    display_name: str
    email: str
    access_level: str
    last_accessed: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "displayName": self.display_name,
            "emailAddress": self.email,
            "accessLevel": self.access_level,
            "lastAccessDate": self.last_accessed,
        }


@dataclass(frozen=True)
class SizedRepository:
    """A repository with its size rendered for display (truncated)."""
    repository: Repository
    size_bytes: int

    @property
    def size_gb(self) -> float:
        return bytes_to_gb(self.size_bytes)

    @property
    def size_mb(self) -> float:
        return bytes_to_mb(self.size_bytes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "project": self.repository.project,
            "name": self.repository.name,
            "sizeBytes": self.size_bytes,
            "sizeMB": self.size_mb,
            "sizeGB": self.size_gb,
        }


ALERT_CATEGORIES = ("secret", "dependency", "code")


@dataclass
class RollupCounters:
    """Per-project (or organization-wide, once merged) counts."""
    work_items: int = 0
    pull_requests: int = 0
    pipelines: int = 0
    repos_with_pipelines: int = 0
    service_hooks: int = 0
    hook_consumer_types: set[str] = field(default_factory=set)
    teams: int = 0
    projects_with_teams: int = 0
    alerts: Counter = field(default_factory=Counter)
    repos_with_alerts: int = 0

    def merge(self, other: "RollupCounters") -> "RollupCounters":
        """Return a new accumulator holding the sum of both."""
        return RollupCounters(
            work_items=self.work_items + other.work_items,
            pull_requests=self.pull_requests + other.pull_requests,
            pipelines=self.pipelines + other.pipelines,
            repos_with_pipelines=self.repos_with_pipelines + other.repos_with_pipelines,
            service_hooks=self.service_hooks + other.service_hooks,
            hook_consumer_types=self.hook_consumer_types | other.hook_consumer_types,
            teams=self.teams + other.teams,
            projects_with_teams=self.projects_with_teams + other.projects_with_teams,
            alerts=self.alerts + other.alerts,
            repos_with_alerts=self.repos_with_alerts + other.repos_with_alerts,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "workItems": self.work_items,
            "pullRequests": self.pull_requests,
            "pipelines": self.pipelines,
            "reposWithPipelines": self.repos_with_pipelines,
            "serviceHooks": self.service_hooks,
            "hookConsumerTypes": sorted(self.hook_consumer_types),
            "teams": self.teams,
            "projectsWithTeams": self.projects_with_teams,
            "secretAlerts": self.alerts.get("secret", 0),
            "dependencyAlerts": self.alerts.get("dependency", 0),
            "codeAlerts": self.alerts.get("code", 0),
            "reposWithAlerts": self.repos_with_alerts,
        }
