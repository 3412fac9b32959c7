"""
Orchestrator - Main scoping workflow controller.

Coordinates the client, the collection phases and output generation.
A failed connectivity probe or project listing is fatal, as is a run in
which no project's repositories could be listed. Every other phase
degrades to zero/absent data and the report says so.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
import uuid
from pathlib import Path

from .ado_client import AzureDevOpsClient, ConnectivityError, ScopingFatalError
from .auth import Credential, CredentialError
from .collector import CollectionResult, RepositoryCollector
from .config import ScopingConfig, ensure_output_dir
from .deep_scan import DeepScanner, git_available
from .logging_config import LogContext, timed_phase
from .models import Project
from .report import render_summary, write_outputs
from .rollups import RollupAggregator
from .schema import STATUS_NOT_ENABLED, STATUS_UNAVAILABLE, Report, ReportBuilder, with_complexity
from .scoring import assess_complexity
from .statistics import (
    collect_oldest_commits,
    filter_large_repositories,
    largest_repository,
    oldest_repository,
)
from .tools import AzureDevOpsTools
from .utils import CancellationToken, now_iso

logger = logging.getLogger(__name__)

INTERRUPTED = "interrupted by user"


class ScopingOrchestrator:
    """
    Orchestrates a scoping run.

    Phases run in order: connectivity probe, repository collection,
    derived statistics, optional deep scan, per-project rollups, users.
    Once the cancellation token fires (Ctrl+C or the global deadline) the
    remaining phases are skipped and a partial report is produced.
    """

    def __init__(self, config: ScopingConfig):
        """
        Initialize the orchestrator.

        Args:
            config: Scoping configuration
        """
        self.config = config
        self.run_id = uuid.uuid4().hex[:8]
        self.cancellation = CancellationToken()
        self.credential: Credential | None = None
        self.client: AzureDevOpsClient | None = None
        self.tools: AzureDevOpsTools | None = None
        self.builder: ReportBuilder | None = None
        self.collection: CollectionResult | None = None
        self._scan_root: Path | None = None

        self.started_at: str = ""

    def run(self) -> Report:
        """
        Run the scoping process.

        Returns:
            The finished (possibly partial) Report

        Raises:
            ScopingFatalError: when the organization cannot be reached, its
                project list cannot be retrieved, or no project's
                repositories can be listed
        """
        self.started_at = now_iso()
        self.cancellation.start_deadline(self.config.run_timeout or None)
        logger.info(f"Starting scoping run for organization {self.config.organization}")

        with LogContext(run_id=self.run_id):
            try:
                self._initialize()
                self._check_connectivity()
                projects = self._list_projects()

                if projects:
                    self._run_phases(projects)
                else:
                    logger.warning("No projects found in organization - nothing to migrate")
                    self.builder.set_repositories(0, (), (), None)

                report = self._build_report()
                self._save_report(report)
                return report
            finally:
                self._cleanup()

    def _initialize(self) -> None:
        """Initialize credential, client, tools and the report builder."""
        try:
            self.credential = self.config.build_credential()
        except CredentialError as e:
            raise ConnectivityError(f"Could not acquire credentials: {e}") from e
        logger.info(f"Authenticating with {self.credential.describe()}")

        self.client = AzureDevOpsClient(
            org_url=self.config.org_url,
            credential=self.credential,
            timeout=self.config.timeout,
            max_retries=self.config.max_retries,
            retry_delay=self.config.retry_delay,
            cancellation=self.cancellation,
        )
        self.tools = AzureDevOpsTools(
            self.client,
            organization=self.config.organization,
            api_version=self.config.api_version,
            base_host=self.config.base_host,
        )
        self.builder = ReportBuilder(
            organization=self.config.organization,
            started_at=self.started_at,
            large_repo_threshold_bytes=self.config.large_repo_threshold_bytes,
            large_blob_threshold_bytes=self.config.large_blob_threshold_bytes,
        )

    def _check_connectivity(self) -> None:
        """Validate organization access; the only fatal API call."""
        logger.info("Validating organization access...")
        result = self.tools.probe_connectivity()
        if not result.ok:
            raise ConnectivityError(
                f"Failed to access Azure DevOps organization '{self.config.organization}' "
                f"({result.reason}). Verify the organization name, your credentials, "
                f"and that your account has access to this organization"
            )
        logger.info("Organization access confirmed")

    def _list_projects(self) -> list[Project]:
        collector = self._collector()
        projects = collector.list_projects()
        logger.info(f"Found {len(projects)} projects")
        return projects

    def _collector(self) -> RepositoryCollector:
        return RepositoryCollector(
            self.tools,
            max_workers=self.config.max_workers,
            size_unit=self.config.size_unit,
            cancellation=self.cancellation,
        )

    def _run_phases(self, projects: list[Project]) -> None:
        # (name, phase, needs network); local phases still run after cancellation
        phases = (
            ("repository collection", lambda: self._collect(projects), True),
            ("repository statistics", self._compute_statistics, False),
            ("oldest commit lookup", self._find_oldest_commits, True),
            ("large file scan", self._run_deep_scan, True),
            ("project rollups", self._run_rollups, True),
            ("user entitlements", self._collect_users, True),
        )
        for name, phase, remote in phases:
            if remote and self.cancellation.is_cancelled:
                logger.warning(f"Skipping {name}: {self.cancellation.reason}")
                continue
            try:
                with timed_phase(logger, name):
                    phase()
            except KeyboardInterrupt:
                logger.warning(f"Interrupted during {name}; assembling partial report")
                self.cancellation.cancel(INTERRUPTED)

    def _collect(self, projects: list[Project]) -> None:
        self.collection = self._collector().collect(projects)
        if self.collection.project_count == 0 and not self.cancellation.is_cancelled:
            raise ScopingFatalError(
                f"Repository listing failed for all {len(projects)} projects; "
                f"no project in organization '{self.config.organization}' is reachable"
            )

    def _compute_statistics(self) -> None:
        if self.collection is None:
            return
        repos = self.collection.repositories
        large = filter_large_repositories(repos, self.config.large_repo_threshold_bytes)
        largest = largest_repository(repos)
        logger.info(f"Repositories over {self.config.large_repo_gib:g}GB: {len(large)}")
        if largest is not None:
            logger.info(f"Largest repository: {largest.repository.full_name} ({largest.size_mb}MB)")
        self.builder.set_repositories(
            project_count=self.collection.project_count,
            repositories=repos,
            large_repositories=large,
            largest=largest,
            skipped_projects=self.collection.skipped,
        )

    def _find_oldest_commits(self) -> None:
        logger.info("Finding oldest repository (by first commit date)...")
        records = collect_oldest_commits(
            self.tools,
            self.collection.repositories,
            max_workers=self.config.max_workers,
            cancellation=self.cancellation,
        )
        oldest = oldest_repository(records)
        if oldest is not None:
            logger.info(f"Oldest repository: {oldest.repository.full_name} ({oldest.date})")
        self.builder.set_oldest_commits(records, oldest)

    def _run_deep_scan(self) -> None:
        if not self.config.enable_deep_scan:
            self.builder.mark("largeFiles", STATUS_NOT_ENABLED)
            return
        if not git_available():
            logger.warning("Large file scan requested but git is not installed")
            self.builder.mark("largeFiles", STATUS_UNAVAILABLE)
            return

        self._scan_root = Path(tempfile.mkdtemp(prefix=f"ado-scoping-{self.run_id}-"))
        scanner = DeepScanner(
            credential=self.credential,
            organization=self.config.organization,
            threshold_bytes=self.config.large_blob_threshold_bytes,
            clone_timeout=self.config.clone_timeout,
            work_root=self._scan_root,
            base_host=self.config.base_host,
            cancellation=self.cancellation,
        )
        summary = scanner.scan(self.collection.repositories, max_workers=self.config.max_workers)
        logger.info(
            f"Total large files: {summary.total_large_files} "
            f"in {summary.repos_with_large_files} repositories"
        )
        if summary.failed:
            logger.warning(f"{len(summary.failed)} repositories could not be scanned")
        self.builder.set_deep_scan(summary)

    def _run_rollups(self) -> None:
        aggregator = self._aggregator()
        advsec = aggregator.advanced_security_enabled()
        projects = list(self.collection.scanned_projects)
        repos_by_project = {
            project.name: self.collection.repositories_for(project.name) for project in projects
        }
        totals, per_project = aggregator.aggregate(projects, repos_by_project, include_alerts=advsec)
        logger.info(
            f"Work items: {totals.work_items}, pull requests: {totals.pull_requests}, "
            f"pipelines: {totals.pipelines}, service hooks: {totals.service_hooks}"
        )
        self.builder.set_rollups(totals, projects, per_project, advanced_security_enabled=advsec)

    def _collect_users(self) -> None:
        logger.info("Collecting user information...")
        users = self._aggregator().collect_users()
        if users.available:
            logger.info(f"Total users in organization: {users.total}")
        self.builder.set_users(users)

    def _aggregator(self) -> RollupAggregator:
        return RollupAggregator(
            self.tools,
            max_workers=self.config.max_workers,
            cancellation=self.cancellation,
        )

    def _build_report(self) -> Report:
        """Assemble the report and attach the complexity assessment."""
        if self.cancellation.is_cancelled:
            self.builder.terminate(self.cancellation.reason or "cancelled")
        report = self.builder.build(generated_at=now_iso(), api_calls=self.client.stats.as_dict())
        return with_complexity(report, assess_complexity(report))

    def _save_report(self, report: Report) -> None:
        """Write the report files and print the summary."""
        output_path = ensure_output_dir(self.config)
        files = write_outputs(report, output_path)
        logger.info(f"Text report saved to {files.text_report}")

        print("\n" + "=" * 60)
        print(render_summary(report))
        print("=" * 60)

    def _cleanup(self) -> None:
        """Cleanup resources."""
        if self.client:
            self.client.close()
            self.client = None
        if self._scan_root is not None:
            shutil.rmtree(self._scan_root, ignore_errors=True)
            self._scan_root = None


def run_scan(config: ScopingConfig) -> Report:
    """
    Convenience function to run a scoping scan.

    Args:
        config: Scoping configuration

    Returns:
        Finished Report
    """
    orchestrator = ScopingOrchestrator(config)
    return orchestrator.run()
