"""
Repository collector - builds the flat, ordered repository sequence.

Projects are listed once; each project's repositories are fetched on a
bounded worker pool. Results are merged in project order, then in the
API's per-project order, regardless of which fetch finishes first.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from .ado_client import ScopingFatalError
from .models import Project, Repository
from .statistics import count_projects, count_repositories
from .tools import AzureDevOpsTools
from .utils import CancellationToken, ProgressTracker, run_parallel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProjectListing:
    """Repositories of one project, or the reason they are missing."""
    project: Project
    repositories: tuple[Repository, ...] = ()
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class CollectionResult:
    """Output of the collection phase."""
    projects: tuple[Project, ...]
    listings: tuple[ProjectListing, ...] = ()
    skipped: tuple[str, ...] = field(default=())

    @property
    def repositories(self) -> tuple[Repository, ...]:
        """All repositories in merge order."""
        return tuple(repo for listing in self.listings for repo in listing.repositories)

    @property
    def scanned_projects(self) -> tuple[Project, ...]:
        """Projects whose repository listing succeeded."""
        return tuple(listing.project for listing in self.listings if listing.succeeded)

    @property
    def project_count(self) -> int:
        return count_projects(self.listings)

    @property
    def repo_count(self) -> int:
        return count_repositories(self.listings)

    def repositories_for(self, project: str) -> tuple[Repository, ...]:
        for listing in self.listings:
            if listing.project.name == project:
                return listing.repositories
        return ()


def parse_projects(payload: Any) -> list[Project]:
    """Project names from a listing payload, dropping null/empty names."""
    values = payload.get("value") if isinstance(payload, dict) else None
    if not isinstance(values, list):
        return []
    projects = []
    for item in values:
        if not isinstance(item, dict):
            continue
        name = item.get("name")
        if isinstance(name, str) and name.strip():
            projects.append(Project(name=name, id=item.get("id")))
    return projects


def _to_bytes(size: Any, size_unit: str) -> int | None:
    if size is None or isinstance(size, bool):
        return None
    try:
        value = int(size)
    except (TypeError, ValueError):
        return None
    return value * 1024 if size_unit == "kib" else value


def parse_repositories(project: str, payload: Any, size_unit: str = "kib") -> list[Repository]:
    """Repository records from a listing payload, tagged with ``project``."""
    values = payload.get("value") if isinstance(payload, dict) else None
    if not isinstance(values, list):
        return []
    repos = []
    for item in values:
        if not isinstance(item, dict) or item.get("id") is None:
            continue
        repos.append(Repository(
            project=project,
            name=str(item.get("name") or ""),
            id=str(item["id"]),
            size_bytes=_to_bytes(item.get("size"), size_unit),
            default_branch=item.get("defaultBranch"),
            remote_url=item.get("remoteUrl") or "",
        ))
    return repos


class RepositoryCollector:
    """Enumerates projects and merges their repositories."""

    def __init__(
        self,
        tools: AzureDevOpsTools,
        max_workers: int = 8,
        size_unit: str = "kib",
        cancellation: CancellationToken | None = None,
    ):
        self.tools = tools
        self.max_workers = max_workers
        self.size_unit = size_unit
        self.cancellation = cancellation

    def list_projects(self) -> list[Project]:
        """
        Fetch the project list.

        Raises:
            ScopingFatalError: if the listing cannot be retrieved at all
        """
        result = self.tools.list_projects()
        if not result.ok:
            raise ScopingFatalError(
                f"Failed to retrieve projects from Azure DevOps API: {result.reason}"
            )
        return parse_projects(result.data)

    def _fetch_project(self, project: Project) -> ProjectListing:
        result = self.tools.list_repositories(project.name)
        if not result.ok:
            logger.warning(
                f"Failed to retrieve repositories for project '{project.name}' (skipping): {result.reason}"
            )
            return ProjectListing(project=project, error=result.reason)
        if not isinstance(result.data, dict) or not isinstance(result.data.get("value"), list):
            logger.warning(f"Unexpected repository listing for project '{project.name}' (skipping)")
            return ProjectListing(project=project, error="malformed repository listing")
        repos = parse_repositories(project.name, result.data, self.size_unit)
        logger.debug(f"  {project.name}: {len(repos)} repositories")
        return ProjectListing(project=project, repositories=tuple(repos))

    def collect(self, projects: list[Project] | None = None) -> CollectionResult:
        """
        Build the repository sequence.

        Args:
            projects: Pre-fetched project list; fetched when omitted

        Returns:
            CollectionResult with listings in project order
        """
        if projects is None:
            projects = self.list_projects()
        if not projects:
            logger.warning("No projects found in organization")
            return CollectionResult(projects=())

        logger.info(f"Collecting repositories for {len(projects)} projects")
        progress = ProgressTracker("Repository listing", total=len(projects))

        def fetch(project: Project) -> ProjectListing:
            listing = self._fetch_project(project)
            progress.advance(project.name)
            return listing

        listings = tuple(run_parallel(
            fetch,
            projects,
            self.max_workers,
            cancellation=self.cancellation,
            fallback=lambda p: ProjectListing(project=p, error="cancelled"),
        ))

        skipped = tuple(listing.project.name for listing in listings if not listing.succeeded)
        result = CollectionResult(projects=tuple(projects), listings=listings, skipped=skipped)
        logger.info(f"Total Projects: {result.project_count}, Total Repositories: {result.repo_count}")
        return result
