"""
Derived metrics over the collected repository sequence.

All reductions are pure functions of their inputs and never reorder or
mutate the sequence they are given. Ties resolve to the first item in
merge order.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Iterable, Sequence

from .ado_client import Failure
from .config import ONE_GIB
from .models import CommitRecord, Repository, SizedRepository
from .tools import AzureDevOpsTools
from .utils import CancellationToken, ProgressTracker, normalize_timestamp, run_parallel

if TYPE_CHECKING:
    from .collector import ProjectListing

logger = logging.getLogger(__name__)


def count_repositories(listings: Iterable[ProjectListing]) -> int:
    """Repositories across all listings; a failed listing contributes 0."""
    return sum(len(listing.repositories) for listing in listings if listing.succeeded)


def count_projects(listings: Iterable[ProjectListing]) -> int:
    """
    Projects whose repository listing succeeded.

    A project with zero repositories still counts.
    """
    return sum(1 for listing in listings if listing.succeeded)


def filter_large_repositories(
    repos: Iterable[Repository],
    threshold_bytes: int = ONE_GIB,
) -> list[Repository]:
    """Repositories with a known size strictly above the threshold, in merge order."""
    return [
        repo for repo in repos
        if repo.size_bytes is not None and repo.size_bytes > threshold_bytes
    ]


def largest_repository(repos: Iterable[Repository]) -> SizedRepository | None:
    """
    Repository with the largest size; absent sizes count as 0.

    The first repository in merge order wins exact ties. Returns None when
    the sequence is empty or no repository reports a size at all.
    """
    best: Repository | None = None
    best_size = -1
    any_size = False
    for repo in repos:
        if repo.has_size:
            any_size = True
        size = repo.size_bytes or 0
        if size > best_size:
            best, best_size = repo, size
    if best is None or not any_size:
        return None
    return SizedRepository(repository=best, size_bytes=best_size)


def oldest_repository(records: Iterable[CommitRecord]) -> CommitRecord | None:
    """
    Record with the earliest first-commit date.

    Dates are normalized fixed-width UTC strings, so string order is
    chronological order. ``min`` keeps the first of equal dates.
    """
    records = list(records)
    if not records:
        return None
    return min(records, key=lambda record: record.date)


def rank_oldest_commits(records: Iterable[CommitRecord]) -> list[CommitRecord]:
    """All commit records, oldest first; stable for equal dates."""
    return sorted(records, key=lambda record: record.date)


def parse_oldest_commit(repo: Repository, payload: object) -> CommitRecord | None:
    """
    Turn a ``$top=1`` commit listing into a CommitRecord.

    Returns None for an empty history or a missing/invalid date.
    """
    if not isinstance(payload, dict):
        return None
    values = payload.get("value")
    if not isinstance(values, list) or not values:
        return None
    commit = values[0] if isinstance(values[0], dict) else {}
    committer = commit.get("committer") if isinstance(commit.get("committer"), dict) else {}
    date = normalize_timestamp(committer.get("date"))
    if date is None:
        return None
    return CommitRecord(repository=repo, date=date, commit_id=str(commit.get("commitId") or ""))


def collect_oldest_commits(
    tools: AzureDevOpsTools,
    repos: Sequence[Repository],
    max_workers: int = 8,
    cancellation: CancellationToken | None = None,
) -> list[CommitRecord]:
    """
    Look up the first commit of every repository.

    One request per repository. Repositories whose lookup fails, that have
    no commits, or whose date does not parse are left out. The result keeps
    merge order.
    """
    progress = ProgressTracker("Oldest commit lookup", total=len(repos))

    def lookup(repo: Repository) -> CommitRecord | None:
        result = tools.get_oldest_commit(repo.project, repo.id)
        progress.advance(repo.full_name)
        if isinstance(result, Failure):
            logger.warning(f"Invalid API response for {repo.full_name} (skipping): {result.reason}")
            return None
        record = parse_oldest_commit(repo, result.data)
        if record is None:
            logger.info(f"No commits or no valid commit date found in {repo.full_name}")
        return record

    results = run_parallel(
        lookup,
        repos,
        max_workers,
        cancellation=cancellation,
        fallback=lambda repo: None,
    )
    return [record for record in results if record is not None]
