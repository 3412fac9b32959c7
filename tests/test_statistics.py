"""
Tests for derived repository metrics.
"""

import pytest
from unittest.mock import Mock

from scoping_agent.ado_client import Failure, Success
from scoping_agent.config import ONE_GIB, ONE_MIB
from scoping_agent.collector import CollectionResult, ProjectListing
from scoping_agent.models import CommitRecord, Project, Repository
from scoping_agent.statistics import (
    collect_oldest_commits,
    count_projects,
    count_repositories,
    filter_large_repositories,
    largest_repository,
    oldest_repository,
    parse_oldest_commit,
    rank_oldest_commits,
)
from scoping_agent.utils import CancellationToken

GB = ONE_GIB
MB = ONE_MIB


def repo(project, name, size=None):
    return Repository(project=project, name=name, id=f"{project}-{name}", size_bytes=size)


def commit(repository, date):
    return CommitRecord(repository=repository, date=date, commit_id=f"sha-{repository.name}")


def commits_payload(date, commit_id="abc123"):
    return {"count": 1, "value": [{"commitId": commit_id, "committer": {"date": date}}]}


class TestCounts:
    """Tests for project and repository counts over listings."""

    def listings(self):
        return [
            ProjectListing(Project("P1"), repositories=(repo("P1", "A"), repo("P1", "B"))),
            ProjectListing(Project("P2"), repositories=()),
            ProjectListing(Project("P3"), error="HTTP 403"),
        ]

    def test_count_repositories(self):
        assert count_repositories(self.listings()) == 2

    def test_project_with_no_repositories_counts(self):
        assert count_projects(self.listings()) == 2

    def test_failed_listing_not_counted(self):
        failed = [ProjectListing(Project("P1"), error="HTTP 500")]

        assert count_projects(failed) == 0
        assert count_repositories(failed) == 0

    def test_empty(self):
        assert count_repositories([]) == 0
        assert count_projects([]) == 0

    def test_collection_result_uses_counts(self):
        listings = tuple(self.listings())
        result = CollectionResult(projects=tuple(listing.project for listing in listings), listings=listings)

        assert result.project_count == 2
        assert result.repo_count == 2


class TestLargeRepositories:
    """Tests for the size threshold filter."""

    def test_example_merge_order(self):
        a, b, c = repo("P1", "A", 2 * GB), repo("P1", "B", 500 * MB), repo("P2", "C", 2 * GB)

        assert filter_large_repositories([a, b, c], GB) == [a, c]

    def test_threshold_is_exclusive(self):
        exact = repo("P1", "exact", GB)
        above = repo("P1", "above", GB + 1)

        assert filter_large_repositories([exact, above], GB) == [above]

    def test_absent_size_excluded(self):
        assert filter_large_repositories([repo("P1", "unknown")], GB) == []

    def test_idempotent(self):
        repos = [repo("P1", "A", 3 * GB), repo("P1", "B", GB // 2), repo("P2", "C", 5 * GB)]
        once = filter_large_repositories(repos, GB)

        assert filter_large_repositories(once, GB) == once

    def test_does_not_mutate_input(self):
        repos = [repo("P1", "A", 3 * GB), repo("P1", "B", 1)]
        snapshot = list(repos)

        filter_large_repositories(repos, GB)

        assert repos == snapshot

    def test_default_threshold_is_one_gib(self):
        assert filter_large_repositories([repo("P1", "A", GB + 1)]) != []


class TestLargestRepository:
    """Tests for the stable maximum."""

    def test_example_first_of_tie_wins(self):
        a, b, c = repo("P1", "A", 2 * GB), repo("P1", "B", 500 * MB), repo("P2", "C", 2 * GB)

        largest = largest_repository([a, b, c])

        assert largest.repository == a
        assert largest.size_bytes == 2 * GB

    def test_empty_sequence(self):
        assert largest_repository([]) is None

    def test_no_size_data(self):
        assert largest_repository([repo("P1", "A"), repo("P1", "B")]) is None

    def test_absent_treated_as_zero(self):
        unknown = repo("P1", "unknown")
        zero = repo("P1", "zero", 0)

        largest = largest_repository([unknown, zero])

        assert largest.repository == unknown
        assert largest.size_bytes == 0

    def test_max_wins_over_position(self):
        small, big = repo("P1", "small", 10), repo("P2", "big", 20)
        assert largest_repository([small, big]).repository == big

    def test_sizes_floored_for_display(self):
        largest = largest_repository([repo("P1", "A", int(1.999 * GB))])
        assert largest.size_gb == 1.99


class TestOldestRepository:
    """Tests for the oldest-commit reduction."""

    def test_example(self):
        a, b = repo("P1", "A"), repo("P1", "B")
        records = [commit(a, "2020-01-01T00:00:00Z"), commit(b, "2019-06-01T00:00:00Z")]

        assert oldest_repository(records).repository == b

    def test_no_records(self):
        assert oldest_repository([]) is None

    def test_tie_goes_to_first(self):
        a, b = repo("P1", "A"), repo("P1", "B")
        records = [commit(a, "2019-01-01T00:00:00Z"), commit(b, "2019-01-01T00:00:00Z")]

        assert oldest_repository(records).repository == a

    def test_rank_is_ascending_and_stable(self):
        a, b, c = repo("P1", "A"), repo("P1", "B"), repo("P2", "C")
        records = [
            commit(a, "2021-01-01T00:00:00Z"),
            commit(b, "2019-01-01T00:00:00Z"),
            commit(c, "2021-01-01T00:00:00Z"),
        ]

        ranked = rank_oldest_commits(records)

        assert [r.repository.name for r in ranked] == ["B", "A", "C"]


class TestParseOldestCommit:
    """Tests for commit listing parsing."""

    def test_normalizes_offset(self):
        record = parse_oldest_commit(repo("P1", "A"), commits_payload("2019-06-01T02:00:00+02:00"))
        assert record.date == "2019-06-01T00:00:00Z"
        assert record.commit_id == "abc123"

    def test_fractional_seconds(self):
        record = parse_oldest_commit(repo("P1", "A"), commits_payload("2019-06-01T00:00:00.1234567Z"))
        assert record.date == "2019-06-01T00:00:00Z"

    def test_no_commits(self):
        assert parse_oldest_commit(repo("P1", "A"), {"count": 0, "value": []}) is None

    def test_invalid_date(self):
        assert parse_oldest_commit(repo("P1", "A"), commits_payload("not-a-date")) is None

    def test_missing_committer(self):
        assert parse_oldest_commit(repo("P1", "A"), {"value": [{"commitId": "x"}]}) is None

    def test_not_a_dict(self):
        assert parse_oldest_commit(repo("P1", "A"), ["unexpected"]) is None


class TestCollectOldestCommits:
    """Tests for the per-repository commit lookup."""

    def test_excludes_failures_and_empty(self):
        a, b, c = repo("P1", "A"), repo("P1", "B"), repo("P2", "C")
        responses = {
            a.id: Success(commits_payload("2020-01-01T00:00:00Z")),
            b.id: Success(commits_payload("2019-06-01T00:00:00Z")),
            c.id: Success({"count": 0, "value": []}),
        }
        tools = Mock()
        tools.get_oldest_commit.side_effect = lambda project, repo_id: responses[repo_id]

        records = collect_oldest_commits(tools, [a, b, c], max_workers=4)

        assert [r.repository for r in records] == [a, b]
        assert oldest_repository(records).repository == b

    def test_failure_is_skipped(self):
        a, b = repo("P1", "A"), repo("P1", "B")
        tools = Mock()
        tools.get_oldest_commit.side_effect = [
            Failure("HTTP 404", status_code=404),
            Success(commits_payload("2018-03-04T05:06:07Z")),
        ]

        records = collect_oldest_commits(tools, [a, b], max_workers=1)

        assert [r.repository for r in records] == [b]

    def test_cancelled_run_issues_no_lookups(self):
        token = CancellationToken()
        token.cancel("stop")
        tools = Mock()

        records = collect_oldest_commits(tools, [repo("P1", "A")], cancellation=token)

        assert records == []
        tools.get_oldest_commit.assert_not_called()

    def test_no_repositories(self):
        assert collect_oldest_commits(Mock(), []) == []


@pytest.mark.parametrize(
    "value, expected",
    [
        ("2020-01-01T00:00:00Z", "2020-01-01T00:00:00Z"),
        ("2020-01-01T00:00:00", "2020-01-01T00:00:00Z"),
        ("2019-12-31T23:30:00-01:00", "2020-01-01T00:30:00Z"),
        ("", None),
        (None, None),
        ("yesterday", None),
    ],
)
def test_normalize_timestamp(value, expected):
    from scoping_agent.utils import normalize_timestamp

    assert normalize_timestamp(value) == expected
