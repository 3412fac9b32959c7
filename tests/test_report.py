"""
Tests for text rendering and file output.
"""

import csv
import json

from scoping_agent.config import ONE_GIB, ONE_MIB
from scoping_agent.deep_scan import DeepScanSummary
from scoping_agent.models import (
    CommitRecord,
    DeepScanResult,
    LargeBlobRecord,
    Project,
    Repository,
    RollupCounters,
    SizedRepository,
    UserRecord,
)
from scoping_agent.report import (
    render_summary,
    render_text,
    write_large_files_csv,
    write_outputs,
)
from scoping_agent.rollups import UserSummary
from scoping_agent.schema import ReportBuilder, STATUS_UNAVAILABLE, with_complexity
from scoping_agent.scoring import calculate_complexity

GENERATED = "2024-01-15T10:05:00Z"


def repo(project, name, size=None):
    return Repository(project=project, name=name, id=f"{project}-{name}", size_bytes=size)


def populated_builder(deep_scan=True):
    big = repo("Alpha", "monolith", 3 * ONE_GIB)
    small = repo("Beta", "tools", 5 * ONE_MIB)
    builder = ReportBuilder("contoso", "2024-01-15T10:00:00Z")
    builder.set_repositories(2, [big, small], [big], SizedRepository(big, big.size_bytes))
    oldest = CommitRecord(small, "2015-03-01T12:00:00Z", "abc123")
    builder.set_oldest_commits([CommitRecord(big, "2018-01-01T00:00:00Z", "def456"), oldest], oldest)
    if deep_scan:
        builder.set_deep_scan(DeepScanSummary(results=(
            DeepScanResult(big, blobs=(LargeBlobRecord(big, "assets/intro.mov", int(75.5 * ONE_MIB)),)),
            DeepScanResult(small),
        )))
    else:
        builder.mark("largeFiles", "not_enabled")
    builder.set_rollups(
        RollupCounters(work_items=150, pull_requests=12, pipelines=11, repos_with_pipelines=2,
                       service_hooks=2, hook_consumer_types={"slack", "jenkins"},
                       teams=2, projects_with_teams=2),
        [Project("Alpha"), Project("Beta")],
        [RollupCounters(work_items=150), RollupCounters(pipelines=11)],
        advanced_security_enabled=False,
    )
    builder.set_users(UserSummary(
        total=2,
        users=(
            UserRecord("Ada", "ada@contoso.com", "express", "2024-01-01T00:00:00Z"),
            UserRecord("Bob", "bob@contoso.com", "stakeholder"),
        ),
        access_levels={"express": 1, "stakeholder": 1},
        available=True,
    ))
    return builder


def populated_report(deep_scan=True):
    report = populated_builder(deep_scan).build(GENERATED)
    return with_complexity(report, calculate_complexity(1, 11, 2, 150))


class TestRenderText:
    """Tests for the sectioned text report."""

    def test_sections_in_order(self):
        text = render_text(populated_report())

        titles = [
            "1. Repository Count",
            "2. Repositories Over 1GB",
            "3. Largest Repository",
            "4. Oldest Repository",
            "5. Large Files Scan",
            "6. Metadata Data",
            "7. Pipeline Data",
            "8. Security Scanning",
            "9. Custom Integrations",
            "10. User Data",
            "Migration Scoping Summary",
        ]
        positions = [text.index(title) for title in titles]
        assert positions == sorted(positions)

    def test_headline_figures(self):
        text = render_text(populated_report())

        assert "Total Repositories: 2" in text
        assert "Alpha/monolith: 3.0GB" in text
        assert "Largest Repository: Alpha/monolith (3072.0MB)" in text
        assert "Oldest Repository: Beta/tools" in text
        assert "First Commit Date: 2015-03-01T12:00:00Z" in text
        assert "assets/intro.mov (75.50MB)" in text
        assert "Total Large Files (>50MB): 1" in text

    def test_recommendations(self):
        text = render_text(populated_report())

        assert "RECOMMENDATION: Metadata migration is recommended" in text
        assert "RECOMMENDATION: Pipeline migration is required" in text
        assert "  - jenkins\n  - slack" in text
        assert "Advanced Security is NOT enabled" in text

    def test_complexity_summary(self):
        text = render_text(populated_report())

        assert "Overall Complexity: HIGH - Plan for 4-8 weeks migration window" in text
        assert "  ! Significant pipeline migration required" in text

    def test_deep_scan_not_enabled(self):
        text = render_text(populated_report(deep_scan=False))

        assert "rerun with --scan-large-files" in text
        assert "  - Alpha/monolith" in text

    def test_unavailable_users(self):
        builder = populated_builder()
        builder.mark("users", STATUS_UNAVAILABLE)

        text = render_text(builder.build(GENERATED))

        assert "WARNING: Could not retrieve user entitlements - data unavailable" in text

    def test_nothing_to_migrate(self):
        builder = ReportBuilder("empty", "2024-01-15T10:00:00Z")
        builder.set_repositories(0, [], [], None)

        text = render_text(builder.build(GENERATED))

        assert "Nothing to migrate" in text
        assert "2. Repositories Over" not in text

    def test_skipped_projects_render_remaining_sections(self):
        builder = ReportBuilder("contoso", "2024-01-15T10:00:00Z")
        builder.set_repositories(0, (), (), None, skipped_projects=("P1", "P2"))

        text = render_text(builder.build(GENERATED))

        assert "Projects skipped (listing failed): P1, P2" in text
        assert "Nothing to migrate" not in text
        assert "Large file scan did not run" in text
        assert "10. User Data" in text

    def test_terminated_early_banner(self):
        builder = populated_builder()
        builder.terminate("run timeout exceeded")

        text = render_text(builder.build(GENERATED))

        assert "Run terminated early (run timeout exceeded)" in text

    def test_summary(self):
        summary = render_summary(populated_report())

        assert "Organization: contoso" in summary
        assert "  - Repositories to migrate: 2" in summary
        assert "  - Work items: 150" in summary


class TestWriteOutputs:
    """Tests for persisted files."""

    def test_all_files_written(self, tmp_path):
        files = write_outputs(populated_report(), tmp_path / "out")

        for path in (files.json_report, files.text_report, files.users_csv,
                     files.large_files_csv, files.large_repositories_csv, files.oldest_commits_csv):
            assert path.exists()

    def test_json_matches_report(self, tmp_path):
        report = populated_report()

        files = write_outputs(report, tmp_path)

        data = json.loads(files.json_report.read_text(encoding="utf-8"))
        assert data == json.loads(json.dumps(report.to_dict()))
        assert data["complexity"]["level"] == "HIGH"

    def test_users_csv(self, tmp_path):
        files = write_outputs(populated_report(), tmp_path)

        with files.users_csv.open(newline="", encoding="utf-8") as fh:
            rows = list(csv.DictReader(fh))

        assert [row["displayName"] for row in rows] == ["Ada", "Bob"]
        assert rows[1]["lastAccessDate"] == ""

    def test_large_files_csv_two_decimals(self, tmp_path):
        path = tmp_path / "large_files.csv"

        write_large_files_csv(populated_report(), path)

        lines = path.read_text(encoding="utf-8").splitlines()
        assert lines == ["repository,path,sizeMB", "Alpha/monolith,assets/intro.mov,75.50"]

    def test_oldest_commits_csv_ordered(self, tmp_path):
        files = write_outputs(populated_report(), tmp_path)

        with files.oldest_commits_csv.open(newline="", encoding="utf-8") as fh:
            rows = list(csv.DictReader(fh))

        assert [row["repository"] for row in rows] == ["Beta/tools", "Alpha/monolith"]

    def test_empty_csvs_have_headers(self, tmp_path):
        builder = ReportBuilder("empty", "2024-01-15T10:00:00Z")
        builder.set_repositories(0, [], [], None)

        files = write_outputs(builder.build(GENERATED), tmp_path)

        assert files.large_repositories_csv.read_text(encoding="utf-8").strip() == "project,name,sizeBytes,sizeGB"
        assert "Nothing to migrate" in files.text_report.read_text(encoding="utf-8")
