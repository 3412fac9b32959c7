"""
Report output - plain-text rendering and JSON/CSV persistence.

Everything here only reads a finished ``Report``; nothing feeds back into
the collection phases.
"""

from __future__ import annotations

import csv
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from .config import ONE_GIB, ONE_MIB
from .schema import (
    STATUS_NOT_ENABLED,
    STATUS_OK,
    STATUS_SKIPPED,
    Report,
    validate_report,
)
from .utils import write_json

logger = logging.getLogger(__name__)

RULE = "=" * 40

REPORT_JSON = "scoping-report.json"
REPORT_TEXT = "scoping-report.txt"
USERS_CSV = "users.csv"
LARGE_FILES_CSV = "large_files.csv"
LARGE_REPOSITORIES_CSV = "large_repositories.csv"
OLDEST_COMMITS_CSV = "oldest_commits.csv"


@dataclass(frozen=True)
class OutputFiles:
    """Paths of everything written for one report."""
    json_report: Path
    text_report: Path
    users_csv: Path
    large_files_csv: Path
    large_repositories_csv: Path
    oldest_commits_csv: Path


def _threshold_label(size_bytes: int, unit: int, suffix: str) -> str:
    value = size_bytes / unit
    return f"{value:g}{suffix}"


class _TextReport:
    """Line accumulator for the sectioned text report."""

    def __init__(self):
        self.lines: list[str] = []

    def add(self, line: str = "") -> None:
        self.lines.append(line)

    def section(self, title: str) -> None:
        self.lines.extend(["", RULE, title, RULE, ""])

    def unavailable(self, what: str) -> None:
        self.add(f"WARNING: {what} - data unavailable")

    def render(self) -> str:
        return "\n".join(self.lines) + "\n"


def render_text(report: Report) -> str:
    """Render the sectioned plain-text scoping report."""
    out = _TextReport()
    gb_label = _threshold_label(report.large_repo_threshold_bytes, ONE_GIB, "GB")
    mb_label = _threshold_label(report.large_blob_threshold_bytes, ONE_MIB, "MB")

    out.add("Azure DevOps Migration Scoping Report")
    out.add(f"Organization: {report.organization}")
    out.add(f"Generated: {report.generated_at}")
    if report.terminated_early:
        out.add("")
        out.add(f"WARNING: Run terminated early ({report.termination_reason}); figures below are partial")

    # 1. Repository count
    out.section("1. Repository Count")
    out.add(f"Total Projects: {report.project_count}")
    out.add(f"Total Repositories: {report.repo_count}")
    if report.skipped_projects:
        out.add(f"Projects skipped (listing failed): {', '.join(report.skipped_projects)}")
    if report.nothing_to_migrate:
        out.add("")
        out.add("Nothing to migrate")
        return out.render()

    # 2. Large repositories
    out.section(f"2. Repositories Over {gb_label} (API-Reported Size)")
    if report.section("repositories") == STATUS_OK:
        out.add(f"Repositories over {gb_label}: {report.large_repo_count}")
        if report.large_repositories:
            out.add("")
            out.add("Large Repository Details:")
            for sized in report.large_repositories:
                out.add(f"{sized.repository.full_name}: {sized.size_gb}GB")
    else:
        out.unavailable("Could not analyze repository sizes")

    # 3. Largest repository
    out.section("3. Largest Repository (API-Reported Size)")
    largest = report.largest_repository
    if largest is not None:
        out.add(f"Largest Repository: {largest.repository.full_name} ({largest.size_mb}MB)")
    else:
        out.add("No repository size data available")

    # 4. Oldest repository
    out.section("4. Oldest Repository")
    oldest = report.oldest_repository
    if report.section("oldestCommits") != STATUS_OK:
        out.unavailable("Could not determine oldest repository")
    elif oldest is not None:
        out.add(f"Oldest Repository: {oldest.repository.full_name}")
        out.add(f"First Commit Date: {oldest.date}")
        out.add(f"Commit ID: {oldest.commit_id}")
    else:
        out.add("No commit history found")

    # 5. Large files
    out.section("5. Large Files Scan (Individual File Sizes)")
    status = report.section("largeFiles")
    if status == STATUS_OK:
        blobs_by_repo: dict[str, list] = {}
        for blob in report.large_blobs:
            blobs_by_repo.setdefault(blob.repository.full_name, []).append(blob)
        for repo_name, blobs in blobs_by_repo.items():
            out.add(f"  {repo_name}: {len(blobs)} large file(s)")
            for blob in blobs:
                out.add(f"      - {blob.path} ({blob.size_mb:.2f}MB)")
        if report.deep_scan_failures:
            out.add(f"  Could not scan: {', '.join(report.deep_scan_failures)}")
        out.add("")
        out.add(f"Total Large Files (>{mb_label}): {report.total_large_files}")
        out.add(f"Repositories with Large Files: {report.repos_with_large_files}")
        if report.total_large_files:
            out.add("")
            out.add("NOTE: GitHub warns about files >50MB and blocks files >100MB.")
            out.add("Consider using Git LFS for these files during migration.")
    elif status == STATUS_NOT_ENABLED:
        out.add("NOTE: The REST API does not report individual file sizes.")
        out.add(f"To detect large files (>{mb_label}), rerun with --scan-large-files")
        out.add("(clones every repository; requires git).")
        if report.large_repositories:
            out.add("")
            out.add(f"Repositories over {gb_label} (likely to contain large files):")
            for sized in report.large_repositories:
                out.add(f"  - {sized.repository.full_name}")
    elif status == STATUS_SKIPPED:
        out.unavailable("Large file scan did not run")
    else:
        out.unavailable("Large file scan requested but git is not installed")

    rollups = report.rollups

    # 6. Metadata
    out.section("6. Metadata Data")
    if report.section("metadata") == STATUS_OK:
        out.add(f"Total Work Items: {rollups.work_items}")
        out.add(f"Total Pull Requests: {rollups.pull_requests}")
        out.add(f"Projects with Boards/Teams: {rollups.projects_with_teams}")
        if rollups.work_items or rollups.pull_requests or rollups.projects_with_teams:
            out.add("")
            out.add("RECOMMENDATION: Metadata migration is recommended")
            out.add("  - Work Items should be considered for migration to GitHub Issues")
            out.add("  - Pull Request history may need to be archived or migrated")
            out.add("  - Board configurations should be replicated in GitHub Projects")
    else:
        out.unavailable("Metadata rollup did not run")

    # 7. Pipelines
    out.section("7. Pipeline Data")
    if report.section("pipelines") == STATUS_OK:
        out.add(f"Total Pipelines: {rollups.pipelines}")
        out.add(f"Repositories with Pipelines: {rollups.repos_with_pipelines}")
        if rollups.pipelines:
            out.add("")
            out.add("RECOMMENDATION: Pipeline migration is required")
            out.add("  - Azure Pipelines YAML files should be converted to GitHub Actions")
            out.add("  - Review pipeline triggers and scheduled runs")
            out.add("  - Verify service connections and secrets migration")
    else:
        out.unavailable("Pipeline rollup did not run")

    # 8. Advanced Security
    out.section("8. Security Scanning (Advanced Security)")
    status = report.section("advancedSecurity")
    if status == STATUS_OK:
        out.add("Advanced Security is enabled for this organization")
        out.add("")
        out.add(f"Total Secret Scanning Alerts: {rollups.alerts.get('secret', 0)}")
        out.add(f"Total Dependency Scanning Alerts: {rollups.alerts.get('dependency', 0)}")
        out.add(f"Total Code Scanning Alerts: {rollups.alerts.get('code', 0)}")
        out.add(f"Repositories with Security Alerts: {rollups.repos_with_alerts}")
    elif status == STATUS_NOT_ENABLED:
        out.add("Advanced Security is NOT enabled for this organization")
        out.add("")
        out.add("NOTE: Advanced Security is a paid add-on covering secret, dependency")
        out.add("and code scanning. Consider GitHub Advanced Security after migration.")
    else:
        out.unavailable("Security alert rollup did not run")

    # 9. Service hooks
    out.section("9. Custom Integrations (Service Hooks)")
    if report.section("serviceHooks") == STATUS_OK:
        out.add(f"Total Service Hooks: {rollups.service_hooks}")
        if rollups.hook_consumer_types:
            out.add("")
            out.add("Integration Types Found:")
            for consumer in sorted(rollups.hook_consumer_types):
                out.add(f"  - {consumer}")
            out.add("")
            out.add("RECOMMENDATION: These integrations need to be recreated in GitHub")
        else:
            out.add("No custom integrations found")
    else:
        out.unavailable("Service hook rollup did not run")

    # 10. Users
    out.section("10. User Data")
    if report.section("users") == STATUS_OK:
        users = report.users
        out.add(f"Total Users in Organization: {users.total}")
        if users.access_levels:
            out.add("")
            out.add("User Access Level Breakdown:")
            for level, count in users.access_levels.items():
                out.add(f"  - {level}: {count} users")
            out.add("")
            out.add("RECOMMENDATION: Plan user migration and GitHub seat allocation")
    else:
        out.unavailable("Could not retrieve user entitlements")

    # Summary
    out.section("Migration Scoping Summary")
    out.lines.extend(_summary_lines(report))

    return out.render()


def _summary_lines(report: Report) -> list[str]:
    gb_label = _threshold_label(report.large_repo_threshold_bytes, ONE_GIB, "GB")
    rollups = report.rollups
    lines = [
        "KEY FINDINGS:",
        f"  - Repositories to migrate: {report.repo_count}",
        f"  - Large repositories (>{gb_label}): {report.large_repo_count}",
        f"  - Pipelines requiring conversion: {rollups.pipelines}",
        f"  - Users to migrate: {report.users.total}",
        f"  - Service hooks/integrations: {rollups.service_hooks}",
        f"  - Work items: {rollups.work_items}",
    ]
    if report.complexity is not None:
        lines.extend(["", "MIGRATION COMPLEXITY ASSESSMENT:"])
        lines.extend(f"  ! {driver}" for driver in report.complexity.drivers)
        lines.extend(["", f"Overall Complexity: {report.complexity.level} - {report.complexity.guidance}"])
    return lines


def render_summary(report: Report) -> str:
    """Short key-findings block for the console."""
    lines = [
        "SCOPING SUMMARY",
        f"Organization: {report.organization}",
        f"Projects: {report.project_count}",
        "",
        *_summary_lines(report),
    ]
    if report.terminated_early:
        lines.extend(["", f"Run terminated early: {report.termination_reason}"])
    return "\n".join(lines)


def _write_csv(path: Path, fieldnames: list[str], rows: Iterable[dict[str, object]]) -> None:
    with path.open("w", newline="", encoding="utf-8") as fh:
        writer = csv.DictWriter(fh, fieldnames=fieldnames)
        writer.writeheader()
        for row in rows:
            writer.writerow(row)


def write_users_csv(report: Report, path: Path) -> None:
    _write_csv(
        path,
        ["displayName", "emailAddress", "accessLevel", "lastAccessDate"],
        (user.to_dict() for user in report.users.users),
    )


def write_large_files_csv(report: Report, path: Path) -> None:
    _write_csv(
        path,
        ["repository", "path", "sizeMB"],
        ({**blob.to_dict(), "sizeMB": f"{blob.size_mb:.2f}"} for blob in report.large_blobs),
    )


def write_large_repositories_csv(report: Report, path: Path) -> None:
    _write_csv(
        path,
        ["project", "name", "sizeBytes", "sizeGB"],
        (
            {
                "project": sized.repository.project,
                "name": sized.repository.name,
                "sizeBytes": sized.size_bytes,
                "sizeGB": sized.size_gb,
            }
            for sized in report.large_repositories
        ),
    )


def write_oldest_commits_csv(report: Report, path: Path) -> None:
    _write_csv(
        path,
        ["date", "repository", "commitId"],
        (
            {"date": record.date, "repository": record.repository.full_name, "commitId": record.commit_id}
            for record in report.oldest_commits
        ),
    )


def write_outputs(report: Report, output_dir: Path) -> OutputFiles:
    """
    Persist the report as JSON, text and CSV files.

    The JSON document is validated against the report schema first;
    validation problems are logged but do not stop the write.

    Args:
        report: Finished report
        output_dir: Directory to write into (created if missing)

    Returns:
        OutputFiles with every written path
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    files = OutputFiles(
        json_report=output_dir / REPORT_JSON,
        text_report=output_dir / REPORT_TEXT,
        users_csv=output_dir / USERS_CSV,
        large_files_csv=output_dir / LARGE_FILES_CSV,
        large_repositories_csv=output_dir / LARGE_REPOSITORIES_CSV,
        oldest_commits_csv=output_dir / OLDEST_COMMITS_CSV,
    )

    data = report.to_dict()
    is_valid, errors = validate_report(data)
    if not is_valid:
        logger.warning(f"Report validation found {len(errors)} issues:")
        for error in errors[:10]:
            logger.warning(f"  - {error}")

    write_json(files.json_report, data)
    files.text_report.write_text(render_text(report), encoding="utf-8")
    write_users_csv(report, files.users_csv)
    write_large_files_csv(report, files.large_files_csv)
    write_large_repositories_csv(report, files.large_repositories_csv)
    write_oldest_commits_csv(report, files.oldest_commits_csv)

    logger.info(f"Report saved to: {files.json_report}")
    return files
