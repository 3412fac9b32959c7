"""
Report model and JSON Schema for scoping output validation.

Defines the immutable ``Report`` snapshot, its camelCase serialization and
the structure of the scoping-report.json output file.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Sequence

from jsonschema import Draft7Validator

from .config import ONE_GIB, ONE_MIB
from .deep_scan import DeepScanSummary
from .models import CommitRecord, LargeBlobRecord, Project, Repository, RollupCounters, SizedRepository
from .rollups import UserSummary
from .scoring import ComplexityAssessment
from .statistics import rank_oldest_commits

# Section status values
STATUS_OK = "ok"
STATUS_UNAVAILABLE = "unavailable"
STATUS_NOT_ENABLED = "not_enabled"
STATUS_SKIPPED = "skipped"
SECTION_STATUSES = (STATUS_OK, STATUS_UNAVAILABLE, STATUS_NOT_ENABLED, STATUS_SKIPPED)

# Report sections, in text-report order
SECTIONS = (
    "repositories",
    "oldestCommits",
    "largeFiles",
    "metadata",
    "pipelines",
    "serviceHooks",
    "advancedSecurity",
    "users",
)


@dataclass(frozen=True)
class ProjectRollup:
    """Rollup counters of a single project."""
    project: str
    counters: RollupCounters

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.project, **self.counters.to_dict()}


@dataclass(frozen=True)
class Report:
    """Immutable snapshot of one scoping run."""

    organization: str
    started_at: str
    generated_at: str

    project_count: int = 0
    repo_count: int = 0
    skipped_projects: tuple[str, ...] = ()

    large_repo_threshold_bytes: int = ONE_GIB
    large_repositories: tuple[SizedRepository, ...] = ()
    largest_repository: SizedRepository | None = None
    oldest_repository: CommitRecord | None = None
    oldest_commits: tuple[CommitRecord, ...] = ()

    # None when the deep scan did not run
    total_large_files: int | None = None
    repos_with_large_files: int | None = None
    large_blob_threshold_bytes: int = 50 * ONE_MIB
    large_blobs: tuple[LargeBlobRecord, ...] = ()
    deep_scan_failures: tuple[str, ...] = ()

    rollups: RollupCounters = field(default_factory=RollupCounters)
    project_rollups: tuple[ProjectRollup, ...] = ()
    advanced_security_enabled: bool = False
    users: UserSummary = field(default_factory=UserSummary)

    sections: dict[str, str] = field(default_factory=dict)
    terminated_early: bool = False
    termination_reason: str | None = None
    api_calls: dict[str, int] = field(default_factory=dict)
    complexity: ComplexityAssessment | None = None

    @property
    def large_repo_count(self) -> int:
        return len(self.large_repositories)

    @property
    def nothing_to_migrate(self) -> bool:
        return (
            self.project_count == 0
            and self.repo_count == 0
            and not self.skipped_projects
            and not self.terminated_early
        )

    def section(self, name: str) -> str:
        return self.sections.get(name, STATUS_UNAVAILABLE)

    def to_dict(self) -> dict[str, Any]:
        """Language-neutral record with camelCase keys."""
        return {
            "organization": self.organization,
            "startedAt": self.started_at,
            "generatedAt": self.generated_at,
            "projectCount": self.project_count,
            "repoCount": self.repo_count,
            "skippedProjects": list(self.skipped_projects),
            "largeRepoThresholdBytes": self.large_repo_threshold_bytes,
            "largeRepoCount": self.large_repo_count,
            "largeRepositories": [repo.to_dict() for repo in self.large_repositories],
            "largestRepository": self.largest_repository.to_dict() if self.largest_repository else None,
            "oldestRepository": self.oldest_repository.to_dict() if self.oldest_repository else None,
            "oldestCommits": [record.to_dict() for record in self.oldest_commits],
            "largeFileThresholdBytes": self.large_blob_threshold_bytes,
            "totalLargeFiles": self.total_large_files,
            "reposWithLargeFiles": self.repos_with_large_files,
            "largeFiles": [blob.to_dict() for blob in self.large_blobs],
            "deepScanFailures": list(self.deep_scan_failures),
            "rollups": self.rollups.to_dict(),
            "projects": [rollup.to_dict() for rollup in self.project_rollups],
            "advancedSecurityEnabled": self.advanced_security_enabled,
            "users": {
                "total": self.users.total,
                "accessLevels": dict(self.users.access_levels),
                "members": [user.to_dict() for user in self.users.users],
            },
            "sections": {name: self.section(name) for name in SECTIONS},
            "terminatedEarly": self.terminated_early,
            "terminationReason": self.termination_reason,
            "apiCalls": dict(self.api_calls),
            "complexity": self.complexity.to_dict() if self.complexity else None,
        }


_COUNT = {"type": "integer", "minimum": 0}
_NULLABLE_COUNT = {"type": ["integer", "null"], "minimum": 0}

_SIZED_REPOSITORY = {
    "type": "object",
    "required": ["project", "name", "sizeBytes", "sizeMB", "sizeGB"],
    "additionalProperties": False,
    "properties": {
        "project": {"type": "string"},
        "name": {"type": "string"},
        "sizeBytes": _COUNT,
        "sizeMB": {"type": "number", "minimum": 0},
        "sizeGB": {"type": "number", "minimum": 0},
    },
}

_COMMIT_RECORD = {
    "type": "object",
    "required": ["repository", "project", "name", "date", "commitId"],
    "additionalProperties": False,
    "properties": {
        "repository": {"type": "string"},
        "project": {"type": "string"},
        "name": {"type": "string"},
        "date": {
            "type": "string",
            "pattern": r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}Z$",
            "description": "Normalized UTC timestamp of the first commit",
        },
        "commitId": {"type": "string"},
    },
}

_ROLLUP_PROPERTIES = {
    "workItems": _COUNT,
    "pullRequests": _COUNT,
    "pipelines": _COUNT,
    "reposWithPipelines": _COUNT,
    "serviceHooks": _COUNT,
    "hookConsumerTypes": {"type": "array", "items": {"type": "string"}},
    "teams": _COUNT,
    "projectsWithTeams": _COUNT,
    "secretAlerts": _COUNT,
    "dependencyAlerts": _COUNT,
    "codeAlerts": _COUNT,
    "reposWithAlerts": _COUNT,
}

# JSON Schema for the scoping-report.json output
REPORT_SCHEMA: dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "Azure DevOps Migration Scoping Report",
    "description": "Factual scoping snapshot of an Azure DevOps organization",
    "type": "object",
    "required": [
        "organization",
        "generatedAt",
        "projectCount",
        "repoCount",
        "largeRepoCount",
        "largestRepository",
        "oldestRepository",
        "totalLargeFiles",
        "rollups",
        "sections",
        "terminatedEarly",
    ],
    "additionalProperties": False,
    "properties": {
        "organization": {
            "type": "string",
            "minLength": 1,
            "description": "Azure DevOps organization name",
        },
        "startedAt": {
            "type": "string",
            "description": "UTC timestamp when the run started",
        },
        "generatedAt": {
            "type": "string",
            "description": "UTC timestamp when the report was assembled",
        },
        "projectCount": {
            **_COUNT,
            "description": "Projects whose repository listing succeeded",
        },
        "repoCount": _COUNT,
        "skippedProjects": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Projects whose repository listing failed",
        },
        "largeRepoThresholdBytes": _COUNT,
        "largeRepoCount": _COUNT,
        "largeRepositories": {"type": "array", "items": _SIZED_REPOSITORY},
        "largestRepository": {
            "oneOf": [_SIZED_REPOSITORY, {"type": "null"}],
            "description": "Largest repository, or null when no size data exists",
        },
        "oldestRepository": {
            "oneOf": [_COMMIT_RECORD, {"type": "null"}],
            "description": "Repository with the earliest first commit",
        },
        "oldestCommits": {"type": "array", "items": _COMMIT_RECORD},
        "largeFileThresholdBytes": _COUNT,
        "totalLargeFiles": {
            **_NULLABLE_COUNT,
            "description": "Blobs above the threshold; null when the deep scan did not run",
        },
        "reposWithLargeFiles": _NULLABLE_COUNT,
        "largeFiles": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["repository", "path", "sizeMB"],
                "additionalProperties": False,
                "properties": {
                    "repository": {"type": "string"},
                    "path": {"type": "string"},
                    "sizeMB": {"type": "number", "minimum": 0},
                },
            },
        },
        "deepScanFailures": {"type": "array", "items": {"type": "string"}},
        "rollups": {
            "type": "object",
            "required": list(_ROLLUP_PROPERTIES),
            "additionalProperties": False,
            "properties": _ROLLUP_PROPERTIES,
        },
        "projects": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["name", *_ROLLUP_PROPERTIES],
                "additionalProperties": False,
                "properties": {"name": {"type": "string"}, **_ROLLUP_PROPERTIES},
            },
        },
        "advancedSecurityEnabled": {"type": "boolean"},
        "users": {
            "type": "object",
            "required": ["total", "accessLevels", "members"],
            "additionalProperties": False,
            "properties": {
                "total": _COUNT,
                "accessLevels": {"type": "object", "additionalProperties": _COUNT},
                "members": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "required": ["displayName", "emailAddress", "accessLevel", "lastAccessDate"],
                        "additionalProperties": False,
                        "properties": {
                            "displayName": {"type": "string"},
                            "emailAddress": {"type": "string"},
                            "accessLevel": {"type": "string"},
                            "lastAccessDate": {"type": ["string", "null"]},
                        },
                    },
                },
            },
        },
        "sections": {
            "type": "object",
            "description": "Availability of each optional report section",
            "required": list(SECTIONS),
            "additionalProperties": False,
            "properties": {
                name: {"type": "string", "enum": list(SECTION_STATUSES)} for name in SECTIONS
            },
        },
        "terminatedEarly": {"type": "boolean"},
        "terminationReason": {"type": ["string", "null"]},
        "apiCalls": {
            "type": "object",
            "additionalProperties": _COUNT,
            "description": "API call statistics (total, successful, retried, failed)",
        },
        "complexity": {
            "oneOf": [
                {
                    "type": "object",
                    "required": ["score", "level", "guidance", "drivers"],
                    "additionalProperties": False,
                    "properties": {
                        "score": _COUNT,
                        "level": {"type": "string", "enum": ["LOW", "MEDIUM", "HIGH"]},
                        "guidance": {"type": "string"},
                        "drivers": {"type": "array", "items": {"type": "string"}},
                    },
                },
                {"type": "null"},
            ],
        },
    },
}


def validate_report(data: dict[str, Any]) -> tuple[bool, list[str]]:
    """
    Validate report data against the schema.

    Args:
        data: Report data dictionary

    Returns:
        Tuple of (is_valid, list_of_error_messages)
    """
    validator = Draft7Validator(REPORT_SCHEMA)
    errors = list(validator.iter_errors(data))

    if not errors:
        return True, []

    error_messages = []
    for error in errors:
        path = ".".join(str(p) for p in error.absolute_path) if error.absolute_path else "root"
        error_messages.append(f"{path}: {error.message}")

    return False, error_messages


def get_schema() -> dict[str, Any]:
    """Return the report JSON schema."""
    return REPORT_SCHEMA


class ReportBuilder:
    """Helper class to assemble a Report phase by phase."""

    def __init__(
        self,
        organization: str,
        started_at: str,
        large_repo_threshold_bytes: int = ONE_GIB,
        large_blob_threshold_bytes: int = 50 * ONE_MIB,
    ):
        self.organization = organization
        self.started_at = started_at
        self.fields: dict[str, Any] = {
            "large_repo_threshold_bytes": large_repo_threshold_bytes,
            "large_blob_threshold_bytes": large_blob_threshold_bytes,
        }
        self.sections: dict[str, str] = {name: STATUS_SKIPPED for name in SECTIONS}

    def mark(self, section: str, status: str) -> None:
        """Set the status of a report section."""
        if section not in SECTIONS:
            raise KeyError(f"unknown report section: {section}")
        if status not in SECTION_STATUSES:
            raise ValueError(f"unknown section status: {status}")
        self.sections[section] = status

    def set_repositories(
        self,
        project_count: int,
        repositories: Sequence[Repository],
        large_repositories: Sequence[Repository],
        largest: SizedRepository | None,
        skipped_projects: Sequence[str] = (),
    ) -> None:
        self.fields.update({
            "project_count": project_count,
            "repo_count": len(repositories),
            "skipped_projects": tuple(skipped_projects),
            "large_repositories": tuple(
                SizedRepository(repository=repo, size_bytes=repo.size_bytes or 0)
                for repo in large_repositories
            ),
            "largest_repository": largest,
        })
        self.mark("repositories", STATUS_OK)

    def set_oldest_commits(self, records: Sequence[CommitRecord], oldest: CommitRecord | None) -> None:
        self.fields.update({
            "oldest_commits": tuple(rank_oldest_commits(records)),
            "oldest_repository": oldest,
        })
        self.mark("oldestCommits", STATUS_OK)

    def set_deep_scan(self, summary: DeepScanSummary) -> None:
        self.fields.update({
            "total_large_files": summary.total_large_files,
            "repos_with_large_files": summary.repos_with_large_files,
            "large_blobs": tuple(summary.large_blobs),
            "deep_scan_failures": tuple(result.repository.full_name for result in summary.failed),
        })
        self.mark("largeFiles", STATUS_OK)

    def set_rollups(
        self,
        totals: RollupCounters,
        projects: Sequence[Project],
        per_project: Sequence[RollupCounters],
        advanced_security_enabled: bool,
    ) -> None:
        self.fields.update({
            "rollups": totals,
            "project_rollups": tuple(
                ProjectRollup(project=project.name, counters=counters)
                for project, counters in zip(projects, per_project)
            ),
            "advanced_security_enabled": advanced_security_enabled,
        })
        for section in ("metadata", "pipelines", "serviceHooks"):
            self.mark(section, STATUS_OK)
        self.mark("advancedSecurity", STATUS_OK if advanced_security_enabled else STATUS_NOT_ENABLED)

    def set_users(self, users: UserSummary) -> None:
        self.fields["users"] = users
        self.mark("users", STATUS_OK if users.available else STATUS_UNAVAILABLE)

    def terminate(self, reason: str) -> None:
        """Record that the run stopped before every phase completed."""
        self.fields["terminated_early"] = True
        self.fields["termination_reason"] = reason

    def build(self, generated_at: str, api_calls: dict[str, int] | None = None) -> Report:
        """Build the final Report."""
        return Report(
            organization=self.organization,
            started_at=self.started_at,
            generated_at=generated_at,
            sections=dict(self.sections),
            api_calls=dict(api_calls or {}),
            **self.fields,
        )


def with_complexity(report: Report, complexity: ComplexityAssessment) -> Report:
    """Copy of ``report`` carrying a complexity assessment."""
    return replace(report, complexity=complexity)
