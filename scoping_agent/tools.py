"""
Azure DevOps API tools - one method per upstream endpoint.

Each tool builds a fully-qualified, percent-encoded endpoint and returns the
client's ``Success``/``Failure`` result untouched; interpretation happens in
the collector, statistics and rollup layers.
"""

from __future__ import annotations

import logging
from urllib.parse import quote

from .ado_client import ApiResult, AzureDevOpsClient

logger = logging.getLogger(__name__)

ADVSEC_API_VERSION = "7.2-preview.1"

# criteria.alertType values used by Advanced Security
ALERT_TYPE_IDS = {
    "dependency": 1,
    "secret": 2,
    "code": 3,
}

WORK_ITEM_QUERY = "Select [System.Id] From WorkItems"


def encode_segment(value: str) -> str:
    """Percent-encode a single path segment (spaces, Unicode, ``/`` ...)."""
    return quote(str(value), safe="")


class AzureDevOpsTools:
    """
    Collection of Azure DevOps endpoints used by a scoping run.

    Organization-level calls go to ``org_url``; Advanced Security and user
    entitlements live on their own hosts (``advsec.`` and ``vsaex.``).
    """

    def __init__(
        self,
        client: AzureDevOpsClient,
        organization: str,
        api_version: str = "7.1",
        base_host: str = "dev.azure.com",
    ):
        """
        Initialize tools with an Azure DevOps client.

        Args:
            client: Configured AzureDevOpsClient
            organization: Organization name
            api_version: REST API version for the core endpoints
            base_host: Host of the core service
        """
        self.client = client
        self.organization = organization
        self.api_version = api_version
        self.base_host = base_host
        self.org_url = client.org_url

    @property
    def _org(self) -> str:
        return encode_segment(self.organization)

    def _project_url(self, project: str) -> str:
        return f"{self.org_url}/{encode_segment(project)}"

    def _version(self, version: str | None = None) -> str:
        return f"api-version={version or self.api_version}"

    # ------------------------------------------------------------------
    # Organization
    # ------------------------------------------------------------------

    def probe_connectivity(self) -> ApiResult:
        """Smallest possible authenticated call; used as a fatal gate."""
        return self.client.get(f"{self.org_url}/_apis/projects?%24top=1&{self._version()}")

    def list_projects(self) -> ApiResult:
        """All projects, across continuation pages."""
        return self.client.get_all(f"{self.org_url}/_apis/projects?{self._version()}")

    def list_user_entitlements(self) -> ApiResult:
        return self.client.get(
            f"https://vsaex.{self.base_host}/{self._org}/_apis/userentitlements?{self._version()}"
        )

    def probe_advanced_security(self) -> ApiResult:
        """Capability probe: succeeds only when Advanced Security is enabled."""
        return self.client.get(
            f"https://advsec.{self.base_host}/{self._org}/_apis/management/enablement"
            f"?{self._version(ADVSEC_API_VERSION)}"
        )

    # ------------------------------------------------------------------
    # Project
    # ------------------------------------------------------------------

    def list_repositories(self, project: str) -> ApiResult:
        return self.client.get(f"{self._project_url(project)}/_apis/git/repositories?{self._version()}")

    def query_work_items(self, project: str) -> ApiResult:
        return self.client.post(
            f"{self._project_url(project)}/_apis/wit/wiql?{self._version()}",
            {"query": WORK_ITEM_QUERY},
        )

    def list_build_definitions(self, project: str) -> ApiResult:
        return self.client.get(f"{self._project_url(project)}/_apis/build/definitions?{self._version()}")

    def list_hook_subscriptions(self, project: str) -> ApiResult:
        return self.client.get(f"{self._project_url(project)}/_apis/hooks/subscriptions?{self._version()}")

    def list_teams(self, project: str) -> ApiResult:
        return self.client.get(
            f"{self.org_url}/_apis/projects/{encode_segment(project)}/teams?{self._version()}"
        )

    # ------------------------------------------------------------------
    # Repository
    # ------------------------------------------------------------------

    def get_oldest_commit(self, project: str, repo_id: str) -> ApiResult:
        """Single earliest commit, ordered by committer date ascending."""
        return self.client.get(
            f"{self._project_url(project)}/_apis/git/repositories/{encode_segment(repo_id)}/commits"
            f"?%24top=1&%24orderby=committer%2Fdate%20asc&{self._version()}"
        )

    def list_pull_requests(self, project: str, repo_id: str) -> ApiResult:
        return self.client.get(
            f"{self._project_url(project)}/_apis/git/repositories/{encode_segment(repo_id)}"
            f"/pullrequests?{self._version()}"
        )

    def list_alerts(self, project: str, repo_id: str, category: str) -> ApiResult:
        """Active Advanced Security alerts of one category for one repository."""
        alert_type = ALERT_TYPE_IDS[category]
        query = f"criteria.alertType={alert_type}&criteria.states=1"
        if category == "secret":
            # Secret detection is confidence-rated; include every level
            for level in ("High", "Medium", "Low", "Other"):
                query += f"&criteria.confidenceLevels={level}"
        return self.client.get(
            f"https://advsec.{self.base_host}/{self._org}/{encode_segment(project)}"
            f"/_apis/alert/repositories/{encode_segment(repo_id)}/alerts"
            f"?{query}&{self._version(ADVSEC_API_VERSION)}"
        )
