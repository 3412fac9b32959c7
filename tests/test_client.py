"""
Tests for the Azure DevOps client: retries, result values and paging.
"""

import pytest
import requests
from unittest.mock import Mock, patch

from scoping_agent.ado_client import (
    APICallStats,
    AzureDevOpsClient,
    Failure,
    Success,
    safe_count,
)
from scoping_agent.utils import CancellationToken


def make_response(status_code=200, payload=None, headers=None):
    """Create a mock HTTP response."""
    response = Mock()
    response.status_code = status_code
    response.headers = headers or {}
    response.json.return_value = payload if payload is not None else {}
    return response


def make_credential(header="Basic dGVzdA=="):
    credential = Mock()
    credential.authorization_header.return_value = header
    credential.refresh.return_value = False
    return credential


class TestResultValues:
    """Tests for Success / Failure."""

    def test_success_is_ok(self):
        assert Success({"count": 1}).ok is True

    def test_failure_is_not_ok(self):
        failure = Failure("HTTP 404", status_code=404)
        assert failure.ok is False
        assert failure.status_code == 404

    def test_continuation_token_case_insensitive(self):
        result = Success({}, headers={"X-MS-ContinuationToken": "abc"})
        assert result.continuation_token == "abc"

    def test_continuation_token_missing(self):
        assert Success({}, headers={"Content-Type": "application/json"}).continuation_token is None

    def test_continuation_token_empty(self):
        assert Success({}, headers={"x-ms-continuationtoken": ""}).continuation_token is None


class TestSafeCount:
    """Tests for safe_count."""

    def test_count_from_success(self):
        assert safe_count(Success({"count": 7}), ".count") == 7

    def test_count_from_dict(self):
        assert safe_count({"count": 3}, ".count") == 3

    def test_length_of_list(self):
        payload = {"workItems": [{"id": 1}, {"id": 2}, {"id": 3}]}
        assert safe_count(payload, ".workItems|length") == 3

    def test_length_with_spaces(self):
        payload = {"workItems": [{"id": 1}]}
        assert safe_count(payload, ".workItems | length") == 1

    def test_nested_path(self):
        assert safe_count({"a": {"b": 5}}, ".a.b") == 5

    def test_failure_is_zero(self):
        assert safe_count(Failure("HTTP 500"), ".count") == 0

    def test_none_is_zero(self):
        assert safe_count(None, ".count") == 0

    def test_legacy_error_marker_is_zero(self):
        assert safe_count("API_ERROR", ".count") == 0

    def test_raw_json_text(self):
        assert safe_count('{"count": 12}', ".count") == 12

    def test_invalid_json_text_is_zero(self):
        assert safe_count("{not json", ".count") == 0

    def test_missing_path_is_zero(self):
        assert safe_count({"value": []}, ".count") == 0

    def test_non_numeric_is_zero(self):
        assert safe_count({"count": "many"}, ".count") == 0

    def test_boolean_is_zero(self):
        assert safe_count({"count": True}, ".count") == 0

    def test_numeric_string(self):
        assert safe_count({"totalCount": "42"}, ".totalCount") == 42

    def test_integral_float(self):
        assert safe_count({"count": 4.0}, ".count") == 4

    def test_length_of_missing_list_is_zero(self):
        assert safe_count({}, ".workItems|length") == 0


class TestAPICallStats:
    """Tests for APICallStats."""

    def test_record_outcomes(self):
        stats = APICallStats()
        for outcome in ("attempt", "attempt", "retry", "success"):
            stats.record(outcome)
        assert stats.as_dict() == {"total": 2, "successful": 1, "retried": 1, "failed": 0}


class TestAzureDevOpsClient:
    """Tests for request handling."""

    @pytest.fixture
    def mock_session(self):
        """Create a mock requests session."""
        with patch("scoping_agent.ado_client.requests.Session") as mock:
            yield mock.return_value

    def make_client(self, credential=None, **kwargs):
        kwargs.setdefault("retry_delay", 0)
        return AzureDevOpsClient("https://dev.azure.com/myorg/", credential or make_credential(), **kwargs)

    def test_org_url_trailing_slash_stripped(self, mock_session):
        assert self.make_client().org_url == "https://dev.azure.com/myorg"

    def test_get_success(self, mock_session):
        mock_session.request.return_value = make_response(200, {"count": 2, "value": [1, 2]})
        client = self.make_client()

        result = client.get("https://dev.azure.com/myorg/_apis/projects?api-version=7.1")

        assert result.ok is True
        assert result.data["count"] == 2
        assert client.stats.as_dict()["successful"] == 1

    def test_authorization_header_attached(self, mock_session):
        mock_session.request.return_value = make_response(200, {})
        client = self.make_client(make_credential("Basic abc"))

        client.get("https://dev.azure.com/myorg/_apis/projects")

        headers = mock_session.request.call_args.kwargs["headers"]
        assert headers["Authorization"] == "Basic abc"

    def test_header_fetched_per_request(self, mock_session):
        mock_session.request.return_value = make_response(200, {})
        credential = make_credential()
        credential.authorization_header.side_effect = ["Bearer first", "Bearer second"]
        client = self.make_client(credential)

        client.get("https://example/a")
        client.get("https://example/b")

        sent = [call.kwargs["headers"]["Authorization"] for call in mock_session.request.call_args_list]
        assert sent == ["Bearer first", "Bearer second"]

    def test_post_sends_json_body(self, mock_session):
        mock_session.request.return_value = make_response(200, {"workItems": []})
        client = self.make_client()

        client.post("https://example/wiql", {"query": "Select [System.Id] From WorkItems"})

        call = mock_session.request.call_args
        assert call.args[0] == "POST"
        assert call.kwargs["json"] == {"query": "Select [System.Id] From WorkItems"}
        assert call.kwargs["headers"]["Content-Type"] == "application/json"

    def test_timeout_passed(self, mock_session):
        mock_session.request.return_value = make_response(200, {})
        client = self.make_client(timeout=30)

        client.get("https://example/a")

        assert mock_session.request.call_args.kwargs["timeout"] == 30

    def test_404_not_retried(self, mock_session):
        mock_session.request.return_value = make_response(404, {"message": "not found"})
        client = self.make_client()

        result = client.get("https://example/missing")

        assert isinstance(result, Failure)
        assert result.status_code == 404
        assert mock_session.request.call_count == 1

    def test_5xx_retried_then_success(self, mock_session):
        mock_session.request.side_effect = [
            make_response(503),
            make_response(200, {"count": 1}),
        ]
        client = self.make_client()

        result = client.get("https://example/a")

        assert result.ok is True
        assert mock_session.request.call_count == 2
        assert client.stats.as_dict()["retried"] == 1

    def test_retries_exhausted(self, mock_session):
        mock_session.request.return_value = make_response(500)
        client = self.make_client(max_retries=2)

        result = client.get("https://example/a")

        assert result.ok is False
        assert result.status_code == 500
        assert mock_session.request.call_count == 3
        assert client.stats.as_dict()["failed"] == 1

    def test_429_is_transient(self, mock_session):
        mock_session.request.side_effect = [make_response(429), make_response(200, {})]
        client = self.make_client()

        assert client.get("https://example/a").ok is True

    def test_transport_error_retried(self, mock_session):
        mock_session.request.side_effect = requests.ConnectionError("connection reset")
        client = self.make_client(max_retries=2)

        result = client.get("https://example/a")

        assert result.ok is False
        assert "transport error" in result.reason
        assert mock_session.request.call_count == 3

    def test_timeout_error_is_failure(self, mock_session):
        mock_session.request.side_effect = [requests.Timeout("timed out"), make_response(200, {"count": 0})]
        client = self.make_client()

        result = client.get("https://example/a")

        assert result.ok is True

    def test_non_json_body_is_failure(self, mock_session):
        response = make_response(203)
        response.json.side_effect = ValueError("No JSON")
        mock_session.request.return_value = response
        client = self.make_client()

        result = client.get("https://example/a")

        assert result.ok is False
        assert result.reason == "response is not JSON"

    def test_401_refreshes_once(self, mock_session):
        mock_session.request.side_effect = [make_response(401), make_response(200, {"count": 1})]
        credential = make_credential()
        credential.refresh.return_value = True
        client = self.make_client(credential)

        result = client.get("https://example/a")

        assert result.ok is True
        credential.refresh.assert_called_once()
        assert mock_session.request.call_count == 2

    def test_401_without_refresh_is_failure(self, mock_session):
        mock_session.request.return_value = make_response(401)
        credential = make_credential()
        client = self.make_client(credential)

        result = client.get("https://example/a")

        assert result.ok is False
        assert result.status_code == 401
        credential.refresh.assert_called_once()
        assert mock_session.request.call_count == 1

    def test_cancelled_client_makes_no_request(self, mock_session):
        token = CancellationToken()
        token.cancel("stop")
        client = self.make_client(cancellation=token)

        result = client.get("https://example/a")

        assert result == Failure("cancelled")
        mock_session.request.assert_not_called()

    def test_context_manager_closes_session(self, mock_session):
        with self.make_client():
            pass
        mock_session.close.assert_called_once()


class TestGetAll:
    """Tests for continuation-token paging."""

    @pytest.fixture
    def mock_session(self):
        with patch("scoping_agent.ado_client.requests.Session") as mock:
            yield mock.return_value

    def test_single_page(self, mock_session):
        mock_session.request.return_value = make_response(200, {"count": 2, "value": [{"name": "a"}, {"name": "b"}]})
        client = AzureDevOpsClient("https://dev.azure.com/org", make_credential(), retry_delay=0)

        result = client.get_all("https://dev.azure.com/org/_apis/projects?api-version=7.1")

        assert result.ok is True
        assert result.data == {"count": 2, "value": [{"name": "a"}, {"name": "b"}]}

    def test_multiple_pages(self, mock_session):
        mock_session.request.side_effect = [
            make_response(200, {"value": [{"name": "a"}]}, {"x-ms-continuationtoken": "tok 1"}),
            make_response(200, {"value": [{"name": "b"}]}, {"x-ms-continuationtoken": "tok2"}),
            make_response(200, {"value": [{"name": "c"}]}),
        ]
        client = AzureDevOpsClient("https://dev.azure.com/org", make_credential(), retry_delay=0)

        result = client.get_all("https://dev.azure.com/org/_apis/projects?api-version=7.1")

        assert [item["name"] for item in result.data["value"]] == ["a", "b", "c"]
        assert result.data["count"] == 3
        second_url = mock_session.request.call_args_list[1].args[1]
        assert second_url.endswith("&continuationToken=tok%201")

    def test_first_page_failure(self, mock_session):
        mock_session.request.return_value = make_response(403)
        client = AzureDevOpsClient("https://dev.azure.com/org", make_credential(), retry_delay=0)

        result = client.get_all("https://dev.azure.com/org/_apis/projects")

        assert result.ok is False
        assert result.status_code == 403

    def test_later_page_failure_keeps_partial(self, mock_session):
        mock_session.request.side_effect = [
            make_response(200, {"value": [{"name": "a"}]}, {"x-ms-continuationtoken": "next"}),
            make_response(404),
        ]
        client = AzureDevOpsClient("https://dev.azure.com/org", make_credential(), retry_delay=0)

        result = client.get_all("https://dev.azure.com/org/_apis/projects")

        assert result.ok is True
        assert result.data["value"] == [{"name": "a"}]
