"""
Azure DevOps REST API client with retry and continuation-token paging.

Every call returns either a ``Success`` or a ``Failure`` value; HTTP and
transport errors never escape as exceptions. Read-only: the only POST is
the work-item query.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Union
from urllib.parse import quote

import requests
from requests.exceptions import RequestException

from .auth import Credential, CredentialError
from .logging_config import log_api_call
from .utils import CancellationToken, mask_secrets

logger = logging.getLogger(__name__)


@dataclass
class APICallStats:
    """Track API call statistics."""
    total_calls: int = 0
    successful_calls: int = 0
    retried_calls: int = 0
    failed_calls: int = 0
    _lock: Lock = field(default_factory=Lock, repr=False, compare=False)

    def record(self, outcome: str) -> None:
        with self._lock:
            if outcome == "attempt":
                self.total_calls += 1
            elif outcome == "success":
                self.successful_calls += 1
            elif outcome == "retry":
                self.retried_calls += 1
            elif outcome == "failure":
                self.failed_calls += 1

    def as_dict(self) -> dict[str, int]:
        return {
            "total": self.total_calls,
            "successful": self.successful_calls,
            "retried": self.retried_calls,
            "failed": self.failed_calls,
        }


@dataclass(frozen=True)
class Success:
    """Parsed JSON payload of a successful call."""
    data: Any
    status_code: int = 200
    headers: dict[str, str] = field(default_factory=dict)

    ok = True

    @property
    def continuation_token(self) -> str | None:
        """Azure DevOps paging token for the next page, if any."""
        for key, value in self.headers.items():
            if key.lower() == "x-ms-continuationtoken":
                return value or None
        return None


@dataclass(frozen=True)
class Failure:
    """A call that produced no usable data."""
    reason: str
    status_code: int | None = None

    ok = False


ApiResult = Union[Success, Failure]


class ScopingFatalError(Exception):
    """The run cannot proceed (no connectivity, no project listing)."""


class ConnectivityError(ScopingFatalError):
    """The initial connectivity probe failed."""


def _walk(data: Any, path: str) -> Any:
    """Resolve a jq-like path such as ``.count`` or ``.workItems|length``."""
    stages = [s.strip() for s in path.split("|")]
    current = data
    for stage in stages:
        if stage == "length":
            if not isinstance(current, (list, dict, str)):
                return None
            current = len(current)
            continue
        for key in (k for k in stage.split(".") if k):
            if not isinstance(current, dict) or key not in current:
                return None
            current = current[key]
    return current


def safe_count(payload: Any, path: str) -> int:
    """
    Extract a count from an API payload, returning 0 on any problem.

    ``payload`` may be a ``Success``, a ``Failure``, an already-decoded
    JSON value, or raw JSON text. A failure, unparseable text, a missing
    path, or a non-numeric value all count as 0.
    """
    if isinstance(payload, Failure) or payload is None:
        return 0
    if isinstance(payload, Success):
        payload = payload.data
    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except ValueError:
            return 0

    value = _walk(payload, path)
    if isinstance(value, bool) or value is None:
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return 0


class AzureDevOpsClient:
    """
    Azure DevOps REST API client.

    Features:
    - Fixed request timeout and a small, fixed-delay retry budget
    - Credential header resolved per request (supports mid-run refresh)
    - One refresh-and-retry on 401
    - Continuation-token paging via ``get_all``
    - Refuses new requests once the run is cancelled

    Usage:
        client = AzureDevOpsClient("https://dev.azure.com/myorg", credential)
        result = client.get(client.org_url + "/_apis/projects?api-version=7.1")
        if result.ok:
            print(result.data["count"])
    """

    DEFAULT_TIMEOUT = 30
    MAX_RETRIES = 2
    RETRY_DELAY_SECONDS = 1.0
    MAX_PAGES = 1000
    RETRYABLE_STATUS = {408, 429}

    def __init__(
        self,
        org_url: str,
        credential: Credential,
        timeout: int = DEFAULT_TIMEOUT,
        max_retries: int = MAX_RETRIES,
        retry_delay: float = RETRY_DELAY_SECONDS,
        cancellation: CancellationToken | None = None,
    ):
        """
        Initialize the client.

        Args:
            org_url: Organization URL (e.g., "https://dev.azure.com/myorg")
            credential: Credential provider for the Authorization header
            timeout: Per-request timeout in seconds
            max_retries: Retries after the first attempt on transient failure
            retry_delay: Fixed delay between retries in seconds
            cancellation: Run-wide cancellation token
        """
        self.org_url = org_url.rstrip("/")
        self.credential = credential
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.cancellation = cancellation
        self.stats = APICallStats()

        self._session = requests.Session()
        self._session.headers.update({
            "Accept": "application/json",
            "User-Agent": "ADO-Scoping-Agent/0.1.0",
        })

    def _is_transient(self, status_code: int) -> bool:
        return status_code in self.RETRYABLE_STATUS or 500 <= status_code < 600

    def _headers(self, extra: dict[str, str] | None = None) -> dict[str, str] | None:
        try:
            headers = {"Authorization": self.credential.authorization_header()}
        except CredentialError as e:
            logger.error(f"Could not obtain credential: {e}")
            return None
        if extra:
            headers.update(extra)
        return headers

    def _request(
        self,
        method: str,
        endpoint: str,
        body: Any = None,
    ) -> ApiResult:
        attempts = self.max_retries + 1
        refreshed = False
        last_failure = Failure("no attempt made")

        attempt = 0
        while attempt < attempts:
            if self.cancellation is not None and self.cancellation.is_cancelled:
                return Failure("cancelled")

            extra = {"Content-Type": "application/json"} if body is not None else None
            headers = self._headers(extra)
            if headers is None:
                return Failure("credential unavailable")

            self.stats.record("attempt")
            logger.debug(f"{method}: {endpoint} (attempt {attempt + 1})")
            started = time.monotonic()
            try:
                response = self._session.request(
                    method,
                    endpoint,
                    headers=headers,
                    json=body,
                    timeout=self.timeout,
                    allow_redirects=True,
                )
            except RequestException as e:
                last_failure = Failure(f"transport error: {mask_secrets(str(e))}")
                attempt += 1
                if attempt < attempts:
                    self.stats.record("retry")
                    logger.debug(f"Request error: {e}, retrying in {self.retry_delay:.1f}s")
                    time.sleep(self.retry_delay)
                continue

            duration_ms = (time.monotonic() - started) * 1000
            status = response.status_code
            log_api_call(logger, method, endpoint, status, duration_ms)

            if status == 401 and not refreshed:
                refreshed = True
                if self.credential.refresh():
                    logger.info("Credential refreshed after 401, retrying")
                    continue

            if self._is_transient(status):
                last_failure = Failure(f"HTTP {status}", status_code=status)
                attempt += 1
                if attempt < attempts:
                    self.stats.record("retry")
                    logger.debug(f"Request failed with {status}, retrying in {self.retry_delay:.1f}s")
                    time.sleep(self.retry_delay)
                continue

            if status >= 400:
                self.stats.record("failure")
                return Failure(f"HTTP {status}", status_code=status)

            try:
                data = response.json()
            except ValueError:
                # Sign-in pages come back as 203 + HTML when auth is wrong
                self.stats.record("failure")
                return Failure("response is not JSON", status_code=status)

            self.stats.record("success")
            return Success(data=data, status_code=status, headers=dict(response.headers))

        self.stats.record("failure")
        return last_failure

    def get(self, endpoint: str) -> ApiResult:
        """
        GET a fully-qualified endpoint.

        Path segments and ``$``-prefixed query keys must already be
        percent-encoded by the caller.
        """
        return self._request("GET", endpoint)

    def post(self, endpoint: str, body: Any) -> ApiResult:
        """POST a JSON body to a fully-qualified endpoint."""
        return self._request("POST", endpoint, body=body)

    def get_all(self, endpoint: str) -> ApiResult:
        """
        GET every page of a ``value`` listing, following continuation tokens.

        Returns a Success whose data is ``{"count": n, "value": [...]}``.
        A failure on the first page is returned as-is; a failure on a later
        page keeps what was already fetched.
        """
        items: list[Any] = []
        url = endpoint
        first = self.get(url)
        if not first.ok:
            return first

        result = first
        pages = 0
        while True:
            pages += 1
            data = result.data if isinstance(result.data, dict) else {}
            values = data.get("value")
            if isinstance(values, list):
                items.extend(values)

            token = result.continuation_token
            if not token or pages >= self.MAX_PAGES:
                break

            separator = "&" if "?" in endpoint else "?"
            url = f"{endpoint}{separator}continuationToken={quote(token, safe='')}"
            result = self.get(url)
            if not result.ok:
                logger.warning(
                    f"Paging stopped after {pages} page(s) of {endpoint}: {result.reason}"
                )
                break

        return Success(data={"count": len(items), "value": items}, status_code=first.status_code)

    def close(self) -> None:
        """Close the HTTP session."""
        self._session.close()

    def __enter__(self) -> "AzureDevOpsClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
