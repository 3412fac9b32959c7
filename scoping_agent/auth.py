"""
Credential providers for Azure DevOps.

The API client and the deep scan ask the credential for a header value on
every request/clone, so a refreshed token is picked up without restarting
work that already finished.
"""

from __future__ import annotations

import base64
import json
import logging
import shutil
import subprocess
import time
from datetime import datetime
from threading import Lock

logger = logging.getLogger(__name__)

# Azure DevOps application ID used as the token resource
AZURE_DEVOPS_RESOURCE = "499b84ac-1321-427f-aa17-267ca6975798"


class CredentialError(Exception):
    """Raised when a credential cannot be acquired."""


class Credential:
    """Base class: produces an ``Authorization`` header value."""

    scheme = ""

    def authorization_header(self) -> str:
        raise NotImplementedError

    def refresh(self) -> bool:
        """Try to obtain a fresh credential. Returns True if it changed."""
        return False

    def describe(self) -> str:
        return self.__class__.__name__


class PatCredential(Credential):
    """Personal Access Token sent as basic auth with a blank username."""

    scheme = "Basic"

    def __init__(self, token: str, username: str = ""):
        if not token:
            raise CredentialError("Personal access token is empty")
        raw = f"{username}:{token}".encode("utf-8")
        self._header = "Basic " + base64.b64encode(raw).decode("ascii")

    def authorization_header(self) -> str:
        return self._header

    def describe(self) -> str:
        return "personal access token"


class BearerCredential(Credential):
    """Static bearer token (e.g. an Azure AD token obtained elsewhere)."""

    scheme = "Bearer"

    def __init__(self, token: str):
        if not token:
            raise CredentialError("Bearer token is empty")
        self._token = token

    def authorization_header(self) -> str:
        return f"Bearer {self._token}"

    def describe(self) -> str:
        return "bearer token"


class AzureCliCredential(Credential):
    """
    Azure AD bearer token fetched through ``az account get-access-token``.

    Tokens live for about an hour. The token is refreshed automatically when
    it is within ``refresh_margin`` seconds of expiry, and on demand after a
    401 from the API. Refresh is lock-guarded so concurrent workers trigger a
    single ``az`` call.
    """

    scheme = "Bearer"

    def __init__(self, refresh_margin: int = 300, az_path: str | None = None):
        self.refresh_margin = refresh_margin
        self._az = az_path or shutil.which("az")
        self._token: str | None = None
        self._expires_at: float | None = None
        self._lock = Lock()
        if not self._az:
            raise CredentialError(
                "Azure CLI is not installed; install it or use a personal access token"
            )

    def _fetch(self) -> tuple[str, float | None]:
        try:
            result = subprocess.run(
                [
                    self._az, "account", "get-access-token",
                    "--resource", AZURE_DEVOPS_RESOURCE,
                    "-o", "json",
                ],
                capture_output=True,
                text=True,
                timeout=60,
                check=True,
            )
        except subprocess.CalledProcessError as e:
            raise CredentialError(
                f"az account get-access-token failed; run 'az login' first ({e.stderr.strip()})"
            ) from e
        except subprocess.TimeoutExpired as e:
            raise CredentialError("Timed out waiting for Azure CLI token") from e

        try:
            payload = json.loads(result.stdout)
        except ValueError as e:
            raise CredentialError("Azure CLI returned an unreadable token response") from e

        token = payload.get("accessToken")
        if not token:
            raise CredentialError("Azure CLI returned no access token")
        return token, self._parse_expiry(payload)

    @staticmethod
    def _parse_expiry(payload: dict) -> float | None:
        epoch = payload.get("expires_on")
        if epoch is not None:
            try:
                return float(epoch)
            except (TypeError, ValueError):
                pass
        expires_on = payload.get("expiresOn")
        if expires_on:
            try:
                # Local time, e.g. "2024-01-15 11:05:00.000000"
                return datetime.fromisoformat(expires_on).timestamp()
            except ValueError:
                return None
        return None

    def _is_stale(self) -> bool:
        if self._token is None:
            return True
        if self._expires_at is None:
            return False
        return time.time() >= self._expires_at - self.refresh_margin

    def authorization_header(self) -> str:
        with self._lock:
            if self._is_stale():
                self._token, self._expires_at = self._fetch()
                logger.debug("Acquired Azure AD token via Azure CLI")
            return f"Bearer {self._token}"

    def refresh(self) -> bool:
        with self._lock:
            try:
                token, expires_at = self._fetch()
            except CredentialError as e:
                logger.warning(f"Failed to refresh token, continuing with existing token: {e}")
                return False
            changed = token != self._token
            self._token, self._expires_at = token, expires_at
            logger.debug("Token refreshed successfully")
            return changed

    def describe(self) -> str:
        return "Azure CLI bearer token"
