"""
Deep scan - find oversized blobs anywhere in a repository's history.

Each repository is mirror-cloned into its own temporary workspace, every
reachable object is listed with ``git rev-list --objects --all`` and sized
with ``git cat-file --batch-check``. The workspace is removed before the
worker moves on, whether the scan succeeded, failed or was interrupted.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence
from urllib.parse import quote

from .auth import Credential, CredentialError
from .config import ONE_MIB
from .models import DeepScanResult, LargeBlobRecord, Repository
from .utils import CancellationToken, ProgressTracker, mask_secrets, run_parallel

logger = logging.getLogger(__name__)

DEFAULT_BLOB_THRESHOLD = 50 * ONE_MIB
BATCH_CHECK_FORMAT = "%(objecttype) %(objectname) %(objectsize) %(rest)"

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass(frozen=True)
class DeepScanSummary:
    """Aggregated deep-scan output, in merge order."""
    results: tuple[DeepScanResult, ...]

    @property
    def large_blobs(self) -> list[LargeBlobRecord]:
        return [blob for result in self.results for blob in result.blobs]

    @property
    def total_large_files(self) -> int:
        return sum(len(result.blobs) for result in self.results)

    @property
    def repos_with_large_files(self) -> int:
        return sum(1 for result in self.results if result.blobs)

    @property
    def failed(self) -> list[DeepScanResult]:
        return [result for result in self.results if not result.succeeded]


def git_available() -> bool:
    return shutil.which("git") is not None


def parse_batch_check(output: str, repo: Repository, threshold_bytes: int) -> list[LargeBlobRecord]:
    """
    Pick blobs above ``threshold_bytes`` from ``cat-file --batch-check`` output.

    Lines look like ``blob <sha> <size> <path>``; the path may contain
    spaces or be missing for objects only reachable without a name.
    Returned largest first.
    """
    blobs: list[LargeBlobRecord] = []
    for line in output.splitlines():
        parts = line.split(" ", 3)
        if len(parts) < 3 or parts[0] != "blob":
            continue
        try:
            size = int(parts[2])
        except ValueError:
            continue
        if size > threshold_bytes:
            path = parts[3] if len(parts) == 4 else ""
            blobs.append(LargeBlobRecord(repository=repo, path=path, size_bytes=size))
    blobs.sort(key=lambda blob: blob.size_bytes, reverse=True)
    return blobs


class DeepScanner:
    """
    Clone-and-inspect scanner for large historical blobs.

    Credentials reach git through ``GIT_CONFIG_*`` environment variables
    as an ``http.extraHeader``, so the token is never part of the command
    line. The header is requested from the credential for each clone,
    which lets a long scan pick up refreshed tokens.
    """

    def __init__(
        self,
        credential: Credential,
        organization: str,
        threshold_bytes: int = DEFAULT_BLOB_THRESHOLD,
        clone_timeout: int = 3600,
        work_root: str | os.PathLike | None = None,
        base_host: str = "dev.azure.com",
        cancellation: CancellationToken | None = None,
    ):
        self.credential = credential
        self.organization = organization
        self.threshold_bytes = threshold_bytes
        self.clone_timeout = clone_timeout
        self.work_root = Path(work_root) if work_root else None
        self.base_host = base_host
        self.cancellation = cancellation

    def clone_url(self, repo: Repository) -> str:
        if repo.remote_url:
            # Strip any embedded user (e.g. "org@dev.azure.com"); auth goes in the header
            return re.sub(r"^(https?://)[^@/]+@", r"\1", repo.remote_url)
        return (
            f"https://{self.base_host}/{quote(self.organization, safe='')}/"
            f"{quote(repo.project, safe='')}/_git/{quote(repo.name, safe='')}"
        )

    def _git_env(self) -> dict[str, str]:
        env = dict(os.environ)
        env.update({
            "GIT_TERMINAL_PROMPT": "0",
            "GIT_CONFIG_COUNT": "1",
            "GIT_CONFIG_KEY_0": "http.extraHeader",
            "GIT_CONFIG_VALUE_0": f"Authorization: {self.credential.authorization_header()}",
        })
        return env

    def _workspace(self, repo: Repository) -> Path:
        label = _UNSAFE_CHARS.sub("_", f"{repo.project}_{repo.name}")[:60]
        return Path(tempfile.mkdtemp(prefix=f"scan-{label}-", dir=self.work_root))

    def _list_objects(self, git_dir: Path) -> str:
        rev_list = subprocess.Popen(
            ["git", "rev-list", "--objects", "--all"],
            cwd=str(git_dir),
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
        )
        try:
            result = subprocess.run(
                ["git", "cat-file", f"--batch-check={BATCH_CHECK_FORMAT}"],
                cwd=str(git_dir),
                stdin=rev_list.stdout,
                capture_output=True,
                timeout=self.clone_timeout,
                check=True,
            )
        finally:
            if rev_list.stdout is not None:
                rev_list.stdout.close()
            rev_list.wait()
        if rev_list.returncode != 0:
            raise subprocess.CalledProcessError(rev_list.returncode, "git rev-list")
        return result.stdout.decode("utf-8", errors="replace")

    def scan_repository(self, repo: Repository) -> DeepScanResult:
        """Clone, inspect and clean up one repository. Never raises."""
        if self.cancellation is not None and self.cancellation.is_cancelled:
            return DeepScanResult(repository=repo, error="cancelled")

        try:
            workspace = self._workspace(repo)
        except OSError as e:
            logger.warning(f"Could not create workspace for {repo.full_name}: {e}")
            return DeepScanResult(repository=repo, error=str(e))

        try:
            git_dir = workspace / "repo.git"
            try:
                subprocess.run(
                    ["git", "clone", "--mirror", "--quiet", self.clone_url(repo), str(git_dir)],
                    env=self._git_env(),
                    capture_output=True,
                    text=True,
                    timeout=self.clone_timeout,
                    check=True,
                )
                output = self._list_objects(git_dir)
            except subprocess.TimeoutExpired:
                logger.warning(f"Timed out scanning {repo.full_name}")
                return DeepScanResult(repository=repo, error="timeout")
            except subprocess.CalledProcessError as e:
                detail = mask_secrets((e.stderr or "").strip()) if isinstance(e.stderr, str) else ""
                logger.warning(f"Failed to clone repository {repo.full_name}: {detail or e}")
                return DeepScanResult(repository=repo, error="clone failed")
            except (CredentialError, OSError) as e:
                logger.warning(f"Could not scan {repo.full_name}: {e}")
                return DeepScanResult(repository=repo, error=str(e))

            blobs = parse_batch_check(output, repo, self.threshold_bytes)
            if blobs:
                logger.info(f"Found {len(blobs)} large file(s) in {repo.full_name}")
            return DeepScanResult(repository=repo, blobs=tuple(blobs))
        finally:
            shutil.rmtree(workspace, ignore_errors=True)

    def scan(self, repos: Sequence[Repository], max_workers: int = 4) -> DeepScanSummary:
        """Scan every repository; results keep merge order."""
        logger.info(
            f"Scanning {len(repos)} repositories for large files "
            f"(>{self.threshold_bytes // ONE_MIB}MB); this clones each repository"
        )
        progress = ProgressTracker("Deep scan", total=len(repos))

        def scan_one(repo: Repository) -> DeepScanResult:
            result = self.scan_repository(repo)
            progress.advance(repo.full_name)
            return result

        results = run_parallel(
            scan_one,
            repos,
            max_workers,
            cancellation=self.cancellation,
            fallback=lambda repo: DeepScanResult(repository=repo, error="cancelled"),
        )
        return DeepScanSummary(results=tuple(results))
