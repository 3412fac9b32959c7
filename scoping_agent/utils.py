"""
Utility functions for the Scoping Agent.

Common helpers for time, logging, cancellation and size formatting.
"""

from __future__ import annotations

import json
import logging
import math
import re
import sys
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Sequence, TypeVar

# Fixed-width UTC representation; lexicographic order equals chronological order
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

T = TypeVar("T")
R = TypeVar("R")

_FRACTION_RE = re.compile(r"\.(\d+)")
_SECRET_RE = re.compile(r"(Authorization:\s*(?:Bearer|Basic)\s+)\S+", re.IGNORECASE)


def setup_logging(
    level: int = logging.INFO,
    format_string: str | None = None,
) -> logging.Logger:
    """
    Setup logging configuration for the agent.

    Args:
        level: Logging level
        format_string: Custom format string

    Returns:
        Root logger for the scoping_agent package
    """
    if format_string is None:
        format_string = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

    logging.basicConfig(
        level=level,
        format=format_string,
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )

    logger = logging.getLogger("scoping_agent")
    logger.setLevel(level)

    return logger


def now_iso() -> str:
    """Get current time as a normalized UTC timestamp."""
    return datetime.now(timezone.utc).strftime(TIMESTAMP_FORMAT)


def normalize_timestamp(value: Any) -> str | None:
    """
    Normalize an ISO8601 timestamp to ``YYYY-MM-DDTHH:MM:SSZ`` in UTC.

    Naive timestamps are assumed to be UTC. Sub-second precision is
    dropped. Returns None for anything that does not parse.
    """
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    # Azure DevOps can return 7 fractional digits; fromisoformat wants at most 6
    text = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def floor_2dp(value: float) -> float:
    """Truncate (not round) a value to two decimal places."""
    return math.floor(value * 100) / 100


def bytes_to_gb(size_bytes: int) -> float:
    """Bytes to GiB, truncated to two decimals."""
    return floor_2dp(size_bytes / 1024 / 1024 / 1024)


def bytes_to_mb(size_bytes: int) -> float:
    """Bytes to MiB, truncated to two decimals."""
    return floor_2dp(size_bytes / 1024 / 1024)


def mask_secrets(text: str) -> str:
    """Hide credential values in text destined for logs."""
    return _SECRET_RE.sub(r"\1***", text)


def write_json(path: Path, data: Any, indent: int = 2) -> None:
    """
    Write data to JSON file.

    Args:
        path: File path
        data: Data to serialize
        indent: JSON indentation
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=indent, ensure_ascii=False, sort_keys=False)


class CancellationToken:
    """
    Run-wide stop signal.

    Fires either when ``cancel()`` is called (e.g. on Ctrl+C) or once the
    optional global deadline has passed. Workers poll ``is_cancelled``
    before starting new work; in-flight work is never interrupted.
    """

    def __init__(self, timeout_seconds: float | None = None):
        self._event = threading.Event()
        self._reason: str | None = None
        self._lock = threading.Lock()
        self._deadline: float | None = None
        self.start_deadline(timeout_seconds)

    def start_deadline(self, timeout_seconds: float | None) -> None:
        """(Re)start the global deadline from now; ``None`` or 0 clears it."""
        self._deadline = time.monotonic() + timeout_seconds if timeout_seconds else None

    def cancel(self, reason: str = "cancelled") -> None:
        with self._lock:
            if self._reason is None:
                self._reason = reason
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self.cancel("run timeout exceeded")
            return True
        return False

    @property
    def reason(self) -> str | None:
        return self._reason


class ProgressTracker:
    """Track and display scan progress."""

    def __init__(self, phase: str, total: int = 0):
        self.phase = phase
        self.total = total
        self.completed = 0
        self._lock = threading.Lock()
        self.logger = logging.getLogger("scoping_agent.progress")

    def advance(self, label: str | None = None) -> None:
        """Mark one unit of work as completed."""
        with self._lock:
            self.completed += 1
            completed = self.completed
        if label:
            self.logger.debug(f"  {self.phase}: {label}")
        if completed % 10 == 0 or completed == self.total:
            self.logger.info(f"{self.phase} progress: {completed}/{self.total}")


def run_parallel(
    func: Callable[[T], R],
    items: Sequence[T],
    max_workers: int,
    cancellation: CancellationToken | None = None,
    fallback: Callable[[T], R] | None = None,
) -> list[R]:
    """
    Apply ``func`` to every item on a bounded thread pool.

    Results come back in input order, independent of completion order.
    Items not started because the run was cancelled (or interrupted with
    Ctrl+C) get ``fallback(item)`` instead; work already running is
    allowed to finish.
    """
    if not items:
        return []

    def call(item: T) -> R:
        if cancellation is not None and cancellation.is_cancelled and fallback is not None:
            return fallback(item)
        return func(item)

    executor = ThreadPoolExecutor(max_workers=max_workers)
    futures = [executor.submit(call, item) for item in items]
    results: list[R] = []
    try:
        for future in futures:
            results.append(future.result())
    except KeyboardInterrupt:
        if cancellation is None or fallback is None:
            executor.shutdown(wait=False, cancel_futures=True)
            raise
        cancellation.cancel("interrupted by user")
        executor.shutdown(wait=True, cancel_futures=True)
        results = [
            future.result() if future.done() and not future.cancelled() else fallback(item)
            for future, item in zip(futures, items)
        ]
    finally:
        executor.shutdown(wait=True)
    return results
