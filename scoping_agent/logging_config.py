"""
Structured logging for scoping runs.

Every record can carry run context (``run_id``, ``project``,
``repository``) and API call details (``api_endpoint``, ``status_code``,
``duration_ms``). The console gets a compact colored line; ``--log-json``
and log files get one JSON object per line. Credentials are masked in both.
"""

from __future__ import annotations

import json
import logging
import sys
import time
import traceback
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator

from .utils import mask_secrets

# Record attributes carried into structured output when present
CONTEXT_FIELDS = ("run_id", "phase", "project", "repository")
API_FIELDS = ("api_endpoint", "status_code", "duration_ms")

# Logged at WARNING alongside every 5xx
_NOISY_STATUS = {429}


def _record_fields(record: logging.LogRecord, names: tuple[str, ...]) -> dict[str, Any]:
    return {name: getattr(record, name) for name in names if hasattr(record, name)}


class StructuredFormatter(logging.Formatter):
    """One JSON object per record, for log shipping or later analysis."""

    def __init__(self, static_fields: dict[str, Any] | None = None):
        super().__init__()
        self.static_fields = static_fields or {}

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": mask_secrets(record.getMessage()),
            "thread": record.threadName,
            **self.static_fields,
            **_record_fields(record, CONTEXT_FIELDS),
        }

        api = _record_fields(record, API_FIELDS)
        if api:
            entry["api"] = api

        if record.exc_info:
            exc_type, exc_value, _ = record.exc_info
            entry["exception"] = {
                "type": exc_type.__name__ if exc_type else None,
                "message": mask_secrets(str(exc_value)),
                "traceback": mask_secrets("".join(traceback.format_exception(*record.exc_info))),
            }

        return json.dumps(entry, ensure_ascii=False, default=str)


class ConsoleFormatter(logging.Formatter):
    """Colored single-line console output with project/repository context."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors and sys.stdout.isatty()

    def _level(self, levelname: str) -> str:
        if not self.use_colors:
            return f"{levelname:8}"
        return f"{self.COLORS.get(levelname, '')}{levelname:8}{self.RESET}"

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created, tz=timezone.utc).strftime("%H:%M:%S")
        message = mask_secrets(record.getMessage())

        scope = "/".join(
            str(getattr(record, name)) for name in ("project", "repository") if hasattr(record, name)
        )
        if scope:
            message = f"[{scope}] {message}"

        details = []
        if hasattr(record, "status_code"):
            details.append(f"status={record.status_code}")
        if hasattr(record, "duration_ms"):
            details.append(f"{record.duration_ms:.0f}ms")
        if details:
            message = f"{message} ({', '.join(details)})"

        line = f"{timestamp} {self._level(record.levelname)} {record.name}: {message}"
        if record.exc_info:
            line += "\n" + mask_secrets("".join(traceback.format_exception(*record.exc_info)))
        return line


def setup_structured_logging(
    level: int = logging.INFO,
    json_format: bool = False,
    log_file: str | None = None,
    organization: str | None = None,
) -> logging.Logger:
    """
    Configure root logging for a scoping run.

    Args:
        level: Logging level
        json_format: JSON lines on the console instead of colored text
        log_file: Optional file that always receives JSON lines
        organization: Stamped on every JSON record when given

    Returns:
        Logger for the scoping_agent package
    """
    static_fields: dict[str, Any] = {"service": "scoping-agent"}
    if organization:
        static_fields["organization"] = organization

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    root_logger.setLevel(level)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(
        StructuredFormatter(static_fields) if json_format else ConsoleFormatter()
    )
    console_handler.setLevel(level)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(StructuredFormatter(static_fields))
        file_handler.setLevel(level)
        root_logger.addHandler(file_handler)

    # urllib3 echoes full URLs at DEBUG
    logging.getLogger("urllib3").setLevel(max(level, logging.INFO))

    logger = logging.getLogger("scoping_agent")
    logger.setLevel(level)
    return logger


class LogContext:
    """
    Stamp attributes on every record created inside the block.

    Example:
        with LogContext(run_id="1a2b3c4d"):
            logger.info("Collecting repositories")
    """

    def __init__(self, **fields: Any):
        self.fields = fields
        self._previous = None

    def __enter__(self) -> "LogContext":
        self._previous = logging.getLogRecordFactory()
        previous = self._previous
        fields = self.fields

        def record_factory(*args, **kwargs):
            record = previous(*args, **kwargs)
            for key, value in fields.items():
                setattr(record, key, value)
            return record

        logging.setLogRecordFactory(record_factory)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._previous is not None:
            logging.setLogRecordFactory(self._previous)


@contextmanager
def timed_phase(logger: logging.Logger, phase: str) -> Iterator[None]:
    """Log the start and duration of a run phase."""
    started = time.monotonic()
    logger.info(f"Starting {phase}", extra={"phase": phase})
    try:
        yield
    finally:
        duration_ms = (time.monotonic() - started) * 1000
        logger.info(
            f"Finished {phase} in {duration_ms / 1000:.1f}s",
            extra={"phase": phase, "duration_ms": duration_ms},
        )


def log_api_call(
    logger: logging.Logger,
    method: str,
    url: str,
    status_code: int,
    duration_ms: float,
) -> None:
    """
    Log one HTTP exchange.

    The query string is dropped from ``api_endpoint``. Throttling and
    server errors are logged at WARNING, everything else at DEBUG.
    """
    endpoint = url.split("?", 1)[0]
    level = logging.WARNING if status_code in _NOISY_STATUS or status_code >= 500 else logging.DEBUG
    if not logger.isEnabledFor(level):
        return
    logger.log(
        level,
        f"{method} {endpoint} -> {status_code}",
        extra={"api_endpoint": endpoint, "status_code": status_code, "duration_ms": duration_ms},
    )
