"""Structured logging configuration.

Provides:
  - JSON-formatted log output for staging/production
  - Human-readable colored output for development
  - Fork / transaction / bridge message correlation fields
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

# Extra record attributes lifted into structured output
CONTEXT_KEYS = ("fork_id", "tx_id", "message_id", "method", "chain_id", "duration_ms")


class JSONFormatter(logging.Formatter):
    """Structured JSON log formatter for production."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.pathname:
            log_entry["module"] = record.module
            log_entry["function"] = record.funcName
            log_entry["line"] = record.lineno

        if hasattr(record, "session_id"):
            log_entry["session_id"] = record.session_id

        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else "Unknown",
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info),
            }

        for key in CONTEXT_KEYS:
            if hasattr(record, key):
                log_entry[key] = getattr(record, key)
        tag = _correlation_tag(record)
        if tag:
            log_entry["correlation"] = tag

        return json.dumps(log_entry, default=str)


class DevFormatter(logging.Formatter):
    """Colored human-readable formatter for development."""

    COLORS = {
        "DEBUG": "\033[36m",     # Cyan
        "INFO": "\033[32m",      # Green
        "WARNING": "\033[33m",   # Yellow
        "ERROR": "\033[31m",     # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"
    DIM = "\033[2m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        ts = datetime.now(timezone.utc).strftime("%H:%M:%S")
        prefix = f"{color}{ts} [{record.levelname:>8s}]{self.RESET}"
        msg = record.getMessage()

        tag = _correlation_tag(record)
        if tag:
            msg = f"[{tag}] {msg}"
        details = _call_details(record)
        if details:
            msg = f"{msg} {self.DIM}({details}){self.RESET}"

        base = f"{prefix} {record.name}: {msg}"
        if record.exc_info and record.exc_info[1]:
            base += "\n" + self.formatException(record.exc_info)
        return base


def _correlation_tag(record: logging.LogRecord) -> str:
    """``fork abcdef12 tx 3 msg 7``: which fork, ledger entry and bridge message."""
    parts = []
    fork_id = getattr(record, "fork_id", None)
    if fork_id:
        parts.append(f"fork {str(fork_id)[:8]}")
    tx_id = getattr(record, "tx_id", None)
    if tx_id is not None:
        parts.append(f"tx {tx_id}")
    message_id = getattr(record, "message_id", None)
    if message_id is not None:
        parts.append(f"msg {message_id}")
    return " ".join(parts)


def _call_details(record: logging.LogRecord) -> str:
    parts = []
    method = getattr(record, "method", None)
    if method:
        parts.append(str(method))
    chain_id = getattr(record, "chain_id", None)
    if chain_id is not None:
        parts.append(f"chain {chain_id}")
    duration_ms = getattr(record, "duration_ms", None)
    if duration_ms is not None:
        parts.append(f"{float(duration_ms):.1f}ms")
    return ", ".join(parts)


def setup_logging(env: str = "development", log_level: str = "INFO") -> None:
    """Configure logging for the process.

    Args:
        env: Application environment (development/staging/production)
        log_level: Minimum log level
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    root.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    if env in ("staging", "production"):
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(DevFormatter())

    root.addHandler(handler)

    # Quiet noisy libraries
    for noisy in ("httpcore", "httpx", "asyncio"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


class SessionLogFilter(logging.Filter):
    """Filter that stamps every record with the pilot session id."""

    def __init__(self, session_id: str = "") -> None:
        super().__init__()
        self.session_id = session_id

    def filter(self, record: logging.LogRecord) -> bool:
        record.session_id = self.session_id  # type: ignore[attr-defined]
        return True
