"""Structured logging for the alert monitor."""

import json
import logging
import sys
from datetime import datetime, timezone

from alert_monitor.config import LOG_FORMAT, LOG_LEVEL

# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------

_COLORS = {
    "DEBUG": "\033[36m",     # cyan
    "INFO": "\033[32m",      # green
    "WARNING": "\033[33m",   # yellow
    "ERROR": "\033[31m",     # red
    "CRITICAL": "\033[1;31m",  # bold red
    "RESET": "\033[0m",
}


class _PrettyFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        color = _COLORS.get(record.levelname, "")
        reset = _COLORS["RESET"]
        line = f"{color}[{ts}] [{record.levelname}]{reset} {record.getMessage()}"
        extra = getattr(record, "extra_data", None)
        if extra:
            fields = " ".join(f"{k}={v}" for k, v in extra.items())
            line = f"{line} ({fields})"
        return line


class _JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
        }
        if hasattr(record, "extra_data"):
            entry.update(record.extra_data)
        return json.dumps(entry, default=str)


def setup_logging() -> logging.Logger:
    logger = logging.getLogger("alert_monitor")
    if logger.handlers:
        return logger

    logger.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        _PrettyFormatter() if LOG_FORMAT == "pretty" else _JSONFormatter()
    )
    logger.addHandler(handler)
    return logger


logger = setup_logging()

# ---------------------------------------------------------------------------
# Structured event logging
# ---------------------------------------------------------------------------

def log_event(
    source: str,
    alert_id: str,
    alert_type: str,
    headline: str = "",
    lists: list[str] | None = None,
    timestamp: str = "",
) -> None:
    parts = [
        f"\n{'='*60}",
        f"  Source   : {source}",
        f"  Alert    : {alert_id}",
        f"  Type     : {alert_type or 'unknown'}",
    ]
    if timestamp:
        parts.append(f"  Time     : {timestamp}")
    if lists:
        parts.append(f"  Lists    : {', '.join(lists)}")
    if headline:
        parts.append(f"  Headline : {headline}")
    parts.append(f"{'='*60}")
    logger.info("\n".join(parts))
