"""Logging setup for Coursegate services.

prod: one JSON object per line, with user_id / content_id lifted out of the
message so log search can join a viewer's heartbeats and credential renewals.
elsewhere: plaintext for humans.

Either way the final line passes through observability.redaction, so signed
URL tokens and bearer headers never reach the log sink.
"""
import json
import logging
import re
import sys
from typing import IO, Dict, Optional

from observability.redaction import redact
from config.settings import get_settings

# Messages use `user=<id>` / `content=<id>` pairs
_CORRELATION = re.compile(r"\b(user|content)=(\S+)")

_QUIET_LOGGERS = ("uvicorn.access", "motor", "httpx", "httpcore")


def _scrub(line: str) -> str:
    return redact(line) if get_settings().LOG_REDACTION_ENABLED else line


def correlation_ids(message: str) -> Dict[str, str]:
    """{'user_id': ..., 'content_id': ...} for whichever pairs appear in the message."""
    return {f"{key}_id": value for key, value in _CORRELATION.findall(message)}


class RedactingFormatter(logging.Formatter):
    """Plaintext formatter; redacts the rendered line."""

    def format(self, record: logging.LogRecord) -> str:
        return _scrub(super().format(record))


class JSONFormatter(logging.Formatter):
    """Machine-parseable formatter for prod."""

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        entry = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "msg": message,
            **correlation_ids(message),
        }
        if record.exc_info and record.exc_info[0]:
            entry["exception"] = self.formatException(record.exc_info)
        return _scrub(json.dumps(entry, default=str))


def setup_logging(level: Optional[str] = None, stream: Optional[IO[str]] = None) -> None:
    """Install a single root handler. Safe to call more than once."""
    settings = get_settings()

    if settings.ENV == "prod":
        formatter: logging.Formatter = JSONFormatter()
    else:
        formatter = RedactingFormatter(
            fmt="%(asctime)s %(levelname)-8s [%(name)s] %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        )

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO))
    root.handlers.clear()
    root.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
