"""Centralized logging configuration.

Guarantees:
- Records go to stderr only
- Calling configure_logging repeatedly never stacks handlers
- Human-readable lines by default, one JSON object per line on request
- httpx/httpcore stay at WARNING unless DEBUG is requested
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .config import Settings

_HANDLER_NAME = "async_refetch_stderr"
_NOISY_LOGGERS = ("httpx", "httpcore")

# Attributes every LogRecord carries; anything else arrived through extra=
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}


class _JsonFormatter(logging.Formatter):
    """One-line JSON: timestamp, level, logger, message plus any extras."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name or "root",
            "message": record.getMessage(),
        }
        for name, value in vars(record).items():
            if name in _RECORD_ATTRS or name.startswith("_"):
                continue
            try:
                json.dumps(value)
            except (TypeError, ValueError):
                value = repr(value)
            payload[name] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def _formatter(json_logs: bool) -> logging.Formatter:
    if json_logs:
        return _JsonFormatter()
    # 2025-01-01T00:00:00+0000 INFO async_refetch.coordinator operation failed
    return logging.Formatter(
        fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S%z",
    )


def _find_handler(root: logging.Logger) -> Optional[logging.Handler]:
    for handler in root.handlers:
        if handler.name == _HANDLER_NAME:
            return handler
    return None


def configure_logging(log_level: str = "INFO", json_logs: bool = False) -> None:
    """Configure application-wide logging.

    Parameters
    ----------
    log_level: str
        Root log level name; unknown names fall back to INFO.
    json_logs: bool
        Emit one-line JSON per record instead of plain text.
    """

    level = logging.getLevelName((log_level or "").upper())
    if not isinstance(level, int):
        level = logging.INFO

    root = logging.getLogger()
    handler = _find_handler(root)
    if handler is None:
        handler = logging.StreamHandler(stream=sys.stderr)
        handler.name = _HANDLER_NAME
        # stdout is reserved for the host application
        root.handlers = [
            h
            for h in root.handlers
            if not (isinstance(h, logging.StreamHandler) and h.stream is sys.stdout)
        ]
        root.addHandler(handler)
    handler.setFormatter(_formatter(json_logs))
    root.setLevel(level)

    noisy_level = logging.DEBUG if level <= logging.DEBUG else logging.WARNING
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(noisy_level)


def configure_from_settings(settings: Optional[Settings] = None) -> None:
    s = settings or Settings()
    configure_logging(s.LOG_LEVEL, json_logs=s.LOG_JSON)


__all__ = ["configure_logging", "configure_from_settings"]
