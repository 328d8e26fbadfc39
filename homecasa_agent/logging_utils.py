"""Logging setup for the agent.

The add-on log viewer shows the container's stdout, so everything goes through
one root handler. In JSON mode, request context passed via `extra=` (see
`CONTEXT_FIELDS`) becomes top-level keys of the log object.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

from .config import LoggingConfig

PLAIN_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

CONTEXT_FIELDS = ("method", "path", "upstream_status", "elapsed_ms", "token_source")

# uvicorn installs its own handlers; they are cleared so one format applies.
_ROUTED_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")
# httpx logs every request at INFO, duplicating the agent's own upstream lines.
_QUIET_LOGGERS = ("httpx", "httpcore")


class JsonLogFormatter(logging.Formatter):
    """Format log records as JSON lines with request context fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                payload[name] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def _route_to_root(name: str, level: int) -> None:
    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.handlers.clear()
    logger.propagate = True


def library_log_level(level: int) -> int:
    """Level for HTTP client libraries: their chatter only shows when debugging."""
    if level <= logging.DEBUG:
        return level
    return max(level, logging.WARNING)


def setup_logging(cfg: LoggingConfig) -> None:
    """Configure the root logger from runtime configuration."""
    level = getattr(logging, cfg.level.upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(level)

    handler = logging.StreamHandler()
    if cfg.json_logs:
        handler.setFormatter(JsonLogFormatter())
    else:
        handler.setFormatter(logging.Formatter(PLAIN_FORMAT))

    root.handlers.clear()
    root.addHandler(handler)

    for name in _ROUTED_LOGGERS:
        _route_to_root(name, level)
    for name in _QUIET_LOGGERS:
        _route_to_root(name, library_log_level(level))
