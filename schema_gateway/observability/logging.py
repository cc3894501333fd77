"""Structured logging configuration for the gateway."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from logging import Logger

from flask import Flask

DEFAULT_LOGGER_NAME = "schema_gateway"

# Attributes every LogRecord carries; anything else arrived through ``extra``.
_RESERVED_ATTRIBUTES = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None)).keys()
) | {"message", "asctime", "taskName"}


class JsonFormatter(logging.Formatter):
    """Render log records as single-line JSON documents."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401 - obvious
        payload: dict[str, object] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack"] = self.formatStack(record.stack_info)

        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRIBUTES or key in payload or key.startswith("_"):
                continue
            payload[key] = value

        return json.dumps(
            payload,
            separators=(",", ":"),
            sort_keys=True,
            ensure_ascii=False,
            default=str,
        )


def resolve_log_level(name: str | None) -> int:
    level = logging.getLevelName(str(name or "INFO").upper())
    return level if isinstance(level, int) else logging.INFO


def configure_structured_logging(app: Flask) -> Logger:
    """Attach a JSON stream handler to the application logger."""

    logger_name = app.config.get("LOGGER_NAME", DEFAULT_LOGGER_NAME)
    logger = logging.getLogger(logger_name)
    logger.setLevel(resolve_log_level(app.config.get("LOG_LEVEL")))
    logger.handlers = []

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)

    logger.propagate = False
    app.logger = logger
    return logger
