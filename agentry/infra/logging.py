"""Logging helpers for agentry.

All modules log through children of the ``agentry`` logger
(``agentry.executor``, ``agentry.dispatcher``, ...).  The library never
configures handlers on import; call :func:`configure_logging` to opt in.

Structured payloads can be attached to a record with
``extra={"agentry_data": {...}}``; :class:`JSONFormatter` renders them under
the ``data`` key.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

_ROOT_LOGGER = "agentry"


class JSONFormatter(logging.Formatter):
    """Render log records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        data = getattr(record, "agentry_data", None)
        if data is not None:
            payload["data"] = data
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(
    level: int | str = logging.WARNING,
    *,
    json_format: bool = False,
    handler: logging.Handler | None = None,
) -> logging.Logger:
    """Attach a handler to the ``agentry`` logger and set its level.

    Calling this repeatedly with the same *handler* does not attach it twice.
    When no handler is given a ``StreamHandler`` is used, replacing one that
    a previous call installed.

    Args:
        level: Logging level (int or name).
        json_format: Use :class:`JSONFormatter` instead of a plain text format.
        handler: Custom handler to attach.

    Returns:
        The configured ``agentry`` logger.
    """
    logger = logging.getLogger(_ROOT_LOGGER)
    logger.setLevel(level)

    if handler is None:
        for existing in list(logger.handlers):
            if getattr(existing, "_agentry_default", False):
                logger.removeHandler(existing)
        handler = logging.StreamHandler()
        handler._agentry_default = True  # type: ignore[attr-defined]

    if json_format:
        handler.setFormatter(JSONFormatter())
    elif handler.formatter is None:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))

    if handler not in logger.handlers:
        logger.addHandler(handler)
    return logger


def configure_from_settings() -> logging.Logger:
    """Apply ``log_level`` and ``log_json`` from :mod:`agentry.infra.settings`."""
    from .settings import settings

    return configure_logging(settings.log_level, json_format=settings.log_json)
