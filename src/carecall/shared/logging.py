"""
JSON-lines logging.

Each record is one JSON object. Fields passed through ``extra=`` become
top-level keys, and the provider call id of the webhook being handled is
attached as ``correlation_id`` so a whole call can be followed in the logs.
"""

import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any

from carecall.config import get_settings

# Set by the telephony webhooks for the duration of a request.
correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)

# Attributes every LogRecord carries; anything else came from ``extra=``.
_STANDARD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {
    "message",
    "asctime",
}

_NOISY_LOGGERS = ("httpx", "httpcore", "python_multipart", "python_multipart.multipart")


class StructuredFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        call_id = correlation_id_var.get()
        if call_id:
            entry["correlation_id"] = call_id

        for key, value in vars(record).items():
            if key in _STANDARD_ATTRS:
                continue
            entry[f"extra_{key}" if key in entry else key] = value

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        # Korean transcript fragments stay readable.
        return json.dumps(entry, default=str, ensure_ascii=False)


def _stdout_handler() -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter())
    return handler


def get_logger(name: str) -> logging.Logger:
    """Module logger with a JSON stdout handler, attached once.

    The level comes from ``LOG_LEVEL`` so modules imported before
    ``setup_logging`` still log at the configured verbosity.
    """
    logger = logging.getLogger(name)
    if not logger.handlers:
        logger.addHandler(_stdout_handler())
        logger.propagate = False
    logger.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())
    return logger


def setup_logging() -> None:
    """Route the root logger through the JSON formatter and quiet chatty libraries."""
    root = logging.getLogger()
    root.handlers = [_stdout_handler()]
    root.setLevel(get_settings().log_level.upper())

    # SQLALCHEMY_LOG_LEVEL=INFO opts back into statement logging.
    sqlalchemy_level = os.getenv("SQLALCHEMY_LOG_LEVEL", "").strip().upper() or "WARNING"
    for name in ("sqlalchemy.engine", "sqlalchemy.pool", "sqlalchemy.dialects"):
        logging.getLogger(name).setLevel(sqlalchemy_level)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
