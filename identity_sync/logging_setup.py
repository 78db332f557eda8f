"""Process-wide logging configuration with request correlation ids."""
from __future__ import annotations
import logging
import sys

from flask import g, has_request_context

CORRELATION_HEADER = "X-Correlation-Id"
LOG_FORMAT = "%(asctime)s %(levelname)-7s [%(correlation_id)s] %(name)s: %(message)s"

_HANDLER_NAME = "identity-sync"


def current_correlation_id() -> str:
    """Correlation id of the current Flask request, or "-" outside a request."""
    if has_request_context():
        return g.get("correlation_id", "-")
    return "-"


class CorrelationIdFilter(logging.Filter):
    """Stamps every record with ``correlation_id`` so the format can use it."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "correlation_id"):
            record.correlation_id = current_correlation_id()
        return True


def configure_logging(level: str | int = "INFO") -> logging.Logger:
    """Install one stream handler on the root logger (idempotent)."""
    root = logging.getLogger()
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    root.setLevel(level)

    for handler in root.handlers:
        if handler.get_name() == _HANDLER_NAME:
            return root

    handler = logging.StreamHandler(sys.stderr)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(CorrelationIdFilter())
    root.addHandler(handler)
    return root
