"""Structured JSON logging for the Codex gateway.

Every line is one JSON object on stdout, optionally mirrored to a file that
rolls over at midnight (AUDIT_LOG_FILE, LOG_RETENTION_DAYS). Records carry the
id of the request being served, and latency fields come from ``RequestTimer``.
"""

import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from logging.handlers import TimedRotatingFileHandler

from codex_gateway.config.settings import Settings, get_settings

LOGGER_NAME = "gateway.audit"

# Caller-supplied ids longer than this are cut before use
MAX_REQUEST_ID_LENGTH = 64

# Set by the request middleware for the lifetime of one request
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

_RESERVED_FIELDS = frozenset({"timestamp", "level", "logger", "message", "request_id"})


class JSONFormatter(logging.Formatter):
    """One JSON object per record; ``extra={"audit_data": {...}}`` adds fields."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        request_id = getattr(record, "request_id", "") or request_id_var.get("")
        if request_id:
            log_entry["request_id"] = request_id

        for key, value in getattr(record, "audit_data", {}).items():
            if key not in _RESERVED_FIELDS:
                log_entry[key] = value.elapsed_ms if isinstance(value, RequestTimer) else value

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


def setup_logging(settings: Settings | None = None) -> logging.Logger:
    """(Re)configure the gateway logger. Safe to call more than once."""
    settings = settings or get_settings()

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
    for handler in logger.handlers:
        handler.close()
    logger.handlers.clear()

    formatter = JSONFormatter()
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if settings.audit_log_file:
        handlers.append(TimedRotatingFileHandler(
            settings.audit_log_file,
            when="midnight",
            backupCount=settings.log_retention_days,
            encoding="utf-8",
        ))
    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    logger.propagate = False
    return logger


def get_audit_logger() -> logging.Logger:
    return logging.getLogger(LOGGER_NAME)


def generate_request_id() -> str:
    return uuid.uuid4().hex[:12]


def inherit_request_id(header_value: str | None) -> str:
    """Reuse the caller's X-Request-Id when it can be sent on as a header.

    The id is copied into the upstream request, so anything that is not
    printable ASCII is replaced with a fresh one.
    """
    rid = (header_value or "").strip()[:MAX_REQUEST_ID_LENGTH]
    if rid and rid.isascii() and rid.isprintable():
        return rid
    return generate_request_id()


class RequestTimer:
    """Measures latency; pass it in ``audit_data`` to log ``elapsed_ms``."""

    def __init__(self):
        self.start_time: float = 0
        self.end_time: float | None = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        self.end_time = None
        return self

    def __exit__(self, *args):
        self.end_time = time.perf_counter()

    @property
    def elapsed_ms(self) -> float:
        end = self.end_time if self.end_time is not None else time.perf_counter()
        return round((end - self.start_time) * 1000, 2)
