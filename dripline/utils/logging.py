"""
Structured JSON logging with correlation IDs.

Each record is emitted as one JSON line carrying the correlation ID of the
webhook request (or worker cycle) that produced it. Correlation IDs live in a
contextvar so concurrent event-recording tasks inherit their request's ID.
"""
import json
import logging
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Mapping, Optional

correlation_id_ctx: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

# Extra attributes copied onto the JSON line when passed via `extra=`
CONTEXT_KEYS = ("tenant_id", "campaign_id", "provider", "delivery_id", "event_id", "error_code")

# Never written to logs, even at DEBUG
SENSITIVE_HEADERS = frozenset({
    "x-webhook-signature",
    "authorization",
    "cookie",
})


def get_correlation_id() -> Optional[str]:
    return correlation_id_ctx.get()


def set_correlation_id(cid: str) -> None:
    correlation_id_ctx.set(cid)


def generate_correlation_id() -> str:
    """UUID4 hex, 32 chars."""
    return uuid.uuid4().hex


def sanitize_headers(headers: Mapping[str, object]) -> dict[str, object]:
    """Drop credential-bearing headers and collapse multi-valued ones."""
    sanitized: dict[str, object] = {}
    for name, value in headers.items():
        if name.lower() in SENSITIVE_HEADERS:
            continue
        if isinstance(value, (list, tuple)):
            sanitized[name] = f"[{len(value)} values]"
        else:
            sanitized[name] = value
    return sanitized


class StructuredJsonFormatter(logging.Formatter):
    """
    Formats log records as single-line JSON objects.

    {"timestamp": "...", "level": "INFO", "correlation_id": "...", "module": "...", "message": "...", "tenant_id": "..."}
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
            "level": record.levelname,
            "correlation_id": get_correlation_id(),
            "module": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)

        for key in CONTEXT_KEYS:
            val = getattr(record, key, None)
            if val is not None:
                log_entry[key] = val

        return json.dumps(log_entry, default=str)


def configure_structured_logging(log_level: str = "INFO") -> None:
    """
    Replace default logging with structured JSON logging.
    Call once at application startup before any log calls.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(StructuredJsonFormatter())
    root_logger.addHandler(stream_handler)

    for noisy in ("uvicorn.access", "sqlalchemy.engine", "httpcore", "httpx", "aiosqlite"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
