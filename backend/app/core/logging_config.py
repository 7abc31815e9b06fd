"""
Structured logging configuration.

Provides:
    • JSON-formatted logs for production (one object per line)
    • Coloured console logs for development, with short entity tags
    • Request-scoped context: request id, method, endpoint and the calling user

Every alerting log line can carry the ids it is about (``alert_id``,
``sms_alert_id``, ``pin_id``, ``user_id``) and the counters of the step that
produced it (recipients, SMS successes/failures, live connections). Pass them
through ``extra=`` and both formatters pick them up.

Usage:
    from backend.app.core.logging_config import setup_logging, get_logger

    setup_logging()
    logger = get_logger(__name__)
    logger.info("Alert created", extra={"alert_id": alert.id, "recipient_count": 12})
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from backend.app.core.config import settings

# ── Request-scoped context ──
_request_context: ContextVar[Dict[str, Any]] = ContextVar(
    "request_context", default={}
)

# Entity ids, keyed by record attribute → short tag used on the console
ENTITY_FIELDS: Dict[str, str] = {
    "alert_id": "alert",
    "sms_alert_id": "sms",
    "pin_id": "pin",
    "user_id": "user",
}

# Counters and request facts, keyed by record attribute → console label
METRIC_FIELDS: Dict[str, str] = {
    "recipient_count": "recipients",
    "success_count": "ok",
    "failure_count": "failed",
    "delivery_status": "status",
    "connection_count": "clients",
    "event_type": "event",
    "status_code": "http",
    "duration_ms": "ms",
    "endpoint": "endpoint",
}

STRUCTURED_FIELDS = tuple(ENTITY_FIELDS) + tuple(METRIC_FIELDS)


def bind_request_context(**fields: Any) -> Token:
    """
    Start a request context; ``None`` values are dropped.

    Returns the token to hand back to ``reset_request_context`` once the
    request is finished.
    """
    return _request_context.set({k: v for k, v in fields.items() if v is not None})


def reset_request_context(token: Token) -> None:
    _request_context.reset(token)


def get_request_context() -> Dict[str, Any]:
    return _request_context.get()


def extract_fields(record: logging.LogRecord) -> Dict[str, Dict[str, Any]]:
    """Split the structured extras on ``record`` into entity ids and metrics."""
    entities = {
        key: getattr(record, key) for key in ENTITY_FIELDS if hasattr(record, key)
    }
    metrics = {
        key: getattr(record, key) for key in METRIC_FIELDS if hasattr(record, key)
    }
    return {"entities": entities, "metrics": metrics}


def _short(value: Any) -> str:
    text = str(value)
    return text[:8] if len(text) > 12 else text


# ── JSON Formatter (Production) ──

class JSONFormatter(logging.Formatter):
    """One JSON object per line: message, request context, entity ids, metrics."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        ctx = get_request_context()
        if ctx:
            log_entry["request"] = dict(ctx)

        fields = extract_fields(record)
        # ids at top level so log queries can filter on alert_id directly
        log_entry.update(fields["entities"])
        if fields["metrics"]:
            log_entry["metrics"] = fields["metrics"]

        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = {
                "type": type(record.exc_info[1]).__name__,
                "message": str(record.exc_info[1]),
            }

        return json.dumps(log_entry, default=str)


# ── Pretty Formatter (Development) ──

class PrettyFormatter(logging.Formatter):
    """
    Console format for local development:

        14:02:11 INFO     [3f9a1c2e user=5d1e0a77] alert_service: Alert ... | alert=9c2f... recipients=12
    """

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, use_color: Optional[bool] = None):
        super().__init__()
        self.use_color = sys.stdout.isatty() if use_color is None else use_color

    def _paint(self, levelname: str, text: str) -> str:
        if not self.use_color:
            return text
        return f"{self.COLORS.get(levelname, '')}{text}{self.RESET}"

    def format(self, record: logging.LogRecord) -> str:
        ts = self.formatTime(record, "%H:%M:%S")
        head = self._paint(record.levelname, f"{ts} {record.levelname:8s}")

        ctx = get_request_context()
        ctx_parts = []
        if ctx.get("request_id"):
            ctx_parts.append(str(ctx["request_id"])[:8])
        if ctx.get("user_id"):
            ctx_parts.append(f"user={_short(ctx['user_id'])}")
        ctx_str = f" [{' '.join(ctx_parts)}]" if ctx_parts else ""

        fields = extract_fields(record)
        tags = [
            f"{ENTITY_FIELDS[key]}={_short(value)}"
            for key, value in fields["entities"].items()
            # the caller is already shown in the context block
            if not (key == "user_id" and value == ctx.get("user_id"))
        ]
        tags += [
            f"{METRIC_FIELDS[key]}={value:.1f}" if isinstance(value, float)
            else f"{METRIC_FIELDS[key]}={value}"
            for key, value in fields["metrics"].items()
            if key not in ("endpoint", "duration_ms", "status_code")
        ]
        tail = f" | {' '.join(tags)}" if tags else ""

        name = record.name.rsplit(".", 1)[-1]
        formatted = f"{head}{ctx_str} {name}: {record.getMessage()}{tail}"

        if record.exc_info and record.exc_info[1]:
            formatted += f"\n  {type(record.exc_info[1]).__name__}: {record.exc_info[1]}"

        return formatted


# ── Setup ──

def setup_logging() -> None:
    """Install one stdout handler on the root logger; safe to call twice."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if settings.is_production else PrettyFormatter())
    root.addHandler(handler)

    # Request lines come from RequestLoggingMiddleware; SMS gateway calls are
    # logged by the transport with masked numbers.
    for noisy in ("uvicorn.access", "httpx", "httpcore", "aiosqlite"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
    if not settings.DATABASE_ECHO:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
