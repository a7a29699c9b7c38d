"""
hello_temporal.core.logging
─────────────────────────────
Structured logs with levels, automatic context injection (trace_id, span_id
from the active OTel span, plus anything bound via contextvars), redaction,
and a single stdout sink. Log records from the Temporal and OpenTelemetry
SDKs go through the same formatter.

Minimal stack: structlog
Configure via: HELLO_LOG_LEVEL, HELLO_LOG_FORMAT=console|json
"""
from __future__ import annotations

import logging
import os
import sys
from typing import Any

import structlog
from opentelemetry import trace


# ── Processors ────────────────────────────────────────────────────────────────

_REDACT_KEYS = frozenset({
    "password", "secret", "token", "api_key", "apikey", "authorization",
    "private_key", "access_token", "ingestion_key", "signoz_ingestion_key",
    "signoz-ingestion-key", "tls_key",
})

_REDACTED = "[REDACTED]"


def _redact_processor(
    logger: Any, method: str, event_dict: dict
) -> dict:
    """Strip sensitive fields from log records before output."""
    for key in list(event_dict.keys()):
        if key.lower() in _REDACT_KEYS:
            event_dict[key] = _REDACTED
    return event_dict


def _trace_context_processor(
    logger: Any, method: str, event_dict: dict
) -> dict:
    """Attach the active span's ids so logs line up with traces."""
    ctx = trace.get_current_span().get_span_context()
    if ctx.is_valid:
        event_dict.setdefault("trace_id", format(ctx.trace_id, "032x"))
        event_dict.setdefault("span_id", format(ctx.span_id, "016x"))
    return event_dict


# ── Configuration ─────────────────────────────────────────────────────────────

_handler: logging.Handler | None = None


def configure_logging(level: str = "INFO", fmt: str = "console") -> None:
    """
    Configure structlog and the stdlib root logger. Safe to call again:
    the previously installed handler is replaced, never duplicated.
    """
    global _handler

    log_level = getattr(logging, level.upper(), logging.INFO)

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        _trace_context_processor,
        _redact_processor,
    ]

    if fmt.lower() == "json":
        renderer: Any = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    if _handler is not None:
        root_logger.removeHandler(_handler)
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level)
    _handler = handler


# ── Public API ────────────────────────────────────────────────────────────────

def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """
    Return a structured logger bound to the given name.

    Usage:
        log = get_logger(__name__)
        log.info("worker.connected", address="localhost:7233")
    """
    if _handler is None:
        configure_logging(
            os.getenv("HELLO_LOG_LEVEL", "INFO"),
            os.getenv("HELLO_LOG_FORMAT", "console"),
        )
    return structlog.get_logger(name or __name__)


def bind_context(**kwargs: Any) -> None:
    """
    Bind key-value pairs to the current async/thread context.
    All subsequent log calls in this context will include these fields.
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    """Clear all context-bound log fields."""
    structlog.contextvars.clear_contextvars()


__all__ = ["configure_logging", "get_logger", "bind_context", "clear_context"]
