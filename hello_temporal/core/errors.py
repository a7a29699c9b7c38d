"""
hello_temporal.core.errors
────────────────────────────
Error taxonomy for failures this application detects itself. Raising a
HelloTemporalError records it on the active OTel span (exception event plus
ERROR status).

SDK errors (Temporal connect/workflow failures, OTLP export errors) are not
part of this taxonomy and are never wrapped: callers log them with context
and re-raise them as-is.
"""
from __future__ import annotations

from typing import Any

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode


class HelloTemporalError(Exception):
    """
    Base class for application errors. Every error has:
    - code: stable machine-readable string (snake_case)
    - detail: human-readable context for logs
    - exit_code: process exit code when the error escapes an entry point
    """

    code: str = "internal_error"
    exit_code: int = 1

    def __init__(
        self,
        detail: str = "An unexpected error occurred.",
        code: str | None = None,
        **metadata: Any,
    ) -> None:
        self.code = code or self.__class__.code
        self.detail = detail
        self.metadata = metadata
        super().__init__(detail)
        _capture(self)

    def to_dict(self) -> dict:
        return {"error": {"code": self.code, "message": self.detail, **self.metadata}}


class ConfigurationError(HelloTemporalError):
    """Misconfiguration detected at startup (e.g. missing TLS material)."""
    code = "configuration_error"


class PreflightError(HelloTemporalError):
    """A critical dependency check failed before any work was attempted."""
    code = "preflight_failed"


def _capture(error: HelloTemporalError) -> None:
    span = trace.get_current_span()
    if not span.is_recording():
        return
    span.record_exception(error, attributes={"error.code": error.code})
    span.set_status(Status(StatusCode.ERROR, str(error)))


__all__ = ["HelloTemporalError", "ConfigurationError", "PreflightError"]
