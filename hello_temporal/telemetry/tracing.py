"""
hello_temporal.telemetry.tracing
──────────────────────────────────
Span helpers used by the manual Temporal-style spans (``StartWorkflow``,
``ExecuteWorkflow``, ``RunWorkflow:<type>``). Every span opened here is ended
on every exit path; on an exception the error is recorded on the span, its
status set to ERROR, and the exception re-raised unchanged.
"""
from __future__ import annotations

from contextlib import contextmanager
from typing import Generator, Mapping

from opentelemetry import trace
from opentelemetry.trace import Span, SpanKind, Status, StatusCode
from opentelemetry.util.types import AttributeValue

WORKFLOW_STATUS = "workflow.status"
TEMPORAL_STATUS = "temporal.status"


def mark_error(s: Span, exc: BaseException) -> None:
    """Record ``exc`` on ``s`` and flag the span as failed."""
    s.record_exception(exc)
    s.set_status(Status(StatusCode.ERROR, str(exc)))
    s.set_attributes({
        WORKFLOW_STATUS: "error",
        TEMPORAL_STATUS: "error",
        "error.message": str(exc),
    })


def set_status_attributes(s: Span, status: str, **extra: AttributeValue) -> None:
    """Mirror a lifecycle status onto both the workflow and temporal attributes."""
    s.set_attributes({WORKFLOW_STATUS: status, TEMPORAL_STATUS: status, **extra})


@contextmanager
def span(
    tracer: trace.Tracer,
    name: str,
    *,
    kind: SpanKind = SpanKind.INTERNAL,
    attributes: Mapping[str, AttributeValue] | None = None,
) -> Generator[Span, None, None]:
    """
    Start ``name`` as the current span for the block.

    Usage::

        with span(telemetry.tracer, "StartWorkflow", attributes={"workflow.id": wf_id}) as s:
            result = await client.execute_workflow(...)
    """
    with tracer.start_as_current_span(
        name,
        kind=kind,
        attributes=dict(attributes or {}),
        record_exception=False,
        set_status_on_exception=False,
    ) as s:
        try:
            yield s
        except Exception as exc:
            mark_error(s, exc)
            raise


@contextmanager
def detached_span(
    tracer: trace.Tracer,
    name: str,
    *,
    kind: SpanKind = SpanKind.INTERNAL,
    attributes: Mapping[str, AttributeValue] | None = None,
) -> Generator[Span, None, None]:
    """
    Like :func:`span`, but the span does not become current: work inside the
    block keeps its existing parent. Used for sibling spans that only mirror
    an operation name.
    """
    s = tracer.start_span(name, kind=kind, attributes=dict(attributes or {}))
    try:
        yield s
    except Exception as exc:
        mark_error(s, exc)
        raise
    finally:
        s.end()


__all__ = [
    "span",
    "detached_span",
    "mark_error",
    "set_status_attributes",
    "WORKFLOW_STATUS",
    "TEMPORAL_STATUS",
]
