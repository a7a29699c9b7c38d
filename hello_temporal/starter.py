"""
hello_temporal.starter
────────────────────────
Workflow starter: executes the configured workflow once and reports the
outcome through spans, metrics and logs.

Span layout (when HELLO_MANUAL_SPANS is on):

    StartWorkflow
    ├── StartWorkflow:<WorkflowType>
    └── ExecuteWorkflow

Failure policy (HELLO_FAILURE_POLICY): ``raise`` re-raises the workflow
error and the process exits 1; ``continue`` records the error and exits 0.

Run:  hello-starter
"""
from __future__ import annotations

import asyncio
import sys
import uuid
from datetime import timedelta
from typing import Any

from opentelemetry import trace
from opentelemetry.trace import Tracer
from pydantic import ValidationError
from temporalio import exceptions as temporal_exceptions
from temporalio.client import Client, WorkflowFailureError

from hello_temporal.core.config import AppConfig, get_config
from hello_temporal.core.errors import HelloTemporalError
from hello_temporal.core.logging import bind_context, configure_logging, get_logger
from hello_temporal.orchestration.connection import connect_client
from hello_temporal.orchestration.workflows import GreetingRequest
from hello_temporal.telemetry.bootstrap import TelemetryContext, init_telemetry
from hello_temporal.telemetry.metrics import WorkflowMetrics
from hello_temporal.telemetry.tracing import detached_span, set_status_attributes, span

log = get_logger(__name__)


def new_workflow_id() -> str:
    return f"hello-world-{uuid.uuid4()}"


class WorkflowStarter:
    """
    Runs one workflow execution with the starter spans around it.

    Args:
        client:    Connected Temporal client (anything with ``start_workflow``).
        config:    Application config.
        telemetry: Running TelemetryContext.
        metrics:   WorkflowMetrics for the outcome counters. Created from
                   ``telemetry`` when omitted.
    """

    def __init__(
        self,
        client: Client,
        config: AppConfig,
        telemetry: TelemetryContext,
        metrics: WorkflowMetrics | None = None,
    ) -> None:
        self._client = client
        self._config = config
        self._telemetry = telemetry
        self._metrics = metrics or WorkflowMetrics(telemetry)

    @property
    def tracer(self) -> Tracer:
        if not self._config.manual_spans:
            return trace.NoOpTracer()
        return self._telemetry.tracer

    def workflow_arg(self, workflow_type: str, value: str) -> Any:
        if workflow_type == "GreetingWorkflow":
            return GreetingRequest(name=value, style=self._config.greeting_style)
        return value

    async def run(
        self,
        workflow_type: str | None = None,
        value: str | None = None,
        workflow_id: str | None = None,
    ) -> str | None:
        """
        Execute ``workflow_type`` with ``value`` and return its result.

        Returns None when the workflow failed and the failure policy is
        ``continue``.
        """
        config = self._config
        workflow_type = workflow_type or config.workflow_type
        value = config.workflow_input if value is None else value
        workflow_id = workflow_id or new_workflow_id()
        attrs = {
            "workflow.id": workflow_id,
            "workflow.name": workflow_type,
            "workflow.task_queue": config.task_queue,
            "service.name": config.service_name,
            "temporal.component": "starter",
        }

        with span(self.tracer, "StartWorkflow", attributes={
            "workflow.type": "temporal",
            "service.name": config.service_name,
            "temporal.component": "starter",
        }) as start_span:
            start_span.set_attributes({**attrs, "workflow.input": value})
            self._metrics.record_execution(workflow_type, "started")
            log.info("starter.starting", workflow_id=workflow_id, workflow_type=workflow_type)

            try:
                return await self._execute(workflow_type, value, workflow_id, attrs)
            except Exception as exc:
                self._metrics.record_execution(workflow_type, "failed")
                log.error(
                    "starter.workflow_failed",
                    workflow_id=workflow_id,
                    workflow_type=workflow_type,
                    error=str(exc),
                )
                if config.failure_policy == "raise":
                    raise
                return None

    async def _execute(
        self, workflow_type: str, value: str, workflow_id: str, attrs: dict[str, str]
    ) -> str:
        tracer = self.tracer
        span_attrs = {**attrs, "temporal.workflow.type": workflow_type}

        with detached_span(tracer, f"StartWorkflow:{workflow_type}", attributes=span_attrs) as wf_span, \
                span(tracer, "ExecuteWorkflow", attributes=span_attrs) as exec_span:
            set_status_attributes(exec_span, "starting")
            handle = await self._client.start_workflow(
                workflow_type,
                self.workflow_arg(workflow_type, value),
                id=workflow_id,
                task_queue=self._config.task_queue,
                execution_timeout=timedelta(seconds=self._config.workflow_execution_timeout_s),
            )
            run_id = handle.result_run_id or ""
            try:
                result = await handle.result()
            except Exception as exc:
                self._record_outcome(exc, workflow_type, workflow_id, run_id)
                raise

            self._record_outcome(None, workflow_type, workflow_id, run_id)
            self._metrics.record_execution(workflow_type, "completed")
            for s in (exec_span, wf_span):
                set_status_attributes(s, "completed", **{"workflow.result": str(result)})
            log.info("starter.workflow_completed", workflow_id=workflow_id, result=result)
            return result

    def _record_outcome(
        self, exc: BaseException | None, workflow_type: str, workflow_id: str, run_id: str
    ) -> None:
        record = self._metrics.record_success
        if exc is not None:
            cause = exc.cause if isinstance(exc, WorkflowFailureError) else exc
            if isinstance(cause, temporal_exceptions.TimeoutError):
                record = self._metrics.record_timeout
            elif isinstance(cause, temporal_exceptions.TerminatedError):
                record = self._metrics.record_termination
            elif isinstance(cause, temporal_exceptions.CancelledError):
                record = self._metrics.record_cancellation
            else:
                record = self._metrics.record_failure
        record(workflow_type, workflow_id, run_id, self._config.temporal_namespace)


# ── Entry point ───────────────────────────────────────────────────────────────

async def run_starter(config: AppConfig) -> int:
    """Connect, execute one workflow, flush telemetry. Returns the exit code."""
    bind_context(component="starter", task_queue=config.task_queue)
    telemetry = init_telemetry(config)
    code = 0
    try:
        client = await connect_client(config, telemetry)
        result = await WorkflowStarter(client, config, telemetry).run()
        if result is not None:
            log.info("starter.result", result=result)
    except HelloTemporalError as exc:
        log.error("starter.failed", code=exc.code, error=exc.detail)
        code = exc.exit_code
    except Exception as exc:
        log.error("starter.failed", error=str(exc), error_type=type(exc).__name__)
        code = 1
    finally:
        await telemetry.force_flush()
        await telemetry.shutdown()
    return code


def main() -> None:
    try:
        config = get_config()
    except ValidationError as exc:
        configure_logging()
        log.error("config.invalid", error=str(exc))
        sys.exit(1)
    configure_logging(config.log_level, config.log_format)
    sys.exit(asyncio.run(run_starter(config)))


if __name__ == "__main__":
    main()
