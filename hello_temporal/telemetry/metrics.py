"""
hello_temporal.telemetry.metrics
──────────────────────────────────
Workflow and service counters feeding the Temporal dashboard, plus the
optional periodic emitter that fills the dashboard with sample data during
development.

All instruments are monotonic counters created lazily from the
TelemetryContext's meter. There is no decrement or reset at this API.

Usage:
    wf_metrics = WorkflowMetrics(telemetry)
    wf_metrics.record_success("HelloWorldWorkflow", wf_id, run_id, "default")

    handle = register_dashboard_metrics(wf_metrics, initial_delay_ms=1000, interval_ms=5000)
    ...
    handle.cancel()
"""
from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from opentelemetry.metrics import Counter

from hello_temporal.core.logging import get_logger

if TYPE_CHECKING:
    from hello_temporal.telemetry.bootstrap import TelemetryContext

log = get_logger(__name__)

# Label names shared with the dashboard queries
WORKFLOW_TYPE = "workflow_type"
WORKFLOW_ID = "workflow_id"
RUN_ID = "run_id"
NAMESPACE = "namespace"
OPERATION = "operation"
SERVICE_TYPE = "temporal_service_type"
ERROR_TYPE = "error_type"

# name → (description, unit)
COUNTERS: dict[str, tuple[str, str]] = {
    "workflow_success": ("Count of successfully completed workflow executions", "{execution}"),
    "workflow_failed": ("Count of failed workflow executions", "{execution}"),
    "workflow_timeout": ("Count of timed out workflow executions", "{execution}"),
    "workflow_terminate": ("Count of terminated workflow executions", "{execution}"),
    "workflow_cancel": ("Count of canceled workflow executions", "{execution}"),
    "service_requests": ("Count of service requests", "{request}"),
    "service_errors": ("Count of service errors", "{error}"),
    "service_error_with_type": ("Count of service errors with type", "{error}"),
    "restarts": ("Count of service restarts", "{restart}"),
    "schedule_to_start_timeout": ("Count of schedule to start timeouts", "{timeout}"),
    "start_to_close_timeout": ("Count of start to close timeouts", "{timeout}"),
    "workflow.executions": ("Number of workflow executions", "{execution}"),
}

DASHBOARD_WORKFLOW_TYPES = ("HelloWorldWorkflow", "GreetingWorkflow", "ProcessingWorkflow")

ACTIVITY_TASK_OPERATIONS = (
    "AddActivityTask",
    "RecordActivityTaskStarted",
    "RespondActivityTaskCompleted",
    "RespondActivityTaskFailed",
    "RespondActivityTaskCanceled",
)

WORKFLOW_TASK_OPERATIONS = (
    "AddWorkflowTask",
    "RecordWorkflowTaskStarted",
    "RespondWorkflowTaskCompleted",
    "RespondWorkflowTaskFailed",
    "TimerActiveTaskWorkflowTimeout",
)

ERROR_OPERATIONS = ("AddActivityTask", "RecordActivityTaskStarted", "RespondActivityTaskCompleted")
ERROR_TYPES = ("validation", "timeout", "business_rule", "system")


class WorkflowMetrics:
    """Dashboard counters bound to one TelemetryContext."""

    def __init__(self, telemetry: "TelemetryContext") -> None:
        self._telemetry = telemetry
        self._counters: dict[str, Counter] = {}

    def counter(self, name: str) -> Counter:
        """Return the named counter, creating it on first use."""
        if name not in self._counters:
            description, unit = COUNTERS[name]
            self._counters[name] = self._telemetry.meter.create_counter(
                name, unit=unit, description=description
            )
        return self._counters[name]

    def cleanup(self) -> None:
        """Drop cached instruments. The next record call creates fresh ones."""
        if self._counters:
            log.info("metrics.cleanup", counters=len(self._counters))
        self._counters.clear()

    # ── Workflow outcomes ─────────────────────────────────────────────────────

    def _record_workflow(
        self, name: str, workflow_type: str, workflow_id: str, run_id: str, namespace: str
    ) -> None:
        self.counter(name).add(1, {
            WORKFLOW_TYPE: workflow_type,
            WORKFLOW_ID: workflow_id,
            RUN_ID: run_id,
            NAMESPACE: namespace,
        })

    def record_success(self, workflow_type: str, workflow_id: str, run_id: str, namespace: str) -> None:
        self._record_workflow("workflow_success", workflow_type, workflow_id, run_id, namespace)

    def record_failure(self, workflow_type: str, workflow_id: str, run_id: str, namespace: str) -> None:
        self._record_workflow("workflow_failed", workflow_type, workflow_id, run_id, namespace)

    def record_timeout(self, workflow_type: str, workflow_id: str, run_id: str, namespace: str) -> None:
        self._record_workflow("workflow_timeout", workflow_type, workflow_id, run_id, namespace)

    def record_termination(self, workflow_type: str, workflow_id: str, run_id: str, namespace: str) -> None:
        self._record_workflow("workflow_terminate", workflow_type, workflow_id, run_id, namespace)

    def record_cancellation(self, workflow_type: str, workflow_id: str, run_id: str, namespace: str) -> None:
        self._record_workflow("workflow_cancel", workflow_type, workflow_id, run_id, namespace)

    # ── Service operations ────────────────────────────────────────────────────

    def record_service_request(self, operation: str) -> None:
        self.counter("service_requests").add(1, {OPERATION: operation})

    def record_service_error(self, operation: str, error_type: str | None = None) -> None:
        self.counter("service_errors").add(1, {OPERATION: operation})
        if error_type:
            self.counter("service_error_with_type").add(1, {
                OPERATION: operation,
                ERROR_TYPE: error_type,
            })

    def record_service_restart(self, service_type: str) -> None:
        self.counter("restarts").add(1, {SERVICE_TYPE: service_type})

    def record_schedule_to_start_timeout(self, operation: str) -> None:
        self.counter("schedule_to_start_timeout").add(1, {OPERATION: operation})

    def record_start_to_close_timeout(self, operation: str) -> None:
        self.counter("start_to_close_timeout").add(1, {OPERATION: operation})

    def record_error_with_type(self, error_type: str) -> None:
        self.record_service_error("ErrorWithType", error_type)

    def record_execution(self, workflow: str, status: str) -> None:
        """Starter-side execution counter: status is started, completed or failed."""
        self.counter("workflow.executions").add(1, {"workflow": workflow, "status": status})


# ── Dashboard sample data ─────────────────────────────────────────────────────

def emit_dashboard_sample(
    wf_metrics: WorkflowMetrics,
    workflow_id: str = "sample-workflow-id",
    run_id: str = "sample-run-id",
    namespace: str = "default",
) -> None:
    """Record one round of every dashboard series for each sample workflow type."""
    for workflow_type in DASHBOARD_WORKFLOW_TYPES:
        wf_metrics.record_success(workflow_type, f"{workflow_id}-success", run_id, namespace)
        wf_metrics.record_failure(workflow_type, f"{workflow_id}-failure", run_id, namespace)
        wf_metrics.record_timeout(workflow_type, f"{workflow_id}-timeout", run_id, namespace)
        wf_metrics.record_termination(workflow_type, f"{workflow_id}-termination", run_id, namespace)
        wf_metrics.record_cancellation(workflow_type, f"{workflow_id}-cancellation", run_id, namespace)

        for operation in ACTIVITY_TASK_OPERATIONS + WORKFLOW_TASK_OPERATIONS:
            wf_metrics.record_service_request(operation)
        for operation in ERROR_OPERATIONS:
            wf_metrics.record_service_error(operation)
        for error_type in ERROR_TYPES:
            wf_metrics.record_error_with_type(error_type)

        wf_metrics.record_schedule_to_start_timeout("workflow")
        wf_metrics.record_start_to_close_timeout("workflow")

    wf_metrics.record_service_restart("worker")
    wf_metrics.record_service_restart("frontend")
    log.debug("metrics.dashboard_sample", workflow_id=workflow_id, namespace=namespace)


class DashboardMetricsHandle:
    """Owns the periodic emitter task. Keep it and call cancel() on shutdown."""

    def __init__(self, task: asyncio.Task) -> None:
        self._task = task

    @property
    def active(self) -> bool:
        return not self._task.done()

    def cancel(self) -> None:
        if self._task.done():
            return
        self._task.cancel()
        log.info("metrics.dashboard_stopped")


async def _dashboard_loop(
    wf_metrics: WorkflowMetrics,
    initial_delay_s: float,
    interval_s: float,
    namespace: str,
) -> None:
    await asyncio.sleep(initial_delay_s)
    while True:
        try:
            emit_dashboard_sample(wf_metrics, namespace=namespace)
        except Exception as exc:
            log.warning("metrics.dashboard_emit_failed", error=str(exc))
        await asyncio.sleep(interval_s)


def register_dashboard_metrics(
    wf_metrics: WorkflowMetrics,
    *,
    initial_delay_ms: int = 1000,
    interval_ms: int = 5000,
    namespace: str = "default",
) -> DashboardMetricsHandle:
    """
    Record a worker restart, then emit dashboard samples after
    ``initial_delay_ms`` and every ``interval_ms`` after that. Must be called
    from inside a running event loop.
    """
    log.info(
        "metrics.dashboard_registered",
        interval_ms=interval_ms,
        initial_delay_ms=initial_delay_ms,
    )
    wf_metrics.record_service_restart("worker")
    task = asyncio.get_running_loop().create_task(
        _dashboard_loop(wf_metrics, initial_delay_ms / 1000, interval_ms / 1000, namespace),
        name="dashboard-metrics",
    )
    return DashboardMetricsHandle(task)


__all__ = [
    "WorkflowMetrics",
    "DashboardMetricsHandle",
    "register_dashboard_metrics",
    "emit_dashboard_sample",
    "COUNTERS",
]
