"""
hello_temporal.worker
───────────────────────
Long-running Temporal worker hosting every workflow and activity on the
configured task queue. Runs until SIGINT/SIGTERM, then stops the worker,
flushes telemetry and exits.

Span layout (when HELLO_MANUAL_SPANS is on), both open for the worker's
lifetime:

    ExecuteWorkflow
    └── RunWorkflow:HelloWorldWorkflow

Run:  hello-worker
"""
from __future__ import annotations

import asyncio
import sys
from typing import Any, Protocol

from opentelemetry import trace
from pydantic import ValidationError

from hello_temporal.core.config import AppConfig, get_config
from hello_temporal.core.errors import HelloTemporalError
from hello_temporal.core.logging import bind_context, configure_logging, get_logger
from hello_temporal.orchestration.connection import build_worker, connect_client
from hello_temporal.runtime.shutdown import ShutdownCoordinator
from hello_temporal.telemetry.bootstrap import init_telemetry
from hello_temporal.telemetry.metrics import WorkflowMetrics, register_dashboard_metrics
from hello_temporal.telemetry.tracing import set_status_attributes, span

log = get_logger(__name__)


class RunnableWorker(Protocol):
    async def run(self) -> Any: ...
    async def shutdown(self) -> Any: ...


async def run_until_shutdown(worker: RunnableWorker, coordinator: ShutdownCoordinator) -> None:
    """
    Run ``worker`` until a shutdown is requested, then stop it and wait for
    it to drain. A worker that fails on its own re-raises here.
    """
    run_task = asyncio.create_task(worker.run(), name="temporal-worker")
    stop_task = asyncio.create_task(coordinator.wait(), name="shutdown-wait")
    try:
        done, _ = await asyncio.wait({run_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
        if run_task in done:
            run_task.result()
            log.info("worker.stopped")
            return
        log.info("worker.stopping")
        await worker.shutdown()
        await run_task
        log.info("worker.stopped")
    finally:
        stop_task.cancel()


async def run_worker(config: AppConfig) -> int:
    """Worker process body. Returns the exit code."""
    bind_context(component="worker", task_queue=config.task_queue)
    telemetry = init_telemetry(config)
    coordinator = ShutdownCoordinator(telemetry, config.shutdown_timeout_ms)
    coordinator.install_signal_handlers()
    coordinator.install_exception_handler()

    wf_metrics = WorkflowMetrics(telemetry)
    coordinator.add_cleanup("metrics", wf_metrics.cleanup)
    tracer = telemetry.tracer if config.manual_spans else trace.NoOpTracer()
    base_attrs = {
        "service.name": config.service_name,
        "workflow.task_queue": config.task_queue,
        "temporal.component": "worker",
    }

    code = 0
    try:
        with span(tracer, "ExecuteWorkflow", attributes={**base_attrs, "worker.type": "temporal"}):
            client = await connect_client(config, telemetry)
            worker = build_worker(client, config, wf_metrics)

            if config.dashboard_metrics:
                handle = register_dashboard_metrics(
                    wf_metrics,
                    initial_delay_ms=config.dashboard_initial_delay_ms,
                    interval_ms=config.dashboard_interval_ms,
                    namespace=config.temporal_namespace,
                )
                coordinator.add_cleanup("dashboard-metrics", handle.cancel)

            with span(tracer, "RunWorkflow:HelloWorldWorkflow", attributes={
                **base_attrs,
                "workflow.name": "HelloWorldWorkflow",
                "workflow.type": "temporal",
                "temporal.workflow.type": "HelloWorldWorkflow",
            }) as run_span:
                set_status_attributes(run_span, "starting")
                log.info("worker.started", task_queue=config.task_queue)
                await run_until_shutdown(worker, coordinator)
                set_status_attributes(run_span, "completed")
    except HelloTemporalError as exc:
        log.error("worker.failed", code=exc.code, error=exc.detail)
        code = exc.exit_code
    except Exception as exc:
        log.error("worker.failed", error=str(exc), error_type=type(exc).__name__)
        code = 1

    return await coordinator.shutdown(code)


def main() -> None:
    try:
        config = get_config()
    except ValidationError as exc:
        configure_logging()
        log.error("config.invalid", error=str(exc))
        sys.exit(1)
    configure_logging(config.log_level, config.log_format)
    sys.exit(asyncio.run(run_worker(config)))


if __name__ == "__main__":
    main()
