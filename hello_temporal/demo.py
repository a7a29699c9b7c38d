"""
hello_temporal.demo
─────────────────────
One-shot demo: preflight checks, an in-process worker, a single workflow
execution through the starter, then a clean shutdown with telemetry flushed.

Needs a Temporal server (``temporal server start-dev``) unless TEMPORAL_HOST_URL
points at Temporal Cloud. A missing OTLP collector only produces a warning.

Run:  hello-demo
"""
from __future__ import annotations

import asyncio
import sys

from pydantic import ValidationError

from hello_temporal.core.config import AppConfig, get_config
from hello_temporal.core.errors import HelloTemporalError
from hello_temporal.core.logging import bind_context, configure_logging, get_logger
from hello_temporal.orchestration.connection import build_worker, connect_client
from hello_temporal.runtime.health import preflight
from hello_temporal.runtime.shutdown import ShutdownCoordinator
from hello_temporal.starter import WorkflowStarter
from hello_temporal.telemetry.bootstrap import init_telemetry
from hello_temporal.telemetry.metrics import WorkflowMetrics
from hello_temporal.worker import run_until_shutdown

log = get_logger(__name__)


async def run_demo(config: AppConfig) -> int:
    """Returns the exit code."""
    bind_context(component="demo", task_queue=config.task_queue)
    try:
        await preflight(config)
    except HelloTemporalError as exc:
        log.error("demo.preflight_failed", code=exc.code, error=exc.detail)
        return exc.exit_code

    telemetry = init_telemetry(config)
    coordinator = ShutdownCoordinator(telemetry, config.shutdown_timeout_ms)
    coordinator.install_signal_handlers()
    coordinator.install_exception_handler()
    wf_metrics = WorkflowMetrics(telemetry)

    code = 0
    try:
        client = await connect_client(config, telemetry)
        worker = build_worker(client, config, wf_metrics)
        worker_task = asyncio.create_task(run_until_shutdown(worker, coordinator))
        try:
            result = await WorkflowStarter(client, config, telemetry, wf_metrics).run()
            log.info("demo.result", result=result)
        finally:
            coordinator.request_shutdown(0)
            await worker_task
    except HelloTemporalError as exc:
        log.error("demo.failed", code=exc.code, error=exc.detail)
        code = exc.exit_code
    except Exception as exc:
        log.error("demo.failed", error=str(exc), error_type=type(exc).__name__)
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
    sys.exit(asyncio.run(run_demo(config)))


if __name__ == "__main__":
    main()
