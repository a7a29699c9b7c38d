"""
hello_temporal.telemetry.bootstrap
────────────────────────────────────
Telemetry bootstrap. One TelemetryContext per process owns the resource, the
exporters, the trace/meter/logger providers and the propagator. It is created
at process start and handed to every component that emits telemetry; nothing
here lives in module-level globals.

Lifecycle:  uninitialized → starting → running → shutting-down → stopped

Flush and shutdown race the SDK against a timeout. When the timeout wins the
flush is abandoned and the caller carries on with shutdown.

Usage::

    telemetry = init_telemetry(config)
    with telemetry.tracer.start_as_current_span("work"):
        ...
    await telemetry.shutdown()
"""
from __future__ import annotations

import asyncio
import enum
import logging
import threading
from typing import Any, Callable

from opentelemetry import metrics, propagate, trace
from opentelemetry._logs import set_logger_provider
from opentelemetry.baggage.propagation import W3CBaggagePropagator
from opentelemetry.propagators.composite import CompositePropagator
from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import ALWAYS_ON
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator

from hello_temporal.core.config import AppConfig
from hello_temporal.core.logging import get_logger
from hello_temporal.telemetry.exporters import (
    ExporterBundle,
    apply_environment_defaults,
    build_exporters,
)
from hello_temporal.telemetry.resource import resource_from_config

log = get_logger(__name__)

INSTRUMENTATION_NAME = "temporal-hello-world"


class TelemetryState(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    STARTING = "starting"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting-down"
    STOPPED = "stopped"


class TelemetryContext:
    """
    Running telemetry pipeline plus lazily created tracer/meter handles.

    Args:
        config:     Frozen application config.
        exporters:  Prebuilt exporters. Built from ``config`` when omitted.
        set_global: Register providers and propagator with the OTel API so
                    SDK-internal instrumentation (Temporal's interceptor,
                    log correlation) picks them up.
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        exporters: ExporterBundle | None = None,
        set_global: bool = True,
    ) -> None:
        self.config = config
        self._exporters = exporters
        self._set_global = set_global
        self._state = TelemetryState.UNINITIALIZED

        self.resource: Resource | None = None
        self.propagator: CompositePropagator | None = None
        self.tracer_provider: TracerProvider | None = None
        self.meter_provider: MeterProvider | None = None
        self.logger_provider: LoggerProvider | None = None
        self._log_handler: logging.Handler | None = None

        self._tracer: trace.Tracer | None = None
        self._meter: metrics.Meter | None = None

    # ── State ─────────────────────────────────────────────────────────────────

    @property
    def state(self) -> TelemetryState:
        return self._state

    @property
    def running(self) -> bool:
        return self._state is TelemetryState.RUNNING

    # ── Handles ───────────────────────────────────────────────────────────────

    @property
    def tracer(self) -> trace.Tracer:
        """Process tracer. A no-op tracer whenever the pipeline is not running."""
        if self.tracer_provider is None:
            return trace.NoOpTracer()
        if self._tracer is None:
            self._tracer = self.tracer_provider.get_tracer(INSTRUMENTATION_NAME)
        return self._tracer

    @property
    def meter(self) -> metrics.Meter:
        """Process meter. A no-op meter whenever the pipeline is not running."""
        if self.meter_provider is None:
            return metrics.NoOpMeter(INSTRUMENTATION_NAME)
        if self._meter is None:
            self._meter = self.meter_provider.get_meter(INSTRUMENTATION_NAME)
        return self._meter

    # ── Startup ───────────────────────────────────────────────────────────────

    def start(self) -> "TelemetryContext":
        """
        Build and start the pipeline. Calling it again while running is a
        no-op; starting a stopped context is an error.
        """
        if self._state in (TelemetryState.RUNNING, TelemetryState.STARTING):
            log.warning("telemetry.already_started", state=self._state.value)
            return self
        if self._state is not TelemetryState.UNINITIALIZED:
            raise RuntimeError(f"Cannot start telemetry in state {self._state.value!r}")

        self._state = TelemetryState.STARTING
        config = self.config
        log.info("telemetry.starting", service=config.service_name)

        try:
            if self._set_global:
                apply_environment_defaults(config)
            exporters = self._exporters or build_exporters(config)

            self.resource = resource_from_config(config)

            self.tracer_provider = TracerProvider(resource=self.resource, sampler=ALWAYS_ON)
            if exporters.span_exporter is not None:
                self.tracer_provider.add_span_processor(BatchSpanProcessor(exporters.span_exporter))

            self.meter_provider = MeterProvider(
                resource=self.resource, metric_readers=list(exporters.metric_readers)
            )

            if exporters.log_exporter is not None:
                self.logger_provider = LoggerProvider(resource=self.resource)
                self.logger_provider.add_log_record_processor(
                    BatchLogRecordProcessor(exporters.log_exporter)
                )
                self._log_handler = LoggingHandler(
                    level=logging.NOTSET, logger_provider=self.logger_provider
                )
                logging.getLogger().addHandler(self._log_handler)

            self.propagator = CompositePropagator(
                [TraceContextTextMapPropagator(), W3CBaggagePropagator()]
            )

            if self._set_global:
                trace.set_tracer_provider(self.tracer_provider)
                metrics.set_meter_provider(self.meter_provider)
                propagate.set_global_textmap(self.propagator)
                if self.logger_provider is not None:
                    set_logger_provider(self.logger_provider)
        except Exception:
            self._state = TelemetryState.UNINITIALIZED
            log.exception("telemetry.start_failed")
            raise

        self._state = TelemetryState.RUNNING
        log.info("telemetry.started", service=config.service_name)
        self._record_init_verification()
        return self

    def _record_init_verification(self) -> None:
        try:
            counter = self.meter.create_counter(
                "init_verification", description="Telemetry pipeline start marker"
            )
            counter.add(1, {"service.name": self.config.service_name, "initialized": "true"})
        except Exception as exc:
            log.warning("telemetry.verification_failed", error=str(exc))

    # ── Flush / shutdown ──────────────────────────────────────────────────────

    def _timeout_ms(self, timeout_ms: int | None) -> int:
        return timeout_ms if timeout_ms is not None else self.config.shutdown_timeout_ms

    async def force_flush(self, timeout_ms: int | None = None) -> bool:
        """
        Push pending spans, metrics and logs. Returns True only if every
        provider confirmed the flush before ``timeout_ms`` elapsed.
        """
        if not self.running:
            return False
        timeout = self._timeout_ms(timeout_ms)
        providers = [p for p in (self.tracer_provider, self.meter_provider, self.logger_provider) if p]

        def _flush() -> bool:
            return all([bool(p.force_flush(timeout_millis=timeout)) for p in providers])

        log.info("telemetry.flushing", timeout_ms=timeout)
        completed, ok = await race_timeout(_flush, timeout / 1000)
        if not completed:
            log.warning("telemetry.flush_timeout", timeout_ms=timeout)
            return False
        return bool(ok)

    async def shutdown(self, timeout_ms: int | None = None) -> bool:
        """
        Flush and stop every provider, bounded by ``timeout_ms``. Resets the
        tracer/meter handles. Returns False when the timeout won or when the
        context was not running; later calls are no-ops.
        """
        if self._state in (TelemetryState.SHUTTING_DOWN, TelemetryState.STOPPED):
            return False
        if self._state is TelemetryState.UNINITIALIZED:
            self._state = TelemetryState.STOPPED
            return False

        self._state = TelemetryState.SHUTTING_DOWN
        timeout = self._timeout_ms(timeout_ms)
        log.info("telemetry.shutting_down", timeout_ms=timeout)

        if self._log_handler is not None:
            logging.getLogger().removeHandler(self._log_handler)
            self._log_handler = None

        tracer_provider = self.tracer_provider
        meter_provider = self.meter_provider
        logger_provider = self.logger_provider

        def _shutdown() -> None:
            if tracer_provider is not None:
                tracer_provider.force_flush(timeout_millis=timeout)
                tracer_provider.shutdown()
            if meter_provider is not None:
                meter_provider.shutdown(timeout_millis=timeout)
            if logger_provider is not None:
                logger_provider.shutdown()

        try:
            completed, _ = await race_timeout(_shutdown, timeout / 1000)
        except Exception as exc:
            completed = False
            log.error("telemetry.shutdown_failed", error=str(exc))
        else:
            if completed:
                log.info("telemetry.stopped")
            else:
                log.warning("telemetry.shutdown_timeout", timeout_ms=timeout)
        finally:
            self._tracer = None
            self._meter = None
            self.tracer_provider = None
            self.meter_provider = None
            self.logger_provider = None
            self._state = TelemetryState.STOPPED
        return completed


# ── Helpers ───────────────────────────────────────────────────────────────────

async def race_timeout(fn: Callable[[], Any], timeout_s: float) -> tuple[bool, Any]:
    """
    Run blocking ``fn`` on a daemon thread and wait at most ``timeout_s``.

    Returns ``(True, result)`` when ``fn`` finished first, ``(False, None)``
    when the timeout did. Must not use the default executor: ``asyncio.run``
    joins its threads on exit.
    """
    loop = asyncio.get_running_loop()
    done: asyncio.Future[Any] = loop.create_future()

    def _resolve(result: Any = None, exc: BaseException | None = None) -> None:
        if done.done():
            return
        if exc is not None:
            done.set_exception(exc)
        else:
            done.set_result(result)

    def _runner() -> None:
        try:
            result = fn()
        except Exception as exc:
            outcome: dict[str, Any] = {"exc": exc}
        else:
            outcome = {"result": result}
        try:
            loop.call_soon_threadsafe(lambda: _resolve(**outcome))
        except RuntimeError:
            # Loop already closed: the waiter gave up long ago.
            return

    threading.Thread(target=_runner, name="telemetry-flush", daemon=True).start()
    try:
        return True, await asyncio.wait_for(done, timeout=timeout_s)
    except asyncio.TimeoutError:
        return False, None


def init_telemetry(
    config: AppConfig,
    *,
    exporters: ExporterBundle | None = None,
    set_global: bool = True,
) -> TelemetryContext:
    """Create and start a TelemetryContext for ``config``."""
    return TelemetryContext(config, exporters=exporters, set_global=set_global).start()


__all__ = [
    "TelemetryContext",
    "TelemetryState",
    "init_telemetry",
    "race_timeout",
    "INSTRUMENTATION_NAME",
]
