"""Tests for the telemetry layer: resource, exporters, bootstrap, spans, metrics."""
from __future__ import annotations

import asyncio
import threading

import pytest
from opentelemetry import trace
from opentelemetry.sdk.trace.export import SpanExporter, SpanExportResult
from opentelemetry.trace import StatusCode

from hello_temporal.core.config import AppConfig
from hello_temporal.telemetry.bootstrap import TelemetryContext, TelemetryState, race_timeout
from hello_temporal.telemetry.exporters import (
    apply_environment_defaults,
    build_exporters,
    normalize_endpoint,
    signal_endpoint,
)
from hello_temporal.telemetry.metrics import (
    WorkflowMetrics,
    emit_dashboard_sample,
    register_dashboard_metrics,
)
from hello_temporal.telemetry.resource import build_resource_attributes, resource_from_config
from hello_temporal.telemetry.tracing import detached_span, span


class SlowExporter(SpanExporter):
    """Span exporter whose shutdown hangs far longer than any test timeout."""

    def export(self, spans):
        return SpanExportResult.SUCCESS

    def shutdown(self):
        threading.Event().wait(5)


# ── resource ───────────────────────────────────────────────────────────────

class TestResource:
    def test_empty_input_uses_default_service_name(self):
        attrs = build_resource_attributes("")
        assert attrs == {"service.name": "temporal-hello-world"}

    def test_parsed_attributes_kept(self):
        attrs = build_resource_attributes("team=core, service.name=parsed")
        assert attrs["team"] == "core"
        assert attrs["service.name"] == "parsed"

    def test_explicit_values_override_parsed(self):
        attrs = build_resource_attributes(
            "service.name=parsed,deployment.environment=qa",
            "explicit",
            namespace="default",
            environment="production",
            region="eu-west-1",
            host_name="box-1",
        )
        assert attrs["service.name"] == "explicit"
        assert attrs["deployment.environment"] == "production"
        assert attrs["service.namespace"] == "default"
        assert attrs["deployment.region"] == "eu-west-1"
        assert attrs["host.name"] == "box-1"

    def test_immutable(self):
        attrs = build_resource_attributes("a=1")
        with pytest.raises(TypeError):
            attrs["a"] = "2"  # type: ignore[index]

    def test_resource_from_config(self):
        resource = resource_from_config(AppConfig(service_name="svc", environment="test"))
        assert resource.attributes["service.name"] == "svc"
        assert resource.attributes["deployment.environment"] == "test"
        assert resource.attributes["service.namespace"] == "default"


# ── exporters ──────────────────────────────────────────────────────────────

class TestExporters:
    def test_normalize_endpoint(self):
        assert normalize_endpoint("localhost:4317") == "http://localhost:4317"
        assert normalize_endpoint("https://otel.example.com/") == "https://otel.example.com"

    def test_grpc_uses_bare_endpoint(self):
        assert signal_endpoint("http://localhost:4317", "grpc", "traces") == "http://localhost:4317"

    def test_http_appends_signal_path(self):
        assert signal_endpoint("http://localhost:4318", "http", "traces") == "http://localhost:4318/v1/traces"
        assert signal_endpoint("http://localhost:4318/", "http", "metrics") == "http://localhost:4318/v1/metrics"
        assert signal_endpoint("http://c:4318/v1/logs", "http", "logs") == "http://c:4318/v1/logs"

    def test_environment_defaults_match_config(self):
        env: dict[str, str] = {}
        apply_environment_defaults(AppConfig(service_name="svc", otlp_protocol="http"), env)
        assert env["OTEL_SERVICE_NAME"] == "svc"
        assert env["OTEL_EXPORTER_OTLP_PROTOCOL"] == "http/protobuf"
        assert env["OTEL_PROPAGATORS"] == "tracecontext,baggage"
        assert env["OTEL_LOGS_EXPORTER"] == "none"
        assert env["OTEL_EXPORTER_OTLP_METRICS_ENDPOINT"] == "http://localhost:4318/v1/metrics"

    def test_environment_metrics_endpoint_grpc_is_bare(self):
        env: dict[str, str] = {}
        apply_environment_defaults(AppConfig(otlp_endpoint="http://collector:4317/"), env)
        assert env["OTEL_EXPORTER_OTLP_METRICS_ENDPOINT"] == "http://collector:4317"

    def test_build_exporters_http_with_logs(self):
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter

        bundle = build_exporters(AppConfig(otlp_protocol="http", logs_exporter="otlp"))
        try:
            assert isinstance(bundle.span_exporter, OTLPSpanExporter)
            assert len(bundle.metric_readers) == 1
            assert bundle.log_exporter is not None
        finally:
            for reader in bundle.metric_readers:
                reader.shutdown()

    def test_build_exporters_grpc_without_logs(self):
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter

        bundle = build_exporters(AppConfig())
        try:
            assert isinstance(bundle.span_exporter, OTLPSpanExporter)
            assert bundle.log_exporter is None
        finally:
            for reader in bundle.metric_readers:
                reader.shutdown()


# ── bootstrap ──────────────────────────────────────────────────────────────

class TestBootstrap:
    def test_handles_are_noop_before_start(self, config):
        ctx = TelemetryContext(config, set_global=False)
        assert ctx.state is TelemetryState.UNINITIALIZED
        assert isinstance(ctx.tracer, trace.NoOpTracer)

    def test_start_runs_pipeline(self, telemetry):
        ctx = telemetry.context
        assert ctx.state is TelemetryState.RUNNING
        assert ctx.resource.attributes["service.name"] == "temporal-hello-world"
        assert ctx.propagator is not None

    def test_tracer_is_reused(self, telemetry):
        assert telemetry.context.tracer is telemetry.context.tracer

    def test_start_twice_is_noop(self, telemetry):
        ctx = telemetry.context
        provider = ctx.tracer_provider
        assert ctx.start() is ctx
        assert ctx.tracer_provider is provider

    def test_init_verification_recorded(self, telemetry):
        assert telemetry.metric_sum("init_verification", initialized="true") == 1

    @pytest.mark.asyncio
    async def test_force_flush(self, telemetry):
        with telemetry.context.tracer.start_as_current_span("work"):
            pass
        assert await telemetry.context.force_flush() is True
        assert [s.name for s in telemetry.exporter.get_finished_spans()] == ["work"]

    @pytest.mark.asyncio
    async def test_shutdown_resets_handles(self, telemetry):
        ctx = telemetry.context
        assert await ctx.shutdown() is True
        assert ctx.state is TelemetryState.STOPPED
        assert ctx.tracer_provider is None
        assert isinstance(ctx.tracer, trace.NoOpTracer)

    @pytest.mark.asyncio
    async def test_shutdown_only_once(self, telemetry):
        assert await telemetry.context.shutdown() is True
        assert await telemetry.context.shutdown() is False

    @pytest.mark.asyncio
    async def test_restart_after_stop_rejected(self, telemetry):
        await telemetry.context.shutdown()
        with pytest.raises(RuntimeError):
            telemetry.context.start()

    @pytest.mark.asyncio
    async def test_flush_before_start_returns_false(self, config):
        assert await TelemetryContext(config, set_global=False).force_flush() is False

    @pytest.mark.asyncio
    async def test_shutdown_timeout_wins(self, make_telemetry):
        harness = make_telemetry(AppConfig(shutdown_timeout_ms=100), exporter=SlowExporter())
        loop = asyncio.get_running_loop()
        started = loop.time()
        assert await harness.context.shutdown() is False
        assert loop.time() - started < 2
        assert harness.context.state is TelemetryState.STOPPED


class TestRaceTimeout:
    @pytest.mark.asyncio
    async def test_fast_function_wins(self):
        assert await race_timeout(lambda: 42, 1.0) == (True, 42)

    @pytest.mark.asyncio
    async def test_timeout_wins_over_hung_function(self):
        never = threading.Event()
        completed, result = await race_timeout(lambda: never.wait(5), 0.05)
        assert completed is False
        assert result is None
        never.set()

    @pytest.mark.asyncio
    async def test_exception_propagates(self):
        def boom():
            raise ValueError("flush failed")

        with pytest.raises(ValueError, match="flush failed"):
            await race_timeout(boom, 1.0)


# ── tracing ────────────────────────────────────────────────────────────────

class TestSpans:
    def test_span_ends_with_attributes(self, telemetry):
        with span(telemetry.context.tracer, "StartWorkflow", attributes={"workflow.id": "wf-1"}):
            pass
        recorded = telemetry.span("StartWorkflow")
        assert recorded.attributes["workflow.id"] == "wf-1"
        assert recorded.status.status_code == StatusCode.UNSET

    def test_error_recorded_and_reraised(self, telemetry):
        with pytest.raises(ValueError):
            with span(telemetry.context.tracer, "ExecuteWorkflow"):
                raise ValueError("workflow failed")

        recorded = telemetry.span("ExecuteWorkflow")
        assert recorded.status.status_code == StatusCode.ERROR
        assert recorded.attributes["workflow.status"] == "error"
        assert recorded.attributes["temporal.status"] == "error"
        assert recorded.attributes["error.message"] == "workflow failed"
        assert [e.name for e in recorded.events] == ["exception"]

    def test_detached_span_does_not_become_current(self, telemetry):
        tracer = telemetry.context.tracer
        with span(tracer, "StartWorkflow") as parent:
            with detached_span(tracer, "StartWorkflow:HelloWorldWorkflow"):
                assert trace.get_current_span() is parent
                with span(tracer, "ExecuteWorkflow"):
                    pass

        parent_id = telemetry.span("StartWorkflow").context.span_id
        assert telemetry.span("StartWorkflow:HelloWorldWorkflow").parent.span_id == parent_id
        assert telemetry.span("ExecuteWorkflow").parent.span_id == parent_id

    def test_detached_span_ends_on_error(self, telemetry):
        with pytest.raises(RuntimeError):
            with detached_span(telemetry.context.tracer, "StartWorkflow:X"):
                raise RuntimeError("boom")
        assert telemetry.span("StartWorkflow:X").status.status_code == StatusCode.ERROR


# ── metrics ────────────────────────────────────────────────────────────────

class TestWorkflowMetrics:
    def test_record_success_labels(self, telemetry):
        metrics = WorkflowMetrics(telemetry.context)
        metrics.record_success("HelloWorldWorkflow", "wf-1", "run-1", "default")
        assert telemetry.metric_sum(
            "workflow_success",
            workflow_type="HelloWorldWorkflow",
            workflow_id="wf-1",
            run_id="run-1",
            namespace="default",
        ) == 1

    def test_service_error_with_type(self, telemetry):
        metrics = WorkflowMetrics(telemetry.context)
        metrics.record_service_error("AddActivityTask", "timeout")
        metrics.record_service_error("AddActivityTask")
        assert telemetry.metric_sum("service_errors", operation="AddActivityTask") == 2
        assert telemetry.metric_sum("service_error_with_type", error_type="timeout") == 1

    def test_cleanup_recreates_instruments(self, telemetry):
        metrics = WorkflowMetrics(telemetry.context)
        metrics.record_service_restart("worker")
        metrics.cleanup()
        metrics.record_service_restart("worker")
        assert telemetry.metric_sum("restarts", temporal_service_type="worker") == 2

    def test_dashboard_sample_covers_every_workflow_type(self, telemetry):
        emit_dashboard_sample(WorkflowMetrics(telemetry.context))
        for name in ("workflow_success", "workflow_failed", "workflow_timeout",
                     "workflow_terminate", "workflow_cancel"):
            assert telemetry.metric_sum(name) == 3
        assert telemetry.metric_sum("workflow_success", workflow_type="ProcessingWorkflow") == 1
        assert telemetry.metric_sum("restarts", temporal_service_type="frontend") == 1
        assert telemetry.metric_sum("schedule_to_start_timeout") == 3

    def test_noop_before_start(self, config):
        metrics = WorkflowMetrics(TelemetryContext(config, set_global=False))
        metrics.record_failure("HelloWorldWorkflow", "wf", "run", "default")

    @pytest.mark.asyncio
    async def test_dashboard_handle_emits_and_cancels(self, telemetry):
        metrics = WorkflowMetrics(telemetry.context)
        handle = register_dashboard_metrics(metrics, initial_delay_ms=0, interval_ms=10)
        assert telemetry.metric_sum("restarts", temporal_service_type="worker") >= 1
        await asyncio.sleep(0.1)
        assert telemetry.metric_sum("workflow_success", workflow_type="GreetingWorkflow") >= 1

        handle.cancel()
        await asyncio.sleep(0.01)
        assert handle.active is False
        handle.cancel()
