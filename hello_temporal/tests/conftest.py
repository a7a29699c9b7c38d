"""
hello_temporal test configuration.

No Temporal server or OTLP collector is needed: telemetry runs against the
SDK's in-memory span exporter and metric reader, without touching the global
providers, and Temporal clients are replaced by small fakes.
"""
from __future__ import annotations

import os
from typing import Any

import pytest
from opentelemetry.sdk.metrics.export import InMemoryMetricReader
from opentelemetry.sdk.trace import ReadableSpan
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

# ── Clean environment ─────────────────────────────────────────────────────
# Settings from the developer's shell must not leak into config tests.

for _key in list(os.environ):
    if _key.startswith(("OTEL_", "TEMPORAL_", "HELLO_", "SIGNOZ_")):
        del os.environ[_key]

os.environ.setdefault("HELLO_LOG_LEVEL", "WARNING")


# ── Helpers ────────────────────────────────────────────────────────────────

class TelemetryHarness:
    """A started TelemetryContext wired to in-memory exporters."""

    def __init__(self, context: Any, exporter: InMemorySpanExporter, reader: InMemoryMetricReader):
        self.context = context
        self.exporter = exporter
        self.reader = reader
        self._tracer_provider = context.tracer_provider

    def spans(self) -> list[ReadableSpan]:
        self._tracer_provider.force_flush()
        return list(self.exporter.get_finished_spans())

    def span(self, name: str) -> ReadableSpan:
        matches = [s for s in self.spans() if s.name == name]
        assert matches, f"no span named {name!r} in {[s.name for s in self.spans()]}"
        return matches[0]

    def metric_sum(self, name: str, **attrs: Any) -> float:
        data = self.reader.get_metrics_data()
        if data is None:
            return 0
        total = 0
        for rm in data.resource_metrics:
            for sm in rm.scope_metrics:
                for metric in sm.metrics:
                    if metric.name != name:
                        continue
                    for point in metric.data.data_points:
                        if all(point.attributes.get(k) == v for k, v in attrs.items()):
                            total += point.value
        return total


# ── Fixtures ───────────────────────────────────────────────────────────────

@pytest.fixture(autouse=True)
def reset_config_cache():
    from hello_temporal.core.config import _reset_config

    _reset_config()
    yield
    _reset_config()


@pytest.fixture
def config():
    """Config with short timeouts, built from explicit arguments only."""
    from hello_temporal.core.config import AppConfig

    return AppConfig(shutdown_timeout_ms=1000, metric_export_interval_ms=1000)


@pytest.fixture
def make_telemetry():
    """Factory: make_telemetry(config) → started TelemetryHarness."""
    from hello_temporal.telemetry.bootstrap import TelemetryContext
    from hello_temporal.telemetry.exporters import ExporterBundle

    harnesses: list[TelemetryHarness] = []

    def _make(cfg: Any, exporter: Any = None) -> TelemetryHarness:
        span_exporter = exporter or InMemorySpanExporter()
        reader = InMemoryMetricReader()
        bundle = ExporterBundle(span_exporter=span_exporter, metric_readers=[reader])
        context = TelemetryContext(cfg, exporters=bundle, set_global=False).start()
        harness = TelemetryHarness(context, span_exporter, reader)
        harnesses.append(harness)
        return harness

    yield _make

    for harness in harnesses:
        ctx = harness.context
        if ctx.tracer_provider is not None:
            ctx.tracer_provider.shutdown()
        if ctx.meter_provider is not None:
            ctx.meter_provider.shutdown()


@pytest.fixture
def telemetry(config, make_telemetry) -> TelemetryHarness:
    return make_telemetry(config)
