"""
hello_temporal.telemetry.exporters
────────────────────────────────────
Exporter factory. Picks OTLP gRPC or OTLP HTTP exporters for traces, metrics
and (optionally) logs from the config, and keeps the process environment's
OTEL_* variables in line with those explicit choices so anything relying on
SDK auto-configuration sees the same setup.

Construction never checks connectivity. An unreachable collector shows up
later as export errors, which the SDK logs and otherwise ignores.

Minimal stack: opentelemetry-exporter-otlp-proto-grpc,
               opentelemetry-exporter-otlp-proto-http,
               opentelemetry-exporter-prometheus (optional scrape endpoint)
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, MutableMapping

from opentelemetry.sdk.metrics.export import MetricReader, PeriodicExportingMetricReader
from opentelemetry.sdk.trace.export import SpanExporter

from hello_temporal.core.config import AppConfig
from hello_temporal.core.logging import get_logger

log = get_logger(__name__)

_HTTP_SIGNAL_PATHS = {
    "traces": "/v1/traces",
    "metrics": "/v1/metrics",
    "logs": "/v1/logs",
}


@dataclass
class ExporterBundle:
    """Everything the bootstrap plugs into the SDK providers. Owned by one TelemetryContext."""
    span_exporter: SpanExporter | None
    metric_readers: list[MetricReader] = field(default_factory=list)
    log_exporter: Any = None


# ── Endpoint helpers ──────────────────────────────────────────────────────────

def normalize_endpoint(endpoint: str) -> str:
    """``localhost:4317`` → ``http://localhost:4317``; trailing slashes dropped."""
    endpoint = endpoint.strip().rstrip("/")
    if "://" not in endpoint:
        endpoint = f"http://{endpoint}"
    return endpoint


def signal_endpoint(endpoint: str, protocol: str, signal: str) -> str:
    """
    Per-signal URL. gRPC uses the bare collector address; HTTP appends the
    standard ``/v1/<signal>`` path unless the endpoint already carries it.
    """
    base = normalize_endpoint(endpoint)
    if protocol != "http":
        return base
    path = _HTTP_SIGNAL_PATHS[signal]
    return base if base.endswith(path) else f"{base}{path}"


def is_insecure(endpoint: str) -> bool:
    return not normalize_endpoint(endpoint).startswith("https://")


# ── Environment defaults ──────────────────────────────────────────────────────

def apply_environment_defaults(
    config: AppConfig,
    environ: MutableMapping[str, str] | None = None,
) -> None:
    """
    Write OTEL_* variables matching the explicit config. Only the process
    environment is touched; ``config`` itself stays frozen.
    """
    env = os.environ if environ is None else environ
    env["OTEL_SERVICE_NAME"] = config.service_name
    env["OTEL_TRACES_EXPORTER"] = "otlp"
    env["OTEL_METRICS_EXPORTER"] = "otlp"
    env["OTEL_LOGS_EXPORTER"] = config.logs_exporter
    env["OTEL_EXPORTER_OTLP_PROTOCOL"] = "grpc" if config.otlp_protocol == "grpc" else "http/protobuf"
    env["OTEL_PROPAGATORS"] = "tracecontext,baggage"
    env["OTEL_TRACES_SAMPLER"] = "always_on"
    env["OTEL_EXPORTER_OTLP_METRICS_TEMPORALITY_PREFERENCE"] = "cumulative"
    env.setdefault(
        "OTEL_EXPORTER_OTLP_METRICS_ENDPOINT",
        signal_endpoint(config.resolved_otlp_endpoint, config.otlp_protocol, "metrics"),
    )
    log.debug(
        "telemetry.environment",
        endpoint=config.resolved_otlp_endpoint,
        protocol=env["OTEL_EXPORTER_OTLP_PROTOCOL"],
        logs_exporter=config.logs_exporter,
    )


# ── Factories ─────────────────────────────────────────────────────────────────

def build_span_exporter(
    protocol: str, endpoint: str, headers: dict[str, str], timeout_s: float
) -> SpanExporter:
    url = signal_endpoint(endpoint, protocol, "traces")
    if protocol == "grpc":
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter

        return OTLPSpanExporter(
            endpoint=url, insecure=is_insecure(url), headers=headers or None, timeout=timeout_s
        )

    from opentelemetry.exporter.otlp.proto.http.trace_exporter import (
        OTLPSpanExporter as HTTPSpanExporter,
    )

    return HTTPSpanExporter(endpoint=url, headers=headers or None, timeout=timeout_s)


def build_metric_exporter(
    protocol: str, endpoint: str, headers: dict[str, str], timeout_s: float
) -> Any:
    url = signal_endpoint(endpoint, protocol, "metrics")
    if protocol == "grpc":
        from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter

        return OTLPMetricExporter(
            endpoint=url, insecure=is_insecure(url), headers=headers or None, timeout=timeout_s
        )

    from opentelemetry.exporter.otlp.proto.http.metric_exporter import (
        OTLPMetricExporter as HTTPMetricExporter,
    )

    return HTTPMetricExporter(endpoint=url, headers=headers or None, timeout=timeout_s)


def build_log_exporter(
    protocol: str, endpoint: str, headers: dict[str, str], timeout_s: float
) -> Any:
    url = signal_endpoint(endpoint, protocol, "logs")
    if protocol == "grpc":
        from opentelemetry.exporter.otlp.proto.grpc._log_exporter import OTLPLogExporter

        return OTLPLogExporter(
            endpoint=url, insecure=is_insecure(url), headers=headers or None, timeout=timeout_s
        )

    from opentelemetry.exporter.otlp.proto.http._log_exporter import (
        OTLPLogExporter as HTTPLogExporter,
    )

    return HTTPLogExporter(endpoint=url, headers=headers or None, timeout=timeout_s)


def build_metric_reader(exporter: Any, interval_ms: int) -> MetricReader:
    """
    Periodic reader on its own timer thread. The export timeout is kept at
    80% of the interval so one slow export never overlaps the next.
    """
    return PeriodicExportingMetricReader(
        exporter,
        export_interval_millis=interval_ms,
        export_timeout_millis=max(1, int(interval_ms * 0.8)),
    )


def build_prometheus_reader(port: int) -> MetricReader:
    """Expose metrics on ``http://0.0.0.0:<port>/metrics`` for scraping."""
    from opentelemetry.exporter.prometheus import PrometheusMetricReader
    from prometheus_client import start_http_server

    reader = PrometheusMetricReader()
    start_http_server(port)
    log.info("telemetry.prometheus_started", port=port)
    return reader


def build_exporters(config: AppConfig) -> ExporterBundle:
    """Build the full exporter set described by ``config``."""
    protocol = config.otlp_protocol
    endpoint = config.resolved_otlp_endpoint
    headers = config.otlp_header_map()
    timeout_s = config.otlp_timeout_ms / 1000

    log.info("telemetry.exporters", protocol=protocol, endpoint=endpoint)
    if headers:
        log.info("telemetry.exporter_headers", header_names=sorted(headers))

    readers: list[MetricReader] = [
        build_metric_reader(
            build_metric_exporter(protocol, endpoint, headers, timeout_s),
            config.metric_export_interval_ms,
        )
    ]
    if config.prometheus_port is not None:
        readers.append(build_prometheus_reader(config.prometheus_port))

    log_exporter = None
    if config.logs_exporter == "otlp":
        log_exporter = build_log_exporter(protocol, endpoint, headers, timeout_s)

    return ExporterBundle(
        span_exporter=build_span_exporter(protocol, endpoint, headers, timeout_s),
        metric_readers=readers,
        log_exporter=log_exporter,
    )


__all__ = [
    "ExporterBundle",
    "apply_environment_defaults",
    "build_exporters",
    "build_span_exporter",
    "build_metric_exporter",
    "build_log_exporter",
    "build_metric_reader",
    "normalize_endpoint",
    "signal_endpoint",
]
