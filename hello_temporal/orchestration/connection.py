"""
hello_temporal.orchestration.connection
─────────────────────────────────────────
Temporal client and worker construction.

Local development connects to ``localhost:7233`` without TLS. When
TEMPORAL_HOST_URL is set the connection targets Temporal Cloud and needs a
client certificate pair (TEMPORAL_TLS_CERT / TEMPORAL_TLS_KEY); missing or
unreadable files are a ConfigurationError and are never retried.

Minimal stack: temporalio (+ temporalio.contrib.opentelemetry), tenacity
Configure via: TEMPORAL_HOST_URL, TEMPORAL_NAMESPACE, TEMPORAL_TLS_CERT,
               TEMPORAL_TLS_KEY, TEMPORAL_TASK_QUEUE, HELLO_CONNECT_ATTEMPTS
"""
from __future__ import annotations

from datetime import timedelta
from pathlib import Path
from typing import Any

from temporalio.client import Client, Interceptor as ClientInterceptor
from temporalio.contrib.opentelemetry import TracingInterceptor
from temporalio.runtime import OpenTelemetryConfig, Runtime, TelemetryConfig
from temporalio.service import TLSConfig
from temporalio.worker import Worker
from temporalio.worker.workflow_sandbox import SandboxedWorkflowRunner, SandboxRestrictions

from hello_temporal.core.config import AppConfig
from hello_temporal.core.errors import ConfigurationError
from hello_temporal.core.logging import get_logger
from hello_temporal.core.retry import retry_policy
from hello_temporal.orchestration.activities import GreetingActivities, say_hello
from hello_temporal.orchestration.interceptors import RunWorkflowLoggingInterceptor
from hello_temporal.orchestration.workflows import WORKFLOWS
from hello_temporal.telemetry.bootstrap import TelemetryContext
from hello_temporal.telemetry.exporters import signal_endpoint
from hello_temporal.telemetry.metrics import WorkflowMetrics

log = get_logger(__name__)

SANDBOX_PASSTHROUGH = ("hello_temporal", "structlog", "pydantic", "pydantic_settings", "opentelemetry")


# ── TLS ───────────────────────────────────────────────────────────────────────

def load_tls_config(config: AppConfig, cwd: Path | None = None) -> TLSConfig | None:
    """
    Client TLS for Temporal Cloud, or None for a local server.

    Relative certificate paths resolve against ``cwd`` (default: the process
    working directory). The TLS domain is the host part of the address.
    """
    if not config.is_temporal_cloud:
        return None
    if not config.temporal_tls_cert or not config.temporal_tls_key:
        raise ConfigurationError(
            "TEMPORAL_TLS_CERT and TEMPORAL_TLS_KEY must be set for Temporal Cloud connection",
            address=config.temporal_address,
        )

    base = cwd or Path.cwd()
    cert_path = (base / config.temporal_tls_cert).resolve()
    key_path = (base / config.temporal_tls_key).resolve()
    if not cert_path.is_file() or not key_path.is_file():
        raise ConfigurationError(
            f"TLS certificates not found at {cert_path} or {key_path}",
            cert=str(cert_path),
            key=str(key_path),
        )

    return TLSConfig(
        client_cert=cert_path.read_bytes(),
        client_private_key=key_path.read_bytes(),
        domain=config.temporal_address.split(":")[0],
    )


# ── Client ────────────────────────────────────────────────────────────────────

def build_runtime(config: AppConfig) -> Runtime:
    """Temporal core runtime exporting its own metrics to the same collector."""
    return Runtime(
        telemetry=TelemetryConfig(
            metrics=OpenTelemetryConfig(
                url=signal_endpoint(config.resolved_otlp_endpoint, config.otlp_protocol, "metrics"),
                headers=config.otlp_header_map(),
                metric_periodicity=timedelta(milliseconds=config.metric_export_interval_ms),
                http=config.otlp_protocol == "http",
            )
        )
    )


def client_interceptors(config: AppConfig, telemetry: TelemetryContext) -> list[ClientInterceptor]:
    if not config.temporal_tracing:
        return []
    return [TracingInterceptor(telemetry.tracer)]


async def connect_client(config: AppConfig, telemetry: TelemetryContext) -> Client:
    """
    Connect to Temporal with retry. TLS material is validated before the
    first attempt. After ``connect_attempts`` failures the SDK error
    propagates unchanged.
    """
    tls = load_tls_config(config)
    kwargs: dict[str, Any] = {
        "namespace": config.temporal_namespace,
        "interceptors": client_interceptors(config, telemetry),
    }
    if tls is not None:
        kwargs["tls"] = tls
    if config.temporal_runtime_metrics:
        kwargs["runtime"] = build_runtime(config)

    if config.is_temporal_cloud:
        log.info(
            "temporal.connecting_cloud",
            address=config.temporal_address,
            namespace=config.temporal_namespace,
        )
    else:
        log.info("temporal.connecting_local", address=config.temporal_address)

    @retry_policy(max_attempts=config.connect_attempts)
    async def _connect() -> Client:
        return await Client.connect(config.temporal_address, **kwargs)

    try:
        client = await _connect()
    except Exception as exc:
        log.error("temporal.connect_failed", address=config.temporal_address, error=str(exc))
        raise
    log.info("temporal.connected", address=config.temporal_address, namespace=config.temporal_namespace)
    return client


# ── Worker ────────────────────────────────────────────────────────────────────

def build_worker(
    client: Client,
    config: AppConfig,
    metrics: WorkflowMetrics | None = None,
    **worker_kwargs: Any,
) -> Worker:
    """Worker hosting every workflow and activity on ``config.task_queue``."""
    greeting = GreetingActivities(metrics=metrics)
    worker = Worker(
        client,
        task_queue=config.task_queue,
        workflows=list(WORKFLOWS),
        activities=[say_hello, *greeting.all()],
        interceptors=[RunWorkflowLoggingInterceptor()],
        workflow_runner=SandboxedWorkflowRunner(
            restrictions=SandboxRestrictions.default.with_passthrough_modules(*SANDBOX_PASSTHROUGH)
        ),
        **worker_kwargs,
    )
    log.info(
        "worker.created",
        task_queue=config.task_queue,
        workflows=[w.__name__ for w in WORKFLOWS],
    )
    return worker


__all__ = [
    "load_tls_config",
    "connect_client",
    "build_worker",
    "build_runtime",
    "client_interceptors",
]
