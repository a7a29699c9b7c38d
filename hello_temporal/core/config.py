"""
hello_temporal.core.config
────────────────────────────
Typed configuration with env layering. Reads from .env → environment
variables, with explicit keyword arguments taking precedence over both.
All fields are typed via Pydantic. Invalid values raise a ValidationError at
startup, not at runtime.

The model is frozen: build it once at process start and pass it explicitly to
every component that needs it.

Minimal stack: pydantic-settings + python-dotenv
"""
from __future__ import annotations

import os
from functools import lru_cache
from typing import Mapping

from pydantic import AliasChoices, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SERVICE_NAME = "temporal-hello-world"
DEFAULT_TEMPORAL_ADDRESS = "localhost:7233"
DEFAULT_TASK_QUEUE = "hello-world"

DEFAULT_GRPC_ENDPOINT = "http://localhost:4317"
DEFAULT_HTTP_ENDPOINT = "http://localhost:4318"

HEADER_ENV_PREFIX = "OTEL_EXPORTER_OTLP_HEADERS_"
SIGNOZ_HEADER = "signoz-ingestion-key"


def parse_key_value_pairs(raw: str | None) -> dict[str, str]:
    """
    Turn ``"a=1, b = 2,broken"`` into ``{"a": "1", "b": "2"}``.

    Keys and values are trimmed. Pairs without ``=`` or with an empty key
    are dropped silently. Only the first ``=`` splits, so values may contain
    ``=`` themselves (base64 tokens, for example).
    """
    if not raw:
        return {}
    out: dict[str, str] = {}
    for pair in raw.split(","):
        if "=" not in pair:
            continue
        key, value = pair.split("=", 1)
        key = key.strip()
        if not key:
            continue
        out[key] = value.strip()
    return out


class AppConfig(BaseSettings):
    """
    Typed application configuration. Precedence is
    explicit argument > environment variable (.env included) > default.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    # ── Service identity ──────────────────────────────────────────────────────
    service_name: str = Field(
        default=DEFAULT_SERVICE_NAME, validation_alias=AliasChoices("service_name", "OTEL_SERVICE_NAME")
    )
    environment: str = Field(
        default="development",
        validation_alias=AliasChoices("environment", "APP_ENV", "OTEL_ENVIRONMENT"),
    )
    deployment_region: str = Field(
        default="local", validation_alias=AliasChoices("deployment_region", "DEPLOYMENT_REGION")
    )
    host_name: str = Field(
        default="localhost", validation_alias=AliasChoices("host_name", "HOSTNAME")
    )
    resource_attributes: str = Field(
        default="", validation_alias=AliasChoices("resource_attributes", "OTEL_RESOURCE_ATTRIBUTES")
    )

    # ── OTLP export ───────────────────────────────────────────────────────────
    otlp_protocol: str = Field(
        default="grpc", validation_alias=AliasChoices("otlp_protocol", "OTEL_EXPORTER_OTLP_PROTOCOL")
    )
    otlp_endpoint: str | None = Field(
        default=None, validation_alias=AliasChoices("otlp_endpoint", "OTEL_EXPORTER_OTLP_ENDPOINT")
    )
    otlp_headers: str = Field(
        default="", validation_alias=AliasChoices("otlp_headers", "OTEL_EXPORTER_OTLP_HEADERS")
    )
    otlp_timeout_ms: int = Field(
        default=10_000, validation_alias=AliasChoices("otlp_timeout_ms", "OTEL_EXPORTER_OTLP_TIMEOUT")
    )
    signoz_ingestion_key: SecretStr | None = Field(
        default=None, validation_alias=AliasChoices("signoz_ingestion_key", "SIGNOZ_INGESTION_KEY")
    )
    metric_export_interval_ms: int = Field(
        default=5_000, validation_alias=AliasChoices("metric_export_interval_ms", "OTEL_METRIC_EXPORT_INTERVAL")
    )
    logs_exporter: str = Field(
        default="none", validation_alias=AliasChoices("logs_exporter", "OTEL_LOGS_EXPORTER")
    )
    prometheus_port: int | None = Field(
        default=None, validation_alias=AliasChoices("prometheus_port", "HELLO_PROMETHEUS_PORT")
    )

    # ── Temporal ──────────────────────────────────────────────────────────────
    temporal_host_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("temporal_host_url", "TEMPORAL_HOST_URL", "TEMPORAL_HOST_ADDRESS"),
    )
    temporal_namespace: str = Field(
        default="default", validation_alias=AliasChoices("temporal_namespace", "TEMPORAL_NAMESPACE")
    )
    temporal_tls_cert: str | None = Field(
        default=None, validation_alias=AliasChoices("temporal_tls_cert", "TEMPORAL_TLS_CERT")
    )
    temporal_tls_key: str | None = Field(
        default=None, validation_alias=AliasChoices("temporal_tls_key", "TEMPORAL_TLS_KEY")
    )
    task_queue: str = Field(
        default=DEFAULT_TASK_QUEUE, validation_alias=AliasChoices("task_queue", "TEMPORAL_TASK_QUEUE")
    )
    connect_attempts: int = Field(
        default=3, validation_alias=AliasChoices("connect_attempts", "HELLO_CONNECT_ATTEMPTS")
    )

    # ── Workflow invocation ───────────────────────────────────────────────────
    workflow_type: str = Field(
        default="HelloWorldWorkflow", validation_alias=AliasChoices("workflow_type", "HELLO_WORKFLOW_TYPE")
    )
    workflow_input: str = Field(
        default="Temporal", validation_alias=AliasChoices("workflow_input", "HELLO_WORKFLOW_INPUT")
    )
    greeting_style: str = Field(
        default="full", validation_alias=AliasChoices("greeting_style", "HELLO_GREETING_STYLE")
    )
    workflow_execution_timeout_s: int = Field(
        default=60, validation_alias=AliasChoices("workflow_execution_timeout_s", "HELLO_WORKFLOW_TIMEOUT_S")
    )
    failure_policy: str = Field(
        default="raise", validation_alias=AliasChoices("failure_policy", "HELLO_FAILURE_POLICY")
    )

    # ── Instrumentation switches ──────────────────────────────────────────────
    manual_spans: bool = Field(
        default=True, validation_alias=AliasChoices("manual_spans", "HELLO_MANUAL_SPANS")
    )
    temporal_tracing: bool = Field(
        default=True, validation_alias=AliasChoices("temporal_tracing", "HELLO_TEMPORAL_TRACING")
    )
    temporal_runtime_metrics: bool = Field(
        default=False, validation_alias=AliasChoices("temporal_runtime_metrics", "HELLO_TEMPORAL_RUNTIME_METRICS")
    )
    dashboard_metrics: bool = Field(
        default=False, validation_alias=AliasChoices("dashboard_metrics", "HELLO_DASHBOARD_METRICS")
    )
    dashboard_initial_delay_ms: int = Field(
        default=1_000, validation_alias=AliasChoices("dashboard_initial_delay_ms", "HELLO_DASHBOARD_INITIAL_DELAY_MS")
    )
    dashboard_interval_ms: int = Field(
        default=5_000, validation_alias=AliasChoices("dashboard_interval_ms", "HELLO_DASHBOARD_INTERVAL_MS")
    )

    # ── Lifecycle ─────────────────────────────────────────────────────────────
    shutdown_timeout_ms: int = Field(
        default=5_000, validation_alias=AliasChoices("shutdown_timeout_ms", "HELLO_SHUTDOWN_TIMEOUT_MS")
    )

    # ── Logging ───────────────────────────────────────────────────────────────
    log_level: str = Field(
        default="INFO", validation_alias=AliasChoices("log_level", "HELLO_LOG_LEVEL")
    )
    log_format: str = Field(
        default="console", validation_alias=AliasChoices("log_format", "HELLO_LOG_FORMAT")
    )

    @field_validator("otlp_protocol")
    @classmethod
    def validate_protocol(cls, v: str) -> str:
        v = v.strip().lower()
        if v == "grpc":
            return v
        if v in ("http", "http/protobuf", "http/json"):
            return "http"
        raise ValueError(f"otlp_protocol must be grpc or http, got {v!r}")

    @field_validator("logs_exporter")
    @classmethod
    def validate_logs_exporter(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("none", "otlp"):
            raise ValueError(f"logs_exporter must be none or otlp, got {v!r}")
        return v

    @field_validator("greeting_style")
    @classmethod
    def validate_greeting_style(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("full", "simple"):
            raise ValueError(f"greeting_style must be full or simple, got {v!r}")
        return v

    @field_validator("failure_policy")
    @classmethod
    def validate_failure_policy(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("raise", "continue"):
            raise ValueError(f"failure_policy must be raise or continue, got {v!r}")
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("console", "json"):
            raise ValueError(f"log_format must be console or json, got {v!r}")
        return v

    @field_validator(
        "shutdown_timeout_ms",
        "otlp_timeout_ms",
        "metric_export_interval_ms",
        "dashboard_interval_ms",
        "connect_attempts",
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"must be positive, got {v}")
        return v

    @field_validator("otlp_endpoint", "temporal_host_url", "temporal_tls_cert", "temporal_tls_key")
    @classmethod
    def blank_to_none(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        return v.strip()

    # ── Derived values ────────────────────────────────────────────────────────

    @property
    def is_temporal_cloud(self) -> bool:
        return self.temporal_host_url is not None

    @property
    def temporal_address(self) -> str:
        return self.temporal_host_url or DEFAULT_TEMPORAL_ADDRESS

    @property
    def resolved_otlp_endpoint(self) -> str:
        if self.otlp_endpoint:
            return self.otlp_endpoint
        return DEFAULT_GRPC_ENDPOINT if self.otlp_protocol == "grpc" else DEFAULT_HTTP_ENDPOINT

    def otlp_header_map(self, environ: Mapping[str, str] | None = None) -> dict[str, str]:
        """
        Exporter headers: the ``OTEL_EXPORTER_OTLP_HEADERS`` string first, then
        ``OTEL_EXPORTER_OTLP_HEADERS_<NAME>`` variables (name lowercased), then
        the SigNoz ingestion key when one is configured.
        """
        env = os.environ if environ is None else environ
        headers = parse_key_value_pairs(self.otlp_headers)
        for key, value in env.items():
            if key.upper().startswith(HEADER_ENV_PREFIX) and len(key) > len(HEADER_ENV_PREFIX):
                headers[key[len(HEADER_ENV_PREFIX):].lower()] = value
        if self.signoz_ingestion_key is not None:
            headers[SIGNOZ_HEADER] = self.signoz_ingestion_key.get_secret_value()
        return headers


@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """
    Return the process config for entry points. Cached after first call.
    Call _reset_config() in tests to pick up new env vars.
    """
    return AppConfig()


def _reset_config() -> None:
    """Clear the cached config. Used by tests."""
    get_config.cache_clear()


__all__ = [
    "AppConfig",
    "get_config",
    "parse_key_value_pairs",
    "DEFAULT_SERVICE_NAME",
    "DEFAULT_TASK_QUEUE",
    "DEFAULT_TEMPORAL_ADDRESS",
    "DEFAULT_GRPC_ENDPOINT",
    "DEFAULT_HTTP_ENDPOINT",
]
