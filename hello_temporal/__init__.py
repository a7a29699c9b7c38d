"""
hello_temporal
──────────────
Stable top-level exports. Import from here, not from sub-modules directly.
Entry points live in hello_temporal.worker, hello_temporal.starter and
hello_temporal.demo.
"""
from hello_temporal.core.config import AppConfig, get_config
from hello_temporal.core.logging import configure_logging, get_logger
from hello_temporal.core.errors import HelloTemporalError, ConfigurationError, PreflightError
from hello_temporal.core.retry import retry_policy

from hello_temporal.telemetry.bootstrap import TelemetryContext, TelemetryState, init_telemetry
from hello_temporal.telemetry.resource import build_resource_attributes, parse_resource_attributes
from hello_temporal.telemetry.exporters import ExporterBundle, build_exporters
from hello_temporal.telemetry.metrics import (
    WorkflowMetrics,
    DashboardMetricsHandle,
    register_dashboard_metrics,
)
from hello_temporal.telemetry.tracing import span, detached_span

from hello_temporal.orchestration.activities import GreetingActivities, say_hello
from hello_temporal.orchestration.workflows import (
    HelloWorldWorkflow,
    GreetUserWorkflow,
    GreetingWorkflow,
    GreetingRequest,
)
from hello_temporal.orchestration.connection import connect_client, build_worker, load_tls_config

from hello_temporal.runtime.health import HealthChecker, preflight
from hello_temporal.runtime.shutdown import ShutdownCoordinator

__version__ = "0.1.0"
__all__ = [
    # config
    "AppConfig", "get_config",
    # logging
    "configure_logging", "get_logger",
    # errors
    "HelloTemporalError", "ConfigurationError", "PreflightError",
    # retry
    "retry_policy",
    # telemetry
    "TelemetryContext", "TelemetryState", "init_telemetry",
    "build_resource_attributes", "parse_resource_attributes",
    "ExporterBundle", "build_exporters",
    "WorkflowMetrics", "DashboardMetricsHandle", "register_dashboard_metrics",
    "span", "detached_span",
    # temporal
    "GreetingActivities", "say_hello",
    "HelloWorldWorkflow", "GreetUserWorkflow", "GreetingWorkflow", "GreetingRequest",
    "connect_client", "build_worker", "load_tls_config",
    # runtime
    "HealthChecker", "preflight", "ShutdownCoordinator",
]
