"""
hello_temporal.telemetry.resource
───────────────────────────────────
Service identity attached to every span, metric and log record this process
emits. Built once at bootstrap from the config and never changed afterwards.

Precedence inside the mapping: explicit service name and the standard
identity attributes override whatever OTEL_RESOURCE_ATTRIBUTES carries for
the same keys; any other parsed key is kept as-is.
"""
from __future__ import annotations

from types import MappingProxyType
from typing import Mapping

from opentelemetry.sdk.resources import Resource

from hello_temporal.core.config import DEFAULT_SERVICE_NAME, AppConfig, parse_key_value_pairs

SERVICE_NAME = "service.name"
SERVICE_NAMESPACE = "service.namespace"
DEPLOYMENT_ENVIRONMENT = "deployment.environment"
DEPLOYMENT_REGION = "deployment.region"
HOST_NAME = "host.name"


def parse_resource_attributes(raw: str | None) -> dict[str, str]:
    """Parse an ``OTEL_RESOURCE_ATTRIBUTES`` style string. Malformed pairs are dropped."""
    return parse_key_value_pairs(raw)


def build_resource_attributes(
    raw: str | None = None,
    service_name: str | None = None,
    *,
    namespace: str | None = None,
    environment: str | None = None,
    region: str | None = None,
    host_name: str | None = None,
) -> Mapping[str, str]:
    """
    Build the immutable identity mapping.

    ``service.name`` resolves as: explicit argument, then the parsed string,
    then ``DEFAULT_SERVICE_NAME``. The other keyword arguments are only
    written when given.
    """
    attrs = parse_resource_attributes(raw)
    attrs[SERVICE_NAME] = service_name or attrs.get(SERVICE_NAME) or DEFAULT_SERVICE_NAME
    for key, value in (
        (SERVICE_NAMESPACE, namespace),
        (DEPLOYMENT_ENVIRONMENT, environment),
        (DEPLOYMENT_REGION, region),
        (HOST_NAME, host_name),
    ):
        if value:
            attrs[key] = value
    return MappingProxyType(attrs)


def resource_from_config(config: AppConfig) -> Resource:
    attrs = build_resource_attributes(
        config.resource_attributes,
        config.service_name,
        namespace=config.temporal_namespace,
        environment=config.environment,
        region=config.deployment_region,
        host_name=config.host_name,
    )
    return Resource.create(dict(attrs))


__all__ = [
    "parse_resource_attributes",
    "build_resource_attributes",
    "resource_from_config",
]
