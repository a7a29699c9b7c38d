"""
hello_temporal.runtime.health
───────────────────────────────
Preflight dependency checks run before the demo starts any work.

A critical check failing blocks startup (PreflightError). A non-critical
check failing only degrades the run: the collector being down means spans and
metrics go nowhere, but workflows still execute.

Usage:
    checker = HealthChecker()
    checker.register("temporal", tcp_check("localhost", 7233), critical=True)
    checker.register("collector", tcp_check("localhost", 4317), critical=False)
    result = await checker.readiness()
"""
from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlsplit

from hello_temporal.core.config import AppConfig
from hello_temporal.core.errors import PreflightError
from hello_temporal.core.logging import get_logger

log = get_logger(__name__)


@dataclass
class CheckResult:
    name: str
    status: str           # "ok" | "failed"
    critical: bool
    latency_ms: float
    detail: str | None = None


class HealthChecker:
    def __init__(self) -> None:
        self._checks: list[dict[str, Any]] = []

    def register(
        self,
        name: str,
        check_fn: Callable[[], Coroutine | bool],
        critical: bool = True,
        timeout: float = 5.0,
    ) -> None:
        """
        Register a check.

        Args:
            name:       Check name (e.g. "temporal", "collector").
            check_fn:   Async or sync callable. Return True = healthy, raise/False = unhealthy.
            critical:   If True, failure blocks startup. If False, degraded but not blocking.
            timeout:    Max seconds before the check is considered failed.
        """
        self._checks.append(
            {"name": name, "fn": check_fn, "critical": critical, "timeout": timeout}
        )

    async def readiness(self) -> dict:
        """
        Runs all registered checks. Status is "ok" when every critical check
        passed, "degraded" otherwise.
        """
        results: list[CheckResult] = []

        for check in self._checks:
            start = time.monotonic()
            try:
                fn = check["fn"]
                if asyncio.iscoroutinefunction(fn):
                    ok = await asyncio.wait_for(fn(), timeout=check["timeout"])
                else:
                    ok = fn()
                status = "ok" if ok else "failed"
                detail = None
            except asyncio.TimeoutError:
                status = "failed"
                detail = f"Timed out after {check['timeout']}s"
            except Exception as exc:
                status = "failed"
                detail = str(exc)

            results.append(CheckResult(
                name=check["name"],
                status=status,
                critical=check["critical"],
                latency_ms=round((time.monotonic() - start) * 1000, 2),
                detail=detail,
            ))

        all_critical_ok = all(
            r.status == "ok" for r in results if r.critical
        )

        return {
            "status": "ok" if all_critical_ok else "degraded",
            "checks": [
                {
                    "name": r.name,
                    "status": r.status,
                    "critical": r.critical,
                    "latency_ms": r.latency_ms,
                    **({"detail": r.detail} if r.detail else {}),
                }
                for r in results
            ],
            "timestamp": time.time(),
        }


# ── Checks ────────────────────────────────────────────────────────────────────

def tcp_check(host: str, port: int) -> Callable[[], Coroutine[Any, Any, bool]]:
    """Check factory: True when a TCP connection to ``host:port`` opens."""
    async def _check() -> bool:
        _, writer = await asyncio.open_connection(host, port)
        writer.close()
        await writer.wait_closed()
        return True

    _check.__qualname__ = f"tcp_check({host}:{port})"
    return _check


def split_host_port(address: str, default_port: int) -> tuple[str, int]:
    """``"http://otel:4317"`` → ``("otel", 4317)``; bare ``host:port`` accepted too."""
    parsed = urlsplit(address if "://" in address else f"//{address}")
    return parsed.hostname or "localhost", parsed.port or default_port


async def preflight(config: AppConfig, checker: HealthChecker | None = None) -> dict:
    """
    Check the local Temporal server (critical, skipped for Temporal Cloud) and
    the OTLP collector (non-critical). Raises PreflightError when a critical
    check fails.
    """
    checker = checker or HealthChecker()
    if not config.is_temporal_cloud:
        host, port = split_host_port(config.temporal_address, 7233)
        checker.register("temporal", tcp_check(host, port), critical=True, timeout=2.0)
    collector_port = 4317 if config.otlp_protocol == "grpc" else 4318
    host, port = split_host_port(config.resolved_otlp_endpoint, collector_port)
    checker.register("collector", tcp_check(host, port), critical=False, timeout=2.0)

    result = await checker.readiness()
    for check in result["checks"]:
        if check["status"] == "ok":
            log.info("preflight.ok", check=check["name"], latency_ms=check["latency_ms"])
        elif check["critical"]:
            log.error("preflight.failed", check=check["name"], detail=check.get("detail"))
        else:
            log.warning(
                "preflight.degraded",
                check=check["name"],
                detail=check.get("detail"),
                impact="metrics and traces will not be exported",
            )

    if result["status"] != "ok":
        failed = [c["name"] for c in result["checks"] if c["critical"] and c["status"] != "ok"]
        raise PreflightError(
            f"Critical preflight checks failed: {', '.join(failed)}",
            checks=failed,
        )
    return result


__all__ = ["HealthChecker", "CheckResult", "tcp_check", "split_host_port", "preflight"]
