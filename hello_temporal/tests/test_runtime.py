"""Tests for preflight checks and the shutdown coordinator."""
from __future__ import annotations

import asyncio
import os
import signal
import socket

import pytest

from hello_temporal.core.config import AppConfig
from hello_temporal.core.errors import PreflightError
from hello_temporal.runtime.health import HealthChecker, preflight, split_host_port, tcp_check
from hello_temporal.runtime.shutdown import ShutdownCoordinator
from hello_temporal.telemetry.bootstrap import TelemetryState


def _free_port() -> int:
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


async def _start_server() -> tuple[asyncio.AbstractServer, int]:
    async def _handle(reader, writer):
        writer.close()

    server = await asyncio.start_server(_handle, "127.0.0.1", 0)
    return server, server.sockets[0].getsockname()[1]


# ── health ─────────────────────────────────────────────────────────────────

class TestHealthChecker:
    @pytest.mark.asyncio
    async def test_all_ok(self):
        checker = HealthChecker()
        checker.register("sync", lambda: True)

        async def async_ok():
            return True

        checker.register("async", async_ok)
        result = await checker.readiness()
        assert result["status"] == "ok"
        assert [c["status"] for c in result["checks"]] == ["ok", "ok"]

    @pytest.mark.asyncio
    async def test_non_critical_failure_keeps_ok(self):
        checker = HealthChecker()
        checker.register("collector", lambda: False, critical=False)
        result = await checker.readiness()
        assert result["status"] == "ok"
        assert result["checks"][0]["status"] == "failed"

    @pytest.mark.asyncio
    async def test_critical_failure_degrades(self):
        def broken():
            raise ConnectionRefusedError("refused")

        checker = HealthChecker()
        checker.register("temporal", broken, critical=True)
        result = await checker.readiness()
        assert result["status"] == "degraded"
        assert result["checks"][0]["detail"] == "refused"

    @pytest.mark.asyncio
    async def test_timeout(self):
        async def slow():
            await asyncio.sleep(1)
            return True

        checker = HealthChecker()
        checker.register("slow", slow, timeout=0.01)
        result = await checker.readiness()
        assert result["checks"][0]["status"] == "failed"
        assert "Timed out" in result["checks"][0]["detail"]


class TestTcpCheck:
    @pytest.mark.asyncio
    async def test_open_port(self):
        server, port = await _start_server()
        try:
            assert await tcp_check("127.0.0.1", port)() is True
        finally:
            server.close()
            await server.wait_closed()

    @pytest.mark.asyncio
    async def test_closed_port_raises(self):
        with pytest.raises(OSError):
            await tcp_check("127.0.0.1", _free_port())()

    def test_split_host_port(self):
        assert split_host_port("http://otel:4317", 1) == ("otel", 4317)
        assert split_host_port("localhost:7233", 1) == ("localhost", 7233)
        assert split_host_port("http://collector", 4318) == ("collector", 4318)


class TestPreflight:
    @pytest.mark.asyncio
    async def test_temporal_down_raises(self):
        config = AppConfig(otlp_endpoint=f"http://127.0.0.1:{_free_port()}")
        checker = HealthChecker()
        checker.register("temporal", tcp_check("127.0.0.1", _free_port()), critical=True)
        with pytest.raises(PreflightError):
            await preflight(config, checker)

    @pytest.mark.asyncio
    async def test_cloud_skips_temporal_check(self):
        config = AppConfig(
            temporal_host_url="ns.tmprl.cloud:7233",
            otlp_endpoint=f"http://127.0.0.1:{_free_port()}",
        )
        result = await preflight(config)
        assert result["status"] == "ok"
        assert [c["name"] for c in result["checks"]] == ["collector"]
        assert result["checks"][0]["status"] == "failed"


# ── shutdown ───────────────────────────────────────────────────────────────

class TestShutdownCoordinator:
    @pytest.mark.asyncio
    async def test_shutdown_runs_once(self, telemetry):
        exits = []
        coordinator = ShutdownCoordinator(telemetry.context, 500, exit_fn=exits.append)
        assert await coordinator.shutdown() == 0
        assert await coordinator.shutdown(1) == 0
        assert exits == [0]
        assert telemetry.context.state is TelemetryState.STOPPED

    @pytest.mark.asyncio
    async def test_concurrent_triggers_share_one_shutdown(self, telemetry):
        exits = []
        coordinator = ShutdownCoordinator(telemetry.context, exit_fn=exits.append)
        codes = await asyncio.gather(coordinator.shutdown(), coordinator.shutdown(), coordinator.shutdown())
        assert codes == [0, 0, 0]
        assert exits == [0]

    @pytest.mark.asyncio
    async def test_cleanups_run_lifo_and_survive_errors(self):
        order = []

        async def stop_worker():
            order.append("worker")

        def broken():
            order.append("broken")
            raise RuntimeError("cleanup failed")

        coordinator = ShutdownCoordinator(None)
        coordinator.add_cleanup("worker", stop_worker)
        coordinator.add_cleanup("broken", broken)
        coordinator.add_cleanup("metrics", lambda: order.append("metrics"))
        await coordinator.shutdown()
        assert order == ["metrics", "broken", "worker"]

    @pytest.mark.asyncio
    async def test_failure_code_not_downgraded(self):
        coordinator = ShutdownCoordinator(None)
        coordinator.request_shutdown(1)
        coordinator.request_shutdown(0)
        assert await coordinator.wait() == 1
        assert await coordinator.shutdown(0) == 1

    @pytest.mark.asyncio
    async def test_sigterm_requests_shutdown(self):
        loop = asyncio.get_running_loop()
        coordinator = ShutdownCoordinator(None)
        coordinator.install_signal_handlers(loop)
        try:
            os.kill(os.getpid(), signal.SIGTERM)
            assert await asyncio.wait_for(coordinator.wait(), timeout=1) == 0
        finally:
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)

    @pytest.mark.asyncio
    async def test_unhandled_exception_requests_exit_1(self):
        loop = asyncio.get_running_loop()
        coordinator = ShutdownCoordinator(None)
        coordinator.install_exception_handler(loop)
        try:
            loop.call_exception_handler({"message": "task failed", "exception": RuntimeError("x")})
            assert coordinator.requested
            assert coordinator.exit_code == 1
        finally:
            loop.set_exception_handler(None)
