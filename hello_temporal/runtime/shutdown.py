"""
hello_temporal.runtime.shutdown
─────────────────────────────────
Graceful shutdown for the worker and demo processes.

SIGINT, SIGTERM and exceptions nobody awaited all funnel into one shutdown
path: stop accepting work, stop the worker (registered cleanups, last in
first out), flush telemetry against a bounded timeout, then hand the exit
code to ``exit_fn``. Every trigger after the first joins the shutdown already
in flight; the exit callback runs exactly once.

Usage:
    coordinator = ShutdownCoordinator(telemetry)
    coordinator.install_signal_handlers()
    coordinator.add_cleanup("worker", worker.shutdown)
    await coordinator.wait()
    return await coordinator.shutdown()

The entry point passes the returned code to sys.exit after the loop closes.
"""
from __future__ import annotations

import asyncio
import inspect
import signal
from collections.abc import Callable
from typing import Any

from hello_temporal.core.logging import get_logger
from hello_temporal.telemetry.bootstrap import TelemetryContext

log = get_logger(__name__)

SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ShutdownCoordinator:
    """
    Args:
        telemetry:        Context flushed and stopped during shutdown.
        flush_timeout_ms: Bound for the telemetry race. Defaults to the
                          context's configured shutdown timeout.
        exit_fn:          Called once with the final exit code.
    """

    def __init__(
        self,
        telemetry: TelemetryContext | None,
        flush_timeout_ms: int | None = None,
        exit_fn: Callable[[int], Any] | None = None,
    ) -> None:
        self._telemetry = telemetry
        self._flush_timeout_ms = flush_timeout_ms
        self._exit_fn = exit_fn
        self._cleanups: list[tuple[str, Callable[[], Any]]] = []
        self._stop = asyncio.Event()
        self._exit_code = 0
        self._task: asyncio.Task[int] | None = None

    @property
    def requested(self) -> bool:
        return self._stop.is_set()

    @property
    def exit_code(self) -> int:
        return self._exit_code

    # ── Triggers ──────────────────────────────────────────────────────────────

    def install_signal_handlers(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        loop = loop or asyncio.get_running_loop()
        for sig in SIGNALS:
            try:
                loop.add_signal_handler(sig, self._on_signal, sig)
            except (NotImplementedError, RuntimeError):
                log.warning("shutdown.signal_unsupported", signal=sig.name)

    def install_exception_handler(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Route exceptions nobody awaited into a shutdown with exit code 1."""
        loop = loop or asyncio.get_running_loop()

        def _handler(loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
            exc = context.get("exception")
            log.error(
                "shutdown.unhandled_exception",
                message=context.get("message"),
                error=str(exc) if exc else None,
            )
            self.request_shutdown(1)

        loop.set_exception_handler(_handler)

    def _on_signal(self, sig: signal.Signals) -> None:
        log.info("shutdown.signal", signal=sig.name)
        self.request_shutdown(0)

    def request_shutdown(self, exit_code: int = 0) -> None:
        """Ask the process to stop. A failure code is never downgraded by a later 0."""
        self._exit_code = max(self._exit_code, exit_code)
        self._stop.set()

    async def wait(self) -> int:
        """Block until a shutdown is requested. Returns the requested exit code."""
        await self._stop.wait()
        return self.exit_code

    # ── Shutdown path ─────────────────────────────────────────────────────────

    def add_cleanup(self, name: str, fn: Callable[[], Any]) -> None:
        """Register a sync or async callable to run during shutdown (LIFO)."""
        self._cleanups.append((name, fn))

    async def shutdown(self, exit_code: int | None = None) -> int:
        """
        Run the shutdown path once. Later calls wait for the first one and
        return its exit code without running anything again.
        """
        if self._task is None:
            self.request_shutdown(0 if exit_code is None else exit_code)
            self._task = asyncio.get_running_loop().create_task(self._run(), name="shutdown")
        return await asyncio.shield(self._task)

    async def _run(self) -> int:
        code = self.exit_code
        log.info("shutdown.started", exit_code=code)

        for name, fn in reversed(self._cleanups):
            try:
                result = fn()
                if inspect.isawaitable(result):
                    await result
                log.info("shutdown.cleanup_done", cleanup=name)
            except Exception as exc:
                log.error("shutdown.cleanup_failed", cleanup=name, error=str(exc))

        if self._telemetry is not None:
            flushed = await self._telemetry.shutdown(self._flush_timeout_ms)
            log.info("shutdown.telemetry", flushed=flushed)

        log.info("shutdown.complete", exit_code=code)
        if self._exit_fn is not None:
            self._exit_fn(code)
        return code


__all__ = ["ShutdownCoordinator", "SIGNALS"]
