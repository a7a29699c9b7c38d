"""
hello_temporal.orchestration.activities
─────────────────────────────────────────
Temporal activities for the greeting workflows. Activities run in the worker
process, outside the workflow sandbox, so they may sleep, read the clock and
draw random numbers freely.

Usage:
    activities = GreetingActivities(metrics=wf_metrics)
    worker = Worker(client, task_queue=..., activities=[say_hello, *activities.all()])
"""
from __future__ import annotations

import asyncio
import random
from datetime import datetime, timezone
from typing import Any, Callable

from temporalio import activity

from hello_temporal.core.logging import get_logger
from hello_temporal.telemetry.metrics import WorkflowMetrics

log = get_logger(__name__)

GREETINGS = ("Hello", "Hi", "Hey", "Greetings", "Welcome")


def iso_timestamp(now: datetime | None = None) -> str:
    """UTC ISO-8601 with millisecond precision and a ``Z`` suffix."""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@activity.defn
async def say_hello(name: str) -> str:
    log.info("activity.say_hello", name=name)
    return f"Hello {name}!"


class GreetingActivities:
    """
    Greeting building blocks. Instance methods are registered as activities,
    so the worker shares one instance (and its metrics handle) across calls.

    Args:
        metrics:  Optional WorkflowMetrics; each call counts as a service request.
        rng:      Random source for ``generate_greeting``.
        delay_s:  Simulated processing time of the "full" activities.
    """

    def __init__(
        self,
        metrics: WorkflowMetrics | None = None,
        rng: random.Random | None = None,
        delay_s: float = 0.1,
    ) -> None:
        self._metrics = metrics
        self._rng = rng or random.Random()
        self._delay_s = delay_s

    def all(self) -> list[Callable[..., Any]]:
        return [
            self.format_name,
            self.generate_greeting,
            self.add_timestamp,
            self.simple_trim_name,
            self.simple_hello,
            self.simple_timestamp,
        ]

    async def _work(self, operation: str) -> None:
        if self._metrics is not None:
            self._metrics.record_service_request(operation)
        if self._delay_s > 0:
            await asyncio.sleep(self._delay_s)

    @activity.defn(name="formatName")
    async def format_name(self, name: str) -> str:
        """``"  bob  "`` → ``"Bob"``."""
        await self._work("formatName")
        trimmed = name.strip()
        return trimmed[:1].upper() + trimmed[1:].lower()

    @activity.defn(name="generateGreeting")
    async def generate_greeting(self, name: str) -> str:
        await self._work("generateGreeting")
        return f"{self._rng.choice(GREETINGS)}, {name}!"

    @activity.defn(name="addTimestamp")
    async def add_timestamp(self, greeting: str) -> str:
        await self._work("addTimestamp")
        return f"[{iso_timestamp()}] {greeting}"

    # ── Simple variants (no processing delay) ─────────────────────────────────

    @activity.defn(name="simpleTrimName")
    async def simple_trim_name(self, name: str) -> str:
        return name.strip()

    @activity.defn(name="simpleHello")
    async def simple_hello(self, name: str) -> str:
        return f"Hello {name}!"

    @activity.defn(name="simpleTimestamp")
    async def simple_timestamp(self, text: str) -> str:
        return f"{text} (at {iso_timestamp()})"


__all__ = ["say_hello", "GreetingActivities", "GREETINGS", "iso_timestamp"]
