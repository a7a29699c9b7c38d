"""
hello_temporal.orchestration.workflows
────────────────────────────────────────
Workflow definitions. Workflow code runs inside Temporal's deterministic
sandbox: no clocks, randomness or I/O here. Anything of that kind goes
through an activity.

Registered types:
    HelloWorldWorkflow   "Hello <name>!" computed in the workflow itself
    greetUser            one ``say_hello`` activity call
    GreetingWorkflow     multi-step greeting, "full" or "simple" style
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from temporalio import workflow

with workflow.unsafe.imports_passed_through():
    from hello_temporal.orchestration.activities import GreetingActivities, say_hello

ACTIVITY_TIMEOUT = timedelta(seconds=10)


def hello_message(name: str) -> str:
    return "Hello " + name + "!"


@dataclass
class GreetingRequest:
    name: str
    style: str = "full"


@workflow.defn(name="HelloWorldWorkflow")
class HelloWorldWorkflow:
    @workflow.run
    async def run(self, name: str) -> str:
        return hello_message(name)


@workflow.defn(name="greetUser")
class GreetUserWorkflow:
    """Delegates the greeting to the ``say_hello`` activity."""

    @workflow.run
    async def run(self, name: str) -> str:
        workflow.logger.info("Starting workflow execution", extra={"workflow_input": name})
        try:
            result = await workflow.execute_activity(
                say_hello, name, start_to_close_timeout=ACTIVITY_TIMEOUT
            )
        except Exception as exc:
            workflow.logger.error("Workflow failed", extra={"error": str(exc)})
            raise
        workflow.logger.info("Workflow completed successfully", extra={"result": result})
        return result


@workflow.defn(name="GreetingWorkflow")
class GreetingWorkflow:
    """
    ``full``:   formatName → generateGreeting → addTimestamp
    ``simple``: simpleTrimName → simpleHello
    """

    @workflow.run
    async def run(self, request: GreetingRequest) -> str:
        if request.style == "simple":
            name = await workflow.execute_activity_method(
                GreetingActivities.simple_trim_name,
                request.name,
                start_to_close_timeout=ACTIVITY_TIMEOUT,
            )
            return await workflow.execute_activity_method(
                GreetingActivities.simple_hello, name, start_to_close_timeout=ACTIVITY_TIMEOUT
            )

        name = await workflow.execute_activity_method(
            GreetingActivities.format_name, request.name, start_to_close_timeout=ACTIVITY_TIMEOUT
        )
        greeting = await workflow.execute_activity_method(
            GreetingActivities.generate_greeting, name, start_to_close_timeout=ACTIVITY_TIMEOUT
        )
        return await workflow.execute_activity_method(
            GreetingActivities.add_timestamp, greeting, start_to_close_timeout=ACTIVITY_TIMEOUT
        )


WORKFLOWS = [HelloWorldWorkflow, GreetUserWorkflow, GreetingWorkflow]


__all__ = [
    "HelloWorldWorkflow",
    "GreetUserWorkflow",
    "GreetingWorkflow",
    "GreetingRequest",
    "hello_message",
    "WORKFLOWS",
]
