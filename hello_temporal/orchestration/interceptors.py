"""
hello_temporal.orchestration.interceptors
───────────────────────────────────────────
Worker interceptor that narrates every workflow run as
``RunWorkflow:<type> started / completed / failed``. Logging goes through
``workflow.logger`` so replays stay quiet. Failures are re-raised unchanged.
"""
from __future__ import annotations

from typing import Any

from temporalio import workflow
from temporalio.worker import (
    ExecuteWorkflowInput,
    Interceptor,
    WorkflowInboundInterceptor,
    WorkflowInterceptorClassInput,
)


class _RunWorkflowInbound(WorkflowInboundInterceptor):
    async def execute_workflow(self, input: ExecuteWorkflowInput) -> Any:
        info = workflow.info()
        label = f"RunWorkflow:{info.workflow_type}"
        workflow.logger.info(
            f"{label} started",
            extra={
                "workflow.id": info.workflow_id,
                "workflow.run_id": info.run_id,
                "workflow.task_queue": info.task_queue,
                "workflow.namespace": info.namespace,
            },
        )
        try:
            result = await super().execute_workflow(input)
        except Exception as exc:
            workflow.logger.error(f"{label} failed", extra={"error": str(exc)})
            raise
        workflow.logger.info(f"{label} completed successfully")
        return result


class RunWorkflowLoggingInterceptor(Interceptor):
    def workflow_interceptor_class(
        self, input: WorkflowInterceptorClassInput
    ) -> type[WorkflowInboundInterceptor] | None:
        return _RunWorkflowInbound


__all__ = ["RunWorkflowLoggingInterceptor"]
