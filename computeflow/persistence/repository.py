"""Repository abstractions for workflows, executions and instances."""

from __future__ import annotations

from typing import Any, Protocol

from ..contracts import (
    ExecutionStatus,
    Instance,
    StepRecord,
    StepStatus,
    Workflow,
    WorkflowExecution,
    WorkflowStep,
)


class WorkflowRepository(Protocol):
    """Protocol for workflow definition storage."""

    async def save_workflow(self, workflow: Workflow) -> None:
        """Persist a workflow definition."""

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        """Retrieve a workflow by id."""

    async def list_workflows(self) -> list[Workflow]:
        """Return all stored workflows."""


class ExecutionRepository(Protocol):
    """Protocol for workflow execution state."""

    async def create_execution(
        self, workflow_id: str, context: dict[str, Any] | None = None
    ) -> WorkflowExecution:
        """Persist a new pending execution and return it."""

    async def mark_execution_running(self, execution_id: str) -> None:
        """Move a pending execution to running."""

    async def mark_step_started(self, execution_id: str, step: WorkflowStep) -> StepRecord:
        """Record start of a step."""

    async def mark_step_completed(
        self,
        execution_id: str,
        step_id: str,
        status: StepStatus,
        error: str | None = None,
    ) -> None:
        """Record completion of a step."""

    async def mark_execution_finished(
        self,
        execution_id: str,
        status: ExecutionStatus,
        error: str | None = None,
        error_code: str | None = None,
        failed_step: str | None = None,
    ) -> None:
        """Move the execution to a terminal status."""

    async def get_execution(self, execution_id: str) -> WorkflowExecution | None:
        """Retrieve an execution by id."""

    async def list_executions(
        self, workflow_id: str | None = None
    ) -> list[WorkflowExecution]:
        """Return executions, optionally for one workflow."""


class InstanceRepository(Protocol):
    """Protocol for instance records."""

    async def save_instance(self, instance: Instance) -> None:
        """Insert or replace an instance record."""

    async def get_instance(self, instance_id: str) -> Instance | None:
        """Retrieve an instance by id."""

    async def list_instances(self) -> list[Instance]:
        """Return all instance records."""
