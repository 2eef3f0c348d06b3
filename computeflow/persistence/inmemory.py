"""In-memory implementations of the repositories."""

from __future__ import annotations

import logging
from typing import Any, Dict

from ..contracts import (
    ExecutionStatus,
    Instance,
    StepRecord,
    StepStatus,
    Workflow,
    WorkflowExecution,
    WorkflowStep,
    utcnow,
)
from .repository import ExecutionRepository, InstanceRepository, WorkflowRepository

logger = logging.getLogger(__name__)


class InMemoryWorkflowRepository(WorkflowRepository):
    """Store workflow definitions in local memory.

    Data is not persisted across process restarts.
    """

    def __init__(self) -> None:
        self._workflows: Dict[str, Workflow] = {}

    async def save_workflow(self, workflow: Workflow) -> None:
        self._workflows[workflow.id] = workflow

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        return self._workflows.get(workflow_id)

    async def list_workflows(self) -> list[Workflow]:
        return list(self._workflows.values())


class InMemoryExecutionRepository(ExecutionRepository):
    """Store execution records in local memory.

    Records are returned by reference so a caller holding an execution sees
    its status and context change while it runs.
    """

    def __init__(self) -> None:
        self._executions: Dict[str, WorkflowExecution] = {}

    def _get(self, execution_id: str) -> WorkflowExecution | None:
        execution = self._executions.get(execution_id)
        if execution is None:
            logger.warning(f"Unknown execution {execution_id}")
        return execution

    # ------------------------------------------------------------------
    async def create_execution(
        self, workflow_id: str, context: dict[str, Any] | None = None
    ) -> WorkflowExecution:
        execution = WorkflowExecution(workflow_id=workflow_id, context=dict(context or {}))
        self._executions[execution.id] = execution
        return execution

    async def mark_execution_running(self, execution_id: str) -> None:
        execution = self._get(execution_id)
        if execution and execution.status == ExecutionStatus.PENDING:
            execution.status = ExecutionStatus.RUNNING

    async def mark_step_started(self, execution_id: str, step: WorkflowStep) -> StepRecord:
        record = StepRecord(step_id=step.id, name=step.name, kind=step.kind)
        execution = self._get(execution_id)
        if execution is None:
            return record
        # ignore duplicate starts for the same step
        existing = execution.step_record(step.id)
        if existing is not None:
            return existing
        execution.steps.append(record)
        return record

    async def mark_step_completed(
        self,
        execution_id: str,
        step_id: str,
        status: StepStatus,
        error: str | None = None,
    ) -> None:
        execution = self._get(execution_id)
        if execution is None:
            return
        record = execution.step_record(step_id)
        if record is not None and record.completed_at is None:
            record.status = status
            record.error = error
            record.completed_at = utcnow()

    async def mark_execution_finished(
        self,
        execution_id: str,
        status: ExecutionStatus,
        error: str | None = None,
        error_code: str | None = None,
        failed_step: str | None = None,
    ) -> None:
        execution = self._get(execution_id)
        if execution is None:
            return
        if execution.status.is_terminal:
            # terminal statuses are reached once
            return
        execution.status = status
        execution.error = error
        execution.error_code = error_code
        execution.failed_step = failed_step
        execution.completed_at = utcnow()

    async def get_execution(self, execution_id: str) -> WorkflowExecution | None:
        return self._executions.get(execution_id)

    async def list_executions(
        self, workflow_id: str | None = None
    ) -> list[WorkflowExecution]:
        return [
            e
            for e in self._executions.values()
            if workflow_id is None or e.workflow_id == workflow_id
        ]


class InMemoryInstanceRepository(InstanceRepository):
    """Store instance records in local memory."""

    def __init__(self) -> None:
        self._instances: Dict[str, Instance] = {}

    async def save_instance(self, instance: Instance) -> None:
        self._instances[instance.id] = instance

    async def get_instance(self, instance_id: str) -> Instance | None:
        return self._instances.get(instance_id)

    async def list_instances(self) -> list[Instance]:
        return list(self._instances.values())
