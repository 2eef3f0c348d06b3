"""Workflow engine facade: workflow registry plus execution handles."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional, Union

import pydantic

from .clock import Clock, SystemClock
from .commands import CommandRunner
from .config import ComputeFlowConfig, load_config
from .contracts import ExecutionStatus, Workflow, WorkflowExecution
from .errors import NotFoundError, ValidationError
from .lifecycle import InstanceLifecycleManager
from .persistence import (
    ExecutionRepository,
    InMemoryExecutionRepository,
    InMemoryInstanceRepository,
    InMemoryWorkflowRepository,
    InstanceRepository,
    WorkflowRepository,
)
from .providers import ComputeProvider, get_provider
from .scheduler import WorkflowScheduler
from .steps import StepExecutorRegistry
from .templates import default_workflows

logger = logging.getLogger(__name__)


class ExecutionHandle:
    """Running workflow execution.

    The handle can be polled (``done``, ``status``), awaited (``await
    handle`` or ``await handle.wait()``) and cancelled. Awaiting returns the
    execution record in its terminal state; failed executions are returned,
    not raised.
    """

    def __init__(
        self,
        execution: WorkflowExecution,
        task: asyncio.Task,
        executions: ExecutionRepository,
    ) -> None:
        self.execution = execution
        self._task = task
        self._executions = executions

    @property
    def id(self) -> str:
        return self.execution.id

    @property
    def status(self) -> ExecutionStatus:
        return self.execution.status

    def done(self) -> bool:
        return self._task.done()

    def cancel(self) -> bool:
        """Request cancellation; in-flight steps are cancelled cooperatively."""
        return self._task.cancel()

    async def wait(self) -> WorkflowExecution:
        try:
            await asyncio.shield(self._task)
        except asyncio.CancelledError:
            if not self._task.cancelled():
                raise
            if not self.execution.status.is_terminal:
                # cancelled before the scheduler got to run
                await self._executions.mark_execution_finished(
                    self.execution.id,
                    ExecutionStatus.CANCELLED,
                    error="Execution cancelled",
                )
        return self.execution

    def __await__(self):
        return self.wait().__await__()


class WorkflowEngine:
    """Entry point tying providers, stores and the scheduler together."""

    def __init__(
        self,
        provider: Optional[ComputeProvider] = None,
        config: Optional[ComputeFlowConfig] = None,
        workflows: Optional[WorkflowRepository] = None,
        executions: Optional[ExecutionRepository] = None,
        instances: Optional[InstanceRepository] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.config = config or load_config()
        self.provider = provider or get_provider(config=self.config)
        self.clock = clock or SystemClock()
        self.workflows = workflows or InMemoryWorkflowRepository()
        self.executions = executions or InMemoryExecutionRepository()
        self.instances = instances or InMemoryInstanceRepository()

        self.lifecycle = InstanceLifecycleManager(
            self.provider,
            self.instances,
            self.clock,
            max_attempts=self.config.lifecycle.max_attempts,
            interval_ms=self.config.lifecycle.interval_ms,
        )
        self.commands = CommandRunner(
            self.provider,
            self.instances,
            default_timeout_ms=self.config.commands.default_timeout_ms,
            allowed_commands=self.config.commands.allowed_commands,
            max_history=self.config.commands.max_history,
        )
        self.registry = StepExecutorRegistry.default(
            self.lifecycle, self.commands, self.clock
        )
        self.scheduler = WorkflowScheduler(self.registry, self.executions)
        self._running: Dict[str, asyncio.Task] = {}

    async def __aenter__(self) -> "WorkflowEngine":
        await self.provider.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        """Cancel running executions and release provider resources."""
        tasks = [t for t in self._running.values() if not t.done()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await self.provider.disconnect()

    # ------------------------------------------------------------------
    # Workflows
    async def create_workflow(
        self, definition: Union[Workflow, Mapping[str, Any]]
    ) -> Workflow:
        """Validate and store a workflow definition."""
        if isinstance(definition, Workflow):
            workflow = definition
        else:
            try:
                workflow = Workflow.model_validate(dict(definition))
            except pydantic.ValidationError as exc:
                raise ValidationError(
                    "Invalid workflow definition",
                    {"errors": exc.errors(include_url=False, include_context=False)},
                ) from exc
        await self.workflows.save_workflow(workflow)
        logger.info(f"Workflow {workflow.id} created: {workflow.name}")
        return workflow

    async def get_workflow(self, workflow_id: str) -> Workflow:
        workflow = await self.workflows.get_workflow(workflow_id)
        if workflow is None:
            raise NotFoundError("Workflow", workflow_id)
        return workflow

    async def list_workflows(self) -> List[Workflow]:
        return await self.workflows.list_workflows()

    async def install_default_workflows(self) -> List[Workflow]:
        return [await self.create_workflow(w) for w in default_workflows()]

    # ------------------------------------------------------------------
    # Executions
    async def execute_workflow(
        self, workflow_id: str, context: Optional[Dict[str, Any]] = None
    ) -> ExecutionHandle:
        """Start an execution in the background and return its handle."""
        workflow = await self.get_workflow(workflow_id)
        execution = await self.executions.create_execution(workflow.id, context)
        task = asyncio.create_task(
            self.scheduler.run(workflow, execution), name=f"execution-{execution.id}"
        )
        self._running[execution.id] = task
        task.add_done_callback(lambda _: self._running.pop(execution.id, None))
        logger.info(f"Execution {execution.id} of workflow {workflow.id} started")
        return ExecutionHandle(execution, task, self.executions)

    async def run_workflow(
        self, workflow_id: str, context: Optional[Dict[str, Any]] = None
    ) -> WorkflowExecution:
        """Execute a workflow and wait for its terminal state."""
        handle = await self.execute_workflow(workflow_id, context)
        return await handle.wait()

    async def get_execution(self, execution_id: str) -> WorkflowExecution:
        execution = await self.executions.get_execution(execution_id)
        if execution is None:
            raise NotFoundError("Execution", execution_id)
        return execution

    async def list_executions(
        self, workflow_id: Optional[str] = None
    ) -> List[WorkflowExecution]:
        return await self.executions.list_executions(workflow_id)
