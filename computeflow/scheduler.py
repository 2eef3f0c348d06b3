"""Dependency-graph scheduler for workflow executions."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Set

from .context import ExecutionContext
from .contracts import (
    ExecutionStatus,
    StepStatus,
    Workflow,
    WorkflowExecution,
    WorkflowStep,
)
from .errors import CircularDependencyError, ComputeFlowError
from .persistence import ExecutionRepository, InMemoryExecutionRepository
from .steps import StepExecutorRegistry

logger = logging.getLogger(__name__)


class _StepFailed(Exception):
    def __init__(self, step: WorkflowStep, error: BaseException) -> None:
        super().__init__(str(error))
        self.step = step
        self.error = error


def ready_steps(workflow: Workflow, executed: Set[str]) -> List[WorkflowStep]:
    """Steps not yet executed whose dependencies have all executed."""
    return [
        step
        for step in workflow.steps
        if step.id not in executed and all(dep in executed for dep in step.depends_on)
    ]


class WorkflowScheduler:
    """Run a workflow as a sequence of ready sets.

    Each ready set runs concurrently against one shared context. The first
    failing step cancels its running siblings and fails the execution; no
    later ready set is started. A workflow whose remaining steps can never
    become ready fails with ``CircularDependencyError``.
    """

    def __init__(
        self,
        registry: StepExecutorRegistry,
        executions: Optional[ExecutionRepository] = None,
    ) -> None:
        self.registry = registry
        self.executions = executions or InMemoryExecutionRepository()

    async def execute(
        self, workflow: Workflow, initial_context: Optional[Dict[str, Any]] = None
    ) -> WorkflowExecution:
        execution = await self.executions.create_execution(workflow.id, initial_context)
        return await self.run(workflow, execution)

    async def run(self, workflow: Workflow, execution: WorkflowExecution) -> WorkflowExecution:
        context = ExecutionContext(execution.context)
        await self.executions.mark_execution_running(execution.id)
        logger.info(f"Starting execution {execution.id} of workflow {workflow.id}")

        executed: Set[str] = set()
        try:
            while len(executed) < len(workflow.steps):
                ready = ready_steps(workflow, executed)
                if not ready:
                    raise CircularDependencyError(
                        [s.id for s in workflow.steps if s.id not in executed]
                    )
                logger.debug(
                    f"Execution {execution.id} ready set: {[s.id for s in ready]}"
                )
                await self._run_batch(execution, ready, context)
                executed.update(step.id for step in ready)
        except asyncio.CancelledError:
            logger.info(f"Execution {execution.id} cancelled")
            await self.executions.mark_execution_finished(
                execution.id, ExecutionStatus.CANCELLED, error="Execution cancelled"
            )
            raise
        except _StepFailed as failure:
            error = failure.error
            logger.error(
                f"Execution {execution.id} failed at step {failure.step.id}: {error}"
            )
            await self.executions.mark_execution_finished(
                execution.id,
                ExecutionStatus.FAILED,
                error=str(error),
                error_code=getattr(error, "code", ComputeFlowError.code),
                failed_step=failure.step.id,
            )
            return execution
        except CircularDependencyError as exc:
            logger.error(f"Execution {execution.id} failed: {exc}")
            await self.executions.mark_execution_finished(
                execution.id, ExecutionStatus.FAILED, error=str(exc), error_code=exc.code
            )
            return execution

        await self.executions.mark_execution_finished(
            execution.id, ExecutionStatus.COMPLETED
        )
        logger.info(f"Execution {execution.id} completed")
        return execution

    async def _run_batch(
        self,
        execution: WorkflowExecution,
        ready: List[WorkflowStep],
        context: ExecutionContext,
    ) -> None:
        tasks: Dict[asyncio.Task, WorkflowStep] = {
            asyncio.create_task(
                self._run_step(execution, step, context), name=f"step-{step.id}"
            ): step
            for step in ready
        }
        try:
            done, pending = await asyncio.wait(
                tasks, return_when=asyncio.FIRST_EXCEPTION
            )
        except asyncio.CancelledError:
            await self._cancel(tasks)
            raise

        failed = [t for t in done if not t.cancelled() and t.exception() is not None]
        if not failed:
            return
        if pending:
            logger.warning(
                f"Cancelling {len(pending)} running step(s) of execution "
                f"{execution.id} after a failure"
            )
            await self._cancel(pending)
        # report the earliest declared step among simultaneous failures
        first = min(failed, key=lambda t: ready.index(tasks[t]))
        raise _StepFailed(tasks[first], first.exception())

    @staticmethod
    async def _cancel(tasks) -> None:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _run_step(
        self, execution: WorkflowExecution, step: WorkflowStep, context: ExecutionContext
    ) -> None:
        await self.executions.mark_step_started(execution.id, step)
        logger.info(f"Executing step {step.id} ({step.kind.value})")
        try:
            await self.registry.execute(step, context)
        except asyncio.CancelledError:
            await self.executions.mark_step_completed(
                execution.id, step.id, StepStatus.CANCELLED
            )
            raise
        except Exception as exc:
            await self.executions.mark_step_completed(
                execution.id, step.id, StepStatus.FAILED, str(exc)
            )
            raise
        await self.executions.mark_step_completed(
            execution.id, step.id, StepStatus.COMPLETED
        )
        logger.info(f"Step {step.id} completed")
