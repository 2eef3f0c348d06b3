"""Executors for each workflow step kind."""

from __future__ import annotations

import abc
import logging
from typing import Any, Dict, List, Optional

from .clock import Clock, SystemClock
from .commands import CommandRunner
from .context import ExecutionContext, MissingContextValue
from .contracts import (
    Condition,
    ConditionalConfig,
    CreateInstanceConfig,
    CreateInstanceOptions,
    DestroyInstanceConfig,
    ExecuteCommandConfig,
    StepKind,
    WaitConfig,
    WorkflowStep,
)
from .errors import CommandTimeoutError, StepExecutionError
from .lifecycle import InstanceLifecycleManager

logger = logging.getLogger(__name__)


class StepExecutor(metaclass=abc.ABCMeta):
    """Runs one kind of step against the shared execution context."""

    kind: StepKind

    @abc.abstractmethod
    async def execute(self, step: WorkflowStep, context: ExecutionContext) -> None:
        raise NotImplementedError


def _instance_id(step: WorkflowStep, context: ExecutionContext, key: str) -> str:
    instance_id = context.get(key)
    if not instance_id:
        raise StepExecutionError(step.id, f"No instance ID found in context key '{key}'")
    return str(instance_id)


class CreateInstanceExecutor(StepExecutor):
    kind = StepKind.CREATE_INSTANCE

    def __init__(self, lifecycle: InstanceLifecycleManager) -> None:
        self.lifecycle = lifecycle

    async def execute(self, step: WorkflowStep, context: ExecutionContext) -> None:
        config: CreateInstanceConfig = step.config
        instance = await self.lifecycle.create_instance(
            CreateInstanceOptions.from_step(config)
        )
        context[config.context_key] = instance.id


class ExecuteCommandExecutor(StepExecutor):
    """Run a command; optionally store its result and fail on non-zero exit."""

    kind = StepKind.EXECUTE_COMMAND

    def __init__(self, runner: CommandRunner) -> None:
        self.runner = runner

    async def execute(self, step: WorkflowStep, context: ExecutionContext) -> None:
        config: ExecuteCommandConfig = step.config
        instance_id = _instance_id(step, context, config.instance_key)
        try:
            command = context.render(config.command)
            args = [context.render(arg) for arg in config.args]
        except MissingContextValue as exc:
            raise StepExecutionError(
                step.id, f"No context value for placeholder {exc.args[0]}"
            ) from exc

        result = await self.runner.run(
            instance_id, command, args, timeout_ms=config.timeout_ms
        )

        if config.result_key:
            context[config.result_key] = result.as_context_value()

        if config.fail_on_error:
            if result.timed_out:
                raise CommandTimeoutError(
                    command, config.timeout_ms or self.runner.default_timeout_ms
                )
            if result.exit_code != 0:
                raise StepExecutionError(
                    step.id,
                    result.error.strip() or f"Command exited with code {result.exit_code}",
                    result.exit_code,
                )


class WaitExecutor(StepExecutor):
    kind = StepKind.WAIT

    def __init__(self, clock: Optional[Clock] = None) -> None:
        self.clock = clock or SystemClock()

    async def execute(self, step: WorkflowStep, context: ExecutionContext) -> None:
        config: WaitConfig = step.config
        await self.clock.sleep(config.duration / 1000)


class DestroyInstanceExecutor(StepExecutor):
    kind = StepKind.DESTROY_INSTANCE

    def __init__(self, lifecycle: InstanceLifecycleManager) -> None:
        self.lifecycle = lifecycle

    async def execute(self, step: WorkflowStep, context: ExecutionContext) -> None:
        config: DestroyInstanceConfig = step.config
        instance_id = _instance_id(step, context, config.instance_key)
        await self.lifecycle.destroy_instance(instance_id)
        context.pop(config.instance_key, None)


def _same_value(left: Any, right: Any) -> bool:
    # booleans never equal numbers
    if isinstance(left, bool) or isinstance(right, bool):
        return type(left) is type(right) and left == right
    return left == right


def _as_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    return str(value)


def evaluate_condition(condition: Condition, context: ExecutionContext) -> bool:
    """Evaluate ``condition`` against the context.

    Dotted keys such as ``build.exitCode`` look into stored results.
    ``equals`` does not treat booleans and numbers as equal. ``contains``
    tests membership for lists, sets and dicts and otherwise compares the
    text forms of both values, so ``15`` contains ``"5"``.
    """
    try:
        value: Any = context.lookup(condition.context_key)
        present = True
    except MissingContextValue:
        value, present = None, False
    if condition.operator == "exists":
        return present and value is not None
    if condition.operator == "equals":
        return present and _same_value(value, condition.value)
    if condition.operator == "notEquals":
        return not present or not _same_value(value, condition.value)
    # contains
    if not present or value is None:
        return False
    if isinstance(value, (list, tuple, set, frozenset, dict)):
        return any(_same_value(item, condition.value) for item in value)
    return _as_text(condition.value) in _as_text(value)


class ConditionalExecutor(StepExecutor):
    """Run the ``then`` or ``else`` branch step depending on a context value."""

    kind = StepKind.CONDITIONAL

    def __init__(self, registry: "StepExecutorRegistry") -> None:
        self.registry = registry

    async def execute(self, step: WorkflowStep, context: ExecutionContext) -> None:
        config: ConditionalConfig = step.config
        matched = evaluate_condition(config.condition, context)
        branch = config.then_step if matched else config.else_step
        logger.info(
            f"Condition on '{config.condition.context_key}' for step {step.id} "
            f"is {matched}; running {branch.id if branch else 'nothing'}"
        )
        if branch is not None:
            await self.registry.execute(branch, context)


class StepExecutorRegistry:
    """Dispatch steps to the executor registered for their kind."""

    def __init__(self) -> None:
        self._executors: Dict[StepKind, StepExecutor] = {}

    def register(self, executor: StepExecutor) -> None:
        self._executors[executor.kind] = executor

    def get(self, kind: StepKind) -> StepExecutor:
        try:
            return self._executors[kind]
        except KeyError:
            raise ValueError(f"No executor registered for step kind {kind.value}") from None

    @property
    def kinds(self) -> List[StepKind]:
        return list(self._executors)

    async def execute(self, step: WorkflowStep, context: ExecutionContext) -> None:
        await self.get(step.kind).execute(step, context)

    @classmethod
    def default(
        cls,
        lifecycle: InstanceLifecycleManager,
        runner: CommandRunner,
        clock: Optional[Clock] = None,
    ) -> "StepExecutorRegistry":
        registry = cls()
        registry.register(CreateInstanceExecutor(lifecycle))
        registry.register(ExecuteCommandExecutor(runner))
        registry.register(WaitExecutor(clock))
        registry.register(DestroyInstanceExecutor(lifecycle))
        registry.register(ConditionalExecutor(registry))
        return registry
