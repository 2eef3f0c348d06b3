"""Tests for individual step executors."""

import pytest

from computeflow.clock import FakeClock
from computeflow.commands import CommandRunner
from computeflow.context import ExecutionContext
from computeflow.contracts import Condition, InstanceStatus, StepKind, WorkflowStep
from computeflow.errors import CommandTimeoutError, StepExecutionError
from computeflow.lifecycle import InstanceLifecycleManager
from computeflow.providers import InMemoryProvider
from computeflow.steps import StepExecutorRegistry, evaluate_condition


def _step(step_id, kind, **config):
    return WorkflowStep.model_validate({"id": step_id, "type": kind, "config": config})


def _registry():
    provider = InMemoryProvider()
    clock = FakeClock()
    lifecycle = InstanceLifecycleManager(provider, clock=clock)
    runner = CommandRunner(provider, lifecycle.store)
    registry = StepExecutorRegistry.default(lifecycle, runner, clock)
    return provider, lifecycle, clock, registry


def test_default_registry_covers_every_step_kind():
    *_, registry = _registry()
    assert set(registry.kinds) == set(StepKind)


@pytest.mark.asyncio
async def test_create_and_destroy_instance_steps():
    provider, lifecycle, _, registry = _registry()
    context = ExecutionContext()

    await registry.execute(_step("create", "create_instance", contextKey="box"), context)
    instance_id = context["box"]
    instance = await lifecycle.get_instance(instance_id)
    assert instance.status == InstanceStatus.RUNNING

    await registry.execute(_step("destroy", "destroy_instance", instanceKey="box"), context)
    assert "box" not in context
    assert instance.status == InstanceStatus.DESTROYED


@pytest.mark.asyncio
async def test_execute_command_renders_placeholders_and_stores_result():
    provider, _, _, registry = _registry()
    provider.script("git clone", stdout="Cloning...\n")
    context = ExecutionContext({"repoUrl": "https://example.com/repo.git"})
    await registry.execute(_step("create", "create_instance"), context)

    await registry.execute(
        _step(
            "clone",
            "execute_command",
            command="git clone {{repoUrl}}",
            args=["/tmp/{{instanceId}}"],
            resultKey="clone",
        ),
        context,
    )

    machine_id = provider.executed[-1][0]
    assert provider.executed[-1] == (
        machine_id,
        f"git clone https://example.com/repo.git /tmp/{context['instanceId']}",
    )
    assert context["clone"] == {"output": "Cloning...\n", "error": "", "exitCode": 0}


@pytest.mark.asyncio
async def test_execute_command_without_instance_fails():
    *_, registry = _registry()
    with pytest.raises(StepExecutionError, match="No instance ID"):
        await registry.execute(_step("run", "execute_command", command="ls"), ExecutionContext())


@pytest.mark.asyncio
async def test_execute_command_with_unknown_placeholder_fails():
    *_, registry = _registry()
    context = ExecutionContext()
    await registry.execute(_step("create", "create_instance"), context)
    with pytest.raises(StepExecutionError, match="missing"):
        await registry.execute(
            _step("run", "execute_command", command="echo {{missing}}"), context
        )


@pytest.mark.asyncio
async def test_non_zero_exit_only_fails_with_fail_on_error():
    provider, _, _, registry = _registry()
    provider.script("make", stderr="compile error", exit_code=2)
    context = ExecutionContext()
    await registry.execute(_step("create", "create_instance"), context)

    await registry.execute(
        _step("lenient", "execute_command", command="make", resultKey="lenient"), context
    )
    assert context["lenient"]["exitCode"] == 2

    with pytest.raises(StepExecutionError) as exc_info:
        await registry.execute(
            _step(
                "strict",
                "execute_command",
                command="make",
                resultKey="strict",
                failOnError=True,
            ),
            context,
        )
    assert exc_info.value.exit_code == 2
    assert "compile error" in str(exc_info.value)
    # the result is recorded before the failure is raised
    assert context["strict"]["exitCode"] == 2


@pytest.mark.asyncio
async def test_timeout_with_fail_on_error_raises_timeout():
    provider, _, _, registry = _registry()
    provider.script("sleep", duration=5.0)
    context = ExecutionContext()
    await registry.execute(_step("create", "create_instance"), context)

    with pytest.raises(CommandTimeoutError):
        await registry.execute(
            _step(
                "slow",
                "execute_command",
                command="sleep 5",
                timeoutMs=50,
                failOnError=True,
                resultKey="slow",
            ),
            context,
        )
    assert context["slow"]["exitCode"] is None


@pytest.mark.asyncio
async def test_wait_step_sleeps_through_clock():
    _, _, clock, registry = _registry()
    await registry.execute(_step("pause", "wait", duration=1500), ExecutionContext())
    assert clock.sleeps == [1.5]


@pytest.mark.parametrize(
    "operator,value,context,expected",
    [
        ("equals", "prod", {"env": "prod"}, True),
        ("equals", "prod", {"env": "dev"}, False),
        ("equals", "prod", {}, False),
        ("notEquals", "prod", {"env": "dev"}, True),
        ("notEquals", "prod", {}, True),
        ("contains", "err", {"env": "stderr output"}, True),
        ("contains", "x", {"env": ["x", "y"]}, True),
        ("contains", "z", {"env": 5}, False),
        ("contains", "5", {"env": 15}, True),
        ("contains", 1, {"env": "exit 1"}, True),
        ("contains", "true", {"env": True}, True),
        ("contains", 1, {"env": [True, "1"]}, False),
        ("equals", 1, {"env": True}, False),
        ("equals", True, {"env": True}, True),
        ("equals", 1, {"env": 1.0}, True),
        ("notEquals", 0, {"env": False}, True),
        ("exists", None, {"env": 0}, True),
        ("exists", None, {"env": None}, False),
        ("exists", None, {}, False),
    ],
)
def test_evaluate_condition(operator, value, context, expected):
    condition = Condition(context_key="env", operator=operator, value=value)
    assert evaluate_condition(condition, ExecutionContext(context)) is expected


@pytest.mark.asyncio
async def test_conditional_runs_matching_branch():
    _, _, clock, registry = _registry()
    step = WorkflowStep.model_validate(
        {
            "id": "check",
            "type": "conditional",
            "config": {
                "condition": {"contextKey": "fast", "operator": "equals", "value": True},
                "thenStep": {"id": "short", "type": "wait", "config": {"duration": 100}},
                "elseStep": {"id": "long", "type": "wait", "config": {"duration": 900}},
            },
        }
    )

    await registry.execute(step, ExecutionContext({"fast": True}))
    await registry.execute(step, ExecutionContext({"fast": False}))
    assert clock.sleeps == [0.1, 0.9]


@pytest.mark.asyncio
async def test_conditional_without_matching_branch_is_noop():
    _, _, clock, registry = _registry()
    step = WorkflowStep.model_validate(
        {
            "id": "check",
            "type": "conditional",
            "config": {
                "condition": {"contextKey": "flag", "operator": "exists"},
                "thenStep": {"id": "short", "type": "wait", "config": {"duration": 100}},
            },
        }
    )
    await registry.execute(step, ExecutionContext())
    assert clock.sleeps == []
