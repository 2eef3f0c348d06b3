"""Tests for the bounded readiness wait."""

import pytest

from computeflow.clock import FakeClock
from computeflow.contracts import CreateMachineOptions
from computeflow.errors import InstanceStateError, ReadinessTimeoutError
from computeflow.lifecycle import InstanceLifecycleManager, PollOutcome, ReadinessPoll
from computeflow.providers import InMemoryProvider


async def _machine(provider: InMemoryProvider) -> str:
    machine = await provider.create_machine(CreateMachineOptions(name="m", region="iad"))
    return machine.id


def _polls(provider: InMemoryProvider, machine_id: str) -> int:
    return provider.calls.count(("get_machine", machine_id))


def test_poll_state_machine_outcomes():
    poll = ReadinessPoll("m-1", max_attempts=3, interval_ms=10)
    assert poll.observe("created") == PollOutcome.POLLING
    assert poll.observe("starting") == PollOutcome.POLLING
    assert poll.observe("started") == PollOutcome.READY
    assert poll.done
    with pytest.raises(RuntimeError):
        poll.observe("started")

    failing = ReadinessPoll("m-2", max_attempts=3)
    assert failing.observe("destroyed") == PollOutcome.FAILED
    with pytest.raises(InstanceStateError, match="destroyed"):
        failing.raise_for_outcome()

    slow = ReadinessPoll("m-3", max_attempts=2)
    slow.observe("starting")
    assert slow.observe("starting") == PollOutcome.TIMED_OUT
    assert slow.attempts == 2
    with pytest.raises(ReadinessTimeoutError):
        slow.raise_for_outcome()


def test_poll_can_target_another_state():
    poll = ReadinessPoll("m-4", max_attempts=5, target_state="stopped")
    assert poll.observe("stopping") == PollOutcome.POLLING
    assert poll.observe("started") == PollOutcome.POLLING
    assert poll.observe("stopped") == PollOutcome.READY


def test_poll_rejects_bad_bounds():
    with pytest.raises(ValueError):
        ReadinessPoll("m", max_attempts=0)
    with pytest.raises(ValueError):
        ReadinessPoll("m", interval_ms=-1)


@pytest.mark.asyncio
async def test_wait_for_ready_returns_as_soon_as_ready():
    provider = InMemoryProvider(startup_states=("starting", "starting", "started"))
    clock = FakeClock()
    manager = InstanceLifecycleManager(provider, clock=clock)
    machine_id = await _machine(provider)

    machine = await manager.wait_for_ready(machine_id, max_attempts=10, interval_ms=500)

    assert machine.state == "started"
    assert _polls(provider, machine_id) == 3
    # polls at the configured interval, never after the ready observation
    assert clock.sleeps == [0.5, 0.5]


@pytest.mark.asyncio
async def test_wait_for_ready_ready_on_first_poll_does_not_sleep():
    provider = InMemoryProvider(startup_states=("started",))
    clock = FakeClock()
    manager = InstanceLifecycleManager(provider, clock=clock)
    machine_id = await _machine(provider)

    await manager.wait_for_ready(machine_id)
    assert clock.sleeps == []


@pytest.mark.asyncio
async def test_wait_for_ready_times_out_after_exactly_max_attempts():
    provider = InMemoryProvider(startup_states=())
    clock = FakeClock()
    manager = InstanceLifecycleManager(provider, clock=clock)
    machine_id = await _machine(provider)
    provider.set_state(machine_id, "starting")

    with pytest.raises(ReadinessTimeoutError) as exc_info:
        await manager.wait_for_ready(machine_id, max_attempts=5, interval_ms=100)

    assert exc_info.value.max_attempts == 5
    assert exc_info.value.code == "TIMEOUT"
    assert _polls(provider, machine_id) == 5
    assert len(clock.sleeps) == 4
    # elapsed virtual time stays within max_attempts * interval
    assert clock.monotonic() <= 5 * 0.1


@pytest.mark.asyncio
async def test_wait_for_ready_fails_on_failed_state():
    provider = InMemoryProvider(startup_states=("starting", "failed"))
    clock = FakeClock()
    manager = InstanceLifecycleManager(provider, clock=clock)
    machine_id = await _machine(provider)

    with pytest.raises(InstanceStateError) as exc_info:
        await manager.wait_for_ready(machine_id, max_attempts=10, interval_ms=100)

    assert exc_info.value.state == "failed"
    assert _polls(provider, machine_id) == 2


@pytest.mark.asyncio
async def test_wait_for_ready_uses_configured_defaults():
    provider = InMemoryProvider(startup_states=())
    clock = FakeClock()
    manager = InstanceLifecycleManager(provider, clock=clock, max_attempts=3, interval_ms=40)
    machine_id = await _machine(provider)
    provider.set_state(machine_id, "created")

    with pytest.raises(ReadinessTimeoutError):
        await manager.wait_for_ready(machine_id)
    assert clock.sleeps == [0.04, 0.04]


@pytest.mark.asyncio
async def test_provider_errors_during_poll_propagate():
    provider = InMemoryProvider()
    manager = InstanceLifecycleManager(provider, clock=FakeClock())
    machine_id = await _machine(provider)
    provider.fail_next("get_machine", RuntimeError("network down"))

    with pytest.raises(RuntimeError, match="network down"):
        await manager.wait_for_ready(machine_id)
