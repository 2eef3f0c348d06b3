"""Tests for the local subprocess provider."""

import asyncio
import os
import time

import pytest

from computeflow.clock import FakeClock
from computeflow.commands import CommandRunner
from computeflow.contracts import CommandOptions, CommandStatus, CreateInstanceOptions, CreateMachineOptions
from computeflow.errors import InstanceOperationError
from computeflow.lifecycle import InstanceLifecycleManager
from computeflow.providers import LocalProvider


@pytest.mark.asyncio
async def test_machine_directory_lifecycle(tmp_path):
    provider = LocalProvider(workdir=str(tmp_path))
    machine = await provider.create_machine(CreateMachineOptions(name="box", region="any"))

    assert machine.state == "started"
    workdir = provider.workdir(machine.id)
    assert os.path.isdir(workdir)
    assert workdir.startswith(str(tmp_path))

    await provider.stop_machine(machine.id)
    with pytest.raises(InstanceOperationError):
        async for _ in provider.stream_command(machine.id, CommandOptions(command="true")):
            pass

    await provider.start_machine(machine.id)
    await provider.destroy_machine(machine.id)
    assert not os.path.exists(workdir)
    assert (await provider.get_machine(machine.id)).state == "destroyed"


@pytest.mark.asyncio
async def test_execute_command_runs_in_machine_directory(tmp_path):
    provider = LocalProvider(workdir=str(tmp_path))
    machine = await provider.create_machine(CreateMachineOptions(name="box", region="any"))

    result = await provider.execute_command(
        machine.id, CommandOptions(command="echo out; echo err >&2; pwd; exit 3")
    )

    assert result.exit_code == 3
    assert "out\n" in result.stdout
    assert provider.workdir(machine.id) in result.stdout
    assert result.stderr == "err\n"


@pytest.mark.asyncio
async def test_runner_streams_and_kills_on_timeout(tmp_path):
    provider = LocalProvider(workdir=str(tmp_path))
    lifecycle = InstanceLifecycleManager(provider, clock=FakeClock())
    instance = await lifecycle.create_instance(CreateInstanceOptions(name="box"))
    runner = CommandRunner(provider, lifecycle.store)
    seen = []

    start = time.monotonic()
    result = await runner.run(
        instance.id, "echo ready; sleep 10", timeout_ms=300, on_data=seen.append
    )
    elapsed = time.monotonic() - start

    assert elapsed < 3.0
    assert result.status == CommandStatus.TIMEOUT
    assert result.exit_code is None
    assert "ready\n" in "".join(seen)
    assert "Command timed out after 300ms" in result.error
    pending = [
        task
        for task in asyncio.all_tasks()
        if task.get_name().startswith("drain-") and not task.done()
    ]
    assert pending == []


@pytest.mark.asyncio
async def test_runner_reports_exit_codes(tmp_path):
    provider = LocalProvider(workdir=str(tmp_path))
    lifecycle = InstanceLifecycleManager(provider, clock=FakeClock())
    instance = await lifecycle.create_instance(CreateInstanceOptions(name="box"))
    runner = CommandRunner(provider, lifecycle.store)

    ok = await runner.run(instance.id, "printf", ["hello"])
    failed = await runner.run(instance.id, "exit 4")

    assert ok.status == CommandStatus.COMPLETED
    assert ok.output == "hello"
    assert failed.status == CommandStatus.FAILED
    assert failed.exit_code == 4
