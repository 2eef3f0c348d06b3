"""In-memory compute provider for testing."""

from __future__ import annotations

import asyncio
import itertools
from collections import deque
from typing import AsyncIterator, Deque, Dict, List, Optional, Sequence, Tuple

from ..contracts import (
    CommandOptions,
    CommandResult,
    CreateMachineOptions,
    Machine,
    OutputChunk,
    utcnow,
)
from ..errors import InstanceOperationError, NotFoundError
from .base import ComputeProvider

DEFAULT_STARTUP_STATES: Tuple[str, ...] = ("starting", "started")
DEFAULT_STOP_STATES: Tuple[str, ...] = ("stopped",)


class ScriptedCommand:
    """Canned behaviour for commands matching a prefix."""

    def __init__(
        self,
        stdout: str = "",
        stderr: str = "",
        exit_code: int = 0,
        duration: float = 0.0,
        chunks: Optional[Sequence[Tuple[str, str]]] = None,
        chunk_delay: float = 0.0,
    ) -> None:
        self.stdout = stdout
        self.stderr = stderr
        self.exit_code = exit_code
        self.duration = duration
        self.chunk_delay = chunk_delay
        if chunks is None:
            chunks = [("stdout", stdout)] if stdout else []
            if stderr:
                chunks = [*chunks, ("stderr", stderr)]
        self.chunks = list(chunks)


class _MachineRecord:
    def __init__(self, machine: Machine, pending_states: Sequence[str]) -> None:
        self.machine = machine
        self.pending: Deque[str] = deque(pending_states)


class InMemoryProvider(ComputeProvider):
    """Simulated provider kept in local memory.

    Every ``get_machine`` call advances a machine by one state from its
    pending sequence, which models a provider that provisions asynchronously.
    Commands are answered from :meth:`script`; unscripted commands succeed
    with empty output. Failures can be injected per operation with
    :meth:`fail_next`.
    """

    def __init__(
        self,
        startup_states: Sequence[str] = DEFAULT_STARTUP_STATES,
        stop_states: Sequence[str] = DEFAULT_STOP_STATES,
    ) -> None:
        self.startup_states: Tuple[str, ...] = tuple(startup_states)
        self.stop_states: Tuple[str, ...] = tuple(stop_states)
        self._machines: Dict[str, _MachineRecord] = {}
        self._scripts: List[Tuple[str, ScriptedCommand]] = []
        self._failures: Dict[str, Deque[Exception]] = {}
        self._ids = itertools.count(1)
        self.calls: List[Tuple[str, str]] = []
        self.executed: List[Tuple[str, str]] = []
        self.terminated: List[Tuple[str, str]] = []

    # ------------------------------------------------------------------
    # Test helpers
    def script(self, prefix: str, command: Optional[ScriptedCommand] = None, **kwargs) -> None:
        """Answer commands starting with ``prefix`` with ``command``."""
        self._scripts.insert(0, (prefix, command or ScriptedCommand(**kwargs)))

    def fail_next(self, operation: str, error: Exception) -> None:
        """Raise ``error`` from the next call to ``operation``."""
        self._failures.setdefault(operation, deque()).append(error)

    def set_state(self, machine_id: str, state: str, pending: Sequence[str] = ()) -> None:
        record = self._get(machine_id)
        record.machine.state = state
        record.pending = deque(pending)

    # ------------------------------------------------------------------
    def _record_call(self, operation: str, target: str) -> None:
        self.calls.append((operation, target))
        queued = self._failures.get(operation)
        if queued:
            raise queued.popleft()

    def _get(self, machine_id: str) -> _MachineRecord:
        record = self._machines.get(machine_id)
        if record is None:
            raise NotFoundError("Machine", machine_id)
        return record

    def _match(self, command: str) -> ScriptedCommand:
        for prefix, scripted in self._scripts:
            if command.startswith(prefix):
                return scripted
        return ScriptedCommand()

    @staticmethod
    def _snapshot(record: _MachineRecord) -> Machine:
        return record.machine.model_copy()

    # ------------------------------------------------------------------
    async def create_machine(self, options: CreateMachineOptions) -> Machine:
        self._record_call("create_machine", options.name)
        machine_id = f"machine-{next(self._ids)}"
        machine = Machine(
            id=machine_id,
            name=options.name,
            state="created",
            region=options.region,
            image=options.image,
            size=options.size,
            private_ip=f"fdaa:0:1::{len(self._machines) + 1}",
        )
        self._machines[machine_id] = _MachineRecord(machine, self.startup_states)
        return machine.model_copy()

    async def get_machine(self, machine_id: str) -> Machine:
        self._record_call("get_machine", machine_id)
        record = self._get(machine_id)
        if record.pending:
            record.machine.state = record.pending.popleft()
            record.machine.updated_at = utcnow()
        return self._snapshot(record)

    async def list_machines(self) -> List[Machine]:
        self._record_call("list_machines", "")
        return [self._snapshot(r) for r in self._machines.values()]

    async def start_machine(self, machine_id: str) -> Machine:
        self._record_call("start_machine", machine_id)
        record = self._get(machine_id)
        self.set_state(machine_id, "starting", pending=("started",))
        return self._snapshot(record)

    async def stop_machine(self, machine_id: str) -> Machine:
        self._record_call("stop_machine", machine_id)
        record = self._get(machine_id)
        self.set_state(machine_id, "stopping", pending=self.stop_states)
        return self._snapshot(record)

    async def destroy_machine(self, machine_id: str) -> None:
        self._record_call("destroy_machine", machine_id)
        self.set_state(machine_id, "destroyed")

    async def execute_command(
        self, machine_id: str, options: CommandOptions
    ) -> CommandResult:
        stdout: List[str] = []
        stderr: List[str] = []
        exit_code: Optional[int] = None
        async for chunk in self.stream_command(machine_id, options):
            if chunk.stream == "stdout":
                stdout.append(chunk.data)
            elif chunk.stream == "stderr":
                stderr.append(chunk.data)
            else:
                exit_code = chunk.exit_code
        return CommandResult(
            stdout="".join(stdout), stderr="".join(stderr), exit_code=exit_code
        )

    async def stream_command(
        self, machine_id: str, options: CommandOptions
    ) -> AsyncIterator[OutputChunk]:
        self._record_call("execute_command", machine_id)
        record = self._get(machine_id)
        if record.machine.state != "started":
            raise InstanceOperationError(
                "execute",
                f"machine is {record.machine.state}",
                {"machine_id": machine_id},
            )
        self.executed.append((machine_id, options.command))
        scripted = self._match(options.command)
        finished = False
        try:
            for stream, data in scripted.chunks:
                if scripted.chunk_delay:
                    await asyncio.sleep(scripted.chunk_delay)
                yield OutputChunk(stream=stream, data=data)
            if scripted.duration:
                await asyncio.sleep(scripted.duration)
            finished = True
            yield OutputChunk(stream="exit", exit_code=scripted.exit_code)
        finally:
            if not finished:
                self.terminated.append((machine_id, options.command))
