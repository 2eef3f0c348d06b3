"""Base compute provider interface for computeflow."""

from __future__ import annotations

import abc
from typing import AsyncIterator, List

from ..contracts import (
    CommandOptions,
    CommandResult,
    CreateMachineOptions,
    Machine,
    OutputChunk,
)

READY_STATE = "started"
STOPPED_STATE = "stopped"
FAILED_STATES = frozenset({"failed", "destroyed"})


class ComputeProvider(metaclass=abc.ABCMeta):
    """Abstract base for the cloud APIs that run machines.

    Implementations raise :mod:`computeflow.errors` exceptions instead of
    returning error values: ``InfrastructureError`` for transient upstream or
    transport failures, ``NotFoundError`` for unknown machines and
    ``InstanceOperationError`` for rejected requests.
    """

    async def connect(self) -> None:
        """Open client resources (no-op by default)."""
        pass

    async def disconnect(self) -> None:
        """Release client resources (no-op by default)."""
        pass

    @abc.abstractmethod
    async def create_machine(self, options: CreateMachineOptions) -> Machine:
        """Request a new machine. Returns before the machine is ready."""
        raise NotImplementedError

    @abc.abstractmethod
    async def get_machine(self, machine_id: str) -> Machine:
        raise NotImplementedError

    @abc.abstractmethod
    async def list_machines(self) -> List[Machine]:
        raise NotImplementedError

    @abc.abstractmethod
    async def start_machine(self, machine_id: str) -> Machine:
        raise NotImplementedError

    @abc.abstractmethod
    async def stop_machine(self, machine_id: str) -> Machine:
        raise NotImplementedError

    @abc.abstractmethod
    async def destroy_machine(self, machine_id: str) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    async def execute_command(
        self, machine_id: str, options: CommandOptions
    ) -> CommandResult:
        """Run a command to completion and return its aggregate output."""
        raise NotImplementedError

    async def stream_command(
        self, machine_id: str, options: CommandOptions
    ) -> AsyncIterator[OutputChunk]:
        """Yield output chunks as they arrive, ending with an ``exit`` chunk.

        Providers without incremental output fall back to a single round trip
        and replay the aggregate result. Closing the iterator early must
        terminate the remote process.
        """
        result = await self.execute_command(machine_id, options)
        if result.stdout:
            yield OutputChunk(stream="stdout", data=result.stdout)
        if result.stderr:
            yield OutputChunk(stream="stderr", data=result.stderr)
        yield OutputChunk(stream="exit", exit_code=result.exit_code)
