"""Local subprocess provider: each machine is a scratch directory on this host."""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import signal
import tempfile
import uuid
from typing import AsyncIterator, Dict, List, Optional

from ..contracts import (
    CommandOptions,
    CommandResult,
    CreateMachineOptions,
    Machine,
    OutputChunk,
    utcnow,
)
from ..errors import InfrastructureError, InstanceOperationError, NotFoundError
from .base import ComputeProvider

logger = logging.getLogger(__name__)

_READ_SIZE = 4096


class LocalProvider(ComputeProvider):
    """Run commands in a local shell.

    Useful for trying workflows without cloud credentials. Machines are ready
    as soon as they are created; destroying one removes its directory.
    """

    def __init__(self, workdir: Optional[str] = None, shell: str = "/bin/sh") -> None:
        self._base_dir = workdir
        self._shell = shell
        self._machines: Dict[str, Machine] = {}
        self._dirs: Dict[str, str] = {}

    def _get(self, machine_id: str) -> Machine:
        machine = self._machines.get(machine_id)
        if machine is None:
            raise NotFoundError("Machine", machine_id)
        return machine

    def _set_state(self, machine_id: str, state: str) -> Machine:
        machine = self._get(machine_id)
        machine.state = state
        machine.updated_at = utcnow()
        return machine.model_copy()

    def workdir(self, machine_id: str) -> str:
        self._get(machine_id)
        return self._dirs[machine_id]

    async def create_machine(self, options: CreateMachineOptions) -> Machine:
        machine_id = uuid.uuid4().hex[:14]
        try:
            path = tempfile.mkdtemp(prefix=f"computeflow-{options.name}-", dir=self._base_dir)
        except OSError as exc:
            raise InfrastructureError("local filesystem", {"error": str(exc)}) from exc
        machine = Machine(
            id=machine_id,
            name=options.name,
            state="started",
            region="local",
            image=options.image,
            size=options.size,
            private_ip="127.0.0.1",
        )
        self._machines[machine_id] = machine
        self._dirs[machine_id] = path
        logger.info(f"Created local machine {machine_id} in {path}")
        return machine.model_copy()

    async def get_machine(self, machine_id: str) -> Machine:
        return self._get(machine_id).model_copy()

    async def list_machines(self) -> List[Machine]:
        return [m.model_copy() for m in self._machines.values()]

    async def start_machine(self, machine_id: str) -> Machine:
        return self._set_state(machine_id, "started")

    async def stop_machine(self, machine_id: str) -> Machine:
        return self._set_state(machine_id, "stopped")

    async def destroy_machine(self, machine_id: str) -> None:
        self._set_state(machine_id, "destroyed")
        path = self._dirs.get(machine_id)
        if path:
            await asyncio.to_thread(shutil.rmtree, path, True)
        logger.info(f"Destroyed local machine {machine_id}")

    async def execute_command(
        self, machine_id: str, options: CommandOptions
    ) -> CommandResult:
        stdout: List[str] = []
        stderr: List[str] = []
        exit_code: Optional[int] = None

        async def _collect() -> None:
            nonlocal exit_code
            async for chunk in self.stream_command(machine_id, options):
                if chunk.stream == "stdout":
                    stdout.append(chunk.data)
                elif chunk.stream == "stderr":
                    stderr.append(chunk.data)
                else:
                    exit_code = chunk.exit_code

        timeout = options.timeout_ms / 1000 if options.timeout_ms else None
        try:
            await asyncio.wait_for(_collect(), timeout)
        except asyncio.TimeoutError:
            stderr.append(f"\nCommand timed out after {options.timeout_ms}ms")
        return CommandResult(
            stdout="".join(stdout), stderr="".join(stderr), exit_code=exit_code
        )

    async def stream_command(
        self, machine_id: str, options: CommandOptions
    ) -> AsyncIterator[OutputChunk]:
        machine = self._get(machine_id)
        if machine.state != "started":
            raise InstanceOperationError(
                "execute", f"machine is {machine.state}", {"machine_id": machine_id}
            )
        try:
            proc = await asyncio.create_subprocess_shell(
                options.command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self._dirs[machine_id],
                executable=self._shell,
                start_new_session=True,
            )
        except OSError as exc:
            raise InfrastructureError("local shell", {"error": str(exc)}) from exc

        queue: asyncio.Queue[Optional[OutputChunk]] = asyncio.Queue()

        async def _pump(reader: asyncio.StreamReader, stream: str) -> None:
            while True:
                data = await reader.read(_READ_SIZE)
                if not data:
                    break
                await queue.put(
                    OutputChunk(stream=stream, data=data.decode("utf-8", errors="replace"))
                )

        async def _drain() -> None:
            await asyncio.gather(
                _pump(proc.stdout, "stdout"), _pump(proc.stderr, "stderr")
            )
            await queue.put(None)

        drainer = asyncio.create_task(_drain(), name=f"drain-{machine_id}")
        finished = False
        try:
            while True:
                chunk = await queue.get()
                if chunk is None:
                    break
                yield chunk
            exit_code = await proc.wait()
            finished = True
            yield OutputChunk(stream="exit", exit_code=exit_code)
        finally:
            if not finished and proc.returncode is None:
                logger.info(f"Terminating command on local machine {machine_id}")
                try:
                    # the shell leads its own process group; take its children too
                    os.killpg(proc.pid, signal.SIGKILL)
                except ProcessLookupError:
                    pass
                await proc.wait()
            drainer.cancel()
            await asyncio.gather(drainer, return_exceptions=True)
