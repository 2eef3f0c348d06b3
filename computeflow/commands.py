"""Run shell commands on instances with a deadline and streamed output."""

from __future__ import annotations

import asyncio
import inspect
import logging
import os
from contextlib import aclosing
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Union

from .contracts import (
    CommandExecution,
    CommandOptions,
    CommandStatus,
    InstanceStatus,
    utcnow,
)
from .errors import InfrastructureError, NotFoundError, ValidationError
from .persistence import InstanceRepository
from .providers.base import ComputeProvider

logger = logging.getLogger(__name__)

MAX_COMMAND_LENGTH = 1000
MAX_ARGS = 50
MAX_ARG_LENGTH = 200
DEFAULT_TIMEOUT_MS = 30000
DEFAULT_MAX_HISTORY = 1000

OutputCallback = Callable[[str], Union[None, Awaitable[None]]]


async def _notify(callback: Optional[OutputCallback], data: str) -> None:
    if callback is None or not data:
        return
    result = callback(data)
    if inspect.isawaitable(result):
        await result


def validate_command(
    command: str,
    args: Sequence[str] = (),
    allowed_commands: Optional[Sequence[str]] = None,
) -> None:
    """Raise ``ValidationError`` for commands the runner refuses to send."""
    if not command or not command.strip():
        raise ValidationError("Command must not be empty")
    if len(command) > MAX_COMMAND_LENGTH:
        raise ValidationError(
            f"Command exceeds {MAX_COMMAND_LENGTH} characters",
            {"length": len(command)},
        )
    if len(args) > MAX_ARGS:
        raise ValidationError(f"Too many arguments (max {MAX_ARGS})", {"count": len(args)})
    for arg in args:
        if len(arg) > MAX_ARG_LENGTH:
            raise ValidationError(
                f"Argument exceeds {MAX_ARG_LENGTH} characters", {"argument": arg[:50]}
            )
    if allowed_commands is not None:
        base = os.path.basename(command.split()[0])
        if base not in allowed_commands:
            raise ValidationError(
                f"Command '{base}' is not allowed", {"allowed": list(allowed_commands)}
            )


class CommandRunner:
    """Execute commands on running instances.

    Output chunks are forwarded to the caller's callbacks while the command
    runs. When the deadline passes first the provider stream is closed, which
    terminates the remote process, and the execution is reported with status
    ``timeout`` and no exit code. The latest ``max_history`` executions are
    kept in memory for lookup; older ones are evicted first.
    """

    def __init__(
        self,
        provider: ComputeProvider,
        instances: InstanceRepository,
        default_timeout_ms: int = DEFAULT_TIMEOUT_MS,
        allowed_commands: Optional[Sequence[str]] = None,
        max_history: int = DEFAULT_MAX_HISTORY,
    ) -> None:
        self.provider = provider
        self.instances = instances
        self.default_timeout_ms = default_timeout_ms
        self.allowed_commands = allowed_commands
        if max_history < 1:
            raise ValueError("max_history must be at least 1")
        self.max_history = max_history
        self._history: Dict[str, CommandExecution] = {}

    async def run(
        self,
        instance_id: str,
        command: str,
        args: Sequence[str] = (),
        timeout_ms: Optional[int] = None,
        on_data: Optional[OutputCallback] = None,
        on_error: Optional[OutputCallback] = None,
    ) -> CommandExecution:
        validate_command(command, args, self.allowed_commands)
        instance = await self.instances.get_instance(instance_id)
        if instance is None:
            raise NotFoundError("Instance", instance_id)
        if instance.status != InstanceStatus.RUNNING or not instance.provider_machine_id:
            raise ValidationError(
                f"Instance {instance_id} is not running",
                {"status": instance.status.value},
            )

        timeout_ms = timeout_ms or self.default_timeout_ms
        full_command = " ".join([command, *args])
        execution = CommandExecution(
            instance_id=instance_id, command=command, args=list(args)
        )
        self._remember(execution)
        logger.info(f"Executing on instance {instance_id}: {full_command}")

        stdout: List[str] = []
        stderr: List[str] = []
        exit_code: Optional[int] = None
        stream = self.provider.stream_command(
            instance.provider_machine_id,
            CommandOptions(command=full_command, timeout_ms=timeout_ms),
        )

        async def _consume() -> None:
            nonlocal exit_code
            async with aclosing(stream):
                async for chunk in stream:
                    if chunk.stream == "stdout":
                        stdout.append(chunk.data)
                        await _notify(on_data, chunk.data)
                    elif chunk.stream == "stderr":
                        stderr.append(chunk.data)
                        await _notify(on_error, chunk.data)
                    else:
                        exit_code = chunk.exit_code

        try:
            await asyncio.wait_for(_consume(), timeout_ms / 1000)
        except asyncio.TimeoutError:
            notice = f"\nCommand timed out after {timeout_ms}ms"
            stderr.append(notice)
            logger.warning(f"Command on instance {instance_id} timed out after {timeout_ms}ms")
            status = CommandStatus.TIMEOUT
            exit_code = None
        except OSError as exc:
            raise InfrastructureError(
                "compute platform", {"error": str(exc), "instance_id": instance_id}
            ) from exc
        else:
            status = CommandStatus.COMPLETED if exit_code == 0 else CommandStatus.FAILED

        finished = execution.model_copy(
            update={
                "output": "".join(stdout),
                "error": "".join(stderr),
                "exit_code": exit_code,
                "status": status,
                "completed_at": utcnow(),
            }
        )
        self._remember(finished)
        logger.info(
            f"Command on instance {instance_id} finished with status "
            f"{status.value} (exit code {exit_code})"
        )
        return finished

    def _remember(self, execution: CommandExecution) -> None:
        self._history[execution.id] = execution
        while len(self._history) > self.max_history:
            del self._history[next(iter(self._history))]

    def get_execution(self, execution_id: str) -> CommandExecution:
        execution = self._history.get(execution_id)
        if execution is None:
            raise NotFoundError("CommandExecution", execution_id)
        return execution

    def list_executions(self, instance_id: Optional[str] = None) -> List[CommandExecution]:
        return [
            e
            for e in self._history.values()
            if instance_id is None or e.instance_id == instance_id
        ]
