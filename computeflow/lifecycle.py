"""Instance lifecycle management on top of a compute provider."""

from __future__ import annotations

import logging
import uuid
from datetime import timedelta
from enum import Enum
from typing import Dict, Optional

from .clock import Clock, SystemClock
from .contracts import (
    CreateInstanceOptions,
    CreateMachineOptions,
    Instance,
    InstanceStatus,
    Machine,
    utcnow,
)
from .errors import (
    ComputeFlowError,
    InstanceStateError,
    NotFoundError,
    ReadinessTimeoutError,
    ValidationError,
)
from .persistence import InMemoryInstanceRepository, InstanceRepository
from .providers.base import (
    FAILED_STATES,
    READY_STATE,
    STOPPED_STATE,
    ComputeProvider,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 30
DEFAULT_INTERVAL_MS = 2000
DESTROYED_RETENTION = timedelta(hours=1)

MACHINE_STATE_TO_STATUS: Dict[str, InstanceStatus] = {
    "created": InstanceStatus.CREATING,
    "starting": InstanceStatus.STARTING,
    "started": InstanceStatus.RUNNING,
    "running": InstanceStatus.RUNNING,
    "stopping": InstanceStatus.STOPPING,
    "stopped": InstanceStatus.STOPPED,
    "destroying": InstanceStatus.DESTROYING,
    "destroyed": InstanceStatus.DESTROYED,
    "failed": InstanceStatus.FAILED,
}


def status_for_machine_state(state: str, current: InstanceStatus) -> InstanceStatus:
    """Translate a provider state, keeping ``current`` for unknown states."""
    return MACHINE_STATE_TO_STATUS.get(state, current)


class PollOutcome(str, Enum):
    POLLING = "polling"
    READY = "ready"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class ReadinessPoll:
    """Bounded wait for a machine state, advanced one observation at a time.

    The poll is ``READY`` as soon as the provider reports ``target_state``
    (the running state unless told otherwise), ``FAILED`` on a terminal
    failure state and ``TIMED_OUT`` once ``max_attempts`` observations were
    made without either. No further observations are accepted after a final
    outcome.
    """

    def __init__(
        self,
        machine_id: str,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        interval_ms: int = DEFAULT_INTERVAL_MS,
        target_state: str = READY_STATE,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if interval_ms < 0:
            raise ValueError("interval_ms must not be negative")
        self.machine_id = machine_id
        self.max_attempts = max_attempts
        self.interval_ms = interval_ms
        self.target_state = target_state
        self.attempts = 0
        self.last_state: Optional[str] = None
        self.outcome = PollOutcome.POLLING

    @property
    def done(self) -> bool:
        return self.outcome != PollOutcome.POLLING

    def observe(self, state: str) -> PollOutcome:
        if self.done:
            raise RuntimeError(f"Readiness poll for {self.machine_id} already finished")
        self.attempts += 1
        self.last_state = state
        if state == self.target_state:
            self.outcome = PollOutcome.READY
        elif state in FAILED_STATES:
            self.outcome = PollOutcome.FAILED
        elif self.attempts >= self.max_attempts:
            self.outcome = PollOutcome.TIMED_OUT
        return self.outcome

    def raise_for_outcome(self) -> None:
        if self.outcome == PollOutcome.FAILED:
            raise InstanceStateError(self.machine_id, self.last_state or "", self.attempts)
        if self.outcome == PollOutcome.TIMED_OUT:
            raise ReadinessTimeoutError(
                self.machine_id,
                self.max_attempts,
                self.interval_ms,
                "ready" if self.target_state == READY_STATE else self.target_state,
            )


class InstanceLifecycleManager:
    """Provision, track and tear down instances.

    Every instance record is kept in ``store``; statuses follow the states the
    provider reports. Readiness waits sleep through ``clock`` so tests can run
    them in virtual time.
    """

    def __init__(
        self,
        provider: ComputeProvider,
        store: Optional[InstanceRepository] = None,
        clock: Optional[Clock] = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        interval_ms: int = DEFAULT_INTERVAL_MS,
    ) -> None:
        self.provider = provider
        self.store = store or InMemoryInstanceRepository()
        self.clock = clock or SystemClock()
        self.max_attempts = max_attempts
        self.interval_ms = interval_ms

    async def wait_for_ready(
        self,
        machine_id: str,
        max_attempts: Optional[int] = None,
        interval_ms: Optional[int] = None,
    ) -> Machine:
        """Poll the provider until ``machine_id`` is ready.

        Raises ``InstanceStateError`` if the machine fails or is destroyed
        and ``ReadinessTimeoutError`` after ``max_attempts`` polls. There is
        no sleep after the last poll.
        """
        return await self.wait_for_state(
            machine_id, READY_STATE, max_attempts, interval_ms
        )

    async def wait_for_state(
        self,
        machine_id: str,
        target_state: str,
        max_attempts: Optional[int] = None,
        interval_ms: Optional[int] = None,
    ) -> Machine:
        poll = ReadinessPoll(
            machine_id,
            max_attempts if max_attempts is not None else self.max_attempts,
            interval_ms if interval_ms is not None else self.interval_ms,
            target_state,
        )
        while True:
            machine = await self.provider.get_machine(machine_id)
            outcome = poll.observe(machine.state)
            logger.debug(
                f"Machine {machine_id} state {machine.state} "
                f"(attempt {poll.attempts}/{poll.max_attempts})"
            )
            if outcome == PollOutcome.READY:
                logger.info(f"Machine {machine_id} is {target_state}")
                return machine
            if poll.done:
                poll.raise_for_outcome()
            await self.clock.sleep(poll.interval_ms / 1000)

    # ------------------------------------------------------------------
    async def _require(self, instance_id: str) -> Instance:
        instance = await self.store.get_instance(instance_id)
        if instance is None:
            raise NotFoundError("Instance", instance_id)
        return instance

    async def _set_status(self, instance: Instance, status: InstanceStatus) -> None:
        if instance.status != status:
            logger.info(
                f"Instance {instance.id} {instance.status.value} -> {status.value}"
            )
        instance.set_status(status)
        await self.store.save_instance(instance)

    async def create_instance(self, options: CreateInstanceOptions) -> Instance:
        """Create a machine and wait until it is running."""
        instance = Instance(
            name=options.name or f"instance-{uuid.uuid4().hex[:8]}",
            region=options.region,
            image=options.image,
            size=options.size,
            memory_mb=options.memory_mb,
            metadata=options.metadata or None,
        )
        await self.store.save_instance(instance)
        logger.info(f"Creating machine for instance {instance.id}")

        try:
            machine = await self.provider.create_machine(
                CreateMachineOptions(
                    name=instance.name,
                    region=instance.region,
                    image=instance.image,
                    size=instance.size,
                    memory_mb=instance.memory_mb,
                    metadata=options.metadata,
                )
            )
            instance.provider_machine_id = machine.id
            instance.private_ip = machine.private_ip
            await self._set_status(instance, InstanceStatus.STARTING)
            ready = await self.wait_for_ready(machine.id)
        except ComputeFlowError as exc:
            logger.error(f"Failed to create instance {instance.id}: {exc}")
            await self._set_status(instance, InstanceStatus.FAILED)
            raise

        instance.private_ip = ready.private_ip or instance.private_ip
        await self._set_status(instance, InstanceStatus.RUNNING)
        return instance

    async def get_instance(self, instance_id: str) -> Instance:
        """Return the instance, refreshing its status from the provider."""
        instance = await self._require(instance_id)
        if instance.provider_machine_id and instance.status != InstanceStatus.DESTROYED:
            try:
                machine = await self.provider.get_machine(instance.provider_machine_id)
            except ComputeFlowError as exc:
                logger.warning(f"Failed to refresh instance {instance_id} status: {exc}")
            else:
                await self._set_status(
                    instance, status_for_machine_state(machine.state, instance.status)
                )
        return instance

    async def list_instances(self) -> list[Instance]:
        """List instances, hiding ones destroyed more than an hour ago."""
        cutoff = utcnow() - DESTROYED_RETENTION
        return [
            i
            for i in await self.store.list_instances()
            if i.status != InstanceStatus.DESTROYED or i.updated_at > cutoff
        ]

    async def stop_instance(self, instance_id: str) -> Instance:
        """Stop a running instance and wait until the provider reports it stopped."""
        instance = await self.get_instance(instance_id)
        if instance.status != InstanceStatus.RUNNING:
            raise ValidationError(f"Instance {instance_id} is not running")
        await self._set_status(instance, InstanceStatus.STOPPING)
        try:
            await self.provider.stop_machine(instance.provider_machine_id)
        except ComputeFlowError:
            await self._set_status(instance, InstanceStatus.RUNNING)
            raise
        try:
            await self.wait_for_state(instance.provider_machine_id, STOPPED_STATE)
        except ComputeFlowError as exc:
            logger.error(f"Instance {instance_id} did not stop: {exc}")
            if isinstance(exc, InstanceStateError):
                await self._set_status(
                    instance, status_for_machine_state(exc.state, instance.status)
                )
            raise
        await self._set_status(instance, InstanceStatus.STOPPED)
        return instance

    async def start_instance(self, instance_id: str) -> Instance:
        instance = await self.get_instance(instance_id)
        if instance.status != InstanceStatus.STOPPED:
            raise ValidationError(f"Instance {instance_id} is not stopped")
        await self._set_status(instance, InstanceStatus.STARTING)
        try:
            await self.provider.start_machine(instance.provider_machine_id)
            await self.wait_for_ready(instance.provider_machine_id)
        except ComputeFlowError as exc:
            logger.error(f"Failed to start instance {instance_id}: {exc}")
            await self._set_status(instance, InstanceStatus.FAILED)
            raise
        await self._set_status(instance, InstanceStatus.RUNNING)
        return instance

    async def restart_instance(self, instance_id: str) -> Instance:
        instance = await self.get_instance(instance_id)
        logger.info(f"Restarting instance {instance_id}")
        if instance.status == InstanceStatus.RUNNING:
            await self.stop_instance(instance_id)
        return await self.start_instance(instance_id)

    async def destroy_instance(self, instance_id: str) -> None:
        """Destroy the instance. Destroying twice is a no-op."""
        instance = await self.get_instance(instance_id)
        if instance.status == InstanceStatus.DESTROYED:
            return
        await self._set_status(instance, InstanceStatus.DESTROYING)
        if instance.provider_machine_id:
            try:
                await self.provider.destroy_machine(instance.provider_machine_id)
            except ComputeFlowError as exc:
                logger.error(f"Failed to destroy instance {instance_id}: {exc}")
                await self._set_status(instance, InstanceStatus.FAILED)
                raise
        await self._set_status(instance, InstanceStatus.DESTROYED)

    async def health_check(self, instance_id: str) -> bool:
        """Return whether the provider reports the machine as running."""
        instance = await self._require(instance_id)
        if not instance.provider_machine_id:
            return False
        try:
            machine = await self.provider.get_machine(instance.provider_machine_id)
        except ComputeFlowError as exc:
            logger.error(f"Health check failed for instance {instance_id}: {exc}")
            return False
        return machine.state in (READY_STATE, "running")

    async def stats(self) -> Dict[str, int]:
        instances = await self.store.list_instances()
        return {
            "total": len(instances),
            "running": sum(i.status == InstanceStatus.RUNNING for i in instances),
            "stopped": sum(i.status == InstanceStatus.STOPPED for i in instances),
            "failed": sum(i.status == InstanceStatus.FAILED for i in instances),
        }
