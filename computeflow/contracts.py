"""Core data contracts for computeflow workflows, instances and commands."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _Model(BaseModel):
    """Accepts both snake_case field names and their camelCase aliases."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class _StrictModel(_Model):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="forbid"
    )


# ---------------------------------------------------------------------------
# Statuses


class ExecutionStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            ExecutionStatus.COMPLETED,
            ExecutionStatus.FAILED,
            ExecutionStatus.CANCELLED,
        )


class StepStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class InstanceStatus(str, Enum):
    CREATING = "creating"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    DESTROYING = "destroying"
    DESTROYED = "destroyed"
    FAILED = "failed"


class CommandStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"


class StepKind(str, Enum):
    CREATE_INSTANCE = "create_instance"
    EXECUTE_COMMAND = "execute_command"
    WAIT = "wait"
    DESTROY_INSTANCE = "destroy_instance"
    CONDITIONAL = "conditional"


# ---------------------------------------------------------------------------
# Step configuration, one model per step kind

DEFAULT_INSTANCE_KEY = "instanceId"


class CreateInstanceConfig(_StrictModel):
    """Provision an instance and wait until it is running."""

    kind: Literal["create_instance"] = "create_instance"
    name: Optional[str] = Field(default=None, pattern=r"^[a-zA-Z0-9-]{1,50}$")
    region: str = "iad"
    image: str = "docker.io/library/ubuntu:22.04"
    size: str = "shared-cpu-1x"
    memory_mb: int = Field(default=512, ge=256, le=65536)
    metadata: Dict[str, str] = Field(default_factory=dict)
    context_key: str = DEFAULT_INSTANCE_KEY


class ExecuteCommandConfig(_StrictModel):
    """Run a shell command on the instance named by ``instance_key``."""

    kind: Literal["execute_command"] = "execute_command"
    command: str = Field(min_length=1, max_length=1000)
    args: List[Annotated[str, Field(max_length=200)]] = Field(
        default_factory=list, max_length=50
    )
    timeout_ms: Optional[int] = Field(
        default=None,
        gt=0,
        validation_alias=AliasChoices("timeout_ms", "timeoutMs", "timeout"),
    )
    instance_key: str = DEFAULT_INSTANCE_KEY
    result_key: Optional[str] = None
    fail_on_error: bool = False


class WaitConfig(_StrictModel):
    kind: Literal["wait"] = "wait"
    duration: int = Field(default=1000, ge=0, description="Milliseconds")


class DestroyInstanceConfig(_StrictModel):
    kind: Literal["destroy_instance"] = "destroy_instance"
    instance_key: str = DEFAULT_INSTANCE_KEY


class Condition(_StrictModel):
    """Predicate evaluated against one context value."""

    context_key: str = Field(min_length=1)
    operator: Literal["equals", "notEquals", "contains", "exists"]
    value: Any = None


class ConditionalConfig(_StrictModel):
    """Run ``then_step`` or ``else_step`` depending on ``condition``."""

    kind: Literal["conditional"] = "conditional"
    condition: Condition
    then_step: Optional["WorkflowStep"] = None
    else_step: Optional["WorkflowStep"] = None

    @model_validator(mode="before")
    @classmethod
    def _hoist_context_key(cls, data: Any) -> Any:
        # Older definitions carry ``contextKey`` next to the condition.
        if isinstance(data, dict):
            key = data.get("contextKey", data.get("context_key"))
            condition = data.get("condition")
            if key is not None and isinstance(condition, dict):
                data = {
                    k: v for k, v in data.items() if k not in ("contextKey", "context_key")
                }
                if "contextKey" not in condition and "context_key" not in condition:
                    data["condition"] = {**condition, "context_key": key}
        return data

    @field_validator("then_step", "else_step")
    @classmethod
    def _branch_has_no_dependencies(
        cls, step: Optional["WorkflowStep"]
    ) -> Optional["WorkflowStep"]:
        if step is not None and step.depends_on:
            raise ValueError(
                f"Branch step {step.id} cannot declare dependencies; "
                "it runs inside its conditional step"
            )
        return step


StepConfig = Annotated[
    Union[
        CreateInstanceConfig,
        ExecuteCommandConfig,
        WaitConfig,
        DestroyInstanceConfig,
        ConditionalConfig,
    ],
    Field(discriminator="kind"),
]


# ---------------------------------------------------------------------------
# Workflows


class WorkflowStep(_Model):
    """Defines one step in a workflow."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )

    id: str = Field(min_length=1)
    name: str = ""
    depends_on: List[str] = Field(default_factory=list)
    config: StepConfig

    @model_validator(mode="before")
    @classmethod
    def _normalise_kind(cls, data: Any) -> Any:
        """Accept ``{"type": ..., "config": {...}}`` as well as ``config.kind``."""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        kind = data.pop("type", None) or data.pop("kind", None)
        config = data.get("config")
        if config is None:
            config = {}
        if isinstance(config, dict) and kind is not None:
            if isinstance(kind, StepKind):
                kind = kind.value
            config = {**config, "kind": kind}
        data["config"] = config
        if not data.get("name"):
            data["name"] = data.get("id", "")
        return data

    @property
    def kind(self) -> StepKind:
        return StepKind(self.config.kind)


class Workflow(_Model):
    """A named dependency graph of steps."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )

    id: str = Field(default_factory=new_id)
    name: str = Field(min_length=1)
    description: Optional[str] = None
    steps: List[WorkflowStep] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _check_graph_references(self) -> "Workflow":
        seen: set[str] = set()
        for step in self.steps:
            if step.id in seen:
                raise ValueError(f"Duplicate step id: {step.id}")
            seen.add(step.id)
        for step in self.steps:
            missing = [dep for dep in step.depends_on if dep not in seen]
            if missing:
                raise ValueError(
                    f"Step {step.id} depends on unknown step(s): {', '.join(missing)}"
                )
        return self

    def get_step(self, step_id: str) -> Optional[WorkflowStep]:
        return next((s for s in self.steps if s.id == step_id), None)


class StepRecord(_Model):
    """Record of an individual step execution."""

    step_id: str
    name: str
    kind: StepKind
    status: StepStatus = StepStatus.RUNNING
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    error: Optional[str] = None


class WorkflowExecution(_Model):
    """One run of a workflow, tracked by status and a shared context."""

    id: str = Field(default_factory=new_id)
    workflow_id: str
    status: ExecutionStatus = ExecutionStatus.PENDING
    context: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None
    error_code: Optional[str] = None
    failed_step: Optional[str] = None
    steps: List[StepRecord] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    def step_record(self, step_id: str) -> Optional[StepRecord]:
        return next((r for r in self.steps if r.step_id == step_id), None)


# ---------------------------------------------------------------------------
# Instances and commands


class CreateInstanceOptions(_StrictModel):
    name: Optional[str] = Field(default=None, pattern=r"^[a-zA-Z0-9-]{1,50}$")
    region: str = "iad"
    image: str = "docker.io/library/ubuntu:22.04"
    size: str = "shared-cpu-1x"
    memory_mb: int = Field(default=512, ge=256, le=65536)
    metadata: Dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_step(cls, config: CreateInstanceConfig) -> "CreateInstanceOptions":
        return cls(
            name=config.name,
            region=config.region,
            image=config.image,
            size=config.size,
            memory_mb=config.memory_mb,
            metadata=config.metadata,
        )


class Instance(_Model):
    """An ephemeral remote compute resource tracked by the engine."""

    id: str = Field(default_factory=new_id)
    provider_machine_id: str = ""
    name: str
    region: str
    image: str
    size: str
    memory_mb: int
    status: InstanceStatus = InstanceStatus.CREATING
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    private_ip: Optional[str] = None
    metadata: Optional[Dict[str, str]] = None

    def set_status(self, status: InstanceStatus) -> None:
        self.status = status
        self.updated_at = utcnow()


class CommandExecution(_Model):
    """One invocation of the command runner."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )

    id: str = Field(default_factory=new_id)
    instance_id: str
    command: str
    args: List[str] = Field(default_factory=list)
    output: str = ""
    error: str = ""
    exit_code: Optional[int] = None
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    status: CommandStatus = CommandStatus.RUNNING

    @property
    def timed_out(self) -> bool:
        return self.status == CommandStatus.TIMEOUT

    def as_context_value(self) -> Dict[str, Any]:
        return {"output": self.output, "error": self.error, "exitCode": self.exit_code}


# ---------------------------------------------------------------------------
# Compute provider boundary


class Machine(_Model):
    """A provider-side machine as reported by the provider."""

    id: str
    name: str
    state: str
    region: str
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    image: Optional[str] = None
    size: Optional[str] = None
    private_ip: Optional[str] = None


class CreateMachineOptions(_Model):
    name: str
    region: str
    image: Optional[str] = None
    size: Optional[str] = None
    memory_mb: int = 512
    metadata: Dict[str, str] = Field(default_factory=dict)


class CommandOptions(_Model):
    command: str
    timeout_ms: Optional[int] = None


class CommandResult(_Model):
    stdout: str = ""
    stderr: str = ""
    exit_code: Optional[int] = None


class OutputChunk(_Model):
    """A piece of streamed command output, or the final exit code."""

    stream: Literal["stdout", "stderr", "exit"]
    data: str = ""
    exit_code: Optional[int] = None


ConditionalConfig.model_rebuild()
WorkflowStep.model_rebuild()
