"""computeflow: dependency-graph workflows on ephemeral compute instances."""

from .commands import CommandRunner
from .config import ComputeFlowConfig, load_config
from .contracts import (
    CommandExecution,
    ExecutionStatus,
    Instance,
    InstanceStatus,
    Workflow,
    WorkflowExecution,
    WorkflowStep,
)
from .engine import ExecutionHandle, WorkflowEngine
from .lifecycle import InstanceLifecycleManager
from .providers import get_provider
from .scheduler import WorkflowScheduler

__version__ = "0.1.0"
__all__ = [
    "CommandExecution",
    "CommandRunner",
    "ComputeFlowConfig",
    "ExecutionHandle",
    "ExecutionStatus",
    "Instance",
    "InstanceLifecycleManager",
    "InstanceStatus",
    "Workflow",
    "WorkflowEngine",
    "WorkflowExecution",
    "WorkflowScheduler",
    "WorkflowStep",
    "get_provider",
    "load_config",
]
