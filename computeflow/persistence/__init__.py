"""Persistence layer for computeflow state."""

from __future__ import annotations

from .inmemory import (
    InMemoryExecutionRepository,
    InMemoryInstanceRepository,
    InMemoryWorkflowRepository,
)
from .repository import ExecutionRepository, InstanceRepository, WorkflowRepository

__all__ = [
    "WorkflowRepository",
    "ExecutionRepository",
    "InstanceRepository",
    "InMemoryWorkflowRepository",
    "InMemoryExecutionRepository",
    "InMemoryInstanceRepository",
]
