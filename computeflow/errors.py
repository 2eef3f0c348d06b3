"""Error taxonomy for computeflow."""

from __future__ import annotations

from typing import Any, Dict, Optional


class ComputeFlowError(Exception):
    """Base error carrying a stable code and an HTTP-style status."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "code": self.code, "details": self.details}


class ValidationError(ComputeFlowError):
    """Malformed workflow, step or command input."""

    code = "VALIDATION_ERROR"
    status_code = 400


class NotFoundError(ComputeFlowError):
    """Unknown workflow, execution or instance id."""

    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, resource: str, resource_id: str) -> None:
        super().__init__(
            f"{resource} with id {resource_id} not found",
            {"resource": resource, "id": resource_id},
        )
        self.resource = resource
        self.resource_id = resource_id


class CircularDependencyError(ComputeFlowError):
    """The remaining steps can never become ready."""

    code = "CIRCULAR_DEPENDENCY"
    status_code = 409

    def __init__(self, unresolved: list[str]) -> None:
        super().__init__(
            "Circular dependency detected in workflow: "
            f"unresolved steps {', '.join(sorted(unresolved))}",
            {"unresolved": sorted(unresolved)},
        )
        self.unresolved = sorted(unresolved)


class StepExecutionError(ComputeFlowError):
    """A step's own logic failed."""

    code = "STEP_FAILED"

    def __init__(
        self,
        step_id: str,
        message: str,
        exit_code: Optional[int] = None,
    ) -> None:
        super().__init__(
            f"Step {step_id} failed: {message}",
            {"step_id": step_id, "exit_code": exit_code},
        )
        self.step_id = step_id
        self.exit_code = exit_code


class InstanceStateError(ComputeFlowError):
    """The provider reported a terminal failure state while waiting."""

    code = "INSTANCE_STATE_ERROR"
    status_code = 409

    def __init__(self, machine_id: str, state: str, attempt: Optional[int] = None) -> None:
        super().__init__(
            f"Machine {machine_id} entered {state} state",
            {"machine_id": machine_id, "state": state, "attempt": attempt},
        )
        self.machine_id = machine_id
        self.state = state


class InstanceOperationError(ComputeFlowError):
    """The provider rejected an instance operation."""

    code = "INSTANCE_OPERATION_ERROR"
    status_code = 400

    def __init__(
        self,
        operation: str,
        reason: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        reason = reason or "operation failed"
        super().__init__(f"Failed to {operation} instance: {reason}", details)
        self.operation = operation


class ComputeFlowTimeoutError(ComputeFlowError):
    """A bounded wait ran out of time."""

    code = "TIMEOUT"
    status_code = 504


class ReadinessTimeoutError(ComputeFlowTimeoutError):
    def __init__(
        self,
        machine_id: str,
        max_attempts: int,
        interval_ms: int,
        target_state: str = "ready",
    ) -> None:
        super().__init__(
            f"Timeout waiting for machine {machine_id} to become {target_state} "
            f"after {max_attempts} attempts",
            {
                "machine_id": machine_id,
                "max_attempts": max_attempts,
                "interval_ms": interval_ms,
                "target_state": target_state,
            },
        )
        self.machine_id = machine_id
        self.max_attempts = max_attempts
        self.target_state = target_state


class CommandTimeoutError(ComputeFlowTimeoutError):
    def __init__(self, command: str, timeout_ms: int) -> None:
        super().__init__(
            f"Command '{command}' timed out after {timeout_ms}ms",
            {"command": command, "timeout_ms": timeout_ms},
        )
        self.timeout_ms = timeout_ms


class InfrastructureError(ComputeFlowError):
    """Transient failure of the compute platform or the transport to it."""

    code = "INFRASTRUCTURE_ERROR"
    status_code = 502

    def __init__(
        self, component: str = "compute platform", details: Optional[Dict[str, Any]] = None
    ) -> None:
        super().__init__(f"The {component} is currently unavailable", details)
        self.component = component


__all__ = [
    "ComputeFlowError",
    "ValidationError",
    "NotFoundError",
    "CircularDependencyError",
    "StepExecutionError",
    "InstanceStateError",
    "InstanceOperationError",
    "ComputeFlowTimeoutError",
    "ReadinessTimeoutError",
    "CommandTimeoutError",
    "InfrastructureError",
]
