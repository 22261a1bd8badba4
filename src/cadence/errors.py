"""Custom exceptions for the Cadence task engine.

Every failure mode is typed and carries a ``details`` dict so callers can
map it onto their own transport without parsing messages.
"""

from typing import Any


class CadenceError(Exception):
    """Base exception for all Cadence errors."""

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(CadenceError):
    """Raised when input validation fails before any write."""

    def __init__(self, field: str, code: str, message: str | None = None) -> None:
        super().__init__(
            message or f"Invalid {field}: {code}",
            details={"field": field, "code": code},
        )
        self.field = field
        self.code = code


class NotFoundError(CadenceError):
    """Raised when a requested entity does not exist in the store."""

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(
            f"{entity} not found: {entity_id}",
            details={"entity": entity, "id": entity_id},
        )
        self.entity = entity
        self.entity_id = entity_id


class CircularDependencyError(CadenceError):
    """Raised when a dependency edge would close a cycle."""

    def __init__(self, cycle: list[str]) -> None:
        super().__init__(
            "Circular dependency: " + " -> ".join(cycle),
            details={"cycle": list(cycle)},
        )
        self.cycle = list(cycle)


class WorkflowValidationError(CadenceError):
    """Raised when a status transition is rejected by the workflow."""

    def __init__(
        self,
        violated_conditions: list[str],
        *,
        task_id: str | None = None,
        from_status: str | None = None,
        to_status: str | None = None,
    ) -> None:
        super().__init__(
            f"Transition {from_status} -> {to_status} rejected: " + "; ".join(violated_conditions),
            details={
                "violated_conditions": list(violated_conditions),
                "task_id": task_id,
                "from_status": from_status,
                "to_status": to_status,
            },
        )
        self.violated_conditions = list(violated_conditions)
        self.task_id = task_id
        self.from_status = from_status
        self.to_status = to_status


class CapacityExceededError(CadenceError):
    """Raised when a sprint cannot absorb the proposed points."""

    def __init__(self, current: float, required: float, *, limit: float | None = None) -> None:
        super().__init__(
            f"Sprint capacity exceeded: {current} committed, {required} required"
            + (f" (limit {limit})" if limit is not None else ""),
            details={"current": current, "required": required, "limit": limit},
        )
        self.current = current
        self.required = required
        self.limit = limit


class ConflictError(CadenceError):
    """Raised when an optimistic-concurrency version check fails.

    Retryable by the caller; the engine never retries on its own.
    """

    def __init__(
        self, expected_version: int, actual_version: int, *, entity_id: str | None = None
    ) -> None:
        super().__init__(
            f"Version conflict on {entity_id}: expected {expected_version}, found {actual_version}",
            details={
                "expected_version": expected_version,
                "actual_version": actual_version,
                "entity_id": entity_id,
            },
        )
        self.expected_version = expected_version
        self.actual_version = actual_version
        self.entity_id = entity_id


class DispatchError(CadenceError):
    """Raised by an automation dispatcher when a post action cannot be delivered."""

    def __init__(self, action: str, message: str) -> None:
        super().__init__(f"Dispatch of {action} failed: {message}", details={"action": action})
        self.action = action
