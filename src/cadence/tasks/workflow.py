"""Task workflow state machine.

Legal moves come entirely from the Workflow's transition table, except that a
task in a terminal (done-category) state can never move again.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

import structlog

from cadence.errors import WorkflowValidationError
from cadence.models import (
    Actor,
    ApprovalCountAtLeast,
    DependenciesComplete,
    DependencyType,
    FieldEquals,
    FieldPresent,
    RoleIs,
    StateTransition,
    Task,
    Workflow,
    WorkflowTransition,
)
from cadence.store import AutomationDispatcher, Clock, LoggingDispatcher, SystemClock, TaskStore
from cadence.tasks.metrics import MetricsCalculator

log = structlog.get_logger()


@dataclass(frozen=True)
class PredecessorStatus:
    """Status of one task the transitioning task depends on."""

    task_id: str
    status: str
    dependency_type: DependencyType = DependencyType.FINISH_TO_START


@dataclass
class TransitionContext:
    """Facts about a transition request that are not on the task itself."""

    approvals: int = 0
    predecessors: list[PredecessorStatus] = field(default_factory=list)
    triggered_by: str = "user"


@dataclass
class TransitionResult:
    """An accepted transition: the written task, its log record and dispatch warnings."""

    task: Task
    transition: StateTransition
    warnings: list[str] = field(default_factory=list)


def is_valid_transition(workflow: Workflow, from_status: str, to_status: str) -> bool:
    """Check the transition table only; conditions and permissions are not evaluated."""
    if workflow.is_terminal(from_status):
        return False
    return workflow.find_transition(from_status, to_status) is not None


def get_allowed_transitions(workflow: Workflow, status: str) -> list[str]:
    """Target states reachable from ``status`` in one step."""
    if workflow.is_terminal(status):
        return []
    return [t.to_state for t in workflow.transitions_from(status)]


def _plain(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


class TaskWorkflowEngine:
    """Validates and applies status transitions for one workflow.

    The workflow is injected rather than global so several can be evaluated
    side by side.
    """

    def __init__(
        self,
        workflow: Workflow,
        store: TaskStore,
        dispatcher: AutomationDispatcher | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.workflow = workflow
        self._store = store
        self._dispatcher = dispatcher or LoggingDispatcher()
        self._clock = clock or SystemClock()
        self._metrics = MetricsCalculator(workflow)

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def validate_transition(
        self,
        task: Task,
        to_status: str,
        actor: Actor,
        context: TransitionContext | None = None,
    ) -> WorkflowTransition:
        """Return the matching transition or raise with every violated rule.

        Raises:
            WorkflowValidationError: The move is not allowed.
        """
        context = context or TransitionContext()

        def reject(violations: list[str]) -> WorkflowValidationError:
            return WorkflowValidationError(
                violations, task_id=task.id, from_status=task.status, to_status=to_status
            )

        if self.workflow.is_terminal(task.status):
            raise reject([f"status '{task.status}' is terminal"])
        if not self.workflow.has_state(to_status):
            raise reject([f"unknown status '{to_status}'"])
        transition = self.workflow.find_transition(task.status, to_status)
        if transition is None:
            raise reject([f"no transition from '{task.status}' to '{to_status}'"])

        violations = [
            message
            for condition in transition.conditions
            if (message := self._check_condition(condition, task, actor, context)) is not None
        ]

        if (transition.allowed_roles or transition.allowed_users) and not (
            actor.id in transition.allowed_users
            or set(actor.roles) & set(transition.allowed_roles)
        ):
            violations.append(f"actor '{actor.id}' is not allowed to make this transition")

        if context.approvals < transition.required_approvals:
            violations.append(
                f"{transition.required_approvals} approval(s) required, {context.approvals} given"
            )

        if violations:
            log.info(
                "Transition rejected",
                task_id=task.id,
                from_status=task.status,
                to_status=to_status,
                violations=violations,
            )
            raise reject(violations)
        return transition

    def _check_condition(
        self, condition: Any, task: Task, actor: Actor, context: TransitionContext
    ) -> str | None:
        """Evaluate one condition; returns a violation message or None."""
        if isinstance(condition, FieldEquals):
            if condition.field not in Task.model_fields:
                return f"unknown field '{condition.field}'"
            actual = _plain(getattr(task, condition.field))
            return None if actual == _plain(condition.value) else condition.describe()

        if isinstance(condition, FieldPresent):
            if condition.field not in Task.model_fields:
                return f"unknown field '{condition.field}'"
            value = getattr(task, condition.field)
            return None if value not in (None, "", [], {}) else condition.describe()

        if isinstance(condition, RoleIs):
            return None if set(actor.roles) & set(condition.roles) else condition.describe()

        if isinstance(condition, ApprovalCountAtLeast):
            return None if context.approvals >= condition.count else condition.describe()

        if isinstance(condition, DependenciesComplete):
            pending = sorted(
                p.task_id
                for p in context.predecessors
                if p.dependency_type in condition.dependency_types
                and not self.workflow.is_terminal(p.status)
            )
            if pending:
                return f"{condition.describe()} (pending: {', '.join(pending)})"
            return None

        raise TypeError(f"Unsupported workflow condition: {type(condition).__name__}")

    # -------------------------------------------------------------------------
    # Application
    # -------------------------------------------------------------------------

    async def apply_transition(
        self,
        task: Task,
        to_status: str,
        actor: Actor,
        context: TransitionContext | None = None,
        extra_writes: Callable[[Task], Awaitable[None]] | None = None,
    ) -> TransitionResult:
        """Validate, write the status change and its log record, then run post actions.

        ``task`` is the snapshot the caller read; its version is the one checked
        on write and it is never modified. ``extra_writes`` receives the updated
        task inside the same store transaction, so its writes commit or roll back
        with the status change.

        Raises:
            WorkflowValidationError: The move is not allowed. Nothing is written.
            ConflictError: The task changed since ``task`` was read.
        """
        context = context or TransitionContext()
        transition = self.validate_transition(task, to_status, actor, context)

        now = self._clock.now()
        history = await self._store.list_transitions(task.id)
        entered = self._last_entered(history, task.status) or task.created_at

        record = StateTransition(
            task_id=task.id,
            from_status=task.status,
            to_status=to_status,
            actor_id=actor.id,
            transitioned_at=now,
            triggered_by=context.triggered_by,
            duration_in_state=now - entered,
        )

        fields: dict[str, Any] = {"status": to_status, "updated_at": now}
        if self.workflow.is_terminal(to_status):
            full_log = [*history, record]
            fields["completed_at"] = now
            fields["cycle_time"] = self._metrics.cycle_time(full_log)
            fields["lead_time"] = self._metrics.lead_time(task, full_log)

        async with self._store.transaction():
            updated = await self._store.update_with_version(task.id, fields, task.version)
            await self._store.append_transition(record)
            if extra_writes is not None:
                await extra_writes(updated)

        log.info(
            "Task transitioned",
            task_id=task.id,
            from_status=task.status,
            to_status=to_status,
            actor_id=actor.id,
            version=updated.version,
        )

        warnings = await self._dispatch_post_actions(transition, updated, record)
        return TransitionResult(task=updated, transition=record, warnings=warnings)

    @staticmethod
    def _last_entered(history: list[StateTransition], status: str) -> datetime | None:
        for record in reversed(history):
            if record.to_status == status:
                return record.transitioned_at
        return None

    async def _dispatch_post_actions(
        self, transition: WorkflowTransition, task: Task, record: StateTransition
    ) -> list[str]:
        """Deliver post actions best-effort; failures come back as warnings."""
        warnings: list[str] = []
        context = {
            "task_id": task.id,
            "from_status": record.from_status,
            "to_status": record.to_status,
            "actor_id": record.actor_id,
            "transition_id": record.id,
        }
        for action in transition.post_actions:
            try:
                await self._dispatcher.dispatch(action, context)
            except Exception as e:
                warnings.append(f"{action.kind} failed: {e}")
                log.warning(
                    "Post action failed",
                    task_id=task.id,
                    action=action.kind,
                    error=str(e),
                )
        return warnings

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def available_transitions(
        self, task: Task, actor: Actor, context: TransitionContext | None = None
    ) -> list[str]:
        """Targets this actor could move the task to right now."""
        allowed = []
        for target in get_allowed_transitions(self.workflow, task.status):
            try:
                self.validate_transition(task, target, actor, context)
            except WorkflowValidationError:
                continue
            allowed.append(target)
        return allowed
