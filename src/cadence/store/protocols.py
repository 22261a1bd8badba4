"""Ports the engine depends on.

The engine only talks to storage, automation delivery and time through these
protocols, so hosts can plug in a database, a webhook worker or a frozen clock.
"""

from contextlib import AbstractAsyncContextManager
from datetime import UTC, datetime
from typing import Any, Protocol

import structlog

from cadence.models import PostAction, Sprint, StateTransition, Task, TaskDependency, TaskFilters

log = structlog.get_logger()


class TaskStore(Protocol):
    """Durable entity storage with per-row versions for optimistic concurrency."""

    async def get(self, task_id: str) -> Task:
        """Return a task or raise NotFoundError."""
        ...

    async def create(self, task: Task) -> Task: ...

    async def update_with_version(
        self, task_id: str, fields: dict[str, Any], expected_version: int
    ) -> Task:
        """Apply ``fields`` if the stored version matches, else raise ConflictError."""
        ...

    async def delete(self, task_id: str) -> bool: ...

    async def list_tasks(self, filters: TaskFilters | None = None) -> list[Task]: ...

    async def list_edges(self, task_id: str | None = None) -> list[TaskDependency]:
        """Edges touching ``task_id`` on either end, or every edge when omitted."""
        ...

    async def add_edge(self, edge: TaskDependency) -> None: ...

    async def remove_edge(self, task_id: str, depends_on_id: str) -> bool: ...

    async def append_transition(self, record: StateTransition) -> None: ...

    async def list_transitions(self, task_id: str) -> list[StateTransition]:
        """The task's transition log in append order."""
        ...

    async def get_sprint(self, sprint_id: str) -> Sprint: ...

    async def create_sprint(self, sprint: Sprint) -> Sprint: ...

    async def update_sprint(
        self, sprint_id: str, fields: dict[str, Any], expected_version: int
    ) -> Sprint: ...

    def transaction(self) -> AbstractAsyncContextManager[None]:
        """Serializable unit of work; everything inside commits or rolls back together."""
        ...


class AutomationDispatcher(Protocol):
    """Delivers workflow post actions (assign, notify, webhook, ...)."""

    async def dispatch(self, action: PostAction, context: dict[str, Any]) -> None:
        """Deliver one action; raise DispatchError on failure."""
        ...


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(UTC)


class LoggingDispatcher:
    """Dispatcher that only records actions in the log.

    Used when a host has not wired real automation delivery.
    """

    async def dispatch(self, action: PostAction, context: dict[str, Any]) -> None:
        log.info(
            "Post action dispatched",
            action=action.kind,
            task_id=context.get("task_id"),
            to_status=context.get("to_status"),
        )
