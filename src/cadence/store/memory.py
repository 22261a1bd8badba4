"""In-memory TaskStore.

Reference implementation of the storage port. Single-process only: a shared
``asyncio.Lock`` provides the transaction boundary and snapshots give rollback.
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import structlog

from cadence.errors import ConflictError, NotFoundError, ValidationError
from cadence.models import Sprint, StateTransition, Task, TaskDependency, TaskFilters

log = structlog.get_logger()


class InMemoryTaskStore:
    """Dict-backed store with version checks and snapshot transactions."""

    def __init__(self) -> None:
        self._tasks: dict[str, Task] = {}
        self._edges: dict[tuple[str, str], TaskDependency] = {}
        self._transitions: dict[str, list[StateTransition]] = {}
        self._sprints: dict[str, Sprint] = {}
        self._lock = asyncio.Lock()

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """Serialize a unit of work and roll it back if it raises.

        Not reentrant: callers must not nest transactions.
        """
        async with self._lock:
            snapshot = (
                dict(self._tasks),
                dict(self._edges),
                {k: list(v) for k, v in self._transitions.items()},
                dict(self._sprints),
            )
            try:
                yield
            except BaseException:
                self._tasks, self._edges, self._transitions, self._sprints = snapshot
                log.debug("Transaction rolled back")
                raise

    # -------------------------------------------------------------------------
    # Tasks
    # -------------------------------------------------------------------------

    async def get(self, task_id: str) -> Task:
        task = self._tasks.get(task_id)
        if task is None:
            raise NotFoundError("Task", task_id)
        return task

    async def create(self, task: Task) -> Task:
        if task.id in self._tasks:
            raise ValidationError("id", "duplicate", f"Task already exists: {task.id}")
        self._tasks[task.id] = task
        return task

    async def update_with_version(
        self, task_id: str, fields: dict[str, Any], expected_version: int
    ) -> Task:
        current = await self.get(task_id)
        if current.version != expected_version:
            raise ConflictError(expected_version, current.version, entity_id=task_id)
        data = current.model_dump()
        data.update(fields)
        data["version"] = current.version + 1
        updated = Task.model_validate(data)
        self._tasks[task_id] = updated
        return updated

    async def delete(self, task_id: str) -> bool:
        if self._tasks.pop(task_id, None) is None:
            return False
        for key in [k for k in self._edges if task_id in k]:
            del self._edges[key]
        return True

    async def list_tasks(self, filters: TaskFilters | None = None) -> list[Task]:
        tasks = list(self._tasks.values())
        if filters is not None:
            tasks = [t for t in tasks if filters.matches(t)]
        return tasks

    # -------------------------------------------------------------------------
    # Dependencies
    # -------------------------------------------------------------------------

    async def list_edges(self, task_id: str | None = None) -> list[TaskDependency]:
        if task_id is None:
            return list(self._edges.values())
        return [e for e in self._edges.values() if task_id in (e.task_id, e.depends_on_id)]

    async def add_edge(self, edge: TaskDependency) -> None:
        self._edges[edge.key] = edge

    async def remove_edge(self, task_id: str, depends_on_id: str) -> bool:
        return self._edges.pop((task_id, depends_on_id), None) is not None

    # -------------------------------------------------------------------------
    # Transition log (append-only)
    # -------------------------------------------------------------------------

    async def append_transition(self, record: StateTransition) -> None:
        self._transitions.setdefault(record.task_id, []).append(record)

    async def list_transitions(self, task_id: str) -> list[StateTransition]:
        return list(self._transitions.get(task_id, []))

    # -------------------------------------------------------------------------
    # Sprints
    # -------------------------------------------------------------------------

    async def get_sprint(self, sprint_id: str) -> Sprint:
        sprint = self._sprints.get(sprint_id)
        if sprint is None:
            raise NotFoundError("Sprint", sprint_id)
        return sprint

    async def create_sprint(self, sprint: Sprint) -> Sprint:
        if sprint.id in self._sprints:
            raise ValidationError("id", "duplicate", f"Sprint already exists: {sprint.id}")
        self._sprints[sprint.id] = sprint
        return sprint

    async def update_sprint(
        self, sprint_id: str, fields: dict[str, Any], expected_version: int
    ) -> Sprint:
        current = await self.get_sprint(sprint_id)
        if current.version != expected_version:
            raise ConflictError(expected_version, current.version, entity_id=sprint_id)
        data = current.model_dump()
        data.update(fields)
        data["version"] = current.version + 1
        updated = Sprint.model_validate(data)
        self._sprints[sprint_id] = updated
        return updated
