"""Task management operations.

TaskManager is the entry point hosts call. It reads current state from the
store, hands validation to the dependency graph, workflow engine and sprint
planner, and commits accepted writes inside store transactions.
"""

import math
from collections.abc import Iterable, Mapping
from datetime import datetime, timedelta
from typing import Any

import pydantic
import structlog

from cadence.config import Settings
from cadence.config import settings as default_settings
from cadence.errors import NotFoundError, ValidationError
from cadence.models import (
    UPDATABLE_FIELDS,
    Actor,
    BurndownPoint,
    DependencyType,
    DeploymentEvent,
    MetricsScope,
    MetricsSummary,
    Period,
    ScopeKind,
    Sprint,
    SprintStatus,
    StateTransition,
    Task,
    TaskCreate,
    TaskDependency,
    TaskFilters,
    TaskPage,
    Workflow,
    default_workflow,
)
from cadence.store import AutomationDispatcher, Clock, SystemClock, TaskStore
from cadence.tasks.dependencies import CriticalPathResult, DependencyGraph
from cadence.tasks.metrics import MetricsCalculator
from cadence.tasks.sprints import SprintHealth, SprintPlanner
from cadence.tasks.workflow import (
    PredecessorStatus,
    TaskWorkflowEngine,
    TransitionContext,
    TransitionResult,
)

log = structlog.get_logger()

# Sprint fields the store never takes from an update
_SPRINT_IMMUTABLE = {"id", "version", "created_at"}


def _from_pydantic(exc: pydantic.ValidationError) -> ValidationError:
    """Map the first pydantic error onto a field/code ValidationError."""
    first = exc.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ())) or "data"
    return ValidationError(field, first.get("type", "invalid"), first.get("msg"))


class TaskManager:
    """High-level task operations over a store and one workflow."""

    def __init__(
        self,
        store: TaskStore,
        workflow: Workflow | None = None,
        *,
        dispatcher: AutomationDispatcher | None = None,
        clock: Clock | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._store = store
        self._settings = settings or default_settings
        self._clock = clock or SystemClock()
        self.workflow = workflow or default_workflow()
        self.engine = TaskWorkflowEngine(self.workflow, store, dispatcher, self._clock)
        self.metrics = MetricsCalculator(self.workflow)
        self.planner = SprintPlanner(
            self.workflow,
            overcommit_factor=self._settings.overcommit_factor,
            deviation_threshold=self._settings.burndown_deviation_threshold,
            blocked_threshold=self._settings.blocked_task_risk_threshold,
        )
        self._critical_path_cache: dict[
            tuple[str, ...] | None, tuple[datetime, CriticalPathResult]
        ] = {}

    # =========================================================================
    # Tasks
    # =========================================================================

    async def create_task(self, data: TaskCreate | Mapping[str, Any], actor: Actor) -> Task:
        """Create a task in the workflow's initial state.

        The first transition-log record (``from_status=None``) is written in
        the same transaction.

        Raises:
            ValidationError: Malformed input, or the parent chain would be too deep.
            NotFoundError: The parent, epic or sprint does not exist.
            CapacityExceededError: The sprint cannot absorb the estimate.
        """
        if not isinstance(data, TaskCreate):
            try:
                data = TaskCreate.model_validate(data)
            except pydantic.ValidationError as e:
                raise _from_pydantic(e) from e
        if not data.title.strip():
            raise ValidationError("title", "required", "Title cannot be empty")

        if data.parent_id:
            depth = await self._depth(data.parent_id) + 1
            if depth > self._settings.max_parent_depth:
                raise ValidationError(
                    "parent_id",
                    "max_depth_exceeded",
                    f"Task nesting is limited to {self._settings.max_parent_depth} levels",
                )
        if data.epic_id:
            await self._store.get(data.epic_id)

        now = self._clock.now()
        fields = data.model_dump(exclude={"id"})
        if data.id:
            fields["id"] = data.id
        try:
            task = Task(
                **fields,
                status=self.workflow.initial_state,
                reporter_id=actor.id,
                created_at=now,
                updated_at=now,
            )
        except pydantic.ValidationError as e:
            raise _from_pydantic(e) from e

        async with self._store.transaction():
            if data.sprint_id:
                sprint = await self._store.get_sprint(data.sprint_id)
                await self._save_sprint(
                    sprint, self.planner.add_points(sprint, data.estimate or 0.0)
                )
            created = await self._store.create(task)
            await self._store.append_transition(
                StateTransition(
                    task_id=created.id,
                    from_status=None,
                    to_status=created.status,
                    actor_id=actor.id,
                    transitioned_at=now,
                    triggered_by="create",
                )
            )

        self._invalidate_critical_path()
        log.info("Task created", task_id=created.id, title=created.title, actor_id=actor.id)
        return created

    async def get_task(self, task_id: str) -> Task:
        return await self._store.get(task_id)

    async def list_tasks(
        self,
        filters: TaskFilters | None = None,
        page: int = 1,
        limit: int | None = None,
    ) -> TaskPage:
        """Filtered tasks ordered by ``order``, creation time and id."""
        limit = limit or self._settings.default_page_size
        if page < 1:
            raise ValidationError("page", "out_of_range", "Page numbers start at 1")
        if not 1 <= limit <= self._settings.max_page_size:
            raise ValidationError(
                "limit",
                "out_of_range",
                f"Limit must be between 1 and {self._settings.max_page_size}",
            )

        tasks = await self._store.list_tasks(filters)
        tasks.sort(key=lambda t: (t.order, t.created_at, t.id))
        start = (page - 1) * limit
        return TaskPage(
            tasks=tasks[start : start + limit],
            total=len(tasks),
            page=page,
            total_pages=math.ceil(len(tasks) / limit),
        )

    async def update_task(
        self, task_id: str, fields: Mapping[str, Any], expected_version: int
    ) -> Task:
        """Update non-status fields with an optimistic version check.

        Raises:
            ValidationError: A field is not updatable or the result is invalid.
            NotFoundError: The task or a new parent does not exist.
            ConflictError: ``expected_version`` is stale.
        """
        for name in fields:
            if name == "status":
                raise ValidationError(
                    "status", "use_transition", "Status changes go through transition_task"
                )
            if name not in UPDATABLE_FIELDS:
                raise ValidationError(name, "not_updatable")

        current = await self._store.get(task_id)
        if "title" in fields and not str(fields["title"] or "").strip():
            raise ValidationError("title", "required", "Title cannot be empty")
        try:
            Task.model_validate({**current.model_dump(), **fields})
        except pydantic.ValidationError as e:
            raise _from_pydantic(e) from e

        new_parent = fields.get("parent_id")
        async with self._store.transaction():
            # Ancestor checks and the write see the same parent chain
            if new_parent and new_parent != current.parent_id:
                await self._check_reparent(task_id, new_parent)
            updated = await self._store.update_with_version(
                task_id, {**fields, "updated_at": self._clock.now()}, expected_version
            )
        if "time_estimate" in fields:
            self._invalidate_critical_path()
        log.info("Task updated", task_id=task_id, fields=sorted(fields), version=updated.version)
        return updated

    async def delete_task(self, task_id: str, actor: Actor, hard: bool = False) -> Task | None:
        """Soft delete moves the task to the cancel state; hard delete removes it.

        Hard delete is refused while another task depends on this one or it
        still has children.
        """
        if not hard:
            if self.workflow.cancel_state is None:
                raise ValidationError(
                    "hard", "no_cancel_state", "Workflow has no cancel state; use hard delete"
                )
            result = await self.transition_task(
                task_id, self.workflow.cancel_state, actor, triggered_by="delete"
            )
            return result.task

        # No edge or child may appear between the reference checks and the delete
        async with self._store.transaction():
            await self._store.get(task_id)
            edges = await self._store.list_edges(task_id)
            dependents = [e.task_id for e in edges if e.depends_on_id == task_id]
            if dependents:
                raise ValidationError(
                    "task_id",
                    "referenced_by_dependency",
                    f"Tasks depend on {task_id}: {', '.join(sorted(dependents))}",
                )
            children = await self._store.list_tasks(TaskFilters(parent_id=task_id))
            if children:
                raise ValidationError("task_id", "has_children", f"Task {task_id} has subtasks")
            await self._store.delete(task_id)
        self._invalidate_critical_path()
        log.info("Task deleted", task_id=task_id, actor_id=actor.id)
        return None

    async def _depth(self, task_id: str) -> int:
        """Nesting level of an existing task; roots are level 1."""
        depth = 0
        seen: set[str] = set()
        current: str | None = task_id
        while current is not None:
            if current in seen:
                raise ValidationError("parent_id", "circular_parent")
            seen.add(current)
            task = await self._store.get(current)
            depth += 1
            current = task.parent_id
        return depth

    async def _subtree_height(self, task_id: str) -> int:
        tasks = await self._store.list_tasks()
        children: dict[str, list[str]] = {}
        for t in tasks:
            if t.parent_id:
                children.setdefault(t.parent_id, []).append(t.id)
        height = 0
        level = [task_id]
        while level:
            height += 1
            level = [c for tid in level for c in children.get(tid, ())]
        return height

    async def _check_reparent(self, task_id: str, new_parent: str) -> None:
        if new_parent == task_id:
            raise ValidationError("parent_id", "self_parent", "A task cannot be its own parent")
        ancestor: str | None = new_parent
        while ancestor is not None:
            if ancestor == task_id:
                raise ValidationError(
                    "parent_id", "circular_parent", f"{new_parent} is a descendant of {task_id}"
                )
            ancestor = (await self._store.get(ancestor)).parent_id
        depth = await self._depth(new_parent) + await self._subtree_height(task_id)
        if depth > self._settings.max_parent_depth:
            raise ValidationError(
                "parent_id",
                "max_depth_exceeded",
                f"Task nesting is limited to {self._settings.max_parent_depth} levels",
            )

    # =========================================================================
    # Dependencies
    # =========================================================================

    async def _load_graph(self) -> DependencyGraph:
        tasks = await self._store.list_tasks()
        edges = await self._store.list_edges()
        return DependencyGraph(tasks, edges)

    async def add_dependency(
        self,
        task_id: str,
        depends_on_id: str,
        dependency_type: DependencyType = DependencyType.FINISH_TO_START,
        lag: float = 0.0,
    ) -> TaskDependency:
        """Record that ``task_id`` depends on ``depends_on_id``.

        Cycle validation and the write share one store transaction, so two
        concurrent insertions cannot jointly close a cycle.

        Raises:
            ValidationError: Self dependency or duplicate edge.
            NotFoundError: Either task does not exist.
            CircularDependencyError: The edge would close a cycle.
        """
        async with self._store.transaction():
            graph = await self._load_graph()
            edge = graph.add_edge(task_id, depends_on_id, dependency_type, lag)
            await self._store.add_edge(edge)

        self._invalidate_critical_path()
        log.info(
            "Dependency added",
            task_id=task_id,
            depends_on_id=depends_on_id,
            dependency_type=dependency_type.value,
            lag=lag,
        )
        return edge

    async def remove_dependency(self, task_id: str, depends_on_id: str) -> None:
        async with self._store.transaction():
            removed = await self._store.remove_edge(task_id, depends_on_id)
        if not removed:
            raise NotFoundError("TaskDependency", f"{task_id}->{depends_on_id}")
        self._invalidate_critical_path()
        log.info("Dependency removed", task_id=task_id, depends_on_id=depends_on_id)

    async def get_blocking_tasks(self, task_id: str) -> list[Task]:
        """Finish-to-start predecessors that have not reached a terminal state."""
        graph = await self._load_graph()
        blocking = graph.get_blocking_tasks(task_id, self.workflow.is_terminal)
        return [await self._store.get(tid) for tid in blocking]

    def _invalidate_critical_path(self) -> None:
        self._critical_path_cache.clear()

    async def compute_critical_path(
        self, task_ids: Iterable[str] | None = None
    ) -> CriticalPathResult:
        """CPM over the given tasks (all tasks if omitted).

        Results are cached for ``critical_path_refresh_seconds`` and dropped
        whenever the graph changes.
        """
        key = tuple(sorted(set(task_ids))) if task_ids is not None else None
        now = self._clock.now()
        ttl = timedelta(seconds=self._settings.critical_path_refresh_seconds)
        cached = self._critical_path_cache.get(key)
        if cached is not None and now - cached[0] < ttl:
            return cached[1]

        graph = await self._load_graph()
        result = graph.compute_critical_path(key)
        self._critical_path_cache[key] = (now, result)
        return result

    # =========================================================================
    # Workflow
    # =========================================================================

    async def transition_task(
        self,
        task_id: str,
        to_status: str,
        actor: Actor,
        approvals: int = 0,
        *,
        triggered_by: str = "user",
    ) -> TransitionResult:
        """Move a task to ``to_status`` through the workflow.

        Raises:
            NotFoundError: The task does not exist.
            WorkflowValidationError: The move is not allowed. Nothing is written.
            ConflictError: The task changed concurrently; the caller may retry.
        """
        task = await self._store.get(task_id)
        predecessors = []
        for edge in await self._store.list_edges(task_id):
            if edge.task_id != task_id:
                continue
            dep = await self._store.get(edge.depends_on_id)
            predecessors.append(
                PredecessorStatus(
                    task_id=dep.id, status=dep.status, dependency_type=edge.dependency_type
                )
            )
        context = TransitionContext(
            approvals=approvals, predecessors=predecessors, triggered_by=triggered_by
        )
        book_completion = None
        if task.sprint_id and task.estimate and self.workflow.is_completion(to_status):

            async def book_completion(updated: Task) -> None:
                # Only work finished during the sprint counts towards it
                sprint = await self._store.get_sprint(updated.sprint_id)
                if sprint.status == SprintStatus.ACTIVE:
                    await self._save_sprint(
                        sprint, self.planner.record_completion(sprint, updated.estimate or 0.0)
                    )

        return await self.engine.apply_transition(
            task, to_status, actor, context, extra_writes=book_completion
        )

    # =========================================================================
    # Metrics
    # =========================================================================

    async def _scope_tasks(self, scope: MetricsScope | None) -> list[Task]:
        if scope is None:
            return await self._store.list_tasks()
        if scope.kind == ScopeKind.PROJECT:
            return await self._store.list_tasks(TaskFilters(project_id=scope.id))
        if scope.kind == ScopeKind.SPRINT:
            return await self._store.list_tasks(TaskFilters(sprint_id=scope.id))
        members = set(scope.member_ids)
        return [t for t in await self._store.list_tasks() if t.assignee_id in members]

    async def get_metrics(
        self,
        scope: MetricsScope | None,
        period: Period,
        deployments: Iterable[DeploymentEvent] | None = None,
    ) -> MetricsSummary:
        """Velocity, throughput, WIP, cycle/lead time trends and DORA for a scope."""
        tasks = await self._scope_tasks(scope)
        logs = {t.id: await self._store.list_transitions(t.id) for t in tasks}
        return self.metrics.summarize(
            tasks, logs, period, scope=scope, deployments=deployments
        )

    # =========================================================================
    # Sprints
    # =========================================================================

    async def _save_sprint(self, before: Sprint, after: Sprint) -> Sprint:
        fields = after.model_dump(exclude=_SPRINT_IMMUTABLE)
        fields["updated_at"] = self._clock.now()
        return await self._store.update_sprint(before.id, fields, before.version)

    async def create_sprint(
        self,
        name: str,
        start_date: datetime,
        end_date: datetime,
        capacity: float,
        *,
        goal: str = "",
        project_id: str | None = None,
    ) -> Sprint:
        now = self._clock.now()
        try:
            sprint = Sprint(
                name=name,
                goal=goal,
                project_id=project_id,
                start_date=start_date,
                end_date=end_date,
                capacity=capacity,
                created_at=now,
                updated_at=now,
            )
        except pydantic.ValidationError as e:
            raise _from_pydantic(e) from e
        created = await self._store.create_sprint(sprint)
        log.info("Sprint created", sprint_id=created.id, name=name, capacity=capacity)
        return created

    async def add_task_to_sprint(self, task_id: str, sprint_id: str) -> Sprint:
        """Assign a task and book its estimate against the sprint's capacity.

        Raises:
            CapacityExceededError: The estimate does not fit.
            ValidationError: The task already belongs to a sprint or the sprint is closed.
        """
        task = await self._store.get(task_id)
        if task.sprint_id is not None:
            raise ValidationError(
                "sprint_id", "already_assigned", f"Task {task_id} is in sprint {task.sprint_id}"
            )
        async with self._store.transaction():
            sprint = await self._store.get_sprint(sprint_id)
            saved = await self._save_sprint(
                sprint, self.planner.add_points(sprint, task.estimate or 0.0)
            )
            await self._store.update_with_version(
                task_id, {"sprint_id": sprint_id, "updated_at": self._clock.now()}, task.version
            )
        log.info(
            "Task added to sprint",
            task_id=task_id,
            sprint_id=sprint_id,
            points=task.estimate or 0.0,
        )
        return saved

    async def start_sprint(self, sprint_id: str) -> Sprint:
        sprint = await self._store.get_sprint(sprint_id)
        started = self.planner.start_sprint(sprint, self._clock.now())
        saved = await self._save_sprint(sprint, started)
        log.info("Sprint started", sprint_id=sprint_id, committed=saved.committed_points)
        return saved

    async def record_burndown(self, sprint_id: str, day: datetime | None = None) -> BurndownPoint:
        sprint = await self._store.get_sprint(sprint_id)
        tasks = await self._store.list_tasks(TaskFilters(sprint_id=sprint_id))
        point = self.planner.burndown_point(sprint, day or self._clock.now(), tasks)
        await self._save_sprint(sprint, self.planner.record_burndown(sprint, point))
        return point

    async def close_sprint(self, sprint_id: str) -> Sprint:
        sprint = await self._store.get_sprint(sprint_id)
        tasks = await self._store.list_tasks(TaskFilters(sprint_id=sprint_id))
        saved = await self._save_sprint(
            sprint, self.planner.close_sprint(sprint, tasks, self._clock.now())
        )
        log.info(
            "Sprint closed",
            sprint_id=sprint_id,
            completed=saved.completed_points,
            carryover=saved.carryover_points,
        )
        return saved

    async def sprint_health(self, sprint_id: str) -> SprintHealth:
        """Rates, remaining points and risk, using the sprint's own critical path."""
        sprint = await self._store.get_sprint(sprint_id)
        tasks = await self._store.list_tasks(TaskFilters(sprint_id=sprint_id))
        critical_path = None
        if tasks:
            critical_path = await self.compute_critical_path([t.id for t in tasks])
        return self.planner.health(sprint, tasks, self._clock.now(), critical_path)
