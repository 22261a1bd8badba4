"""Task, dependency and transition-log models."""

from datetime import UTC, datetime, timedelta
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex[:16]}"


def utcnow() -> datetime:
    return datetime.now(UTC)


class TaskType(str, Enum):
    """Kinds of work item."""

    EPIC = "epic"
    STORY = "story"
    TASK = "task"
    SUBTASK = "subtask"
    BUG = "bug"


class TaskPriority(str, Enum):
    """Task priority levels."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class DependencyType(str, Enum):
    """Scheduling relationship between a task and its predecessor."""

    FINISH_TO_START = "finish_to_start"
    START_TO_START = "start_to_start"
    FINISH_TO_FINISH = "finish_to_finish"
    START_TO_FINISH = "start_to_finish"


class Task(BaseModel):
    """A work item tracked through a workflow.

    ``status`` is always a state id of the owning workflow. ``version`` is the
    optimistic-concurrency counter; the store bumps it on every write.
    """

    id: str = Field(default_factory=lambda: _new_id("task"))
    task_type: TaskType = TaskType.TASK
    title: str = Field(..., min_length=1, max_length=500)
    description: str = ""
    status: str = "todo"
    priority: TaskPriority = TaskPriority.MEDIUM

    parent_id: str | None = None
    epic_id: str | None = None
    project_id: str | None = None
    sprint_id: str | None = None
    assignee_id: str | None = None
    reporter_id: str | None = None

    # Story points and hours
    estimate: float | None = Field(default=None, ge=0)
    time_estimate: float | None = Field(default=None, ge=0)
    actual_time: float | None = Field(default=None, ge=0)

    due_date: datetime | None = None
    start_date: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None

    # Persisted when the task reaches a done-category state
    cycle_time: timedelta | None = None
    lead_time: timedelta | None = None

    labels: list[str] = Field(default_factory=list)
    order: int = 0
    version: int = Field(default=1, ge=1)

    @property
    def duration(self) -> float:
        """CPM duration in hours; tasks without an estimate take no time."""
        return self.time_estimate or 0.0


class TaskCreate(BaseModel):
    """Input for creating a task. Status and bookkeeping fields are engine-owned."""

    model_config = ConfigDict(extra="forbid")

    id: str | None = None
    task_type: TaskType = TaskType.TASK
    title: str
    description: str = ""
    priority: TaskPriority = TaskPriority.MEDIUM
    parent_id: str | None = None
    epic_id: str | None = None
    project_id: str | None = None
    sprint_id: str | None = None
    assignee_id: str | None = None
    estimate: float | None = None
    time_estimate: float | None = None
    due_date: datetime | None = None
    start_date: datetime | None = None
    labels: list[str] = Field(default_factory=list)


# Fields callers may change through update_task; status goes through the workflow
UPDATABLE_FIELDS = frozenset(
    {
        "task_type",
        "title",
        "description",
        "priority",
        "parent_id",
        "epic_id",
        "project_id",
        "assignee_id",
        "estimate",
        "time_estimate",
        "actual_time",
        "due_date",
        "start_date",
        "labels",
        "order",
    }
)


class TaskDependency(BaseModel):
    """Directed edge: ``task_id`` depends on ``depends_on_id``."""

    model_config = ConfigDict(frozen=True)

    task_id: str
    depends_on_id: str
    dependency_type: DependencyType = DependencyType.FINISH_TO_START
    lag: float = 0.0

    @model_validator(mode="after")
    def reject_self_edge(self) -> "TaskDependency":
        if self.task_id == self.depends_on_id:
            raise ValueError("a task cannot depend on itself")
        return self

    @property
    def key(self) -> tuple[str, str]:
        return (self.task_id, self.depends_on_id)


class StateTransition(BaseModel):
    """Immutable record of one accepted status change.

    The ordered log of these per task is the source of truth for current
    status, time-in-state, cycle time and lead time.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: _new_id("trans"))
    task_id: str
    from_status: str | None
    to_status: str
    actor_id: str
    transitioned_at: datetime
    triggered_by: str = "user"
    duration_in_state: timedelta | None = None


class TaskFilters(BaseModel):
    """Filters for listing tasks. Unset fields do not filter."""

    project_id: str | None = None
    sprint_id: str | None = None
    assignee_id: str | None = None
    status: str | None = None
    task_type: TaskType | None = None
    epic_id: str | None = None
    parent_id: str | None = None
    search: str | None = None

    def matches(self, task: Task) -> bool:
        """Check a task against every set filter."""
        for name in (
            "project_id",
            "sprint_id",
            "assignee_id",
            "status",
            "task_type",
            "epic_id",
            "parent_id",
        ):
            wanted = getattr(self, name)
            if wanted is not None and getattr(task, name) != wanted:
                return False
        if self.search:
            needle = self.search.lower()
            if needle not in task.title.lower() and needle not in task.description.lower():
                return False
        return True


class TaskPage(BaseModel):
    """One page of a filtered task listing."""

    tasks: list[Task]
    total: int
    page: int
    total_pages: int
