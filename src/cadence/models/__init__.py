"""Pydantic models for Cadence."""

from cadence.models.metrics import (
    DeploymentEvent,
    DoraMetrics,
    MetricsScope,
    MetricsSummary,
    Period,
    ScopeKind,
    TrendPoint,
)
from cadence.models.sprints import BurndownPoint, Sprint, SprintStatus
from cadence.models.tasks import (
    UPDATABLE_FIELDS,
    DependencyType,
    StateTransition,
    Task,
    TaskCreate,
    TaskDependency,
    TaskFilters,
    TaskPage,
    TaskPriority,
    TaskType,
)
from cadence.models.workflow import (
    Actor,
    ApprovalCountAtLeast,
    AssignAction,
    Condition,
    CreateSubtaskAction,
    DependenciesComplete,
    FieldEquals,
    FieldPresent,
    NotifyAction,
    PostAction,
    RoleIs,
    StateCategory,
    UpdateFieldAction,
    WebhookAction,
    Workflow,
    WorkflowState,
    WorkflowTransition,
    default_workflow,
)

__all__ = [
    "UPDATABLE_FIELDS",
    "Actor",
    "ApprovalCountAtLeast",
    "AssignAction",
    "BurndownPoint",
    "Condition",
    "CreateSubtaskAction",
    "DependenciesComplete",
    "DependencyType",
    "DeploymentEvent",
    "DoraMetrics",
    "FieldEquals",
    "FieldPresent",
    "MetricsScope",
    "MetricsSummary",
    "NotifyAction",
    "Period",
    "PostAction",
    "RoleIs",
    "ScopeKind",
    "Sprint",
    "SprintStatus",
    "StateCategory",
    "StateTransition",
    "Task",
    "TaskCreate",
    "TaskDependency",
    "TaskFilters",
    "TaskPage",
    "TaskPriority",
    "TaskType",
    "TrendPoint",
    "UpdateFieldAction",
    "WebhookAction",
    "Workflow",
    "WorkflowState",
    "WorkflowTransition",
    "default_workflow",
]
