"""Task engine: dependency graph, workflow, metrics and sprint planning."""

from cadence.tasks.dependencies import (
    CriticalPathResult,
    CycleResult,
    DependencyGraph,
    DependencyResult,
    ScheduleEntry,
)
from cadence.tasks.manager import TaskManager
from cadence.tasks.metrics import MetricsCalculator
from cadence.tasks.sprints import RiskLevel, SprintHealth, SprintPlanner, SprintRisk
from cadence.tasks.workflow import (
    PredecessorStatus,
    TaskWorkflowEngine,
    TransitionContext,
    TransitionResult,
    get_allowed_transitions,
    is_valid_transition,
)

__all__ = [
    # Manager
    "TaskManager",
    # Workflow
    "TaskWorkflowEngine",
    "TransitionContext",
    "TransitionResult",
    "PredecessorStatus",
    "is_valid_transition",
    "get_allowed_transitions",
    # Dependencies
    "DependencyGraph",
    "CycleResult",
    "DependencyResult",
    "CriticalPathResult",
    "ScheduleEntry",
    # Metrics
    "MetricsCalculator",
    # Sprints
    "SprintPlanner",
    "SprintHealth",
    "SprintRisk",
    "RiskLevel",
]
