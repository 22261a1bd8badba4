"""Sprint planning: capacity, scope change, burndown and delivery risk.

The planner is pure. Every operation takes a Sprint and returns an updated copy;
persisting it is the caller's job.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum

import structlog

from cadence.config import settings
from cadence.errors import CapacityExceededError, ValidationError
from cadence.models import BurndownPoint, Sprint, SprintStatus, StateCategory, Task, Workflow
from cadence.tasks.dependencies import CriticalPathResult

log = structlog.get_logger()

# Float tolerance for point arithmetic
_EPSILON = 1e-9


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass
class SprintRisk:
    """Delivery risk for a sprint at one moment.

    ``level`` counts the risk factors present: none is low, one is medium,
    two or more is high.
    """

    level: RiskLevel
    blocked_count: int = 0
    burndown_deviation: float = 0.0  # fraction of committed points behind ideal
    behind_schedule: list[str] = field(default_factory=list)
    reasons: list[str] = field(default_factory=list)

    @property
    def has_risks(self) -> bool:
        return self.level != RiskLevel.LOW


@dataclass
class SprintHealth:
    sprint_id: str
    status: SprintStatus
    completion_rate: float
    scope_change_rate: float
    remaining_points: float
    risk: SprintRisk


class SprintPlanner:
    """Capacity and burndown rules for sprints of one workflow."""

    def __init__(
        self,
        workflow: Workflow,
        *,
        overcommit_factor: float | None = None,
        deviation_threshold: float | None = None,
        blocked_threshold: int | None = None,
    ) -> None:
        self.workflow = workflow
        self.overcommit_factor = (
            settings.overcommit_factor if overcommit_factor is None else overcommit_factor
        )
        self.deviation_threshold = (
            settings.burndown_deviation_threshold
            if deviation_threshold is None
            else deviation_threshold
        )
        self.blocked_threshold = (
            settings.blocked_task_risk_threshold if blocked_threshold is None else blocked_threshold
        )

    # -------------------------------------------------------------------------
    # Point ledger
    # -------------------------------------------------------------------------

    def capacity_limit(self, sprint: Sprint) -> float:
        return sprint.capacity * self.overcommit_factor

    def check_capacity(self, sprint: Sprint, proposed_points: float) -> None:
        """Raise if the sprint cannot take ``proposed_points`` more.

        Current scope is ``scope_points``: committed points plus scope added
        after the start. ``CapacityExceededError.current`` reports that sum.

        Raises:
            CapacityExceededError: Current scope plus the proposal exceeds
                ``capacity * overcommit_factor``.
        """
        limit = self.capacity_limit(sprint)
        required = sprint.scope_points + proposed_points
        if required > limit + _EPSILON:
            log.info(
                "Sprint capacity exceeded",
                sprint_id=sprint.id,
                current=sprint.scope_points,
                required=required,
                limit=limit,
            )
            raise CapacityExceededError(sprint.scope_points, required, limit=limit)

    def add_points(self, sprint: Sprint, points: float) -> Sprint:
        """Commit points before the sprint starts, record them as added scope after."""
        if points < 0:
            raise ValidationError("estimate", "negative", "Points cannot be negative")
        if sprint.status == SprintStatus.COMPLETED:
            raise ValidationError("sprint_id", "sprint_closed", f"Sprint {sprint.id} is closed")
        self.check_capacity(sprint, points)
        if sprint.status == SprintStatus.PLANNED:
            return sprint.model_copy(update={"committed_points": sprint.committed_points + points})
        return sprint.model_copy(update={"added_points": sprint.added_points + points})

    def start_sprint(self, sprint: Sprint, now: datetime) -> Sprint:
        """Lock the commitment; later additions count as scope change."""
        if sprint.status != SprintStatus.PLANNED:
            raise ValidationError(
                "status", "invalid_sprint_state", f"Sprint {sprint.id} is {sprint.status.value}"
            )
        return sprint.model_copy(update={"status": SprintStatus.ACTIVE, "updated_at": now})

    def record_completion(self, sprint: Sprint, points: float) -> Sprint:
        return sprint.model_copy(update={"completed_points": sprint.completed_points + points})

    def close_sprint(self, sprint: Sprint, tasks: Iterable[Task], now: datetime) -> Sprint:
        """Settle the ledger from live tasks: done points complete, open points carry over."""
        if sprint.status == SprintStatus.COMPLETED:
            raise ValidationError(
                "status", "invalid_sprint_state", f"Sprint {sprint.id} is already closed"
            )
        completed = 0.0
        carryover = 0.0
        for task in tasks:
            points = task.estimate or 0.0
            if self.workflow.is_completion(task.status):
                completed += points
            elif not self.workflow.is_terminal(task.status):
                carryover += points
        return sprint.model_copy(
            update={
                "status": SprintStatus.COMPLETED,
                "completed_points": completed,
                "carryover_points": carryover,
                "updated_at": now,
            }
        )

    # -------------------------------------------------------------------------
    # Rates
    # -------------------------------------------------------------------------

    @staticmethod
    def scope_change_rate(sprint: Sprint) -> float:
        if sprint.committed_points <= 0:
            return 0.0
        return sprint.added_points / sprint.committed_points

    @staticmethod
    def completion_rate(sprint: Sprint) -> float:
        if sprint.committed_points <= 0:
            return 0.0
        return sprint.completed_points / sprint.committed_points

    # -------------------------------------------------------------------------
    # Burndown
    # -------------------------------------------------------------------------

    def remaining_points(self, tasks: Iterable[Task]) -> float:
        return sum(t.estimate or 0.0 for t in tasks if not self.workflow.is_terminal(t.status))

    @staticmethod
    def ideal_remaining(sprint: Sprint, day: datetime) -> float:
        """Committed points decaying linearly to zero between start and end."""
        elapsed = (day - sprint.start_date) / (sprint.end_date - sprint.start_date)
        elapsed = min(max(elapsed, 0.0), 1.0)
        return sprint.committed_points * (1.0 - elapsed)

    def burndown_point(
        self, sprint: Sprint, day: datetime, tasks: Iterable[Task]
    ) -> BurndownPoint:
        return BurndownPoint(
            day=day,
            remaining_points=self.remaining_points(tasks),
            ideal_remaining=self.ideal_remaining(sprint, day),
        )

    @staticmethod
    def record_burndown(sprint: Sprint, point: BurndownPoint) -> Sprint:
        """Append a point, replacing any earlier point for the same calendar day."""
        series = [p for p in sprint.burndown if p.day.date() != point.day.date()]
        series.append(point)
        series.sort(key=lambda p: p.day)
        return sprint.model_copy(update={"burndown": series})

    # -------------------------------------------------------------------------
    # Risk
    # -------------------------------------------------------------------------

    def assess_risk(
        self,
        sprint: Sprint,
        tasks: list[Task],
        now: datetime,
        critical_path: CriticalPathResult | None = None,
    ) -> SprintRisk:
        """Score blocked work, burndown lag and late critical-path tasks."""
        reasons: list[str] = []

        blocked_count = sum(1 for t in tasks if self.workflow.is_blocked(t.status))
        if blocked_count >= self.blocked_threshold:
            reasons.append(f"{blocked_count} blocked task(s)")

        point = self.burndown_point(sprint, now, tasks)
        deviation = 0.0
        if sprint.committed_points > 0:
            deviation = point.deviation / sprint.committed_points
        if deviation > self.deviation_threshold:
            reasons.append(f"burndown {deviation:.0%} behind ideal")

        behind = self._behind_schedule(sprint, tasks, now, critical_path)
        if behind:
            reasons.append(f"{len(behind)} critical path task(s) behind schedule")

        if not reasons:
            level = RiskLevel.LOW
        elif len(reasons) == 1:
            level = RiskLevel.MEDIUM
        else:
            level = RiskLevel.HIGH
        return SprintRisk(
            level=level,
            blocked_count=blocked_count,
            burndown_deviation=deviation,
            behind_schedule=behind,
            reasons=reasons,
        )

    def _behind_schedule(
        self,
        sprint: Sprint,
        tasks: list[Task],
        now: datetime,
        critical_path: CriticalPathResult | None,
    ) -> list[str]:
        """Critical tasks not started by their latest start or not done by their latest finish.

        Schedule offsets are hours from the sprint start.
        """
        if critical_path is None:
            return []
        by_id = {t.id: t for t in tasks}
        elapsed = (now - sprint.start_date) / timedelta(hours=1)
        behind = []
        for task_id in critical_path.path:
            task = by_id.get(task_id)
            entry = critical_path.schedule.get(task_id)
            if task is None or entry is None or self.workflow.is_terminal(task.status):
                continue
            category = self.workflow.category_of(task.status)
            if category == StateCategory.TODO and elapsed > entry.latest_start + _EPSILON:
                behind.append(task_id)
            elif elapsed > entry.latest_finish + _EPSILON:
                behind.append(task_id)
        return behind

    def health(
        self,
        sprint: Sprint,
        tasks: list[Task],
        now: datetime,
        critical_path: CriticalPathResult | None = None,
    ) -> SprintHealth:
        return SprintHealth(
            sprint_id=sprint.id,
            status=sprint.status,
            completion_rate=self.completion_rate(sprint),
            scope_change_rate=self.scope_change_rate(sprint),
            remaining_points=self.remaining_points(tasks),
            risk=self.assess_risk(sprint, tasks, now, critical_path),
        )
