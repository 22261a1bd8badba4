"""Delivery metrics derived from the transition log.

Everything here is a pure fold over a task's ordered StateTransition records;
the workflow only supplies state categories.
"""

import statistics
from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime, timedelta

import structlog

from cadence.models import (
    DeploymentEvent,
    DoraMetrics,
    MetricsScope,
    MetricsSummary,
    Period,
    StateCategory,
    StateTransition,
    Task,
    TrendPoint,
    Workflow,
)

log = structlog.get_logger()

TransitionLog = Sequence[StateTransition]


def _mean(values: list[timedelta]) -> timedelta:
    return sum(values, timedelta()) / len(values)


class MetricsCalculator:
    """Time-in-state, cycle/lead time and team aggregates for one workflow."""

    def __init__(self, workflow: Workflow) -> None:
        self.workflow = workflow

    # -------------------------------------------------------------------------
    # Per-task folds
    # -------------------------------------------------------------------------

    @staticmethod
    def current_status(history: TransitionLog) -> str | None:
        """Replay the log; the last accepted target is the current status."""
        status = None
        for record in history:
            status = record.to_status
        return status

    @staticmethod
    def time_in_state(
        history: TransitionLog, state: str, now: datetime | None = None
    ) -> timedelta:
        """Total time spent in ``state`` across every visit.

        Closed intervals run from entering ``state`` to the next transition.
        The interval still open at the end of the log only counts when ``now``
        is given.
        """
        total = timedelta()
        for current, following in zip(history, history[1:]):
            if current.to_status == state:
                total += following.transitioned_at - current.transitioned_at
        if now is not None and history and history[-1].to_status == state:
            total += now - history[-1].transitioned_at
        return total

    @staticmethod
    def time_in_states(
        history: TransitionLog, now: datetime | None = None
    ) -> dict[str, timedelta]:
        totals: dict[str, timedelta] = {}
        for current, following in zip(history, history[1:]):
            elapsed = following.transitioned_at - current.transitioned_at
            totals[current.to_status] = totals.get(current.to_status, timedelta()) + elapsed
        if now is not None and history:
            last = history[-1]
            totals[last.to_status] = totals.get(last.to_status, timedelta()) + (
                now - last.transitioned_at
            )
        return totals

    def first_entry(self, history: TransitionLog, category: StateCategory) -> datetime | None:
        for record in history:
            if self.workflow.category_of(record.to_status) == category:
                return record.transitioned_at
        return None

    def completed_at(self, history: TransitionLog) -> datetime | None:
        """When the task first reached a done-category state."""
        return self.first_entry(history, StateCategory.DONE)

    def cycle_time(self, history: TransitionLog) -> timedelta | None:
        """First done-category entry minus first todo-category entry.

        ``None`` while the task is not done; ``timedelta(0)`` if it never sat in
        a todo-category state.
        """
        done = self.completed_at(history)
        if done is None:
            return None
        started = self.first_entry(history, StateCategory.TODO)
        if started is None:
            return timedelta()
        return done - started

    def lead_time(self, task: Task, history: TransitionLog) -> timedelta | None:
        """Completion time minus creation time."""
        done = self.completed_at(history) or task.completed_at
        if done is None:
            return None
        return done - task.created_at

    # -------------------------------------------------------------------------
    # Aggregates
    # -------------------------------------------------------------------------

    def _completion(self, task: Task, history: TransitionLog) -> datetime | None:
        """Completion time for tasks that finished as done, not cancelled."""
        status = self.current_status(history) or task.status
        if not self.workflow.is_completion(status):
            return None
        return self.completed_at(history) or task.completed_at

    def completed_in(
        self,
        tasks: Iterable[Task],
        logs: Mapping[str, TransitionLog],
        period: Period,
    ) -> list[Task]:
        return [t for t in tasks if period.contains(self._completion(t, logs.get(t.id, ())))]

    def velocity(
        self, tasks: Iterable[Task], logs: Mapping[str, TransitionLog], period: Period
    ) -> float:
        """Story points completed within the period. Cancellations do not count."""
        return sum(t.estimate or 0.0 for t in self.completed_in(tasks, logs, period))

    def throughput(
        self, tasks: Iterable[Task], logs: Mapping[str, TransitionLog], period: Period
    ) -> float:
        """Completed tasks per week."""
        return len(self.completed_in(tasks, logs, period)) / period.weeks

    def wip(self, tasks: Iterable[Task]) -> int:
        return sum(
            1 for t in tasks if self.workflow.category_of(t.status) == StateCategory.IN_PROGRESS
        )

    @staticmethod
    def trend(
        samples: Iterable[tuple[datetime, timedelta]],
        period: Period,
        bucket: timedelta = timedelta(weeks=1),
    ) -> list[TrendPoint]:
        """Bucket ``(completed_at, duration)`` samples and report mean and stddev.

        Buckets start at ``period.start``; empty buckets are omitted.
        """
        buckets: dict[int, list[timedelta]] = {}
        for moment, duration in samples:
            if not period.contains(moment):
                continue
            index = int((moment - period.start) / bucket)
            buckets.setdefault(index, []).append(duration)

        points = []
        for index in sorted(buckets):
            values = buckets[index]
            seconds = [v.total_seconds() for v in values]
            points.append(
                TrendPoint(
                    bucket_start=period.start + bucket * index,
                    count=len(values),
                    mean=_mean(values),
                    stddev=timedelta(seconds=statistics.pstdev(seconds)),
                )
            )
        return points

    @staticmethod
    def dora(events: Iterable[DeploymentEvent], period: Period) -> DoraMetrics:
        """Deployment frequency, change failure rate and MTTR for the period."""
        in_period = [e for e in events if period.contains(e.deployed_at)]
        failures = [e for e in in_period if e.failed]
        restores = [e.restored_at - e.deployed_at for e in failures if e.restored_at is not None]
        return DoraMetrics(
            deployment_count=len(in_period),
            deployment_frequency=len(in_period) / period.weeks,
            change_failure_rate=len(failures) / len(in_period) if in_period else 0.0,
            mean_time_to_restore=_mean(restores) if restores else None,
        )

    def summarize(
        self,
        tasks: Sequence[Task],
        logs: Mapping[str, TransitionLog],
        period: Period,
        *,
        scope: MetricsScope | None = None,
        deployments: Iterable[DeploymentEvent] | None = None,
        bucket: timedelta = timedelta(weeks=1),
    ) -> MetricsSummary:
        completed = self.completed_in(tasks, logs, period)

        cycle_samples: list[tuple[datetime, timedelta]] = []
        lead_samples: list[tuple[datetime, timedelta]] = []
        for task in completed:
            task_log = logs.get(task.id, ())
            done = self._completion(task, task_log)
            cycle = self.cycle_time(task_log) if task_log else task.cycle_time
            lead = self.lead_time(task, task_log)
            if done is not None and cycle is not None:
                cycle_samples.append((done, cycle))
            if done is not None and lead is not None:
                lead_samples.append((done, lead))

        summary = MetricsSummary(
            scope=scope,
            period=period,
            completed_count=len(completed),
            velocity=sum(t.estimate or 0.0 for t in completed),
            throughput=len(completed) / period.weeks,
            wip=self.wip(tasks),
            average_cycle_time=_mean([c for _, c in cycle_samples]) if cycle_samples else None,
            average_lead_time=_mean([ld for _, ld in lead_samples]) if lead_samples else None,
            cycle_time_trend=self.trend(cycle_samples, period, bucket),
            lead_time_trend=self.trend(lead_samples, period, bucket),
            dora=self.dora(deployments, period) if deployments is not None else None,
        )
        log.debug(
            "Metrics summarized",
            scope=scope.id if scope else None,
            completed=summary.completed_count,
            wip=summary.wip,
        )
        return summary
