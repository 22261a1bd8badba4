"""Metrics inputs and results."""

from datetime import datetime, timedelta
from enum import Enum

from pydantic import BaseModel, Field, model_validator


class Period(BaseModel):
    """Half-open time window ``[start, end)``."""

    start: datetime
    end: datetime

    @model_validator(mode="after")
    def validate_window(self) -> "Period":
        if self.end <= self.start:
            raise ValueError("period end must be after start")
        return self

    @property
    def weeks(self) -> float:
        return (self.end - self.start) / timedelta(weeks=1)

    def contains(self, moment: datetime | None) -> bool:
        return moment is not None and self.start <= moment < self.end


class ScopeKind(str, Enum):
    PROJECT = "project"
    SPRINT = "sprint"
    TEAM = "team"


class MetricsScope(BaseModel):
    """What to aggregate over: a project, a sprint, or a set of assignees."""

    kind: ScopeKind
    id: str
    member_ids: list[str] = Field(default_factory=list)


class TrendPoint(BaseModel):
    """Mean and population standard deviation of a duration within one bucket."""

    bucket_start: datetime
    count: int
    mean: timedelta
    stddev: timedelta


class DeploymentEvent(BaseModel):
    """A deployment from an external pipeline."""

    id: str
    deployed_at: datetime
    failed: bool = False
    restored_at: datetime | None = None


class DoraMetrics(BaseModel):
    deployment_count: int
    deployment_frequency: float  # per week
    change_failure_rate: float
    mean_time_to_restore: timedelta | None


class MetricsSummary(BaseModel):
    """Team or sprint level delivery figures for one period."""

    scope: MetricsScope | None = None
    period: Period
    completed_count: int = 0
    velocity: float = 0.0
    throughput: float = 0.0  # completed per week
    wip: int = 0
    average_cycle_time: timedelta | None = None
    average_lead_time: timedelta | None = None
    cycle_time_trend: list[TrendPoint] = Field(default_factory=list)
    lead_time_trend: list[TrendPoint] = Field(default_factory=list)
    dora: DoraMetrics | None = None
