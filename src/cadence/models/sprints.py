"""Sprint models."""

from datetime import datetime
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, Field, model_validator

from cadence.models.tasks import utcnow


class SprintStatus(str, Enum):
    PLANNED = "planned"
    ACTIVE = "active"
    COMPLETED = "completed"


class BurndownPoint(BaseModel):
    """Remaining work on one day of a sprint next to the ideal line."""

    day: datetime
    remaining_points: float
    ideal_remaining: float

    @property
    def deviation(self) -> float:
        """Positive when behind the ideal line."""
        return self.remaining_points - self.ideal_remaining


class Sprint(BaseModel):
    """A time box with a capacity and a point ledger.

    ``committed_points`` is locked when the sprint starts; anything added
    afterwards lands in ``added_points`` so scope change stays visible.
    """

    id: str = Field(default_factory=lambda: f"sprint_{uuid4().hex[:16]}")
    name: str = Field(..., min_length=1)
    goal: str = ""
    status: SprintStatus = SprintStatus.PLANNED
    project_id: str | None = None
    start_date: datetime
    end_date: datetime
    capacity: float = Field(default=0.0, ge=0)

    committed_points: float = Field(default=0.0, ge=0)
    completed_points: float = Field(default=0.0, ge=0)
    carryover_points: float = Field(default=0.0, ge=0)
    added_points: float = Field(default=0.0, ge=0)
    burndown: list[BurndownPoint] = Field(default_factory=list)

    version: int = Field(default=1, ge=1)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def validate_dates(self) -> "Sprint":
        if self.end_date <= self.start_date:
            raise ValueError("sprint end_date must be after start_date")
        return self

    @property
    def scope_points(self) -> float:
        """Everything the sprint has taken on, committed or added."""
        return self.committed_points + self.added_points
