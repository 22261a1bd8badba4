"""Loading task snapshots exported from a store."""

from pathlib import Path

import pydantic
import typer
from pydantic import BaseModel, Field

from cadence.cli.common import error
from cadence.models import DeploymentEvent, StateTransition, Task, TaskDependency
from cadence.store import InMemoryTaskStore


class Snapshot(BaseModel):
    """A JSON export: tasks, dependency edges, transition log and deployments."""

    tasks: list[Task] = Field(default_factory=list)
    dependencies: list[TaskDependency] = Field(default_factory=list)
    transitions: list[StateTransition] = Field(default_factory=list)
    deployments: list[DeploymentEvent] = Field(default_factory=list)

    def logs(self) -> dict[str, list[StateTransition]]:
        """Transition log per task, ordered by time."""
        by_task: dict[str, list[StateTransition]] = {t.id: [] for t in self.tasks}
        for record in sorted(self.transitions, key=lambda r: r.transitioned_at):
            by_task.setdefault(record.task_id, []).append(record)
        return by_task


def load_snapshot(path: Path) -> Snapshot:
    """Read and validate a snapshot, exiting with status 1 on bad input."""
    try:
        return Snapshot.model_validate_json(path.read_text(encoding="utf-8"))
    except OSError as e:
        error(f"Cannot read {path}: {e}")
        raise typer.Exit(1) from e
    except pydantic.ValidationError as e:
        error(f"Invalid snapshot {path}: {e.error_count()} error(s)")
        for detail in e.errors()[:5]:
            loc = ".".join(str(p) for p in detail["loc"])
            error(f"  {loc}: {detail['msg']}")
        raise typer.Exit(1) from e


async def build_store(snapshot: Snapshot) -> InMemoryTaskStore:
    """Load a snapshot into an in-memory store as-is."""
    store = InMemoryTaskStore()
    for task in snapshot.tasks:
        await store.create(task)
    for edge in snapshot.dependencies:
        await store.add_edge(edge)
    for records in snapshot.logs().values():
        for record in records:
            await store.append_transition(record)
    return store
