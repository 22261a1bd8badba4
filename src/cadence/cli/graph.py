"""Dependency graph commands: cycle diagnosis, ordering and critical path."""

import json
from pathlib import Path
from typing import Annotated

import typer

from cadence.cli.common import (
    CORAL,
    ELECTRIC_PURPLE,
    SUCCESS_GREEN,
    console,
    create_panel,
    create_table,
    error,
    format_hours,
    info,
    success,
    truncate,
    warn,
)
from cadence.cli.snapshot import load_snapshot
from cadence.errors import CadenceError
from cadence.tasks.dependencies import DependencyGraph

app = typer.Typer(
    name="graph",
    help="Dependency graph analysis",
    no_args_is_help=True,
)

SnapshotArg = Annotated[
    Path, typer.Argument(help="Snapshot JSON file", exists=True, dir_okay=False, readable=True)
]


def _graph(path: Path) -> DependencyGraph:
    snapshot = load_snapshot(path)
    return DependencyGraph(snapshot.tasks, snapshot.dependencies)


@app.command("cycles")
def cycles(snapshot: SnapshotArg) -> None:
    """Report every circular dependency chain in a snapshot.

    Exits with status 1 when cycles are found.
    """
    result = _graph(snapshot).detect_cycles()
    if not result.has_cycles:
        success(result.message)
        return

    warn(result.message)
    for i, cycle in enumerate(result.cycles, 1):
        chain = f" [{CORAL}]→[/{CORAL}] ".join(cycle)
        console.print(f"  {i}. {chain}")
    raise typer.Exit(1)


@app.command("order")
def order(snapshot: SnapshotArg) -> None:
    """Print tasks in dependency order (dependencies first)."""
    graph = _graph(snapshot)
    try:
        ordered = graph.topological_order()
    except CadenceError as e:
        error(e.message)
        raise typer.Exit(1) from e

    for i, task_id in enumerate(ordered, 1):
        task = graph.get_task(task_id)
        title = truncate(task.title, 50) if task else ""
        console.print(f"  {i:>3}. [{ELECTRIC_PURPLE}]{task_id}[/{ELECTRIC_PURPLE}] {title}")


@app.command("critical-path")
def critical_path(
    snapshot: SnapshotArg,
    task: Annotated[
        list[str] | None,
        typer.Option("--task", "-t", help="Restrict to these task IDs (repeatable)"),
    ] = None,
    json_out: Annotated[bool, typer.Option("--json", help="Emit JSON instead of a table")] = False,
) -> None:
    """Run the Critical Path Method and show the schedule."""
    graph = _graph(snapshot)
    try:
        result = graph.compute_critical_path(task or None)
    except CadenceError as e:
        error(e.message)
        raise typer.Exit(1) from e

    if json_out:
        payload = {
            "path": result.path,
            "project_duration": result.project_duration,
            "slack": result.slack,
        }
        typer.echo(json.dumps(payload, indent=2))
        return

    if not result.schedule:
        info("No tasks to schedule")
        return

    on_path = set(result.path)
    table = create_table("Schedule", "Task", "Duration", "ES", "EF", "LS", "LF", "Slack")
    for task_id, entry in result.schedule.items():
        marker = f"[{SUCCESS_GREEN}]*[/{SUCCESS_GREEN}]" if task_id in on_path else " "
        table.add_row(
            f"{marker} {task_id}",
            format_hours(entry.duration),
            f"{entry.earliest_start:g}",
            f"{entry.earliest_finish:g}",
            f"{entry.latest_start:g}",
            f"{entry.latest_finish:g}",
            f"{result.slack[task_id]:g}",
        )
    console.print(table)
    console.print(
        create_panel(
            " → ".join(result.path) or "-",
            title="Critical path",
            subtitle=f"project duration {format_hours(result.project_duration)}",
        )
    )
