"""Delivery metrics command."""

from datetime import UTC, datetime
from pathlib import Path
from typing import Annotated

import pydantic
import typer

from cadence.cli.common import console, create_table, error, format_duration, run_async
from cadence.cli.snapshot import build_store, load_snapshot
from cadence.models import MetricsScope, MetricsSummary, Period, ScopeKind
from cadence.tasks import TaskManager


def metrics(
    snapshot: Annotated[
        Path, typer.Argument(help="Snapshot JSON file", exists=True, dir_okay=False)
    ],
    start: Annotated[datetime, typer.Option("--start", help="Period start (inclusive)")],
    end: Annotated[datetime, typer.Option("--end", help="Period end (exclusive)")],
    project: Annotated[
        str | None, typer.Option("--project", "-p", help="Only tasks in this project")
    ] = None,
    sprint: Annotated[
        str | None, typer.Option("--sprint", "-s", help="Only tasks in this sprint")
    ] = None,
) -> None:
    """Velocity, throughput, WIP, cycle/lead time and DORA for a period."""
    # Bare dates from the command line are taken as UTC
    start = start if start.tzinfo else start.replace(tzinfo=UTC)
    end = end if end.tzinfo else end.replace(tzinfo=UTC)
    try:
        period = Period(start=start, end=end)
    except pydantic.ValidationError as e:
        error("--end must be after --start")
        raise typer.Exit(1) from e

    scope = None
    if project and sprint:
        error("Use either --project or --sprint, not both")
        raise typer.Exit(1)
    if project:
        scope = MetricsScope(kind=ScopeKind.PROJECT, id=project)
    elif sprint:
        scope = MetricsScope(kind=ScopeKind.SPRINT, id=sprint)

    data = load_snapshot(snapshot)

    @run_async
    async def _summarize() -> MetricsSummary:
        manager = TaskManager(await build_store(data))
        return await manager.get_metrics(
            scope, period, data.deployments if data.deployments else None
        )

    _render(_summarize())


def _render(summary: MetricsSummary) -> None:
    table = create_table("Metrics", "Metric", "Value")
    table.add_row("Completed", str(summary.completed_count))
    table.add_row("Velocity", f"{summary.velocity:g} pts")
    table.add_row("Throughput", f"{summary.throughput:.2f} / week")
    table.add_row("WIP", str(summary.wip))
    table.add_row("Avg cycle time", format_duration(summary.average_cycle_time))
    table.add_row("Avg lead time", format_duration(summary.average_lead_time))
    if summary.dora is not None:
        table.add_row("Deployments", str(summary.dora.deployment_count))
        table.add_row("Deploy frequency", f"{summary.dora.deployment_frequency:.2f} / week")
        table.add_row("Change failure rate", f"{summary.dora.change_failure_rate:.0%}")
        table.add_row("MTTR", format_duration(summary.dora.mean_time_to_restore))
    console.print(table)

    if summary.cycle_time_trend:
        trend = create_table("Cycle time trend", "Week of", "Count", "Mean", "Stddev")
        for point in summary.cycle_time_trend:
            trend.add_row(
                point.bucket_start.date().isoformat(),
                str(point.count),
                format_duration(point.mean),
                format_duration(point.stddev),
            )
        console.print(trend)
