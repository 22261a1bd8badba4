"""Tests for the cadence CLI."""

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from cadence.cli.main import app

runner = CliRunner()


def write_snapshot(path: Path, **sections: list[dict]) -> Path:
    path.write_text(json.dumps(sections), encoding="utf-8")
    return path


def task(task_id: str, **fields) -> dict:
    return {
        "id": task_id,
        "title": f"Task {task_id}",
        "created_at": "2024-03-04T09:00:00Z",
        "updated_at": "2024-03-04T09:00:00Z",
        **fields,
    }


def transition(task_id: str, from_status: str | None, to_status: str, at: str) -> dict:
    return {
        "task_id": task_id,
        "from_status": from_status,
        "to_status": to_status,
        "actor_id": "user-dev",
        "transitioned_at": at,
    }


@pytest.fixture
def plan(tmp_path: Path) -> Path:
    """T1 (5h) feeds T2 (3h) and T3 (2h)."""
    return write_snapshot(
        tmp_path / "plan.json",
        tasks=[
            task("T1", time_estimate=5),
            task("T2", time_estimate=3),
            task("T3", time_estimate=2),
        ],
        dependencies=[
            {"task_id": "T2", "depends_on_id": "T1"},
            {"task_id": "T3", "depends_on_id": "T1"},
        ],
    )


class TestGraphCommands:
    """Tests for graph subcommands."""

    def test_no_cycles(self, plan: Path) -> None:
        result = runner.invoke(app, ["graph", "cycles", str(plan)])
        assert result.exit_code == 0
        assert "No circular dependencies" in result.stdout

    def test_cycles_exit_nonzero(self, tmp_path: Path) -> None:
        path = write_snapshot(
            tmp_path / "loop.json",
            tasks=[task("A"), task("B")],
            dependencies=[
                {"task_id": "A", "depends_on_id": "B"},
                {"task_id": "B", "depends_on_id": "A"},
            ],
        )
        result = runner.invoke(app, ["graph", "cycles", str(path)])
        assert result.exit_code == 1
        assert "1 circular dependency chain" in result.stdout

    def test_order(self, plan: Path) -> None:
        result = runner.invoke(app, ["graph", "order", str(plan)])
        assert result.exit_code == 0
        assert result.stdout.index("T1") < result.stdout.index("T2")

    def test_critical_path_json(self, plan: Path) -> None:
        result = runner.invoke(app, ["graph", "critical-path", str(plan), "--json"])
        assert result.exit_code == 0
        payload = json.loads(result.stdout)
        assert payload["path"] == ["T1", "T2"]
        assert payload["project_duration"] == 8
        assert payload["slack"]["T3"] == 1

    def test_critical_path_subset(self, plan: Path) -> None:
        result = runner.invoke(
            app, ["graph", "critical-path", str(plan), "-t", "T1", "-t", "T3", "--json"]
        )
        assert result.exit_code == 0
        assert json.loads(result.stdout)["path"] == ["T1", "T3"]

    def test_invalid_snapshot(self, tmp_path: Path) -> None:
        path = write_snapshot(tmp_path / "bad.json", tasks=[{"id": "x"}])
        result = runner.invoke(app, ["graph", "cycles", str(path)])
        assert result.exit_code == 1
        assert "Invalid snapshot" in result.stdout


class TestMetricsCommand:
    """Tests for the metrics command."""

    def test_metrics_table(self, tmp_path: Path) -> None:
        path = write_snapshot(
            tmp_path / "metrics.json",
            tasks=[task("A", estimate=5, status="done"), task("B", status="in_progress")],
            transitions=[
                transition("A", None, "todo", "2024-03-04T09:00:00Z"),
                transition("A", "todo", "in_progress", "2024-03-04T10:00:00Z"),
                transition("A", "in_progress", "done", "2024-03-04T13:00:00Z"),
                transition("B", None, "todo", "2024-03-04T09:00:00Z"),
                transition("B", "todo", "in_progress", "2024-03-05T09:00:00Z"),
            ],
        )
        result = runner.invoke(
            app, ["metrics", str(path), "--start", "2024-03-04", "--end", "2024-03-18"]
        )
        assert result.exit_code == 0, result.output
        assert "Velocity" in result.stdout
        assert "5 pts" in result.stdout

    def test_metrics_rejects_inverted_period(self, plan: Path) -> None:
        result = runner.invoke(
            app, ["metrics", str(plan), "--start", "2024-03-18", "--end", "2024-03-04"]
        )
        assert result.exit_code == 1


class TestWorkflowCommand:
    """Tests for workflow show."""

    def test_default_workflow(self) -> None:
        result = runner.invoke(app, ["workflow", "show"])
        assert result.exit_code == 0
        assert "in_review" in result.stdout

    def test_invalid_workflow_file(self, tmp_path: Path) -> None:
        path = tmp_path / "wf.json"
        path.write_text(json.dumps({"name": "bad", "states": []}), encoding="utf-8")
        result = runner.invoke(app, ["workflow", "show", "--file", str(path)])
        assert result.exit_code == 1


def test_version() -> None:
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert "cadence" in result.stdout
