"""Tests for the dependency graph: acyclicity, cycle detection and CPM."""

import random

import pytest

from cadence.errors import CircularDependencyError, NotFoundError, ValidationError
from cadence.models import DependencyType, TaskDependency
from cadence.tasks.dependencies import DependencyGraph

from tests.fakes import make_task


def graph_of(durations: dict[str, float | None], *edges: tuple[str, str]) -> DependencyGraph:
    graph = DependencyGraph([make_task(tid, hours) for tid, hours in durations.items()])
    for task_id, depends_on_id in edges:
        graph.add_edge(task_id, depends_on_id)
    return graph


# =============================================================================
# Edge insertion
# =============================================================================


class TestAddEdge:
    """Tests for guarded edge insertion."""

    def test_add_edge_returns_committed_edge(self) -> None:
        graph = graph_of({"A": 1, "B": 1})
        edge = graph.add_edge("B", "A", DependencyType.START_TO_START, lag=2.0)
        assert edge == TaskDependency(
            task_id="B", depends_on_id="A", dependency_type=DependencyType.START_TO_START, lag=2.0
        )
        assert graph.has_edge("B", "A")

    def test_self_dependency_rejected(self) -> None:
        graph = graph_of({"A": 1})
        with pytest.raises(ValidationError) as exc_info:
            graph.add_edge("A", "A")
        assert exc_info.value.field == "depends_on_id"
        assert exc_info.value.code == "self_dependency"

    def test_duplicate_pair_rejected(self) -> None:
        graph = graph_of({"A": 1, "B": 1}, ("B", "A"))
        with pytest.raises(ValidationError) as exc_info:
            graph.add_edge("B", "A", DependencyType.FINISH_TO_FINISH)
        assert exc_info.value.code == "duplicate_dependency"

    def test_unknown_task_rejected(self) -> None:
        graph = graph_of({"A": 1})
        with pytest.raises(NotFoundError) as exc_info:
            graph.add_edge("A", "ghost")
        assert exc_info.value.entity_id == "ghost"

    def test_non_finite_lag_rejected(self) -> None:
        graph = graph_of({"A": 1, "B": 1})
        with pytest.raises(ValidationError) as exc_info:
            graph.add_edge("B", "A", lag=float("nan"))
        assert exc_info.value.field == "lag"

    def test_closing_edge_reports_cycle(self) -> None:
        """B depends on A, C on B; A depending on C closes A -> C -> B -> A."""
        graph = graph_of({"A": 1, "B": 1, "C": 1}, ("B", "A"), ("C", "B"))
        with pytest.raises(CircularDependencyError) as exc_info:
            graph.add_edge("A", "C")
        assert exc_info.value.cycle == ["A", "C", "B", "A"]
        assert exc_info.value.details["cycle"] == ["A", "C", "B", "A"]

    def test_two_node_cycle(self) -> None:
        graph = graph_of({"A": 1, "B": 1}, ("B", "A"))
        with pytest.raises(CircularDependencyError) as exc_info:
            graph.add_edge("A", "B")
        assert exc_info.value.cycle == ["A", "B", "A"]

    def test_rejection_is_idempotent(self) -> None:
        """A rejected edge leaves the graph untouched, every time."""
        graph = graph_of({"A": 1, "B": 1, "C": 1}, ("B", "A"), ("C", "B"))
        before = graph.edges
        for _ in range(3):
            with pytest.raises(CircularDependencyError):
                graph.add_edge("A", "C")
            assert graph.edges == before
        assert not graph.detect_cycles().has_cycles

    def test_random_insertions_keep_graph_acyclic(self) -> None:
        rng = random.Random(7)
        ids = [f"T{i}" for i in range(8)]
        graph = graph_of(dict.fromkeys(ids, 1))
        rejected = 0
        for _ in range(60):
            a, b = rng.sample(ids, 2)
            try:
                graph.add_edge(a, b)
            except CircularDependencyError as e:
                rejected += 1
                assert e.cycle[0] == a and e.cycle[-1] == a and e.cycle[1] == b
            except ValidationError:
                pass
            assert not graph.detect_cycles().has_cycles
        assert rejected > 0

    def test_remove_edge(self) -> None:
        graph = graph_of({"A": 1, "B": 1}, ("B", "A"))
        assert graph.remove_edge("B", "A") is True
        assert graph.remove_edge("B", "A") is False
        graph.add_edge("A", "B")


# =============================================================================
# Cycle detection and ordering
# =============================================================================


class TestDetectCycles:
    """Tests for full-graph cycle diagnosis on imported data."""

    def test_acyclic_graph(self) -> None:
        graph = graph_of({"A": 1, "B": 1}, ("B", "A"))
        result = graph.detect_cycles()
        assert result.has_cycles is False
        assert result.cycles == []

    def test_reports_each_distinct_cycle(self) -> None:
        tasks = [make_task(t) for t in "ABCDE"]
        edges = [
            TaskDependency(task_id="A", depends_on_id="B"),
            TaskDependency(task_id="B", depends_on_id="A"),
            TaskDependency(task_id="C", depends_on_id="D"),
            TaskDependency(task_id="D", depends_on_id="E"),
            TaskDependency(task_id="E", depends_on_id="C"),
        ]
        result = DependencyGraph(tasks, edges).detect_cycles()
        assert result.has_cycles is True
        assert result.cycles == [["A", "B", "A"], ["C", "D", "E", "C"]]
        assert "2" in result.message

    def test_edges_to_unregistered_tasks_still_scanned(self) -> None:
        edges = [
            TaskDependency(task_id="X", depends_on_id="Y"),
            TaskDependency(task_id="Y", depends_on_id="X"),
        ]
        result = DependencyGraph(edges=edges).detect_cycles()
        assert result.cycles == [["X", "Y", "X"]]


class TestTopologicalOrder:
    """Tests for Kahn ordering."""

    def test_dependencies_come_first(self) -> None:
        graph = graph_of({"A": 1, "B": 1, "C": 1, "D": 1}, ("C", "A"), ("B", "C"), ("D", "A"))
        order = graph.topological_order()
        assert order == ["A", "C", "B", "D"]

    def test_ties_broken_by_id(self) -> None:
        graph = graph_of({"b": 1, "a": 1, "c": 1})
        assert graph.topological_order() == ["a", "b", "c"]

    def test_cycle_raises(self) -> None:
        edges = [
            TaskDependency(task_id="A", depends_on_id="B"),
            TaskDependency(task_id="B", depends_on_id="A"),
        ]
        graph = DependencyGraph([make_task("A"), make_task("B")], edges)
        with pytest.raises(CircularDependencyError) as exc_info:
            graph.topological_order()
        assert exc_info.value.cycle == ["A", "B", "A"]


class TestTraversal:
    """Tests for dependency queries."""

    def test_get_dependencies_transitive_and_bounded(self) -> None:
        graph = graph_of({"A": 1, "B": 1, "C": 1, "D": 1}, ("D", "C"), ("C", "B"), ("B", "A"))
        full = graph.get_dependencies("D")
        assert full.dependencies == ["C", "B", "A"]
        assert full.depth == 3
        assert graph.get_dependencies("D", depth=1).dependencies == ["C"]

    def test_get_dependencies_unknown_task(self) -> None:
        with pytest.raises(NotFoundError):
            graph_of({"A": 1}).get_dependencies("nope")

    def test_dependents_of(self) -> None:
        graph = graph_of({"A": 1, "B": 1, "C": 1}, ("B", "A"), ("C", "A"))
        assert graph.dependents_of("A") == ["B", "C"]
        assert graph.dependents_of("B") == []

    def test_get_blocking_tasks(self) -> None:
        graph = DependencyGraph(
            [
                make_task("A", status="done"),
                make_task("B", status="in_progress"),
                make_task("C", status="todo"),
                make_task("T"),
            ]
        )
        graph.add_edge("T", "A")
        graph.add_edge("T", "B")
        graph.add_edge("T", "C", DependencyType.START_TO_START)
        assert graph.get_blocking_tasks("T", lambda status: status == "done") == ["B"]


# =============================================================================
# Critical Path Method
# =============================================================================


class TestCriticalPath:
    """Tests for the CPM forward and backward passes."""

    def test_two_task_finish_to_start(self) -> None:
        """T1 (5h) depends on T2 (3h) finish-to-start with no lag."""
        graph = graph_of({"T1": 5, "T2": 3}, ("T1", "T2"))
        result = graph.compute_critical_path()

        t1, t2 = result.schedule["T1"], result.schedule["T2"]
        assert (t2.earliest_start, t2.earliest_finish) == (0, 3)
        assert (t1.earliest_start, t1.earliest_finish) == (3, 8)
        assert result.path == ["T2", "T1"]
        assert result.slack == {"T1": 0, "T2": 0}
        assert result.project_duration == 8

    def test_slack_on_parallel_branch(self) -> None:
        graph = graph_of({"A": 4, "B": 1, "C": 2}, ("C", "A"), ("C", "B"))
        result = graph.compute_critical_path()
        assert result.path == ["A", "C"]
        assert result.slack["B"] == 3
        assert result.schedule["B"].latest_start == 3
        assert result.critical_tasks == ["A", "C"]

    def test_missing_estimate_counts_as_zero(self) -> None:
        graph = graph_of({"A": None, "B": 2}, ("B", "A"))
        result = graph.compute_critical_path()
        assert result.schedule["A"].duration == 0
        assert result.project_duration == 2

    def test_finish_to_start_lag(self) -> None:
        graph = graph_of({"A": 2, "B": 1})
        graph.add_edge("B", "A", DependencyType.FINISH_TO_START, lag=3)
        result = graph.compute_critical_path()
        assert result.schedule["B"].earliest_start == 5
        assert result.project_duration == 6
        assert result.path == ["A", "B"]

    def test_start_to_start(self) -> None:
        graph = graph_of({"A": 4, "B": 2})
        graph.add_edge("B", "A", DependencyType.START_TO_START, lag=1)
        result = graph.compute_critical_path()
        assert result.schedule["B"].earliest_start == 1
        assert result.schedule["B"].earliest_finish == 3
        assert result.slack["B"] == 1
        assert result.path == ["A"]

    def test_finish_to_finish(self) -> None:
        graph = graph_of({"A": 4, "B": 2})
        graph.add_edge("B", "A", DependencyType.FINISH_TO_FINISH)
        result = graph.compute_critical_path()
        assert result.schedule["B"].earliest_start == 2
        assert result.schedule["B"].earliest_finish == 4
        assert result.slack == {"A": 0, "B": 0}
        assert result.path == ["A", "B"]

    def test_finish_to_finish_never_starts_before_zero(self) -> None:
        graph = graph_of({"A": 1, "B": 5})
        graph.add_edge("B", "A", DependencyType.FINISH_TO_FINISH)
        result = graph.compute_critical_path()
        assert result.schedule["B"].earliest_start == 0
        assert result.slack["A"] == 4
        assert result.path == ["B"]

    def test_start_to_finish(self) -> None:
        graph = graph_of({"A": 4, "B": 3})
        graph.add_edge("B", "A", DependencyType.START_TO_FINISH, lag=5)
        result = graph.compute_critical_path()
        assert result.schedule["B"].earliest_start == 2
        assert result.schedule["B"].earliest_finish == 5
        assert result.schedule["A"].latest_finish == 4
        assert result.path == ["A", "B"]

    def test_tie_prefers_larger_duration(self) -> None:
        """Z alone carries 5h of work; B -> C reaches the end with only 4h plus lag."""
        graph = graph_of({"Z": 5, "B": 2, "C": 2})
        graph.add_edge("C", "B", lag=1)
        result = graph.compute_critical_path()
        assert result.critical_tasks == ["B", "C", "Z"]
        assert result.path == ["Z"]

    def test_tie_prefers_smallest_id_chain(self) -> None:
        graph = graph_of({"A": 2, "B": 2, "C": 3}, ("C", "A"), ("C", "B"))
        result = graph.compute_critical_path()
        assert result.critical_tasks == ["A", "B", "C"]
        assert result.path == ["A", "C"]

    def test_subgraph_only(self) -> None:
        graph = graph_of({"A": 10, "B": 1, "C": 1}, ("B", "A"), ("C", "B"))
        result = graph.compute_critical_path(["B", "C"])
        assert set(result.schedule) == {"B", "C"}
        assert result.schedule["B"].earliest_start == 0
        assert result.path == ["B", "C"]

    def test_empty_graph(self) -> None:
        result = DependencyGraph().compute_critical_path()
        assert result.path == []
        assert result.slack == {}

    def test_unknown_task_id(self) -> None:
        with pytest.raises(NotFoundError):
            graph_of({"A": 1}).compute_critical_path(["A", "missing"])

    def test_cyclic_import_rejected(self) -> None:
        edges = [
            TaskDependency(task_id="A", depends_on_id="B"),
            TaskDependency(task_id="B", depends_on_id="A"),
        ]
        graph = DependencyGraph([make_task("A", 1), make_task("B", 1)], edges)
        with pytest.raises(CircularDependencyError):
            graph.compute_critical_path()


def _all_paths(nodes: list[str], successors: dict[str, list[str]]) -> list[list[str]]:
    """Every maximal path from a source to a sink."""
    has_pred = {s for targets in successors.values() for s in targets}
    paths: list[list[str]] = []

    def walk(path: list[str]) -> None:
        nxt = successors.get(path[-1], [])
        if not nxt:
            paths.append(path)
            return
        for s in nxt:
            walk([*path, s])

    for node in nodes:
        if node not in has_pred:
            walk([node])
    return paths


class TestCriticalPathBruteForce:
    """CPM against exhaustive path enumeration on small random DAGs."""

    @pytest.mark.parametrize("seed", range(25))
    def test_matches_longest_path(self, seed: int) -> None:
        rng = random.Random(seed)
        ids = [f"N{i}" for i in range(rng.randint(2, 7))]
        durations = {tid: float(rng.randint(0, 9)) for tid in ids}
        graph = graph_of(durations)
        successors: dict[str, list[str]] = {}
        for i, later in enumerate(ids):
            for earlier in ids[:i]:
                if rng.random() < 0.4:
                    graph.add_edge(later, earlier)
                    successors.setdefault(earlier, []).append(later)

        result = graph.compute_critical_path()
        longest = max(
            sum(durations[n] for n in path) for path in _all_paths(ids, successors)
        )

        assert result.project_duration == pytest.approx(longest)
        assert sum(durations[n] for n in result.path) == pytest.approx(longest)
        for a, b in zip(result.path, result.path[1:]):
            assert graph.has_edge(b, a)
        assert all(result.slack[n] == 0 for n in result.path)
        assert all(s >= 0 for s in result.slack.values())
