"""Task dependency graph: acyclicity, cycle detection and critical path.

Tasks are held in an id-keyed table and edges in a set keyed by
``(task_id, depends_on_id)``. Adjacency is rebuilt from the edge set as id
lists whenever a query needs it, so no task ever references another object.
"""

import heapq
import math
from collections import deque
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field

import structlog

from cadence.errors import CircularDependencyError, NotFoundError, ValidationError
from cadence.models import DependencyType, Task, TaskDependency

log = structlog.get_logger()

# Float tolerance for slack and tight-edge comparisons
_EPSILON = 1e-9

# DFS colors
_WHITE, _GRAY, _BLACK = 0, 1, 2


@dataclass
class CycleResult:
    """Result of a full-graph cycle scan."""

    has_cycles: bool
    cycles: list[list[str]] = field(default_factory=list)
    message: str = ""


@dataclass
class DependencyResult:
    """Transitive dependencies of one task, nearest first."""

    task_id: str
    dependencies: list[str] = field(default_factory=list)
    depth: int = 1


@dataclass
class ScheduleEntry:
    """CPM timings for one task, in hours from the project start."""

    task_id: str
    duration: float
    earliest_start: float
    earliest_finish: float
    latest_start: float
    latest_finish: float

    @property
    def slack(self) -> float:
        return _clean(self.latest_start - self.earliest_start)

    @property
    def is_critical(self) -> bool:
        return self.slack == 0.0


@dataclass
class CriticalPathResult:
    """Critical path, per-task slack and the full CPM schedule."""

    path: list[str]
    slack: dict[str, float]
    schedule: dict[str, ScheduleEntry] = field(default_factory=dict)
    project_duration: float = 0.0

    @property
    def critical_tasks(self) -> list[str]:
        """Every zero-slack task, not only those on the chosen path."""
        return sorted(tid for tid, s in self.slack.items() if s == 0.0)


def _clean(value: float) -> float:
    """Snap float noise around zero so slack comparisons are exact."""
    return 0.0 if abs(value) <= _EPSILON else value


def _normalize_cycle(cycle: list[str]) -> tuple[str, ...]:
    """Rotation-independent key for a closed cycle ``[a, b, ..., a]``."""
    path = cycle[:-1]
    if not path:
        return tuple(cycle)
    return min(tuple(path[i:] + path[:i]) for i in range(len(path)))


class DependencyGraph:
    """In-memory dependency graph over a task table.

    Edges passed to the constructor are taken as-is so imported data can be
    diagnosed with :meth:`detect_cycles`; :meth:`add_edge` is the guarded path
    that keeps the edge set acyclic.
    """

    def __init__(
        self,
        tasks: Iterable[Task] = (),
        edges: Iterable[TaskDependency] = (),
    ) -> None:
        self._tasks: dict[str, Task] = {}
        self._node_ids: set[str] = set()
        self._edges: dict[tuple[str, str], TaskDependency] = {}
        for task in tasks:
            self.add_task(task)
        for edge in edges:
            self._edges[edge.key] = edge
            self._node_ids.update(edge.key)

    # -------------------------------------------------------------------------
    # Table access
    # -------------------------------------------------------------------------

    @property
    def task_ids(self) -> list[str]:
        return sorted(self._node_ids)

    @property
    def edges(self) -> list[TaskDependency]:
        return sorted(self._edges.values(), key=lambda e: e.key)

    def add_task(self, task: Task) -> None:
        self._tasks[task.id] = task
        self._node_ids.add(task.id)

    def get_task(self, task_id: str) -> Task | None:
        return self._tasks.get(task_id)

    def has_edge(self, task_id: str, depends_on_id: str) -> bool:
        return (task_id, depends_on_id) in self._edges

    def _duration(self, task_id: str) -> float:
        task = self._tasks.get(task_id)
        return task.duration if task else 0.0

    def _adjacency(self, only: set[str] | None = None) -> dict[str, list[str]]:
        """task id -> sorted ids it depends on."""
        adjacency: dict[str, list[str]] = {}
        for task_id, depends_on_id in self._edges:
            if only is not None and (task_id not in only or depends_on_id not in only):
                continue
            adjacency.setdefault(task_id, []).append(depends_on_id)
        for targets in adjacency.values():
            targets.sort()
        return adjacency

    # -------------------------------------------------------------------------
    # Mutation
    # -------------------------------------------------------------------------

    def add_edge(
        self,
        task_id: str,
        depends_on_id: str,
        dependency_type: DependencyType = DependencyType.FINISH_TO_START,
        lag: float = 0.0,
    ) -> TaskDependency:
        """Add ``task_id`` depends-on ``depends_on_id`` if it keeps the graph acyclic.

        Raises:
            ValidationError: Self dependency, duplicate edge or non-finite lag.
            NotFoundError: Either endpoint is not in the graph.
            CircularDependencyError: The edge would close a cycle. The graph is
                left unchanged.
        """
        if task_id == depends_on_id:
            raise ValidationError(
                "depends_on_id", "self_dependency", f"Task {task_id} cannot depend on itself"
            )
        for endpoint in (task_id, depends_on_id):
            if endpoint not in self._node_ids:
                raise NotFoundError("Task", endpoint)
        if (task_id, depends_on_id) in self._edges:
            raise ValidationError(
                "depends_on_id",
                "duplicate_dependency",
                f"{task_id} already depends on {depends_on_id}",
            )
        if not math.isfinite(lag):
            raise ValidationError("lag", "invalid", "Lag must be a finite number")

        cycle = self.find_cycle_with(task_id, depends_on_id)
        if cycle is not None:
            log.warning("Dependency rejected: cycle", task_id=task_id, depends_on_id=depends_on_id)
            raise CircularDependencyError(cycle)

        edge = TaskDependency(
            task_id=task_id,
            depends_on_id=depends_on_id,
            dependency_type=dependency_type,
            lag=lag,
        )
        self._edges[edge.key] = edge
        return edge

    def remove_edge(self, task_id: str, depends_on_id: str) -> bool:
        return self._edges.pop((task_id, depends_on_id), None) is not None

    # -------------------------------------------------------------------------
    # Cycle detection
    # -------------------------------------------------------------------------

    def find_cycle_with(self, task_id: str, depends_on_id: str) -> list[str] | None:
        """Return the cycle a tentative edge would close, or None.

        The existing edge set is acyclic, so any cycle must run through the
        tentative edge; a DFS rooted at ``task_id`` is enough to find it.
        """
        adjacency = self._adjacency()
        adjacency.setdefault(task_id, []).insert(0, depends_on_id)
        return next(self._iter_cycles(adjacency, [task_id]), None)

    def detect_cycles(self) -> CycleResult:
        """Scan the whole graph and report every distinct cycle found."""
        seen: set[tuple[str, ...]] = set()
        cycles: list[list[str]] = []
        for cycle in self._iter_cycles(self._adjacency(), self.task_ids):
            key = _normalize_cycle(cycle)
            if key in seen:
                continue
            seen.add(key)
            cycles.append(cycle)

        if cycles:
            log.info("Dependency cycles found", count=len(cycles))
            return CycleResult(
                has_cycles=True,
                cycles=cycles,
                message=f"Found {len(cycles)} circular dependency chain(s)",
            )
        return CycleResult(has_cycles=False, message="No circular dependencies")

    @staticmethod
    def _iter_cycles(adjacency: dict[str, list[str]], roots: Iterable[str]) -> Iterator[list[str]]:
        """Three-color DFS yielding a cycle each time a gray node is reached.

        Iterative so long dependency chains do not hit the recursion limit.
        The cycle is rebuilt from the active path stack.
        """
        color: dict[str, int] = {}
        for root in roots:
            if color.get(root, _WHITE) != _WHITE:
                continue
            color[root] = _GRAY
            stack = [root]
            position = {root: 0}
            frontier = [iter(adjacency.get(root, ()))]
            while stack:
                nxt = next(frontier[-1], None)
                if nxt is None:
                    finished = stack.pop()
                    frontier.pop()
                    del position[finished]
                    color[finished] = _BLACK
                    continue
                state = color.get(nxt, _WHITE)
                if state == _WHITE:
                    color[nxt] = _GRAY
                    position[nxt] = len(stack)
                    stack.append(nxt)
                    frontier.append(iter(adjacency.get(nxt, ())))
                elif state == _GRAY:
                    yield stack[position[nxt] :] + [nxt]

    # -------------------------------------------------------------------------
    # Ordering and traversal
    # -------------------------------------------------------------------------

    def topological_order(self, task_ids: Iterable[str] | None = None) -> list[str]:
        """Kahn's algorithm, dependencies first, smallest id first among ready tasks.

        Raises:
            CircularDependencyError: The (sub)graph contains a cycle.
        """
        ids = set(task_ids) if task_ids is not None else set(self._node_ids)
        adjacency = self._adjacency(only=ids)

        in_degree = {tid: len(adjacency.get(tid, ())) for tid in ids}
        dependents: dict[str, list[str]] = {}
        for task_id, targets in adjacency.items():
            for depends_on_id in targets:
                dependents.setdefault(depends_on_id, []).append(task_id)

        ready = [tid for tid, degree in in_degree.items() if degree == 0]
        heapq.heapify(ready)
        order: list[str] = []
        while ready:
            tid = heapq.heappop(ready)
            order.append(tid)
            for dependent in dependents.get(tid, ()):
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    heapq.heappush(ready, dependent)

        if len(order) != len(ids):
            cycle = next(self._iter_cycles(adjacency, sorted(ids)), None)
            raise CircularDependencyError(cycle or sorted(ids - set(order)))
        return order

    def dependents_of(self, task_id: str) -> list[str]:
        """Tasks that directly depend on ``task_id``."""
        return sorted(t for t, d in self._edges if d == task_id)

    def get_dependencies(self, task_id: str, depth: int | None = None) -> DependencyResult:
        """Breadth-first walk of what ``task_id`` depends on, up to ``depth`` hops."""
        if task_id not in self._node_ids:
            raise NotFoundError("Task", task_id)
        adjacency = self._adjacency()
        found: list[str] = []
        visited = {task_id}
        queue: deque[tuple[str, int]] = deque([(task_id, 0)])
        max_seen = 0
        while queue:
            current, level = queue.popleft()
            if depth is not None and level >= depth:
                continue
            for dep in adjacency.get(current, ()):
                if dep in visited:
                    continue
                visited.add(dep)
                found.append(dep)
                max_seen = max(max_seen, level + 1)
                queue.append((dep, level + 1))
        return DependencyResult(task_id=task_id, dependencies=found, depth=max_seen)

    def get_blocking_tasks(
        self,
        task_id: str,
        is_complete: Callable[[str], bool],
        dependency_types: Iterable[DependencyType] = (DependencyType.FINISH_TO_START,),
    ) -> list[str]:
        """Direct predecessors over ``dependency_types`` whose status is not complete.

        ``is_complete`` receives a status id. Predecessors missing from the task
        table count as blocking.
        """
        types = set(dependency_types)
        blocking = []
        for (tid, dep_id), edge in sorted(self._edges.items()):
            if tid != task_id or edge.dependency_type not in types:
                continue
            dep = self._tasks.get(dep_id)
            if dep is None or not is_complete(dep.status):
                blocking.append(dep_id)
        return blocking

    # -------------------------------------------------------------------------
    # Critical Path Method
    # -------------------------------------------------------------------------

    def compute_critical_path(self, task_ids: Iterable[str] | None = None) -> CriticalPathResult:
        """Run CPM over the subgraph induced by ``task_ids`` (default: all tasks).

        Durations come from ``Task.time_estimate`` (0 when unset). The returned
        path is the zero-slack chain with the largest total duration, ties
        broken by the lexicographically smallest id sequence.

        Raises:
            NotFoundError: A requested id is not in the graph.
            CircularDependencyError: The subgraph is not acyclic.
        """
        ids = set(task_ids) if task_ids is not None else set(self._node_ids)
        for tid in sorted(ids - self._node_ids):
            raise NotFoundError("Task", tid)
        if not ids:
            return CriticalPathResult(path=[], slack={})

        order = self.topological_order(ids)
        incoming: dict[str, list[TaskDependency]] = {tid: [] for tid in ids}
        outgoing: dict[str, list[TaskDependency]] = {tid: [] for tid in ids}
        for edge in self._edges.values():
            if edge.task_id in ids and edge.depends_on_id in ids:
                incoming[edge.task_id].append(edge)
                outgoing[edge.depends_on_id].append(edge)
        duration = {tid: self._duration(tid) for tid in ids}

        # Forward pass
        es: dict[str, float] = {}
        ef: dict[str, float] = {}
        for tid in order:
            start = 0.0
            for edge in incoming[tid]:
                start = max(start, _earliest_start_bound(edge, es, ef, duration[tid]))
            es[tid] = start
            ef[tid] = start + duration[tid]
        project_end = max(ef.values())

        # Backward pass
        ls: dict[str, float] = {}
        lf: dict[str, float] = {}
        for tid in reversed(order):
            finish = project_end
            for edge in outgoing[tid]:
                finish = min(finish, _latest_finish_bound(edge, ls, lf, duration[tid]))
            lf[tid] = finish
            ls[tid] = finish - duration[tid]

        schedule = {
            tid: ScheduleEntry(
                task_id=tid,
                duration=duration[tid],
                earliest_start=es[tid],
                earliest_finish=ef[tid],
                latest_start=ls[tid],
                latest_finish=lf[tid],
            )
            for tid in order
        }
        slack = {tid: max(entry.slack, 0.0) for tid, entry in schedule.items()}
        path = self._critical_chain(order, schedule, slack, outgoing, duration, project_end)

        log.debug(
            "Critical path computed",
            tasks=len(ids),
            project_duration=project_end,
            path_length=len(path),
        )
        return CriticalPathResult(
            path=path, slack=slack, schedule=schedule, project_duration=project_end
        )

    @staticmethod
    def _critical_chain(
        order: list[str],
        schedule: dict[str, ScheduleEntry],
        slack: dict[str, float],
        outgoing: dict[str, list[TaskDependency]],
        duration: dict[str, float],
        project_end: float,
    ) -> list[str]:
        """Pick the zero-slack chain from a project start to the project end.

        Works backwards over the topological order keeping, per task, the best
        chain that starts there. Comparing suffixes is exact for the tie-break
        because every candidate from one task shares the same first element.
        """
        critical = {tid for tid, s in slack.items() if s == 0.0}
        es = {tid: entry.earliest_start for tid, entry in schedule.items()}
        ef = {tid: entry.earliest_finish for tid, entry in schedule.items()}

        best_from: dict[str, tuple[float, list[str]]] = {}
        for tid in reversed(order):
            if tid not in critical:
                continue
            candidates: list[tuple[float, list[str]]] = []
            if abs(ef[tid] - project_end) <= _EPSILON:
                candidates.append((duration[tid], [tid]))
            for edge in outgoing[tid]:
                succ = edge.task_id
                if succ not in best_from:
                    continue
                bound = _earliest_start_bound(edge, es, ef, duration[succ])
                if abs(es[succ] - bound) > _EPSILON:
                    continue
                total, chain = best_from[succ]
                candidates.append((duration[tid] + total, [tid, *chain]))
            if candidates:
                best_from[tid] = _pick_chain(candidates)

        starts = [best_from[tid] for tid in best_from if es[tid] <= _EPSILON]
        if starts:
            return _pick_chain(starts)[1]
        return sorted(critical, key=lambda tid: (es[tid], tid))


def _pick_chain(candidates: list[tuple[float, list[str]]]) -> tuple[float, list[str]]:
    """Largest total duration first, then the lexicographically smallest chain."""
    return min(candidates, key=lambda c: (-round(c[0], 9), c[1]))


def _earliest_start_bound(
    edge: TaskDependency, es: dict[str, float], ef: dict[str, float], duration: float
) -> float:
    """Lower bound on the dependent task's start imposed by one edge."""
    pred = edge.depends_on_id
    match_type = edge.dependency_type
    if match_type == DependencyType.FINISH_TO_START:
        return ef[pred] + edge.lag
    if match_type == DependencyType.START_TO_START:
        return es[pred] + edge.lag
    if match_type == DependencyType.FINISH_TO_FINISH:
        return ef[pred] + edge.lag - duration
    return es[pred] + edge.lag - duration


def _latest_finish_bound(
    edge: TaskDependency, ls: dict[str, float], lf: dict[str, float], duration: float
) -> float:
    """Upper bound on the predecessor's finish imposed by one edge."""
    succ = edge.task_id
    match_type = edge.dependency_type
    if match_type == DependencyType.FINISH_TO_START:
        return ls[succ] - edge.lag
    if match_type == DependencyType.START_TO_START:
        return ls[succ] - edge.lag + duration
    if match_type == DependencyType.FINISH_TO_FINISH:
        return lf[succ] - edge.lag
    return lf[succ] - edge.lag + duration
