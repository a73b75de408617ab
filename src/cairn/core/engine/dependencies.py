"""
Task dependency graph for a run.

Validates that a run's tasks form a DAG and orders them so every task
runs after the tasks it depends on. Ordering is Kahn's algorithm with
ties broken by submission order, so a run without dependencies executes
exactly as submitted.
"""

from __future__ import annotations

import heapq
from collections.abc import Sequence

from cairn.core.engine.models import TaskSpec


class DependencyError(ValueError):
    """
    Raised when a run's task dependencies are invalid.

    Attributes:
        task_id: Task whose dependencies are invalid
        cycle: Task ids forming the cycle, first id repeated at the end
            (empty unless the error is a cycle)
    """

    def __init__(self, message: str, task_id: str, cycle: Sequence[str] = ()) -> None:
        self.task_id = task_id
        self.cycle = list(cycle)
        super().__init__(message)


class TaskGraph:
    """Immutable dependency graph over one run's tasks.

    Example::

        graph = TaskGraph([a, b.model_copy(update={"dependencies": ["a"]})])
        graph.validate()
        [t.task_id for t in graph.execution_order()]  # ["a", "b"]
    """

    __slots__ = ("_tasks", "_position", "_forward", "_reverse")

    def __init__(self, tasks: Sequence[TaskSpec]) -> None:
        self._tasks: list[TaskSpec] = list(tasks)
        self._position: dict[str, int] = {t.task_id: i for i, t in enumerate(self._tasks)}
        # forward[A] = [B, C] means A depends on B and C
        self._forward: dict[str, list[str]] = {t.task_id: list(t.dependencies) for t in tasks}
        # reverse[B] = [A] means completing B unblocks A
        self._reverse: dict[str, list[str]] = {}
        for task in self._tasks:
            for dep_id in task.dependencies:
                self._reverse.setdefault(dep_id, []).append(task.task_id)

    def validate(self) -> None:
        """
        Check references and acyclicity.

        Raises:
            DependencyError: On a self-reference, an unknown dependency id,
                or a cycle
        """
        for task in self._tasks:
            for dep_id in task.dependencies:
                if dep_id == task.task_id:
                    raise DependencyError(
                        f"Task {task.task_id} depends on itself",
                        task.task_id,
                        cycle=[task.task_id, task.task_id],
                    )
                if dep_id not in self._position:
                    raise DependencyError(
                        f"Task {task.task_id} depends on unknown task {dep_id}",
                        task.task_id,
                    )

        cycle = self.find_cycle()
        if cycle:
            raise DependencyError(
                f"Dependency cycle: {' -> '.join(cycle)}", cycle[0], cycle=cycle
            )

    def find_cycle(self) -> list[str]:
        """Return one cycle as a path of task ids, or [] if the graph is acyclic."""
        WHITE, GRAY, BLACK = 0, 1, 2  # noqa: N806
        color: dict[str, int] = {tid: WHITE for tid in self._position}
        path: list[str] = []

        def _visit(node: str) -> list[str]:
            color[node] = GRAY
            path.append(node)
            for dep in self._forward.get(node, []):
                if dep not in color:
                    continue
                if color[dep] == GRAY:
                    return path[path.index(dep):] + [dep]
                if color[dep] == WHITE:
                    found = _visit(dep)
                    if found:
                        return found
            path.pop()
            color[node] = BLACK
            return []

        for task in self._tasks:
            if color[task.task_id] == WHITE:
                found = _visit(task.task_id)
                if found:
                    return found
        return []

    def execution_order(self) -> list[TaskSpec]:
        """
        Tasks with every dependency ahead of its dependents.

        Among tasks that are ready at the same time, the one submitted
        first goes first.

        Raises:
            DependencyError: If the graph is invalid
        """
        self.validate()
        in_degree = {tid: len(set(deps)) for tid, deps in self._forward.items()}
        ready = [self._position[tid] for tid, degree in in_degree.items() if degree == 0]
        heapq.heapify(ready)

        ordered: list[TaskSpec] = []
        while ready:
            task = self._tasks[heapq.heappop(ready)]
            ordered.append(task)
            for dependent in dict.fromkeys(self._reverse.get(task.task_id, [])):
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    heapq.heappush(ready, self._position[dependent])
        return ordered

