# src/dagrun/engine/graph.py
from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Iterator, Mapping, Optional, Sequence

from dagrun.domain.errors import ConflictError, CycleDetectedError, DependencyError, NotFoundError
from dagrun.domain.models import RetryPolicy, TaskOutput
from dagrun.domain.states import NodeStatus

if TYPE_CHECKING:
    from .context import TaskContext

TaskBody = Callable[["TaskContext"], "TaskOutput | Mapping[str, str] | None"]


@dataclass(frozen=True)
class TaskDefinition:
    """
    A unit of work supplied by the caller. Immutable once registered.

    `execute` may return a TaskOutput, a mapping of artifacts, or None.
    Raising marks the task failed.
    """
    id: str
    execute: TaskBody
    depends_on: Sequence[str] = ()
    retry: Optional[RetryPolicy] = None
    timeout_ms: Optional[int] = None
    name: Optional[str] = None
    description: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("task id must not be empty")
        if self.timeout_ms is not None and self.timeout_ms <= 0:
            raise ValueError(f"timeout_ms must be > 0 for task {self.id}")
        # Ordered set semantics: keep first occurrence.
        object.__setattr__(self, "depends_on", tuple(dict.fromkeys(self.depends_on)))


@dataclass
class TaskNode:
    """
    Scheduler-internal node. Mutated only by the coordinating thread of a run.
    """
    definition: TaskDefinition
    dependencies: tuple[str, ...]
    dependents: list[str] = field(default_factory=list)
    status: NodeStatus = NodeStatus.PENDING
    output: Optional[TaskOutput] = None

    @property
    def id(self) -> str:
        return self.definition.id

    def reset(self) -> None:
        self.status = NodeStatus.PENDING
        self.output = None

    def advance(self, status: NodeStatus) -> None:
        if not self.status.can_become(status):
            raise ConflictError(
                f"Task {self.id} cannot move from {self.status} to {status}",
                details={"id": self.id, "from": str(self.status), "to": str(status)},
            )
        self.status = status


class Graph:
    """
    Validated dependency graph. Node order follows definition order.
    """

    def __init__(self, nodes: dict[str, TaskNode]) -> None:
        self._nodes = nodes

    @property
    def nodes(self) -> Mapping[str, TaskNode]:
        return self._nodes

    def get(self, task_id: str) -> TaskNode:
        node = self._nodes.get(task_id)
        if node is None:
            raise NotFoundError(f"Task not found: {task_id}", details={"id": task_id})
        return node

    def __contains__(self, task_id: Any) -> bool:
        return task_id in self._nodes

    def __iter__(self) -> Iterator[TaskNode]:
        return iter(self._nodes.values())

    def __len__(self) -> int:
        return len(self._nodes)


def build_graph(definitions: Sequence[TaskDefinition]) -> Graph:
    """
    Builds nodes and reverse edges, then validates acyclicity.

    Raises:
    - ConflictError on duplicate task ids
    - DependencyError if any dependency id is not defined
    - CycleDetectedError if the graph has a cycle
    """
    nodes: dict[str, TaskNode] = {}
    duplicates: list[str] = []
    for d in definitions:
        if d.id in nodes:
            duplicates.append(d.id)
            continue
        nodes[d.id] = TaskNode(definition=d, dependencies=tuple(d.depends_on))

    if duplicates:
        raise ConflictError(
            "One or more task ids are defined more than once",
            details={"duplicates": sorted(set(duplicates))},
        )

    missing: dict[str, list[str]] = {}
    for node in nodes.values():
        for dep in node.dependencies:
            if dep not in nodes:
                missing.setdefault(node.id, []).append(dep)
    if missing:
        raise DependencyError(
            "One or more dependencies do not exist",
            details={
                "missing": sorted({dep for deps in missing.values() for dep in deps}),
                "tasks": missing,
            },
        )

    for node in nodes.values():
        for dep in node.dependencies:
            nodes[dep].dependents.append(node.id)

    graph = Graph(nodes)
    validate_graph(graph)
    return graph


def validate_graph(graph: Graph) -> None:
    """
    Depth-first traversal from every unvisited node with an explicit recursion
    stack. Reaching a node already on the stack means the graph is cyclic.

    Iterative so long dependency chains do not hit the interpreter recursion limit.
    """
    visited: set[str] = set()
    on_stack: set[str] = set()

    for root in graph.nodes:
        if root in visited:
            continue

        path: list[str] = [root]
        iters = [iter(graph.nodes[root].dependencies)]
        visited.add(root)
        on_stack.add(root)

        while iters:
            dep = next(iters[-1], None)
            if dep is None:
                on_stack.discard(path.pop())
                iters.pop()
                continue

            if dep in on_stack:
                cycle = path[path.index(dep):] + [dep]
                raise CycleDetectedError(
                    "Circular dependency detected: " + " -> ".join(cycle),
                    details={"cycle": cycle},
                )
            if dep in visited:
                continue

            visited.add(dep)
            on_stack.add(dep)
            path.append(dep)
            iters.append(iter(graph.nodes[dep].dependencies))


def subgraph_from(graph: Graph, entry_id: str) -> set[str]:
    """
    Transitive-dependency closure of `entry_id` (entry included).

    Walks `dependencies`, never `dependents`.
    """
    if entry_id not in graph:
        raise NotFoundError(f"Entry task not found: {entry_id}", details={"id": entry_id})

    subgraph: set[str] = set()
    queue = deque([entry_id])
    while queue:
        task_id = queue.popleft()
        if task_id in subgraph:
            continue
        subgraph.add(task_id)
        queue.extend(graph.nodes[task_id].dependencies)
    return subgraph
