"""Directed acyclic graph model, topological ordering and YAML DAG specs."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, Iterator, TypeVar

import yaml

T = TypeVar("T")

NodeIndex = int


class DagError(Exception):
    """Base class for DAG construction and query errors."""


class UnknownNodeError(DagError):
    """A node handle does not belong to the DAG."""

    def __init__(self, node: NodeIndex) -> None:
        super().__init__(f"unknown node: {node!r}")
        self.node = node


class CycleError(DagError):
    """The graph contains a cycle through ``node``."""

    def __init__(self, node: NodeIndex) -> None:
        super().__init__(f"DAG contains a cycle through node {node!r}")
        self.node = node


class DuplicateEdgeError(DagError):
    """An edge between the same two nodes already exists."""

    def __init__(self, source: NodeIndex, target: NodeIndex) -> None:
        super().__init__(f"duplicate edge {source!r} -> {target!r}")
        self.source = source
        self.target = target


class SpecError(DagError):
    """A DAG specification is malformed or inconsistent."""


class Dag(Generic[T]):
    """A directed graph of payloads whose nodes are addressed by integer handles.

    Handles are assigned in insertion order starting at 0. Neighbour lists
    are returned most recently added first.
    """

    def __init__(self) -> None:
        self._nodes: list[T] = []
        self._edges: list[tuple[NodeIndex, NodeIndex]] = []
        self._edge_set: set[tuple[NodeIndex, NodeIndex]] = set()
        self._outgoing: list[list[NodeIndex]] = []
        self._incoming: list[list[NodeIndex]] = []

    def __repr__(self) -> str:
        return f"Dag(nodes={self._nodes!r}, edges={self._edges!r})"

    def _contains(self, node: Any) -> bool:
        return (
            isinstance(node, int)
            and not isinstance(node, bool)
            and 0 <= node < len(self._nodes)
        )

    def _require(self, node: Any) -> None:
        if not self._contains(node):
            raise UnknownNodeError(node)

    def add_node(self, payload: T) -> NodeIndex:
        """Add ``payload`` as a new node and return its handle."""
        self._nodes.append(payload)
        self._outgoing.append([])
        self._incoming.append([])
        return len(self._nodes) - 1

    def add_edge(self, source: NodeIndex, target: NodeIndex) -> None:
        """Add the edge ``source -> target``.

        Raises :class:`UnknownNodeError` for foreign handles and
        :class:`DuplicateEdgeError` if the edge already exists.
        """
        self._require(source)
        self._require(target)
        if (source, target) in self._edge_set:
            raise DuplicateEdgeError(source, target)
        self._edges.append((source, target))
        self._edge_set.add((source, target))
        self._outgoing[source].append(target)
        self._incoming[target].append(source)

    def topo_sort(self) -> list[NodeIndex]:
        """Return a topological order of all nodes, or raise :class:`CycleError`.

        The order is deterministic for a given sequence of insertions.
        """
        discovered: set[NodeIndex] = set()
        finished: set[NodeIndex] = set()
        finish_order: list[NodeIndex] = []
        for start in reversed(range(len(self._nodes))):
            if start in discovered:
                continue
            stack = [start]
            while stack:
                node = stack[-1]
                if node not in discovered:
                    discovered.add(node)
                    for succ in self.children(node):
                        if succ == node:
                            raise CycleError(node)
                        if succ not in discovered:
                            stack.append(succ)
                else:
                    stack.pop()
                    if node not in finished:
                        finished.add(node)
                        finish_order.append(node)
        finish_order.reverse()

        # Walk predecessors in finish order: any walk reaching a second node
        # means a strongly connected component, i.e. a cycle.
        seen: set[NodeIndex] = set()
        for start in finish_order:
            if start in seen:
                continue
            seen.add(start)
            stack = [start]
            visited_any = False
            while stack:
                node = stack.pop()
                if visited_any:
                    raise CycleError(node)
                visited_any = True
                for pred in self.parents(node):
                    if pred not in seen:
                        seen.add(pred)
                        stack.append(pred)
        return finish_order

    def cycle_check(self) -> None:
        """Raise :class:`CycleError` if the graph is not acyclic."""
        self.topo_sort()

    def payloads(self, order: list[NodeIndex]) -> list[T]:
        """Map node handles to their payloads."""
        result = []
        for node in order:
            self._require(node)
            result.append(self._nodes[node])
        return result

    def payload(self, node: NodeIndex) -> T | None:
        """Return the payload of ``node``, or ``None`` if it is unknown."""
        return self._nodes[node] if self._contains(node) else None

    def node_count(self) -> int:
        """Number of nodes."""
        return len(self._nodes)

    def edge_count(self) -> int:
        """Number of edges."""
        return len(self._edges)

    def edges(self) -> Iterator[tuple[NodeIndex, NodeIndex]]:
        """Iterate over ``(source, target)`` edges in insertion order."""
        return iter(list(self._edges))

    def parents(self, node: NodeIndex) -> list[NodeIndex]:
        """Upstream nodes of ``node``."""
        self._require(node)
        return list(reversed(self._incoming[node]))

    def children(self, node: NodeIndex) -> list[NodeIndex]:
        """Downstream nodes of ``node``."""
        self._require(node)
        return list(reversed(self._outgoing[node]))

    def every_task_reachable(self) -> bool:
        """True if every node has an edge, or the DAG has at most one node."""
        if len(self._nodes) <= 1:
            return True
        return all(
            self._incoming[node] or self._outgoing[node]
            for node in range(len(self._nodes))
        )


@dataclass
class TaskSpec:
    """One task entry of a :class:`DagSpec`."""

    id: str
    depends_on: list[str] = field(default_factory=list)

    @classmethod
    def _from_mapping(cls, data: Any) -> TaskSpec:
        if not isinstance(data, dict):
            raise SpecError("each task must be a mapping")
        task_id = data.get("id")
        if not isinstance(task_id, str):
            raise SpecError("task is missing a string 'id'")
        depends_on = data.get("depends_on", [])
        if not isinstance(depends_on, list) or not all(
            isinstance(dep, str) for dep in depends_on
        ):
            raise SpecError(f"task '{task_id}': depends_on must be a list of strings")
        return cls(id=task_id, depends_on=list(depends_on))


@dataclass
class DagSpec:
    """On-disk description of a DAG: named tasks with their dependencies."""

    name: str
    tasks: list[TaskSpec]
    description: str = ""

    @classmethod
    def from_yaml(cls, text: str) -> DagSpec:
        """Parse a YAML DAG specification."""
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise SpecError(f"invalid YAML: {exc}") from exc
        if not isinstance(data, dict):
            raise SpecError("DAG spec must be a mapping")
        name = data.get("name")
        if not isinstance(name, str):
            raise SpecError("DAG spec is missing a string 'name'")
        description = data.get("description", "")
        if not isinstance(description, str):
            raise SpecError("DAG spec 'description' must be a string")
        tasks = data.get("tasks")
        if not isinstance(tasks, list):
            raise SpecError("DAG spec is missing a 'tasks' list")
        return cls(
            name=name,
            tasks=[TaskSpec._from_mapping(item) for item in tasks],
            description=description,
        )

    def build(self) -> Dag[str]:
        """Build a DAG whose payloads are task ids.

        Raises on duplicate ids, dangling dependencies and cycles.
        """
        dag: Dag[str] = Dag()
        indices: dict[str, NodeIndex] = {}
        for task in self.tasks:
            if task.id in indices:
                raise SpecError(f"duplicate task id: {task.id}")
            indices[task.id] = dag.add_node(task.id)
        for task in self.tasks:
            target = indices[task.id]
            for dep in task.depends_on:
                if dep not in indices:
                    raise SpecError(f"task '{task.id}' depends on unknown '{dep}'")
                dag.add_edge(indices[dep], target)
        dag.cycle_check()
        return dag