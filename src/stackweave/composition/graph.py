"""
Composition graph: registration, cycle detection and topological planning.

Nodes are registered one at a time; each registration is checked for an
identity clash and for a cycle through the new node. ``build`` validates
every reference and freezes a topological execution plan. Nodes with no
relative order keep their registration order so identical inputs always
produce identical plans.
"""

from __future__ import annotations

import heapq
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Iterator, Mapping

import structlog

from stackweave.composition.node import Producer, ResourceNode
from stackweave.core.errors import (
    BuildError,
    CyclicDependency,
    DuplicateIdentity,
    MissingDependency,
)

if TYPE_CHECKING:
    from stackweave.composition.results import RunReport
    from stackweave.providers.base import ChartRenderer, ProvisioningBackend

logger = structlog.get_logger()


class _Mark(Enum):
    IN_PROGRESS = 1
    DONE = 2


@dataclass(frozen=True)
class ExecutionPlan:
    """Immutable topological plan produced by ``CompositionGraph.build``."""

    order: tuple[str, ...]
    upstream: Mapping[str, tuple[str, ...]]
    downstream: Mapping[str, tuple[str, ...]]

    def dependents_of(self, identity: str) -> list[str]:
        """All nodes that depend on ``identity``, directly or transitively, in plan order."""
        found: set[str] = set()
        stack = [identity]
        while stack:
            for child in self.downstream.get(stack.pop(), ()):
                if child not in found:
                    found.add(child)
                    stack.append(child)
        return [node for node in self.order if node in found]


class CompositionGraph:
    """Owns resource nodes and computes their execution order."""

    def __init__(self, name: str = "deployment") -> None:
        self.name = name
        self._nodes: dict[str, ResourceNode] = {}
        self._index: dict[str, int] = {}
        self._plan: ExecutionPlan | None = None

    # Build phase

    def add_node(self, node: ResourceNode) -> ResourceNode:
        """Register a node, rejecting identity clashes and cycles."""
        if self._plan is not None:
            raise BuildError(f"Graph '{self.name}' is already built", {"node": node.identity})
        if node.identity in self._nodes:
            raise DuplicateIdentity(node.identity, scope=f"graph '{self.name}'")

        self._nodes[node.identity] = node
        self._index[node.identity] = len(self._index)
        cycle = self._find_cycle(node.identity)
        if cycle:
            del self._nodes[node.identity]
            del self._index[node.identity]
            raise CyclicDependency(cycle)
        return node

    def node(
        self,
        identity: str,
        dependencies: Mapping[str, Any] | None = None,
        producer: Producer | None = None,
        **kwargs: Any,
    ) -> ResourceNode:
        """Create and register a node in one step."""
        return self.add_node(ResourceNode(identity, dependencies, producer, **kwargs))

    def component(self, name: str) -> Component:
        return Component(self, name)

    def _edges(self, identity: str) -> tuple[str, ...]:
        return tuple(dep for dep in self._nodes[identity].upstream() if dep in self._nodes)

    def _find_cycle(self, start: str) -> list[str] | None:
        """Depth-first search from ``start``; an in-progress hit is a cycle."""
        marks: dict[str, _Mark] = {}
        path: list[str] = []

        def visit(identity: str) -> list[str] | None:
            marks[identity] = _Mark.IN_PROGRESS
            path.append(identity)
            for dep in self._edges(identity):
                mark = marks.get(dep)
                if mark is _Mark.IN_PROGRESS:
                    return path[path.index(dep):] + [dep]
                if mark is None:
                    cycle = visit(dep)
                    if cycle:
                        return cycle
            path.pop()
            marks[identity] = _Mark.DONE
            return None

        return visit(start)

    def build(self) -> ExecutionPlan:
        """Validate references and freeze the topological plan."""
        if self._plan is not None:
            return self._plan

        for node in self._nodes.values():
            for dep in node.upstream():
                if dep not in self._nodes:
                    raise MissingDependency(node.identity, dep)
            if node.parent is not None and node.parent not in self._nodes:
                raise MissingDependency(node.identity, node.parent)
            # a pending value with no producer would never settle
            for value in node.deferred_inputs():
                if not value.done() and not value.producers:
                    raise MissingDependency(node.identity, value.name)

        upstream = {identity: self._edges(identity) for identity in self._nodes}
        downstream: dict[str, list[str]] = {identity: [] for identity in self._nodes}
        for identity, deps in upstream.items():
            for dep in deps:
                downstream[dep].append(identity)

        order = self._kahn(upstream, downstream)
        if len(order) < len(self._nodes):
            remaining = [identity for identity in self._nodes if identity not in set(order)]
            cycle = self._find_cycle(remaining[0]) or remaining
            raise CyclicDependency(cycle)

        self._plan = ExecutionPlan(
            order=tuple(order),
            upstream=MappingProxyType(upstream),
            downstream=MappingProxyType({k: tuple(v) for k, v in downstream.items()}),
        )
        logger.debug("graph_built", graph=self.name, nodes=len(order))
        return self._plan

    def _kahn(
        self,
        before: Mapping[str, tuple[str, ...] | list[str]],
        after: Mapping[str, tuple[str, ...] | list[str]],
        reverse: bool = False,
    ) -> list[str]:
        sign = -1 if reverse else 1
        indegree = {identity: len(deps) for identity, deps in before.items()}
        ready = [(sign * self._index[i], i) for i, degree in indegree.items() if degree == 0]
        heapq.heapify(ready)
        order: list[str] = []
        while ready:
            _, identity = heapq.heappop(ready)
            order.append(identity)
            for child in after[identity]:
                indegree[child] -= 1
                if indegree[child] == 0:
                    heapq.heappush(ready, (sign * self._index[child], child))
        return order

    @property
    def plan(self) -> ExecutionPlan:
        if self._plan is None:
            raise BuildError(f"Graph '{self.name}' has not been built")
        return self._plan

    @property
    def is_built(self) -> bool:
        return self._plan is not None

    def teardown_order(self) -> list[str]:
        """Reverse dependency order in which every child precedes its owner."""
        plan = self.build()
        must_precede: dict[str, list[str]] = {identity: [] for identity in self._nodes}
        unlocks: dict[str, list[str]] = {identity: [] for identity in self._nodes}

        def edge(first: str, then: str) -> None:
            must_precede[then].append(first)
            unlocks[first].append(then)

        for identity, deps in plan.upstream.items():
            for dep in deps:
                edge(identity, dep)
        for node in self._nodes.values():
            if node.parent is not None:
                edge(node.identity, node.parent)

        order = self._kahn(must_precede, unlocks, reverse=True)
        if len(order) < len(self._nodes):
            remaining = [identity for identity in self._nodes if identity not in set(order)]
            raise CyclicDependency(remaining)
        return order

    # Accessors

    def get(self, identity: str) -> ResourceNode:
        try:
            return self._nodes[identity]
        except KeyError:
            raise KeyError(f"Graph '{self.name}' has no node '{identity}'") from None

    @property
    def nodes(self) -> Mapping[str, ResourceNode]:
        return MappingProxyType(self._nodes)

    def __contains__(self, identity: object) -> bool:
        return identity in self._nodes

    def __iter__(self) -> Iterator[ResourceNode]:
        return iter(self._nodes.values())

    def __len__(self) -> int:
        return len(self._nodes)

    # Execution phase

    async def run(
        self,
        backend: ProvisioningBackend | None = None,
        *,
        renderer: ChartRenderer | None = None,
        sequential: bool = False,
        max_concurrency: int | None = None,
        default_timeout: float | None = None,
        cancel_event: Any = None,
    ) -> RunReport:
        """Build (if needed) and execute the graph."""
        from stackweave.composition.engine import ExecutionEngine

        self.build()
        engine = ExecutionEngine(
            backend,
            renderer=renderer,
            sequential=sequential,
            max_concurrency=max_concurrency,
            default_timeout=default_timeout,
        )
        return await engine.run(self, cancel_event=cancel_event)


class Component:
    """
    Parent scope for a group of nodes.

    The component registers a no-op node under its own name; children get
    identities of the form ``<component>/<child>`` and name the component as
    their parent. Ownership only affects teardown order.
    """

    def __init__(self, graph: CompositionGraph, name: str, parent: str | None = None) -> None:
        self.graph = graph
        self.name = name
        self.node = graph.add_node(ResourceNode(name, parent=parent, kind="component"))

    def qualify(self, name: str) -> str:
        return f"{self.name}/{name}"

    def add(
        self,
        name: str,
        dependencies: Mapping[str, Any] | None = None,
        producer: Producer | None = None,
        **kwargs: Any,
    ) -> ResourceNode:
        kwargs.setdefault("parent", self.name)
        return self.graph.add_node(
            ResourceNode(self.qualify(name), dependencies, producer, **kwargs)
        )

    def component(self, name: str) -> Component:
        return Component(self.graph, self.qualify(name), parent=self.name)
