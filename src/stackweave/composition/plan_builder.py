"""Dry-run plan builder for composition graphs."""

from typing import Any, Iterable

from stackweave.composition.deferred import DeferredValue
from stackweave.composition.graph import CompositionGraph
from stackweave.composition.results import PlanResult, PlanStep
from stackweave.secrets import redact


def _preview(value: Any) -> Any:
    if isinstance(value, DeferredValue):
        if value.sensitive:
            return redact(value)
        return f"<deferred {value.name}>"
    if isinstance(value, dict):
        return {key: _preview(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_preview(item) for item in value]
    return redact(value)


class PlanBuilder:
    """Builds a plan preview without calling any backend."""

    def __init__(self, graph: CompositionGraph) -> None:
        self._graph = graph

    def build(self, outputs: Iterable[str] = ()) -> PlanResult:
        """Build the graph and describe every node in execution order."""
        plan = self._graph.build()
        result = PlanResult(graph_name=self._graph.name, outputs=list(outputs))

        for identity in plan.order:
            node = self._graph.get(identity)
            result.steps.append(
                PlanStep(
                    identity=identity,
                    kind=node.kind,
                    parent=node.parent,
                    depends_on=list(plan.upstream[identity]),
                    inputs={key: _preview(item) for key, item in node.dependencies.items()},
                )
            )

        result.teardown = self._graph.teardown_order()
        if result.total_resources == 0:
            result.warnings.append("No resources registered. The program declares nothing to provision.")
        return result
