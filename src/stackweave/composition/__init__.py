"""Composition package: deferred values, resource nodes and the graph that runs them."""

from stackweave.composition.deferred import (
    DeferredState,
    DeferredValue,
    as_deferred,
    gather_all,
)
from stackweave.composition.engine import ExecutionEngine
from stackweave.composition.graph import Component, CompositionGraph, ExecutionPlan
from stackweave.composition.node import NodeContext, NodeState, ResourceNode
from stackweave.composition.results import (
    NodeFailure,
    PlanResult,
    PlanStep,
    ResultCollector,
    RunReport,
    RunStatus,
)

__all__ = [
    "Component",
    "CompositionGraph",
    "DeferredState",
    "DeferredValue",
    "ExecutionEngine",
    "ExecutionPlan",
    "NodeContext",
    "NodeFailure",
    "NodeState",
    "PlanResult",
    "PlanStep",
    "ResourceNode",
    "ResultCollector",
    "RunReport",
    "RunStatus",
    "as_deferred",
    "gather_all",
]
