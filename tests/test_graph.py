"""Tests for composition/graph.py.

Registration, cycle detection, validation and deterministic planning.
"""

import asyncio

import pytest
from stackweave.composition.deferred import DeferredValue
from stackweave.composition.graph import CompositionGraph
from stackweave.composition.node import ResourceNode
from stackweave.core.errors import (
    BuildError,
    CyclicDependency,
    DuplicateIdentity,
    MissingDependency,
)
from stackweave.providers.memory import InMemoryBackend


def _diamond(graph: CompositionGraph) -> None:
    rg = graph.node("resourceGroup", outputs=["name"])
    cluster = graph.node("cluster", {"rg": rg["name"]}, outputs=["kubeconfig"])
    graph.node("database", {"kubeconfig": cluster["kubeconfig"]}, outputs=["host"])
    graph.node("app", {"kubeconfig": cluster["kubeconfig"]})


class TestRegistration:
    def test_duplicate_identity_rejected(self):
        graph = CompositionGraph()
        graph.node("cluster")

        with pytest.raises(DuplicateIdentity) as exc_info:
            graph.node("cluster")

        assert exc_info.value.identity == "cluster"
        assert len(graph) == 1

    def test_edges_derived_from_deferred_inputs(self):
        graph = CompositionGraph()
        rg = graph.node("resourceGroup", outputs=["name"])
        cluster = graph.node("cluster", {"spec": {"rg": [rg["name"]]}, "size": 3})

        assert cluster.upstream() == ("resourceGroup",)

    def test_depends_on_adds_explicit_edges(self):
        graph = CompositionGraph()
        graph.node("secret")
        chart = graph.node("chart", depends_on=["secret"])

        assert chart.upstream() == ("secret",)

    def test_node_outputs_are_named_after_node(self):
        node = ResourceNode("cluster", outputs=["kubeconfig"])

        assert node["kubeconfig"].name == "cluster.kubeconfig"
        assert node["kubeconfig"].producers == frozenset({"cluster"})

    def test_unknown_output_raises_key_error(self):
        node = ResourceNode("cluster", outputs=["kubeconfig"])

        with pytest.raises(KeyError):
            node.output("password")

    def test_registration_after_build_rejected(self):
        graph = CompositionGraph()
        graph.node("a")
        graph.build()

        with pytest.raises(BuildError):
            graph.node("b")


class TestCycleDetection:
    def test_two_node_cycle_detected_at_registration(self):
        graph = CompositionGraph()
        a = graph.node("a", depends_on=["b"], outputs=["out"])

        with pytest.raises(CyclicDependency) as exc_info:
            graph.node("b", {"x": a["out"]})

        assert exc_info.value.cycle == ["b", "a", "b"]
        assert "b" not in graph

    def test_self_dependency_is_a_cycle(self):
        graph = CompositionGraph()

        with pytest.raises(CyclicDependency):
            graph.node("a", depends_on=["a"])

    def test_longer_cycle_reports_path(self):
        graph = CompositionGraph()
        graph.node("a", depends_on=["c"])
        graph.node("b", depends_on=["a"])

        with pytest.raises(CyclicDependency) as exc_info:
            graph.node("c", depends_on=["b"])

        cycle = exc_info.value.cycle
        assert cycle[0] == cycle[-1] == "c"
        assert set(cycle) == {"a", "b", "c"}


class TestBuild:
    def test_missing_dependency(self):
        graph = CompositionGraph()
        graph.node("chart", depends_on=["ghost"])

        with pytest.raises(MissingDependency) as exc_info:
            graph.build()

        assert exc_info.value.dependency == "ghost"

    def test_pending_input_without_producer_rejected(self):
        graph = CompositionGraph()
        graph.node("chart", {"address": DeferredValue("frontend-address")})

        with pytest.raises(MissingDependency) as exc_info:
            graph.build()

        assert exc_info.value.node == "chart"
        assert exc_info.value.dependency == "frontend-address"

    @pytest.mark.asyncio
    async def test_run_with_unproducible_input_fails_fast(self):
        backend = InMemoryBackend()
        graph = CompositionGraph()
        graph.node("chart", {"address": DeferredValue("frontend-address")})

        with pytest.raises(MissingDependency):
            await asyncio.wait_for(graph.run(backend), timeout=1)

        assert backend.calls == []

    def test_settled_input_without_producer_accepted(self):
        address = DeferredValue("frontend-address")
        address.resolve("10.0.0.7:7233")
        graph = CompositionGraph()
        graph.node("chart", {"address": address})

        assert graph.build().order == ("chart",)

    def test_missing_parent(self):
        graph = CompositionGraph()
        graph.node("child", parent="nobody")

        with pytest.raises(MissingDependency):
            graph.build()

    def test_topological_order(self):
        graph = CompositionGraph()
        _diamond(graph)

        plan = graph.build()

        assert plan.order == ("resourceGroup", "cluster", "database", "app")
        assert plan.upstream["database"] == ("cluster",)
        assert set(plan.downstream["cluster"]) == {"database", "app"}

    def test_independent_nodes_keep_registration_order(self):
        first = CompositionGraph()
        first.node("a")
        first.node("b")
        second = CompositionGraph()
        second.node("b")
        second.node("a")

        assert first.build().order == ("a", "b")
        assert second.build().order == ("b", "a")

    def test_identical_inputs_give_identical_plans(self):
        plans = []
        for _ in range(3):
            graph = CompositionGraph()
            _diamond(graph)
            plans.append(graph.build().order)

        assert plans[0] == plans[1] == plans[2]

    def test_build_is_idempotent(self):
        graph = CompositionGraph()
        _diamond(graph)

        assert graph.build() is graph.build()

    def test_plan_before_build_raises(self):
        with pytest.raises(BuildError):
            CompositionGraph().plan

    def test_dependents_of_is_transitive(self):
        graph = CompositionGraph()
        _diamond(graph)
        plan = graph.build()

        assert plan.dependents_of("resourceGroup") == ["cluster", "database", "app"]
        assert plan.dependents_of("app") == []


class TestComponents:
    def test_children_are_qualified_and_parented(self):
        graph = CompositionGraph()
        comp = graph.component("temporal")
        child = comp.add("chart")

        assert child.identity == "temporal/chart"
        assert child.parent == "temporal"
        assert graph.get("temporal").kind == "component"

    def test_same_child_name_in_two_components(self):
        graph = CompositionGraph()
        graph.component("temporal").add("k8s-provider")
        graph.component("bench").add("k8s-provider")

        assert "temporal/k8s-provider" in graph
        assert "bench/k8s-provider" in graph

    def test_nested_components(self):
        graph = CompositionGraph()
        platform = graph.component("platform")
        aks = platform.component("aks")
        node = aks.add("managed-cluster")

        assert node.identity == "platform/aks/managed-cluster"
        assert graph.get("platform/aks").parent == "platform"


class TestTeardownOrder:
    def test_dependents_torn_down_first(self):
        graph = CompositionGraph()
        _diamond(graph)

        assert graph.teardown_order() == ["app", "database", "cluster", "resourceGroup"]

    def test_children_precede_their_component(self):
        graph = CompositionGraph()
        comp = graph.component("bench")
        registry = comp.add("registry", outputs=["id"])
        comp.add("role-assignment", {"scope": registry["id"]})

        order = graph.teardown_order()

        assert order.index("bench/role-assignment") < order.index("bench/registry")
        assert order.index("bench/registry") < order.index("bench")
