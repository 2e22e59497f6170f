"""Tests for the execution engine (composition/engine.py)."""

import asyncio

import pytest
from stackweave.composition.deferred import DeferredState
from stackweave.composition.graph import CompositionGraph
from stackweave.composition.node import NodeState
from stackweave.composition.results import RunStatus
from stackweave.core.errors import (
    CyclicDependency,
    MissingDependency,
    NodeSkipped,
    NodeTimeout,
    ProvisioningFailed,
)
from stackweave.providers.memory import InMemoryBackend
from stackweave.stacks._helpers import provision


def _cluster_graph(*, timeout=None) -> CompositionGraph:
    """resourceGroup -> cluster -> {database, app}, plus an unrelated dns zone."""
    graph = CompositionGraph("test")
    rg = graph.node(
        "resourceGroup",
        {"resource_group_name": "rg-test"},
        provision("resource_group"),
        outputs=["name"],
    )
    cluster = graph.node(
        "cluster",
        {"resource_group_name": rg["name"]},
        provision("managed_cluster"),
        outputs=["id", "fqdn"],
        timeout=timeout,
    )
    graph.node("database", {"cluster": cluster["id"]}, provision("database"), outputs=["id"])
    graph.node("app", {"cluster": cluster["fqdn"]}, provision("deployment"), outputs=["id"])
    graph.node("dns", {"zone": "example.internal"}, provision("dns_zone"), outputs=["id"])
    return graph


class TestSuccessfulRun:
    @pytest.mark.asyncio
    async def test_all_nodes_provisioned_in_dependency_order(self):
        graph = _cluster_graph()
        backend = InMemoryBackend()

        report = await graph.run(backend)

        assert report.status is RunStatus.SUCCEEDED
        assert report.success
        assert set(report.succeeded) == {"resourceGroup", "cluster", "database", "app", "dns"}
        created = backend.created()
        assert created.index("resourceGroup") < created.index("cluster")
        assert created.index("cluster") < created.index("database")
        assert created.index("cluster") < created.index("app")

    @pytest.mark.asyncio
    async def test_outputs_flow_into_dependents(self):
        graph = _cluster_graph()

        await graph.run(InMemoryBackend())

        assert graph.get("resourceGroup")["name"].result() == "rg-test"
        assert graph.get("database")["id"].result() == "/database/database"
        assert graph.get("app").state is NodeState.DONE

    @pytest.mark.asyncio
    async def test_node_without_producer_completes(self):
        graph = CompositionGraph()
        graph.component("platform")

        report = await graph.run(InMemoryBackend())

        assert report.succeeded == ["platform"]

    @pytest.mark.asyncio
    async def test_producer_can_resolve_outputs_early(self):
        async def staged(ctx):
            ctx.resolve("release", "temporaltest")
            return {"services": ["frontend"]}

        graph = CompositionGraph()
        chart = graph.node("chart", producer=staged, outputs=["release", "services"])

        report = await graph.run(InMemoryBackend())

        assert report.success
        assert chart["release"].result() == "temporaltest"
        assert chart["services"].result() == ["frontend"]

    @pytest.mark.asyncio
    async def test_run_is_repeatable_against_same_backend(self):
        backend = InMemoryBackend()
        await _cluster_graph().run(backend)
        first_run = backend.created()

        report = await _cluster_graph().run(backend)

        assert report.success
        assert sorted(backend.created()) == sorted(first_run * 2)


class TestFailurePropagation:
    @pytest.mark.asyncio
    async def test_failed_node_skips_dependents(self):
        graph = _cluster_graph()
        backend = InMemoryBackend(fail_on=["cluster"])

        report = await graph.run(backend)

        assert report.status is RunStatus.FAILED
        assert report.failed_nodes == ["cluster"]
        assert report.skipped == {"database": "cluster", "app": "cluster"}
        assert "database" not in backend.created()
        assert "app" not in backend.created()

    @pytest.mark.asyncio
    async def test_independent_branch_keeps_going(self):
        graph = _cluster_graph()

        report = await graph.run(InMemoryBackend(fail_on=["cluster"]))

        assert "dns" in report.succeeded
        assert "resourceGroup" in report.succeeded

    @pytest.mark.asyncio
    async def test_failure_cause_is_recorded(self):
        graph = _cluster_graph()

        report = await graph.run(InMemoryBackend(fail_on=["cluster"]))

        failure = report.failure_for("cluster")
        assert isinstance(failure.error, ProvisioningFailed)
        assert "Simulated failure" in failure.cause
        assert report.to_dict()["failed"][0]["error"] == "ProvisioningFailed"

    @pytest.mark.asyncio
    async def test_skipped_outputs_fail_with_root_cause(self):
        graph = _cluster_graph()

        await graph.run(InMemoryBackend(fail_on=["cluster"]))

        output = graph.get("database")["id"]
        assert output.state is DeferredState.FAILED
        assert isinstance(output.error, NodeSkipped)
        assert output.error.root == "cluster"

    @pytest.mark.asyncio
    async def test_database_failure_skips_app_but_not_cluster(self):
        graph = CompositionGraph()
        rg = graph.node("resourceGroup", {}, provision("resource_group"), outputs=["name"])
        cluster = graph.node(
            "cluster", {"rg": rg["name"]}, provision("managed_cluster"), outputs=["id"]
        )
        database = graph.node(
            "database", {"cluster": cluster["id"]}, provision("database"), outputs=["id"]
        )
        graph.node(
            "app",
            {"cluster": cluster["id"], "database_address": database["id"]},
            provision("deployment"),
        )
        backend = InMemoryBackend(fail_on=["database"])

        report = await graph.run(backend)

        assert report.status is RunStatus.FAILED
        assert set(report.succeeded) == {"resourceGroup", "cluster"}
        assert report.failed_nodes == ["database"]
        assert report.skipped == {"app": "database"}
        assert "app" not in backend.created()

    @pytest.mark.asyncio
    async def test_transitive_skip_names_original_failure(self):
        graph = CompositionGraph()
        a = graph.node("a", {}, provision("thing"), outputs=["id"])
        b = graph.node("b", {"a": a["id"]}, provision("thing"), outputs=["id"])
        graph.node("c", {"b": b["id"]}, provision("thing"))

        report = await graph.run(InMemoryBackend(fail_on=["a"]))

        assert report.skipped == {"b": "a", "c": "a"}

    @pytest.mark.asyncio
    async def test_producer_exception_becomes_provisioning_failed(self):
        async def broken(ctx):
            raise ValueError("bad chart values")

        graph = CompositionGraph()
        graph.node("chart", producer=broken)

        report = await graph.run(InMemoryBackend())

        failure = report.failure_for("chart")
        assert isinstance(failure.error, ProvisioningFailed)
        assert "bad chart values" in failure.cause

    @pytest.mark.asyncio
    async def test_unresolved_declared_output_fails_node(self):
        async def forgetful(ctx):
            return {}

        graph = CompositionGraph()
        graph.node("chart", producer=forgetful, outputs=["release"])

        report = await graph.run(InMemoryBackend())

        assert report.failed_nodes == ["chart"]
        assert "release" in report.failure_for("chart").cause

    @pytest.mark.asyncio
    async def test_undeclared_output_fails_node(self):
        async def chatty(ctx):
            return {"surprise": 1}

        graph = CompositionGraph()
        graph.node("chart", producer=chatty)

        report = await graph.run(InMemoryBackend())

        assert report.failed_nodes == ["chart"]


class TestBuildErrorsBeforeProvisioning:
    def test_cycle_rejected_without_backend_call(self):
        backend = InMemoryBackend()
        graph = CompositionGraph()
        a = graph.node("a", depends_on=["b"], producer=provision("thing"), outputs=["id"])

        with pytest.raises(CyclicDependency):
            graph.node("b", {"a": a["id"]}, provision("thing"))

        assert backend.calls == []

    @pytest.mark.asyncio
    async def test_missing_dependency_raises_before_run(self):
        backend = InMemoryBackend()
        graph = CompositionGraph()
        graph.node("a", {}, provision("thing"))
        graph.node("b", {}, provision("thing"), depends_on=["ghost"])

        with pytest.raises(MissingDependency):
            await graph.run(backend)

        assert backend.calls == []


class TestTimeouts:
    @pytest.mark.asyncio
    async def test_slow_node_times_out(self):
        graph = _cluster_graph(timeout=0.05)
        backend = InMemoryBackend(delays={"cluster": 5.0})

        report = await graph.run(backend)

        error = report.failure_for("cluster").error
        assert isinstance(error, NodeTimeout)
        assert error.seconds == 0.05
        assert report.skipped == {"database": "cluster", "app": "cluster"}
        assert "dns" in report.succeeded

    @pytest.mark.asyncio
    async def test_producer_timeout_is_not_the_node_budget(self):
        async def impatient(ctx):
            await asyncio.wait_for(asyncio.sleep(5), timeout=0.01)

        graph = CompositionGraph()
        graph.node("chart", producer=impatient, timeout=5.0)

        report = await graph.run(InMemoryBackend())

        error = report.failure_for("chart").error
        assert isinstance(error, ProvisioningFailed)
        assert not isinstance(error, NodeTimeout)

    @pytest.mark.asyncio
    async def test_default_timeout_applies_to_every_node(self):
        graph = _cluster_graph()
        backend = InMemoryBackend(delays={"dns_zone": 5.0})

        report = await graph.run(backend, default_timeout=0.05)

        assert report.failed_nodes == ["dns"]
        assert isinstance(report.failure_for("dns").error, NodeTimeout)


class TestCancellation:
    @pytest.mark.asyncio
    async def test_preset_cancel_event_provisions_nothing(self):
        graph = _cluster_graph()
        backend = InMemoryBackend()
        cancel = asyncio.Event()
        cancel.set()

        report = await graph.run(backend, cancel_event=cancel)

        assert report.status is RunStatus.CANCELLED
        assert backend.calls == []
        assert set(report.cancelled) == {"resourceGroup", "cluster", "database", "app", "dns"}

    @pytest.mark.asyncio
    async def test_cancel_during_run_stops_in_flight_node(self):
        graph = _cluster_graph()
        backend = InMemoryBackend(delays={"cluster": 5.0})
        cancel = asyncio.Event()

        run = asyncio.create_task(graph.run(backend, cancel_event=cancel))
        await asyncio.sleep(0.05)
        cancel.set()
        report = await asyncio.wait_for(run, timeout=2)

        assert report.status is RunStatus.CANCELLED
        assert "cluster" in report.cancelled
        assert {"database", "app"} <= set(report.cancelled)
        assert "resourceGroup" in report.succeeded
        assert graph.get("cluster").state is NodeState.CANCELLED


class TestConcurrency:
    @staticmethod
    def _tracking_graph(width: int):
        state = {"running": 0, "peak": 0, "order": []}

        def producer(delay):
            async def _produce(ctx):
                state["running"] += 1
                state["peak"] = max(state["peak"], state["running"])
                state["order"].append(ctx.identity)
                await asyncio.sleep(delay)
                state["running"] -= 1
                return None

            return _produce

        graph = CompositionGraph()
        for index in range(width):
            graph.node(f"n{index}", producer=producer(0.01))
        return graph, state

    @pytest.mark.asyncio
    async def test_independent_nodes_run_concurrently(self):
        graph, state = self._tracking_graph(4)

        await graph.run(InMemoryBackend())

        assert state["peak"] == 4

    @pytest.mark.asyncio
    async def test_max_concurrency_bounds_parallelism(self):
        graph, state = self._tracking_graph(6)

        report = await graph.run(InMemoryBackend(), max_concurrency=2)

        assert report.success
        assert state["peak"] <= 2

    @pytest.mark.asyncio
    async def test_sequential_mode_follows_plan_order(self):
        graph, state = self._tracking_graph(4)

        await graph.run(InMemoryBackend(), sequential=True)

        assert state["peak"] == 1
        assert state["order"] == ["n0", "n1", "n2", "n3"]

    @pytest.mark.asyncio
    async def test_invalid_max_concurrency(self):
        graph, _ = self._tracking_graph(1)

        with pytest.raises(ValueError):
            await graph.run(InMemoryBackend(), max_concurrency=0)
