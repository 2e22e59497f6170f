"""Execution engine for composition graphs."""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Any

import structlog

from stackweave.composition.deferred import resolve_tree
from stackweave.composition.node import NodeContext, NodeState, ResourceNode
from stackweave.composition.results import ResultCollector, RunReport
from stackweave.core.errors import (
    NodeCancelled,
    NodeSkipped,
    NodeTimeout,
    ProvisioningFailed,
    RunError,
)

if TYPE_CHECKING:
    from stackweave.composition.graph import CompositionGraph
    from stackweave.providers.base import ChartRenderer, ProvisioningBackend

logger = structlog.get_logger()


class ExecutionEngine:
    """
    Drives a built graph to completion.

    In parallel mode every node gets its own task and waits only on the
    nodes it depends on. Sequential mode walks the plan order one node at a
    time. Either way a failed node's dependents are skipped while
    independent branches carry on.
    """

    def __init__(
        self,
        backend: ProvisioningBackend | None,
        *,
        renderer: ChartRenderer | None = None,
        sequential: bool = False,
        max_concurrency: int | None = None,
        default_timeout: float | None = None,
    ) -> None:
        if max_concurrency is not None and max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self._backend = backend
        self._renderer = renderer
        self._sequential = sequential
        self._max_concurrency = max_concurrency
        self._default_timeout = default_timeout
        self._cancel_event: asyncio.Event | None = None

    def cancel(self) -> None:
        """Request cooperative cancellation of the current run."""
        if self._cancel_event is not None:
            self._cancel_event.set()

    async def run(
        self,
        graph: CompositionGraph,
        cancel_event: asyncio.Event | None = None,
    ) -> RunReport:
        plan = graph.build()
        self._cancel_event = cancel_event or asyncio.Event()
        collector = ResultCollector(graph.name)
        log = logger.bind(graph=graph.name)
        log.info("run_started", nodes=len(plan.order), sequential=self._sequential)
        started = time.monotonic()

        if self._sequential:
            for identity in plan.order:
                await self._step(graph, graph.get(identity), collector)
        else:
            await self._run_parallel(graph, collector)

        untouched = [
            identity
            for identity in plan.order
            if graph.get(identity).state is NodeState.NOT_STARTED
        ]
        report = collector.finalize(time.monotonic() - started, untouched)
        log.info(
            "run_finished",
            status=report.status.value,
            succeeded=len(report.succeeded),
            failed=report.failed_nodes,
            skipped=len(report.skipped),
            duration_seconds=round(report.duration_seconds, 3),
        )
        return report

    async def _run_parallel(self, graph: CompositionGraph, collector: ResultCollector) -> None:
        plan = graph.plan
        settled = {identity: asyncio.Event() for identity in plan.order}
        semaphore = (
            asyncio.Semaphore(self._max_concurrency) if self._max_concurrency else None
        )

        async def _node_task(identity: str) -> None:
            try:
                for dep in plan.upstream[identity]:
                    await settled[dep].wait()
                if semaphore is None:
                    await self._step(graph, graph.get(identity), collector)
                else:
                    async with semaphore:
                        await self._step(graph, graph.get(identity), collector)
            finally:
                settled[identity].set()

        tasks = [
            asyncio.create_task(_node_task(identity), name=f"node:{identity}")
            for identity in plan.order
        ]
        try:
            await asyncio.gather(*tasks)
        except asyncio.CancelledError:
            assert self._cancel_event is not None
            self._cancel_event.set()
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def _step(
        self,
        graph: CompositionGraph,
        node: ResourceNode,
        collector: ResultCollector,
    ) -> None:
        assert self._cancel_event is not None
        blocked = [
            dep
            for dep in graph.plan.upstream[node.identity]
            if graph.get(dep).state is not NodeState.DONE
        ]
        if blocked:
            root = self._root_cause(graph, blocked[0])
            if graph.get(root).state is NodeState.CANCELLED:
                self._mark_cancelled(node, collector)
            else:
                self._mark_skipped(node, root, collector)
            return
        if self._cancel_event.is_set():
            self._mark_cancelled(node, collector)
            return
        await self._execute(node, collector)

    def _root_cause(self, graph: CompositionGraph, identity: str) -> str:
        node = graph.get(identity)
        error = node.error
        if node.state is NodeState.SKIPPED and isinstance(error, NodeSkipped):
            return error.root
        return identity

    def _mark_skipped(self, node: ResourceNode, root: str, collector: ResultCollector) -> None:
        node.state = NodeState.SKIPPED
        node.error = NodeSkipped(node.identity, root)
        node.fail_outputs(node.error)
        collector.record_skipped(node.identity, root)
        logger.info("node_skipped", node=node.identity, root=root)

    def _mark_cancelled(self, node: ResourceNode, collector: ResultCollector) -> None:
        node.state = NodeState.CANCELLED
        node.error = NodeCancelled(node.identity)
        node.fail_outputs(node.error)
        collector.record_cancelled(node.identity)
        logger.info("node_cancelled", node=node.identity)

    async def _execute(self, node: ResourceNode, collector: ResultCollector) -> None:
        timeout = node.timeout if node.timeout is not None else self._default_timeout
        node.state = NodeState.RUNNING
        log = logger.bind(node=node.identity, kind=node.kind)
        log.debug("node_started", timeout=timeout)
        started = time.monotonic()

        error: RunError | None = None
        try:
            await asyncio.wait_for(self._provision(node), timeout)
        except asyncio.TimeoutError as exc:
            if timeout is None:
                error = ProvisioningFailed(node.identity, exc)
            else:
                error = NodeTimeout(node.identity, timeout)
        except NodeCancelled:
            self._mark_cancelled(node, collector)
            return
        except RunError as exc:
            error = exc
        except Exception as exc:
            error = ProvisioningFailed(node.identity, exc)

        if error is not None:
            node.state = NodeState.FAILED
            node.error = error
            node.fail_outputs(error)
            collector.record_failure(node.identity, error)
            log.error("node_failed", error_type=type(error).__name__, error=error.message)
            return

        node.state = NodeState.DONE
        collector.record_success(node.identity)
        log.info("node_done", duration_seconds=round(time.monotonic() - started, 3))

    async def _provision(self, node: ResourceNode) -> None:
        assert self._cancel_event is not None
        for value in node.deferred_inputs():
            try:
                await value
            except Exception as exc:
                raise ProvisioningFailed(
                    node.identity, f"input '{value.name}' unavailable: {exc}"
                ) from exc

        inputs: dict[str, Any] = resolve_tree(dict(node.dependencies))
        if node.producer is None:
            result = None
        else:
            ctx = NodeContext(node, inputs, self._backend, self._cancel_event, self._renderer)
            try:
                result = await node.producer(ctx)
            except asyncio.TimeoutError as exc:
                # the producer's own timeout, not the node budget
                raise ProvisioningFailed(node.identity, exc) from exc

        for name, value in (result or {}).items():
            output = node.output(name)
            if not output.done():
                output.resolve(value)

        pending = node.pending_outputs()
        if pending:
            raise ProvisioningFailed(node.identity, f"outputs never resolved: {', '.join(pending)}")
