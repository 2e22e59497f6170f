"""Resource nodes and the context handed to their producers."""

from __future__ import annotations

import asyncio
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Iterable, Mapping

import structlog

from stackweave.composition.deferred import DeferredValue, find_deferred

if TYPE_CHECKING:
    from stackweave.providers.base import ChartRenderer, ProvisioningBackend


class NodeState(str, Enum):
    """Execution state of a resource node."""

    NOT_STARTED = "not_started"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


Producer = Callable[["NodeContext"], Awaitable[Mapping[str, Any] | None]]


class NodeContext:
    """Everything a producer may touch while its node runs."""

    def __init__(
        self,
        node: ResourceNode,
        inputs: Mapping[str, Any],
        backend: ProvisioningBackend | None,
        cancel_event: asyncio.Event,
        renderer: ChartRenderer | None = None,
    ) -> None:
        self.node = node
        self.inputs = inputs
        self._backend = backend
        self._renderer = renderer
        self._cancel_event = cancel_event
        self.log = structlog.get_logger().bind(node=node.identity)

    @property
    def identity(self) -> str:
        return self.node.identity

    @property
    def backend(self) -> ProvisioningBackend:
        if self._backend is None:
            raise RuntimeError(f"No provisioning backend available to '{self.identity}'")
        return self._backend

    @property
    def renderer(self) -> ChartRenderer:
        if self._renderer is None:
            raise RuntimeError(f"No chart renderer available to '{self.identity}'")
        return self._renderer

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    @property
    def cancel_event(self) -> asyncio.Event:
        return self._cancel_event

    async def wait_cancelled(self) -> None:
        await self._cancel_event.wait()

    def resolve(self, name: str, value: Any) -> None:
        """Resolve one output before the producer returns."""
        self.node.output(name).resolve(value)

    def __getitem__(self, key: str) -> Any:
        return self.inputs[key]


class ResourceNode:
    """
    One provisioning unit.

    Dependencies are given as a mapping of input name to a literal, a
    DeferredValue, or a nested dict/list holding DeferredValues. Edges to
    other nodes are derived from the producers of those values, plus any
    identities listed in ``depends_on``. ``parent`` only orders teardown.
    """

    def __init__(
        self,
        identity: str,
        dependencies: Mapping[str, Any] | None = None,
        producer: Producer | None = None,
        *,
        outputs: Iterable[str] = (),
        sensitive_outputs: Iterable[str] = (),
        depends_on: Iterable[str] = (),
        parent: str | None = None,
        timeout: float | None = None,
        kind: str = "resource",
    ) -> None:
        if not identity:
            raise ValueError("Node identity is required")
        self.identity = identity
        self.dependencies: Mapping[str, Any] = MappingProxyType(dict(dependencies or {}))
        self.producer = producer
        self.depends_on = tuple(depends_on)
        self.parent = parent
        self.timeout = timeout
        self.kind = kind
        self.state = NodeState.NOT_STARTED
        self.error: BaseException | None = None

        self._outputs: dict[str, DeferredValue[Any]] = {}
        for name in outputs:
            self._outputs[name] = DeferredValue(f"{identity}.{name}", producers=[identity])
        sensitive = list(sensitive_outputs)
        if sensitive:
            from stackweave.secrets import SensitiveValue

            for name in sensitive:
                self._outputs[name] = SensitiveValue(f"{identity}.{name}", producers=[identity])

    @property
    def outputs(self) -> Mapping[str, DeferredValue[Any]]:
        return MappingProxyType(self._outputs)

    def output(self, name: str) -> DeferredValue[Any]:
        try:
            return self._outputs[name]
        except KeyError:
            raise KeyError(f"Node '{self.identity}' has no output '{name}'") from None

    __getitem__ = output

    def upstream(self) -> tuple[str, ...]:
        """Identities this node must wait for, in first-seen order."""
        seen: dict[str, None] = {}
        for value in find_deferred(dict(self.dependencies)):
            for producer in sorted(value.producers):
                if producer != self.identity:
                    seen.setdefault(producer, None)
        for identity in self.depends_on:
            seen.setdefault(identity, None)
        return tuple(seen)

    def deferred_inputs(self) -> list[DeferredValue[Any]]:
        return find_deferred(dict(self.dependencies))

    def pending_outputs(self) -> list[str]:
        return [name for name, value in self._outputs.items() if not value.done()]

    def fail_outputs(self, error: BaseException) -> None:
        for value in self._outputs.values():
            if not value.done():
                value.fail(error)

    def __repr__(self) -> str:
        return f"ResourceNode({self.identity!r}, state={self.state.value})"
