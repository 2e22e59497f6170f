"""
Single-assignment deferred values.

A DeferredValue stands for a value that only exists once some provisioning
step has finished (an assigned address, a generated password, fetched
credentials). It settles exactly once, either resolved or failed, and every
reader waiting on it is released at that moment. Readers arriving later get
the stored outcome immediately.

Derived values are expressed with ``map`` and ``gather_all`` instead of
blocking on the source, so the dependency on the producing node is carried
along in ``producers``.
"""

from __future__ import annotations

import asyncio
import itertools
from enum import Enum
from typing import Any, Callable, Generic, Iterable, TypeVar

from stackweave.core.errors import AlreadyResolved, NotResolved

T = TypeVar("T")
U = TypeVar("U")

_counter = itertools.count(1)


class DeferredState(str, Enum):
    """Lifecycle of a deferred value."""

    PENDING = "pending"
    RESOLVED = "resolved"
    FAILED = "failed"


class DeferredValue(Generic[T]):
    """Write-once future tied to the nodes that produce it."""

    sensitive = False

    def __init__(self, name: str | None = None, *, producers: Iterable[str] = ()) -> None:
        self.name = name or f"deferred-{next(_counter)}"
        self.producers: frozenset[str] = frozenset(producers)
        self._state = DeferredState.PENDING
        self._value: T | None = None
        self._error: BaseException | None = None
        self._event = asyncio.Event()
        self._callbacks: list[Callable[[DeferredValue[Any]], None]] = []

    @property
    def state(self) -> DeferredState:
        return self._state

    @property
    def error(self) -> BaseException | None:
        return self._error

    def done(self) -> bool:
        return self._state is not DeferredState.PENDING

    def resolve(self, value: T) -> None:
        """Settle with a value. Raises AlreadyResolved if already settled."""
        if self.done():
            raise AlreadyResolved(self.name)
        self._value = value
        self._state = DeferredState.RESOLVED
        self._settle()

    def fail(self, error: BaseException) -> None:
        """Settle with an error. Raises AlreadyResolved if already settled."""
        if self.done():
            raise AlreadyResolved(self.name)
        self._error = error
        self._state = DeferredState.FAILED
        self._settle()

    def _settle(self) -> None:
        self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback(self)

    def add_done_callback(self, callback: Callable[[DeferredValue[Any]], None]) -> None:
        """Run callback on settlement, immediately if already settled."""
        if self.done():
            callback(self)
        else:
            self._callbacks.append(callback)

    def _payload(self) -> Any:
        return self._value

    def result(self) -> T:
        """Return the settled value without waiting."""
        if self._state is DeferredState.PENDING:
            raise NotResolved(self.name)
        if self._state is DeferredState.FAILED:
            assert self._error is not None
            raise self._error
        return self._payload()

    async def get(self, timeout: float | None = None) -> T:
        """Wait for settlement and return the value or raise the failure."""
        if not self.done():
            if timeout is None:
                await self._event.wait()
            else:
                await asyncio.wait_for(self._event.wait(), timeout)
        return self.result()

    def __await__(self):
        return self.get().__await__()

    def _derive(self, name: str) -> DeferredValue[Any]:
        return DeferredValue(name, producers=self.producers)

    def _link(
        self,
        target: DeferredValue[Any],
        fn: Callable[[Any], Any] | None = None,
    ) -> DeferredValue[Any]:
        def _propagate(source: DeferredValue[Any]) -> None:
            if source._state is DeferredState.FAILED:
                assert source._error is not None
                target.fail(source._error)
                return
            try:
                value = source._value if fn is None else fn(source._value)
            except Exception as exc:
                target.fail(exc)
                return
            target.resolve(value)

        self.add_done_callback(_propagate)
        return target

    def map(self, fn: Callable[[T], U], name: str | None = None) -> DeferredValue[U]:
        """Derive a value that resolves to ``fn(value)`` once this one resolves."""
        return self._link(self._derive(name or f"{self.name}.map"), fn)

    def __repr__(self) -> str:
        if self._state is DeferredState.RESOLVED:
            return f"DeferredValue({self.name!r}, resolved={self._value!r})"
        return f"DeferredValue({self.name!r}, {self._state.value})"


def is_deferred(value: Any) -> bool:
    return isinstance(value, DeferredValue)


def as_deferred(value: Any, name: str | None = None) -> DeferredValue[Any]:
    """Wrap a literal into an already-resolved deferred value."""
    if isinstance(value, DeferredValue):
        return value
    literal: DeferredValue[Any] = DeferredValue(name or "literal")
    literal.resolve(value)
    return literal


def gather_all(*values: Any, name: str | None = None) -> DeferredValue[tuple[Any, ...]]:
    """
    Combine values into one that resolves to the tuple of their results.

    Fails as soon as any input fails; the first failure wins and later ones
    are discarded. Literals count as already resolved. If any input is
    sensitive the combined value is sensitive too, and its tuple holds the
    raw values so ``map`` sees them the way it does for a single source.
    """
    items = [as_deferred(v) for v in values]
    producers: frozenset[str] = frozenset().union(*(item.producers for item in items))
    label = name or "gather(" + ", ".join(item.name for item in items) + ")"
    sensitive = next((item for item in items if item.sensitive), None)
    if sensitive is None:
        combined: DeferredValue[tuple[Any, ...]] = DeferredValue(label, producers=producers)
    else:
        combined = sensitive._derive(label)
        combined.producers = producers
    if not items:
        combined.resolve(())
        return combined

    remaining = len(items)

    def _on_settled(source: DeferredValue[Any]) -> None:
        nonlocal remaining
        if combined.done():
            return
        if source.state is DeferredState.FAILED:
            assert source.error is not None
            combined.fail(source.error)
            return
        remaining -= 1
        if remaining == 0:
            if combined.sensitive:
                combined.resolve(tuple(item._value for item in items))
            else:
                combined.resolve(tuple(item._payload() for item in items))

    for item in items:
        item.add_done_callback(_on_settled)
    return combined


def find_deferred(tree: Any) -> list[DeferredValue[Any]]:
    """Collect deferred values nested in dicts, lists and tuples, in order."""
    found: list[DeferredValue[Any]] = []
    seen: set[int] = set()

    def _walk(node: Any) -> None:
        if isinstance(node, DeferredValue):
            if id(node) not in seen:
                seen.add(id(node))
                found.append(node)
        elif isinstance(node, dict):
            for item in node.values():
                _walk(item)
        elif isinstance(node, (list, tuple)):
            for item in node:
                _walk(item)

    _walk(tree)
    return found


def resolve_tree(tree: Any) -> Any:
    """Replace settled deferred values in a nested structure by their results."""
    if isinstance(tree, DeferredValue):
        return tree.result()
    if isinstance(tree, dict):
        return {key: resolve_tree(item) for key, item in tree.items()}
    if isinstance(tree, list):
        return [resolve_tree(item) for item in tree]
    if isinstance(tree, tuple):
        return tuple(resolve_tree(item) for item in tree)
    return tree
