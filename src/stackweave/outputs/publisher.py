"""
Deployment outputs: publishing and cross-deployment references.

A deployment names a subset of its deferred values as outputs. After a run
the resolved ones are written to an output store; another deployment reads
them back through a ``StackReference``, which registers a lookup node in its
own graph so that a missing output fails that node (and skips its
dependents) instead of hanging the run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

import structlog
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from stackweave.composition.deferred import DeferredState, DeferredValue, find_deferred, resolve_tree
from stackweave.composition.graph import CompositionGraph
from stackweave.composition.node import NodeContext
from stackweave.core.errors import DuplicateIdentity, NotFound
from stackweave.outputs.store import OutputStore, StoredOutput
from stackweave.secrets import REDACTED, Secret, is_sensitive, redact, reveal_tree

logger = structlog.get_logger()


@dataclass
class StackOutput:
    """A named value exported by a deployment."""

    name: str
    value: Any
    sensitive: bool = False

    def _deferred(self) -> list[DeferredValue[Any]]:
        return find_deferred(self.value)

    @property
    def state(self) -> DeferredState:
        values = self._deferred()
        if any(v.state is DeferredState.FAILED for v in values):
            return DeferredState.FAILED
        if all(v.done() for v in values):
            return DeferredState.RESOLVED
        return DeferredState.PENDING

    @property
    def error(self) -> BaseException | None:
        for value in self._deferred():
            if value.state is DeferredState.FAILED:
                return value.error
        return None

    def resolved(self) -> Any:
        """The settled value tree; secrets are still wrapped."""
        return resolve_tree(self.value)


@dataclass
class FlushResult:
    written: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    pending: list[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failed and not self.pending


class StackOutputPublisher:
    """Collects a deployment's outputs and writes them to an output store."""

    def __init__(self, deployment_id: str, store: OutputStore | None = None) -> None:
        self.deployment_id = deployment_id
        self.store = store
        self._outputs: dict[str, StackOutput] = {}

    def publish(self, name: str, value: Any, sensitive: bool = False) -> StackOutput:
        """
        Register an output. ``value`` may be a literal, a deferred value or a
        nested dict/list containing deferred values. An output holding any
        sensitive value is sensitive as a whole.
        """
        if name in self._outputs:
            raise DuplicateIdentity(name, scope=f"outputs of '{self.deployment_id}'")
        sensitive = sensitive or is_sensitive(value) or any(
            v.sensitive for v in find_deferred(value)
        )
        output = StackOutput(name=name, value=value, sensitive=sensitive)
        self._outputs[name] = output
        return output

    @property
    def outputs(self) -> dict[str, StackOutput]:
        return dict(self._outputs)

    def names(self) -> list[str]:
        return list(self._outputs)

    async def flush(self) -> FlushResult:
        """Write every resolved output; failed and pending ones are reported only."""
        if self.store is None:
            raise RuntimeError(f"No output store configured for '{self.deployment_id}'")
        result = FlushResult()
        for name, output in self._outputs.items():
            state = output.state
            if state is DeferredState.FAILED:
                result.failed[name] = str(output.error)
                logger.warning("output_not_published", deployment=self.deployment_id, output=name, error=str(output.error))
                continue
            if state is DeferredState.PENDING:
                result.pending.append(name)
                continue
            await self.store.publish(
                self.deployment_id,
                name,
                reveal_tree(output.resolved()),
                sensitive=output.sensitive,
            )
            result.written.append(name)
            logger.info("output_published", deployment=self.deployment_id, output=name, sensitive=output.sensitive)
        return result

    def render(self, show_secrets: bool = False) -> dict[str, Any]:
        """Output values for display; sensitive ones are masked unless asked for."""
        rendered: dict[str, Any] = {}
        for name, output in self._outputs.items():
            state = output.state
            if state is DeferredState.FAILED:
                rendered[name] = f"<failed: {output.error}>"
            elif state is DeferredState.PENDING:
                rendered[name] = "<pending>"
            elif show_secrets:
                rendered[name] = reveal_tree(output.resolved())
            elif output.sensitive:
                rendered[name] = REDACTED
            else:
                rendered[name] = redact(output.resolved())
        return rendered


def render_stored(outputs: dict[str, StoredOutput], show_secrets: bool = False) -> dict[str, Any]:
    """Display form of outputs read back from a store."""
    return {
        name: stored.value if show_secrets or not stored.sensitive else REDACTED
        for name, stored in outputs.items()
    }


# Cross-deployment lookups


class OutputUnavailable(Exception):
    """The source deployment has not published the output (yet)."""


async def fetch_output(
    store: OutputStore,
    deployment_id: str,
    name: str,
    *,
    max_attempts: int = 5,
    wait_seconds: float = 2.0,
    max_wait: float = 30.0,
) -> StoredOutput:
    """Read one published output, retrying a bounded number of times."""

    async def _attempt() -> StoredOutput:
        stored = await store.fetch(deployment_id, name)
        if stored is None:
            logger.debug("output_lookup_miss", deployment=deployment_id, output=name)
            raise OutputUnavailable(name)
        return stored

    try:
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(OutputUnavailable),
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(multiplier=wait_seconds, max=max_wait),
            reraise=True,
        ):
            with attempt:
                return await _attempt()
    except (OutputUnavailable, RetryError):
        raise NotFound(deployment_id, name, max_attempts) from None
    raise NotFound(deployment_id, name, max_attempts)


class StackReference:
    """Reads outputs another deployment published, as nodes of this graph."""

    def __init__(
        self,
        graph: CompositionGraph,
        deployment_id: str,
        store: OutputStore,
        *,
        max_attempts: int = 5,
        wait_seconds: float = 2.0,
    ) -> None:
        if not deployment_id:
            raise ValueError("Stack reference needs a deployment id")
        self.graph = graph
        self.deployment_id = deployment_id
        self.store = store
        self.max_attempts = max_attempts
        self.wait_seconds = wait_seconds
        self._lookups: dict[str, DeferredValue[Any]] = {}

    def require_output(self, name: str, *, sensitive: bool = False) -> DeferredValue[Any]:
        """
        Deferred value resolving to the named output of the referenced
        deployment. The lookup fails with NotFound once the retry budget is
        spent. Outputs stored as sensitive arrive wrapped in a Secret.
        """
        if name in self._lookups:
            return self._lookups[name]

        async def _lookup(ctx: NodeContext) -> dict[str, Any]:
            stored = await fetch_output(
                self.store,
                self.deployment_id,
                name,
                max_attempts=self.max_attempts,
                wait_seconds=self.wait_seconds,
            )
            ctx.log.debug("output_lookup_hit", deployment=self.deployment_id, output=name)
            value = stored.value
            if stored.sensitive and not sensitive:
                value = Secret(value)
            return {"value": value}

        outputs: dict[str, Iterable[str]] = (
            {"sensitive_outputs": ["value"]} if sensitive else {"outputs": ["value"]}
        )
        node = self.graph.node(
            f"ref:{self.deployment_id}:{name}",
            producer=_lookup,
            kind="lookup",
            **outputs,
        )
        self._lookups[name] = node.output("value")
        return self._lookups[name]
