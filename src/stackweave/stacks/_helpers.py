"""Producer factories shared by the stack programs."""

from __future__ import annotations

import base64
from typing import Any, Callable, Mapping

from stackweave.composition.node import NodeContext, Producer
from stackweave.core.errors import BackendCancelled, NodeCancelled
from stackweave.providers.base import ProvisionResult, ResourceHandle
from stackweave.secrets import reveal_tree


def b64encode(value: str) -> str:
    return base64.b64encode(value.encode("utf-8")).decode("ascii")


def b64decode(value: str) -> str:
    return base64.b64decode(value).decode("utf-8")


def _declared(ctx: NodeContext, outputs: Mapping[str, Any]) -> dict[str, Any]:
    return {name: value for name, value in outputs.items() if name in ctx.node.outputs}


async def _create(ctx: NodeContext, kind: str, config: Mapping[str, Any]) -> ProvisionResult:
    try:
        return await ctx.backend.create(
            kind, {"name": ctx.identity, **config}, cancel_event=ctx.cancel_event
        )
    except BackendCancelled as exc:
        raise NodeCancelled(ctx.identity) from exc


def provision(kind: str) -> Producer:
    """Create a ``kind`` resource from the node's (revealed) inputs."""

    async def _produce(ctx: NodeContext) -> dict[str, Any]:
        result = await _create(ctx, kind, reveal_tree(dict(ctx.inputs)))
        return _declared(ctx, result.outputs)

    return _produce


def install_chart(
    *,
    services: list[dict[str, str]] | None = None,
    secrets: Callable[[Mapping[str, Any]], dict[str, dict[str, Any]]] | None = None,
) -> Producer:
    """
    Render and install a chart release.

    The node's inputs carry ``chart`` (path or repository coordinates) and
    ``values``. ``services`` and ``secrets`` describe the objects the chart is
    known to create; ``secrets`` is computed from the revealed values.
    """

    async def _produce(ctx: NodeContext) -> dict[str, Any]:
        inputs = reveal_tree(dict(ctx.inputs))
        values = inputs.get("values", {})
        chart = inputs["chart"]
        template = chart if isinstance(chart, str) else f"{chart['repo']}/{chart['chart']}"
        manifests = ctx.renderer.render(template, values)
        ctx.log.debug("chart_manifests", template=template, manifests=len(manifests))
        result = await _create(
            ctx,
            "helm_chart",
            {
                **inputs,
                "manifests": manifests,
                "services": services or [],
                "secrets": secrets(values) if secrets else {},
            },
        )
        return _declared(ctx, result.outputs)

    return _produce


def read_live(kind: str, extract: Callable[[dict[str, Any]], Mapping[str, Any]]) -> Producer:
    """Read back the live state of a resource created by another node."""

    async def _produce(ctx: NodeContext) -> dict[str, Any]:
        handle = ResourceHandle(kind, ctx["resource_name"], ctx["resource_id"])
        state = await ctx.backend.read(handle)
        return dict(extract(state))

    return _produce
