from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Literal, Mapping, Protocol


@dataclass(frozen=True)
class ResourceHandle:
    """Identifies one resource held by a provisioning backend."""

    kind: str
    name: str
    id: str


@dataclass(frozen=True)
class ProvisionResult:
    """Handle plus the outputs reported at creation time."""

    handle: ResourceHandle
    outputs: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class BackendHealth:
    status: Literal["healthy", "degraded", "unreachable"]
    details: str | None = None


class ProvisioningBackend(Protocol):
    """
    Contract for the external provisioning engine.

    ``create`` is idempotent: repeating it with an identical config returns
    the existing resource. Retries against the cloud API are the backend's
    business, not the caller's.
    """

    name: str

    async def create(
        self,
        kind: str,
        config: Mapping[str, Any],
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> ProvisionResult:
        ...

    async def read(self, handle: ResourceHandle) -> dict[str, Any]:
        ...

    async def delete(self, handle: ResourceHandle) -> None:
        ...

    async def health_check(self) -> BackendHealth:
        ...


class ChartRenderer(Protocol):
    """Renders a chart from a fully resolved values tree."""

    def render(self, template_path: str, values: Mapping[str, Any]) -> list[dict[str, Any]]:
        ...
