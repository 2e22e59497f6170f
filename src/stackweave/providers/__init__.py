"""
Provisioning backends and chart rendering.
"""

from stackweave.providers.base import (
    BackendHealth,
    ChartRenderer,
    ProvisioningBackend,
    ProvisionResult,
    ResourceHandle,
)
from stackweave.providers.charts import ValuesRenderer
from stackweave.providers.memory import InMemoryBackend
from stackweave.providers.registry import (
    BackendRegistry,
    BackendSpec,
    backend_registry,
    create_backend,
    list_backends,
    register_backend,
)

__all__ = [
    "BackendHealth",
    "BackendRegistry",
    "BackendSpec",
    "ChartRenderer",
    "InMemoryBackend",
    "ProvisionResult",
    "ProvisioningBackend",
    "ResourceHandle",
    "ValuesRenderer",
    "backend_registry",
    "create_backend",
    "list_backends",
    "register_backend",
]
