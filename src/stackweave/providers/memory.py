"""
In-process provisioning backend.

Simulates the resources the stack programs declare (resource groups, managed
clusters, registries, chart releases, generated secrets) so compositions can
be planned, exercised and tested without a cloud account. Creation is
idempotent per ``(kind, name, config)``.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import random
import string
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping

import structlog
import yaml

from stackweave.core.errors import BackendCancelled, ProviderError
from stackweave.providers.base import BackendHealth, ProvisionResult, ResourceHandle

logger = structlog.get_logger()


@dataclass
class _Record:
    handle: ResourceHandle
    config: dict[str, Any]
    outputs: dict[str, Any]


class InMemoryBackend:
    """Dictionary-backed stand-in for a cloud provisioning engine."""

    name = "memory"

    def __init__(
        self,
        *,
        fail_on: Iterable[str] = (),
        delays: Mapping[str, float] | None = None,
        seed: int | None = 0,
    ) -> None:
        self._fail_on = set(fail_on)
        self._delays = dict(delays or {})
        self._random = random.Random(seed)
        self._records: dict[tuple[str, str], _Record] = {}
        self.calls: list[tuple[str, str, str]] = []
        self._generators: dict[str, Callable[[str, dict[str, Any]], dict[str, Any]]] = {
            "resource_group": self._resource_group,
            "random_string": self._random_string,
            "random_password": self._random_password,
            "random_uuid": lambda name, config: {"result": self._uuid()},
            "tls_private_key": self._private_key,
            "ad_application": lambda name, config: {"application_id": self._uuid()},
            "service_principal": lambda name, config: {"id": self._uuid()},
            "service_principal_password": lambda name, config: {"value": config.get("value")},
            "managed_cluster": self._managed_cluster,
            "cluster_credentials": self._cluster_credentials,
            "log_analytics_workspace": self._named("workspace_name"),
            "insights_solution": self._named("solution_name"),
            "container_registry": self._container_registry,
            "registry_credentials": self._registry_credentials,
            "client_config": lambda name, config: {"subscription_id": self._uuid()},
            "docker_image": self._docker_image,
            "helm_chart": self._helm_chart,
        }

    async def create(
        self,
        kind: str,
        config: Mapping[str, Any],
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> ProvisionResult:
        name = config.get("name")
        if not name:
            raise ProviderError(f"Resource of kind '{kind}' needs a name", {"kind": kind})
        self.calls.append(("create", kind, name))
        await self._wait(name, kind, cancel_event)
        if name in self._fail_on or kind in self._fail_on:
            raise ProviderError(
                f"Simulated failure creating {kind} '{name}'", {"kind": kind, "name": name}
            )

        key = (kind, name)
        config = dict(config)
        existing = self._records.get(key)
        if existing is not None and existing.config == config:
            logger.debug("resource_unchanged", kind=kind, name=name)
            return ProvisionResult(existing.handle, dict(existing.outputs))

        handle = existing.handle if existing else ResourceHandle(kind, name, f"/{kind}/{name}")
        generator = self._generators.get(kind, lambda name, config: {})
        outputs = {"id": handle.id, "name": name, **generator(name, config)}
        self._records[key] = _Record(handle=handle, config=config, outputs=outputs)
        logger.debug("resource_created" if existing is None else "resource_updated", kind=kind, name=name)
        return ProvisionResult(handle, dict(outputs))

    async def read(self, handle: ResourceHandle) -> dict[str, Any]:
        self.calls.append(("read", handle.kind, handle.name))
        record = self._records.get((handle.kind, handle.name))
        if record is None:
            raise ProviderError(f"Unknown resource {handle.id}", {"id": handle.id})
        return dict(record.outputs)

    async def delete(self, handle: ResourceHandle) -> None:
        self.calls.append(("delete", handle.kind, handle.name))
        self._records.pop((handle.kind, handle.name), None)

    async def health_check(self) -> BackendHealth:
        return BackendHealth(status="healthy", details=f"{len(self._records)} resources")

    def created(self) -> list[str]:
        return [name for verb, _, name in self.calls if verb == "create"]

    async def _wait(self, name: str, kind: str, cancel_event: asyncio.Event | None) -> None:
        delay = self._delays.get(name, self._delays.get(kind, 0.0))
        if not delay:
            return
        if cancel_event is None:
            await asyncio.sleep(delay)
            return
        waiter = asyncio.ensure_future(cancel_event.wait())
        try:
            done, _ = await asyncio.wait({waiter}, timeout=delay)
        finally:
            waiter.cancel()
        if done:
            raise BackendCancelled(f"Creation of {kind} '{name}' aborted", {"name": name})

    # Simulated outputs

    def _uuid(self) -> str:
        return str(uuid.UUID(int=self._random.getrandbits(128), version=4))

    def _address(self, name: str, prefix: str) -> str:
        digest = hashlib.sha256(name.encode()).digest()
        return f"{prefix}.{digest[0]}.{digest[1] or 1}"

    def _named(self, field: str) -> Callable[[str, dict[str, Any]], dict[str, Any]]:
        return lambda name, config: {"name": config.get(field, name)}

    def _resource_group(self, name: str, config: dict[str, Any]) -> dict[str, Any]:
        return {"name": config.get("resource_group_name") or name}

    def _random_string(self, name: str, config: dict[str, Any]) -> dict[str, Any]:
        alphabet = string.ascii_lowercase + string.digits
        if config.get("upper", True):
            alphabet += string.ascii_uppercase
        if config.get("special", True):
            alphabet += "!@#%&*-_=+"
        length = int(config.get("length", 16))
        return {"result": "".join(self._random.choice(alphabet) for _ in range(length))}

    def _random_password(self, name: str, config: dict[str, Any]) -> dict[str, Any]:
        return self._random_string(name, {"special": True, **config})

    def _private_key(self, name: str, config: dict[str, Any]) -> dict[str, Any]:
        material = base64.b64encode(self._random.randbytes(48)).decode()
        return {"public_key_openssh": f"ssh-rsa {material} {name}"}

    def _managed_cluster(self, name: str, config: dict[str, Any]) -> dict[str, Any]:
        resource_name = config.get("resource_name", name)
        return {
            "name": resource_name,
            "fqdn": f"{config.get('dns_prefix', resource_name)}.hcp.example.internal",
            "identity_profile": {"kubeletidentity": {"object_id": self._uuid()}},
        }

    def _cluster_credentials(self, name: str, config: dict[str, Any]) -> dict[str, Any]:
        cluster = config.get("resource_name", name)
        kubeconfig = yaml.safe_dump(
            {
                "apiVersion": "v1",
                "kind": "Config",
                "clusters": [
                    {"name": cluster, "cluster": {"server": f"https://{cluster}.hcp.example.internal"}}
                ],
                "users": [{"name": f"clusterUser_{cluster}", "user": {"token": self._uuid()}}],
                "contexts": [{"name": cluster, "context": {"cluster": cluster, "user": f"clusterUser_{cluster}"}}],
                "current-context": cluster,
            },
            sort_keys=False,
        )
        encoded = base64.b64encode(kubeconfig.encode()).decode()
        return {"kubeconfigs": [{"name": "clusterUser", "value": encoded}]}

    def _container_registry(self, name: str, config: dict[str, Any]) -> dict[str, Any]:
        registry = config.get("registry_name", name)
        return {"name": registry, "login_server": f"{registry.lower()}.azurecr.io"}

    def _registry_credentials(self, name: str, config: dict[str, Any]) -> dict[str, Any]:
        password = self._random_string(name, {"length": 32, "special": False})["result"]
        return {
            "username": config.get("registry_name", name),
            "passwords": [{"name": "password", "value": password}],
        }

    def _docker_image(self, name: str, config: dict[str, Any]) -> dict[str, Any]:
        image_name = config.get("image_name", name)
        digest = hashlib.sha256(repr(sorted(config.items())).encode()).hexdigest()
        return {"image_name": f"{image_name}:{digest[:12]}"}

    def _helm_chart(self, name: str, config: dict[str, Any]) -> dict[str, Any]:
        services: dict[str, Any] = {}
        for service in config.get("services", []):
            entry: dict[str, Any] = {
                "spec": {"type": service.get("type", "ClusterIP"), "clusterIP": self._address(service["name"], "10.0")},
                "status": {"loadBalancer": {}},
            }
            if service.get("type") == "LoadBalancer":
                entry["status"]["loadBalancer"]["ingress"] = [
                    {"ip": self._address(service["name"], "20.50")}
                ]
            services[service["name"]] = entry

        secrets: dict[str, Any] = {}
        for secret_name, data in config.get("secrets", {}).items():
            secrets[secret_name] = {
                key: base64.b64encode(str(value).encode()).decode() for key, value in data.items()
            }
        return {
            "release": name,
            "manifests": len(config.get("manifests", [])),
            "services": services,
            "secrets": secrets,
        }
