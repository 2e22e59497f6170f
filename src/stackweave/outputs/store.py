"""Persistent storage for published deployment outputs."""

from __future__ import annotations

import asyncio
import json
import os
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Protocol

import structlog

from stackweave.core.errors import ConfigurationError

logger = structlog.get_logger()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class StoredOutput:
    """One output value as last published by a deployment."""

    name: str
    value: Any
    sensitive: bool = False
    published_at: str = field(default_factory=_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "value": self.value,
            "sensitive": self.sensitive,
            "published_at": self.published_at,
        }

    @classmethod
    def from_dict(cls, name: str, data: dict[str, Any]) -> StoredOutput:
        return cls(
            name=name,
            value=data.get("value"),
            sensitive=bool(data.get("sensitive", False)),
            published_at=data.get("published_at") or _now(),
        )


class OutputStore(Protocol):
    """Where deployments publish outputs and other deployments read them."""

    async def publish(
        self, deployment_id: str, name: str, value: Any, sensitive: bool = False
    ) -> StoredOutput:
        ...

    async def fetch(self, deployment_id: str, name: str) -> StoredOutput | None:
        ...

    async def list(self, deployment_id: str) -> dict[str, StoredOutput]:
        ...


class InMemoryOutputStore:
    """Process-local output store."""

    def __init__(self) -> None:
        self._outputs: Dict[str, Dict[str, StoredOutput]] = {}

    async def publish(
        self, deployment_id: str, name: str, value: Any, sensitive: bool = False
    ) -> StoredOutput:
        stored = StoredOutput(name=name, value=value, sensitive=sensitive)
        self._outputs.setdefault(deployment_id, {})[name] = stored
        return stored

    async def fetch(self, deployment_id: str, name: str) -> StoredOutput | None:
        return self._outputs.get(deployment_id, {}).get(name)

    async def list(self, deployment_id: str) -> dict[str, StoredOutput]:
        return dict(self._outputs.get(deployment_id, {}))


_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


class FileOutputStore:
    """One JSON document per deployment under ``directory``."""

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)
        self._lock = asyncio.Lock()

    def path_for(self, deployment_id: str) -> Path:
        return self.directory / f"{_UNSAFE.sub('__', deployment_id)}.json"

    def _read(self, deployment_id: str) -> dict[str, Any]:
        path = self.path_for(deployment_id)
        if not path.exists():
            return {}
        data = json.loads(path.read_text())
        return dict(data.get("outputs", {}))

    def _write(self, deployment_id: str, outputs: dict[str, Any]) -> None:
        path = self.path_for(deployment_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"deployment": deployment_id, "outputs": outputs}
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(payload, indent=2, sort_keys=True) + "\n")
        os.replace(tmp, path)

    async def publish(
        self, deployment_id: str, name: str, value: Any, sensitive: bool = False
    ) -> StoredOutput:
        stored = StoredOutput(name=name, value=value, sensitive=sensitive)
        async with self._lock:
            outputs = self._read(deployment_id)
            outputs[name] = stored.to_dict()
            self._write(deployment_id, outputs)
        logger.debug("output_stored", deployment=deployment_id, output=name, path=str(self.path_for(deployment_id)))
        return stored

    async def fetch(self, deployment_id: str, name: str) -> StoredOutput | None:
        data = self._read(deployment_id).get(name)
        if data is None:
            return None
        return StoredOutput.from_dict(name, data)

    async def list(self, deployment_id: str) -> dict[str, StoredOutput]:
        return {
            name: StoredOutput.from_dict(name, data)
            for name, data in self._read(deployment_id).items()
        }


def create_output_store(kind: str, **kwargs: Any) -> OutputStore:
    """Build an output store from its settings name (file, redis, memory)."""
    if kind == "memory":
        return InMemoryOutputStore()
    if kind == "file":
        return FileOutputStore(kwargs.get("output_dir", ".stackweave/outputs"))
    if kind == "redis":
        from stackweave.outputs.redis import RedisOutputStore

        return RedisOutputStore(
            kwargs.get("redis_url", "redis://localhost:6379/0"),
            key_prefix=kwargs.get("redis_key_prefix", "stackweave:outputs"),
        )
    raise ConfigurationError(
        f"Unknown output store '{kind}'", {"available": ["file", "memory", "redis"]}
    )
