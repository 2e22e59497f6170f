"""
Per-stack configuration values.

A stack config is the flat key/value mapping a deployment is parameterised
with (``aks.version``, ``temporal.visibility``, ...). Everything is checked
eagerly while the deployment is prepared so that a missing or malformed key
fails before any provisioning call.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterator, Mapping

from stackweave.config.variants import (
    CassandraStorage,
    DefaultVisibility,
    ElasticsearchVisibility,
    MySqlStorage,
    StorageVariant,
    VisibilityVariant,
)
from stackweave.core.errors import InvalidConfig, MissingConfig, UnhandledVariant
from stackweave.secrets import mark_sensitive


class StackConfig(Mapping[str, Any]):
    """Flat, read-only view over a stack's configuration keys."""

    def __init__(self, values: Mapping[str, Any] | None = None, *, stack: str = "dev") -> None:
        self.stack = stack
        self._values = dict(values or {})

    def __getitem__(self, key: str) -> Any:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def require(self, key: str) -> Any:
        value = self._values.get(key)
        if value is None or value == "":
            raise MissingConfig(key)
        return value

    def require_int(self, key: str) -> int:
        return self._to_int(key, self.require(key))

    def get_int(self, key: str, default: int | None = None) -> int | None:
        value = self._values.get(key)
        if value is None or value == "":
            return default
        return self._to_int(key, value)

    @staticmethod
    def _to_int(key: str, value: Any) -> int:
        if isinstance(value, bool):
            raise InvalidConfig(key, "an integer", value)
        if isinstance(value, int):
            return value
        try:
            return int(str(value).strip())
        except ValueError:
            raise InvalidConfig(key, "an integer", value) from None

    def __repr__(self) -> str:
        return f"StackConfig(stack={self.stack!r}, keys={sorted(self._values)!r})"


@dataclass(frozen=True)
class ClusterSettings:
    kubernetes_version: str
    vm_size: str
    vm_count: int

    @classmethod
    def from_stack_config(cls, config: StackConfig) -> ClusterSettings:
        return cls(
            kubernetes_version=str(config.require("aks.version")),
            vm_size=str(config.require("aks.vmsize")),
            vm_count=config.require_int("aks.vmcount"),
        )


def parse_storage(config: StackConfig, *, require_cluster_size: bool = False) -> StorageVariant:
    """Build the storage variant selected by ``storage.type`` (cassandra by default)."""
    tag = str(config.get("storage.type", CassandraStorage.tag))
    if tag == CassandraStorage.tag:
        if require_cluster_size:
            return CassandraStorage(cluster_size=config.require_int("cassandra.clustersize"))
        return CassandraStorage(cluster_size=config.get_int("cassandra.clustersize"))
    if tag == MySqlStorage.tag:
        return MySqlStorage(
            host_name=config.require("mysql.host"),
            login=config.require("mysql.login"),
            password=mark_sensitive(config.require("mysql.password"), name="mysql.password"),
        )
    raise UnhandledVariant("storage", tag)


def parse_visibility(config: StackConfig) -> VisibilityVariant:
    tag = str(config.require("temporal.visibility"))
    if tag == DefaultVisibility.tag:
        return DefaultVisibility()
    if tag == ElasticsearchVisibility.tag:
        return ElasticsearchVisibility(
            host=config.get("elasticsearch.host"),
            port=config.get_int("elasticsearch.port", 9200) or 9200,
            version=str(config.get("elasticsearch.version", "v7")),
        )
    raise UnhandledVariant("visibility", tag)


@dataclass(frozen=True)
class TemporalSettings:
    version: str
    storage: StorageVariant
    visibility: VisibilityVariant
    num_history_shards: int | None = None

    @classmethod
    def from_stack_config(
        cls, config: StackConfig, *, require_cluster_size: bool = False
    ) -> TemporalSettings:
        return cls(
            version=str(config.require("temporal.version")),
            storage=parse_storage(config, require_cluster_size=require_cluster_size),
            visibility=parse_visibility(config),
            num_history_shards=config.get_int("server.numHistoryShards"),
        )


@dataclass(frozen=True)
class DeploymentConfig:
    """Typed configuration of the all-in-one deployment."""

    cluster: ClusterSettings
    temporal: TemporalSettings
    owner: str | None = None

    @classmethod
    def from_stack_config(cls, config: StackConfig) -> DeploymentConfig:
        return cls(
            cluster=ClusterSettings.from_stack_config(config),
            temporal=TemporalSettings.from_stack_config(config, require_cluster_size=True),
            owner=config.get("owner"),
        )
