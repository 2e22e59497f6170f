"""
Configuration variants and the resolvers that turn them into input bundles.

A variant is one member of a closed tagged union (storage backend,
visibility backend). Each axis gets its own ``ConfigVariantResolver`` with
one handler per tag; resolving a variant yields an ``InputBundle`` of flat
dotted keys. Bundles from independent axes are merged, and a key set to two
different values is rejected rather than silently overwritten.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, ClassVar, Generic, Iterable, Iterator, Mapping, TypeVar, Union

import structlog

from stackweave.composition.deferred import DeferredValue, find_deferred, resolve_tree
from stackweave.core.errors import ConflictingKey, DuplicateIdentity, UnhandledVariant

logger = structlog.get_logger()

V = TypeVar("V")


# Variants


@dataclass(frozen=True)
class CassandraStorage:
    cluster_size: int | None = None

    tag: ClassVar[str] = "cassandra"


@dataclass(frozen=True)
class MySqlStorage:
    """External MySQL server; ``password`` is usually a SensitiveValue."""

    host_name: Any
    login: Any
    password: Any

    tag: ClassVar[str] = "mysql"


@dataclass(frozen=True)
class DefaultVisibility:
    tag: ClassVar[str] = "default"


@dataclass(frozen=True)
class ElasticsearchVisibility:
    """Elasticsearch visibility store, bundled with the chart unless ``host`` is set."""

    host: str | None = None
    port: int = 9200
    version: str = "v7"

    tag: ClassVar[str] = "elasticsearch"


StorageVariant = Union[CassandraStorage, MySqlStorage]
VisibilityVariant = Union[DefaultVisibility, ElasticsearchVisibility]

STORAGE_TAGS = (CassandraStorage.tag, MySqlStorage.tag)
VISIBILITY_TAGS = (DefaultVisibility.tag, ElasticsearchVisibility.tag)


def variant_tag(variant: Any) -> str:
    tag = getattr(variant, "tag", None)
    if not isinstance(tag, str):
        raise TypeError(f"{type(variant).__name__} is not a tagged configuration variant")
    return tag


# Input bundles


def _same(left: Any, right: Any) -> bool:
    if isinstance(left, DeferredValue) or isinstance(right, DeferredValue):
        return left is right
    return bool(left == right)


class InputBundle(Mapping[str, Any]):
    """
    Flat mapping of dotted configuration keys to literals or deferred values.

    ``cassandra.config.cluster_size`` becomes ``{"cassandra": {"config":
    {"cluster_size": ...}}}`` once nested. A key may not be both a leaf and
    the prefix of another key.
    """

    def __init__(self, values: Mapping[str, Any] | None = None) -> None:
        self._values: dict[str, Any] = {}
        for key, value in (values or {}).items():
            self._set(key, value)

    def _set(self, key: str, value: Any) -> None:
        if not key or any(not part for part in key.split(".")):
            raise ValueError(f"Invalid configuration key '{key}'")
        if key in self._values:
            if not _same(self._values[key], value):
                raise ConflictingKey(key, self._values[key], value)
            return
        for existing in self._values:
            if existing.startswith(key + ".") or key.startswith(existing + "."):
                raise ConflictingKey(key, self._values[existing], value)
        self._values[key] = value

    def __getitem__(self, key: str) -> Any:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def merge(self, other: Mapping[str, Any]) -> InputBundle:
        """Return a new bundle holding both key sets."""
        merged = InputBundle(self._values)
        for key, value in other.items():
            merged._set(key, value)
        return merged

    __or__ = merge

    def deferred(self) -> list[DeferredValue[Any]]:
        """Inputs that still stand for a not-yet-known value."""
        return [value for value in find_deferred(list(self._values.values())) if not value.done()]

    def nested(self) -> dict[str, Any]:
        """Nested values tree, deferred values left in place."""
        tree: dict[str, Any] = {}
        for key in sorted(self._values):
            *parents, leaf = key.split(".")
            branch = tree
            for part in parents:
                branch = branch.setdefault(part, {})
            branch[leaf] = self._values[key]
        return tree

    def to_tree(self, resolved: Mapping[str, Any] | None = None) -> dict[str, Any]:
        """
        Nested values tree built from resolved values only.

        ``resolved`` supplies values for keys by name; any other deferred
        value must already be settled (NotResolved is raised otherwise).
        """
        overrides = dict(resolved or {})
        flat = {key: overrides.get(key, value) for key, value in self._values.items()}
        return resolve_tree(InputBundle(flat).nested())

    def __repr__(self) -> str:
        return f"InputBundle({sorted(self._values)!r})"


# Resolvers

Handler = Callable[[V], Union[InputBundle, Mapping[str, Any]]]


class ConfigVariantResolver(Generic[V]):
    """Maps each tag of one configuration axis to the bundle it produces."""

    def __init__(self, axis: str, handlers: Mapping[str, Handler[V]] | None = None) -> None:
        self.axis = axis
        self._handlers: dict[str, Handler[V]] = {}
        for tag, handler in (handlers or {}).items():
            self.register(tag, handler)

    def register(self, tag: str, handler: Handler[V]) -> None:
        if tag in self._handlers:
            raise DuplicateIdentity(tag, scope=f"axis '{self.axis}'")
        self._handlers[tag] = handler

    def on(self, tag: str) -> Callable[[Handler[V]], Handler[V]]:
        """Decorator form of ``register``."""

        def decorator(handler: Handler[V]) -> Handler[V]:
            self.register(tag, handler)
            return handler

        return decorator

    @property
    def tags(self) -> frozenset[str]:
        return frozenset(self._handlers)

    def handles(self, tag: str) -> bool:
        return tag in self._handlers

    def require_exhaustive(self, tags: Iterable[str]) -> ConfigVariantResolver[V]:
        """Fail now if any declared tag of the union has no handler."""
        for tag in tags:
            if tag not in self._handlers:
                raise UnhandledVariant(self.axis, tag)
        return self

    def resolve(self, variant: V) -> InputBundle:
        tag = variant_tag(variant)
        handler = self._handlers.get(tag)
        if handler is None:
            raise UnhandledVariant(self.axis, tag)
        produced = handler(variant)
        bundle = produced if isinstance(produced, InputBundle) else InputBundle(produced)
        logger.debug("variant_resolved", axis=self.axis, tag=tag, keys=sorted(bundle))
        return bundle


def resolve_axes(*axes: tuple[ConfigVariantResolver[Any], Any]) -> InputBundle:
    """Resolve each (resolver, variant) pair independently and merge the bundles."""
    bundle = InputBundle()
    for resolver, variant in axes:
        bundle = bundle.merge(resolver.resolve(variant))
    return bundle


# Temporal chart axes


def _mysql_connection(variant: MySqlStorage, database: str) -> dict[str, Any]:
    return {
        "driver": "sql",
        "sql": {
            "driver": "mysql",
            "host": variant.host_name,
            "port": 3306,
            "database": database,
            "user": variant.login,
            "password": variant.password,
            "maxConns": 20,
            "maxConnLifetime": "1h",
        },
    }


def _cassandra_values(variant: CassandraStorage) -> dict[str, Any]:
    """Cluster size lands on the chart key ``cassandra.config.cluster_size`` (``cassandra.clusterSize``)."""
    if variant.cluster_size is None:
        return {}
    return {"cassandra.config.cluster_size": variant.cluster_size}


def _mysql_values(variant: MySqlStorage) -> dict[str, Any]:
    return {
        "server.config.persistence.default": _mysql_connection(variant, "temporal"),
        "server.config.persistence.visibility": _mysql_connection(variant, "temporal_visibility"),
        "cassandra.enabled": False,
    }


def _elasticsearch_values(variant: ElasticsearchVisibility) -> dict[str, Any]:
    if variant.host is None:
        return {"elasticsearch.enabled": True}
    return {
        "elasticsearch.enabled": True,
        "elasticsearch.external": True,
        "elasticsearch.host": variant.host,
        "elasticsearch.port": variant.port,
        "elasticsearch.version": variant.version,
    }


def storage_resolver() -> ConfigVariantResolver[StorageVariant]:
    """Chart values for the persistence backend."""
    resolver: ConfigVariantResolver[StorageVariant] = ConfigVariantResolver(
        "storage",
        {
            CassandraStorage.tag: _cassandra_values,  # type: ignore[dict-item]
            MySqlStorage.tag: _mysql_values,  # type: ignore[dict-item]
        },
    )
    return resolver.require_exhaustive(STORAGE_TAGS)


def visibility_resolver() -> ConfigVariantResolver[VisibilityVariant]:
    """Chart values for the visibility backend."""
    resolver: ConfigVariantResolver[VisibilityVariant] = ConfigVariantResolver(
        "visibility",
        {
            DefaultVisibility.tag: lambda variant: {"elasticsearch.enabled": False},
            ElasticsearchVisibility.tag: _elasticsearch_values,  # type: ignore[dict-item]
        },
    )
    return resolver.require_exhaustive(VISIBILITY_TAGS)


def store_secret_resolver() -> ConfigVariantResolver[StorageVariant]:
    """Contents of the default-store secret; empty when the backend needs none."""
    resolver: ConfigVariantResolver[StorageVariant] = ConfigVariantResolver(
        "store-secret",
        {
            CassandraStorage.tag: lambda variant: {},
            MySqlStorage.tag: lambda variant: {"password": variant.password},  # type: ignore[union-attr]
        },
    )
    return resolver.require_exhaustive(STORAGE_TAGS)
