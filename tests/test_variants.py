"""Tests for config/variants.py: tagged variants, resolvers and input bundles."""

from dataclasses import dataclass
from typing import ClassVar

import pytest
from stackweave.composition.deferred import DeferredValue
from stackweave.config.variants import (
    STORAGE_TAGS,
    CassandraStorage,
    ConfigVariantResolver,
    DefaultVisibility,
    ElasticsearchVisibility,
    InputBundle,
    MySqlStorage,
    resolve_axes,
    storage_resolver,
    store_secret_resolver,
    variant_tag,
    visibility_resolver,
)
from stackweave.core.errors import ConflictingKey, DuplicateIdentity, NotResolved, UnhandledVariant
from stackweave.secrets import Secret, mark_sensitive


@dataclass(frozen=True)
class PostgresStorage:
    host: str

    tag: ClassVar[str] = "postgres"


def _mysql(password="hunter2") -> MySqlStorage:
    return MySqlStorage(host_name="db.internal", login="temporal", password=password)


class TestStorageAxis:
    def test_cassandra_bundle_sets_cluster_size_only(self):
        bundle = storage_resolver().resolve(CassandraStorage(cluster_size=3))

        assert dict(bundle) == {"cassandra.config.cluster_size": 3}
        assert not any(key.startswith("server.config.persistence") for key in bundle)

    def test_cassandra_without_size_keeps_chart_defaults(self):
        assert len(storage_resolver().resolve(CassandraStorage())) == 0

    def test_mysql_bundle_configures_both_stores(self):
        bundle = storage_resolver().resolve(_mysql())

        default = bundle["server.config.persistence.default"]
        visibility = bundle["server.config.persistence.visibility"]
        assert default["sql"]["host"] == "db.internal"
        assert default["sql"]["database"] == "temporal"
        assert visibility["sql"]["database"] == "temporal_visibility"
        assert default["sql"]["port"] == 3306
        assert bundle["cassandra.enabled"] is False

    def test_unhandled_tag_rejected(self):
        with pytest.raises(UnhandledVariant) as exc_info:
            storage_resolver().resolve(PostgresStorage(host="pg"))

        assert exc_info.value.axis == "storage"
        assert exc_info.value.tag == "postgres"

    def test_store_secret_only_for_mysql(self):
        resolver = store_secret_resolver()

        assert dict(resolver.resolve(CassandraStorage(cluster_size=1))) == {}
        assert dict(resolver.resolve(_mysql("pw"))) == {"password": "pw"}


class TestVisibilityAxis:
    def test_default_disables_elasticsearch(self):
        bundle = visibility_resolver().resolve(DefaultVisibility())

        assert dict(bundle) == {"elasticsearch.enabled": False}

    def test_bundled_elasticsearch(self):
        bundle = visibility_resolver().resolve(ElasticsearchVisibility())

        assert dict(bundle) == {"elasticsearch.enabled": True}

    def test_external_elasticsearch(self):
        bundle = visibility_resolver().resolve(
            ElasticsearchVisibility(host="es.internal", port=9201, version="v6")
        )

        assert bundle["elasticsearch.external"] is True
        assert bundle["elasticsearch.host"] == "es.internal"
        assert bundle["elasticsearch.port"] == 9201
        assert bundle["elasticsearch.version"] == "v6"


class TestResolver:
    def test_duplicate_handler_rejected(self):
        resolver = ConfigVariantResolver("storage", {"cassandra": lambda v: {}})

        with pytest.raises(DuplicateIdentity):
            resolver.register("cassandra", lambda v: {})

    def test_decorator_registration(self):
        resolver = ConfigVariantResolver("storage")

        @resolver.on("postgres")
        def _postgres(variant):
            return {"postgres.host": variant.host}

        assert resolver.handles("postgres")
        assert dict(resolver.resolve(PostgresStorage(host="pg"))) == {"postgres.host": "pg"}

    def test_require_exhaustive_names_missing_tag(self):
        resolver = ConfigVariantResolver("storage", {"cassandra": lambda v: {}})

        with pytest.raises(UnhandledVariant) as exc_info:
            resolver.require_exhaustive(STORAGE_TAGS)

        assert exc_info.value.tag == "mysql"

    def test_builtin_resolvers_are_exhaustive(self):
        assert storage_resolver().tags == frozenset(STORAGE_TAGS)
        assert visibility_resolver().tags == frozenset({"default", "elasticsearch"})

    def test_untagged_object_is_a_type_error(self):
        with pytest.raises(TypeError):
            variant_tag(object())


class TestInputBundle:
    def test_axes_merge_independently(self):
        bundle = resolve_axes(
            (storage_resolver(), CassandraStorage(cluster_size=3)),
            (visibility_resolver(), ElasticsearchVisibility()),
        )

        assert dict(bundle) == {
            "cassandra.config.cluster_size": 3,
            "elasticsearch.enabled": True,
        }

    def test_conflicting_values_rejected(self):
        left = InputBundle({"cassandra.enabled": False})

        with pytest.raises(ConflictingKey) as exc_info:
            left.merge({"cassandra.enabled": True})

        assert exc_info.value.key == "cassandra.enabled"

    def test_identical_values_merge(self):
        merged = InputBundle({"kafka.enabled": False}) | {"kafka.enabled": False}

        assert dict(merged) == {"kafka.enabled": False}

    def test_leaf_and_prefix_clash(self):
        with pytest.raises(ConflictingKey):
            InputBundle({"cassandra": False, "cassandra.enabled": True})

    def test_same_deferred_value_merges_distinct_ones_conflict(self):
        value = DeferredValue("password")
        InputBundle({"pw": value}).merge({"pw": value})

        with pytest.raises(ConflictingKey):
            InputBundle({"pw": value}).merge({"pw": DeferredValue("other")})

    def test_invalid_key(self):
        with pytest.raises(ValueError):
            InputBundle({"server..config": 1})

    def test_merge_leaves_operands_untouched(self):
        left = InputBundle({"a.b": 1})
        left.merge({"a.c": 2})

        assert dict(left) == {"a.b": 1}

    def test_nested_tree(self):
        bundle = InputBundle({"server.config.numHistoryShards": 512, "server.replicaCount": 1})

        assert bundle.nested() == {"server": {"config": {"numHistoryShards": 512}, "replicaCount": 1}}

    def test_pending_inputs_listed(self):
        pending = DeferredValue("password")
        settled = DeferredValue("host")
        settled.resolve("db")
        bundle = InputBundle({"pw": pending, "host": settled, "port": 3306})

        assert bundle.deferred() == [pending]

    def test_to_tree_needs_resolved_values(self):
        pending = DeferredValue("password")
        bundle = storage_resolver().resolve(_mysql(password=pending))

        with pytest.raises(NotResolved):
            bundle.to_tree()

        pending.resolve("s3cret")
        tree = bundle.to_tree()
        assert tree["server"]["config"]["persistence"]["default"]["sql"]["password"] == "s3cret"

    def test_to_tree_with_explicit_resolution(self):
        bundle = InputBundle({"grafana.adminPassword": DeferredValue("pw")})

        assert bundle.to_tree({"grafana.adminPassword": "x"}) == {"grafana": {"adminPassword": "x"}}

    def test_sensitive_inputs_stay_wrapped(self):
        source = DeferredValue("password")
        bundle = storage_resolver().resolve(_mysql(password=mark_sensitive(source)))
        source.resolve("s3cret")

        tree = bundle.to_tree()
        value = tree["server"]["config"]["persistence"]["visibility"]["sql"]["password"]
        assert isinstance(value, Secret)
        assert str(value) == "[secret]"
