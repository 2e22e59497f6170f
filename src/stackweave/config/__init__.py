"""
Stackweave configuration system.

Provides:
- Pydantic-based settings (environment variables, .env files)
- Per-stack YAML configuration files
- Typed configuration variants and the resolvers that turn them into inputs
"""

from stackweave.config.loader import ConfigLoader, get_config_path, load_config
from stackweave.config.settings import Settings, get_settings
from stackweave.config.stack import (
    ClusterSettings,
    DeploymentConfig,
    StackConfig,
    TemporalSettings,
    parse_storage,
    parse_visibility,
)
from stackweave.config.variants import (
    CassandraStorage,
    ConfigVariantResolver,
    DefaultVisibility,
    ElasticsearchVisibility,
    InputBundle,
    MySqlStorage,
    resolve_axes,
    storage_resolver,
    store_secret_resolver,
    visibility_resolver,
)

__all__ = [
    # Settings
    "Settings",
    "get_settings",
    # Stack config
    "StackConfig",
    "ClusterSettings",
    "TemporalSettings",
    "DeploymentConfig",
    "parse_storage",
    "parse_visibility",
    # Loader
    "ConfigLoader",
    "load_config",
    "get_config_path",
    # Variants
    "CassandraStorage",
    "MySqlStorage",
    "DefaultVisibility",
    "ElasticsearchVisibility",
    "InputBundle",
    "ConfigVariantResolver",
    "resolve_axes",
    "storage_resolver",
    "visibility_resolver",
    "store_secret_resolver",
]
