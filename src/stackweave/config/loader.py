"""
Stack configuration file loading.

Search order:
1. Explicit path (--config flag)
2. .stackweave/<stack>.yaml (project root)
3. ~/.stackweave/<stack>.yaml (user home)
4. Empty configuration (required keys then fail with MissingConfig)

A file holds a ``config:`` mapping. Keys may carry a ``<project>:`` prefix,
which is stripped, so ``temporal-bench:aks.version`` and ``aks.version``
address the same setting.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import structlog
import yaml

from stackweave.config.stack import StackConfig
from stackweave.core.errors import ConfigurationError

logger = structlog.get_logger()


def get_config_path(stack: str = "dev", explicit_path: str | Path | None = None) -> Path | None:
    """
    Find the configuration file for a stack.

    Returns:
        Path to config file or None if not found
    """
    if explicit_path:
        path = Path(explicit_path)
        if path.exists():
            return path
        return None

    cwd_config = Path.cwd() / ".stackweave" / f"{stack}.yaml"
    if cwd_config.exists():
        return cwd_config

    home_config = Path.home() / ".stackweave" / f"{stack}.yaml"
    if home_config.exists():
        return home_config

    return None


def _strip_project(key: str) -> str:
    _, sep, rest = key.partition(":")
    return rest if sep else key


class ConfigLoader:
    """Loads a stack's configuration from YAML."""

    def __init__(self, stack: str = "dev", config_path: Path | None = None):
        self.stack = stack
        self.config_path = config_path or get_config_path(stack)

    def load(self) -> StackConfig:
        """Load configuration from file, or an empty config if there is none."""
        if self.config_path and self.config_path.exists():
            return self._load_from_file(self.config_path)
        logger.debug("no_stack_config", stack=self.stack)
        return StackConfig(stack=self.stack)

    def _load_from_file(self, path: Path) -> StackConfig:
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(
                f"Cannot read stack configuration {path}", {"path": str(path), "error": str(e)}
            ) from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"Stack configuration {path} is not a mapping", {"path": str(path)})

        section: Any = data.get("config", {}) or {}
        if not isinstance(section, dict):
            raise ConfigurationError(f"'config' in {path} is not a mapping", {"path": str(path)})

        values = {_strip_project(str(key)): value for key, value in section.items()}
        logger.debug("loaded_config", path=str(path), stack=self.stack, keys=len(values))
        return StackConfig(values, stack=self.stack)


def load_config(stack: str = "dev", path: str | Path | None = None) -> StackConfig:
    """
    Convenience function to load a stack configuration.

    Args:
        stack: Stack name used to locate the file
        path: Optional explicit config file path

    Returns:
        StackConfig instance
    """
    if path:
        config_path = Path(path)
        if not config_path.exists():
            raise ConfigurationError(f"Config file not found: {config_path}", {"path": str(config_path)})
    else:
        config_path = get_config_path(stack)
    return ConfigLoader(stack, config_path).load()
