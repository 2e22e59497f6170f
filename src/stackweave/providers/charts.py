"""Values-tree renderer for chart releases."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Any, Mapping

import structlog
import yaml

from stackweave.composition.deferred import DeferredValue
from stackweave.secrets import Secret

logger = structlog.get_logger()


def _check_resolved(tree: Any, path: str = "") -> None:
    if isinstance(tree, DeferredValue):
        raise ValueError(f"Values tree holds unresolved value '{tree.name}' at '{path or '.'}'")
    if isinstance(tree, Secret):
        raise ValueError(f"Values tree holds an unrevealed secret at '{path or '.'}'")
    if isinstance(tree, dict):
        for key, item in tree.items():
            _check_resolved(item, f"{path}.{key}" if path else str(key))
    elif isinstance(tree, (list, tuple)):
        for index, item in enumerate(tree):
            _check_resolved(item, f"{path}[{index}]")


class ValuesRenderer:
    """
    Renders the values handed to a chart into a single ConfigMap manifest.

    Templating itself is left to the chart tooling; this renderer only
    guarantees that what reaches it is plain, resolved data.
    """

    def render(self, template_path: str, values: Mapping[str, Any]) -> list[dict[str, Any]]:
        _check_resolved(dict(values))
        chart = PurePosixPath(template_path).name or "chart"
        body = yaml.safe_dump(dict(values), default_flow_style=False, sort_keys=True)
        logger.debug("chart_rendered", template=template_path, size=len(body))
        return [
            {
                "apiVersion": "v1",
                "kind": "ConfigMap",
                "metadata": {
                    "name": f"{chart}-values",
                    "annotations": {"stackweave/template": template_path},
                },
                "data": {"values.yaml": body},
            }
        ]
