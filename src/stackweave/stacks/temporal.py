"""Temporal server release, with storage and visibility chosen by configuration."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from stackweave.composition.deferred import DeferredValue
from stackweave.composition.graph import Component, CompositionGraph
from stackweave.composition.node import ResourceNode
from stackweave.config.stack import TemporalSettings
from stackweave.config.variants import (
    InputBundle,
    resolve_axes,
    storage_resolver,
    store_secret_resolver,
    visibility_resolver,
)
from stackweave.core.errors import ProviderError
from stackweave.secrets import mark_sensitive
from stackweave.stacks._helpers import b64decode, b64encode, install_chart, provision, read_live

WEB_SERVICE = "helm-temporal-web"
FRONTEND_SERVICE = "helm-temporal-frontend"
GRAFANA_SECRET = "default/helm-grafana"

TEMPORAL_SERVICES = [
    {"name": FRONTEND_SERVICE, "type": "ClusterIP"},
    {"name": WEB_SERVICE, "type": "LoadBalancer"},
    {"name": "helm-grafana", "type": "ClusterIP"},
]


@dataclass
class TemporalRelease:
    component: Component
    chart: ResourceNode
    chart_created: DeferredValue[str]
    web_endpoint: DeferredValue[str]
    frontend_address: DeferredValue[str]
    grafana_password: DeferredValue[str]


def chart_values(settings: TemporalSettings, grafana_password: Any) -> InputBundle:
    """Values for the Temporal chart: fixed settings merged with both variant axes."""
    base = InputBundle(
        {
            "grafana.adminPassword": grafana_password,
            "web.service.type": "LoadBalancer",
            "server.nodeSelector.agentpool": "agentpool",
            "kafka.enabled": False,
        }
    )
    if settings.num_history_shards:
        base = base.merge({"server.config.numHistoryShards": settings.num_history_shards})
    return base.merge(
        resolve_axes(
            (storage_resolver(), settings.storage),
            (visibility_resolver(), settings.visibility),
        )
    )


def _grafana_secret(values: dict[str, Any]) -> dict[str, dict[str, Any]]:
    return {GRAFANA_SECRET: {"admin-password": values["grafana"]["adminPassword"]}}


def _web_address(state: dict[str, Any]) -> dict[str, Any]:
    ingress = state["services"][WEB_SERVICE]["status"]["loadBalancer"].get("ingress") or []
    if not ingress:
        raise ProviderError(f"No address assigned to service '{WEB_SERVICE}' yet")
    return {"ip": ingress[0]["ip"]}


def add_temporal(
    graph: CompositionGraph,
    name: str,
    *,
    settings: TemporalSettings,
    kubeconfig: Any,
    chart_path: str = "../../helm-charts",
    parent: str | None = None,
) -> TemporalRelease:
    comp = Component(graph, name, parent=parent)
    provider = comp.add(
        "k8s-provider",
        {"kubeconfig": kubeconfig, "suppress_deprecation_warnings": True},
        provision("kubernetes_provider"),
        outputs=["id"],
    )

    depends_on: list[str] = []
    secret_inputs = store_secret_resolver().resolve(settings.storage)
    if "password" in secret_inputs:
        password = mark_sensitive(secret_inputs["password"])
        secret = comp.add(
            "default-store-secret",
            {
                "provider": provider["id"],
                "metadata": {
                    "name": "temporal-default-store",
                    "namespace": "default",
                    "labels": {"app.kubernetes.io/name": "temporal"},
                },
                "type": "Opaque",
                "data": {"password": password.map(b64encode)},
            },
            provision("kubernetes_secret"),
            outputs=["id"],
        )
        depends_on.append(secret.identity)

    grafana_password = comp.add(
        "grafana-password",
        {"length": 12},
        provision("random_password"),
        sensitive_outputs=["result"],
    )

    values = chart_values(settings, grafana_password["result"])
    chart = comp.add(
        "chart",
        {
            "chart": chart_path,
            "version": settings.version,
            "values": values.nested(),
            "provider": provider["id"],
        },
        install_chart(services=TEMPORAL_SERVICES, secrets=_grafana_secret),
        outputs=["id", "name", "release", "services"],
        sensitive_outputs=["secrets"],
        depends_on=depends_on,
    )

    address = comp.add(
        "web-address",
        {"resource_name": chart["name"], "resource_id": chart["id"]},
        read_live("helm_chart", _web_address),
        outputs=["ip"],
        kind="read",
    )

    return TemporalRelease(
        component=comp,
        chart=chart,
        chart_created=chart["release"],
        web_endpoint=address["ip"].map(
            lambda ip: f"http://{ip}:8088", name=comp.qualify("web-endpoint")
        ),
        frontend_address=chart["services"].map(
            lambda services: f"{services[FRONTEND_SERVICE]['spec']['clusterIP']}:7233",
            name=comp.qualify("frontend-address"),
        ),
        grafana_password=chart["secrets"].map(
            lambda secrets: b64decode(secrets[GRAFANA_SECRET]["admin-password"]),
            name=comp.qualify("grafana-admin-password"),
        ),
    )
