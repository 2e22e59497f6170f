"""Shared Kubernetes platform: cluster, registry and the supporting data/monitoring charts."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from stackweave.composition.deferred import DeferredValue
from stackweave.composition.graph import Component, CompositionGraph
from stackweave.config.stack import ClusterSettings
from stackweave.stacks._helpers import b64decode, install_chart, provision
from stackweave.stacks.bench import Registry, add_registry, grant_pull_access
from stackweave.stacks.cluster import AksCluster, NodePool, add_aks_cluster

PLATFORM_POOLS = (
    NodePool(name="casspool", target="cassandra", vm_size="Standard_DS4_v2", vm_count=3),
    NodePool(name="elasticpool", target="elastic", vm_size="Standard_DS2_v2", vm_count=3),
)

DASHBOARD_BASE = "https://raw.githubusercontent.com/temporalio/temporal-dashboards/master/dashboards"
DASHBOARDS = {
    "frontend-github": "frontend.json",
    "temporal-github": "temporal.json",
    "history-github": "history.json",
    "matching-github": "matching.json",
    "clusteroverview-github": "10000.json",
    "common-github": "common.json",
}


@dataclass
class K8sPlatform:
    component: Component
    cluster: AksCluster
    registry: Registry
    grafana_password: DeferredValue[str]


def _tolerate(target: str) -> list[dict[str, str]]:
    return [{"key": "target", "operator": "Equal", "value": target, "effect": "NoSchedule"}]


def grafana_values(admin_password: Any) -> dict[str, Any]:
    return {
        "replicas": 1,
        "adminPassword": admin_password,
        "testFramework": {"enabled": False},
        "rbac": {"create": False, "pspEnabled": False, "namespaced": True},
        "dashboardProviders": {
            "dashboardproviders.yaml": {
                "apiVersion": 1,
                "providers": [
                    {
                        "name": "default",
                        "orgId": 1,
                        "folder": "",
                        "type": "file",
                        "disableDeletion": False,
                        "editable": True,
                        "options": {"path": "/var/lib/grafana/dashboards/default"},
                    }
                ],
            }
        },
        "datasources": {
            "datasources.yaml": {
                "apiVersion": 1,
                "datasources": [
                    {
                        "name": "TemporalMetrics",
                        "type": "prometheus",
                        "url": "http://prometheus-server",
                        "access": "proxy",
                        "isDefault": True,
                    }
                ],
            }
        },
        "dashboards": {
            "default": {
                key: {"url": f"{DASHBOARD_BASE}/{file}", "datasource": "TemporalMetrics"}
                for key, file in DASHBOARDS.items()
            }
        },
    }


def add_k8s_platform(
    graph: CompositionGraph,
    *,
    resource_group_name: Any,
    settings: ClusterSettings,
    name: str = "platform",
) -> K8sPlatform:
    comp = Component(graph, name)
    cluster = add_aks_cluster(
        graph,
        comp.qualify("aks"),
        resource_group_name=resource_group_name,
        settings=settings,
        node_pools=PLATFORM_POOLS,
        parent=comp.name,
    )
    registry = add_registry(comp, resource_group_name=resource_group_name)
    grant_pull_access(comp, principal_id=cluster.principal_id, registry=registry)

    provider = comp.add(
        "k8s-provider",
        {"kubeconfig": cluster.kubeconfig, "suppress_deprecation_warnings": True},
        provision("kubernetes_provider"),
        outputs=["id"],
    )

    comp.add(
        "cassandra",
        {
            "chart": {"repo": "https://charts.helm.sh/incubator", "chart": "cassandra"},
            "version": "0.14.3",
            "values": {
                "service": {"type": "ClusterIP"},
                "selector": {"nodeSelector": {"target": "cassandra"}},
                "tolerations": _tolerate("cassandra"),
            },
            "provider": provider["id"],
        },
        install_chart(services=[{"name": "cass-cassandra", "type": "ClusterIP"}]),
        outputs=["release"],
    )
    comp.add(
        "elastic",
        {
            "chart": {"repo": "https://helm.elastic.co", "chart": "elasticsearch"},
            "version": "7.12.0",
            "values": {"nodeSelector": {"target": "elastic"}, "tolerations": _tolerate("elastic")},
            "provider": provider["id"],
        },
        install_chart(services=[{"name": "elasticsearch-master", "type": "ClusterIP"}]),
        outputs=["release"],
    )
    comp.add(
        "prometheus",
        {
            "chart": {
                "repo": "https://prometheus-community.github.io/helm-charts",
                "chart": "prometheus",
            },
            "version": "11.0.4",
            "values": {},
            "provider": provider["id"],
        },
        install_chart(services=[{"name": "prometheus-server", "type": "ClusterIP"}]),
        outputs=["release"],
    )

    password = comp.add(
        "grafana-password",
        {"length": 12},
        provision("random_password"),
        sensitive_outputs=["result"],
    )
    grafana = comp.add(
        "grafana",
        {
            "chart": {"repo": "https://grafana.github.io/helm-charts", "chart": "grafana"},
            "version": "5.0.10",
            "values": grafana_values(password["result"]),
            "provider": provider["id"],
        },
        install_chart(
            services=[{"name": "grafana", "type": "ClusterIP"}],
            secrets=lambda values: {"default/grafana": {"admin-password": values["adminPassword"]}},
        ),
        outputs=["release"],
        sensitive_outputs=["secrets"],
    )

    return K8sPlatform(
        component=comp,
        cluster=cluster,
        registry=registry,
        grafana_password=grafana["secrets"].map(
            lambda secrets: b64decode(secrets["default/grafana"]["admin-password"]),
            name=comp.qualify("grafana-admin-password"),
        ),
    )
