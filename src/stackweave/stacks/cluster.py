"""Managed Kubernetes cluster with its identity, credentials and monitoring."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence

from stackweave.composition.deferred import DeferredValue, as_deferred
from stackweave.composition.graph import Component, CompositionGraph
from stackweave.composition.node import ResourceNode
from stackweave.config.stack import ClusterSettings
from stackweave.stacks._helpers import b64decode, provision


@dataclass(frozen=True)
class NodePool:
    """Extra node pool reserved (through a taint) for one workload."""

    name: str
    target: str
    vm_size: str
    vm_count: int


@dataclass
class AksCluster:
    component: Component
    cluster: ResourceNode
    name: DeferredValue[str]
    kubeconfig: DeferredValue[str]
    principal_id: DeferredValue[str]
    workspace: ResourceNode


def _agent_pools(settings: ClusterSettings, node_pools: Sequence[NodePool]) -> list[dict[str, Any]]:
    pools: list[dict[str, Any]] = [
        {
            "name": "agentpool",
            "count": settings.vm_count,
            "max_pods": 110,
            "mode": "System",
            "os_disk_size_gb": 30,
            "os_type": "Linux",
            "type": "VirtualMachineScaleSets",
            "vm_size": settings.vm_size,
        }
    ]
    for pool in node_pools:
        pools.append(
            {
                "name": pool.name,
                "count": pool.vm_count,
                "max_pods": 110,
                "mode": "User",
                "os_disk_size_gb": 30,
                "os_type": "Linux",
                "type": "VirtualMachineScaleSets",
                "vm_size": pool.vm_size,
                "node_labels": {"target": pool.target},
                "node_taints": [f"target={pool.target}:NoSchedule"],
            }
        )
    return pools


def add_aks_cluster(
    graph: CompositionGraph,
    name: str,
    *,
    resource_group_name: Any,
    settings: ClusterSettings,
    node_pools: Sequence[NodePool] = (),
    parent: str | None = None,
) -> AksCluster:
    """
    Register the cluster component.

    The cluster runs under its own service principal whose password is
    generated here and never leaves the graph unredacted. The kubeconfig is
    read back from the cluster's user credentials and is sensitive.
    """
    comp = Component(graph, name, parent=parent)
    rg = as_deferred(resource_group_name)

    ad_app = comp.add("ad-app", {}, provision("ad_application"), outputs=["application_id"])
    sp = comp.add(
        "service-principal",
        {"application_id": ad_app["application_id"]},
        provision("service_principal"),
        outputs=["id"],
    )
    password = comp.add(
        "password",
        {"length": 20, "special": True},
        provision("random_password"),
        sensitive_outputs=["result"],
    )
    sp_password = comp.add(
        "service-principal-password",
        {
            "service_principal_id": sp["id"],
            "value": password["result"],
            "end_date": "2099-01-01T00:00:00Z",
        },
        provision("service_principal_password"),
        sensitive_outputs=["value"],
    )
    ssh_key = comp.add(
        "ssh-key",
        {"algorithm": "RSA", "rsa_bits": 4096},
        provision("tls_private_key"),
        outputs=["public_key_openssh"],
    )

    cluster_name = rg.map(lambda value: f"{value}-aks", name=comp.qualify("cluster-name"))
    cluster = comp.add(
        "managed-cluster",
        {
            "resource_group_name": rg,
            "resource_name": cluster_name,
            "dns_prefix": rg.map(lambda value: f"{value}aks"),
            "node_resource_group": cluster_name.map(lambda value: f"MC_{value}"),
            "kubernetes_version": settings.kubernetes_version,
            "enable_rbac": True,
            "identity": {"type": "SystemAssigned"},
            "addon_profiles": {"KubeDashboard": {"enabled": True}},
            "agent_pool_profiles": _agent_pools(settings, node_pools),
            "linux_profile": {
                "admin_username": "adminuser",
                "ssh": {"public_keys": [{"key_data": ssh_key["public_key_openssh"]}]},
            },
            "service_principal_profile": {
                "client_id": ad_app["application_id"],
                "secret": sp_password["value"],
            },
        },
        provision("managed_cluster"),
        outputs=["name", "identity_profile"],
    )

    credentials = comp.add(
        "user-credentials",
        {"resource_group_name": rg, "resource_name": cluster["name"]},
        provision("cluster_credentials"),
        sensitive_outputs=["kubeconfigs"],
    )
    kubeconfig = credentials["kubeconfigs"].map(
        lambda kubeconfigs: b64decode(kubeconfigs[0]["value"]),
        name=comp.qualify("kubeconfig"),
    )
    principal_id = cluster["identity_profile"].map(
        lambda profile: profile["kubeletidentity"]["object_id"],
        name=comp.qualify("principal-id"),
    )

    workspace = comp.add(
        "workspace",
        {
            "resource_group_name": rg,
            "workspace_name": rg,
            "retention_in_days": 30,
            "sku": {"name": "PerGB2018"},
        },
        provision("log_analytics_workspace"),
        outputs=["id", "name"],
    )
    solution_name = workspace["name"].map(lambda value: f"ContainerInsights({value})")
    comp.add(
        "container-insights",
        {
            "solution_name": solution_name,
            "resource_group_name": rg,
            "properties": {"workspace_resource_id": workspace["id"]},
            "plan": {
                "name": solution_name,
                "publisher": "Microsoft",
                "product": "OMSGallery/ContainerInsights",
                "promotion_code": "",
            },
        },
        provision("insights_solution"),
        outputs=["id"],
    )

    return AksCluster(
        component=comp,
        cluster=cluster,
        name=cluster["name"],
        kubeconfig=kubeconfig,
        principal_id=principal_id,
        workspace=workspace,
    )
