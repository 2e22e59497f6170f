"""Benchmark workload: container registry, image and chart release."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from stackweave.composition.deferred import DeferredValue, as_deferred
from stackweave.composition.graph import Component, CompositionGraph
from stackweave.composition.node import ResourceNode
from stackweave.stacks._helpers import install_chart, provision

BENCH_IMAGE = "temporal-bench-go"

# Built-in AcrPull role definition
ACR_PULL_ROLE = "7f951dda-4ed3-4680-a7ca-43fe172d538d"


@dataclass
class Registry:
    node: ResourceNode
    login_server: DeferredValue[str]
    admin_username: DeferredValue[str]
    admin_password: DeferredValue[str]


@dataclass
class BenchRelease:
    component: Component
    image_name: DeferredValue[str]
    chart: ResourceNode
    registry: Registry | None = None


def add_registry(comp: Component, *, resource_group_name: Any, registry_name: Any = None) -> Registry:
    """Basic-tier registry with admin credentials read back for image pushes."""
    rg = as_deferred(resource_group_name)
    if registry_name is None:
        registry_name = rg.map(lambda value: value.replace("-", ""), name=comp.qualify("registry-name"))
    registry = comp.add(
        "registry",
        {
            "resource_group_name": rg,
            "registry_name": registry_name,
            "sku": {"name": "Basic"},
            "admin_user_enabled": True,
        },
        provision("container_registry"),
        outputs=["id", "name", "login_server"],
    )
    credentials = comp.add(
        "registry-credentials",
        {"resource_group_name": rg, "registry_name": registry["name"]},
        provision("registry_credentials"),
        outputs=["username"],
        sensitive_outputs=["passwords"],
    )
    return Registry(
        node=registry,
        login_server=registry["login_server"],
        admin_username=credentials["username"],
        admin_password=credentials["passwords"].map(
            lambda passwords: passwords[0]["value"], name=comp.qualify("registry-password")
        ),
    )


def grant_pull_access(comp: Component, *, principal_id: Any, registry: Registry) -> ResourceNode:
    """Let the cluster's kubelet identity pull from the registry."""
    client_config = comp.add("client-config", {}, provision("client_config"), outputs=["subscription_id"])
    role_name = comp.add("role-name", {}, provision("random_uuid"), outputs=["result"])
    return comp.add(
        "access-from-cluster",
        {
            "principal_id": principal_id,
            "principal_type": "ServicePrincipal",
            "role_assignment_name": role_name["result"],
            "role_definition_id": client_config["subscription_id"].map(
                lambda subscription: (
                    f"/subscriptions/{subscription}/providers/"
                    f"Microsoft.Authorization/roleDefinitions/{ACR_PULL_ROLE}"
                )
            ),
            "scope": registry.node["id"],
        },
        provision("role_assignment"),
        outputs=["id"],
    )


def add_bench_release(
    comp: Component,
    *,
    kubeconfig: Any,
    login_server: Any,
    username: Any,
    password: Any,
    temporal_frontend: Any,
    chart_path: str = "../helm-chart",
    build_context: str = "../",
    depends_on: list[str] | None = None,
) -> BenchRelease:
    """Build and push the benchmark image, then install its chart."""
    provider = comp.add(
        "k8s-provider",
        {"kubeconfig": kubeconfig, "suppress_deprecation_warnings": True},
        provision("kubernetes_provider"),
        outputs=["id"],
    )
    server = as_deferred(login_server)
    image = comp.add(
        BENCH_IMAGE,
        {
            "image_name": server.map(lambda value: f"{value}/{BENCH_IMAGE}"),
            "build": {"context": build_context},
            "registry": {"server": server, "username": username, "password": password},
        },
        provision("docker_image"),
        outputs=["image_name"],
    )
    image_name = image["image_name"]
    chart = comp.add(
        "chart",
        {
            "chart": chart_path,
            "values": {
                "image": {
                    "repository": image_name.map(lambda value: value.rsplit(":", 1)[0]),
                    "tag": image_name.map(lambda value: value.rsplit(":", 1)[1]),
                },
                "tests": {
                    "frontendAddress": temporal_frontend,
                    "namespaceName": "default",
                },
            },
            "provider": provider["id"],
        },
        install_chart(),
        outputs=["id", "release"],
        depends_on=depends_on or (),
    )
    return BenchRelease(component=comp, image_name=image_name, chart=chart)


def add_bench(
    graph: CompositionGraph,
    name: str,
    *,
    resource_group_name: Any,
    kubeconfig: Any,
    principal_id: Any,
    temporal_frontend: Any,
    parent: str | None = None,
) -> BenchRelease:
    comp = Component(graph, name, parent=parent)
    registry = add_registry(comp, resource_group_name=resource_group_name)
    access = grant_pull_access(comp, principal_id=principal_id, registry=registry)
    release = add_bench_release(
        comp,
        kubeconfig=kubeconfig,
        login_server=registry.login_server,
        username=registry.admin_username,
        password=registry.admin_password,
        temporal_frontend=temporal_frontend,
        depends_on=[access.identity],
    )
    release.registry = registry
    return release
