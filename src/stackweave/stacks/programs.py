"""
Deployment programs.

A program declares the resources and outputs of one kind of deployment into
a fresh graph. Everything it needs comes in through ``ProgramContext``; no
program reads global state.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, List

from stackweave.composition.graph import CompositionGraph
from stackweave.config.settings import Settings
from stackweave.config.stack import ClusterSettings, DeploymentConfig, StackConfig, TemporalSettings
from stackweave.core.errors import ConfigurationError
from stackweave.outputs.publisher import StackOutputPublisher, StackReference
from stackweave.outputs.store import OutputStore
from stackweave.stacks._helpers import provision
from stackweave.stacks.bench import add_bench, add_bench_release
from stackweave.stacks.cluster import add_aks_cluster
from stackweave.stacks.k8s import add_k8s_platform
from stackweave.stacks.temporal import add_temporal


@dataclass
class ProgramContext:
    graph: CompositionGraph
    config: StackConfig
    publisher: StackOutputPublisher
    store: OutputStore
    settings: Settings

    def reference(self, config_key: str) -> StackReference:
        """Reference to the deployment named by a config key (e.g. ``k8s-stack-ref``)."""
        return StackReference(
            self.graph,
            str(self.config.require(config_key)),
            self.store,
            max_attempts=self.settings.lookup_max_attempts,
            wait_seconds=self.settings.lookup_wait_seconds,
        )


@dataclass(frozen=True)
class Program:
    name: str
    description: str
    build: Callable[[ProgramContext], None]


def _all_in_one(ctx: ProgramContext) -> None:
    config = DeploymentConfig.from_stack_config(ctx.config)
    graph = ctx.graph

    suffix = graph.node(
        "resourcegroup-name",
        {"length": 6, "special": False, "upper": False},
        provision("random_string"),
        outputs=["result"],
    )
    resource_group = graph.node(
        "resourceGroup",
        {
            "resource_group_name": suffix["result"].map(lambda value: f"t-{value}"),
            "tags": {"Owner": config.owner} if config.owner else {},
        },
        provision("resource_group"),
        outputs=["name"],
    )

    cluster = add_aks_cluster(
        graph, "aks", resource_group_name=resource_group["name"], settings=config.cluster
    )
    temporal = add_temporal(
        graph, "temporal", settings=config.temporal, kubeconfig=cluster.kubeconfig
    )
    add_bench(
        graph,
        "bench",
        resource_group_name=resource_group["name"],
        kubeconfig=cluster.kubeconfig,
        principal_id=cluster.principal_id,
        temporal_frontend=temporal.frontend_address,
    )

    ctx.publisher.publish("grafanaPassword", temporal.grafana_password)
    ctx.publisher.publish(
        "endpoints", {"web": temporal.web_endpoint, "grafana": "http://localhost:8081"}
    )
    ctx.publisher.publish(
        "kubectlCommands",
        {
            "frontendPortForward": "kubectl port-forward services/helm-temporal-frontend 7000:7233",
            "grafanaPortForward": "kubectl port-forward services/helm-grafana 8081:80",
            "elasticSearchPortForward": "kubectl port-forward services/elasticsearch-master 9200:9200",
            "logs": "kubectl logs -l app.kubernetes.io/name=temporal-bench --follow",
        },
    )


def _k8s(ctx: ProgramContext) -> None:
    config = ctx.config
    settings = ClusterSettings(
        kubernetes_version=str(config.get("aks.version", "1.18.14")),
        vm_size=str(config.get("aks.vmsize", "Standard_DS2_v2")),
        vm_count=config.get_int("aks.vmcount", 3) or 3,
    )
    resource_group = ctx.graph.node(
        "resourceGroup",
        {"resource_group_name": str(config.get("resourceGroupName", "temporal-k8s"))},
        provision("resource_group"),
        outputs=["name"],
    )
    platform = add_k8s_platform(
        ctx.graph, resource_group_name=resource_group["name"], settings=settings
    )

    ctx.publisher.publish("kubeconfig", platform.cluster.kubeconfig)
    ctx.publisher.publish("registryLoginServer", platform.registry.login_server)
    ctx.publisher.publish("registryAdminUsername", platform.registry.admin_username)
    ctx.publisher.publish("registryAdminPassword", platform.registry.admin_password)
    ctx.publisher.publish("grafanaPassword", platform.grafana_password)


def _temporal(ctx: ProgramContext) -> None:
    settings = TemporalSettings.from_stack_config(ctx.config)
    k8s = ctx.reference("k8s-stack-ref")

    temporal = add_temporal(
        ctx.graph,
        "temporal",
        settings=settings,
        kubeconfig=k8s.require_output("kubeconfig", sensitive=True),
    )

    ctx.publisher.publish("frontendAddress", temporal.frontend_address)
    ctx.publisher.publish(
        "endpoints", {"web": temporal.web_endpoint, "grafana": "http://localhost:8081"}
    )
    ctx.publisher.publish(
        "kubectlCommands",
        {
            "frontendPortForward": "kubectl port-forward services/helm-temporal-frontend 7000:7233",
            "grafanaPortForward": "kubectl port-forward services/grafana 8081:80",
            "prometheusPortForward": "kubectl port-forward services/prometheus-server 9090:80",
            "elasticSearchPortForward": "kubectl port-forward services/elasticsearch-master 9200:9200",
            "cassandraPortForward": "kubectl port-forward services/cass-cassandra 9042:9042",
            "logs": "kubectl logs -l app.kubernetes.io/name=temporal-bench --follow",
        },
    )


def _bench(ctx: ProgramContext) -> None:
    k8s = ctx.reference("k8s-stack-ref")
    temporal = ctx.reference("temporal-stack-ref")

    release = add_bench_release(
        ctx.graph.component("bench"),
        kubeconfig=k8s.require_output("kubeconfig", sensitive=True),
        login_server=k8s.require_output("registryLoginServer"),
        username=k8s.require_output("registryAdminUsername"),
        password=k8s.require_output("registryAdminPassword", sensitive=True),
        temporal_frontend=temporal.require_output("frontendAddress"),
        chart_path="../../helm-chart",
        build_context="../../worker/",
    )
    ctx.publisher.publish("benchImage", release.image_name)


PROGRAMS: Dict[str, Program] = {
    program.name: program
    for program in (
        Program(
            "all-in-one",
            "Resource group, cluster, Temporal and the benchmark in one deployment",
            _all_in_one,
        ),
        Program("k8s", "Shared cluster, registry and data/monitoring charts", _k8s),
        Program("temporal", "Temporal release on the cluster of a k8s deployment", _temporal),
        Program("bench", "Benchmark workload against a temporal deployment", _bench),
    )
}


def get_program(name: str) -> Program:
    program = PROGRAMS.get(name)
    if program is None:
        raise ConfigurationError(f"Unknown program '{name}'", {"available": sorted(PROGRAMS)})
    return program


def list_programs() -> List[Program]:
    return list(PROGRAMS.values())
