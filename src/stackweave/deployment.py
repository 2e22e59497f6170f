"""
Deployment facade.

Ties a program, its stack configuration and the runtime collaborators
(backend, chart renderer, output store, settings) together:

- ``prepare`` builds and validates the graph; every build-time error
  surfaces here, before any backend call.
- ``plan`` previews the graph without touching the backend.
- ``up`` runs the graph and publishes the outputs that resolved.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

import structlog

from stackweave.composition.graph import CompositionGraph
from stackweave.composition.plan_builder import PlanBuilder
from stackweave.composition.results import PlanResult, RunReport
from stackweave.config.settings import Settings, get_settings
from stackweave.config.stack import StackConfig
from stackweave.core.errors import BuildError
from stackweave.outputs.publisher import FlushResult, StackOutputPublisher
from stackweave.outputs.store import OutputStore, create_output_store
from stackweave.providers.base import ChartRenderer, ProvisioningBackend
from stackweave.providers.charts import ValuesRenderer
from stackweave.providers.registry import create_backend
from stackweave.stacks.programs import Program, ProgramContext, get_program

logger = structlog.get_logger()


@dataclass
class DeploymentResult:
    report: RunReport
    outputs: dict[str, Any]
    published: FlushResult

    @property
    def success(self) -> bool:
        return self.report.success

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.report.to_dict(),
            "outputs": self.outputs,
            "published": self.published.written,
            "unpublished": {**self.published.failed, **{name: "pending" for name in self.published.pending}},
        }


class Deployment:
    """One deployment of a program with one stack configuration."""

    def __init__(
        self,
        deployment_id: str,
        program: Program | str,
        stack_config: StackConfig,
        *,
        backend: ProvisioningBackend | None = None,
        renderer: ChartRenderer | None = None,
        store: OutputStore | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.deployment_id = deployment_id
        self.program = get_program(program) if isinstance(program, str) else program
        self.stack_config = stack_config
        self.settings = settings or get_settings()
        self._backend = backend
        self.renderer = renderer or ValuesRenderer()
        self.store = store or create_output_store(
            self.settings.output_store,
            output_dir=self.settings.output_dir,
            redis_url=self.settings.redis_url,
            redis_key_prefix=self.settings.redis_key_prefix,
        )
        self.publisher = StackOutputPublisher(deployment_id, self.store)
        self._graph: CompositionGraph | None = None
        self._ran = False

    @property
    def backend(self) -> ProvisioningBackend:
        if self._backend is None:
            self._backend = create_backend(self.settings.backend)
        return self._backend

    def prepare(self) -> CompositionGraph:
        """Declare the program into a graph and validate it."""
        if self._graph is None:
            graph = CompositionGraph(self.deployment_id)
            self.program.build(
                ProgramContext(
                    graph=graph,
                    config=self.stack_config,
                    publisher=self.publisher,
                    store=self.store,
                    settings=self.settings,
                )
            )
            graph.build()
            logger.info(
                "deployment_prepared",
                deployment=self.deployment_id,
                program=self.program.name,
                nodes=len(graph),
                outputs=self.publisher.names(),
            )
            self._graph = graph
        return self._graph

    def plan(self) -> PlanResult:
        return PlanBuilder(self.prepare()).build(outputs=self.publisher.names())

    async def up(
        self,
        *,
        sequential: bool = False,
        max_concurrency: int | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> DeploymentResult:
        """Provision the graph and publish every output that resolved."""
        graph = self.prepare()
        if self._ran:
            raise BuildError(
                f"Deployment '{self.deployment_id}' has already run; create a new one to run again"
            )
        self._ran = True

        report = await graph.run(
            self.backend,
            renderer=self.renderer,
            sequential=sequential,
            max_concurrency=max_concurrency or self.settings.max_concurrency,
            default_timeout=self.settings.node_timeout_seconds,
            cancel_event=cancel_event,
        )
        published = await self.publisher.flush()
        return DeploymentResult(report=report, outputs=self.publisher.render(), published=published)
