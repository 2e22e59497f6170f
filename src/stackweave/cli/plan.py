"""
CLI command for planning (dry-run) a deployment.
"""

from __future__ import annotations

import json

from stackweave.cli.ux import console, header, warning
from stackweave.composition.results import PlanResult
from stackweave.config.loader import load_config
from stackweave.config.settings import Settings
from stackweave.deployment import Deployment


def deployment_id_for(program: str, stack: str) -> str:
    return f"{program}/{stack}"


def print_plan_summary(plan: PlanResult) -> None:
    """Print plan summary grouped by owning component."""
    console.print()
    header(f"Plan: {plan.graph_name}")
    console.print()

    for message in plan.warnings:
        warning(message)

    if not plan.total_resources:
        console.print()
        return

    console.print("[bold]The following resources will be created, in order:[/bold]")
    console.print()
    for step in plan.steps:
        if step.kind == "component":
            console.print(f"  [highlight]▸ {step.identity}[/highlight]")
            continue
        indent = "     " if step.parent else "  "
        after = f" [muted](after {', '.join(step.depends_on)})[/muted]" if step.depends_on else ""
        console.print(f"{indent}[success]+[/success] {step.identity} [muted]{step.kind}[/muted]{after}")
    console.print()

    if plan.outputs:
        console.print(f"[bold]Outputs:[/bold] {', '.join(plan.outputs)}")
    console.print(f"[bold]Total:[/bold] {plan.total_resources} resources")
    console.print()


def print_plan_json(plan: PlanResult) -> None:
    print(json.dumps(plan.to_dict(), indent=2, default=str))


def plan_command(
    program: str,
    *,
    stack: str = "dev",
    config_path: str | None = None,
    deployment_id: str | None = None,
    output_format: str = "text",
    settings: Settings | None = None,
) -> int:
    """
    Preview what a deployment would provision (dry-run).

    Build-time errors (missing config, cycles, unhandled variants) propagate
    to the CLI error handler with their own exit codes.

    Returns:
        Exit code (0 for success)
    """
    stack_config = load_config(stack, config_path)
    deployment = Deployment(
        deployment_id or deployment_id_for(program, stack),
        program,
        stack_config,
        settings=settings,
    )
    result = deployment.plan()

    if output_format == "json":
        print_plan_json(result)
    else:
        print_plan_summary(result)
    return 0
