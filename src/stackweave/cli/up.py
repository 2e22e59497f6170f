"""
CLI command for provisioning a deployment.
"""

from __future__ import annotations

import asyncio
import json

from stackweave.cli.plan import deployment_id_for
from stackweave.cli.ux import console, error, header, info, print_key_value, success, warning
from stackweave.composition.results import RunStatus
from stackweave.config.loader import load_config
from stackweave.config.settings import Settings
from stackweave.core.errors import ExitCode
from stackweave.deployment import Deployment, DeploymentResult


def print_run_summary(result: DeploymentResult) -> None:
    report = result.report
    header(f"Run: {report.graph_name} ({report.status.value})")

    for identity in report.succeeded:
        success(identity)
    for failure in report.failed:
        error(f"{failure.node}: {failure.cause}")
    for identity, root in report.skipped.items():
        warning(f"{identity} skipped ({root} did not complete)")
    for identity in report.cancelled:
        warning(f"{identity} cancelled")
    for identity in report.untouched:
        info(f"{identity} not started")

    if result.outputs:
        print_key_value(result.outputs, title="Outputs")
    console.print()
    console.print(
        f"[bold]Done:[/bold] {len(report.succeeded)} succeeded, {len(report.failed)} failed, "
        f"{len(report.skipped)} skipped in {report.duration_seconds:.1f}s"
    )


def exit_code_for(status: RunStatus) -> int:
    if status is RunStatus.SUCCEEDED:
        return ExitCode.SUCCESS
    if status is RunStatus.CANCELLED:
        return ExitCode.CANCELLED
    return ExitCode.PARTIAL


def up_command(
    program: str,
    *,
    stack: str = "dev",
    config_path: str | None = None,
    deployment_id: str | None = None,
    sequential: bool = False,
    max_concurrency: int | None = None,
    output_format: str = "text",
    settings: Settings | None = None,
) -> int:
    """
    Provision a deployment and publish its outputs.

    Returns:
        0 when every node succeeded, 1 when some failed or were skipped,
        2 when the run was cancelled
    """
    stack_config = load_config(stack, config_path)
    deployment = Deployment(
        deployment_id or deployment_id_for(program, stack),
        program,
        stack_config,
        settings=settings,
    )
    deployment.prepare()
    result = asyncio.run(deployment.up(sequential=sequential, max_concurrency=max_concurrency))

    if output_format == "json":
        print(json.dumps(result.to_dict(), indent=2, default=str))
    else:
        print_run_summary(result)
    return exit_code_for(result.report.status)
