from __future__ import annotations

import argparse
from typing import Sequence

from stackweave.config.settings import get_settings
from stackweave.core.errors import main_with_error_handling
from stackweave.logging import configure_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stackweave", description="Staged infrastructure composition"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("programs", help="List available deployment programs")

    def add_deployment_args(sub: argparse.ArgumentParser) -> None:
        sub.add_argument("program", help="Program to deploy (see 'stackweave programs')")
        sub.add_argument("--stack", default="dev", help="Stack name (default: dev)")
        sub.add_argument("--config", dest="config_path", help="Path to the stack config file")
        sub.add_argument(
            "--deployment-id", help="Deployment id (default: <program>/<stack>)"
        )
        sub.add_argument("--output", choices=["text", "json"], default="text", help="Output format")

    plan_parser = subparsers.add_parser("plan", help="Preview what a deployment would provision")
    add_deployment_args(plan_parser)

    up_parser = subparsers.add_parser("up", help="Provision a deployment and publish its outputs")
    add_deployment_args(up_parser)
    up_parser.add_argument(
        "--sequential", action="store_true", help="Provision one node at a time"
    )
    up_parser.add_argument(
        "--max-concurrency", type=int, help="Upper bound on nodes provisioned at once"
    )

    outputs_parser = subparsers.add_parser("outputs", help="Show published outputs")
    outputs_parser.add_argument("deployment_id", help="Deployment id, e.g. k8s/dev")
    outputs_parser.add_argument(
        "--show-secrets", action="store_true", help="Print sensitive values in clear text"
    )
    outputs_parser.add_argument("--output", choices=["text", "json"], default="text")

    return parser


@main_with_error_handling()
def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = get_settings()
    configure_logging("DEBUG" if args.verbose else settings.log_level, json=settings.log_json)

    if args.command == "programs":
        from stackweave.cli.outputs import programs_command

        return programs_command()

    if args.command == "plan":
        from stackweave.cli.plan import plan_command

        return plan_command(
            args.program,
            stack=args.stack,
            config_path=args.config_path,
            deployment_id=args.deployment_id,
            output_format=args.output,
        )

    if args.command == "up":
        from stackweave.cli.up import up_command

        return up_command(
            args.program,
            stack=args.stack,
            config_path=args.config_path,
            deployment_id=args.deployment_id,
            sequential=args.sequential,
            max_concurrency=args.max_concurrency,
            output_format=args.output,
        )

    if args.command == "outputs":
        from stackweave.cli.outputs import outputs_command

        return outputs_command(
            args.deployment_id,
            show_secrets=args.show_secrets,
            output_format=args.output,
        )

    parser.print_help()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
