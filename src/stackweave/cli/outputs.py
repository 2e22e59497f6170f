"""
CLI commands for inspecting published outputs and available programs.
"""

from __future__ import annotations

import asyncio
import json

from stackweave.cli.ux import print_key_value, print_table, warning
from stackweave.config.settings import Settings, get_settings
from stackweave.outputs.publisher import render_stored
from stackweave.outputs.store import create_output_store
from stackweave.stacks.programs import list_programs


def outputs_command(
    deployment_id: str,
    *,
    show_secrets: bool = False,
    output_format: str = "text",
    settings: Settings | None = None,
) -> int:
    """Show the outputs a deployment last published."""
    settings = settings or get_settings()
    store = create_output_store(
        settings.output_store,
        output_dir=settings.output_dir,
        redis_url=settings.redis_url,
        redis_key_prefix=settings.redis_key_prefix,
    )
    stored = asyncio.run(store.list(deployment_id))
    rendered = render_stored(stored, show_secrets=show_secrets)

    if output_format == "json":
        print(json.dumps(rendered, indent=2, sort_keys=True, default=str))
        return 0 if stored else 1

    if not stored:
        warning(f"No outputs published by '{deployment_id}'")
        return 1
    print_key_value(rendered, title=f"Outputs of {deployment_id}")
    return 0


def programs_command() -> int:
    rows = [[program.name, program.description] for program in list_programs()]
    print_table("Programs", ["Name", "Description"], rows)
    return 0
