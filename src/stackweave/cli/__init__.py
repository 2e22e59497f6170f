"""
CLI commands for stackweave.
"""

from stackweave.cli.outputs import outputs_command, programs_command
from stackweave.cli.plan import plan_command
from stackweave.cli.up import up_command

__all__ = [
    "outputs_command",
    "plan_command",
    "programs_command",
    "up_command",
]
