"""Stack programs built from the composition engine."""

from stackweave.stacks.programs import PROGRAMS, Program, ProgramContext, get_program, list_programs

__all__ = [
    "PROGRAMS",
    "Program",
    "ProgramContext",
    "get_program",
    "list_programs",
]
