"""
Unified error handling for stackweave.

Build-time errors are raised before any provisioning call is made and are
never retried. Run-time errors are recorded against the node that raised
them in the run report. Integration errors signal misuse of deferred values
or a missing cross-deployment output.

Exit Codes:
- 0: Success
- 1: Partial success (run finished with failed or skipped nodes)
- 2: Cancelled
- 10: Configuration error
- 11: Provisioning error (external backend failure)
- 12: Composition error (invalid graph or variant wiring)
- 13: Integration error
- 127: Unknown/internal error
"""

from __future__ import annotations

import functools
import sys
import traceback
from enum import IntEnum
from typing import Any, Callable, Iterable, TypeVar

import structlog

logger = structlog.get_logger()


class ExitCode(IntEnum):
    """Standardized exit codes for CLI commands."""

    SUCCESS = 0
    PARTIAL = 1
    CANCELLED = 2
    CONFIG_ERROR = 10
    PROVISIONING_ERROR = 11
    COMPOSITION_ERROR = 12
    INTEGRATION_ERROR = 13
    UNKNOWN_ERROR = 127


class StackweaveError(Exception):
    """Base exception for stackweave errors with exit code support."""

    exit_code: ExitCode = ExitCode.UNKNOWN_ERROR
    show_traceback: bool = False

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(StackweaveError):
    """Invalid settings, unknown backend or program, unreadable config file."""

    exit_code = ExitCode.CONFIG_ERROR


# Build-time errors


class BuildError(StackweaveError):
    """Raised while assembling a composition, before any side effect."""

    exit_code = ExitCode.COMPOSITION_ERROR


class CyclicDependency(BuildError):
    """Raised when node dependencies form a cycle."""

    def __init__(self, cycle: Iterable[str]):
        self.cycle = list(cycle)
        super().__init__(
            f"Cyclic dependency: {' -> '.join(self.cycle)}",
            {"cycle": self.cycle},
        )


class DuplicateIdentity(BuildError):
    """Raised when an identity is registered twice in one scope."""

    def __init__(self, identity: str, scope: str = "graph"):
        self.identity = identity
        super().__init__(
            f"Identity '{identity}' is already registered in {scope}",
            {"identity": identity, "scope": scope},
        )


class MissingDependency(BuildError):
    """Raised when a node refers to an identity or value the graph cannot provide."""

    def __init__(self, node: str, dependency: str):
        self.node = node
        self.dependency = dependency
        super().__init__(
            f"Node '{node}' depends on '{dependency}', which no node in the graph provides",
            {"node": node, "dependency": dependency},
        )


class MissingConfig(BuildError):
    """Raised when a required configuration key is absent."""

    exit_code = ExitCode.CONFIG_ERROR

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Missing required configuration key '{key}'", {"key": key})


class InvalidConfig(BuildError):
    """Raised when a configuration key holds a value of the wrong type."""

    exit_code = ExitCode.CONFIG_ERROR

    def __init__(self, key: str, expected: str, value: Any):
        self.key = key
        super().__init__(
            f"Configuration key '{key}' must be {expected}, got {value!r}",
            {"key": key, "expected": expected},
        )


class UnhandledVariant(BuildError):
    """Raised when a resolver receives a tag it was not built to handle."""

    def __init__(self, axis: str, tag: str):
        self.axis = axis
        self.tag = tag
        super().__init__(
            f"No handler for '{tag}' on configuration axis '{axis}'",
            {"axis": axis, "tag": tag},
        )


class ConflictingKey(BuildError):
    """Raised when merged input bundles disagree on a key."""

    def __init__(self, key: str, left: Any, right: Any):
        self.key = key
        super().__init__(
            f"Configuration key '{key}' set to conflicting values",
            {"key": key, "left": repr(left), "right": repr(right)},
        )


# Run-time errors


class ProviderError(StackweaveError):
    """Raised when the external provisioning backend fails."""

    exit_code = ExitCode.PROVISIONING_ERROR


class BackendCancelled(ProviderError):
    """Raised by a backend that aborted an outstanding call on request."""

    exit_code = ExitCode.CANCELLED


class RunError(StackweaveError):
    """Raised while a node is being provisioned."""

    exit_code = ExitCode.PROVISIONING_ERROR

    def __init__(self, node: str, message: str, details: dict[str, Any] | None = None):
        self.node = node
        super().__init__(message, {"node": node, **(details or {})})


class ProvisioningFailed(RunError):
    """Raised when a node's provisioning step fails."""

    def __init__(self, node: str, cause: BaseException | str):
        self.cause = cause
        super().__init__(node, f"Provisioning of '{node}' failed: {cause}")


class NodeTimeout(RunError):
    """Raised when a node exceeds its time budget."""

    def __init__(self, node: str, seconds: float):
        self.seconds = seconds
        super().__init__(
            node,
            f"Node '{node}' timed out after {seconds:g}s",
            {"timeout_seconds": seconds},
        )


class NodeSkipped(RunError):
    """Set on the outputs of a node that was not attempted."""

    def __init__(self, node: str, root: str):
        self.root = root
        super().__init__(
            node,
            f"Node '{node}' skipped because '{root}' did not complete",
            {"root": root},
        )


class NodeCancelled(RunError):
    """Raised by a producer that observed cancellation and aborted."""

    exit_code = ExitCode.CANCELLED

    def __init__(self, node: str):
        super().__init__(node, f"Node '{node}' was cancelled")


# Integration errors


class IntegrationError(StackweaveError):
    """Raised on misuse of deferred values or output lookups."""

    exit_code = ExitCode.INTEGRATION_ERROR


class AlreadyResolved(IntegrationError):
    """Raised when a deferred value is settled twice."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Deferred value '{name}' is already settled", {"value": name})


class NotResolved(IntegrationError):
    """Raised when a pending deferred value is read synchronously."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Deferred value '{name}' is still pending", {"value": name})


class NotFound(IntegrationError):
    """Raised when a cross-deployment output never becomes available."""

    def __init__(self, deployment_id: str, name: str, attempts: int):
        self.deployment_id = deployment_id
        self.name = name
        self.attempts = attempts
        super().__init__(
            f"Output '{name}' not published by deployment '{deployment_id}' "
            f"after {attempts} attempts",
            {"deployment": deployment_id, "output": name, "attempts": attempts},
        )


# Type variable for decorated functions
F = TypeVar("F", bound=Callable[..., int])


def main_with_error_handling(
    *,
    show_traceback: bool = False,
    log_errors: bool = True,
) -> Callable[[F], F]:
    """
    Decorator for CLI main functions that provides unified error handling.

    Catches exceptions and converts them to appropriate exit codes with
    consistent error reporting.

    Exit codes:
        - StackweaveError subclasses: Uses the error's exit_code
        - KeyboardInterrupt: Returns 130 (standard for SIGINT)
        - Other exceptions: Returns 127 (unknown error)
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> int:
            try:
                return func(*args, **kwargs)
            except StackweaveError as e:
                if log_errors:
                    logger.error(
                        "command_error",
                        error_type=type(e).__name__,
                        message=e.message,
                        exit_code=e.exit_code,
                        **e.details,
                    )
                if e.show_traceback or show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return e.exit_code
            except KeyboardInterrupt:
                if log_errors:
                    logger.info("command_interrupted")
                return 130
            except Exception as e:
                if log_errors:
                    logger.error(
                        "unexpected_error",
                        error_type=type(e).__name__,
                        message=str(e),
                        exit_code=ExitCode.UNKNOWN_ERROR,
                    )
                if show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return ExitCode.UNKNOWN_ERROR

        return wrapper  # type: ignore[return-value]

    return decorator


def format_error_message(error: StackweaveError) -> str:
    """Format an error message for display to users."""
    msg = error.message
    if error.details:
        detail_str = ", ".join(f"{k}={v}" for k, v in error.details.items())
        msg = f"{msg} ({detail_str})"
    return msg
