"""Core modules for stackweave - centralized definitions and utilities."""

from stackweave.core.errors import (
    AlreadyResolved,
    BackendCancelled,
    BuildError,
    ConfigurationError,
    ConflictingKey,
    CyclicDependency,
    DuplicateIdentity,
    ExitCode,
    IntegrationError,
    InvalidConfig,
    MissingConfig,
    MissingDependency,
    NodeCancelled,
    NodeSkipped,
    NodeTimeout,
    NotFound,
    NotResolved,
    ProviderError,
    ProvisioningFailed,
    RunError,
    StackweaveError,
    UnhandledVariant,
    format_error_message,
    main_with_error_handling,
)

__all__ = [
    "ExitCode",
    "StackweaveError",
    "ConfigurationError",
    # Build-time
    "BuildError",
    "CyclicDependency",
    "DuplicateIdentity",
    "MissingDependency",
    "MissingConfig",
    "InvalidConfig",
    "UnhandledVariant",
    "ConflictingKey",
    # Run-time
    "ProviderError",
    "BackendCancelled",
    "RunError",
    "ProvisioningFailed",
    "NodeTimeout",
    "NodeSkipped",
    "NodeCancelled",
    # Integration
    "IntegrationError",
    "AlreadyResolved",
    "NotResolved",
    "NotFound",
    "main_with_error_handling",
    "format_error_message",
]
