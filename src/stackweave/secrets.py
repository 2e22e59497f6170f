"""
Sensitive value classification.

``mark_sensitive`` turns a deferred value into a ``SensitiveValue`` whose
readers receive a ``Secret`` wrapper instead of the raw value. Formatting a
``Secret`` anywhere (str, repr, f-strings, logs, output listings) yields the
redaction marker. The raw value is only obtained through ``reveal``, at the
point where it is handed to a downstream system.
"""

from __future__ import annotations

from typing import Any, Generic, MutableMapping, TypeVar

from stackweave.composition.deferred import DeferredValue

T = TypeVar("T")

REDACTED = "[secret]"


class Secret(Generic[T]):
    """Opaque holder for a sensitive value."""

    __slots__ = ("_value",)

    def __init__(self, value: T) -> None:
        self._value = value

    def reveal(self) -> T:
        return self._value

    def __repr__(self) -> str:
        return f"Secret({REDACTED!r})"

    def __str__(self) -> str:
        return REDACTED

    def __format__(self, format_spec: str) -> str:
        return REDACTED

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Secret):
            return self._value == other._value
        return NotImplemented

    def __hash__(self) -> int:
        return hash((Secret, self._value))


class SensitiveValue(DeferredValue[T]):
    """Deferred value whose readers see a Secret instead of the raw value."""

    sensitive = True

    def _payload(self) -> Any:
        return Secret(self._value)

    def _derive(self, name: str) -> DeferredValue[Any]:
        return SensitiveValue(name, producers=self.producers)

    def __repr__(self) -> str:
        return f"SensitiveValue({self.name!r}, {self.state.value})"

    def __str__(self) -> str:
        return REDACTED


def mark_sensitive(value: Any, name: str | None = None) -> SensitiveValue[Any]:
    """Classify a deferred value (or literal) as sensitive."""
    if isinstance(value, SensitiveValue):
        return value
    if isinstance(value, DeferredValue):
        target: SensitiveValue[Any] = SensitiveValue(name or value.name, producers=value.producers)
        value._link(target)
        return target
    literal: SensitiveValue[Any] = SensitiveValue(name or "literal")
    literal.resolve(value)
    return literal


def is_sensitive(value: Any) -> bool:
    return isinstance(value, (Secret, SensitiveValue))


def reveal(value: Any) -> Any:
    """Explicitly unwrap a secret. Plain values pass through unchanged."""
    if isinstance(value, Secret):
        return value.reveal()
    if isinstance(value, DeferredValue):
        return reveal(value.result())
    return value


def reveal_tree(tree: Any) -> Any:
    """Unwrap every Secret in a nested values tree."""
    if isinstance(tree, Secret):
        return tree.reveal()
    if isinstance(tree, dict):
        return {key: reveal_tree(item) for key, item in tree.items()}
    if isinstance(tree, list):
        return [reveal_tree(item) for item in tree]
    if isinstance(tree, tuple):
        return tuple(reveal_tree(item) for item in tree)
    return tree


def redact(tree: Any) -> Any:
    """Replace secrets in a nested structure by the redaction marker."""
    if is_sensitive(tree):
        return REDACTED
    if isinstance(tree, dict):
        return {key: redact(item) for key, item in tree.items()}
    if isinstance(tree, list):
        return [redact(item) for item in tree]
    if isinstance(tree, tuple):
        return tuple(redact(item) for item in tree)
    return tree


def redact_secrets(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """structlog processor masking sensitive values in log events."""
    for key, item in list(event_dict.items()):
        event_dict[key] = redact(item)
    return event_dict
