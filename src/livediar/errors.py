"""Error types for the livediar identity core.

The clustering hot path never raises for data problems; every such failure is
encoded as a decision reason or a ``False`` return.  The exceptions below are
reserved for the cold paths (configuration and snapshot restore) where a bad
payload is a caller bug that should surface immediately.  Each carries a
serialisable context payload so CLI and notebook callers can render it.
"""

from __future__ import annotations

from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass, field
from typing import Any

__all__ = [
    "IdentityError",
    "ConfigurationError",
    "SnapshotError",
    "attach_context",
]


@dataclass
class IdentityError(RuntimeError):
    """Base class for identity core failures.

    Attributes
    ----------
    message:
        Human readable description of the failure.
    context:
        JSON serialisable dictionary with granular diagnostics.
    """

    message: str
    context: MutableMapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.context is None:
            self.context = {}

    def __str__(self) -> str:  # pragma: no cover - trivial
        return self.message


class ConfigurationError(IdentityError):
    """Raised when configuration validation fails."""


class SnapshotError(IdentityError):
    """Raised when a persisted snapshot cannot be restored."""


def attach_context(
    error: IdentityError,
    context: Mapping[str, Any] | None,
) -> IdentityError:
    """Merge ``context`` into ``error.context`` preserving existing keys."""

    if not context:
        return error
    for key, value in context.items():
        error.context.setdefault(key, value)
    return error
