"""Error taxonomy: field-scoped validation errors, adapter failures, corruption warnings.

Validation errors are plain values returned inside results; only
:class:`AdapterError` is an exception, and even it travels inside a
:class:`~tagloom.storage.adapter.StorageResult` rather than being raised
across the adapter boundary.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime


class ErrorKind(enum.Enum):
    """Category of a validation error."""

    STRUCTURAL = "structural"
    REFERENTIAL = "referential"
    UNIQUENESS = "uniqueness"
    CYCLE = "cycle"
    DEPENDENCY = "dependency"


# ---------------------------------------------------------------------------
# Field-scoped validation errors
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FieldError:
    """A single validation failure attached to a dotted field path."""

    field: str  # e.g. "name", "qualificationRules.conditions.0.value"
    message: str

    @property
    def kind(self) -> ErrorKind:
        return ErrorKind.STRUCTURAL

    def to_dict(self) -> dict[str, object]:
        return {"field": self.field, "message": self.message, "kind": self.kind.value}


@dataclass(frozen=True)
class StructuralValidationError(FieldError):
    """Shape or format violation."""


@dataclass(frozen=True)
class ReferentialIntegrityError(FieldError):
    """A rule references an object, field, event type or tag that does not exist."""

    @property
    def kind(self) -> ErrorKind:
        return ErrorKind.REFERENTIAL


@dataclass(frozen=True)
class UniquenessConflictError(FieldError):
    """Another tag in the project already uses this name (case-insensitive)."""

    conflicting_id: str = ""

    @property
    def kind(self) -> ErrorKind:
        return ErrorKind.UNIQUENESS


@dataclass(frozen=True)
class CyclicDependencyError(FieldError):
    """The dependency graph contains a cycle through this tag."""

    cycle: tuple[str, ...] = ()  # closed path, first id repeated at the end

    @property
    def kind(self) -> ErrorKind:
        return ErrorKind.CYCLE

    def to_dict(self) -> dict[str, object]:
        data = super().to_dict()
        data["cycle"] = list(self.cycle)
        return data


@dataclass(frozen=True)
class DependencyConflictError(FieldError):
    """A tag cannot be deleted because other tags depend on it."""

    dependents: tuple[str, ...] = ()

    @property
    def kind(self) -> ErrorKind:
        return ErrorKind.DEPENDENCY

    def to_dict(self) -> dict[str, object]:
        data = super().to_dict()
        data["dependents"] = list(self.dependents)
        return data


# ---------------------------------------------------------------------------
# Storage failures
# ---------------------------------------------------------------------------


class AdapterError(Exception):
    """Storage or network failure reported by a storage adapter.

    ``retryable`` is False for failures that repeating the call cannot fix
    (unknown id, malformed stored blob).
    """

    def __init__(self, message: str, *, retryable: bool = True) -> None:
        super().__init__(message)
        self.retryable = retryable


class NotFoundError(AdapterError):
    """The requested tag or project row does not exist."""

    def __init__(self, message: str) -> None:
        super().__init__(message, retryable=False)


# ---------------------------------------------------------------------------
# Corruption
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CorruptionWarning:
    """Persisted records of one section failed validation on load."""

    type: str  # "corrupt_library_tags" | "corrupt_custom_tags"
    count: int
    detected_at: datetime

    def to_dict(self) -> dict[str, object]:
        return {
            "type": self.type,
            "count": self.count,
            "detectedAt": self.detected_at.isoformat(),
        }
