"""
Schema Validation Kernel — Shared Types

Data classes used across the checker, reducers, sample pipeline and store.
These are the contracts that bind the kernel together.

All state records are frozen: every transition produces a new value via
dataclasses.replace, so equality doubles as change detection.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

VALIDATION_ACTIONS: set[str] = {"warn", "error"}
VALIDATION_LEVELS: set[str] = {"off", "moderate", "strict"}

DEFAULT_VALIDATION_ACTION = "error"
DEFAULT_VALIDATION_LEVEL = "strict"

READ_ONLY_WARNING = "Schema validation on readonly views are not supported."
VERSION_WARNING = (
    "The rule editor is not supported for server versions below {minimum}. "
    "Upgrade the server to edit validation rules."
)

_VERSION_RE = re.compile(r"^\s*v?(\d+)(?:\.(\d+))?(?:\.(\d+))?")


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Namespace:
    """The (database, collection) pair identifying the active target."""

    database: str
    collection: str = ""

    @property
    def ns(self) -> str:
        if not self.collection:
            return self.database
        return f"{self.database}.{self.collection}"

    @classmethod
    def from_string(cls, ns: str) -> Namespace:
        """
        Split "db.coll" on the first dot. Collection names may contain dots.

          "test.people"        → Namespace("test", "people")
          "test.system.views"  → Namespace("test", "system.views")
          "test"               → Namespace("test", "")
        """
        database, _, collection = ns.partition(".")
        return cls(database=database, collection=collection)


@dataclass(frozen=True)
class ErrorInfo:
    """A displayable error. Stored in state instead of live exceptions."""

    message: str
    code: str | None = None

    @classmethod
    def from_exception(cls, exc: BaseException, code: str | None = None) -> ErrorInfo:
        message = str(exc) or type(exc).__name__
        if code is None:
            # pymongo OperationFailure and friends expose a numeric server code
            raw = getattr(exc, "code", None)
            code = str(raw) if raw is not None else None
        return cls(message=message, code=code)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"message": self.message}
        if self.code is not None:
            d["code"] = self.code
        return d


@dataclass(frozen=True)
class ValidationSnapshot:
    """Last known-good persisted triple. Restored on cancel."""

    validator: str
    validation_action: str
    validation_level: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "validator": self.validator,
            "validationAction": self.validation_action,
            "validationLevel": self.validation_level,
        }


@dataclass(frozen=True)
class ValidationState:
    """
    The current validation record.

    validator is exactly what the user typed. It is only normalized when
    it arrives from the server (fetch) — never while editing.

    edit_sequence grows on every local edit. Async completions carry the
    sequence they were issued under; a mismatch means the user edited
    since, and the completion is discarded.
    """

    validator: str = ""
    validation_action: str = DEFAULT_VALIDATION_ACTION
    validation_level: str = DEFAULT_VALIDATION_LEVEL
    is_changed: bool = False
    syntax_error: ErrorInfo | None = None
    prev_validation: ValidationSnapshot | None = None
    error: ErrorInfo | None = None
    is_editable: bool = True
    edit_sequence: int = 0

    def current(self) -> ValidationSnapshot:
        return ValidationSnapshot(
            validator=self.validator,
            validation_action=self.validation_action,
            validation_level=self.validation_level,
        )

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "validator": self.validator,
            "validationAction": self.validation_action,
            "validationLevel": self.validation_level,
            "isChanged": self.is_changed,
            "syntaxError": self.syntax_error.to_dict() if self.syntax_error else None,
            "error": self.error.to_dict() if self.error else None,
            "isEditable": self.is_editable,
        }
        if self.prev_validation is not None:
            d["prevValidation"] = self.prev_validation.to_dict()
        return d


@dataclass(frozen=True)
class SampleDocumentsState:
    """
    One matching and one non-matching example for the current rule.

    generation identifies the latest request. Only the completion for that
    generation may clear is_loading.
    """

    matching: dict[str, Any] | None = None
    not_matching: dict[str, Any] | None = None
    is_loading: bool = False
    error: ErrorInfo | None = None
    generation: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "matching": self.matching,
            "notMatching": self.not_matching,
            "isLoading": self.is_loading,
            "error": self.error.to_dict() if self.error else None,
        }


@dataclass(frozen=True)
class SampleDocuments:
    """Result of a settled sample fetch."""

    matching: dict[str, Any] | None
    not_matching: dict[str, Any] | None


@dataclass(frozen=True)
class StoreState:
    """Everything the presentation layer reads."""

    namespace: Namespace | None = None
    validation: ValidationState = field(default_factory=ValidationState)
    sample_documents: SampleDocumentsState = field(default_factory=SampleDocumentsState)
    data_service_error: ErrorInfo | None = None
    server_version: str | None = None
    is_readonly: bool = False
    fields: tuple[str, ...] = ()
    is_zero_state: bool = True


@dataclass(frozen=True)
class ReduceResult:
    """
    Result of applying one action to a state.
    The reducers never throw — they always return one of these.
    """

    state: Any
    applied: bool
    error: str | None = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def parse_version(version: str) -> tuple[int, int, int] | None:
    """
    Parse the numeric part of a server version string.

    Examples:
      "3.2.0"       → (3, 2, 0)
      "4.4.1-rc0"   → (4, 4, 1)
      "7.0"         → (7, 0, 0)
      "unknown"     → None
    """
    m = _VERSION_RE.match(version or "")
    if not m:
        return None
    return tuple(int(part or 0) for part in m.groups())  # type: ignore[return-value]


def is_version_supported(version: str | None, minimum: str) -> bool:
    """
    True if version >= minimum.
    An undetected (None) or unparseable version is assumed supported.
    """
    if not version:
        return True
    parsed = parse_version(version)
    required = parse_version(minimum)
    if parsed is None or required is None:
        return True
    return parsed >= required
