"""
Schema Validation Kernel — Actions

Every state change is one of the messages below. They form three tagged
unions, one per reducer:

  ValidationAction       — reducer.reduce
  SampleDocumentsAction  — sample_documents.reduce_sample_documents
  StoreAction            — store.root_reduce (also accepts the other two)

Completions of async work carry the token they were issued under
(request_sequence / generation) so stale results can be recognised.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union, get_args

from schema_validation.kernel.types import ErrorInfo, Namespace

# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FetchRequested:
    namespace: Namespace


@dataclass(frozen=True)
class ValidationFetched:
    """The collection's options arrived. validator is the structured document."""

    validator: dict[str, Any] | None
    validation_action: str
    validation_level: str
    request_sequence: int | None = None


@dataclass(frozen=True)
class FetchFailed:
    error: ErrorInfo


@dataclass(frozen=True)
class ValidatorChanged:
    validator: str


@dataclass(frozen=True)
class ValidationActionChanged:
    validation_action: str


@dataclass(frozen=True)
class ValidationLevelChanged:
    validation_level: str


@dataclass(frozen=True)
class ValidationCanceled:
    pass


@dataclass(frozen=True)
class SaveRequested:
    pass


@dataclass(frozen=True)
class ValidationSaved:
    """The triple that was persisted. validator is the text as the user typed it."""

    validator: str
    validation_action: str
    validation_level: str
    request_sequence: int | None = None


@dataclass(frozen=True)
class SaveFailed:
    error: ErrorInfo


ValidationAction = Union[
    FetchRequested,
    ValidationFetched,
    FetchFailed,
    ValidatorChanged,
    ValidationActionChanged,
    ValidationLevelChanged,
    ValidationCanceled,
    SaveRequested,
    ValidationSaved,
    SaveFailed,
]


# ---------------------------------------------------------------------------
# Sample documents
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SampleDocumentsRequested:
    pass


@dataclass(frozen=True)
class SampleDocumentsFetched:
    generation: int
    matching: dict[str, Any] | None
    not_matching: dict[str, Any] | None


@dataclass(frozen=True)
class SampleDocumentsFailed:
    generation: int
    error: ErrorInfo


SampleDocumentsAction = Union[
    SampleDocumentsRequested,
    SampleDocumentsFetched,
    SampleDocumentsFailed,
]


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NamespaceChanged:
    namespace: Namespace


@dataclass(frozen=True)
class DataServiceConnected:
    """data_service is None on disconnect or when the connection failed."""

    error: ErrorInfo | None
    data_service: Any


@dataclass(frozen=True)
class ServerVersionChanged:
    server_version: str | None


@dataclass(frozen=True)
class ReadonlyChanged:
    is_readonly: bool


@dataclass(frozen=True)
class FieldsChanged:
    fields: tuple[str, ...]


@dataclass(frozen=True)
class ZeroStateChanged:
    is_zero_state: bool


StoreAction = Union[
    NamespaceChanged,
    DataServiceConnected,
    ServerVersionChanged,
    ReadonlyChanged,
    FieldsChanged,
    ZeroStateChanged,
]

Action = Union[ValidationAction, SampleDocumentsAction, StoreAction]

VALIDATION_ACTION_TYPES = get_args(ValidationAction)
SAMPLE_DOCUMENTS_ACTION_TYPES = get_args(SampleDocumentsAction)
STORE_ACTION_TYPES = get_args(StoreAction)
