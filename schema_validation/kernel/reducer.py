"""
Schema Validation Kernel — Validation Reducer

Pure function: (ValidationState, action) → ReduceResult
No side effects. No IO. Deterministic.

Fetching and saving happen in the store; this module only records their
outcomes. Completions that carry a request_sequence older than the
current edit_sequence lost a race with the user and are rejected (fetch)
or only recorded as the new persisted snapshot (save).
"""

from __future__ import annotations

from dataclasses import replace
from typing import assert_never

from schema_validation.kernel.actions import (
    FetchFailed,
    FetchRequested,
    SaveFailed,
    SaveRequested,
    ValidationAction,
    ValidationActionChanged,
    ValidationCanceled,
    ValidationFetched,
    ValidationLevelChanged,
    ValidationSaved,
    ValidatorChanged,
)
from schema_validation.kernel.checker import RuleChecker, check_validator
from schema_validation.kernel.stringify import stringify
from schema_validation.kernel.types import (
    DEFAULT_VALIDATION_ACTION,
    DEFAULT_VALIDATION_LEVEL,
    VALIDATION_ACTIONS,
    VALIDATION_LEVELS,
    ReduceResult,
    ValidationSnapshot,
    ValidationState,
)

# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def empty_state() -> ValidationState:
    """No rule, default action and level, nothing to restore."""
    return ValidationState()


def reduce(
    state: ValidationState,
    action: ValidationAction,
    checker: RuleChecker | None = None,
) -> ReduceResult:
    """
    Apply one action to the validation state.
    Returns the new state + applied flag, or the unchanged state and a
    "CODE: message" error when the action is rejected.
    """
    if isinstance(action, FetchRequested):
        return _ok(replace(state, error=None))
    if isinstance(action, ValidationFetched):
        return _fetched(state, action)
    if isinstance(action, FetchFailed):
        return _ok(replace(state, error=action.error))
    if isinstance(action, ValidatorChanged):
        return _validator_changed(state, action, checker)
    if isinstance(action, ValidationActionChanged):
        return _action_changed(state, action)
    if isinstance(action, ValidationLevelChanged):
        return _level_changed(state, action)
    if isinstance(action, ValidationCanceled):
        return _canceled(state)
    if isinstance(action, SaveRequested):
        return _ok(state)
    if isinstance(action, ValidationSaved):
        return _saved(state, action)
    if isinstance(action, SaveFailed):
        # The edit is kept so no work is lost
        return _ok(replace(state, is_changed=True, error=action.error))
    assert_never(action)


def replay(actions: list[ValidationAction], checker: RuleChecker | None = None) -> ValidationState:
    """Fold actions over the empty state, skipping rejected ones."""
    state = empty_state()
    for action in actions:
        result = reduce(state, action, checker)
        if result.applied:
            state = result.state
    return state


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _reject(state: ValidationState, code: str, msg: str) -> ReduceResult:
    return ReduceResult(state=state, applied=False, error=f"{code}: {msg}")


def _ok(state: ValidationState) -> ReduceResult:
    return ReduceResult(state=state, applied=True)


def _is_stale(state: ValidationState, request_sequence: int | None) -> bool:
    return request_sequence is not None and request_sequence != state.edit_sequence


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


def _fetched(state: ValidationState, action: ValidationFetched) -> ReduceResult:
    if _is_stale(state, action.request_sequence):
        return _reject(
            state,
            "STALE_COMPLETION",
            f"fetch issued at edit {action.request_sequence}, state is at edit {state.edit_sequence}",
        )
    if action.validation_action not in VALIDATION_ACTIONS:
        return _reject(state, "INVALID_ACTION", f"{action.validation_action!r}")
    if action.validation_level not in VALIDATION_LEVELS:
        return _reject(state, "INVALID_LEVEL", f"{action.validation_level!r}")

    try:
        text = stringify(action.validator) if action.validator else ""
    except TypeError as e:
        return _reject(state, "UNSUPPORTED_VALUE", str(e))

    snapshot = ValidationSnapshot(
        validator=text,
        validation_action=action.validation_action,
        validation_level=action.validation_level,
    )
    return _ok(
        replace(
            state,
            validator=text,
            validation_action=action.validation_action,
            validation_level=action.validation_level,
            is_changed=False,
            syntax_error=None,
            error=None,
            prev_validation=snapshot,
        )
    )


def _validator_changed(
    state: ValidationState,
    action: ValidatorChanged,
    checker: RuleChecker | None,
) -> ReduceResult:
    if not state.is_editable:
        return _reject(state, "NOT_EDITABLE", "validation is read-only for this collection")

    result = checker.check(action.validator) if checker is not None else check_validator(action.validator)
    return _ok(
        replace(
            state,
            validator=action.validator,
            is_changed=True,
            syntax_error=result.error,
            edit_sequence=state.edit_sequence + 1,
        )
    )


def _action_changed(state: ValidationState, action: ValidationActionChanged) -> ReduceResult:
    if not state.is_editable:
        return _reject(state, "NOT_EDITABLE", "validation is read-only for this collection")
    if action.validation_action not in VALIDATION_ACTIONS:
        return _reject(state, "INVALID_ACTION", f"{action.validation_action!r} not in {sorted(VALIDATION_ACTIONS)}")
    return _ok(
        replace(
            state,
            validation_action=action.validation_action,
            is_changed=True,
            edit_sequence=state.edit_sequence + 1,
        )
    )


def _level_changed(state: ValidationState, action: ValidationLevelChanged) -> ReduceResult:
    if not state.is_editable:
        return _reject(state, "NOT_EDITABLE", "validation is read-only for this collection")
    if action.validation_level not in VALIDATION_LEVELS:
        return _reject(state, "INVALID_LEVEL", f"{action.validation_level!r} not in {sorted(VALIDATION_LEVELS)}")
    return _ok(
        replace(
            state,
            validation_level=action.validation_level,
            is_changed=True,
            edit_sequence=state.edit_sequence + 1,
        )
    )


def _canceled(state: ValidationState) -> ReduceResult:
    prev = state.prev_validation or ValidationSnapshot(
        validator="",
        validation_action=DEFAULT_VALIDATION_ACTION,
        validation_level=DEFAULT_VALIDATION_LEVEL,
    )
    return _ok(
        replace(
            state,
            validator=prev.validator,
            validation_action=prev.validation_action,
            validation_level=prev.validation_level,
            is_changed=False,
            syntax_error=None,
            edit_sequence=state.edit_sequence + 1,
        )
    )


def _saved(state: ValidationState, action: ValidationSaved) -> ReduceResult:
    snapshot = ValidationSnapshot(
        validator=action.validator,
        validation_action=action.validation_action,
        validation_level=action.validation_level,
    )

    if _is_stale(state, action.request_sequence):
        # Persisted, but the user has edited since: keep the newer edit.
        return _ok(
            replace(
                state,
                prev_validation=snapshot,
                error=None,
                is_changed=state.current() != snapshot,
            )
        )

    return _ok(
        replace(
            state,
            validator=action.validator,
            validation_action=action.validation_action,
            validation_level=action.validation_level,
            is_changed=False,
            syntax_error=None,
            error=None,
            prev_validation=snapshot,
        )
    )
