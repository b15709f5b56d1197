"""
Schema Validation Reducer — Stale Completion Tests

Fetch and save results carry the edit_sequence they were issued under.
A fetch that lost the race with a user edit is rejected; a save that did
is recorded as the new persisted snapshot without discarding the edit.
"""

import pytest

from schema_validation.kernel.actions import (
    ValidationCanceled,
    ValidationFetched,
    ValidationSaved,
    ValidatorChanged,
)
from schema_validation.kernel.reducer import empty_state, reduce
from schema_validation.kernel.types import ValidationSnapshot


@pytest.fixture
def loaded():
    r = reduce(empty_state(), ValidationFetched({"status": "A"}, "warn", "moderate", request_sequence=0))
    assert r.applied
    return r.state


class TestStaleFetch:
    def test_fetch_issued_before_an_edit_is_rejected(self, loaded):
        issued_at = loaded.edit_sequence
        edited = reduce(loaded, ValidatorChanged("{status: 'B'}")).state

        r = reduce(edited, ValidationFetched({"status": "Z"}, "error", "strict", request_sequence=issued_at))

        assert not r.applied
        assert r.error.startswith("STALE_COMPLETION")
        assert r.state is edited
        assert r.state.validator == "{status: 'B'}"

    def test_cancel_also_invalidates_pending_fetch(self, loaded):
        issued_at = loaded.edit_sequence
        canceled = reduce(loaded, ValidationCanceled()).state
        r = reduce(canceled, ValidationFetched({"status": "Z"}, "error", "strict", request_sequence=issued_at))
        assert not r.applied

    def test_fetch_without_sequence_always_applies(self, loaded):
        edited = reduce(loaded, ValidatorChanged("{status: 'B'}")).state
        r = reduce(edited, ValidationFetched({"status": "Z"}, "error", "strict"))
        assert r.applied

    def test_current_fetch_applies(self, loaded):
        edited = reduce(loaded, ValidatorChanged("{status: 'B'}")).state
        r = reduce(
            edited,
            ValidationFetched({"status": "Z"}, "error", "strict", request_sequence=edited.edit_sequence),
        )
        assert r.applied
        assert r.state.validator == "{\n  status: 'Z'\n}"


class TestStaleSave:
    def test_save_overtaken_by_edit_keeps_the_edit(self, loaded):
        saving = reduce(loaded, ValidatorChanged("{status: 'B'}")).state
        issued_at = saving.edit_sequence
        newer = reduce(saving, ValidatorChanged("{status: 'C'}")).state

        r = reduce(newer, ValidationSaved("{status: 'B'}", "warn", "moderate", request_sequence=issued_at))

        assert r.applied
        assert r.state.validator == "{status: 'C'}"
        assert r.state.prev_validation == ValidationSnapshot("{status: 'B'}", "warn", "moderate")
        assert r.state.is_changed is True

    def test_save_overtaken_by_identical_edit_is_clean(self, loaded):
        saving = reduce(loaded, ValidatorChanged("{status: 'B'}")).state
        issued_at = saving.edit_sequence
        same = reduce(saving, ValidatorChanged("{status: 'B'}")).state

        r = reduce(same, ValidationSaved("{status: 'B'}", "warn", "moderate", request_sequence=issued_at))

        assert r.applied
        assert r.state.is_changed is False

    def test_cancel_after_overtaken_save_restores_saved_triple(self, loaded):
        saving = reduce(loaded, ValidatorChanged("{status: 'B'}")).state
        issued_at = saving.edit_sequence
        newer = reduce(saving, ValidatorChanged("{status: 'C'}")).state
        saved = reduce(newer, ValidationSaved("{status: 'B'}", "warn", "moderate", request_sequence=issued_at)).state

        r = reduce(saved, ValidationCanceled())

        assert r.state.validator == "{status: 'B'}"
        assert r.state.is_changed is False
