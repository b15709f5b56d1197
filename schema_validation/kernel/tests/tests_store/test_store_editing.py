"""
Validation Store — Editing and Saving Tests

Edits refresh the sample documents unless the rule has a syntax error.
Save checks the rule, persists it with collMod and records the outcome;
a save overtaken by a newer edit keeps the edit.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from schema_validation.kernel.checker import EVAL_ERROR
from schema_validation.kernel.data_service import DataServiceError
from schema_validation.kernel.registry import COLLECTION_CHANGED
from schema_validation.kernel.types import ErrorInfo, ValidationSnapshot


def coll_mods(service):
    return [command for _, command in service.commands if "collMod" in command]


# ============================================================================
# Editing
# ============================================================================


class TestEditing:
    @pytest.mark.asyncio
    async def test_edit_refreshes_samples(self, store):
        result = store.change_validator("{status: 'B'}")
        assert result.applied

        await store.wait_idle()

        samples = store.state.sample_documents
        assert samples.is_loading is False
        assert samples.matching["_id"] == 2
        assert samples.not_matching["_id"] == 1

    @pytest.mark.asyncio
    async def test_syntax_error_skips_refresh(self, store):
        before = store.state.sample_documents

        store.change_validator("{status: ")
        await store.wait_idle()

        assert store.state.validation.syntax_error.code == EVAL_ERROR
        assert store.state.validation.validator == "{status: "
        samples = store.state.sample_documents
        assert samples.matching == before.matching
        assert samples.not_matching == before.not_matching
        assert samples.is_loading is False

    @pytest.mark.asyncio
    async def test_rapid_edits_settle_on_the_last(self, store):
        store.change_validator("{status: 'B'}")
        store.change_validator("{status: 'A'}")
        store.change_validator("{age: {$lt: 18}}")
        await store.wait_idle()

        samples = store.state.sample_documents
        assert samples.is_loading is False
        assert samples.matching["_id"] == 2
        assert samples.not_matching["_id"] == 1

    @pytest.mark.asyncio
    async def test_cancel_restores_and_refreshes(self, store):
        store.change_validator("{status: 'B'}")
        store.change_validation_action("error")
        await store.wait_idle()

        result = store.cancel()
        await store.wait_idle()

        assert result.applied
        assert store.state.validation.validator == "{\n  status: 'A'\n}"
        assert store.state.validation.validation_action == "warn"
        assert store.state.validation.is_changed is False
        assert store.state.sample_documents.matching["_id"] == 1

    @pytest.mark.asyncio
    async def test_starting_a_rule_leaves_zero_state(self, store):
        store.change_zero_state(True)
        assert store.state.is_zero_state is True

        store.change_zero_state(False)
        assert store.state.is_zero_state is False

        store.change_zero_state(True)
        store.change_validator("{}")
        assert store.state.is_zero_state is False
        await store.wait_idle()

    @pytest.mark.asyncio
    async def test_samples_in_flight_are_dropped_when_text_breaks(self, store, people_service):
        entered = asyncio.Event()
        gate = asyncio.Event()
        original = people_service.aggregate

        async def gated_aggregate(ns, pipeline, options=None):
            entered.set()
            await gate.wait()
            return await original(ns, pipeline, options)

        people_service.aggregate = gated_aggregate
        store.change_validator("{status: 'B'}")
        await entered.wait()
        assert store.state.sample_documents.is_loading is True

        store.change_validator("{status: ")
        gate.set()
        await store.wait_idle()

        samples = store.state.sample_documents
        assert store.state.validation.syntax_error.code == EVAL_ERROR
        assert samples.is_loading is False
        # Still the samples for the rule loaded at startup, not for {status: 'B'}
        assert samples.matching["_id"] == 1
        assert samples.not_matching["_id"] == 2


# ============================================================================
# Saving
# ============================================================================


class TestSave:
    @pytest.mark.asyncio
    async def test_save_persists_with_coll_mod(self, store, people_service):
        store.change_validator("{status: 'B'}")
        store.change_validation_action("error")

        assert await store.save() is True

        assert coll_mods(people_service) == [
            {
                "collMod": "people",
                "validator": {"status": "B"},
                "validationAction": "error",
                "validationLevel": "moderate",
            }
        ]
        assert people_service.options["test.people"]["validator"] == {"status": "B"}
        validation = store.state.validation
        assert validation.is_changed is False
        assert validation.error is None
        assert validation.prev_validation == ValidationSnapshot("{status: 'B'}", "error", "moderate")
        await store.wait_idle()

    @pytest.mark.asyncio
    async def test_saved_rule_is_fetched_back(self, store):
        store.change_validator("{status: 'B'}")
        await store.save()

        assert await store.fetch_validation() is True
        assert store.state.validation.validator == "{\n  status: 'B'\n}"

    @pytest.mark.asyncio
    async def test_empty_rule_saves_empty_validator(self, store, people_service):
        store.change_validator("")
        assert await store.save_validation() is True
        assert coll_mods(people_service)[-1]["validator"] == {}

    @pytest.mark.asyncio
    async def test_syntax_error_is_not_sent(self, store, people_service):
        store.change_validator("{status: ")

        assert await store.save_validation() is False

        assert coll_mods(people_service) == []
        assert store.state.validation.error.code == EVAL_ERROR
        assert store.state.validation.is_changed is True

    @pytest.mark.asyncio
    async def test_server_refusal_keeps_the_edit(self, store, people_service):
        people_service.command = AsyncMock(side_effect=DataServiceError("not authorized on test", code=13))
        store.change_validator("{status: 'B'}")

        assert await store.save_validation() is False

        validation = store.state.validation
        assert validation.error == ErrorInfo("not authorized on test", "13")
        assert validation.validator == "{status: 'B'}"
        assert validation.is_changed is True
        await store.wait_idle()

    @pytest.mark.asyncio
    async def test_save_overtaken_by_edit(self, store, people_service):
        gate = asyncio.Event()
        original = people_service.command

        async def slow_command(database, command):
            await gate.wait()
            return await original(database, command)

        people_service.command = slow_command
        store.change_validator("{status: 'B'}")
        task = store.save()
        await asyncio.sleep(0)

        store.change_validator("{status: 'C'}")
        gate.set()
        assert await task is True

        validation = store.state.validation
        assert validation.validator == "{status: 'C'}"
        assert validation.prev_validation.validator == "{status: 'B'}"
        assert validation.is_changed is True
        await store.wait_idle()

    @pytest.mark.asyncio
    async def test_save_without_collection(self, store, registry):
        registry.publish(COLLECTION_CHANGED, "test")

        assert await store.save_validation() is False
        assert store.state.validation.error.code == "NOT_CONNECTED"
