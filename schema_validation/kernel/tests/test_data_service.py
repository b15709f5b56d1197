"""
Schema Validation Kernel — MemoryDataService Tests

The in-memory service stands in for a server in every kernel test, so its
matching and command behavior is pinned here.
"""

import re

import pytest
from bson import Regex

from schema_validation.kernel.data_service import DataService, DataServiceError, MemoryDataService, matches


class TestMatches:
    DOC = {"_id": 1, "name": "Ann", "age": 34, "tags": ["a", "b"], "address": {"city": "Oslo"}}

    @pytest.mark.parametrize(
        "query",
        [
            {},
            {"name": "Ann"},
            {"address.city": "Oslo"},
            {"tags": "a"},
            {"age": {"$gte": 30, "$lt": 40}},
            {"age": {"$in": [1, 34]}},
            {"age": {"$nin": [1, 2]}},
            {"nickname": {"$exists": False}},
            {"name": {"$regex": "^a", "$options": "i"}},
            {"name": Regex("^A")},
            {"name": Regex("^a", "i")},
            {"name": re.compile("n$")},
            {"tags": {"$size": 2}},
            {"tags": {"$all": ["b", "a"]}},
            {"age": {"$not": {"$lt": 18}}},
            {"nickname": None},
            {"$or": [{"name": "Bob"}, {"age": 34}]},
            {"$and": [{"name": "Ann"}, {"age": 34}]},
            {"$nor": [{"name": "Bob"}]},
            {"$comment": "ignored", "name": "Ann"},
        ],
    )
    def test_matching_queries(self, query):
        assert matches(self.DOC, query)

    @pytest.mark.parametrize(
        "query",
        [
            {"name": "Bob"},
            {"age": {"$gt": 40}},
            {"name": Regex("^a")},
            {"name": {"$ne": "Ann"}},
            {"$nor": [{"name": "Ann"}]},
            {"nickname": {"$exists": True}},
        ],
    )
    def test_non_matching_queries(self, query):
        assert not matches(self.DOC, query)

    def test_unsupported_operator(self):
        with pytest.raises(DataServiceError):
            matches(self.DOC, {"$where": "true"})


class TestMemoryDataService:
    @pytest.mark.asyncio
    async def test_find_and_count(self, people_service):
        docs = await people_service.find("test.people", {"status": "A"}, {"limit": 1})
        assert [d["_id"] for d in docs] == [1]
        assert await people_service.count("test.people", {"status": "A"}) == 2

    @pytest.mark.asyncio
    async def test_count_honors_limit_and_skip(self, people_service):
        assert await people_service.count("test.people", {}, {"limit": 2}) == 2
        assert await people_service.count("test.people", {}, {"skip": 1}) == 2
        assert await people_service.count("test.people", {}, {"limit": 10}) == 3

    @pytest.mark.asyncio
    async def test_results_are_copies(self, people_service):
        docs = await people_service.find("test.people", {})
        docs[0]["name"] = "changed"
        assert people_service.documents["test.people"][0]["name"] == "Ann"

    @pytest.mark.asyncio
    async def test_aggregate(self, people_service):
        docs = await people_service.aggregate(
            "test.people",
            [{"$match": {"status": "A"}}, {"$skip": 1}, {"$limit": 1}],
        )
        assert [d["_id"] for d in docs] == [3]

    @pytest.mark.asyncio
    async def test_aggregate_rejects_unknown_stage(self, people_service):
        with pytest.raises(DataServiceError, match="Unrecognized pipeline stage"):
            await people_service.aggregate("test.people", [{"$group": {"_id": None}}])

    @pytest.mark.asyncio
    async def test_aggregate_rejects_bad_limit(self, people_service):
        with pytest.raises(DataServiceError):
            await people_service.aggregate("test.people", [{"$limit": 0}])

    @pytest.mark.asyncio
    async def test_list_collections(self, people_service):
        people_service.create_view("test.adults", "people", [{"$match": {"age": {"$gte": 18}}}])
        entries = await people_service.list_collections("test", {"name": "adults"})
        assert entries == [
            {
                "name": "adults",
                "type": "view",
                "options": {"viewOn": "people", "pipeline": [{"$match": {"age": {"$gte": 18}}}]},
            }
        ]
        assert await people_service.list_collections("other") == []

    @pytest.mark.asyncio
    async def test_coll_mod(self, people_service):
        reply = await people_service.command(
            "test",
            {"collMod": "people", "validator": {"age": {"$gte": 18}}, "validationAction": "error"},
        )
        assert reply == {"ok": 1.0}
        assert people_service.options["test.people"]["validator"] == {"age": {"$gte": 18}}
        assert people_service.options["test.people"]["validationAction"] == "error"
        assert people_service.options["test.people"]["validationLevel"] == "moderate"

    @pytest.mark.asyncio
    async def test_coll_mod_missing_namespace(self, people_service):
        with pytest.raises(DataServiceError) as exc_info:
            await people_service.command("test", {"collMod": "nope", "validator": {}})
        assert exc_info.value.code == 26

    @pytest.mark.asyncio
    async def test_coll_mod_on_view(self, people_service):
        people_service.create_view("test.adults", "people")
        with pytest.raises(DataServiceError) as exc_info:
            await people_service.command("test", {"collMod": "adults", "validator": {}})
        assert exc_info.value.code == 72

    @pytest.mark.asyncio
    async def test_unknown_command(self, people_service):
        with pytest.raises(DataServiceError) as exc_info:
            await people_service.command("test", {"frobnicate": 1})
        assert exc_info.value.code == 59

    @pytest.mark.asyncio
    async def test_server_version(self):
        service = MemoryDataService(server_version="6.0.4")
        assert await service.server_version() == "6.0.4"
        reply = await service.command("admin", {"buildInfo": 1})
        assert reply["version"] == "6.0.4"

    @pytest.mark.asyncio
    async def test_commands_are_recorded(self, people_service):
        await people_service.command("admin", {"ping": 1})
        assert people_service.commands == [("admin", {"ping": 1})]


class TestProtocol:
    @pytest.mark.asyncio
    async def test_base_class_is_abstract(self):
        service = DataService()
        with pytest.raises(NotImplementedError):
            await service.server_version()
