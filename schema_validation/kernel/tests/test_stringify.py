"""
Schema Validation Kernel — Canonical Rule Text Tests

stringify() renders what evaluate() reads. Output is deterministic.
"""

import math
import uuid
from datetime import UTC, datetime

import pytest
from bson import Binary, Code, DBRef, Decimal128, Int64, MaxKey, MinKey, ObjectId, Regex, Timestamp

from schema_validation.kernel.expression import evaluate
from schema_validation.kernel.stringify import format_date, quote, render_key, stringify


class TestLayout:
    def test_document_is_indented_two_spaces(self):
        assert stringify({"a": 1, "b": {"c": "x"}}) == "{\n  a: 1,\n  b: {\n    c: 'x'\n  }\n}"

    def test_compact(self):
        assert stringify({"a": [1, 2], "b": {}}, indent=None) == "{a: [1, 2], b: {}}"

    def test_empty_containers(self):
        assert stringify({}) == "{}"
        assert stringify([]) == "[]"

    def test_operator_keys_stay_bare(self):
        assert stringify({"$jsonSchema": {"_id": 1}}, indent=None) == "{$jsonSchema: {_id: 1}}"

    def test_non_identifier_keys_are_quoted(self):
        assert stringify({"a.b": 1, "x y": 2}, indent=None) == "{'a.b': 1, 'x y': 2}"

    def test_deterministic(self):
        doc = {"z": 1, "a": [Int64(2), "b"], "m": None}
        assert stringify(doc) == stringify(dict(doc))


class TestScalars:
    def test_strings(self):
        assert stringify("it's") == r"'it\'s'"
        assert stringify("a\nb") == r"'a\nb'"
        assert quote("\u2028") == r"'\u2028'"
        assert evaluate(quote("\u2028\u2029")) == "\u2028\u2029"

    def test_numbers(self):
        assert stringify(42) == "42"
        assert stringify(1.5) == "1.5"
        assert stringify(1.0) == "1.0"
        assert stringify(math.inf) == "Infinity"
        assert stringify(-math.inf) == "-Infinity"
        assert stringify(math.nan) == "NaN"

    def test_booleans_and_null(self):
        assert stringify([True, False, None], indent=None) == "[true, false, null]"

    def test_int64(self):
        assert stringify(Int64(5)) == "NumberLong('5')"

    def test_date(self):
        assert stringify(datetime(2020, 1, 1, 8, 15, tzinfo=UTC)) == "ISODate('2020-01-01T08:15:00.000Z')"

    def test_naive_date_is_utc(self):
        assert format_date(datetime(2020, 1, 1)) == "2020-01-01T00:00:00.000Z"

    def test_object_id(self):
        oid = ObjectId("5f1d7a9e8b3c4d2e1f0a9b8c")
        assert stringify(oid) == "ObjectId('5f1d7a9e8b3c4d2e1f0a9b8c')"

    def test_decimal(self):
        assert stringify(Decimal128("1.5")) == "NumberDecimal('1.5')"

    def test_timestamp(self):
        assert stringify(Timestamp(1, 2)) == "Timestamp(1, 2)"

    def test_regex_literal(self):
        assert stringify(Regex("^A", "i")) == "/^A/i"

    def test_regex_that_cannot_be_a_literal(self):
        assert stringify(Regex("a/b")) == "RegExp('a/b')"
        assert stringify(Regex("", "i")) == "RegExp('', 'i')"

    def test_uuid(self):
        value = uuid.UUID("0e5bfbd3-1d59-4b65-bd1d-9f5a4c0c4a11")
        assert stringify(Binary.from_uuid(value)) == "UUID('0e5bfbd3-1d59-4b65-bd1d-9f5a4c0c4a11')"

    def test_bindata(self):
        assert stringify(Binary(b"abc", 0)) == "BinData(0, 'YWJj')"

    def test_code_dbref_keys(self):
        assert stringify(Code("x")) == "Code('x')"
        assert stringify(Code("x", {"a": 1}), indent=None) == "Code('x', {a: 1})"
        assert stringify(DBRef("people", 1, "test")) == "DBRef('people', 1, 'test')"
        assert stringify([MinKey(), MaxKey()], indent=None) == "[MinKey(), MaxKey()]"

    def test_unknown_type(self):
        with pytest.raises(TypeError, match="Cannot render"):
            stringify({"a": object()})


class TestRenderKey:
    def test_identifier(self):
        assert render_key("status") == "status"
        assert render_key("$or") == "$or"

    def test_needs_quotes(self):
        assert render_key("1abc") == "'1abc'"
        assert render_key("") == "''"


class TestInverseOfEvaluate:
    def test_realistic_validator(self):
        validator = {
            "$jsonSchema": {
                "bsonType": "object",
                "required": ["name", "status"],
                "properties": {"name": {"bsonType": "string"}},
            },
            "status": {"$in": ["A", "B"]},
            "created": {"$gte": datetime(2020, 1, 1, tzinfo=UTC)},
            "owner": ObjectId("5f1d7a9e8b3c4d2e1f0a9b8c"),
            "email": Regex("@example\\.com$", "i"),
            "views": {"$lt": Int64(10**12)},
            "price": {"$gt": Decimal128("0.01")},
            "ts": {"$gt": Timestamp(1, 2)},
        }
        assert evaluate(stringify(validator)) == validator

    def test_compact_form_reads_back(self):
        value = {"a": [1, {"b": "c"}], "d": Binary(b"\x00\x01", 5)}
        assert evaluate(stringify(value, indent=None)) == value
