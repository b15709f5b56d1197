"""
Schema Validation Kernel — Canonical Rule Text

stringify(value) is the inverse of expression.evaluate(): it renders a
structured value in the same shell syntax the evaluator reads, so

    evaluate(stringify(v)) == v

for every value evaluate() can produce. Output is deterministic: document
key order is preserved, strings are single-quoted, identifier keys are bare
and nesting is indented with 2 spaces.
"""

from __future__ import annotations

import base64
import math
import re
import uuid
from datetime import UTC, datetime
from typing import Any

from bson import Binary, Code, DBRef, Decimal128, Int64, MaxKey, MinKey, ObjectId, Regex, Timestamp
from bson.binary import UUID_SUBTYPE

_BARE_KEY_RE = re.compile(r"^[A-Za-z_$][A-Za-z0-9_$]*$")

# re module flag bits → regex literal flags, for Regex objects built from compiled patterns
_RE_FLAG_CHARS = [
    (re.IGNORECASE, "i"),
    (re.MULTILINE, "m"),
    (re.DOTALL, "s"),
    (re.VERBOSE, "x"),
]


def stringify(value: Any, indent: int | None = 2) -> str:
    """
    Render value as rule text.

    indent=None renders on one line.

    Raises TypeError for values outside the rule vocabulary.
    """
    return _render(value, indent, 0)


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def _render(value: Any, indent: int | None, depth: int) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    # Int64 subclasses int: check it first
    if isinstance(value, Int64):
        return f"NumberLong('{int(value)}')"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return _render_float(value)
    # Code subclasses str: check it first
    if isinstance(value, Code):
        if value.scope is not None:
            return f"Code({quote(str(value))}, {_render(dict(value.scope), indent, depth)})"
        return f"Code({quote(str(value))})"
    if isinstance(value, str):
        return quote(value)
    if isinstance(value, dict):
        return _render_document(value, indent, depth)
    if isinstance(value, list | tuple):
        return _render_array(list(value), indent, depth)
    if isinstance(value, datetime):
        return f"ISODate('{format_date(value)}')"
    if isinstance(value, ObjectId):
        return f"ObjectId('{value}')"
    if isinstance(value, Decimal128):
        return f"NumberDecimal('{value}')"
    if isinstance(value, Timestamp):
        return f"Timestamp({value.time}, {value.inc})"
    if isinstance(value, Regex):
        return _render_regex(value.pattern, _regex_flags(value.flags))
    if isinstance(value, re.Pattern):
        return _render_regex(value.pattern, _regex_flags(value.flags))
    if isinstance(value, Binary):
        if value.subtype == UUID_SUBTYPE and len(value) == 16:
            return f"UUID('{value.as_uuid()}')"
        return f"BinData({value.subtype}, '{base64.b64encode(bytes(value)).decode()}')"
    if isinstance(value, bytes):
        return f"BinData(0, '{base64.b64encode(value).decode()}')"
    if isinstance(value, uuid.UUID):
        return f"UUID('{value}')"
    if isinstance(value, DBRef):
        args = [quote(value.collection), _render(value.id, indent, depth)]
        if value.database:
            args.append(quote(value.database))
        return f"DBRef({', '.join(args)})"
    if isinstance(value, MinKey):
        return "MinKey()"
    if isinstance(value, MaxKey):
        return "MaxKey()"

    raise TypeError(f"Cannot render value of type {type(value).__name__}")


def _render_float(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    return repr(value)


def _render_document(doc: dict[str, Any], indent: int | None, depth: int) -> str:
    if not doc:
        return "{}"
    items = [f"{render_key(str(k))}: {_render(v, indent, depth + 1)}" for k, v in doc.items()]
    return _wrap("{", "}", items, indent, depth)


def _render_array(values: list[Any], indent: int | None, depth: int) -> str:
    if not values:
        return "[]"
    items = [_render(v, indent, depth + 1) for v in values]
    return _wrap("[", "]", items, indent, depth)


def _wrap(open_: str, close: str, items: list[str], indent: int | None, depth: int) -> str:
    if not indent:
        return open_ + ", ".join(items) + close
    pad = " " * (indent * (depth + 1))
    end_pad = " " * (indent * depth)
    return open_ + "\n" + ",\n".join(pad + item for item in items) + "\n" + end_pad + close


def _render_regex(pattern: str, flags: str) -> str:
    # A literal cannot hold a bare "/" or a newline, and "//" or "/*" would read as a comment.
    if not pattern or "/" in pattern or "\n" in pattern or pattern.startswith("*") or pattern.endswith("\\"):
        if flags:
            return f"RegExp({quote(pattern)}, {quote(flags)})"
        return f"RegExp({quote(pattern)})"
    return f"/{pattern}/{flags}"


def _regex_flags(flags: str | int) -> str:
    if isinstance(flags, str):
        return flags
    return "".join(ch for bit, ch in _RE_FLAG_CHARS if flags & bit)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def render_key(key: str) -> str:
    """Bare identifier keys stay bare ($jsonSchema, _id); everything else is quoted."""
    if _BARE_KEY_RE.match(key):
        return key
    return quote(key)


def quote(text: str) -> str:
    """Single-quote a string with JS escapes."""
    out: list[str] = ["'"]
    for ch in text:
        if ch == "\\":
            out.append("\\\\")
        elif ch == "'":
            out.append("\\'")
        elif ch == "\n":
            out.append("\\n")
        elif ch == "\r":
            out.append("\\r")
        elif ch == "\t":
            out.append("\\t")
        elif ord(ch) < 0x20 or ch in "\u2028\u2029":
            out.append(f"\\u{ord(ch):04x}")
        else:
            out.append(ch)
    out.append("'")
    return "".join(out)


def format_date(value: datetime) -> str:
    """ISO 8601 UTC with milliseconds: 2024-01-31T08:15:00.000Z. Naive values are UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    value = value.astimezone(UTC)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"
