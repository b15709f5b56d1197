"""
Schema Validation Kernel — Rule Expression Evaluator

Turns the text a user types into the editor into a structured value.

The text is shell-style, not JSON: bare keys, single quotes, trailing
commas, regex literals and the extended-type constructors
(ObjectId(...), ISODate(...), NumberLong(...), ...) are all accepted.

Nothing is executed. A tokenizer and a recursive-descent evaluator walk a
fixed grammar, and constructor names resolve only through _CONSTRUCTORS.
No state survives between calls.

Grammar:
  value   := object | array | string | number | regex | literal
           | ["new"] Constructor "(" [value ("," value)*] ")"
           | ("+" | "-") value
           | "(" value ")"
  object  := "{" [key ":" value ("," key ":" value)* [","]] "}"
  key     := identifier | string | number
  array   := "[" [value ("," value)* [","]] "]"
  literal := true | false | null | undefined | Infinity | NaN
"""

from __future__ import annotations

import base64
import math
import re
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any, Callable

from bson import Binary, Code, DBRef, Decimal128, Int64, MaxKey, MinKey, ObjectId, Regex, Timestamp
from bson.errors import BSONError

# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class EvalError(Exception):
    """The expression text could not be evaluated."""

    def __init__(self, message: str, position: int | None = None):
        super().__init__(message)
        self.message = message
        self.position = position


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def evaluate(text: str) -> Any:
    """
    Evaluate a single rule expression.

    Returns plain Python containers (dict, list, str, int, float, bool,
    None) plus bson types for the extended scalars.

    Raises EvalError on any failure.
    """
    tokens = _tokenize(text)
    parser = _Parser(text, tokens)
    try:
        value = parser.parse_value()
    except RecursionError:
        raise EvalError("Expression is nested too deeply") from None
    parser.skip_semicolons()
    parser.expect_end()
    return value


def try_evaluate(text: str) -> tuple[Any, EvalError | None]:
    """Like evaluate(), but never raises: returns (value, error)."""
    try:
        return evaluate(text), None
    except EvalError as e:
        return None, e


def constructor_names() -> list[str]:
    """Names that resolve inside an expression, sorted."""
    return sorted(_CONSTRUCTORS)


# ---------------------------------------------------------------------------
# Tokenizer
# ---------------------------------------------------------------------------

_PUNCTUATION = set("{}[](),:;+-")
# A "/" after one of these starts a regex literal, anywhere else it is an error.
_REGEX_ALLOWED_AFTER = {None, "{", "[", "(", ",", ":", "+", "-", ";"}

_IDENT_RE = re.compile(r"[A-Za-z_$][A-Za-z0-9_$]*")
_NUMBER_RE = re.compile(r"0[xX][0-9a-fA-F]+|(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")
_REGEX_FLAGS_RE = re.compile(r"[a-z]*")

_ESCAPES = {
    "n": "\n",
    "t": "\t",
    "r": "\r",
    "b": "\b",
    "f": "\f",
    "v": "\v",
    "0": "\0",
}


class _Token:
    __slots__ = ("kind", "value", "pos")

    def __init__(self, kind: str, value: Any, pos: int) -> None:
        self.kind = kind  # "punct", "string", "number", "ident", "regex", "end"
        self.value = value
        self.pos = pos

    def __repr__(self) -> str:  # pragma: no cover
        return f"_Token({self.kind!r}, {self.value!r}, pos={self.pos})"


def _location(text: str, pos: int) -> str:
    line = text.count("\n", 0, pos) + 1
    column = pos - (text.rfind("\n", 0, pos) + 1) + 1
    return f"line {line}, column {column}"


def _tokenize(text: str) -> list[_Token]:
    tokens: list[_Token] = []
    i = 0
    n = len(text)
    prev: str | None = None  # last punctuation, or None at start; "value" after a value

    while i < n:
        ch = text[i]

        if ch.isspace():
            i += 1
            continue

        # Comments
        if text.startswith("//", i):
            end = text.find("\n", i)
            i = n if end == -1 else end + 1
            continue
        if text.startswith("/*", i):
            end = text.find("*/", i + 2)
            if end == -1:
                raise EvalError(f"Unterminated comment ({_location(text, i)})", i)
            i = end + 2
            continue

        if ch == "/":
            if prev not in _REGEX_ALLOWED_AFTER:
                raise EvalError(f"Unexpected token '/' ({_location(text, i)})", i)
            pattern, flags, i_next = _read_regex(text, i)
            tokens.append(_Token("regex", Regex(pattern, flags), i))
            i = i_next
            prev = "value"
            continue

        if ch in _PUNCTUATION:
            tokens.append(_Token("punct", ch, i))
            prev = ch
            i += 1
            continue

        if ch in "'\"":
            value, i_next = _read_string(text, i)
            tokens.append(_Token("string", value, i))
            i = i_next
            prev = "value"
            continue

        m = _NUMBER_RE.match(text, i)
        if m and (ch.isdigit() or ch == "."):
            raw = m.group(0)
            tokens.append(_Token("number", _to_number(raw), i))
            i = m.end()
            prev = "value"
            continue

        m = _IDENT_RE.match(text, i)
        if m:
            tokens.append(_Token("ident", m.group(0), i))
            i = m.end()
            prev = "value"
            continue

        raise EvalError(f"Unexpected character {ch!r} ({_location(text, i)})", i)

    tokens.append(_Token("end", None, n))
    return tokens


def _to_number(raw: str) -> int | float:
    if raw[:2] in ("0x", "0X"):
        return int(raw, 16)
    if any(c in raw for c in ".eE"):
        return float(raw)
    return int(raw)


def _read_string(text: str, start: int) -> tuple[str, int]:
    quote = text[start]
    out: list[str] = []
    i = start + 1
    n = len(text)

    while i < n:
        ch = text[i]
        if ch == quote:
            return "".join(out), i + 1
        if ch == "\n":
            break
        if ch == "\\":
            i += 1
            if i >= n:
                break
            esc = text[i]
            if esc in _ESCAPES:
                out.append(_ESCAPES[esc])
                i += 1
            elif esc == "u":
                hex_digits = text[i + 1 : i + 5]
                if len(hex_digits) != 4 or not all(c in "0123456789abcdefABCDEF" for c in hex_digits):
                    raise EvalError(f"Invalid unicode escape ({_location(text, i)})", i)
                out.append(chr(int(hex_digits, 16)))
                i += 5
            elif esc == "x":
                hex_digits = text[i + 1 : i + 3]
                if len(hex_digits) != 2 or not all(c in "0123456789abcdefABCDEF" for c in hex_digits):
                    raise EvalError(f"Invalid hexadecimal escape ({_location(text, i)})", i)
                out.append(chr(int(hex_digits, 16)))
                i += 3
            elif esc == "\n":
                # line continuation
                i += 1
            else:
                out.append(esc)
                i += 1
            continue
        out.append(ch)
        i += 1

    raise EvalError(f"Unterminated string ({_location(text, start)})", start)


def _read_regex(text: str, start: int) -> tuple[str, str, int]:
    i = start + 1
    n = len(text)
    in_class = False
    while i < n:
        ch = text[i]
        if ch == "\n":
            break
        if ch == "\\":
            i += 2
            continue
        if ch == "[":
            in_class = True
        elif ch == "]":
            in_class = False
        elif ch == "/" and not in_class:
            pattern = text[start + 1 : i]
            flags_match = _REGEX_FLAGS_RE.match(text, i + 1)
            flags = flags_match.group(0) if flags_match else ""
            return pattern, flags, i + 1 + len(flags)
        i += 1
    raise EvalError(f"Unterminated regular expression ({_location(text, start)})", start)


# ---------------------------------------------------------------------------
# Parser / evaluator
# ---------------------------------------------------------------------------

_LITERALS: dict[str, Any] = {
    "true": True,
    "false": False,
    "null": None,
    "undefined": None,
    "Infinity": math.inf,
    "NaN": math.nan,
}


class _Parser:
    def __init__(self, text: str, tokens: list[_Token]) -> None:
        self.text = text
        self.tokens = tokens
        self.index = 0

    # -- token helpers --

    def peek(self) -> _Token:
        return self.tokens[self.index]

    def advance(self) -> _Token:
        tok = self.tokens[self.index]
        if tok.kind != "end":
            self.index += 1
        return tok

    def is_punct(self, value: str) -> bool:
        tok = self.peek()
        return tok.kind == "punct" and tok.value == value

    def expect_punct(self, value: str) -> None:
        tok = self.advance()
        if tok.kind != "punct" or tok.value != value:
            raise self.unexpected(tok, expected=value)

    def expect_end(self) -> None:
        tok = self.peek()
        if tok.kind != "end":
            raise self.unexpected(tok)

    def skip_semicolons(self) -> None:
        while self.is_punct(";"):
            self.advance()

    def unexpected(self, tok: _Token, expected: str | None = None) -> EvalError:
        if tok.kind == "end":
            return EvalError("Unexpected end of input", tok.pos)
        shown = tok.value if tok.kind in ("punct", "ident") else self.text[tok.pos : tok.pos + 20]
        hint = f", expected '{expected}'" if expected else ""
        return EvalError(f"Unexpected token '{shown}'{hint} ({_location(self.text, tok.pos)})", tok.pos)

    # -- grammar --

    def parse_value(self) -> Any:
        tok = self.advance()

        if tok.kind in ("string", "number", "regex"):
            return tok.value

        if tok.kind == "punct":
            if tok.value == "{":
                return self.parse_object()
            if tok.value == "[":
                return self.parse_array()
            if tok.value == "(":
                value = self.parse_value()
                self.expect_punct(")")
                return value
            if tok.value in ("-", "+"):
                operand = self.parse_value()
                if isinstance(operand, bool) or not isinstance(operand, int | float | Int64):
                    raise EvalError(
                        f"Unary '{tok.value}' needs a number ({_location(self.text, tok.pos)})", tok.pos
                    )
                if tok.value == "-":
                    return Int64(-operand) if isinstance(operand, Int64) else -operand
                return operand
            raise self.unexpected(tok)

        if tok.kind == "ident":
            name = tok.value
            if name in _LITERALS:
                return _LITERALS[name]
            if name == "new":
                ctor = self.advance()
                if ctor.kind != "ident":
                    raise self.unexpected(ctor)
                return self.parse_call(ctor)
            if self.is_punct("("):
                return self.parse_call(tok)
            if name in _CONSTRUCTORS:
                raise EvalError(f"{name} must be called, e.g. {name}(...) ({_location(self.text, tok.pos)})", tok.pos)
            raise EvalError(f"{name} is not defined", tok.pos)

        raise self.unexpected(tok)

    def parse_object(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        while not self.is_punct("}"):
            key_tok = self.advance()
            if key_tok.kind in ("ident", "string"):
                key = key_tok.value
            elif key_tok.kind == "number":
                key = _number_key(key_tok.value)
            else:
                raise self.unexpected(key_tok)
            self.expect_punct(":")
            result[key] = self.parse_value()
            if self.is_punct(","):
                self.advance()
                continue
            if not self.is_punct("}"):
                raise self.unexpected(self.peek(), expected="}")
        self.expect_punct("}")
        return result

    def parse_array(self) -> list[Any]:
        result: list[Any] = []
        while not self.is_punct("]"):
            result.append(self.parse_value())
            if self.is_punct(","):
                self.advance()
                continue
            if not self.is_punct("]"):
                raise self.unexpected(self.peek(), expected="]")
        self.expect_punct("]")
        return result

    def parse_call(self, name_tok: _Token) -> Any:
        name = name_tok.value
        ctor = _CONSTRUCTORS.get(name)
        if ctor is None:
            raise EvalError(f"{name} is not defined", name_tok.pos)

        self.expect_punct("(")
        args: list[Any] = []
        while not self.is_punct(")"):
            args.append(self.parse_value())
            if self.is_punct(","):
                self.advance()
                continue
            if not self.is_punct(")"):
                raise self.unexpected(self.peek(), expected=")")
        self.expect_punct(")")

        try:
            return ctor(*args)
        except EvalError:
            raise
        except (TypeError, ValueError, ArithmeticError, BSONError) as e:
            raise EvalError(f"{name}: {e}", name_tok.pos) from e


def _number_key(value: int | float) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


# ---------------------------------------------------------------------------
# Constructors
# ---------------------------------------------------------------------------

_INT32_MIN = -(2**31)
_INT32_MAX = 2**31 - 1
_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def _require_str(value: Any) -> str:
    if not isinstance(value, str):
        raise TypeError(f"expected a string argument, got {_type_name(value)}")
    return value


def _type_name(value: Any) -> str:
    if value is None:
        return "null"
    return type(value).__name__


def _parse_int(value: Any) -> int:
    """parseInt-like: "42" → 42, 42.9 → 42, "4.2e1" → 42."""
    if isinstance(value, bool):
        raise TypeError("expected a number, got bool")
    if isinstance(value, int):
        return int(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValueError(f"{value} is not a finite number")
        return int(value)
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            return int(float(text))
    raise TypeError(f"expected a number or string, got {_type_name(value)}")


def _ms_precision(dt: datetime) -> datetime:
    # BSON dates carry milliseconds
    return dt.replace(microsecond=dt.microsecond // 1000 * 1000)


def _make_date(value: Any = None) -> datetime:
    if value is None:
        return _ms_precision(datetime.now(UTC))
    if isinstance(value, datetime):
        return _ms_precision(value if value.tzinfo else value.replace(tzinfo=UTC))
    if isinstance(value, bool):
        raise TypeError("expected a date string or milliseconds, got bool")
    if isinstance(value, int | float | Int64):
        return _EPOCH + timedelta(milliseconds=int(value))
    text = _require_str(value).strip()
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        raise ValueError(f"invalid date {text!r}") from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return _ms_precision(parsed.astimezone(UTC))


def _make_regex(pattern: Any, flags: Any = "") -> Regex:
    if isinstance(pattern, Regex):
        return Regex(pattern.pattern, flags or pattern.flags)
    return Regex(_require_str(pattern), _require_str(flags or ""))


def _make_bindata(subtype: Any, data: Any) -> Binary:
    raw = base64.b64decode(_require_str(data), validate=True)
    return Binary(raw, _parse_int(subtype))


def _make_binary(data: Any, subtype: Any = 0) -> Binary:
    return _make_bindata(subtype, data)


def _make_uuid(value: Any = None) -> Binary:
    if value is None:
        return Binary.from_uuid(uuid.uuid4())
    return Binary.from_uuid(uuid.UUID(_require_str(value)))


def _make_code(code: Any, scope: Any = None) -> Code:
    if scope is not None and not isinstance(scope, dict):
        raise TypeError("scope must be a document")
    return Code(_require_str(code), scope)


def _make_dbref(collection: Any, id: Any, database: Any = None) -> DBRef:
    return DBRef(_require_str(collection), id, database)


def _make_decimal(value: Any = "0") -> Decimal128:
    if isinstance(value, bool):
        raise TypeError("expected a number or string, got bool")
    if isinstance(value, int | float | Int64):
        value = repr(value) if isinstance(value, float) else str(int(value))
    return Decimal128(_require_str(value))


def _make_double(value: Any = 0) -> float:
    if isinstance(value, bool):
        raise TypeError("expected a number, got bool")
    return float(value)


def _make_int32(value: Any = 0) -> int:
    result = _parse_int(value)
    if not _INT32_MIN <= result <= _INT32_MAX:
        raise ValueError(f"{result} is out of range for a 32-bit integer")
    return result


def _make_int64(value: Any = 0) -> Int64:
    return Int64(_parse_int(value))


def _make_object_id(value: Any = None) -> ObjectId:
    if value is None:
        return ObjectId()
    if isinstance(value, ObjectId):
        return value
    return ObjectId(_require_str(value))


def _make_symbol(value: Any) -> str:
    return _require_str(value)


def _make_timestamp(t: Any = 0, i: Any = 0) -> Timestamp:
    if isinstance(t, dict):
        # Timestamp({t: 1, i: 2})
        return Timestamp(_parse_int(t.get("t", 0)), _parse_int(t.get("i", 0)))
    return Timestamp(_parse_int(t), _parse_int(i))


_CONSTRUCTORS: dict[str, Callable[..., Any]] = {
    "RegExp": _make_regex,
    "Binary": _make_binary,
    "BinData": _make_bindata,
    "UUID": _make_uuid,
    "Code": _make_code,
    "DBRef": _make_dbref,
    "Decimal128": _make_decimal,
    "NumberDecimal": _make_decimal,
    "Double": _make_double,
    "Int32": _make_int32,
    "NumberInt": _make_int32,
    "Long": _make_int64,
    "NumberLong": _make_int64,
    "Int64": _make_int64,
    "MinKey": MinKey,
    "MaxKey": MaxKey,
    "ObjectId": _make_object_id,
    "ObjectID": _make_object_id,
    "Symbol": _make_symbol,
    "Timestamp": _make_timestamp,
    "ISODate": _make_date,
    "Date": _make_date,
}
