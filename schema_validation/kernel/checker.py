"""
Schema Validation Kernel — Rule Checker

check(text) → CheckResult(normalized, value, error)

Two distinct failures, two distinct messages:
  EVAL_ERROR        — the text is not a well-formed expression
  GRAMMAR_REJECTED  — it is well-formed, but not usable as a validator

On either failure the user's original text is returned untouched, so an
in-progress edit is never silently rewritten.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from bson import Regex

from schema_validation.kernel.expression import EvalError, evaluate, try_evaluate
from schema_validation.kernel.stringify import stringify
from schema_validation.kernel.types import ErrorInfo

EVAL_ERROR = "EVAL_ERROR"
GRAMMAR_REJECTED = "GRAMMAR_REJECTED"

INVALID_RULE_MESSAGE = "The rule is not a valid validator: it must be a query document using supported operators."

# ---------------------------------------------------------------------------
# Operator vocabulary
# ---------------------------------------------------------------------------

# Allowed as top-level keys of a query document
QUERY_OPERATORS: set[str] = {
    "$and",
    "$or",
    "$nor",
    "$expr",
    "$jsonSchema",
    "$comment",
    "$alwaysTrue",
    "$alwaysFalse",
}

# Valid in queries, but the server refuses them inside a collection validator
FORBIDDEN_OPERATORS: set[str] = {"$where", "$near", "$nearSphere", "$text"}

FIELD_OPERATORS: set[str] = {
    "$eq",
    "$ne",
    "$gt",
    "$gte",
    "$lt",
    "$lte",
    "$in",
    "$nin",
    "$exists",
    "$type",
    "$mod",
    "$regex",
    "$options",
    "$all",
    "$elemMatch",
    "$size",
    "$not",
    "$bitsAllSet",
    "$bitsAnySet",
    "$bitsAllClear",
    "$bitsAnyClear",
    "$geoWithin",
    "$geoIntersects",
    "$within",
}

# Keys of an embedded DBRef used as an equality value
_DBREF_KEYS: set[str] = {"$ref", "$id", "$db"}

_ARRAY_OPERATORS: set[str] = {"$in", "$nin", "$all"}
_LOGICAL_OPERATORS: set[str] = {"$and", "$or", "$nor"}


# ---------------------------------------------------------------------------
# Grammar acceptors
# ---------------------------------------------------------------------------


class RuleGrammar:
    """
    Decides whether normalized rule text is acceptable as a validator.
    Implement to plug in a stricter (or server-backed) check.
    """

    def accepts(self, normalized: str) -> bool:
        raise NotImplementedError


class QueryGrammar(RuleGrammar):
    """Structural check of a validator document against the query operator vocabulary."""

    def accepts(self, normalized: str) -> bool:
        try:
            value = evaluate(normalized)
        except EvalError:
            return False
        return not self.errors(value)

    def errors(self, value: Any) -> list[str]:
        """
        Validate an evaluated rule. Returns a list of error strings.
        Empty list = acceptable.
        """
        if not isinstance(value, dict):
            return ["A validator must be a document"]
        errors: list[str] = []
        _check_query(value, errors, path="")
        return errors


def _check_query(query: dict[str, Any], errors: list[str], path: str) -> None:
    for key, value in query.items():
        where = f"{path}{key}"
        if key.startswith("$"):
            if key in FORBIDDEN_OPERATORS:
                errors.append(f"{key} is not allowed in a validator")
            elif key not in QUERY_OPERATORS:
                errors.append(f"Unknown top-level operator: {key}")
            elif key in _LOGICAL_OPERATORS:
                _check_logical(key, value, errors, where)
            elif key == "$jsonSchema" and not isinstance(value, dict):
                errors.append("$jsonSchema must be a document")
            continue
        _check_field(value, errors, where)


def _check_logical(op: str, value: Any, errors: list[str], path: str) -> None:
    if not isinstance(value, list) or not value:
        errors.append(f"{op} must be a nonempty array")
        return
    for i, clause in enumerate(value):
        if not isinstance(clause, dict):
            errors.append(f"{path}.{i}: {op} entries must be documents")
            continue
        _check_query(clause, errors, path=f"{path}.{i}.")


def _check_field(value: Any, errors: list[str], path: str) -> None:
    if not isinstance(value, dict):
        return  # literal equality
    operators = [k for k in value if k.startswith("$")]
    if not operators:
        return  # embedded document equality
    if set(operators) <= _DBREF_KEYS:
        return

    if len(operators) != len(value):
        errors.append(f"{path}: cannot mix operators and field names")
    for op in operators:
        arg = value[op]
        if op in FORBIDDEN_OPERATORS:
            errors.append(f"{op} is not allowed in a validator")
        elif op not in FIELD_OPERATORS:
            errors.append(f"{path}: unknown operator {op}")
        elif op in _ARRAY_OPERATORS and not isinstance(arg, list):
            errors.append(f"{path}: {op} needs an array")
        elif op == "$not":
            if isinstance(arg, dict):
                _check_field(arg, errors, path)
            elif not isinstance(arg, Regex):
                errors.append(f"{path}: $not needs a regex or a document")
        elif op == "$elemMatch" and not isinstance(arg, dict):
            errors.append(f"{path}: $elemMatch needs a document")


# ---------------------------------------------------------------------------
# Checker
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CheckResult:
    """
    normalized — canonical text on success, the original text on failure,
                 "" for a blank rule
    value      — the evaluated rule ({} for a blank rule, None on failure)
    error      — None when the rule is usable
    """

    normalized: str
    value: Any
    error: ErrorInfo | None = None


class RuleChecker:
    """Evaluates rule text, normalizes it and checks it against a grammar."""

    def __init__(self, grammar: RuleGrammar | None = None):
        self._grammar = grammar if grammar is not None else QueryGrammar()

    def check(self, text: str) -> CheckResult:
        if not text or not text.strip():
            return CheckResult(normalized="", value={})

        value, eval_error = try_evaluate(text)
        if eval_error is not None:
            return CheckResult(
                normalized=text,
                value=None,
                error=ErrorInfo(eval_error.message, EVAL_ERROR),
            )

        try:
            normalized = stringify(value)
        except (TypeError, RecursionError) as e:
            return CheckResult(normalized=text, value=None, error=ErrorInfo(str(e) or type(e).__name__, EVAL_ERROR))

        if not self._grammar.accepts(normalized):
            return CheckResult(
                normalized=text,
                value=None,
                error=ErrorInfo(INVALID_RULE_MESSAGE, GRAMMAR_REJECTED),
            )

        return CheckResult(normalized=normalized, value=value)


_default_checker = RuleChecker()


def check_validator(text: str) -> CheckResult:
    """check() with the default QueryGrammar."""
    return _default_checker.check(text)
