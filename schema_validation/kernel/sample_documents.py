"""
Schema Validation Kernel — Sample Documents

Shows one document that passes the current rule and one that fails it.

Two parts:
  reduce_sample_documents — pure (SampleDocumentsState, action) → ReduceResult
  fetch_sample_documents  — async pipeline against a DataService

The pair is all-or-nothing: if either lookup fails, both sides are reset
to None and the error is reported. A half-updated pair would suggest the
rule matches everything (or nothing) when it does not.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Any, assert_never

from schema_validation.config import settings
from schema_validation.kernel.actions import (
    SampleDocumentsAction,
    SampleDocumentsFailed,
    SampleDocumentsFetched,
    SampleDocumentsRequested,
)
from schema_validation.kernel.checker import RuleChecker, check_validator
from schema_validation.kernel.data_service import DataService
from schema_validation.kernel.types import (
    ErrorInfo,
    Namespace,
    ReduceResult,
    SampleDocuments,
    SampleDocumentsState,
)

logger = logging.getLogger(__name__)

# Aggregations may spill to disk on large collections
AGGREGATE_OPTIONS: dict[str, Any] = {"allowDiskUse": True}


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class SampleQueryError(Exception):
    """The matching or the non-matching lookup failed."""

    def __init__(self, info: ErrorInfo, side: str | None = None):
        super().__init__(info.message)
        self.info = info
        self.side = side  # "matching", "not_matching", or None for count/predicate failures


# ---------------------------------------------------------------------------
# Reducer
# ---------------------------------------------------------------------------


def empty_sample_documents(generation: int = 0) -> SampleDocumentsState:
    return SampleDocumentsState(generation=generation)


def reduce_sample_documents(state: SampleDocumentsState, action: SampleDocumentsAction) -> ReduceResult:
    """
    SampleDocumentsRequested starts a new generation and sets is_loading.
    Only the completion for the current generation settles it.
    """
    if isinstance(action, SampleDocumentsRequested):
        # Previous results stay visible while loading; consumers check is_loading.
        return ReduceResult(
            state=replace(state, is_loading=True, error=None, generation=state.generation + 1),
            applied=True,
        )
    if isinstance(action, SampleDocumentsFetched):
        if action.generation != state.generation:
            return _stale(state, action.generation)
        return ReduceResult(
            state=replace(
                state,
                matching=action.matching,
                not_matching=action.not_matching,
                is_loading=False,
                error=None,
            ),
            applied=True,
        )
    if isinstance(action, SampleDocumentsFailed):
        if action.generation != state.generation:
            return _stale(state, action.generation)
        return ReduceResult(
            state=replace(state, matching=None, not_matching=None, is_loading=False, error=action.error),
            applied=True,
        )
    assert_never(action)


def supersede_sample_documents(state: SampleDocumentsState) -> SampleDocumentsState:
    """The rule text moved on. Whatever is in flight no longer describes it."""
    return replace(state, is_loading=False, generation=state.generation + 1)


def _stale(state: SampleDocumentsState, generation: int) -> ReduceResult:
    return ReduceResult(
        state=state,
        applied=False,
        error=f"STALE_COMPLETION: generation {generation}, current is {state.generation}",
    )


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


def build_pipeline(query: dict[str, Any], count: int, max_limit: int) -> list[dict[str, Any]]:
    """
    [$limit: max_limit]?  $match: query  $limit: 1

    The leading $limit bounds the scan on large collections, so a rule
    that matches (or misses) almost everything cannot force a full
    collection scan.
    """
    pipeline: list[dict[str, Any]] = [{"$match": query}, {"$limit": 1}]
    if count > max_limit:
        pipeline.insert(0, {"$limit": max_limit})
    return pipeline


def negate(query: dict[str, Any]) -> dict[str, Any]:
    return {"$nor": [query]}


async def fetch_sample_documents(
    data_service: DataService,
    namespace: Namespace,
    validator: str,
    *,
    checker: RuleChecker | None = None,
    max_limit: int | None = None,
    timeout: float | None = None,
) -> SampleDocuments:
    """
    Find one document matching validator and one violating it.

    An empty validator matches every document.

    Raises SampleQueryError if the rule does not check, if counting fails,
    or if either lookup fails or exceeds timeout seconds.
    """
    max_limit = settings.SAMPLE_MAX_LIMIT if max_limit is None else max_limit
    timeout = settings.QUERY_TIMEOUT_SECONDS if timeout is None else timeout

    result = checker.check(validator) if checker is not None else check_validator(validator)
    if result.error is not None:
        raise SampleQueryError(result.error)
    query: dict[str, Any] = result.value or {}
    ns = namespace.ns

    try:
        # Only whether the collection exceeds max_limit matters, so the count stops there
        count = await asyncio.wait_for(data_service.count(ns, {}, {"limit": max_limit + 1}), timeout)
    except TimeoutError:
        raise SampleQueryError(ErrorInfo(f"Counting documents in {ns} timed out after {timeout}s", "TIMEOUT")) from None
    except Exception as e:
        raise SampleQueryError(ErrorInfo.from_exception(e)) from e

    # Independent reads: run both, then fail the pair if either side failed.
    matching, not_matching = await asyncio.gather(
        _first(data_service, ns, build_pipeline(query, count, max_limit), timeout, "matching"),
        _first(data_service, ns, build_pipeline(negate(query), count, max_limit), timeout, "not_matching"),
        return_exceptions=True,
    )
    for outcome in (matching, not_matching):
        if isinstance(outcome, BaseException):
            raise outcome
    return SampleDocuments(matching=matching, not_matching=not_matching)


async def _first(
    data_service: DataService,
    ns: str,
    pipeline: list[dict[str, Any]],
    timeout: float,
    side: str,
) -> dict[str, Any] | None:
    try:
        documents = await asyncio.wait_for(data_service.aggregate(ns, pipeline, AGGREGATE_OPTIONS), timeout)
    except TimeoutError:
        logger.warning("sample_documents: %s lookup on %s timed out after %ss", side, ns, timeout)
        raise SampleQueryError(ErrorInfo(f"Sample query timed out after {timeout}s", "TIMEOUT"), side) from None
    except Exception as e:
        logger.warning("sample_documents: %s lookup on %s failed: %s", side, ns, e)
        raise SampleQueryError(ErrorInfo.from_exception(e), side) from e
    return documents[0] if documents else None
