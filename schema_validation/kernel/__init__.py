"""
Schema Validation Kernel — the pure engine and its coordinator.

Components:
  expression        — shell-syntax text → BSON-typed value (no code execution)
  stringify         — BSON-typed value → canonical shell-syntax text
  checker           — RuleChecker: evaluate + query grammar
  reducer           — (ValidationState, action) → state  (pure, deterministic)
  sample_documents  — matching / not-matching example pipeline
  store             — root reducer, registry wiring and IO
"""

from schema_validation.kernel.checker import RuleChecker, check_validator
from schema_validation.kernel.data_service import DataService, MemoryDataService
from schema_validation.kernel.expression import EvalError, evaluate
from schema_validation.kernel.reducer import empty_state, reduce, replay
from schema_validation.kernel.registry import AppRegistry
from schema_validation.kernel.sample_documents import fetch_sample_documents
from schema_validation.kernel.store import ValidationStore, root_reduce
from schema_validation.kernel.stringify import stringify

__all__ = [
    "evaluate",
    "EvalError",
    "stringify",
    "RuleChecker",
    "check_validator",
    "reduce",
    "replay",
    "empty_state",
    "fetch_sample_documents",
    "DataService",
    "MemoryDataService",
    "AppRegistry",
    "root_reduce",
    "ValidationStore",
]
