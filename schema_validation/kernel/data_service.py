"""
Schema Validation Kernel — Data Service

The store handle the kernel talks to. Everything that reaches the backing
store goes through one of these methods; the store and the sample pipeline
never import a driver.

Implementations:
  MemoryDataService                       — in-process, for tests and demos
  services.mongo_data_service.MongoDataService — pymongo asyncio client
"""

from __future__ import annotations

import copy
import re
from typing import Any

from bson import Regex

# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class DataServiceError(Exception):
    """A command or query was refused by the data service."""

    def __init__(self, message: str, code: int | None = None):
        super().__init__(message)
        self.code = code


# ---------------------------------------------------------------------------
# Storage protocol
# ---------------------------------------------------------------------------


class DataService:
    """
    Abstract store handle.
    Namespaces are "db.collection" strings. All methods may raise.
    """

    async def find(self, ns: str, filter: dict[str, Any], options: dict[str, Any] | None = None) -> list[dict]:
        """Documents matching filter. options: limit, skip, projection, sort."""
        raise NotImplementedError

    async def count(self, ns: str, filter: dict[str, Any], options: dict[str, Any] | None = None) -> int:
        """Number of documents matching filter."""
        raise NotImplementedError

    async def aggregate(
        self,
        ns: str,
        pipeline: list[dict[str, Any]],
        options: dict[str, Any] | None = None,
    ) -> list[dict]:
        """Run an aggregation pipeline and return every result document."""
        raise NotImplementedError

    async def list_collections(self, database: str, filter: dict[str, Any] | None = None) -> list[dict]:
        """listCollections entries: {name, type, options}."""
        raise NotImplementedError

    async def command(self, database: str, command: dict[str, Any]) -> dict[str, Any]:
        """Run a database command. Returns the server's reply."""
        raise NotImplementedError

    async def server_version(self) -> str:
        """The connected server's version string, e.g. "7.0.2"."""
        raise NotImplementedError


# ---------------------------------------------------------------------------
# In-memory implementation
# ---------------------------------------------------------------------------

_MISSING = object()


class MemoryDataService(DataService):
    """In-memory data service for testing."""

    def __init__(self, server_version: str = "7.0.0") -> None:
        self.documents: dict[str, list[dict]] = {}
        self.options: dict[str, dict[str, Any]] = {}
        self.types: dict[str, str] = {}
        self.commands: list[tuple[str, dict[str, Any]]] = []
        self._server_version = server_version

    # -- setup helpers --

    def create_collection(self, ns: str, options: dict[str, Any] | None = None) -> None:
        self.documents.setdefault(ns, [])
        self.options[ns] = dict(options or {})
        self.types[ns] = "collection"

    def create_view(self, ns: str, view_on: str, pipeline: list[dict[str, Any]] | None = None) -> None:
        self.documents.setdefault(ns, [])
        self.options[ns] = {"viewOn": view_on, "pipeline": list(pipeline or [])}
        self.types[ns] = "view"

    def insert_many(self, ns: str, docs: list[dict]) -> None:
        if ns not in self.types:
            self.create_collection(ns)
        self.documents[ns].extend(copy.deepcopy(docs))

    # -- DataService --

    async def find(self, ns: str, filter: dict[str, Any], options: dict[str, Any] | None = None) -> list[dict]:
        options = options or {}
        docs = [d for d in self.documents.get(ns, []) if matches(d, filter)]
        skip = options.get("skip", 0)
        limit = options.get("limit", 0)
        docs = docs[skip:]
        if limit:
            docs = docs[:limit]
        return copy.deepcopy(docs)

    async def count(self, ns: str, filter: dict[str, Any], options: dict[str, Any] | None = None) -> int:
        options = options or {}
        total = sum(1 for d in self.documents.get(ns, []) if matches(d, filter))
        total = max(total - options.get("skip", 0), 0)
        limit = options.get("limit", 0)
        return min(total, limit) if limit else total

    async def aggregate(
        self,
        ns: str,
        pipeline: list[dict[str, Any]],
        options: dict[str, Any] | None = None,
    ) -> list[dict]:
        docs = list(self.documents.get(ns, []))
        for stage in pipeline:
            if len(stage) != 1:
                raise DataServiceError("A pipeline stage specification object must contain exactly one field.")
            name, arg = next(iter(stage.items()))
            if name == "$match":
                docs = [d for d in docs if matches(d, arg)]
            elif name == "$limit":
                if not isinstance(arg, int) or isinstance(arg, bool) or arg <= 0:
                    raise DataServiceError("the limit must be positive")
                docs = docs[:arg]
            elif name == "$skip":
                docs = docs[arg:]
            else:
                raise DataServiceError(f"Unrecognized pipeline stage name: '{name}'")
        return copy.deepcopy(docs)

    async def list_collections(self, database: str, filter: dict[str, Any] | None = None) -> list[dict]:
        prefix = f"{database}."
        result = []
        for ns, type_ in self.types.items():
            if not ns.startswith(prefix):
                continue
            entry = {
                "name": ns[len(prefix) :],
                "type": type_,
                "options": copy.deepcopy(self.options.get(ns, {})),
            }
            if filter and not matches(entry, filter):
                continue
            result.append(entry)
        return result

    async def command(self, database: str, command: dict[str, Any]) -> dict[str, Any]:
        self.commands.append((database, copy.deepcopy(command)))
        name = next(iter(command), None)

        if name == "collMod":
            ns = f"{database}.{command['collMod']}"
            if ns not in self.types:
                raise DataServiceError(f"ns does not exist: {ns}", code=26)
            if self.types[ns] == "view":
                raise DataServiceError("can't add validators to views", code=72)
            for key in ("validator", "validationAction", "validationLevel"):
                if key in command:
                    self.options[ns][key] = copy.deepcopy(command[key])
            return {"ok": 1.0}

        if name == "buildInfo":
            return {"version": self._server_version, "ok": 1.0}
        if name == "ping":
            return {"ok": 1.0}

        raise DataServiceError(f"no such command: '{name}'", code=59)

    async def server_version(self) -> str:
        return self._server_version


# ---------------------------------------------------------------------------
# Matching: just enough of the query language for sample lookups
# ---------------------------------------------------------------------------


def matches(doc: dict[str, Any], query: dict[str, Any]) -> bool:
    """Return True if doc satisfies query."""
    for key, cond in query.items():
        if key == "$and":
            if not all(matches(doc, q) for q in cond):
                return False
        elif key == "$or":
            if not any(matches(doc, q) for q in cond):
                return False
        elif key == "$nor":
            if any(matches(doc, q) for q in cond):
                return False
        elif key == "$comment":
            continue
        elif key.startswith("$"):
            raise DataServiceError(f"{key} is not supported by MemoryDataService")
        elif not _match_field(_resolve(doc, key), cond):
            return False
    return True


def _resolve(doc: Any, path: str) -> Any:
    value = doc
    for part in path.split("."):
        if isinstance(value, dict) and part in value:
            value = value[part]
        elif isinstance(value, list) and part.isdigit() and int(part) < len(value):
            value = value[int(part)]
        else:
            return _MISSING
    return value


def _is_operator_doc(cond: Any) -> bool:
    return isinstance(cond, dict) and bool(cond) and all(k.startswith("$") for k in cond)


def _match_field(value: Any, cond: Any) -> bool:
    if _is_operator_doc(cond):
        options = cond.get("$options", "")
        return all(_apply(op, arg, value, options) for op, arg in cond.items() if op != "$options")
    return _equals(value, cond)


def _equals(value: Any, cond: Any) -> bool:
    if isinstance(cond, Regex | re.Pattern):
        return _regex_match(value, cond.pattern, cond.flags)
    if value is _MISSING:
        return cond is None
    if value == cond:
        return True
    return isinstance(value, list) and not isinstance(cond, list) and cond in value


def _compare(value: Any, arg: Any, op: str) -> bool:
    candidates = value if isinstance(value, list) else [value]
    for candidate in candidates:
        if candidate is _MISSING or candidate is None:
            continue
        try:
            if op == "$gt" and candidate > arg:
                return True
            if op == "$gte" and candidate >= arg:
                return True
            if op == "$lt" and candidate < arg:
                return True
            if op == "$lte" and candidate <= arg:
                return True
        except TypeError:
            continue
    return False


_REGEX_FLAGS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL, "x": re.VERBOSE}


def _regex_match(value: Any, pattern: str, flags: str | int) -> bool:
    # bson.Regex stores flags as re module bits; $options carries letters
    if isinstance(flags, int):
        re_flags = flags & (re.IGNORECASE | re.MULTILINE | re.DOTALL | re.VERBOSE)
    else:
        re_flags = 0
        for ch in flags:
            re_flags |= _REGEX_FLAGS.get(ch, 0)
    candidates = value if isinstance(value, list) else [value]
    return any(isinstance(c, str) and re.search(pattern, c, re_flags) for c in candidates)


def _apply(op: str, arg: Any, value: Any, options: str | int) -> bool:
    if op == "$eq":
        return _equals(value, arg)
    if op == "$ne":
        return not _equals(value, arg)
    if op in ("$gt", "$gte", "$lt", "$lte"):
        return _compare(value, arg, op)
    if op == "$in":
        return any(_equals(value, a) for a in arg)
    if op == "$nin":
        return not any(_equals(value, a) for a in arg)
    if op == "$exists":
        return (value is not _MISSING) == bool(arg)
    if op == "$regex":
        if isinstance(arg, Regex | re.Pattern):
            return _regex_match(value, arg.pattern, options or arg.flags)
        return _regex_match(value, arg, options)
    if op == "$size":
        return isinstance(value, list) and len(value) == arg
    if op == "$all":
        return isinstance(value, list) and all(a in value for a in arg)
    if op == "$not":
        return not _match_field(value, arg)
    raise DataServiceError(f"{op} is not supported by MemoryDataService")
