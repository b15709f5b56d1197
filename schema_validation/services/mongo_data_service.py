"""
MongoDataService — the DataService protocol over pymongo's asyncio client.

Server errors surface as pymongo exceptions (OperationFailure carries the
numeric server code); the kernel turns them into ErrorInfo.
"""

from __future__ import annotations

import logging
from typing import Any

from pymongo import AsyncMongoClient

from schema_validation.config import settings
from schema_validation.kernel.data_service import DataService
from schema_validation.kernel.types import Namespace

logger = logging.getLogger(__name__)


class MongoDataService(DataService):
    """DataService backed by a live deployment."""

    def __init__(self, client: AsyncMongoClient):
        self.client = client

    @classmethod
    def from_uri(cls, uri: str | None = None) -> MongoDataService:
        """Create a client for uri (default: MONGODB_URI). The connection opens lazily."""
        client: AsyncMongoClient = AsyncMongoClient(
            uri or settings.MONGODB_URI,
            serverSelectionTimeoutMS=settings.SERVER_SELECTION_TIMEOUT_MS,
            tz_aware=True,
        )
        return cls(client)

    def _collection(self, ns: str):
        namespace = Namespace.from_string(ns)
        return self.client[namespace.database][namespace.collection]

    async def find(self, ns: str, filter: dict[str, Any], options: dict[str, Any] | None = None) -> list[dict]:
        cursor = self._collection(ns).find(filter, **(options or {}))
        return await cursor.to_list(None)

    async def count(self, ns: str, filter: dict[str, Any], options: dict[str, Any] | None = None) -> int:
        return await self._collection(ns).count_documents(filter, **(options or {}))

    async def aggregate(
        self,
        ns: str,
        pipeline: list[dict[str, Any]],
        options: dict[str, Any] | None = None,
    ) -> list[dict]:
        cursor = await self._collection(ns).aggregate(pipeline, **(options or {}))
        return await cursor.to_list(None)

    async def list_collections(self, database: str, filter: dict[str, Any] | None = None) -> list[dict]:
        cursor = await self.client[database].list_collections(filter=filter or {})
        return await cursor.to_list(None)

    async def command(self, database: str, command: dict[str, Any]) -> dict[str, Any]:
        logger.debug("mongo: running %s on %s", next(iter(command), "?"), database)
        return await self.client[database].command(command)

    async def server_version(self) -> str:
        info = await self.client.server_info()
        return info["version"]

    async def close(self) -> None:
        await self.client.close()
