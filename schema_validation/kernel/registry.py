"""
Schema Validation Kernel — App Registry

A small explicit event bus. The store receives one at construction and
subscribes to the lifecycle events it cares about; nothing is global.

Events published by the host application:
  data-service-connected     (error, data_service)
  data-service-disconnected  ()
  collection-changed         (ns)          "db.coll"
  fields-changed             (fields)      iterable of field names
  server-version-changed     (version)
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

DATA_SERVICE_CONNECTED = "data-service-connected"
DATA_SERVICE_DISCONNECTED = "data-service-disconnected"
COLLECTION_CHANGED = "collection-changed"
FIELDS_CHANGED = "fields-changed"
SERVER_VERSION_CHANGED = "server-version-changed"


class AppRegistry:
    """Publish/subscribe by event name. Handlers run synchronously, in subscription order."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[Callable[..., Any]]] = {}

    def subscribe(self, event: str, handler: Callable[..., Any]) -> Callable[[], None]:
        """Register handler for event. Returns a function that unsubscribes it."""
        self._handlers.setdefault(event, []).append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(event, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def publish(self, event: str, *args: Any) -> int:
        """
        Call every handler for event with args.
        A failing handler is logged and does not stop the others.
        Returns the number of handlers called.
        """
        handlers = list(self._handlers.get(event, []))
        for handler in handlers:
            try:
                handler(*args)
            except Exception:
                logger.exception("registry: handler for %s failed", event)
        return len(handlers)

    def listener_count(self, event: str) -> int:
        return len(self._handlers.get(event, []))
