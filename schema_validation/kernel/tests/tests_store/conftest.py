"""
Store test fixtures.

store: a ValidationStore wired to a registry, connected to people_service
and pointed at test.people, with all startup work settled.
"""

import pytest
import pytest_asyncio

from schema_validation.kernel.registry import COLLECTION_CHANGED, DATA_SERVICE_CONNECTED, AppRegistry
from schema_validation.kernel.store import ValidationStore


@pytest.fixture
def registry():
    return AppRegistry()


async def _open_store(registry, service, config, ns="test.people"):
    store = ValidationStore(registry, config=config)
    store.activate()
    registry.publish(DATA_SERVICE_CONNECTED, None, service)
    if ns is not None:
        registry.publish(COLLECTION_CHANGED, ns)
    await store.wait_idle()
    return store


@pytest.fixture
def open_store():
    """Factory for stores on other services or namespaces. Call deactivate() when done."""
    return _open_store


@pytest_asyncio.fixture
async def store(registry, people_service, kernel_settings):
    store = await _open_store(registry, people_service, kernel_settings)
    yield store
    await store.wait_idle()
    store.deactivate()
