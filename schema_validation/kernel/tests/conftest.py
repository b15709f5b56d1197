"""
Schema validation kernel test configuration.

Kernel tests run against MemoryDataService; nothing here needs a server.
"""

import pytest

from schema_validation.config import Settings
from schema_validation.kernel.data_service import MemoryDataService

PEOPLE = [
    {"_id": 1, "name": "Ann", "status": "A", "age": 34},
    {"_id": 2, "name": "Bob", "status": "B", "age": 17},
    {"_id": 3, "name": "Cy", "status": "A", "age": 51},
]


class KernelSettings(Settings):
    """Short timeouts and a fixed version floor, independent of the environment."""

    QUERY_TIMEOUT_SECONDS = 0.5
    SAMPLE_MAX_LIMIT = 100000
    MIN_SERVER_VERSION = "3.2.0"


@pytest.fixture
def kernel_settings():
    return KernelSettings()


@pytest.fixture
def people_service():
    service = MemoryDataService()
    service.create_collection(
        "test.people",
        {"validator": {"status": "A"}, "validationAction": "warn", "validationLevel": "moderate"},
    )
    service.insert_many("test.people", PEOPLE)
    return service
