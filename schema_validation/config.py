"""
Schema validation configuration — all environment variables in one place.

Read from environment at import time. Every setting has a default, so
nothing is required to run the kernel against a local server.
"""

from __future__ import annotations

import os


class Settings:
    """Application settings from environment variables."""

    # Connection
    MONGODB_URI: str = os.environ.get("MONGODB_URI", "mongodb://localhost:27017")
    SERVER_SELECTION_TIMEOUT_MS: int = int(os.environ.get("SERVER_SELECTION_TIMEOUT_MS", "5000"))

    # Queries
    QUERY_TIMEOUT_SECONDS: float = float(os.environ.get("QUERY_TIMEOUT_SECONDS", "5.0"))
    SAMPLE_MAX_LIMIT: int = int(os.environ.get("SAMPLE_MAX_LIMIT", "100000"))

    # Oldest server whose collection validators can be edited
    MIN_SERVER_VERSION: str = os.environ.get("MIN_SERVER_VERSION", "3.2.0")

    # Application
    ENVIRONMENT: str = os.environ.get("ENVIRONMENT", "development")


# Singleton instance
settings = Settings()
