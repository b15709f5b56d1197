"""Pydantic models for the persisted validation layout."""

from schema_validation.models.collection import CollectionInfo, CollectionOptions, build_coll_mod

__all__ = [
    "CollectionInfo",
    "CollectionOptions",
    "build_coll_mod",
]
