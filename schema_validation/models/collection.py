"""Persisted validation layout: listCollections entries and the collMod command."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

from schema_validation.kernel.types import DEFAULT_VALIDATION_ACTION, DEFAULT_VALIDATION_LEVEL, Namespace


class CollectionOptions(BaseModel):
    """The options document of a listCollections entry."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    validator: dict[str, Any] = Field(default_factory=dict)
    validation_action: Literal["warn", "error"] = Field(default=DEFAULT_VALIDATION_ACTION, alias="validationAction")
    validation_level: Literal["off", "moderate", "strict"] = Field(
        default=DEFAULT_VALIDATION_LEVEL, alias="validationLevel"
    )
    view_on: str | None = Field(default=None, alias="viewOn")


class CollectionInfo(BaseModel):
    """One listCollections entry."""

    model_config = {"extra": "ignore"}

    name: str
    type: str = "collection"
    options: CollectionOptions = Field(default_factory=CollectionOptions)

    @property
    def is_readonly(self) -> bool:
        """Views cannot carry validators."""
        return self.type == "view" or self.options.view_on is not None


def build_coll_mod(
    namespace: Namespace,
    validator: dict[str, Any],
    validation_action: str,
    validation_level: str,
) -> dict[str, Any]:
    """
    The schema-modification command that persists a validator.
    The command name must be the first key.
    """
    return {
        "collMod": namespace.collection,
        "validator": validator,
        "validationAction": validation_action,
        "validationLevel": validation_level,
    }
