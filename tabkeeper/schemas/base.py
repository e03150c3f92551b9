"""
Shared Pydantic base models for strict validation.

All Pydantic schema models in the application inherit from StrictModel.
Models persisted to the backing medium use CamelModel so stored documents keep
the camelCase keys the browser extension wrote (tabUrls, originalGroupId, ...).
"""

from __future__ import annotations

import pydantic
from pydantic.alias_generators import to_camel


class StrictModel(pydantic.BaseModel):
    """Base model with strict validation settings."""

    model_config = pydantic.ConfigDict(
        extra='forbid',  # Reject unknown fields (fail-fast)
        strict=True,  # Strict type validation
        frozen=True,  # Immutable after creation
    )


class CamelModel(StrictModel):
    """Strict model serialized with camelCase aliases.

    Python code constructs with snake_case names; documents read from storage
    use the aliases. Always dump with by_alias=True.
    """

    model_config = pydantic.ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )
