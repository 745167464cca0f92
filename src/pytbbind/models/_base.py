"""Base model for backend payloads.

Every wire model inherits from :class:`TbBaseModel` which provides
``alias_generator=to_camel`` so camelCase backend keys map to
snake_case fields, and accepts field names as well as aliases.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class TbBaseModel(BaseModel):
    """Base for backend payload models."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )
