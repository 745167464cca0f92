"""Read scopes."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

_ATTRIBUTE_ALIASES = frozenset({"attribute", "attributes", "shared"})


class ReadScope(StrEnum):
    """Which value namespace a key is read from."""

    TELEMETRY = "timeseries"
    ATTRIBUTE = "attribute"

    @classmethod
    def parse(cls, value: Any) -> ReadScope:
        """Map a loose source label to a scope.

        ``attribute``, ``attributes`` and ``shared`` (any case) select
        attributes; everything else, including ``None``, is telemetry.
        """
        if isinstance(value, ReadScope):
            return value
        normalized = "" if value is None else str(value).strip().lower()
        if normalized in _ATTRIBUTE_ALIASES:
            return cls.ATTRIBUTE
        return cls.TELEMETRY

    @property
    def cache_prefix(self) -> str:
        return "attr" if self is ReadScope.ATTRIBUTE else "tele"
