"""View binding definitions."""

from __future__ import annotations

import dataclasses
from collections.abc import Callable
from typing import Any, Literal

from pytbbind.models.scope import ReadScope


@dataclasses.dataclass(frozen=True)
class ViewBinding:
    """Binds one backend key to one overlay target.

    ``kind="text"`` renders the (optionally formatted) value, or ``"--"``
    when unknown. ``kind="status"`` renders a boolean running/stopped flag.
    """

    target: str
    key: str
    scope: ReadScope = ReadScope.TELEMETRY
    device: str | None = None
    kind: Literal["text", "status"] = "text"
    formatter: Callable[[Any], Any] | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "scope", ReadScope.parse(self.scope))
