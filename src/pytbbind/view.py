"""Hand-off of resolved values to the overlay.

Rendering is the host's job. This module only turns a raw value into what
a :class:`ViewSink` target expects: display text for ``text`` bindings and
a running flag for ``status`` bindings.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, Protocol

from pytbbind._constants import MISSING_TEXT
from pytbbind.ingestion.normalize import to_boolean_status
from pytbbind.models.binding import ViewBinding

_logger = logging.getLogger(__name__)


class ViewSink(Protocol):
    """Consumer of rendered values keyed by overlay target."""

    def update(self, target: str, value: Any) -> None: ...


def render_value(binding: ViewBinding, value: Any) -> Any:
    """Render *value* for *binding*'s target."""
    if binding.kind == "status":
        return to_boolean_status(value)
    if value is None:
        return MISSING_TEXT
    if binding.formatter is None:
        return str(value)
    try:
        return binding.formatter(value)
    except Exception:
        _logger.debug("Formatter for %s failed on %r", binding.target, value, exc_info=True)
        return MISSING_TEXT


def fixed_decimals(places: int = 2) -> Callable[[Any], str]:
    """Formatter rendering numbers with *places* decimals."""

    def _format(value: Any) -> str:
        return f"{float(value):.{places}f}"

    return _format
