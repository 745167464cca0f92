"""Masking of bearer credentials in debug output.

Tokens travel in the ``X-Authorization`` header, in ``token=`` websocket
query strings and occasionally inside echoed JSON. Everything logged by
pytbbind passes through :func:`redact_for_log` or :func:`redact_url` first.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from typing import Any

_MASK = "<redacted>"
_MAX_DEPTH = 20

# Compared case-insensitively against mapping keys.
_CREDENTIAL_KEYS: frozenset[str] = frozenset(
    {
        "token",
        "refreshtoken",
        "accesstoken",
        "authorization",
        "x-authorization",
        "password",
        "cookie",
        "set-cookie",
    }
)

_TOKEN_QUERY_RE = re.compile(r"(token=)[^&\s]+", re.IGNORECASE)
_BEARER_RE = re.compile(r"(Bearer\s+)\S+", re.IGNORECASE)


def redact_url(url: str) -> str:
    """Mask a ``token=`` query parameter in *url*."""
    return _TOKEN_QUERY_RE.sub(rf"\1{_MASK}", url)


def _redact_text(text: str, max_string: int) -> str:
    text = _BEARER_RE.sub(rf"\1{_MASK}", text)
    if len(text) > max_string:
        return f"{text[:max_string]}…<truncated>"
    return text


def redact_for_log(value: Any, *, max_string: int = 512, _depth: int = 0) -> Any:
    """Return a copy of *value* with credentials masked and long strings cut."""
    if _depth > _MAX_DEPTH:
        return "<max-depth>"
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        return _redact_text(value, max_string)
    if isinstance(value, (bytes, bytearray)):
        return f"<bytes:{len(value)}b>"
    if isinstance(value, Mapping):
        return {
            str(k): _MASK
            if str(k).lower() in _CREDENTIAL_KEYS
            else redact_for_log(v, max_string=max_string, _depth=_depth + 1)
            for k, v in value.items()
        }
    if isinstance(value, Sequence):
        return [redact_for_log(item, max_string=max_string, _depth=_depth + 1) for item in value]
    return repr(value)
