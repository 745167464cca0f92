"""Normalization helpers.

Centralizes defensive parsing of read responses. None of these helpers
raise: any shape the backend (or a host client) returns that cannot be
understood collapses to ``None``, the "unknown" value.

Series are trusted to be time-ascending. The last element is taken as the
most recent value and nothing is re-sorted; callers returning descending
series get the oldest value back.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

_logger = logging.getLogger(__name__)

_TRUE_WORDS = frozenset({"true", "on", "yes"})
_FALSE_WORDS = frozenset({"false", "off", "no"})


def normalize_name(value: Any) -> str:
    """Case- and whitespace-insensitive form of a device or key name."""
    if value is None:
        return ""
    return str(value).strip().lower()


def _is_series(value: Any) -> bool:
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray))


def _unwrap_record(record: Mapping[str, Any]) -> Any:
    value = record.get("value")
    if value is not None:
        return value
    return record.get("val")


def extract_scalar(data: Any) -> Any:
    """Unwrap one value from a series, a record, or a bare scalar.

    - Series: scanned from the end; the first ``[ts, value]`` pair or
      ``{value}`` / ``{val}`` record carrying a non-null value wins.
    - Record: its ``value``, else ``val``.
    - Anything else is returned unchanged.
    """
    if data is None:
        return None
    if _is_series(data):
        for item in reversed(data):
            if _is_series(item):
                if len(item) > 1 and item[1] is not None:
                    return item[1]
                continue
            if isinstance(item, Mapping):
                value = _unwrap_record(item)
                if value is not None:
                    return value
        return None
    if isinstance(data, Mapping):
        return _unwrap_record(data)
    return data


def _lookup_key(response: Mapping[str, Any], key: str) -> tuple[bool, Any]:
    if key in response:
        return True, response[key]
    wanted = normalize_name(key)
    for candidate, value in response.items():
        if normalize_name(candidate) == wanted:
            return True, value
    return False, None


def _from_records(response: Sequence[Any], key: str) -> Any:
    wanted = normalize_name(key)
    keyed = False
    for item in reversed(response):
        if not isinstance(item, Mapping) or item.get("key") is None:
            continue
        keyed = True
        if normalize_name(item["key"]) != wanted:
            continue
        value = _unwrap_record(item)
        if value is not None:
            return value
        return extract_scalar(item.get("data"))
    if keyed:
        return None
    return extract_scalar(response)


def extract_from_response(response: Any, key: str) -> Any:
    """Extract the value of *key* from a read response.

    Accepted shapes:

    - ``{"flow01": [[ts, 1.0], [ts, 3.5]]}`` or ``{"flow01": [{"ts": ..., "value": 3.5}]}``
    - ``[{"key": "flow01", "value": 3.5}, ...]``
    - a bare scalar
    """
    if response is None:
        return None
    try:
        if isinstance(response, Mapping):
            found, value = _lookup_key(response, key)
            if found:
                return extract_scalar(value)
            return extract_scalar(response)
        if _is_series(response):
            return _from_records(response, key)
        return response
    except Exception:
        _logger.debug("Could not normalize response for key=%s", key, exc_info=True)
        return None


def to_boolean_status(value: Any) -> bool:
    """Coerce a running/stopped style value to a bool."""
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_WORDS:
            return True
        if lowered in _FALSE_WORDS:
            return False
        try:
            number = float(lowered)
        except ValueError:
            return len(lowered) > 0
        return number != 0
    return False
