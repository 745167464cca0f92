"""Telemetry and attribute read/write endpoints.

One call issues exactly one request for one key. Nothing here retries or
caches; that policy lives in :mod:`pytbbind.cache` and the periodic
re-triggers above it.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from pytbbind._constants import (
    ATTRIBUTE_VALUES_PATH,
    DEFAULT_ATTRIBUTE_SCOPE,
    TIMESERIES_VALUES_PATH,
    TIMESERIES_WRITE_PATH,
)
from pytbbind._redact import redact_for_log
from pytbbind._transport import Transport
from pytbbind.exceptions import TbEntityNotFoundError, TbValueNotFoundError
from pytbbind.ingestion.normalize import extract_from_response
from pytbbind.models.entity import EntityRef
from pytbbind.models.scope import ReadScope

_logger = logging.getLogger(__name__)


def build_read_path(
    entity: EntityRef,
    scope: ReadScope,
    *,
    attribute_scope: str = DEFAULT_ATTRIBUTE_SCOPE,
) -> str:
    """Return the read endpoint path for *entity* in *scope*."""
    if scope is ReadScope.ATTRIBUTE:
        return ATTRIBUTE_VALUES_PATH.format(
            entity_type=entity.entity_type,
            entity_id=entity.id,
            scope=attribute_scope,
        )
    return TIMESERIES_VALUES_PATH.format(entity_type=entity.entity_type, entity_id=entity.id)


async def read_value(
    transport: Transport,
    entity: EntityRef | None,
    scope: ReadScope,
    key: str,
    *,
    attribute_scope: str = DEFAULT_ATTRIBUTE_SCOPE,
) -> Any:
    """Read the current value of one key.

    Raises
    ------
    TbEntityNotFoundError
        *entity* is ``None``; no request is made.
    TbTransportError
        The request failed.
    TbValueNotFoundError
        The response carried no value for *key*.
    """
    if entity is None:
        raise TbEntityNotFoundError(key)

    path = build_read_path(entity, scope, attribute_scope=attribute_scope)
    response = await transport.get_json(path, {"keys": key})
    _logger.debug("Read %s key=%s response=%s", path, key, redact_for_log(response))

    value = extract_from_response(response, key)
    if value is None:
        raise TbValueNotFoundError(key, endpoint=path)
    return value


async def write_value(
    transport: Transport,
    entity: EntityRef,
    key: str,
    value: Any,
    *,
    now_ms: int | None = None,
) -> None:
    """Publish one key/value pair as telemetry timestamped *now*."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    path = TIMESERIES_WRITE_PATH.format(entity_type=entity.entity_type, entity_id=entity.id)
    payload: dict[str, Any] = {"ts": now_ms, "values": {key: value}}
    await transport.post_json(path, payload)
    _logger.debug("Wrote %s=%r to %s", key, value, path)
