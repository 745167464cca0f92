from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import pytest

from pytbbind._api.telemetry import build_read_path, read_value, write_value
from pytbbind.exceptions import TbEntityNotFoundError, TbValueNotFoundError
from pytbbind.models.entity import EntityRef
from pytbbind.models.scope import ReadScope

ENTITY = EntityRef(id="6f0c1b2a", entity_type="DEVICE")


@dataclass
class _FakeTransport:
    response: Any = None
    gets: list[tuple[str, dict[str, str]]] = field(default_factory=list)
    posts: list[tuple[str, dict[str, Any]]] = field(default_factory=list)

    async def get_json(self, path: str, params: Mapping[str, str] | None = None) -> Any:
        self.gets.append((path, dict(params or {})))
        return self.response

    async def post_json(self, path: str, payload: Mapping[str, Any]) -> Any:
        self.posts.append((path, dict(payload)))
        return None


def test_build_read_path_for_each_scope() -> None:
    assert (
        build_read_path(ENTITY, ReadScope.TELEMETRY)
        == "/api/plugins/telemetry/DEVICE/6f0c1b2a/values/timeseries"
    )
    assert (
        build_read_path(ENTITY, ReadScope.ATTRIBUTE)
        == "/api/plugins/telemetry/DEVICE/6f0c1b2a/values/attributes/SHARED_SCOPE"
    )
    assert build_read_path(ENTITY, ReadScope.ATTRIBUTE, attribute_scope="SERVER_SCOPE").endswith(
        "/attributes/SERVER_SCOPE"
    )


@pytest.mark.asyncio
async def test_read_telemetry_requests_one_key_and_normalizes() -> None:
    transport = _FakeTransport(response={"API_BVT01_Flow01": [{"ts": 1, "value": "12.5"}]})

    value = await read_value(transport, ENTITY, ReadScope.TELEMETRY, "API_BVT01_Flow01")

    assert value == "12.5"
    assert transport.gets == [
        ("/api/plugins/telemetry/DEVICE/6f0c1b2a/values/timeseries", {"keys": "API_BVT01_Flow01"})
    ]


@pytest.mark.asyncio
async def test_read_attribute_uses_keyed_records() -> None:
    transport = _FakeTransport(response=[{"key": "running", "value": True}, {"key": "mode", "value": "auto"}])

    value = await read_value(transport, ENTITY, ReadScope.ATTRIBUTE, "running")

    assert value is True
    assert transport.gets[0][0].endswith("/values/attributes/SHARED_SCOPE")


@pytest.mark.asyncio
async def test_read_without_entity_makes_no_request() -> None:
    transport = _FakeTransport(response={"k": 1})

    with pytest.raises(TbEntityNotFoundError):
        await read_value(transport, None, ReadScope.TELEMETRY, "k")

    assert transport.gets == []


@pytest.mark.asyncio
async def test_read_missing_value_raises_not_found() -> None:
    transport = _FakeTransport(response={"other": [{"ts": 1, "value": 3}]})

    with pytest.raises(TbValueNotFoundError) as exc_info:
        await read_value(transport, ENTITY, ReadScope.TELEMETRY, "k")

    assert exc_info.value.key == "k"


@pytest.mark.asyncio
async def test_write_value_posts_timestamped_payload() -> None:
    transport = _FakeTransport()

    await write_value(transport, ENTITY, "Total_Flow", 5.0, now_ms=1_700_000_000_000)

    assert transport.posts == [
        (
            "/api/plugins/telemetry/DEVICE/6f0c1b2a/timeseries/ANY",
            {"ts": 1_700_000_000_000, "values": {"Total_Flow": 5.0}},
        )
    ]


@pytest.mark.asyncio
async def test_write_value_defaults_timestamp_to_now() -> None:
    transport = _FakeTransport()

    await write_value(transport, ENTITY, "x", 1)

    ts = transport.posts[0][1]["ts"]
    assert isinstance(ts, int)
    assert ts > 1_600_000_000_000
