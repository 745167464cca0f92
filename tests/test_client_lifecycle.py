from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import parse_qs

import pytest

from pytbbind.client import BindingClient
from pytbbind.config import BindingConfig
from pytbbind.exceptions import TbBindError, TbEntityNotFoundError
from pytbbind.models.binding import ViewBinding
from pytbbind.models.calculation import CalculationSpec, sum_inputs
from pytbbind.models.entity import EntityRef
from pytbbind.models.scope import ReadScope
from pytbbind.push import PushHandler
from pytbbind.view import fixed_decimals

DATASOURCES = [
    {"entityName": "CTW_TAG", "entityId": {"id": "dev-1", "entityType": "DEVICE"}},
    {"name": "Pump_House", "entityId": "dev-2"},
]


@dataclass
class FakeHostClient:
    """In-memory backend answering telemetry and attribute reads."""

    telemetry: dict[str, Any] = field(default_factory=dict)
    attributes: dict[str, Any] = field(default_factory=dict)
    urls: list[str] = field(default_factory=list)
    posted: list[tuple[str, Mapping[str, Any]]] = field(default_factory=list)

    async def get(self, url: str) -> Any:
        self.urls.append(url)
        path, _, query = url.partition("?")
        key = parse_qs(query)["keys"][0]
        if "/values/attributes/" in path:
            return [{"key": key, "value": self.attributes[key]}] if key in self.attributes else []
        return {key: [{"ts": 1, "value": self.telemetry[key]}]} if key in self.telemetry else {}

    async def post(self, url: str, payload: Mapping[str, Any]) -> Any:
        self.posted.append((url, payload))
        return None


@dataclass
class FakeSink:
    updates: dict[str, Any] = field(default_factory=dict)

    def update(self, target: str, value: Any) -> None:
        self.updates[target] = value


@dataclass
class _NullSubscription:
    async def unsubscribe(self) -> None:
        return None


@dataclass
class FakePushSubscriber:
    subscribed: list[tuple[str, ReadScope, tuple[str, ...]]] = field(default_factory=list)

    async def subscribe(
        self,
        entity: EntityRef,
        scope: ReadScope,
        keys: Sequence[str],
        on_update: PushHandler,
    ) -> _NullSubscription:
        self.subscribed.append((entity.id, scope, tuple(keys)))
        return _NullSubscription()


VIEWS = [
    ViewBinding(target="flow_text", key="API_BVT01_Flow01", formatter=fixed_decimals(1)),
    ViewBinding(target="pump_status", key="running", scope=ReadScope.ATTRIBUTE, kind="status"),
    ViewBinding(target="level_text", key="Level", device="Pump_House"),
    ViewBinding(target="missing_text", key="Not_There"),
]


def _config(**overrides: Any) -> BindingConfig:
    params: dict[str, Any] = {"device_name": "CTW_TAG", "poll_interval": 60.0, "push_enabled": False}
    params.update(overrides)
    return BindingConfig(**params)


async def _settle() -> None:
    for _ in range(10):
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_initialize_renders_every_view_then_teardown() -> None:
    host = FakeHostClient(
        telemetry={"API_BVT01_Flow01": "12.345", "Level": 3},
        attributes={"running": "true"},
    )
    sink = FakeSink()

    async with BindingClient(_config(), bindings=DATASOURCES, views=VIEWS, view_sink=sink, host_client=host) as client:
        assert await client.initialize()
        await _settle()

        assert sink.updates == {
            "flow_text": "12.3",
            "pump_status": True,
            "level_text": "3",
            "missing_text": "--",
        }
        assert "/api/plugins/telemetry/DEVICE/dev-2/values/timeseries?keys=Level" in host.urls
        assert client.is_initialized

        await client.teardown()
        assert not client.is_initialized


@pytest.mark.asyncio
async def test_refresh_after_invalidation_reads_again() -> None:
    host = FakeHostClient(telemetry={"API_BVT01_Flow01": 1})
    sink = FakeSink()
    views = [VIEWS[0]]

    async with BindingClient(_config(), bindings=DATASOURCES, views=views, view_sink=sink, host_client=host) as client:
        await client.initialize()
        await _settle()
        assert sink.updates["flow_text"] == "1.0"

        host.telemetry["API_BVT01_Flow01"] = 2
        context = client.context
        assert context is not None
        context.channel.trigger()
        await _settle()

        assert sink.updates["flow_text"] == "2.0"
        assert len(host.urls) == 2


@pytest.mark.asyncio
async def test_overlay_load_failure_starts_nothing() -> None:
    async def _broken_loader() -> None:
        raise OSError("overlay.svg not found")

    host = FakeHostClient()
    sink = FakeSink()

    async with BindingClient(
        _config(),
        bindings=DATASOURCES,
        views=VIEWS,
        view_sink=sink,
        host_client=host,
        overlay_loader=_broken_loader,
    ) as client:
        assert not await client.initialize()
        assert client.context is None
        assert host.urls == []
        assert sink.updates == {}


@pytest.mark.asyncio
async def test_push_subscriptions_grouped_by_device_and_scope() -> None:
    push = FakePushSubscriber()
    views = [
        ViewBinding(target="a", key="Flow"),
        ViewBinding(target="b", key="Pressure"),
        ViewBinding(target="c", key="running", scope=ReadScope.ATTRIBUTE, kind="status"),
        ViewBinding(target="d", key="Flow", device="unknown-device"),
    ]

    async with BindingClient(
        _config(push_enabled=True),
        bindings=DATASOURCES,
        views=views,
        host_client=FakeHostClient(),
        push_subscriber=push,
    ) as client:
        await client.initialize()
        await client.teardown()

    assert sorted(push.subscribed) == [
        ("dev-1", ReadScope.ATTRIBUTE, ("running",)),
        ("dev-1", ReadScope.TELEMETRY, ("Flow", "Pressure")),
    ]


@pytest.mark.asyncio
async def test_write_and_run_calculation_publish_values() -> None:
    host = FakeHostClient(telemetry={"a": 2, "b": 3})
    calc = CalculationSpec(name="Total_Flow", device="CTW_TAG", inputs=("a", "b"), compute=sum_inputs, interval=60.0)

    async with BindingClient(_config(), bindings=DATASOURCES, calculations=[calc], host_client=host) as client:
        with pytest.raises(TbBindError):
            await client.run_calculation("Total_Flow")

        await client.initialize()
        assert await client.run_calculation("Total_Flow") == 5.0
        with pytest.raises(KeyError):
            await client.run_calculation("nope")

        await client.write("pump_house", "Setpoint", 4)
        with pytest.raises(TbEntityNotFoundError):
            await client.write("unknown-device", "Setpoint", 4)

    urls = [url for url, _ in host.posted]
    assert urls == [
        "/api/plugins/telemetry/DEVICE/dev-1/timeseries/ANY",
        "/api/plugins/telemetry/DEVICE/dev-2/timeseries/ANY",
    ]
    assert host.posted[0][1]["values"] == {"Total_Flow": 5.0}


@pytest.mark.asyncio
async def test_reads_before_initialize_answer_unknown() -> None:
    answers: list[Any] = []

    async with BindingClient(_config(), bindings=DATASOURCES, host_client=FakeHostClient()) as client:
        client.resolve("CTW_TAG", ReadScope.TELEMETRY, "a", answers.append)
        assert await client.get("CTW_TAG", ReadScope.TELEMETRY, "a") is None

    assert answers == [None]


@pytest.mark.asyncio
async def test_initialize_requires_context_manager() -> None:
    client = BindingClient(_config(), bindings=DATASOURCES)

    with pytest.raises(TbBindError):
        await client.initialize()
