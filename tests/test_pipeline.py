from __future__ import annotations

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import pytest

from pytbbind.cache import ReadThroughCache
from pytbbind.exceptions import TbTransportError
from pytbbind.models.calculation import CalculationSpec, sum_inputs
from pytbbind.models.entity import EntityRef
from pytbbind.models.scope import ReadScope
from pytbbind.pipeline import DerivedValuePipeline
from pytbbind.resolver import EntityResolver

DEVICE = "CTW_TAG"


@dataclass
class FakeBackend:
    """Dict-backed reader and writer for one device."""

    values: dict[str, Any] = field(default_factory=dict)
    reads: list[str] = field(default_factory=list)
    writes: list[tuple[str, str, Any]] = field(default_factory=list)
    fail_writes: bool = False

    async def read(self, entity: EntityRef, scope: ReadScope, key: str) -> Any:
        self.reads.append(key)
        await asyncio.sleep(0)
        return self.values.get(key)

    async def write(self, entity: EntityRef, key: str, value: Any) -> None:
        if self.fail_writes:
            raise TbTransportError("HTTP 500", status_code=500)
        self.writes.append((entity.id, key, value))


def _pipeline(backend: FakeBackend, *specs: CalculationSpec) -> DerivedValuePipeline:
    resolver = EntityResolver([{"entityName": DEVICE, "entityId": "dev-1"}])
    cache = ReadThroughCache(resolver=resolver, reader=backend.read)
    return DerivedValuePipeline(cache, resolver, backend.write, specs)


def _total_flow(**overrides: Any) -> CalculationSpec:
    params: dict[str, Any] = {
        "name": "Total_Flow",
        "device": DEVICE,
        "inputs": ("a", "b"),
        "compute": sum_inputs,
    }
    params.update(overrides)
    return CalculationSpec(**params)


@pytest.mark.asyncio
async def test_tick_publishes_sum_of_inputs() -> None:
    backend = FakeBackend(values={"a": "2", "b": 3})
    spec = _total_flow()
    pipeline = _pipeline(backend, spec)

    result = await pipeline.run_once(spec)

    assert result == 5.0
    assert backend.writes == [("dev-1", "Total_Flow", 5.0)]
    assert sorted(backend.reads) == ["a", "b"]


@pytest.mark.asyncio
async def test_unknown_input_skips_publish() -> None:
    backend = FakeBackend(values={"a": 2})
    spec = _total_flow()
    pipeline = _pipeline(backend, spec)

    assert await pipeline.run_once(spec) is None
    assert backend.writes == []


@pytest.mark.asyncio
async def test_calculator_sees_unknown_inputs_as_none() -> None:
    seen: list[dict[str, Any]] = []

    def _count_known(inputs: Mapping[str, Any]) -> int:
        seen.append(dict(inputs))
        return sum(1 for value in inputs.values() if value is not None)

    backend = FakeBackend(values={"a": 1})
    spec = _total_flow(name="Known_Inputs", compute=_count_known)
    pipeline = _pipeline(backend, spec)

    assert await pipeline.run_once(spec) == 1
    assert seen == [{"a": 1, "b": None}]


@pytest.mark.asyncio
async def test_write_failure_drops_result() -> None:
    backend = FakeBackend(values={"a": 1, "b": 1}, fail_writes=True)
    spec = _total_flow()
    pipeline = _pipeline(backend, spec)

    assert await pipeline.run_once(spec) is None


@pytest.mark.asyncio
async def test_each_tick_reads_fresh_inputs() -> None:
    backend = FakeBackend(values={"a": 1, "b": 1})
    spec = _total_flow()
    pipeline = _pipeline(backend, spec)

    await pipeline.run_once(spec)
    backend.values["a"] = 10
    await pipeline.run_once(spec)

    assert [value for _, _, value in backend.writes] == [2.0, 11.0]


@pytest.mark.asyncio
async def test_spec_without_inputs_computes_immediately() -> None:
    backend = FakeBackend()
    spec = _total_flow(name="Constant", inputs=(), compute=lambda _inputs: 42)
    pipeline = _pipeline(backend, spec)

    assert await pipeline.run_once(spec) == 42
    assert backend.reads == []
    assert backend.writes == [("dev-1", "Constant", 42)]


@pytest.mark.asyncio
async def test_unknown_device_drops_result() -> None:
    backend = FakeBackend(values={"a": 1, "b": 1})
    spec = _total_flow(device="missing")
    pipeline = _pipeline(backend, spec)

    assert await pipeline.run_once(spec) is None
    assert backend.reads == []
    assert backend.writes == []


@pytest.mark.asyncio
async def test_started_pipeline_ticks_on_interval() -> None:
    backend = FakeBackend(values={"a": 1, "b": 2})
    spec = _total_flow(interval=0.01)
    pipeline = _pipeline(backend, spec)

    pipeline.start()
    await asyncio.sleep(0.1)
    await pipeline.stop()

    assert len(backend.writes) >= 2
    count = len(backend.writes)
    await asyncio.sleep(0.05)
    assert len(backend.writes) == count


def test_calculation_spec_dedupes_inputs_and_parses_scope() -> None:
    spec = CalculationSpec(name="x", device=DEVICE, inputs=("a", "b", "a"), compute=sum_inputs, scope="shared")

    assert spec.inputs == ("a", "b")
    assert spec.scope is ReadScope.ATTRIBUTE
    with pytest.raises(ValueError):
        CalculationSpec(name="x", device=DEVICE, inputs=(), compute=sum_inputs, interval=0)


def test_sum_inputs_rejects_unknown_values() -> None:
    assert sum_inputs({"a": 1, "b": "2.5"}) == 3.5
    with pytest.raises(ValueError, match="b"):
        sum_inputs({"a": 1, "b": None})


@pytest.mark.asyncio
async def test_failing_binding_provider_skips_tick_without_raising() -> None:
    backend = FakeBackend(values={"a": 1, "b": 1})

    def _broken_provider() -> list[dict[str, str]]:
        raise RuntimeError("host context gone")

    resolver = EntityResolver(_broken_provider)
    cache = ReadThroughCache(resolver=resolver, reader=backend.read)
    spec = _total_flow()
    pipeline = DerivedValuePipeline(cache, resolver, backend.write, [spec])

    assert await pipeline.run_once(spec) is None
    assert backend.writes == []


@pytest.mark.asyncio
async def test_failed_tick_does_not_stop_the_loop(monkeypatch: pytest.MonkeyPatch) -> None:
    backend = FakeBackend(values={"a": 1, "b": 2})
    spec = _total_flow(interval=0.01)
    pipeline = _pipeline(backend, spec)
    real_run_once = pipeline.run_once
    ticks: list[int] = []

    async def _flaky_run_once(run_spec: CalculationSpec) -> Any:
        ticks.append(len(ticks))
        if len(ticks) == 1:
            raise RuntimeError("unexpected tick failure")
        return await real_run_once(run_spec)

    monkeypatch.setattr(pipeline, "run_once", _flaky_run_once)

    pipeline.start()
    await asyncio.sleep(0.1)
    await pipeline.stop()

    assert len(ticks) >= 2
    assert backend.writes
