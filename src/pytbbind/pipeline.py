"""Derived value pipeline.

Each :class:`~pytbbind.models.calculation.CalculationSpec` ticks on its
own interval. A tick clears the cache, resolves every input through the
coalescer, waits until all of them answered, computes the result and
publishes it under the calculation's name. A failed compute or write drops that
tick's result; the next tick starts from scratch.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from pytbbind.cache import ReadThroughCache
from pytbbind.models.calculation import CalculationSpec
from pytbbind.models.entity import EntityRef
from pytbbind.resolver import EntityResolver

_logger = logging.getLogger(__name__)

Writer = Callable[[EntityRef, str, Any], Awaitable[None]]


@dataclass(slots=True)
class CalculationRun:
    """Inputs collected during one tick, released once ``pending`` hits zero."""

    barrier: asyncio.Future[None]
    pending: int
    collected: dict[str, Any] = field(default_factory=dict)

    def record(self, key: str, value: Any) -> None:
        if key in self.collected:
            return
        self.collected[key] = value
        self.pending -= 1
        if self.pending <= 0 and not self.barrier.done():
            self.barrier.set_result(None)


class DerivedValuePipeline:
    """Runs calculation ticks and publishes their results."""

    def __init__(
        self,
        cache: ReadThroughCache,
        resolver: EntityResolver,
        writer: Writer,
        specs: Iterable[CalculationSpec] = (),
    ) -> None:
        self._cache = cache
        self._resolver = resolver
        self._writer = writer
        self._specs = tuple(specs)
        self._tasks: dict[str, asyncio.Task[None]] = {}

    @property
    def specs(self) -> tuple[CalculationSpec, ...]:
        return self._specs

    async def _gather_inputs(self, spec: CalculationSpec) -> dict[str, Any]:
        loop = asyncio.get_running_loop()
        run = CalculationRun(barrier=loop.create_future(), pending=len(spec.inputs))
        if not spec.inputs:
            run.barrier.set_result(None)
        for key in spec.inputs:
            self._cache.resolve(spec.device, spec.scope, key, lambda value, key=key: run.record(key, value))
        await run.barrier
        return {key: run.collected.get(key) for key in spec.inputs}

    async def run_once(self, spec: CalculationSpec) -> Any:
        """Run one tick of *spec*; returns the published value or ``None``."""
        self._cache.clear()
        inputs = await self._gather_inputs(spec)

        try:
            result = spec.compute(inputs)
        except Exception as err:
            _logger.warning("Calculation %s rejected inputs %s: %s", spec.name, inputs, err)
            return None
        if result is None:
            _logger.debug("Calculation %s produced no value", spec.name)
            return None

        entity = self._resolver.resolve(spec.device)
        if entity is None:
            _logger.warning("Calculation %s: no entity for device %s; result dropped", spec.name, spec.device)
            return None
        try:
            await self._writer(entity, spec.name, result)
        except Exception as err:
            _logger.warning("Publishing %s=%r failed: %s", spec.name, result, err)
            return None
        _logger.debug("Published %s=%r", spec.name, result)
        return result

    async def _run_loop(self, spec: CalculationSpec) -> None:
        while True:
            await asyncio.sleep(spec.interval)
            try:
                await self.run_once(spec)
            except Exception:
                _logger.warning("Calculation %s tick failed; retrying next tick", spec.name, exc_info=True)

    def start(self) -> None:
        loop = asyncio.get_running_loop()
        for spec in self._specs:
            task = self._tasks.get(spec.name)
            if task is not None and not task.done():
                continue
            self._tasks[spec.name] = loop.create_task(self._run_loop(spec))

    async def stop(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
