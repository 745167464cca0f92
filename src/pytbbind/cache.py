"""Read-through cache with per-key request coalescing and throttling.

:class:`ReadThroughCache` is the only component that reads from the
backend. For every ``(scope, device, key)`` it decides whether to answer
from memory, join an in-flight read, wait out a throttle window, or start
a new read. All bookkeeping happens between awaits on one event loop, so
the per-key ``in_flight`` flag is enough to guarantee a single outstanding
read per key without locks.

Every callback handed to :meth:`ReadThroughCache.resolve` is invoked
exactly once, with the value or with ``None`` when it is unknown.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from pytbbind._constants import INITIAL_THROTTLE_S, REFRESH_THROTTLE_S
from pytbbind.config import ThrottlePolicy
from pytbbind.ingestion.normalize import normalize_name
from pytbbind.models.entity import EntityRef
from pytbbind.models.scope import ReadScope
from pytbbind.resolver import EntityResolver

_logger = logging.getLogger(__name__)

ValueCallback = Callable[[Any], None]
Reader = Callable[[EntityRef, ReadScope, str], Awaitable[Any]]


@dataclass(slots=True)
class FetchState:
    """Per-key read bookkeeping."""

    in_flight: bool = False
    last_fetch_at: float | None = None


def build_cache_key(scope: ReadScope, device: str, key: str) -> str:
    """Key under which a ``(scope, device, key)`` read is cached."""
    return f"{scope.cache_prefix}::{normalize_name(device)}::{normalize_name(key)}"


def _invoke(callback: ValueCallback, value: Any) -> None:
    try:
        callback(value)
    except Exception:
        _logger.debug("Value callback failed", exc_info=True)


class ReadThroughCache:
    """Cache, coalescer and throttle for single-key reads."""

    def __init__(
        self,
        *,
        resolver: EntityResolver,
        reader: Reader,
        initial_throttle: float = INITIAL_THROTTLE_S,
        refresh_throttle: float = REFRESH_THROTTLE_S,
        throttle_policy: ThrottlePolicy = ThrottlePolicy.DEFER,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._resolver = resolver
        self._reader = reader
        self._initial_throttle = initial_throttle
        self._refresh_throttle = refresh_throttle
        self._policy = throttle_policy
        self._clock = clock

        self._entries: dict[str, Any] = {}
        self._fetch_state: dict[str, FetchState] = {}
        self._callbacks: dict[str, list[ValueCallback]] = {}
        # Caller that started the outstanding read, answered after the queue.
        self._initiators: dict[str, ValueCallback] = {}
        self._deferred: dict[str, asyncio.TimerHandle] = {}
        self._tasks: set[asyncio.Task[None]] = set()
        self._closed = False

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def resolve(
        self,
        device: str,
        scope: ReadScope | str,
        key: str,
        callback: ValueCallback,
        force_refresh: bool = False,
    ) -> None:
        """Answer *callback* with the value of *key* for *device*.

        The callback runs synchronously on a cache hit or when the device
        cannot be resolved; otherwise it runs once the read that serves it
        completes.
        """
        if self._closed:
            _invoke(callback, None)
            return

        entity = self._resolver.resolve(device)
        if entity is None:
            _logger.debug("No entity for device=%s; answering unknown", device)
            _invoke(callback, None)
            return

        read_scope = ReadScope.parse(scope)
        cache_key = build_cache_key(read_scope, device, key)

        if not force_refresh and cache_key in self._entries:
            _invoke(callback, self._entries[cache_key])
            return

        state = self._fetch_state.get(cache_key)
        if state is None:
            state = FetchState()
            self._fetch_state[cache_key] = state

        if state.in_flight:
            self._enqueue(cache_key, callback)
            return

        now = self._clock()
        window = self._refresh_throttle if cache_key in self._entries else self._initial_throttle
        if state.last_fetch_at is not None and now - state.last_fetch_at < window:
            self._enqueue(cache_key, callback)
            if self._policy is ThrottlePolicy.DEFER:
                delay = window - (now - state.last_fetch_at)
                self._schedule_deferred(cache_key, entity, read_scope, key, delay)
            return

        self._start_fetch(cache_key, state, entity, read_scope, key, callback)

    async def get(
        self,
        device: str,
        scope: ReadScope | str,
        key: str,
        *,
        force_refresh: bool = False,
    ) -> Any:
        """Awaitable form of :meth:`resolve`."""
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()

        def _answer(value: Any) -> None:
            if not future.done():
                future.set_result(value)

        self.resolve(device, scope, key, _answer, force_refresh)
        return await future

    def peek(self, device: str, scope: ReadScope | str, key: str) -> Any:
        """Cached value for the key, or ``None``; never reads."""
        return self._entries.get(build_cache_key(ReadScope.parse(scope), device, key))

    def is_in_flight(self, device: str, scope: ReadScope | str, key: str) -> bool:
        state = self._fetch_state.get(build_cache_key(ReadScope.parse(scope), device, key))
        return state is not None and state.in_flight

    def clear(self) -> None:
        """Drop every cached value and all throttle history.

        Outstanding reads are not cancelled. Their in-flight markers are
        kept so later callers still join them, and their results are
        written into the emptied cache when they land.
        """
        self._entries.clear()
        survivors: dict[str, FetchState] = {}
        for cache_key, state in self._fetch_state.items():
            if state.in_flight:
                state.last_fetch_at = None
                survivors[cache_key] = state
        self._fetch_state = survivors
        _logger.debug("Cache cleared (%d reads still in flight)", len(survivors))

    async def close(self) -> None:
        """Stop all work and answer every waiting callback with ``None``."""
        self._closed = True
        for handle in self._deferred.values():
            handle.cancel()
        self._deferred.clear()

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        pending = self._callbacks
        self._callbacks = {}
        for callbacks in pending.values():
            for callback in callbacks:
                _invoke(callback, None)
        initiators = self._initiators
        self._initiators = {}
        for callback in initiators.values():
            _invoke(callback, None)
        self._entries.clear()
        self._fetch_state.clear()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _enqueue(self, cache_key: str, callback: ValueCallback) -> None:
        self._callbacks.setdefault(cache_key, []).append(callback)

    def _drain(self, cache_key: str, value: Any) -> None:
        callbacks = self._callbacks.pop(cache_key, [])
        for callback in callbacks:
            _invoke(callback, value)

    def _schedule_deferred(
        self,
        cache_key: str,
        entity: EntityRef,
        scope: ReadScope,
        key: str,
        delay: float,
    ) -> None:
        if cache_key in self._deferred:
            return
        loop = asyncio.get_running_loop()
        self._deferred[cache_key] = loop.call_later(
            max(delay, 0.0), self._run_deferred, cache_key, entity, scope, key
        )

    def _run_deferred(self, cache_key: str, entity: EntityRef, scope: ReadScope, key: str) -> None:
        self._deferred.pop(cache_key, None)
        if self._closed or not self._callbacks.get(cache_key):
            return
        state = self._fetch_state.get(cache_key)
        if state is None:
            state = FetchState()
            self._fetch_state[cache_key] = state
        if state.in_flight:
            return
        # The window may have moved since scheduling (clear() followed by a fresh read).
        if state.last_fetch_at is not None:
            window = self._refresh_throttle if cache_key in self._entries else self._initial_throttle
            remaining = window - (self._clock() - state.last_fetch_at)
            if remaining > 0:
                self._schedule_deferred(cache_key, entity, scope, key, remaining)
                return
        self._start_fetch(cache_key, state, entity, scope, key, None)

    def _start_fetch(
        self,
        cache_key: str,
        state: FetchState,
        entity: EntityRef,
        scope: ReadScope,
        key: str,
        callback: ValueCallback | None,
    ) -> None:
        state.in_flight = True
        state.last_fetch_at = self._clock()
        if callback is not None:
            self._initiators[cache_key] = callback
        task = asyncio.get_running_loop().create_task(self._fetch(cache_key, state, entity, scope, key))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _fetch(
        self,
        cache_key: str,
        state: FetchState,
        entity: EntityRef,
        scope: ReadScope,
        key: str,
    ) -> None:
        try:
            value = await self._reader(entity, scope, key)
        except asyncio.CancelledError:
            self._complete(cache_key, state, None, ok=False)
            raise
        except Exception as err:
            _logger.debug("Read failed for %s: %s", cache_key, err)
            self._complete(cache_key, state, None, ok=False)
            return
        self._complete(cache_key, state, value, ok=value is not None)

    def _complete(
        self,
        cache_key: str,
        state: FetchState,
        value: Any,
        *,
        ok: bool,
    ) -> None:
        state.in_flight = False
        if ok:
            self._entries[cache_key] = value
        result = value if ok else None
        self._drain(cache_key, result)
        callback = self._initiators.pop(cache_key, None)
        if callback is not None:
            _invoke(callback, result)
