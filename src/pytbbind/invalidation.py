"""Cache invalidation triggers.

Two independent sources clear the whole cache and ask for a refresh:

- a poll timer that always runs, the eventual-consistency floor;
- an optional push subscription per distinct (entity, scope, key set).

A failing subscription is logged and skipped; polling keeps working.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from pytbbind.cache import ReadThroughCache
from pytbbind.models.entity import EntityRef
from pytbbind.models.push import PushUpdate
from pytbbind.models.scope import ReadScope
from pytbbind.push import PushSubscriber, PushSubscription

_logger = logging.getLogger(__name__)

RefreshHook = Callable[[], Awaitable[None] | None]


class InvalidationChannel:
    """Poll timer and push subscriptions feeding one refresh hook."""

    def __init__(
        self,
        cache: ReadThroughCache,
        on_refresh: RefreshHook,
        *,
        poll_interval: float,
        push_subscriber: PushSubscriber | None = None,
    ) -> None:
        self._cache = cache
        self._on_refresh = on_refresh
        self._poll_interval = poll_interval
        self._push = push_subscriber
        self._poll_task: asyncio.Task[None] | None = None
        self._refresh_tasks: set[asyncio.Task[Any]] = set()
        self._subscriptions: dict[tuple[str, str, ReadScope, frozenset[str]], PushSubscription] = {}

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    @property
    def is_polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    def trigger(self, reason: str = "manual") -> None:
        """Clear the cache and run the refresh hook."""
        _logger.debug("Invalidation triggered by %s", reason)
        self._cache.clear()
        try:
            result = self._on_refresh()
        except Exception:
            _logger.warning("Refresh after %s invalidation failed", reason, exc_info=True)
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._refresh_tasks.add(task)
            task.add_done_callback(self._refresh_done)

    def _refresh_done(self, task: asyncio.Task[Any]) -> None:
        self._refresh_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            _logger.warning("Refresh after invalidation failed: %s", exc)

    def start_polling(self) -> None:
        if self.is_polling:
            return
        self._poll_task = asyncio.get_running_loop().create_task(self._poll_loop())

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self._poll_interval)
            self.trigger("poll")

    def _on_push(self, update: PushUpdate) -> None:
        self.trigger(f"push:{update.subscription_id}")

    async def subscribe(self, entity: EntityRef, scope: ReadScope, keys: Iterable[str]) -> bool:
        """Subscribe to changes of *keys*; returns whether a channel is active.

        Each distinct (entity, scope, key set) is subscribed once.
        """
        if self._push is None:
            return False
        key_set = frozenset(keys)
        if not key_set:
            return False
        ident = (entity.entity_type, entity.id, scope, key_set)
        if ident in self._subscriptions:
            return True
        try:
            subscription = await self._push.subscribe(entity, scope, sorted(key_set), self._on_push)
        except Exception as err:
            _logger.warning("Push subscription for %s %s unavailable, polling only: %s", entity.id, scope, err)
            return False
        self._subscriptions[ident] = subscription
        return True

    async def unsubscribe_all(self) -> None:
        subscriptions = list(self._subscriptions.values())
        self._subscriptions.clear()
        for subscription in subscriptions:
            try:
                await subscription.unsubscribe()
            except Exception:
                _logger.debug("Push unsubscribe failed", exc_info=True)

    async def stop(self) -> None:
        """Stop polling, drop subscriptions and pending refreshes."""
        task = self._poll_task
        self._poll_task = None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        await self.unsubscribe_all()
        for refresh in list(self._refresh_tasks):
            refresh.cancel()
        self._refresh_tasks.clear()
