"""High-level async client binding backend values to an overlay."""

from __future__ import annotations

import functools
import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Any

import aiohttp

from pytbbind._api.telemetry import read_value, write_value
from pytbbind._transport import HostClientTransport, HostHttpClient, RestTransport, Transport
from pytbbind.cache import ReadThroughCache, ValueCallback
from pytbbind.config import BindingConfig
from pytbbind.credentials import CredentialProvider
from pytbbind.exceptions import TbBindError, TbEntityNotFoundError
from pytbbind.invalidation import InvalidationChannel
from pytbbind.models.binding import ViewBinding
from pytbbind.models.calculation import CalculationSpec
from pytbbind.models.entity import EntityRef
from pytbbind.models.scope import ReadScope
from pytbbind.pipeline import DerivedValuePipeline
from pytbbind.push import PushSubscriber, WebSocketPushSubscriber
from pytbbind.resolver import BindingList, BindingProvider, EntityResolver
from pytbbind.view import ViewSink, render_value

_logger = logging.getLogger(__name__)


@dataclass(slots=True)
class BindingContext:
    """State owned by one initialize/teardown cycle."""

    cache: ReadThroughCache
    channel: InvalidationChannel
    pipeline: DerivedValuePipeline


class BindingClient:
    """Async client resolving, caching and publishing device values.

    Usage::

        async with BindingClient(config, bindings=datasources, views=views, view_sink=sink) as client:
            await client.initialize()
            ...
            await client.teardown()

    ``initialize``, ``teardown`` and ``refresh`` are the lifecycle hooks a
    host calls; everything else is reachable through them.
    """

    def __init__(
        self,
        config: BindingConfig,
        *,
        bindings: BindingList | BindingProvider | None,
        views: Iterable[ViewBinding] = (),
        calculations: Iterable[CalculationSpec] = (),
        view_sink: ViewSink | None = None,
        session: aiohttp.ClientSession | None = None,
        host_client: HostHttpClient | None = None,
        credentials: CredentialProvider | None = None,
        push_subscriber: PushSubscriber | None = None,
        overlay_loader: Callable[[], Awaitable[None]] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config
        self._resolver = EntityResolver(bindings)
        self._views = tuple(views)
        self._calculations = tuple(calculations)
        self._view_sink = view_sink
        self._external_session = session is not None
        self._http_session = session
        self._host_client = host_client
        self._credentials = credentials
        self._push_subscriber = push_subscriber
        self._owned_push: WebSocketPushSubscriber | None = None
        self._overlay_loader = overlay_loader
        self._clock = clock
        self._transport: Transport | None = None
        self._context: BindingContext | None = None

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> BindingClient:
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession()
        if self._host_client is not None:
            self._transport = HostClientTransport(self._host_client)
        else:
            self._transport = RestTransport(self._config, self._http_session, self._credentials)
        if self._push_subscriber is None and self._config.push_enabled:
            self._owned_push = WebSocketPushSubscriber(self._config, self._http_session, self._credentials)
            self._push_subscriber = self._owned_push
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.teardown()
        if self._owned_push is not None:
            await self._owned_push.close()
            if self._push_subscriber is self._owned_push:
                self._push_subscriber = None
            self._owned_push = None
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
        self._transport = None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require_transport(self) -> Transport:
        if self._transport is None:
            raise TbBindError("Client not initialized. Use 'async with BindingClient(...) as client:'")
        return self._transport

    async def _read(self, entity: EntityRef, scope: ReadScope, key: str) -> Any:
        return await read_value(
            self._require_transport(),
            entity,
            scope,
            key,
            attribute_scope=self._config.attribute_scope,
        )

    async def _write(self, entity: EntityRef, key: str, value: Any) -> None:
        await write_value(self._require_transport(), entity, key, value)

    def _device_for(self, binding: ViewBinding) -> str:
        return binding.device or self._config.device_name

    def _deliver(self, binding: ViewBinding, value: Any) -> None:
        if self._view_sink is None:
            return
        self._view_sink.update(binding.target, render_value(binding, value))

    async def _subscribe_push(self, channel: InvalidationChannel) -> None:
        groups: dict[tuple[str, ReadScope], list[str]] = {}
        for binding in self._views:
            groups.setdefault((self._device_for(binding), binding.scope), []).append(binding.key)
        for (device, scope), keys in groups.items():
            entity = self._resolver.resolve(device)
            if entity is None:
                _logger.debug("Skipping push subscription: no entity for device=%s", device)
                continue
            await channel.subscribe(entity, scope, keys)

    # ------------------------------------------------------------------
    # Lifecycle hooks
    # ------------------------------------------------------------------

    @property
    def context(self) -> BindingContext | None:
        return self._context

    @property
    def is_initialized(self) -> bool:
        return self._context is not None

    async def initialize(self) -> bool:
        """Load the overlay, render once, then start timers and subscriptions.

        Returns ``False`` when the overlay could not be loaded; nothing is
        started in that case.
        """
        self._require_transport()
        if self._context is not None:
            await self.teardown()

        if self._overlay_loader is not None:
            try:
                await self._overlay_loader()
            except Exception:
                _logger.error("Overlay load failed", exc_info=True)
                return False

        cache = ReadThroughCache(
            resolver=self._resolver,
            reader=self._read,
            initial_throttle=self._config.initial_throttle,
            refresh_throttle=self._config.refresh_throttle,
            throttle_policy=self._config.throttle_policy,
            clock=self._clock,
        )
        channel = InvalidationChannel(
            cache,
            self.refresh,
            poll_interval=self._config.poll_interval,
            push_subscriber=self._push_subscriber if self._config.push_enabled else None,
        )
        pipeline = DerivedValuePipeline(cache, self._resolver, self._write, self._calculations)
        self._context = BindingContext(cache=cache, channel=channel, pipeline=pipeline)

        self.refresh()
        channel.start_polling()
        await self._subscribe_push(channel)
        pipeline.start()
        _logger.debug(
            "Initialized with %d view bindings, %d calculations, %d push subscriptions",
            len(self._views),
            len(self._calculations),
            channel.subscription_count,
        )
        return True

    async def teardown(self) -> None:
        """Stop timers, drop subscriptions, answer every waiting read."""
        context = self._context
        self._context = None
        if context is None:
            return
        await context.pipeline.stop()
        await context.channel.stop()
        await context.cache.close()

    def refresh(self) -> None:
        """Re-resolve every view binding and hand the results to the sink."""
        context = self._context
        if context is None:
            return
        for binding in self._views:
            context.cache.resolve(
                self._device_for(binding),
                binding.scope,
                binding.key,
                functools.partial(self._deliver, binding),
            )

    # ------------------------------------------------------------------
    # Reads and writes
    # ------------------------------------------------------------------

    def resolve(
        self,
        device: str,
        scope: ReadScope | str,
        key: str,
        callback: ValueCallback,
        force_refresh: bool = False,
    ) -> None:
        """Resolve one key through the cache; ``None`` when not initialized."""
        context = self._context
        if context is None:
            callback(None)
            return
        context.cache.resolve(device, scope, key, callback, force_refresh)

    async def get(self, device: str, scope: ReadScope | str, key: str, *, force_refresh: bool = False) -> Any:
        context = self._context
        if context is None:
            return None
        return await context.cache.get(device, scope, key, force_refresh=force_refresh)

    async def write(self, device: str, key: str, value: Any) -> None:
        """Publish *value* under *key* for *device*."""
        entity = self._resolver.resolve(device)
        if entity is None:
            raise TbEntityNotFoundError(device)
        await self._write(entity, key, value)

    async def run_calculation(self, name: str) -> Any:
        """Run one tick of the calculation called *name* now."""
        context = self._context
        if context is None:
            raise TbBindError("Client not initialized; call initialize() first")
        for spec in context.pipeline.specs:
            if spec.name == name:
                return await context.pipeline.run_once(spec)
        raise KeyError(name)
