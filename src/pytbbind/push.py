"""Push notification channel.

The invalidation channel only needs to know *that* something changed for
an entity; :class:`PushSubscriber` is the host-facing seam for that.
:class:`WebSocketPushSubscriber` implements it over the backend's
telemetry websocket (``/api/ws/plugins/telemetry``), multiplexing every
subscription on one connection keyed by ``cmdId``.
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import json
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any, Protocol

import aiohttp
from pydantic import ValidationError

from pytbbind._constants import LATEST_TELEMETRY_SCOPE, RECONNECT_BACKOFF_S, WEBSOCKET_PATH
from pytbbind._redact import redact_url
from pytbbind.config import BindingConfig
from pytbbind.credentials import CredentialProvider, StaticCredentialProvider
from pytbbind.exceptions import TbPushError
from pytbbind.models.entity import EntityRef
from pytbbind.models.push import PushUpdate
from pytbbind.models.scope import ReadScope

_logger = logging.getLogger(__name__)

PushHandler = Callable[[PushUpdate], None]


class PushSubscription(Protocol):
    """Handle returned by :meth:`PushSubscriber.subscribe`."""

    async def unsubscribe(self) -> None: ...


class PushSubscriber(Protocol):
    """Host capability delivering change notifications for entity keys."""

    async def subscribe(
        self,
        entity: EntityRef,
        scope: ReadScope,
        keys: Sequence[str],
        on_update: PushHandler,
    ) -> PushSubscription: ...


@dataclass(slots=True)
class _WsSubscription:
    owner: WebSocketPushSubscriber
    cmd_id: int
    command_field: str
    command: dict[str, Any]

    async def unsubscribe(self) -> None:
        await self.owner._unsubscribe(self)


def build_ws_url(base_url: str, token: str) -> str:
    """Websocket endpoint for *base_url* authenticated with *token*."""
    if base_url.startswith("https://"):
        origin = "wss://" + base_url[len("https://") :]
    elif base_url.startswith("http://"):
        origin = "ws://" + base_url[len("http://") :]
    else:
        origin = base_url
    return f"{origin}{WEBSOCKET_PATH}?token={token}"


class WebSocketPushSubscriber:
    """Push subscriber over the backend telemetry websocket.

    A dropped connection is re-opened with backoff and every active
    subscription command is sent again, so subscribers keep their handles.
    """

    def __init__(
        self,
        config: BindingConfig,
        http_session: aiohttp.ClientSession,
        credentials: CredentialProvider | None = None,
        *,
        heartbeat: float = 30.0,
        reconnect_delays: Sequence[float] = RECONNECT_BACKOFF_S,
    ) -> None:
        self._config = config
        self._http = http_session
        self._credentials = credentials or StaticCredentialProvider(config.token)
        self._heartbeat = heartbeat
        self._reconnect_delays = tuple(reconnect_delays) or (0.0,)
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._read_task: asyncio.Task[None] | None = None
        self._cmd_ids = itertools.count(1)
        self._handlers: dict[int, PushHandler] = {}
        self._active: dict[int, _WsSubscription] = {}
        self._connect_lock = asyncio.Lock()
        self._closing = False

    @property
    def is_connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    async def _send(self, ws: aiohttp.ClientWebSocketResponse, command_field: str, command: dict[str, Any]) -> None:
        try:
            await ws.send_json({command_field: [command]})
        except (aiohttp.ClientError, ConnectionError, RuntimeError) as exc:
            raise TbPushError(f"Push command cmdId={command['cmdId']} failed: {exc}") from exc

    async def _ensure_connected(self) -> aiohttp.ClientWebSocketResponse:
        async with self._connect_lock:
            if self._ws is not None and not self._ws.closed:
                return self._ws
            token = self._credentials()
            if not token:
                raise TbPushError("Push channel requires a bearer token")
            url = build_ws_url(self._config.base_url, token)
            _logger.debug("Connecting push websocket %s", redact_url(url))
            try:
                ws = await self._http.ws_connect(url, heartbeat=self._heartbeat)
            except (aiohttp.ClientError, TimeoutError) as exc:
                raise TbPushError(f"Push websocket connect failed: {exc}") from exc
            self._ws = ws
            for subscription in list(self._active.values()):
                await self._send(ws, subscription.command_field, subscription.command)
            if self._active:
                _logger.debug("Restored %d push subscriptions", len(self._active))
            if self._read_task is None or self._read_task.done():
                self._read_task = asyncio.get_running_loop().create_task(self._read_loop())
            return ws

    async def subscribe(
        self,
        entity: EntityRef,
        scope: ReadScope,
        keys: Sequence[str],
        on_update: PushHandler,
    ) -> PushSubscription:
        ws = await self._ensure_connected()
        cmd_id = next(self._cmd_ids)
        if scope is ReadScope.ATTRIBUTE:
            command_field = "attrSubCmds"
            backend_scope = self._config.attribute_scope
        else:
            command_field = "tsSubCmds"
            backend_scope = LATEST_TELEMETRY_SCOPE
        command: dict[str, Any] = {
            "entityType": entity.entity_type,
            "entityId": entity.id,
            "scope": backend_scope,
            "cmdId": cmd_id,
            "keys": ",".join(keys),
        }
        self._handlers[cmd_id] = on_update
        try:
            await self._send(ws, command_field, command)
        except TbPushError:
            self._handlers.pop(cmd_id, None)
            raise
        subscription = _WsSubscription(owner=self, cmd_id=cmd_id, command_field=command_field, command=command)
        self._active[cmd_id] = subscription
        _logger.debug("Subscribed cmdId=%d %s keys=%s", cmd_id, command_field, command["keys"])
        return subscription

    async def _unsubscribe(self, subscription: _WsSubscription) -> None:
        self._handlers.pop(subscription.cmd_id, None)
        self._active.pop(subscription.cmd_id, None)
        ws = self._ws
        if ws is None or ws.closed:
            return
        command = dict(subscription.command)
        command["unsubscribe"] = True
        try:
            await self._send(ws, subscription.command_field, command)
        except TbPushError:
            _logger.debug("Push unsubscribe cmdId=%d failed", subscription.cmd_id, exc_info=True)

    def _handle_message(self, text: str) -> None:
        try:
            update = PushUpdate.model_validate(json.loads(text))
        except (json.JSONDecodeError, ValidationError):
            _logger.debug("Ignoring malformed push frame", exc_info=True)
            return
        if update.subscription_id is None:
            return
        if update.is_error:
            _logger.warning(
                "Push subscription %d rejected: code=%d message=%s",
                update.subscription_id,
                update.error_code,
                update.error_msg,
            )
            return
        handler = self._handlers.get(update.subscription_id)
        if handler is None:
            return
        try:
            handler(update)
        except Exception:
            _logger.debug("Push handler failed", exc_info=True)

    async def _pump(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        async for msg in ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                self._handle_message(msg.data)
            elif msg.type == aiohttp.WSMsgType.ERROR:
                _logger.debug("Push websocket error: %s", ws.exception())
                break

    async def _read_loop(self) -> None:
        attempt = 0
        try:
            while not self._closing:
                ws = self._ws
                if ws is not None and not ws.closed:
                    attempt = 0
                    await self._pump(ws)
                    if self._closing:
                        break
                    _logger.warning("Push websocket closed with %d active subscriptions", len(self._active))
                if not self._active:
                    break
                delay = self._reconnect_delays[min(attempt, len(self._reconnect_delays) - 1)]
                attempt += 1
                await asyncio.sleep(delay)
                try:
                    await self._ensure_connected()
                except TbPushError as err:
                    _logger.warning("Push reconnect failed, polling only until the next attempt: %s", err)
        finally:
            _logger.debug("Push read loop ended")

    async def close(self) -> None:
        self._closing = True
        self._handlers.clear()
        self._active.clear()
        task = self._read_task
        self._read_task = None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        ws = self._ws
        self._ws = None
        if ws is not None and not ws.closed:
            await ws.close()
