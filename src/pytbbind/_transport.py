"""HTTP transports for backend reads and writes."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any, Protocol
from urllib.parse import urlencode

import aiohttp

from pytbbind._constants import AUTH_HEADER, USER_AGENT
from pytbbind._redact import redact_for_log
from pytbbind.config import BindingConfig
from pytbbind.credentials import CredentialProvider, StaticCredentialProvider
from pytbbind.exceptions import TbAuthenticationError, TbBindError, TbTransportError

_logger = logging.getLogger(__name__)


class Transport(Protocol):
    """Structural transport interface used by endpoint modules.

    Having a protocol here makes it easy to pass test doubles while keeping
    the production implementations concrete.
    """

    async def get_json(self, path: str, params: Mapping[str, str] | None = None) -> Any: ...

    async def post_json(self, path: str, payload: Mapping[str, Any]) -> Any: ...


class HostHttpClient(Protocol):
    """Authenticated HTTP client supplied by the embedding host.

    The host is responsible for authentication; paths are passed relative
    to the backend origin, query string included.
    """

    async def get(self, url: str) -> Any: ...

    async def post(self, url: str, payload: Mapping[str, Any]) -> Any: ...


def _with_query(path: str, params: Mapping[str, str] | None) -> str:
    if not params:
        return path
    return f"{path}?{urlencode(params)}"


class HostClientTransport:
    """Transport that delegates to the host's own authenticated client."""

    def __init__(self, client: HostHttpClient) -> None:
        self._client = client

    async def get_json(self, path: str, params: Mapping[str, str] | None = None) -> Any:
        url = _with_query(path, params)
        _logger.debug("GET %s (host client)", url)
        try:
            return await self._client.get(url)
        except TbBindError:
            raise
        except Exception as exc:
            raise TbTransportError(f"Host client GET {path} failed: {exc}", endpoint=path) from exc

    async def post_json(self, path: str, payload: Mapping[str, Any]) -> Any:
        _logger.debug("POST %s (host client) %s", path, redact_for_log(payload))
        try:
            return await self._client.post(path, payload)
        except TbBindError:
            raise
        except Exception as exc:
            raise TbTransportError(f"Host client POST {path} failed: {exc}", endpoint=path) from exc


class RestTransport:
    """Direct REST transport carrying a bearer credential."""

    def __init__(
        self,
        config: BindingConfig,
        http_session: aiohttp.ClientSession,
        credentials: CredentialProvider | None = None,
    ) -> None:
        self._config = config
        self._http = http_session
        self._credentials = credentials or StaticCredentialProvider(config.token)
        self._timeout = aiohttp.ClientTimeout(total=config.request_timeout)

    def _build_headers(self) -> dict[str, str]:
        headers: dict[str, str] = {
            "accept": "application/json",
            "user-agent": USER_AGENT,
        }
        token = self._credentials()
        if token:
            headers[AUTH_HEADER] = f"Bearer {token}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, str] | None = None,
        payload: Mapping[str, Any] | None = None,
    ) -> Any:
        url = f"{self._config.base_url}{path}"
        headers = self._build_headers()
        _logger.debug("%s %s headers=%s", method, _with_query(url, params), redact_for_log(headers))

        try:
            async with self._http.request(
                method,
                url,
                params=dict(params) if params else None,
                json=dict(payload) if payload is not None else None,
                headers=headers,
                timeout=self._timeout,
            ) as resp:
                text = await resp.text()
                if resp.status in (401, 403):
                    raise TbAuthenticationError(
                        f"HTTP {resp.status} from {path}: credential rejected",
                        status_code=resp.status,
                        endpoint=path,
                    )
                if not 200 <= resp.status < 300:
                    raise TbTransportError(
                        f"HTTP {resp.status} from {path}: {text[:200]}",
                        status_code=resp.status,
                        endpoint=path,
                    )
        except TbTransportError:
            raise
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise TbTransportError(
                f"Request to {path} failed: {exc}",
                endpoint=path,
            ) from exc

        if not text.strip():
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise TbTransportError(
                f"Invalid JSON from {path}: {text[:200]}",
                endpoint=path,
            ) from exc

    async def get_json(self, path: str, params: Mapping[str, str] | None = None) -> Any:
        return await self._request("GET", path, params=params)

    async def post_json(self, path: str, payload: Mapping[str, Any]) -> Any:
        return await self._request("POST", path, payload=payload)
