"""Request assembly, authentication and outcome mapping for REST calls."""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Self, TYPE_CHECKING

import httpx
from loguru import logger

from binlink.errors import ConfigError, DecodeError, RemoteError, TransportError
from binlink.exchange.params import RequestParams, canonical_query

if TYPE_CHECKING:
    from types import TracebackType

    from binlink.exchange.signer import Credentials

API_KEY_HEADER = "X-MBX-APIKEY"


def wall_clock_ms() -> int:
    return int(time.time() * 1000)


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("Retry-After")
    try:
        return float(value) if value else None
    except ValueError:
        return None


class AuthTier(StrEnum):
    """How much authentication an endpoint needs."""

    PUBLIC = "PUBLIC"
    API_KEY = "API_KEY"
    SIGNED = "SIGNED"


@dataclass(slots=True, frozen=True)
class RawResponse:
    """Undecoded successful response."""

    status: int
    body: str
    headers: dict[str, str]

    def json(self) -> Any:
        try:
            return json.loads(self.body)
        except ValueError as e:
            raise DecodeError(f"Response is not valid JSON: {e}", self.body) from e


class Dispatcher:
    """Builds, authenticates and sends requests to the exchange REST API.

    Calls share no mutable state apart from the pooled HTTP client, so any
    number of them may run concurrently. Nothing is retried here: whether a
    write such as order placement is safe to repeat is the caller's decision.
    """

    def __init__(
        self,
        base_url: str,
        credentials: Credentials | None = None,
        *,
        timeout: float = 10.0,
        recv_window: int | None = None,
        clock: Callable[[], int] = wall_clock_ms,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.credentials = credentials
        self.timeout = timeout
        self.recv_window = recv_window
        self.clock = clock
        self._client = http_client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the async HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> Self:
        await self._get_client()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        await self.close()

    def _require_credentials(self, tier: AuthTier) -> Credentials:
        if self.credentials is None:
            msg = f"{tier.value} request requires API credentials"
            raise ConfigError(msg)
        return self.credentials

    def build_query(
        self,
        params: RequestParams | dict[str, Any] | None,
        tier: AuthTier,
        recv_window: int | None = None,
    ) -> str:
        """Return the final query string for ``params`` under ``tier``.

        For signed calls, ``timestamp`` and the optional ``recvWindow`` are
        appended after the caller's parameters and ``signature`` comes last.
        Nothing may be added to the string after it has been signed.
        """
        if isinstance(params, RequestParams):
            assembled = params.to_params()
        else:
            assembled = dict(params or {})

        if tier is not AuthTier.SIGNED:
            return canonical_query(assembled)

        credentials = self._require_credentials(tier)
        assembled.pop("signature", None)
        assembled.pop("timestamp", None)
        assembled["timestamp"] = self.clock()
        window = recv_window if recv_window is not None else self.recv_window
        if window is not None:
            assembled["recvWindow"] = window

        query = canonical_query(assembled)
        signature = credentials.sign(query)
        return f"{query}&signature={signature}"

    def build_request(
        self,
        client: httpx.AsyncClient,
        method: str,
        path: str,
        params: RequestParams | dict[str, Any] | None = None,
        tier: AuthTier = AuthTier.PUBLIC,
        body: Any = None,
        recv_window: int | None = None,
    ) -> httpx.Request:
        headers: dict[str, str] = {}
        if tier is not AuthTier.PUBLIC:
            headers[API_KEY_HEADER] = self._require_credentials(tier).api_key

        query = self.build_query(params, tier, recv_window)
        url = f"{self.base_url}{path}"
        if query:
            url = f"{url}?{query}"

        # The query is passed inside the URL so httpx sends the signed bytes as-is.
        return client.build_request(
            method.upper(),
            url,
            headers=headers,
            json=body,
        )

    async def execute(
        self,
        method: str,
        path: str,
        params: RequestParams | dict[str, Any] | None = None,
        tier: AuthTier = AuthTier.PUBLIC,
        *,
        body: Any = None,
        recv_window: int | None = None,
    ) -> RawResponse:
        """Send one request and return its raw response.

        Raises:
            ConfigError: an authenticated tier was requested without credentials.
            TransportError: the request never got an HTTP answer.
            RemoteError: the exchange answered with a non-2xx status.
        """
        client = await self._get_client()
        request = self.build_request(client, method, path, params, tier, body, recv_window)
        logger.debug("{} {} ({})", request.method, path, tier.value)

        try:
            async with asyncio.timeout(self.timeout):
                response = await client.send(request)
        except (TimeoutError, httpx.TimeoutException) as e:
            logger.error("Request {} {} timed out: {}", request.method, path, e)
            msg = f"Request timed out after {self.timeout}s"
            raise TransportError(msg) from e
        except httpx.TransportError as e:
            logger.error("Request {} {} failed: {}", request.method, path, e)
            raise TransportError(str(e) or type(e).__name__) from e

        if not response.is_success:
            error = RemoteError(
                response.status_code,
                response.text,
                retry_after=_retry_after(response),
            )
            logger.warning("Exchange rejected {} {}: {}", request.method, path, error)
            raise error

        return RawResponse(
            status=response.status_code,
            body=response.text,
            headers=dict(response.headers),
        )
