"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock

import httpx
import pytest
from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK

from binlink.config import Config
from binlink.exchange.client import BinanceClient
from binlink.exchange.dispatcher import Dispatcher
from binlink.exchange.signer import Credentials
from binlink.stream.registry import Channel, StreamRegistry
from binlink.stream.session import StreamOptions

FIXED_TIMESTAMP = 1700000000000

# Connection drop marker for FakeConnection frame scripts.
DROP = object()


@pytest.fixture
def config() -> Config:
    """Config with testnet credentials."""
    return Config(
        binance_api_key="test-key",
        binance_api_secret="test-secret",
        binance_base_url="https://testnet.binance.vision/api",
        binance_ws_url="wss://stream.testnet.binance.vision/stream",
        symbol="BTCUSDT",
    )


@pytest.fixture
def credentials() -> Credentials:
    return Credentials(api_key="K", secret="S")


def fixed_clock() -> int:
    return FIXED_TIMESTAMP


class RecordingHandler:
    """httpx.MockTransport handler that records requests and replays a response."""

    def __init__(self, response: httpx.Response | Exception | None = None) -> None:
        self.response = response or httpx.Response(200, json={})
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if isinstance(self.response, Exception):
            raise self.response
        # Fresh copy so one scripted response can serve several requests.
        return httpx.Response(
            self.response.status_code,
            headers=self.response.headers,
            content=self.response.content,
        )

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]

    @property
    def last_query(self) -> str:
        return self.last.url.query.decode()


@pytest.fixture
def handler() -> RecordingHandler:
    return RecordingHandler()


@pytest.fixture
def make_dispatcher(
    handler: RecordingHandler,
) -> Callable[..., Dispatcher]:
    """Build a Dispatcher whose HTTP client is served by ``handler``."""

    def _make(credentials: Credentials | None = None, **kwargs: Any) -> Dispatcher:
        kwargs.setdefault("clock", fixed_clock)
        return Dispatcher(
            "https://api.test/api",
            credentials,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
            **kwargs,
        )

    return _make


@pytest.fixture
def mock_binance_client() -> AsyncMock:
    """Mock BinanceClient for CLI tests."""
    client = AsyncMock(spec=BinanceClient)
    client.base_url = "https://testnet.binance.vision/api"
    client.ping = AsyncMock(return_value=True)
    client.get_server_time = AsyncMock(return_value=FIXED_TIMESTAMP)
    client.get_ticker_price = AsyncMock(return_value={"symbol": "BTCUSDT", "price": "50000.00"})
    client.get_account = AsyncMock(
        return_value={
            "balances": [
                {"asset": "BTC", "free": "0.5", "locked": "0.0"},
                {"asset": "ETH", "free": "0.0", "locked": "0.0"},
            ]
        }
    )
    client.close = AsyncMock(return_value=None)
    client.__aenter__.return_value = client
    return client


# --- Streaming fakes ---


class FakeConnection:
    """Scripted stand-in for a websockets client connection."""

    def __init__(self, frames: list[Any] | None = None) -> None:
        self.sent: list[dict[str, Any]] = []
        self.closed = False
        self._frames: asyncio.Queue[Any] = asyncio.Queue()
        for frame in frames or []:
            self.feed(frame)

    def feed(self, frame: Any) -> None:
        if isinstance(frame, dict):
            frame = json.dumps(frame)
        self._frames.put_nowait(frame)

    def drop(self) -> None:
        self._frames.put_nowait(DROP)

    async def send(self, message: str) -> None:
        if self.closed:
            raise ConnectionClosedOK(None, None)
        self.sent.append(json.loads(message))

    async def recv(self) -> str:
        frame = await self._frames.get()
        if frame is DROP:
            raise ConnectionClosedError(None, None)
        return frame

    async def close(self) -> None:
        self.closed = True
        self._frames.put_nowait(DROP)

    async def __aenter__(self) -> FakeConnection:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.closed = True

    def requests(self, method: str) -> list[dict[str, Any]]:
        return [m for m in self.sent if m.get("method") == method]


class FailingConnection:
    def __init__(self, error: BaseException) -> None:
        self.error = error

    async def __aenter__(self) -> Any:
        raise self.error

    async def __aexit__(self, *exc_info: Any) -> None:
        return None


class HangingConnection:
    """Handshake that never completes."""

    async def __aenter__(self) -> Any:
        await asyncio.Event().wait()

    async def __aexit__(self, *exc_info: Any) -> None:
        return None


class FakeConnector:
    """Hands out scripted connections in order, then refuses every attempt."""

    def __init__(self, *connections: Any) -> None:
        self.connections = list(connections)
        self.urls: list[str] = []

    def __call__(self, url: str) -> Any:
        self.urls.append(url)
        connection = self.connections.pop(0) if self.connections else OSError("refused")
        if isinstance(connection, BaseException):
            return FailingConnection(connection)
        return connection

    @property
    def attempts(self) -> int:
        return len(self.urls)


@pytest.fixture
def stream_options() -> StreamOptions:
    """Options with zero backoff so reconnects happen immediately."""
    return StreamOptions(
        handshake_timeout=1.0,
        max_reconnect_attempts=5,
        decode_failure_threshold=3,
        backoff_base=0.0,
        backoff_ceiling=0.0,
        backoff_jitter=0.0,
    )


@pytest.fixture
def registry() -> StreamRegistry:
    return StreamRegistry([Channel("BTCUSDT", "trade"), Channel("ETHUSDT", "depth")])


def trade_frame(symbol: str = "BTCUSDT", trade_id: int = 1) -> dict[str, Any]:
    return {
        "stream": f"{symbol.lower()}@trade",
        "data": {
            "e": "trade",
            "E": FIXED_TIMESTAMP,
            "s": symbol,
            "t": trade_id,
            "p": "50000.00",
            "q": "0.001",
        },
    }
