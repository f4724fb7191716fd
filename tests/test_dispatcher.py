"""Tests for the request dispatcher."""

import asyncio
import json
from collections.abc import Callable
from urllib.parse import parse_qsl

import httpx
import pytest

from binlink.errors import ConfigError, DecodeError, RemoteError, TransportError
from binlink.exchange.dispatcher import API_KEY_HEADER, AuthTier, Dispatcher, RawResponse
from binlink.exchange.params import KlinesParams
from binlink.exchange.signer import Credentials, sign

from conftest import FIXED_TIMESTAMP, RecordingHandler

KNOWN_DIGEST = "a0443fe16eae0b37ea9dd4abb79f8bfc302cd442977a41acd441fc0a85ade494"
ORDER_PARAMS = {"symbol": "BTCUSDT", "side": "BUY"}


class TestAuthTiers:
    """Header and parameter rules per tier."""

    @pytest.mark.asyncio
    async def test_public_has_no_credentials(
        self,
        make_dispatcher: Callable[..., Dispatcher],
        handler: RecordingHandler,
        credentials: Credentials,
    ) -> None:
        dispatcher = make_dispatcher(credentials)
        await dispatcher.execute("GET", "/v3/klines", KlinesParams(symbol="BTCUSDT", interval="1m"))

        assert API_KEY_HEADER not in handler.last.headers
        assert handler.last_query == "symbol=BTCUSDT&interval=1m"
        assert "signature" not in handler.last_query
        assert "timestamp" not in handler.last_query

    @pytest.mark.asyncio
    async def test_api_key_tier_sends_header_only(
        self,
        make_dispatcher: Callable[..., Dispatcher],
        handler: RecordingHandler,
        credentials: Credentials,
    ) -> None:
        dispatcher = make_dispatcher(credentials)
        await dispatcher.execute("POST", "/v3/userDataStream", tier=AuthTier.API_KEY)

        assert handler.last.headers[API_KEY_HEADER] == "K"
        assert handler.last_query == ""

    @pytest.mark.asyncio
    async def test_signed_known_answer(
        self,
        make_dispatcher: Callable[..., Dispatcher],
        handler: RecordingHandler,
        credentials: Credentials,
    ) -> None:
        """Signed query is the canonical string plus a trailing signature."""
        dispatcher = make_dispatcher(credentials)
        await dispatcher.execute("POST", "/v3/order", ORDER_PARAMS, AuthTier.SIGNED)

        assert handler.last.headers[API_KEY_HEADER] == "K"
        assert handler.last_query == (
            f"symbol=BTCUSDT&side=BUY&timestamp={FIXED_TIMESTAMP}&signature={KNOWN_DIGEST}"
        )

    @pytest.mark.asyncio
    async def test_signed_with_recv_window(
        self,
        make_dispatcher: Callable[..., Dispatcher],
        handler: RecordingHandler,
        credentials: Credentials,
    ) -> None:
        dispatcher = make_dispatcher(credentials, recv_window=5000)
        await dispatcher.execute("GET", "/v3/order", ORDER_PARAMS, AuthTier.SIGNED)

        pairs = parse_qsl(handler.last_query)
        keys = [key for key, _ in pairs]
        assert keys == ["symbol", "side", "timestamp", "recvWindow", "signature"]

        unsigned, _, signature = handler.last_query.rpartition("&signature=")
        assert signature == sign("S", unsigned)

    @pytest.mark.asyncio
    async def test_per_call_recv_window_overrides_default(
        self,
        make_dispatcher: Callable[..., Dispatcher],
        handler: RecordingHandler,
        credentials: Credentials,
    ) -> None:
        dispatcher = make_dispatcher(credentials, recv_window=5000)
        await dispatcher.execute(
            "GET", "/v3/account", None, AuthTier.SIGNED, recv_window=8000
        )
        assert dict(parse_qsl(handler.last_query))["recvWindow"] == "8000"

    @pytest.mark.asyncio
    async def test_signed_has_exactly_one_timestamp_and_signature(
        self,
        make_dispatcher: Callable[..., Dispatcher],
        handler: RecordingHandler,
        credentials: Credentials,
    ) -> None:
        """Caller-supplied timestamp/signature are replaced, never duplicated."""
        dispatcher = make_dispatcher(credentials)
        params = {"symbol": "BTCUSDT", "timestamp": 1, "signature": "stale"}
        await dispatcher.execute("GET", "/v3/openOrders", params, AuthTier.SIGNED)

        keys = [key for key, _ in parse_qsl(handler.last_query)]
        assert keys.count("timestamp") == 1
        assert keys.count("signature") == 1
        assert keys[-1] == "signature"
        assert dict(parse_qsl(handler.last_query))["timestamp"] == str(FIXED_TIMESTAMP)

    @pytest.mark.asyncio
    async def test_fresh_timestamp_each_call(
        self,
        handler: RecordingHandler,
        credentials: Credentials,
    ) -> None:
        ticks = iter([1000, 2000])
        dispatcher = Dispatcher(
            "https://api.test/api",
            credentials,
            clock=lambda: next(ticks),
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        await dispatcher.execute("GET", "/v3/account", tier=AuthTier.SIGNED)
        await dispatcher.execute("GET", "/v3/account", tier=AuthTier.SIGNED)

        first, second = (dict(parse_qsl(r.url.query.decode())) for r in handler.requests)
        assert first["timestamp"] == "1000"
        assert second["timestamp"] == "2000"
        assert first["signature"] != second["signature"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("tier", [AuthTier.API_KEY, AuthTier.SIGNED])
    async def test_authenticated_tier_without_credentials(
        self,
        make_dispatcher: Callable[..., Dispatcher],
        handler: RecordingHandler,
        tier: AuthTier,
    ) -> None:
        dispatcher = make_dispatcher()
        with pytest.raises(ConfigError, match="requires API credentials"):
            await dispatcher.execute("GET", "/v3/account", tier=tier)
        assert handler.requests == []

    @pytest.mark.asyncio
    async def test_json_body(
        self,
        make_dispatcher: Callable[..., Dispatcher],
        handler: RecordingHandler,
    ) -> None:
        dispatcher = make_dispatcher()
        await dispatcher.execute("POST", "/v3/thing", body={"a": 1})
        assert json.loads(handler.last.content) == {"a": 1}
        assert handler.last.headers["content-type"] == "application/json"


class TestOutcomes:
    """Mapping of HTTP and transport outcomes."""

    @pytest.mark.asyncio
    async def test_success_returns_raw_response(
        self,
        make_dispatcher: Callable[..., Dispatcher],
        handler: RecordingHandler,
    ) -> None:
        handler.response = httpx.Response(200, json={"serverTime": 123})
        response = await make_dispatcher().execute("GET", "/v3/time")

        assert response.status == 200
        assert response.json() == {"serverTime": 123}
        assert str(handler.last.url) == "https://api.test/api/v3/time"

    @pytest.mark.asyncio
    async def test_non_2xx_raises_remote_error_with_body(
        self,
        make_dispatcher: Callable[..., Dispatcher],
        handler: RecordingHandler,
    ) -> None:
        handler.response = httpx.Response(400, json={"code": -1121, "msg": "Invalid symbol."})
        with pytest.raises(RemoteError, match="Invalid symbol") as exc_info:
            await make_dispatcher().execute("GET", "/v3/klines", {"symbol": "NOPE"})

        error = exc_info.value
        assert error.status == 400
        assert error.code == -1121
        assert error.message == "Invalid symbol."
        assert "-1121" in error.body
        assert error.retryable is False

    @pytest.mark.asyncio
    async def test_rate_limit_is_retryable(
        self,
        make_dispatcher: Callable[..., Dispatcher],
        handler: RecordingHandler,
    ) -> None:
        handler.response = httpx.Response(
            429,
            headers={"Retry-After": "7"},
            json={"code": -1003, "msg": "Too many requests."},
        )
        with pytest.raises(RemoteError) as exc_info:
            await make_dispatcher().execute("GET", "/v3/ping")
        assert exc_info.value.retryable is True
        assert exc_info.value.retry_after == 7.0

    @pytest.mark.asyncio
    async def test_non_json_error_body_kept(
        self,
        make_dispatcher: Callable[..., Dispatcher],
        handler: RecordingHandler,
    ) -> None:
        handler.response = httpx.Response(502, text="Bad Gateway")
        with pytest.raises(RemoteError) as exc_info:
            await make_dispatcher().execute("GET", "/v3/ping")
        assert exc_info.value.body == "Bad Gateway"
        assert exc_info.value.code is None

    @pytest.mark.asyncio
    async def test_connect_error_raises_transport_error(
        self,
        make_dispatcher: Callable[..., Dispatcher],
        handler: RecordingHandler,
    ) -> None:
        handler.response = httpx.ConnectError("Name or service not known")
        with pytest.raises(TransportError, match="Name or service not known"):
            await make_dispatcher().execute("GET", "/v3/ping")

    @pytest.mark.asyncio
    async def test_httpx_timeout_raises_transport_error(
        self,
        make_dispatcher: Callable[..., Dispatcher],
        handler: RecordingHandler,
    ) -> None:
        handler.response = httpx.ReadTimeout("Timeout")
        with pytest.raises(TransportError, match="timed out"):
            await make_dispatcher().execute("GET", "/v3/ping")

    @pytest.mark.asyncio
    async def test_per_call_timeout(self) -> None:
        async def slow(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(5)
            return httpx.Response(200)

        dispatcher = Dispatcher(
            "https://api.test/api",
            timeout=0.05,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(slow)),
        )
        with pytest.raises(TransportError, match="timed out"):
            await dispatcher.execute("GET", "/v3/ping")

    def test_raw_response_decode_error(self) -> None:
        response = RawResponse(status=200, body="<html>", headers={})
        with pytest.raises(DecodeError):
            response.json()


class TestLifecycle:
    """HTTP client lifecycle."""

    @pytest.mark.asyncio
    async def test_context_manager_closes_client(self) -> None:
        async with Dispatcher("https://api.test/api") as dispatcher:
            client = await dispatcher._get_client()
            assert not client.is_closed
        assert client.is_closed
        assert dispatcher._client is None
