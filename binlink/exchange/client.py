"""Binance Spot REST client with typed endpoint methods."""

from __future__ import annotations

from typing import Any, Self, TYPE_CHECKING

from loguru import logger

from binlink.exchange.dispatcher import AuthTier, Dispatcher, wall_clock_ms
from binlink.exchange.params import (
    DepthParams,
    HistoryParams,
    KlinesParams,
    ListenKeyParams,
    OcoOrderParams,
    OrderListQueryParams,
    OrderParams,
    OrderQueryParams,
    OrderRespType,
    OrderType,
    Side,
    SymbolParams,
    TimeInForce,
    TimeRangeParams,
    TradesParams,
)
from binlink.stream.session import StreamOptions, StreamSession

if TYPE_CHECKING:
    from collections.abc import Callable
    from types import TracebackType

    import httpx

    from binlink.config import Config
    from binlink.exchange.signer import Credentials
    from binlink.stream.registry import StreamRegistry

DEFAULT_BASE_URL = "https://testnet.binance.vision/api"
DEFAULT_WS_URL = "wss://stream.testnet.binance.vision/stream"

LIMIT_ORDER_TYPES = frozenset(
    {
        OrderType.LIMIT,
        OrderType.STOP_LOSS_LIMIT,
        OrderType.TAKE_PROFIT_LIMIT,
        OrderType.LIMIT_MAKER,
    }
)
MARKET_ORDER_TYPES = frozenset({OrderType.MARKET, OrderType.STOP_LOSS, OrderType.TAKE_PROFIT})


class BinanceClient:
    """Async client for the Binance Spot REST API (supports testnet).

    Public endpoints work without credentials; API-key and signed endpoints
    raise ``ConfigError`` when none were given.
    """

    def __init__(
        self,
        credentials: Credentials | None = None,
        base_url: str = DEFAULT_BASE_URL,
        ws_url: str = DEFAULT_WS_URL,
        timeout: float = 10.0,
        recv_window: int | None = None,
        clock: Callable[[], int] = wall_clock_ms,
        stream_options: StreamOptions | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.ws_url = ws_url
        self.stream_options = stream_options
        self.dispatcher = Dispatcher(
            base_url,
            credentials,
            timeout=timeout,
            recv_window=recv_window,
            clock=clock,
            http_client=http_client,
        )

    @classmethod
    def from_config(cls, config: Config) -> Self:
        credentials = config.credentials() if config.has_credentials() else None
        return cls(
            credentials=credentials,
            base_url=config.binance_base_url,
            ws_url=config.binance_ws_url,
            timeout=config.request_timeout,
            recv_window=config.recv_window,
            stream_options=config.stream_options(),
        )

    @property
    def base_url(self) -> str:
        return self.dispatcher.base_url

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.dispatcher.close()

    async def __aenter__(self) -> Self:
        await self.dispatcher.__aenter__()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        await self.close()

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: Any = None,
        tier: AuthTier = AuthTier.PUBLIC,
        recv_window: int | None = None,
    ) -> Any:
        """Execute a request and decode its JSON body."""
        response = await self.dispatcher.execute(
            method, endpoint, params, tier, recv_window=recv_window
        )
        return response.json()

    def stream(self, registry: StreamRegistry | None = None) -> StreamSession:
        """Create a stream session on the combined stream endpoint."""
        return StreamSession(self.ws_url, registry, self.stream_options)

    # --- Public (unsigned) endpoints ---

    async def ping(self) -> bool:
        """Test connectivity to the exchange."""
        await self._request("GET", "/v3/ping")
        return True

    async def get_server_time(self) -> int:
        data = await self._request("GET", "/v3/time")
        return int(data["serverTime"])

    async def get_exchange_info(self, symbol: str | None = None) -> dict[str, Any]:
        return await self._request("GET", "/v3/exchangeInfo", SymbolParams(symbol=symbol))

    async def get_order_book(self, symbol: str, limit: int | None = None) -> dict[str, Any]:
        return await self._request("GET", "/v3/depth", DepthParams(symbol=symbol, limit=limit))

    async def get_recent_trades(self, symbol: str, limit: int | None = None) -> list[dict]:
        return await self._request("GET", "/v3/trades", TradesParams(symbol=symbol, limit=limit))

    async def get_klines(
        self,
        symbol: str,
        interval: str,
        limit: int = 100,
        start_time: int | None = None,
        end_time: int | None = None,
    ) -> list[list]:
        """Get OHLCV candlestick data.

        Returns list of [open_time, open, high, low, close, volume, ...]
        """
        params = KlinesParams(
            symbol=symbol,
            interval=interval,
            start_time=start_time,
            end_time=end_time,
            limit=limit,
        )
        return await self._request("GET", "/v3/klines", params)

    async def get_ticker_price(self, symbol: str | None = None) -> Any:
        """Get latest price for a symbol, or for every symbol when omitted."""
        return await self._request("GET", "/v3/ticker/price", SymbolParams(symbol=symbol))

    async def get_24hr_ticker(self, symbol: str | None = None) -> Any:
        return await self._request("GET", "/v3/ticker/24hr", SymbolParams(symbol=symbol))

    # --- API-key endpoints ---

    async def get_historical_trades(
        self,
        symbol: str,
        limit: int | None = None,
        from_id: int | None = None,
    ) -> list[dict]:
        params = TradesParams(symbol=symbol, limit=limit, from_id=from_id)
        return await self._request("GET", "/v3/historicalTrades", params, AuthTier.API_KEY)

    async def start_user_data_stream(self) -> str:
        """Create a listen key for the account's user data stream."""
        data = await self._request("POST", "/v3/userDataStream", tier=AuthTier.API_KEY)
        return data["listenKey"]

    async def keepalive_user_data_stream(self, listen_key: str) -> None:
        await self._request(
            "PUT", "/v3/userDataStream", ListenKeyParams(listen_key=listen_key), AuthTier.API_KEY
        )

    async def close_user_data_stream(self, listen_key: str) -> None:
        await self._request(
            "DELETE",
            "/v3/userDataStream",
            ListenKeyParams(listen_key=listen_key),
            AuthTier.API_KEY,
        )

    # --- Private (signed) endpoints ---

    async def place_order(
        self,
        order: OrderParams,
        test: bool = False,
        recv_window: int | None = None,
    ) -> dict[str, Any]:
        """Place any order shape. ``test=True`` validates without matching."""
        endpoint = "/v3/order/test" if test else "/v3/order"
        logger.info(
            "Placing {} order{}: {} {} {}",
            order.order_type.value,
            " (test)" if test else "",
            order.side.value,
            order.symbol,
            order.to_params(),
        )
        result = await self._request("POST", endpoint, order, AuthTier.SIGNED, recv_window)
        logger.info("Order response: {}", result)
        return result

    async def place_limit_order(
        self,
        symbol: str,
        side: Side | str,
        price: float,
        quantity: float,
        time_in_force: TimeInForce = TimeInForce.GTC,
        new_client_order_id: str | None = None,
        iceberg_qty: float | None = None,
        new_order_resp_type: OrderRespType | None = None,
        order_type: OrderType = OrderType.LIMIT,
        stop_price: float | None = None,
        test: bool = False,
        recv_window: int | None = None,
    ) -> dict[str, Any]:
        """Place a limit order (GTC unless told otherwise).

        ``order_type`` turns it into a stop-limit (STOP_LOSS_LIMIT,
        TAKE_PROFIT_LIMIT; both need ``stop_price``) or a LIMIT_MAKER order,
        which carries no time in force.
        """
        if order_type not in LIMIT_ORDER_TYPES:
            raise ValueError(f"{order_type} is not a limit order type")
        order = OrderParams(
            symbol=symbol,
            side=Side(side),
            order_type=order_type,
            time_in_force=None if order_type is OrderType.LIMIT_MAKER else time_in_force,
            quantity=quantity,
            price=price,
            new_client_order_id=new_client_order_id,
            stop_price=stop_price,
            iceberg_qty=iceberg_qty,
            new_order_resp_type=new_order_resp_type,
        )
        return await self.place_order(order, test=test, recv_window=recv_window)

    async def place_market_order(
        self,
        symbol: str,
        side: Side | str,
        quantity: float | None = None,
        quote_order_qty: float | None = None,
        new_client_order_id: str | None = None,
        order_type: OrderType = OrderType.MARKET,
        stop_price: float | None = None,
        test: bool = False,
        recv_window: int | None = None,
    ) -> dict[str, Any]:
        """Place a market order.

        Args:
            symbol: Trading pair (e.g. BTCUSDT)
            side: BUY or SELL
            quantity: Base asset quantity
            quote_order_qty: Quote asset quantity, used instead of quantity when given
            order_type: MARKET, or STOP_LOSS / TAKE_PROFIT to trigger at stop_price
            stop_price: Trigger price for stop orders
        """
        if order_type not in MARKET_ORDER_TYPES:
            raise ValueError(f"{order_type} is not a market order type")
        if quantity is None and quote_order_qty is None:
            raise ValueError("quantity or quote_order_qty is required")
        order = OrderParams(
            symbol=symbol,
            side=Side(side),
            order_type=order_type,
            quantity=quantity if quote_order_qty is None else None,
            quote_order_qty=quote_order_qty,
            new_client_order_id=new_client_order_id,
            stop_price=stop_price,
        )
        return await self.place_order(order, test=test, recv_window=recv_window)

    async def get_order(
        self,
        symbol: str,
        order_id: int | None = None,
        orig_client_order_id: str | None = None,
        recv_window: int | None = None,
    ) -> dict[str, Any]:
        params = OrderQueryParams(
            symbol=symbol, order_id=order_id, orig_client_order_id=orig_client_order_id
        )
        return await self._request("GET", "/v3/order", params, AuthTier.SIGNED, recv_window)

    async def cancel_order(
        self,
        symbol: str,
        order_id: int | None = None,
        orig_client_order_id: str | None = None,
        new_client_order_id: str | None = None,
        recv_window: int | None = None,
    ) -> dict[str, Any]:
        params = OrderQueryParams(
            symbol=symbol,
            order_id=order_id,
            orig_client_order_id=orig_client_order_id,
            new_client_order_id=new_client_order_id,
        )
        logger.info("Cancelling order {} on {}", order_id or orig_client_order_id, symbol)
        return await self._request("DELETE", "/v3/order", params, AuthTier.SIGNED, recv_window)

    async def cancel_all_orders(self, symbol: str, recv_window: int | None = None) -> list[dict]:
        logger.info("Cancelling all open orders on {}", symbol)
        return await self._request(
            "DELETE", "/v3/openOrders", SymbolParams(symbol=symbol), AuthTier.SIGNED, recv_window
        )

    async def get_open_orders(
        self, symbol: str | None = None, recv_window: int | None = None
    ) -> list[dict]:
        """Get open orders for a symbol, or for every symbol when omitted."""
        return await self._request(
            "GET", "/v3/openOrders", SymbolParams(symbol=symbol), AuthTier.SIGNED, recv_window
        )

    async def get_all_orders(
        self,
        symbol: str,
        order_id: int | None = None,
        start_time: int | None = None,
        end_time: int | None = None,
        limit: int | None = None,
        recv_window: int | None = None,
    ) -> list[dict]:
        params = HistoryParams(
            symbol=symbol,
            order_id=order_id,
            start_time=start_time,
            end_time=end_time,
            limit=limit,
        )
        return await self._request("GET", "/v3/allOrders", params, AuthTier.SIGNED, recv_window)

    async def place_oco_order(
        self, order: OcoOrderParams, recv_window: int | None = None
    ) -> dict[str, Any]:
        """Place a one-cancels-the-other pair (limit maker plus stop)."""
        logger.info(
            "Placing OCO order: {} {} {}", order.side.value, order.symbol, order.to_params()
        )
        return await self._request("POST", "/v3/order/oco", order, AuthTier.SIGNED, recv_window)

    async def cancel_oco_order(
        self,
        symbol: str,
        order_list_id: int | None = None,
        list_client_order_id: str | None = None,
        new_client_order_id: str | None = None,
        recv_window: int | None = None,
    ) -> dict[str, Any]:
        params = OrderListQueryParams(
            symbol=symbol,
            order_list_id=order_list_id,
            list_client_order_id=list_client_order_id,
            new_client_order_id=new_client_order_id,
        )
        return await self._request("DELETE", "/v3/orderList", params, AuthTier.SIGNED, recv_window)

    async def get_oco_order(
        self,
        order_list_id: int | None = None,
        orig_client_order_id: str | None = None,
        recv_window: int | None = None,
    ) -> dict[str, Any]:
        params = OrderListQueryParams(
            order_list_id=order_list_id, orig_client_order_id=orig_client_order_id
        )
        return await self._request("GET", "/v3/orderList", params, AuthTier.SIGNED, recv_window)

    async def get_all_oco_orders(
        self,
        from_id: int | None = None,
        start_time: int | None = None,
        end_time: int | None = None,
        limit: int | None = None,
        recv_window: int | None = None,
    ) -> list[dict]:
        params = TimeRangeParams(
            from_id=from_id, start_time=start_time, end_time=end_time, limit=limit
        )
        return await self._request(
            "GET", "/v3/allOrderList", params, AuthTier.SIGNED, recv_window
        )

    async def get_open_oco_orders(self, recv_window: int | None = None) -> list[dict]:
        return await self._request(
            "GET", "/v3/openOrderList", None, AuthTier.SIGNED, recv_window
        )

    async def get_account(self, recv_window: int | None = None) -> dict[str, Any]:
        """Get account information including balances."""
        return await self._request("GET", "/v3/account", None, AuthTier.SIGNED, recv_window)

    async def get_account_trades(
        self,
        symbol: str,
        start_time: int | None = None,
        end_time: int | None = None,
        from_id: int | None = None,
        limit: int | None = None,
        recv_window: int | None = None,
    ) -> list[dict]:
        params = HistoryParams(
            symbol=symbol,
            start_time=start_time,
            end_time=end_time,
            from_id=from_id,
            limit=limit,
        )
        return await self._request("GET", "/v3/myTrades", params, AuthTier.SIGNED, recv_window)
