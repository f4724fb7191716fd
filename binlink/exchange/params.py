"""Typed request shapes for each endpoint family.

Every shape is a frozen dataclass whose fields are declared in the order the
parameters go on the wire. ``to_params()`` is the single assembly step shared
by all of them, so the dispatcher and signer never need to know which
endpoint they are serving.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from decimal import Decimal
from enum import StrEnum
from typing import Any
from urllib.parse import urlencode


class Side(StrEnum):
    BUY = "BUY"
    SELL = "SELL"


class OrderType(StrEnum):
    LIMIT = "LIMIT"
    MARKET = "MARKET"
    STOP_LOSS = "STOP_LOSS"
    STOP_LOSS_LIMIT = "STOP_LOSS_LIMIT"
    TAKE_PROFIT = "TAKE_PROFIT"
    TAKE_PROFIT_LIMIT = "TAKE_PROFIT_LIMIT"
    LIMIT_MAKER = "LIMIT_MAKER"


STOP_ORDER_TYPES = frozenset(
    {
        OrderType.STOP_LOSS,
        OrderType.STOP_LOSS_LIMIT,
        OrderType.TAKE_PROFIT,
        OrderType.TAKE_PROFIT_LIMIT,
    }
)


class TimeInForce(StrEnum):
    GTC = "GTC"
    IOC = "IOC"
    FOK = "FOK"


class OrderRespType(StrEnum):
    ACK = "ACK"
    RESULT = "RESULT"
    FULL = "FULL"


def _wire(name: str, default: Any = None) -> Any:
    """Field whose wire name differs from the camelCase of its attribute."""
    return field(default=default, metadata={"wire": name})


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def format_value(value: Any) -> str:
    """Render one parameter value the way the exchange expects it."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, StrEnum):
        return value.value
    if isinstance(value, float):
        # repr keeps the shortest round-trip digits; "f" avoids 1e-05 style output
        return format(Decimal(repr(value)), "f")
    return str(value)


def canonical_query(params: dict[str, Any]) -> str:
    """Encode ``params`` as a query string, preserving insertion order."""
    return urlencode(
        [(key, format_value(value)) for key, value in params.items() if value is not None]
    )


@dataclass(slots=True, frozen=True, kw_only=True)
class RequestParams:
    """Base for all request shapes."""

    def to_params(self) -> dict[str, Any]:
        params: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            params[f.metadata.get("wire", _camel(f.name))] = value
        return params


# --- Market data ---


@dataclass(slots=True, frozen=True, kw_only=True)
class SymbolParams(RequestParams):
    symbol: str | None = None


@dataclass(slots=True, frozen=True, kw_only=True)
class DepthParams(RequestParams):
    symbol: str
    limit: int | None = None


@dataclass(slots=True, frozen=True, kw_only=True)
class TradesParams(RequestParams):
    symbol: str
    limit: int | None = None
    from_id: int | None = None


@dataclass(slots=True, frozen=True, kw_only=True)
class KlinesParams(RequestParams):
    symbol: str
    interval: str
    start_time: int | None = None
    end_time: int | None = None
    limit: int | None = None


# --- Orders ---


@dataclass(slots=True, frozen=True, kw_only=True)
class OrderParams(RequestParams):
    symbol: str
    side: Side
    order_type: OrderType = _wire("type", OrderType.LIMIT)
    time_in_force: TimeInForce | None = None
    quantity: float | None = None
    quote_order_qty: float | None = None
    price: float | None = None
    new_client_order_id: str | None = None
    stop_price: float | None = None
    iceberg_qty: float | None = None
    new_order_resp_type: OrderRespType | None = None

    def __post_init__(self) -> None:
        if self.order_type in STOP_ORDER_TYPES and self.stop_price is None:
            raise ValueError(f"stop_price is required for {self.order_type.value} orders")


@dataclass(slots=True, frozen=True, kw_only=True)
class OrderQueryParams(RequestParams):
    """Identifies one order by exchange id or by client order id."""

    symbol: str
    order_id: int | None = None
    orig_client_order_id: str | None = None
    new_client_order_id: str | None = None

    def __post_init__(self) -> None:
        if self.order_id is None and self.orig_client_order_id is None:
            raise ValueError("order_id or orig_client_order_id is required")


@dataclass(slots=True, frozen=True, kw_only=True)
class HistoryParams(RequestParams):
    """Paged history queries (all orders, account trades)."""

    symbol: str
    order_id: int | None = None
    start_time: int | None = None
    end_time: int | None = None
    from_id: int | None = None
    limit: int | None = None


@dataclass(slots=True, frozen=True, kw_only=True)
class OcoOrderParams(RequestParams):
    symbol: str
    side: Side
    quantity: float
    price: float
    stop_price: float
    list_client_order_id: str | None = None
    limit_client_order_id: str | None = None
    limit_iceberg_qty: float | None = None
    stop_client_order_id: str | None = None
    stop_limit_price: float | None = None
    stop_iceberg_qty: float | None = None
    stop_limit_time_in_force: TimeInForce | None = None
    new_order_resp_type: OrderRespType | None = None

    def __post_init__(self) -> None:
        if self.stop_limit_price is not None and self.stop_limit_time_in_force is None:
            raise ValueError("stop_limit_time_in_force is required with stop_limit_price")


@dataclass(slots=True, frozen=True, kw_only=True)
class OrderListQueryParams(RequestParams):
    symbol: str | None = None
    order_list_id: int | None = None
    list_client_order_id: str | None = None
    orig_client_order_id: str | None = None
    new_client_order_id: str | None = None

    def __post_init__(self) -> None:
        if self.order_list_id is None and self.orig_client_order_id is None and (
            self.list_client_order_id is None
        ):
            raise ValueError(
                "order_list_id, list_client_order_id or orig_client_order_id is required"
            )


@dataclass(slots=True, frozen=True, kw_only=True)
class TimeRangeParams(RequestParams):
    from_id: int | None = None
    start_time: int | None = None
    end_time: int | None = None
    limit: int | None = None


# --- User data stream ---


@dataclass(slots=True, frozen=True, kw_only=True)
class ListenKeyParams(RequestParams):
    listen_key: str
