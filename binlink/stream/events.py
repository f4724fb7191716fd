"""Inbound frame decoding and the events a stream session produces."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from binlink.errors import DecodeError

# Payload types delivered on a user data stream.
ACCOUNT_EVENT_TYPES = frozenset(
    {
        "outboundAccountPosition",
        "balanceUpdate",
        "executionReport",
        "listStatus",
        "listenKeyExpired",
        "externalLockUpdate",
    }
)


# --- Frames decoded off the wire ---


@dataclass(slots=True, frozen=True)
class MarketEvent:
    stream: str
    event_type: str
    symbol: str | None
    data: dict[str, Any] = field(repr=False)


@dataclass(slots=True, frozen=True)
class AccountEvent:
    event_type: str
    event_time: int | None
    data: dict[str, Any] = field(repr=False)


@dataclass(slots=True, frozen=True)
class PingControl:
    payload: Any


@dataclass(slots=True, frozen=True)
class ErrorFrame:
    code: int | None
    message: str
    request_id: int | None = None


@dataclass(slots=True, frozen=True)
class SubscriptionAck:
    request_id: int
    result: Any = None


Frame = MarketEvent | AccountEvent | PingControl | ErrorFrame | SubscriptionAck


# --- Session notifications ---


@dataclass(slots=True, frozen=True)
class DecodeFailure:
    """A frame could not be decoded; the session keeps reading."""

    error: str
    consecutive: int


@dataclass(slots=True, frozen=True)
class Reconnecting:
    attempt: int
    delay: float
    reason: str


@dataclass(slots=True, frozen=True)
class StreamTerminated:
    """Reconnection attempts exhausted. Always the last item of a sequence."""

    attempts: int
    reason: str


StreamEvent = (
    MarketEvent | AccountEvent | ErrorFrame | DecodeFailure | Reconnecting | StreamTerminated
)


def _payload_event(stream: str | None, data: Any) -> MarketEvent | AccountEvent:
    if not isinstance(data, dict):
        raise DecodeError(f"Stream payload is not an object: {type(data).__name__}")

    event_type = data.get("e")
    if event_type in ACCOUNT_EVENT_TYPES:
        return AccountEvent(event_type=event_type, event_time=data.get("E"), data=data)

    if stream is None:
        if not isinstance(event_type, str):
            raise DecodeError("Raw stream payload has no event type")
        stream = f"{str(data.get('s', '')).lower()}@{event_type}"
    if not isinstance(event_type, str):
        # Partial book depth and bookTicker payloads carry no "e" field.
        event_type = stream.partition("@")[2] or stream

    symbol = data.get("s")
    return MarketEvent(
        stream=stream,
        event_type=event_type,
        symbol=symbol if isinstance(symbol, str) else None,
        data=data,
    )


def decode_frame(raw: str | bytes) -> Frame:
    """Decode one text frame into its tagged variant.

    Raises:
        DecodeError: the frame is not JSON or matches no known shape.
    """
    try:
        message = json.loads(raw)
    except (ValueError, UnicodeDecodeError) as e:
        raise DecodeError(f"Frame is not valid JSON: {e}", raw) from e

    if not isinstance(message, dict):
        raise DecodeError(f"Frame is not an object: {type(message).__name__}", raw)

    if "ping" in message:
        return PingControl(payload=message["ping"])

    if "error" in message:
        error = message["error"]
        if isinstance(error, dict):
            return ErrorFrame(
                code=error.get("code"),
                message=str(error.get("msg", "")),
                request_id=message.get("id"),
            )
        return ErrorFrame(code=None, message=str(error), request_id=message.get("id"))

    if "result" in message and isinstance(message.get("id"), int):
        return SubscriptionAck(request_id=message["id"], result=message["result"])

    try:
        if "stream" in message and "data" in message:
            return _payload_event(str(message["stream"]), message["data"])
        if "e" in message:
            return _payload_event(None, message)
    except DecodeError as e:
        e.raw = raw
        raise

    raise DecodeError("Unrecognized frame", raw)
