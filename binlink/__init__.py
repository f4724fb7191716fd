"""Async client for the Binance Spot REST API and websocket streams."""

from .errors import (
    BinlinkError,
    ConfigError,
    DecodeError,
    DispatchError,
    RemoteError,
    StreamTerminatedError,
    TransportError,
)
from .exchange import AuthTier, BinanceClient, Credentials, Dispatcher, sign
from .stream import Channel, SessionState, StreamOptions, StreamRegistry, StreamSession

__all__ = [
    "AuthTier",
    "BinanceClient",
    "BinlinkError",
    "Channel",
    "ConfigError",
    "Credentials",
    "DecodeError",
    "Dispatcher",
    "DispatchError",
    "RemoteError",
    "SessionState",
    "StreamOptions",
    "StreamRegistry",
    "StreamSession",
    "StreamTerminatedError",
    "TransportError",
    "sign",
]
