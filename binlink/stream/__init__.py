"""Websocket streaming module."""

from .registry import Channel, StreamRegistry
from .session import SessionState, StreamOptions, StreamSession

__all__ = ["Channel", "SessionState", "StreamOptions", "StreamRegistry", "StreamSession"]
