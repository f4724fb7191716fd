"""Desired stream subscriptions, kept apart from any live connection."""

from __future__ import annotations

import threading
from dataclasses import dataclass


@dataclass(slots=True, frozen=True)
class Channel:
    """A stream subscription target, e.g. ``btcusdt@trade``.

    ``event`` is None for a user data stream, whose name is the listen key.
    """

    symbol: str
    event: str | None = None

    def __post_init__(self) -> None:
        # Stream names are lowercase on the wire; listen keys are case-sensitive.
        if self.event is not None:
            object.__setattr__(self, "symbol", self.symbol.lower())

    @classmethod
    def user_data(cls, listen_key: str) -> Channel:
        return cls(symbol=listen_key)

    @classmethod
    def parse(cls, name: str) -> Channel:
        symbol, sep, event = name.partition("@")
        return cls(symbol=symbol, event=event if sep else None)

    @property
    def name(self) -> str:
        if self.event is None:
            return self.symbol
        return f"{self.symbol}@{self.event}"

    def __str__(self) -> str:
        return self.name


class StreamRegistry:
    """Thread-safe set of channels a stream session should be subscribed to.

    The registry only records intent. Sessions read ``snapshot()`` every time
    they (re)connect and never write to it.
    """

    def __init__(self, channels: list[Channel] | None = None) -> None:
        self._lock = threading.Lock()
        self._channels: set[Channel] = set(channels or [])

    def add(self, channel: Channel) -> bool:
        """Record ``channel``. Returns False if it was already present."""
        with self._lock:
            if channel in self._channels:
                return False
            self._channels.add(channel)
            return True

    def remove(self, channel: Channel) -> bool:
        """Forget ``channel``. Returns False if it was not present."""
        with self._lock:
            if channel not in self._channels:
                return False
            self._channels.remove(channel)
            return True

    def snapshot(self) -> frozenset[Channel]:
        with self._lock:
            return frozenset(self._channels)

    def __contains__(self, channel: object) -> bool:
        with self._lock:
            return channel in self._channels

    def __len__(self) -> int:
        with self._lock:
            return len(self._channels)
