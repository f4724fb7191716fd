"""Reconnection delay schedule."""

from __future__ import annotations

import random
from collections.abc import Callable


class Backoff:
    """Exponential backoff with bounded jitter.

    The raw delay is ``base * 2**attempt`` plus up to ``jitter`` seconds of
    noise, then capped at ``ceiling``. Each delay is also held at or above the
    previous one, so the schedule never shrinks until ``reset()``.
    """

    def __init__(
        self,
        base: float = 1.0,
        ceiling: float = 30.0,
        jitter: float = 0.5,
        rng: Callable[[], float] = random.random,
    ) -> None:
        if base < 0 or ceiling < 0 or jitter < 0:
            raise ValueError("backoff parameters must be non-negative")
        self.base = base
        self.ceiling = ceiling
        self.jitter = jitter
        self._rng = rng
        self._attempt = 0
        self._last = 0.0

    @property
    def attempt(self) -> int:
        return self._attempt

    def next_delay(self) -> float:
        raw = self.base * (2 ** min(self._attempt, 64)) + self._rng() * self.jitter
        delay = min(self.ceiling, max(self._last, raw))
        self._attempt += 1
        self._last = delay
        return delay

    def reset(self) -> None:
        self._attempt = 0
        self._last = 0.0
