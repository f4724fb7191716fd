"""Websocket stream session with subscription replay and reconnection."""

from __future__ import annotations

import asyncio
import json
import random
from collections.abc import AsyncIterator, Callable, Iterable
from contextlib import AbstractAsyncContextManager, AsyncExitStack
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

import websockets
from loguru import logger
from websockets.exceptions import ConnectionClosed, WebSocketException

from binlink.errors import DecodeError, StreamTerminatedError, TransportError
from binlink.stream.backoff import Backoff
from binlink.stream.events import (
    DecodeFailure,
    ErrorFrame,
    PingControl,
    Reconnecting,
    StreamEvent,
    StreamTerminated,
    SubscriptionAck,
    decode_frame,
)
from binlink.stream.registry import Channel, StreamRegistry

Connector = Callable[[str], AbstractAsyncContextManager[Any]]

_SEND_ERRORS = (OSError, WebSocketException)


class SessionState(StrEnum):
    CONNECTING = "CONNECTING"
    OPEN = "OPEN"
    DEGRADED = "DEGRADED"
    CLOSED = "CLOSED"


_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.CONNECTING: frozenset(
        {SessionState.OPEN, SessionState.DEGRADED, SessionState.CLOSED}
    ),
    SessionState.OPEN: frozenset({SessionState.DEGRADED, SessionState.CLOSED}),
    SessionState.DEGRADED: frozenset({SessionState.CONNECTING, SessionState.CLOSED}),
    SessionState.CLOSED: frozenset(),
}


@dataclass(slots=True, frozen=True, kw_only=True)
class StreamOptions:
    """Tuning knobs for a stream session."""

    handshake_timeout: float = 10.0
    max_reconnect_attempts: int = 5
    decode_failure_threshold: int = 3
    backoff_base: float = 1.0
    backoff_ceiling: float = 30.0
    backoff_jitter: float = 0.5

    def __post_init__(self) -> None:
        if self.handshake_timeout <= 0:
            raise ValueError("handshake_timeout must be positive")
        if self.max_reconnect_attempts < 0:
            raise ValueError("max_reconnect_attempts must be >= 0")
        if self.decode_failure_threshold < 1:
            raise ValueError("decode_failure_threshold must be >= 1")


class StreamSession:
    """One logical websocket stream, rebuilt transparently after drops.

    The session moves through ``CONNECTING -> OPEN -> DEGRADED -> CONNECTING``
    until it is closed by the caller or runs out of reconnection attempts,
    after which it stays ``CLOSED``. Every (re)connection subscribes to the
    registry's snapshot at that moment, not to the channels the session
    started with.

    A single task should consume ``events()``; ``subscribe``, ``unsubscribe``
    and ``close`` may be called from other tasks.
    """

    def __init__(
        self,
        url: str,
        registry: StreamRegistry | None = None,
        options: StreamOptions | None = None,
        *,
        connect: Connector = websockets.connect,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self.url = url
        self.registry = registry if registry is not None else StreamRegistry()
        self.options = options or StreamOptions()
        self._connect = connect
        self._backoff = Backoff(
            base=self.options.backoff_base,
            ceiling=self.options.backoff_ceiling,
            jitter=self.options.backoff_jitter,
            rng=rng,
        )
        self._state = SessionState.CONNECTING
        self._ws: Any = None
        self._subscribed: set[Channel] = set()
        self._pending: dict[int, list[str]] = {}
        self._last_id = 0
        self._reason = ""
        self._started = False
        self._stop = asyncio.Event()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def subscribed(self) -> frozenset[Channel]:
        """Channels requested on the current connection."""
        return frozenset(self._subscribed)

    def _transition(self, new_state: SessionState) -> None:
        old_state = self._state
        if new_state is old_state:
            return
        if new_state not in _TRANSITIONS[old_state]:
            msg = f"Illegal stream state transition {old_state} -> {new_state}"
            raise RuntimeError(msg)
        self._state = new_state
        logger.info("Stream {}: {} -> {}", self.url, old_state.value, new_state.value)

    def _degrade(self, reason: str) -> None:
        if self._state is SessionState.OPEN or self._state is SessionState.CONNECTING:
            self._reason = reason
            logger.warning("Stream {} degraded: {}", self.url, reason)
            self._transition(SessionState.DEGRADED)

    # --- Subscriptions ---

    async def subscribe(self, channel: Channel) -> bool:
        """Add ``channel`` to the registry and subscribe now if connected."""
        self._ensure_usable()
        added = self.registry.add(channel)
        await self._apply()
        return added

    async def unsubscribe(self, channel: Channel) -> bool:
        """Remove ``channel`` from the registry and unsubscribe now if connected."""
        self._ensure_usable()
        removed = self.registry.remove(channel)
        await self._apply()
        return removed

    def _ensure_usable(self) -> None:
        if self._state is SessionState.CLOSED:
            raise StreamTerminatedError(f"Stream {self.url} is closed")

    async def _apply(self) -> None:
        ws = self._ws
        if ws is None or self._state is not SessionState.OPEN:
            # Applied from the registry on the next connection.
            return
        try:
            await self._sync(ws)
        except _SEND_ERRORS as e:
            logger.warning(
                "Subscription update on {} failed, deferring to reconnect: {}", self.url, e
            )

    async def _sync(self, ws: Any) -> None:
        """Bring the connection's subscriptions in line with the registry."""
        desired = self.registry.snapshot()
        added = desired - self._subscribed
        removed = self._subscribed - desired
        self._subscribed = set(desired)
        if removed:
            await self._send_control(ws, "UNSUBSCRIBE", removed)
        if added:
            await self._send_control(ws, "SUBSCRIBE", added)

    async def _send_control(self, ws: Any, method: str, channels: Iterable[Channel]) -> int:
        self._last_id += 1
        request_id = self._last_id
        names = sorted(channel.name for channel in channels)
        self._pending[request_id] = names
        await ws.send(json.dumps({"method": method, "params": names, "id": request_id}))
        logger.info("{} {} on {} (id={})", method, names, self.url, request_id)
        return request_id

    # --- Connection lifecycle ---

    async def _handshake(self, stack: AsyncExitStack) -> Any | None:
        """Open the connection, or return None if the session is closed first."""
        connecting = asyncio.ensure_future(stack.enter_async_context(self._connect(self.url)))
        stopping = asyncio.ensure_future(self._stop.wait())
        try:
            done, _ = await asyncio.wait(
                {connecting, stopping},
                timeout=self.options.handshake_timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            stopping.cancel()
            if not connecting.done():
                connecting.cancel()
            await asyncio.gather(connecting, stopping, return_exceptions=True)

        if connecting in done:
            try:
                return connecting.result()
            except TimeoutError as e:
                raise TransportError(f"Handshake timed out: {e}") from e
            except _SEND_ERRORS as e:
                raise TransportError(f"Handshake failed: {e}") from e
        if stopping in done:
            logger.info("Handshake with {} aborted by close", self.url)
            return None
        raise TransportError(f"Handshake timed out after {self.options.handshake_timeout}s")

    async def _open(self, stack: AsyncExitStack) -> Any | None:
        """Handshake and replay the registry. Raises TransportError on failure."""
        logger.info("Connecting to {}", self.url)
        ws = await self._handshake(stack)
        if ws is None:
            return None

        self._ws = ws
        stack.callback(self._release)
        if self._state is SessionState.CLOSED:
            return ws

        self._subscribed = set()
        self._pending.clear()
        try:
            await self._sync(ws)
            if self._state is SessionState.CONNECTING:
                self._transition(SessionState.OPEN)
                # Catch channels changed while the replay was in flight.
                await self._sync(ws)
        except _SEND_ERRORS as e:
            raise TransportError(f"Subscription replay failed: {e}") from e
        return ws

    def _release(self) -> None:
        self._ws = None

    async def _read(self, ws: Any) -> AsyncIterator[StreamEvent]:
        """Yield decoded events until the connection degrades or closes."""
        consecutive = 0
        threshold = self.options.decode_failure_threshold
        while self._state is SessionState.OPEN:
            try:
                raw = await ws.recv()
            except ConnectionClosed as e:
                self._degrade(f"connection closed: {e}")
                return

            try:
                frame = decode_frame(raw)
            except DecodeError as e:
                consecutive += 1
                logger.warning(
                    "Undecodable frame on {} ({} in a row): {}", self.url, consecutive, e
                )
                if consecutive >= threshold:
                    self._degrade(f"{consecutive} consecutive undecodable frames")
                yield DecodeFailure(error=str(e), consecutive=consecutive)
                continue
            consecutive = 0

            if isinstance(frame, PingControl):
                try:
                    await ws.send(json.dumps({"pong": frame.payload}))
                except _SEND_ERRORS as e:
                    self._degrade(f"pong failed: {e}")
                    return
            elif isinstance(frame, SubscriptionAck):
                names = self._pending.pop(frame.request_id, None)
                logger.debug(
                    "Request {} acknowledged on {}: {}", frame.request_id, self.url, names
                )
            elif isinstance(frame, ErrorFrame):
                names = None
                if frame.request_id is not None:
                    names = self._pending.pop(frame.request_id, None)
                logger.error(
                    "Stream error on {} (code={}, id={}, channels={}): {}",
                    self.url,
                    frame.code,
                    frame.request_id,
                    names,
                    frame.message,
                )
                self._degrade(f"error frame: {frame.message}")
                yield frame
                return
            else:
                yield frame

    async def _wait(self, delay: float) -> bool:
        """Sleep for ``delay`` unless closed first. Returns True if closed."""
        if self._stop.is_set():
            return True
        try:
            async with asyncio.timeout(delay):
                await self._stop.wait()
        except TimeoutError:
            return False
        return True

    async def events(self) -> AsyncIterator[StreamEvent]:
        """Produce events in wire order, interleaved with session notifications.

        The sequence ends after the session is closed or after a single
        ``StreamTerminated`` notification. It cannot be restarted.
        """
        if self._started or self._state is SessionState.CLOSED:
            raise StreamTerminatedError(f"Stream {self.url} cannot be restarted")
        self._started = True

        failures = 0
        try:
            while True:
                try:
                    async with AsyncExitStack() as stack:
                        ws = await self._open(stack)
                        if self._state is SessionState.CLOSED:
                            return
                        failures = 0
                        self._backoff.reset()
                        async for event in self._read(ws):
                            yield event
                except TransportError as e:
                    logger.warning("Stream {}: {}", self.url, e)
                    self._degrade(str(e))

                if self._state is SessionState.CLOSED:
                    return

                failures += 1
                if failures > self.options.max_reconnect_attempts:
                    attempts = failures - 1
                    logger.error(
                        "Stream {} terminated after {} reconnection attempts: {}",
                        self.url,
                        attempts,
                        self._reason,
                    )
                    self._transition(SessionState.CLOSED)
                    yield StreamTerminated(attempts=attempts, reason=self._reason)
                    return

                delay = self._backoff.next_delay()
                logger.info(
                    "Reconnecting to {} in {:.2f}s (attempt {}/{})",
                    self.url,
                    delay,
                    failures,
                    self.options.max_reconnect_attempts,
                )
                yield Reconnecting(attempt=failures, delay=delay, reason=self._reason)
                if await self._wait(delay) or self._state is SessionState.CLOSED:
                    return
                self._transition(SessionState.CONNECTING)
        finally:
            if self._state is not SessionState.CLOSED:
                self._transition(SessionState.CLOSED)

    async def close(self) -> None:
        """Close the session for good, sending a close frame if still connected."""
        if self._state is SessionState.CLOSED:
            return
        self._transition(SessionState.CLOSED)
        self._stop.set()
        ws = self._ws
        if ws is None:
            return
        try:
            await ws.close()
        except _SEND_ERRORS as e:
            logger.debug("Close frame on {} not sent: {}", self.url, e)
