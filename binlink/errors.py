"""Error taxonomy shared by the REST and streaming layers."""

from __future__ import annotations

import json
from typing import Any

# Binance signals rate limiting with 429; 418 is an IP ban and is not retryable.
RETRYABLE_STATUSES = frozenset({429})


class BinlinkError(Exception):
    """Base class for every error raised by binlink."""


class DispatchError(BinlinkError):
    """Raised when a REST call cannot produce a usable response."""


class ConfigError(DispatchError):
    """Missing or invalid credentials/configuration. Do not retry without fixing it."""


class TransportError(DispatchError):
    """Network, TLS or timeout failure before a response was received."""


class DecodeError(DispatchError):
    """A response body or stream frame could not be decoded."""

    def __init__(self, message: str, raw: str | bytes | None = None):
        super().__init__(message)
        self.raw = raw


class RemoteError(DispatchError):
    """The exchange answered with a non-2xx status.

    The body is kept verbatim; ``code`` and ``message`` are filled in when the
    exchange returned its usual ``{"code": ..., "msg": ...}`` payload.
    """

    def __init__(
        self,
        status: int,
        body: str,
        retry_after: float | None = None,
    ):
        self.status = status
        self.body = body
        self.retry_after = retry_after
        self.code: int | None = None
        self.message: str | None = None

        payload: Any = None
        try:
            payload = json.loads(body) if body else None
        except ValueError:
            pass
        if isinstance(payload, dict):
            code = payload.get("code")
            self.code = code if isinstance(code, int) else None
            self.message = payload.get("msg")

        detail = self.message or body or "<empty body>"
        super().__init__(f"HTTP {status}: {detail}")

    @property
    def retryable(self) -> bool:
        return self.status in RETRYABLE_STATUSES


class StreamTerminatedError(BinlinkError):
    """A stream session is closed and cannot be iterated again."""
