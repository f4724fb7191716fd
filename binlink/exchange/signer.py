"""HMAC-SHA256 request signing."""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass, field


@dataclass(slots=True, frozen=True)
class Credentials:
    """API key (sent as a header) and secret (only used to derive signatures)."""

    api_key: str
    secret: str = field(repr=False)

    def sign(self, payload: str | bytes) -> str:
        return sign(self.secret, payload)


def sign(secret: str | bytes, payload: str | bytes) -> str:
    """Return the lowercase hex HMAC-SHA256 of ``payload`` keyed by ``secret``.

    The payload is signed byte for byte as given. Callers must pass the exact
    query string that will be sent, because the exchange recomputes the MAC
    over the same byte order.
    """
    key = secret.encode("utf-8") if isinstance(secret, str) else secret
    message = payload.encode("utf-8") if isinstance(payload, str) else payload
    return hmac.new(key, message, hashlib.sha256).hexdigest()
