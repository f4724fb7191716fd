"""Exchange connectivity module."""

from .client import BinanceClient
from .dispatcher import AuthTier, Dispatcher, RawResponse
from .signer import Credentials, sign

__all__ = ["AuthTier", "BinanceClient", "Credentials", "Dispatcher", "RawResponse", "sign"]
