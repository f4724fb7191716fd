"""Configuration loaded from the environment and .env files."""

from pathlib import Path

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from binlink.errors import ConfigError
from binlink.exchange.signer import Credentials
from binlink.stream.session import StreamOptions


# Load .env from project root (when developing) or cwd (when installed)
def _load_env_files() -> None:
    cwd = Path.cwd()
    project_root = Path(__file__).resolve().parent.parent
    for base in (cwd, project_root):
        env_default = base / ".env.default"
        env_file = base / ".env"
        if env_default.exists():
            load_dotenv(env_default)
        if env_file.exists():
            load_dotenv(env_file)
            break


_load_env_files()


class Config(BaseSettings):
    """Client configuration from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_case=True,
    )

    # Exchange
    binance_api_key: str = Field(default="")
    binance_api_secret: str = Field(default="", repr=False)
    binance_base_url: str = Field(default="https://testnet.binance.vision/api")
    binance_ws_url: str = Field(default="wss://stream.testnet.binance.vision/stream")

    # REST
    recv_window: int | None = Field(default=None, ge=1, le=60000)
    request_timeout: float = Field(default=10.0, gt=0)

    # Streaming
    handshake_timeout: float = Field(default=10.0, gt=0)
    reconnect_max_attempts: int = Field(default=5, ge=0)
    reconnect_base_delay: float = Field(default=1.0, ge=0)
    reconnect_max_delay: float = Field(default=30.0, ge=0)
    reconnect_jitter: float = Field(default=0.5, ge=0)
    decode_failure_threshold: int = Field(default=3, ge=1)

    # CLI defaults
    symbol: str = Field(default="BTCUSDT")

    def has_credentials(self) -> bool:
        return bool(self.binance_api_key and self.binance_api_secret)

    def validate(self) -> list[str]:
        """Validate configuration and return list of error messages."""
        errors = []
        if not self.binance_api_key:
            errors.append("BINANCE_API_KEY is required for authenticated endpoints")
        if not self.binance_api_secret:
            errors.append("BINANCE_API_SECRET is required for signed endpoints")
        if self.reconnect_max_delay < self.reconnect_base_delay:
            errors.append("RECONNECT_MAX_DELAY must not be below RECONNECT_BASE_DELAY")
        return errors

    def credentials(self) -> Credentials:
        """Return the configured credentials or raise ConfigError."""
        if not self.has_credentials():
            msg = "BINANCE_API_KEY and BINANCE_API_SECRET must both be set"
            raise ConfigError(msg)
        return Credentials(api_key=self.binance_api_key, secret=self.binance_api_secret)

    def stream_options(self) -> StreamOptions:
        return StreamOptions(
            handshake_timeout=self.handshake_timeout,
            max_reconnect_attempts=self.reconnect_max_attempts,
            decode_failure_threshold=self.decode_failure_threshold,
            backoff_base=self.reconnect_base_delay,
            backoff_ceiling=self.reconnect_max_delay,
            backoff_jitter=self.reconnect_jitter,
        )
