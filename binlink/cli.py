"""Command-line interface for poking at the exchange API."""

import json
import sys
from contextlib import aclosing

import asyncclick as click
from loguru import logger

from .config import Config
from .errors import BinlinkError, DispatchError
from .exchange.client import BinanceClient
from .stream.events import AccountEvent, MarketEvent, StreamTerminated
from .stream.registry import Channel, StreamRegistry


def _echo_json(data: object) -> None:
    click.echo(json.dumps(data, indent=2, sort_keys=True))


async def run_ping(config: Config) -> int:
    """Check connectivity. Returns 0 on success, 1 on error."""
    client = BinanceClient.from_config(config)
    try:
        await client.ping()
        server_time = await client.get_server_time()
        logger.info("Connected to Binance ({}), server time {}", client.base_url, server_time)
        return 0
    except DispatchError as e:
        logger.error("Ping failed: {}", e)
        return 1
    finally:
        await client.close()


async def run_stream(config: Config, channels: list[Channel], limit: int | None) -> int:
    """Print stream events until ``limit`` data events or termination."""
    registry = StreamRegistry(channels)
    client = BinanceClient.from_config(config)
    session = client.stream(registry)
    received = 0
    try:
        async with aclosing(session.events()) as events:
            async for event in events:
                if isinstance(event, (MarketEvent, AccountEvent)):
                    _echo_json(event.data)
                    received += 1
                    if limit is not None and received >= limit:
                        break
                elif isinstance(event, StreamTerminated):
                    logger.error("Stream terminated: {}", event.reason)
                    return 1
                else:
                    logger.warning("Stream notification: {}", event)
        return 0
    finally:
        await session.close()
        await client.close()


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose: bool) -> None:
    """binlink - async Binance REST and stream client."""
    if verbose:
        logger.remove()
        logger.add(sys.stderr, level="DEBUG")


@cli.command()
async def ping() -> None:
    """Check connectivity to the REST API."""
    exit_code = await run_ping(Config())
    raise SystemExit(exit_code)


@cli.command()
@click.argument("symbol", required=False)
async def price(symbol: str | None) -> None:
    """Show the latest price for SYMBOL (defaults to SYMBOL from config)."""
    config = Config()
    async with BinanceClient.from_config(config) as client:
        try:
            data = await client.get_ticker_price((symbol or config.symbol).upper())
        except DispatchError as e:
            logger.error("Price lookup failed: {}", e)
            raise SystemExit(1) from e
    _echo_json(data)


@cli.command()
async def account() -> None:
    """Show account balances (requires API credentials)."""
    config = Config()
    errors = config.validate()
    if errors:
        for err in errors:
            logger.error("Config error: {}", err)
        logger.info(
            "Copy .env.example to .env and set BINANCE_API_KEY, BINANCE_API_SECRET. "
            "Get testnet keys at https://testnet.binance.vision/"
        )
        raise SystemExit(1)

    async with BinanceClient.from_config(config) as client:
        try:
            data = await client.get_account()
        except BinlinkError as e:
            logger.error("Account lookup failed: {}", e)
            raise SystemExit(1) from e
    balances = [b for b in data.get("balances", []) if float(b["free"]) or float(b["locked"])]
    _echo_json(balances)


@cli.command()
@click.argument("symbols", nargs=-1, required=True)
@click.option("--event", "-e", default="trade", show_default=True, help="Stream event type")
@click.option("--limit", "-n", type=int, default=None, help="Stop after N data events")
async def stream(symbols: tuple[str, ...], event: str, limit: int | None) -> None:
    """Print live EVENT messages for SYMBOLS."""
    channels = [Channel(symbol=s, event=event) for s in symbols]
    exit_code = await run_stream(Config(), channels, limit)
    raise SystemExit(exit_code)
