"""Pyth Network Hermes client.

Hermes returns USD quotes per feed id. Markets need loan-per-collateral
prices at oracle scale, so pairs of quotes are converted with the tokens'
decimals before they reach a FixedPriceOracle.
"""
import logging
import ssl
from collections.abc import Iterable
from decimal import Decimal
from typing import Any

import aiohttp
import certifi

from ..config import PythConfig
from .fixed import quote_to_price

logger = logging.getLogger(__name__)

Pair = tuple[str, str]


def normalize_feed_id(feed_id: str) -> str:
    """Hermes answers with bare lowercase hex ids; configs often carry ``0x``."""
    feed_id = feed_id.strip().lower()
    return feed_id[2:] if feed_id.startswith("0x") else feed_id


def parse_quotes(payload: dict[str, Any], feeds: dict[str, str]) -> dict[str, Decimal]:
    """Map a Hermes ``latest`` payload onto token symbols.

    Several symbols may share a feed. Entries for unknown feeds and
    non-positive prices are dropped.
    """
    id_to_symbols: dict[str, list[str]] = {}
    for symbol, feed_id in feeds.items():
        id_to_symbols.setdefault(normalize_feed_id(feed_id), []).append(symbol)

    quotes: dict[str, Decimal] = {}
    for item in payload.get("parsed", []):
        symbols = id_to_symbols.get(normalize_feed_id(item.get("id", "")), [])
        if not symbols:
            continue
        price_data = item.get("price", {})
        quote = Decimal(int(price_data.get("price", 0))).scaleb(
            int(price_data.get("expo", 0))
        )
        if quote <= 0:
            logger.warning("Ignoring non-positive Pyth quote for %s", ", ".join(symbols))
            continue
        for symbol in symbols:
            quotes[symbol] = quote
    return quotes


class PythOracle:
    """Fetch USD quotes from Pyth Network Hermes."""

    def __init__(self, config: PythConfig) -> None:
        self.hermes_url = config.hermes_url
        self.price_feeds = dict(config.feeds)

    def _feeds_for(self, symbols: Iterable[str] | None) -> dict[str, str]:
        if symbols is None:
            return self.price_feeds
        wanted = set(symbols)
        return {k: v for k, v in self.price_feeds.items() if k in wanted}

    def _url(self, feeds: dict[str, str]) -> str:
        feed_ids = sorted({normalize_feed_id(fid) for fid in feeds.values()})
        query_params = "&".join(f"ids[]={fid}" for fid in feed_ids)
        return f"{self.hermes_url}?{query_params}"

    async def fetch_quotes(self, symbols: Iterable[str] | None = None) -> dict[str, Decimal]:
        """Exact USD quotes for ``symbols`` (all configured feeds if None).

        Network and HTTP errors are logged and yield an empty result.
        """
        feeds = self._feeds_for(symbols)
        if not feeds:
            return {}

        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)

        try:
            async with aiohttp.ClientSession(connector=connector) as session:
                async with session.get(self._url(feeds)) as response:
                    if response.status != 200:
                        logger.error(
                            "Error fetching prices from Pyth: HTTP %s", response.status
                        )
                        return {}
                    payload = await response.json()
        except (aiohttp.ClientError, OSError) as e:
            logger.error("Error fetching prices from Pyth: %s", e)
            return {}

        quotes = parse_quotes(payload, feeds)
        for symbol in sorted(feeds.keys() - quotes.keys()):
            logger.warning("No Pyth quote returned for %s", symbol)
        return quotes

    async def fetch_prices(self, symbols: list[str] | None = None) -> dict[str, float]:
        """USD prices for display."""
        quotes = await self.fetch_quotes(symbols)
        for symbol, quote in sorted(quotes.items()):
            logger.info("  %s: $%.4f", symbol, quote)
        return {symbol: float(quote) for symbol, quote in quotes.items()}

    async def fetch_pair_prices(
        self, pairs: Iterable[Pair], decimals: dict[str, int]
    ) -> dict[Pair, int]:
        """Oracle-scale prices for (collateral, loan) pairs.

        Pairs missing either quote are left out so the caller keeps its
        configured price for them.
        """
        pairs = list(pairs)
        quotes = await self.fetch_quotes({symbol for pair in pairs for symbol in pair})

        prices: dict[Pair, int] = {}
        for collateral, loan in pairs:
            if collateral not in quotes or loan not in quotes:
                logger.warning(
                    "Missing Pyth quote for %s/%s, keeping configured price",
                    collateral, loan,
                )
                continue
            prices[(collateral, loan)] = quote_to_price(
                quotes[collateral], quotes[loan], decimals[collateral], decimals[loan]
            )
            logger.info(
                "Pyth price %s/%s: %s", collateral, loan,
                quotes[collateral] / quotes[loan],
            )
        return prices
