"""
Tradable market registry.

Keeps the set of Binance Spot USDT pairs that are currently trading,
refreshed periodically from exchangeInfo.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, Iterable, Optional

from loguru import logger

from limits_bot.core.errors import LimitsBotError, MalformedResponse
from limits_bot.data.models import QUOTE_ASSET


DEFAULT_REFRESH_INTERVAL = 300  # seconds


def usdt_trading_pairs(symbols: Iterable[Dict[str, Any]]) -> FrozenSet[str]:
    """Pick actively trading <BASE>USDT pairs from exchangeInfo symbols."""
    pairs = set()
    for item in symbols:
        if not isinstance(item, dict):
            raise MalformedResponse(f"unexpected exchangeInfo symbol entry: {item!r}")

        name = item.get("symbol")
        if not name or item.get("status") != "TRADING":
            continue

        quote = item.get("quoteAsset")
        if quote is None:
            if not name.endswith(QUOTE_ASSET):
                continue
        elif quote != QUOTE_ASSET:
            continue

        pairs.add(name)
    return frozenset(pairs)


class MarketRegistry:
    """
    Process-wide set of tradable USDT pairs.

    The set is replaced by reference on refresh, so concurrent readers always
    see a complete snapshot.
    """

    def __init__(self, api, refresh_interval: int = DEFAULT_REFRESH_INTERVAL):
        """
        Initialize registry.

        Args:
            api: Exchange client with get_exchange_info()
            refresh_interval: Seconds between refreshes
        """
        self.api = api
        self.refresh_interval = refresh_interval
        self._pairs: FrozenSet[str] = frozenset()
        self._last_refresh: Optional[datetime] = None

    @property
    def is_loaded(self) -> bool:
        return self._last_refresh is not None

    @property
    def last_refresh(self) -> Optional[datetime]:
        return self._last_refresh

    @property
    def size(self) -> int:
        return len(self._pairs)

    def is_tradable(self, pair: str) -> bool:
        return pair.upper() in self._pairs

    async def refresh(self) -> int:
        """
        Reload tradable pairs from the exchange.

        Returns:
            Number of tradable pairs

        Raises:
            ExchangeError: when exchangeInfo cannot be fetched or parsed
        """
        info = await self.api.get_exchange_info()
        symbols = info.get("symbols") if isinstance(info, dict) else None
        if not isinstance(symbols, list):
            raise MalformedResponse("exchangeInfo has no symbols list")

        pairs = usdt_trading_pairs(symbols)
        removed = len(self._pairs - pairs)

        self._pairs = pairs
        self._last_refresh = datetime.now(timezone.utc)

        logger.info(f"Exchange info updated: {len(pairs)} USDT pairs trading ({removed} removed)")
        return len(pairs)

    async def run_periodic(self) -> None:
        """Refresh forever; failures keep the last good set."""
        logger.info("Updating exchange info Binance Spot")

        while True:
            try:
                await self.refresh()
            except LimitsBotError as e:
                logger.error(f"Failed to update exchange info Binance Spot: {e}")

            await asyncio.sleep(self.refresh_interval)
