"""Exchange market data access."""

from limits_bot.exchange.binance_api import BinanceSpotAPI

__all__ = [
    "BinanceSpotAPI",
]
