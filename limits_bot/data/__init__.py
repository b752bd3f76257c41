"""Market data models, aggregation and caching."""

from limits_bot.data.models import (
    Side,
    OrderBookLevel,
    OrderBook,
    AggregatedLevel,
    AnalysisResult,
    AnalysisResponse,
    parse_depth_percent,
    pair_for,
)
from limits_bot.data.orderbook import DepthAggregator, band_bounds
from limits_bot.data.cache import ResultCache, RedisResultCache, RedisCacheConfig
from limits_bot.data.markets import MarketRegistry

__all__ = [
    # Enums
    "Side",
    # Data models
    "OrderBookLevel",
    "OrderBook",
    "AggregatedLevel",
    "AnalysisResult",
    "AnalysisResponse",
    "parse_depth_percent",
    "pair_for",
    # Services
    "DepthAggregator",
    "band_bounds",
    "ResultCache",
    "RedisResultCache",
    "RedisCacheConfig",
    "MarketRegistry",
]
