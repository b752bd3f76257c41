"""
Request orchestrator.

Entry point for the bot layer: turns a (symbol, depth) pair typed by a user
into a ranked order book analysis, serving repeated requests from cache.
"""

from decimal import Decimal
from typing import Any, Dict

from loguru import logger

from limits_bot.core.errors import LimitsBotError, RequestError, ServiceUnavailable
from limits_bot.core.validator import SymbolValidator
from limits_bot.data.models import DEFAULT_MAX_DEPTH, AnalysisResponse, parse_depth_percent
from limits_bot.data.orderbook import DepthAggregator


class RequestOrchestrator:
    """
    Drives validation, fetching, aggregation and caching for one request.

    Flow:
        depth check -> symbol format/exclusions -> cache read
        -> [miss] tradability -> fetch -> aggregate -> cache write
    """

    def __init__(
        self,
        api,
        validator: SymbolValidator,
        aggregator: DepthAggregator,
        cache,
        max_depth_percent: Decimal = DEFAULT_MAX_DEPTH,
    ):
        """
        Initialize orchestrator.

        Args:
            api: Exchange client with get_order_book(symbol)
            validator: Symbol validator
            aggregator: Depth aggregator
            cache: Result cache (ResultCache or RedisResultCache)
            max_depth_percent: Largest accepted depth
        """
        self.api = api
        self.validator = validator
        self.aggregator = aggregator
        self.cache = cache
        self.max_depth_percent = Decimal(max_depth_percent)

        # Stats
        self._requests = 0
        self._cache_hits = 0
        self._fetches = 0
        self._errors = 0

    @property
    def stats(self) -> Dict[str, Any]:
        return {
            "requests": self._requests,
            "cache_hits": self._cache_hits,
            "fetches": self._fetches,
            "errors": self._errors,
            "cache": self.cache.stats,
        }

    def validate_symbol(self, raw_symbol: str) -> str:
        """Validate a coin name without running the analysis."""
        return self.validator.validate(raw_symbol)

    def parse_depth(self, raw_depth: Any) -> Decimal:
        return parse_depth_percent(raw_depth, self.max_depth_percent)

    async def handle(self, raw_symbol: str, raw_depth: Any) -> AnalysisResponse:
        """
        Analyse the order book for a coin at a depth.

        Args:
            raw_symbol: Coin name as typed ("sol", "SOLUSDT")
            raw_depth: Depth percentage ("8", "8%", 8)

        Returns:
            AnalysisResponse with from_cache flag

        Raises:
            LimitsBotError: every failure, as a typed outcome
        """
        self._requests += 1

        try:
            depth = self.parse_depth(raw_depth)
            symbol = self.validator.normalize(raw_symbol)
            self.validator.check_supported(symbol)
        except RequestError:
            self._errors += 1
            raise

        cached = await self.cache.get(symbol, depth)
        if cached is not None:
            self._cache_hits += 1
            logger.debug(f"Cache hit for {symbol} {depth}%")
            return AnalysisResponse(result=cached, from_cache=True, cache_ttl=self.cache.ttl)

        try:
            self.validator.validate(symbol)
            self._fetches += 1
            book = await self.api.get_order_book(symbol)
            result = self.aggregator.aggregate(book, depth)
        except LimitsBotError as e:
            self._errors += 1
            logger.warning(f"Request for {symbol} {depth}% failed: {type(e).__name__}: {e}")
            raise
        except Exception as e:
            self._errors += 1
            logger.exception(f"Error while requesting order book for {symbol}: {e}")
            raise ServiceUnavailable(f"{type(e).__name__}: {e}") from e

        await self.cache.put(symbol, depth, result)

        logger.info(
            f"{symbol} {depth}%: {len(result.bids)} bid / {len(result.asks)} ask clusters "
            f"at reference {result.reference_price}"
        )
        return AnalysisResponse(result=result, from_cache=False, cache_ttl=self.cache.ttl)
