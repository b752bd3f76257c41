"""
Binance Spot public market data API wrapper.

Handles order book snapshots, last prices and exchange metadata. No
credentials are needed; every endpoint used here is public.
"""

import asyncio
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

import aiohttp
from loguru import logger

from limits_bot.core.errors import (
    ExchangeAPIError,
    ExchangeTimeout,
    MalformedResponse,
    NetworkError,
    NotTradable,
    RateLimited,
)
from limits_bot.data.models import OrderBook, pair_for


def _parse_retry_after(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    try:
        return max(0, int(value))
    except ValueError:
        return None


class BinanceSpotAPI:
    """
    Async client for Binance Spot public endpoints.

    Handles:
    - Order book snapshots (up to 5000 levels per side)
    - Last traded price
    - Exchange info (symbol list and trading status)

    Usage:
        async with BinanceSpotAPI() as api:
            book = await api.get_order_book("SOL")
    """

    MAINNET_API = "https://api.binance.com"

    DEPTH_ENDPOINT = "/api/v3/depth"
    TICKER_PRICE_ENDPOINT = "/api/v3/ticker/price"
    EXCHANGE_INFO_ENDPOINT = "/api/v3/exchangeInfo"

    MAX_DEPTH_LIMIT = 5000  # maximum available depth
    RATE_LIMIT_STATUSES = (429, 418)  # 418 = IP auto-banned after repeated 429s
    INVALID_SYMBOL_CODE = -1121

    def __init__(
        self,
        base_url: str = MAINNET_API,
        timeout: float = 10.0,
        order_book_limit: int = MAX_DEPTH_LIMIT,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """
        Initialize API client.

        Args:
            base_url: REST API base URL
            timeout: Total timeout per request in seconds
            order_book_limit: Levels requested per side
            session: Existing session to reuse (not closed by this client)
        """
        if not 1 <= order_book_limit <= self.MAX_DEPTH_LIMIT:
            raise ValueError(f"order_book_limit must be 1-{self.MAX_DEPTH_LIMIT}, got {order_book_limit}")

        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.order_book_limit = order_book_limit

        self._session: Optional[aiohttp.ClientSession] = session
        self._owns_session = session is None

        logger.info(f"Binance Spot API initialized ({self.base_url}, timeout={timeout}s)")

    # =========================================================================
    # Session Management
    # =========================================================================

    async def connect(self) -> None:
        """Create HTTP session."""
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            )
            self._owns_session = True
            logger.debug("HTTP session created")

    async def close(self) -> None:
        """Close HTTP session."""
        if self._session and self._owns_session:
            await self._session.close()
            logger.debug("HTTP session closed")
        self._session = None

    async def __aenter__(self) -> "BinanceSpotAPI":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # =========================================================================
    # Request Handling
    # =========================================================================

    async def _request(self, endpoint: str, params: Dict = None) -> Any:
        """
        Make a GET request and decode JSON.

        Raises:
            RateLimited: HTTP 429/418
            ExchangeTimeout: no response within timeout
            NetworkError: transport failure
            ExchangeAPIError: error status or Binance error payload
            MalformedResponse: body is not JSON
        """
        await self.connect()

        url = f"{self.base_url}{endpoint}"

        try:
            async with self._session.get(url, params=params or {}) as resp:
                if resp.status in self.RATE_LIMIT_STATUSES:
                    retry_after = _parse_retry_after(resp.headers.get("Retry-After"))
                    logger.warning(f"Rate limited on {endpoint}: HTTP {resp.status}, retry after {retry_after}s")
                    raise RateLimited(f"HTTP {resp.status} on {endpoint}", retry_after=retry_after)

                try:
                    data = await resp.json(content_type=None)
                except ValueError as e:
                    if resp.status >= 400:
                        raise ExchangeAPIError(resp.status, f"HTTP {resp.status} on {endpoint}", resp.status)
                    raise MalformedResponse(f"invalid JSON from {endpoint}: {e}")

                # Check for errors
                if isinstance(data, dict) and "code" in data and "msg" in data:
                    raise ExchangeAPIError(data["code"], data.get("msg", "Unknown error"), resp.status)

                if resp.status >= 400:
                    raise ExchangeAPIError(resp.status, f"HTTP {resp.status} on {endpoint}", resp.status)

                return data

        except asyncio.TimeoutError as e:
            logger.error(f"Timeout after {self.timeout}s on {endpoint}")
            raise ExchangeTimeout(f"timeout after {self.timeout}s on {endpoint}") from e
        except (aiohttp.ClientError, OSError) as e:
            logger.error(f"HTTP error on {endpoint}: {e}")
            raise NetworkError(f"HTTP error on {endpoint}: {e}") from e

    # =========================================================================
    # Market Data
    # =========================================================================

    async def get_exchange_info(self) -> Dict:
        """Get exchange information."""
        return await self._request(self.EXCHANGE_INFO_ENDPOINT)

    async def get_ticker_price(self, pair: str) -> Optional[Decimal]:
        """
        Get last traded price for a pair.

        Returns None when the payload carries no price.
        """
        data = await self._request(self.TICKER_PRICE_ENDPOINT, {"symbol": pair})
        if not isinstance(data, dict) or data.get("price") is None:
            return None

        try:
            price = Decimal(str(data["price"]))
        except InvalidOperation:
            raise MalformedResponse(f"bad ticker price for {pair}: {data['price']!r}")

        if not price.is_finite() or price <= 0:
            raise MalformedResponse(f"bad ticker price for {pair}: {data['price']!r}")
        return price

    async def get_depth(self, pair: str, limit: Optional[int] = None) -> Dict:
        """Get raw order book payload for a pair."""
        return await self._request(
            self.DEPTH_ENDPOINT,
            {"symbol": pair, "limit": limit or self.order_book_limit},
        )

    async def get_order_book(self, symbol: str) -> OrderBook:
        """
        Fetch order book and reference price for a base asset.

        The reference price is the last traded price; the book midpoint is
        used only when the ticker has no price.

        Args:
            symbol: Base asset ticker (e.g. "SOL")

        Returns:
            OrderBook for SYMBOLUSDT
        """
        pair = pair_for(symbol)

        try:
            depth, last_price = await asyncio.gather(
                self.get_depth(pair),
                self.get_ticker_price(pair),
            )
        except ExchangeAPIError as e:
            if e.code == self.INVALID_SYMBOL_CODE:
                raise NotTradable(symbol) from e
            raise

        book = OrderBook.from_binance(symbol, depth, last_price, self.order_book_limit)

        logger.debug(
            f"{pair} book: {len(book.bids)} bids, {len(book.asks)} asks, "
            f"reference price {book.reference_price}"
        )
        return book
