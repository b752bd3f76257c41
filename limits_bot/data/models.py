"""
Data models for order book analysis.

All market data structures and analysis results.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from limits_bot.core.errors import InvalidDepth, MalformedResponse


QUOTE_ASSET = "USDT"
DEFAULT_MAX_DEPTH = Decimal("50")


def pair_for(symbol: str) -> str:
    """Exchange pair for a base asset ticker: SOL -> SOLUSDT."""
    return f"{symbol}{QUOTE_ASSET}"


def _normalize(value: Decimal) -> Decimal:
    """Strip trailing zeros without switching to exponent notation."""
    normalized = value.normalize()
    if normalized == normalized.to_integral_value():
        return normalized.quantize(Decimal(1))
    return normalized


_DEPTH_RE = re.compile(r"^\s*([+-]?\d+(?:\.\d+)?)\s*%?\s*$")


def parse_depth_percent(raw: Any, max_depth: Decimal = DEFAULT_MAX_DEPTH) -> Decimal:
    """
    Parse a user supplied depth percentage.

    Accepts "8", "8%", "7.5", " 10 % " and numbers.

    Raises:
        InvalidDepth: unparseable, not > 0, or above max_depth
    """
    if isinstance(raw, Decimal):
        value = raw
    elif isinstance(raw, (int, float)) and not isinstance(raw, bool):
        value = Decimal(str(raw))
    else:
        match = _DEPTH_RE.match(str(raw or ""))
        if not match:
            raise InvalidDepth(str(raw), max_depth)
        try:
            value = Decimal(match.group(1))
        except InvalidOperation:
            raise InvalidDepth(str(raw), max_depth)

    if not value.is_finite() or value <= 0 or value > Decimal(max_depth):
        raise InvalidDepth(str(raw), max_depth)

    return _normalize(value)


class Side(Enum):
    """Order book side."""
    BID = "bid"
    ASK = "ask"


# =============================================================================
# Market Data Models
# =============================================================================

@dataclass(frozen=True, slots=True)
class OrderBookLevel:
    """Single price level in the order book."""
    price: Decimal
    quantity: Decimal

    @classmethod
    def from_binance(cls, data: list) -> "OrderBookLevel":
        """Create from Binance format ["price", "quantity"]."""
        try:
            price = Decimal(str(data[0]))
            quantity = Decimal(str(data[1]))
        except (InvalidOperation, IndexError, TypeError, KeyError) as e:
            raise MalformedResponse(f"bad order book level {data!r}: {e}")

        if not price.is_finite() or not quantity.is_finite():
            raise MalformedResponse(f"bad order book level {data!r}")
        if price <= 0 or quantity < 0:
            raise MalformedResponse(f"bad order book level {data!r}")

        return cls(price=price, quantity=quantity)


@dataclass(frozen=True, slots=True)
class OrderBook:
    """
    Order book snapshot for one USDT pair.

    Bids are sorted by price descending, asks ascending (best first).
    ``reference_price`` anchors the depth band; ``limit`` is the number of
    levels requested per side, used to detect a band the book does not cover.
    """
    symbol: str
    bids: Tuple[OrderBookLevel, ...]
    asks: Tuple[OrderBookLevel, ...]
    reference_price: Decimal
    limit: int
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_binance(
        cls,
        symbol: str,
        data: dict,
        reference_price: Optional[Decimal],
        limit: int,
    ) -> "OrderBook":
        """
        Create from a Binance /api/v3/depth payload.

        Falls back to the book midpoint when no reference price is given.
        """
        try:
            raw_bids = data["bids"]
            raw_asks = data["asks"]
        except (KeyError, TypeError):
            raise MalformedResponse(f"order book for {symbol} has no bids/asks")

        if not isinstance(raw_bids, list) or not isinstance(raw_asks, list):
            raise MalformedResponse(f"order book for {symbol} has no bids/asks")

        bids = tuple(sorted(
            (OrderBookLevel.from_binance(b) for b in raw_bids),
            key=lambda level: level.price,
            reverse=True,
        ))
        asks = tuple(sorted(
            (OrderBookLevel.from_binance(a) for a in raw_asks),
            key=lambda level: level.price,
        ))

        if reference_price is None:
            if not bids or not asks:
                raise MalformedResponse(f"no reference price for {symbol}")
            reference_price = (bids[0].price + asks[0].price) / 2

        return cls(
            symbol=symbol,
            bids=bids,
            asks=asks,
            reference_price=reference_price,
            limit=limit,
        )


# =============================================================================
# Analysis Models
# =============================================================================

@dataclass(frozen=True, slots=True)
class AggregatedLevel:
    """
    One ranked cluster of resting orders inside the depth band.

    For an exchange price level ``price_low == price_high``; for a bucket
    they are the bucket edges.
    """
    side: Side
    price_low: Decimal
    price_high: Decimal
    volume: Decimal  # base asset units
    orders: int = 1  # raw levels merged into this cluster

    @property
    def is_range(self) -> bool:
        return self.price_low != self.price_high

    @property
    def price(self) -> Decimal:
        """Representative price: the level itself or the bucket midpoint."""
        if self.is_range:
            return (self.price_low + self.price_high) / 2
        return self.price_low

    @property
    def notional(self) -> Decimal:
        """Cluster value in USDT."""
        return self.price * self.volume

    def distance_to(self, reference_price: Decimal) -> Decimal:
        """Distance from the reference price to the nearest edge."""
        if self.price_low <= reference_price <= self.price_high:
            return Decimal("0")
        return min(abs(self.price_low - reference_price), abs(self.price_high - reference_price))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "side": self.side.value,
            "price_low": str(self.price_low),
            "price_high": str(self.price_high),
            "volume": str(self.volume),
            "orders": self.orders,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AggregatedLevel":
        return cls(
            side=Side(data["side"]),
            price_low=Decimal(data["price_low"]),
            price_high=Decimal(data["price_high"]),
            volume=Decimal(data["volume"]),
            orders=int(data.get("orders", 1)),
        )


@dataclass(frozen=True, slots=True)
class AnalysisResult:
    """
    Ranked bid/ask clusters for one (symbol, depth) request.

    Immutable once produced; shared by every cache reader.
    """
    symbol: str
    depth_percent: Decimal
    reference_price: Decimal
    lower_bound: Decimal
    upper_bound: Decimal
    bids: Tuple[AggregatedLevel, ...]  # Sorted by volume descending
    asks: Tuple[AggregatedLevel, ...]  # Sorted by volume descending
    computed_at: datetime
    bids_partial: bool = False
    asks_partial: bool = False

    @property
    def pair(self) -> str:
        return pair_for(self.symbol)

    @property
    def is_partial(self) -> bool:
        return self.bids_partial or self.asks_partial

    @property
    def warnings(self) -> List[str]:
        """Soft warnings about best-effort accuracy."""
        warnings = []
        if self.bids_partial:
            warnings.append(
                f"Bid side covers less than {self.depth_percent}%: "
                f"order book depth limit reached"
            )
        if self.asks_partial:
            warnings.append(
                f"Ask side covers less than {self.depth_percent}%: "
                f"order book depth limit reached"
            )
        return warnings

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "depth_percent": str(self.depth_percent),
            "reference_price": str(self.reference_price),
            "lower_bound": str(self.lower_bound),
            "upper_bound": str(self.upper_bound),
            "bids": [level.to_dict() for level in self.bids],
            "asks": [level.to_dict() for level in self.asks],
            "computed_at": self.computed_at.isoformat(),
            "bids_partial": self.bids_partial,
            "asks_partial": self.asks_partial,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnalysisResult":
        return cls(
            symbol=data["symbol"],
            depth_percent=Decimal(data["depth_percent"]),
            reference_price=Decimal(data["reference_price"]),
            lower_bound=Decimal(data["lower_bound"]),
            upper_bound=Decimal(data["upper_bound"]),
            bids=tuple(AggregatedLevel.from_dict(b) for b in data["bids"]),
            asks=tuple(AggregatedLevel.from_dict(a) for a in data["asks"]),
            computed_at=datetime.fromisoformat(data["computed_at"]),
            bids_partial=bool(data.get("bids_partial", False)),
            asks_partial=bool(data.get("asks_partial", False)),
        )


@dataclass(frozen=True, slots=True)
class AnalysisResponse:
    """What the presentation layer renders."""
    result: AnalysisResult
    from_cache: bool
    cache_ttl: int
