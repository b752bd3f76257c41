"""
Order book depth aggregation.

Turns a raw order book snapshot into the largest resting-order clusters
within a percentage band around the reference price.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from loguru import logger

from limits_bot.core.errors import MalformedResponse
from limits_bot.data.models import (
    AggregatedLevel,
    AnalysisResult,
    OrderBook,
    OrderBookLevel,
    Side,
)


DEFAULT_TOP_N = 10
ONE_HUNDRED = Decimal("100")


def band_bounds(reference_price: Decimal, depth_percent: Decimal) -> Tuple[Decimal, Decimal]:
    """
    Price band for a depth percentage.

    Returns:
        (lower, upper) = reference * (1 -/+ depth / 100)
    """
    depth = Decimal(depth_percent) / ONE_HUNDRED
    return reference_price * (1 - depth), reference_price * (1 + depth)


def is_side_partial(levels: Sequence[OrderBookLevel], limit: int, bound: Decimal, side: Side) -> bool:
    """
    Check whether the fetched levels stop short of the band edge.

    Only possible when the exchange returned the full requested number of
    levels and the deepest one is still strictly inside the band.
    """
    if not limit or len(levels) < limit or not levels:
        return False

    deepest = levels[-1].price
    if side == Side.BID:
        return deepest > bound
    return deepest < bound


class DepthAggregator:
    """
    Ranks order book clusters by volume inside a depth band.

    By default every exchange price level is its own cluster. With
    ``bucket_count`` set, each half of the band (reference to edge) is split
    into that many equal price buckets and levels are summed per bucket.
    """

    def __init__(self, top_n: int = DEFAULT_TOP_N, bucket_count: Optional[int] = None):
        """
        Initialize aggregator.

        Args:
            top_n: Clusters to keep per side
            bucket_count: Buckets per band half (None = raw price levels)
        """
        if top_n < 1:
            raise ValueError(f"top_n must be >= 1, got {top_n}")
        if bucket_count is not None and bucket_count < 1:
            raise ValueError(f"bucket_count must be >= 1, got {bucket_count}")

        self.top_n = top_n
        self.bucket_count = bucket_count

    # =========================================================================
    # Public Interface
    # =========================================================================

    def aggregate(self, book: OrderBook, depth_percent: Decimal) -> AnalysisResult:
        """
        Aggregate an order book into ranked clusters.

        Args:
            book: Order book with reference price
            depth_percent: Band half-width in percent

        Returns:
            AnalysisResult with top clusters per side
        """
        reference = book.reference_price
        if reference <= 0:
            raise MalformedResponse(f"non-positive reference price for {book.symbol}: {reference}")

        lower, upper = band_bounds(reference, depth_percent)

        bids = [level for level in book.bids if level.price >= lower]
        asks = [level for level in book.asks if level.price <= upper]

        if self.bucket_count:
            bid_clusters = self._bucket(bids, Side.BID, lower, reference)
            ask_clusters = self._bucket(asks, Side.ASK, reference, upper)
        else:
            bid_clusters = self._group_levels(bids, Side.BID)
            ask_clusters = self._group_levels(asks, Side.ASK)

        result = AnalysisResult(
            symbol=book.symbol,
            depth_percent=depth_percent,
            reference_price=reference,
            lower_bound=lower,
            upper_bound=upper,
            bids=self._rank(bid_clusters, reference),
            asks=self._rank(ask_clusters, reference),
            computed_at=datetime.now(timezone.utc),
            bids_partial=is_side_partial(book.bids, book.limit, lower, Side.BID),
            asks_partial=is_side_partial(book.asks, book.limit, upper, Side.ASK),
        )

        logger.debug(
            f"{book.symbol} {depth_percent}%: band [{lower}, {upper}], "
            f"{len(bids)}/{len(book.bids)} bids, {len(asks)}/{len(book.asks)} asks in band"
        )
        if result.is_partial:
            logger.warning(f"{book.symbol} {depth_percent}%: band not fully covered by fetched book")

        return result

    # =========================================================================
    # Grouping
    # =========================================================================

    def _group_levels(self, levels: Iterable[OrderBookLevel], side: Side) -> List[AggregatedLevel]:
        """One cluster per distinct price; duplicates are summed."""
        volumes: Dict[Decimal, Decimal] = {}
        counts: Dict[Decimal, int] = {}

        for level in levels:
            if level.quantity <= 0:
                continue
            # Decimal("1.10") and Decimal("1.1") hash equal, so they merge
            volumes[level.price] = volumes.get(level.price, Decimal("0")) + level.quantity
            counts[level.price] = counts.get(level.price, 0) + 1

        return [
            AggregatedLevel(
                side=side,
                price_low=price,
                price_high=price,
                volume=volume,
                orders=counts[price],
            )
            for price, volume in volumes.items()
        ]

    def _bucket(
        self,
        levels: Iterable[OrderBookLevel],
        side: Side,
        start: Decimal,
        end: Decimal,
    ) -> List[AggregatedLevel]:
        """
        Sum levels into ``bucket_count`` equal buckets spanning [start, end].

        Levels past the reference (last price below the best bid or above the
        best ask) land in the edge bucket, which is widened to contain them.
        """
        count = self.bucket_count
        width = (end - start) / count

        volumes: Dict[int, Decimal] = {}
        counts: Dict[int, int] = {}
        extents: Dict[int, Tuple[Decimal, Decimal]] = {}

        for level in levels:
            if level.quantity <= 0:
                continue
            index = int((level.price - start) / width)
            index = max(0, min(count - 1, index))
            volumes[index] = volumes.get(index, Decimal("0")) + level.quantity
            counts[index] = counts.get(index, 0) + 1
            low, high = extents.get(index, (level.price, level.price))
            extents[index] = (min(low, level.price), max(high, level.price))

        clusters = []
        for index, volume in volumes.items():
            low = start + width * index
            high = end if index == count - 1 else start + width * (index + 1)
            seen_low, seen_high = extents[index]
            clusters.append(AggregatedLevel(
                side=side,
                price_low=min(low, seen_low),
                price_high=max(high, seen_high),
                volume=volume,
                orders=counts[index],
            ))
        return clusters

    # =========================================================================
    # Ranking
    # =========================================================================

    def _rank(self, clusters: List[AggregatedLevel], reference: Decimal) -> Tuple[AggregatedLevel, ...]:
        """Largest volume first; ties go to the cluster closer to the price."""
        ranked = sorted(
            clusters,
            key=lambda c: (-c.volume, c.distance_to(reference), c.price_low),
        )
        return tuple(ranked[:self.top_n])
