"""
Shared fixtures for unit tests.
"""

from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from limits_bot.data.models import AggregatedLevel, AnalysisResult, OrderBook, OrderBookLevel, Side


def make_book(bids, asks, reference="100", symbol="SOL", limit=5000) -> OrderBook:
    """Build an order book from (price, qty) string pairs."""
    return OrderBook(
        symbol=symbol,
        bids=tuple(
            sorted(
                (OrderBookLevel(Decimal(p), Decimal(q)) for p, q in bids),
                key=lambda level: level.price,
                reverse=True,
            )
        ),
        asks=tuple(
            sorted(
                (OrderBookLevel(Decimal(p), Decimal(q)) for p, q in asks),
                key=lambda level: level.price,
            )
        ),
        reference_price=Decimal(reference),
        limit=limit,
    )


def make_result(symbol="SOL", depth="8") -> AnalysisResult:
    return AnalysisResult(
        symbol=symbol,
        depth_percent=Decimal(depth),
        reference_price=Decimal("100"),
        lower_bound=Decimal("92"),
        upper_bound=Decimal("108"),
        bids=(
            AggregatedLevel(Side.BID, Decimal("95"), Decimal("95"), Decimal("7")),
            AggregatedLevel(Side.BID, Decimal("99"), Decimal("99"), Decimal("5")),
        ),
        asks=(
            AggregatedLevel(Side.ASK, Decimal("105"), Decimal("105"), Decimal("4")),
        ),
        computed_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def book():
    """Order book around 100 with a spread of 1."""
    return make_book(
        bids=[("99", "5"), ("95", "7"), ("80", "100")],
        asks=[("101", "3"), ("105", "4"), ("120", "50")],
    )


@pytest.fixture
def result():
    return make_result()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry():
    """Market registry stub that knows SOLUSDT and DOGEUSDT."""
    registry = MagicMock()
    registry.is_loaded = True
    registry.is_tradable = MagicMock(side_effect=lambda pair: pair in {"SOLUSDT", "DOGEUSDT"})
    return registry


@pytest.fixture
def mock_api(book):
    api = MagicMock()
    api.get_order_book = AsyncMock(return_value=book)
    return api
