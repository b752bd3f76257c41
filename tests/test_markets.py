"""
Unit tests for the tradable market registry.
"""

import asyncio
import pytest
from unittest.mock import AsyncMock, MagicMock

from limits_bot.core.errors import MalformedResponse, NetworkError
from limits_bot.data.markets import MarketRegistry, usdt_trading_pairs


EXCHANGE_INFO = {
    "symbols": [
        {"symbol": "SOLUSDT", "status": "TRADING", "baseAsset": "SOL", "quoteAsset": "USDT"},
        {"symbol": "DOGEUSDT", "status": "TRADING", "baseAsset": "DOGE", "quoteAsset": "USDT"},
        {"symbol": "LUNAUSDT", "status": "BREAK", "baseAsset": "LUNA", "quoteAsset": "USDT"},
        {"symbol": "SOLBTC", "status": "TRADING", "baseAsset": "SOL", "quoteAsset": "BTC"},
    ]
}


class TestUsdtTradingPairs:
    """Tests for exchangeInfo filtering."""

    def test_filters_status_and_quote(self):
        assert usdt_trading_pairs(EXCHANGE_INFO["symbols"]) == {"SOLUSDT", "DOGEUSDT"}

    def test_suffix_when_quote_missing(self):
        symbols = [
            {"symbol": "ADAUSDT", "status": "TRADING"},
            {"symbol": "ADABTC", "status": "TRADING"},
        ]
        assert usdt_trading_pairs(symbols) == {"ADAUSDT"}

    def test_malformed_entry(self):
        with pytest.raises(MalformedResponse):
            usdt_trading_pairs(["SOLUSDT"])


class TestMarketRegistry:
    """Tests for MarketRegistry."""

    @pytest.fixture
    def api(self):
        api = MagicMock()
        api.get_exchange_info = AsyncMock(return_value=EXCHANGE_INFO)
        return api

    @pytest.fixture
    def registry(self, api):
        return MarketRegistry(api, refresh_interval=300)

    def test_empty_before_refresh(self, registry):
        assert not registry.is_loaded
        assert registry.size == 0
        assert not registry.is_tradable("SOLUSDT")

    @pytest.mark.asyncio
    async def test_refresh(self, registry):
        count = await registry.refresh()

        assert count == 2
        assert registry.is_loaded
        assert registry.last_refresh is not None
        assert registry.is_tradable("SOLUSDT")
        assert registry.is_tradable("solusdt")
        assert not registry.is_tradable("LUNAUSDT")

    @pytest.mark.asyncio
    async def test_refresh_without_symbols(self, registry, api):
        api.get_exchange_info.return_value = {"timezone": "UTC"}

        with pytest.raises(MalformedResponse):
            await registry.refresh()
        assert not registry.is_loaded

    @pytest.mark.asyncio
    async def test_failed_refresh_keeps_last_set(self, registry, api):
        await registry.refresh()
        api.get_exchange_info.side_effect = NetworkError("down")

        with pytest.raises(NetworkError):
            await registry.refresh()
        assert registry.is_tradable("SOLUSDT")

    @pytest.mark.asyncio
    async def test_run_periodic_survives_errors(self, api):
        calls = []

        async def exchange_info():
            calls.append(1)
            if len(calls) == 1:
                raise NetworkError("down")
            return EXCHANGE_INFO

        api.get_exchange_info.side_effect = exchange_info
        registry = MarketRegistry(api, refresh_interval=0)

        task = asyncio.create_task(registry.run_periodic())
        for _ in range(20):
            await asyncio.sleep(0)
            if registry.is_loaded:
                break
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert registry.is_tradable("SOLUSDT")
