"""
Price Feed Tests.

============================================================
PURPOSE
============================================================
Tests for the quote sources consumed by the execution engine.

TEST CATEGORIES:
- Synthetic feed: random walk, candles, quote freshness
- Polygon feed: response parsing with a mocked transport
- Factory: provider selection

============================================================
"""

import random
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest

from core.clock import MockClock
from core.config import PriceFeedConfig
from core.exceptions import UpstreamUnavailableError, ValidationError
from market_data import (
    PolygonPriceFeed,
    QuoteStatus,
    SyntheticPriceFeed,
    Timeframe,
    create_price_feed,
    format_polygon_ticker,
)


@pytest.fixture
def clock():
    return MockClock(datetime(2026, 3, 2, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def synthetic(clock):
    return SyntheticPriceFeed(pairs=["EUR-USD", "USD-JPY"], clock=clock, rng=random.Random(1))


@pytest.fixture
def polygon(clock):
    config = PriceFeedConfig(provider="polygon", polygon_api_key="test-key")
    return PolygonPriceFeed(config, pairs=["EUR-USD"], clock=clock)


# ============================================================
# SYNTHETIC FEED TESTS
# ============================================================

class TestSyntheticPriceFeed:
    """Tests for SyntheticPriceFeed."""

    def test_seeded_from_reference_prices(self, synthetic):
        """Test initial quotes straddle the reference mid."""
        quote = synthetic.get_quote("EUR-USD")

        assert quote.bid == Decimal("1.0874")
        assert quote.ask == Decimal("1.0876")
        assert quote.mid == Decimal("1.0875")
        assert quote.spread_pips == Decimal("2.0")

    def test_unknown_pair_has_no_quote(self, synthetic):
        """Test pairs outside the feed return None."""
        assert synthetic.get_quote("GBP-USD") is None

    def test_disconnected_until_started(self, synthetic):
        """Test quotes are flagged while the feed is stopped."""
        assert synthetic.get_quote("EUR-USD").status == QuoteStatus.DISCONNECTED

    @pytest.mark.asyncio
    async def test_start_and_stop(self, synthetic):
        """Test the refresh loop lifecycle."""
        await synthetic.start()
        try:
            assert synthetic.is_running
            assert synthetic.get_quote("EUR-USD").status == QuoteStatus.LIVE
        finally:
            await synthetic.stop()

        assert not synthetic.is_running
        assert synthetic.get_quote("EUR-USD").status == QuoteStatus.DISCONNECTED

    @pytest.mark.asyncio
    async def test_quotes_age_into_delayed_and_stale(self, synthetic, clock):
        """Test freshness is derived from quote age."""
        await synthetic.start()
        try:
            await synthetic.refresh()
            clock.advance(seconds=5)
            assert synthetic.get_quote("EUR-USD").status == QuoteStatus.DELAYED
            clock.advance(seconds=20)
            assert synthetic.get_quote("EUR-USD").status == QuoteStatus.STALE
        finally:
            await synthetic.stop()

    def test_tick_is_bounded_by_volatility(self, synthetic):
        """Test one step moves the mid by at most half the volatility."""
        before = synthetic.get_quote("EUR-USD").mid
        synthetic.tick()
        after = synthetic.get_quote("EUR-USD")

        assert abs(after.mid - before) <= Decimal("0.00025")
        assert after.ask - after.bid == Decimal("0.0002")

    def test_jpy_pairs_use_wider_spread(self, synthetic):
        """Test JPY spread."""
        quote = synthetic.get_quote("USD-JPY")

        assert quote.ask - quote.bid == Decimal("0.04")
        assert quote.spread_pips == Decimal("4.0")

    @pytest.mark.asyncio
    async def test_candles_end_at_current_mid(self, synthetic):
        """Test generated candles are ordered and consistent."""
        candles = await synthetic.get_candles("EUR-USD", Timeframe.M5, limit=5)

        assert len(candles) == 5
        assert candles[-1].close == synthetic.get_quote("EUR-USD").mid
        assert [b.time - a.time for a, b in zip(candles, candles[1:])] == [300] * 4
        for candle in candles:
            assert candle.high >= max(candle.open, candle.close)
            assert candle.low <= min(candle.open, candle.close)

    @pytest.mark.asyncio
    async def test_candles_for_unknown_pair(self, synthetic):
        """Test unknown pairs are rejected."""
        with pytest.raises(ValidationError) as exc_info:
            await synthetic.get_candles("GBP-USD")
        assert exc_info.value.code == "INVALID_PAIR"


# ============================================================
# POLYGON FEED TESTS
# ============================================================

class TestPolygonPriceFeed:
    """Tests for PolygonPriceFeed."""

    def test_ticker_format(self):
        """Test pair to ticker conversion."""
        assert format_polygon_ticker("EUR-USD") == "C:EURUSD"

    @pytest.mark.asyncio
    async def test_refresh_pair_parses_last_quote(self, polygon):
        """Test a last-quote response is stored."""
        body = {"last": {"bid": 1.1, "ask": 1.1002, "timestamp": 1772452800000}}

        with patch.object(polygon, "_get_json", AsyncMock(return_value=body)) as get_json:
            await polygon.refresh_pair("EUR-USD")

        get_json.assert_awaited_once_with("/v1/last_quote/currencies/EUR/USD")
        quote = polygon.get_quote("EUR-USD")
        assert quote.bid == Decimal("1.1")
        assert quote.ask == Decimal("1.1002")
        assert quote.timestamp == datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_malformed_quote_keeps_previous(self, polygon):
        """Test a bad response is logged and skipped."""
        good = {"last": {"bid": 1.1, "ask": 1.1002}}
        with patch.object(polygon, "_get_json", AsyncMock(return_value=good)):
            await polygon.refresh()
        with patch.object(polygon, "_get_json", AsyncMock(return_value={"status": "ERROR"})):
            await polygon.refresh()

        assert polygon.get_quote("EUR-USD").bid == Decimal("1.1")

    @pytest.mark.asyncio
    async def test_upstream_failure_is_not_raised_by_refresh(self, polygon):
        """Test transport errors are contained per pair."""
        failing = AsyncMock(side_effect=UpstreamUnavailableError("down", code="FEED_UNAVAILABLE"))
        with patch.object(polygon, "_get_json", failing):
            await polygon.refresh()

        assert polygon.get_quote("EUR-USD") is None

    @pytest.mark.asyncio
    async def test_candles_are_returned_oldest_first(self, polygon):
        """Test aggregate results are reversed and converted."""
        body = {
            "results": [
                {"t": 120000, "o": 1.2, "h": 1.3, "l": 1.1, "c": 1.25, "v": 10},
                {"t": 60000, "o": 1.1, "h": 1.2, "l": 1.0, "c": 1.2},
            ]
        }
        with patch.object(polygon, "_get_json", AsyncMock(return_value=body)):
            candles = await polygon.get_candles("EUR-USD", Timeframe.M1, limit=10)

        assert [c.time for c in candles] == [60, 120]
        assert candles[0].volume is None
        assert candles[1].close == Decimal("1.25")
        assert candles[1].volume == Decimal("10")

    @pytest.mark.asyncio
    async def test_empty_candles(self, polygon):
        """Test no results returns an empty list."""
        with patch.object(polygon, "_get_json", AsyncMock(return_value={"results": []})):
            assert await polygon.get_candles("EUR-USD") == []

    @pytest.mark.asyncio
    async def test_get_json_requires_started_session(self, polygon):
        """Test requests before start() fail as unavailable."""
        with pytest.raises(UpstreamUnavailableError) as exc_info:
            await polygon._get_json("/v1/last_quote/currencies/EUR/USD")
        assert exc_info.value.code == "FEED_UNAVAILABLE"
        assert exc_info.value.is_retryable


# ============================================================
# FACTORY TESTS
# ============================================================

class TestCreatePriceFeed:
    """Tests for create_price_feed."""

    def test_synthetic_default(self):
        """Test the default provider."""
        feed = create_price_feed(PriceFeedConfig(), pairs=["EUR-USD"])

        assert isinstance(feed, SyntheticPriceFeed)
        assert feed.pairs == ["EUR-USD"]

    def test_polygon_with_key(self):
        """Test the live provider."""
        feed = create_price_feed(PriceFeedConfig(provider="polygon", polygon_api_key="k"))

        assert isinstance(feed, PolygonPriceFeed)

    def test_polygon_without_key_falls_back(self):
        """Test a missing key selects the synthetic feed."""
        feed = create_price_feed(PriceFeedConfig(provider="polygon"))

        assert isinstance(feed, SyntheticPriceFeed)

    def test_unknown_provider(self):
        """Test unknown providers are rejected."""
        with pytest.raises(ValueError):
            create_price_feed(PriceFeedConfig(provider="fixer"))
