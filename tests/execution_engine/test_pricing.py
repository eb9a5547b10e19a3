"""
Pricing and Netting Tests.

============================================================
PURPOSE
============================================================
Pure arithmetic of the execution engine: sizing, fill prices,
P&L and one-fill netting.

============================================================
"""

import random
from decimal import Decimal

import pytest

from execution_engine import (
    NetPosition,
    NettingAction,
    Side,
    calculate_fill_price,
    calculate_pnl_cents,
    lots_to_units,
    mark_price,
    net_fill,
    units_to_lots,
)
from execution_engine.pricing import units_to_exact_lots


# ============================================================
# SIZING TESTS
# ============================================================

class TestSizing:
    """Tests for lot / unit conversion."""

    @pytest.mark.parametrize("lots,units", [
        (1, 100_000),
        ("0.5", 50_000),
        (0.01, 1_000),
        (Decimal("1.234565"), 123_457),
        ("0.000004", 0),
    ])
    def test_lots_to_units(self, lots, units):
        """Test half-up rounding to whole units."""
        assert lots_to_units(lots) == units

    def test_units_to_lots(self):
        """Test reporting precision."""
        assert units_to_lots(150_000) == Decimal("1.50")
        assert units_to_lots(1_234) == Decimal("0.01")

    def test_exact_lots_round_trip(self):
        """Test exact lots convert back to the same units."""
        assert lots_to_units(units_to_exact_lots(12_345)) == 12_345


# ============================================================
# FILL PRICE TESTS
# ============================================================

class TestFillPrice:
    """Tests for calculate_fill_price."""

    def test_buy_pays_ask_plus_markup(self):
        """Test buy side without slippage."""
        price = calculate_fill_price("EUR-USD", Side.BUY, Decimal("1.1000"), Decimal("1.1002"), "0.5", 0)

        assert price == Decimal("1.10025")

    def test_sell_receives_bid_minus_markup(self):
        """Test sell side without slippage."""
        price = calculate_fill_price("USD-JPY", Side.SELL, Decimal("150.00"), Decimal("150.02"), "0.5", 0)

        assert price == Decimal("149.995")

    def test_slippage_is_bounded(self):
        """Test slippage stays within [0, max] pips and hurts the trader."""
        rng = random.Random(42)
        for _ in range(50):
            buy = calculate_fill_price("EUR-USD", Side.BUY, Decimal("1.1000"), Decimal("1.1000"), 0, 1, rng)
            sell = calculate_fill_price("EUR-USD", Side.SELL, Decimal("1.1000"), Decimal("1.1000"), 0, 1, rng)
            assert Decimal("1.1000") <= buy <= Decimal("1.1001")
            assert Decimal("1.0999") <= sell <= Decimal("1.1000")

    def test_seeded_rng_is_repeatable(self):
        """Test the same seed gives the same fill."""
        a = calculate_fill_price("EUR-USD", Side.BUY, Decimal("1.1"), Decimal("1.1"), 0, 1, random.Random(3))
        b = calculate_fill_price("EUR-USD", Side.BUY, Decimal("1.1"), Decimal("1.1"), 0, 1, random.Random(3))

        assert a == b


# ============================================================
# P&L TESTS
# ============================================================

class TestPnl:
    """Tests for calculate_pnl_cents."""

    def test_usd_quoted_long(self):
        """Test price difference x units for XXX-USD pairs."""
        pnl = calculate_pnl_cents("EUR-USD", Side.BUY, Decimal("1.1000"), Decimal("1.1050"), 50_000)

        assert pnl == 25_000

    def test_usd_quoted_short_loss(self):
        """Test a short loses when price rises."""
        pnl = calculate_pnl_cents("GBP-USD", Side.SELL, Decimal("1.2500"), Decimal("1.2510"), 100_000)

        assert pnl == -10_000

    def test_usd_base_divides_by_exit(self):
        """Test USD-XXX P&L is converted at the exit price."""
        pnl = calculate_pnl_cents("USD-JPY", Side.BUY, Decimal("150.00"), Decimal("150.50"), 100_000)

        assert pnl == 33_223

    def test_mark_price(self):
        """Test longs mark at bid and shorts at ask."""
        assert mark_price(Side.BUY, Decimal("1.0"), Decimal("1.1")) == Decimal("1.0")
        assert mark_price(Side.SELL, Decimal("1.0"), Decimal("1.1")) == Decimal("1.1")


# ============================================================
# NETTING TESTS
# ============================================================

class TestNetFill:
    """Tests for net_fill."""

    def _long(self, units=100_000, price="1.1000"):
        return NetPosition(Side.BUY, units, Decimal(price))

    def test_open(self):
        """Test a fill with no position opens one."""
        outcome = net_fill("EUR-USD", None, Side.SELL, 10_000, Decimal("1.1"))

        assert outcome.action is NettingAction.OPEN
        assert outcome.side is Side.SELL
        assert outcome.quantity_units == 10_000

    def test_increase_averages_entry(self):
        """Test same-side fills average the entry price."""
        outcome = net_fill("EUR-USD", self._long(), Side.BUY, 100_000, Decimal("1.1010"))

        assert outcome.action is NettingAction.INCREASE
        assert outcome.quantity_units == 200_000
        assert outcome.avg_entry_price == Decimal("1.1005")
        assert outcome.realized_pnl_cents == 0

    def test_reduce(self):
        """Test a smaller opposite fill keeps side and entry."""
        outcome = net_fill("EUR-USD", self._long(200_000), Side.SELL, 50_000, Decimal("1.1050"))

        assert outcome.action is NettingAction.REDUCE
        assert outcome.closed_units == 50_000
        assert outcome.quantity_units == 150_000
        assert outcome.avg_entry_price == Decimal("1.1000")
        assert outcome.realized_pnl_cents == 25_000

    def test_close(self):
        """Test an equal opposite fill flattens the position."""
        outcome = net_fill("EUR-USD", self._long(), Side.SELL, 100_000, Decimal("1.0990"))

        assert outcome.action is NettingAction.CLOSE
        assert outcome.is_flat
        assert outcome.side is None
        assert outcome.realized_pnl_cents == -10_000

    def test_flip(self):
        """Test a larger opposite fill closes and reopens the residual."""
        outcome = net_fill("EUR-USD", self._long(), Side.SELL, 150_000, Decimal("1.1020"))

        assert outcome.action is NettingAction.FLIP
        assert outcome.closed_units == 100_000
        assert outcome.opened_units == 50_000
        assert outcome.side is Side.SELL
        assert outcome.avg_entry_price == Decimal("1.1020")
        assert outcome.realized_pnl_cents == 20_000

    def test_rejects_non_positive_units(self):
        """Test zero-size fills are a programming error."""
        with pytest.raises(ValueError):
            net_fill("EUR-USD", None, Side.BUY, 0, Decimal("1.1"))
