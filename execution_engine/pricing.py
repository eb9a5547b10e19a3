"""
Execution Engine - Pricing.

Pure sizing, fill-price and P&L arithmetic. No I/O.

P&L CONVENTIONS (cents):
- XXX-USD (USD quote): diff x units x 100
- USD-XXX (USD base):  diff x units / exit x 100
- Crosses use the XXX-USD formula
where diff = exit - entry for longs and entry - exit for shorts.
All rounding is half-up.
"""

import random
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Union

from core.constants import (
    CENTS_PER_DOLLAR,
    PRICE_QUANTUM,
    UNITS_PER_LOT,
    pip_size,
)
from database.enums import Side

Number = Union[int, float, str, Decimal]

_LOT_QUANTUM = Decimal("0.01")
_ONE = Decimal("1")


def to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(_ONE, rounding=ROUND_HALF_UP))


def quantize_price(value: Decimal) -> Decimal:
    return value.quantize(PRICE_QUANTUM, rounding=ROUND_HALF_UP)


# ============================================================
# SIZING
# ============================================================

def lots_to_units(lots: Number) -> int:
    """1.0 lot = 100,000 units, rounded half-up to whole units."""
    return round_half_up(to_decimal(lots) * UNITS_PER_LOT)


def units_to_lots(units: int) -> Decimal:
    """Units to lots, rounded to hundredths."""
    return (Decimal(units) / UNITS_PER_LOT).quantize(_LOT_QUANTUM, rounding=ROUND_HALF_UP)


def units_to_exact_lots(units: int) -> Decimal:
    """Units to lots without rounding, so lots_to_units() returns `units` again."""
    return Decimal(units) / UNITS_PER_LOT


# ============================================================
# FILL PRICE
# ============================================================

def calculate_fill_price(
    pair: str,
    side: Side,
    bid: Decimal,
    ask: Decimal,
    spread_markup_pips: Number,
    max_slippage_pips: Number,
    rng: Optional[random.Random] = None,
) -> Decimal:
    """
    Market-order fill price.

    Buys pay ask + markup + slippage, sells receive
    bid - markup - slippage. Slippage is uniform on
    [0, max_slippage_pips] pips.
    """
    pip = pip_size(pair)
    markup = to_decimal(spread_markup_pips) * pip
    draw = (rng or random).random()
    slippage = Decimal(str(draw)) * to_decimal(max_slippage_pips) * pip

    if side is Side.BUY:
        price = ask + markup + slippage
    else:
        price = bid - markup - slippage
    return quantize_price(price)


# ============================================================
# P&L
# ============================================================

def calculate_pnl_cents(
    pair: str,
    position_side: Side,
    entry_price: Decimal,
    exit_price: Decimal,
    units: int,
) -> int:
    """Realized P&L in cents of closing `units` of a position."""
    if position_side is Side.BUY:
        diff = exit_price - entry_price
    else:
        diff = entry_price - exit_price

    if pair.startswith("USD-"):
        value = diff * units / exit_price * CENTS_PER_DOLLAR
    else:
        value = diff * units * CENTS_PER_DOLLAR
    return round_half_up(value)


def mark_price(position_side: Side, bid: Decimal, ask: Decimal) -> Decimal:
    """Longs are marked at the bid, shorts at the ask."""
    return bid if position_side is Side.BUY else ask
