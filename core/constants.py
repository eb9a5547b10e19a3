"""
Core Module - Constants.

============================================================
RESPONSIBILITY
============================================================
Defines the arena's fixed trading constants.

- Lot size and pip conventions
- Tradable currency pairs and their reference prices
- Token/basis-point denominators

No business logic here beyond trivial lookups.

============================================================
"""

from decimal import Decimal
from typing import Dict, Tuple


# ============================================================
# SIZING
# ============================================================

UNITS_PER_LOT = 100_000
"""Base-currency units in one standard lot."""

LOT_DECIMALS = 2
"""Lot sizes are reported to hundredths (micro lot granularity)."""

PRICE_DECIMALS = 8
"""Fill prices are quantized to this many decimals."""

PRICE_QUANTUM = Decimal("0.00000001")

BPS_DENOMINATOR = 10_000
"""Basis points per unit (rake is expressed in bps)."""

MAX_PVP_RAKE_BPS = 5_000
"""PvP rake is taken from a pool of two stakes; above half the pool it
would exceed the loser's forfeit."""

CENTS_PER_DOLLAR = 100


# ============================================================
# PIPS
# ============================================================

JPY_PIP_SIZE = Decimal("0.01")
DEFAULT_PIP_SIZE = Decimal("0.0001")

DEFAULT_SPREAD_MARKUP_PIPS = Decimal("0.5")
DEFAULT_MAX_SLIPPAGE_PIPS = Decimal("1.0")


# ============================================================
# CURRENCY PAIRS
# ============================================================

FX_MAJORS: Tuple[str, ...] = (
    "EUR-USD",
    "GBP-USD",
    "USD-JPY",
    "USD-CHF",
    "AUD-USD",
    "USD-CAD",
    "NZD-USD",
)

FX_MINORS: Tuple[str, ...] = (
    "EUR-GBP",
    "EUR-JPY",
    "GBP-JPY",
    "AUD-JPY",
    "EUR-AUD",
    "EUR-CHF",
    "GBP-CHF",
    "CAD-JPY",
    "AUD-NZD",
    "NZD-JPY",
)

ALL_PAIRS: Tuple[str, ...] = FX_MAJORS + FX_MINORS

DEFAULT_ALLOWED_PAIRS: Tuple[str, ...] = (
    "EUR-USD",
    "GBP-USD",
    "USD-JPY",
    "AUD-USD",
    "USD-CAD",
)
"""Pairs a competition allows when none are given."""

BASE_PRICES: Dict[str, Decimal] = {
    "EUR-USD": Decimal("1.0875"),
    "GBP-USD": Decimal("1.2650"),
    "USD-JPY": Decimal("149.50"),
    "USD-CHF": Decimal("0.8850"),
    "AUD-USD": Decimal("0.6520"),
    "USD-CAD": Decimal("1.3580"),
    "NZD-USD": Decimal("0.6120"),
    "EUR-GBP": Decimal("0.8600"),
    "EUR-JPY": Decimal("162.50"),
    "GBP-JPY": Decimal("189.00"),
    "AUD-JPY": Decimal("97.50"),
    "EUR-AUD": Decimal("1.6680"),
    "EUR-CHF": Decimal("0.9620"),
    "GBP-CHF": Decimal("1.1190"),
    "CAD-JPY": Decimal("110.10"),
    "AUD-NZD": Decimal("1.0650"),
    "NZD-JPY": Decimal("91.50"),
}
"""Reference mid prices used to seed the synthetic feed."""


# ============================================================
# COMPETITION DEFAULTS
# ============================================================

DEFAULT_STARTING_BALANCE_CENTS = 10_000_000
"""$100,000 of paper money."""

DEFAULT_HOUSE_USER_ID = "house"


def is_known_pair(pair: str) -> bool:
    return pair in ALL_PAIRS


def pip_size(pair: str) -> Decimal:
    """0.01 for JPY-quoted pairs, 0.0001 otherwise."""
    return JPY_PIP_SIZE if "JPY" in pair else DEFAULT_PIP_SIZE
