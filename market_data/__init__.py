"""
Market Data Package.

Quote sources behind one PriceFeed interface:
- SyntheticPriceFeed: random walk from reference prices
- PolygonPriceFeed: live REST polling
"""

from .types import Quote, Candle, QuoteStatus, Timeframe
from .base import PriceFeed
from .synthetic import SyntheticPriceFeed
from .polygon import PolygonPriceFeed, format_polygon_ticker
from .factory import create_price_feed

__all__ = [
    "Quote",
    "Candle",
    "QuoteStatus",
    "Timeframe",
    "PriceFeed",
    "SyntheticPriceFeed",
    "PolygonPriceFeed",
    "format_polygon_ticker",
    "create_price_feed",
]
