"""
Market Data - Types.

Quote and candle value types shared by every price feed.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional


class QuoteStatus(str, Enum):
    """Freshness of a cached quote."""

    LIVE = "live"
    DELAYED = "delayed"
    STALE = "stale"
    DISCONNECTED = "disconnected"


class Timeframe(str, Enum):
    """Supported candle timeframes."""

    M1 = "1m"
    M5 = "5m"
    M15 = "15m"
    H1 = "1h"
    H4 = "4h"
    D1 = "1d"

    @property
    def seconds(self) -> int:
        return _TIMEFRAME_SPECS[self][2]

    @property
    def multiplier(self) -> int:
        return _TIMEFRAME_SPECS[self][0]

    @property
    def timespan(self) -> str:
        """Aggregate unit name used by the upstream REST API."""
        return _TIMEFRAME_SPECS[self][1]


_TIMEFRAME_SPECS = {
    Timeframe.M1: (1, "minute", 60),
    Timeframe.M5: (5, "minute", 300),
    Timeframe.M15: (15, "minute", 900),
    Timeframe.H1: (1, "hour", 3600),
    Timeframe.H4: (4, "hour", 14400),
    Timeframe.D1: (1, "day", 86400),
}


@dataclass(frozen=True)
class Quote:
    """Top-of-book quote for one pair."""

    pair: str
    """Currency pair, e.g. EUR-USD."""

    bid: Decimal
    """Price a seller receives."""

    ask: Decimal
    """Price a buyer pays."""

    timestamp: datetime
    """When the quote was produced (UTC)."""

    spread_pips: Decimal = Decimal("0")
    """ask - bid expressed in pips."""

    status: QuoteStatus = QuoteStatus.LIVE
    """Freshness at the time it was read."""

    @property
    def mid(self) -> Decimal:
        return (self.bid + self.ask) / 2

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pair": self.pair,
            "bid": str(self.bid),
            "ask": str(self.ask),
            "timestamp": self.timestamp.isoformat(),
            "spread_pips": str(self.spread_pips),
            "status": self.status.value,
        }


@dataclass(frozen=True)
class Candle:
    """OHLC bar. `time` is the bar open in Unix seconds."""

    time: int
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: Optional[Decimal] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "time": self.time,
            "open": str(self.open),
            "high": str(self.high),
            "low": str(self.low),
            "close": str(self.close),
            "volume": str(self.volume) if self.volume is not None else None,
        }
