"""
Market Data - Synthetic Price Feed.

Random-walk quotes seeded from reference prices. Used for
development, demos and tests; not a microstructure simulator.
"""

import logging
import random
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from core.clock import ClockProtocol
from core.constants import BASE_PRICES
from core.exceptions import ValidationError

from .base import PriceFeed
from .types import Candle, Timeframe

logger = logging.getLogger(__name__)


JPY_SPREAD = Decimal("0.04")
DEFAULT_SPREAD = Decimal("0.0002")
JPY_VOLATILITY = Decimal("0.05")
DEFAULT_VOLATILITY = Decimal("0.0005")

_MID_QUANTUM = Decimal("0.000001")
_JPY_MID_QUANTUM = Decimal("0.0001")


def _spread(pair: str) -> Decimal:
    return JPY_SPREAD if "JPY" in pair else DEFAULT_SPREAD


def _volatility(pair: str) -> Decimal:
    return JPY_VOLATILITY if "JPY" in pair else DEFAULT_VOLATILITY


def _quantize_mid(pair: str, value: Decimal) -> Decimal:
    return value.quantize(_JPY_MID_QUANTUM if "JPY" in pair else _MID_QUANTUM)


class SyntheticPriceFeed(PriceFeed):
    """
    Random-walk price feed.

    Every tick moves each mid by U(-0.5, 0.5) x volatility and
    re-quotes around it with a fixed spread.
    """

    def __init__(
        self,
        pairs: Optional[Sequence[str]] = None,
        refresh_interval_seconds: float = 1.0,
        clock: Optional[ClockProtocol] = None,
        rng: Optional[random.Random] = None,
        base_prices: Optional[Dict[str, Decimal]] = None,
    ):
        super().__init__(pairs, refresh_interval_seconds, clock)
        self._rng = rng or random.Random()
        prices = base_prices or BASE_PRICES
        for pair in self._pairs:
            self._set_mid(pair, prices.get(pair, Decimal("1.0")))

    def _set_mid(self, pair: str, mid: Decimal) -> None:
        half = _spread(pair) / 2
        self._store_quote(pair, mid - half, mid + half, self._clock.now())

    def tick(self) -> None:
        """Advance every pair one random-walk step."""
        for pair in self._pairs:
            current = self._quotes[pair].mid
            change = Decimal(str(self._rng.random() - 0.5)) * _volatility(pair)
            self._set_mid(pair, _quantize_mid(pair, current + change))

    async def refresh(self) -> None:
        self.tick()

    async def get_candles(
        self,
        pair: str,
        timeframe: Timeframe = Timeframe.M1,
        limit: int = 100,
    ) -> List[Candle]:
        """
        Generate `limit` candles ending at the current mid.

        The walk runs backwards from the live price so the last close
        always matches the current quote.
        """
        if pair not in self._quotes:
            raise ValidationError(f"Unknown pair: {pair}", code="INVALID_PAIR", field_name="pair", value=pair)

        timeframe = Timeframe(timeframe)
        volatility = _volatility(pair)
        close = self._quotes[pair].mid
        bar_end = int(self._clock.timestamp()) // timeframe.seconds * timeframe.seconds

        candles: List[Candle] = []
        for i in range(limit):
            open_ = _quantize_mid(pair, close - Decimal(str(self._rng.random() - 0.5)) * volatility)
            wick_high = Decimal(str(self._rng.random())) * volatility / 2
            wick_low = Decimal(str(self._rng.random())) * volatility / 2
            candles.append(
                Candle(
                    time=bar_end - i * timeframe.seconds,
                    open=open_,
                    high=_quantize_mid(pair, max(open_, close) + wick_high),
                    low=_quantize_mid(pair, min(open_, close) - wick_low),
                    close=close,
                )
            )
            close = open_

        candles.reverse()
        logger.debug(f"Generated {len(candles)} synthetic candles for {pair}:{timeframe.value}")
        return candles
