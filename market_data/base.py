"""
Market Data - Price Feed Base.

============================================================
PURPOSE
============================================================
Abstract interface between the arena core and a quote source.

DESIGN PRINCIPLES:
- Source-agnostic interface
- Quotes are served from an in-memory cache, never blocking
  the execution path on network I/O
- Background refresh owned by the feed (start()/stop())
- Fully testable with static feeds

============================================================
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from core.clock import ClockFactory, ClockProtocol
from core.constants import ALL_PAIRS, pip_size

from .types import Candle, Quote, QuoteStatus, Timeframe

logger = logging.getLogger(__name__)


DELAYED_AFTER_SECONDS = 2.0
STALE_AFTER_SECONDS = 10.0


class PriceFeed(ABC):
    """
    Quote source consumed by the execution engine.

    Subclasses implement refresh() (pull new quotes into the cache)
    and get_candles(). The base class owns the cache and the
    background refresh task.
    """

    def __init__(
        self,
        pairs: Optional[Sequence[str]] = None,
        refresh_interval_seconds: float = 1.0,
        clock: Optional[ClockProtocol] = None,
    ):
        self._pairs: List[str] = list(pairs or ALL_PAIRS)
        self._refresh_interval = refresh_interval_seconds
        self._clock = clock or ClockFactory.get_clock()
        self._quotes: Dict[str, Quote] = {}
        self._running = False
        self._connected = False
        self._refresh_task: Optional[asyncio.Task] = None

    # --------------------------------------------------------
    # PROPERTIES
    # --------------------------------------------------------

    @property
    def pairs(self) -> List[str]:
        return list(self._pairs)

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def refresh_interval_seconds(self) -> float:
        return self._refresh_interval

    # --------------------------------------------------------
    # QUOTES
    # --------------------------------------------------------

    def get_quote(self, pair: str) -> Optional[Quote]:
        """
        Latest cached quote with its freshness status, or None when
        the pair has never been quoted.
        """
        quote = self._quotes.get(pair)
        if quote is None:
            return None
        return self._with_status(quote)

    def _with_status(self, quote: Quote) -> Quote:
        if not self._connected:
            status = QuoteStatus.DISCONNECTED
        else:
            age = self._clock.seconds_since(quote.timestamp)
            if age > STALE_AFTER_SECONDS:
                status = QuoteStatus.STALE
            elif age > DELAYED_AFTER_SECONDS:
                status = QuoteStatus.DELAYED
            else:
                status = QuoteStatus.LIVE

        if status == quote.status:
            return quote
        return Quote(
            pair=quote.pair,
            bid=quote.bid,
            ask=quote.ask,
            timestamp=quote.timestamp,
            spread_pips=quote.spread_pips,
            status=status,
        )

    def _store_quote(self, pair: str, bid: Decimal, ask: Decimal, timestamp: datetime) -> Quote:
        quote = Quote(
            pair=pair,
            bid=bid,
            ask=ask,
            timestamp=timestamp,
            spread_pips=((ask - bid) / pip_size(pair)).quantize(Decimal("0.1")),
        )
        self._quotes[pair] = quote
        return quote

    # --------------------------------------------------------
    # ABSTRACT
    # --------------------------------------------------------

    @abstractmethod
    async def refresh(self) -> None:
        """Pull fresh quotes into the cache."""
        pass

    @abstractmethod
    async def get_candles(
        self,
        pair: str,
        timeframe: Timeframe = Timeframe.M1,
        limit: int = 100,
    ) -> List[Candle]:
        """Fresh snapshot of the most recent `limit` candles, oldest first."""
        pass

    # --------------------------------------------------------
    # LIFECYCLE
    # --------------------------------------------------------

    async def _on_start(self) -> None:
        """Acquire resources before the refresh loop runs."""
        self._connected = True

    async def _on_stop(self) -> None:
        """Release resources after the refresh loop is cancelled."""
        self._connected = False

    async def start(self) -> None:
        """Start the background refresh loop."""
        if self._running:
            return

        await self._on_start()
        self._running = True
        self._refresh_task = asyncio.create_task(self._refresh_loop())
        logger.info(
            f"{type(self).__name__} started | pairs={len(self._pairs)} "
            f"interval={self._refresh_interval}s"
        )

    async def stop(self) -> None:
        """Stop the refresh loop and release resources."""
        self._running = False
        if self._refresh_task:
            self._refresh_task.cancel()
            try:
                await self._refresh_task
            except asyncio.CancelledError:
                pass
            self._refresh_task = None
        await self._on_stop()
        logger.info(f"{type(self).__name__} stopped")

    async def _refresh_loop(self) -> None:
        while self._running:
            try:
                await self.refresh()
                await asyncio.sleep(self._refresh_interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Quote refresh failed: {e}", exc_info=True)
                await asyncio.sleep(self._refresh_interval)
