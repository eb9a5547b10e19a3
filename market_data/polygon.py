"""
Market Data - Polygon REST Price Feed.

============================================================
PURPOSE
============================================================
Live FX quotes polled from the Polygon REST API.

ENDPOINTS:
- /v1/last_quote/currencies/{from}/{to}: last bid/ask per pair
- /v2/aggs/ticker/C:{PAIR}/range/{mult}/{span}/{from}/{to}: candles

One aiohttp session is opened in start() and closed in stop().
A pair whose quote request fails keeps its previous quote,
which ages into delayed/stale status.

============================================================
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

import aiohttp

from core.clock import ClockProtocol
from core.config import PriceFeedConfig
from core.exceptions import UpstreamUnavailableError

from .base import PriceFeed
from .types import Candle, Timeframe

logger = logging.getLogger(__name__)


def format_polygon_ticker(pair: str) -> str:
    """EUR-USD -> C:EURUSD"""
    return "C:" + pair.replace("-", "")


class PolygonPriceFeed(PriceFeed):
    """Price feed backed by Polygon's REST API."""

    def __init__(
        self,
        config: PriceFeedConfig,
        pairs: Optional[Sequence[str]] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        super().__init__(pairs, config.refresh_interval_seconds, clock)
        self._config = config
        self._session: Optional[aiohttp.ClientSession] = None

    # --------------------------------------------------------
    # CONNECTION
    # --------------------------------------------------------

    async def _on_start(self) -> None:
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self._config.request_timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout)
        self._connected = True
        logger.info(f"Connected to Polygon REST API at {self._config.polygon_base_url}")

    async def _on_stop(self) -> None:
        self._connected = False
        if self._session:
            await self._session.close()
            self._session = None
        logger.info("Disconnected from Polygon REST API")

    # --------------------------------------------------------
    # QUOTES
    # --------------------------------------------------------

    async def refresh(self) -> None:
        for pair in self._pairs:
            try:
                await self.refresh_pair(pair)
            except UpstreamUnavailableError as e:
                logger.warning(f"Quote refresh failed for {pair}: {e.message}")

    async def refresh_pair(self, pair: str) -> None:
        base, quote_ccy = pair.split("-")
        data = await self._get_json(f"/v1/last_quote/currencies/{base}/{quote_ccy}")

        last = data.get("last") or {}
        if "bid" not in last or "ask" not in last:
            raise UpstreamUnavailableError(
                f"Malformed quote for {pair}",
                code="FEED_UNAVAILABLE",
                context={"pair": pair},
            )

        if "timestamp" in last:
            timestamp = datetime.fromtimestamp(last["timestamp"] / 1000, tz=timezone.utc)
        else:
            timestamp = self._clock.now()

        self._store_quote(pair, Decimal(str(last["bid"])), Decimal(str(last["ask"])), timestamp)

    # --------------------------------------------------------
    # CANDLES
    # --------------------------------------------------------

    async def get_candles(
        self,
        pair: str,
        timeframe: Timeframe = Timeframe.M1,
        limit: int = 100,
    ) -> List[Candle]:
        timeframe = Timeframe(timeframe)
        now = self._clock.now()
        days_back = max(14, -(-timeframe.seconds * limit * 3 // 86400))
        start = (now - timedelta(days=days_back)).date().isoformat()
        end = now.date().isoformat()

        path = (
            f"/v2/aggs/ticker/{format_polygon_ticker(pair)}/range/"
            f"{timeframe.multiplier}/{timeframe.timespan}/{start}/{end}"
        )
        data = await self._get_json(
            path,
            {"adjusted": "true", "sort": "desc", "limit": min(5000, max(limit * 10, 1000))},
        )

        results = data.get("results") or []
        if not results:
            logger.warning(f"No candle data available for {pair}:{timeframe.value}")
            return []

        candles = [
            Candle(
                time=int(r["t"]) // 1000,
                open=Decimal(str(r["o"])),
                high=Decimal(str(r["h"])),
                low=Decimal(str(r["l"])),
                close=Decimal(str(r["c"])),
                volume=Decimal(str(r["v"])) if r.get("v") is not None else None,
            )
            for r in results
        ]
        # Newest first from the API
        candles.reverse()
        return candles[-limit:]

    # --------------------------------------------------------
    # INTERNAL
    # --------------------------------------------------------

    async def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """GET a Polygon endpoint and decode the JSON body."""
        if not self._session:
            raise UpstreamUnavailableError("Price feed not started", code="FEED_UNAVAILABLE")

        query = dict(params or {})
        query["apiKey"] = self._config.polygon_api_key
        url = f"{self._config.polygon_base_url}{path}"

        try:
            async with self._session.get(url, params=query) as response:
                if response.status != 200:
                    raise UpstreamUnavailableError(
                        f"Polygon returned HTTP {response.status}",
                        code="FEED_UNAVAILABLE",
                        context={"path": path, "status": response.status},
                    )
                return await response.json()
        except aiohttp.ClientError as e:
            raise UpstreamUnavailableError(
                f"Network error: {e}",
                code="FEED_UNAVAILABLE",
                context={"path": path},
                cause=e,
            )
        except asyncio.TimeoutError:
            raise UpstreamUnavailableError(
                "Request timeout",
                code="FEED_UNAVAILABLE",
                context={"path": path},
            )
