"""
Market Data - Feed Factory.

Builds the configured price feed.
"""

import logging
import random
from typing import Optional, Sequence

from core.clock import ClockProtocol
from core.config import PriceFeedConfig

from .base import PriceFeed
from .polygon import PolygonPriceFeed
from .synthetic import SyntheticPriceFeed

logger = logging.getLogger(__name__)


def create_price_feed(
    config: PriceFeedConfig,
    pairs: Optional[Sequence[str]] = None,
    clock: Optional[ClockProtocol] = None,
    rng: Optional[random.Random] = None,
) -> PriceFeed:
    """
    Create a price feed for the configured provider.

    Raises:
        ValueError: Unknown provider
    """
    if config.provider == "polygon":
        if not config.polygon_api_key:
            logger.warning("POLYGON_API_KEY not set, falling back to synthetic price feed")
        else:
            return PolygonPriceFeed(config, pairs=pairs, clock=clock)
    elif config.provider != "synthetic":
        raise ValueError(f"Unknown price feed provider: {config.provider}")

    return SyntheticPriceFeed(
        pairs=pairs,
        refresh_interval_seconds=config.refresh_interval_seconds,
        clock=clock,
        rng=rng,
    )
