"""
Core Module - Configuration.

============================================================
PURPOSE
============================================================
All runtime configuration for the arena core.

Each section is a dataclass with documented defaults and a
from_env() constructor. A .env file in the working directory
is honoured via python-dotenv.

============================================================
"""

import os
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List

from dotenv import load_dotenv

from .constants import (
    DEFAULT_HOUSE_USER_ID,
    DEFAULT_MAX_SLIPPAGE_PIPS,
    DEFAULT_SPREAD_MARKUP_PIPS,
    MAX_PVP_RAKE_BPS,
)


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


# ============================================================
# DATABASE CONFIGURATION
# ============================================================

@dataclass
class DatabaseConfig:
    """Database connection configuration."""

    url: str = "sqlite:///arena.db"
    """SQLAlchemy database URL."""

    echo: bool = False
    """Log SQL statements."""

    pool_size: int = 10
    """Connections kept in the pool (ignored for SQLite)."""

    max_overflow: int = 20
    """Connections allowed beyond pool_size (ignored for SQLite)."""

    pool_recycle: int = 1800
    """Recycle connections after N seconds."""

    @classmethod
    def from_env(cls) -> "DatabaseConfig":
        return cls(
            url=os.getenv("DATABASE_URL", "sqlite:///arena.db"),
            echo=_env_bool("DB_ECHO"),
            pool_size=int(os.getenv("DB_POOL_SIZE", "10")),
            max_overflow=int(os.getenv("DB_MAX_OVERFLOW", "20")),
            pool_recycle=int(os.getenv("DB_POOL_RECYCLE", "1800")),
        )


# ============================================================
# EXECUTION CONFIGURATION
# ============================================================

@dataclass
class ExecutionConfig:
    """
    Fill-price defaults.

    Used only when neither the request nor the competition
    supplies its own markup/slippage.
    """

    default_spread_markup_pips: Decimal = DEFAULT_SPREAD_MARKUP_PIPS
    """Markup added on top of the quoted spread, in pips."""

    default_max_slippage_pips: Decimal = DEFAULT_MAX_SLIPPAGE_PIPS
    """Upper bound of uniform random slippage, in pips."""

    @classmethod
    def from_env(cls) -> "ExecutionConfig":
        return cls(
            default_spread_markup_pips=Decimal(
                os.getenv("DEFAULT_SPREAD_MARKUP_PIPS", str(DEFAULT_SPREAD_MARKUP_PIPS))
            ),
            default_max_slippage_pips=Decimal(
                os.getenv("DEFAULT_MAX_SLIPPAGE_PIPS", str(DEFAULT_MAX_SLIPPAGE_PIPS))
            ),
        )


# ============================================================
# SETTLEMENT CONFIGURATION
# ============================================================

@dataclass
class SettlementConfig:
    """Bet-behind markets and peer challenge settlement."""

    enable_bet_behind: bool = False
    """Whether spectators may bet on peer challenges."""

    house_user_id: str = DEFAULT_HOUSE_USER_ID
    """Wallet credited with rake and rounding remainders."""

    bet_rake_bps: int = 500
    """Rake taken from each bet pool, in basis points."""

    min_bet_tokens: int = 10
    """Smallest accepted bet."""

    max_bet_tokens_per_user: int = 10_000
    """Cap on one user's total stake in a single market."""

    pvp_rake_bps: int = 300
    """Rake taken from a challenge's combined stakes."""

    @classmethod
    def from_env(cls) -> "SettlementConfig":
        return cls(
            enable_bet_behind=_env_bool("ENABLE_BET_BEHIND"),
            house_user_id=os.getenv("HOUSE_USER_ID", DEFAULT_HOUSE_USER_ID),
            bet_rake_bps=int(os.getenv("BET_RAKE_BPS", "500")),
            min_bet_tokens=int(os.getenv("MIN_BET_TOKENS", "10")),
            max_bet_tokens_per_user=int(os.getenv("MAX_BET_TOKENS_PER_USER", "10000")),
            pvp_rake_bps=int(os.getenv("PVP_RAKE_BPS", "300")),
        )

    def validate(self) -> List[str]:
        """Validate configuration, return list of errors."""
        errors = []
        if not 0 <= self.bet_rake_bps <= 10_000:
            errors.append("bet_rake_bps must be between 0 and 10000")
        if not 0 <= self.pvp_rake_bps <= MAX_PVP_RAKE_BPS:
            errors.append(f"pvp_rake_bps must be between 0 and {MAX_PVP_RAKE_BPS}")
        if self.min_bet_tokens < 1:
            errors.append("min_bet_tokens must be at least 1")
        if self.max_bet_tokens_per_user < self.min_bet_tokens:
            errors.append("max_bet_tokens_per_user must be >= min_bet_tokens")
        if not self.house_user_id:
            errors.append("house_user_id is required")
        return errors


# ============================================================
# PRICE FEED CONFIGURATION
# ============================================================

@dataclass
class PriceFeedConfig:
    """Quote source selection and polling."""

    provider: str = "synthetic"
    """'synthetic' (random walk) or 'polygon' (live REST polling)."""

    polygon_api_key: str = ""
    """API key for the live provider."""

    polygon_base_url: str = "https://api.polygon.io"
    """REST base URL for the live provider."""

    refresh_interval_seconds: float = 1.0
    """Seconds between background quote refreshes."""

    request_timeout_seconds: float = 10.0
    """Total timeout per upstream request."""

    @classmethod
    def from_env(cls) -> "PriceFeedConfig":
        return cls(
            provider=os.getenv("PRICE_FEED", "synthetic").lower(),
            polygon_api_key=os.getenv("POLYGON_API_KEY", ""),
            polygon_base_url=os.getenv("POLYGON_REST_BASE_URL", "https://api.polygon.io"),
            refresh_interval_seconds=float(os.getenv("PRICE_REFRESH_SECONDS", "1.0")),
            request_timeout_seconds=float(os.getenv("PRICE_REQUEST_TIMEOUT_SECONDS", "10.0")),
        )

    def validate(self) -> List[str]:
        errors = []
        if self.provider not in ("synthetic", "polygon"):
            errors.append(f"unknown price feed provider: {self.provider}")
        if self.provider == "polygon" and not self.polygon_api_key:
            errors.append("POLYGON_API_KEY required for polygon price feed")
        if self.refresh_interval_seconds <= 0:
            errors.append("refresh_interval_seconds must be positive")
        return errors


# ============================================================
# MASTER CONFIGURATION
# ============================================================

@dataclass
class ArenaConfig:
    """Complete arena configuration."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    settlement: SettlementConfig = field(default_factory=SettlementConfig)
    price_feed: PriceFeedConfig = field(default_factory=PriceFeedConfig)

    log_level: str = "INFO"
    """Root log level."""

    log_format: str = "json"
    """'json' or 'text'."""

    @classmethod
    def from_env(cls) -> "ArenaConfig":
        """Load configuration from environment variables (and .env)."""
        load_dotenv()
        return cls(
            database=DatabaseConfig.from_env(),
            execution=ExecutionConfig.from_env(),
            settlement=SettlementConfig.from_env(),
            price_feed=PriceFeedConfig.from_env(),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )

    @classmethod
    def for_testing(cls) -> "ArenaConfig":
        """In-memory database, betting enabled."""
        return cls(
            database=DatabaseConfig(url="sqlite://"),
            settlement=SettlementConfig(enable_bet_behind=True),
            log_format="text",
        )

    def validate(self) -> List[str]:
        return self.settlement.validate() + self.price_feed.validate()


__all__ = [
    "DatabaseConfig",
    "ExecutionConfig",
    "SettlementConfig",
    "PriceFeedConfig",
    "ArenaConfig",
]
