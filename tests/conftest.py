"""
Shared Test Fixtures.

============================================================
PURPOSE
============================================================
Wires every arena service against an in-memory SQLite database,
a fixed mock clock and a hand-set price feed, so fills and
payouts are exact and repeatable.

============================================================
"""

import random
from datetime import datetime, timezone
from decimal import Decimal
from typing import List

import pytest

from competitions import CompetitionService
from core.clock import MockClock
from core.config import DatabaseConfig, ExecutionConfig, SettlementConfig
from database import initialize_database
from database.enums import CompetitionStatus
from execution_engine import ExecutionService
from market_data import PriceFeed
from market_data.types import Candle, Timeframe
from settlement import BettingService, PvpChallengeService
from wallet_ledger import LedgerReconciler, TransactionKind, WalletLedger


FIXED_TIME = datetime(2026, 3, 2, 12, 0, 0, tzinfo=timezone.utc)


# ============================================================
# PRICE FEED
# ============================================================

class StaticPriceFeed(PriceFeed):
    """Quotes are whatever the test sets."""

    def __init__(self, clock):
        super().__init__(clock=clock)
        self._connected = True

    def set_quote(self, pair: str, bid, ask) -> None:
        self._store_quote(pair, Decimal(str(bid)), Decimal(str(ask)), self._clock.now())

    async def refresh(self) -> None:
        pass

    async def get_candles(self, pair: str, timeframe: Timeframe = Timeframe.M1, limit: int = 100) -> List[Candle]:
        return []


# ============================================================
# INFRASTRUCTURE
# ============================================================

@pytest.fixture
def clock():
    """Mock clock frozen at a fixed UTC instant."""
    return MockClock(FIXED_TIME)


@pytest.fixture
def session_factory():
    """Fresh in-memory database per test."""
    return initialize_database(DatabaseConfig(url="sqlite://"))


@pytest.fixture
def price_feed(clock):
    feed = StaticPriceFeed(clock)
    feed.set_quote("EUR-USD", "1.1000", "1.1000")
    feed.set_quote("USD-JPY", "150.00", "150.00")
    return feed


@pytest.fixture
def execution_config():
    """No markup and no slippage: fills happen exactly at the quote."""
    return ExecutionConfig(
        default_spread_markup_pips=Decimal("0"),
        default_max_slippage_pips=Decimal("0"),
    )


@pytest.fixture
def settlement_config():
    return SettlementConfig(
        enable_bet_behind=True,
        bet_rake_bps=500,
        min_bet_tokens=10,
        max_bet_tokens_per_user=10_000,
        pvp_rake_bps=300,
    )


# ============================================================
# SERVICES
# ============================================================

@pytest.fixture
def ledger(session_factory, clock):
    return WalletLedger(session_factory, clock=clock)


@pytest.fixture
def reconciler(session_factory, clock):
    return LedgerReconciler(session_factory, clock=clock)


@pytest.fixture
def execution(session_factory, price_feed, execution_config, clock):
    return ExecutionService(
        session_factory,
        price_feed,
        config=execution_config,
        clock=clock,
        rng=random.Random(7),
    )


@pytest.fixture
def competitions(session_factory, ledger, execution, execution_config, clock):
    return CompetitionService(session_factory, ledger, execution, config=execution_config, clock=clock)


@pytest.fixture
def betting(session_factory, ledger, settlement_config, clock):
    return BettingService(session_factory, ledger, config=settlement_config, clock=clock)


@pytest.fixture
def pvp(session_factory, ledger, competitions, execution, betting, settlement_config, clock):
    return PvpChallengeService(
        session_factory,
        ledger,
        competitions,
        execution,
        betting,
        config=settlement_config,
        clock=clock,
    )


# ============================================================
# DATA HELPERS
# ============================================================

@pytest.fixture
def fund_wallet(ledger):
    """Create a wallet and credit it with purchased tokens."""
    def fund(user_id: str, amount: int) -> None:
        ledger.get_or_create_wallet(user_id)
        if amount:
            result = ledger.apply_token_transaction(user_id, TransactionKind.PURCHASE, amount)
            assert result.success
    return fund


@pytest.fixture
def running_competition(competitions):
    """Running competition, every pair allowed, alice and bob joined for free."""
    result = competitions.create_competition(
        "Test Cup",
        allowed_pairs=[],
        status=CompetitionStatus.RUNNING,
    )
    assert result.success
    competition = result.competition
    for user_id in ("alice", "bob"):
        joined = competitions.join_competition(competition.id, user_id)
        assert joined.success
    return competition
