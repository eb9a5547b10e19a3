"""
Betting Service Tests.

============================================================
PURPOSE
============================================================
Tests for pari-mutuel bet markets.

TEST CATEGORIES:
- Markets: creation, closing, disabled betting
- Bets: limits, locking, state checks
- Settlement: payouts, house credit, idempotency
- Void: refunds and terminal states

============================================================
"""

import pytest

from core.config import SettlementConfig
from database.enums import BetMarketStatus, BetStatus, TransactionKind
from settlement import BettingService


MATCH_ID = "match-1"


def _tx_count(ledger, *user_ids):
    return sum(len(ledger.get_transaction_history(u, limit=1000)) for u in user_ids)


@pytest.fixture
def market(betting):
    result = betting.create_market_for_match(MATCH_ID)
    assert result.success
    return result.market


@pytest.fixture
def bettors(fund_wallet):
    for user_id in ("u1", "u2", "u3"):
        fund_wallet(user_id, 1000)
    return ("u1", "u2", "u3")


@pytest.fixture
def placed(betting, market, bettors):
    """u1 and u2 back alice, u3 backs bob."""
    for bettor, pick, amount in (("u1", "alice", 100), ("u2", "alice", 300), ("u3", "bob", 600)):
        result = betting.place_bet(market.id, bettor, pick, amount)
        assert result.success
    return market


# ============================================================
# MARKET TESTS
# ============================================================

class TestMarkets:
    """Tests for market creation and closing."""

    def test_create_is_idempotent(self, betting, market):
        """Test one market per match."""
        again = betting.create_market_for_match(MATCH_ID)

        assert again.success
        assert again.market.id == market.id
        assert market.status == BetMarketStatus.OPEN
        assert market.rake_bps == 500

    def test_disabled(self, session_factory, ledger, clock):
        """Test markets cannot open while betting is off."""
        service = BettingService(session_factory, ledger, config=SettlementConfig(enable_bet_behind=False), clock=clock)

        result = service.create_market_for_match(MATCH_ID)

        assert not result.success
        assert result.error.code == "BETTING_DISABLED"

    def test_close(self, betting, market):
        """Test closing stops new bets and is repeatable."""
        first = betting.close_market(market.id)
        second = betting.close_market(market.id)

        assert first.market.status == BetMarketStatus.CLOSED
        assert second.success

    def test_unknown_market(self, betting):
        """Test operations on a missing market."""
        assert betting.close_market("nope").error.code == "MARKET_NOT_FOUND"
        assert betting.get_market("nope") is None
        assert betting.get_pool_stats("nope") is None


# ============================================================
# BET TESTS
# ============================================================

class TestPlaceBet:
    """Tests for place_bet."""

    def test_stake_is_locked(self, betting, ledger, market, bettors):
        """Test the stake is reserved, not spent."""
        result = betting.place_bet(market.id, "u1", "alice", 100)

        assert result.success
        assert result.bet.status == BetStatus.PLACED
        wallet = ledger.get_wallet("u1")
        assert wallet.balance_tokens == 1000
        assert wallet.locked_tokens == 100

        tx = ledger.get_transaction_history("u1")[0]
        assert tx.kind == TransactionKind.BET_PLACE
        assert tx.reference_type == "bet_market"
        assert tx.reference_id == market.id

    def test_below_minimum(self, betting, market, bettors):
        """Test the minimum bet."""
        result = betting.place_bet(market.id, "u1", "alice", 5)

        assert result.error.code == "INVALID_AMOUNT"
        assert result.error.details["min_bet_tokens"] == 10

    @pytest.mark.parametrize("amount", [0, -10, 12.5])
    def test_invalid_amount(self, betting, market, bettors, amount):
        """Test non-positive and fractional stakes."""
        assert betting.place_bet(market.id, "u1", "alice", amount).error.code == "INVALID_AMOUNT"

    def test_per_user_limit(self, betting, market, fund_wallet):
        """Test the cap on one user's total stake."""
        fund_wallet("whale", 20_000)
        assert betting.place_bet(market.id, "whale", "alice", 9_000).success

        result = betting.place_bet(market.id, "whale", "bob", 2_000)

        assert result.error.code == "BET_LIMIT_EXCEEDED"
        assert result.error.details["already_placed"] == 9_000

    def test_insufficient_available(self, betting, ledger, market, fund_wallet):
        """Test a failed lock records no bet."""
        fund_wallet("poor", 50)

        result = betting.place_bet(market.id, "poor", "alice", 100)

        assert result.error.code == "INSUFFICIENT_AVAILABLE"
        assert betting.get_bets(market.id) == []
        assert ledger.get_wallet("poor").locked_tokens == 0

    def test_closed_market(self, betting, market, bettors):
        """Test bets need an open market."""
        betting.close_market(market.id)

        result = betting.place_bet(market.id, "u1", "alice", 100)

        assert result.error.code == "MARKET_NOT_OPEN"
        assert result.error.details["current_state"] == "CLOSED"

    def test_pool_stats(self, betting, placed):
        """Test pools and decimal odds."""
        stats = betting.get_pool_stats(placed.id)

        assert stats.total_pool == 1000
        assert stats.pools == {"alice": 400, "bob": 600}
        assert str(stats.odds["alice"]) == "2.5000"
        assert str(stats.odds["bob"]) == "1.6667"
        assert stats.bet_count == 3


# ============================================================
# SETTLEMENT TESTS
# ============================================================

class TestSettleMarket:
    """Tests for settle_market."""

    def test_payouts_and_house_credit(self, betting, ledger, reconciler, placed):
        """Test winners are paid pro rata and the house gets rake plus remainder."""
        result = betting.settle_market(placed.id, "alice")

        assert result.success
        assert result.total_pool == 1000
        assert result.rake_tokens == 50
        assert result.house_credit_tokens == 51
        assert {p.bettor_id: p.payout_tokens for p in result.payouts} == {"u1": 237, "u2": 712, "u3": 0}

        balances = {u: ledger.get_wallet(u).balance_tokens for u in ("u1", "u2", "u3", "house")}
        assert balances == {"u1": 1137, "u2": 1412, "u3": 400, "house": 51}
        assert all(ledger.get_wallet(u).locked_tokens == 0 for u in ("u1", "u2", "u3"))
        assert sum(balances.values()) == 3000

        market = betting.get_market(placed.id)
        assert market.status == BetMarketStatus.SETTLED
        assert market.winner_user_id == "alice"
        assert {b.status for b in betting.get_bets(placed.id)} == {BetStatus.SETTLED}
        assert reconciler.reconcile().success

    def test_second_settlement_is_a_no_op(self, betting, ledger, placed):
        """Test settling twice writes nothing."""
        betting.settle_market(placed.id, "alice")
        before = _tx_count(ledger, "u1", "u2", "u3", "house")

        again = betting.settle_market(placed.id, "bob")

        assert again.success
        assert again.already_settled
        assert again.winner_user_id == "alice"
        assert _tx_count(ledger, "u1", "u2", "u3", "house") == before

    def test_settle_closed_market(self, betting, placed):
        """Test a closed market can still be settled."""
        betting.close_market(placed.id)

        assert betting.settle_market(placed.id, "bob").success

    def test_empty_market(self, betting, ledger, market):
        """Test a market without bets settles with no token movement."""
        result = betting.settle_market(market.id, "alice")

        assert result.success
        assert result.payouts == []
        assert ledger.get_wallet("house") is None

    def test_settle_voided_market(self, betting, placed):
        """Test a voided market cannot be settled."""
        betting.void_market(placed.id)

        result = betting.settle_market(placed.id, "alice")

        assert result.error.code == "MARKET_ALREADY_RESOLVED"

    def test_settle_match_without_market(self, betting):
        """Test settling an unknown match is a no-op."""
        result = betting.settle_match_bets("no-such-match", "alice")

        assert result.success
        assert result.market_id is None


# ============================================================
# VOID TESTS
# ============================================================

class TestVoidMarket:
    """Tests for void_market."""

    def test_refunds_every_bet(self, betting, ledger, placed):
        """Test voiding releases every stake."""
        result = betting.void_market(placed.id)

        assert result.success
        assert result.refunded_bets == 3
        assert result.market.status == BetMarketStatus.VOID
        for user_id in ("u1", "u2", "u3"):
            wallet = ledger.get_wallet(user_id)
            assert wallet.balance_tokens == 1000
            assert wallet.locked_tokens == 0
            assert ledger.get_transaction_history(user_id)[0].kind == TransactionKind.BET_REFUND
        assert {b.status for b in betting.get_bets(placed.id)} == {BetStatus.REFUNDED}

    def test_void_twice(self, betting, ledger, placed):
        """Test voiding a voided market is a no-op."""
        betting.void_market(placed.id)
        before = _tx_count(ledger, "u1", "u2", "u3")

        again = betting.void_market(placed.id)

        assert again.success
        assert again.refunded_bets == 0
        assert _tx_count(ledger, "u1", "u2", "u3") == before

    def test_void_settled_market(self, betting, placed):
        """Test a settled market cannot be voided."""
        betting.settle_market(placed.id, "alice")

        assert betting.void_market(placed.id).error.code == "MARKET_ALREADY_RESOLVED"

    def test_void_by_match(self, betting, placed):
        """Test voiding through the match id."""
        result = betting.void_match_bets(MATCH_ID)

        assert result.market.id == placed.id
        assert result.market.status == BetMarketStatus.VOID
