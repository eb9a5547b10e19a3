"""
Competition Service Tests.

============================================================
PURPOSE
============================================================
Tests for competition creation, joining and the leaderboard.

TEST CATEGORIES:
- Creation: validation, pair defaults
- Status: transition table
- Join: fee debit, idempotency, failures
- Leaderboard: ranking by return %

============================================================
"""

from decimal import Decimal

import pytest

from competitions import CompetitionService
from core.constants import DEFAULT_ALLOWED_PAIRS
from database.enums import CompetitionKind, CompetitionStatus, PaymentStatus, TransactionKind


@pytest.fixture
def paid_competition(competitions):
    result = competitions.create_competition("Weekly Cup", entry_fee_tokens=100, allowed_pairs=["EUR-USD"])
    assert result.success
    return result.competition


# ============================================================
# CREATION TESTS
# ============================================================

class TestCreateCompetition:
    """Tests for create_competition."""

    def test_defaults(self, competitions):
        """Test a new competition uses configured defaults."""
        competition = competitions.create_competition("Open Cup").competition

        assert competition.status == CompetitionStatus.OPEN
        assert competition.kind == CompetitionKind.PUBLIC
        assert competition.starting_balance_cents == 10_000_000
        assert competition.allowed_pairs == list(DEFAULT_ALLOWED_PAIRS)
        assert competition.spread_markup_pips == Decimal("0")

    def test_empty_pair_list_allows_everything(self, running_competition):
        """Test an empty pair list is kept as-is."""
        assert running_competition.allowed_pairs == []

    @pytest.mark.parametrize("kwargs,code", [
        ({"title": "  "}, "INVALID_REQUEST"),
        ({"title": "Cup", "entry_fee_tokens": -1}, "INVALID_AMOUNT"),
        ({"title": "Cup", "starting_balance_cents": 0}, "INVALID_REQUEST"),
        ({"title": "Cup", "allowed_pairs": ["EUR-XYZ"]}, "INVALID_PAIR"),
        ({"title": "Cup", "rake_bps": 20_000}, "INVALID_REQUEST"),
        ({"title": "Cup", "status": CompetitionStatus.ENDED}, "INVALID_REQUEST"),
    ])
    def test_validation(self, competitions, kwargs, code):
        """Test invalid parameters are rejected."""
        result = competitions.create_competition(**kwargs)

        assert not result.success
        assert result.error.code == code

    def test_listing(self, competitions):
        """Test created competitions are listed."""
        competitions.create_competition("A")
        competitions.create_competition("B")

        assert {c.title for c in competitions.list_competitions()} == {"A", "B"}


# ============================================================
# STATUS TESTS
# ============================================================

class TestSetStatus:
    """Tests for set_status."""

    def test_lifecycle(self, competitions):
        """Test open -> running -> ended."""
        competition = competitions.create_competition("Cup").competition

        assert competitions.set_status(competition.id, CompetitionStatus.RUNNING).success
        ended = competitions.set_status(competition.id, CompetitionStatus.ENDED)

        assert ended.competition.status == CompetitionStatus.ENDED

    def test_same_status_is_a_no_op(self, competitions, running_competition):
        """Test setting the current status succeeds."""
        assert competitions.set_status(running_competition.id, CompetitionStatus.RUNNING).success

    def test_ended_is_final(self, competitions, running_competition):
        """Test an ended competition cannot restart."""
        competitions.set_status(running_competition.id, CompetitionStatus.ENDED)

        result = competitions.set_status(running_competition.id, CompetitionStatus.RUNNING)

        assert result.error.code == "INVALID_TRANSITION"
        assert result.error.details["current_state"] == "ended"

    def test_unknown(self, competitions):
        """Test a missing competition."""
        result = competitions.set_status("nope", CompetitionStatus.RUNNING)

        assert result.error.code == "COMPETITION_NOT_FOUND"
        assert competitions.get_competition("nope") is None


# ============================================================
# JOIN TESTS
# ============================================================

class TestJoinCompetition:
    """Tests for join_competition."""

    def test_fee_is_debited(self, competitions, ledger, fund_wallet, paid_competition):
        """Test joining charges the fee and seeds the entry."""
        fund_wallet("alice", 500)

        result = competitions.join_competition(paid_competition.id, "alice")

        assert result.success
        assert not result.already_joined
        entry = result.entry
        assert entry.cash_cents == 10_000_000
        assert entry.equity_cents == 10_000_000
        assert entry.payment_status == PaymentStatus.SUCCEEDED
        assert entry.paid_tokens == 100

        assert ledger.get_wallet("alice").balance_tokens == 400
        tx = ledger.get_transaction_history("alice")[0]
        assert tx.kind == TransactionKind.COMPETITION_ENTRY
        assert tx.amount_tokens == -100
        assert tx.reference_id == paid_competition.id

    def test_join_twice(self, competitions, ledger, fund_wallet, paid_competition):
        """Test a second join charges nothing."""
        fund_wallet("alice", 500)
        first = competitions.join_competition(paid_competition.id, "alice")

        again = competitions.join_competition(paid_competition.id, "alice")

        assert again.success
        assert again.already_joined
        assert again.entry.id == first.entry.id
        assert ledger.get_wallet("alice").balance_tokens == 400

    def test_insufficient_tokens(self, competitions, fund_wallet, paid_competition):
        """Test a failed debit creates no entry."""
        fund_wallet("alice", 50)

        result = competitions.join_competition(paid_competition.id, "alice")

        assert result.error.code == "INSUFFICIENT_BALANCE"
        assert competitions.get_entry(paid_competition.id, "alice") is None

    def test_free_competition_needs_no_wallet(self, competitions, running_competition):
        """Test free entries do not touch the ledger."""
        result = competitions.join_competition(running_competition.id, "carol")

        assert result.success
        assert result.entry.paid_tokens == 0

    def test_unknown_competition(self, competitions):
        """Test joining a missing competition."""
        assert competitions.join_competition("nope", "alice").error.code == "COMPETITION_NOT_FOUND"

    def test_ended_competition(self, competitions, running_competition):
        """Test joining after the end."""
        competitions.set_status(running_competition.id, CompetitionStatus.ENDED)

        result = competitions.join_competition(running_competition.id, "carol")

        assert result.error.code == "COMPETITION_NOT_RUNNING"
        assert result.error.details["current_state"] == "ended"

    def test_list_entries(self, competitions, running_competition):
        """Test both fixture entries are listed."""
        users = sorted(e.user_id for e in competitions.list_entries(running_competition.id))

        assert users == ["alice", "bob"]


# ============================================================
# LEADERBOARD TESTS
# ============================================================

class TestLeaderboard:
    """Tests for get_leaderboard."""

    def test_ranked_by_return(self, competitions, execution, price_feed, running_competition):
        """Test entries are marked to market and ranked."""
        execution.execute_market_order(running_competition.id, "bob", "EUR-USD", "sell", 1)
        execution.execute_market_order(running_competition.id, "alice", "EUR-USD", "buy", 1)
        price_feed.set_quote("EUR-USD", "1.1050", "1.1050")

        board = competitions.get_leaderboard(running_competition.id)

        assert [(row.rank, row.user_id) for row in board] == [(1, "alice"), (2, "bob")]
        assert board[0].equity_cents == 10_050_000
        assert board[0].return_pct == Decimal("0.5000")
        assert board[1].equity_cents == 9_950_000
        assert board[1].return_pct == Decimal("-0.5000")
        assert board[0].cash_cents == 10_000_000

    def test_tie_keeps_join_order(self, competitions, clock):
        """Test equal returns rank by join time."""
        competition = competitions.create_competition("Tie Cup", allowed_pairs=[]).competition
        for user_id in ("zed", "amy"):
            competitions.join_competition(competition.id, user_id)
            clock.advance(1)

        board = competitions.get_leaderboard(competition.id)

        assert [row.user_id for row in board] == ["zed", "amy"]
        assert all(row.return_pct == Decimal("0.0000") for row in board)

    def test_unknown_competition(self, competitions):
        """Test a missing competition ranks nobody."""
        assert competitions.get_leaderboard("nope") == []

    @pytest.mark.parametrize("equity,starting,expected", [
        (11_000_000, 10_000_000, "10.0000"),
        (9_876_543, 10_000_000, "-1.2346"),
        (100, 0, "0"),
    ])
    def test_return_pct(self, equity, starting, expected):
        """Test the return formula."""
        assert CompetitionService.return_pct(equity, starting) == Decimal(expected)
