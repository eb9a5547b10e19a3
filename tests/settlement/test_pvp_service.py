"""
Peer Challenge Tests.

============================================================
PURPOSE
============================================================
Full challenge lifecycle against the real ledger, competition,
execution and betting services.

TEST CATEGORIES:
- Negotiation: versions, stale acceptance
- Funding: stake locks, activation
- Cancellation: stake release
- Settlement: winner, tie, disqualification, idempotency

============================================================
"""

import pytest
from sqlalchemy import update

from database import transaction_scope
from database.enums import (
    BetMarketStatus,
    ChallengeStatus,
    CompetitionKind,
    CompetitionStatus,
    TransactionKind,
)
from core.config import SettlementConfig
from database.models import EntryModel, PvpChallengeModel
from settlement import ChallengeTerms, PvpChallengeService


TERMS = ChallengeTerms(stake_tokens=1000, starting_balance_cents=10_000_000)


def _balances(ledger, *user_ids):
    return {u: ledger.get_wallet(u).balance_tokens for u in user_ids}


@pytest.fixture
def players(fund_wallet):
    fund_wallet("alice", 5000)
    fund_wallet("bob", 5000)


@pytest.fixture
def challenge(pvp, players):
    result = pvp.create_challenge("alice", "bob", TERMS)
    assert result.success
    return result.challenge


@pytest.fixture
def accepted(pvp, challenge):
    assert pvp.accept_terms(challenge.id, "alice", 1).success
    result = pvp.accept_terms(challenge.id, "bob", 1)
    assert result.challenge.status == ChallengeStatus.ACCEPTED
    return result.challenge


@pytest.fixture
def active(pvp, accepted):
    pvp.fund_challenge(accepted.id, "alice")
    result = pvp.fund_challenge(accepted.id, "bob")
    assert result.challenge.status == ChallengeStatus.ACTIVE
    return result.challenge


# ============================================================
# NEGOTIATION TESTS
# ============================================================

class TestNegotiation:
    """Tests for create / propose / accept."""

    def test_create(self, challenge):
        """Test a new challenge starts pending at version 1."""
        assert challenge.status == ChallengeStatus.PENDING
        assert challenge.terms_version == 1
        assert challenge.proposed_by == "alice"
        assert challenge.rake_bps == 300

    def test_cannot_challenge_yourself(self, pvp, players):
        """Test self-challenges are rejected."""
        result = pvp.create_challenge("alice", "alice", TERMS)

        assert result.error.code == "INVALID_REQUEST"

    def test_invalid_terms(self, pvp, players):
        """Test terms are validated."""
        result = pvp.create_challenge("alice", "bob", ChallengeTerms(0, 10_000_000))

        assert result.error.code == "INVALID_AMOUNT"

    def test_rake_above_half_pool_rejected(self, pvp, players):
        """Test a rake that would exceed the forfeited stake is refused."""
        terms = ChallengeTerms(stake_tokens=1000, starting_balance_cents=10_000_000, rake_bps=8000)

        result = pvp.create_challenge("alice", "bob", terms)

        assert result.error.code == "INVALID_REQUEST"
        assert result.error.details["field"] == "rake_bps"
        assert result.error.details["value"] == "8000"

    def test_misconfigured_default_rake_rejected(
        self, session_factory, ledger, competitions, execution, betting, clock, players
    ):
        """Test a configured default rake above the cap is not applied."""
        service = PvpChallengeService(
            session_factory, ledger, competitions, execution, betting,
            config=SettlementConfig(pvp_rake_bps=8000), clock=clock,
        )

        result = service.create_challenge("alice", "bob", TERMS)

        assert result.error.code == "INVALID_REQUEST"

    def test_counter_proposal_invalidates_old_version(self, pvp, challenge):
        """Test a stale acceptance fails with the current version."""
        proposed = pvp.propose_terms(challenge.id, "bob", ChallengeTerms(2000, 5_000_000, ["EUR-USD"]))
        assert proposed.challenge.status == ChallengeStatus.NEGOTIATING
        assert proposed.challenge.terms_version == 2

        stale = pvp.accept_terms(challenge.id, "alice", 1)
        assert stale.error.code == "TERMS_CHANGED"
        assert stale.error.details["current_version"] == 2

        first = pvp.accept_terms(challenge.id, "alice", 2)
        assert first.challenge.status == ChallengeStatus.PENDING

        both = pvp.accept_terms(challenge.id, "bob", 2)
        assert both.challenge.status == ChallengeStatus.ACCEPTED
        assert both.challenge.stake_tokens == 2000
        assert both.challenge.allowed_pairs == ["EUR-USD"]

    def test_proposal_resets_acceptances(self, pvp, challenge):
        """Test acceptances do not survive a new version."""
        pvp.accept_terms(challenge.id, "alice", 1)

        proposed = pvp.propose_terms(challenge.id, "bob", TERMS)

        assert not proposed.challenge.challenger_accepted
        assert not proposed.challenge.invitee_accepted

    def test_outsider(self, pvp, challenge):
        """Test only the two traders negotiate."""
        assert pvp.propose_terms(challenge.id, "carol", TERMS).error.code == "NOT_A_PARTICIPANT"
        assert pvp.accept_terms(challenge.id, "carol", 1).error.code == "NOT_A_PARTICIPANT"

    def test_terms_frozen_after_acceptance(self, pvp, accepted):
        """Test proposals are refused once accepted."""
        result = pvp.propose_terms(accepted.id, "bob", TERMS)

        assert result.error.code == "INVALID_TRANSITION"
        assert result.error.details["current_state"] == "accepted"

    def test_unknown_challenge(self, pvp):
        """Test a missing challenge."""
        assert pvp.accept_terms("nope", "alice", 1).error.code == "CHALLENGE_NOT_FOUND"
        assert pvp.get_challenge("nope") is None


# ============================================================
# FUNDING TESTS
# ============================================================

class TestFunding:
    """Tests for fund_challenge."""

    def test_first_stake(self, pvp, ledger, accepted):
        """Test the first funding locks the stake."""
        result = pvp.fund_challenge(accepted.id, "alice")

        assert result.challenge.status == ChallengeStatus.PAYMENT_PENDING
        assert result.challenge.challenger_funded
        assert ledger.get_wallet("alice").locked_tokens == 1000
        assert ledger.get_transaction_history("alice")[0].kind == TransactionKind.STAKE_LOCK

    def test_funding_twice_is_a_no_op(self, pvp, ledger, accepted):
        """Test a repeated funding locks nothing more."""
        pvp.fund_challenge(accepted.id, "alice")

        again = pvp.fund_challenge(accepted.id, "alice")

        assert again.success
        assert ledger.get_wallet("alice").locked_tokens == 1000

    def test_not_accepted_yet(self, pvp, challenge):
        """Test funding needs accepted terms."""
        result = pvp.fund_challenge(challenge.id, "alice")

        assert result.error.code == "INVALID_TRANSITION"

    def test_insufficient_tokens(self, pvp, ledger, fund_wallet):
        """Test a stake larger than available tokens."""
        fund_wallet("alice", 5000)
        fund_wallet("bob", 500)
        created = pvp.create_challenge("alice", "bob", TERMS).challenge
        pvp.accept_terms(created.id, "alice", 1)
        pvp.accept_terms(created.id, "bob", 1)

        result = pvp.fund_challenge(created.id, "bob")

        assert result.error.code == "INSUFFICIENT_AVAILABLE"
        assert pvp.get_challenge(created.id).status == ChallengeStatus.ACCEPTED

    def test_activation(self, competitions, betting, ledger, active):
        """Test both stakes create the private competition, entries and market."""
        competition = competitions.get_competition(active.competition_id)

        assert competition.status == CompetitionStatus.RUNNING
        assert competition.kind == CompetitionKind.PVP
        assert competition.starting_balance_cents == 10_000_000
        assert competition.end_at is not None
        assert sorted(e.user_id for e in competitions.list_entries(competition.id)) == ["alice", "bob"]
        assert ledger.get_wallet("bob").locked_tokens == 1000

        market = betting.get_market_by_match(active.id)
        assert market.status == BetMarketStatus.OPEN
        assert betting.get_pool_stats(market.id).pools == {"alice": 0, "bob": 0}

    def test_bets_must_pick_a_trader(self, betting, fund_wallet, active):
        """Test spectators can only back one of the two traders."""
        fund_wallet("carol", 1000)
        market = betting.get_market_by_match(active.id)

        result = betting.place_bet(market.id, "carol", "dave", 100)

        assert result.error.code == "NOT_A_PARTICIPANT"


# ============================================================
# CANCELLATION TESTS
# ============================================================

class TestCancel:
    """Tests for cancel_challenge."""

    def test_releases_funded_stake(self, pvp, ledger, accepted):
        """Test cancelling returns the locked stake."""
        pvp.fund_challenge(accepted.id, "alice")

        result = pvp.cancel_challenge(accepted.id, "bob")

        assert result.challenge.status == ChallengeStatus.CANCELLED
        wallet = ledger.get_wallet("alice")
        assert wallet.locked_tokens == 0
        assert wallet.balance_tokens == 5000

    def test_cancel_twice(self, pvp, challenge):
        """Test cancelling a cancelled challenge is a no-op."""
        pvp.cancel_challenge(challenge.id, "alice")

        assert pvp.cancel_challenge(challenge.id, "alice").success

    def test_fund_after_cancel(self, pvp, accepted):
        """Test a cancelled challenge cannot be funded."""
        pvp.cancel_challenge(accepted.id, "alice")

        assert pvp.fund_challenge(accepted.id, "alice").error.code == "INVALID_TRANSITION"

    def test_cannot_cancel_active(self, pvp, active):
        """Test a running match must be settled instead."""
        result = pvp.cancel_challenge(active.id, "alice")

        assert result.error.code == "INVALID_TRANSITION"
        assert result.error.details["current_state"] == "active"


# ============================================================
# SETTLEMENT TESTS
# ============================================================

class TestSettleChallenge:
    """Tests for settle_challenge."""

    def test_winner_takes_pot_minus_rake(
        self, pvp, ledger, betting, competitions, execution, price_feed, fund_wallet, reconciler, active
    ):
        """Test the full token flow of a decided challenge."""
        fund_wallet("carol", 1000)
        market = betting.get_market_by_match(active.id)
        assert betting.place_bet(market.id, "carol", "bob", 100).success

        execution.execute_market_order(active.competition_id, "alice", "EUR-USD", "buy", 1)
        price_feed.set_quote("EUR-USD", "1.1050", "1.1050")

        result = pvp.settle_challenge(active.id)

        assert result.success
        assert result.winner_id == "alice"
        assert result.payout_tokens == 940
        assert result.rake_tokens == 60
        assert result.challenge.status == ChallengeStatus.COMPLETED

        assert _balances(ledger, "alice", "bob", "carol", "house") == {
            "alice": 5940,
            "bob": 4000,
            "carol": 900,
            "house": 160,
        }
        assert ledger.get_wallet("alice").locked_tokens == 0
        assert ledger.get_wallet("bob").locked_tokens == 0
        assert ledger.get_wallet("carol").locked_tokens == 0

        assert betting.get_market(market.id).status == BetMarketStatus.SETTLED
        assert competitions.get_competition(active.competition_id).status == CompetitionStatus.ENDED
        assert reconciler.reconcile().success

    def test_settle_twice(self, pvp, ledger, execution, price_feed, active):
        """Test a completed challenge is never paid twice."""
        execution.execute_market_order(active.competition_id, "bob", "EUR-USD", "buy", 1)
        price_feed.set_quote("EUR-USD", "1.1050", "1.1050")
        pvp.settle_challenge(active.id)
        before = {u: len(ledger.get_transaction_history(u, limit=1000)) for u in ("alice", "bob", "house")}

        again = pvp.settle_challenge(active.id)

        assert again.success
        assert again.already_settled
        assert again.winner_id == "bob"
        assert {u: len(ledger.get_transaction_history(u, limit=1000)) for u in before} == before

    def test_tie_releases_both_stakes(self, pvp, ledger, betting, fund_wallet, active):
        """Test equal equity refunds stakes and voids bets."""
        fund_wallet("carol", 1000)
        market = betting.get_market_by_match(active.id)
        betting.place_bet(market.id, "carol", "alice", 100)

        result = pvp.settle_challenge(active.id)

        assert result.success
        assert result.winner_id is None
        assert result.payout_tokens == 0
        assert _balances(ledger, "alice", "bob", "carol") == {"alice": 5000, "bob": 5000, "carol": 1000}
        assert ledger.get_wallet("alice").locked_tokens == 0
        assert ledger.get_wallet("house") is None
        assert betting.get_market(market.id).status == BetMarketStatus.VOID

    def test_disqualified_entry_loses(self, pvp, ledger, execution, price_feed, session_factory, active):
        """Test a disqualified trader loses even with higher equity."""
        execution.execute_market_order(active.competition_id, "bob", "EUR-USD", "buy", 1)
        price_feed.set_quote("EUR-USD", "1.1050", "1.1050")
        with transaction_scope(session_factory) as session:
            session.execute(
                update(EntryModel)
                .where(EntryModel.competition_id == active.competition_id, EntryModel.user_id == "bob")
                .values(dq=True, dq_reason="manual")
            )

        result = pvp.settle_challenge(active.id)

        assert result.winner_id == "alice"
        assert _balances(ledger, "alice", "bob") == {"alice": 5940, "bob": 4000}

    def test_maximum_rake_conserves_tokens(self, pvp, ledger, execution, price_feed, players):
        """Test the highest allowed rake moves exactly the loser's stake."""
        terms = ChallengeTerms(stake_tokens=1000, starting_balance_cents=10_000_000, rake_bps=5000)
        challenge = pvp.create_challenge("alice", "bob", terms).challenge
        pvp.accept_terms(challenge.id, "alice", 1)
        pvp.accept_terms(challenge.id, "bob", 1)
        pvp.fund_challenge(challenge.id, "alice")
        active = pvp.fund_challenge(challenge.id, "bob").challenge
        execution.execute_market_order(active.competition_id, "alice", "EUR-USD", "buy", 1)
        price_feed.set_quote("EUR-USD", "1.1050", "1.1050")

        result = pvp.settle_challenge(active.id)

        assert result.success
        assert result.payout_tokens == 0
        assert result.rake_tokens == 1000
        balances = _balances(ledger, "alice", "bob", "house")
        assert balances == {"alice": 5000, "bob": 4000, "house": 1000}
        assert sum(balances.values()) == 10_000

    def test_stored_rake_above_stake_fails_settlement(
        self, pvp, ledger, execution, price_feed, session_factory, active
    ):
        """Test a corrupted rake aborts settlement without moving tokens."""
        execution.execute_market_order(active.competition_id, "alice", "EUR-USD", "buy", 1)
        price_feed.set_quote("EUR-USD", "1.1050", "1.1050")
        with transaction_scope(session_factory) as session:
            session.execute(
                update(PvpChallengeModel)
                .where(PvpChallengeModel.id == active.id)
                .values(rake_bps=8000)
            )

        result = pvp.settle_challenge(active.id)

        assert result.error.code == "LEDGER_INTEGRITY"
        assert _balances(ledger, "alice", "bob") == {"alice": 5000, "bob": 5000}
        assert ledger.get_wallet("alice").locked_tokens == 1000
        assert ledger.get_wallet("house") is None
        assert pvp.get_challenge(active.id).status == ChallengeStatus.ACTIVE

    def test_settle_before_active(self, pvp, challenge):
        """Test only active challenges settle."""
        result = pvp.settle_challenge(challenge.id)

        assert result.error.code == "INVALID_TRANSITION"
        assert result.error.details["current_state"] == "pending"
