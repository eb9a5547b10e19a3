"""
Settlement - Peer Challenge Service.

============================================================
PURPOSE
============================================================
Two traders stake tokens against each other in a private
competition. The better final equity takes the pot minus rake.

LIFECYCLE:
    create_challenge  -> PENDING (terms v1)
    propose_terms     -> NEGOTIATING (terms v+1, acceptances reset)
    accept_terms      -> ACCEPTED once both accepted the same version
    fund_challenge    -> PAYMENT_PENDING, then ACTIVE when both
                         stakes are locked (competition created once)
    settle_challenge  -> COMPLETED
    cancel_challenge  -> CANCELLED from any pre-active state

TOKEN FLOW ON SETTLEMENT:
    loser:  unlock_and_deduct(stake)        stake_forfeit
    winner: unlock(stake) + (stake - rake)  stake_release, pvp_payout
    house:  + rake                          rake_fee

A tie releases both stakes.

============================================================
"""

import logging
from datetime import timedelta
from typing import Callable, Optional

from sqlalchemy.orm import Session, sessionmaker

from competitions import CompetitionService
from core.clock import ClockFactory, ClockProtocol
from core.config import SettlementConfig
from core.constants import MAX_PVP_RAKE_BPS
from core.exceptions import (
    ArenaError,
    LedgerIntegrityError,
    NotFoundError,
    StateConflictError,
    ValidationError,
    to_error_detail,
)
from database.engine import DatabasePersistenceError, transaction_scope
from database.enums import ChallengeStatus, CompetitionKind, CompetitionStatus, ReferenceType, TransactionKind
from database.models import PvpChallengeModel
from execution_engine import ExecutionService
from wallet_ledger import LedgerReference, WalletLedger

from .betting_service import BettingService
from .payouts import compute_pvp_split
from .repository import SettlementRepository
from .state_machine import TransitionGuard
from .types import ChallengeRecord, ChallengeResult, ChallengeTerms

logger = logging.getLogger(__name__)


class PvpChallengeService:
    """Peer-vs-peer challenges: negotiation, funding and settlement."""

    def __init__(
        self,
        session_factory: sessionmaker,
        ledger: WalletLedger,
        competitions: CompetitionService,
        execution: ExecutionService,
        betting: BettingService,
        config: Optional[SettlementConfig] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        self._session_factory = session_factory
        self._ledger = ledger
        self._competitions = competitions
        self._execution = execution
        self._betting = betting
        self._config = config or SettlementConfig()
        self._clock = clock or ClockFactory.get_clock()

    # --------------------------------------------------------
    # NEGOTIATION
    # --------------------------------------------------------

    def create_challenge(self, challenger_id: str, invitee_id: str, terms: ChallengeTerms) -> ChallengeResult:
        def create(s: Session) -> ChallengeResult:
            if challenger_id == invitee_id:
                raise ValidationError("Cannot challenge yourself", field_name="invitee_id", value=invitee_id)
            terms.validate()

            now = self._clock.now()
            model = PvpChallengeModel(
                challenger_id=challenger_id,
                invitee_id=invitee_id,
                status=ChallengeStatus.PENDING,
                terms_version=1,
                proposed_by=challenger_id,
                created_at=now,
                updated_at=now,
            )
            self._apply_terms(model, terms)
            repo = SettlementRepository(s)
            repo.add(model)
            logger.info(
                f"Challenge created | id={model.id} challenger={challenger_id} "
                f"invitee={invitee_id} stake={model.stake_tokens}"
            )
            return ChallengeResult(success=True, challenge=repo.model_to_challenge(model))

        return self._run("create_challenge", challenger_id, create)

    def propose_terms(self, challenge_id: str, user_id: str, terms: ChallengeTerms) -> ChallengeResult:
        """Counter-propose. Bumps the terms version and clears both acceptances."""
        def propose(s: Session) -> ChallengeResult:
            repo = SettlementRepository(s)
            challenge = self._lock_challenge(repo, challenge_id)
            self._require_participant(challenge, user_id)
            self._require_negotiable(challenge)
            TransitionGuard.require(challenge.status, ChallengeStatus.NEGOTIATING, challenge_id)
            terms.validate()

            self._apply_terms(challenge, terms)
            challenge.terms_version += 1
            challenge.proposed_by = user_id
            challenge.challenger_accepted = False
            challenge.invitee_accepted = False
            challenge.challenger_accepted_version = None
            challenge.invitee_accepted_version = None
            challenge.status = ChallengeStatus.NEGOTIATING
            challenge.updated_at = self._clock.now()
            s.flush()

            logger.info(f"Challenge {challenge_id} terms v{challenge.terms_version} proposed by {user_id}")
            return ChallengeResult(success=True, challenge=repo.model_to_challenge(challenge))

        return self._run("propose_terms", challenge_id, propose)

    def accept_terms(self, challenge_id: str, user_id: str, terms_version: int) -> ChallengeResult:
        """
        Accept one terms snapshot.

        Fails with TERMS_CHANGED if the snapshot is stale. The
        challenge becomes ACCEPTED once both sides accepted the
        current version.
        """
        def accept(s: Session) -> ChallengeResult:
            repo = SettlementRepository(s)
            challenge = self._lock_challenge(repo, challenge_id)
            self._require_participant(challenge, user_id)
            self._require_negotiable(challenge)

            if terms_version != challenge.terms_version:
                raise StateConflictError(
                    "Terms changed since they were viewed",
                    current_state=challenge.status.value,
                    code="TERMS_CHANGED",
                    context={"current_version": challenge.terms_version},
                )

            now = self._clock.now()
            if user_id == challenge.challenger_id:
                challenge.challenger_accepted = True
                challenge.challenger_accepted_version = terms_version
            else:
                challenge.invitee_accepted = True
                challenge.invitee_accepted_version = terms_version

            both = (
                challenge.challenger_accepted
                and challenge.invitee_accepted
                and challenge.challenger_accepted_version == challenge.invitee_accepted_version == terms_version
            )
            if both:
                TransitionGuard.require(challenge.status, ChallengeStatus.ACCEPTED, challenge_id)
                challenge.status = ChallengeStatus.ACCEPTED
                challenge.accepted_at = now
                logger.info(f"Challenge {challenge_id} accepted at terms v{terms_version}")
            elif challenge.status == ChallengeStatus.NEGOTIATING:
                challenge.status = ChallengeStatus.PENDING

            challenge.updated_at = now
            s.flush()
            return ChallengeResult(success=True, challenge=repo.model_to_challenge(challenge))

        return self._run("accept_terms", challenge_id, accept)

    # --------------------------------------------------------
    # FUNDING
    # --------------------------------------------------------

    def fund_challenge(self, challenge_id: str, user_id: str) -> ChallengeResult:
        """
        Lock the user's stake.

        The second funding activates the challenge: the private
        competition and both entries are created in the same
        transaction, and a bet market opens when betting is enabled.
        """
        def fund(s: Session) -> ChallengeResult:
            repo = SettlementRepository(s)
            challenge = self._lock_challenge(repo, challenge_id)
            self._require_participant(challenge, user_id)

            is_challenger = user_id == challenge.challenger_id
            already = challenge.challenger_funded if is_challenger else challenge.invitee_funded
            if already and challenge.status in (ChallengeStatus.PAYMENT_PENDING, ChallengeStatus.ACTIVE):
                return ChallengeResult(success=True, challenge=repo.model_to_challenge(challenge))

            if challenge.status not in (ChallengeStatus.ACCEPTED, ChallengeStatus.PAYMENT_PENDING):
                raise StateConflictError(
                    "Challenge is not awaiting payment",
                    current_state=challenge.status.value,
                    code="INVALID_TRANSITION",
                )

            self._ledger.lock_tokens(
                user_id,
                challenge.stake_tokens,
                kind=TransactionKind.STAKE_LOCK,
                reference=LedgerReference(ReferenceType.PVP_CHALLENGE, challenge_id),
                session=s,
            )
            if is_challenger:
                challenge.challenger_funded = True
            else:
                challenge.invitee_funded = True
            challenge.updated_at = self._clock.now()

            if challenge.challenger_funded and challenge.invitee_funded:
                self._activate(s, challenge)
            else:
                TransitionGuard.require(challenge.status, ChallengeStatus.PAYMENT_PENDING, challenge_id)
                challenge.status = ChallengeStatus.PAYMENT_PENDING
            s.flush()

            logger.info(f"Challenge {challenge_id} funded by {user_id} | status={challenge.status.value}")
            return ChallengeResult(success=True, challenge=repo.model_to_challenge(challenge))

        return self._run("fund_challenge", challenge_id, fund)

    def cancel_challenge(self, challenge_id: str, user_id: str) -> ChallengeResult:
        """Cancel before the match starts. Locked stakes are released."""
        def cancel(s: Session) -> ChallengeResult:
            repo = SettlementRepository(s)
            challenge = self._lock_challenge(repo, challenge_id)
            self._require_participant(challenge, user_id)
            if challenge.status == ChallengeStatus.CANCELLED:
                return ChallengeResult(success=True, challenge=repo.model_to_challenge(challenge))
            TransitionGuard.require(challenge.status, ChallengeStatus.CANCELLED, challenge_id)

            reference = LedgerReference(ReferenceType.PVP_CHALLENGE, challenge_id)
            for participant, funded in (
                (challenge.challenger_id, challenge.challenger_funded),
                (challenge.invitee_id, challenge.invitee_funded),
            ):
                if funded:
                    self._release_stake(s, participant, challenge.stake_tokens, reference, "cancelled")

            self._betting.void_match_bets(challenge_id, session=s)

            now = self._clock.now()
            challenge.status = ChallengeStatus.CANCELLED
            challenge.completed_at = now
            challenge.updated_at = now
            s.flush()

            logger.info(f"Challenge {challenge_id} cancelled by {user_id}")
            return ChallengeResult(success=True, challenge=repo.model_to_challenge(challenge))

        return self._run("cancel_challenge", challenge_id, cancel)

    # --------------------------------------------------------
    # SETTLEMENT
    # --------------------------------------------------------

    def settle_challenge(self, challenge_id: str) -> ChallengeResult:
        """
        Decide and pay out an active challenge exactly once.

        Both entries are marked to market; the higher equity wins.
        A disqualified entry loses to one that is not. A completed
        challenge is a success no-op.
        """
        def settle(s: Session) -> ChallengeResult:
            repo = SettlementRepository(s)
            challenge = self._lock_challenge(repo, challenge_id)

            if challenge.status == ChallengeStatus.COMPLETED:
                logger.info(f"Challenge {challenge_id} already settled, skipping")
                return ChallengeResult(
                    success=True,
                    challenge=repo.model_to_challenge(challenge),
                    winner_id=challenge.winner_id,
                    already_settled=True,
                )
            TransitionGuard.require(challenge.status, ChallengeStatus.COMPLETED, challenge_id)

            winner_id, loser_id = self._decide(s, challenge)
            reference = LedgerReference(ReferenceType.PVP_CHALLENGE, challenge_id)
            stake = challenge.stake_tokens
            payout = rake = 0

            if winner_id is None:
                for participant in (challenge.challenger_id, challenge.invitee_id):
                    self._release_stake(s, participant, stake, reference, "tie")
                self._betting.void_match_bets(challenge_id, session=s)
            else:
                split = compute_pvp_split(stake, challenge.rake_bps)
                payout, rake = split.winner_credit, split.rake_tokens

                self._ledger.unlock_and_deduct_tokens(
                    loser_id,
                    stake,
                    kind=TransactionKind.STAKE_FORFEIT,
                    reference=reference,
                    metadata={"winner_id": winner_id},
                    session=s,
                )
                self._release_stake(s, winner_id, stake, reference, "won")
                if payout > 0:
                    self._ledger.apply_token_transaction(
                        winner_id,
                        TransactionKind.PVP_PAYOUT,
                        payout,
                        reference=reference,
                        metadata={"pool": split.pool, "rake": rake},
                        session=s,
                    )
                if rake > 0:
                    house = self._config.house_user_id
                    self._ledger.get_or_create_wallet(house, session=s)
                    self._ledger.apply_token_transaction(
                        house,
                        TransactionKind.RAKE_FEE,
                        rake,
                        reference=reference,
                        metadata={"pool": split.pool},
                        session=s,
                    )
                self._betting.settle_match_bets(challenge_id, winner_id, session=s)

            if challenge.competition_id:
                self._competitions.set_status(challenge.competition_id, CompetitionStatus.ENDED, session=s)

            now = self._clock.now()
            challenge.status = ChallengeStatus.COMPLETED
            challenge.winner_id = winner_id
            challenge.completed_at = now
            challenge.updated_at = now
            s.flush()

            logger.info(
                f"Challenge {challenge_id} settled | winner={winner_id} payout={payout} rake={rake}"
            )
            return ChallengeResult(
                success=True,
                challenge=repo.model_to_challenge(challenge),
                winner_id=winner_id,
                payout_tokens=payout,
                rake_tokens=rake,
            )

        return self._run("settle_challenge", challenge_id, settle)

    def get_challenge(self, challenge_id: str) -> Optional[ChallengeRecord]:
        with self._session_factory() as session:
            model = SettlementRepository(session).get_challenge(challenge_id)
            return SettlementRepository.model_to_challenge(model) if model else None

    # --------------------------------------------------------
    # INTERNAL
    # --------------------------------------------------------

    def _run(self, operation: str, ref_id: str, fn: Callable[[Session], ChallengeResult]) -> ChallengeResult:
        try:
            with transaction_scope(self._session_factory) as session:
                return fn(session)
        except ArenaError as e:
            logger.warning(f"{operation} rejected for {ref_id}: {e.code} {e.message}")
            return ChallengeResult(success=False, error=e.to_detail())
        except DatabasePersistenceError as e:
            logger.error(f"{operation} failed for {ref_id}: {e}", exc_info=True)
            return ChallengeResult(success=False, error=to_error_detail(e))

    def _activate(self, s: Session, challenge: PvpChallengeModel) -> None:
        """Create the private competition and both entries, exactly once."""
        TransitionGuard.require(challenge.status, ChallengeStatus.ACTIVE, challenge.id)
        if challenge.competition_id is not None:
            raise LedgerIntegrityError(
                "Challenge already has a competition",
                context={"challenge_id": challenge.id, "competition_id": challenge.competition_id},
            )

        now = self._clock.now()
        created = self._competitions.create_competition(
            title=f"PvP {challenge.challenger_id} vs {challenge.invitee_id}",
            starting_balance_cents=challenge.starting_balance_cents,
            allowed_pairs=list(challenge.allowed_pairs or []),
            rake_bps=challenge.rake_bps,
            status=CompetitionStatus.RUNNING,
            kind=CompetitionKind.PVP,
            start_at=now,
            end_at=now + timedelta(minutes=challenge.duration_minutes),
            session=s,
        )
        competition = created.competition
        for participant in (challenge.challenger_id, challenge.invitee_id):
            self._competitions.create_entry(s, competition.id, competition.starting_balance_cents, participant)

        challenge.competition_id = competition.id
        challenge.status = ChallengeStatus.ACTIVE
        challenge.started_at = now

        if self._betting.enabled:
            self._betting.create_market_for_match(challenge.id, session=s)

        logger.info(f"Challenge {challenge.id} active | competition={competition.id}")

    def _decide(self, s: Session, challenge: PvpChallengeModel):
        """Return (winner_id, loser_id), both None on a tie."""
        snapshots = {}
        for participant in (challenge.challenger_id, challenge.invitee_id):
            snapshot = self._execution.refresh_entry_equity(challenge.competition_id, participant, session=s)
            if snapshot is None:
                raise NotFoundError(
                    "Challenge entry not found",
                    code="ENTRY_NOT_FOUND",
                    context={"competition_id": challenge.competition_id, "user_id": participant},
                )
            snapshots[participant] = snapshot

        a = snapshots[challenge.challenger_id]
        b = snapshots[challenge.invitee_id]
        key_a = (not a.dq, a.equity_cents)
        key_b = (not b.dq, b.equity_cents)
        if key_a == key_b:
            return None, None
        if key_a > key_b:
            return challenge.challenger_id, challenge.invitee_id
        return challenge.invitee_id, challenge.challenger_id

    def _release_stake(self, s: Session, user_id: str, amount: int, reference: LedgerReference, reason: str) -> None:
        self._ledger.unlock_tokens(
            user_id,
            amount,
            kind=TransactionKind.STAKE_RELEASE,
            reference=reference,
            metadata={"reason": reason},
            session=s,
        )

    def _apply_terms(self, model: PvpChallengeModel, terms: ChallengeTerms) -> None:
        model.stake_tokens = terms.stake_tokens
        model.starting_balance_cents = terms.starting_balance_cents
        model.allowed_pairs = list(terms.allowed_pairs)
        model.duration_minutes = terms.duration_minutes
        rake_bps = self._config.pvp_rake_bps if terms.rake_bps is None else terms.rake_bps
        if not 0 <= rake_bps <= MAX_PVP_RAKE_BPS:
            raise ValidationError(f"Rake must be between 0 and {MAX_PVP_RAKE_BPS} bps",
                                  field_name="rake_bps", value=rake_bps)
        model.rake_bps = rake_bps

    @staticmethod
    def _lock_challenge(repo: SettlementRepository, challenge_id: str) -> PvpChallengeModel:
        challenge = repo.get_challenge(challenge_id, for_update=True)
        if challenge is None:
            raise NotFoundError("Challenge not found", code="CHALLENGE_NOT_FOUND", record_id=challenge_id)
        return challenge

    @staticmethod
    def _require_participant(challenge: PvpChallengeModel, user_id: str) -> None:
        if user_id not in (challenge.challenger_id, challenge.invitee_id):
            raise ValidationError(
                f"{user_id} is not a participant of this challenge",
                code="NOT_A_PARTICIPANT",
                field_name="user_id",
                value=user_id,
            )

    @staticmethod
    def _require_negotiable(challenge: PvpChallengeModel) -> None:
        if challenge.status not in (ChallengeStatus.PENDING, ChallengeStatus.NEGOTIATING):
            raise StateConflictError(
                "Terms can only change while the challenge is pending",
                current_state=challenge.status.value,
                code="INVALID_TRANSITION",
            )
