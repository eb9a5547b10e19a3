"""
Settlement - Repository.

Row access for bet markets, bets and peer challenges. Runs
inside the caller's session and never commits.
"""

from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from core.clock import ensure_utc
from database.enums import BetStatus
from database.models import BetMarketModel, BetModel, PvpChallengeModel

from .types import BetRecord, ChallengeRecord, MarketRecord


class SettlementRepository:
    """Repository for markets, bets and challenges."""

    def __init__(self, session: Session):
        self._session = session

    def add(self, model) -> None:
        self._session.add(model)
        self._session.flush()

    # --------------------------------------------------------
    # MARKETS
    # --------------------------------------------------------

    def get_market(self, market_id: str, for_update: bool = False) -> Optional[BetMarketModel]:
        stmt = select(BetMarketModel).where(BetMarketModel.id == market_id)
        if for_update:
            stmt = stmt.with_for_update()
        return self._session.execute(stmt).scalar_one_or_none()

    def get_market_by_match(self, match_id: str, for_update: bool = False) -> Optional[BetMarketModel]:
        stmt = select(BetMarketModel).where(BetMarketModel.match_id == match_id)
        if for_update:
            stmt = stmt.with_for_update()
        return self._session.execute(stmt).scalar_one_or_none()

    # --------------------------------------------------------
    # BETS
    # --------------------------------------------------------

    def list_bets(self, market_id: str, status: Optional[BetStatus] = None) -> List[BetModel]:
        stmt = select(BetModel).where(BetModel.market_id == market_id)
        if status is not None:
            stmt = stmt.where(BetModel.status == status)
        stmt = stmt.order_by(BetModel.created_at, BetModel.id)
        return list(self._session.execute(stmt).scalars())

    def sum_placed_by_bettor(self, market_id: str, bettor_id: str) -> int:
        stmt = select(func.coalesce(func.sum(BetModel.amount_tokens), 0)).where(
            BetModel.market_id == market_id,
            BetModel.bettor_id == bettor_id,
            BetModel.status == BetStatus.PLACED,
        )
        return int(self._session.execute(stmt).scalar_one())

    # --------------------------------------------------------
    # CHALLENGES
    # --------------------------------------------------------

    def get_challenge(self, challenge_id: str, for_update: bool = False) -> Optional[PvpChallengeModel]:
        stmt = select(PvpChallengeModel).where(PvpChallengeModel.id == challenge_id)
        if for_update:
            stmt = stmt.with_for_update()
        return self._session.execute(stmt).scalar_one_or_none()

    # --------------------------------------------------------
    # CONVERTERS
    # --------------------------------------------------------

    @staticmethod
    def model_to_market(model: BetMarketModel) -> MarketRecord:
        return MarketRecord(
            id=model.id,
            match_id=model.match_id,
            status=model.status,
            rake_bps=model.rake_bps,
            min_bet_tokens=model.min_bet_tokens,
            max_bet_tokens_per_user=model.max_bet_tokens_per_user,
            winner_user_id=model.winner_user_id,
            open_at=ensure_utc(model.open_at),
            close_at=ensure_utc(model.close_at),
            settled_at=ensure_utc(model.settled_at),
        )

    @staticmethod
    def model_to_bet(model: BetModel) -> BetRecord:
        return BetRecord(
            id=model.id,
            market_id=model.market_id,
            bettor_id=model.bettor_id,
            pick_user_id=model.pick_user_id,
            amount_tokens=model.amount_tokens,
            status=model.status,
            payout_tokens=model.payout_tokens,
            created_at=ensure_utc(model.created_at),
            settled_at=ensure_utc(model.settled_at),
        )

    @staticmethod
    def model_to_challenge(model: PvpChallengeModel) -> ChallengeRecord:
        return ChallengeRecord(
            id=model.id,
            challenger_id=model.challenger_id,
            invitee_id=model.invitee_id,
            status=model.status,
            stake_tokens=model.stake_tokens,
            rake_bps=model.rake_bps,
            starting_balance_cents=model.starting_balance_cents,
            allowed_pairs=list(model.allowed_pairs or []),
            duration_minutes=model.duration_minutes,
            terms_version=model.terms_version,
            proposed_by=model.proposed_by,
            challenger_accepted=model.challenger_accepted,
            invitee_accepted=model.invitee_accepted,
            challenger_funded=model.challenger_funded,
            invitee_funded=model.invitee_funded,
            competition_id=model.competition_id,
            winner_id=model.winner_id,
            created_at=ensure_utc(model.created_at),
            started_at=ensure_utc(model.started_at),
            completed_at=ensure_utc(model.completed_at),
        )
