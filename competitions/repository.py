"""
Competitions - Repository.

Row access for competitions and entries. Runs inside the
caller's session and never commits.
"""

from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from core.clock import ensure_utc
from database.enums import PaymentStatus
from database.models import CompetitionModel, EntryModel

from .types import CompetitionRecord, EntryRecord


class CompetitionRepository:
    """Repository for competitions and their entries."""

    def __init__(self, session: Session):
        self._session = session

    def add(self, model) -> None:
        self._session.add(model)
        self._session.flush()

    def get_competition(self, competition_id: str, for_update: bool = False) -> Optional[CompetitionModel]:
        stmt = select(CompetitionModel).where(CompetitionModel.id == competition_id)
        if for_update:
            stmt = stmt.with_for_update()
        return self._session.execute(stmt).scalar_one_or_none()

    def list_competitions(self) -> List[CompetitionModel]:
        stmt = select(CompetitionModel).order_by(CompetitionModel.created_at, CompetitionModel.id)
        return list(self._session.execute(stmt).scalars())

    def get_entry(self, competition_id: str, user_id: str) -> Optional[EntryModel]:
        stmt = select(EntryModel).where(
            EntryModel.competition_id == competition_id,
            EntryModel.user_id == user_id,
        )
        return self._session.execute(stmt).scalar_one_or_none()

    def list_entries(self, competition_id: str, paid_only: bool = False) -> List[EntryModel]:
        stmt = select(EntryModel).where(EntryModel.competition_id == competition_id)
        if paid_only:
            stmt = stmt.where(EntryModel.payment_status == PaymentStatus.SUCCEEDED)
        stmt = stmt.order_by(EntryModel.joined_at, EntryModel.id)
        return list(self._session.execute(stmt).scalars())

    @staticmethod
    def model_to_competition(model: CompetitionModel) -> CompetitionRecord:
        return CompetitionRecord(
            id=model.id,
            title=model.title,
            status=model.status,
            kind=model.kind,
            entry_fee_tokens=model.entry_fee_tokens,
            starting_balance_cents=model.starting_balance_cents,
            allowed_pairs=list(model.allowed_pairs or []),
            spread_markup_pips=model.spread_markup_pips,
            max_slippage_pips=model.max_slippage_pips,
            max_drawdown_pct=model.max_drawdown_pct,
            rake_bps=model.rake_bps,
            start_at=ensure_utc(model.start_at),
            end_at=ensure_utc(model.end_at),
            created_at=ensure_utc(model.created_at),
        )

    @staticmethod
    def model_to_entry(model: EntryModel) -> EntryRecord:
        return EntryRecord(
            id=model.id,
            competition_id=model.competition_id,
            user_id=model.user_id,
            cash_cents=model.cash_cents,
            equity_cents=model.equity_cents,
            max_equity_cents=model.max_equity_cents,
            max_drawdown_pct=model.max_drawdown_pct,
            dq=model.dq,
            dq_reason=model.dq_reason,
            payment_status=model.payment_status,
            paid_tokens=model.paid_tokens,
            joined_at=ensure_utc(model.joined_at),
            last_order_at=ensure_utc(model.last_order_at),
        )
