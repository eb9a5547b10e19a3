"""
Execution Engine - Repository.

============================================================
PURPOSE
============================================================
Database operations for execution persistence.

RESPONSIBILITIES:
- Load competitions and entries (entry row locked per fill)
- Save/load positions, trades and deals
- Convert models to records

Runs inside the caller's session and never commits.

============================================================
"""

import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from core.clock import ensure_utc
from database.models import (
    CompetitionModel,
    DealModel,
    EntryModel,
    PositionModel,
    TradeModel,
)

from .types import DealRecord, PositionRecord, TradeRecord

logger = logging.getLogger(__name__)


class ExecutionRepository:
    """Repository for execution data."""

    def __init__(self, session: Session):
        self._session = session

    # --------------------------------------------------------
    # COMPETITIONS / ENTRIES
    # --------------------------------------------------------

    def get_competition(self, competition_id: str) -> Optional[CompetitionModel]:
        return self._session.get(CompetitionModel, competition_id)

    def get_entry(
        self,
        competition_id: str,
        user_id: str,
        for_update: bool = False,
    ) -> Optional[EntryModel]:
        stmt = select(EntryModel).where(
            EntryModel.competition_id == competition_id,
            EntryModel.user_id == user_id,
        )
        if for_update:
            stmt = stmt.with_for_update()
        return self._session.execute(stmt).scalar_one_or_none()

    # --------------------------------------------------------
    # POSITIONS
    # --------------------------------------------------------

    def get_position(self, competition_id: str, user_id: str, pair: str) -> Optional[PositionModel]:
        stmt = select(PositionModel).where(
            PositionModel.competition_id == competition_id,
            PositionModel.user_id == user_id,
            PositionModel.pair == pair,
        ).with_for_update()
        return self._session.execute(stmt).scalar_one_or_none()

    def get_position_by_id(
        self,
        competition_id: str,
        user_id: str,
        position_id: str,
        for_update: bool = False,
    ) -> Optional[PositionModel]:
        """Resolve a position only if it belongs to (competition, user)."""
        stmt = select(PositionModel).where(
            PositionModel.id == position_id,
            PositionModel.competition_id == competition_id,
            PositionModel.user_id == user_id,
        )
        if for_update:
            stmt = stmt.with_for_update()
        return self._session.execute(stmt).scalar_one_or_none()

    def list_positions(self, competition_id: str, user_id: str) -> List[PositionModel]:
        stmt = (
            select(PositionModel)
            .where(
                PositionModel.competition_id == competition_id,
                PositionModel.user_id == user_id,
            )
            .order_by(PositionModel.opened_at, PositionModel.pair)
        )
        return list(self._session.execute(stmt).scalars())

    def add(self, model) -> None:
        """Insert a row and flush so dependent rows can reference it."""
        self._session.add(model)
        self._session.flush()

    def delete_position(self, position: PositionModel) -> None:
        # Flushed immediately so a replacement for the same pair can be inserted
        self._session.delete(position)
        self._session.flush()

    # --------------------------------------------------------
    # TRADES / DEALS
    # --------------------------------------------------------

    def get_trade(self, trade_id: str) -> Optional[TradeModel]:
        return self._session.get(TradeModel, trade_id)

    def list_trades(self, competition_id: str, user_id: str) -> List[TradeModel]:
        stmt = (
            select(TradeModel)
            .where(
                TradeModel.competition_id == competition_id,
                TradeModel.user_id == user_id,
            )
            .order_by(TradeModel.opened_at, TradeModel.id)
        )
        return list(self._session.execute(stmt).scalars())

    def list_deals(self, competition_id: str, user_id: str) -> List[DealModel]:
        stmt = (
            select(DealModel)
            .where(
                DealModel.competition_id == competition_id,
                DealModel.user_id == user_id,
            )
            .order_by(DealModel.created_at, DealModel.seq)
        )
        return list(self._session.execute(stmt).scalars())

    # --------------------------------------------------------
    # CONVERTERS
    # --------------------------------------------------------

    @staticmethod
    def model_to_position(model: PositionModel) -> PositionRecord:
        return PositionRecord(
            id=model.id,
            competition_id=model.competition_id,
            user_id=model.user_id,
            pair=model.pair,
            trade_id=model.trade_id,
            side=model.side,
            quantity_units=model.quantity_units,
            avg_entry_price=model.avg_entry_price,
            stop_loss_price=model.stop_loss_price,
            take_profit_price=model.take_profit_price,
            realized_pnl_cents=model.realized_pnl_cents,
            opened_at=ensure_utc(model.opened_at),
            updated_at=ensure_utc(model.updated_at),
        )

    @staticmethod
    def model_to_trade(model: TradeModel) -> TradeRecord:
        return TradeRecord(
            id=model.id,
            competition_id=model.competition_id,
            user_id=model.user_id,
            pair=model.pair,
            side_initial=model.side_initial,
            total_in_units=model.total_in_units,
            total_out_units=model.total_out_units,
            avg_entry_price=model.avg_entry_price,
            avg_exit_price=model.avg_exit_price,
            realized_pnl_cents=model.realized_pnl_cents,
            status=model.status,
            opened_at=ensure_utc(model.opened_at),
            closed_at=ensure_utc(model.closed_at),
        )

    @staticmethod
    def model_to_deal(model: DealModel) -> DealRecord:
        return DealRecord(
            id=model.id,
            trade_id=model.trade_id,
            competition_id=model.competition_id,
            user_id=model.user_id,
            pair=model.pair,
            side=model.side,
            units=model.units,
            lots=model.lots,
            price=model.price,
            kind=model.kind,
            realized_pnl_cents=model.realized_pnl_cents,
            created_at=ensure_utc(model.created_at),
        )
