"""
Arena ORM Models.

============================================================
PURPOSE
============================================================
SQLAlchemy ORM models for everything the arena core persists.

TABLES:
- competitions / entries: Competition records and per-user entries
- positions / trades / deals: Execution engine state (owned by
  execution_engine)
- wallets / token_transactions: Token ledger (owned by wallet_ledger)
- bet_markets / bets / pvp_challenges: Settlement state (owned by
  settlement)

CONVENTIONS:
- Money is integer cents, tokens integer tokens, sizes integer units
- Prices are Numeric(18, 8)
- Identifiers are string UUIDs; append-only logs also carry an
  autoincrement key that fixes insertion order
- Status/kind columns hold enum values

============================================================
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Type

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from .enums import (
    BetMarketStatus,
    BetStatus,
    ChallengeStatus,
    CompetitionKind,
    CompetitionStatus,
    DealKind,
    PaymentStatus,
    Side,
    TradeStatus,
    TransactionKind,
)


# ============================================================
# BASE
# ============================================================

class Base(DeclarativeBase):
    """Declarative base for all arena models."""

    type_annotation_map = {
        datetime: DateTime(timezone=True),
    }


def new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum(enum_cls: Type) -> SQLEnum:
    """Enum column stored by value in a plain VARCHAR."""
    return SQLEnum(
        enum_cls,
        native_enum=False,
        create_constraint=False,
        length=32,
        values_callable=lambda members: [m.value for m in members],
    )


PRICE = Numeric(18, 8)


# ============================================================
# COMPETITIONS
# ============================================================

class CompetitionModel(Base):
    """A trading competition (public contest or peer challenge match)."""

    __tablename__ = "competitions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[CompetitionStatus] = mapped_column(
        _enum(CompetitionStatus), nullable=False, default=CompetitionStatus.DRAFT, index=True
    )
    kind: Mapped[CompetitionKind] = mapped_column(
        _enum(CompetitionKind), nullable=False, default=CompetitionKind.PUBLIC
    )

    entry_fee_tokens: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    starting_balance_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=10_000_000)
    allowed_pairs: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    spread_markup_pips: Mapped[Decimal] = mapped_column(Numeric(10, 4), nullable=False, default=Decimal("0.5"))
    max_slippage_pips: Mapped[Decimal] = mapped_column(Numeric(10, 4), nullable=False, default=Decimal("1.0"))
    max_drawdown_pct: Mapped[Optional[Decimal]] = mapped_column(Numeric(8, 4))
    rake_bps: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    start_at: Mapped[Optional[datetime]] = mapped_column()
    end_at: Mapped[Optional[datetime]] = mapped_column()
    created_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow, onupdate=_utcnow)


class EntryModel(Base):
    """A user's participation in one competition."""

    __tablename__ = "entries"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    competition_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("competitions.id"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    cash_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    equity_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    max_equity_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    max_drawdown_pct: Mapped[Decimal] = mapped_column(Numeric(8, 4), nullable=False, default=Decimal("0"))
    dq: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    dq_reason: Mapped[Optional[str]] = mapped_column(String(200))

    payment_status: Mapped[PaymentStatus] = mapped_column(
        _enum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING
    )
    paid_tokens: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    joined_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow)
    last_order_at: Mapped[Optional[datetime]] = mapped_column()

    __table_args__ = (
        UniqueConstraint("competition_id", "user_id", name="uq_entry_competition_user"),
    )


# ============================================================
# EXECUTION
# ============================================================

class PositionModel(Base):
    """Net open exposure in one pair. Deleted when reduced to zero."""

    __tablename__ = "positions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    competition_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("competitions.id"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    pair: Mapped[str] = mapped_column(String(16), nullable=False)
    trade_id: Mapped[str] = mapped_column(String(36), ForeignKey("trades.id"), nullable=False)

    side: Mapped[Side] = mapped_column(_enum(Side), nullable=False)
    quantity_units: Mapped[int] = mapped_column(BigInteger, nullable=False)
    avg_entry_price: Mapped[Decimal] = mapped_column(PRICE, nullable=False)
    stop_loss_price: Mapped[Optional[Decimal]] = mapped_column(PRICE)
    take_profit_price: Mapped[Optional[Decimal]] = mapped_column(PRICE)
    realized_pnl_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    opened_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow)

    __table_args__ = (
        UniqueConstraint("competition_id", "user_id", "pair", name="uq_position_competition_user_pair"),
        CheckConstraint("quantity_units > 0", name="ck_position_quantity_positive"),
    )


class TradeModel(Base):
    """Lifecycle of one position from open to full close."""

    __tablename__ = "trades"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    competition_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("competitions.id"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    pair: Mapped[str] = mapped_column(String(16), nullable=False)

    side_initial: Mapped[Side] = mapped_column(_enum(Side), nullable=False)
    total_in_units: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    total_out_units: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    avg_entry_price: Mapped[Decimal] = mapped_column(PRICE, nullable=False)
    avg_exit_price: Mapped[Optional[Decimal]] = mapped_column(PRICE)
    realized_pnl_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    status: Mapped[TradeStatus] = mapped_column(
        _enum(TradeStatus), nullable=False, default=TradeStatus.OPEN
    )

    opened_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow)
    closed_at: Mapped[Optional[datetime]] = mapped_column()

    __table_args__ = (
        Index("ix_trades_competition_user", "competition_id", "user_id"),
    )


class DealModel(Base):
    """Append-only fill record."""

    __tablename__ = "deals"

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(36), unique=True, nullable=False, default=new_id)
    trade_id: Mapped[str] = mapped_column(String(36), ForeignKey("trades.id"), nullable=False, index=True)
    competition_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("competitions.id"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    pair: Mapped[str] = mapped_column(String(16), nullable=False)

    side: Mapped[Side] = mapped_column(_enum(Side), nullable=False)
    units: Mapped[int] = mapped_column(BigInteger, nullable=False)
    lots: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    price: Mapped[Decimal] = mapped_column(PRICE, nullable=False)
    kind: Mapped[DealKind] = mapped_column(_enum(DealKind), nullable=False)
    realized_pnl_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow)

    __table_args__ = (
        Index("ix_deals_competition_user", "competition_id", "user_id"),
    )


# ============================================================
# LEDGER
# ============================================================

class WalletModel(Base):
    """Token balance of one user."""

    __tablename__ = "wallets"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    balance_tokens: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    locked_tokens: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow)

    __table_args__ = (
        CheckConstraint("locked_tokens >= 0", name="ck_wallet_locked_non_negative"),
        CheckConstraint("locked_tokens <= balance_tokens", name="ck_wallet_locked_within_balance"),
    )


class TokenTransactionModel(Base):
    """Append-only token ledger row. Amounts are signed."""

    __tablename__ = "token_transactions"

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(36), unique=True, nullable=False, default=new_id)
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("wallets.user_id"), nullable=False, index=True
    )
    kind: Mapped[TransactionKind] = mapped_column(_enum(TransactionKind), nullable=False)
    amount_tokens: Mapped[int] = mapped_column(BigInteger, nullable=False)
    reference_type: Mapped[Optional[str]] = mapped_column(String(32))
    reference_id: Mapped[Optional[str]] = mapped_column(String(64))
    # "metadata" is reserved on declarative classes
    meta: Mapped[Dict[str, Any]] = mapped_column("metadata", JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow)

    __table_args__ = (
        Index("ix_token_transactions_reference", "reference_type", "reference_id"),
    )


# ============================================================
# SETTLEMENT
# ============================================================

class BetMarketModel(Base):
    """Pari-mutuel market on the outcome of one match."""

    __tablename__ = "bet_markets"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    match_id: Mapped[str] = mapped_column(String(36), unique=True, nullable=False)
    status: Mapped[BetMarketStatus] = mapped_column(
        _enum(BetMarketStatus), nullable=False, default=BetMarketStatus.OPEN
    )
    rake_bps: Mapped[int] = mapped_column(Integer, nullable=False)
    min_bet_tokens: Mapped[int] = mapped_column(BigInteger, nullable=False)
    max_bet_tokens_per_user: Mapped[int] = mapped_column(BigInteger, nullable=False)
    winner_user_id: Mapped[Optional[str]] = mapped_column(String(64))

    open_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow)
    close_at: Mapped[Optional[datetime]] = mapped_column()
    settled_at: Mapped[Optional[datetime]] = mapped_column()


class BetModel(Base):
    """A single stake on one participant of a match."""

    __tablename__ = "bets"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    market_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("bet_markets.id"), nullable=False, index=True
    )
    bettor_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    pick_user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    amount_tokens: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[BetStatus] = mapped_column(
        _enum(BetStatus), nullable=False, default=BetStatus.PLACED
    )
    payout_tokens: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow)
    settled_at: Mapped[Optional[datetime]] = mapped_column()

    __table_args__ = (
        CheckConstraint("amount_tokens > 0", name="ck_bet_amount_positive"),
    )


class PvpChallengeModel(Base):
    """Two-player staked challenge and its negotiated terms."""

    __tablename__ = "pvp_challenges"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    challenger_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    invitee_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    status: Mapped[ChallengeStatus] = mapped_column(
        _enum(ChallengeStatus), nullable=False, default=ChallengeStatus.PENDING, index=True
    )

    # Terms snapshot
    stake_tokens: Mapped[int] = mapped_column(BigInteger, nullable=False)
    rake_bps: Mapped[int] = mapped_column(Integer, nullable=False)
    starting_balance_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    allowed_pairs: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    terms_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    proposed_by: Mapped[str] = mapped_column(String(64), nullable=False)

    # Acceptance / funding
    challenger_accepted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    invitee_accepted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    challenger_accepted_version: Mapped[Optional[int]] = mapped_column(Integer)
    invitee_accepted_version: Mapped[Optional[int]] = mapped_column(Integer)
    challenger_funded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    invitee_funded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Outcome
    competition_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("competitions.id"))
    winner_id: Mapped[Optional[str]] = mapped_column(String(64))

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow)
    accepted_at: Mapped[Optional[datetime]] = mapped_column()
    started_at: Mapped[Optional[datetime]] = mapped_column()
    completed_at: Mapped[Optional[datetime]] = mapped_column()


__all__ = [
    "Base",
    "new_id",
    "CompetitionModel",
    "EntryModel",
    "PositionModel",
    "TradeModel",
    "DealModel",
    "WalletModel",
    "TokenTransactionModel",
    "BetMarketModel",
    "BetModel",
    "PvpChallengeModel",
]
