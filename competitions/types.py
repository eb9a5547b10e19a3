"""
Competitions - Types.

Records and results for competitions, entries and leaderboards.
Money in integer cents, percentages as Decimal.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from core.clock import from_iso8601, to_iso8601
from core.exceptions import ErrorDetail
from database.enums import CompetitionKind, CompetitionStatus, PaymentStatus


def _dec(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


def _to_dec(value: Optional[str]) -> Optional[Decimal]:
    return Decimal(value) if value is not None else None


@dataclass
class CompetitionRecord:
    """A trading competition."""

    id: str
    title: str
    status: CompetitionStatus
    kind: CompetitionKind
    entry_fee_tokens: int
    starting_balance_cents: int
    allowed_pairs: List[str]
    spread_markup_pips: Decimal
    max_slippage_pips: Decimal
    max_drawdown_pct: Optional[Decimal] = None
    """Entries whose draw-down exceeds this are disqualified."""

    rake_bps: int = 0
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "status": self.status.value,
            "kind": self.kind.value,
            "entry_fee_tokens": self.entry_fee_tokens,
            "starting_balance_cents": self.starting_balance_cents,
            "allowed_pairs": list(self.allowed_pairs),
            "spread_markup_pips": str(self.spread_markup_pips),
            "max_slippage_pips": str(self.max_slippage_pips),
            "max_drawdown_pct": _dec(self.max_drawdown_pct),
            "rake_bps": self.rake_bps,
            "start_at": to_iso8601(self.start_at),
            "end_at": to_iso8601(self.end_at),
            "created_at": to_iso8601(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CompetitionRecord":
        return cls(
            id=data["id"],
            title=data["title"],
            status=CompetitionStatus(data["status"]),
            kind=CompetitionKind(data["kind"]),
            entry_fee_tokens=int(data["entry_fee_tokens"]),
            starting_balance_cents=int(data["starting_balance_cents"]),
            allowed_pairs=list(data.get("allowed_pairs", [])),
            spread_markup_pips=Decimal(data["spread_markup_pips"]),
            max_slippage_pips=Decimal(data["max_slippage_pips"]),
            max_drawdown_pct=_to_dec(data.get("max_drawdown_pct")),
            rake_bps=int(data.get("rake_bps", 0)),
            start_at=from_iso8601(data.get("start_at")),
            end_at=from_iso8601(data.get("end_at")),
            created_at=from_iso8601(data.get("created_at")),
        )


@dataclass
class EntryRecord:
    """One user's participation in a competition."""

    id: str
    competition_id: str
    user_id: str
    cash_cents: int
    equity_cents: int
    max_equity_cents: int
    max_drawdown_pct: Decimal = Decimal("0")
    dq: bool = False
    dq_reason: Optional[str] = None
    payment_status: PaymentStatus = PaymentStatus.PENDING
    paid_tokens: int = 0
    joined_at: Optional[datetime] = None
    last_order_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "competition_id": self.competition_id,
            "user_id": self.user_id,
            "cash_cents": self.cash_cents,
            "equity_cents": self.equity_cents,
            "max_equity_cents": self.max_equity_cents,
            "max_drawdown_pct": str(self.max_drawdown_pct),
            "dq": self.dq,
            "dq_reason": self.dq_reason,
            "payment_status": self.payment_status.value,
            "paid_tokens": self.paid_tokens,
            "joined_at": to_iso8601(self.joined_at),
            "last_order_at": to_iso8601(self.last_order_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EntryRecord":
        return cls(
            id=data["id"],
            competition_id=data["competition_id"],
            user_id=data["user_id"],
            cash_cents=int(data["cash_cents"]),
            equity_cents=int(data["equity_cents"]),
            max_equity_cents=int(data["max_equity_cents"]),
            max_drawdown_pct=Decimal(data.get("max_drawdown_pct", "0")),
            dq=bool(data.get("dq", False)),
            dq_reason=data.get("dq_reason"),
            payment_status=PaymentStatus(data.get("payment_status", PaymentStatus.PENDING.value)),
            paid_tokens=int(data.get("paid_tokens", 0)),
            joined_at=from_iso8601(data.get("joined_at")),
            last_order_at=from_iso8601(data.get("last_order_at")),
        )


@dataclass
class LeaderboardEntry:
    """One ranked row."""

    rank: int
    user_id: str
    equity_cents: int
    cash_cents: int
    return_pct: Decimal
    """(equity - starting) / starting x 100."""

    max_drawdown_pct: Decimal
    dq: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rank": self.rank,
            "user_id": self.user_id,
            "equity_cents": self.equity_cents,
            "cash_cents": self.cash_cents,
            "return_pct": str(self.return_pct),
            "max_drawdown_pct": str(self.max_drawdown_pct),
            "dq": self.dq,
        }


@dataclass
class CompetitionResult:
    success: bool
    error: Optional[ErrorDetail] = None
    competition: Optional[CompetitionRecord] = None


@dataclass
class JoinResult:
    """Result of joining a competition."""

    success: bool
    error: Optional[ErrorDetail] = None
    entry: Optional[EntryRecord] = None
    already_joined: bool = False


__all__ = [
    "CompetitionRecord",
    "EntryRecord",
    "LeaderboardEntry",
    "CompetitionResult",
    "JoinResult",
]
