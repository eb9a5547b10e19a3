"""
Execution Engine - Types.

============================================================
PURPOSE
============================================================
Records and results of the paper-trading execution engine.

- PositionRecord / TradeRecord / DealRecord: persisted state
- ExecutionResult: OUTPUT of every order operation

Sizes are integer units, money integer cents, prices Decimal.

============================================================
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from core.clock import from_iso8601, to_iso8601
from core.errors import ErrorCategory
from core.exceptions import ErrorDetail
from database.enums import DealKind, Side, TradeStatus


# ============================================================
# SENTINEL
# ============================================================

class _Unset:
    """Marker for 'argument not supplied' where None means 'clear'."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


# ============================================================
# ENUMS
# ============================================================

class NettingAction(Enum):
    """How a fill changed the net position."""

    OPEN = "OPEN"
    """No position existed; a new one was opened."""

    INCREASE = "INCREASE"
    """Same-side fill added to the position."""

    REDUCE = "REDUCE"
    """Opposite-side fill smaller than the position."""

    CLOSE = "CLOSE"
    """Opposite-side fill equal to the position."""

    FLIP = "FLIP"
    """Opposite-side fill larger than the position: closed and reopened."""


class ExecutionResultCode(Enum):
    """Execution result codes."""

    SUCCESS = "SUCCESS"
    """Order filled."""

    REJECTED_VALIDATION = "REJECTED_VALIDATION"
    """Bad pair, size or arguments."""

    REJECTED_NOT_FOUND = "REJECTED_NOT_FOUND"
    """Competition, entry or position missing."""

    REJECTED_STATE = "REJECTED_STATE"
    """Competition not running or entry disqualified."""

    FAILED_UPSTREAM = "FAILED_UPSTREAM"
    """No quote available. Retryable."""

    FAILED_INTERNAL = "FAILED_INTERNAL"
    """Storage or unexpected failure."""

    @classmethod
    def from_category(cls, category: ErrorCategory) -> "ExecutionResultCode":
        return _CATEGORY_TO_CODE.get(category, cls.FAILED_INTERNAL)


_CATEGORY_TO_CODE = {
    ErrorCategory.VALIDATION: ExecutionResultCode.REJECTED_VALIDATION,
    ErrorCategory.NOT_FOUND: ExecutionResultCode.REJECTED_NOT_FOUND,
    ErrorCategory.STATE_CONFLICT: ExecutionResultCode.REJECTED_STATE,
    ErrorCategory.INSUFFICIENT_FUNDS: ExecutionResultCode.REJECTED_VALIDATION,
    ErrorCategory.UPSTREAM: ExecutionResultCode.FAILED_UPSTREAM,
    ErrorCategory.INTERNAL: ExecutionResultCode.FAILED_INTERNAL,
}


def _price(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


def _decimal(value: Optional[str]) -> Optional[Decimal]:
    return Decimal(value) if value is not None else None


# ============================================================
# POSITION
# ============================================================

@dataclass
class PositionRecord:
    """Net open exposure in one pair."""

    id: str
    competition_id: str
    user_id: str
    pair: str
    trade_id: str
    """Open trade tracking this position's lifecycle."""

    side: Side
    quantity_units: int
    avg_entry_price: Decimal
    stop_loss_price: Optional[Decimal] = None
    take_profit_price: Optional[Decimal] = None
    realized_pnl_cents: int = 0
    opened_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "competition_id": self.competition_id,
            "user_id": self.user_id,
            "pair": self.pair,
            "trade_id": self.trade_id,
            "side": self.side.value,
            "quantity_units": self.quantity_units,
            "avg_entry_price": _price(self.avg_entry_price),
            "stop_loss_price": _price(self.stop_loss_price),
            "take_profit_price": _price(self.take_profit_price),
            "realized_pnl_cents": self.realized_pnl_cents,
            "opened_at": to_iso8601(self.opened_at),
            "updated_at": to_iso8601(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PositionRecord":
        return cls(
            id=data["id"],
            competition_id=data["competition_id"],
            user_id=data["user_id"],
            pair=data["pair"],
            trade_id=data["trade_id"],
            side=Side(data["side"]),
            quantity_units=int(data["quantity_units"]),
            avg_entry_price=Decimal(data["avg_entry_price"]),
            stop_loss_price=_decimal(data.get("stop_loss_price")),
            take_profit_price=_decimal(data.get("take_profit_price")),
            realized_pnl_cents=int(data.get("realized_pnl_cents", 0)),
            opened_at=from_iso8601(data.get("opened_at")),
            updated_at=from_iso8601(data.get("updated_at")),
        )


# ============================================================
# TRADE
# ============================================================

@dataclass
class TradeRecord:
    """Lifecycle of one position from open to full close."""

    id: str
    competition_id: str
    user_id: str
    pair: str
    side_initial: Side
    total_in_units: int
    total_out_units: int
    avg_entry_price: Decimal
    avg_exit_price: Optional[Decimal] = None
    realized_pnl_cents: int = 0
    status: TradeStatus = TradeStatus.OPEN
    opened_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "competition_id": self.competition_id,
            "user_id": self.user_id,
            "pair": self.pair,
            "side_initial": self.side_initial.value,
            "total_in_units": self.total_in_units,
            "total_out_units": self.total_out_units,
            "avg_entry_price": _price(self.avg_entry_price),
            "avg_exit_price": _price(self.avg_exit_price),
            "realized_pnl_cents": self.realized_pnl_cents,
            "status": self.status.value,
            "opened_at": to_iso8601(self.opened_at),
            "closed_at": to_iso8601(self.closed_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TradeRecord":
        return cls(
            id=data["id"],
            competition_id=data["competition_id"],
            user_id=data["user_id"],
            pair=data["pair"],
            side_initial=Side(data["side_initial"]),
            total_in_units=int(data["total_in_units"]),
            total_out_units=int(data["total_out_units"]),
            avg_entry_price=Decimal(data["avg_entry_price"]),
            avg_exit_price=_decimal(data.get("avg_exit_price")),
            realized_pnl_cents=int(data.get("realized_pnl_cents", 0)),
            status=TradeStatus(data["status"]),
            opened_at=from_iso8601(data.get("opened_at")),
            closed_at=from_iso8601(data.get("closed_at")),
        )


# ============================================================
# DEAL
# ============================================================

@dataclass
class DealRecord:
    """Append-only fill record."""

    id: str
    trade_id: str
    competition_id: str
    user_id: str
    pair: str
    side: Side
    units: int
    lots: Decimal
    price: Decimal
    kind: DealKind
    realized_pnl_cents: int = 0
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "trade_id": self.trade_id,
            "competition_id": self.competition_id,
            "user_id": self.user_id,
            "pair": self.pair,
            "side": self.side.value,
            "units": self.units,
            "lots": str(self.lots),
            "price": str(self.price),
            "kind": self.kind.value,
            "realized_pnl_cents": self.realized_pnl_cents,
            "created_at": to_iso8601(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DealRecord":
        return cls(
            id=data["id"],
            trade_id=data["trade_id"],
            competition_id=data["competition_id"],
            user_id=data["user_id"],
            pair=data["pair"],
            side=Side(data["side"]),
            units=int(data["units"]),
            lots=Decimal(data["lots"]),
            price=Decimal(data["price"]),
            kind=DealKind(data["kind"]),
            realized_pnl_cents=int(data.get("realized_pnl_cents", 0)),
            created_at=from_iso8601(data.get("created_at")),
        )


# ============================================================
# EXECUTION RESULT
# ============================================================

@dataclass
class ExecutionResult:
    """
    Result of an order operation.

    This is the OUTPUT from the Execution Engine. Never raised,
    always returned.
    """

    success: bool
    """Whether the order filled."""

    result_code: ExecutionResultCode
    """Outcome classification."""

    error: Optional[ErrorDetail] = None
    """Why it failed, when success is False."""

    deals: List[DealRecord] = field(default_factory=list)
    """Deals emitted by the fill (two on a flip)."""

    position: Optional[PositionRecord] = None
    """Position after the fill (None when flat)."""

    realized_pnl_cents: int = 0
    """P&L realized by this fill."""

    action: Optional[NettingAction] = None
    """How the fill changed the position."""

    fill_price: Optional[Decimal] = None
    """Price the order filled at."""

    @property
    def deal(self) -> Optional[DealRecord]:
        """Last deal emitted."""
        return self.deals[-1] if self.deals else None

    @classmethod
    def failure(cls, error: ErrorDetail) -> "ExecutionResult":
        return cls(
            success=False,
            result_code=ExecutionResultCode.from_category(error.category),
            error=error,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "result_code": self.result_code.value,
            "error": self.error.to_dict() if self.error else None,
            "deals": [d.to_dict() for d in self.deals],
            "position": self.position.to_dict() if self.position else None,
            "realized_pnl_cents": self.realized_pnl_cents,
            "action": self.action.value if self.action else None,
            "fill_price": _price(self.fill_price),
        }


@dataclass
class EquitySnapshot:
    """Marked-to-market state of one entry."""

    competition_id: str
    user_id: str
    cash_cents: int
    unrealized_pnl_cents: int
    equity_cents: int
    max_equity_cents: int
    drawdown_pct: Decimal
    """Current draw-down from the high-water mark."""

    max_drawdown_pct: Decimal
    """Worst draw-down observed."""

    dq: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "competition_id": self.competition_id,
            "user_id": self.user_id,
            "cash_cents": self.cash_cents,
            "unrealized_pnl_cents": self.unrealized_pnl_cents,
            "equity_cents": self.equity_cents,
            "max_equity_cents": self.max_equity_cents,
            "drawdown_pct": str(self.drawdown_pct),
            "max_drawdown_pct": str(self.max_drawdown_pct),
            "dq": self.dq,
        }


@dataclass
class SLTPResult:
    """Result of a stop-loss/take-profit update."""

    success: bool
    error: Optional[ErrorDetail] = None
    position: Optional[PositionRecord] = None


__all__ = [
    "UNSET",
    "Side",
    "DealKind",
    "TradeStatus",
    "NettingAction",
    "ExecutionResultCode",
    "PositionRecord",
    "TradeRecord",
    "DealRecord",
    "ExecutionResult",
    "EquitySnapshot",
    "SLTPResult",
]
