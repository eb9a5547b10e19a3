"""
Wallet Ledger - Types.

============================================================
PURPOSE
============================================================
Value types returned by the token ledger.

INVARIANTS:
- 0 <= locked_tokens <= balance_tokens
- available_tokens = balance_tokens - locked_tokens
- Sum of a user's transaction amounts == balance_tokens

============================================================
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from core.clock import from_iso8601, to_iso8601
from core.exceptions import ErrorDetail
from database.enums import ReferenceType, TransactionKind


# ============================================================
# REFERENCES
# ============================================================

@dataclass(frozen=True)
class LedgerReference:
    """What a token transaction refers to."""

    type: ReferenceType
    id: str


# ============================================================
# WALLET
# ============================================================

@dataclass
class WalletInfo:
    """Snapshot of one user's wallet."""

    user_id: str
    """Wallet owner."""

    balance_tokens: int
    """Total tokens owned, including locked."""

    locked_tokens: int
    """Tokens reserved by open stakes and bets."""

    updated_at: Optional[datetime] = None
    """Last mutation time."""

    @property
    def available_tokens(self) -> int:
        return self.balance_tokens - self.locked_tokens

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "balance_tokens": self.balance_tokens,
            "locked_tokens": self.locked_tokens,
            "available_tokens": self.available_tokens,
            "updated_at": to_iso8601(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WalletInfo":
        return cls(
            user_id=data["user_id"],
            balance_tokens=int(data["balance_tokens"]),
            locked_tokens=int(data["locked_tokens"]),
            updated_at=from_iso8601(data.get("updated_at")),
        )


# ============================================================
# TRANSACTIONS
# ============================================================

@dataclass
class TransactionRecord:
    """One append-only ledger row."""

    id: str
    user_id: str
    kind: TransactionKind
    amount_tokens: int
    """Signed. Lock/unlock rows carry 0."""

    reference_type: Optional[str] = None
    reference_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "kind": self.kind.value,
            "amount_tokens": self.amount_tokens,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "metadata": dict(self.metadata),
            "created_at": to_iso8601(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TransactionRecord":
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            kind=TransactionKind(data["kind"]),
            amount_tokens=int(data["amount_tokens"]),
            reference_type=data.get("reference_type"),
            reference_id=data.get("reference_id"),
            metadata=dict(data.get("metadata") or {}),
            created_at=from_iso8601(data.get("created_at")),
        )


# ============================================================
# RESULTS
# ============================================================

@dataclass
class LedgerResult:
    """Outcome of a ledger primitive."""

    success: bool
    """Whether the mutation committed."""

    error: Optional[ErrorDetail] = None
    """Why it did not, when success is False."""

    new_balance: Optional[int] = None
    """Balance after the mutation."""

    new_locked: Optional[int] = None
    """Locked amount after the mutation."""

    transaction_id: Optional[str] = None
    """Ledger row appended by the mutation."""

    @classmethod
    def failure(cls, error: ErrorDetail) -> "LedgerResult":
        return cls(success=False, error=error)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "error": self.error.to_dict() if self.error else None,
            "new_balance": self.new_balance,
            "new_locked": self.new_locked,
            "transaction_id": self.transaction_id,
        }
