"""
Persisted status and kind enumerations.

Stored by value. Shared by the ORM models and by the record
types of every service package.
"""

from enum import Enum


# ============================================================
# COMPETITIONS
# ============================================================

class CompetitionStatus(str, Enum):
    """Competition lifecycle."""

    DRAFT = "draft"
    OPEN = "open"
    RUNNING = "running"
    ENDED = "ended"
    CANCELLED = "cancelled"

    def is_terminal(self) -> bool:
        return self in (CompetitionStatus.ENDED, CompetitionStatus.CANCELLED)


class CompetitionKind(str, Enum):
    PUBLIC = "public"
    PVP = "pvp"


class PaymentStatus(str, Enum):
    """Entry-fee payment state of an Entry."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    REFUNDED = "refunded"


# ============================================================
# EXECUTION
# ============================================================

class Side(str, Enum):
    """Order/position side. BUY is long, SELL is short."""

    BUY = "buy"
    SELL = "sell"

    @property
    def opposite(self) -> "Side":
        return Side.SELL if self is Side.BUY else Side.BUY

    @property
    def is_long(self) -> bool:
        return self is Side.BUY


class DealKind(str, Enum):
    """Whether a fill adds to (in) or removes from (out) a trade."""

    IN = "in"
    OUT = "out"


class TradeStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


# ============================================================
# LEDGER
# ============================================================

class TransactionKind(str, Enum):
    """Token transaction kinds."""

    PURCHASE = "purchase"
    COMPETITION_ENTRY = "competition_entry"
    COMPETITION_REFUND = "competition_refund"
    STAKE_LOCK = "stake_lock"
    STAKE_RELEASE = "stake_release"
    STAKE_FORFEIT = "stake_forfeit"
    PVP_PAYOUT = "pvp_payout"
    BET_PLACE = "bet_place"
    BET_REFUND = "bet_refund"
    BET_SETTLE = "bet_settle"
    BET_PAYOUT = "bet_payout"
    RAKE_FEE = "rake_fee"
    MANUAL_ADJUSTMENT = "manual_adjustment"


class ReferenceType(str, Enum):
    """What a token transaction refers to."""

    COMPETITION = "competition"
    PVP_CHALLENGE = "pvp_challenge"
    BET_MARKET = "bet_market"
    BET = "bet"


# ============================================================
# SETTLEMENT
# ============================================================

class BetMarketStatus(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    SETTLED = "SETTLED"
    VOID = "VOID"

    def is_terminal(self) -> bool:
        return self in (BetMarketStatus.SETTLED, BetMarketStatus.VOID)


class BetStatus(str, Enum):
    PLACED = "PLACED"
    SETTLED = "SETTLED"
    REFUNDED = "REFUNDED"


class ChallengeStatus(str, Enum):
    """Peer challenge lifecycle."""

    PENDING = "pending"
    NEGOTIATING = "negotiating"
    ACCEPTED = "accepted"
    PAYMENT_PENDING = "payment_pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    def is_terminal(self) -> bool:
        return self in (ChallengeStatus.COMPLETED, ChallengeStatus.CANCELLED)

    def is_pre_active(self) -> bool:
        return self in (
            ChallengeStatus.PENDING,
            ChallengeStatus.NEGOTIATING,
            ChallengeStatus.ACCEPTED,
            ChallengeStatus.PAYMENT_PENDING,
        )
