"""
Settlement - Types.

============================================================
PURPOSE
============================================================
Records and results for bet markets and peer challenges.

- MarketRecord / BetRecord / ChallengeRecord: persisted state
- ChallengeTerms: negotiable snapshot of a challenge
- SettlementResult / ChallengeResult / BetResult: OUTPUTS

Token amounts are integers.

============================================================
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from core.clock import from_iso8601, to_iso8601
from core.exceptions import ErrorDetail, ValidationError
from core.constants import MAX_PVP_RAKE_BPS, is_known_pair
from database.enums import BetMarketStatus, BetStatus, ChallengeStatus


# ============================================================
# BET MARKET
# ============================================================

@dataclass
class MarketRecord:
    """Pari-mutuel market on one peer match."""

    id: str
    match_id: str
    status: BetMarketStatus
    rake_bps: int
    min_bet_tokens: int
    max_bet_tokens_per_user: int
    winner_user_id: Optional[str] = None
    open_at: Optional[datetime] = None
    close_at: Optional[datetime] = None
    settled_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "match_id": self.match_id,
            "status": self.status.value,
            "rake_bps": self.rake_bps,
            "min_bet_tokens": self.min_bet_tokens,
            "max_bet_tokens_per_user": self.max_bet_tokens_per_user,
            "winner_user_id": self.winner_user_id,
            "open_at": to_iso8601(self.open_at),
            "close_at": to_iso8601(self.close_at),
            "settled_at": to_iso8601(self.settled_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MarketRecord":
        return cls(
            id=data["id"],
            match_id=data["match_id"],
            status=BetMarketStatus(data["status"]),
            rake_bps=int(data["rake_bps"]),
            min_bet_tokens=int(data["min_bet_tokens"]),
            max_bet_tokens_per_user=int(data["max_bet_tokens_per_user"]),
            winner_user_id=data.get("winner_user_id"),
            open_at=from_iso8601(data.get("open_at")),
            close_at=from_iso8601(data.get("close_at")),
            settled_at=from_iso8601(data.get("settled_at")),
        )


@dataclass
class BetRecord:
    """One stake on one side of a market."""

    id: str
    market_id: str
    bettor_id: str
    pick_user_id: str
    amount_tokens: int
    status: BetStatus
    payout_tokens: int = 0
    created_at: Optional[datetime] = None
    settled_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "market_id": self.market_id,
            "bettor_id": self.bettor_id,
            "pick_user_id": self.pick_user_id,
            "amount_tokens": self.amount_tokens,
            "status": self.status.value,
            "payout_tokens": self.payout_tokens,
            "created_at": to_iso8601(self.created_at),
            "settled_at": to_iso8601(self.settled_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BetRecord":
        return cls(
            id=data["id"],
            market_id=data["market_id"],
            bettor_id=data["bettor_id"],
            pick_user_id=data["pick_user_id"],
            amount_tokens=int(data["amount_tokens"]),
            status=BetStatus(data["status"]),
            payout_tokens=int(data.get("payout_tokens", 0)),
            created_at=from_iso8601(data.get("created_at")),
            settled_at=from_iso8601(data.get("settled_at")),
        )


@dataclass
class Payout:
    """Settlement outcome of one bet."""

    bet_id: str
    bettor_id: str
    stake_tokens: int
    payout_tokens: int
    """Zero for losing bets."""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bet_id": self.bet_id,
            "bettor_id": self.bettor_id,
            "stake_tokens": self.stake_tokens,
            "payout_tokens": self.payout_tokens,
        }


@dataclass
class PoolStats:
    """Live view of a market's pools."""

    market_id: str
    total_pool: int
    pools: Dict[str, int]
    """Staked tokens per picked user."""

    odds: Dict[str, Decimal]
    """Decimal odds per picked user (total / pool), 0 for an empty pool."""

    bet_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "market_id": self.market_id,
            "total_pool": self.total_pool,
            "pools": dict(self.pools),
            "odds": {k: str(v) for k, v in self.odds.items()},
            "bet_count": self.bet_count,
        }


# ============================================================
# PEER CHALLENGE
# ============================================================

@dataclass
class ChallengeTerms:
    """Negotiable terms of a peer challenge."""

    stake_tokens: int
    starting_balance_cents: int
    allowed_pairs: List[str] = field(default_factory=list)
    duration_minutes: int = 60
    rake_bps: Optional[int] = None
    """None uses the configured PvP rake."""

    def validate(self) -> None:
        """Raise ValidationError on bad terms."""
        if isinstance(self.stake_tokens, bool) or not isinstance(self.stake_tokens, int) or self.stake_tokens <= 0:
            raise ValidationError("Stake must be a positive integer", code="INVALID_AMOUNT",
                                  field_name="stake_tokens", value=self.stake_tokens)
        if self.starting_balance_cents <= 0:
            raise ValidationError("Starting balance must be positive", field_name="starting_balance_cents",
                                  value=self.starting_balance_cents)
        if self.duration_minutes <= 0:
            raise ValidationError("Duration must be positive", field_name="duration_minutes",
                                  value=self.duration_minutes)
        if self.rake_bps is not None and not 0 <= self.rake_bps <= MAX_PVP_RAKE_BPS:
            raise ValidationError(f"Rake must be between 0 and {MAX_PVP_RAKE_BPS} bps",
                                  field_name="rake_bps", value=self.rake_bps)
        for pair in self.allowed_pairs:
            if not is_known_pair(pair):
                raise ValidationError(f"Unknown pair: {pair}", code="INVALID_PAIR", field_name="allowed_pairs",
                                      value=pair)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stake_tokens": self.stake_tokens,
            "starting_balance_cents": self.starting_balance_cents,
            "allowed_pairs": list(self.allowed_pairs),
            "duration_minutes": self.duration_minutes,
            "rake_bps": self.rake_bps,
        }


@dataclass
class ChallengeRecord:
    """Peer challenge with its current terms snapshot."""

    id: str
    challenger_id: str
    invitee_id: str
    status: ChallengeStatus
    stake_tokens: int
    rake_bps: int
    starting_balance_cents: int
    allowed_pairs: List[str]
    duration_minutes: int
    terms_version: int
    proposed_by: str
    challenger_accepted: bool = False
    invitee_accepted: bool = False
    challenger_funded: bool = False
    invitee_funded: bool = False
    competition_id: Optional[str] = None
    winner_id: Optional[str] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def participants(self) -> List[str]:
        return [self.challenger_id, self.invitee_id]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "challenger_id": self.challenger_id,
            "invitee_id": self.invitee_id,
            "status": self.status.value,
            "stake_tokens": self.stake_tokens,
            "rake_bps": self.rake_bps,
            "starting_balance_cents": self.starting_balance_cents,
            "allowed_pairs": list(self.allowed_pairs),
            "duration_minutes": self.duration_minutes,
            "terms_version": self.terms_version,
            "proposed_by": self.proposed_by,
            "challenger_accepted": self.challenger_accepted,
            "invitee_accepted": self.invitee_accepted,
            "challenger_funded": self.challenger_funded,
            "invitee_funded": self.invitee_funded,
            "competition_id": self.competition_id,
            "winner_id": self.winner_id,
            "created_at": to_iso8601(self.created_at),
            "started_at": to_iso8601(self.started_at),
            "completed_at": to_iso8601(self.completed_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChallengeRecord":
        return cls(
            id=data["id"],
            challenger_id=data["challenger_id"],
            invitee_id=data["invitee_id"],
            status=ChallengeStatus(data["status"]),
            stake_tokens=int(data["stake_tokens"]),
            rake_bps=int(data["rake_bps"]),
            starting_balance_cents=int(data["starting_balance_cents"]),
            allowed_pairs=list(data.get("allowed_pairs", [])),
            duration_minutes=int(data["duration_minutes"]),
            terms_version=int(data["terms_version"]),
            proposed_by=data["proposed_by"],
            challenger_accepted=bool(data.get("challenger_accepted", False)),
            invitee_accepted=bool(data.get("invitee_accepted", False)),
            challenger_funded=bool(data.get("challenger_funded", False)),
            invitee_funded=bool(data.get("invitee_funded", False)),
            competition_id=data.get("competition_id"),
            winner_id=data.get("winner_id"),
            created_at=from_iso8601(data.get("created_at")),
            started_at=from_iso8601(data.get("started_at")),
            completed_at=from_iso8601(data.get("completed_at")),
        )


# ============================================================
# RESULTS
# ============================================================

@dataclass
class BetResult:
    """Result of placing a bet."""

    success: bool
    error: Optional[ErrorDetail] = None
    bet: Optional[BetRecord] = None


@dataclass
class MarketResult:
    """Result of a market lifecycle call (create, close, void)."""

    success: bool
    error: Optional[ErrorDetail] = None
    market: Optional[MarketRecord] = None
    refunded_bets: int = 0


@dataclass
class SettlementResult:
    """
    Result of settling a bet market.

    Never raised, always returned.
    """

    success: bool
    error: Optional[ErrorDetail] = None
    market_id: Optional[str] = None
    winner_user_id: Optional[str] = None
    payouts: List[Payout] = field(default_factory=list)
    total_pool: int = 0
    rake_tokens: int = 0
    """floor(total_pool x rake_bps / 10000)."""

    house_credit_tokens: int = 0
    """Rake plus every rounding remainder."""

    already_settled: bool = False
    """True when the call was a no-op on a settled market."""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "error": self.error.to_dict() if self.error else None,
            "market_id": self.market_id,
            "winner_user_id": self.winner_user_id,
            "payouts": [p.to_dict() for p in self.payouts],
            "total_pool": self.total_pool,
            "rake_tokens": self.rake_tokens,
            "house_credit_tokens": self.house_credit_tokens,
            "already_settled": self.already_settled,
        }


@dataclass
class ChallengeResult:
    """Result of a peer challenge operation."""

    success: bool
    error: Optional[ErrorDetail] = None
    challenge: Optional[ChallengeRecord] = None

    # Settlement only
    winner_id: Optional[str] = None
    payout_tokens: int = 0
    rake_tokens: int = 0
    already_settled: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "error": self.error.to_dict() if self.error else None,
            "challenge": self.challenge.to_dict() if self.challenge else None,
            "winner_id": self.winner_id,
            "payout_tokens": self.payout_tokens,
            "rake_tokens": self.rake_tokens,
            "already_settled": self.already_settled,
        }


__all__ = [
    "MarketRecord",
    "BetRecord",
    "Payout",
    "PoolStats",
    "ChallengeTerms",
    "ChallengeRecord",
    "BetResult",
    "MarketResult",
    "SettlementResult",
    "ChallengeResult",
]
