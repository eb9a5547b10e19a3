"""
Settlement Package.

============================================================
PURPOSE
============================================================
Resolves money at the end of a match.

- betting_service: pari-mutuel bet markets on peer matches
- pvp_service: peer challenge negotiation, funding, settlement
- payouts: pure payout / rake arithmetic
- state_machine: closed transition tables

Every token movement goes through the wallet ledger primitives.
The house wallet receives rake and rounding remainders.

============================================================
"""

from .types import (
    MarketRecord,
    BetRecord,
    Payout,
    PoolStats,
    ChallengeTerms,
    ChallengeRecord,
    BetResult,
    MarketResult,
    SettlementResult,
    ChallengeResult,
)
from .payouts import (
    Stake,
    PayoutPlan,
    PvpSplit,
    compute_rake,
    compute_payouts,
    compute_pvp_split,
)
from .state_machine import CHALLENGE_TRANSITIONS, MARKET_TRANSITIONS, TransitionGuard
from .repository import SettlementRepository
from .betting_service import BettingService
from .pvp_service import PvpChallengeService


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
    "Stake",
    "PayoutPlan",
    "PvpSplit",
    "compute_rake",
    "compute_payouts",
    "compute_pvp_split",
    "CHALLENGE_TRANSITIONS",
    "MARKET_TRANSITIONS",
    "TransitionGuard",
    "SettlementRepository",
    "BettingService",
    "PvpChallengeService",
]
