"""
Settlement - Payout Math.

============================================================
PURPOSE
============================================================
Pure pari-mutuel arithmetic. No I/O.

    total       = sum of all stakes
    rake        = floor(total x rake_bps / 10000)
    payout_pool = total - rake
    payout_i    = floor(payout_pool x stake_i / winning_pool)
    house       = total - sum(payout_i)

The house receives the rake and every floor remainder, so
tokens are conserved across a settlement.

============================================================
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional

from core.constants import BPS_DENOMINATOR
from core.exceptions import LedgerIntegrityError


@dataclass(frozen=True)
class Stake:
    """One bet as the payout math sees it."""

    bet_id: str
    bettor_id: str
    pick_user_id: str
    amount_tokens: int


@dataclass
class PayoutPlan:
    """Outcome of compute_payouts."""

    total_pool: int
    rake_tokens: int
    payout_pool: int
    winning_pool: int
    payouts: Dict[str, int] = field(default_factory=dict)
    """Payout per winning bet id."""

    @property
    def paid_out(self) -> int:
        return sum(self.payouts.values())

    @property
    def house_credit(self) -> int:
        return self.total_pool - self.paid_out


def compute_rake(total_pool: int, rake_bps: int) -> int:
    return total_pool * rake_bps // BPS_DENOMINATOR


def compute_payouts(stakes: Iterable[Stake], winner_user_id: Optional[str], rake_bps: int) -> PayoutPlan:
    """
    Split the pool among stakes that picked the winner.

    With no winning stake (or no winner) nothing is paid out and
    the whole pool goes to the house.
    """
    stakes = list(stakes)
    total = sum(s.amount_tokens for s in stakes)
    rake = compute_rake(total, rake_bps)
    payout_pool = total - rake

    winners = [s for s in stakes if winner_user_id is not None and s.pick_user_id == winner_user_id]
    winning_pool = sum(s.amount_tokens for s in winners)

    plan = PayoutPlan(
        total_pool=total,
        rake_tokens=rake,
        payout_pool=payout_pool,
        winning_pool=winning_pool,
    )
    if winning_pool == 0:
        return plan

    for stake in winners:
        plan.payouts[stake.bet_id] = payout_pool * stake.amount_tokens // winning_pool
    return plan


@dataclass(frozen=True)
class PvpSplit:
    """Token movements of a decided peer challenge."""

    pool: int
    rake_tokens: int
    winner_credit: int
    """Added to the winner's balance on top of the released stake."""


def compute_pvp_split(stake_tokens: int, rake_bps: int) -> PvpSplit:
    """
    Two equal stakes, winner takes the pool minus rake.

    The winner keeps their own stake and gains stake - rake,
    the loser forfeits their stake, the house gets the rake.
    Raises LedgerIntegrityError if the rake would exceed the
    forfeited stake.
    """
    pool = 2 * stake_tokens
    rake = compute_rake(pool, rake_bps)
    if rake > stake_tokens:
        raise LedgerIntegrityError(
            "PvP rake exceeds the forfeited stake",
            context={"stake_tokens": stake_tokens, "rake_bps": rake_bps, "rake_tokens": rake},
        )
    return PvpSplit(pool=pool, rake_tokens=rake, winner_credit=stake_tokens - rake)


__all__ = [
    "Stake",
    "PayoutPlan",
    "PvpSplit",
    "compute_rake",
    "compute_payouts",
    "compute_pvp_split",
]
