"""
Settlement - State Machines.

============================================================
PURPOSE
============================================================
Closed transition tables for bet markets and peer challenges.

BET MARKET:

    OPEN ──► CLOSED ──► SETTLED
      │         │
      └─────────┴─────► VOID

PEER CHALLENGE:

    PENDING ◄──► NEGOTIATING
       │              │
       └──────┬───────┘
              ▼
          ACCEPTED ──► PAYMENT_PENDING ──► ACTIVE ──► COMPLETED

    Any pre-active state can transition to CANCELLED.

INVARIANTS:
- Terminal states are final
- Every status write goes through a guard

============================================================
"""

import logging
from typing import Dict, Set, Tuple, Union

from core.exceptions import StateConflictError
from database.enums import BetMarketStatus, ChallengeStatus


logger = logging.getLogger(__name__)

Status = Union[BetMarketStatus, ChallengeStatus]


# ============================================================
# STATE TRANSITION RULES
# ============================================================

MARKET_TRANSITIONS: Dict[BetMarketStatus, Set[BetMarketStatus]] = {
    BetMarketStatus.OPEN: {
        BetMarketStatus.CLOSED,
        BetMarketStatus.SETTLED,
        BetMarketStatus.VOID,
    },
    BetMarketStatus.CLOSED: {
        BetMarketStatus.SETTLED,
        BetMarketStatus.VOID,
    },
    # Terminal states - no transitions out
    BetMarketStatus.SETTLED: set(),
    BetMarketStatus.VOID: set(),
}

CHALLENGE_TRANSITIONS: Dict[ChallengeStatus, Set[ChallengeStatus]] = {
    ChallengeStatus.PENDING: {
        ChallengeStatus.NEGOTIATING,
        ChallengeStatus.ACCEPTED,
        ChallengeStatus.CANCELLED,
    },
    ChallengeStatus.NEGOTIATING: {
        ChallengeStatus.PENDING,
        ChallengeStatus.ACCEPTED,
        ChallengeStatus.CANCELLED,
    },
    ChallengeStatus.ACCEPTED: {
        ChallengeStatus.PAYMENT_PENDING,
        ChallengeStatus.ACTIVE,
        ChallengeStatus.CANCELLED,
    },
    ChallengeStatus.PAYMENT_PENDING: {
        ChallengeStatus.ACTIVE,
        ChallengeStatus.CANCELLED,
    },
    ChallengeStatus.ACTIVE: {
        ChallengeStatus.COMPLETED,
    },
    # Terminal states - no transitions out
    ChallengeStatus.COMPLETED: set(),
    ChallengeStatus.CANCELLED: set(),
}


def _table_for(status: Status) -> Dict:
    if isinstance(status, BetMarketStatus):
        return MARKET_TRANSITIONS
    return CHALLENGE_TRANSITIONS


# ============================================================
# STATE TRANSITION GUARD
# ============================================================

class TransitionGuard:
    """
    Guard for status transitions.

    Ensures transitions are valid and provides reason for denial.
    """

    @staticmethod
    def can_transition(from_state: Status, to_state: Status) -> Tuple[bool, str]:
        """
        Check if transition is allowed.

        Args:
            from_state: Current state
            to_state: Target state

        Returns:
            Tuple of (allowed, reason)
        """
        if type(from_state) is not type(to_state):
            return False, f"Mismatched state types: {from_state!r} -> {to_state!r}"

        # Same state is always valid (idempotent)
        if from_state == to_state:
            return True, "Same state"

        if to_state in _table_for(from_state).get(from_state, set()):
            return True, "Valid transition"

        if from_state.is_terminal():
            return False, f"Cannot transition from terminal state {from_state.value}"

        return False, f"Invalid transition: {from_state.value} -> {to_state.value}"

    @staticmethod
    def require(from_state: Status, to_state: Status, record_id: str = "") -> None:
        """
        Raise StateConflictError unless the transition is allowed.

        Raises:
            StateConflictError: With the current state in its context
        """
        allowed, reason = TransitionGuard.can_transition(from_state, to_state)
        if not allowed:
            logger.debug(f"Transition denied for {record_id}: {reason}")
            raise StateConflictError(
                reason,
                current_state=from_state.value,
                code="INVALID_TRANSITION",
                context={"id": record_id, "target_state": to_state.value},
            )


__all__ = [
    "MARKET_TRANSITIONS",
    "CHALLENGE_TRANSITIONS",
    "TransitionGuard",
]
