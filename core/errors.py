"""
Core Module - Error Code Registry.

============================================================
PURPOSE
============================================================
Comprehensive classification of every failure the arena core
can report to its callers.

ERROR CATEGORIES:
1. Validation Errors - Bad input shape or range
2. Not Found Errors - Referenced record is missing
3. Insufficient Funds - Balance or available tokens too low
4. State Conflicts - Operation invalid for current status
5. Upstream Errors - Price feed unavailable
6. Internal Errors - Storage or unexpected failures

RETRYABLE vs NON-RETRYABLE:
- Retryable: Transient errors that may succeed on retry
- Non-retryable: Permanent errors that will fail again

============================================================
"""

from enum import Enum
from typing import Dict, Set
from dataclasses import dataclass


# ============================================================
# ERROR CATEGORIES
# ============================================================

class ErrorCategory(Enum):
    """Error category classification."""

    VALIDATION = "VALIDATION"
    """Input rejected before any side effect."""

    NOT_FOUND = "NOT_FOUND"
    """Position, market, wallet or entry missing."""

    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    """Balance or available tokens too low."""

    STATE_CONFLICT = "STATE_CONFLICT"
    """Operation invalid for the current status."""

    UPSTREAM = "UPSTREAM"
    """Price feed or other collaborator unavailable."""

    INTERNAL = "INTERNAL"
    """Storage or unexpected internal failure."""


class ErrorSeverity(Enum):
    """Error severity levels."""

    WARNING = "WARNING"
    """Expected rejection, informational."""

    ERROR = "ERROR"
    """Standard error, needs attention."""

    CRITICAL = "CRITICAL"
    """Ledger or position consistency at risk."""


# ============================================================
# ERROR CODE REGISTRY
# ============================================================

@dataclass(frozen=True)
class ErrorCodeInfo:
    """Information about an error code."""

    code: str
    """Error code."""

    category: ErrorCategory
    """Error category."""

    severity: ErrorSeverity
    """Error severity."""

    is_retryable: bool
    """Whether this error is retryable."""

    description: str
    """Human-readable description."""

    recommended_action: str
    """Recommended action to take."""


ERROR_CODES: Dict[str, ErrorCodeInfo] = {
    # ========== VALIDATION ERRORS ==========
    "INVALID_LOT_SIZE": ErrorCodeInfo(
        code="INVALID_LOT_SIZE",
        category=ErrorCategory.VALIDATION,
        severity=ErrorSeverity.WARNING,
        is_retryable=False,
        description="Lot size converts to zero or negative units",
        recommended_action="Submit a positive lot size",
    ),
    "INVALID_PAIR": ErrorCodeInfo(
        code="INVALID_PAIR",
        category=ErrorCategory.VALIDATION,
        severity=ErrorSeverity.WARNING,
        is_retryable=False,
        description="Currency pair is unknown or not allowed",
        recommended_action="Use one of the competition's allowed pairs",
    ),
    "INVALID_AMOUNT": ErrorCodeInfo(
        code="INVALID_AMOUNT",
        category=ErrorCategory.VALIDATION,
        severity=ErrorSeverity.WARNING,
        is_retryable=False,
        description="Token amount must be a positive integer",
        recommended_action="Submit a positive whole token amount",
    ),
    "INVALID_REQUEST": ErrorCodeInfo(
        code="INVALID_REQUEST",
        category=ErrorCategory.VALIDATION,
        severity=ErrorSeverity.WARNING,
        is_retryable=False,
        description="Request is missing a required argument",
        recommended_action="Fix the request arguments",
    ),
    "BET_LIMIT_EXCEEDED": ErrorCodeInfo(
        code="BET_LIMIT_EXCEEDED",
        category=ErrorCategory.VALIDATION,
        severity=ErrorSeverity.WARNING,
        is_retryable=False,
        description="Bet is below the minimum or above the per-user maximum",
        recommended_action="Adjust the bet amount",
    ),
    "NOT_A_PARTICIPANT": ErrorCodeInfo(
        code="NOT_A_PARTICIPANT",
        category=ErrorCategory.VALIDATION,
        severity=ErrorSeverity.WARNING,
        is_retryable=False,
        description="User is not a participant of the match",
        recommended_action="Pick one of the two match participants",
    ),

    # ========== NOT FOUND ERRORS ==========
    "POSITION_NOT_FOUND": ErrorCodeInfo(
        code="POSITION_NOT_FOUND",
        category=ErrorCategory.NOT_FOUND,
        severity=ErrorSeverity.WARNING,
        is_retryable=False,
        description="Position does not exist for this competition and user",
        recommended_action="Refresh open positions",
    ),
    "TRADE_NOT_FOUND": ErrorCodeInfo(
        code="TRADE_NOT_FOUND",
        category=ErrorCategory.NOT_FOUND,
        severity=ErrorSeverity.CRITICAL,
        is_retryable=False,
        description="Open position has no open trade",
        recommended_action="Investigate position/trade consistency",
    ),
    "COMPETITION_NOT_FOUND": ErrorCodeInfo(
        code="COMPETITION_NOT_FOUND",
        category=ErrorCategory.NOT_FOUND,
        severity=ErrorSeverity.WARNING,
        is_retryable=False,
        description="Competition does not exist",
        recommended_action="Verify the competition id",
    ),
    "ENTRY_NOT_FOUND": ErrorCodeInfo(
        code="ENTRY_NOT_FOUND",
        category=ErrorCategory.NOT_FOUND,
        severity=ErrorSeverity.WARNING,
        is_retryable=False,
        description="User has not entered this competition",
        recommended_action="Join the competition first",
    ),
    "WALLET_NOT_FOUND": ErrorCodeInfo(
        code="WALLET_NOT_FOUND",
        category=ErrorCategory.NOT_FOUND,
        severity=ErrorSeverity.WARNING,
        is_retryable=False,
        description="User has no wallet",
        recommended_action="Create the wallet before transacting",
    ),
    "MARKET_NOT_FOUND": ErrorCodeInfo(
        code="MARKET_NOT_FOUND",
        category=ErrorCategory.NOT_FOUND,
        severity=ErrorSeverity.WARNING,
        is_retryable=False,
        description="Bet market does not exist",
        recommended_action="Verify the market id",
    ),
    "CHALLENGE_NOT_FOUND": ErrorCodeInfo(
        code="CHALLENGE_NOT_FOUND",
        category=ErrorCategory.NOT_FOUND,
        severity=ErrorSeverity.WARNING,
        is_retryable=False,
        description="Peer challenge does not exist",
        recommended_action="Verify the challenge id",
    ),

    # ========== INSUFFICIENT FUNDS ==========
    "INSUFFICIENT_BALANCE": ErrorCodeInfo(
        code="INSUFFICIENT_BALANCE",
        category=ErrorCategory.INSUFFICIENT_FUNDS,
        severity=ErrorSeverity.WARNING,
        is_retryable=False,
        description="Token balance would become negative",
        recommended_action="Top up tokens",
    ),
    "INSUFFICIENT_AVAILABLE": ErrorCodeInfo(
        code="INSUFFICIENT_AVAILABLE",
        category=ErrorCategory.INSUFFICIENT_FUNDS,
        severity=ErrorSeverity.WARNING,
        is_retryable=False,
        description="Available (unlocked) tokens are too low",
        recommended_action="Top up tokens or wait for locked stakes to resolve",
    ),
    "BELOW_LOCKED": ErrorCodeInfo(
        code="BELOW_LOCKED",
        category=ErrorCategory.INSUFFICIENT_FUNDS,
        severity=ErrorSeverity.WARNING,
        is_retryable=False,
        description="Balance cannot drop below the locked amount",
        recommended_action="Release locked stakes first",
    ),
    "EXCEEDS_LOCKED": ErrorCodeInfo(
        code="EXCEEDS_LOCKED",
        category=ErrorCategory.INSUFFICIENT_FUNDS,
        severity=ErrorSeverity.CRITICAL,
        is_retryable=False,
        description="Cannot unlock or deduct more than is locked",
        recommended_action="Investigate lock bookkeeping",
    ),

    # ========== STATE CONFLICTS ==========
    "COMPETITION_NOT_RUNNING": ErrorCodeInfo(
        code="COMPETITION_NOT_RUNNING",
        category=ErrorCategory.STATE_CONFLICT,
        severity=ErrorSeverity.WARNING,
        is_retryable=False,
        description="Competition is not accepting this operation",
        recommended_action="Refresh competition status",
    ),
    "ENTRY_DISQUALIFIED": ErrorCodeInfo(
        code="ENTRY_DISQUALIFIED",
        category=ErrorCategory.STATE_CONFLICT,
        severity=ErrorSeverity.WARNING,
        is_retryable=False,
        description="Entry was disqualified",
        recommended_action="No further trading is allowed",
    ),
    "MARKET_NOT_OPEN": ErrorCodeInfo(
        code="MARKET_NOT_OPEN",
        category=ErrorCategory.STATE_CONFLICT,
        severity=ErrorSeverity.WARNING,
        is_retryable=False,
        description="Bet market is not open",
        recommended_action="Refresh market status",
    ),
    "MARKET_ALREADY_RESOLVED": ErrorCodeInfo(
        code="MARKET_ALREADY_RESOLVED",
        category=ErrorCategory.STATE_CONFLICT,
        severity=ErrorSeverity.WARNING,
        is_retryable=False,
        description="Bet market was already settled or voided",
        recommended_action="Refresh market status",
    ),
    "BETTING_DISABLED": ErrorCodeInfo(
        code="BETTING_DISABLED",
        category=ErrorCategory.STATE_CONFLICT,
        severity=ErrorSeverity.WARNING,
        is_retryable=False,
        description="Bet-behind markets are disabled",
        recommended_action="Enable ENABLE_BET_BEHIND",
    ),
    "INVALID_TRANSITION": ErrorCodeInfo(
        code="INVALID_TRANSITION",
        category=ErrorCategory.STATE_CONFLICT,
        severity=ErrorSeverity.WARNING,
        is_retryable=False,
        description="Status transition is not allowed",
        recommended_action="Refresh status before retrying",
    ),
    "TERMS_CHANGED": ErrorCodeInfo(
        code="TERMS_CHANGED",
        category=ErrorCategory.STATE_CONFLICT,
        severity=ErrorSeverity.WARNING,
        is_retryable=False,
        description="Accepted terms are not the current terms snapshot",
        recommended_action="Review the latest terms and accept again",
    ),

    # ========== UPSTREAM ERRORS ==========
    "NO_QUOTE_AVAILABLE": ErrorCodeInfo(
        code="NO_QUOTE_AVAILABLE",
        category=ErrorCategory.UPSTREAM,
        severity=ErrorSeverity.WARNING,
        is_retryable=True,
        description="No live quote for the pair",
        recommended_action="Retry after the price feed recovers",
    ),
    "FEED_UNAVAILABLE": ErrorCodeInfo(
        code="FEED_UNAVAILABLE",
        category=ErrorCategory.UPSTREAM,
        severity=ErrorSeverity.ERROR,
        is_retryable=True,
        description="Price feed request failed",
        recommended_action="Retry with backoff",
    ),

    # ========== INTERNAL ERRORS ==========
    "LEDGER_INTEGRITY": ErrorCodeInfo(
        code="LEDGER_INTEGRITY",
        category=ErrorCategory.INTERNAL,
        severity=ErrorSeverity.CRITICAL,
        is_retryable=False,
        description="Ledger invariant would be violated",
        recommended_action="Halt settlement and reconcile the ledger",
    ),
    "INTERNAL_ERROR": ErrorCodeInfo(
        code="INTERNAL_ERROR",
        category=ErrorCategory.INTERNAL,
        severity=ErrorSeverity.ERROR,
        is_retryable=True,
        description="Storage or unexpected internal failure",
        recommended_action="Retry; escalate if persistent",
    ),
}


# ============================================================
# HELPER FUNCTIONS
# ============================================================

def get_error_info(code: str) -> ErrorCodeInfo:
    """
    Get error information by code.

    Args:
        code: Error code

    Returns:
        ErrorCodeInfo, falling back to INTERNAL_ERROR for unknown codes
    """
    return ERROR_CODES.get(code, ERROR_CODES["INTERNAL_ERROR"])


def is_retryable(code: str) -> bool:
    """Check if an error code is retryable."""
    return get_error_info(code).is_retryable


RETRYABLE_ERROR_CODES: Set[str] = {
    code for code, info in ERROR_CODES.items() if info.is_retryable
}

CRITICAL_ERROR_CODES: Set[str] = {
    code for code, info in ERROR_CODES.items()
    if info.severity == ErrorSeverity.CRITICAL
}
