"""
Core Module - Exceptions.

============================================================
RESPONSIBILITY
============================================================
Defines the exception hierarchy for the arena core.

- Provides clear exception hierarchy
- Maps every exception to a registered error code
- Carries context (required vs available, current state)
- Converts to a result-friendly ErrorDetail

Exceptions are raised INSIDE a transaction boundary so the
transaction rolls back; public service methods convert them to
result values and never let them escape.

============================================================
EXCEPTION HIERARCHY
============================================================
ArenaError (base)
├── ValidationError
├── NotFoundError
├── InsufficientFundsError
├── StateConflictError
├── UpstreamUnavailableError
└── LedgerIntegrityError

============================================================
"""

from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .errors import ErrorCategory, get_error_info


# ============================================================
# ERROR CLASSIFICATION
# ============================================================

class ErrorClassification(Enum):
    """Classification of error recoverability."""

    RECOVERABLE = "recoverable"
    """Caller can fix the request and try again."""

    TRANSIENT = "transient"
    """Temporary error, retry may succeed."""

    NON_RECOVERABLE = "non_recoverable"
    """Permanent error, requires intervention."""


# ============================================================
# ERROR DETAIL (RESULT VALUE)
# ============================================================

@dataclass
class ErrorDetail:
    """Error payload carried by failed results."""

    code: str
    message: str
    category: ErrorCategory
    retryable: bool = False
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
            "details": self.details,
        }


# ============================================================
# BASE EXCEPTION
# ============================================================

class ArenaError(Exception):
    """
    Base exception for all arena core errors.

    All exceptions carry:
    - code: registered error code (see core.errors)
    - context: for debugging and for clients (amounts, states)
    - classification: for retry decisions
    - timestamp: when the error occurred
    """

    default_code: str = "INTERNAL_ERROR"
    default_classification: ErrorClassification = ErrorClassification.NON_RECOVERABLE

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        classification: Optional[ErrorClassification] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)

        self.message = message
        self.code = code or self.default_code
        self.context = context or {}
        self.classification = classification or self.default_classification
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

        if cause:
            self.context["cause_type"] = type(cause).__name__
            self.context["cause_message"] = str(cause)

    @property
    def category(self) -> ErrorCategory:
        return get_error_info(self.code).category

    @property
    def is_retryable(self) -> bool:
        """Check if the failed operation may succeed on retry."""
        return (
            self.classification == ErrorClassification.TRANSIENT
            or get_error_info(self.code).is_retryable
        )

    def to_detail(self) -> ErrorDetail:
        """Convert to the result-value representation."""
        return ErrorDetail(
            code=self.code,
            message=self.message,
            category=self.category,
            retryable=self.is_retryable,
            details=dict(self.context),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for logging/storage."""
        return {
            "type": type(self).__name__,
            "code": self.code,
            "message": self.message,
            "classification": self.classification.value,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "cause": str(self.cause) if self.cause else None,
        }


# ============================================================
# TAXONOMY
# ============================================================

class ValidationError(ArenaError):
    """Bad input shape or range, rejected before any side effect."""

    default_code = "INVALID_REQUEST"
    default_classification = ErrorClassification.RECOVERABLE

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        field_name: Optional[str] = None,
        value: Optional[Any] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if field_name:
            context["field"] = field_name
        if value is not None:
            context["value"] = str(value)[:100]

        super().__init__(message, code=code, context=context, **kwargs)


class NotFoundError(ArenaError):
    """Referenced record does not exist."""

    default_code = "INTERNAL_ERROR"
    default_classification = ErrorClassification.RECOVERABLE

    def __init__(self, message: str, code: str, record_id: Optional[Any] = None, **kwargs):
        context = kwargs.pop("context", {})
        if record_id is not None:
            context["id"] = str(record_id)
        super().__init__(message, code=code, context=context, **kwargs)


class InsufficientFundsError(ArenaError):
    """
    Balance or available tokens too low.

    Always reports the required and available amounts so a
    client can prompt a top-up.
    """

    default_code = "INSUFFICIENT_BALANCE"
    default_classification = ErrorClassification.RECOVERABLE

    def __init__(
        self,
        message: str,
        required: int,
        available: int,
        code: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})
        context["required"] = required
        context["available"] = available
        super().__init__(message, code=code, context=context, **kwargs)
        self.required = required
        self.available = available


class StateConflictError(ArenaError):
    """
    Operation invalid for the current status.

    Reports the current state so a client can refresh rather
    than retry blindly.
    """

    default_code = "INVALID_TRANSITION"
    default_classification = ErrorClassification.RECOVERABLE

    def __init__(
        self,
        message: str,
        current_state: Optional[str] = None,
        code: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})
        if current_state is not None:
            context["current_state"] = current_state
        super().__init__(message, code=code, context=context, **kwargs)
        self.current_state = current_state


class UpstreamUnavailableError(ArenaError):
    """Collaborator unavailable (no quote for pair). Safe to retry."""

    default_code = "NO_QUOTE_AVAILABLE"
    default_classification = ErrorClassification.TRANSIENT


class LedgerIntegrityError(ArenaError):
    """A ledger or position invariant would be violated."""

    default_code = "LEDGER_INTEGRITY"
    default_classification = ErrorClassification.NON_RECOVERABLE


# ============================================================
# EXCEPTION UTILITIES
# ============================================================

def to_error_detail(exc: Exception) -> ErrorDetail:
    """Convert any exception to an ErrorDetail."""
    if isinstance(exc, ArenaError):
        return exc.to_detail()

    return ErrorDetail(
        code="INTERNAL_ERROR",
        message=f"{type(exc).__name__}: {exc}",
        category=ErrorCategory.INTERNAL,
        retryable=True,
    )


__all__ = [
    "ErrorClassification",
    "ErrorDetail",
    "ArenaError",
    "ValidationError",
    "NotFoundError",
    "InsufficientFundsError",
    "StateConflictError",
    "UpstreamUnavailableError",
    "LedgerIntegrityError",
    "to_error_detail",
]
