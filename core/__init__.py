"""
Core Module Package.

Shared infrastructure every arena package depends on.

Components:
- clock: Unified time abstraction
- errors: Error code registry
- exceptions: Domain exception hierarchy
- constants: Lot, pip and pair constants
- config: Environment-driven configuration
- logging_config: Root logger setup
"""

from .clock import ClockProtocol, SystemClock, MockClock, ClockFactory, now_utc
from .exceptions import (
    ArenaError,
    ErrorDetail,
    ValidationError,
    NotFoundError,
    InsufficientFundsError,
    StateConflictError,
    UpstreamUnavailableError,
    LedgerIntegrityError,
)
