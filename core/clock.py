"""
Core Module - System Clock.

============================================================
RESPONSIBILITY
============================================================
Single time source for fills, ledger rows, quote ageing and
settlement timestamps.

- Services take a ClockProtocol; tests pass a MockClock so
  fill and settlement times are exact
- Everything is UTC-aware. Rows read back from SQLite come out
  naive; ensure_utc() restores the zone at the record boundary

============================================================
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Generator, Optional
import threading
import time


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to a naive datetime. Aware values are converted to UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


# ============================================================
# CLOCK PROTOCOL
# ============================================================

class ClockProtocol(ABC):
    """Abstract interface for the arena clock."""

    @abstractmethod
    def now(self) -> datetime:
        """Get current UTC datetime."""
        pass

    @abstractmethod
    def timestamp(self) -> float:
        """Get current Unix timestamp."""
        pass

    def seconds_since(self, moment: datetime) -> float:
        """Elapsed seconds since `moment`. Negative if it lies in the future."""
        return (self.now() - ensure_utc(moment)).total_seconds()


# ============================================================
# SYSTEM CLOCK (PRODUCTION)
# ============================================================

class SystemClock(ClockProtocol):
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def timestamp(self) -> float:
        return time.time()


# ============================================================
# MOCK CLOCK (TESTING)
# ============================================================

class MockClock(ClockProtocol):
    """
    Frozen clock for tests.

    Time only moves through set_time() and advance(), so quote
    freshness and order timestamps are fully deterministic.
    """

    def __init__(self, initial_time: Optional[datetime] = None):
        self._time = ensure_utc(initial_time) or datetime.now(timezone.utc)
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._time

    def timestamp(self) -> float:
        with self._lock:
            return self._time.timestamp()

    def set_time(self, new_time: datetime) -> None:
        """Jump to `new_time` (naive values are taken as UTC)."""
        with self._lock:
            self._time = ensure_utc(new_time)

    def advance(self, seconds: float = 0, **kwargs) -> None:
        """
        Move time forward.

        Args:
            seconds: Number of seconds to advance
            **kwargs: Passed to timedelta (minutes, hours, ...)
        """
        with self._lock:
            self._time = self._time + timedelta(seconds=seconds, **kwargs)


# ============================================================
# CLOCK FACTORY
# ============================================================

class ClockFactory:
    """Process-wide default clock for services built without one."""

    _instance: Optional[ClockProtocol] = None
    _lock = threading.Lock()

    @classmethod
    def get_clock(cls) -> ClockProtocol:
        with cls._lock:
            if cls._instance is None:
                cls._instance = SystemClock()
            return cls._instance

    @classmethod
    def set_clock(cls, clock: ClockProtocol) -> None:
        with cls._lock:
            cls._instance = clock

    @classmethod
    def reset(cls) -> None:
        with cls._lock:
            cls._instance = SystemClock()

    @classmethod
    @contextmanager
    def use_mock(
        cls,
        initial_time: Optional[datetime] = None,
    ) -> Generator[MockClock, None, None]:
        """Install a MockClock for the duration of the block."""
        original = cls._instance
        mock = MockClock(initial_time)
        cls.set_clock(mock)
        try:
            yield mock
        finally:
            cls._instance = original


# ============================================================
# SERIALIZATION
# ============================================================

def to_iso8601(dt: Optional[datetime]) -> Optional[str]:
    """Record datetime to ISO 8601 (naive values are taken as UTC)."""
    if dt is None:
        return None
    return ensure_utc(dt).isoformat()


def from_iso8601(iso_string: Optional[str]) -> Optional[datetime]:
    """Parse ISO 8601 into a UTC-aware datetime."""
    if not iso_string:
        return None
    return ensure_utc(datetime.fromisoformat(iso_string))


def now_utc() -> datetime:
    return ClockFactory.get_clock().now()


__all__ = [
    "ClockProtocol",
    "SystemClock",
    "MockClock",
    "ClockFactory",
    "ensure_utc",
    "to_iso8601",
    "from_iso8601",
    "now_utc",
]
