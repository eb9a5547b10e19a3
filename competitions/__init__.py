"""
Competitions Package.

Competition records, paid entries and the leaderboard.
"""

from .types import (
    CompetitionRecord,
    EntryRecord,
    LeaderboardEntry,
    CompetitionResult,
    JoinResult,
)
from .repository import CompetitionRepository
from .service import STATUS_TRANSITIONS, CompetitionService


__all__ = [
    "CompetitionRecord",
    "EntryRecord",
    "LeaderboardEntry",
    "CompetitionResult",
    "JoinResult",
    "CompetitionRepository",
    "STATUS_TRANSITIONS",
    "CompetitionService",
]
