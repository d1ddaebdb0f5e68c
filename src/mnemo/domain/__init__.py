# Domain Package
from .errors import InvalidInput, MnemoError, PersistenceError
from .models import (
    CardSchedulingState,
    CardState,
    DayBoundary,
    DeckOverview,
    DueCandidates,
    QuotaUsage,
    Rating,
    ReviewLogEntry,
    ReviewOutcome,
    SchedulerParameters,
)
from .ports import CardRepository, DeckSettingsRepository, ReviewLogRepository

__all__ = [
    "CardSchedulingState",
    "CardState",
    "DayBoundary",
    "DeckOverview",
    "DueCandidates",
    "QuotaUsage",
    "Rating",
    "ReviewLogEntry",
    "ReviewOutcome",
    "SchedulerParameters",
    "CardRepository",
    "ReviewLogRepository",
    "DeckSettingsRepository",
    "MnemoError",
    "InvalidInput",
    "PersistenceError",
]
