"""
Ports (interfaces) for scheduler storage.

These define the contract that infrastructure adapters must implement.
Application services depend on these abstractions, not concrete implementations.
Storage is expected to serialise writes per card; the core does no locking.
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Mapping
from datetime import datetime
from typing import Any

from .models import CardSchedulingState, QuotaUsage, ReviewLogEntry, SchedulerParameters


class CardRepository(ABC):
    """
    Port for reading and writing card scheduling state.

    Implementations:
        - MemoryStore: process-local dictionaries.
        - SqliteStore: a SQLite database file.
    """

    @abstractmethod
    async def fetch_cards_for_deck(
        self, deck_id: str, filters: Mapping[str, Any] | None = None
    ) -> list[CardSchedulingState]:
        """
        Fetch the cards of a deck.

        Args:
            deck_id: Deck to read.
            filters: Optional equality filters on scheduling fields, e.g. ``{"state": 0}``.

        Returns:
            Cards with content fields passed through opaquely.
        """
        pass

    @abstractmethod
    async def persist_card_update(self, card_id: str, fields: Mapping[str, Any]) -> None:
        """
        Write a partial scheduling update for one card.

        Raises:
            PersistenceError: if the write could not be made durable.
        """
        pass


class ReviewLogRepository(ABC):
    """Port for the append-only review log."""

    @abstractmethod
    async def append_review_log(self, entry: ReviewLogEntry) -> None:
        """
        Append a log entry. Appending an entry whose id is already stored is a no-op,
        so a failed grade can be retried safely.

        Raises:
            PersistenceError: if the write could not be made durable.
        """
        pass

    @abstractmethod
    async def count_today_activity(
        self, deck_id: str, user_id: str | None, day_start: datetime
    ) -> QuotaUsage:
        """
        Count new cards studied and reviews done since ``day_start``.
        """
        pass

    @abstractmethod
    def iter_logs(
        self,
        user_id: str | None,
        start: datetime,
        end: datetime,
        page_size: int = 500,
        deck_id: str | None = None,
    ) -> AsyncIterator[ReviewLogEntry]:
        """
        Yield log entries with ``start <= review_time < end`` in ascending time
        order, fetched from storage ``page_size`` rows at a time.
        """
        pass


class DeckSettingsRepository(ABC):
    """Port for per-deck scheduler parameters."""

    @abstractmethod
    async def get_scheduler_parameters(self, deck_id: str) -> SchedulerParameters:
        pass
