"""
Memory Store — Infrastructure adapter keeping everything in process.

Implements all storage ports over plain dictionaries. Useful for tests,
demos, and hosts that persist elsewhere and only hydrate the core.
"""

import logging
from collections.abc import AsyncIterator, Iterable, Mapping
from datetime import datetime
from typing import Any

from mnemo.application.due_selector import count_quota
from mnemo.domain.errors import PersistenceError
from mnemo.domain.models import (
    CardSchedulingState,
    QuotaUsage,
    ReviewLogEntry,
    SchedulerParameters,
)
from mnemo.domain.ports import CardRepository, DeckSettingsRepository, ReviewLogRepository

logger = logging.getLogger(__name__)


class MemoryStore(CardRepository, ReviewLogRepository, DeckSettingsRepository):
    """
    Dictionary-backed cards, review log and deck parameters.
    """

    def __init__(
        self,
        cards: Iterable[CardSchedulingState] = (),
        default_parameters: SchedulerParameters | None = None,
    ):
        self.cards: dict[str, CardSchedulingState] = {c.id: c for c in cards}
        self.logs: dict[str, ReviewLogEntry] = {}
        self.parameters: dict[str, SchedulerParameters] = {}
        self.default_parameters = default_parameters or SchedulerParameters()

    # ---------- setup helpers ----------

    def add_card(self, card: CardSchedulingState) -> None:
        self.cards[card.id] = card

    def set_parameters(self, deck_id: str, params: SchedulerParameters) -> None:
        self.parameters[deck_id] = params

    # ---------- CardRepository ----------

    async def fetch_cards_for_deck(
        self, deck_id: str, filters: Mapping[str, Any] | None = None
    ) -> list[CardSchedulingState]:
        selected = [c for c in self.cards.values() if c.deck_id == deck_id]
        for key, value in (filters or {}).items():
            selected = [c for c in selected if getattr(c, key, None) == value]
        return selected

    async def persist_card_update(self, card_id: str, fields: Mapping[str, Any]) -> None:
        card = self.cards.get(card_id)
        if card is None:
            raise PersistenceError(f"Unknown card {card_id!r}")
        self.cards[card_id] = card.with_fields(fields)

    # ---------- ReviewLogRepository ----------

    async def append_review_log(self, entry: ReviewLogEntry) -> None:
        if entry.id in self.logs:
            logger.debug(f"Log {entry.id} already stored")
            return
        self.logs[entry.id] = entry

    async def count_today_activity(
        self, deck_id: str, user_id: str | None, day_start: datetime
    ) -> QuotaUsage:
        scoped = (
            e for e in self.logs.values() if e.deck_id == deck_id and e.user_id == user_id
        )
        return count_quota(scoped, day_start)

    async def iter_logs(
        self,
        user_id: str | None,
        start: datetime,
        end: datetime,
        page_size: int = 500,
        deck_id: str | None = None,
    ) -> AsyncIterator[ReviewLogEntry]:
        matching = sorted(
            (
                e
                for e in self.logs.values()
                if e.user_id == user_id
                and start <= e.review_time < end
                and (deck_id is None or e.deck_id == deck_id)
            ),
            key=lambda e: (e.review_time, e.id),
        )
        size = max(page_size, 1)
        for offset in range(0, len(matching), size):
            for entry in matching[offset : offset + size]:
                yield entry

    # ---------- DeckSettingsRepository ----------

    async def get_scheduler_parameters(self, deck_id: str) -> SchedulerParameters:
        return self.parameters.get(deck_id, self.default_parameters)
