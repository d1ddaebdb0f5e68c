"""
Stats Aggregator — Application layer read-only rollups.

Coordinates range-bounded, paged reads from the review log and folds them
into per-day counts and summary figures. Never mutates anything.
"""

import logging
from collections import Counter
from collections.abc import AsyncIterator, Iterable
from dataclasses import dataclass
from datetime import date, datetime

from mnemo.domain.constants import DEFAULT_LOG_PAGE_SIZE
from mnemo.domain.models import (
    CardSchedulingState,
    CardState,
    DayBoundary,
    Rating,
    ReviewLogEntry,
    SchedulerParameters,
)
from mnemo.domain.ports import ReviewLogRepository

from .metrics_calculator import EnrichedStats, MetricsCalculator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActivitySummary:
    """Review activity over a range of study days."""

    per_day: dict[date, int]  # Active days only, ascending
    total_reviews: int
    active_days: int

    @property
    def average_per_active_day(self) -> float:
        return 0.0 if self.active_days == 0 else self.total_reviews / self.active_days


class StatsAggregator:
    """
    Application service for review statistics.

    Follows Dependency Inversion: depends on the ReviewLogRepository
    abstraction, not concrete adapter implementations.
    """

    def __init__(
        self,
        log_repo: ReviewLogRepository,
        boundary: DayBoundary | None = None,
        calculator: MetricsCalculator | None = None,
        page_size: int = DEFAULT_LOG_PAGE_SIZE,
    ):
        """
        Args:
            log_repo: The repository (port) for reading review logs.
            boundary: Study-day boundary used to bucket reviews; UTC midnight by default.
            calculator: Optional custom calculator; uses default if not provided.
            page_size: Rows fetched per storage round trip.
        """
        self._repo = log_repo
        self._boundary = boundary or DayBoundary()
        self._calc = calculator or MetricsCalculator()
        self._page_size = page_size

    async def _scan(
        self, user_id: str | None, start: date, end: date, deck_id: str | None
    ) -> AsyncIterator[ReviewLogEntry]:
        """Graded entries from study day ``start`` through ``end`` inclusive."""
        range_start = self._boundary.day_range(start)[0]
        range_end = self._boundary.day_range(end)[1]
        async for entry in self._repo.iter_logs(
            user_id, range_start, range_end, page_size=self._page_size, deck_id=deck_id
        ):
            if entry.rating is not Rating.MANUAL:
                yield entry

    async def activity(
        self, user_id: str | None, start: date, end: date, deck_id: str | None = None
    ) -> ActivitySummary:
        """Review counts per study day between ``start`` and ``end`` (inclusive)."""
        if end < start:
            return ActivitySummary(per_day={}, total_reviews=0, active_days=0)

        counts: Counter[date] = Counter()
        async for entry in self._scan(user_id, start, end, deck_id):
            counts[self._boundary.study_day(entry.review_time)] += 1

        per_day = dict(sorted(counts.items()))
        logger.debug(f"Activity for user={user_id}: {len(per_day)} active days")
        return ActivitySummary(
            per_day=per_day,
            total_reviews=sum(per_day.values()),
            active_days=len(per_day),
        )

    async def reviews_per_day(
        self, user_id: str | None, start: date, end: date, deck_id: str | None = None
    ) -> dict[date, int]:
        return (await self.activity(user_id, start, end, deck_id)).per_day

    async def total_reviews(
        self, user_id: str | None, start: date, end: date, deck_id: str | None = None
    ) -> int:
        return (await self.activity(user_id, start, end, deck_id)).total_reviews

    async def average_per_active_day(
        self, user_id: str | None, start: date, end: date, deck_id: str | None = None
    ) -> float:
        return (await self.activity(user_id, start, end, deck_id)).average_per_active_day

    async def yearly_activity(self, user_id: str | None, year: int) -> ActivitySummary:
        """Calendar-year heatmap data."""
        return await self.activity(user_id, date(year, 1, 1), date(year, 12, 31))

    async def rating_distribution(
        self, user_id: str | None, start: date, end: date, deck_id: str | None = None
    ) -> dict[str, int]:
        counts = {grade.label: 0 for grade in (Rating.AGAIN, Rating.HARD, Rating.GOOD, Rating.EASY)}
        async for entry in self._scan(user_id, start, end, deck_id):
            counts[entry.rating.label] += 1
        return counts

    async def retention_rate(
        self, user_id: str | None, start: date, end: date, deck_id: str | None = None
    ) -> float | None:
        """
        Share of reviews of Review-state cards that were recalled (not Again).

        None when there were no such reviews in the range.
        """
        recalled = 0
        total = 0
        async for entry in self._scan(user_id, start, end, deck_id):
            if entry.previous_state is not CardState.REVIEW:
                continue
            total += 1
            if entry.rating is not Rating.AGAIN:
                recalled += 1
        return None if total == 0 else recalled / total

    def enrich(
        self,
        cards: Iterable[CardSchedulingState],
        params: SchedulerParameters,
        now: datetime,
    ) -> list[EnrichedStats]:
        return [self._calc.enrich(card, params, now) for card in cards]

    def weak_cards(
        self,
        cards: Iterable[CardSchedulingState],
        params: SchedulerParameters,
        now: datetime,
        stability_threshold: float = 7.0,
        lapse_threshold: int = 1,
        retrievability_threshold: float = 0.7,
    ) -> list[EnrichedStats]:
        """
        Identify reviewed cards that are "weak" based on configurable thresholds.

        A card is weak if:
        - stability < threshold, OR
        - lapses >= lapse_threshold, OR
        - current retrievability < retrievability_threshold
        """
        weak = []
        for card in self.enrich(cards, params, now):
            if card.stability is None:
                continue

            is_weak = False

            if card.stability < stability_threshold:
                is_weak = True

            if card.lapses >= lapse_threshold:
                is_weak = True

            if (
                card.current_retrievability is not None
                and card.current_retrievability < retrievability_threshold
            ):
                is_weak = True

            if is_weak:
                weak.append(card)

        return weak
