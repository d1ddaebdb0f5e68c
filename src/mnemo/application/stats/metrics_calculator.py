"""
Metrics calculator for deriving per-card insights from scheduling state.

This is a pure computation module with no I/O.
"""

from dataclasses import dataclass
from datetime import datetime

from mnemo.application import memory_model
from mnemo.domain.constants import SECONDS_PER_DAY
from mnemo.domain.models import CardSchedulingState, CardState, SchedulerParameters


@dataclass
class EnrichedStats:
    """
    Card scheduling state enriched with computed metrics.
    """

    card_id: str
    deck_id: str
    state: CardState
    lapses: int
    reps: int
    scheduled_days: float
    stability: float | None
    difficulty: float | None

    # Computed metrics
    current_retrievability: float | None
    lapse_rate: float | None  # lapses / reps
    days_overdue: float | None  # Negative if not yet due


class MetricsCalculator:
    """
    Computes derived metrics from CardSchedulingState objects.

    Stateless and side-effect free.
    """

    def enrich(
        self, card: CardSchedulingState, params: SchedulerParameters, now: datetime
    ) -> EnrichedStats:
        reviewed = card.state is not CardState.NEW and card.last_review is not None
        return EnrichedStats(
            card_id=card.id,
            deck_id=card.deck_id,
            state=card.state,
            lapses=card.lapses,
            reps=card.reps,
            scheduled_days=card.scheduled_days,
            stability=card.stability if reviewed else None,
            difficulty=card.difficulty if reviewed else None,
            current_retrievability=self._compute_retrievability(card, params, now),
            lapse_rate=self._compute_lapse_rate(card),
            days_overdue=self._compute_days_overdue(card, now),
        )

    def _compute_retrievability(
        self, card: CardSchedulingState, params: SchedulerParameters, now: datetime
    ) -> float | None:
        """
        Current recall probability, R = exp(ln(retention) * t / S).
        """
        if card.last_review is None or card.stability <= 0:
            return None
        elapsed = max((now - card.last_review).total_seconds(), 0.0) / SECONDS_PER_DAY
        return memory_model.retrievability(card.stability, elapsed, params.request_retention)

    def _compute_lapse_rate(self, card: CardSchedulingState) -> float | None:
        if card.reps == 0:
            return None
        return card.lapses / card.reps

    def _compute_days_overdue(self, card: CardSchedulingState, now: datetime) -> float | None:
        if card.state is CardState.NEW:
            return None
        return (now - card.due).total_seconds() / SECONDS_PER_DAY
