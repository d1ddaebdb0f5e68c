"""
Card state machine: New -> Learning -> Review <-> Relearning.

Applies a graded outcome to one card and emits the matching review log
entry. Pure apart from log id generation; the caller persists the result.
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any

from mnemo.domain.constants import MINUTES_PER_DAY, SECONDS_PER_DAY
from mnemo.domain.errors import InvalidInput
from mnemo.domain.models import (
    GRADES,
    CardSchedulingState,
    CardState,
    Rating,
    ReviewLogEntry,
    ReviewOutcome,
    SchedulerParameters,
    ensure_aware,
)

from . import memory_model
from .id_service import generate_log_id

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Transition:
    """Next scheduling fields for one rating, before log construction."""

    state: CardState
    stability: float
    difficulty: float
    scheduled_days: float
    lapses: int


class CardStateMachine:
    """
    Computes card transitions from SchedulerParameters passed on every call.

    Stateless: two calls with identical inputs return identical card states.
    """

    def apply_review(
        self,
        card: CardSchedulingState,
        rating: Rating | int | str,
        params: SchedulerParameters,
        now: datetime,
        *,
        user_id: str | None = None,
        duration_ms: int = 0,
    ) -> ReviewOutcome:
        """
        Grade a card.

        Args:
            card: Current scheduling state.
            rating: Again/Hard/Good/Easy as enum, int (1-4) or label.
            params: Deck parameters for this session.
            now: Aware review time; must not precede ``card.last_review``.
            user_id: Grading user, recorded on the log entry.
            duration_ms: Time spent on the card.

        Returns:
            ReviewOutcome with the updated card and its log entry.

        Raises:
            InvalidInput: on a malformed card, rating or timestamp. Nothing is mutated.
        """
        grade = Rating.parse(rating)
        elapsed, transitions = self._plan(card, params, now)
        outcome = self._build(card, grade, transitions[grade], elapsed, now, user_id, duration_ms)
        logger.debug(
            f"card={card.id} {card.state.label}->{outcome.card.state.label} "
            f"rating={grade.label} ivl={outcome.card.scheduled_days:.4f}d "
            f"S={outcome.card.stability:.3f} D={outcome.card.difficulty:.3f}"
        )
        return outcome

    def preview(
        self,
        card: CardSchedulingState,
        params: SchedulerParameters,
        now: datetime,
        *,
        user_id: str | None = None,
    ) -> dict[Rating, ReviewOutcome]:
        """Outcomes for all four ratings, e.g. to label answer buttons with intervals."""
        elapsed, transitions = self._plan(card, params, now)
        return {
            grade: self._build(card, grade, transitions[grade], elapsed, now, user_id, 0)
            for grade in GRADES
        }

    def forget(
        self,
        card: CardSchedulingState,
        now: datetime,
        *,
        reset_counts: bool = False,
        user_id: str | None = None,
    ) -> ReviewOutcome:
        """
        Send a card back to New, due immediately.

        Keeps ``reps``/``lapses`` unless ``reset_counts`` is set. The log entry
        is rated MANUAL and does not count towards daily quotas.
        """
        elapsed = self._elapsed(card, now)
        forgotten = replace(
            card,
            state=CardState.NEW,
            stability=0.0,
            difficulty=0.0,
            elapsed_days=elapsed,
            scheduled_days=0.0,
            reps=0 if reset_counts else card.reps,
            lapses=0 if reset_counts else card.lapses,
            due=now,
        )
        log = ReviewLogEntry(
            id=generate_log_id(now),
            card_id=card.id,
            deck_id=card.deck_id,
            user_id=user_id,
            rating=Rating.MANUAL,
            state=CardState.NEW,
            previous_state=card.state,
            due=now,
            stability=card.stability,
            difficulty=card.difficulty,
            elapsed_days=elapsed,
            last_elapsed_days=card.elapsed_days,
            scheduled_days=0.0,
            review_time=now,
        )
        return ReviewOutcome(card=forgotten, log=log)

    def current_retrievability(
        self, card: CardSchedulingState, params: SchedulerParameters, now: datetime
    ) -> float:
        """Recall probability of ``card`` at ``now`` (0 for never-reviewed cards)."""
        if card.last_review is None or card.state is CardState.NEW:
            return 0.0
        return memory_model.retrievability(
            card.stability, self._elapsed(card, now), params.request_retention
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _elapsed(self, card: CardSchedulingState, now: datetime) -> float:
        card.validate()
        ensure_aware(now, "now")
        if card.last_review is None:
            return 0.0
        if now < card.last_review:
            raise InvalidInput(
                f"Card {card.id!r}: review time {now.isoformat()} precedes "
                f"last review {card.last_review.isoformat()}"
            )
        return (now - card.last_review).total_seconds() / SECONDS_PER_DAY

    def _plan(
        self, card: CardSchedulingState, params: SchedulerParameters, now: datetime
    ) -> tuple[float, dict[Rating, _Transition]]:
        elapsed = self._elapsed(card, now)
        w = params.weights
        max_s = params.maximum_stability
        first = card.state is CardState.NEW or card.stability <= 0
        r = 0.0 if first else memory_model.retrievability(
            card.stability, elapsed, params.request_retention
        )

        memory: dict[Rating, tuple[float, float]] = {}
        for grade in GRADES:
            if first:
                s = memory_model.initial_stability(grade, w, max_s)
                d = memory_model.initial_difficulty(grade, w)
            else:
                s = memory_model.next_stability(card.stability, card.difficulty, r, grade, w, max_s)
                d = memory_model.next_difficulty(card.difficulty, r, grade, w)
            memory[grade] = (s, d)

        phases = {grade: self._next_phase(card.state, grade, params) for grade in GRADES}

        # Day intervals for every rating that lands in Review
        days: dict[Rating, float] = {}
        for grade, state in phases.items():
            if state is not CardState.REVIEW:
                continue
            ivl = memory_model.scheduled_interval(memory[grade][0], grade, max_s)
            if params.enable_fuzz:
                ivl = memory_model.fuzz_interval(
                    ivl, elapsed, max_s, seed=f"{card.id}:{card.reps}:{now.isoformat()}:{int(grade)}"
                )
            days[grade] = ivl
        days = memory_model.order_intervals(days, max_s)

        transitions: dict[Rating, _Transition] = {}
        for grade in GRADES:
            state = phases[grade]
            if state is CardState.REVIEW:
                scheduled = days[grade]
            else:
                scheduled = self._short_term_minutes(grade, params) / MINUTES_PER_DAY
            lapses = card.lapses
            if card.state is CardState.REVIEW and grade is Rating.AGAIN:
                lapses += 1
            s, d = memory[grade]
            transitions[grade] = _Transition(state, s, d, scheduled, lapses)
        return elapsed, transitions

    @staticmethod
    def _next_phase(state: CardState, grade: Rating, params: SchedulerParameters) -> CardState:
        if state is CardState.NEW:
            if grade is Rating.EASY and params.easy_skips_learning:
                return CardState.REVIEW
            return CardState.LEARNING
        # Again keeps a short-term card in its own phase: Learning stays Learning
        # (no lapse, it never reached Review), Relearning stays Relearning.
        if state in (CardState.LEARNING, CardState.RELEARNING):
            return state if grade is Rating.AGAIN else CardState.REVIEW
        return CardState.RELEARNING if grade is Rating.AGAIN else CardState.REVIEW

    @staticmethod
    def _short_term_minutes(grade: Rating, params: SchedulerParameters) -> float:
        steps = params.learning_steps
        if not steps:
            return 0.0
        if grade is Rating.AGAIN:
            return steps[0]
        if grade is Rating.HARD:
            return (steps[0] + steps[1]) / 2 if len(steps) > 1 else steps[0] * 1.5
        return steps[-1]

    @staticmethod
    def _build(
        card: CardSchedulingState,
        grade: Rating,
        t: _Transition,
        elapsed: float,
        now: datetime,
        user_id: str | None,
        duration_ms: Any,
    ) -> ReviewOutcome:
        if isinstance(duration_ms, bool) or not isinstance(duration_ms, int) or duration_ms < 0:
            raise InvalidInput(f"duration_ms must be a non-negative integer, got {duration_ms!r}")

        due = now + timedelta(days=t.scheduled_days)
        updated = replace(
            card,
            state=t.state,
            stability=t.stability,
            difficulty=t.difficulty,
            elapsed_days=elapsed,
            scheduled_days=t.scheduled_days,
            reps=card.reps + 1,
            lapses=t.lapses,
            due=due,
            last_review=now,
        )
        # Log keeps the memory state the review was graded against
        log = ReviewLogEntry(
            id=generate_log_id(now),
            card_id=card.id,
            deck_id=card.deck_id,
            user_id=user_id,
            rating=grade,
            state=t.state,
            previous_state=card.state,
            due=due,
            stability=card.stability,
            difficulty=card.difficulty,
            elapsed_days=elapsed,
            last_elapsed_days=card.elapsed_days,
            scheduled_days=t.scheduled_days,
            review_time=now,
            review_duration_ms=duration_ms,
        )
        return ReviewOutcome(card=updated, log=log)
