"""
Session queue for study sessions.

Builds the presentation order by:
1. Merging learning and review candidates by due time (learning first on ties)
2. Spacing new cards evenly through that sequence
3. Re-inserting cards that land in Learning/Relearning a few positions later

A StudySession is owned by a single consumer and carries no locking.
"""

import logging
import math
import random
from dataclasses import dataclass, field

from mnemo.domain.constants import (
    MINUTES_PER_DAY,
    REQUEUE_DEFAULT_SHARE,
    REQUEUE_MIN_GAP,
    REQUEUE_SPACING,
)
from mnemo.domain.models import (
    SHORT_TERM_STATES,
    CardSchedulingState,
    CardState,
    DueCandidates,
    ReviewOutcome,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionStats:
    """Progress counters for a session."""

    total_cards: int  # Queue length, requeued copies included
    completed_cards: int  # Gradings so far
    remaining_cards: int
    unique_completed: int  # Distinct cards graded at least once
    new_cards_studied: int  # Distinct cards first graded from New
    reviews_completed: int  # Distinct cards first graded from another state


@dataclass
class StudySession:
    """
    Ordered queue, cursor and completed list for one study sitting.

    Never persisted; abandoning a session needs no cleanup.
    """

    queue: list[CardSchedulingState]
    cursor: int = 0
    completed: list[CardSchedulingState] = field(default_factory=list)
    rng: random.Random = field(default_factory=random.Random, repr=False)
    min_gap: int = REQUEUE_MIN_GAP

    @property
    def is_finished(self) -> bool:
        return self.cursor >= len(self.queue)

    def get_next(self) -> CardSchedulingState | None:
        """Card at the cursor, or None once the session is exhausted. Does not advance."""
        if self.is_finished:
            return None
        return self.queue[self.cursor]

    def advance(
        self, graded_card: CardSchedulingState, outcome: ReviewOutcome | None = None
    ) -> int | None:
        """
        Move past the current card.

        Args:
            graded_card: The card as it was presented (before grading).
            outcome: Result of grading it. When the card is now in Learning or
                Relearning, the updated card is queued again further on.

        Returns:
            The index the card was re-inserted at, or None.
        """
        self.cursor += 1
        self.completed.append(graded_card)

        if outcome is None or outcome.card.state not in SHORT_TERM_STATES:
            return None

        position = self._requeue_position(outcome.card.scheduled_days)
        self.queue.insert(position, outcome.card)
        logger.debug(f"Requeued {outcome.card.id} at {position}/{len(self.queue)}")
        return position

    def stats(self) -> SessionStats:
        first_state: dict[str, CardState] = {}
        for card in self.completed:
            first_state.setdefault(card.id, card.state)
        new_studied = sum(1 for s in first_state.values() if s is CardState.NEW)
        return SessionStats(
            total_cards=len(self.queue),
            completed_cards=len(self.completed),
            remaining_cards=max(len(self.queue) - self.cursor, 0),
            unique_completed=len(first_state),
            new_cards_studied=new_studied,
            reviews_completed=len(first_state) - new_studied,
        )

    def _requeue_position(self, scheduled_days: float) -> int:
        minutes = scheduled_days * MINUTES_PER_DAY
        share = REQUEUE_DEFAULT_SHARE
        for max_minutes, spacing in REQUEUE_SPACING:
            if minutes <= max_minutes:
                share = spacing
                break

        remaining = len(self.queue) - self.cursor
        lower = self.cursor + max(self.min_gap, int(remaining * share))
        upper = len(self.queue)
        return self.rng.randint(min(lower, upper), upper)


def mix_cards(
    new: list[CardSchedulingState],
    learning: list[CardSchedulingState],
    review: list[CardSchedulingState],
) -> list[CardSchedulingState]:
    """
    Interleave new cards evenly between due learning/review cards.

    With ``total`` cards and ``n`` new ones, new cards go to every
    ``ceil(total / (n + 1))``-th position; once the filler runs out the rest
    of the new cards are appended.
    """
    # Stable sort keeps learning ahead of review at equal due
    filler = sorted(learning + review, key=lambda c: c.due)
    total = len(filler) + len(new)
    interval = max(math.ceil(total / (len(new) + 1)), 1)

    mixed: list[CardSchedulingState] = []
    fi = ni = 0
    while fi < len(filler) or ni < len(new):
        position = len(mixed)
        new_slot = ni < len(new) and position > 0 and position % interval == 0
        if new_slot or fi >= len(filler):
            mixed.append(new[ni])
            ni += 1
        else:
            mixed.append(filler[fi])
            fi += 1
    return mixed


def build_session(
    new: list[CardSchedulingState],
    learning: list[CardSchedulingState],
    review: list[CardSchedulingState],
    *,
    rng: random.Random | None = None,
    min_gap: int = REQUEUE_MIN_GAP,
) -> StudySession:
    """
    Build a StudySession from candidate lists.

    Args:
        rng: Random source for requeue positions; pass a seeded one for
            reproducible sessions.
        min_gap: Minimum number of cards between a lapse and its repeat.
    """
    queue = mix_cards(new, learning, review)
    logger.info(
        f"Session built: {len(queue)} cards "
        f"(new={len(new)}, learning={len(learning)}, review={len(review)})"
    )
    return StudySession(queue=queue, rng=rng or random.Random(), min_gap=min_gap)


def session_from_candidates(
    candidates: DueCandidates, *, rng: random.Random | None = None
) -> StudySession:
    return build_session(candidates.new, candidates.learning, candidates.review, rng=rng)
