"""
Due-set selection: which cards of a deck are eligible right now.

Learning and relearning cards are never held back by daily limits; new and
review cards are capped by what is left of the day's quota, unless FSRS is
switched off for the deck, in which case everything due is eligible.
"""

import logging
from collections.abc import Iterable
from datetime import datetime

from mnemo.domain.models import (
    CardSchedulingState,
    CardState,
    DeckOverview,
    DueCandidates,
    QuotaUsage,
    Rating,
    ReviewLogEntry,
    SchedulerParameters,
    ensure_aware,
)

logger = logging.getLogger(__name__)


def _by_due(card: CardSchedulingState) -> tuple[datetime, str]:
    return (card.due, card.id)


def select_due(
    cards: Iterable[CardSchedulingState],
    params: SchedulerParameters,
    quota: QuotaUsage,
    now: datetime,
) -> DueCandidates:
    """
    Split a deck's cards into new, learning and review candidates.

    Args:
        cards: Every card of the deck.
        params: Deck limits and the ``enable_fsrs`` switch.
        quota: New cards and reviews already consumed today.
        now: Aware current time.

    Returns:
        DueCandidates, each group sorted by ascending due (ties by id).
        Exhausted quotas simply yield empty groups.
    """
    ensure_aware(now, "now")

    new: list[CardSchedulingState] = []
    learning: list[CardSchedulingState] = []
    review: list[CardSchedulingState] = []

    for card in cards:
        if card.state is CardState.NEW:
            new.append(card)
        elif card.due <= now:
            if card.state is CardState.REVIEW:
                review.append(card)
            else:
                learning.append(card)

    new.sort(key=_by_due)
    learning.sort(key=_by_due)
    review.sort(key=_by_due)

    # Without FSRS the deck falls back to plain due-date gating
    if params.enable_fsrs:
        new = new[: max(params.daily_new_cards_limit - quota.new_cards, 0)]
        review = review[: max(params.daily_review_limit - quota.reviews, 0)]

    logger.debug(
        f"Selected new={len(new)} learning={len(learning)} review={len(review)} "
        f"(quota used: new={quota.new_cards}, reviews={quota.reviews})"
    )
    return DueCandidates(new=new, learning=learning, review=review)


def count_quota(logs: Iterable[ReviewLogEntry], day_start: datetime) -> QuotaUsage:
    """
    Derive today's consumed quota from durable log entries.

    A grading from New counts one new card, a grading from Review counts one
    review. Learning steps and manual resets count towards neither.
    """
    new_cards = 0
    reviews = 0
    for entry in logs:
        if entry.review_time < day_start or entry.rating is Rating.MANUAL:
            continue
        if entry.previous_state is CardState.NEW:
            new_cards += 1
        elif entry.previous_state is CardState.REVIEW:
            reviews += 1
    return QuotaUsage(new_cards=new_cards, reviews=reviews)


def deck_overview(
    cards: Iterable[CardSchedulingState],
    params: SchedulerParameters,
    quota: QuotaUsage,
    now: datetime,
) -> DeckOverview:
    """Counts of what a session started now would contain."""
    candidates = select_due(cards, params, quota, now)
    return DeckOverview(
        new_available=len(candidates.new),
        learning_due=len(candidates.learning),
        review_due=len(candidates.review),
        new_studied_today=quota.new_cards,
        reviews_done_today=quota.reviews,
    )
