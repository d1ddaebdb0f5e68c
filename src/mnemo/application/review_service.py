"""
Review Service — Application layer orchestrator.

Wires the pure scheduling components to the storage ports: reads deck
parameters, cards and today's quota, builds sessions, and writes graded
outcomes back through the ports before the session moves on.
"""

import logging
import random
from dataclasses import dataclass
from datetime import datetime

from mnemo.domain.errors import InvalidInput, PersistenceError
from mnemo.domain.models import (
    CardSchedulingState,
    DayBoundary,
    DeckOverview,
    QuotaUsage,
    Rating,
    ReviewOutcome,
    SchedulerParameters,
)
from mnemo.domain.ports import CardRepository, DeckSettingsRepository, ReviewLogRepository

from .due_selector import deck_overview, select_due
from .session_queue import StudySession, session_from_candidates
from .state_machine import CardStateMachine

logger = logging.getLogger(__name__)


@dataclass
class ActiveSession:
    """
    A StudySession bound to the deck, user and parameters it was built with.

    Parameters are frozen at session start; start a new session to pick up
    changed deck settings.
    """

    deck_id: str
    user_id: str | None
    params: SchedulerParameters
    study: StudySession

    def get_next(self) -> CardSchedulingState | None:
        return self.study.get_next()


class ReviewService:
    """
    Application service for running study sessions against storage ports.

    Follows Dependency Inversion: depends on the repository abstractions,
    not concrete adapter implementations.
    """

    def __init__(
        self,
        cards: CardRepository,
        logs: ReviewLogRepository,
        settings: DeckSettingsRepository,
        boundary: DayBoundary | None = None,
        machine: CardStateMachine | None = None,
    ):
        self._cards = cards
        self._logs = logs
        self._settings = settings
        self._boundary = boundary or DayBoundary()
        self._machine = machine or CardStateMachine()

    @property
    def boundary(self) -> DayBoundary:
        return self._boundary

    async def quota_for_today(self, deck_id: str, user_id: str | None, now: datetime) -> QuotaUsage:
        return await self._logs.count_today_activity(deck_id, user_id, self._boundary.day_start(now))

    async def start_session(
        self,
        deck_id: str,
        user_id: str | None,
        now: datetime,
        *,
        rng: random.Random | None = None,
    ) -> ActiveSession:
        """
        Select today's due cards for a deck and order them into a session.
        """
        params = await self._settings.get_scheduler_parameters(deck_id)
        quota = await self.quota_for_today(deck_id, user_id, now)
        cards = await self._cards.fetch_cards_for_deck(deck_id)

        candidates = select_due(cards, params, quota, now)
        study = session_from_candidates(candidates, rng=rng)
        logger.info(
            f"Started session deck={deck_id} user={user_id}: {len(study.queue)} cards "
            f"(new={len(candidates.new)}, learning={len(candidates.learning)}, "
            f"review={len(candidates.review)})"
        )
        return ActiveSession(deck_id=deck_id, user_id=user_id, params=params, study=study)

    async def grade(
        self,
        session: ActiveSession,
        rating: Rating | int | str,
        now: datetime,
        *,
        duration_ms: int = 0,
        outcome: ReviewOutcome | None = None,
    ) -> ReviewOutcome:
        """
        Grade the session's current card, persist the result, then advance.

        Pass ``outcome`` (taken from a PersistenceError) to retry a failed
        write without grading again; ``rating`` is ignored in that case.

        Raises:
            InvalidInput: if the session is exhausted or the input is malformed.
            PersistenceError: if storage rejected the write. The session does
                not advance and ``error.outcome`` holds the computed result.
        """
        card = session.get_next()
        if card is None:
            raise InvalidInput("Session has no current card to grade")

        if outcome is None:
            outcome = self._machine.apply_review(
                card, rating, session.params, now, user_id=session.user_id, duration_ms=duration_ms
            )
        elif outcome.card.id != card.id:
            raise InvalidInput(
                f"Outcome for card {outcome.card.id!r} does not match current card {card.id!r}"
            )

        await self.persist(outcome)
        session.study.advance(card, outcome)
        return outcome

    async def persist(self, outcome: ReviewOutcome) -> None:
        """
        Write the updated card and its log entry.

        Safe to call again with the same outcome after a failure.
        """
        try:
            await self._cards.persist_card_update(outcome.card.id, outcome.card.scheduling_fields())
            await self._logs.append_review_log(outcome.log)
        except PersistenceError as e:
            logger.warning(f"Failed to persist review of card {outcome.card.id}: {e}")
            if e.outcome is None:
                e.outcome = outcome
            raise
        logger.debug(f"Persisted review {outcome.log.id} for card {outcome.card.id}")

    async def retry_persist(self, outcome: ReviewOutcome) -> None:
        await self.persist(outcome)

    async def _get_card(self, deck_id: str, card_id: str) -> CardSchedulingState:
        cards = await self._cards.fetch_cards_for_deck(deck_id, {"id": card_id})
        if not cards:
            raise InvalidInput(f"Card {card_id!r} not found in deck {deck_id!r}")
        return cards[0]

    async def grade_card(
        self,
        deck_id: str,
        card_id: str,
        rating: Rating | int | str,
        user_id: str | None,
        now: datetime,
        *,
        duration_ms: int = 0,
    ) -> ReviewOutcome:
        """Grade a single card outside of any session."""
        params = await self._settings.get_scheduler_parameters(deck_id)
        card = await self._get_card(deck_id, card_id)
        outcome = self._machine.apply_review(
            card, rating, params, now, user_id=user_id, duration_ms=duration_ms
        )
        await self.persist(outcome)
        return outcome

    async def preview_card(
        self, deck_id: str, card_id: str, now: datetime
    ) -> dict[Rating, ReviewOutcome]:
        params = await self._settings.get_scheduler_parameters(deck_id)
        card = await self._get_card(deck_id, card_id)
        return self._machine.preview(card, params, now)

    async def forget_card(
        self,
        deck_id: str,
        card_id: str,
        user_id: str | None,
        now: datetime,
        *,
        reset_counts: bool = False,
    ) -> ReviewOutcome:
        """Reset a card to New and persist it."""
        card = await self._get_card(deck_id, card_id)
        outcome = self._machine.forget(card, now, reset_counts=reset_counts, user_id=user_id)
        await self.persist(outcome)
        logger.info(f"Card {card_id} reset to new")
        return outcome

    async def deck_overview(self, deck_id: str, user_id: str | None, now: datetime) -> DeckOverview:
        params = await self._settings.get_scheduler_parameters(deck_id)
        quota = await self.quota_for_today(deck_id, user_id, now)
        cards = await self._cards.fetch_cards_for_deck(deck_id)
        return deck_overview(cards, params, quota, now)
