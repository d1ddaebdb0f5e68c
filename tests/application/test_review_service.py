import random
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from mnemo.application.review_service import ReviewService
from mnemo.domain.errors import InvalidInput, PersistenceError
from mnemo.domain.models import CardState, DayBoundary, Rating, SchedulerParameters
from mnemo.infrastructure.adapters.memory_store import MemoryStore


@pytest.fixture
def deck(make_card):
    cards = [make_card(f"r{i}", due_in=-1 - i) for i in range(3)]
    cards += [make_card(f"n{i}", state=CardState.NEW) for i in range(3)]
    return MemoryStore(cards)


@pytest.fixture
def service(deck):
    return ReviewService(cards=deck, logs=deck, settings=deck)


@pytest.mark.asyncio
async def test_session_grades_and_persists(service, deck, now):
    session = await service.start_session("deck", "u", now, rng=random.Random(0))
    assert len(session.study.queue) == 6

    card = session.get_next()
    outcome = await service.grade(session, Rating.GOOD, now)

    assert deck.cards[card.id] == outcome.card
    assert outcome.log.id in deck.logs
    assert session.study.cursor == 1


@pytest.mark.asyncio
async def test_quota_reflects_graded_cards(service, deck, now):
    session = await service.start_session("deck", "u", now)
    while (card := session.get_next()) is not None:
        await service.grade(session, Rating.EASY if card.state is CardState.NEW else Rating.GOOD, now)

    quota = await service.quota_for_today("deck", "u", now)
    assert quota.new_cards == 3
    assert quota.reviews == 3

    # Other users have their own quota
    assert (await service.quota_for_today("deck", "someone-else", now)).new_cards == 0


@pytest.mark.asyncio
async def test_session_respects_deck_limits(service, deck, now):
    deck.set_parameters("deck", SchedulerParameters(daily_new_cards_limit=1, daily_review_limit=2))
    session = await service.start_session("deck", "u", now)
    assert len(session.study.queue) == 3
    assert session.params.daily_new_cards_limit == 1


@pytest.mark.asyncio
async def test_grading_exhausted_session(service, now):
    session = await service.start_session("empty-deck", "u", now)
    with pytest.raises(InvalidInput):
        await service.grade(session, Rating.GOOD, now)


@pytest.mark.asyncio
async def test_persistence_failure_keeps_session_in_place(deck, now):
    cards = AsyncMock(wraps=deck)
    cards.persist_card_update.side_effect = PersistenceError("disk full")
    service = ReviewService(cards=cards, logs=deck, settings=deck)

    session = await service.start_session("deck", "u", now)
    current = session.get_next()

    with pytest.raises(PersistenceError) as exc_info:
        await service.grade(session, Rating.HARD, now)

    error = exc_info.value
    assert error.outcome is not None
    assert error.outcome.card.id == current.id
    assert session.get_next() is current
    assert deck.logs == {}

    # Storage recovers: retry with the computed outcome
    cards.persist_card_update.side_effect = None
    retried = await service.grade(session, Rating.AGAIN, now, outcome=error.outcome)

    assert retried is error.outcome
    assert retried.rating is Rating.HARD
    assert list(deck.logs) == [retried.log.id]
    assert session.study.cursor == 1


@pytest.mark.asyncio
async def test_retry_persist_is_idempotent(service, deck, now):
    outcome = await service.grade_card("deck", "r0", Rating.GOOD, "u", now)
    await service.retry_persist(outcome)
    await service.retry_persist(outcome)

    assert len(deck.logs) == 1
    assert deck.cards["r0"] == outcome.card


@pytest.mark.asyncio
async def test_retry_with_mismatched_outcome(service, now):
    other = await service.grade_card("deck", "n0", Rating.GOOD, "u", now)
    session = await service.start_session("deck", "u", now)
    assert session.get_next().id != "n0"
    with pytest.raises(InvalidInput):
        await service.grade(session, Rating.GOOD, now, outcome=other)


@pytest.mark.asyncio
async def test_log_write_failure_reports_outcome(deck, now):
    logs = AsyncMock()
    logs.append_review_log.side_effect = PersistenceError("log table locked")
    service = ReviewService(cards=deck, logs=logs, settings=deck)

    with pytest.raises(PersistenceError) as exc_info:
        await service.grade_card("deck", "r1", Rating.GOOD, "u", now)
    assert exc_info.value.outcome.card.id == "r1"


@pytest.mark.asyncio
async def test_grade_unknown_card(service, now):
    with pytest.raises(InvalidInput):
        await service.grade_card("deck", "missing", Rating.GOOD, "u", now)


@pytest.mark.asyncio
async def test_preview_and_forget(service, deck, now):
    outcomes = await service.preview_card("deck", "r0", now)
    assert set(outcomes) == {Rating.AGAIN, Rating.HARD, Rating.GOOD, Rating.EASY}
    assert deck.logs == {}

    outcome = await service.forget_card("deck", "r0", "u", now + timedelta(minutes=1))
    assert deck.cards["r0"].state is CardState.NEW
    assert outcome.log.rating is Rating.MANUAL
    # Manual resets do not use up quota
    quota = await service.quota_for_today("deck", "u", now + timedelta(minutes=1))
    assert quota.reviews == 0


@pytest.mark.asyncio
async def test_deck_overview_uses_day_boundary(deck, now):
    service = ReviewService(cards=deck, logs=deck, settings=deck, boundary=DayBoundary("UTC", 4))
    await service.grade_card("deck", "n0", Rating.GOOD, "u", now)

    overview = await service.deck_overview("deck", "u", now)
    assert overview.new_studied_today == 1
    assert overview.new_available == 2
    assert overview.learning_due == 0

    # Next study day starts at 04:00 UTC
    tomorrow = now.replace(hour=4) + timedelta(days=1)
    overview = await service.deck_overview("deck", "u", tomorrow)
    assert overview.new_studied_today == 0
    assert overview.learning_due == 1
