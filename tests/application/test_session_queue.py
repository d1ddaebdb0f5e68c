import random
from datetime import timedelta

import pytest

from mnemo.application.session_queue import StudySession, build_session, mix_cards
from mnemo.application.state_machine import CardStateMachine
from mnemo.domain.models import CardState, Rating


@pytest.fixture
def reviews(make_card):
    return [make_card(f"r{i}", due_in=-10 + i) for i in range(10)]


@pytest.fixture
def new_cards(make_card):
    return [make_card(f"n{i}", state=CardState.NEW) for i in range(2)]


def test_new_cards_spaced_evenly(reviews, new_cards):
    mixed = mix_cards(new_cards, [], reviews)

    assert len(mixed) == 12
    new_positions = [i for i, c in enumerate(mixed) if c.state is CardState.NEW]
    assert new_positions == [4, 8]
    # Filler keeps due order
    assert [c.id for c in mixed if c.state is not CardState.NEW] == [f"r{i}" for i in range(10)]


def test_learning_first_on_equal_due(make_card):
    review = make_card("r", due_in=-1)
    learning = make_card("l", state=CardState.LEARNING, due_in=-1)
    mixed = mix_cards([], [learning], [review])
    assert [c.id for c in mixed] == ["l", "r"]


def test_only_new_cards(new_cards):
    mixed = mix_cards(new_cards, [], [])
    assert [c.id for c in mixed] == ["n0", "n1"]


def test_empty_session():
    session = build_session([], [], [])
    assert session.get_next() is None
    assert session.is_finished


def test_session_exhausts_after_advancing(make_card):
    cards = [make_card(f"r{i}", due_in=-3 + i) for i in range(3)]
    session = build_session([], [], cards)

    seen = []
    while (card := session.get_next()) is not None:
        seen.append(card.id)
        session.advance(card)

    assert seen == ["r0", "r1", "r2"]
    assert session.get_next() is None
    stats = session.stats()
    assert stats.completed_cards == 3
    assert stats.remaining_cards == 0


def test_get_next_does_not_advance(reviews):
    session = build_session([], [], reviews)
    assert session.get_next() is session.get_next()


def test_lapsed_card_requeued_within_window(reviews, params, now):
    session = build_session([], [], reviews, rng=random.Random(3))
    card = session.get_next()
    outcome = CardStateMachine().apply_review(card, Rating.AGAIN, params, now)
    assert outcome.card.state is CardState.RELEARNING

    position = session.advance(card, outcome)

    # cursor=1, 9 cards left, 1-minute step -> at least 4 cards later
    assert position is not None
    assert 5 <= position <= 10
    assert len(session.queue) == 11
    assert session.queue[position] is outcome.card


def test_graduated_card_not_requeued(reviews, params, now):
    session = build_session([], [], reviews)
    card = session.get_next()
    outcome = CardStateMachine().apply_review(card, Rating.GOOD, params, now)
    assert session.advance(card, outcome) is None
    assert len(session.queue) == 10


def test_requeue_position_grows_with_step_length(make_card):
    cards = [make_card(f"r{i}") for i in range(100)]
    # Pinned to the low end of the window
    session = StudySession(queue=list(cards), rng=_LowestRandom())
    assert session._requeue_position(0.5 / 1440) == 15
    assert session._requeue_position(5 / 1440) == 25
    assert session._requeue_position(1.0) == 30


def test_requeue_near_end_of_queue(make_card, params, now):
    cards = [make_card(f"r{i}") for i in range(2)]
    session = build_session([], [], cards, rng=random.Random(1))
    first = session.get_next()
    session.advance(first)
    last = session.get_next()
    outcome = CardStateMachine().apply_review(last, Rating.AGAIN, params, now)

    # Fewer cards left than the minimum gap: goes to the end
    assert session.advance(last, outcome) == 2
    assert session.get_next() is outcome.card


def test_stats_count_unique_cards(make_card, params, now):
    new = make_card("n", state=CardState.NEW)
    review = make_card("r", due_in=-1)
    session = build_session([new], [], [review], rng=random.Random(0), min_gap=0)
    machine = CardStateMachine()

    moment = now
    while (card := session.get_next()) is not None:
        rating = Rating.AGAIN if card.id == "r" and card.state is CardState.REVIEW else Rating.EASY
        outcome = machine.apply_review(card, rating, params, moment)
        session.advance(card, outcome)
        moment += timedelta(minutes=2)

    stats = session.stats()
    assert stats.unique_completed == 2
    assert stats.new_cards_studied == 1
    assert stats.reviews_completed == 1
    assert stats.completed_cards == 3


class _LowestRandom(random.Random):
    def randint(self, a, b):
        return a
