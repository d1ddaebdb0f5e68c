import random
from dataclasses import replace
from datetime import datetime, timedelta

import pytest

from mnemo.application.state_machine import CardStateMachine
from mnemo.domain.errors import InvalidInput
from mnemo.domain.models import (
    GRADES,
    CardSchedulingState,
    CardState,
    Rating,
    SchedulerParameters,
)


@pytest.fixture
def machine():
    return CardStateMachine()


# --- New cards ---


def test_new_card_good_enters_learning(machine, params, now):
    card = CardSchedulingState.new("c1", "deck", now)
    outcome = machine.apply_review(card, Rating.GOOD, params, now, user_id="u1", duration_ms=4200)

    assert outcome.card.state is CardState.LEARNING
    assert outcome.card.reps == 1
    assert outcome.card.scheduled_days > 0
    assert outcome.card.due == now + timedelta(minutes=10)
    assert outcome.card.stability == pytest.approx(2.4)
    assert outcome.card.difficulty == pytest.approx(4.93)
    assert outcome.card.last_review == now

    record = outcome.log.to_record()
    assert record["rating"] == "good"
    assert outcome.log.previous_state is CardState.NEW
    assert outcome.log.user_id == "u1"
    assert outcome.log.review_duration_ms == 4200
    assert outcome.log.id.startswith("rev_")
    # Log keeps the state the card was graded from
    assert outcome.log.stability == 0.0


@pytest.mark.parametrize(
    "rating,minutes",
    [(Rating.AGAIN, 1.0), (Rating.HARD, 5.5), (Rating.GOOD, 10.0)],
)
def test_new_card_learning_steps(machine, params, now, rating, minutes):
    card = CardSchedulingState.new("c1", "deck", now)
    outcome = machine.apply_review(card, rating, params, now)
    assert outcome.card.state is CardState.LEARNING
    assert outcome.card.scheduled_days == pytest.approx(minutes / 1440)


def test_new_card_easy_graduates(machine, params, now):
    card = CardSchedulingState.new("c1", "deck", now)
    outcome = machine.apply_review(card, "easy", params, now)
    assert outcome.card.state is CardState.REVIEW
    assert outcome.card.scheduled_days == 6.0
    assert outcome.card.due == now + timedelta(days=6)


def test_new_card_easy_can_stay_in_learning(machine, now):
    params = SchedulerParameters(easy_skips_learning=False)
    card = CardSchedulingState.new("c1", "deck", now)
    outcome = machine.apply_review(card, Rating.EASY, params, now)
    assert outcome.card.state is CardState.LEARNING


def test_single_learning_step_hard_delay(machine, now):
    params = SchedulerParameters(learning_steps=(4.0,))
    card = CardSchedulingState.new("c1", "deck", now)
    outcome = machine.apply_review(card, Rating.HARD, params, now)
    assert outcome.card.scheduled_days == pytest.approx(6.0 / 1440)


# --- Learning / Relearning ---


def test_learning_card_graduates_on_good(machine, params, now):
    card = CardSchedulingState.new("c1", "deck", now)
    learning = machine.apply_review(card, Rating.GOOD, params, now).card

    later = now + timedelta(minutes=10)
    outcome = machine.apply_review(learning, Rating.GOOD, params, later)
    assert outcome.card.state is CardState.REVIEW
    assert outcome.card.scheduled_days >= 1
    assert outcome.card.reps == 2
    assert outcome.log.previous_state is CardState.LEARNING


def test_learning_card_again_stays_in_learning(machine, params, now):
    card = CardSchedulingState.new("c1", "deck", now)
    learning = machine.apply_review(card, Rating.GOOD, params, now).card
    outcome = machine.apply_review(learning, Rating.AGAIN, params, now + timedelta(minutes=10))
    assert outcome.card.state is CardState.LEARNING
    assert outcome.card.lapses == 0
    assert outcome.card.scheduled_days == pytest.approx(1 / 1440)


def test_relearning_card_again_stays_in_relearning(machine, params, now, make_card):
    card = make_card(state=CardState.RELEARNING, stability=2.9, days_ago=1 / 1440, lapses=1)
    outcome = machine.apply_review(card, Rating.AGAIN, params, now)
    assert outcome.card.state is CardState.RELEARNING
    assert outcome.card.lapses == 1


def test_relearning_card_recovers(machine, params, now, make_card):
    card = make_card(state=CardState.RELEARNING, stability=2.9, days_ago=1 / 1440, lapses=1)
    outcome = machine.apply_review(card, Rating.GOOD, params, now)
    assert outcome.card.state is CardState.REVIEW
    assert outcome.card.lapses == 1


# --- Review cards ---


def test_review_card_on_time(machine, params, now, make_card):
    card = make_card(stability=10.0, difficulty=5.0, days_ago=10.0)
    outcomes = machine.preview(card, params, now)

    assert outcomes[Rating.HARD].card.scheduled_days == 16.0
    assert outcomes[Rating.GOOD].card.scheduled_days == 29.0
    assert outcomes[Rating.EASY].card.scheduled_days == 60.0
    assert outcomes[Rating.GOOD].card.stability == pytest.approx(29.01, rel=1e-3)
    assert outcomes[Rating.GOOD].card.difficulty == pytest.approx(4.9993, rel=1e-4)
    assert all(o.card.state is CardState.REVIEW for r, o in outcomes.items() if r is not Rating.AGAIN)


def test_review_card_lapse(machine, params, now, make_card):
    card = make_card(stability=10.0, difficulty=5.0, days_ago=10.0, lapses=2)
    outcome = machine.apply_review(card, Rating.AGAIN, params, now)

    assert outcome.card.state is CardState.RELEARNING
    assert outcome.card.lapses == 3
    assert outcome.card.stability == pytest.approx(2.874, rel=1e-3)
    assert outcome.card.due == now + timedelta(minutes=1)
    assert outcome.log.previous_state is CardState.REVIEW


def test_preview_is_ordered_and_does_not_mutate(machine, params, now, make_card):
    card = make_card(stability=3.0, difficulty=7.0, days_ago=1.0)
    before = replace(card)
    outcomes = machine.preview(card, params, now)

    assert set(outcomes) == set(GRADES)
    hard = outcomes[Rating.HARD].card.scheduled_days
    good = outcomes[Rating.GOOD].card.scheduled_days
    easy = outcomes[Rating.EASY].card.scheduled_days
    assert hard <= good < easy
    assert card == before


def test_fuzzed_intervals_stay_ordered(machine, now, make_card):
    params = SchedulerParameters(enable_fuzz=True)
    card = make_card(stability=40.0, difficulty=4.0, days_ago=40.0)
    outcomes = machine.preview(card, params, now)
    hard = outcomes[Rating.HARD].card.scheduled_days
    good = outcomes[Rating.GOOD].card.scheduled_days
    easy = outcomes[Rating.EASY].card.scheduled_days
    assert hard <= good < easy
    # Same inputs, same fuzz
    assert machine.preview(card, params, now)[Rating.GOOD].card == outcomes[Rating.GOOD].card


# --- Determinism / invariants ---


def test_apply_review_is_deterministic(machine, params, now, make_card):
    card = make_card()
    first = machine.apply_review(card, Rating.HARD, params, now, user_id="u")
    second = machine.apply_review(card, Rating.HARD, params, now, user_id="u")
    assert first.card == second.card
    assert replace(first.log, id="x") == replace(second.log, id="x")


def test_long_review_history_keeps_invariants(machine, params, now):
    rng = random.Random(42)
    card = CardSchedulingState.new("c1", "deck", now)
    moment = now
    for i in range(200):
        rating = rng.choice(GRADES)
        outcome = machine.apply_review(card, rating, params, moment)
        updated = outcome.card

        assert 0.1 <= updated.stability <= params.maximum_stability
        assert 1.0 <= updated.difficulty <= 10.0
        assert updated.lapses >= card.lapses
        assert updated.reps == i + 1
        assert abs((updated.due - (moment + timedelta(days=updated.scheduled_days))).total_seconds()) < 1e-3
        if card.state is CardState.REVIEW and rating is Rating.AGAIN:
            assert updated.lapses == card.lapses + 1

        card = updated
        moment += timedelta(days=min(card.scheduled_days, 30.0), seconds=1)


# --- Rejections ---


def test_rejects_review_before_last_review(machine, params, now, make_card):
    card = make_card(days_ago=-1.0)
    with pytest.raises(InvalidInput):
        machine.apply_review(card, Rating.GOOD, params, now)


def test_rejects_naive_now(machine, params, make_card):
    with pytest.raises(InvalidInput):
        machine.apply_review(make_card(), Rating.GOOD, params, datetime(2024, 5, 14, 9, 30))


@pytest.mark.parametrize("rating", [0, 5, "great", Rating.MANUAL])
def test_rejects_bad_rating(machine, params, now, make_card, rating):
    with pytest.raises(InvalidInput):
        machine.apply_review(make_card(), rating, params, now)


@pytest.mark.parametrize("duration", [-1, 1.5, "10"])
def test_rejects_bad_duration(machine, params, now, make_card, duration):
    with pytest.raises(InvalidInput):
        machine.apply_review(make_card(), Rating.GOOD, params, now, duration_ms=duration)


def test_rejects_corrupt_card(machine, params, now, make_card):
    card = replace(make_card(), difficulty=12.0)
    with pytest.raises(InvalidInput):
        machine.apply_review(card, Rating.GOOD, params, now)


# --- Forget / retrievability ---


def test_forget_resets_memory_state(machine, now, make_card):
    card = make_card(reps=7, lapses=2)
    outcome = machine.forget(card, now, user_id="u")

    assert outcome.card.state is CardState.NEW
    assert outcome.card.stability == 0.0
    assert outcome.card.difficulty == 0.0
    assert outcome.card.due == now
    assert outcome.card.reps == 7
    assert outcome.card.lapses == 2
    assert outcome.log.rating is Rating.MANUAL
    assert outcome.log.previous_state is CardState.REVIEW


def test_forget_can_reset_counts(machine, now, make_card):
    outcome = machine.forget(make_card(reps=7, lapses=2), now, reset_counts=True)
    assert outcome.card.reps == 0
    assert outcome.card.lapses == 0


def test_current_retrievability(machine, params, now, make_card):
    assert machine.current_retrievability(make_card(stability=10.0, days_ago=10.0), params, now) == (
        pytest.approx(0.9)
    )
    new_card = CardSchedulingState.new("n", "deck", now)
    assert machine.current_retrievability(new_card, params, now) == 0.0
