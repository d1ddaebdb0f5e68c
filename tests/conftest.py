from datetime import datetime, timedelta, timezone

import pytest

from mnemo.domain.models import CardSchedulingState, CardState, SchedulerParameters
from mnemo.infrastructure.adapters.memory_store import MemoryStore

NOW = datetime(2024, 5, 14, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def params():
    return SchedulerParameters()


@pytest.fixture
def make_card():
    """Factory for cards in any state, reviewed ``days_ago`` before NOW."""

    def _make(
        card_id="c1",
        deck_id="deck",
        state=CardState.REVIEW,
        stability=10.0,
        difficulty=5.0,
        days_ago=10.0,
        due_in=0.0,
        reps=5,
        lapses=0,
        scheduled_days=10.0,
    ):
        if state is CardState.NEW:
            return CardSchedulingState.new(card_id, deck_id, NOW + timedelta(days=due_in))
        return CardSchedulingState(
            id=card_id,
            deck_id=deck_id,
            state=state,
            due=NOW + timedelta(days=due_in),
            stability=stability,
            difficulty=difficulty,
            elapsed_days=scheduled_days,
            scheduled_days=scheduled_days,
            reps=reps,
            lapses=lapses,
            last_review=NOW - timedelta(days=days_ago),
        )

    return _make


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def mock_home(tmp_path, monkeypatch):
    """Mocks Path.home() to point to a temp dir."""
    home = tmp_path / "home"
    home.mkdir()

    # Mocking HOME to a temp directory to isolate config files
    monkeypatch.setenv("HOME", str(home))
    for var in ("MNEMO_TIMEZONE", "MNEMO_BACKEND", "MNEMO_DATABASE_PATH", "MNEMO_DAY_ROLLOVER_HOUR"):
        monkeypatch.delenv(var, raising=False)
    return home
