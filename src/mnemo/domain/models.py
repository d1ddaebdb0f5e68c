"""
Domain models for FSRS scheduling.

These are pure data structures with no I/O. Scheduling fields on
CardSchedulingState are only ever produced by the CardStateMachine.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import date, datetime, time, timedelta, timezone
from enum import IntEnum
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .constants import (
    DEFAULT_DAILY_NEW_CARDS,
    DEFAULT_DAILY_REVIEWS,
    DEFAULT_LEARNING_STEPS,
    DEFAULT_MAXIMUM_STABILITY,
    DEFAULT_REQUEST_RETENTION,
    DEFAULT_WEIGHTS,
    MAX_DIFFICULTY,
    WEIGHT_COUNT,
)
from .errors import InvalidInput


class Rating(IntEnum):
    """Grade given to a review. ``MANUAL`` marks forget/reset events only."""

    MANUAL = 0
    AGAIN = 1
    HARD = 2
    GOOD = 3
    EASY = 4

    @property
    def label(self) -> str:
        return self.name.lower()

    @classmethod
    def parse(cls, value: Any) -> Rating:
        """
        Coerce an enum member, its int value or its label into a grading rating.

        Raises:
            InvalidInput: for anything that is not Again/Hard/Good/Easy.
        """
        rating: Rating | None = None
        if isinstance(value, Rating):
            rating = value
        elif isinstance(value, bool):
            rating = None
        elif isinstance(value, int):
            rating = cls._value2member_map_.get(value)  # type: ignore[assignment]
        elif isinstance(value, str):
            rating = cls.__members__.get(value.strip().upper())

        if rating is None or rating is Rating.MANUAL:
            raise InvalidInput(f"Invalid rating: {value!r}")
        return rating


GRADES = (Rating.AGAIN, Rating.HARD, Rating.GOOD, Rating.EASY)


class CardState(IntEnum):
    """Scheduling phase. Integer values match the stored representation."""

    NEW = 0
    LEARNING = 1
    REVIEW = 2
    RELEARNING = 3

    @property
    def label(self) -> str:
        return self.name.lower()

    @classmethod
    def parse(cls, value: Any) -> CardState:
        if isinstance(value, CardState):
            return value
        if isinstance(value, int) and not isinstance(value, bool):
            if value in cls._value2member_map_:
                return cls(value)
        elif isinstance(value, str) and value.strip().upper() in cls.__members__:
            return cls[value.strip().upper()]
        raise InvalidInput(f"Invalid card state: {value!r}")


SHORT_TERM_STATES = frozenset({CardState.LEARNING, CardState.RELEARNING})


def ensure_aware(moment: datetime, name: str = "timestamp") -> datetime:
    """Reject naive datetimes; the core never guesses a timezone."""
    if not isinstance(moment, datetime):
        raise InvalidInput(f"{name} must be a datetime, got {type(moment).__name__}")
    if moment.tzinfo is None or moment.utcoffset() is None:
        raise InvalidInput(f"{name} must be timezone-aware")
    return moment


def parse_timestamp(value: Any) -> datetime | None:
    """
    Normalise a stored timestamp. Storage columns are "timestamp without time
    zone" holding UTC, so naive values are read as UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, str):
        try:
            moment = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError as e:
            raise InvalidInput(f"Unparseable timestamp: {value!r}") from e
    else:
        raise InvalidInput(f"Unsupported timestamp value: {value!r}")
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


@dataclass(frozen=True)
class CardSchedulingState:
    """
    The per-card memory record.

    Attributes:
        id: Opaque card identifier.
        deck_id: Owning deck.
        state: Current scheduling phase.
        stability: Days until retrievability decays to the target retention
            (0 until the first review).
        difficulty: 1-10 (0 until the first review).
        elapsed_days: Days between the last two reviews.
        scheduled_days: Interval chosen at the last grading.
        reps: Total graded reviews.
        lapses: Forgetting events from Review state.
        due: When the card next becomes eligible.
        last_review: Time of the last grading, None if never reviewed.
        content: Opaque content fields passed through untouched.
    """

    id: str
    deck_id: str
    state: CardState
    due: datetime
    stability: float = 0.0
    difficulty: float = 0.0
    elapsed_days: float = 0.0
    scheduled_days: float = 0.0
    reps: int = 0
    lapses: int = 0
    last_review: datetime | None = None
    content: Mapping[str, Any] = field(default_factory=dict, hash=False, compare=False)

    @classmethod
    def new(cls, card_id: str, deck_id: str, now: datetime, **content: Any) -> CardSchedulingState:
        """Build an empty, never-reviewed card that is due immediately."""
        return cls(
            id=card_id,
            deck_id=deck_id,
            state=CardState.NEW,
            due=ensure_aware(now, "now"),
            content=dict(content),
        )

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> CardSchedulingState:
        """
        Build a card from a storage row, filling absent scheduling fields with
        the empty-card defaults. Unknown keys are kept as content.
        """
        try:
            card_id = record["id"]
            deck_id = record["deck_id"]
        except KeyError as e:
            raise InvalidInput(f"Card record missing required field {e.args[0]!r}") from e

        due = parse_timestamp(record.get("due"))
        if due is None:
            raise InvalidInput(f"Card {card_id!r} has no due timestamp")

        content = {k: v for k, v in record.items() if k not in SCHEDULING_FIELDS}
        try:
            return cls(
                id=str(card_id),
                deck_id=str(deck_id),
                state=CardState.parse(record.get("state") or CardState.NEW),
                due=due,
                stability=float(record.get("stability") or 0.0),
                difficulty=float(record.get("difficulty") or 0.0),
                elapsed_days=float(record.get("elapsed_days") or 0.0),
                scheduled_days=float(record.get("scheduled_days") or 0.0),
                reps=int(record.get("reps") or 0),
                lapses=int(record.get("lapses") or 0),
                last_review=parse_timestamp(record.get("last_review")),
                content=content,
            )
        except (TypeError, ValueError) as e:
            raise InvalidInput(f"Card {card_id!r} has a malformed field: {e}") from e

    def scheduling_fields(self) -> dict[str, Any]:
        """The partial update written back to card storage."""
        return {
            "state": int(self.state),
            "stability": self.stability,
            "difficulty": self.difficulty,
            "elapsed_days": self.elapsed_days,
            "scheduled_days": self.scheduled_days,
            "reps": self.reps,
            "lapses": self.lapses,
            "due": self.due,
            "last_review": self.last_review,
        }

    def with_fields(self, fields: Mapping[str, Any]) -> CardSchedulingState:
        """Apply a scheduling_fields() style update."""
        known = {k: v for k, v in fields.items() if k in SCHEDULING_FIELDS and k not in ("id", "deck_id")}
        if "state" in known:
            known["state"] = CardState.parse(known["state"])
        return replace(self, **known)

    def validate(self) -> None:
        """
        Check structural consistency.

        Raises:
            InvalidInput: describing the first problem found.
        """
        if not isinstance(self.id, str) or not self.id:
            raise InvalidInput("Card id must be a non-empty string")
        if not isinstance(self.state, CardState):
            raise InvalidInput(f"Card {self.id!r}: invalid state {self.state!r}")
        ensure_aware(self.due, "due")
        if self.last_review is not None:
            ensure_aware(self.last_review, "last_review")

        for name in ("stability", "difficulty", "elapsed_days", "scheduled_days"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise InvalidInput(f"Card {self.id!r}: {name} must be a number")
            if not math.isfinite(value) or value < 0:
                raise InvalidInput(f"Card {self.id!r}: {name} must be finite and >= 0")
        if self.difficulty > MAX_DIFFICULTY:
            raise InvalidInput(f"Card {self.id!r}: difficulty {self.difficulty} out of range")

        for name in ("reps", "lapses"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise InvalidInput(f"Card {self.id!r}: {name} must be a non-negative integer")

        if self.state is not CardState.NEW and self.last_review is None:
            raise InvalidInput(f"Card {self.id!r} is {self.state.label} but was never reviewed")


SCHEDULING_FIELDS = frozenset(
    {
        "id",
        "deck_id",
        "state",
        "stability",
        "difficulty",
        "elapsed_days",
        "scheduled_days",
        "reps",
        "lapses",
        "due",
        "last_review",
    }
)


@dataclass(frozen=True)
class ReviewLogEntry:
    """
    Immutable audit record, created once per grading event.

    Attributes:
        previous_state: Phase the card was in when graded. Daily quotas are
            derived from this (New -> new card studied, Review -> review done).
        review_duration_ms: Time the user spent on the card.
    """

    id: str
    card_id: str
    deck_id: str
    user_id: str | None
    rating: Rating
    state: CardState
    previous_state: CardState
    due: datetime
    stability: float
    difficulty: float
    elapsed_days: float
    last_elapsed_days: float
    scheduled_days: float
    review_time: datetime
    review_duration_ms: int = 0

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "card_id": self.card_id,
            "deck_id": self.deck_id,
            "user_id": self.user_id,
            "rating": self.rating.label,
            "state": int(self.state),
            "previous_state": int(self.previous_state),
            "due": self.due,
            "stability": self.stability,
            "difficulty": self.difficulty,
            "elapsed_days": self.elapsed_days,
            "last_elapsed_days": self.last_elapsed_days,
            "scheduled_days": self.scheduled_days,
            "review_time": self.review_time,
            "review_duration_ms": self.review_duration_ms,
        }

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> ReviewLogEntry:
        try:
            rating = record["rating"]
            if isinstance(rating, str):
                rating = Rating[rating.strip().upper()]
            return cls(
                id=str(record["id"]),
                card_id=str(record["card_id"]),
                deck_id=str(record["deck_id"]),
                user_id=record.get("user_id"),
                rating=Rating(rating),
                state=CardState.parse(record["state"]),
                previous_state=CardState.parse(record["previous_state"]),
                due=parse_timestamp(record["due"]),  # type: ignore[arg-type]
                stability=float(record["stability"]),
                difficulty=float(record["difficulty"]),
                elapsed_days=float(record["elapsed_days"]),
                last_elapsed_days=float(record.get("last_elapsed_days") or 0.0),
                scheduled_days=float(record["scheduled_days"]),
                review_time=parse_timestamp(record["review_time"]),  # type: ignore[arg-type]
                review_duration_ms=int(record.get("review_duration_ms") or 0),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidInput(f"Malformed review log record {record.get('id')!r}: {e!r}") from e


@dataclass(frozen=True)
class ReviewOutcome:
    """Result of grading one card: the updated card plus its log entry."""

    card: CardSchedulingState
    log: ReviewLogEntry

    @property
    def rating(self) -> Rating:
        return self.log.rating


@dataclass(frozen=True)
class QuotaUsage:
    """Daily quota consumed so far for one deck and user."""

    new_cards: int = 0
    reviews: int = 0


@dataclass(frozen=True)
class DueCandidates:
    """Cards eligible right now, each group ordered by ascending due."""

    new: list[CardSchedulingState] = field(default_factory=list)
    learning: list[CardSchedulingState] = field(default_factory=list)
    review: list[CardSchedulingState] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.new) + len(self.learning) + len(self.review)


@dataclass(frozen=True)
class DeckOverview:
    """Counts shown on a deck tile before a session starts."""

    new_available: int
    learning_due: int
    review_due: int
    new_studied_today: int
    reviews_done_today: int

    @property
    def total_due(self) -> int:
        return self.new_available + self.learning_due + self.review_due


@dataclass(frozen=True)
class DayBoundary:
    """
    Where one study day ends and the next begins.

    Attributes:
        timezone: IANA zone name the user studies in.
        rollover_hour: Local hour at which the next study day starts (0 = midnight).
    """

    timezone: str = "UTC"
    rollover_hour: int = 0

    def __post_init__(self):
        if not 0 <= self.rollover_hour <= 23:
            raise InvalidInput(f"rollover_hour must be 0-23, got {self.rollover_hour}")
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise InvalidInput(f"Unknown timezone: {self.timezone!r}") from e

    @property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def study_day(self, moment: datetime) -> date:
        """The study day a moment belongs to."""
        local = ensure_aware(moment, "moment").astimezone(self.zone)
        return (local - timedelta(hours=self.rollover_hour)).date()

    def day_range(self, day: date) -> tuple[datetime, datetime]:
        """[start, end) of a study day as aware datetimes."""
        start = datetime.combine(day, time(self.rollover_hour), tzinfo=self.zone)
        end = datetime.combine(day + timedelta(days=1), time(self.rollover_hour), tzinfo=self.zone)
        return start, end

    def day_start(self, now: datetime) -> datetime:
        """Start of the study day containing ``now``."""
        return self.day_range(self.study_day(now))[0]


class SchedulerParameters(BaseModel):
    """
    Per-deck scheduling parameters, read-only for the lifetime of a session.

    Construct directly for pydantic validation errors, or through
    ``parse``/``from_deck_settings`` to get InvalidInput.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    request_retention: float = Field(default=DEFAULT_REQUEST_RETENTION, gt=0.0, lt=1.0)
    maximum_stability: float = Field(default=DEFAULT_MAXIMUM_STABILITY, ge=1.0)
    weights: tuple[float, ...] = DEFAULT_WEIGHTS
    learning_steps: tuple[float, ...] = DEFAULT_LEARNING_STEPS
    enable_fsrs: bool = True
    daily_new_cards_limit: int = Field(default=DEFAULT_DAILY_NEW_CARDS, ge=0)
    daily_review_limit: int = Field(default=DEFAULT_DAILY_REVIEWS, ge=0)
    enable_fuzz: bool = False
    easy_skips_learning: bool = True

    @field_validator("weights")
    @classmethod
    def check_weights(cls, v: tuple[float, ...]) -> tuple[float, ...]:
        if len(v) != WEIGHT_COUNT:
            raise ValueError(f"expected {WEIGHT_COUNT} weights, got {len(v)}")
        if not all(math.isfinite(w) for w in v):
            raise ValueError("weights must be finite")
        return v

    @field_validator("learning_steps")
    @classmethod
    def check_steps(cls, v: tuple[float, ...]) -> tuple[float, ...]:
        if any(step <= 0 for step in v):
            raise ValueError("learning steps must be positive minutes")
        if list(v) != sorted(v):
            raise ValueError("learning steps must be ascending")
        return v

    @classmethod
    def parse(cls, data: Mapping[str, Any]) -> SchedulerParameters:
        try:
            return cls.model_validate(dict(data))
        except ValidationError as e:
            raise InvalidInput(f"Invalid scheduler parameters: {e}") from e

    @classmethod
    def from_deck_settings(
        cls, settings: Mapping[str, Any], defaults: SchedulerParameters | None = None
    ) -> SchedulerParameters:
        """
        Build parameters from a stored deck settings document, where the FSRS
        values live under an ``fsrs`` key and limits sit at the top level.
        Missing values fall back to ``defaults``.
        """
        merged: dict[str, Any] = (defaults or cls()).model_dump()
        merged.update({k: v for k, v in settings.items() if k != "fsrs" and v is not None})
        fsrs = settings.get("fsrs") or {}
        merged.update({k: v for k, v in fsrs.items() if v is not None})
        return cls.parse(merged)
