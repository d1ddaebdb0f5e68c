"""
Forgetting-curve math for FSRS scheduling.

This is a pure computation module with no I/O. Stability and difficulty
updates follow FSRS-4 (17 weights); retrievability uses the exponential
curve R = exp(ln(request_retention) * t / S), so a card's stability is
exactly the number of days until its recall probability falls to the
requested retention.

Every function clamps its own result: stability to
[MIN_STABILITY, maximum_stability] and difficulty to [1, 10].
"""

from __future__ import annotations

import math
import random
from collections.abc import Mapping, Sequence

from mnemo.domain.constants import (
    DEFAULT_MAXIMUM_STABILITY,
    FUZZ_MIN_INTERVAL,
    FUZZ_RANGES,
    MAX_DIFFICULTY,
    MIN_DIFFICULTY,
    MIN_STABILITY,
)
from mnemo.domain.models import Rating


def clamp_stability(stability: float, maximum_stability: float = DEFAULT_MAXIMUM_STABILITY) -> float:
    return min(max(stability, MIN_STABILITY), maximum_stability)


def clamp_difficulty(difficulty: float) -> float:
    return min(max(difficulty, MIN_DIFFICULTY), MAX_DIFFICULTY)


def round_days(days: float) -> int:
    """Round half up; intervals never use banker's rounding."""
    return int(math.floor(days + 0.5))


def retrievability(stability: float, elapsed_days: float, request_retention: float) -> float:
    """
    Probability of recall after ``elapsed_days``.

    A card with no stability (never reviewed) has retrievability 0, which gives
    the largest possible adjustment on its first grading.
    """
    if stability <= 0:
        return 0.0
    r = math.exp(math.log(request_retention) * max(elapsed_days, 0.0) / stability)
    return min(max(r, 0.0), 1.0)


def initial_stability(
    rating: Rating, weights: Sequence[float], maximum_stability: float = DEFAULT_MAXIMUM_STABILITY
) -> float:
    return clamp_stability(weights[int(rating) - 1], maximum_stability)


def initial_difficulty(rating: Rating, weights: Sequence[float]) -> float:
    return clamp_difficulty(weights[4] - (int(rating) - 3) * weights[5])


def next_difficulty(
    difficulty: float, retrievability: float, rating: Rating, weights: Sequence[float]
) -> float:
    """
    Shift difficulty by rating, then revert towards the default (Good) difficulty.

    ``retrievability`` is part of the signature for symmetry with
    ``next_stability``; the FSRS-4 update does not depend on it.
    """
    shifted = clamp_difficulty(difficulty) - weights[6] * (int(rating) - 3)
    reverted = weights[7] * weights[4] + (1 - weights[7]) * shifted
    return clamp_difficulty(reverted)


def next_stability(
    stability: float,
    difficulty: float,
    retrievability: float,
    rating: Rating,
    weights: Sequence[float],
    maximum_stability: float = DEFAULT_MAXIMUM_STABILITY,
) -> float:
    """
    Stability after a review graded ``rating``.

    Again shrinks stability (never above its current value); Hard, Good and
    Easy grow it, more so the lower the retrievability was at review time.
    """
    if stability <= 0:
        return initial_stability(rating, weights, maximum_stability)

    d = clamp_difficulty(difficulty)
    r = min(max(retrievability, 0.0), 1.0)

    if rating is Rating.AGAIN:
        forgotten = (
            weights[11]
            * math.pow(d, -weights[12])
            * (math.pow(stability + 1, weights[13]) - 1)
            * math.exp(weights[14] * (1 - r))
        )
        return clamp_stability(min(forgotten, stability), maximum_stability)

    modifier = 1.0
    if rating is Rating.HARD:
        modifier = weights[15]
    elif rating is Rating.EASY:
        modifier = weights[16]

    growth = (
        math.exp(weights[8])
        * (11 - d)
        * math.pow(stability, -weights[9])
        * (math.exp(weights[10] * (1 - r)) - 1)
        * modifier
    )
    return clamp_stability(stability * (1 + growth), maximum_stability)


def scheduled_interval(
    stability: float, rating: Rating, maximum_stability: float = DEFAULT_MAXIMUM_STABILITY
) -> float:
    """
    Whole-day interval for a card with the given (post-review) stability.

    Again yields 0 (same-day re-study). The Easy bonus is carried by the
    stability itself (weight 16), so Easy lands further out than Good.
    """
    if rating is Rating.AGAIN:
        return 0.0
    days = round_days(clamp_stability(stability, maximum_stability))
    return float(min(max(days, 1), int(maximum_stability)))


def fuzz_interval(
    interval: float,
    elapsed_days: float,
    maximum_stability: float,
    seed: str,
) -> float:
    """
    Spread an interval over a small band so cards graded together drift apart.

    Deterministic for a given seed; intervals under 2.5 days are left alone.
    """
    if interval < FUZZ_MIN_INTERVAL:
        return interval

    delta = 1.0
    for start, end, factor in FUZZ_RANGES:
        delta += factor * max(min(interval, end) - start, 0.0)

    upper = min(round_days(interval + delta), int(maximum_stability))
    lower = max(2, round_days(interval - delta))
    if interval > elapsed_days:
        lower = max(lower, int(elapsed_days) + 1)
    lower = min(lower, upper)

    return float(random.Random(seed).randint(lower, upper))


def order_intervals(intervals: Mapping[Rating, float], maximum_stability: float) -> dict[Rating, float]:
    """
    Enforce hard <= good < easy across the day intervals of one review.

    Only ratings present in ``intervals`` are touched.
    """
    ordered = dict(intervals)
    cap = float(int(maximum_stability))
    hard = ordered.get(Rating.HARD)
    good = ordered.get(Rating.GOOD)
    easy = ordered.get(Rating.EASY)

    if hard is not None and good is not None:
        hard = min(hard, good)
        good = min(max(good, hard + 1), cap)
    if good is not None and easy is not None:
        easy = min(max(easy, good + 1), cap)

    for rating, value in ((Rating.HARD, hard), (Rating.GOOD, good), (Rating.EASY, easy)):
        if value is not None:
            ordered[rating] = value
    return ordered
