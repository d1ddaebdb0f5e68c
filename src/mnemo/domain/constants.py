"""Centralized constants for the mnemo scheduler.

All magic numbers and scheduling defaults live here so every layer
imports from a single source of truth.
"""

# ---------- FSRS model ----------
# FSRS-4 default weight vector (w0..w16).
DEFAULT_WEIGHTS: tuple[float, ...] = (
    0.4, 0.6, 2.4, 5.8,  # initial stability per rating
    4.93, 0.94,  # initial difficulty
    0.86, 0.01,  # difficulty step, mean reversion
    1.49, 0.14, 0.94,  # recall stability growth
    2.18, 0.05, 0.34, 1.26,  # post-lapse stability
    0.29, 2.61,  # hard penalty, easy bonus
)
WEIGHT_COUNT = 17

DEFAULT_REQUEST_RETENTION = 0.9
DEFAULT_MAXIMUM_STABILITY = 36500.0  # days, also the interval cap

MIN_STABILITY = 0.1
MIN_DIFFICULTY = 1.0
MAX_DIFFICULTY = 10.0

# ---------- Short-term phases ----------
DEFAULT_LEARNING_STEPS: tuple[float, ...] = (1.0, 10.0)  # minutes
MINUTES_PER_DAY = 1440.0
SECONDS_PER_DAY = 86400.0

# ---------- Fuzz ----------
# (start, end, factor) bands applied to intervals >= FUZZ_MIN_INTERVAL days.
FUZZ_RANGES: tuple[tuple[float, float, float], ...] = (
    (2.5, 7.0, 0.15),
    (7.0, 20.0, 0.1),
    (20.0, float("inf"), 0.05),
)
FUZZ_MIN_INTERVAL = 2.5

# ---------- Daily quotas ----------
DEFAULT_DAILY_NEW_CARDS = 20
DEFAULT_DAILY_REVIEWS = 100

# ---------- Session queue ----------
REQUEUE_MIN_GAP = 4
# (max scheduled interval in minutes, share of the remaining queue to skip)
REQUEUE_SPACING: tuple[tuple[float, float], ...] = (
    (1.0, 0.15),
    (10.0, 0.25),
)
REQUEUE_DEFAULT_SHARE = 0.30

# ---------- Stats ----------
DEFAULT_LOG_PAGE_SIZE = 500
