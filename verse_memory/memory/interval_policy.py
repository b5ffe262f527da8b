"""
Interval policy for memory verses: a two-phase variant of SM-2.

Phase one is a daily cementing period covering the first 14 successful
reviews. After that an item only moves onto the progressive spacing table on
a perfect recall (quality 5); anything less grows the interval by one day.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta

from verse_memory.errors import ValidationError

INITIAL_EASE_FACTOR = 2.5
MIN_EASE_FACTOR = 1.3
MAX_INTERVAL_DAYS = 180  # 6 months
DAILY_REVIEW_PERIOD = 14  # First 14 successful reviews are daily
PASSING_QUALITY = 3
PERFECT_QUALITY = 5

# Spacing once a verse is mastered, indexed by reviews since the daily period
MASTERY_INTERVALS = (3, 7, 14, 21, 30, 45, 60, 90, 120, 150, 180)


@dataclass(frozen=True)
class SchedulingState:
    ease_factor: float = INITIAL_EASE_FACTOR
    interval_days: int = 1
    repetitions: int = 0


@dataclass(frozen=True)
class NextState:
    ease_factor: float
    interval_days: int
    repetitions: int
    next_review_date: datetime


def validate_quality(quality) -> int:
    # bool is an int subclass but never a valid rating
    if isinstance(quality, bool) or not isinstance(quality, int):
        raise ValidationError("quality_rating must be an integer between 0 and 5")
    if quality < 0 or quality > 5:
        raise ValidationError("quality_rating must be an integer between 0 and 5")
    return quality


def next_ease_factor(ease_factor: float, quality: int) -> float:
    """EF' = EF + (0.1 - (5 - q) * (0.08 + (5 - q) * 0.02)), floored at 1.3."""
    delta = 0.1 - (5 - quality) * (0.08 + (5 - quality) * 0.02)
    return max(MIN_EASE_FACTOR, round(ease_factor + delta, 2))


def mastery_interval(reviews_since_mastery: int) -> int:
    """Progressive spacing for the n-th perfect review after the daily period (1-based)."""
    index = min(max(reviews_since_mastery, 1), len(MASTERY_INTERVALS)) - 1
    return min(MASTERY_INTERVALS[index], MAX_INTERVAL_DAYS)


def compute_next_state(current: SchedulingState, quality: int, now: datetime) -> NextState:
    """
    Compute the scheduling state that follows a graded review.

    Args:
        current: Ease factor, interval and repetitions before the review
        quality: Recall quality (0-5)
                0 - Complete blackout
                1 - Incorrect, correct answer seemed familiar
                2 - Incorrect, correct answer remembered
                3 - Correct with serious difficulty
                4 - Correct after hesitation
                5 - Perfect recall
        now: Review time; the next review date is computed from it

    Returns:
        NextState with the new ease factor, interval, repetitions and due date

    Raises:
        ValidationError: quality outside 0-5 or negative interval/repetitions
    """
    validate_quality(quality)
    if current.interval_days < 0:
        raise ValidationError("interval_days must not be negative")
    if current.repetitions < 0:
        raise ValidationError("repetitions must not be negative")

    new_ease = next_ease_factor(current.ease_factor, quality)

    if quality < PASSING_QUALITY:
        # Failed recall - back to daily review
        new_repetitions = 0
        new_interval = 1
    else:
        new_repetitions = current.repetitions + 1
        if new_repetitions <= DAILY_REVIEW_PERIOD:
            new_interval = 1
        elif quality == PERFECT_QUALITY:
            new_interval = mastery_interval(new_repetitions - DAILY_REVIEW_PERIOD)
        else:
            # Not perfect yet - slow linear growth
            new_interval = current.interval_days + 1

    new_interval = min(max(new_interval, 1), MAX_INTERVAL_DAYS)

    return NextState(
        ease_factor=new_ease,
        interval_days=new_interval,
        repetitions=new_repetitions,
        next_review_date=now + timedelta(days=new_interval),
    )
