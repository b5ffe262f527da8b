"""
Practice streak bookkeeping for memory verse review.

All functions here are pure: they take a ``StreakRecord`` value and return a new
one. Persistence and concurrency are handled by the scheduling service.
"""
from dataclasses import dataclass, field, replace
from datetime import date, timedelta
from typing import Dict, Iterable, Optional

from verse_memory.errors import ValidationError

MAX_FREEZE_DAYS = 5
FREEZE_DAY_WEEKLY_TARGET = 5  # Practice days in one week needed to earn a freeze day


@dataclass(frozen=True)
class Milestone:
    days: int
    name: str
    xp_reward: int


MILESTONES = (
    Milestone(10, "daily_devotion", 50),
    Milestone(30, "month_of_memory", 150),
    Milestone(100, "century_streak", 500),
    Milestone(365, "annual_devotion", 1000),
)


@dataclass(frozen=True)
class StreakRecord:
    current_streak: int = 0
    longest_streak: int = 0
    last_practice_date: Optional[date] = None
    total_practice_days: int = 0
    freeze_days_available: int = 0
    freeze_days_used: int = 0
    last_freeze_earned_week: Optional[date] = None
    # threshold -> date first reached, write-once per threshold
    milestone_dates: Dict[int, date] = field(default_factory=dict)


@dataclass(frozen=True)
class PracticeOutcome:
    record: StreakRecord
    streak_continued: bool = False
    milestone_reached: Optional[Milestone] = None
    freeze_day_earned: bool = False
    already_practiced: bool = False


@dataclass(frozen=True)
class MilestoneProgress:
    reached: Dict[int, bool]
    next_milestone: Optional[int]
    days_until_next: Optional[int]


def week_start(day: date) -> date:
    """Monday of the ISO week containing ``day``."""
    return day - timedelta(days=day.weekday())


def is_consecutive_day(previous: date, current: date) -> bool:
    return previous + timedelta(days=1) == current


def check_milestone_reached(previous_streak: int, new_streak: int,
                            milestone_dates: Dict[int, date]) -> Optional[Milestone]:
    """First milestone crossed by this step that has not been recorded before."""
    for milestone in MILESTONES:
        if previous_streak < milestone.days <= new_streak and milestone.days not in milestone_dates:
            return milestone
    return None


def count_week_practice_days(today: date, practice_dates: Iterable[date]) -> int:
    """Distinct practice days in today's ISO week up to and including today."""
    start = week_start(today)
    days = {d for d in practice_dates if start <= d <= today}
    days.add(today)
    return len(days)


def record_practice(record: Optional[StreakRecord], today: date,
                    week_practice_dates: Iterable[date] = ()) -> PracticeOutcome:
    """
    Apply one practice event on ``today`` to the owner's streak.

    Args:
        record: Existing streak, or None for a first-ever practice
        today: Calendar day of the practice
        week_practice_dates: Days with at least one review in the current week,
            used for the freeze day check

    Returns:
        PracticeOutcome with the updated record and any milestone or freeze day
        earned by this call. Repeated calls on the same day are no-ops.
    """
    if record is None:
        return PracticeOutcome(
            record=StreakRecord(
                current_streak=1,
                longest_streak=1,
                last_practice_date=today,
                total_practice_days=1,
            )
        )

    if record.last_practice_date == today:
        return PracticeOutcome(record=record, already_practiced=True)

    # A gap resets the streak; banked freeze days are only spent via apply_freeze
    continued = (
        record.last_practice_date is not None
        and is_consecutive_day(record.last_practice_date, today)
    )
    previous_streak = record.current_streak
    new_streak = previous_streak + 1 if continued else 1

    milestone = check_milestone_reached(previous_streak, new_streak, record.milestone_dates)
    milestone_dates = dict(record.milestone_dates)
    if milestone:
        milestone_dates[milestone.days] = today

    freeze_earned = False
    freeze_available = record.freeze_days_available
    last_freeze_week = record.last_freeze_earned_week
    this_week = week_start(today)
    if (
        count_week_practice_days(today, week_practice_dates) >= FREEZE_DAY_WEEKLY_TARGET
        and freeze_available < MAX_FREEZE_DAYS
        and last_freeze_week != this_week
    ):
        freeze_available += 1
        last_freeze_week = this_week
        freeze_earned = True

    updated = replace(
        record,
        current_streak=new_streak,
        longest_streak=max(new_streak, record.longest_streak),
        last_practice_date=today,
        total_practice_days=record.total_practice_days + 1,
        freeze_days_available=freeze_available,
        last_freeze_earned_week=last_freeze_week,
        milestone_dates=milestone_dates,
    )
    return PracticeOutcome(
        record=updated,
        streak_continued=continued,
        milestone_reached=milestone,
        freeze_day_earned=freeze_earned,
    )


def apply_freeze(record: Optional[StreakRecord], freeze_date: date, today: date) -> StreakRecord:
    """
    Spend one banked freeze day to protect ``freeze_date``.

    The protected day is treated as practiced, so practising on the following
    day continues the streak.
    """
    if record is None or record.freeze_days_available <= 0:
        raise ValidationError("No freeze days available")
    if freeze_date not in (today, today - timedelta(days=1)):
        raise ValidationError("Can only protect yesterday or today")
    if record.last_practice_date == today:
        raise ValidationError("Already practiced today")
    if record.last_practice_date is not None and record.last_practice_date >= freeze_date:
        raise ValidationError("Streak is not at risk on that day")

    return replace(
        record,
        freeze_days_available=record.freeze_days_available - 1,
        freeze_days_used=record.freeze_days_used + 1,
        last_practice_date=freeze_date,
    )


def milestone_progress(record: Optional[StreakRecord]) -> MilestoneProgress:
    current = record.current_streak if record else 0
    reached_dates = record.milestone_dates if record else {}
    reached = {m.days: m.days in reached_dates for m in MILESTONES}

    next_days = next((m.days for m in MILESTONES if m.days > current), None)
    return MilestoneProgress(
        reached=reached,
        next_milestone=next_days,
        days_until_next=next_days - current if next_days is not None else None,
    )
