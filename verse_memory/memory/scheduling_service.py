import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from verse_memory.analytics import AnalyticsSink, LoggingAnalyticsSink
from verse_memory.clock import Clock, SystemClock, as_utc
from verse_memory.errors import NotFoundError, StorageError, ValidationError
from verse_memory.memory.interval_policy import (
    PASSING_QUALITY, SchedulingState, compute_next_state, validate_quality
)
from verse_memory.memory.models import MemoryVerse
from verse_memory.memory.repository import MemoryVerseRepository, StreakRepository
from verse_memory.memory.review_log import ReviewLog
from verse_memory.memory.streaks import (
    Milestone, MilestoneProgress, StreakRecord, apply_freeze, milestone_progress, record_practice, week_start
)

logger = logging.getLogger(__name__)

SUPPORTED_LANGUAGES = ("en", "hi", "ml")
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
ACTIVITY_WINDOW_WEEKS = 12
STREAK_UPDATE_ATTEMPTS = 3


@dataclass
class ReviewResult:
    next_review_date: datetime
    interval_days: int
    ease_factor: float
    repetitions: int
    total_reviews: int
    streak_maintained: bool


@dataclass
class DueItemsResult:
    items: List[MemoryVerse]
    statistics: Dict[str, int]
    limit: int
    offset: int
    has_more: bool


@dataclass
class StreakUpdateResult:
    current_streak: int
    longest_streak: int
    streak_continued: bool
    freeze_day_earned: bool
    freeze_days_available: int
    total_practice_days: int
    last_practice_date: date
    milestone_reached: Optional[Milestone] = None


@dataclass
class StreakStatus:
    record: StreakRecord
    progress: MilestoneProgress


@dataclass
class MemoryStatistics:
    activity_data: Dict[str, int]
    mastery_distribution: Dict[str, int]
    current_streak: int
    longest_streak: int
    total_practice_days: int
    total_verses: int
    total_reviews: int
    perfect_recalls: int
    freeze_days_available: int = 0
    milestones_reached: Dict[int, bool] = field(default_factory=dict)


def mastery_level(repetitions: int) -> str:
    if repetitions <= 2:
        return "beginner"
    if repetitions <= 5:
        return "intermediate"
    if repetitions <= 8:
        return "advanced"
    if repetitions <= 11:
        return "expert"
    return "master"


def validate_item_id(item_id) -> str:
    try:
        return str(uuid.UUID(str(item_id)))
    except (TypeError, ValueError):
        raise ValidationError("Invalid memory_verse_id format")


class SchedulingService:
    """
    Public API of the scheduler: graded reviews, due lists and practice streaks.

    Collaborators are injected; the service keeps no state between calls.
    """

    def __init__(
        self,
        verses: MemoryVerseRepository,
        review_log: ReviewLog,
        streaks: StreakRepository,
        clock: Optional[Clock] = None,
        analytics: Optional[AnalyticsSink] = None,
    ):
        self.verses = verses
        self.review_log = review_log
        self.streaks = streaks
        self.clock = clock or SystemClock()
        self.analytics = analytics or LoggingAnalyticsSink()

    def submit_review(
        self,
        item_id: str,
        owner_id: str,
        quality: int,
        time_spent_seconds: Optional[int] = None,
    ) -> ReviewResult:
        """
        Apply a graded review to a verse.

        Only the verse update must succeed; the review event, the daily
        aggregate and analytics are best-effort.
        """
        item_id = validate_item_id(item_id)
        validate_quality(quality)
        if time_spent_seconds is not None and (
            isinstance(time_spent_seconds, bool)
            or not isinstance(time_spent_seconds, int)
            or time_spent_seconds < 0
        ):
            raise ValidationError("time_spent_seconds must be a non-negative integer")

        verse = self.verses.get_for_owner(item_id, owner_id)
        if verse is None:
            raise NotFoundError("Memory verse not found")

        now = as_utc(self.clock.now())
        state = compute_next_state(
            SchedulingState(
                ease_factor=verse.ease_factor,
                interval_days=verse.interval_days,
                repetitions=verse.repetitions,
            ),
            quality,
            now,
        )
        # verse is expired after the commit; build the result from locals only
        total_reviews = self.verses.save_schedule(verse, state, now)
        streak_maintained = quality >= PASSING_QUALITY

        try:
            self.review_log.append(owner_id, item_id, quality, state, now, time_spent_seconds)
        except SQLAlchemyError as e:
            self.review_log.db.rollback()
            logger.error(f"Failed to record review session for {item_id}: {e}")

        try:
            self.review_log.record_daily(owner_id, item_id, now.date(), quality)
        except SQLAlchemyError as e:
            self.review_log.db.rollback()
            logger.error(f"Failed to update review history for {item_id}: {e}")

        self._log_event("memory_verse_reviewed", {
            "user_id": owner_id,
            "memory_verse_id": item_id,
            "quality_rating": quality,
            "new_interval_days": state.interval_days,
            "new_repetitions": state.repetitions,
            "streak_maintained": streak_maintained,
            "time_spent_seconds": time_spent_seconds,
        })

        return ReviewResult(
            next_review_date=state.next_review_date,
            interval_days=state.interval_days,
            ease_factor=state.ease_factor,
            repetitions=state.repetitions,
            total_reviews=total_reviews,
            streak_maintained=streak_maintained,
        )

    def get_due_items(
        self,
        owner_id: str,
        now: Optional[datetime] = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
        language: Optional[str] = None,
        show_all: bool = False,
    ) -> DueItemsResult:
        """Due verses, most overdue first, with deck statistics and pagination."""
        if limit < 1 or limit > MAX_PAGE_SIZE:
            raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
        if offset < 0:
            raise ValidationError("offset must not be negative")
        if language is not None and language not in SUPPORTED_LANGUAGES:
            raise ValidationError(f"language must be one of: {', '.join(SUPPORTED_LANGUAGES)}")

        now = as_utc(now or self.clock.now())
        items, total = self.verses.list_for_owner(
            owner_id, now, language=language, due_only=not show_all, limit=limit, offset=offset
        )
        statistics = self.verses.statistics(owner_id, now, language=language)
        return DueItemsResult(
            items=items,
            statistics=statistics,
            limit=limit,
            offset=offset,
            has_more=offset + len(items) < total,
        )

    def update_streak(self, owner_id: str, now: Optional[datetime] = None) -> StreakUpdateResult:
        """
        Record that the owner practiced now.

        Idempotent within a calendar day. A lost compare-and-set is retried
        from a fresh read, which normally turns into the same-day no-op.
        """
        today = as_utc(now or self.clock.now()).date()

        for _ in range(STREAK_UPDATE_ATTEMPTS):
            record = self.streaks.load(owner_id)
            week_dates = self._week_practice_dates(owner_id, today)
            outcome = record_practice(record, today, week_dates)

            if outcome.already_practiced:
                written = True
            elif record is None:
                written = self.streaks.create(owner_id, outcome.record)
            else:
                new_milestones = {}
                if outcome.milestone_reached:
                    new_milestones[outcome.milestone_reached.days] = today
                written = self.streaks.compare_and_set(
                    owner_id, record.last_practice_date, outcome.record, new_milestones
                )

            if written:
                break
            logger.info(f"Streak update for {owner_id} lost a concurrent write, retrying")
        else:
            raise StorageError("Memory streak is being updated concurrently, retry later")

        if outcome.milestone_reached:
            self._log_event("memory_streak_milestone", {
                "user_id": owner_id,
                "milestone_days": outcome.milestone_reached.days,
                "achievement_name": outcome.milestone_reached.name,
            })

        updated = outcome.record
        return StreakUpdateResult(
            current_streak=updated.current_streak,
            longest_streak=updated.longest_streak,
            streak_continued=outcome.streak_continued,
            milestone_reached=outcome.milestone_reached,
            freeze_day_earned=outcome.freeze_day_earned,
            freeze_days_available=updated.freeze_days_available,
            total_practice_days=updated.total_practice_days,
            last_practice_date=updated.last_practice_date,
        )

    def get_streak(self, owner_id: str) -> StreakStatus:
        record = self.streaks.load(owner_id) or StreakRecord()
        return StreakStatus(record=record, progress=milestone_progress(record))

    def use_streak_freeze(self, owner_id: str, freeze_date: date, now: Optional[datetime] = None) -> StreakRecord:
        """Spend a banked freeze day to protect today or yesterday."""
        today = as_utc(now or self.clock.now()).date()
        record = self.streaks.load(owner_id)
        updated = apply_freeze(record, freeze_date, today)
        if not self.streaks.compare_and_set(owner_id, record.last_practice_date, updated):
            raise StorageError("Memory streak changed while applying freeze day, retry later")
        self._log_event("memory_streak_freeze_used", {
            "user_id": owner_id,
            "freeze_date": freeze_date.isoformat(),
            "freeze_days_remaining": updated.freeze_days_available,
        })
        return updated

    def get_statistics(self, owner_id: str, now: Optional[datetime] = None) -> MemoryStatistics:
        """Heat map, mastery distribution and totals for the statistics dashboard."""
        today = as_utc(now or self.clock.now()).date()
        since = today - timedelta(weeks=ACTIVITY_WINDOW_WEEKS)
        try:
            activity = self.review_log.activity(owner_id, since)
            totals = self.review_log.totals(owner_id)
        except SQLAlchemyError as e:
            logger.error(f"Failed to fetch review activity for {owner_id}: {e}")
            raise StorageError("Failed to fetch activity data") from e

        distribution = {level: 0 for level in ("beginner", "intermediate", "advanced", "expert", "master")}
        repetitions = self.verses.repetition_counts(owner_id)
        for reps in repetitions:
            distribution[mastery_level(reps)] += 1

        status = self.get_streak(owner_id)
        return MemoryStatistics(
            activity_data=activity,
            mastery_distribution=distribution,
            current_streak=status.record.current_streak,
            longest_streak=status.record.longest_streak,
            total_practice_days=status.record.total_practice_days,
            total_verses=len(repetitions),
            total_reviews=totals["total_reviews"],
            perfect_recalls=totals["perfect_recalls"],
            freeze_days_available=status.record.freeze_days_available,
            milestones_reached=status.progress.reached,
        )

    def _week_practice_dates(self, owner_id: str, today: date):
        try:
            return self.review_log.practice_dates(owner_id, week_start(today), today)
        except SQLAlchemyError as e:
            logger.error(f"Failed to count practice days for {owner_id}: {e}")
            raise StorageError("Failed to count weekly practice days") from e

    def _log_event(self, event_type: str, data: Dict) -> None:
        # Analytics must never fail the request
        try:
            self.analytics.log_event(event_type, data)
        except Exception as e:
            logger.error(f"Analytics logging failed for {event_type}: {e}")
