"""
Persistence port for the scheduling service.

Repositories wrap a SQLAlchemy session. Store failures on the authoritative
writes are rolled back and re-raised as ``StorageError``.
"""
import logging
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, insert, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from verse_memory.errors import StorageError
from verse_memory.memory.interval_policy import NextState
from verse_memory.memory.models import MemoryVerse, MemoryVerseStreak, StreakMilestone
from verse_memory.memory.review_log import start_of_day
from verse_memory.memory.streaks import StreakRecord

logger = logging.getLogger(__name__)

MASTERED_REPETITIONS = 5
UPCOMING_WINDOW_DAYS = 7


class MemoryVerseRepository:
    """Reads and writes memory verses for one owner at a time."""

    def __init__(self, db: Session):
        self.db = db

    def add(
        self,
        user_id: str,
        verse_reference: str,
        verse_text: str,
        language: str = "en",
        added_at: Optional[datetime] = None,
    ) -> MemoryVerse:
        """Add a verse to a user's deck, due immediately."""
        verse = MemoryVerse(
            user_id=user_id,
            verse_reference=verse_reference,
            verse_text=verse_text,
            language=language,
        )
        if added_at is not None:
            verse.added_date = added_at
            verse.next_review_date = added_at
        self.db.add(verse)
        self._commit("Failed to add memory verse")
        self.db.refresh(verse)
        return verse

    def get_for_owner(self, verse_id: str, user_id: str) -> Optional[MemoryVerse]:
        try:
            return self.db.query(MemoryVerse).filter(
                MemoryVerse.id == verse_id,
                MemoryVerse.user_id == user_id,
            ).first()
        except SQLAlchemyError as e:
            logger.error(f"Failed to load memory verse {verse_id}: {e}")
            raise StorageError("Failed to load memory verse") from e

    def save_schedule(self, verse: MemoryVerse, state: NextState, reviewed_at: datetime) -> int:
        """Persist a new scheduling state. All-or-nothing. Returns the new review count."""
        verse.ease_factor = state.ease_factor
        verse.interval_days = state.interval_days
        verse.repetitions = state.repetitions
        verse.next_review_date = state.next_review_date
        verse.last_reviewed = reviewed_at
        total_reviews = (verse.total_reviews or 0) + 1
        verse.total_reviews = total_reviews
        verse.updated_at = reviewed_at
        self._commit("Failed to update memory verse")
        return total_reviews

    def list_for_owner(
        self,
        user_id: str,
        now: datetime,
        language: Optional[str] = None,
        due_only: bool = True,
        limit: int = 20,
        offset: int = 0,
    ) -> Tuple[List[MemoryVerse], int]:
        """Verses ordered by next review date (most overdue first) plus the unpaginated count."""
        try:
            query = self._owner_query(user_id, language)
            if due_only:
                query = query.filter(MemoryVerse.next_review_date <= now)
            total = query.count()
            verses = (
                query.order_by(MemoryVerse.next_review_date.asc(), MemoryVerse.id.asc())
                .offset(offset)
                .limit(limit)
                .all()
            )
            return verses, total
        except SQLAlchemyError as e:
            logger.error(f"Failed to list memory verses for {user_id}: {e}")
            raise StorageError("Failed to fetch memory verses") from e

    def statistics(self, user_id: str, now: datetime, language: Optional[str] = None) -> Dict[str, int]:
        """
        Deck counts for the owner.

        Returns:
            {
                "total_verses": all verses,
                "due_verses": next review date <= now,
                "reviewed_today": last reviewed since 00:00 UTC,
                "upcoming_reviews": due within the next 7 days (not yet due),
                "mastered_verses": repetitions >= 5
            }
        """
        today_start = start_of_day(now.date())
        upcoming_end = now + timedelta(days=UPCOMING_WINDOW_DAYS)
        try:
            base = self._owner_query(user_id, language)
            return {
                "total_verses": base.count(),
                "due_verses": base.filter(MemoryVerse.next_review_date <= now).count(),
                "reviewed_today": base.filter(MemoryVerse.last_reviewed >= today_start).count(),
                "upcoming_reviews": base.filter(
                    MemoryVerse.next_review_date > now,
                    MemoryVerse.next_review_date <= upcoming_end,
                ).count(),
                "mastered_verses": base.filter(MemoryVerse.repetitions >= MASTERED_REPETITIONS).count(),
            }
        except SQLAlchemyError as e:
            logger.error(f"Failed to compute statistics for {user_id}: {e}")
            raise StorageError("Failed to fetch memory verse statistics") from e

    def repetition_counts(self, user_id: str) -> List[int]:
        try:
            rows = self.db.query(MemoryVerse.repetitions).filter(MemoryVerse.user_id == user_id).all()
            return [row[0] for row in rows]
        except SQLAlchemyError as e:
            logger.error(f"Failed to fetch repetitions for {user_id}: {e}")
            raise StorageError("Failed to fetch mastery distribution") from e

    def _owner_query(self, user_id: str, language: Optional[str]):
        query = self.db.query(MemoryVerse).filter(MemoryVerse.user_id == user_id)
        if language:
            query = query.filter(MemoryVerse.language == language)
        return query

    def _commit(self, message: str) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"{message}: {e}")
            raise StorageError(message) from e


class StreakRepository:
    """
    One streak row per owner.

    Updates are a compare-and-set on ``last_practice_date`` so two devices
    completing practice at the same time cannot both increment the streak.
    """

    def __init__(self, db: Session):
        self.db = db

    def load(self, user_id: str) -> Optional[StreakRecord]:
        try:
            row = self.db.query(MemoryVerseStreak).filter(MemoryVerseStreak.user_id == user_id).first()
            if row is None:
                return None
            milestones = self.db.query(StreakMilestone).filter(StreakMilestone.user_id == user_id).all()
        except SQLAlchemyError as e:
            logger.error(f"Failed to load streak for {user_id}: {e}")
            raise StorageError("Failed to load memory streak") from e

        return StreakRecord(
            current_streak=row.current_streak,
            longest_streak=row.longest_streak,
            last_practice_date=row.last_practice_date,
            total_practice_days=row.total_practice_days,
            freeze_days_available=row.freeze_days_available,
            freeze_days_used=row.freeze_days_used,
            last_freeze_earned_week=row.last_freeze_earned_week,
            milestone_dates={m.milestone_days: m.reached_date for m in milestones},
        )

    def create(self, user_id: str, record: StreakRecord) -> bool:
        """Insert the first record for an owner. False if another request created it first."""
        stmt = insert(MemoryVerseStreak).values(user_id=user_id, **self._columns(record))
        try:
            self.db.execute(stmt)
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.info(f"Streak for {user_id} created concurrently")
            return False
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to create streak for {user_id}: {e}")
            raise StorageError("Failed to create memory streak") from e
        return True

    def compare_and_set(
        self,
        user_id: str,
        expected_last_practice_date: Optional[date],
        record: StreakRecord,
        new_milestones: Optional[Dict[int, date]] = None,
    ) -> bool:
        """
        Write ``record`` only if the stored last practice date is still the one
        it was computed from. Newly reached milestones are written in the same
        transaction. Returns False when the row changed underneath.
        """
        if expected_last_practice_date is None:
            condition = MemoryVerseStreak.last_practice_date.is_(None)
        else:
            condition = MemoryVerseStreak.last_practice_date == expected_last_practice_date

        stmt = (
            update(MemoryVerseStreak)
            .where(MemoryVerseStreak.user_id == user_id, condition)
            .values(updated_at=func.now(), **self._columns(record))
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.db.execute(stmt)
            if result.rowcount != 1:
                self.db.rollback()
                return False
            for days, reached in (new_milestones or {}).items():
                self.db.execute(
                    insert(StreakMilestone).values(user_id=user_id, milestone_days=days, reached_date=reached)
                )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to update streak for {user_id}: {e}")
            raise StorageError("Failed to update memory streak") from e
        return True

    @staticmethod
    def _columns(record: StreakRecord) -> dict:
        return {
            "current_streak": record.current_streak,
            "longest_streak": record.longest_streak,
            "last_practice_date": record.last_practice_date,
            "total_practice_days": record.total_practice_days,
            "freeze_days_available": record.freeze_days_available,
            "freeze_days_used": record.freeze_days_used,
            "last_freeze_earned_week": record.last_freeze_earned_week,
        }
