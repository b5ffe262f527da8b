"""
Append-only review log and its daily aggregates.
"""
from collections import Counter
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, Optional, Set

from sqlalchemy import func
from sqlalchemy.orm import Session

from verse_memory.clock import as_utc
from verse_memory.memory.models import ReviewSession, ReviewHistory
from verse_memory.memory.interval_policy import NextState


def start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


class ReviewLog:
    """Writes and queries graded reviews for one database session."""

    def __init__(self, db: Session):
        self.db = db

    def append(
        self,
        user_id: str,
        memory_verse_id: str,
        quality: int,
        state: NextState,
        reviewed_at: datetime,
        time_spent_seconds: Optional[int] = None,
    ) -> ReviewSession:
        """Record one graded review with the scheduling state it produced."""
        event = ReviewSession(
            user_id=user_id,
            memory_verse_id=memory_verse_id,
            review_date=reviewed_at,
            quality_rating=quality,
            new_ease_factor=state.ease_factor,
            new_interval_days=state.interval_days,
            new_repetitions=state.repetitions,
            time_spent_seconds=time_spent_seconds or None,
        )
        self.db.add(event)
        self.db.commit()
        return event

    def record_daily(self, user_id: str, memory_verse_id: str, day: date, quality: int) -> ReviewHistory:
        """Fold one review into the per-day aggregate for the verse."""
        history = self.db.query(ReviewHistory).filter(
            ReviewHistory.user_id == user_id,
            ReviewHistory.memory_verse_id == memory_verse_id,
            ReviewHistory.review_date == day,
        ).first()

        if history:
            new_count = history.reviews_count + 1
            new_average = ((history.average_quality or 0) * history.reviews_count + quality) / new_count
            history.reviews_count = new_count
            history.average_quality = round(new_average, 2)
        else:
            history = ReviewHistory(
                user_id=user_id,
                memory_verse_id=memory_verse_id,
                review_date=day,
                reviews_count=1,
                average_quality=float(quality),
            )
            self.db.add(history)

        self.db.commit()
        return history

    def practice_dates(self, user_id: str, start: date, end: date) -> Set[date]:
        """Distinct days in [start, end] with at least one review."""
        rows = self.db.query(ReviewSession.review_date).filter(
            ReviewSession.user_id == user_id,
            ReviewSession.review_date >= start_of_day(start),
            ReviewSession.review_date < start_of_day(end + timedelta(days=1)),
        ).all()
        return {as_utc(row[0]).date() for row in rows}

    def activity(self, user_id: str, since: date) -> Dict[str, int]:
        """Review counts per day (YYYY-MM-DD) from ``since`` onwards."""
        rows = self.db.query(ReviewSession.review_date).filter(
            ReviewSession.user_id == user_id,
            ReviewSession.review_date >= start_of_day(since),
        ).all()
        counts = Counter(as_utc(row[0]).date().isoformat() for row in rows)
        return dict(sorted(counts.items()))

    def totals(self, user_id: str) -> Dict[str, int]:
        total = self.db.query(func.count(ReviewSession.id)).filter(
            ReviewSession.user_id == user_id
        ).scalar() or 0
        perfect = self.db.query(func.count(ReviewSession.id)).filter(
            ReviewSession.user_id == user_id,
            ReviewSession.quality_rating == 5,
        ).scalar() or 0
        return {"total_reviews": total, "perfect_recalls": perfect}
