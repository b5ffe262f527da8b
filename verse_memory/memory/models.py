import uuid

from sqlalchemy import (
    Column, Integer, String, Text, Date, DateTime, ForeignKey, Float, CheckConstraint, UniqueConstraint, Index
)
from sqlalchemy.sql import func

from verse_memory.database import Base


def new_uuid() -> str:
    return str(uuid.uuid4())


class MemoryVerse(Base):
    """
    A verse under spaced repetition, with its SM-2 scheduling state.
    """
    __tablename__ = "memory_verses"
    __table_args__ = (
        UniqueConstraint("user_id", "verse_reference", "language", name="unique_user_verse_language"),
        CheckConstraint("ease_factor >= 1.3", name="valid_ease_factor"),
        CheckConstraint("interval_days >= 1 AND interval_days <= 180", name="valid_interval_days"),
        Index("idx_memory_verses_user_next_review", "user_id", "next_review_date"),
    )

    id = Column(String(36), primary_key=True, default=new_uuid)
    user_id = Column(String(64), nullable=False, index=True)

    # Verse content
    verse_reference = Column(String(255), nullable=False)
    verse_text = Column(Text, nullable=False)
    language = Column(String(8), nullable=False, default="en")

    # SM-2 Algorithm fields
    ease_factor = Column(Float, default=2.5, nullable=False)
    interval_days = Column(Integer, default=1, nullable=False)
    repetitions = Column(Integer, default=0, nullable=False)  # Consecutive successful reviews
    next_review_date = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Review metadata
    added_date = Column(DateTime(timezone=True), server_default=func.now())
    last_reviewed = Column(DateTime(timezone=True), nullable=True)
    total_reviews = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class ReviewSession(Base):
    """One graded review. Append-only."""
    __tablename__ = "review_sessions"
    __table_args__ = (
        Index("idx_review_sessions_user_date", "user_id", "review_date"),
    )

    id = Column(String(36), primary_key=True, default=new_uuid)
    user_id = Column(String(64), nullable=False)
    memory_verse_id = Column(String(36), ForeignKey("memory_verses.id", ondelete="CASCADE"), nullable=False)

    review_date = Column(DateTime(timezone=True), nullable=False)
    quality_rating = Column(Integer, CheckConstraint('quality_rating >= 0 AND quality_rating <= 5'), nullable=False)

    # SM-2 state after this review
    new_ease_factor = Column(Float, nullable=False)
    new_interval_days = Column(Integer, nullable=False)
    new_repetitions = Column(Integer, nullable=False)

    time_spent_seconds = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())


class ReviewHistory(Base):
    """Daily review aggregate per verse."""
    __tablename__ = "review_history"
    __table_args__ = (
        UniqueConstraint("user_id", "memory_verse_id", "review_date", name="unique_user_verse_date"),
    )

    id = Column(String(36), primary_key=True, default=new_uuid)
    user_id = Column(String(64), nullable=False)
    memory_verse_id = Column(String(36), ForeignKey("memory_verses.id", ondelete="CASCADE"), nullable=False)
    review_date = Column(Date, nullable=False)
    reviews_count = Column(Integer, default=0, nullable=False)
    average_quality = Column(Float, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())


class MemoryVerseStreak(Base):
    __tablename__ = "memory_verse_streaks"

    user_id = Column(String(64), primary_key=True)
    current_streak = Column(Integer, default=0, nullable=False)
    longest_streak = Column(Integer, default=0, nullable=False)
    last_practice_date = Column(Date, nullable=True)
    total_practice_days = Column(Integer, default=0, nullable=False)
    freeze_days_available = Column(Integer, CheckConstraint('freeze_days_available >= 0 AND freeze_days_available <= 5'), default=0, nullable=False)
    freeze_days_used = Column(Integer, default=0, nullable=False)
    last_freeze_earned_week = Column(Date, nullable=True)  # Monday of the week a freeze day was last earned

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class StreakMilestone(Base):
    """Date a streak threshold was first reached. Write-once per threshold."""
    __tablename__ = "memory_streak_milestones"

    user_id = Column(String(64), ForeignKey("memory_verse_streaks.user_id", ondelete="CASCADE"), primary_key=True)
    milestone_days = Column(Integer, primary_key=True)
    reached_date = Column(Date, nullable=False)
