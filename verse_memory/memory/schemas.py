from pydantic import BaseModel, ConfigDict, StrictInt
from datetime import date, datetime
from typing import Dict, Generic, List, Optional, TypeVar

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    success: bool = True
    data: T


# Review Schemas
class SubmitReviewRequest(BaseModel):
    """Submit a graded review of a memory verse."""
    memory_verse_id: str
    quality_rating: StrictInt  # 0-5 SM-2 scale
    time_spent_seconds: Optional[StrictInt] = None


class ReviewData(BaseModel):
    next_review_date: datetime
    interval_days: int
    ease_factor: float
    repetitions: int
    total_reviews: int
    streak_maintained: bool


# Due Verse Schemas
class MemoryVerseResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    verse_reference: str
    verse_text: str
    language: str
    ease_factor: float
    interval_days: int
    repetitions: int
    next_review_date: datetime
    last_reviewed: Optional[datetime] = None
    total_reviews: int
    added_date: Optional[datetime] = None


class DueStatistics(BaseModel):
    total_verses: int
    due_verses: int
    reviewed_today: int
    upcoming_reviews: int
    mastered_verses: int


class Pagination(BaseModel):
    limit: int
    offset: int
    has_more: bool


class DueVersesData(BaseModel):
    verses: List[MemoryVerseResponse]
    statistics: DueStatistics
    pagination: Pagination


# Streak Schemas
class MilestoneAchievement(BaseModel):
    milestone_days: int
    achievement_name: str
    xp_reward: int


class StreakUpdateData(BaseModel):
    current_streak: int
    longest_streak: int
    streak_continued: bool
    milestone_reached: Optional[MilestoneAchievement] = None
    freeze_day_earned: bool
    freeze_days_available: int
    total_practice_days: int
    last_practice_date: date


class StreakStatusData(BaseModel):
    current_streak: int
    longest_streak: int
    last_practice_date: Optional[date] = None
    total_practice_days: int
    freeze_days_available: int
    freeze_days_used: int
    milestones_reached: Dict[int, bool]
    milestone_dates: Dict[int, date]
    next_milestone: Optional[int] = None
    days_until_next: Optional[int] = None


class FreezeRequest(BaseModel):
    freeze_date: date


class FreezeData(BaseModel):
    freeze_days_remaining: int
    freeze_days_used: int
    last_practice_date: Optional[date] = None


# Statistics Schemas
class MemoryStatisticsData(BaseModel):
    activity_data: Dict[str, int]
    mastery_distribution: Dict[str, int]
    current_streak: int
    longest_streak: int
    total_practice_days: int
    total_verses: int
    total_reviews: int
    perfect_recalls: int
    freeze_days_available: int
    milestones_reached: Dict[int, bool]
