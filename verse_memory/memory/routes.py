from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from verse_memory.analytics import LoggingAnalyticsSink
from verse_memory.auth.schemas import CurrentUser
from verse_memory.auth.utils import get_current_user
from verse_memory.clock import Clock, SystemClock
from verse_memory.database import get_db
from verse_memory.memory.repository import MemoryVerseRepository, StreakRepository
from verse_memory.memory.review_log import ReviewLog
from verse_memory.memory.scheduling_service import SchedulingService, DEFAULT_PAGE_SIZE
from verse_memory.memory.schemas import (
    ApiResponse, SubmitReviewRequest, ReviewData, DueVersesData, MemoryVerseResponse, DueStatistics,
    Pagination, StreakUpdateData, MilestoneAchievement, StreakStatusData, FreezeRequest, FreezeData,
    MemoryStatisticsData,
)

router = APIRouter(prefix="/memory-verses", tags=["Memory Verses"])

_analytics = LoggingAnalyticsSink()


def get_clock() -> Clock:
    return SystemClock()


def get_scheduling_service(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> SchedulingService:
    """Build a scheduling service bound to this request's session."""
    return SchedulingService(
        verses=MemoryVerseRepository(db),
        review_log=ReviewLog(db),
        streaks=StreakRepository(db),
        clock=clock,
        analytics=_analytics,
    )


# ============== REVIEW ENDPOINTS ==============

@router.post("/review", response_model=ApiResponse[ReviewData])
async def submit_review(
    body: SubmitReviewRequest,
    service: SchedulingService = Depends(get_scheduling_service),
    current_user: CurrentUser = Depends(get_current_user)
):
    """
    Submit a graded review of a memory verse.

    - **memory_verse_id**: UUID of the reviewed verse
    - **quality_rating**: Recall quality 0-5
    - **time_spent_seconds**: Optional time spent on the review
    """
    result = service.submit_review(
        body.memory_verse_id,
        current_user.user_id,
        body.quality_rating,
        body.time_spent_seconds,
    )
    return {"success": True, "data": ReviewData(**vars(result))}


@router.get("/due", response_model=ApiResponse[DueVersesData])
async def get_due_verses(
    limit: int = Query(DEFAULT_PAGE_SIZE),
    offset: int = Query(0),
    language: Optional[str] = Query(None),
    show_all: bool = Query(False),
    service: SchedulingService = Depends(get_scheduling_service),
    current_user: CurrentUser = Depends(get_current_user)
):
    """
    List verses due for review, most overdue first.

    - **limit**: Page size (1-100)
    - **offset**: Number of verses to skip
    - **language**: Optional language filter ("en", "hi", "ml")
    - **show_all**: Include verses that are not due yet
    """
    result = service.get_due_items(
        current_user.user_id,
        limit=limit,
        offset=offset,
        language=language,
        show_all=show_all,
    )
    data = DueVersesData(
        verses=[MemoryVerseResponse.model_validate(verse) for verse in result.items],
        statistics=DueStatistics(**result.statistics),
        pagination=Pagination(limit=result.limit, offset=result.offset, has_more=result.has_more),
    )
    return {"success": True, "data": data}


# ============== STREAK ENDPOINTS ==============

@router.post("/streak", response_model=ApiResponse[StreakUpdateData], response_model_exclude_none=True)
async def update_streak(
    service: SchedulingService = Depends(get_scheduling_service),
    current_user: CurrentUser = Depends(get_current_user)
):
    """Record a practice session for today and report milestones and freeze days earned."""
    result = service.update_streak(current_user.user_id)

    milestone = None
    if result.milestone_reached:
        milestone = MilestoneAchievement(
            milestone_days=result.milestone_reached.days,
            achievement_name=result.milestone_reached.name,
            xp_reward=result.milestone_reached.xp_reward,
        )
    data = StreakUpdateData(
        current_streak=result.current_streak,
        longest_streak=result.longest_streak,
        streak_continued=result.streak_continued,
        milestone_reached=milestone,
        freeze_day_earned=result.freeze_day_earned,
        freeze_days_available=result.freeze_days_available,
        total_practice_days=result.total_practice_days,
        last_practice_date=result.last_practice_date,
    )
    return {"success": True, "data": data}


@router.get("/streak", response_model=ApiResponse[StreakStatusData])
async def get_streak(
    service: SchedulingService = Depends(get_scheduling_service),
    current_user: CurrentUser = Depends(get_current_user)
):
    """Get the current streak and progress towards the next milestone."""
    status = service.get_streak(current_user.user_id)
    record = status.record
    data = StreakStatusData(
        current_streak=record.current_streak,
        longest_streak=record.longest_streak,
        last_practice_date=record.last_practice_date,
        total_practice_days=record.total_practice_days,
        freeze_days_available=record.freeze_days_available,
        freeze_days_used=record.freeze_days_used,
        milestones_reached=status.progress.reached,
        milestone_dates=record.milestone_dates,
        next_milestone=status.progress.next_milestone,
        days_until_next=status.progress.days_until_next,
    )
    return {"success": True, "data": data}


@router.post("/streak/freeze", response_model=ApiResponse[FreezeData])
async def use_streak_freeze(
    body: FreezeRequest,
    service: SchedulingService = Depends(get_scheduling_service),
    current_user: CurrentUser = Depends(get_current_user)
):
    """Spend a freeze day to protect the streak for today or yesterday."""
    record = service.use_streak_freeze(current_user.user_id, body.freeze_date)
    data = FreezeData(
        freeze_days_remaining=record.freeze_days_available,
        freeze_days_used=record.freeze_days_used,
        last_practice_date=record.last_practice_date,
    )
    return {"success": True, "data": data}


# ============== STATISTICS ENDPOINTS ==============

@router.get("/statistics", response_model=ApiResponse[MemoryStatisticsData])
async def get_statistics(
    service: SchedulingService = Depends(get_scheduling_service),
    current_user: CurrentUser = Depends(get_current_user)
):
    """Activity heat map (12 weeks), mastery distribution and totals."""
    result = service.get_statistics(current_user.user_id)
    return {"success": True, "data": MemoryStatisticsData(**vars(result))}
