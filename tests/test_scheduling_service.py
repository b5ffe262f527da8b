import uuid
from datetime import date, timedelta, timezone

import pytest
from sqlalchemy.exc import OperationalError

from verse_memory.errors import NotFoundError, StorageError, ValidationError
from verse_memory.memory.models import MemoryVerse, MemoryVerseStreak, ReviewHistory, ReviewSession, StreakMilestone
from verse_memory.memory.streaks import StreakRecord

from conftest import OWNER_ID, OTHER_OWNER_ID, START


def db_down(*args, **kwargs):
    raise OperationalError("COMMIT", {}, Exception("connection refused"))


# ============== submit_review ==============

def test_submit_review_updates_verse_and_log(service, db, add_verse, analytics):
    verse = add_verse()

    result = service.submit_review(verse.id, OWNER_ID, 5, time_spent_seconds=42)

    assert result.repetitions == 1
    assert result.interval_days == 1
    assert result.ease_factor == pytest.approx(2.6)
    assert result.total_reviews == 1
    assert result.streak_maintained is True
    assert result.next_review_date == START + timedelta(days=1)

    stored = db.get(MemoryVerse, verse.id)
    assert stored.repetitions == 1
    assert stored.total_reviews == 1
    assert stored.ease_factor == pytest.approx(2.6)

    sessions = db.query(ReviewSession).all()
    assert len(sessions) == 1
    assert sessions[0].quality_rating == 5
    assert sessions[0].new_interval_days == 1
    assert sessions[0].time_spent_seconds == 42

    assert analytics.events[0][0] == "memory_verse_reviewed"


def test_daily_history_aggregates_same_day_reviews(service, db, add_verse):
    verse = add_verse()
    service.submit_review(verse.id, OWNER_ID, 5)
    service.submit_review(verse.id, OWNER_ID, 2)

    history = db.query(ReviewHistory).all()
    assert len(history) == 1
    assert history[0].reviews_count == 2
    assert history[0].average_quality == pytest.approx(3.5)
    assert history[0].review_date == START.date()


def test_failed_review_does_not_maintain_streak(service, add_verse):
    verse = add_verse(repetitions=20, interval_days=90)
    result = service.submit_review(verse.id, OWNER_ID, 1)
    assert result.streak_maintained is False
    assert result.repetitions == 0
    assert result.interval_days == 1


def test_fourteen_reviews_then_progressive_spacing(service, clock, add_verse):
    verse = add_verse()
    for _ in range(14):
        result = service.submit_review(verse.id, OWNER_ID, 5)
        assert result.interval_days == 1
        clock.advance(days=1)

    result = service.submit_review(verse.id, OWNER_ID, 5)
    assert result.repetitions == 15
    assert result.interval_days == 3
    assert result.total_reviews == 15


def test_submit_review_rejects_other_owner(service, add_verse):
    verse = add_verse(owner_id=OTHER_OWNER_ID)
    with pytest.raises(NotFoundError):
        service.submit_review(verse.id, OWNER_ID, 4)


def test_submit_review_missing_verse(service):
    with pytest.raises(NotFoundError):
        service.submit_review(str(uuid.uuid4()), OWNER_ID, 4)


@pytest.mark.parametrize("item_id,quality,time_spent", [
    ("not-a-uuid", 4, None),
    (None, 4, None),
    ("valid", 6, None),
    ("valid", -1, None),
    ("valid", True, None),
    ("valid", 4, -5),
    ("valid", 4, 1.5),
])
def test_submit_review_validation_happens_before_side_effects(service, db, add_verse, item_id, quality, time_spent):
    verse = add_verse()
    if item_id == "valid":
        item_id = verse.id

    with pytest.raises(ValidationError):
        service.submit_review(item_id, OWNER_ID, quality, time_spent)

    db.refresh(verse)
    assert verse.total_reviews == 0
    assert db.query(ReviewSession).count() == 0


def test_storage_failure_leaves_verse_untouched(service, db, add_verse, monkeypatch):
    verse = add_verse(repetitions=3)
    monkeypatch.setattr(db, "commit", db_down)

    with pytest.raises(StorageError) as exc_info:
        service.submit_review(verse.id, OWNER_ID, 5)
    assert exc_info.value.retryable

    monkeypatch.undo()
    stored = db.get(MemoryVerse, verse.id)
    assert stored.repetitions == 3
    assert stored.total_reviews == 0
    assert db.query(ReviewSession).count() == 0


def test_review_log_failure_is_not_fatal(service, db, add_verse, monkeypatch):
    verse = add_verse()
    monkeypatch.setattr(service.review_log, "append", db_down)
    monkeypatch.setattr(service.review_log, "record_daily", db_down)

    result = service.submit_review(verse.id, OWNER_ID, 4)

    assert result.total_reviews == 1
    assert db.get(MemoryVerse, verse.id).repetitions == 1


def test_store_outage_after_verse_update_keeps_review(service, db, add_verse, monkeypatch):
    verse = add_verse()
    real_commit = db.commit
    commits = []

    def commit_then_go_down():
        if commits:
            db_down()
        commits.append(1)
        real_commit()
        monkeypatch.setattr(db, "execute", db_down)

    monkeypatch.setattr(db, "commit", commit_then_go_down)

    result = service.submit_review(verse.id, OWNER_ID, 5)

    assert result.total_reviews == 1
    assert result.repetitions == 1
    assert result.next_review_date == START + timedelta(days=1)

    monkeypatch.undo()
    stored = db.get(MemoryVerse, verse.id)
    assert stored.total_reviews == 1
    assert stored.repetitions == 1
    assert db.query(ReviewSession).count() == 0


def test_analytics_failure_is_not_fatal(service, add_verse, monkeypatch):
    verse = add_verse()

    def broken(event_type, data):
        raise RuntimeError("sink offline")

    monkeypatch.setattr(service.analytics, "log_event", broken)
    assert service.submit_review(verse.id, OWNER_ID, 4).repetitions == 1


# ============== get_due_items ==============

def test_due_items_ordered_most_overdue_first(service, add_verse):
    later = add_verse("Psalm 23:1", next_review_date=START - timedelta(hours=1))
    earliest = add_verse("Romans 8:28", next_review_date=START - timedelta(days=3))
    add_verse("Philippians 4:13", next_review_date=START + timedelta(days=2))

    result = service.get_due_items(OWNER_ID, START)

    assert [v.id for v in result.items] == [earliest.id, later.id]
    assert result.has_more is False


def test_due_items_pagination(service, add_verse):
    for i in range(5):
        add_verse(f"Proverbs 3:{i + 1}", next_review_date=START - timedelta(days=5 - i))

    first = service.get_due_items(OWNER_ID, START, limit=2, offset=0)
    last = service.get_due_items(OWNER_ID, START, limit=2, offset=4)

    assert [v.verse_reference for v in first.items] == ["Proverbs 3:1", "Proverbs 3:2"]
    assert first.has_more is True
    assert [v.verse_reference for v in last.items] == ["Proverbs 3:5"]
    assert last.has_more is False


def test_due_items_show_all_and_language(service, add_verse):
    add_verse("John 1:1", next_review_date=START - timedelta(days=1))
    add_verse("John 1:2", next_review_date=START + timedelta(days=10))
    add_verse("John 1:1", language="hi", next_review_date=START - timedelta(days=1))

    assert len(service.get_due_items(OWNER_ID, START).items) == 2
    assert len(service.get_due_items(OWNER_ID, START, show_all=True).items) == 3
    assert len(service.get_due_items(OWNER_ID, START, language="hi").items) == 1
    assert len(service.get_due_items(OWNER_ID, START, language="en", show_all=True).items) == 2


def test_due_items_exclude_other_owners(service, add_verse):
    add_verse(owner_id=OTHER_OWNER_ID, next_review_date=START - timedelta(days=1))
    result = service.get_due_items(OWNER_ID, START)
    assert result.items == []
    assert result.statistics["total_verses"] == 0


def test_due_statistics(service, add_verse):
    add_verse("A 1:1", next_review_date=START - timedelta(days=1))
    add_verse("A 1:2", next_review_date=START + timedelta(days=3), repetitions=6)
    add_verse("A 1:3", next_review_date=START + timedelta(days=30), repetitions=5,
              last_reviewed=START - timedelta(hours=2))
    add_verse("A 1:4", next_review_date=START + timedelta(days=7))

    stats = service.get_due_items(OWNER_ID, START).statistics

    assert stats == {
        "total_verses": 4,
        "due_verses": 1,
        "reviewed_today": 1,
        "upcoming_reviews": 2,
        "mastered_verses": 2,
    }


def test_due_statistics_use_utc_day_for_non_utc_time(service, add_verse):
    # Sunday 12:00 UTC, the day before START
    add_verse(next_review_date=START + timedelta(days=30), last_reviewed=START - timedelta(hours=21))
    honolulu_evening = START.astimezone(timezone(timedelta(hours=-10)))

    stats = service.get_due_items(OWNER_ID, honolulu_evening).statistics

    assert stats["reviewed_today"] == 0
    assert stats["due_verses"] == 0


@pytest.mark.parametrize("kwargs", [
    {"limit": 0}, {"limit": 101}, {"offset": -1}, {"language": "fr"},
])
def test_due_items_validation(service, kwargs):
    with pytest.raises(ValidationError):
        service.get_due_items(OWNER_ID, START, **kwargs)


# ============== update_streak ==============

def test_first_streak_update_creates_record(service, db):
    result = service.update_streak(OWNER_ID)
    assert result.current_streak == 1
    assert result.longest_streak == 1
    assert result.streak_continued is False
    assert result.last_practice_date == START.date()
    assert db.query(MemoryVerseStreak).count() == 1


def test_streak_update_is_idempotent_within_a_day(service, clock, db):
    service.update_streak(OWNER_ID)
    clock.advance(days=1)
    first = service.update_streak(OWNER_ID)
    before = service.streaks.load(OWNER_ID)

    clock.advance(hours=5)
    second = service.update_streak(OWNER_ID)

    assert service.streaks.load(OWNER_ID) == before
    assert second.current_streak == first.current_streak == 2
    assert second.total_practice_days == 2
    assert second.streak_continued is False


def test_streak_resets_after_gap(service, clock):
    service.update_streak(OWNER_ID)
    clock.advance(days=1)
    service.update_streak(OWNER_ID)
    clock.advance(days=3)
    result = service.update_streak(OWNER_ID)
    assert result.current_streak == 1
    assert result.longest_streak == 2
    assert result.total_practice_days == 3


def test_milestone_reported_once_and_persisted(service, clock, db):
    yesterday = START.date() - timedelta(days=1)
    service.streaks.create(OWNER_ID, StreakRecord(
        current_streak=9, longest_streak=9, last_practice_date=yesterday, total_practice_days=9,
    ))

    result = service.update_streak(OWNER_ID)
    assert result.current_streak == 10
    assert result.milestone_reached.days == 10
    assert result.milestone_reached.name == "daily_devotion"

    milestones = db.query(StreakMilestone).all()
    assert [(m.milestone_days, m.reached_date) for m in milestones] == [(10, START.date())]

    clock.advance(hours=3)
    assert service.update_streak(OWNER_ID).milestone_reached is None
    clock.advance(days=1)
    assert service.update_streak(OWNER_ID).milestone_reached is None


def test_freeze_day_earned_from_weekly_reviews(service, clock, add_verse):
    verse = add_verse()
    earned = []
    for _ in range(6):
        service.submit_review(verse.id, OWNER_ID, 4)
        result = service.update_streak(OWNER_ID)
        earned.append(result.freeze_day_earned)
        clock.advance(days=1)

    assert earned == [False, False, False, False, True, False]
    assert result.freeze_days_available == 1
    assert result.current_streak == 6


def test_compare_and_set_rejects_stale_write(service):
    service.update_streak(OWNER_ID)
    stale = service.streaks.load(OWNER_ID)
    newer = StreakRecord(current_streak=2, longest_streak=2, last_practice_date=START.date() + timedelta(days=1),
                         total_practice_days=2)
    assert service.streaks.compare_and_set(OWNER_ID, stale.last_practice_date, newer)

    # Second writer computed from the old row
    assert not service.streaks.compare_and_set(OWNER_ID, stale.last_practice_date, newer)


def test_lost_race_is_retried_from_fresh_read(service, monkeypatch):
    service.update_streak(OWNER_ID)
    real_cas = service.streaks.compare_and_set
    calls = []

    def racing_cas(user_id, expected, record, new_milestones=None):
        calls.append(expected)
        if len(calls) == 1:
            return False
        return real_cas(user_id, expected, record, new_milestones)

    monkeypatch.setattr(service.streaks, "compare_and_set", racing_cas)
    service.clock.advance(days=1)
    result = service.update_streak(OWNER_ID)

    assert len(calls) == 2
    assert result.current_streak == 2


def test_concurrent_first_record_creation(service, monkeypatch):
    service.update_streak(OWNER_ID)
    # Simulate a request that read no record before the other one created it
    real_load = service.streaks.load
    loads = []

    def first_load_misses(user_id):
        loads.append(user_id)
        return None if len(loads) == 1 else real_load(user_id)

    monkeypatch.setattr(service.streaks, "load", first_load_misses)
    result = service.update_streak(OWNER_ID)

    assert result.current_streak == 1
    assert result.total_practice_days == 1
    assert len(loads) == 2


# ============== freeze days and statistics ==============

def test_use_streak_freeze(service, clock):
    service.streaks.create(OWNER_ID, StreakRecord(
        current_streak=6, longest_streak=6, last_practice_date=START.date() - timedelta(days=2),
        total_practice_days=6, freeze_days_available=2,
    ))

    record = service.use_streak_freeze(OWNER_ID, START.date() - timedelta(days=1))
    assert record.freeze_days_available == 1
    assert record.freeze_days_used == 1

    result = service.update_streak(OWNER_ID)
    assert result.current_streak == 7
    assert result.streak_continued


def test_use_streak_freeze_without_record(service):
    with pytest.raises(ValidationError):
        service.use_streak_freeze(OWNER_ID, START.date())


def test_get_streak_defaults(service):
    status = service.get_streak(OWNER_ID)
    assert status.record.current_streak == 0
    assert status.progress.next_milestone == 10


def test_statistics(service, clock, add_verse):
    first = add_verse("Isaiah 40:31")
    add_verse("Joshua 1:9", repetitions=12)
    service.submit_review(first.id, OWNER_ID, 5)
    service.update_streak(OWNER_ID)
    clock.advance(days=1)
    service.submit_review(first.id, OWNER_ID, 3)
    service.submit_review(first.id, OWNER_ID, 5)
    service.update_streak(OWNER_ID)

    stats = service.get_statistics(OWNER_ID)

    day_one = START.date().isoformat()
    day_two = (START.date() + timedelta(days=1)).isoformat()
    assert stats.activity_data == {day_one: 1, day_two: 2}
    assert stats.total_reviews == 3
    assert stats.perfect_recalls == 2
    assert stats.total_verses == 2
    assert stats.mastery_distribution == {
        "beginner": 0, "intermediate": 1, "advanced": 0, "expert": 0, "master": 1,
    }
    assert stats.current_streak == 2
    assert stats.milestones_reached[10] is False


def test_practice_dates_span_week(service, db, add_verse, clock):
    verse = add_verse()
    for _ in range(3):
        service.submit_review(verse.id, OWNER_ID, 4)
        clock.advance(days=1)

    dates = service.review_log.practice_dates(OWNER_ID, START.date(), START.date() + timedelta(days=6))
    assert dates == {START.date() + timedelta(days=i) for i in range(3)}
    assert isinstance(next(iter(dates)), date)
