"""
Test configuration and fixtures.
"""
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from verse_memory.auth.utils import create_access_token
from verse_memory.database import Base, get_db
from verse_memory.main import app
from verse_memory.memory import models  # noqa: F401
from verse_memory.memory.repository import MemoryVerseRepository, StreakRepository
from verse_memory.memory.review_log import ReviewLog
from verse_memory.memory.routes import get_clock
from verse_memory.memory.scheduling_service import SchedulingService

# Test database URL (use in-memory SQLite for tests)
TEST_DATABASE_URL = "sqlite://"

OWNER_ID = "a1b2c3d4-0000-4000-8000-000000000001"
OTHER_OWNER_ID = "a1b2c3d4-0000-4000-8000-000000000002"

# Monday 2026-10-12, 09:00 UTC
START = datetime(2026, 10, 12, 9, 0, tzinfo=timezone.utc)


class FixedClock:
    def __init__(self, current: datetime = START):
        self.current = current

    def now(self) -> datetime:
        return self.current

    def advance(self, days: int = 0, hours: int = 0) -> datetime:
        self.current = self.current + timedelta(days=days, hours=hours)
        return self.current


@pytest.fixture
def engine():
    test_engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    Base.metadata.drop_all(bind=test_engine)
    test_engine.dispose()


@pytest.fixture
def db(engine):
    TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    return FixedClock()


class RecordingAnalytics:
    def __init__(self):
        self.events = []

    def log_event(self, event_type, data):
        self.events.append((event_type, data))


@pytest.fixture
def analytics():
    return RecordingAnalytics()


@pytest.fixture
def service(db, clock, analytics):
    return SchedulingService(
        verses=MemoryVerseRepository(db),
        review_log=ReviewLog(db),
        streaks=StreakRepository(db),
        clock=clock,
        analytics=analytics,
    )


@pytest.fixture
def add_verse(db):
    repo = MemoryVerseRepository(db)

    def _add(reference="John 3:16", owner_id=OWNER_ID, language="en", added_at=START, **state):
        verse = repo.add(owner_id, reference, f"Text of {reference}", language=language, added_at=added_at)
        for key, value in state.items():
            setattr(verse, key, value)
        if state:
            db.commit()
            db.refresh(verse)
        return verse

    return _add


@pytest.fixture
def client(engine, clock):
    TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    def override_get_db():
        session = TestSessionLocal()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    token = create_access_token({"sub": OWNER_ID})
    return {"Authorization": f"Bearer {token}"}
