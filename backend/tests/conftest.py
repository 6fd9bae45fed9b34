"""
Pytest configuration and fixtures.

Every test gets a fresh in-memory SQLite database, a clock pinned to
2026-01-01 08:00 and an in-memory job queue, so nothing touches Postgres,
Redis or the wall clock.
"""
import os

# Must be set before cyclecoach.config is imported anywhere
os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import date, datetime
from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from cyclecoach.clock import FixedClock, get_clock
from cyclecoach.config import get_settings
from cyclecoach.database import Base, get_db
from cyclecoach.main import app
from cyclecoach.models import Race, Runner
from cyclecoach.services.job_queue import JobQueue, JobState, get_job_queue
from cyclecoach.services.plan_lifecycle_service import PlanLifecycleManager
from cyclecoach.services.recalculation_service import RecalculationCoordinator

START = datetime(2026, 1, 1, 8, 0)


class FakeJobQueue(JobQueue):
    """Records enqueued jobs; status and failures are set by the test."""

    def __init__(self):
        self.enqueued: List[Dict[str, Any]] = []
        self.states: Dict[str, JobState] = {}
        self.fail_enqueue = False
        self.status_error: Optional[Exception] = None

    def enqueue(self, job_kind: str, payload: Dict[str, Any], job_token: Optional[str] = None) -> str:
        if self.fail_enqueue:
            raise ConnectionError("broker unavailable")
        token = job_token or self.new_token()
        self.enqueued.append({"kind": job_kind, "payload": payload, "token": token})
        self.states[token] = JobState.QUEUED
        return token

    def get_status(self, job_token: str) -> JobState:
        if self.status_error:
            raise self.status_error
        return self.states.get(job_token, JobState.UNKNOWN)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FixedClock(START)


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def job_queue():
    return FakeJobQueue()


@pytest.fixture
def runner(db):
    runner = Runner(
        name="Test Runner",
        fitness_level="intermediate",
        typical_weekly_km=30,
        cycle_anchor=date(2026, 1, 1),
        cycle_length=28,
        cycle_regularity="regular",
        plan_slot_version=0,
    )
    db.add(runner)
    db.commit()
    db.refresh(runner)
    return runner


@pytest.fixture
def race(db, runner):
    race = Race(
        runner_id=runner.id,
        name="Spring Marathon",
        race_date=date(2026, 4, 26),
        distance_km=42.195,
        distance_type="marathon",
        goal_time_seconds=4 * 3600,
    )
    db.add(race)
    db.commit()
    db.refresh(race)
    return race


@pytest.fixture
def plan(db, runner, race, clock, settings):
    """Active plan for the spring marathon, 2026-01-01 to 2026-04-26."""
    return PlanLifecycleManager(db, clock=clock, settings=settings).create_plan(runner.id, race.id)


@pytest.fixture
def coordinator(db, job_queue, clock, settings):
    return RecalculationCoordinator(db, job_queue, clock, settings)


@pytest.fixture
def client(db, clock, job_queue):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_job_queue] = lambda: job_queue
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth(runner):
    return {"X-Runner-Id": runner.id}
