"""Tests for plan creation, the one-active-plan rule and status transitions."""
import threading
from datetime import date, datetime, timedelta

import pytest
from sqlalchemy import create_engine, event, update
from sqlalchemy.orm import sessionmaker

from cyclecoach.clock import FixedClock
from cyclecoach.database import Base
from cyclecoach.exceptions import ConflictError, NotFoundError, PlanGenerationError, ValidationError
from cyclecoach.models import Race, Runner, TrainingPlan
from cyclecoach.models.enums import PlanStatus
from cyclecoach.services.plan_generator_service import RuleBasedPlanGenerator
from cyclecoach.services.plan_lifecycle_service import PlanLifecycleManager

START = datetime(2026, 1, 1, 8, 0)


class SlotStealingGenerator(RuleBasedPlanGenerator):
    """Bumps the runner's plan slot behind the manager's back, like a concurrent creator would."""

    def __init__(self, db, runner_id, steal_times):
        self.db = db
        self.runner_id = runner_id
        self.steal_times = steal_times
        self.calls = 0

    def generate_sessions(self, runner, race, window):
        self.calls += 1
        if self.calls <= self.steal_times:
            self.db.execute(
                update(Runner)
                .where(Runner.id == self.runner_id)
                .values(plan_slot_version=Runner.plan_slot_version + 1)
                .execution_options(synchronize_session=False)
            )
        return super().generate_sessions(runner, race, window)


class BrokenGenerator(RuleBasedPlanGenerator):
    def generate_sessions(self, runner, race, window):
        raise RuntimeError("model timed out")


@pytest.fixture
def manager(db, clock, settings):
    return PlanLifecycleManager(db, clock=clock, settings=settings)


def test_create_plan_persists_active_plan_with_sessions(manager, runner, race, db):
    plan = manager.create_plan(runner.id, race.id)

    assert plan.status == PlanStatus.ACTIVE.value
    assert plan.start_date == date(2026, 1, 1)
    assert plan.end_date == date(2026, 4, 26)
    assert plan.sessions
    assert all(plan.start_date <= s.scheduled_date < plan.end_date for s in plan.sessions)
    assert all(s.cycle_phase for s in plan.sessions)
    assert plan.days_before_period_to_reduce_intensity == 3
    assert plan.days_after_period_to_reduce_intensity == 2

    db.refresh(runner)
    assert runner.plan_slot_version == 1


def test_second_active_plan_is_rejected(manager, runner, race, db):
    manager.create_plan(runner.id, race.id)

    with pytest.raises(ConflictError):
        manager.create_plan(runner.id, race.id)

    active = db.query(TrainingPlan).filter(TrainingPlan.status == PlanStatus.ACTIVE.value).count()
    assert active == 1


def test_training_start_date_in_future_is_respected(manager, runner, db):
    race = Race(
        runner_id=runner.id,
        name="Autumn Half",
        race_date=date(2026, 6, 1),
        distance_km=21.1,
        training_start_date=date(2026, 3, 2),
    )
    db.add(race)
    db.commit()

    plan = manager.create_plan(runner.id, race.id)
    assert plan.start_date == date(2026, 3, 2)
    assert plan.sessions[0].scheduled_date >= date(2026, 3, 2)


def test_race_of_another_runner_is_rejected(manager, runner, db):
    other = Runner(name="Someone Else", plan_slot_version=0)
    db.add(other)
    db.commit()
    race = Race(runner_id=other.id, name="Their Race", race_date=date(2026, 5, 1), distance_km=10)
    db.add(race)
    db.commit()

    with pytest.raises(ValidationError) as exc:
        manager.create_plan(runner.id, race.id)
    assert exc.value.field == "race_id"


@pytest.mark.parametrize("lead_days,ok", [(6, False), (7, True), (30, True)])
def test_minimum_race_lead_time(manager, runner, db, lead_days, ok):
    race = Race(
        runner_id=runner.id,
        name="Parkrun",
        race_date=START.date() + timedelta(days=lead_days),
        distance_km=5,
    )
    db.add(race)
    db.commit()

    if ok:
        assert manager.create_plan(runner.id, race.id).is_active
    else:
        with pytest.raises(ValidationError) as exc:
            manager.create_plan(runner.id, race.id)
        assert exc.value.field == "race_date"


def test_unknown_runner_is_not_found(manager, race):
    with pytest.raises(NotFoundError):
        manager.create_plan("no-such-runner", race.id)


def test_lost_race_is_retried_once(db, clock, settings, runner, race):
    generator = SlotStealingGenerator(db, runner.id, steal_times=1)
    manager = PlanLifecycleManager(db, generator, clock, settings)

    plan = manager.create_plan(runner.id, race.id)

    assert plan.is_active
    assert generator.calls == 2


def test_lost_race_twice_is_a_conflict(db, clock, settings, runner, race):
    generator = SlotStealingGenerator(db, runner.id, steal_times=2)
    manager = PlanLifecycleManager(db, generator, clock, settings)

    with pytest.raises(ConflictError):
        manager.create_plan(runner.id, race.id)

    assert generator.calls == 2
    assert db.query(TrainingPlan).count() == 0


def test_generator_failure_saves_nothing(db, clock, settings, runner, race):
    manager = PlanLifecycleManager(db, BrokenGenerator(), clock, settings)

    with pytest.raises(PlanGenerationError):
        manager.create_plan(runner.id, race.id)

    assert db.query(TrainingPlan).count() == 0
    db.refresh(runner)
    assert runner.plan_slot_version == 0


def test_archive_frees_the_slot_and_keeps_the_plan(manager, runner, race, db):
    first = manager.create_plan(runner.id, race.id)
    archived = manager.archive_plan(first.id, runner.id)
    assert archived.status == PlanStatus.ARCHIVED.value

    second = manager.create_plan(runner.id, race.id)
    assert second.id != first.id
    assert db.query(TrainingPlan).count() == 2
    assert manager.get_plan_for_race(runner.id, race.id).id == second.id


def test_plan_for_race_prefers_the_active_plan_on_equal_timestamps(manager, runner, race, db):
    first = manager.create_plan(runner.id, race.id)
    manager.archive_plan(first.id, runner.id)
    second = manager.create_plan(runner.id, race.id)
    same_instant = datetime(2026, 1, 1, 8, 0)
    for plan in (first, second):
        plan.created_at = same_instant
    db.commit()

    assert manager.get_plan_for_race(runner.id, race.id).id == second.id

    manager.archive_plan(second.id, runner.id)
    found = manager.get_plan_for_race(runner.id, race.id)
    assert found.status == PlanStatus.ARCHIVED.value


def test_complete_then_archive(manager, plan, runner):
    assert manager.complete_plan(plan.id, runner.id).status == PlanStatus.COMPLETED.value
    assert manager.archive_plan(plan.id, runner.id).status == PlanStatus.ARCHIVED.value


def test_archived_plan_cannot_transition(manager, plan, runner):
    manager.archive_plan(plan.id, runner.id)
    with pytest.raises(ConflictError):
        manager.complete_plan(plan.id, runner.id)


def test_leaving_active_drops_pending_confirmation(manager, plan, runner, db):
    plan.pending_confirmation = True
    db.commit()

    archived = manager.archive_plan(plan.id, runner.id)
    assert archived.pending_confirmation is False


def test_transition_of_foreign_plan_is_not_found(manager, plan):
    with pytest.raises(NotFoundError):
        manager.archive_plan(plan.id, "another-runner")


def test_concurrent_creators_produce_one_active_plan(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'concurrent.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )

    # Serializable SQLite transactions: take the write lock at BEGIN
    @event.listens_for(engine, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    Base.metadata.create_all(bind=engine)
    Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    setup = Session()
    runner = Runner(name="Racer", cycle_anchor=date(2026, 1, 1), cycle_length=28, plan_slot_version=0)
    setup.add(runner)
    setup.commit()
    race = Race(runner_id=runner.id, name="City 10K", race_date=date(2026, 3, 1), distance_km=10)
    setup.add(race)
    setup.commit()
    runner_id, race_id = runner.id, race.id
    setup.close()

    creators = 4
    barrier = threading.Barrier(creators)
    outcomes = []
    lock = threading.Lock()

    def create():
        session = Session()
        manager = PlanLifecycleManager(session, clock=FixedClock(START))
        barrier.wait()
        try:
            manager.create_plan(runner_id, race_id)
            result = "created"
        except ConflictError:
            result = "conflict"
        except Exception as e:
            result = repr(e)
        finally:
            session.close()
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=create) for _ in range(creators)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)

    assert sorted(outcomes) == ["conflict"] * (creators - 1) + ["created"]

    check = Session()
    active = (
        check.query(TrainingPlan)
        .filter(TrainingPlan.runner_id == runner_id, TrainingPlan.status == PlanStatus.ACTIVE.value)
        .count()
    )
    check.close()
    engine.dispose()
    assert active == 1
