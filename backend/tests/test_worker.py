"""Tests for the background adaptation pass."""
from datetime import datetime
from unittest.mock import patch

import pytest
from sqlalchemy.orm import sessionmaker

from cyclecoach.models import PlanAdaptationHistory, TrainingSession
from cyclecoach.models.enums import TriggerKind
from cyclecoach.services.adaptation_history_service import SUPERSEDED_MESSAGE
from cyclecoach.services.plan_generator_service import PlanContentGenerator
from cyclecoach.services.plan_lifecycle_service import PlanLifecycleManager
from cyclecoach.worker.tasks import adapt_plan_task, build_trigger_context, run_adaptation

LOGGED_AT = datetime(2026, 1, 1, 9, 0)


class ExplodingGenerator(PlanContentGenerator):
    def adapt_sessions(self, plan, sessions, context):
        raise RuntimeError("content service unavailable")


def skip_first(db, plan, count):
    for session in plan.sessions[:count]:
        session.is_skipped = True
        session.completed_at = LOGGED_AT
    db.commit()


def test_trigger_context_summarizes_recent_sessions():
    recent = [
        TrainingSession(is_skipped=True, skip_reason="sick", completed_at=LOGGED_AT),
        TrainingSession(
            is_skipped=False, completed_at=LOGGED_AT, target_distance_km=10,
            actual_distance_km=8, rpe=6, user_notes="heavy legs",
        ),
        TrainingSession(
            is_skipped=False, completed_at=LOGGED_AT, target_distance_km=10,
            actual_distance_km=6, rpe=7,
        ),
    ]

    context = build_trigger_context("3 sessions off track", recent)

    assert context.reason == "3 sessions off track"
    assert context.logged_sessions == 3
    assert context.skipped_sessions == 1
    assert context.average_completion_ratio == 0.7
    assert context.average_rpe == 6.5
    assert context.notes == ["heavy legs", "Skipped: sick"]


def test_adaptation_eases_upcoming_sessions(db, coordinator, clock, plan):
    skip_first(db, plan, 3)
    token = coordinator.request_recalculation(plan.id, auto_dispatch=True, trigger_reason="3 skips").job_token
    upcoming = plan.sessions[3:10]
    before = {s.id: s.target_distance_km for s in upcoming}

    entry = run_adaptation(db, plan.id, token, "3 skips", clock=clock)

    assert entry.status == "succeeded"
    assert entry.job_token == token
    assert entry.sessions_affected_count == 7
    for session in upcoming:
        db.refresh(session)
        assert session.target_distance_km == round(before[session.id] * 0.7, 1)
        assert session.was_modified

    db.refresh(plan)
    assert plan.last_job_ref is None
    assert "eased back by 30%" in plan.last_recalculation_summary
    # Logged sessions keep their original targets
    assert not any(s.was_modified for s in plan.sessions[:3])


def test_redelivered_job_is_a_no_op(db, coordinator, clock, plan):
    skip_first(db, plan, 3)
    token = coordinator.request_recalculation(plan.id, auto_dispatch=True).job_token
    first = run_adaptation(db, plan.id, token, clock=clock)
    session = plan.sessions[3]
    db.refresh(session)
    distance = session.target_distance_km

    second = run_adaptation(db, plan.id, token, clock=clock)

    assert second.id == first.id
    db.refresh(session)
    assert session.target_distance_km == distance
    assert db.query(PlanAdaptationHistory).count() == 1


def test_missing_plan_is_skipped(db, clock):
    assert run_adaptation(db, "missing", "token-1", clock=clock) is None


def test_archived_plan_records_failure(db, coordinator, clock, settings, plan):
    token = coordinator.request_recalculation(plan.id, auto_dispatch=True).job_token
    PlanLifecycleManager(db, clock=clock, settings=settings).archive_plan(plan.id)

    entry = run_adaptation(db, plan.id, token, clock=clock)

    assert entry.status == "failed"
    assert "archived" in entry.error_message


def test_generator_failure_is_recorded_and_reraised(db, coordinator, clock, plan):
    token = coordinator.request_recalculation(plan.id, auto_dispatch=True).job_token

    with pytest.raises(RuntimeError):
        run_adaptation(db, plan.id, token, "3 skips", generator=ExplodingGenerator(), clock=clock)

    entry = db.query(PlanAdaptationHistory).filter_by(job_token=token).one()
    assert entry.status == "failed"
    assert entry.error_message == "content service unavailable"
    db.refresh(plan)
    assert plan.last_job_ref is None
    assert not any(s.was_modified for s in plan.sessions)


def test_celery_task_uses_job_token_as_task_id(engine, db, coordinator, clock, plan):
    token = coordinator.request_recalculation(plan.id, auto_dispatch=True).job_token
    worker_session = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    with patch("cyclecoach.worker.tasks.SessionLocal", worker_session), \
         patch("cyclecoach.worker.tasks.get_clock", return_value=clock):
        result = adapt_plan_task.apply(kwargs={"plan_id": plan.id, "trigger_reason": "3 skips"}, task_id=token)

    payload = result.get()
    assert payload["status"] == "succeeded"
    assert payload["plan_id"] == plan.id
    entry = db.query(PlanAdaptationHistory).filter_by(job_token=token).one()
    assert payload["history_id"] == entry.id


def test_celery_task_reports_missing_plan(engine):
    worker_session = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    with patch("cyclecoach.worker.tasks.SessionLocal", worker_session):
        result = adapt_plan_task.apply(kwargs={"plan_id": "missing"}, task_id="token-x")

    assert result.get() == {"status": "skipped", "plan_id": "missing"}


def test_superseded_job_skips_the_generator(db, coordinator, clock, plan):
    token = coordinator.request_recalculation(plan.id, auto_dispatch=True).job_token
    plan.last_job_ref = "newer-job"
    db.commit()

    entry = run_adaptation(db, plan.id, token, "3 skips", generator=ExplodingGenerator(), clock=clock)

    assert entry.status == "failed"
    assert entry.error_message == SUPERSEDED_MESSAGE
    db.refresh(plan)
    assert plan.last_job_ref == "newer-job"
    assert not any(s.was_modified for s in plan.sessions)


def test_celery_task_passes_the_trigger_kind(engine, db, coordinator, clock, plan):
    token = coordinator.request_recalculation(
        plan.id, auto_dispatch=True, trigger_kind=TriggerKind.CYCLE_SHIFT
    ).job_token
    worker_session = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    with patch("cyclecoach.worker.tasks.SessionLocal", worker_session), \
         patch("cyclecoach.worker.tasks.get_clock", return_value=clock), \
         patch("cyclecoach.worker.tasks.run_adaptation", wraps=run_adaptation) as run:
        adapt_plan_task.apply(kwargs={"plan_id": plan.id, "trigger_kind": "cycle_shift"}, task_id=token)

    assert run.call_args.kwargs["trigger_kind"] == TriggerKind.CYCLE_SHIFT
    entry = db.query(PlanAdaptationHistory).filter_by(job_token=token).one()
    assert entry.status == "succeeded"
