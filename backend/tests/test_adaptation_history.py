"""Tests for applying adaptation results and the history trail."""
from datetime import datetime

import pytest

from cyclecoach.clock import FixedClock
from cyclecoach.exceptions import NotFoundError
from cyclecoach.models import PlanAdaptationHistory
from cyclecoach.services.adaptation_history_service import (
    FAILED_SUMMARY,
    SUPERSEDED_MESSAGE,
    AdaptationHistoryRecorder,
)
from cyclecoach.services.plan_generator_service import SessionChange


@pytest.fixture
def recorder(db, clock):
    return AdaptationHistoryRecorder(db, clock)


def eased(session, factor=0.8):
    return SessionChange(
        session_id=session.id,
        scheduled_date=session.scheduled_date,
        session_name=session.session_name,
        old_distance_km=session.target_distance_km,
        old_duration_minutes=session.target_duration_minutes,
        old_workout_type=session.workout_type,
        old_intensity=session.intensity,
        new_distance_km=round(session.target_distance_km * factor, 1),
        new_duration_minutes=int(session.target_duration_minutes * factor),
        new_workout_type=session.workout_type,
        new_intensity=session.intensity,
    )


def dispatched(coordinator, plan):
    return coordinator.request_recalculation(plan.id, auto_dispatch=True).job_token


def test_completed_adaptation_updates_sessions_and_plan(recorder, coordinator, plan, db):
    token = dispatched(coordinator, plan)
    sessions = plan.sessions[3:6]
    changes = [eased(s) for s in sessions]
    expected = [c.new_distance_km for c in changes]

    entry = recorder.record_completed_adaptation(plan.id, changes, "Eased back", "3 skips", token)

    assert entry.status == "succeeded"
    assert entry.sessions_affected_count == 3
    assert entry.job_token == token
    assert len(entry.changes) == 3
    assert entry.changes[0]["session_id"] == sessions[0].id

    db.refresh(plan)
    for session, distance in zip(plan.sessions[3:6], expected):
        db.refresh(session)
        assert session.target_distance_km == distance
        assert session.was_modified is True
    assert plan.last_recalculation_summary == "Eased back"
    assert plan.last_recalculated_at == datetime(2026, 1, 1, 8, 0)
    assert plan.summary_viewed_at is None
    assert plan.last_job_ref is None


def test_unchanged_targets_are_not_counted(recorder, plan):
    session = plan.sessions[0]
    change = eased(session, factor=1.0)
    change.new_duration_minutes = session.target_duration_minutes

    entry = recorder.record_completed_adaptation(plan.id, [change], "No change", "check-in")

    assert entry.sessions_affected_count == 0
    assert entry.changes == []


def test_logged_sessions_are_never_rewritten(recorder, plan, db):
    session = plan.sessions[0]
    original = session.target_distance_km
    session.completed_at = datetime(2026, 1, 1, 9, 0)
    session.actual_distance_km = 3.0
    db.commit()

    entry = recorder.record_completed_adaptation(plan.id, [eased(session)], "Eased back", "reason")

    db.refresh(session)
    assert session.target_distance_km == original
    assert session.was_modified is False
    assert entry.sessions_affected_count == 0


def test_replayed_completion_is_ignored(recorder, coordinator, plan, db):
    token = dispatched(coordinator, plan)
    session = plan.sessions[3]
    first = recorder.record_completed_adaptation(plan.id, [eased(session)], "Eased back", "r", token)
    db.refresh(session)
    after_first = session.target_distance_km

    second = recorder.record_completed_adaptation(plan.id, [eased(session)], "Eased again", "r", token)

    assert second.id == first.id
    db.refresh(session)
    db.refresh(plan)
    assert session.target_distance_km == after_first
    assert plan.last_recalculation_summary == "Eased back"
    assert db.query(PlanAdaptationHistory).count() == 1


def test_superseded_completion_is_recorded_as_failed(recorder, plan, db):
    plan.last_job_ref = "newer-job"
    db.commit()
    session = plan.sessions[3]
    original = session.target_distance_km

    entry = recorder.record_completed_adaptation(plan.id, [eased(session)], "Old result", "r", "older-job")

    assert entry.status == "failed"
    assert entry.job_token == "older-job"
    assert entry.error_message == SUPERSEDED_MESSAGE
    assert entry.sessions_affected_count == 0
    db.refresh(plan)
    db.refresh(session)
    assert plan.last_job_ref == "newer-job"
    assert plan.last_recalculation_summary is None
    assert session.target_distance_km == original
    assert session.was_modified is False


def test_late_completion_after_release_does_not_apply(recorder, coordinator, plan, db):
    token = dispatched(coordinator, plan)
    recorder.record_failed_adaptation(plan.id, "worker lost", "r", token)
    session = plan.sessions[3]
    original = session.target_distance_km

    entry = recorder.record_completed_adaptation(plan.id, [eased(session)], "Eased back", "r", token)

    assert entry.status == "failed"
    assert db.query(PlanAdaptationHistory).count() == 1
    db.refresh(session)
    assert session.target_distance_km == original


def test_failed_adaptation_unsticks_the_plan(recorder, coordinator, plan, db):
    token = dispatched(coordinator, plan)

    entry = recorder.record_failed_adaptation(plan.id, "generator timed out", "3 skips", token)

    assert entry.status == "failed"
    assert entry.summary == FAILED_SUMMARY
    assert entry.error_message == "generator timed out"
    assert entry.sessions_affected_count == 0
    db.refresh(plan)
    assert plan.last_job_ref is None
    assert plan.pending_confirmation is False
    assert plan.last_recalculation_summary is None

    # A fresh request can start straight away
    assert dispatched(coordinator, plan) is not None


def test_summary_can_be_dismissed(recorder, plan, db):
    recorder.record_completed_adaptation(plan.id, [], "Eased back", "r")

    viewed = recorder.mark_summary_viewed(plan.id, plan.runner_id)

    assert viewed.summary_viewed_at == datetime(2026, 1, 1, 8, 0)


def test_new_summary_resets_the_viewed_mark(db, plan):
    recorder = AdaptationHistoryRecorder(db, FixedClock(datetime(2026, 1, 1, 8, 0)))
    recorder.record_completed_adaptation(plan.id, [], "First", "r")
    recorder.mark_summary_viewed(plan.id)

    recorder.clock = FixedClock(datetime(2026, 1, 5, 8, 0))
    recorder.record_completed_adaptation(plan.id, [], "Second", "r")

    db.refresh(plan)
    assert plan.last_recalculation_summary == "Second"
    assert plan.summary_viewed_at is None


def test_history_is_newest_first_and_can_be_marked_viewed(db, plan):
    plan.last_job_ref = "job-1"
    db.commit()
    recorder = AdaptationHistoryRecorder(db, FixedClock(datetime(2026, 1, 1, 8, 0)))
    older = recorder.record_completed_adaptation(plan.id, [], "First", "r", "job-1")
    recorder.clock = FixedClock(datetime(2026, 1, 8, 8, 0))
    newer = recorder.record_failed_adaptation(plan.id, "boom", "r", "job-2")

    history = recorder.list_history(plan.id, plan.runner_id)
    assert [h.id for h in history] == [newer.id, older.id]

    entry = recorder.mark_history_entry_viewed(older.id, plan.runner_id)
    assert entry.viewed_at == datetime(2026, 1, 8, 8, 0)


def test_history_of_foreign_plan_is_not_found(recorder, plan):
    with pytest.raises(NotFoundError):
        recorder.list_history(plan.id, "someone-else")


def test_foreign_history_entry_is_not_found(recorder, plan):
    entry = recorder.record_completed_adaptation(plan.id, [], "First", "r")
    with pytest.raises(NotFoundError):
        recorder.mark_history_entry_viewed(entry.id, "someone-else")
