"""End-to-end tests through the HTTP API."""
from cyclecoach.models import TrainingPlan
from cyclecoach.worker.tasks import run_adaptation

API = "/api/v1"


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy"}
    assert client.get("/").json()["status"] == "running"


def test_create_runner(client):
    response = client.post(f"{API}/runners/", json={
        "name": "Ana",
        "fitness_level": "beginner",
        "typical_weekly_km": 20,
        "cycle_anchor": "2025-12-20",
        "cycle_length": 30,
    })

    assert response.status_code == 201
    body = response.json()
    assert body["cycle_regularity"] == "regular"
    assert body["cycle_tracking_enabled"] is True


def test_missing_runner_header_is_not_found(client):
    response = client.get(f"{API}/runners/me")
    assert response.status_code == 404
    assert response.json()["error_code"] == "NOT_FOUND"


def test_unknown_runner_is_not_found(client):
    response = client.get(f"{API}/runners/me", headers={"X-Runner-Id": "missing"})

    assert response.status_code == 404
    assert response.json() == {"detail": "Runner not found", "error_code": "NOT_FOUND"}


def test_profile_update(client, auth):
    response = client.patch(f"{API}/runners/me", json={"cycle_length": 32}, headers=auth)

    assert response.status_code == 200
    assert response.json()["cycle_length"] == 32


def test_domain_validation_error_carries_field_code(client, auth):
    response = client.patch(f"{API}/runners/me", json={"cycle_anchor": "2026-02-01"}, headers=auth)

    assert response.status_code == 422
    assert response.json()["error_code"] == "VALIDATION_ERROR_CYCLE_ANCHOR"


def test_cycle_position(client, auth):
    response = client.get(f"{API}/cycle/position", params={"on": "2026-01-15"}, headers=auth)

    body = response.json()
    assert body["tracking_enabled"] is True
    assert body["phase"] == "ovulatory"
    assert body["day_in_cycle"] == 15
    assert body["next_period_start"] == "2026-01-29"


def test_period_report(client, auth, runner, db):
    runner.cycle_anchor = runner.cycle_anchor.replace(year=2025, month=12)
    db.commit()

    response = client.post(f"{API}/cycle/period", json={"start_date": "2026-01-01"}, headers=auth)

    assert response.status_code == 200
    body = response.json()
    assert body["runner"]["cycle_length"] == 31
    assert body["days_difference"] == 3
    assert body["log"]["prediction_accurate"] is False
    assert body["triggered_recalculation"] is False
    assert body["updated_position"]["day_in_cycle"] == 1


def test_races(client, auth):
    created = client.post(f"{API}/races/", json={
        "name": "City 10k", "race_date": "2026-03-01", "distance_type": "10k",
    }, headers=auth)
    assert created.status_code == 201
    assert created.json()["distance_km"] == 10.0

    too_soon = client.post(f"{API}/races/", json={
        "name": "Parkrun", "race_date": "2026-01-03", "distance_km": 5,
    }, headers=auth)
    assert too_soon.status_code == 422
    assert too_soon.json()["error_code"] == "VALIDATION_ERROR_RACE_DATE"

    races = client.get(f"{API}/races/", headers=auth).json()
    assert [r["name"] for r in races] == ["City 10k"]


def test_create_plan_once(client, auth, race):
    response = client.post(f"{API}/plans/", json={"race_id": race.id}, headers=auth)

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "active"
    assert body["start_date"] == "2026-01-01"
    assert body["end_date"] == "2026-04-26"
    assert body["sessions"]
    assert all(s["cycle_phase"] for s in body["sessions"])

    again = client.post(f"{API}/plans/", json={"race_id": race.id}, headers=auth)
    assert again.status_code == 409
    assert again.json()["error_code"] == "CONFLICT"


def test_stages(client):
    stages = client.get(f"{API}/plans/stages").json()
    assert [s["stage"] for s in stages] == ["base", "build", "peak", "taper"]


def test_skip_confirm_and_adapt(client, auth, plan, db, clock, job_queue):
    sessions = plan.sessions[:3]
    responses = [
        client.post(f"{API}/sessions/{s.id}/skip", json={"reason": "sick"}, headers=auth).json()
        for s in sessions
    ]
    assert [r["deviation"]["action"] for r in responses] == ["silent_log", "silent_log", "recalculation_candidate"]
    assert responses[-1]["recalculation_requested"] is True
    assert responses[-1]["auto_dispatched"] is False
    assert responses[-1]["session"]["is_skipped"] is True

    status = client.get(f"{API}/plans/{plan.id}/recalculation", headers=auth).json()
    assert status["state"] == "pending_confirmation"
    assert status["job_status"] == "idle"

    confirmed = client.post(f"{API}/plans/{plan.id}/recalculation/confirm", headers=auth)
    assert confirmed.status_code == 200
    assert confirmed.json()["state"] == "dispatched"
    assert len(job_queue.enqueued) == 1

    status = client.get(f"{API}/plans/{plan.id}/recalculation", headers=auth).json()
    assert status["job_status"] == "in_flight"

    # The worker picks the job up
    token = job_queue.enqueued[0]["token"]
    run_adaptation(db, plan.id, token, job_queue.enqueued[0]["payload"]["trigger_reason"], clock=clock)

    summary = client.get(f"{API}/sessions/plan-summary", headers=auth).json()
    assert summary["skipped_sessions"] == 3
    assert "eased back" in summary["latest_recalculation_summary"]

    upcoming = client.get(f"{API}/sessions/upcoming", params={"count": 10}, headers=auth).json()
    assert any(s["is_recently_updated"] for s in upcoming)
    assert not any(s["is_recently_updated"] for s in upcoming if s["is_skipped"])

    history = client.get(f"{API}/plans/{plan.id}/history", headers=auth).json()
    assert len(history) == 1
    assert history[0]["status"] == "succeeded"
    assert history[0]["sessions_affected_count"] == len(history[0]["changes"])
    assert all(c["has_changes"] for c in history[0]["changes"])

    viewed = client.post(f"{API}/plans/history/{history[0]['id']}/viewed", headers=auth).json()
    assert viewed["viewed_at"] is not None

    client.post(f"{API}/plans/{plan.id}/summary/dismiss", headers=auth)
    summary = client.get(f"{API}/sessions/plan-summary", headers=auth).json()
    assert summary["latest_recalculation_summary"] is None


def test_decline_keeps_the_plan(client, auth, plan, job_queue):
    for s in plan.sessions[:3]:
        client.post(f"{API}/sessions/{s.id}/skip", json={}, headers=auth)

    declined = client.post(f"{API}/plans/{plan.id}/recalculation/decline", headers=auth)
    assert declined.json()["state"] == "idle"
    assert job_queue.enqueued == []

    again = client.post(f"{API}/plans/{plan.id}/recalculation/decline", headers=auth)
    assert again.status_code == 409


def test_dispatch_failure_is_reported(client, auth, plan, job_queue):
    for s in plan.sessions[:3]:
        client.post(f"{API}/sessions/{s.id}/skip", json={}, headers=auth)
    job_queue.fail_enqueue = True

    response = client.post(f"{API}/plans/{plan.id}/recalculation/confirm", headers=auth)

    assert response.status_code == 503
    assert response.json()["error_code"] == "JOB_DISPATCH_FAILED"
    status = client.get(f"{API}/plans/{plan.id}/recalculation", headers=auth).json()
    assert status["state"] == "pending_confirmation"


def test_complete_session(client, auth, plan):
    session = plan.sessions[0]
    response = client.post(f"{API}/sessions/{session.id}/complete", json={
        "actual_distance_km": session.target_distance_km,
        "actual_duration_minutes": session.target_duration_minutes,
        "rpe": 3,
    }, headers=auth)

    assert response.status_code == 200
    body = response.json()
    assert body["session"]["is_completed"] is True
    assert body["deviation"]["action"] == "no_action"

    invalid = client.post(f"{API}/sessions/{session.id}/complete", json={"rpe": 11}, headers=auth)
    assert invalid.status_code == 422


def test_unknown_session_is_not_found(client, auth, plan):
    response = client.get(f"{API}/sessions/missing", headers=auth)
    assert response.status_code == 404
    assert response.json()["detail"] == "Session not found"


def test_race_result_completes_plan(client, auth, race, plan, clock, db):
    clock.advance(days=115)

    response = client.put(f"{API}/races/{race.id}/result", json={
        "completion_status": "completed", "result_time_seconds": 14100,
    }, headers=auth)

    assert response.status_code == 200
    assert response.json()["plan_completed"] is True
    assert db.get(TrainingPlan, plan.id).status == "completed"
    assert client.get(f"{API}/plans/active", headers=auth).status_code == 404
    assert client.get(f"{API}/races/{race.id}/plan", headers=auth).json()["status"] == "completed"


def test_archive_plan(client, auth, plan):
    response = client.post(f"{API}/plans/{plan.id}/archive", headers=auth)

    assert response.status_code == 200
    assert response.json()["status"] == "archived"
    assert client.post(f"{API}/plans/{plan.id}/archive", headers=auth).status_code == 409
