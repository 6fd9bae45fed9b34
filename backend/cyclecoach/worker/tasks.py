"""Adaptation pass executed by the Celery worker."""

import logging
from datetime import timedelta
from typing import Dict, List, Optional

from celery import Task
from sqlalchemy.orm import Session

from cyclecoach.clock import Clock, get_clock
from cyclecoach.config import get_settings
from cyclecoach.database import SessionLocal
from cyclecoach.models import PlanAdaptationHistory, TrainingPlan, TrainingSession
from cyclecoach.models.enums import TriggerKind
from cyclecoach.services.adaptation_history_service import SUPERSEDED_MESSAGE, AdaptationHistoryRecorder
from cyclecoach.services.job_queue import ADAPT_PLAN_JOB
from cyclecoach.services.plan_generator_service import PlanContentGenerator, TriggerContext, get_plan_generator
from cyclecoach.services.session_outcome_service import completion_ratio
from cyclecoach.worker import celery_app

logger = logging.getLogger(__name__)

UPCOMING_SESSIONS_TO_ADAPT = 7
RECENT_SESSIONS_FOR_CONTEXT = 7


def build_trigger_context(
    reason: str, recent: List[TrainingSession], kind: TriggerKind = TriggerKind.DEVIATION
) -> TriggerContext:
    """Summarize recently logged sessions for the generator."""
    skipped = [s for s in recent if s.is_skipped]
    completed = [s for s in recent if not s.is_skipped]
    ratios = [r for r in (completion_ratio(s) for s in completed) if r is not None]
    rpes = [s.rpe for s in completed if s.rpe is not None]

    notes = [s.user_notes for s in completed if s.user_notes]
    notes.extend(f"Skipped: {s.skip_reason}" for s in skipped if s.skip_reason)

    return TriggerContext(
        reason=reason,
        kind=kind,
        logged_sessions=len(recent),
        skipped_sessions=len(skipped),
        average_completion_ratio=round(sum(ratios) / len(ratios), 2) if ratios else None,
        average_rpe=round(sum(rpes) / len(rpes), 1) if rpes else None,
        notes=notes,
    )


def run_adaptation(
    db: Session,
    plan_id: str,
    job_token: str,
    trigger_reason: str = "",
    generator: Optional[PlanContentGenerator] = None,
    clock: Optional[Clock] = None,
    trigger_kind: TriggerKind = TriggerKind.DEVIATION,
) -> Optional[PlanAdaptationHistory]:
    """
    Run one adaptation pass for a plan and record the outcome.

    A redelivered job whose token is already recorded is a no-op, and a job
    that no longer holds the plan's slot is recorded as superseded without
    calling the generator. Generator failures are recorded as a failed pass
    and then re-raised.

    Deviation passes rework the next few sessions; cycle-shift passes re-phase
    every open session inside ``cycle_shift_horizon_days``.
    """
    clock = clock or get_clock()
    recorder = AdaptationHistoryRecorder(db, clock=clock)

    existing = recorder.find_by_token(job_token)
    if existing:
        logger.info("Adaptation job %s already recorded; skipping", job_token)
        return existing

    plan = db.query(TrainingPlan).filter(TrainingPlan.id == plan_id).first()
    if not plan:
        logger.warning("Adaptation job %s refers to missing plan %s", job_token, plan_id)
        return None
    if not plan.is_active:
        return recorder.record_failed_adaptation(
            plan_id, f"Plan is {plan.status}, not active", trigger_reason, job_token
        )
    if plan.last_job_ref != job_token:
        logger.warning("Adaptation job %s no longer holds plan %s; skipping", job_token, plan_id)
        return recorder.record_failed_adaptation(plan_id, SUPERSEDED_MESSAGE, trigger_reason, job_token)

    today = clock.today()
    upcoming_query = (
        db.query(TrainingSession)
        .filter(
            TrainingSession.plan_id == plan.id,
            TrainingSession.scheduled_date >= today,
            TrainingSession.completed_at.is_(None),
            TrainingSession.is_skipped.is_(False),
        )
        .order_by(TrainingSession.scheduled_date)
    )
    if trigger_kind == TriggerKind.CYCLE_SHIFT:
        horizon = today + timedelta(days=get_settings().cycle_shift_horizon_days)
        upcoming = upcoming_query.filter(TrainingSession.scheduled_date < horizon).all()
    else:
        upcoming = upcoming_query.limit(UPCOMING_SESSIONS_TO_ADAPT).all()
    recent = (
        db.query(TrainingSession)
        .filter(
            TrainingSession.plan_id == plan.id,
            (TrainingSession.completed_at.isnot(None)) | (TrainingSession.is_skipped.is_(True)),
        )
        .order_by(TrainingSession.scheduled_date.desc())
        .limit(RECENT_SESSIONS_FOR_CONTEXT)
        .all()
    )

    context = build_trigger_context(trigger_reason, recent, trigger_kind)
    generator = generator or get_plan_generator()
    logger.info(
        "Adapting %d upcoming sessions of plan %s (%d logged, %d skipped)",
        len(upcoming), plan_id, context.logged_sessions, context.skipped_sessions,
    )

    try:
        result = generator.adapt_sessions(plan, upcoming, context)
        return recorder.record_completed_adaptation(
            plan_id, result.changes, result.summary_text, trigger_reason, job_token
        )
    except Exception as e:
        db.rollback()
        logger.exception("Adaptation job %s for plan %s failed", job_token, plan_id)
        recorder.record_failed_adaptation(plan_id, str(e), trigger_reason, job_token)
        raise


@celery_app.task(name=ADAPT_PLAN_JOB, bind=True)
def adapt_plan_task(
    self: Task, plan_id: str, trigger_reason: str = "", trigger_kind: str = TriggerKind.DEVIATION.value
) -> Dict:
    """
    Background adaptation of a plan's upcoming sessions.

    The Celery task id is the job token the coordinator recorded on the plan.
    """
    db = SessionLocal()
    try:
        entry = run_adaptation(
            db, plan_id, str(self.request.id), trigger_reason, trigger_kind=TriggerKind(trigger_kind)
        )
        if entry is None:
            return {"status": "skipped", "plan_id": plan_id}
        return {
            "status": entry.status,
            "plan_id": plan_id,
            "history_id": entry.id,
            "sessions_affected": entry.sessions_affected_count,
        }
    finally:
        db.close()
