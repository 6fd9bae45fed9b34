"""
Adaptation history: applies finished adaptation passes and keeps the audit trail.

Completion events arrive at least once, so every event carrying a job token is
deduplicated on ``plan_adaptation_history.job_token``. Session edits, the history
row and the plan's summary fields are committed together.
"""

import logging
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cyclecoach.clock import Clock, get_clock
from cyclecoach.exceptions import NotFoundError
from cyclecoach.models import PlanAdaptationHistory, TrainingPlan, TrainingSession
from cyclecoach.models.enums import AdaptationStatus
from cyclecoach.services.plan_generator_service import SessionChange

logger = logging.getLogger(__name__)

FAILED_SUMMARY = "We couldn't update your plan this time. Your upcoming sessions are unchanged."
SUPERSEDED_MESSAGE = "Superseded by a newer plan update"


class AdaptationHistoryRecorder:
    """Writes adaptation results and tracks whether the runner has seen them."""

    def __init__(self, db: Session, clock: Optional[Clock] = None):
        self.db = db
        self.clock = clock or get_clock()

    def record_completed_adaptation(
        self,
        plan_id: str,
        changes: List[SessionChange],
        summary_text: str,
        trigger_reason: str,
        job_token: Optional[str] = None,
    ) -> PlanAdaptationHistory:
        """
        Apply an adaptation's session changes and append its history row.

        Logged (completed or skipped) sessions are never rewritten. Replaying the
        same job token returns the existing row without touching anything. A
        token that no longer holds the plan's slot was superseded; its changes
        are dropped and the pass is recorded as failed.
        """
        existing = self.find_by_token(job_token)
        if existing:
            logger.info("Adaptation %s already recorded for plan %s; ignoring replay", job_token, plan_id)
            return existing

        plan = self._get_plan(plan_id)
        if job_token and plan.last_job_ref != job_token:
            logger.warning(
                "Adaptation %s for plan %s no longer holds the slot (held by %s); discarding its changes",
                job_token, plan_id, plan.last_job_ref,
            )
            return self.record_failed_adaptation(plan_id, SUPERSEDED_MESSAGE, trigger_reason, job_token)

        now = self.clock.now()

        applied = []
        for change in changes:
            if not change.has_changes():
                continue
            session = (
                self.db.query(TrainingSession)
                .filter(TrainingSession.id == change.session_id, TrainingSession.plan_id == plan.id)
                .first()
            )
            if not session or session.is_logged:
                continue
            session.target_distance_km = change.new_distance_km
            session.target_duration_minutes = change.new_duration_minutes
            session.workout_type = change.new_workout_type or session.workout_type
            session.intensity = change.new_intensity or session.intensity
            if change.new_cycle_phase != change.old_cycle_phase:
                session.cycle_phase = change.new_cycle_phase
            if change.new_phase_guidance is not None:
                session.phase_guidance = change.new_phase_guidance
            session.was_modified = True
            session.updated_at = now
            applied.append(change)

        entry = PlanAdaptationHistory(
            plan_id=plan.id,
            job_token=job_token,
            status=AdaptationStatus.SUCCEEDED.value,
            adapted_at=now,
            summary=summary_text,
            trigger_reason=(trigger_reason or "")[:500],
            sessions_affected_count=len(applied),
            changes=[c.to_dict() for c in applied],
        )
        self.db.add(entry)

        self.db.execute(
            update(TrainingPlan)
            .where(TrainingPlan.id == plan.id)
            .values(
                last_recalculation_summary=summary_text,
                last_recalculated_at=now,
                summary_viewed_at=None,
                recalc_version=TrainingPlan.recalc_version + 1,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        self._release_job(plan.id, job_token)

        committed = self._commit(entry, job_token)
        logger.info(
            "Recorded adaptation for plan %s: %d sessions changed", plan_id, committed.sessions_affected_count
        )
        return committed

    def record_failed_adaptation(
        self,
        plan_id: str,
        error_message: str,
        trigger_reason: str = "",
        job_token: Optional[str] = None,
    ) -> PlanAdaptationHistory:
        """Log a failed pass and unstick the plan so a new recalculation can start."""
        existing = self.find_by_token(job_token)
        if existing:
            self._release_job(plan_id, job_token)
            self.db.commit()
            return existing

        plan = self._get_plan(plan_id)
        now = self.clock.now()

        entry = PlanAdaptationHistory(
            plan_id=plan.id,
            job_token=job_token,
            status=AdaptationStatus.FAILED.value,
            adapted_at=now,
            summary=FAILED_SUMMARY,
            trigger_reason=(trigger_reason or "")[:500],
            sessions_affected_count=0,
            changes=[],
            error_message=error_message,
        )
        self.db.add(entry)

        # Plan state is only reset when this job still holds the slot
        statement = update(TrainingPlan).where(TrainingPlan.id == plan.id)
        if job_token:
            statement = statement.where(TrainingPlan.last_job_ref == job_token)
        self.db.execute(
            statement.values(
                last_job_ref=None,
                pending_confirmation=False,
                pending_trigger_reason=None,
                recalc_version=TrainingPlan.recalc_version + 1,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )

        committed = self._commit(entry, job_token)
        logger.warning("Adaptation for plan %s failed: %s", plan_id, error_message)
        return committed

    def mark_summary_viewed(self, plan_id: str, runner_id: Optional[str] = None) -> TrainingPlan:
        """Dismiss the latest recalculation summary."""
        plan = self._get_plan(plan_id, runner_id)
        if plan.last_recalculation_summary and not plan.summary_viewed_at:
            plan.summary_viewed_at = self.clock.now()
            self.db.commit()
            self.db.refresh(plan)
        return plan

    def mark_history_entry_viewed(self, history_id: str, runner_id: Optional[str] = None) -> PlanAdaptationHistory:
        query = (
            self.db.query(PlanAdaptationHistory)
            .join(TrainingPlan, PlanAdaptationHistory.plan_id == TrainingPlan.id)
            .filter(PlanAdaptationHistory.id == history_id)
        )
        if runner_id is not None:
            query = query.filter(TrainingPlan.runner_id == runner_id)
        entry = query.first()
        if not entry:
            raise NotFoundError("Adaptation history entry")

        if not entry.viewed_at:
            entry.viewed_at = self.clock.now()
            self.db.commit()
            self.db.refresh(entry)
        return entry

    def list_history(self, plan_id: str, runner_id: Optional[str] = None) -> List[PlanAdaptationHistory]:
        """History entries for a plan, newest first."""
        plan = self._get_plan(plan_id, runner_id)
        return (
            self.db.query(PlanAdaptationHistory)
            .filter(PlanAdaptationHistory.plan_id == plan.id)
            .order_by(PlanAdaptationHistory.adapted_at.desc())
            .all()
        )

    def _get_plan(self, plan_id: str, runner_id: Optional[str] = None) -> TrainingPlan:
        query = self.db.query(TrainingPlan).filter(TrainingPlan.id == plan_id)
        if runner_id is not None:
            query = query.filter(TrainingPlan.runner_id == runner_id)
        plan = query.first()
        if not plan:
            raise NotFoundError("Training plan")
        return plan

    def find_by_token(self, job_token: Optional[str]) -> Optional[PlanAdaptationHistory]:
        if not job_token:
            return None
        return (
            self.db.query(PlanAdaptationHistory)
            .filter(PlanAdaptationHistory.job_token == job_token)
            .first()
        )

    def _release_job(self, plan_id: str, job_token: Optional[str]) -> None:
        # Only clear the slot held by this job, never a newer one
        statement = update(TrainingPlan).where(TrainingPlan.id == plan_id)
        if job_token:
            statement = statement.where(TrainingPlan.last_job_ref == job_token)
        self.db.execute(statement.values(last_job_ref=None).execution_options(synchronize_session=False))

    def _commit(self, entry: PlanAdaptationHistory, job_token: Optional[str]) -> PlanAdaptationHistory:
        try:
            self.db.commit()
        except IntegrityError:
            # A concurrent delivery of the same event won
            self.db.rollback()
            existing = self.find_by_token(job_token)
            if existing:
                return existing
            raise
        self.db.refresh(entry)
        return entry
