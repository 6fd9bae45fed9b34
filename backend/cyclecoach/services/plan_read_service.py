"""
Plan read model.

Sessions are returned with their frozen ``cycle_phase`` snapshot exactly as
stored. Only the periodization stage and the "recently updated" flag are
computed at read time.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

from cyclecoach.clock import Clock, get_clock
from cyclecoach.config import Settings, get_settings
from cyclecoach.exceptions import NotFoundError
from cyclecoach.models import Race, TrainingPlan, TrainingSession
from cyclecoach.models.enums import PlanStatus, TrainingStage
from cyclecoach.services import cycle_phase
from cyclecoach.services.periodization import calculate_stage
from cyclecoach.services.plan_lifecycle_service import PlanLifecycleManager
from cyclecoach.services.recalculation_service import RecalculationCoordinator, recalculation_state

logger = logging.getLogger(__name__)


@dataclass
class SessionView:
    id: str
    plan_id: str
    scheduled_date: date
    week_number: Optional[int]
    session_name: str
    workout_type: str
    description: Optional[str]
    target_distance_km: Optional[float]
    target_duration_minutes: Optional[int]
    intensity: Optional[str]
    cycle_phase: Optional[str]
    phase_guidance: Optional[str]
    completed_at: Optional[datetime]
    is_skipped: bool
    skip_reason: Optional[str]
    actual_distance_km: Optional[float]
    actual_duration_minutes: Optional[int]
    rpe: Optional[int]
    user_notes: Optional[str]
    deviation_severity: Optional[str]
    was_modified: bool
    is_completed: bool = False
    training_stage: Optional[TrainingStage] = None
    is_recently_updated: bool = False


@dataclass
class PlanView:
    id: str
    runner_id: str
    race_id: str
    race_name: str
    race_date: date
    name: str
    status: str
    generation_source: Optional[str]
    rationale: Optional[str]
    start_date: date
    end_date: date
    training_days_per_week: Optional[int]
    long_run_day: Optional[int]
    current_stage: Optional[TrainingStage]
    recalculation_state: str
    pending_confirmation: bool
    pending_trigger_reason: Optional[str]
    last_recalculated_at: Optional[datetime]
    last_recalculation_summary: Optional[str]
    summary_viewed_at: Optional[datetime]
    created_at: Optional[datetime]
    sessions: List[SessionView] = field(default_factory=list)


@dataclass
class PlanSummary:
    plan_id: str
    plan_name: str
    race_name: str
    race_date: date
    days_until_race: int
    current_stage: Optional[TrainingStage]
    total_sessions: int
    completed_sessions: int
    skipped_sessions: int
    today_session: Optional[SessionView]
    next_session: Optional[SessionView]
    current_cycle_phase: Optional[str]
    pending_confirmation: bool
    pending_trigger_reason: Optional[str]
    recalculation_status: str  # JobActivity value
    last_recalculated_at: Optional[datetime]
    # Only set until the runner dismisses it
    latest_recalculation_summary: Optional[str] = None


def is_recently_updated(
    plan: TrainingPlan, session: TrainingSession, now: datetime, window_days: int = 7
) -> bool:
    """
    True when the last recalculation touched this session and happened within
    the window.
    """
    if plan.last_recalculated_at is None or not session.was_modified:
        return False
    window = timedelta(days=window_days)
    if now - plan.last_recalculated_at > window:
        return False
    if session.updated_at is None:
        return False
    return abs(session.updated_at - plan.last_recalculated_at) <= window


class PlanReadService:
    """Assembles plan, session and summary views for the API."""

    def __init__(
        self,
        db: Session,
        coordinator: RecalculationCoordinator,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.coordinator = coordinator
        self.clock = clock or get_clock()
        self.settings = settings or get_settings()
        self.plans = PlanLifecycleManager(db, clock=self.clock, settings=self.settings)

    def session_view(self, plan: TrainingPlan, session: TrainingSession) -> SessionView:
        return SessionView(
            id=session.id,
            plan_id=session.plan_id,
            scheduled_date=session.scheduled_date,
            week_number=session.week_number,
            session_name=session.session_name,
            workout_type=session.workout_type,
            description=session.description,
            target_distance_km=session.target_distance_km,
            target_duration_minutes=session.target_duration_minutes,
            intensity=session.intensity,
            cycle_phase=session.cycle_phase,
            phase_guidance=session.phase_guidance,
            completed_at=session.completed_at,
            is_completed=session.is_completed,
            is_skipped=bool(session.is_skipped),
            skip_reason=session.skip_reason,
            actual_distance_km=session.actual_distance_km,
            actual_duration_minutes=session.actual_duration_minutes,
            rpe=session.rpe,
            user_notes=session.user_notes,
            deviation_severity=session.deviation_severity,
            was_modified=bool(session.was_modified),
            training_stage=calculate_stage(session.scheduled_date, plan.start_date, plan.end_date),
            is_recently_updated=is_recently_updated(
                plan, session, self.clock.now(), self.settings.recent_update_window_days
            ),
        )

    def plan_view(self, plan: TrainingPlan) -> PlanView:
        race = plan.race
        return PlanView(
            id=plan.id,
            runner_id=plan.runner_id,
            race_id=plan.race_id,
            race_name=race.name,
            race_date=race.race_date,
            name=plan.name,
            status=plan.status,
            generation_source=plan.generation_source,
            rationale=plan.rationale,
            start_date=plan.start_date,
            end_date=plan.end_date,
            training_days_per_week=plan.training_days_per_week,
            long_run_day=plan.long_run_day,
            current_stage=calculate_stage(self.clock.today(), plan.start_date, plan.end_date),
            recalculation_state=recalculation_state(plan).value,
            pending_confirmation=bool(plan.pending_confirmation),
            pending_trigger_reason=plan.pending_trigger_reason,
            last_recalculated_at=plan.last_recalculated_at,
            last_recalculation_summary=plan.last_recalculation_summary,
            summary_viewed_at=plan.summary_viewed_at,
            created_at=plan.created_at,
            sessions=[self.session_view(plan, s) for s in plan.sessions],
        )

    def active_plan(self, runner_id: str) -> PlanView:
        return self.plan_view(self.plans.require_active_plan(runner_id))

    def plan_for_race(self, runner_id: str, race_id: str) -> PlanView:
        return self.plan_view(self.plans.get_plan_for_race(runner_id, race_id))

    def plan_summary(self, runner_id: str) -> PlanSummary:
        """Dashboard card for the active plan."""
        plan = self.plans.require_active_plan(runner_id)
        race: Race = plan.race
        today = self.clock.today()

        sessions = plan.sessions
        today_session = next((s for s in sessions if s.scheduled_date == today), None)
        next_session = next((s for s in sessions if s.scheduled_date > today and not s.is_logged), None)

        position = cycle_phase.position_for_runner(plan.runner, today)
        status = self.coordinator.poll_status(plan.id)

        unviewed = plan.last_recalculation_summary if plan.summary_viewed_at is None else None

        return PlanSummary(
            plan_id=plan.id,
            plan_name=plan.name,
            race_name=race.name,
            race_date=race.race_date,
            days_until_race=(race.race_date - today).days,
            current_stage=calculate_stage(today, plan.start_date, plan.end_date),
            total_sessions=len(sessions),
            completed_sessions=sum(1 for s in sessions if s.is_completed),
            skipped_sessions=sum(1 for s in sessions if s.is_skipped),
            today_session=self.session_view(plan, today_session) if today_session else None,
            next_session=self.session_view(plan, next_session) if next_session else None,
            current_cycle_phase=position.phase.value if position else None,
            pending_confirmation=bool(plan.pending_confirmation),
            pending_trigger_reason=plan.pending_trigger_reason,
            recalculation_status=status.value,
            last_recalculated_at=plan.last_recalculated_at,
            latest_recalculation_summary=unviewed,
        )

    def upcoming_sessions(self, runner_id: str, count: int = 7) -> List[SessionView]:
        """Next ``count`` sessions from today on, logged or not."""
        plan = self.plans.require_active_plan(runner_id)
        today = self.clock.today()
        sessions = (
            self.db.query(TrainingSession)
            .filter(TrainingSession.plan_id == plan.id, TrainingSession.scheduled_date >= today)
            .order_by(TrainingSession.scheduled_date)
            .limit(count)
            .all()
        )
        return [self.session_view(plan, s) for s in sessions]

    def session_detail(self, runner_id: str, session_id: str) -> SessionView:
        row = (
            self.db.query(TrainingSession, TrainingPlan)
            .join(TrainingPlan, TrainingSession.plan_id == TrainingPlan.id)
            .filter(
                TrainingSession.id == session_id,
                TrainingPlan.runner_id == runner_id,
                TrainingPlan.status == PlanStatus.ACTIVE.value,
            )
            .first()
        )
        if not row:
            raise NotFoundError("Session")
        session, plan = row
        return self.session_view(plan, session)
