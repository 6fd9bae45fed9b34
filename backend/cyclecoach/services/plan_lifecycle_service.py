"""
Plan lifecycle: creation, completion and archival.

A runner may have at most one active plan. Creation claims the runner's plan
slot with a compare-and-swap on ``runners.plan_slot_version`` before inserting,
and the partial unique index on ``training_plans`` backs that up at the
database level. A lost race is retried once and then reported as a conflict.
"""

import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy import case, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cyclecoach.clock import Clock, get_clock
from cyclecoach.config import Settings, get_settings
from cyclecoach.exceptions import ConflictError, NotFoundError, PlanGenerationError, ValidationError
from cyclecoach.models import Runner, Race, TrainingPlan, TrainingSession
from cyclecoach.models.enums import PlanStatus, RaceCompletionStatus, WorkoutType
from cyclecoach.services.plan_generator_service import (
    GeneratedPlan,
    PlanContentGenerator,
    PlanWindow,
    RuleBasedPlanGenerator,
)

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    PlanStatus.DRAFT.value: {PlanStatus.ACTIVE.value, PlanStatus.ARCHIVED.value},
    PlanStatus.ACTIVE.value: {PlanStatus.COMPLETED.value, PlanStatus.ARCHIVED.value},
    PlanStatus.COMPLETED.value: {PlanStatus.ARCHIVED.value},
    PlanStatus.ARCHIVED.value: set(),
}


class _LostRace(Exception):
    """Another writer changed the row between our read and our conditional write."""


class PlanLifecycleManager:
    """Owns plan creation and status transitions."""

    def __init__(
        self,
        db: Session,
        generator: Optional[PlanContentGenerator] = None,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.generator = generator or RuleBasedPlanGenerator()
        self.clock = clock or get_clock()
        self.settings = settings or get_settings()

    # ---------- Queries ----------

    def get_active_plan(self, runner_id: str) -> Optional[TrainingPlan]:
        return (
            self.db.query(TrainingPlan)
            .filter(
                TrainingPlan.runner_id == runner_id,
                TrainingPlan.status == PlanStatus.ACTIVE.value,
            )
            .first()
        )

    def require_active_plan(self, runner_id: str) -> TrainingPlan:
        plan = self.get_active_plan(runner_id)
        if not plan:
            raise NotFoundError("Active training plan")
        return plan

    def get_plan(self, plan_id: str, runner_id: Optional[str] = None) -> TrainingPlan:
        query = self.db.query(TrainingPlan).filter(TrainingPlan.id == plan_id)
        if runner_id is not None:
            query = query.filter(TrainingPlan.runner_id == runner_id)
        plan = query.first()
        if not plan:
            raise NotFoundError("Training plan")
        return plan

    def get_plan_for_race(self, runner_id: str, race_id: str) -> TrainingPlan:
        """The active plan for a race if there is one, otherwise the most recent."""
        plan = (
            self.db.query(TrainingPlan)
            .filter(TrainingPlan.runner_id == runner_id, TrainingPlan.race_id == race_id)
            .order_by(
                case((TrainingPlan.status == PlanStatus.ACTIVE.value, 0), else_=1),
                TrainingPlan.created_at.desc(),
                TrainingPlan.id,
            )
            .first()
        )
        if not plan:
            raise NotFoundError("Training plan")
        return plan

    # ---------- Creation ----------

    def create_plan(self, runner_id: str, race_id: str) -> TrainingPlan:
        """
        Create and activate a plan for a race.

        Raises:
            NotFoundError: unknown runner
            ValidationError: race not owned by the runner, or too close to plan for
            ConflictError: the runner already has an active plan
        """
        for attempt in range(2):
            try:
                return self._create_plan_once(runner_id, race_id)
            except _LostRace:
                self.db.rollback()
                logger.warning(
                    "Plan creation for runner %s lost a concurrent write (attempt %d)",
                    runner_id, attempt + 1,
                )
        raise ConflictError("Another plan was created at the same time. Please try again.")

    def _create_plan_once(self, runner_id: str, race_id: str) -> TrainingPlan:
        runner = self.db.query(Runner).populate_existing().filter(Runner.id == runner_id).first()
        if not runner:
            raise NotFoundError("Runner")
        slot_version = runner.plan_slot_version or 0

        if self.get_active_plan(runner_id):
            raise ConflictError(
                "You already have an active training plan. "
                "Archive or complete it before creating a new one."
            )

        race = (
            self.db.query(Race)
            .filter(Race.id == race_id, Race.runner_id == runner_id)
            .first()
        )
        if not race:
            raise ValidationError("Race not found for this runner", field="race_id")

        today = self.clock.today()
        earliest_race_date = today + timedelta(days=self.settings.min_race_lead_days)
        if race.race_date < earliest_race_date:
            raise ValidationError(
                f"Race date must be at least {self.settings.min_race_lead_days} days away "
                f"(on or after {earliest_race_date.isoformat()})",
                field="race_date",
            )
        if race.completion_status not in (None, RaceCompletionStatus.NOT_ATTEMPTED.value):
            raise ValidationError("A result has already been logged for this race", field="race_id")

        start_date = max(race.training_start_date or today, today)
        window = PlanWindow(
            start_date=start_date,
            end_date=race.race_date,
            days_before_period=self.settings.default_days_before_period,
            days_after_period=self.settings.default_days_after_period,
        )
        generated = self._generate(runner, race, window)

        # Claim the plan slot; fails if anyone created a plan since we read the runner
        claimed = self.db.execute(
            update(Runner)
            .where(Runner.id == runner_id, Runner.plan_slot_version == slot_version)
            .values(plan_slot_version=slot_version + 1)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            raise _LostRace()

        now = self.clock.now()
        plan = TrainingPlan(
            runner_id=runner_id,
            race_id=race.id,
            name=generated.name,
            status=PlanStatus.ACTIVE.value,
            generation_source=generated.generation_source,
            rationale=generated.rationale,
            start_date=window.start_date,
            end_date=window.end_date,
            training_days_per_week=generated.training_days_per_week,
            long_run_day=generated.long_run_day,
            days_before_period_to_reduce_intensity=window.days_before_period,
            days_after_period_to_reduce_intensity=window.days_after_period,
            pending_confirmation=False,
            recalc_version=0,
            created_at=now,
            updated_at=now,
        )
        plan.sessions = [
            TrainingSession(
                scheduled_date=draft.scheduled_date,
                week_number=draft.week_number,
                session_name=draft.session_name,
                workout_type=draft.workout_type,
                description=draft.description,
                target_distance_km=draft.target_distance_km,
                target_duration_minutes=draft.target_duration_minutes,
                intensity=draft.intensity,
                cycle_phase=draft.cycle_phase,
                phase_guidance=draft.phase_guidance,
                created_at=now,
                updated_at=now,
            )
            for draft in generated.sessions
        ]
        self.db.add(plan)

        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.warning("Active-plan index rejected a second plan for runner %s", runner_id)
            raise ConflictError(
                "You already have an active training plan. "
                "Archive or complete it before creating a new one."
            )

        self.db.refresh(plan)
        logger.info(
            "Training plan %s created for runner %s with %d sessions",
            plan.id, runner_id, len(plan.sessions),
        )
        return plan

    def _generate(self, runner: Runner, race: Race, window: PlanWindow) -> GeneratedPlan:
        try:
            generated = self.generator.generate_sessions(runner, race, window)
        except PlanGenerationError:
            raise
        except Exception as e:
            logger.exception("Plan generation failed for race %s", race.id)
            raise PlanGenerationError("Failed to generate training plan. Please try again.") from e

        self._validate_generated(generated, window)
        return generated

    def _validate_generated(self, generated: GeneratedPlan, window: PlanWindow) -> None:
        if not generated or not generated.sessions:
            raise PlanGenerationError("Generator returned no sessions")
        for draft in generated.sessions:
            if not draft.session_name:
                raise PlanGenerationError("Generated session is missing a name")
            if not window.start_date <= draft.scheduled_date <= window.end_date:
                raise PlanGenerationError(
                    f"Generated session on {draft.scheduled_date} falls outside the plan window"
                )
            if draft.workout_type != WorkoutType.REST.value:
                if draft.target_distance_km is None and draft.target_duration_minutes is None:
                    raise PlanGenerationError("Non-rest session has neither distance nor duration")

    # ---------- Transitions ----------

    def archive_plan(self, plan_id: str, runner_id: Optional[str] = None) -> TrainingPlan:
        return self._transition(plan_id, PlanStatus.ARCHIVED.value, runner_id)

    def complete_plan(self, plan_id: str, runner_id: Optional[str] = None) -> TrainingPlan:
        return self._transition(plan_id, PlanStatus.COMPLETED.value, runner_id)

    def _transition(self, plan_id: str, target: str, runner_id: Optional[str]) -> TrainingPlan:
        plan = self.get_plan(plan_id, runner_id)
        current = plan.status
        if target not in ALLOWED_TRANSITIONS.get(current, set()):
            raise ConflictError(f"Cannot move a {current} plan to {target}")

        # Leaving Active also drops any unconfirmed recalculation proposal
        result = self.db.execute(
            update(TrainingPlan)
            .where(TrainingPlan.id == plan.id, TrainingPlan.status == current)
            .values(
                status=target,
                pending_confirmation=False,
                recalc_version=TrainingPlan.recalc_version + 1,
                updated_at=self.clock.now(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            raise ConflictError("Plan status changed concurrently. Please try again.")
        self.db.commit()
        self.db.refresh(plan)

        logger.info("Training plan %s moved from %s to %s", plan.id, current, target)
        return plan
