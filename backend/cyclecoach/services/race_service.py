"""Race goals and post-race results."""

import logging
from datetime import date, timedelta
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from cyclecoach.clock import Clock, get_clock
from cyclecoach.config import Settings, get_settings
from cyclecoach.exceptions import NotFoundError, ValidationError
from cyclecoach.models import Race, TrainingPlan
from cyclecoach.models.enums import PlanStatus, RaceCompletionStatus
from cyclecoach.services.plan_lifecycle_service import PlanLifecycleManager

logger = logging.getLogger(__name__)

DISTANCE_TYPES = {
    "5k": 5.0,
    "10k": 10.0,
    "half": 21.0975,
    "marathon": 42.195,
}


class RaceService:
    def __init__(self, db: Session, clock: Optional[Clock] = None, settings: Optional[Settings] = None):
        self.db = db
        self.clock = clock or get_clock()
        self.settings = settings or get_settings()

    def create_race(
        self,
        runner_id: str,
        name: str,
        race_date: date,
        distance_km: Optional[float] = None,
        distance_type: str = "custom",
        location: Optional[str] = None,
        goal_time_seconds: Optional[int] = None,
        training_start_date: Optional[date] = None,
    ) -> Race:
        earliest = self.clock.today() + timedelta(days=self.settings.min_race_lead_days)
        if race_date < earliest:
            raise ValidationError(
                f"Race date must be at least {self.settings.min_race_lead_days} days in the future",
                field="race_date",
            )
        if training_start_date is not None and training_start_date >= race_date:
            raise ValidationError(
                "Training start date must be before the race date", field="training_start_date"
            )

        if distance_km is None:
            distance_km = DISTANCE_TYPES.get(distance_type)
        if distance_km is None or distance_km <= 0:
            raise ValidationError("Race distance must be positive", field="distance_km")
        if goal_time_seconds is not None and goal_time_seconds <= 0:
            raise ValidationError("Goal time must be positive", field="goal_time_seconds")

        now = self.clock.now()
        race = Race(
            runner_id=runner_id,
            name=name,
            location=location,
            race_date=race_date,
            distance_km=distance_km,
            distance_type=distance_type,
            goal_time_seconds=goal_time_seconds,
            training_start_date=training_start_date,
            completion_status=RaceCompletionStatus.NOT_ATTEMPTED.value,
            created_at=now,
            updated_at=now,
        )
        self.db.add(race)
        self.db.commit()
        self.db.refresh(race)
        logger.info("Runner %s created race %s on %s", runner_id, race.id, race_date)
        return race

    def list_races(self, runner_id: str) -> List[Race]:
        return (
            self.db.query(Race)
            .filter(Race.runner_id == runner_id)
            .order_by(Race.race_date)
            .all()
        )

    def get_race(self, race_id: str, runner_id: str) -> Race:
        race = self.db.query(Race).filter(Race.id == race_id, Race.runner_id == runner_id).first()
        if not race:
            raise NotFoundError("Race")
        return race

    def log_result(
        self,
        race_id: str,
        runner_id: str,
        completion_status: str,
        result_time_seconds: Optional[int] = None,
    ) -> Tuple[Race, bool]:
        """
        Log how the race went.

        Returns the race and whether its active plan was completed. Only a
        finished race completes the plan; DNS and DNF leave it as it is.
        """
        race = self.get_race(race_id, runner_id)
        if race.race_date > self.clock.today():
            raise ValidationError("Cannot log a race result before race day", field="race_date")

        allowed = {
            RaceCompletionStatus.COMPLETED.value,
            RaceCompletionStatus.DNS.value,
            RaceCompletionStatus.DNF.value,
        }
        if completion_status not in allowed:
            raise ValidationError("Result must be completed, dns or dnf", field="completion_status")
        if completion_status == RaceCompletionStatus.COMPLETED.value and not result_time_seconds:
            raise ValidationError(
                "Finish time is required when marking a race as completed", field="result_time_seconds"
            )

        race.completion_status = completion_status
        race.result_time_seconds = result_time_seconds
        race.result_logged_at = self.clock.now()
        race.updated_at = self.clock.now()
        self.db.commit()

        plan_completed = False
        if completion_status == RaceCompletionStatus.COMPLETED.value:
            plan = (
                self.db.query(TrainingPlan)
                .filter(
                    TrainingPlan.race_id == race.id,
                    TrainingPlan.runner_id == runner_id,
                    TrainingPlan.status == PlanStatus.ACTIVE.value,
                )
                .first()
            )
            if plan:
                PlanLifecycleManager(self.db, clock=self.clock, settings=self.settings).complete_plan(
                    plan.id, runner_id
                )
                plan_completed = True

        self.db.refresh(race)
        logger.info(
            "Race %s result logged: %s, plan completed: %s", race.id, completion_status, plan_completed
        )
        return race, plan_completed
