"""Runner profile and cycle data management."""

import logging
from datetime import date
from typing import Optional

from sqlalchemy.orm import Session

from cyclecoach.clock import Clock, get_clock
from cyclecoach.exceptions import NotFoundError, ValidationError
from cyclecoach.models import Runner
from cyclecoach.models.enums import CycleRegularity
from cyclecoach.services.cycle_phase import validate_cycle_length

logger = logging.getLogger(__name__)

FITNESS_LEVELS = ("beginner", "intermediate", "advanced", "elite")


class RunnerService:
    """CRUD for runner profiles."""

    def __init__(self, db: Session, clock: Optional[Clock] = None):
        self.db = db
        self.clock = clock or get_clock()

    def get_runner(self, runner_id: str) -> Runner:
        runner = self.db.query(Runner).filter(Runner.id == runner_id).first()
        if not runner:
            raise NotFoundError("Runner")
        return runner

    def create_runner(
        self,
        name: Optional[str] = None,
        user_ref: Optional[str] = None,
        fitness_level: str = "intermediate",
        typical_weekly_km: Optional[float] = None,
        cycle_anchor: Optional[date] = None,
        cycle_length: Optional[int] = None,
        cycle_regularity: str = CycleRegularity.REGULAR.value,
    ) -> Runner:
        self._validate_profile(fitness_level, typical_weekly_km, cycle_anchor, cycle_length, cycle_regularity)
        now = self.clock.now()
        runner = Runner(
            name=name,
            user_ref=user_ref,
            fitness_level=fitness_level,
            typical_weekly_km=typical_weekly_km,
            cycle_anchor=cycle_anchor,
            cycle_length=cycle_length,
            cycle_regularity=cycle_regularity,
            plan_slot_version=0,
            created_at=now,
            updated_at=now,
        )
        self.db.add(runner)
        self.db.commit()
        self.db.refresh(runner)
        logger.info("Created runner %s", runner.id)
        return runner

    def update_profile(self, runner_id: str, **fields) -> Runner:
        """Partial update; only keys present in ``fields`` are touched."""
        runner = self.get_runner(runner_id)
        merged = {
            "fitness_level": runner.fitness_level,
            "typical_weekly_km": runner.typical_weekly_km,
            "cycle_anchor": runner.cycle_anchor,
            "cycle_length": runner.cycle_length,
            "cycle_regularity": runner.cycle_regularity,
        }
        merged.update({k: v for k, v in fields.items() if k in merged})
        self._validate_profile(**merged)

        for field, value in fields.items():
            if field in merged or field == "name":
                setattr(runner, field, value)
        runner.updated_at = self.clock.now()
        self.db.commit()
        self.db.refresh(runner)

        # Existing session phase snapshots are deliberately left alone
        logger.info("Updated profile for runner %s: %s", runner_id, sorted(fields))
        return runner

    def _validate_profile(
        self,
        fitness_level: Optional[str],
        typical_weekly_km: Optional[float],
        cycle_anchor: Optional[date],
        cycle_length: Optional[int],
        cycle_regularity: Optional[str],
    ) -> None:
        if fitness_level is not None and fitness_level not in FITNESS_LEVELS:
            raise ValidationError(
                f"Fitness level must be one of: {', '.join(FITNESS_LEVELS)}", field="fitness_level"
            )
        if typical_weekly_km is not None and typical_weekly_km < 0:
            raise ValidationError("Weekly distance cannot be negative", field="typical_weekly_km")
        if cycle_length is not None:
            validate_cycle_length(cycle_length)
        if cycle_anchor is not None and cycle_anchor > self.clock.today():
            raise ValidationError("Last period start cannot be in the future", field="cycle_anchor")
        if cycle_regularity is not None and cycle_regularity not in {r.value for r in CycleRegularity}:
            raise ValidationError("Unknown cycle regularity", field="cycle_regularity")
