"""Database models package."""

from cyclecoach.models.runner import Runner
from cyclecoach.models.race import Race
from cyclecoach.models.training_plan import TrainingPlan
from cyclecoach.models.training_session import TrainingSession
from cyclecoach.models.adaptation_history import PlanAdaptationHistory
from cyclecoach.models.cycle_log import CycleLog

__all__ = [
    "Runner",
    "Race",
    "TrainingPlan",
    "TrainingSession",
    "PlanAdaptationHistory",
    "CycleLog",
]
