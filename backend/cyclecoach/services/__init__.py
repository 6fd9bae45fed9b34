"""Services package."""

from cyclecoach.services.adaptation_history_service import AdaptationHistoryRecorder
from cyclecoach.services.plan_generator_service import RuleBasedPlanGenerator
from cyclecoach.services.plan_lifecycle_service import PlanLifecycleManager
from cyclecoach.services.recalculation_service import RecalculationCoordinator
from cyclecoach.services.session_outcome_service import SessionOutcomeEvaluator

__all__ = [
    "AdaptationHistoryRecorder",
    "PlanLifecycleManager",
    "RecalculationCoordinator",
    "RuleBasedPlanGenerator",
    "SessionOutcomeEvaluator",
]
