"""Cycle position reads, period reporting and prediction history for a runner."""

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from cyclecoach.clock import Clock, get_clock
from cyclecoach.config import Settings, get_settings
from cyclecoach.exceptions import ConflictError, JobDispatchError, NotFoundError, ValidationError
from cyclecoach.models import CycleLog, Runner, TrainingPlan
from cyclecoach.models.enums import CyclePhase, PlanStatus, TriggerKind
from cyclecoach.models.runner import MAX_CYCLE_LENGTH, MIN_CYCLE_LENGTH
from cyclecoach.services import cycle_phase
from cyclecoach.services.cycle_phase_tips import PhaseTips, tips_for_phase
from cyclecoach.services.recalculation_service import RecalculationCoordinator

logger = logging.getLogger(__name__)


@dataclass
class CycleStatus:
    tracking_enabled: bool
    as_of: date
    position: Optional[cycle_phase.CyclePosition] = None
    next_period_start: Optional[date] = None
    days_until_next_period: Optional[int] = None
    phase_ranges: Optional[Dict[CyclePhase, Tuple[int, int]]] = None
    tips: Optional[PhaseTips] = None


@dataclass
class PeriodReportResult:
    runner: Runner
    log: CycleLog
    message: str
    triggered_recalculation: bool = False
    job_token: Optional[str] = None


@dataclass
class CycleHistory:
    entries: List[CycleLog] = field(default_factory=list)
    total_cycles: int = 0
    accurate_predictions: int = 0
    accuracy_percentage: float = 0.0
    average_cycle_length: Optional[float] = None


def closest_predicted_start(anchor: date, cycle_length: int, reported: date) -> date:
    """Predicted period start nearest to the reported one, never the anchor itself."""
    after = cycle_phase.next_period_start(anchor, cycle_length, reported)
    before = after - timedelta(days=cycle_length)
    if before > anchor and (reported - before) < (after - reported):
        return before
    return after


class CycleTrackingService:
    def __init__(
        self,
        db: Session,
        clock: Optional[Clock] = None,
        coordinator: Optional[RecalculationCoordinator] = None,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.clock = clock or get_clock()
        self.coordinator = coordinator
        self.settings = settings or get_settings()

    def current_position(self, runner: Runner, target: Optional[date] = None) -> CycleStatus:
        """Cycle position on ``target`` (today by default)."""
        target = target or self.clock.today()
        position = cycle_phase.position_for_runner(runner, target)
        if position is None:
            return CycleStatus(tracking_enabled=False, as_of=target)

        upcoming = cycle_phase.next_period_start(runner.cycle_anchor, runner.cycle_length, target)
        return CycleStatus(
            tracking_enabled=True,
            as_of=target,
            position=position,
            next_period_start=upcoming,
            days_until_next_period=(upcoming - target).days,
            phase_ranges=cycle_phase.phase_ranges(runner.cycle_length),
            tips=tips_for_phase(position.phase),
        )

    def phase_tips(self, runner: Runner, phase: Optional[CyclePhase] = None) -> PhaseTips:
        """Tips for ``phase``, or for the runner's phase today."""
        if phase is None:
            position = cycle_phase.position_for_runner(runner, self.clock.today())
            if position is None:
                raise NotFoundError("Cycle phase")
            phase = position.phase
        return tips_for_phase(phase)

    def report_period(self, runner: Runner, start_date: date) -> PeriodReportResult:
        """
        Record the first day of a new period.

        Moves the anchor forward and, when the gap since the previous anchor is a
        plausible cycle length, learns it. Every report is logged against the
        prediction it replaces. A miss larger than
        ``period_prediction_tolerance_days`` asks the coordinator to re-phase the
        active plan's upcoming sessions. Logged sessions keep their snapshot.
        """
        if start_date > self.clock.today():
            raise ValidationError("Period start cannot be in the future", field="start_date")
        previous = runner.cycle_anchor
        if previous is not None and start_date < previous:
            raise ValidationError(
                "Period start is earlier than the last recorded period", field="start_date"
            )

        was_tracking = runner.cycle_tracking_enabled
        predicted = None
        difference = None
        observed = None
        if previous is not None and start_date > previous:
            if runner.cycle_length is not None:
                predicted = closest_predicted_start(previous, runner.cycle_length, start_date)
                difference = (start_date - predicted).days

            gap = (start_date - previous).days
            if MIN_CYCLE_LENGTH <= gap <= MAX_CYCLE_LENGTH:
                observed = gap
                runner.cycle_length = gap
            else:
                logger.info(
                    "Ignoring observed cycle of %d days for runner %s (outside %d-%d)",
                    gap, runner.id, MIN_CYCLE_LENGTH, MAX_CYCLE_LENGTH,
                )

        now = self.clock.now()
        runner.cycle_anchor = start_date
        runner.updated_at = now
        log = CycleLog(
            runner_id=runner.id,
            period_start=start_date,
            reported_at=now,
            predicted_start=predicted,
            days_difference=difference,
            prediction_accurate=(
                difference is not None and abs(difference) <= self.settings.period_prediction_tolerance_days
            ),
            observed_cycle_length=observed,
        )
        self.db.add(log)
        self.db.commit()
        logger.info(
            "Runner %s reported period start %s (predicted %s, length %s)",
            runner.id, start_date, predicted, runner.cycle_length,
        )

        job_token = None
        if (
            was_tracking
            and difference is not None
            and abs(difference) > self.settings.period_prediction_tolerance_days
        ):
            job_token = self._rephase_active_plan(runner, log, difference)

        self.db.refresh(runner)
        self.db.refresh(log)
        if job_token:
            message = "Period start recorded. Your next 4 weeks of training are being updated to match your cycle."
        else:
            message = "Period start recorded successfully."
        return PeriodReportResult(
            runner=runner,
            log=log,
            message=message,
            triggered_recalculation=job_token is not None,
            job_token=job_token,
        )

    def cycle_history(self, runner: Runner) -> CycleHistory:
        """Period reports newest first, with prediction accuracy."""
        entries = (
            self.db.query(CycleLog)
            .filter(CycleLog.runner_id == runner.id)
            .order_by(CycleLog.period_start.desc(), CycleLog.reported_at.desc())
            .all()
        )
        predicted = [e for e in entries if e.predicted_start is not None]
        accurate = sum(1 for e in predicted if e.prediction_accurate)
        lengths = [e.observed_cycle_length for e in entries if e.observed_cycle_length is not None]
        return CycleHistory(
            entries=entries,
            total_cycles=len(entries),
            accurate_predictions=accurate,
            accuracy_percentage=round(accurate / len(predicted) * 100, 1) if predicted else 0.0,
            average_cycle_length=round(sum(lengths) / len(lengths), 1) if lengths else None,
        )

    def _rephase_active_plan(self, runner: Runner, log: CycleLog, difference: int) -> Optional[str]:
        if self.coordinator is None:
            return None
        plan = (
            self.db.query(TrainingPlan)
            .filter(TrainingPlan.runner_id == runner.id, TrainingPlan.status == PlanStatus.ACTIVE.value)
            .first()
        )
        if not plan:
            logger.info("No active plan for runner %s; nothing to re-phase", runner.id)
            return None

        direction = "later" if difference > 0 else "earlier"
        reason = f"Period started {abs(difference)} days {direction} than predicted"
        try:
            request = self.coordinator.request_recalculation(
                plan.id,
                auto_dispatch=True,
                trigger_reason=reason,
                runner_id=runner.id,
                trigger_kind=TriggerKind.CYCLE_SHIFT,
            )
        except (ConflictError, JobDispatchError) as e:
            # The period is still recorded; upcoming sessions keep their phases
            logger.warning("Could not re-phase plan %s for runner %s: %s", plan.id, runner.id, e.detail)
            return None

        log.triggered_recalculation = True
        log.affected_plan_id = plan.id
        self.db.commit()
        logger.info("Re-phasing plan %s for runner %s: %s", plan.id, runner.id, reason)
        return request.job_token
