"""Cycle position, period reporting and phase tips API router."""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from cyclecoach.clock import Clock, get_clock
from cyclecoach.config import Settings, get_settings
from cyclecoach.database import get_db
from cyclecoach.dependencies import get_coordinator, get_current_runner
from cyclecoach.models import Runner
from cyclecoach.models.enums import CyclePhase
from cyclecoach.schemas import (
    CycleHistoryResponse,
    CycleLogResponse,
    CyclePhaseTipsResponse,
    CyclePositionResponse,
    CycleStatsResponse,
    PeriodReport,
    PeriodReportResponse,
    RunnerResponse,
)
from cyclecoach.services.cycle_phase_tips import PhaseTips
from cyclecoach.services.cycle_tracking_service import CycleStatus, CycleTrackingService
from cyclecoach.services.recalculation_service import RecalculationCoordinator

router = APIRouter(prefix="/cycle", tags=["cycle"])


def _position_response(status: CycleStatus) -> CyclePositionResponse:
    if not status.tracking_enabled:
        return CyclePositionResponse(tracking_enabled=False, as_of=status.as_of)
    position = status.position
    return CyclePositionResponse(
        tracking_enabled=True,
        as_of=status.as_of,
        phase=position.phase.value,
        day_in_cycle=position.day_in_cycle,
        cycle_length=position.cycle_length,
        menstruation_day=position.menstruation_day,
        next_period_start=status.next_period_start,
        days_until_next_period=status.days_until_next_period,
        phase_ranges={phase.value: [start, end] for phase, (start, end) in status.phase_ranges.items()},
        phase_description=status.tips.description,
        phase_guidance=status.tips.guidance,
    )


def _tips_response(tips: PhaseTips) -> CyclePhaseTipsResponse:
    return CyclePhaseTipsResponse(
        phase=tips.phase.value,
        description=tips.description,
        guidance=tips.guidance,
        nutrition=tips.nutrition,
        rest=tips.rest,
        injury_prevention=tips.injury_prevention,
        mood=tips.mood,
    )


@router.get("/position", response_model=CyclePositionResponse)
def get_position(
    on: Optional[date] = None,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    runner: Runner = Depends(get_current_runner),
):
    """Predicted phase for a date (today by default)."""
    return _position_response(CycleTrackingService(db, clock).current_position(runner, on))


@router.post("/period", response_model=PeriodReportResponse)
def report_period(
    report: PeriodReport,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_settings),
    coordinator: RecalculationCoordinator = Depends(get_coordinator),
    runner: Runner = Depends(get_current_runner),
):
    """Report the first day of a new period. A missed prediction re-phases the active plan."""
    service = CycleTrackingService(db, clock, coordinator, settings)
    result = service.report_period(runner, report.start_date)
    return PeriodReportResponse(
        message=result.message,
        runner=RunnerResponse.model_validate(result.runner),
        log=CycleLogResponse.model_validate(result.log),
        triggered_recalculation=result.triggered_recalculation,
        days_difference=result.log.days_difference,
        updated_position=_position_response(service.current_position(result.runner)),
    )


@router.get("/history", response_model=CycleHistoryResponse)
def get_history(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    runner: Runner = Depends(get_current_runner),
):
    """Reported periods newest first, with prediction accuracy."""
    history = CycleTrackingService(db, clock).cycle_history(runner)
    return CycleHistoryResponse(
        history=[CycleLogResponse.model_validate(entry) for entry in history.entries],
        stats=CycleStatsResponse(
            total_cycles=history.total_cycles,
            accurate_predictions=history.accurate_predictions,
            accuracy_percentage=history.accuracy_percentage,
            average_cycle_length=history.average_cycle_length,
        ),
    )


@router.get("/tips", response_model=CyclePhaseTipsResponse)
def get_tips(
    phase: Optional[CyclePhase] = None,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    runner: Runner = Depends(get_current_runner),
):
    """Wellness tips for a phase, or for today's phase when none is given."""
    return _tips_response(CycleTrackingService(db, clock).phase_tips(runner, phase))
