"""Training session API router: reads and outcome submission."""

from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from cyclecoach.clock import Clock, get_clock
from cyclecoach.config import Settings, get_settings
from cyclecoach.database import get_db
from cyclecoach.dependencies import get_coordinator, get_current_runner
from cyclecoach.models import Runner
from cyclecoach.schemas import (
    DeviationResponse,
    PlanSummaryResponse,
    SessionCompletion,
    SessionOutcomeResponse,
    SessionResponse,
    SessionSkip,
)
from cyclecoach.services.plan_read_service import PlanReadService
from cyclecoach.services.recalculation_service import RecalculationCoordinator
from cyclecoach.services.session_outcome_service import OutcomeResult, SessionOutcomeEvaluator

router = APIRouter(prefix="/sessions", tags=["sessions"])


def _outcome_response(result: OutcomeResult, reader: PlanReadService) -> SessionOutcomeResponse:
    session = result.session
    assessment = result.assessment
    return SessionOutcomeResponse(
        session=SessionResponse.model_validate(reader.session_view(session.plan, session)),
        deviation=DeviationResponse(
            severity=assessment.severity.value,
            action=assessment.action.value,
            requires_confirmation=assessment.requires_confirmation,
            consecutive_off_track=assessment.consecutive_off_track,
            off_track_share=assessment.off_track_share,
            reasons=assessment.reasons,
        ),
        recalculation_requested=result.recalculation_requested,
        auto_dispatched=result.auto_dispatched,
    )


@router.get("/upcoming", response_model=List[SessionResponse])
def get_upcoming_sessions(
    count: int = Query(7, ge=1, le=50),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_settings),
    coordinator: RecalculationCoordinator = Depends(get_coordinator),
    runner: Runner = Depends(get_current_runner),
):
    """Next sessions of the active plan, starting today."""
    return PlanReadService(db, coordinator, clock, settings).upcoming_sessions(runner.id, count)


@router.get("/plan-summary", response_model=PlanSummaryResponse)
def get_plan_summary(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_settings),
    coordinator: RecalculationCoordinator = Depends(get_coordinator),
    runner: Runner = Depends(get_current_runner),
):
    """Dashboard summary of the active plan."""
    return PlanReadService(db, coordinator, clock, settings).plan_summary(runner.id)


@router.get("/{session_id}", response_model=SessionResponse)
def get_session(
    session_id: str,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_settings),
    coordinator: RecalculationCoordinator = Depends(get_coordinator),
    runner: Runner = Depends(get_current_runner),
):
    return PlanReadService(db, coordinator, clock, settings).session_detail(runner.id, session_id)


@router.post("/{session_id}/complete", response_model=SessionOutcomeResponse)
def complete_session(
    session_id: str,
    completion: SessionCompletion,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_settings),
    coordinator: RecalculationCoordinator = Depends(get_coordinator),
    runner: Runner = Depends(get_current_runner),
):
    """Log a completed session and report how far it deviated from plan."""
    evaluator = SessionOutcomeEvaluator(db, coordinator, clock, settings)
    result = evaluator.record_completion(session_id, runner.id, **completion.model_dump())
    return _outcome_response(result, PlanReadService(db, coordinator, clock, settings))


@router.post("/{session_id}/skip", response_model=SessionOutcomeResponse)
def skip_session(
    session_id: str,
    skip: SessionSkip,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_settings),
    coordinator: RecalculationCoordinator = Depends(get_coordinator),
    runner: Runner = Depends(get_current_runner),
):
    """Log a skipped session."""
    evaluator = SessionOutcomeEvaluator(db, coordinator, clock, settings)
    result = evaluator.record_skip(session_id, runner.id, skip.reason)
    return _outcome_response(result, PlanReadService(db, coordinator, clock, settings))
