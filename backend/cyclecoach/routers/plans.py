"""Training plan API router: lifecycle, recalculation and adaptation history."""

from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from cyclecoach.clock import Clock, get_clock
from cyclecoach.config import Settings, get_settings
from cyclecoach.database import get_db
from cyclecoach.dependencies import get_coordinator, get_current_runner
from cyclecoach.models import PlanAdaptationHistory, Runner
from cyclecoach.models.enums import TrainingStage
from cyclecoach.schemas import (
    AdaptationHistoryResponse,
    PlanCreate,
    PlanResponse,
    PlanStatusResponse,
    RecalculationActionResponse,
    RecalculationStatusResponse,
    SessionChangeResponse,
    StageInfoResponse,
)
from cyclecoach.services.adaptation_history_service import AdaptationHistoryRecorder
from cyclecoach.services.periodization import stage_info
from cyclecoach.services.plan_generator_service import SessionChange, get_plan_generator
from cyclecoach.services.plan_lifecycle_service import PlanLifecycleManager
from cyclecoach.services.plan_read_service import PlanReadService
from cyclecoach.services.recalculation_service import RecalculationCoordinator, recalculation_state

router = APIRouter(prefix="/plans", tags=["plans"])


def _history_response(entry: PlanAdaptationHistory) -> AdaptationHistoryResponse:
    changes = []
    for raw in entry.changes or []:
        change = SessionChange.from_dict(raw)
        changes.append(SessionChangeResponse(**change.to_dict(), has_changes=change.has_changes()))
    return AdaptationHistoryResponse(
        id=entry.id,
        plan_id=entry.plan_id,
        status=entry.status,
        adapted_at=entry.adapted_at,
        viewed_at=entry.viewed_at,
        summary=entry.summary,
        trigger_reason=entry.trigger_reason,
        sessions_affected_count=entry.sessions_affected_count,
        changes=changes,
        error_message=entry.error_message,
    )


@router.post("/", response_model=PlanResponse, status_code=201)
def create_plan(
    plan_data: PlanCreate,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_settings),
    coordinator: RecalculationCoordinator = Depends(get_coordinator),
    runner: Runner = Depends(get_current_runner),
):
    """Generate and activate a plan for a race. Fails if one is already active."""
    manager = PlanLifecycleManager(db, get_plan_generator(), clock, settings)
    plan = manager.create_plan(runner.id, plan_data.race_id)
    return PlanReadService(db, coordinator, clock, settings).plan_view(plan)


@router.get("/active", response_model=PlanResponse)
def get_active_plan(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_settings),
    coordinator: RecalculationCoordinator = Depends(get_coordinator),
    runner: Runner = Depends(get_current_runner),
):
    """The runner's active plan with every session."""
    return PlanReadService(db, coordinator, clock, settings).active_plan(runner.id)


@router.get("/stages", response_model=List[StageInfoResponse])
def list_stages():
    """Static descriptions of the periodization stages."""
    return [stage_info(stage) for stage in TrainingStage]


@router.post("/{plan_id}/archive", response_model=PlanStatusResponse)
def archive_plan(
    plan_id: str,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    runner: Runner = Depends(get_current_runner),
):
    return PlanLifecycleManager(db, clock=clock).archive_plan(plan_id, runner.id)


@router.post("/{plan_id}/complete", response_model=PlanStatusResponse)
def complete_plan(
    plan_id: str,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    runner: Runner = Depends(get_current_runner),
):
    return PlanLifecycleManager(db, clock=clock).complete_plan(plan_id, runner.id)


# ---------- Recalculation ----------

@router.get("/{plan_id}/recalculation", response_model=RecalculationStatusResponse)
def get_recalculation_status(
    plan_id: str,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    coordinator: RecalculationCoordinator = Depends(get_coordinator),
    runner: Runner = Depends(get_current_runner),
):
    """Pending-confirmation flag plus a bounded poll of the job store."""
    plan = PlanLifecycleManager(db, clock=clock).get_plan(plan_id, runner.id)
    job_status = coordinator.poll_status(plan.id, runner.id)
    return RecalculationStatusResponse(
        plan_id=plan.id,
        state=recalculation_state(plan).value,
        job_status=job_status.value,
        pending_confirmation=bool(plan.pending_confirmation),
        pending_trigger_reason=plan.pending_trigger_reason,
        confirmation_requested_at=plan.confirmation_requested_at,
        last_recalculation_requested_at=plan.last_recalculation_requested_at,
        last_recalculated_at=plan.last_recalculated_at,
    )


@router.post("/{plan_id}/recalculation/confirm", response_model=RecalculationActionResponse)
def confirm_recalculation(
    plan_id: str,
    coordinator: RecalculationCoordinator = Depends(get_coordinator),
    runner: Runner = Depends(get_current_runner),
):
    """Accept the proposed recalculation and start updating the plan."""
    request = coordinator.confirm(plan_id, runner.id)
    return RecalculationActionResponse(
        plan_id=request.plan_id,
        state=request.state.value,
        message="Your plan is being updated.",
    )


@router.post("/{plan_id}/recalculation/decline", response_model=RecalculationActionResponse)
def decline_recalculation(
    plan_id: str,
    coordinator: RecalculationCoordinator = Depends(get_coordinator),
    runner: Runner = Depends(get_current_runner),
):
    """Keep the plan as it is."""
    request = coordinator.decline(plan_id, runner.id)
    return RecalculationActionResponse(
        plan_id=request.plan_id,
        state=request.state.value,
        message="Your plan will stay as it is.",
    )


@router.post("/{plan_id}/summary/dismiss", response_model=PlanStatusResponse)
def dismiss_summary(
    plan_id: str,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    runner: Runner = Depends(get_current_runner),
):
    """Mark the latest recalculation summary as seen."""
    return AdaptationHistoryRecorder(db, clock).mark_summary_viewed(plan_id, runner.id)


# ---------- Adaptation history ----------

@router.get("/{plan_id}/history", response_model=List[AdaptationHistoryResponse])
def list_history(
    plan_id: str,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    runner: Runner = Depends(get_current_runner),
):
    """Adaptation passes for the plan, newest first."""
    entries = AdaptationHistoryRecorder(db, clock).list_history(plan_id, runner.id)
    return [_history_response(entry) for entry in entries]


@router.post("/history/{history_id}/viewed", response_model=AdaptationHistoryResponse)
def mark_history_viewed(
    history_id: str,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    runner: Runner = Depends(get_current_runner),
):
    entry = AdaptationHistoryRecorder(db, clock).mark_history_entry_viewed(history_id, runner.id)
    return _history_response(entry)
