"""Runner profile API router."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from cyclecoach.clock import Clock, get_clock
from cyclecoach.database import get_db
from cyclecoach.dependencies import get_current_runner
from cyclecoach.models import Runner
from cyclecoach.schemas import RunnerCreate, RunnerResponse, RunnerUpdate
from cyclecoach.services.runner_service import RunnerService

router = APIRouter(prefix="/runners", tags=["runners"])


@router.post("/", response_model=RunnerResponse, status_code=201)
def create_runner(
    runner_data: RunnerCreate,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Create a runner profile."""
    data = runner_data.model_dump()
    data["cycle_regularity"] = runner_data.cycle_regularity.value
    return RunnerService(db, clock).create_runner(**data)


@router.get("/me", response_model=RunnerResponse)
def get_me(runner: Runner = Depends(get_current_runner)):
    """Get the acting runner's profile."""
    return runner


@router.patch("/me", response_model=RunnerResponse)
def update_me(
    runner_data: RunnerUpdate,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    runner: Runner = Depends(get_current_runner),
):
    """Update profile and cycle data. Existing session phase snapshots are kept."""
    fields = runner_data.model_dump(exclude_unset=True)
    if fields.get("cycle_regularity") is not None:
        fields["cycle_regularity"] = fields["cycle_regularity"].value
    return RunnerService(db, clock).update_profile(runner.id, **fields)
