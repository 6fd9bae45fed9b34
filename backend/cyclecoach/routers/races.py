"""Race goals API router."""

from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from cyclecoach.clock import Clock, get_clock
from cyclecoach.config import Settings, get_settings
from cyclecoach.database import get_db
from cyclecoach.dependencies import get_coordinator, get_current_runner
from cyclecoach.models import Runner
from cyclecoach.schemas import (
    PlanResponse,
    RaceCreate,
    RaceResponse,
    RaceResultCreate,
    RaceResultResponse,
)
from cyclecoach.services.plan_read_service import PlanReadService
from cyclecoach.services.race_service import RaceService
from cyclecoach.services.recalculation_service import RecalculationCoordinator

router = APIRouter(prefix="/races", tags=["races"])


@router.get("/", response_model=List[RaceResponse])
def list_races(
    db: Session = Depends(get_db),
    runner: Runner = Depends(get_current_runner),
):
    """List the runner's races by date."""
    return RaceService(db).list_races(runner.id)


@router.post("/", response_model=RaceResponse, status_code=201)
def create_race(
    race_data: RaceCreate,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_settings),
    runner: Runner = Depends(get_current_runner),
):
    """Create a race goal."""
    return RaceService(db, clock, settings).create_race(runner.id, **race_data.model_dump())


@router.get("/{race_id}", response_model=RaceResponse)
def get_race(
    race_id: str,
    db: Session = Depends(get_db),
    runner: Runner = Depends(get_current_runner),
):
    return RaceService(db).get_race(race_id, runner.id)


@router.get("/{race_id}/plan", response_model=PlanResponse)
def get_race_plan(
    race_id: str,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_settings),
    coordinator: RecalculationCoordinator = Depends(get_coordinator),
    runner: Runner = Depends(get_current_runner),
):
    """Most recent plan built for this race."""
    return PlanReadService(db, coordinator, clock, settings).plan_for_race(runner.id, race_id)


@router.put("/{race_id}/result", response_model=RaceResultResponse)
def log_race_result(
    race_id: str,
    result: RaceResultCreate,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_settings),
    runner: Runner = Depends(get_current_runner),
):
    """Log completed, DNS or DNF. A completed race completes its active plan."""
    race, plan_completed = RaceService(db, clock, settings).log_result(
        race_id, runner.id, result.completion_status.value, result.result_time_seconds
    )
    return RaceResultResponse(
        race=RaceResponse.model_validate(race),
        plan_completed=plan_completed,
        message=(
            "Race result logged and training plan completed."
            if plan_completed
            else "Race result logged."
        ),
    )
