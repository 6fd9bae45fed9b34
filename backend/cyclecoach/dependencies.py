"""Shared FastAPI dependencies."""

from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from cyclecoach.clock import Clock, get_clock
from cyclecoach.config import Settings, get_settings
from cyclecoach.database import get_db
from cyclecoach.exceptions import NotFoundError
from cyclecoach.models import Runner
from cyclecoach.services.job_queue import JobQueue, get_job_queue
from cyclecoach.services.recalculation_service import RecalculationCoordinator
from cyclecoach.services.runner_service import RunnerService


def get_current_runner(
    x_runner_id: Optional[str] = Header(None, alias="X-Runner-Id"),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> Runner:
    """Resolve the acting runner. Authentication happens upstream."""
    if not x_runner_id:
        raise NotFoundError("Runner")
    return RunnerService(db, clock).get_runner(x_runner_id)


def get_coordinator(
    db: Session = Depends(get_db),
    job_queue: JobQueue = Depends(get_job_queue),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_settings),
) -> RecalculationCoordinator:
    return RecalculationCoordinator(db, job_queue, clock, settings)
