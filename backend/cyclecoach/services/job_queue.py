"""
Job queue and job status store used to dispatch adaptation passes.

The coordinator chooses the job token before enqueueing so it can claim the
plan's recalculation slot first and only then hand the job to the broker.
"""

import logging
import uuid
from enum import Enum
from functools import lru_cache
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

ADAPT_PLAN_JOB = "cyclecoach.adapt_plan"


class JobState(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    UNKNOWN = "unknown"


class JobQueue:
    """Enqueue/poll contract. Delivery is at-least-once."""
    
    def new_token(self) -> str:
        return str(uuid.uuid4())
    
    def enqueue(self, job_kind: str, payload: Dict[str, Any], job_token: Optional[str] = None) -> str:
        raise NotImplementedError
    
    def get_status(self, job_token: str) -> JobState:
        raise NotImplementedError


class CeleryJobQueue(JobQueue):
    """Job queue backed by the Celery broker and result backend."""
    
    # Celery reports PENDING for unknown ids too; we only poll ids we issued
    CELERY_STATES = {
        "PENDING": JobState.QUEUED,
        "RECEIVED": JobState.QUEUED,
        "STARTED": JobState.RUNNING,
        "RETRY": JobState.RUNNING,
        "SUCCESS": JobState.SUCCEEDED,
        "FAILURE": JobState.FAILED,
        "REVOKED": JobState.FAILED,
    }
    
    def __init__(self, celery_app=None):
        if celery_app is None:
            from cyclecoach.worker.tasks import celery_app
        self.celery_app = celery_app
    
    def enqueue(self, job_kind: str, payload: Dict[str, Any], job_token: Optional[str] = None) -> str:
        token = job_token or self.new_token()
        self.celery_app.send_task(job_kind, kwargs=payload, task_id=token)
        logger.info("Enqueued %s job %s", job_kind, token)
        return token
    
    def get_status(self, job_token: str) -> JobState:
        state = self.celery_app.AsyncResult(job_token).state
        return self.CELERY_STATES.get(state, JobState.UNKNOWN)


@lru_cache()
def get_job_queue() -> JobQueue:
    """Dependency returning the process-wide job queue."""
    return CeleryJobQueue()
