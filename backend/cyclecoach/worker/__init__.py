"""
Celery worker for adaptation passes.

The API only enqueues by task name; the worker process imports this package to
register and execute the tasks:

    celery -A cyclecoach.worker worker --loglevel=info
"""
from celery import Celery

from cyclecoach.config import get_settings

settings = get_settings()

celery_app = Celery(
    "cyclecoach",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,  # At-least-once; completions are deduplicated by job token
    task_time_limit=10 * 60,
    task_soft_time_limit=8 * 60,
)

# Import tasks to register them
from cyclecoach.worker import tasks  # noqa: E402

__all__ = ["celery_app"]
