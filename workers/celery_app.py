"""Celery application configuration.

The deletion queue is polled by a beat-scheduled task; each run performs one
claim cycle. Several Celery workers may run the task at once, the claim is
an atomic update on the queue row.
"""

from celery import Celery

from app.config import settings

celery_app = Celery(
    "tenant-deletion",
    broker=settings.celery_broker,
    backend=settings.celery_backend,
)

# Worker Pool Options:
# - Development: celery -A workers.celery_app worker --pool=solo --loglevel=info
# - Production:  celery -A workers.celery_app worker --concurrency=2 --loglevel=info
# - Scheduler:   celery -A workers.celery_app beat --loglevel=info
celery_app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Task execution; a whole tenant run may take a while
    task_track_started=True,
    task_time_limit=6 * 3600,
    task_soft_time_limit=6 * 3600 - 300,

    # A worker lost mid-run leaves the entry to heartbeat reclaim, not redelivery
    task_acks_late=False,

    # Result backend
    result_expires=3600,
    result_extended=True,

    # Worker settings
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=100,

    beat_schedule={
        "process-deletion-queue": {
            "task": "workers.tasks.deletion.process_deletion_queue",
            "schedule": settings.deletion_poll_interval_seconds,
        },
    },
)

celery_app.autodiscover_tasks(["workers.tasks"], related_name="deletion")
