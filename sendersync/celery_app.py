"""
Celery application: delayed re-invocation of batch ticks + periodic sweep.

Usage:
    Worker:  celery -A sendersync.celery_app worker --loglevel=info
    Beat:    celery -A sendersync.celery_app beat --loglevel=info

Batch ticks chain themselves with apply_async(countdown=...); beat fires
the due-connection sweep every SCHEDULER_INTERVAL_MINUTES.
"""

import logging

from celery import Celery

from sendersync import config

logging.basicConfig(level=config.LOG_LEVEL, format=config.LOG_FORMAT)

celery_app = Celery(
    "sendersync",
    broker=config.CELERY_BROKER_URL,
    backend=config.CELERY_RESULT_BACKEND,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    # One tick must finish well inside these limits
    task_time_limit=5 * 60,
    task_soft_time_limit=4 * 60,
    worker_prefetch_multiplier=1,
    beat_schedule={
        "sync-scheduler": {
            "task": "sync.run_due_syncs",
            "schedule": config.SCHEDULER_INTERVAL_MINUTES * 60,
        },
    },
)

celery_app.autodiscover_tasks(["sendersync.tasks"], related_name="sync_tasks")


if __name__ == "__main__":
    celery_app.start()
