"""Celery tasks for sender sync.

Tasks are thin wrappers: each opens its own session, delegates to a
service in sendersync.services and closes the session. The services
never import Celery; they receive the `schedule_*` callables instead.
"""

from sendersync.tasks.sync_tasks import (
    start_sync,
    process_batch,
    delete_batch,
    run_due_syncs,
    schedule_batch,
    schedule_delete,
)

__all__ = [
    "start_sync",
    "process_batch",
    "delete_batch",
    "run_due_syncs",
    "schedule_batch",
    "schedule_delete",
]
