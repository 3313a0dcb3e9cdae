"""
Due-connection sweep.

Runs every SCHEDULER_INTERVAL_MINUTES (Celery beat) and starts a new
cycle plus an export for every connection whose schedule has elapsed.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session

from sendersync import config
from sendersync.database import utcnow
from sendersync.models import Connection, SyncStatus, SyncSchedule
from sendersync.services import db_service

logger = logging.getLogger(__name__)

# A new cycle cannot start while one of these is in progress
BUSY_STATUSES = (
    SyncStatus.SYNCING.value,
    SyncStatus.DELETING.value,
    SyncStatus.RESETTING.value,
)


def is_due(connection: Connection, now: datetime) -> bool:
    """
    Due when active, not syncing or being torn down, not manual, and the
    schedule interval has passed since last_sync_at (never synced = always due).
    Unknown schedules are never due.
    """
    if not connection.is_active:
        return False
    if connection.sync_status in BUSY_STATUSES:
        return False
    if connection.sync_schedule == SyncSchedule.MANUAL.value:
        return False

    interval = config.SCHEDULE_INTERVALS.get(connection.sync_schedule)
    if interval is None:
        return False

    if connection.last_sync_at is None:
        return True

    return now - connection.last_sync_at >= interval


def get_due_connections(db: Session, now: Optional[datetime] = None) -> list[Connection]:
    """All connections eligible for a new cycle."""
    now = now or utcnow()

    candidates = db.query(Connection).filter(
        Connection.is_active.is_(True),
        Connection.sync_status.notin_(BUSY_STATUSES),
        Connection.sync_schedule != SyncSchedule.MANUAL.value
    ).order_by(Connection.id).all()

    return [c for c in candidates if is_due(c, now)]


def run_due_syncs(
    db: Session,
    start: Callable[[Session, int], dict],
    export: Callable[[Session, int], dict],
    now: Optional[datetime] = None
) -> dict:
    """
    Start a cycle and run the export for every due connection.

    A failure on one connection is logged and the sweep moves on.

    Args:
        start: Cycle entry point, (db, connection_id) -> result
        export: Export collaborator, (db, connection_id) -> result

    Returns:
        Dict with 'due', 'started' and 'failed' connection ids
    """
    due_ids = [c.id for c in get_due_connections(db, now)]
    started, failed = [], []

    logger.info(f"Scheduler sweep: {len(due_ids)} connection(s) due")

    for connection_id in due_ids:
        try:
            result = start(db, connection_id)
            if result.get("started"):
                started.append(connection_id)
            export(db, connection_id)
        except Exception as e:
            logger.error(f"Sync failed for connection {connection_id}: {e}", exc_info=True)
            db.rollback()
            failed.append(connection_id)

    return {
        "due": due_ids,
        "started": started,
        "failed": failed,
    }
