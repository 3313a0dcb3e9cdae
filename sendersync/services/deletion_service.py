"""
Batched teardown of a connection's data.

Same self-scheduling pattern as the sync driver: each tick removes at most
DELETE_BATCH_SIZE rows and requests the next tick until nothing is left.

- 'resetting' (full reset): drops dedup witnesses, then returns the
  connection to idle with all progress and the watermark cleared, so the
  next cycle rescans the whole folder
- 'deleting': drops witnesses, addresses and domain filters, then the
  connection row itself

Setting either status also stops a running sync: its next tick sees the
connection is no longer 'syncing'. A connection already 'deleting' accepts
no further teardown request.
"""

import logging
from typing import Any, Callable

from sqlalchemy.orm import Session

from sendersync import config
from sendersync.errors import NotFoundError
from sendersync.models import SyncStatus, SyncedMessage, Address, FilteredDomain
from sendersync.services import db_service

logger = logging.getLogger(__name__)

ScheduleFn = Callable[[int, int], Any]

# Drain order per teardown kind
DELETE_ORDER = {
    SyncStatus.RESETTING.value: [SyncedMessage],
    SyncStatus.DELETING.value: [SyncedMessage, Address, FilteredDomain],
}


def _begin(db: Session, connection_id: int, status: SyncStatus, schedule: ScheduleFn) -> dict:
    connection = db_service.get_connection(db, connection_id)
    if connection is None:
        raise NotFoundError(f"Connection {connection_id} not found")

    # A delete in progress is final; a reset may still be upgraded to a delete
    if connection.sync_status == SyncStatus.DELETING.value:
        return {"started": False, "message": "Connection is being deleted"}

    if connection.sync_status == status.value:
        return {"started": False, "message": f"Connection is already {status.value}"}

    db_service.update_sync_status(
        db,
        connection,
        status,
        progress_message=None,
        sync_page_token=None,
        sync_page_failed_ids=None,
        sync_started_at=None,
        cycle_started_at=None
    )
    schedule(config.DELETE_BATCH_DELAY_MS, connection_id)

    logger.info(f"Connection {connection_id}: {status.value} started")
    return {"started": True, "message": f"Connection {status.value} in background"}


def begin_delete(db: Session, connection_id: int, schedule: ScheduleFn) -> dict:
    """Mark the connection for deletion and queue the first batch."""
    return _begin(db, connection_id, SyncStatus.DELETING, schedule)


def begin_full_reset(db: Session, connection_id: int, schedule: ScheduleFn) -> dict:
    """Mark the connection for a full reset and queue the first batch."""
    return _begin(db, connection_id, SyncStatus.RESETTING, schedule)


def delete_batch(
    db: Session,
    connection_id: int,
    schedule: ScheduleFn,
    batch_size: int = config.DELETE_BATCH_SIZE
) -> dict:
    """
    Remove one batch of rows for a connection being deleted or reset.

    Returns:
        Dict with 'status' (aborted | continued | completed) and 'deleted'
    """
    connection = db_service.get_connection(db, connection_id)
    if connection is None:
        return {"status": "aborted", "reason": "not_found"}

    models = DELETE_ORDER.get(connection.sync_status)
    if models is None:
        logger.info(f"Connection {connection_id} is {connection.sync_status}, nothing to delete")
        return {"status": "aborted", "reason": connection.sync_status}

    for model in models:
        deleted = db_service.delete_batch(db, model, connection_id, batch_size)
        if deleted:
            schedule(config.DELETE_BATCH_DELAY_MS, connection_id)
            logger.debug(f"Connection {connection_id}: deleted {deleted} {model.__tablename__} rows")
            return {"status": "continued", "deleted": deleted, "table": model.__tablename__}

    if connection.sync_status == SyncStatus.DELETING.value:
        db_service.delete_connection_row(db, connection)
        logger.info(f"🗑️ Connection {connection_id} deleted")
    else:
        db_service.update_sync_status(
            db,
            connection,
            SyncStatus.IDLE,
            total_messages_to_sync=None,
            messages_processed=None,
            messages_failed=None,
            sync_page_token=None,
            sync_page_failed_ids=None,
            sync_started_at=None,
            cycle_started_at=None,
            last_sync_at=None,
            last_error=None,
            progress_message=None
        )
        logger.info(f"Connection {connection_id}: full reset complete")

    return {"status": "completed", "deleted": 0}
