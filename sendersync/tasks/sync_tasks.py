"""
Sync, export and teardown tasks.

Every task receives only a connection id. All other state is read from
the database, so a duplicated or late delivery is harmless: the engine
checks the connection's status before doing anything.
"""

import logging

from sendersync.celery_app import celery_app
from sendersync.database import SessionLocal
from sendersync.services import (
    deletion_service, export_service, scheduler_service, sync_engine
)

logger = logging.getLogger(__name__)


def schedule_batch(delay_ms: int, connection_id: int):
    """Queue the next batch tick after delay_ms."""
    return process_batch.apply_async(args=[connection_id], countdown=delay_ms / 1000)


def schedule_delete(delay_ms: int, connection_id: int):
    """Queue the next deletion batch after delay_ms."""
    return delete_batch.apply_async(args=[connection_id], countdown=delay_ms / 1000)


@celery_app.task(name="sync.start_sync")
def start_sync(connection_id: int) -> dict:
    """Start a sync cycle outside a request (e.g. from the CLI or beat)."""
    session = SessionLocal()
    try:
        return sync_engine.start_sync(session, connection_id, schedule_batch)
    finally:
        session.close()


@celery_app.task(name="sync.process_batch")
def process_batch(connection_id: int) -> dict:
    """One bounded batch tick; schedules its successor while work remains."""
    session = SessionLocal()
    try:
        return sync_engine.process_batch(session, connection_id, schedule_batch)
    finally:
        session.close()


@celery_app.task(name="sync.delete_batch")
def delete_batch(connection_id: int) -> dict:
    """One bounded deletion tick for a connection being deleted or reset."""
    session = SessionLocal()
    try:
        return deletion_service.delete_batch(session, connection_id, schedule_delete)
    finally:
        session.close()


def _start(db, connection_id: int) -> dict:
    return sync_engine.start_sync(db, connection_id, schedule_batch)


@celery_app.task(name="sync.run_due_syncs")
def run_due_syncs() -> dict:
    """Periodic sweep (Celery beat): start + export every due connection."""
    session = SessionLocal()
    try:
        result = scheduler_service.run_due_syncs(
            session,
            start=_start,
            export=export_service.export_to_sheets
        )
        logger.info(f"Scheduler sweep done: started={result['started']} failed={result['failed']}")
        return result
    finally:
        session.close()
