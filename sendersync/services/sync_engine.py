"""
Resumable sync engine: connection state machine + batch driver.

A sync cycle (idle -> syncing -> idle | error) is split into many short
batch ticks. Each tick:
1. Re-reads the connection and aborts unless it is still 'syncing'
2. Refreshes the access token if expired (persisted immediately)
3. Loads the domain block-set
4. Lists one Gmail page from the stored resume token, bounded by last_sync_at
5. Drops ids that already have a dedup witness, or already failed on this page
6. Caps the rest at BATCH_SIZE (remembering whether it was capped)
7. Fetches each sender, skipping failures, upserting unblocked addresses
8. Writes witnesses for every fetched message in one batch
9. Either saves progress + schedules the next tick, or finishes the cycle
10. Turns any escaping exception into the 'error' status

Ticks keep nothing in memory: all continuation state (status, counters,
resume token, failed ids of a capped page) lives on the Connection row.
The next tick is requested through a `schedule(delay_ms, connection_id)`
callable, supplied by the Celery tasks in production and by a recorder in
tests.

Messages that fail to fetch get no witness. A cycle with failures keeps
the previous last_sync_at, so the next cycle lists them again.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, Optional

from sqlalchemy.orm import Session

from sendersync import config
from sendersync.database import utcnow
from sendersync.errors import NotFoundError, PerMessageError, ProviderError
from sendersync.models import Connection, SyncStatus
from sendersync.services import db_service, gmail_service, oauth_service
from sendersync.services.address_parser import parse_email_address, get_domain
from sendersync.services.progress import percent_complete

logger = logging.getLogger(__name__)

ScheduleFn = Callable[[int, int], Any]

ALREADY_SYNCING_MESSAGE = "Sync already in progress"
CANCELLED_MESSAGE = "Sync cancelled by user"


@dataclass
class PagePlan:
    """What one tick does with a listed page."""
    to_process: list[str]
    more_in_page: bool
    next_page_token: Optional[str]
    resume_token: Optional[str]
    skipped_synced: int = 0
    skipped_failed: int = 0

    @property
    def has_more(self) -> bool:
        return self.more_in_page or bool(self.next_page_token)


@dataclass
class BatchResult:
    """Messages fetched and addresses touched by one tick."""
    fetched_ids: list[str] = field(default_factory=list)
    failed_ids: list[str] = field(default_factory=list)
    new_addresses: int = 0
    filtered: int = 0


def plan_page(
    message_ids: list[str],
    synced_ids: set[str],
    next_page_token: Optional[str],
    current_page_token: Optional[str],
    batch_size: int = config.BATCH_SIZE,
    failed_ids: frozenset[str] | set[str] = frozenset()
) -> PagePlan:
    """
    Decide which ids of a page to process and where the next tick resumes.

    A page capped at batch_size is listed again next tick (same token), its
    processed ids then being filtered out by their witnesses and its failed
    ids by failed_ids. Only a page processed to the end advances to
    next_page_token.
    """
    candidates = [m for m in message_ids if m not in synced_ids and m not in failed_ids]
    more_in_page = len(candidates) > batch_size
    skipped_synced = sum(1 for m in message_ids if m in synced_ids)

    return PagePlan(
        to_process=candidates[:batch_size],
        more_in_page=more_in_page,
        next_page_token=next_page_token,
        resume_token=current_page_token if more_in_page else next_page_token,
        skipped_synced=skipped_synced,
        skipped_failed=len(message_ids) - len(candidates) - skipped_synced,
    )


def ensure_access_token(db: Session, connection: Connection) -> str:
    """
    Return a usable access token, refreshing it when expired.

    The refreshed token is committed before use so concurrent or later
    ticks don't refresh again.

    Raises:
        AuthError: Refresh token rejected by Google
    """
    if connection.token_expiry and connection.token_expiry > utcnow():
        return connection.access_token

    logger.info(f"Access token expired for connection {connection.id}, refreshing")
    refreshed = oauth_service.refresh_access_token(connection.refresh_token)

    db_service.update_tokens(
        db,
        connection,
        access_token=refreshed["access_token"],
        token_expiry=utcnow() + timedelta(seconds=refreshed["expires_in"])
    )
    return refreshed["access_token"]


def _page_failed_ids(connection: Connection) -> set[str]:
    if not connection.sync_page_failed_ids:
        return set()
    return set(json.loads(connection.sync_page_failed_ids))


# ============ STATE MACHINE ENTRY POINTS ============

def start_sync(db: Session, connection_id: int, schedule: ScheduleFn) -> dict:
    """
    Start a new cycle, unless one is already running.

    A connection left in 'error' with a resume token continues that cycle
    (same page, same failure bookkeeping); otherwise a fresh cycle begins.

    Returns:
        {"started": bool, "message": str}

    Raises:
        NotFoundError: Unknown connection
        AuthError / ProviderError: Token refresh or label lookup failed
            (status is left unchanged, the cycle never started)
    """
    connection = db_service.get_connection(db, connection_id)
    if connection is None:
        raise NotFoundError(f"Connection {connection_id} not found")

    if connection.sync_status == SyncStatus.SYNCING.value:
        logger.info(f"Connection {connection_id}: sync already in progress")
        return {"started": False, "message": ALREADY_SYNCING_MESSAGE}

    if connection.sync_status in (SyncStatus.DELETING.value, SyncStatus.RESETTING.value):
        return {"started": False, "message": f"Connection is {connection.sync_status}"}

    access_token = ensure_access_token(db, connection)
    label = gmail_service.get_label_info(access_token, connection.mailbox_folder)

    # Progress counts every witness, so re-runs resume from the real figure
    already_synced = db_service.count_synced(db, connection_id)
    total = max(int(label["messagesTotal"] or 0), already_synced)
    now = utcnow()

    fields = {}
    if not connection.sync_page_token or connection.cycle_started_at is None:
        fields.update(cycle_started_at=now, messages_failed=0, sync_page_failed_ids=None)

    db_service.update_sync_status(
        db,
        connection,
        SyncStatus.SYNCING,
        total_messages_to_sync=total,
        messages_processed=already_synced,
        sync_started_at=now,
        last_error=None,
        progress_message=f"Starting sync of {total} messages...",
        **fields
    )

    schedule(config.FIRST_BATCH_DELAY_MS, connection_id)
    logger.info(f"🔄 Connection {connection_id}: sync started ({total} messages in {connection.mailbox_folder})")

    return {
        "started": True,
        "message": f"Started syncing {total} messages. Processing in background...",
    }


def cancel_sync(db: Session, connection_id: int) -> dict:
    """
    Stop a running cycle. The in-flight tick (if any) notices on its next
    status check; the following tick aborts.
    """
    connection = db_service.get_connection(db, connection_id)
    if connection is None:
        raise NotFoundError(f"Connection {connection_id} not found")

    if connection.sync_status != SyncStatus.SYNCING.value:
        return {"cancelled": False, "message": "No sync in progress"}

    db_service.update_sync_status(
        db,
        connection,
        SyncStatus.IDLE,
        last_error=CANCELLED_MESSAGE,
        progress_message=None,
        sync_page_token=None,
        sync_page_failed_ids=None,
        sync_started_at=None,
        cycle_started_at=None
    )
    logger.info(f"Connection {connection_id}: sync cancelled")
    return {"cancelled": True, "message": "Sync cancelled"}


def reset_sync(db: Session, connection_id: int) -> dict:
    """
    Unstick a connection without losing progress.

    Witnesses and addresses are kept; messages_processed is recomputed from
    the witnesses and the resume token is dropped.
    """
    connection = db_service.get_connection(db, connection_id)
    if connection is None:
        raise NotFoundError(f"Connection {connection_id} not found")

    if connection.sync_status in (SyncStatus.DELETING.value, SyncStatus.RESETTING.value):
        return {"reset": False, "message": f"Connection is {connection.sync_status}"}

    db_service.update_sync_status(
        db,
        connection,
        SyncStatus.IDLE,
        messages_processed=db_service.count_synced(db, connection_id),
        sync_page_token=None,
        sync_page_failed_ids=None,
        sync_started_at=None,
        cycle_started_at=None,
        progress_message=None,
        last_error=None
    )
    return {"reset": True, "message": "Sync reset"}


# ============ BATCH DRIVER ============

def _process_messages(
    db: Session,
    connection_id: int,
    access_token: str,
    message_ids: list[str],
    blocked_domains: set[str]
) -> BatchResult:
    """Fetch senders one by one; a failing message is skipped, not fatal."""
    result = BatchResult()

    for message_id in message_ids:
        try:
            details = gmail_service.get_message_sender(access_token, message_id)
        except (ProviderError, PerMessageError) as e:
            logger.warning(f"Failed to process message {message_id}: {e}")
            result.failed_ids.append(message_id)
            continue

        name, email = parse_email_address(details["from"])
        domain = get_domain(email)

        if not email or domain in blocked_domains:
            result.filtered += 1
        else:
            db_service.upsert_address(
                db,
                connection_id=connection_id,
                email=email,
                name=name,
                timestamp=details["timestamp"]
            )
            result.new_addresses += 1

        # Witness every fetched message, contributing or not
        result.fetched_ids.append(message_id)

    return result


def _reload(db: Session, connection_id: int) -> Optional[Connection]:
    """Fresh read of the connection (None if it was deleted meanwhile)."""
    db.expire_all()
    return db_service.get_connection(db, connection_id)


def _fail(db: Session, connection_id: int, error: Exception) -> None:
    """Move a still-syncing connection to 'error' with the failure text."""
    db.rollback()
    connection = _reload(db, connection_id)
    if connection is None:
        return

    db_service.update_sync_status_if(
        db,
        connection,
        SyncStatus.SYNCING,
        SyncStatus.ERROR,
        last_error=str(error) or type(error).__name__,
        progress_message=None
    )


def _status_changed(connection_id: int, written: int) -> dict:
    logger.info(f"Connection {connection_id}: status changed mid-batch, stopping")
    return {"status": "aborted", "reason": "status_changed", "processed": written}


def process_batch(db: Session, connection_id: int, schedule: ScheduleFn) -> dict:
    """
    Run one bounded batch tick for a connection.

    Safe to invoke twice or late: a connection that is gone or no longer
    'syncing' makes the tick a no-op. Status writes are conditional on the
    row still being 'syncing', so a cancel landing mid-tick wins.

    Returns:
        Dict with 'status' (aborted | continued | completed | error) and counts
    """
    connection = db_service.get_connection(db, connection_id)

    if connection is None:
        logger.info(f"Connection {connection_id} not found, skipping batch")
        return {"status": "aborted", "reason": "not_found"}

    if connection.sync_status != SyncStatus.SYNCING.value:
        logger.info(f"Connection {connection_id}: sync was cancelled or completed")
        return {"status": "aborted", "reason": connection.sync_status}

    try:
        access_token = ensure_access_token(db, connection)
        blocked_domains = db_service.get_filtered_domains(db, connection_id)
        page_failed = _page_failed_ids(connection)

        page = gmail_service.list_messages(
            access_token,
            connection.mailbox_folder,
            after=connection.last_sync_at,
            page_token=connection.sync_page_token
        )

        message_ids = [m["id"] for m in page["messages"]]
        synced_ids = db_service.check_synced_batch(db, connection_id, message_ids)
        plan = plan_page(
            message_ids,
            synced_ids,
            next_page_token=page.get("next_page_token"),
            current_page_token=connection.sync_page_token,
            failed_ids=page_failed
        )

        result = _process_messages(
            db, connection_id, access_token, plan.to_process, blocked_domains
        )
        written = db_service.mark_synced_batch(db, connection_id, result.fetched_ids)

        logger.info(
            f"Connection {connection_id}: page of {len(message_ids)} "
            f"({plan.skipped_synced} already synced, {plan.skipped_failed} failed earlier), "
            f"processed {len(result.fetched_ids)}, failed {len(result.failed_ids)}, "
            f"has_more={plan.has_more}"
        )

        # Cancelled, reset or deleted while this tick was running
        connection = _reload(db, connection_id)
        if connection is None or connection.sync_status != SyncStatus.SYNCING.value:
            return _status_changed(connection_id, written)

        processed = (connection.messages_processed or 0) + written
        total = max(connection.total_messages_to_sync or 0, processed)
        failed_total = (connection.messages_failed or 0) + len(result.failed_ids)

        if plan.has_more:
            # Failures stay skipped only while the same page is listed again
            carried = sorted(page_failed | set(result.failed_ids)) if plan.more_in_page else []
            pct = percent_complete(processed, total)

            updated = db_service.update_sync_status_if(
                db,
                connection,
                SyncStatus.SYNCING,
                SyncStatus.SYNCING,
                messages_processed=processed,
                total_messages_to_sync=total,
                messages_failed=failed_total,
                sync_page_token=plan.resume_token,
                sync_page_failed_ids=json.dumps(carried) if carried else None,
                progress_message=(
                    f"Syncing... {processed}/{total} ({pct}%) - "
                    f"Found {result.new_addresses} new addresses this batch"
                )
            )
            if not updated:
                return _status_changed(connection_id, written)

            schedule(config.BATCH_DELAY_MS, connection_id)
            return {
                "status": "continued",
                "processed": written,
                "failed": len(result.failed_ids),
                "new_addresses": result.new_addresses,
                "more_in_page": plan.more_in_page,
            }

        if failed_total:
            # Keep the old watermark so the failed messages are listed again
            watermark = connection.last_sync_at
            notice = f"{failed_total} messages could not be read and will be retried on the next sync"
        else:
            watermark = connection.cycle_started_at or utcnow()
            notice = None

        updated = db_service.update_sync_status_if(
            db,
            connection,
            SyncStatus.SYNCING,
            SyncStatus.IDLE,
            last_sync_at=watermark,
            messages_processed=processed,
            total_messages_to_sync=total,
            messages_failed=failed_total,
            sync_page_token=None,
            sync_page_failed_ids=None,
            sync_started_at=None,
            cycle_started_at=None,
            progress_message=None,
            last_error=notice
        )
        if not updated:
            return _status_changed(connection_id, written)

        logger.info(
            f"✅ Connection {connection_id}: sync complete "
            f"({processed} messages, {failed_total} failed)"
        )
        return {
            "status": "completed",
            "processed": written,
            "failed": len(result.failed_ids),
            "new_addresses": result.new_addresses,
        }

    except Exception as e:
        logger.error(f"❌ Connection {connection_id}: batch processing error: {e}", exc_info=True)
        _fail(db, connection_id, e)
        return {"status": "error", "error": str(e)}
