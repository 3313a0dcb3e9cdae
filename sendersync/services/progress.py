"""
Progress, ETA and staleness estimates for a running sync.

Derived purely from the connection's counters and timestamps; nothing
here acts on a stuck sync, it is only reported so the user can reset it.
"""

from datetime import datetime
from typing import Optional

from sendersync import config
from sendersync.database import utcnow


def percent_complete(processed: Optional[int], total: Optional[int]) -> int:
    """round(100 * processed / total), 0 when total is unknown, clamped to 0-100."""
    if not total or total <= 0:
        return 0
    pct = round(100 * (processed or 0) / total)
    return max(0, min(100, pct))


def estimate_remaining_seconds(
    processed: Optional[int],
    total: Optional[int],
    started_at: Optional[datetime],
    now: Optional[datetime] = None
) -> Optional[float]:
    """
    Remaining time at the rate observed since the cycle started.

    Returns None when no rate is known yet (nothing processed, or no
    time elapsed).
    """
    if not processed or not total or started_at is None:
        return None

    elapsed = ((now or utcnow()) - started_at).total_seconds()
    if elapsed <= 0:
        return None

    rate = processed / elapsed
    return max(total - processed, 0) / rate


def is_stuck(
    sync_status: str,
    processed: Optional[int],
    total: Optional[int],
    started_at: Optional[datetime],
    now: Optional[datetime] = None,
    threshold_seconds: int = config.STUCK_THRESHOLD_SECONDS
) -> bool:
    """
    A sync counts as stuck when it is 'syncing' with a known total, has
    processed nothing, and started longer ago than the threshold.
    """
    if sync_status != "syncing" or not total or processed or started_at is None:
        return False
    return ((now or utcnow()) - started_at).total_seconds() > threshold_seconds


def format_duration(seconds: Optional[float]) -> Optional[str]:
    """Short human form: '45s', '3m 20s', '1h 5m'."""
    if seconds is None:
        return None

    seconds = int(round(seconds))
    if seconds < 60:
        return f"{seconds}s"
    minutes, secs = divmod(seconds, 60)
    if minutes < 60:
        return f"{minutes}m {secs}s"
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h {minutes}m"


def sync_progress(connection, now: Optional[datetime] = None) -> dict:
    """Progress snapshot of a connection for the API."""
    now = now or utcnow()
    processed = connection.messages_processed or 0
    total = connection.total_messages_to_sync or 0
    remaining = estimate_remaining_seconds(processed, total, connection.sync_started_at, now)

    return {
        "connection_id": connection.id,
        "sync_status": connection.sync_status,
        "messages_processed": processed,
        "total_messages_to_sync": total,
        "percent_complete": percent_complete(processed, total),
        "estimated_seconds_remaining": remaining,
        "estimated_time_remaining": format_duration(remaining),
        "is_stuck": is_stuck(connection.sync_status, processed, total, connection.sync_started_at, now),
        "progress_message": connection.progress_message,
        "last_error": connection.last_error,
    }
