"""
Connection model - one mailbox folder mirrored into one spreadsheet tab.

Besides the link settings, this row carries ALL continuation state of a
sync cycle (status, counters, resume token). Batch ticks hold nothing in
memory between runs; each one rebuilds its context from here.

Status lifecycle:
    idle -> syncing -> idle | error
    error -> syncing (retry)
    any -> deleting | resetting (teardown, driven by the deletion batches)
"""

from sqlalchemy import (
    Column, Integer, String, Text, Boolean,
    ForeignKey, DateTime
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from sendersync.database import Base
import enum


class SyncStatus(str, enum.Enum):
    """State-machine tag of a connection."""
    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"
    DELETING = "deleting"
    RESETTING = "resetting"


class SyncSchedule(str, enum.Enum):
    """How often the due-connection sweep starts a new cycle."""
    MANUAL = "manual"
    EVERY_15_MIN = "15min"
    HOURLY = "1hour"
    EVERY_4_HOURS = "4hours"
    DAILY = "daily"


class Connection(Base):
    __tablename__ = "connections"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)

    # ============ GOOGLE CREDENTIALS ============
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=False)
    token_expiry = Column(DateTime, nullable=False)

    # ============ SOURCE & TARGET ============
    mailbox_folder = Column(String(255), nullable=False)  # Gmail label id, e.g. "INBOX"
    sheets_id = Column(String(255), nullable=False)
    sheet_tab = Column(String(255), nullable=False)

    # ============ SCHEDULING ============
    sync_schedule = Column(String(20), nullable=False, default=SyncSchedule.MANUAL.value)
    is_active = Column(Boolean, nullable=False, default=True)

    # ============ SYNC STATE ============
    sync_status = Column(String(20), nullable=False, default=SyncStatus.IDLE.value, index=True)
    last_sync_at = Column(DateTime)  # start of the last cycle that completed without failures
    progress_message = Column(Text)  # running status line while syncing
    last_error = Column(Text)  # terminal failure / last user-facing notice

    # ============ CYCLE PROGRESS ============
    total_messages_to_sync = Column(Integer)
    messages_processed = Column(Integer)
    sync_page_token = Column(String(255))  # Gmail pageToken to resume listing
    # JSON list of ids that failed on the current (capped) page, skipped until it advances
    sync_page_failed_ids = Column(Text)
    messages_failed = Column(Integer)  # per-message failures in this cycle
    sync_started_at = Column(DateTime)
    # Becomes last_sync_at on a clean completion; kept when an errored cycle resumes
    cycle_started_at = Column(DateTime)

    created_at = Column(DateTime, server_default=func.now())

    user = relationship("User", back_populates="connections")

    def __repr__(self):
        return f"<Connection(id={self.id}, name={self.name}, status={self.sync_status})>"
