"""
SQLAlchemy models for sender sync.

This package contains:
- User: Google account that signed in
- Connection: Mailbox folder -> spreadsheet link, owns sync state
- SyncedMessage: Dedup witness per fetched Gmail message
- Address: Aggregated sender contact per connection
- FilteredDomain: Per-connection sender domain block-list
"""

from sendersync.models.user import User
from sendersync.models.connection import Connection, SyncStatus, SyncSchedule
from sendersync.models.synced_message import SyncedMessage
from sendersync.models.address import Address
from sendersync.models.filtered_domain import FilteredDomain

__all__ = [
    "User",
    "Connection",
    "SyncStatus",
    "SyncSchedule",
    "SyncedMessage",
    "Address",
    "FilteredDomain",
]
