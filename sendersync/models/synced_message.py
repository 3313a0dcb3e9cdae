"""
SyncedMessage model - the dedup witness.

One row per (connection, Gmail message id) that was fetched. Rows are
never updated; their existence is what keeps a message from being
fetched twice. They are removed only by a full reset or teardown.
"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func
from sendersync.database import Base


class SyncedMessage(Base):
    __tablename__ = "synced_messages"

    id = Column(Integer, primary_key=True)
    connection_id = Column(Integer, ForeignKey("connections.id"), nullable=False, index=True)
    message_id = Column(String(64), nullable=False)
    synced_at = Column(DateTime, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("connection_id", "message_id", name="uq_synced_connection_message"),
    )

    def __repr__(self):
        return f"<SyncedMessage(connection={self.connection_id}, message_id={self.message_id})>"
