"""
FilteredDomain model - per-connection sender domain block-list.
"""

from sqlalchemy import Column, Integer, String, ForeignKey, UniqueConstraint
from sendersync.database import Base


class FilteredDomain(Base):
    __tablename__ = "filtered_domains"

    id = Column(Integer, primary_key=True)
    connection_id = Column(Integer, ForeignKey("connections.id"), nullable=False, index=True)
    domain = Column(String(255), nullable=False)  # lowercased, trimmed

    __table_args__ = (
        UniqueConstraint("connection_id", "domain", name="uq_filtered_connection_domain"),
    )

    def __repr__(self):
        return f"<FilteredDomain(connection={self.connection_id}, domain={self.domain})>"
