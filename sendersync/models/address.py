"""
Address model - one aggregated contact per sender email and connection.

email_count grows by one per message seen from the sender;
last_exported_count is the email_count value last written to the
spreadsheet, so rows with email_count > last_exported_count are pending
export.
"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint
from sendersync.database import Base


class Address(Base):
    """Sender address harvested from the connection's mailbox folder."""
    __tablename__ = "addresses"

    id = Column(Integer, primary_key=True)
    connection_id = Column(Integer, ForeignKey("connections.id"), nullable=False, index=True)

    # Always lowercased and trimmed
    email = Column(String(320), nullable=False)
    # First non-empty display name seen, refreshed when a different one shows up
    name = Column(String(255), nullable=False, default="")

    first_contact_at = Column(DateTime, nullable=False)
    email_count = Column(Integer, nullable=False, default=1)
    last_exported_count = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("connection_id", "email", name="uq_address_connection_email"),
    )

    def __repr__(self):
        return f"<Address(email={self.email}, count={self.email_count})>"

    def to_row(self) -> list[str]:
        """Spreadsheet row: Email, Name, First Contact, Email Count."""
        return [
            self.email,
            self.name or "",
            self.first_contact_at.strftime("%Y-%m-%d") if self.first_contact_at else "",
            str(self.email_count),
        ]
