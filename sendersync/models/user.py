"""
User model - one row per Google account that signed in.

The OAuth tokens granted at login are kept here so new connections
can be created without another consent round-trip.
"""

from sqlalchemy import Column, Integer, String, Text, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from sendersync.database import Base


class User(Base):
    """Google account owning one or more mailbox-to-sheet connections."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)

    # Google identity (unique - one user per Google account)
    google_id = Column(String(64), unique=True, nullable=False, index=True)
    email = Column(String(255), nullable=False)
    name = Column(String(255))

    # Tokens from the most recent sign-in
    access_token = Column(Text)
    refresh_token = Column(Text)
    token_expiry = Column(DateTime)

    created_at = Column(DateTime, server_default=func.now())

    connections = relationship("Connection", back_populates="user")

    def __repr__(self):
        return f"<User(id={self.id}, email={self.email})>"
