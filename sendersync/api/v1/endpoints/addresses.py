"""
Harvested address endpoints (read-only).
"""

from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from sendersync.database import get_db
from sendersync.services import db_service
from sendersync.api.v1.endpoints.connections import get_connection_or_404

router = APIRouter(prefix="/connections/{connection_id}/addresses", tags=["Addresses"])


class AddressResponse(BaseModel):
    id: int
    email: str
    name: str
    first_contact_at: datetime
    email_count: int
    last_exported_count: int

    class Config:
        from_attributes = True


class CountResponse(BaseModel):
    count: int


@router.get("", response_model=list[AddressResponse])
def list_addresses(connection_id: int, db: Session = Depends(get_db)):
    """All addresses of a connection, most frequent senders first."""
    get_connection_or_404(db, connection_id)
    return db_service.list_addresses(db, connection_id)


@router.get("/count", response_model=CountResponse)
def count_addresses(connection_id: int, db: Session = Depends(get_db)):
    get_connection_or_404(db, connection_id)
    return CountResponse(count=db_service.count_addresses(db, connection_id))
