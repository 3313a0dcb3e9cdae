"""
Domain filter endpoints.

Senders from a filtered domain never become addresses; their messages
are still marked as synced.
"""

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from sendersync.database import get_db
from sendersync.services import db_service
from sendersync.api.v1.endpoints.connections import get_connection_or_404

router = APIRouter(tags=["Domain Filters"])


class DomainCreate(BaseModel):
    domain: str


class DomainBulkCreate(BaseModel):
    domains: list[str]


class DomainResponse(BaseModel):
    id: int
    connection_id: int
    domain: str

    class Config:
        from_attributes = True


class BulkResponse(BaseModel):
    added: int


@router.get("/connections/{connection_id}/domains", response_model=list[DomainResponse])
def list_domains(connection_id: int, db: Session = Depends(get_db)):
    get_connection_or_404(db, connection_id)
    return db_service.list_domains(db, connection_id)


@router.post("/connections/{connection_id}/domains", response_model=DomainResponse, status_code=201)
def add_domain(connection_id: int, payload: DomainCreate, db: Session = Depends(get_db)):
    """Add a domain (lowercased, trimmed). Existing entries are returned as-is."""
    get_connection_or_404(db, connection_id)
    try:
        return db_service.add_domain(db, connection_id, payload.domain)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


@router.post("/connections/{connection_id}/domains/bulk", response_model=BulkResponse)
def add_domains_bulk(connection_id: int, payload: DomainBulkCreate, db: Session = Depends(get_db)):
    """Add many domains, e.g. pasted one per line. Blanks and duplicates are skipped."""
    get_connection_or_404(db, connection_id)
    return BulkResponse(added=db_service.add_domains_bulk(db, connection_id, payload.domains))


@router.delete("/domains/{domain_id}", status_code=204)
def remove_domain(domain_id: int, db: Session = Depends(get_db)):
    if not db_service.remove_domain(db, domain_id):
        raise HTTPException(status_code=404, detail=f"Domain filter with ID {domain_id} not found")
