"""
Connection endpoints: CRUD plus the sync controls.

Sync controls:
- POST /connections/{id}/sync       start a cycle (no-op if one is running)
- POST /connections/{id}/cancel     stop the running cycle
- POST /connections/{id}/reset      unstick, keeping progress
- POST /connections/{id}/full-reset forget every synced message
- POST /connections/{id}/export     push addresses to the spreadsheet
- GET  /connections/{id}/progress   percent, ETA, stuck flag
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from sendersync import config
from sendersync.database import get_db
from sendersync.errors import AuthError, NotFoundError, ProviderError
from sendersync.services import (
    db_service, deletion_service, export_service, gmail_service, sync_engine
)
from sendersync.services.progress import sync_progress
from sendersync.tasks.sync_tasks import schedule_batch, schedule_delete

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/connections", tags=["Connections"])


# ============ Request / Response Schemas ============

class ConnectionCreate(BaseModel):
    user_id: int
    name: str = Field(..., min_length=1, max_length=255)
    mailbox_folder: str = "INBOX"
    sheets_id: str
    sheet_tab: str = config.DEFAULT_SHEET_TAB
    sync_schedule: str = "manual"


class ConnectionUpdate(BaseModel):
    name: Optional[str] = None
    mailbox_folder: Optional[str] = None
    sheets_id: Optional[str] = None
    sheet_tab: Optional[str] = None
    sync_schedule: Optional[str] = None
    is_active: Optional[bool] = None


class ConnectionResponse(BaseModel):
    id: int
    user_id: int
    name: str
    mailbox_folder: str
    sheets_id: str
    sheet_tab: str
    sync_schedule: str
    is_active: bool
    sync_status: str
    last_sync_at: Optional[datetime]
    progress_message: Optional[str]
    last_error: Optional[str]
    total_messages_to_sync: Optional[int]
    messages_processed: Optional[int]
    messages_failed: Optional[int]
    sync_started_at: Optional[datetime]

    class Config:
        from_attributes = True


class ActionResponse(BaseModel):
    """Acknowledgement of a sync control request."""
    ok: bool
    message: str


class ProgressResponse(BaseModel):
    connection_id: int
    sync_status: str
    messages_processed: int
    total_messages_to_sync: int
    percent_complete: int
    estimated_seconds_remaining: Optional[float]
    estimated_time_remaining: Optional[str]
    is_stuck: bool
    progress_message: Optional[str]
    last_error: Optional[str]


class ExportResponse(BaseModel):
    updated: int
    appended: int


class LabelResponse(BaseModel):
    id: str
    name: str
    type: str


# ============ Helpers ============

def get_connection_or_404(db: Session, connection_id: int):
    connection = db_service.get_connection(db, connection_id)
    if not connection:
        raise HTTPException(
            status_code=404,
            detail=f"Connection with ID {connection_id} not found"
        )
    return connection


def raise_for_sync_error(e: Exception):
    """Translate engine errors into HTTP errors."""
    if isinstance(e, NotFoundError):
        raise HTTPException(status_code=404, detail=str(e))
    if isinstance(e, AuthError):
        raise HTTPException(status_code=401, detail=str(e))
    if isinstance(e, ProviderError):
        raise HTTPException(status_code=502, detail=str(e))
    raise e


def validate_schedule(schedule: Optional[str]):
    if schedule is not None and schedule not in config.SYNC_SCHEDULES:
        raise HTTPException(
            status_code=422,
            detail=f"Unknown sync_schedule '{schedule}'. Use one of: {', '.join(config.SYNC_SCHEDULES)}"
        )


# ============ CRUD ============

@router.get("", response_model=list[ConnectionResponse])
def list_connections(user_id: int = Query(..., description="Owner of the connections"), db: Session = Depends(get_db)):
    """List a user's connections."""
    return db_service.list_connections(db, user_id)


@router.post("", response_model=ConnectionResponse, status_code=201)
def create_connection(payload: ConnectionCreate, db: Session = Depends(get_db)):
    """
    Create a mailbox -> spreadsheet connection.

    The user's OAuth tokens (from /auth/callback) are copied onto the
    connection, which refreshes them on its own from then on.
    """
    validate_schedule(payload.sync_schedule)

    user = db_service.get_user(db, payload.user_id)
    if not user:
        raise HTTPException(status_code=404, detail=f"User with ID {payload.user_id} not found")
    if not user.refresh_token:
        raise HTTPException(status_code=400, detail="User has no refresh token. Please sign in again.")

    connection = db_service.create_connection(
        db,
        user_id=user.id,
        name=payload.name,
        access_token=user.access_token or "",
        refresh_token=user.refresh_token,
        token_expiry=user.token_expiry or datetime.min,
        mailbox_folder=payload.mailbox_folder,
        sheets_id=payload.sheets_id,
        sheet_tab=payload.sheet_tab,
        sync_schedule=payload.sync_schedule
    )
    logger.info(f"Created connection {connection.id} for user {user.id}")
    return connection


@router.get("/{connection_id}", response_model=ConnectionResponse)
def get_connection(connection_id: int, db: Session = Depends(get_db)):
    return get_connection_or_404(db, connection_id)


@router.patch("/{connection_id}", response_model=ConnectionResponse)
def update_connection(connection_id: int, payload: ConnectionUpdate, db: Session = Depends(get_db)):
    """Update connection settings (only provided fields)."""
    connection = get_connection_or_404(db, connection_id)
    validate_schedule(payload.sync_schedule)
    return db_service.update_connection(db, connection, **payload.model_dump(exclude_unset=True))


@router.delete("/{connection_id}", response_model=ActionResponse, status_code=202)
def delete_connection(connection_id: int, db: Session = Depends(get_db)):
    """
    Delete a connection and everything synced for it.

    Runs in background batches; the connection shows status 'deleting'
    until the last batch removes it.
    """
    try:
        result = deletion_service.begin_delete(db, connection_id, schedule_delete)
    except NotFoundError as e:
        raise_for_sync_error(e)
    return ActionResponse(ok=result["started"], message=result["message"])


# ============ SYNC CONTROLS ============

@router.post("/{connection_id}/sync", response_model=ActionResponse)
def start_sync(connection_id: int, db: Session = Depends(get_db)):
    """Start a sync cycle. Returns immediately if one is already running."""
    try:
        result = sync_engine.start_sync(db, connection_id, schedule_batch)
    except (NotFoundError, AuthError, ProviderError) as e:
        raise_for_sync_error(e)
    return ActionResponse(ok=result["started"], message=result["message"])


@router.post("/{connection_id}/cancel", response_model=ActionResponse)
def cancel_sync(connection_id: int, db: Session = Depends(get_db)):
    try:
        result = sync_engine.cancel_sync(db, connection_id)
    except NotFoundError as e:
        raise_for_sync_error(e)
    return ActionResponse(ok=result["cancelled"], message=result["message"])


@router.post("/{connection_id}/reset", response_model=ActionResponse)
def reset_sync(connection_id: int, db: Session = Depends(get_db)):
    """Reset a stuck sync. Synced messages and addresses are kept."""
    try:
        result = sync_engine.reset_sync(db, connection_id)
    except NotFoundError as e:
        raise_for_sync_error(e)
    return ActionResponse(ok=result["reset"], message=result["message"])


@router.post("/{connection_id}/full-reset", response_model=ActionResponse, status_code=202)
def full_reset(connection_id: int, db: Session = Depends(get_db)):
    """Forget every synced message so the next cycle rescans the folder."""
    try:
        result = deletion_service.begin_full_reset(db, connection_id, schedule_delete)
    except NotFoundError as e:
        raise_for_sync_error(e)
    return ActionResponse(ok=result["started"], message=result["message"])


@router.post("/{connection_id}/export", response_model=ExportResponse)
def export(connection_id: int, db: Session = Depends(get_db)):
    """Write new/changed addresses to the connection's spreadsheet tab."""
    try:
        return export_service.export_to_sheets(db, connection_id)
    except (NotFoundError, AuthError, ProviderError) as e:
        raise_for_sync_error(e)


@router.get("/{connection_id}/progress", response_model=ProgressResponse)
def get_progress(connection_id: int, db: Session = Depends(get_db)):
    """Percent complete, estimated time remaining and the stuck flag."""
    connection = get_connection_or_404(db, connection_id)
    return sync_progress(connection)


@router.get("/{connection_id}/labels", response_model=list[LabelResponse])
def list_labels(connection_id: int, db: Session = Depends(get_db)):
    """Gmail labels available as the connection's mailbox folder."""
    connection = get_connection_or_404(db, connection_id)
    try:
        access_token = sync_engine.ensure_access_token(db, connection)
        return gmail_service.list_labels(access_token)
    except (AuthError, ProviderError) as e:
        raise_for_sync_error(e)
