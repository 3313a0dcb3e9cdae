"""
Spreadsheet discovery endpoints used while setting up a connection.

These act with the signed-in user's tokens (not a connection's), since
the connection doesn't exist yet.
"""

from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from sendersync import config
from sendersync.database import get_db, utcnow
from sendersync.errors import AuthError, ProviderError
from sendersync.services import db_service, oauth_service, sheets_service
from sendersync.api.v1.endpoints.connections import raise_for_sync_error

router = APIRouter(prefix="/sheets", tags=["Sheets"])


class SpreadsheetResponse(BaseModel):
    id: str
    name: str


class SpreadsheetCreate(BaseModel):
    user_id: int
    title: str
    sheet_name: str = config.DEFAULT_SHEET_TAB


class TabCreate(BaseModel):
    user_id: int
    spreadsheet_id: str
    tab_name: str


class TabResponse(BaseModel):
    created: bool


def get_user_access_token(db: Session, user_id: int) -> str:
    """The user's access token, refreshed and saved when expired."""
    user = db_service.get_user(db, user_id)
    if not user:
        raise HTTPException(status_code=404, detail=f"User with ID {user_id} not found")

    if user.access_token and user.token_expiry and user.token_expiry > utcnow():
        return user.access_token

    refreshed = oauth_service.refresh_access_token(user.refresh_token)
    user.access_token = refreshed["access_token"]
    user.token_expiry = utcnow() + timedelta(seconds=refreshed["expires_in"])
    db.commit()
    return user.access_token


@router.get("/spreadsheets", response_model=list[SpreadsheetResponse])
def list_spreadsheets(user_id: int = Query(...), db: Session = Depends(get_db)):
    """Spreadsheets the user can pick as export target."""
    try:
        return sheets_service.list_spreadsheets(get_user_access_token(db, user_id))
    except (AuthError, ProviderError) as e:
        raise_for_sync_error(e)


@router.post("/spreadsheets", response_model=SpreadsheetResponse, status_code=201)
def create_spreadsheet(payload: SpreadsheetCreate, db: Session = Depends(get_db)):
    try:
        access_token = get_user_access_token(db, payload.user_id)
        return sheets_service.create_spreadsheet(access_token, payload.title, payload.sheet_name)
    except (AuthError, ProviderError) as e:
        raise_for_sync_error(e)


@router.post("/tabs", response_model=TabResponse)
def ensure_tab(payload: TabCreate, db: Session = Depends(get_db)):
    """Create the tab in an existing spreadsheet unless it is already there."""
    try:
        access_token = get_user_access_token(db, payload.user_id)
        created = sheets_service.ensure_sheet_tab(access_token, payload.spreadsheet_id, payload.tab_name)
    except (AuthError, ProviderError) as e:
        raise_for_sync_error(e)
    return TabResponse(created=created)
