"""
Google sign-in.

1. GET /auth/login     sends the browser to Google's consent screen
2. GET /auth/callback  Google comes back here with ?code=... (or ?error=...)
3. The code is traded for tokens and the user row is created or refreshed

The tokens stored on the user are copied onto every connection they create.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse, JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from sendersync import config
from sendersync.database import get_db
from sendersync.errors import AuthError
from sendersync.services import db_service, oauth_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])


class AuthSuccessResponse(BaseModel):
    success: bool
    message: str
    user_id: int
    email: str
    name: str | None = None
    has_refresh_token: bool = False


class UserResponse(BaseModel):
    id: int
    email: str
    name: str | None = None

    class Config:
        from_attributes = True


def get_redirect_uri(request: Request) -> str:
    """OAUTH_REDIRECT_URI if configured, else the callback on this host."""
    if config.OAUTH_REDIRECT_URI:
        return config.OAUTH_REDIRECT_URI
    return str(request.base_url).rstrip("/") + "/api/v1/auth/callback"


def auth_failure(status_code: int, error: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": error, "message": message}
    )


@router.get("/login")
def login(request: Request):
    """Redirect to Google. Offline access + forced consent so a refresh token is issued."""
    try:
        flow = oauth_service.get_oauth_flow(get_redirect_uri(request))
    except AuthError as e:
        raise HTTPException(status_code=500, detail=str(e))

    consent_url, _ = flow.authorization_url(
        access_type="offline",
        include_granted_scopes="true",
        prompt="consent"
    )
    return RedirectResponse(url=consent_url)


@router.get("/callback", response_model=AuthSuccessResponse)
def callback(request: Request, code: str = None, error: str = None, db: Session = Depends(get_db)):
    """Finish sign-in: store the user's tokens and profile."""
    if error:
        return auth_failure(400, error, "Google sign-in was denied or failed.")
    if not code:
        return auth_failure(400, "missing_code", "Callback received without an authorization code.")

    try:
        tokens = oauth_service.exchange_code_for_tokens(code, get_redirect_uri(request))
    except AuthError as e:
        logger.warning(f"OAuth callback failed: {e}")
        return auth_failure(401, str(e), "Could not trade the authorization code for tokens.")

    user = db_service.upsert_user(
        db,
        google_id=tokens["google_id"],
        email=tokens["email"],
        name=tokens["name"],
        access_token=tokens["access_token"],
        refresh_token=tokens["refresh_token"],
        token_expiry=tokens["token_expiry"]
    )
    logger.info(f"User {user.id} ({user.email}) signed in")

    return AuthSuccessResponse(
        success=True,
        message="✅ Signed in. Gmail and Sheets access granted.",
        user_id=user.id,
        email=user.email,
        name=user.name,
        has_refresh_token=bool(user.refresh_token)
    )


@router.get("/users/{user_id}", response_model=UserResponse)
def get_user(user_id: int, db: Session = Depends(get_db)):
    user = db_service.get_user(db, user_id)
    if not user:
        raise HTTPException(status_code=404, detail=f"User with ID {user_id} not found")
    return user
