"""
Google OAuth credential provider.

- get_oauth_flow: consent flow used by /auth/login and /auth/callback
- exchange_code_for_tokens: authorization code -> tokens + Google profile
- refresh_access_token: refresh token -> fresh access token
"""

import logging
import os
from datetime import timedelta

from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request as GoogleRequest
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from sendersync import config
from sendersync.database import utcnow
from sendersync.errors import AuthError

logger = logging.getLogger(__name__)

# Google may grant previously granted scopes too (include_granted_scopes)
os.environ.setdefault("OAUTHLIB_RELAX_TOKEN_SCOPE", "1")


def _client_config() -> dict:
    return {
        "web": {
            "client_id": config.GOOGLE_CLIENT_ID,
            "client_secret": config.GOOGLE_CLIENT_SECRET,
            "auth_uri": "https://accounts.google.com/o/oauth2/auth",
            "token_uri": config.GOOGLE_TOKEN_URI,
        }
    }


def get_oauth_flow(redirect_uri: str) -> Flow:
    """
    Create OAuth flow with dynamic redirect URI.

    Uses GOOGLE_CLIENT_ID / GOOGLE_CLIENT_SECRET when set, otherwise the
    client-secrets file at GOOGLE_CREDENTIALS_FILE.

    Raises:
        AuthError: No OAuth client is configured
    """
    if config.GOOGLE_CLIENT_ID and config.GOOGLE_CLIENT_SECRET:
        return Flow.from_client_config(
            _client_config(),
            scopes=config.SCOPES,
            redirect_uri=redirect_uri
        )

    if not os.path.exists(config.GOOGLE_CREDENTIALS_FILE):
        raise AuthError("Google OAuth credentials not configured")

    return Flow.from_client_secrets_file(
        config.GOOGLE_CREDENTIALS_FILE,
        scopes=config.SCOPES,
        redirect_uri=redirect_uri
    )


def exchange_code_for_tokens(code: str, redirect_uri: str) -> dict:
    """
    Exchange an authorization code for tokens and fetch the user's profile.

    Returns:
        Dict with access_token, refresh_token, token_expiry, google_id,
        email and name
    """
    flow = get_oauth_flow(redirect_uri)

    try:
        flow.fetch_token(code=code)
    except Exception as e:
        raise AuthError(f"Token exchange failed: {e}") from e

    credentials = flow.credentials

    try:
        service = build("oauth2", "v2", credentials=credentials, cache_discovery=False)
        user_info = service.userinfo().get().execute()
    except HttpError as e:
        raise AuthError(f"Failed to fetch user info: {e}") from e

    return {
        "access_token": credentials.token,
        "refresh_token": credentials.refresh_token,
        "token_expiry": credentials.expiry or utcnow() + timedelta(hours=1),
        "google_id": user_info["id"],
        "email": user_info["email"],
        "name": user_info.get("name") or user_info["email"],
    }


def refresh_access_token(refresh_token: str) -> dict:
    """
    Trade a refresh token for a new access token.

    Args:
        refresh_token: Long-lived token stored on the connection

    Returns:
        Dict with 'access_token' and 'expires_in' (seconds)

    Raises:
        AuthError: Refresh token revoked/invalid or client not configured
    """
    if not config.GOOGLE_CLIENT_ID or not config.GOOGLE_CLIENT_SECRET:
        raise AuthError("Google OAuth credentials not configured")

    if not refresh_token:
        raise AuthError("No refresh token stored. Please reconnect the account.")

    creds = Credentials(
        token=None,
        refresh_token=refresh_token,
        token_uri=config.GOOGLE_TOKEN_URI,
        client_id=config.GOOGLE_CLIENT_ID,
        client_secret=config.GOOGLE_CLIENT_SECRET,
    )

    try:
        creds.refresh(GoogleRequest())
    except (RefreshError, TransportError) as e:
        logger.warning(f"Token refresh failed: {e}")
        raise AuthError(f"Token refresh failed: {e}") from e

    # google-auth reports expiry as naive UTC
    expires_in = 3600
    if creds.expiry:
        expires_in = max(int((creds.expiry - utcnow()).total_seconds()), 0)

    return {
        "access_token": creds.token,
        "expires_in": expires_in,
    }
