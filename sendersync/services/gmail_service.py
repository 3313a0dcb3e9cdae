"""
Gmail API client for the sync engine (mailbox page fetcher).

Only two things are ever read from Gmail:
- paginated (id, threadId) listings of a label
- the From header + internalDate of a single message

Every function takes the connection's access token; token refresh is the
caller's job (see sync_engine.ensure_access_token).
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from sendersync import config
from sendersync.errors import ProviderError, PerMessageError

logger = logging.getLogger(__name__)


def get_gmail_service(access_token: str):
    """
    Creates an authenticated Gmail API service for a bearer token.
    """
    creds = Credentials(token=access_token)
    return build("gmail", "v1", credentials=creds, cache_discovery=False)


def _provider_error(e: HttpError) -> ProviderError:
    """Wrap an HttpError, keeping the upstream status and error body."""
    body = e.content.decode("utf-8", errors="ignore") if e.content else ""
    status = getattr(e.resp, "status", None)
    return ProviderError(f"Gmail API error: {body or e}", status=status, body=body)


def build_search_query(after: Optional[datetime] = None) -> str:
    """
    Gmail search query bounding the listing by time.

    Date operands (after:2024/1/2) are read in the mailbox's timezone, so
    the naive UTC watermark is sent as epoch seconds instead.
    """
    if after is None:
        return ""
    if after.tzinfo is None:
        after = after.replace(tzinfo=timezone.utc)
    return f"after:{int(after.timestamp())}"


def list_messages(
    access_token: str,
    folder_id: str,
    after: Optional[datetime] = None,
    page_token: Optional[str] = None
) -> dict:
    """
    List one page of message ids in a label.

    Args:
        access_token: OAuth access token
        folder_id: Gmail label id (e.g. "INBOX")
        after: Only list messages newer than this day (watermark)
        page_token: Continuation token from the previous page

    Returns:
        Dictionary with 'messages' ([{id, threadId}]) and
        'next_page_token' (None on the last page)
    """
    service = get_gmail_service(access_token)

    params = {
        "userId": "me",
        "labelIds": [folder_id],
        "maxResults": config.GMAIL_PAGE_SIZE,
    }
    query = build_search_query(after)
    if query:
        params["q"] = query
    if page_token:
        params["pageToken"] = page_token

    try:
        results = service.users().messages().list(**params).execute()
    except HttpError as e:
        raise _provider_error(e) from e

    return {
        "messages": results.get("messages", []),
        "next_page_token": results.get("nextPageToken"),
    }


def get_message_sender(access_token: str, message_id: str) -> dict:
    """
    Fetch sender metadata of a single message.

    Only the From header is requested (format=metadata), the body is
    never downloaded.

    Returns:
        Dictionary with 'id', 'timestamp' (naive UTC datetime) and 'from'

    Raises:
        ProviderError: Gmail returned a non-2xx response
        PerMessageError: Response is missing internalDate/payload
    """
    service = get_gmail_service(access_token)

    try:
        msg = service.users().messages().get(
            userId="me",
            id=message_id,
            format="metadata",
            metadataHeaders=["From"]
        ).execute()
    except HttpError as e:
        raise _provider_error(e) from e

    try:
        timestamp = datetime.fromtimestamp(
            int(msg["internalDate"]) / 1000, tz=timezone.utc
        ).replace(tzinfo=None)
        headers = msg.get("payload", {}).get("headers", [])
    except (KeyError, TypeError, ValueError) as e:
        raise PerMessageError(message_id, f"malformed metadata ({e})") from e

    sender = ""
    for h in headers:
        if h.get("name", "").lower() == "from":
            sender = h.get("value", "")
            break

    return {
        "id": msg.get("id", message_id),
        "timestamp": timestamp,
        "from": sender,
    }


def get_label_info(access_token: str, label_id: str) -> dict:
    """
    Label metadata, used for the message total of a cycle.

    Returns:
        Dictionary with 'id', 'name' and 'messagesTotal'
    """
    service = get_gmail_service(access_token)

    try:
        label = service.users().labels().get(userId="me", id=label_id).execute()
    except HttpError as e:
        raise _provider_error(e) from e

    return {
        "id": label.get("id", label_id),
        "name": label.get("name", label_id),
        "messagesTotal": label.get("messagesTotal", 0),
    }


def list_labels(access_token: str) -> list[dict]:
    """All labels of the mailbox: [{id, name, type}]."""
    service = get_gmail_service(access_token)

    try:
        results = service.users().labels().list(userId="me").execute()
    except HttpError as e:
        raise _provider_error(e) from e

    return [
        {"id": label["id"], "name": label.get("name", label["id"]), "type": label.get("type", "user")}
        for label in results.get("labels", [])
    ]
