"""
Google Sheets / Drive API client used by the spreadsheet export.
"""

import logging

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from sendersync import config
from sendersync.errors import ProviderError

logger = logging.getLogger(__name__)


def get_sheets_service(access_token: str):
    """Creates an authenticated Sheets v4 service for a bearer token."""
    creds = Credentials(token=access_token)
    return build("sheets", "v4", credentials=creds, cache_discovery=False)


def get_drive_service(access_token: str):
    """Creates an authenticated Drive v3 service for a bearer token."""
    creds = Credentials(token=access_token)
    return build("drive", "v3", credentials=creds, cache_discovery=False)


def _provider_error(e: HttpError, api: str = "Sheets") -> ProviderError:
    body = e.content.decode("utf-8", errors="ignore") if e.content else ""
    status = getattr(e.resp, "status", None)
    return ProviderError(f"{api} API error: {body or e}", status=status, body=body)


def get_sheet_data(access_token: str, spreadsheet_id: str, range_: str) -> list[list[str]]:
    """
    Read cell values of a range.

    A missing tab/range (404) is reported as an empty sheet.
    """
    service = get_sheets_service(access_token)

    try:
        result = service.spreadsheets().values().get(
            spreadsheetId=spreadsheet_id,
            range=range_
        ).execute()
    except HttpError as e:
        if getattr(e.resp, "status", None) == 404:
            return []
        raise _provider_error(e) from e

    return result.get("values", [])


def append_rows(access_token: str, spreadsheet_id: str, range_: str, values: list[list[str]]) -> dict:
    """Append rows after the last non-empty row of the range."""
    service = get_sheets_service(access_token)

    try:
        return service.spreadsheets().values().append(
            spreadsheetId=spreadsheet_id,
            range=range_,
            valueInputOption="USER_ENTERED",
            insertDataOption="INSERT_ROWS",
            body={"values": values}
        ).execute()
    except HttpError as e:
        raise _provider_error(e) from e


def update_rows(access_token: str, spreadsheet_id: str, updates: list[dict]) -> dict:
    """
    Overwrite several ranges in one request.

    Args:
        updates: [{"range": "Tab!A5:D5", "values": [[...]]}, ...]
    """
    service = get_sheets_service(access_token)

    try:
        return service.spreadsheets().values().batchUpdate(
            spreadsheetId=spreadsheet_id,
            body={"valueInputOption": "USER_ENTERED", "data": updates}
        ).execute()
    except HttpError as e:
        raise _provider_error(e) from e


def ensure_sheet_tab(access_token: str, spreadsheet_id: str, tab_name: str) -> bool:
    """
    Create the tab if the spreadsheet doesn't have it yet.

    Returns:
        True if the tab was created, False if it already existed
    """
    service = get_sheets_service(access_token)

    try:
        meta = service.spreadsheets().get(
            spreadsheetId=spreadsheet_id,
            fields="sheets.properties.title"
        ).execute()

        existing_tabs = [s["properties"]["title"] for s in meta.get("sheets", [])]
        if tab_name in existing_tabs:
            return False

        service.spreadsheets().batchUpdate(
            spreadsheetId=spreadsheet_id,
            body={"requests": [{"addSheet": {"properties": {"title": tab_name}}}]}
        ).execute()
    except HttpError as e:
        raise _provider_error(e) from e

    logger.info(f"Created tab '{tab_name}' in spreadsheet {spreadsheet_id}")
    return True


def create_spreadsheet(access_token: str, title: str, sheet_name: str = None) -> dict:
    """Create a new spreadsheet with a single tab. Returns {id, name}."""
    service = get_sheets_service(access_token)

    try:
        data = service.spreadsheets().create(
            body={
                "properties": {"title": title},
                "sheets": [{"properties": {"title": sheet_name or config.DEFAULT_SHEET_TAB}}],
            },
            fields="spreadsheetId,properties.title"
        ).execute()
    except HttpError as e:
        raise _provider_error(e) from e

    return {"id": data["spreadsheetId"], "name": data["properties"]["title"]}


def list_spreadsheets(access_token: str) -> list[dict]:
    """Spreadsheets visible to the user via Drive: [{id, name}]."""
    service = get_drive_service(access_token)

    try:
        data = service.files().list(
            q="mimeType='application/vnd.google-apps.spreadsheet'",
            fields="files(id,name)"
        ).execute()
    except HttpError as e:
        raise _provider_error(e, api="Drive") from e

    return data.get("files", [])
