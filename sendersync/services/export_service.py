"""
Spreadsheet export: mirror the address book into the connection's tab.

Idempotent upsert keyed by email (column A):
- address already in the sheet -> its row is overwritten
- new address -> appended (header written first on an empty sheet)
Only addresses whose email_count moved past last_exported_count are sent.
Delivery is at-least-once: a crash after writing the sheet but before
mark_exported just rewrites the same rows next time.
"""

import logging

from sqlalchemy.orm import Session

from sendersync import config
from sendersync.errors import NotFoundError
from sendersync.services import db_service, sheets_service
from sendersync.services.sync_engine import ensure_access_token

logger = logging.getLogger(__name__)


def build_row_index(values: list[list[str]]) -> dict[str, int]:
    """
    Map lowercased email -> 1-indexed sheet row.

    A first row starting with "Email" is treated as the header.
    """
    start = 1 if values and values[0] and values[0][0] == config.SHEET_HEADER[0] else 0
    index = {}

    for i in range(start, len(values)):
        row = values[i]
        if row and row[0]:
            index[row[0].strip().lower()] = i + 1

    return index


def export_to_sheets(db: Session, connection_id: int) -> dict:
    """
    Push changed addresses of a connection to its spreadsheet tab.

    Returns:
        Dict with 'updated' and 'appended' row counts (header excluded)
    """
    connection = db_service.get_connection(db, connection_id)
    if connection is None:
        raise NotFoundError(f"Connection {connection_id} not found")

    access_token = ensure_access_token(db, connection)

    addresses = db_service.get_unexported_addresses(db, connection_id)
    if not addresses:
        return {"updated": 0, "appended": 0}

    tab = connection.sheet_tab
    existing = sheets_service.get_sheet_data(access_token, connection.sheets_id, f"{tab}!A:D")
    row_index = build_row_index(existing)

    updates, appends, exported_ids = [], [], []

    for address in addresses:
        row = address.to_row()
        existing_row = row_index.get(address.email.lower())

        if existing_row:
            updates.append({
                "range": f"{tab}!A{existing_row}:D{existing_row}",
                "values": [row],
            })
        else:
            appends.append(row)

        exported_ids.append(address.id)

    appended_count = len(appends)
    if not existing and appends:
        appends.insert(0, list(config.SHEET_HEADER))

    if updates:
        sheets_service.update_rows(access_token, connection.sheets_id, updates)

    if appends:
        sheets_service.append_rows(access_token, connection.sheets_id, f"{tab}!A:D", appends)

    db_service.mark_exported(db, exported_ids)

    logger.info(
        f"📊 Connection {connection_id}: exported {len(updates)} updated, "
        f"{appended_count} appended rows to {connection.sheets_id}/{tab}"
    )
    return {"updated": len(updates), "appended": appended_count}
