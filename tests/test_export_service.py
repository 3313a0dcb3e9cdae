"""
Tests for the spreadsheet export (Sheets API mocked).
"""

from datetime import datetime
from unittest.mock import MagicMock

import pytest

from sendersync.errors import NotFoundError
from sendersync.services import db_service, export_service, sheets_service
from sendersync.services.export_service import build_row_index


@pytest.fixture
def sheets(monkeypatch):
    """Sheets client double; .rows is what get_sheet_data returns."""
    fake = MagicMock()
    fake.rows = []
    fake.get_sheet_data.side_effect = lambda token, sid, range_: fake.rows
    monkeypatch.setattr(sheets_service, "get_sheet_data", fake.get_sheet_data)
    monkeypatch.setattr(sheets_service, "append_rows", fake.append_rows)
    monkeypatch.setattr(sheets_service, "update_rows", fake.update_rows)
    return fake


def test_build_row_index_skips_header():
    values = [
        ["Email", "Name", "First Contact", "Email Count"],
        ["jane@x.com", "Jane", "2024-01-01", "2"],
        [],
        ["Bob@Y.com", "", "2024-01-02", "1"],
    ]
    assert build_row_index(values) == {"jane@x.com": 2, "bob@y.com": 4}


def test_build_row_index_without_header():
    assert build_row_index([["jane@x.com"]]) == {"jane@x.com": 1}


def test_first_export_writes_header_and_rows(db, connection, sheets):
    db_service.upsert_address(db, connection.id, "jane@x.com", "Jane", datetime(2024, 1, 5))

    result = export_service.export_to_sheets(db, connection.id)

    assert result == {"updated": 0, "appended": 1}
    sheets.append_rows.assert_called_once_with(
        "valid-token", "sheet-1", "Addresses!A:D",
        [["Email", "Name", "First Contact", "Email Count"], ["jane@x.com", "Jane", "2024-01-05", "1"]]
    )
    sheets.update_rows.assert_not_called()
    assert db_service.get_unexported_addresses(db, connection.id) == []


def test_existing_rows_are_overwritten(db, connection, sheets):
    db_service.upsert_address(db, connection.id, "jane@x.com", "Jane", datetime(2024, 1, 5))
    db_service.upsert_address(db, connection.id, "new@x.com", "", datetime(2024, 1, 6))
    sheets.rows = [
        ["Email", "Name", "First Contact", "Email Count"],
        ["other@x.com", "", "2023-01-01", "4"],
        ["jane@x.com", "Jane", "2024-01-05", "0"],
    ]

    result = export_service.export_to_sheets(db, connection.id)

    assert result == {"updated": 1, "appended": 1}
    sheets.update_rows.assert_called_once_with(
        "valid-token", "sheet-1",
        [{"range": "Addresses!A3:D3", "values": [["jane@x.com", "Jane", "2024-01-05", "1"]]}]
    )
    sheets.append_rows.assert_called_once_with(
        "valid-token", "sheet-1", "Addresses!A:D", [["new@x.com", "", "2024-01-06", "1"]]
    )


def test_unchanged_addresses_are_not_resent(db, connection, sheets):
    db_service.upsert_address(db, connection.id, "jane@x.com", "Jane", datetime(2024, 1, 5))
    export_service.export_to_sheets(db, connection.id)
    sheets.reset_mock()
    sheets.rows = [["Email"], ["jane@x.com"]]

    result = export_service.export_to_sheets(db, connection.id)

    assert result == {"updated": 0, "appended": 0}
    sheets.append_rows.assert_not_called()
    sheets.update_rows.assert_not_called()


def test_no_addresses_skips_the_sheet(db, connection, sheets):
    assert export_service.export_to_sheets(db, connection.id) == {"updated": 0, "appended": 0}
    sheets.get_sheet_data.assert_not_called()


def test_export_unknown_connection(db, sheets):
    with pytest.raises(NotFoundError):
        export_service.export_to_sheets(db, 999)
