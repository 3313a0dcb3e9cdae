"""
Tests for the Gmail client wrappers (discovery client mocked).
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import httplib2
import pytest
from googleapiclient.errors import HttpError

from sendersync.errors import PerMessageError, ProviderError
from sendersync.services import gmail_service


def http_error(status, body=b'{"error": {"code": 429, "message": "rateLimitExceeded"}}'):
    return HttpError(httplib2.Response({"status": status}), body)


@pytest.fixture
def service(monkeypatch):
    fake = MagicMock()
    monkeypatch.setattr(gmail_service, "get_gmail_service", lambda token: fake)
    return fake


def test_build_search_query():
    assert gmail_service.build_search_query(None) == ""
    assert gmail_service.build_search_query(datetime(2024, 3, 7, 23, 59)) == "after:1709855940"


def test_build_search_query_is_timezone_independent():
    # Naive values are UTC; aware ones are converted
    plus_one = timezone(timedelta(hours=1))
    assert gmail_service.build_search_query(datetime(2024, 1, 2, 1, 0, tzinfo=plus_one)) == "after:1704153600"
    assert gmail_service.build_search_query(datetime(2024, 1, 2)) == "after:1704153600"


def test_list_messages_passes_label_query_and_token(service):
    service.users().messages().list().execute.return_value = {
        "messages": [{"id": "a", "threadId": "t"}],
        "nextPageToken": "next",
    }

    page = gmail_service.list_messages("tok", "Label_7", after=datetime(2024, 1, 2), page_token="cur")

    assert page == {"messages": [{"id": "a", "threadId": "t"}], "next_page_token": "next"}
    service.users().messages().list.assert_called_with(
        userId="me", labelIds=["Label_7"], maxResults=100, q="after:1704153600", pageToken="cur"
    )


def test_list_messages_last_empty_page(service):
    service.users().messages().list().execute.return_value = {"resultSizeEstimate": 0}

    assert gmail_service.list_messages("tok", "INBOX") == {"messages": [], "next_page_token": None}


def test_list_messages_error_keeps_status_and_body(service):
    service.users().messages().list().execute.side_effect = http_error(429)

    with pytest.raises(ProviderError) as exc:
        gmail_service.list_messages("tok", "INBOX")

    assert exc.value.status == 429
    assert "rateLimitExceeded" in exc.value.body


def test_get_message_sender(service):
    service.users().messages().get().execute.return_value = {
        "id": "m1",
        "internalDate": "1704067200000",
        "payload": {"headers": [
            {"name": "Subject", "value": "Hello"},
            {"name": "From", "value": "Jane <jane@x.com>"},
        ]},
    }

    details = gmail_service.get_message_sender("tok", "m1")

    assert details == {"id": "m1", "timestamp": datetime(2024, 1, 1, 0, 0), "from": "Jane <jane@x.com>"}


def test_get_message_sender_without_from_header(service):
    service.users().messages().get().execute.return_value = {
        "id": "m1", "internalDate": "1704067200000", "payload": {"headers": []}
    }

    assert gmail_service.get_message_sender("tok", "m1")["from"] == ""


def test_get_message_sender_malformed(service):
    service.users().messages().get().execute.return_value = {"id": "m1"}

    with pytest.raises(PerMessageError) as exc:
        gmail_service.get_message_sender("tok", "m1")
    assert exc.value.message_id == "m1"


def test_get_message_sender_http_error(service):
    service.users().messages().get().execute.side_effect = http_error(404, b"not found")

    with pytest.raises(ProviderError):
        gmail_service.get_message_sender("tok", "gone")


def test_get_label_info(service):
    service.users().labels().get().execute.return_value = {"id": "INBOX", "name": "INBOX", "messagesTotal": 42}

    assert gmail_service.get_label_info("tok", "INBOX")["messagesTotal"] == 42
