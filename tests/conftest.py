# tests/conftest.py
"""Pytest configuration & shared fixtures.

- In-memory SQLite database per test
- FakeMailbox standing in for the Gmail API (patched onto gmail_service)
- RecordingScheduler standing in for Celery's delayed re-invocation
"""

import os

# Must be set before sendersync.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("GOOGLE_CLIENT_ID", "test-client-id")
os.environ.setdefault("GOOGLE_CLIENT_SECRET", "test-client-secret")
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")

from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from sendersync.database import Base, utcnow
from sendersync.errors import ProviderError
from sendersync.models import User, Connection, SyncedMessage, Address, FilteredDomain  # noqa: F401
from sendersync.services import db_service, gmail_service


# ===== DATABASE FIXTURES =====

@pytest.fixture
def test_engine():
    """Fresh in-memory database for every test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return sessionmaker(bind=test_engine, autoflush=False, autocommit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def user(db):
    return db_service.upsert_user(
        db,
        google_id="google-123",
        email="owner@example.com",
        name="Owner",
        access_token="user-token",
        refresh_token="user-refresh",
        token_expiry=utcnow() + timedelta(hours=1),
    )


@pytest.fixture
def make_connection(db, user):
    """Factory for connections with a valid (unexpired) token."""
    def _make(**overrides):
        fields = {
            "user_id": user.id,
            "name": "Inbox senders",
            "access_token": "valid-token",
            "refresh_token": "refresh-token",
            "token_expiry": utcnow() + timedelta(hours=1),
            "mailbox_folder": "INBOX",
            "sheets_id": "sheet-1",
            "sheet_tab": "Addresses",
            "sync_schedule": "manual",
        }
        fields.update(overrides)
        return db_service.create_connection(db, **fields)
    return _make


@pytest.fixture
def connection(make_connection):
    return make_connection()


# ===== GMAIL FAKE =====

class FakeMailbox:
    """
    In-memory Gmail label.

    Messages are listed newest first in pages of `page_size`; the page
    token is the offset of the next page. Like Gmail's after: query, a
    listing bounded by `after` only returns newer messages.
    """

    def __init__(self, page_size=100):
        self.page_size = page_size
        self.messages = []  # [(id, from_header, timestamp)]
        self.fail_ids = set()
        self.list_error = None
        self.fetch_counts = {}
        self.list_calls = []
        self.tokens_seen = []
        self.on_fetch = None

    def add(self, message_id, from_header, timestamp=None):
        self.messages.append((message_id, from_header, timestamp or datetime(2024, 1, 1, 12, 0)))

    def add_many(self, count, prefix="m", from_header="Sender <sender@example.com>"):
        for i in range(count):
            self.add(f"{prefix}{i}", from_header)

    def list_messages(self, access_token, folder_id, after=None, page_token=None):
        self.tokens_seen.append(access_token)
        self.list_calls.append({"folder_id": folder_id, "after": after, "page_token": page_token})
        if self.list_error:
            raise self.list_error

        listed = [m for m in self.messages if after is None or m[2] > after]
        offset = int(page_token) if page_token else 0
        page = listed[offset:offset + self.page_size]
        next_offset = offset + self.page_size

        return {
            "messages": [{"id": m[0], "threadId": f"t-{m[0]}"} for m in page],
            "next_page_token": str(next_offset) if next_offset < len(listed) else None,
        }

    def get_message_sender(self, access_token, message_id):
        self.tokens_seen.append(access_token)
        self.fetch_counts[message_id] = self.fetch_counts.get(message_id, 0) + 1
        if self.on_fetch:
            self.on_fetch(message_id)
        if message_id in self.fail_ids:
            raise ProviderError("Gmail API error: backend error", status=500, body="backend error")

        for mid, header, ts in self.messages:
            if mid == message_id:
                return {"id": mid, "timestamp": ts, "from": header}
        raise ProviderError("Gmail API error: not found", status=404, body="not found")

    def get_label_info(self, access_token, label_id):
        self.tokens_seen.append(access_token)
        return {"id": label_id, "name": label_id, "messagesTotal": len(self.messages)}

    def list_labels(self, access_token):
        return [{"id": "INBOX", "name": "INBOX", "type": "system"}]


@pytest.fixture
def mailbox(monkeypatch):
    fake = FakeMailbox()
    monkeypatch.setattr(gmail_service, "list_messages", fake.list_messages)
    monkeypatch.setattr(gmail_service, "get_message_sender", fake.get_message_sender)
    monkeypatch.setattr(gmail_service, "get_label_info", fake.get_label_info)
    monkeypatch.setattr(gmail_service, "list_labels", fake.list_labels)
    return fake


# ===== SCHEDULER FAKE =====

class RecordingScheduler:
    """Collects (delay_ms, connection_id) requests instead of queueing tasks."""

    def __init__(self):
        self.calls = []

    def __call__(self, delay_ms, connection_id):
        self.calls.append((delay_ms, connection_id))

    def pop(self):
        return self.calls.pop(0) if self.calls else None


@pytest.fixture
def scheduler():
    return RecordingScheduler()


@pytest.fixture
def run_until_idle(db, scheduler):
    """Run scheduled ticks of `tick_fn` until none is pending; returns the tick results."""
    def _run(tick_fn, max_ticks=50):
        results = []
        while scheduler.calls and len(results) < max_ticks:
            _, connection_id = scheduler.pop()
            results.append(tick_fn(db, connection_id, scheduler))
        return results
    return _run
