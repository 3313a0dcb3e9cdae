"""
Tests for the store accessors: users, connections, witnesses, addresses, domains.
"""

from datetime import datetime

import pytest

from sendersync.models import SyncStatus, SyncedMessage, Address
from sendersync.services import db_service


class TestUsers:

    def test_upsert_keeps_refresh_token_when_not_returned(self, db, user):
        again = db_service.upsert_user(
            db, google_id="google-123", email="owner@example.com", name="Renamed",
            access_token="new-token", refresh_token=None
        )

        assert again.id == user.id
        assert again.name == "Renamed"
        assert again.access_token == "new-token"
        assert again.refresh_token == "user-refresh"


class TestConnections:

    def test_new_connection_is_idle_and_active(self, connection):
        assert connection.sync_status == SyncStatus.IDLE.value
        assert connection.is_active is True
        assert connection.messages_processed is None

    def test_update_connection_ignores_none(self, db, connection):
        db_service.update_connection(db, connection, name="Renamed", sheet_tab=None)

        assert connection.name == "Renamed"
        assert connection.sheet_tab == "Addresses"

    def test_update_connection_rejects_sync_state(self, db, connection):
        with pytest.raises(ValueError):
            db_service.update_connection(db, connection, sync_status="syncing")

    def test_update_sync_status_clears_fields_passed_as_none(self, db, connection):
        db_service.update_sync_status(db, connection, SyncStatus.SYNCING, sync_page_token="abc", last_error="x")
        db_service.update_sync_status(db, connection, SyncStatus.IDLE, last_error=None)

        assert connection.sync_status == "idle"
        assert connection.last_error is None
        assert connection.sync_page_token == "abc"

    def test_update_sync_status_rejects_unknown_field(self, db, connection):
        with pytest.raises(AttributeError):
            db_service.update_sync_status(db, connection, SyncStatus.IDLE, bogus=1)

    def test_update_sync_status_if_only_from_expected_status(self, db, connection):
        assert db_service.update_sync_status_if(
            db, connection, SyncStatus.SYNCING, SyncStatus.IDLE, last_error="late"
        ) is False
        assert connection.last_error is None

        db_service.update_sync_status(db, connection, SyncStatus.SYNCING)
        assert db_service.update_sync_status_if(
            db, connection, SyncStatus.SYNCING, SyncStatus.IDLE, messages_processed=3
        ) is True
        assert connection.sync_status == "idle"
        assert connection.messages_processed == 3

    def test_list_connections_per_user(self, db, user, make_connection):
        make_connection(name="A")
        make_connection(name="B")

        assert [c.name for c in db_service.list_connections(db, user.id)] == ["A", "B"]
        assert db_service.list_connections(db, user.id + 1) == []


class TestSyncedMessages:

    def test_check_synced_batch_returns_existing_subset(self, db, connection):
        db_service.mark_synced_batch(db, connection.id, ["a", "b"])

        assert db_service.check_synced_batch(db, connection.id, ["a", "c"]) == {"a"}
        assert db_service.check_synced_batch(db, connection.id, []) == set()

    def test_mark_synced_batch_skips_existing_and_duplicates(self, db, connection):
        assert db_service.mark_synced_batch(db, connection.id, ["a", "b", "a"]) == 2
        assert db_service.mark_synced_batch(db, connection.id, ["b", "c"]) == 1
        assert db_service.count_synced(db, connection.id) == 3

    def test_witnesses_are_scoped_per_connection(self, db, make_connection):
        first = make_connection()
        second = make_connection()
        db_service.mark_synced_batch(db, first.id, ["a"])

        assert db_service.check_synced_batch(db, second.id, ["a"]) == set()
        assert db_service.mark_synced_batch(db, second.id, ["a"]) == 1

    def test_mark_synced_batch_survives_concurrent_insert(self, db, connection, monkeypatch):
        db_service.mark_synced_batch(db, connection.id, ["a"])
        # Stale existence check, as if another tick wrote "a" in between
        monkeypatch.setattr(db_service, "check_synced_batch", lambda *args: set())

        assert db_service.mark_synced_batch(db, connection.id, ["a", "b"]) == 1
        assert db.query(SyncedMessage).count() == 2


class TestAddresses:

    def test_first_sighting(self, db, connection):
        address = db_service.upsert_address(db, connection.id, "Jane@X.com", "", datetime(2024, 1, 5))

        assert address.email == "jane@x.com"
        assert address.email_count == 1
        assert address.last_exported_count == 0
        assert address.first_contact_at == datetime(2024, 1, 5)

    def test_merge_increments_and_keeps_earliest_contact(self, db, connection):
        db_service.upsert_address(db, connection.id, "jane@x.com", "Jane", datetime(2024, 1, 5))
        db_service.upsert_address(db, connection.id, "jane@x.com", "", datetime(2023, 12, 1))
        address = db_service.upsert_address(db, connection.id, "JANE@x.com", "Jane Doe", datetime(2024, 2, 1))

        assert address.email_count == 3
        assert address.name == "Jane Doe"
        assert address.first_contact_at == datetime(2023, 12, 1)
        assert db_service.count_addresses(db, connection.id) == 1

    def test_empty_name_does_not_erase_known_name(self, db, connection):
        db_service.upsert_address(db, connection.id, "jane@x.com", "Jane", datetime(2024, 1, 5))
        address = db_service.upsert_address(db, connection.id, "jane@x.com", "  ", datetime(2024, 1, 6))

        assert address.name == "Jane"

    def test_unexported_and_mark_exported(self, db, connection):
        a = db_service.upsert_address(db, connection.id, "a@x.com", "", datetime(2024, 1, 1))
        db_service.upsert_address(db, connection.id, "b@x.com", "", datetime(2024, 1, 1))

        db_service.mark_exported(db, [a.id])
        assert [x.email for x in db_service.get_unexported_addresses(db, connection.id)] == ["b@x.com"]

        db_service.upsert_address(db, connection.id, "a@x.com", "", datetime(2024, 1, 2))
        assert {x.email for x in db_service.get_unexported_addresses(db, connection.id)} == {"a@x.com", "b@x.com"}

    def test_list_addresses_most_frequent_first(self, db, connection):
        db_service.upsert_address(db, connection.id, "a@x.com", "", datetime(2024, 1, 1))
        db_service.upsert_address(db, connection.id, "b@x.com", "", datetime(2024, 1, 1))
        db_service.upsert_address(db, connection.id, "b@x.com", "", datetime(2024, 1, 1))

        assert [x.email for x in db_service.list_addresses(db, connection.id)] == ["b@x.com", "a@x.com"]

    def test_to_row(self, db, connection):
        address = db_service.upsert_address(db, connection.id, "a@x.com", "Ann", datetime(2024, 3, 9, 17, 30))
        assert address.to_row() == ["a@x.com", "Ann", "2024-03-09", "1"]


class TestDomains:

    def test_add_domain_normalizes_and_dedups(self, db, connection):
        first = db_service.add_domain(db, connection.id, " @Spam.COM ")
        second = db_service.add_domain(db, connection.id, "spam.com")

        assert first.domain == "spam.com"
        assert second.id == first.id
        assert db_service.get_filtered_domains(db, connection.id) == {"spam.com"}

    def test_add_empty_domain_fails(self, db, connection):
        with pytest.raises(ValueError):
            db_service.add_domain(db, connection.id, "   ")

    def test_bulk_add_skips_blanks_and_duplicates(self, db, connection):
        db_service.add_domain(db, connection.id, "a.com")

        added = db_service.add_domains_bulk(db, connection.id, ["A.com", "", "b.com", "b.com", "c.com"])

        assert added == 2
        assert db_service.get_filtered_domains(db, connection.id) == {"a.com", "b.com", "c.com"}

    def test_remove_domain(self, db, connection):
        domain = db_service.add_domain(db, connection.id, "a.com")

        assert db_service.remove_domain(db, domain.id) is True
        assert db_service.remove_domain(db, domain.id) is False


class TestDeleteBatch:

    def test_delete_batch_is_bounded(self, db, connection):
        db_service.mark_synced_batch(db, connection.id, [f"m{i}" for i in range(5)])

        assert db_service.delete_batch(db, SyncedMessage, connection.id, 3) == 3
        assert db_service.delete_batch(db, SyncedMessage, connection.id, 3) == 2
        assert db_service.delete_batch(db, SyncedMessage, connection.id, 3) == 0

    def test_delete_batch_leaves_other_connections(self, db, make_connection):
        first = make_connection()
        second = make_connection()
        db_service.upsert_address(db, first.id, "a@x.com", "", datetime(2024, 1, 1))
        db_service.upsert_address(db, second.id, "a@x.com", "", datetime(2024, 1, 1))

        db_service.delete_batch(db, Address, first.id, 10)

        assert db_service.count_addresses(db, first.id) == 0
        assert db_service.count_addresses(db, second.id) == 1
