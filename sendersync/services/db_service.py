"""
Database service layer for sender sync.

This module provides the store accessors used by the sync engine and the API:
- Users and connections (connection status is written ONLY via update_sync_status
  and its compare-and-set twin update_sync_status_if)
- Dedup witnesses: batched existence checks and insert-on-success
- Address book: merge-on-upsert, export bookkeeping
- Domain filters: per-connection block-list
- Bounded batch deletes for teardown/reset
"""

from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import func, select, delete, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from sendersync.database import utcnow
from sendersync.models import (
    User, Connection, SyncStatus, SyncedMessage, Address, FilteredDomain
)
from sendersync.services.address_parser import normalize_email, normalize_domain


# ============ USER OPERATIONS ============

def upsert_user(
    db: Session,
    google_id: str,
    email: str,
    name: str,
    access_token: str = None,
    refresh_token: str = None,
    token_expiry: datetime = None
) -> User:
    """
    Create the user on first sign-in, refresh profile and tokens afterwards.

    Google only returns a refresh token on the first consent, so an
    existing refresh token is kept when none is supplied.
    """
    user = db.query(User).filter(User.google_id == google_id).first()

    if user is None:
        user = User(google_id=google_id)
        db.add(user)

    user.email = email
    user.name = name
    user.access_token = access_token or user.access_token
    user.refresh_token = refresh_token or user.refresh_token
    user.token_expiry = token_expiry or user.token_expiry

    db.commit()
    db.refresh(user)
    return user


def get_user(db: Session, user_id: int) -> Optional[User]:
    return db.get(User, user_id)


# ============ CONNECTION OPERATIONS ============

EDITABLE_CONNECTION_FIELDS = {
    "name", "mailbox_folder", "sheets_id", "sheet_tab", "sync_schedule", "is_active"
}


def get_connection(db: Session, connection_id: int) -> Optional[Connection]:
    """Get a single connection by ID."""
    return db.get(Connection, connection_id)


def list_connections(db: Session, user_id: int) -> list[Connection]:
    """Connections of one user, oldest first."""
    return db.query(Connection).filter(
        Connection.user_id == user_id
    ).order_by(Connection.id).all()


def create_connection(
    db: Session,
    user_id: int,
    name: str,
    access_token: str,
    refresh_token: str,
    token_expiry: datetime,
    mailbox_folder: str,
    sheets_id: str,
    sheet_tab: str,
    sync_schedule: str = "manual"
) -> Connection:
    """Create a connection. New connections start active and idle."""
    connection = Connection(
        user_id=user_id,
        name=name,
        access_token=access_token,
        refresh_token=refresh_token,
        token_expiry=token_expiry,
        mailbox_folder=mailbox_folder,
        sheets_id=sheets_id,
        sheet_tab=sheet_tab,
        sync_schedule=sync_schedule,
        is_active=True,
        sync_status=SyncStatus.IDLE.value
    )

    db.add(connection)
    db.commit()
    db.refresh(connection)
    return connection


def update_connection(db: Session, connection: Connection, **fields) -> Connection:
    """
    Update user-editable settings (only non-None values).

    Sync state is not editable here, see update_sync_status.
    """
    unknown = set(fields) - EDITABLE_CONNECTION_FIELDS
    if unknown:
        raise ValueError(f"Fields not editable: {', '.join(sorted(unknown))}")

    for key, value in fields.items():
        if value is not None:
            setattr(connection, key, value)

    db.commit()
    db.refresh(connection)
    return connection


def update_sync_status(db: Session, connection: Connection, sync_status: SyncStatus, **fields) -> Connection:
    """
    The single writer of Connection.sync_status.

    Any keyword passed is written as given, so passing None clears a
    field while omitting it leaves it untouched.
    """
    connection.sync_status = SyncStatus(sync_status).value

    for key, value in fields.items():
        if not hasattr(Connection, key):
            raise AttributeError(f"Connection has no field '{key}'")
        setattr(connection, key, value)

    db.commit()
    return connection


def update_sync_status_if(
    db: Session,
    connection: Connection,
    expected_status: SyncStatus,
    sync_status: SyncStatus,
    **fields
) -> bool:
    """
    Compare-and-set variant of update_sync_status.

    Runs one UPDATE ... WHERE sync_status = expected_status, so a cancel,
    reset or delete committed by another session is never overwritten.

    Returns:
        True if the row was still in expected_status and got updated
    """
    for key in fields:
        if not hasattr(Connection, key):
            raise AttributeError(f"Connection has no field '{key}'")

    result = db.execute(
        update(Connection)
        .where(
            Connection.id == connection.id,
            Connection.sync_status == SyncStatus(expected_status).value
        )
        .values(sync_status=SyncStatus(sync_status).value, **fields)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount > 0


def update_tokens(db: Session, connection: Connection, access_token: str, token_expiry: datetime) -> Connection:
    """Persist a refreshed access token right away so later ticks see it."""
    connection.access_token = access_token
    connection.token_expiry = token_expiry
    db.commit()
    return connection


def delete_connection_row(db: Session, connection: Connection) -> None:
    """Delete the connection itself. Related rows must already be gone."""
    db.delete(connection)
    db.commit()


# ============ SYNCED MESSAGE OPERATIONS ============

def check_synced_batch(db: Session, connection_id: int, message_ids: Iterable[str]) -> set[str]:
    """
    Batched dedup check.

    Returns:
        The subset of message_ids that already have a witness
    """
    message_ids = list(message_ids)
    if not message_ids:
        return set()

    rows = db.execute(
        select(SyncedMessage.message_id).where(
            SyncedMessage.connection_id == connection_id,
            SyncedMessage.message_id.in_(message_ids)
        )
    ).scalars()
    return set(rows)


def mark_synced_batch(db: Session, connection_id: int, message_ids: Iterable[str]) -> int:
    """
    Write dedup witnesses for fetched messages in one commit.

    Ids that already have a witness are skipped.

    Returns:
        Number of witnesses written
    """
    message_ids = list(dict.fromkeys(message_ids))
    if not message_ids:
        return 0

    existing = check_synced_batch(db, connection_id, message_ids)
    new_ids = [m for m in message_ids if m not in existing]
    now = utcnow()

    db.add_all([
        SyncedMessage(connection_id=connection_id, message_id=m, synced_at=now)
        for m in new_ids
    ])

    try:
        db.commit()
        return len(new_ids)
    except IntegrityError:
        # Race condition - another tick wrote some of them
        db.rollback()

    written = 0
    for message_id in new_ids:
        db.add(SyncedMessage(connection_id=connection_id, message_id=message_id, synced_at=now))
        try:
            db.commit()
            written += 1
        except IntegrityError:
            db.rollback()
    return written


def count_synced(db: Session, connection_id: int) -> int:
    """Number of dedup witnesses of a connection."""
    return db.query(func.count(SyncedMessage.id)).filter(
        SyncedMessage.connection_id == connection_id
    ).scalar()


# ============ ADDRESS OPERATIONS ============

def get_address(db: Session, connection_id: int, email: str) -> Optional[Address]:
    return db.query(Address).filter(
        Address.connection_id == connection_id,
        Address.email == normalize_email(email)
    ).first()


def upsert_address(
    db: Session,
    connection_id: int,
    email: str,
    name: str,
    timestamp: datetime
) -> Address:
    """
    Insert or merge a sender address.

    Upsert logic:
    - New email -> email_count=1, first_contact_at=timestamp, last_exported_count=0
    - Known email -> email_count += 1; name replaced only by a non-empty,
      different name; first_contact_at moves back if this message is older
    """
    email = normalize_email(email)
    name = (name or "").strip()

    existing = get_address(db, connection_id, email)

    if existing:
        existing.email_count += 1
        if name and name != existing.name:
            existing.name = name
        if timestamp and (existing.first_contact_at is None or timestamp < existing.first_contact_at):
            existing.first_contact_at = timestamp
        db.commit()
        return existing

    address = Address(
        connection_id=connection_id,
        email=email,
        name=name,
        first_contact_at=timestamp or utcnow(),
        email_count=1,
        last_exported_count=0
    )
    db.add(address)

    try:
        db.commit()
        return address
    except IntegrityError:
        # Race condition - inserted concurrently, merge into it instead
        db.rollback()
        return upsert_address(db, connection_id, email, name, timestamp)


def list_addresses(db: Session, connection_id: int) -> list[Address]:
    """All addresses of a connection, most frequent senders first."""
    return db.query(Address).filter(
        Address.connection_id == connection_id
    ).order_by(Address.email_count.desc(), Address.email).all()


def count_addresses(db: Session, connection_id: int) -> int:
    return db.query(func.count(Address.id)).filter(
        Address.connection_id == connection_id
    ).scalar()


def get_unexported_addresses(db: Session, connection_id: int) -> list[Address]:
    """Addresses whose count changed since the last export."""
    return db.query(Address).filter(
        Address.connection_id == connection_id,
        Address.email_count > Address.last_exported_count
    ).order_by(Address.id).all()


def mark_exported(db: Session, address_ids: Iterable[int]) -> int:
    """Set last_exported_count = email_count for the given addresses."""
    address_ids = list(address_ids)
    if not address_ids:
        return 0

    addresses = db.query(Address).filter(Address.id.in_(address_ids)).all()
    for address in addresses:
        address.last_exported_count = address.email_count

    db.commit()
    return len(addresses)


# ============ DOMAIN FILTER OPERATIONS ============

def list_domains(db: Session, connection_id: int) -> list[FilteredDomain]:
    return db.query(FilteredDomain).filter(
        FilteredDomain.connection_id == connection_id
    ).order_by(FilteredDomain.domain).all()


def get_filtered_domains(db: Session, connection_id: int) -> set[str]:
    """Block-set of a connection, loaded once per batch tick."""
    return {d.domain for d in list_domains(db, connection_id)}


def add_domain(db: Session, connection_id: int, domain: str) -> FilteredDomain:
    """Add a domain to the block-list; returns the existing row if present."""
    domain = normalize_domain(domain)
    if not domain:
        raise ValueError("Domain must not be empty")

    existing = db.query(FilteredDomain).filter(
        FilteredDomain.connection_id == connection_id,
        FilteredDomain.domain == domain
    ).first()

    if existing:
        return existing

    filtered = FilteredDomain(connection_id=connection_id, domain=domain)
    db.add(filtered)
    db.commit()
    db.refresh(filtered)
    return filtered


def add_domains_bulk(db: Session, connection_id: int, domains: Iterable[str]) -> int:
    """
    Add many domains at once, skipping blanks and duplicates.

    Returns:
        Number of domains added
    """
    existing = get_filtered_domains(db, connection_id)
    added = 0

    for domain in domains:
        normalized = normalize_domain(domain)
        if normalized and normalized not in existing:
            db.add(FilteredDomain(connection_id=connection_id, domain=normalized))
            existing.add(normalized)
            added += 1

    db.commit()
    return added


def get_domain(db: Session, domain_id: int) -> Optional[FilteredDomain]:
    return db.get(FilteredDomain, domain_id)


def remove_domain(db: Session, domain_id: int) -> bool:
    """Remove a domain filter. Returns False if it didn't exist."""
    filtered = db.get(FilteredDomain, domain_id)
    if filtered is None:
        return False

    db.delete(filtered)
    db.commit()
    return True


# ============ BATCH DELETES (teardown / reset) ============

def delete_batch(db: Session, model, connection_id: int, limit: int) -> int:
    """
    Delete at most `limit` rows of `model` belonging to a connection.

    Returns:
        Number of rows deleted (0 once drained)
    """
    ids = db.execute(
        select(model.id).where(model.connection_id == connection_id).limit(limit)
    ).scalars().all()

    if not ids:
        return 0

    db.execute(delete(model).where(model.id.in_(ids)))
    db.commit()
    return len(ids)
