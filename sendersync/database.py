"""
SQLAlchemy engine, session factory and declarative base.

The API opens one session per request (get_db); Celery tasks open
their own from SessionLocal.
"""

from datetime import datetime, timezone

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from sendersync.config import DATABASE_URL


def _engine_kwargs(url: str) -> dict:
    # API threads and worker threads share the SQLite file
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


engine = create_engine(DATABASE_URL, echo=False, **_engine_kwargs(DATABASE_URL))

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


class Base(DeclarativeBase):
    pass


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def get_db():
    """Request-scoped session for FastAPI's Depends."""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
