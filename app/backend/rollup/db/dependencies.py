"""Database dependencies for FastAPI endpoints."""

from sqlalchemy.orm import Session, sessionmaker

from rollup.db.session import get_session_factory
from rollup.repositories.record_source import SqlRecordSource


def get_record_source() -> SqlRecordSource:
    """Record source opening one session per fetch."""

    factory: sessionmaker[Session] = get_session_factory()
    return SqlRecordSource(factory)
