from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from rollup.db.base import Base
from rollup.db.dependencies import get_record_source
import rollup.models.entities  # noqa: F401
from rollup.main import create_app
from rollup.repositories.record_source import SqlRecordSource


@pytest.fixture()
def session_factory(tmp_path: Path) -> Generator[sessionmaker[Session], None, None]:
    # File-backed so concurrent fetches on worker threads each get a connection.
    engine = create_engine(
        f"sqlite+pysqlite:///{tmp_path / 'rollup.db'}",
        connect_args={"check_same_thread": False},
        future=True,
    )
    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    try:
        yield TestingSessionLocal
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def db_session(session_factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def record_source(session_factory: sessionmaker[Session]) -> SqlRecordSource:
    return SqlRecordSource(session_factory)


@pytest.fixture()
def client(session_factory: sessionmaker[Session]) -> Generator[TestClient, None, None]:
    app = create_app()

    def override_source() -> SqlRecordSource:
        return SqlRecordSource(session_factory)

    app.dependency_overrides[get_record_source] = override_source
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def seed(db: Session, *rows: object) -> None:
    db.add_all(rows)
    db.commit()
