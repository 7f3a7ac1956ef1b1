"""Engine and session factory bound to the configured database."""

from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from rollup.core.config import get_settings


@lru_cache
def get_session_factory() -> sessionmaker[Session]:
    """Create the engine lazily so importing the app does not need a driver."""

    engine = create_engine(get_settings().database_url, pool_pre_ping=True, future=True)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
