"""Engine and session factory configuration."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
import logging

from sqlalchemy import Engine, create_engine
from sqlalchemy.exc import DisconnectionError, OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)


def create_db_engine(database_url: str) -> Engine:
    """Build an engine tuned for long-running worker sessions.

    PostgreSQL gets pre-ping, recycling and TCP keepalives; SQLite (tests,
    local tinkering) shares one connection across threads.
    """
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            echo=False,
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(
        database_url,
        echo=False,
        future=True,
        pool_pre_ping=True,  # Test connections before using
        pool_recycle=1800,  # Recycle connections after 30 minutes
        pool_size=5,
        max_overflow=10,
        connect_args={
            "connect_timeout": 10,
            "keepalives": 1,
            "keepalives_idle": 30,
            "keepalives_interval": 10,
            "keepalives_count": 5,
        },
    )


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


def get_fresh_session(factory: sessionmaker[Session]) -> Session:
    """Open a session, disposing the pool once if the first attempt hits a dead connection."""
    try:
        return factory()
    except (OperationalError, DisconnectionError) as e:
        logger.warning(f"Connection error creating session: {e}, retrying...")
        factory.kw["bind"].dispose()
        return factory()


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Iterator[Session]:
    """Yield a transactional session: commit on success, rollback on error."""
    db = get_fresh_session(factory)
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
