"""Engine and session factory configuration."""

from collections.abc import Generator
import logging

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DisconnectionError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from scouter_importer.core.config import get_settings
from scouter_importer.db.base import Base

logger = logging.getLogger(__name__)

settings = get_settings()


def build_engine(database_url: str) -> Engine:
    """Create an engine tuned for long-running worker sessions.

    pool_pre_ping tests connections before use, pool_recycle drops them
    after 30 minutes; TCP keepalives only apply to PostgreSQL.
    """
    if database_url.startswith("postgresql"):
        return create_engine(
            database_url,
            echo=False,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
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
    return create_engine(database_url, echo=False, future=True, pool_pre_ping=True)


engine = build_engine(settings.database_url)

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


def init_db(bind: Engine | None = None) -> None:
    """Create missing tables (import jobs, error history, sink tables)."""
    # Registers every model on Base.metadata
    from scouter_importer.db import models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)


def get_fresh_session() -> Session:
    """Open a worker session, disposing the pool once if connecting fails."""
    try:
        return SessionLocal()
    except (OperationalError, DisconnectionError) as e:
        logger.warning(f"Connection error creating session: {e}, retrying...")
        engine.dispose()
        return SessionLocal()


def get_db() -> Generator[Session, None, None]:
    """Yield a transactional session for request/worker lifecycles."""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
