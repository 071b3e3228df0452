"""Request-scoped dependencies: DB session, job store and lifecycle controller."""

from collections.abc import Callable, Generator

from fastapi import Depends
from sqlalchemy.orm import Session

from scouter_importer.db.session import SessionLocal, get_db
from scouter_importer.services.job_store import JobStore
from scouter_importer.services.lifecycle import LifecycleController


def get_session() -> Generator[Session, None, None]:
    """FastAPI dependency that yields a managed SQLAlchemy session."""
    yield from get_db()


def get_dispatcher() -> Callable[[str], None]:
    """Hand job ids to the Celery imports queue."""
    # Imported lazily so the API can be loaded without a configured broker
    from scouter_importer.workers.tasks.import_leads import enqueue_import

    return enqueue_import


def get_store(db: Session = Depends(get_session)) -> JobStore:
    return JobStore(db)


def get_lifecycle(
    store: JobStore = Depends(get_store),
    dispatch: Callable[[str], None] = Depends(get_dispatcher),
) -> LifecycleController:
    return LifecycleController(store, dispatch)


def get_session_factory() -> Callable[[], Session]:
    """Session factory for streaming responses that outlive the request scope."""
    return SessionLocal
