"""Shared fixtures: SAVEPOINT-capable SQLite, an in-memory Redis and a fake dispatcher."""

import csv
import os
import tempfile

# Settings are cached on first use, so the environment must be ready before
# anything from scouter_importer is imported.
_UPLOADS = tempfile.mkdtemp(prefix="scouter-importer-uploads-")
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["UPLOADS_DIR"] = _UPLOADS
os.environ["REDIS_URL"] = "redis://localhost:6379/15"
os.environ["CREATE_TABLES_ON_STARTUP"] = "false"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event, func, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from scouter_importer.api.dependencies.db import (
    get_dispatcher,
    get_session,
    get_session_factory,
)
from scouter_importer.core.config import Settings
from scouter_importer.db.models import Lead
from scouter_importer.db.session import init_db
from scouter_importer.main import create_app
from scouter_importer.services import progress_tracker
from scouter_importer.services.job_store import JobStore
from scouter_importer.services.lifecycle import LifecycleController
from scouter_importer.storage import file_storage

LEAD_HEADER = ["Nome", "Idade", "Scouter", "Projeto", "Telefone", "Email"]
LEAD_MAPPING = {
    "name": {"primary": "Nome"},
    "age": {"primary": "Idade"},
    "scouter": {"primary": "Scouter"},
    "project": {"primary": "Projeto"},
    "phone": {"primary": "Telefone"},
    "email": {"primary": "Email"},
}


class FakeRedis:
    """The handful of Redis commands the importer uses, kept in a dict."""

    def __init__(self):
        self.data = {}

    def set(self, key, value, ex=None):
        self.data[key] = value
        return True

    def get(self, key):
        return self.data.get(key)

    def delete(self, *keys):
        removed = 0
        for key in keys:
            removed += 1 if self.data.pop(key, None) is not None else 0
        return removed

    def ping(self):
        return True

    def close(self):
        pass


class RecordingDispatcher:
    def __init__(self):
        self.calls = []

    def __call__(self, job_id):
        self.calls.append(job_id)


@pytest.fixture
def fake_redis(monkeypatch):
    fake = FakeRedis()
    monkeypatch.setattr(progress_tracker, "redis_client", fake)
    monkeypatch.setattr(file_storage, "create_redis_client", lambda url, **kwargs: fake)
    return fake


@pytest.fixture(autouse=True)
def _isolate_redis(fake_redis):
    """No test talks to a real Redis."""
    yield


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite only emits BEGIN lazily; take over so SAVEPOINTs nest correctly
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def store(session):
    return JobStore(session)


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def lifecycle(store, dispatcher):
    return LifecycleController(store, dispatcher)


@pytest.fixture
def settings():
    return Settings(
        chunk_size=10,
        max_execution_seconds=3600,
        timeout_threshold_ratio=0.8,
        auto_resume_on_timeout=True,
    )


@pytest.fixture
def client(session, dispatcher):
    app = create_app()

    def _session_override():
        yield session

    app.dependency_overrides[get_session] = _session_override
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    # Streams reuse the test session: StaticPool hands every session one connection
    app.dependency_overrides[get_session_factory] = lambda: (lambda: session)
    with TestClient(app) as test_client:
        yield test_client


def lead_rows(count, missing_name_at=()):
    """Build ``count`` lead rows; positions in ``missing_name_at`` get no name."""
    rows = []
    for position in range(count):
        rows.append(
            {
                "Nome": "" if position in missing_name_at else f"Lead {position}",
                "Idade": str(18 + position % 40),
                "Scouter": f"Scouter {position % 7}",
                "Projeto": "Projeto Verao",
                "Telefone": f"1199999{position:04d}",
                "Email": f"lead{position}@example.com",
            }
        )
    return rows


def write_csv(path, rows, header=LEAD_HEADER, delimiter=","):
    with open(path, "w", encoding="utf-8", newline="") as handle:
        writer = csv.DictWriter(handle, fieldnames=header, delimiter=delimiter)
        writer.writeheader()
        writer.writerows(rows)
    return path


def count_leads(session):
    return session.scalar(select(func.count()).select_from(Lead))


@pytest.fixture
def make_job(tmp_path, lifecycle):
    """Create a pending job over a freshly written lead CSV."""

    def _make(rows, mapping=None, target_table="leads", file_name="leads.csv"):
        path = write_csv(tmp_path / file_name, rows)
        return lifecycle.create_job(
            file_name=file_name,
            file_size=path.stat().st_size,
            file_path=str(path),
            target_table=target_table,
            column_mapping=mapping or LEAD_MAPPING,
        )

    return _make
