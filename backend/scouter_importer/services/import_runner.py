"""One execution window of an import job, independent of Celery."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable

from sqlalchemy.orm import Session

from scouter_importer.core.config import Settings, get_settings
from scouter_importer.core.exceptions import ImportPipelineError, JobNotFoundError
from scouter_importer.db.models.import_job import ImportStatus
from scouter_importer.services.chunk_processor import (
    RUNNABLE,
    ChunkProcessor,
    RunOutcome,
    snapshot_outcome,
)
from scouter_importer.services.job_store import JobStore
from scouter_importer.services.lifecycle import LifecycleController
from scouter_importer.services.sink import TableSink, resolve_target_table
from scouter_importer.services.timeout_guard import TimeoutGuard
from scouter_importer.storage.file_storage import discard_staged_file, resolve_job_file

logger = logging.getLogger(__name__)

FINISHED = frozenset({ImportStatus.COMPLETED, ImportStatus.COMPLETED_WITH_ERRORS})


def run_import_job(
    session: Session,
    job_id: str,
    dispatch: Callable[[str], None],
    *,
    settings: Settings | None = None,
    guard: TimeoutGuard | None = None,
) -> RunOutcome | None:
    """Run the worker for ``job_id`` and handle what happens after the window.

    A guard-induced pause is followed by a resume (re-dispatch) when
    ``auto_resume_on_timeout`` is set, unless an operator changed the job in
    the meantime or the run could not commit a single chunk. A finished job
    has its staged file removed. Returns None when the job no longer exists.
    """
    settings = settings or get_settings()
    store = JobStore(session)
    try:
        job = store.get(job_id)
    except JobNotFoundError:
        logger.warning(f"Import job {job_id} not found; skipping")
        return None

    if job.status not in RUNNABLE:
        logger.info(f"Import job {job_id} is {job.status}; nothing to run")
        return snapshot_outcome(job)

    try:
        table = resolve_target_table(job.target_table)
    except ImportPipelineError as exc:
        store.update(
            job_id,
            status=ImportStatus.FAILED,
            error_message=str(exc),
            completed_at=datetime.now(timezone.utc),
        )
        logger.error(f"Import job {job_id} cannot run: {exc}")
        return RunOutcome(job_id=job_id, status=ImportStatus.FAILED, reason=str(exc))

    staged_path = job.file_path
    file_path = resolve_job_file(job_id, staged_path, job.file_name)
    processor = ChunkProcessor(
        store,
        TableSink(session, table),
        guard or TimeoutGuard.from_settings(settings),
        chunk_size=settings.chunk_size,
        row_index_offset=settings.row_index_offset,
    )
    outcome = processor.run(job_id, file_path)

    if outcome.timed_out and outcome.stalled:
        logger.error(f"Job {job_id} left paused: {outcome.reason}")
    elif outcome.timed_out and settings.auto_resume_on_timeout:
        if _still_timeout_paused(store, job_id):
            logger.info(f"Re-dispatching job {job_id} after timeout pause")
            LifecycleController(store, dispatch).resume(job_id, keep_timeout_reason=True)
        else:
            outcome.status = store.get_status(job_id)
            outcome.timed_out = False
            logger.info(
                f"Job {job_id} is {outcome.status} after its timeout pause; not re-dispatching"
            )
    elif outcome.status in FINISHED:
        discard_staged_file(job_id, staged_path)
    return outcome


def _still_timeout_paused(store: JobStore, job_id: str) -> bool:
    # A user pause clears timeout_reason, a cancel moves the job to failed
    job = store.get(job_id)
    return job.status == ImportStatus.PAUSED and job.timeout_reason is not None
