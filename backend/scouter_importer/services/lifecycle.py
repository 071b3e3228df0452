"""Operator actions over import jobs, validated against the job status."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from scouter_importer.core.exceptions import (
    DispatchError,
    DuplicateInsertRiskError,
    InvalidTransitionError,
)
from scouter_importer.db.models.import_job import ImportJob, ImportStatus
from scouter_importer.services.job_store import JobStore
from scouter_importer.services.progress_tracker import clear_progress, publish_progress
from scouter_importer.storage.file_storage import discard_staged_file

logger = logging.getLogger(__name__)

Dispatch = Callable[[str], None]

CANCEL_MESSAGE = "cancelled by user"
STALE_REASON = (
    "Worker stopped reporting progress (last update before {cutoff}); "
    "progress up to the last checkpoint was kept. Resume to continue."
)

ALLOWED_FROM: dict[str, frozenset[str]] = {
    "start": frozenset({ImportStatus.PENDING}),
    "pause": frozenset({ImportStatus.PROCESSING}),
    "resume": frozenset({ImportStatus.PAUSED}),
    "cancel": frozenset({ImportStatus.PENDING, ImportStatus.PROCESSING, ImportStatus.PAUSED}),
    "restart": frozenset({ImportStatus.FAILED, ImportStatus.PAUSED}),
    "reset": frozenset({ImportStatus.FAILED, ImportStatus.PAUSED}),
    "delete": ImportStatus.TERMINAL | {ImportStatus.PAUSED},
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _zeroed_counters() -> dict[str, Any]:
    return {
        "processed_rows": 0,
        "inserted_rows": 0,
        "failed_rows": 0,
        "error_message": None,
        "timeout_reason": None,
        "started_at": None,
        "completed_at": None,
    }


class LifecycleController:
    """State machine for import jobs.

    ``dispatch`` hands a job id to whatever runs the worker (a Celery task in
    production); it is called after the status change is committed.
    """

    def __init__(self, store: JobStore, dispatch: Dispatch):
        self.store = store
        self.dispatch = dispatch

    def _require(self, action: str, job_id: str) -> ImportJob:
        job = self.store.get(job_id)
        allowed = ALLOWED_FROM[action]
        if job.status not in allowed:
            raise InvalidTransitionError(action, job.status, allowed)
        return job

    def _dispatch(self, job_id: str) -> None:
        try:
            self.dispatch(job_id)
        except Exception as exc:
            logger.error(f"Error enqueueing import job {job_id}: {exc}", exc_info=True)
            # Nothing will pick the job up; surface that on the record
            self.store.update(
                job_id,
                status=ImportStatus.FAILED,
                error_message=f"Failed to enqueue: {exc}",
                completed_at=_now(),
            )
            raise DispatchError(job_id, str(exc)) from exc

    def create_job(
        self,
        *,
        file_name: str,
        file_size: int,
        file_path: str,
        target_table: str,
        column_mapping: dict[str, Any],
        job_id: str | None = None,
    ) -> ImportJob:
        fields: dict[str, Any] = {"id": job_id} if job_id else {}
        job = self.store.create(
            **fields,
            file_name=file_name,
            file_size=file_size,
            file_path=file_path,
            target_table=target_table,
            column_mapping=column_mapping,
            status=ImportStatus.PENDING,
        )
        publish_progress(job.id, 0.0, "Queued", status=ImportStatus.PENDING)
        logger.info(f"Created import job {job.id} for {file_name} -> {target_table}")
        return job

    def start(self, job_id: str) -> ImportJob:
        self._require("start", job_id)
        self.store.update(
            job_id,
            status=ImportStatus.PROCESSING,
            started_at=_now(),
            completed_at=None,
        )
        self._dispatch(job_id)
        logger.info(f"Started import job {job_id}")
        return self.store.get(job_id)

    def pause(self, job_id: str) -> ImportJob:
        self._require("pause", job_id)
        # Status only: the worker owns the counters
        self.store.update(job_id, status=ImportStatus.PAUSED, timeout_reason=None)
        logger.info(f"Pause requested for import job {job_id}")
        return self.store.get(job_id)

    def resume(self, job_id: str, *, keep_timeout_reason: bool = False) -> ImportJob:
        """Queue a paused job again from its checkpoint.

        ``keep_timeout_reason`` leaves the last timeout pause visible on the
        job; the worker uses it when it re-dispatches itself.
        """
        job = self._require("resume", job_id)
        fields = {"status": ImportStatus.PENDING, "error_message": None}
        if not keep_timeout_reason:
            fields["timeout_reason"] = None
        self.store.update(job_id, **fields)
        self._dispatch(job_id)
        logger.info(f"Resumed import job {job_id} from row {job.processed_rows}")
        return self.store.get(job_id)

    def cancel(self, job_id: str) -> ImportJob:
        self._require("cancel", job_id)
        self.store.update(
            job_id,
            status=ImportStatus.FAILED,
            error_message=CANCEL_MESSAGE,
            completed_at=_now(),
        )
        logger.info(f"Cancelled import job {job_id}; inserted rows are kept")
        return self.store.get(job_id)

    def restart(self, job_id: str, force: bool = False) -> ImportJob:
        """Reprocess the whole file from row 0.

        Rows a previous run inserted are not rolled back, so restarting a job
        that already inserted rows needs ``force=True``.
        """
        job = self._require("restart", job_id)
        if job.inserted_rows and not force:
            raise DuplicateInsertRiskError(job_id, job.inserted_rows)
        if job.inserted_rows:
            logger.warning(
                f"Force-restarting job {job_id}; {job.inserted_rows} row(s) may be inserted twice"
            )
        self.store.clear_errors(job_id)
        self.store.update(job_id, status=ImportStatus.PENDING, **_zeroed_counters())
        clear_progress(job_id)
        self._dispatch(job_id)
        logger.info(f"Restarted import job {job_id}")
        return self.store.get(job_id)

    def reset(self, job_id: str) -> ImportJob:
        self._require("reset", job_id)
        self.store.clear_errors(job_id)
        self.store.update(
            job_id,
            status=ImportStatus.PENDING,
            total_rows=None,
            **_zeroed_counters(),
        )
        clear_progress(job_id)
        logger.info(f"Reset import job {job_id}; waiting for an explicit start")
        return self.store.get(job_id)

    def delete(self, job_id: str) -> None:
        job = self._require("delete", job_id)
        file_path = job.file_path
        self.store.delete(job_id)
        discard_staged_file(job_id, file_path)
        clear_progress(job_id)

    def recover_stale_jobs(self, older_than: timedelta) -> list[str]:
        """Pause ``processing`` jobs whose worker vanished without a checkpoint."""
        cutoff = _now() - older_than
        recovered = []
        for job in self.store.list_stale(ImportStatus.PROCESSING, cutoff):
            self.store.update(
                job.id,
                status=ImportStatus.PAUSED,
                timeout_reason=STALE_REASON.format(cutoff=cutoff.isoformat(timespec="seconds")),
            )
            recovered.append(job.id)
            logger.warning(
                f"Recovered stale import job {job.id} at row {job.processed_rows}/{job.total_rows}"
            )
        return recovered
