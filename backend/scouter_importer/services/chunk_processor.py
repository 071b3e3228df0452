"""The import worker loop: checkpointed, cancellable, timeout-aware.

One call to ``ChunkProcessor.run`` is one execution window. It picks up
from the counters persisted on the job, inserts rows one at a time so a bad
row cannot sink its neighbours, and commits counters, error rows and sink
writes together at every chunk boundary. Between chunks it re-reads the job
status (pause/cancel) and asks the timeout guard whether another chunk
still fits in the window.
"""

from __future__ import annotations

import logging
import time
from contextlib import closing
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from celery.exceptions import SoftTimeLimitExceeded
from sqlalchemy.exc import SQLAlchemyError

from scouter_importer.core.exceptions import ImportPipelineError, RowRejectedError
from scouter_importer.db.models.import_job import ImportJob, ImportStatus
from scouter_importer.services import csv_ingest
from scouter_importer.services.chunk_planner import (
    DEFAULT_ROW_INDEX_OFFSET,
    Chunk,
    chunk_count,
    plan_chunks,
)
from scouter_importer.services.job_store import JobStore
from scouter_importer.services.progress_tracker import publish_progress
from scouter_importer.services.row_mapper import map_row
from scouter_importer.services.sink import Sink
from scouter_importer.services.timeout_guard import TimeoutGuard
from scouter_importer.utils.csv_validator import normalize_mapping

logger = logging.getLogger(__name__)

ALL_ROWS_FAILED = "all rows failed"
SOFT_LIMIT_REASON = (
    "Host soft time limit reached during a chunk; the unfinished chunk was "
    "rolled back and will be re-run on resume."
)
STALLED_REASON = (
    "Host soft time limit reached before the first chunk of this run could be "
    "committed; lower chunk_size before resuming."
)
RUNNABLE = frozenset({ImportStatus.PENDING, ImportStatus.PROCESSING})


@dataclass
class RunOutcome:
    job_id: str
    status: str
    processed_rows: int = 0
    inserted_rows: int = 0
    failed_rows: int = 0
    total_rows: int | None = None
    timed_out: bool = False
    stalled: bool = False
    chunks_committed: int = 0
    reason: str | None = None

    def as_dict(self) -> dict:
        return {
            "job_id": self.job_id,
            "status": self.status,
            "processed_rows": self.processed_rows,
            "inserted_rows": self.inserted_rows,
            "failed_rows": self.failed_rows,
            "total_rows": self.total_rows,
            "timed_out": self.timed_out,
            "stalled": self.stalled,
            "reason": self.reason,
        }


def snapshot_outcome(job: ImportJob) -> RunOutcome:
    """Outcome describing a job as it stands, without running it."""
    return RunOutcome(
        job_id=job.id,
        status=job.status,
        processed_rows=job.processed_rows or 0,
        inserted_rows=job.inserted_rows or 0,
        failed_rows=job.failed_rows or 0,
        total_rows=job.total_rows,
    )


def classify(total_rows: int, failed_rows: int) -> str:
    """Final status once every row has been attempted."""
    if total_rows > 0 and failed_rows >= total_rows:
        return ImportStatus.FAILED
    if failed_rows > 0:
        return ImportStatus.COMPLETED_WITH_ERRORS
    return ImportStatus.COMPLETED


class ChunkProcessor:
    def __init__(
        self,
        store: JobStore,
        sink: Sink,
        guard: TimeoutGuard,
        *,
        chunk_size: int = 100,
        row_index_offset: int = DEFAULT_ROW_INDEX_OFFSET,
        clock: Callable[[], float] = time.monotonic,
    ):
        if chunk_size <= 0:
            raise ValueError("Chunk size must be a positive integer")
        self.store = store
        self.sink = sink
        self.guard = guard
        self.chunk_size = chunk_size
        self.row_index_offset = row_index_offset
        self._clock = clock

    def run(self, job_id: str, file_path: Path) -> RunOutcome:
        job = self.store.get(job_id)
        if job.status not in RUNNABLE:
            logger.info(f"Job {job_id} is {job.status}; nothing to run")
            return snapshot_outcome(job)

        self.guard.start()
        outcome = RunOutcome(
            job_id=job_id,
            status=ImportStatus.PROCESSING,
            processed_rows=job.processed_rows or 0,
            inserted_rows=job.inserted_rows or 0,
            failed_rows=job.failed_rows or 0,
            total_rows=job.total_rows,
        )
        try:
            self._begin(job)
            mapping = normalize_mapping(job.column_mapping)
            if outcome.total_rows is None:
                outcome.total_rows = csv_ingest.count_rows(file_path)
                self.store.update(job_id, total_rows=outcome.total_rows)
            logger.info(
                f"Job {job_id}: {outcome.total_rows} rows, resuming at row "
                f"{outcome.processed_rows}, chunk size {self.chunk_size}"
            )
            return self._process(job_id, file_path, mapping, outcome)
        except SoftTimeLimitExceeded:
            self.store.session.rollback()
            if outcome.chunks_committed == 0:
                # Re-running would roll back to this same checkpoint again
                logger.error(f"Job {job_id} hit the soft time limit before committing a chunk")
                outcome.stalled = True
                return self._pause_for_timeout(job_id, outcome, STALLED_REASON)
            logger.warning(f"Job {job_id} hit the soft time limit mid-chunk; pausing")
            return self._pause_for_timeout(job_id, outcome, SOFT_LIMIT_REASON)
        except (ImportPipelineError, ValueError, SQLAlchemyError) as exc:
            self.store.session.rollback()
            logger.error(f"Import job {job_id} failed: {exc}", exc_info=True)
            return self._fail(job_id, outcome, exc)
        except Exception as exc:
            self.store.session.rollback()
            logger.error(f"Unexpected error in import job {job_id}: {exc}", exc_info=True)
            self._fail(job_id, outcome, exc)
            raise

    def _begin(self, job: ImportJob) -> None:
        if job.status == ImportStatus.PROCESSING:
            # Re-entrant: counters on the record already reflect committed work
            logger.info(f"Job {job.id} already processing; continuing from checkpoint")
            return
        fields = {"status": ImportStatus.PROCESSING}
        if job.started_at is None:
            fields["started_at"] = datetime.now(timezone.utc)
        self.store.update(job.id, **fields)

    def _process(self, job_id: str, file_path: Path, mapping: dict, outcome: RunOutcome) -> RunOutcome:
        total = outcome.total_rows or 0
        chunks_total = chunk_count(total, self.chunk_size)
        chunk_seconds: list[float] = []

        with closing(csv_ingest.iter_rows(file_path, start=outcome.processed_rows)) as rows:
            for chunk in plan_chunks(rows, self.chunk_size, start=outcome.processed_rows):
                status = self.store.get_status(job_id)
                if status != ImportStatus.PROCESSING:
                    logger.info(
                        f"Job {job_id} is now {status}; stopping before chunk {chunk.index + 1}"
                    )
                    outcome.status = status
                    return outcome

                # Every run commits at least one chunk so auto-resume always advances
                if chunk_seconds:
                    average = sum(chunk_seconds) / len(chunk_seconds)
                    if self.guard.should_pause(upcoming_seconds=average):
                        return self._pause_for_timeout(job_id, outcome, self.guard.reason())

                started = self._clock()
                self._run_chunk(job_id, chunk, mapping, outcome)
                chunk_seconds.append(self._clock() - started)

                logger.info(
                    f"Job {job_id} chunk {chunk.index + 1}/{chunks_total} done in "
                    f"{chunk_seconds[-1]:.2f}s ({outcome.processed_rows}/{total}, "
                    f"{outcome.failed_rows} failed so far)"
                )
                publish_progress(
                    job_id,
                    outcome.processed_rows / total if total else 1.0,
                    message=f"Chunk {chunk.index + 1}/{chunks_total}",
                    status=ImportStatus.PROCESSING,
                    meta={
                        "processed": outcome.processed_rows,
                        "total": total,
                        "inserted": outcome.inserted_rows,
                        "failed": outcome.failed_rows,
                    },
                )

        return self._finish(job_id, outcome)

    def _run_chunk(self, job_id: str, chunk: Chunk, mapping: dict, outcome: RunOutcome) -> None:
        """Insert the chunk row by row, then checkpoint counters and errors."""
        errors = []
        inserted = failed = 0
        for row_index, row in chunk.numbered(self.row_index_offset):
            record = map_row(row, mapping)
            try:
                self.sink.insert(record)
                inserted += 1
            except RowRejectedError as exc:
                failed += 1
                errors.append(
                    {"row_index": row_index, "row_data": record, "error_message": str(exc)}
                )

        self.store.checkpoint(
            job_id,
            processed_rows=outcome.processed_rows + len(chunk.rows),
            inserted_rows=outcome.inserted_rows + inserted,
            failed_rows=outcome.failed_rows + failed,
            errors=errors,
        )
        outcome.processed_rows += len(chunk.rows)
        outcome.inserted_rows += inserted
        outcome.failed_rows += failed
        outcome.chunks_committed += 1

    def _finish(self, job_id: str, outcome: RunOutcome) -> RunOutcome:
        status = self.store.get_status(job_id)
        if status != ImportStatus.PROCESSING:
            # An operator action landed during the last chunk; keep it
            outcome.status = status
            return outcome

        final = classify(outcome.total_rows or 0, outcome.failed_rows)
        fields = {"status": final, "completed_at": datetime.now(timezone.utc)}
        if final == ImportStatus.FAILED:
            fields["error_message"] = ALL_ROWS_FAILED
            outcome.reason = ALL_ROWS_FAILED
        self.store.update(job_id, **fields)
        outcome.status = final

        elapsed = self.guard.elapsed()
        rate = outcome.processed_rows / elapsed if elapsed > 0 else 0.0
        logger.info(
            f"Job {job_id} finished as {final}: {outcome.inserted_rows} inserted, "
            f"{outcome.failed_rows} failed, {rate:.1f} rows/s this run"
        )
        publish_progress(
            job_id,
            1.0,
            message="Import complete" if final != ImportStatus.FAILED else "Import failed",
            status=final,
            meta={
                "processed": outcome.processed_rows,
                "total": outcome.total_rows,
                "inserted": outcome.inserted_rows,
                "failed": outcome.failed_rows,
            },
        )
        return outcome

    def _operator_status(self, job_id: str, outcome: RunOutcome) -> str | None:
        """Status an operator committed while this run was working, if any."""
        status = self.store.get_status(job_id)
        if status == ImportStatus.PROCESSING:
            return None
        logger.info(f"Job {job_id} was set to {status} during the run; keeping it")
        outcome.status = status
        outcome.timed_out = False
        outcome.stalled = False
        return status

    def _pause_for_timeout(self, job_id: str, outcome: RunOutcome, reason: str) -> RunOutcome:
        if self._operator_status(job_id, outcome):
            return outcome
        self.store.update(job_id, status=ImportStatus.PAUSED, timeout_reason=reason)
        outcome.status = ImportStatus.PAUSED
        outcome.timed_out = True
        outcome.reason = reason
        logger.warning(f"Job {job_id} paused at row {outcome.processed_rows}: {reason}")
        publish_progress(
            job_id,
            outcome.processed_rows / outcome.total_rows if outcome.total_rows else 0.0,
            message="Paused before execution time limit",
            status=ImportStatus.PAUSED,
        )
        return outcome

    def _fail(self, job_id: str, outcome: RunOutcome, exc: BaseException) -> RunOutcome:
        if self._operator_status(job_id, outcome):
            outcome.reason = str(exc)
            return outcome
        message = f"{exc} (after {self.guard.elapsed():.1f}s)"
        self.store.update(
            job_id,
            status=ImportStatus.FAILED,
            error_message=message,
            completed_at=datetime.now(timezone.utc),
        )
        outcome.status = ImportStatus.FAILED
        outcome.reason = message
        publish_progress(
            job_id,
            outcome.processed_rows / outcome.total_rows if outcome.total_rows else 0.0,
            message="Import failed",
            status=ImportStatus.FAILED,
            meta={"error": str(exc)},
        )
        return outcome
