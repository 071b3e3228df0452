"""Shared helpers for shaping job responses."""
from __future__ import annotations

from scouter_importer.api.schemas.job import JobStatus, ProgressRead, RowErrorRead
from scouter_importer.core.config import get_settings
from scouter_importer.db.models.import_job import ImportJob
from scouter_importer.services.job_store import JobStore
from scouter_importer.services.progress_tracker import compute_progress


def serialize_job(
    job: ImportJob,
    store: JobStore,
    progress_payload: dict | None = None,
) -> JobStatus:
    """Combine the DB record with the cached progress message.

    Counters and status always come from the record; the Redis snapshot only
    contributes the human-readable message.
    """
    progress_payload = progress_payload or {}
    settings = get_settings()

    message = progress_payload.get("message")
    if not message:
        total_display = job.total_rows if job.total_rows is not None else "?"
        message = f"Processed {job.processed_rows or 0}/{total_display} rows"

    errors = store.list_errors(job.id, limit=settings.error_display_limit)

    return JobStatus(
        id=job.id,
        status=job.status,
        file_name=job.file_name,
        file_size=job.file_size,
        target_table=job.target_table,
        column_mapping=job.column_mapping,
        total_rows=job.total_rows,
        processed_rows=job.processed_rows or 0,
        inserted_rows=job.inserted_rows or 0,
        failed_rows=job.failed_rows or 0,
        progress=ProgressRead(**compute_progress(job).as_dict()),
        message=message,
        error_message=job.error_message,
        timeout_reason=job.timeout_reason,
        errors=[RowErrorRead.model_validate(error) for error in errors],
        error_count=store.count_errors(job.id),
        created_at=job.created_at,
        started_at=job.started_at,
        completed_at=job.completed_at,
        updated_at=job.updated_at,
    )
