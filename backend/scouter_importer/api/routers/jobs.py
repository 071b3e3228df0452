"""Import job tracking and operator actions."""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import AsyncGenerator

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from fastapi.responses import StreamingResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from scouter_importer.api.dependencies.db import (
    get_lifecycle,
    get_session_factory,
    get_store,
)
from scouter_importer.api.routers.job_helpers import serialize_job
from scouter_importer.api.schemas.job import JobStatus, RowErrorPage, RowErrorRead
from scouter_importer.core.config import get_settings
from scouter_importer.core.exceptions import (
    DispatchError,
    DuplicateInsertRiskError,
    ImportPipelineError,
    InvalidTransitionError,
    JobNotFoundError,
)
from scouter_importer.db.models.import_job import ImportStatus
from scouter_importer.services.job_store import JobStore
from scouter_importer.services.lifecycle import LifecycleController
from scouter_importer.services.progress_tracker import fetch_progress

logger = logging.getLogger(__name__)

router = APIRouter()

# Polls without any counter change before a stream gives up on a stuck job
STREAM_IDLE_POLLS = 100


def to_http_error(exc: Exception) -> HTTPException:
    """Translate a domain error into the matching HTTP status."""
    if isinstance(exc, JobNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, DispatchError):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    if isinstance(exc, (InvalidTransitionError, DuplicateInsertRiskError)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, ImportPipelineError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    logger.error(f"Database error handling job request: {exc}", exc_info=True)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Failed to update import job",
    )


def _job_response(store: JobStore, job_id: str) -> JobStatus:
    job = store.get(job_id)
    return serialize_job(job, store, fetch_progress(job_id))


@router.get(
    "/",
    summary="List import jobs",
    response_model=list[JobStatus],
)
def list_jobs(
    limit: int = Query(50, ge=1, le=500, description="Maximum number of jobs to return"),
    status_filter: str | None = Query(
        None,
        alias="status",
        description="Filter by status (pending, processing, paused, completed, ...)",
    ),
    store: JobStore = Depends(get_store),
) -> list[JobStatus]:
    """Return import jobs, newest first, optionally filtered by status."""
    if status_filter and status_filter not in ImportStatus.ALL:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown status '{status_filter}'",
        )
    try:
        jobs = store.list_jobs(limit=limit, status=status_filter)
        return [serialize_job(job, store, fetch_progress(job.id)) for job in jobs]
    except SQLAlchemyError as exc:
        raise to_http_error(exc) from exc


@router.get(
    "/{job_id}",
    summary="Fetch a job with progress, ETA and its first row errors",
    response_model=JobStatus,
)
def get_job(job_id: str, store: JobStore = Depends(get_store)) -> JobStatus:
    try:
        return _job_response(store, job_id)
    except (ImportPipelineError, SQLAlchemyError) as exc:
        raise to_http_error(exc) from exc


@router.get(
    "/{job_id}/errors",
    summary="Page through the full row error history",
    response_model=RowErrorPage,
)
def list_job_errors(
    job_id: str,
    offset: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    store: JobStore = Depends(get_store),
) -> RowErrorPage:
    try:
        store.get(job_id)
        items = store.list_errors(job_id, offset=offset, limit=limit)
        total = store.count_errors(job_id)
    except (ImportPipelineError, SQLAlchemyError) as exc:
        raise to_http_error(exc) from exc
    return RowErrorPage(
        job_id=job_id,
        total=total,
        offset=offset,
        limit=limit,
        items=[RowErrorRead.model_validate(item) for item in items],
    )


@router.get(
    "/{job_id}/stream",
    summary="Server-Sent Events stream for real-time progress",
)
async def stream_job_progress(
    job_id: str,
    store: JobStore = Depends(get_store),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
) -> StreamingResponse:
    """Stream job snapshots via Server-Sent Events (SSE).

    One ``data:`` event per poll; the stream closes with ``event: close``
    once the job reaches a terminal status.

    Example client usage:
    ```javascript
    const eventSource = new EventSource('/api/jobs/{job_id}/stream');
    eventSource.onmessage = (e) => {
      const data = JSON.parse(e.data);
      console.log('Progress:', data.progress.percent, 'ETA:', data.progress.eta_seconds);
    };
    ```
    """
    try:
        store.get(job_id)
    except ImportPipelineError as exc:
        raise to_http_error(exc) from exc

    poll_seconds = get_settings().progress_poll_seconds

    async def event_generator() -> AsyncGenerator[str, None]:
        # The request-scoped session is closed once the endpoint returns
        session = session_factory()
        stream_store = JobStore(session)
        last_processed = -1
        idle_polls = 0
        try:
            while True:
                try:
                    job = stream_store.get(job_id)
                except JobNotFoundError:
                    yield "event: error\ndata: {\"error\": \"Job not found\"}\n\n"
                    break

                snapshot = serialize_job(job, stream_store, fetch_progress(job_id))
                yield f"data: {snapshot.model_dump_json()}\n\n"

                if snapshot.status in ImportStatus.TERMINAL:
                    yield "event: close\ndata: {}\n\n"
                    break

                if snapshot.processed_rows != last_processed:
                    last_processed = snapshot.processed_rows
                    idle_polls = 0
                else:
                    idle_polls += 1
                if idle_polls > STREAM_IDLE_POLLS:
                    yield "event: timeout\ndata: {}\n\n"
                    break

                # Each poll must see other sessions' commits
                session.expire_all()
                await asyncio.sleep(poll_seconds)
        finally:
            session.close()

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )


def _apply(action: Callable[[], object], store: JobStore, job_id: str) -> JobStatus:
    try:
        action()
        return _job_response(store, job_id)
    except (ImportPipelineError, SQLAlchemyError) as exc:
        raise to_http_error(exc) from exc


@router.post("/{job_id}/start", summary="Start a pending job", response_model=JobStatus)
def start_job(
    job_id: str,
    lifecycle: LifecycleController = Depends(get_lifecycle),
) -> JobStatus:
    return _apply(lambda: lifecycle.start(job_id), lifecycle.store, job_id)


@router.post("/{job_id}/pause", summary="Pause a running job", response_model=JobStatus)
def pause_job(
    job_id: str,
    lifecycle: LifecycleController = Depends(get_lifecycle),
) -> JobStatus:
    """Ask the worker to stop before its next chunk; the current chunk finishes."""
    return _apply(lambda: lifecycle.pause(job_id), lifecycle.store, job_id)


@router.post("/{job_id}/resume", summary="Resume a paused job", response_model=JobStatus)
def resume_job(
    job_id: str,
    lifecycle: LifecycleController = Depends(get_lifecycle),
) -> JobStatus:
    return _apply(lambda: lifecycle.resume(job_id), lifecycle.store, job_id)


@router.post("/{job_id}/cancel", summary="Cancel a job", response_model=JobStatus)
def cancel_job(
    job_id: str,
    lifecycle: LifecycleController = Depends(get_lifecycle),
) -> JobStatus:
    """Stop the job for good. Rows already inserted stay in the sink."""
    return _apply(lambda: lifecycle.cancel(job_id), lifecycle.store, job_id)


@router.post(
    "/{job_id}/restart",
    summary="Reprocess the whole file from the first row",
    response_model=JobStatus,
)
def restart_job(
    job_id: str,
    force: bool = Query(
        False,
        description="Restart even though earlier runs inserted rows (they may be inserted twice)",
    ),
    lifecycle: LifecycleController = Depends(get_lifecycle),
) -> JobStatus:
    return _apply(lambda: lifecycle.restart(job_id, force=force), lifecycle.store, job_id)


@router.post(
    "/{job_id}/reset",
    summary="Zero the counters and wait for an explicit start",
    response_model=JobStatus,
)
def reset_job(
    job_id: str,
    lifecycle: LifecycleController = Depends(get_lifecycle),
) -> JobStatus:
    return _apply(lambda: lifecycle.reset(job_id), lifecycle.store, job_id)


@router.delete(
    "/{job_id}",
    summary="Delete a finished or paused job",
    status_code=status.HTTP_204_NO_CONTENT,
)
def delete_job(
    job_id: str,
    lifecycle: LifecycleController = Depends(get_lifecycle),
) -> Response:
    try:
        lifecycle.delete(job_id)
    except (ImportPipelineError, SQLAlchemyError) as exc:
        raise to_http_error(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)
