"""Endpoints for CSV upload orchestration."""

from __future__ import annotations

import json
import logging
import uuid

from fastapi import (
    APIRouter,
    Depends,
    File,
    Form,
    HTTPException,
    UploadFile,
    status,
)
from sqlalchemy.exc import SQLAlchemyError

from scouter_importer.api.dependencies.db import get_lifecycle
from scouter_importer.api.routers.job_helpers import serialize_job
from scouter_importer.api.routers.jobs import to_http_error
from scouter_importer.api.schemas.job import JobStatus
from scouter_importer.core.exceptions import ImportPipelineError
from scouter_importer.services import csv_ingest
from scouter_importer.services.lifecycle import LifecycleController
from scouter_importer.services.progress_tracker import fetch_progress
from scouter_importer.services.sink import resolve_target_table, writable_columns
from scouter_importer.storage.file_storage import (
    discard_staged_file,
    resolve_job_file,
    stage_upload,
)
from scouter_importer.utils.csv_validator import validate_mapping

logger = logging.getLogger(__name__)

router = APIRouter()


def _parse_mapping(raw: str) -> dict:
    try:
        mapping = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"column_mapping is not valid JSON: {exc.msg}",
        ) from exc
    if not isinstance(mapping, dict):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="column_mapping must be a JSON object of target -> sources",
        )
    return mapping


@router.post(
    "/",
    summary="Upload a CSV and create an import job",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=JobStatus,
)
def create_import(
    file: UploadFile = File(...),
    column_mapping: str = Form(..., description="JSON object: target field -> {primary, secondary, tertiary}"),
    target_table: str = Form("leads"),
    auto_start: bool = Form(True),
    lifecycle: LifecycleController = Depends(get_lifecycle),
) -> JobStatus:
    """Validate the file and mapping, stage the upload and (by default) start it."""
    if not file.filename:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Filename is required",
        )
    if not file.filename.lower().endswith(".csv"):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Only CSV uploads are supported",
        )

    mapping = _parse_mapping(column_mapping)
    try:
        table = resolve_target_table(target_table)
    except ImportPipelineError as exc:
        raise to_http_error(exc) from exc

    job_id = str(uuid.uuid4())
    try:
        staged_path = stage_upload(file.file, job_id, file.filename)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"File staging failed: {exc}",
        ) from exc

    local_path = resolve_job_file(job_id, staged_path, file.filename)
    try:
        headers = csv_ingest.read_headers(local_path)
        mapping = validate_mapping(mapping, headers, writable_columns(table))
    except ValueError as exc:
        discard_staged_file(job_id, staged_path)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc

    try:
        job = lifecycle.create_job(
            job_id=job_id,
            file_name=file.filename,
            file_size=local_path.stat().st_size if local_path.exists() else 0,
            file_path=staged_path,
            target_table=target_table,
            column_mapping=mapping,
        )
    except SQLAlchemyError as exc:
        discard_staged_file(job_id, staged_path)
        raise to_http_error(exc) from exc

    if auto_start:
        try:
            job = lifecycle.start(job.id)
        except (ImportPipelineError, SQLAlchemyError) as exc:
            raise to_http_error(exc) from exc

    logger.info(f"Accepted upload {file.filename} as job {job.id} (auto_start={auto_start})")
    return serialize_job(job, lifecycle.store, fetch_progress(job.id))
