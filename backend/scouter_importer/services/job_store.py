"""Persistence for import job records and their per-row error history."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from scouter_importer.core.exceptions import JobNotFoundError
from scouter_importer.db.models.import_job import ImportJob, ImportJobError

logger = logging.getLogger(__name__)


class JobStore:
    """Update-by-id access to ``import_jobs``.

    Every write targets only the columns it names, so a status change from
    an operator and a counter checkpoint from the worker never overwrite
    each other's fields.
    """

    def __init__(self, session: Session):
        self.session = session

    def create(self, **fields: Any) -> ImportJob:
        job = ImportJob(**fields)
        try:
            self.session.add(job)
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise
        self.session.refresh(job)
        return job

    def get(self, job_id: str) -> ImportJob:
        job = self.session.get(ImportJob, job_id, populate_existing=True)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def get_status(self, job_id: str) -> str:
        """Read the committed status without going through the identity map."""
        status = self.session.execute(
            select(ImportJob.status).where(ImportJob.id == job_id)
        ).scalar_one_or_none()
        if status is None:
            raise JobNotFoundError(job_id)
        return status

    def update(self, job_id: str, **fields: Any) -> None:
        try:
            result = self.session.execute(
                update(ImportJob).where(ImportJob.id == job_id).values(**fields)
            )
            if result.rowcount == 0:
                raise JobNotFoundError(job_id)
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise

    def checkpoint(
        self,
        job_id: str,
        *,
        processed_rows: int,
        inserted_rows: int,
        failed_rows: int,
        errors: Iterable[dict[str, Any]] = (),
    ) -> None:
        """Commit counters and new error rows together with pending sink writes."""
        for error in errors:
            self.session.add(
                ImportJobError(
                    job_id=job_id,
                    row_index=error["row_index"],
                    row_data=error.get("row_data"),
                    error_message=error["error_message"],
                )
            )
        self.update(
            job_id,
            processed_rows=processed_rows,
            inserted_rows=inserted_rows,
            failed_rows=failed_rows,
        )

    def clear_errors(self, job_id: str) -> None:
        self.session.execute(delete(ImportJobError).where(ImportJobError.job_id == job_id))

    def list_errors(self, job_id: str, offset: int = 0, limit: int | None = None) -> list[ImportJobError]:
        query = (
            select(ImportJobError)
            .where(ImportJobError.job_id == job_id)
            .order_by(ImportJobError.row_index, ImportJobError.id)
            .offset(offset)
        )
        if limit is not None:
            query = query.limit(limit)
        return list(self.session.scalars(query).all())

    def count_errors(self, job_id: str) -> int:
        return self.session.execute(
            select(func.count()).select_from(ImportJobError).where(ImportJobError.job_id == job_id)
        ).scalar_one()

    def list_jobs(self, limit: int = 50, status: str | None = None) -> list[ImportJob]:
        query = select(ImportJob)
        if status:
            query = query.where(ImportJob.status == status)
        query = query.order_by(ImportJob.created_at.desc()).limit(limit)
        return list(self.session.scalars(query).all())

    def list_stale(self, status: str, updated_before: datetime) -> list[ImportJob]:
        query = select(ImportJob).where(
            ImportJob.status == status,
            ImportJob.updated_at < updated_before,
        )
        return list(self.session.scalars(query).all())

    def delete(self, job_id: str) -> None:
        job = self.get(job_id)
        try:
            self.clear_errors(job_id)
            self.session.delete(job)
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise
        logger.info(f"Deleted import job {job_id}")
