"""Celery task wrapping one execution window of an import job."""

from __future__ import annotations

import logging

from scouter_importer.db.session import get_fresh_session
from scouter_importer.services.import_runner import run_import_job
from scouter_importer.workers.celery_app import IMPORT_QUEUE, celery_app

logger = logging.getLogger(__name__)


def enqueue_import(job_id: str) -> None:
    """Send a job to the imports queue."""
    # Explicit queue so routing does not depend on worker configuration
    process_import.apply_async(args=(job_id,), queue=IMPORT_QUEUE)


@celery_app.task(bind=True, name="scouter_importer.workers.tasks.process_import")
def process_import(self, job_id: str) -> dict | None:
    """Run an import job until it finishes, pauses or is cancelled."""
    logger.info(f"Worker {self.request.hostname} picked up import job {job_id}")
    session = get_fresh_session()
    try:
        outcome = run_import_job(session, job_id, enqueue_import)
    finally:
        session.close()
    return outcome.as_dict() if outcome else None
