"""Database models package."""
from scouter_importer.db.models.import_job import ImportJob, ImportJobError, ImportStatus
from scouter_importer.db.models.lead import Lead

__all__ = ["ImportJob", "ImportJobError", "ImportStatus", "Lead"]
