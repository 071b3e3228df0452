"""Domain errors raised by the import pipeline and its lifecycle actions."""

from __future__ import annotations


class ImportPipelineError(Exception):
    """Base class for import job failures the API can translate."""


class JobNotFoundError(ImportPipelineError):
    def __init__(self, job_id: str):
        super().__init__(f"Import job {job_id} not found")
        self.job_id = job_id


class InvalidTransitionError(ImportPipelineError):
    """Raised when a lifecycle action is not allowed from the current status."""

    def __init__(self, action: str, status: str, allowed: frozenset[str] | set[str]):
        allowed_display = ", ".join(sorted(allowed)) or "none"
        super().__init__(
            f"Cannot {action} a job in status '{status}' (allowed from: {allowed_display})"
        )
        self.action = action
        self.status = status
        self.allowed = allowed


class DuplicateInsertRiskError(ImportPipelineError):
    """Restart would re-insert rows that a previous run already wrote."""

    def __init__(self, job_id: str, inserted_rows: int):
        super().__init__(
            f"Job {job_id} already inserted {inserted_rows} row(s); restarting "
            "would insert them again. Pass force=true to restart anyway."
        )
        self.job_id = job_id
        self.inserted_rows = inserted_rows


class UnknownTargetTableError(ImportPipelineError):
    def __init__(self, table_name: str, allowed: list[str]):
        super().__init__(
            f"Unknown target table '{table_name}' (allowed: {', '.join(allowed)})"
        )
        self.table_name = table_name


class RowRejectedError(ImportPipelineError):
    """A single row was refused by the sink; the run continues."""


class DispatchError(ImportPipelineError):
    """The job could not be handed to the background worker."""

    def __init__(self, job_id: str, reason: str):
        super().__init__(f"Failed to enqueue import job {job_id}: {reason}")
        self.job_id = job_id
