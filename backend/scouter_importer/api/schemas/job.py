"""Import job payloads."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class FieldSources(BaseModel):
    """Source columns for one target field, tried in priority order."""

    primary: str | None = None
    secondary: str | None = None
    tertiary: str | None = None


class ProgressRead(BaseModel):
    percent: float | None = Field(None, description="0-100, None until total_rows is known")
    elapsed_ms: int = 0
    rows_per_second: float = 0.0
    eta_seconds: float | None = Field(None, description="Advisory remaining time")


class RowErrorRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    row_index: int
    row_data: dict | None = None
    error_message: str
    created_at: datetime | None = None


class JobStatus(BaseModel):
    id: str
    status: str = Field(
        ...,
        description="pending|processing|paused|completed|completed_with_errors|failed",
    )
    file_name: str
    file_size: int | None = None
    target_table: str
    column_mapping: dict[str, FieldSources | str] | None = None
    total_rows: int | None = None
    processed_rows: int = 0
    inserted_rows: int = 0
    failed_rows: int = 0
    progress: ProgressRead
    message: str | None = None
    error_message: str | None = None
    timeout_reason: str | None = None
    errors: list[RowErrorRead] = Field(
        default_factory=list,
        description="First rows of the error history; see /errors for all of it",
    )
    error_count: int = 0
    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    updated_at: datetime | None = None


class RowErrorPage(BaseModel):
    job_id: str
    total: int
    offset: int
    limit: int
    items: list[RowErrorRead]
