"""Durable record of one CSV import job and its per-row failures."""

import uuid

from sqlalchemy import BigInteger, Column, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from scouter_importer.db.base import Base, JSONType


class ImportStatus:
    PENDING = "pending"
    PROCESSING = "processing"
    PAUSED = "paused"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    FAILED = "failed"

    ALL = frozenset(
        {PENDING, PROCESSING, PAUSED, COMPLETED, COMPLETED_WITH_ERRORS, FAILED}
    )
    TERMINAL = frozenset({COMPLETED, COMPLETED_WITH_ERRORS, FAILED})
    # Statuses a polling client keeps refreshing
    ACTIVE = frozenset({PENDING, PROCESSING, PAUSED})


class ImportJob(Base):
    __tablename__ = "import_jobs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    file_name = Column(String(255), nullable=False)
    file_size = Column(BigInteger, nullable=False, default=0)
    file_path = Column(Text, nullable=False)
    target_table = Column(String(64), nullable=False)
    column_mapping = Column(JSONType, nullable=False)
    status = Column(String(32), nullable=False, default=ImportStatus.PENDING, index=True)
    total_rows = Column(Integer)
    processed_rows = Column(Integer, nullable=False, default=0)
    inserted_rows = Column(Integer, nullable=False, default=0)
    failed_rows = Column(Integer, nullable=False, default=0)
    error_message = Column(Text)
    timeout_reason = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    started_at = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    errors = relationship(
        "ImportJobError",
        order_by="ImportJobError.row_index",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class ImportJobError(Base):
    __tablename__ = "import_job_errors"

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(
        String(36),
        ForeignKey("import_jobs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    row_index = Column(Integer, nullable=False)
    row_data = Column(JSONType)
    error_message = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
