"""Destination tables that receive mapped rows, one insert at a time."""

from __future__ import annotations

import logging
from typing import Any, Protocol

from sqlalchemy import Table, insert
from sqlalchemy.exc import DisconnectionError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from scouter_importer.core.config import get_settings
from scouter_importer.core.exceptions import RowRejectedError, UnknownTargetTableError
from scouter_importer.db.base import Base

logger = logging.getLogger(__name__)

# Columns the database fills in; a mapping may not target them
MANAGED_COLUMNS = frozenset({"id", "created_at", "updated_at"})


class Sink(Protocol):
    def insert(self, record: dict[str, Any]) -> None:
        """Write one record or raise RowRejectedError."""


def resolve_target_table(name: str) -> Table:
    """Look up an allow-listed sink table on the shared metadata."""
    # Sink tables register themselves on Base.metadata when imported
    from scouter_importer.db import models  # noqa: F401

    allowed = get_settings().target_tables
    table = Base.metadata.tables.get(name)
    if name not in allowed or table is None:
        raise UnknownTargetTableError(name, allowed)
    return table


def writable_columns(table: Table) -> list[str]:
    return [column.name for column in table.columns if column.name not in MANAGED_COLUMNS]


def _describe(exc: SQLAlchemyError) -> str:
    origin = getattr(exc, "orig", None)
    message = str(origin) if origin is not None else str(exc)
    return message.strip().splitlines()[0] if message.strip() else exc.__class__.__name__


class TableSink:
    """Insert rows into a SQL table inside per-row savepoints.

    A rejected row only rolls back its own savepoint, so earlier rows of the
    chunk stay pending until the caller commits the checkpoint.
    """

    def __init__(self, session: Session, table: Table):
        self.session = session
        self.table = table

    def insert(self, record: dict[str, Any]) -> None:
        if not record:
            raise RowRejectedError("Row has no values for any mapped column")
        try:
            with self.session.begin_nested():
                self.session.execute(insert(self.table).values(**record))
        except (OperationalError, DisconnectionError):
            # Sink unreachable: not a row problem
            raise
        except SQLAlchemyError as exc:
            raise RowRejectedError(_describe(exc)) from exc
