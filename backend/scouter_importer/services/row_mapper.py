"""Apply a prioritized column mapping to one raw CSV row."""

from __future__ import annotations

from typing import Any, Mapping

from scouter_importer.utils.csv_validator import SOURCE_PRIORITIES, ValidationError


def _resolve(row: Mapping[str, Any], sources: Mapping[str, str] | str) -> Any:
    if isinstance(sources, str):
        sources = {"primary": sources}
    for priority in SOURCE_PRIORITIES:
        column = sources.get(priority)
        if not column:
            continue
        value = row.get(column)
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    return None


def map_row(row: Mapping[str, Any], mapping: Mapping[str, Any]) -> dict[str, Any]:
    """Build the target record for ``row``.

    For every target field the primary, secondary and tertiary source columns
    are tried in order and the first non-empty value wins. Targets that
    resolve to nothing are left out, and nothing outside ``mapping`` is
    ever emitted.
    """
    if not mapping:
        raise ValidationError("Column mapping is empty; map at least one column")

    record: dict[str, Any] = {}
    for target, sources in mapping.items():
        value = _resolve(row, sources)
        if value is not None:
            record[target] = value
    return record
