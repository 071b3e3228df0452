"""Validate CSV headers and column mappings before an import run."""

from __future__ import annotations

from typing import Any, Iterable

SOURCE_PRIORITIES = ("primary", "secondary", "tertiary")


class ValidationError(ValueError):
    """Custom exception for CSV and mapping validation errors."""

    pass


def validate_headers(headers: list[str] | None) -> None:
    """Ensure the CSV has a usable header row."""
    if not headers or not any((header or "").strip() for header in headers):
        raise ValidationError("CSV requires a header row")


def normalize_mapping(mapping: dict[str, Any] | None) -> dict[str, dict[str, str]]:
    """Turn a column mapping into ``target -> {primary, secondary, tertiary}``.

    A plain string value is treated as a primary-only source. Blank sources
    are dropped; targets left without any source are dropped too.
    """
    if not mapping:
        raise ValidationError("Column mapping is empty; map at least one column")

    normalized: dict[str, dict[str, str]] = {}
    for target, sources in mapping.items():
        if not isinstance(target, str) or not target.strip():
            raise ValidationError("Column mapping contains an empty target field")
        if isinstance(sources, str):
            sources = {"primary": sources}
        elif not isinstance(sources, dict):
            raise ValidationError(
                f"Mapping for '{target}' must be a column name or a priority object"
            )
        cleaned = {
            priority: sources[priority].strip()
            for priority in SOURCE_PRIORITIES
            if isinstance(sources.get(priority), str) and sources[priority].strip()
        }
        if cleaned:
            normalized[target.strip()] = cleaned

    if not normalized:
        raise ValidationError("Column mapping is empty; map at least one column")
    return normalized


def validate_mapping(
    mapping: dict[str, Any] | None,
    headers: Iterable[str],
    target_columns: Iterable[str],
) -> dict[str, dict[str, str]]:
    """Check a mapping against the CSV header and the sink's writable columns."""
    normalized = normalize_mapping(mapping)

    header_set = {header.strip() for header in headers if header}
    column_set = set(target_columns)

    unknown_targets = sorted(target for target in normalized if target not in column_set)
    if unknown_targets:
        raise ValidationError(
            f"Unknown target field(s): {', '.join(unknown_targets)}"
        )

    missing_sources = sorted(
        {
            source
            for sources in normalized.values()
            for source in sources.values()
            if source not in header_set
        }
    )
    if missing_sources:
        raise ValidationError(
            f"Mapped column(s) not found in CSV header: {', '.join(missing_sources)}"
        )
    return normalized
