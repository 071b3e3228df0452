"""CSV reading for chunked ingestion: headers, row counts and row streams."""

from __future__ import annotations

import csv
import logging
from contextlib import contextmanager
from itertools import islice
from pathlib import Path
from typing import Iterator

from scouter_importer.utils.csv_validator import ValidationError, validate_headers

logger = logging.getLogger(__name__)

CANDIDATE_DELIMITERS = (",", ";", "\t", "|")
# utf-8-sig strips a leading byte order mark
CSV_ENCODING = "utf-8-sig"


def detect_delimiter(header_line: str) -> str:
    """Pick the separator that splits the header line into the most columns."""
    best, best_count = ",", 0
    for candidate in CANDIDATE_DELIMITERS:
        count = len(header_line.split(candidate))
        if count > best_count:
            best, best_count = candidate, count
    return best


def _clean_row(raw: dict) -> dict[str, str]:
    cleaned: dict[str, str] = {}
    for key, value in raw.items():
        # Overflow cells beyond the header land under the None key
        if key is None:
            continue
        cleaned[key] = value.strip() if isinstance(value, str) else ""
    return cleaned


@contextmanager
def _open_reader(file_path: Path) -> Iterator[csv.DictReader]:
    try:
        with file_path.open("r", encoding=CSV_ENCODING, newline="") as handle:
            header_line = handle.readline()
            delimiter = detect_delimiter(header_line)
            handle.seek(0)
            reader = csv.DictReader(handle, delimiter=delimiter)
            if not reader.fieldnames:
                raise ValueError("CSV file appears to be empty or invalid")
            reader.fieldnames = [name.strip() for name in reader.fieldnames]
            try:
                validate_headers(reader.fieldnames)
            except ValidationError as e:
                raise ValueError(f"Invalid CSV headers: {str(e)}") from e
            yield reader
    except FileNotFoundError:
        raise ValueError(f"CSV file not found: {file_path}")
    except PermissionError:
        raise ValueError(f"Permission denied reading file: {file_path}")
    except UnicodeDecodeError as e:
        raise ValueError(f"File encoding error: {str(e)}") from e
    except csv.Error as e:
        raise ValueError(f"CSV parsing error: {str(e)}") from e


def _iter_records(reader: csv.DictReader) -> Iterator[dict[str, str]]:
    for raw in reader:
        row = _clean_row(raw)
        if not any(row.values()):
            continue
        yield row


def read_headers(file_path: Path) -> list[str]:
    """Return the trimmed header row of the CSV."""
    with _open_reader(file_path) as reader:
        return list(reader.fieldnames)


def count_rows(file_path: Path) -> int:
    """Return the total number of data rows in the CSV (excluding headers)."""
    with _open_reader(file_path) as reader:
        total = sum(1 for _ in _iter_records(reader))
    logger.info(f"Counted {total} data rows in {file_path.name}")
    return total


def iter_rows(file_path: Path, start: int = 0) -> Iterator[dict[str, str]]:
    """Yield parsed data rows in file order, skipping the first ``start`` rows.

    Rows are dicts of trimmed strings keyed by trimmed header names; blank
    lines are not data rows and never consume a position.
    """
    with _open_reader(file_path) as reader:
        yield from islice(_iter_records(reader), start, None)
