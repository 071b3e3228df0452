"""Partition parsed rows into ordered, fixed-size chunks."""

from __future__ import annotations

from dataclasses import dataclass
from itertools import islice
from typing import Iterable, Iterator

from scouter_importer.utils.batching import chunked

# Row 1 is the header line, so the first data row is reported as row 2
DEFAULT_ROW_INDEX_OFFSET = 2


@dataclass(frozen=True)
class Chunk:
    index: int
    start: int
    rows: list[dict]

    @property
    def stop(self) -> int:
        return self.start + len(self.rows)

    def numbered(self, offset: int = DEFAULT_ROW_INDEX_OFFSET) -> Iterator[tuple[int, dict]]:
        """Yield ``(row_number, row)`` pairs using the operator-facing numbering."""
        for position, row in enumerate(self.rows, start=self.start):
            yield row_number(position, offset), row


def row_number(position: int, offset: int = DEFAULT_ROW_INDEX_OFFSET) -> int:
    """Map a zero-based data row position to the number shown to operators."""
    return position + offset


def chunk_count(total_rows: int, chunk_size: int) -> int:
    if chunk_size <= 0:
        raise ValueError("Chunk size must be a positive integer")
    return -(-max(total_rows, 0) // chunk_size)


def chunk_bounds(total_rows: int, chunk_size: int, start: int = 0) -> list[tuple[int, int]]:
    """Return the ``[start, stop)`` ranges that ``plan_chunks`` will produce."""
    if chunk_size <= 0:
        raise ValueError("Chunk size must be a positive integer")
    bounds = []
    position = start
    while position < total_rows:
        stop = min((position // chunk_size + 1) * chunk_size, total_rows)
        bounds.append((position, stop))
        position = stop
    return bounds


def plan_chunks(rows: Iterable[dict], chunk_size: int, start: int = 0) -> Iterator[Chunk]:
    """Yield chunks aligned to ``[0, cs), [cs, 2cs), ...`` beginning at ``start``.

    ``rows`` must already begin at position ``start`` (see
    ``csv_ingest.iter_rows``). When ``start`` falls inside a chunk, the
    first chunk yielded only covers the remainder of that chunk.
    """
    if chunk_size <= 0:
        raise ValueError("Chunk size must be a positive integer")
    if start < 0:
        raise ValueError("Start position cannot be negative")

    iterator = iter(rows)

    position = start
    remainder = chunk_size - (start % chunk_size)
    if remainder != chunk_size:
        head = list(islice(iterator, remainder))
        if not head:
            return
        yield Chunk(index=position // chunk_size, start=position, rows=head)
        position += len(head)

    for batch in chunked(iterator, chunk_size):
        yield Chunk(index=position // chunk_size, start=position, rows=batch)
        position += len(batch)
