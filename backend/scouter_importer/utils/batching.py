"""Helper functions for chunking iterables."""
from collections.abc import Iterable, Iterator
from itertools import islice


def chunked(iterable: Iterable, size: int) -> Iterator[list]:
    """Yield successive lists of at most ``size`` items, preserving order."""
    if size <= 0:
        raise ValueError("Chunk size must be a positive integer")
    iterator = iter(iterable)
    while True:
        batch = list(islice(iterator, size))
        if not batch:
            return
        yield batch
