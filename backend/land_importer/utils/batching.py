"""Helper functions for chunking iterables."""
from collections.abc import Iterable, Iterator
from itertools import islice
from typing import TypeVar

T = TypeVar("T")


def chunked(iterable: Iterable[T], size: int) -> Iterator[list[T]]:
    """Yield successive chunks so each batch is one progress/cancellation unit."""
    if size < 1:
        raise ValueError(f"chunk size must be positive, got {size}")
    iterator = iter(iterable)
    while True:
        chunk = list(islice(iterator, size))
        if not chunk:
            return
        yield chunk
