"""Bounded FIFO helpers shared by the deferred queue and summary ring-buffers."""

from __future__ import annotations

from typing import Sequence, TypeVar

T = TypeVar("T")

__all__ = ["push_bounded"]


def push_bounded(items: Sequence[T], item: T, maxlen: int) -> tuple[list[T], list[T]]:
    """Append `item` at the back and evict from the front beyond `maxlen`.

    Returns the new list and the evicted items, oldest first. The input is not
    mutated.
    """
    if maxlen < 1:
        raise ValueError("maxlen must be >= 1")
    updated = [*items, item]
    overflow = max(0, len(updated) - maxlen)
    return updated[overflow:], updated[:overflow]
