from __future__ import annotations

from typing import List, Sequence, TypeVar

T = TypeVar("T")


def chunk(items: Sequence[T], size: int) -> List[List[T]]:
    if size <= 0:
        raise ValueError("chunk size must be positive")
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


def group_sizes(total: int, size: int) -> List[int]:
    """Split ``total`` units into consecutive groups of at most ``size``: 14, 5 -> [5, 5, 4]."""
    if size <= 0:
        raise ValueError("group size must be positive")
    sizes: List[int] = []
    remaining = total
    while remaining > 0:
        current = min(remaining, size)
        sizes.append(current)
        remaining -= current
    return sizes
