"""Cursor pagination for list queries."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Generic, Optional, Sequence, TypeVar

from agentmarket.errors import InvalidArgument

T = TypeVar("T")


@dataclass(frozen=True)
class Page(Generic[T]):
    """One page of results. ``next_cursor`` is None on the last page."""
    items: list[T] = field(default_factory=list)
    next_cursor: Optional[int] = None


def paginate(
    items: Sequence[T],
    key: Callable[[T], Any],
    limit: int = 100,
    cursor: Optional[int] = None,
) -> Page[T]:
    """Return items with key > cursor, at most ``limit`` of them.

    ``items`` must already be sorted by ``key``.
    """
    if limit <= 0:
        raise InvalidArgument(f"Page limit must be positive, got {limit}")
    if cursor is not None:
        items = [i for i in items if key(i) > cursor]
    page = list(items[:limit])
    next_cursor = key(page[-1]) if len(items) > limit else None
    return Page(items=page, next_cursor=next_cursor)
