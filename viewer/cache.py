"""
Client-resident point cache.

An explicit ordered map (``OrderedDict``) keyed by point id. Re-inserting a
known id keeps its original position, so eviction order is always the order
in which ids were first seen.
"""

from __future__ import annotations

import math
from collections import OrderedDict
from typing import Iterable, Iterator, Optional

from shared.types import Point, Rect

from .config import EvictionPolicy


class PointCache:
    """Ordered ``id -> Point`` store used for rendering and selections."""

    def __init__(self, eviction_ratio: float = 1.2):
        self._points: OrderedDict[int, Point] = OrderedDict()
        self.eviction_ratio = eviction_ratio

    def __len__(self) -> int:
        return len(self._points)

    def __contains__(self, point_id: int) -> bool:
        return point_id in self._points

    def __iter__(self) -> Iterator[Point]:
        return iter(self._points.values())

    def get(self, point_id: int) -> Optional[Point]:
        return self._points.get(point_id)

    def insert(self, points: Iterable[Point]) -> int:
        """Add or overwrite points by id.

        Returns:
            Number of ids that were not cached before.
        """
        added = 0
        for point in points:
            if point.id not in self._points:
                added += 1
            self._points[point.id] = point
        return added

    def ids(self) -> list[int]:
        return list(self._points)

    def points(self) -> list[Point]:
        return list(self._points.values())

    def points_in(self, rect: Rect) -> list[Point]:
        """Cached points inside ``rect`` (inclusive)."""
        return [p for p in self._points.values() if rect.contains(p.x, p.y)]

    def needs_eviction(self, budget: int) -> bool:
        return len(self._points) > budget * self.eviction_ratio

    def evict_surplus(
        self,
        budget: int,
        policy: EvictionPolicy = EvictionPolicy.FIFO,
        focus: Optional[Rect] = None,
    ) -> int:
        """Shrink the cache to ``budget`` entries.

        FIFO drops the oldest insertions first, whether or not they are on
        screen. VIEWPORT_DISTANCE drops the points farthest from the centre of
        ``focus`` first and falls back to FIFO without a focus rectangle.

        Returns:
            Number of evicted points.
        """
        surplus = len(self._points) - max(budget, 0)
        if surplus <= 0:
            return 0

        if policy == EvictionPolicy.VIEWPORT_DISTANCE and focus is not None:
            cx, cy = focus.center
            farthest = sorted(
                self._points.values(),
                key=lambda p: math.hypot(p.x - cx, p.y - cy),
                reverse=True,
            )[:surplus]
            for point in farthest:
                del self._points[point.id]
        else:
            for _ in range(surplus):
                self._points.popitem(last=False)
        return surplus

    def clear(self) -> None:
        self._points.clear()
