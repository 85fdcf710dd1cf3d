"""
Fetch orchestrator: decides when to ask the server for more points.

Single-flight: at most one request is outstanding. A trigger that arrives
while a request is in flight does not queue, cancel or supersede it. A
response is merged even if the viewport has moved since the request was
issued; only responses whose request id is no longer outstanding (e.g. after
a timeout) are discarded.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from channel.messages import QueryRequest, RectModel, SampleQuery
from shared.logger import get_logger
from shared.types import Point, Rect

from .budget import AdaptiveBudgetController
from .cache import PointCache
from .config import EvictionPolicy

logger = get_logger(__name__)


@dataclass(frozen=True)
class FetchRequest:
    """One bounded viewport query."""

    request_id: int
    rect: Rect
    exclude_ids: Optional[tuple[int, ...]]
    limit: int
    scale: float = 1.0

    def to_message(self) -> QueryRequest:
        return QueryRequest(
            request_id=self.request_id,
            query=SampleQuery(
                rect=RectModel.from_rect(self.rect),
                exclude_ids=list(self.exclude_ids) if self.exclude_ids is not None else None,
                limit=self.limit,
            ),
        )


class FetchOrchestrator:
    """Plans fetches from the cache size, the budget and the viewport scale.

    Args:
        cache: Session point cache.
        budget: Session budget controller.
        next_request_id: Source of monotonic request ids.
        exclusion_cap: Largest cache for which cached ids are sent as an
            exclusion list; above it the list is dropped entirely.
        zoom_out_ratio: A scale below ``ratio x`` the scale of the last issued
            request counts as a zoom-out and forces a refresh.
        eviction_policy: How surplus points are evicted.
    """

    def __init__(
        self,
        cache: PointCache,
        budget: AdaptiveBudgetController,
        next_request_id: Callable[[], int],
        exclusion_cap: int = 5_000,
        zoom_out_ratio: float = 0.8,
        eviction_policy: EvictionPolicy = EvictionPolicy.FIFO,
    ):
        self.cache = cache
        self.budget = budget
        self.exclusion_cap = exclusion_cap
        self.zoom_out_ratio = zoom_out_ratio
        self.eviction_policy = eviction_policy
        self.pending_refresh = False
        self._next_request_id = next_request_id
        self._in_flight: Optional[FetchRequest] = None
        self._reference_scale: Optional[float] = None

    @property
    def in_flight(self) -> Optional[FetchRequest]:
        return self._in_flight

    def observe_scale(self, scale: float) -> None:
        """Flag a refresh when the view zoomed out past the configured ratio."""
        if self._reference_scale is not None and scale < self._reference_scale * self.zoom_out_ratio:
            if not self.pending_refresh:
                logger.debug("Zoom-out %.3f -> %.3f, refresh pending", self._reference_scale, scale)
            self.pending_refresh = True

    def plan(self, rect: Rect, scale: float) -> Optional[FetchRequest]:
        """Return a new request if one is needed and none is outstanding.

        When no request is issued, an over-full cache is evicted instead.
        """
        self.observe_scale(scale)
        budget = self.budget.budget
        needed = budget - len(self.cache)

        if (needed > 0 or self.pending_refresh) and self._in_flight is None:
            if 0 < len(self.cache) <= self.exclusion_cap:
                exclude_ids: Optional[tuple[int, ...]] = tuple(self.cache.ids())
            else:
                exclude_ids = None

            request = FetchRequest(
                request_id=self._next_request_id(),
                rect=rect,
                exclude_ids=exclude_ids,
                limit=max(needed, budget // 2),
                scale=scale,
            )
            self._in_flight = request
            self._reference_scale = scale
            return request

        self.evict_if_needed(rect)
        return None

    def on_response(
        self,
        request_id: int,
        points: Iterable[Point],
        focus: Optional[Rect] = None,
    ) -> Optional[int]:
        """Merge the points of the outstanding request.

        Returns:
            Number of new points, or None when the response was discarded.
        """
        if self._in_flight is None or request_id != self._in_flight.request_id:
            logger.warning(
                "Discarding response for request %s (outstanding: %s)",
                request_id,
                self._in_flight.request_id if self._in_flight else None,
            )
            return None

        added = self.cache.insert(points)
        self.pending_refresh = False
        self._in_flight = None
        self.evict_if_needed(focus)
        return added

    def on_failure(self, request_id: int) -> bool:
        """Release the in-flight slot after an error or timeout. Cache is untouched."""
        if self._in_flight is None or request_id != self._in_flight.request_id:
            return False
        self._in_flight = None
        return True

    def evict_if_needed(self, focus: Optional[Rect] = None) -> int:
        budget = self.budget.budget
        if not self.cache.needs_eviction(budget):
            return 0
        evicted = self.cache.evict_surplus(budget, self.eviction_policy, focus)
        logger.debug("Evicted %d points (budget=%d)", evicted, budget)
        return evicted

    def reset(self) -> None:
        self.pending_refresh = False
        self._in_flight = None
        self._reference_scale = None
