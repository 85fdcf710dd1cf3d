"""
Rectangle selection over the client cache.

Selection is resolved locally: the two screen corners are mapped to data
space and the cache is filtered. Only the matched ids travel to the server,
which persists the complete rows from the full dataset.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional

from channel.messages import SaveSelectionRequest, SelectionRow
from shared.logger import get_logger
from shared.types import Rect

from .cache import PointCache
from .viewport import ViewportController

logger = get_logger(__name__)


@dataclass(frozen=True)
class Selection:
    """Ids of the cached points inside a data-space rectangle."""

    name: str
    rect: Rect
    point_ids: frozenset[int]

    def __len__(self) -> int:
        return len(self.point_ids)

    def to_message(self, request_id: Optional[int] = None) -> SaveSelectionRequest:
        return SaveSelectionRequest(
            request_id=request_id,
            name=self.name,
            data=[SelectionRow(id=point_id) for point_id in sorted(self.point_ids)],
        )


@dataclass
class SelectionManager:
    """Builds selections and tracks what the server confirmed.

    ``counter`` names unnamed selections (``Selection<N>``); the server owns
    the authoritative value and sends it back with every confirmation.
    """

    counter: int = 1
    saved: Dict[str, int] = field(default_factory=dict)
    last_error: Optional[str] = None

    def next_name(self) -> str:
        return f"Selection{self.counter}"

    def select(
        self,
        cache: PointCache,
        viewport: ViewportController,
        corner1: tuple[float, float],
        corner2: tuple[float, float],
        name: Optional[str] = None,
    ) -> Optional[Selection]:
        """Select the cached points between two screen corners.

        Returns None for a zero-area rectangle or when nothing is cached
        inside it; in both cases nothing should be sent.
        """
        try:
            rect = viewport.screen_rect_to_data(corner1, corner2)
        except ValueError:
            logger.info("Ignoring zero-area selection rectangle")
            return None

        ids = frozenset(p.id for p in cache.points_in(rect))
        if not ids:
            logger.info("No points in selection")
            return None
        return Selection(name=name or self.next_name(), rect=rect, point_ids=ids)

    def on_saved(self, name: str, count: int, next_counter: int) -> None:
        self.saved[name] = count
        self.counter = next_counter
        self.last_error = None
        logger.info("Selection '%s' persisted with %d points", name, count)

    def on_failed(self, name: Optional[str], message: str) -> None:
        self.last_error = message
        logger.warning("Selection '%s' failed: %s", name, message)
