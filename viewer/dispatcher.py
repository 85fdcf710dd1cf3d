"""
Per-session state and the single event dispatcher.

``SessionContext`` owns everything one viewer session mutates: the cache, the
budget controller, the fetch orchestrator, the selection manager and the
viewport. ``dispatch`` handles one event at a time and returns the commands
to execute; it never awaits, so no state here needs a lock.
"""

from __future__ import annotations

import itertools
from typing import Callable, Dict, List, Optional

from shared.logger import get_logger
from shared.types import Bounds

from .budget import AdaptiveBudgetController
from .cache import PointCache
from .config import ViewerConfig
from .events import (
    AdaptiveToggled,
    BudgetSet,
    Command,
    ConnectionLost,
    Event,
    EventType,
    FetchFailed,
    FetchSucceeded,
    FrameRendered,
    MetadataReceived,
    Render,
    SelectionFailed,
    SelectionRequested,
    SelectionSaved,
    SendFetch,
    SendSelection,
    Status,
    ViewportEvent,
)
from .fetch import FetchOrchestrator
from .selection import SelectionManager
from .viewport import ViewportController

logger = get_logger(__name__)


class SessionContext:
    """State of one viewer session."""

    def __init__(self, config: Optional[ViewerConfig] = None, width: float = 800, height: float = 600):
        self.config = config or ViewerConfig()
        self.cache = PointCache(self.config.eviction_ratio)
        self.budget = AdaptiveBudgetController.from_config(self.config)
        self.viewport = ViewportController(
            width, height, min_scale=self.config.min_scale, max_scale=self.config.max_scale
        )
        self.selections = SelectionManager()
        self.bounds: Optional[Bounds] = None
        self.connected = True
        self._request_ids = itertools.count(1)
        self.fetcher = FetchOrchestrator(
            self.cache,
            self.budget,
            self.next_request_id,
            exclusion_cap=self.config.exclusion_cap,
            zoom_out_ratio=self.config.zoom_out_ratio,
            eviction_policy=self.config.eviction_policy,
        )

        self._handlers: Dict[EventType, Callable[[Event], List[Command]]] = {
            EventType.VIEWPORT_CHANGED: self._on_viewport_changed,
            EventType.FRAME_RENDERED: self._on_frame_rendered,
            EventType.TIMER_TICK: self._on_timer_tick,
            EventType.BUDGET_SET: self._on_budget_set,
            EventType.USER_TOGGLE: self._on_adaptive_toggled,
            EventType.METADATA_RECEIVED: self._on_metadata,
            EventType.RESPONSE_RECEIVED: self._on_fetch_succeeded,
            EventType.REQUEST_FAILED: self._on_fetch_failed,
            EventType.SELECTION_REQUESTED: self._on_selection_requested,
            EventType.SELECTION_SAVED: self._on_selection_saved,
            EventType.SELECTION_FAILED: self._on_selection_failed,
            EventType.CONNECTION_LOST: self._on_connection_lost,
        }

    def next_request_id(self) -> int:
        return next(self._request_ids)

    def dispatch(self, event: Event) -> List[Command]:
        """Handle one event and return the commands it produced."""
        handler = self._handlers.get(getattr(event, "type", None))
        if handler is None:
            logger.warning("Unhandled viewer event: %r", event)
            return []
        return handler(event)

    # ============= Helpers =============

    def _render(self) -> Render:
        return Render(transform=self.viewport.transform, points=self.cache.points())

    def _maybe_fetch(self) -> List[Command]:
        if not (self.connected and self.viewport.has_domain):
            return []
        request = self.fetcher.plan(self.viewport.to_data_rect(), self.viewport.scale)
        return [SendFetch(request)] if request else []

    # ============= Handlers =============

    def _on_viewport_changed(self, event: ViewportEvent) -> List[Command]:
        event.apply(self.viewport)
        self.budget.mark_moved()
        return [self._render(), *self._maybe_fetch()]

    def _on_frame_rendered(self, event: FrameRendered) -> List[Command]:
        before = self.budget.budget
        after = self.budget.on_frame(event.timestamp_ms, len(self.cache))
        if after == before:
            return []
        return self._maybe_fetch()

    def _on_timer_tick(self, event: Event) -> List[Command]:
        return self._maybe_fetch()

    def _on_budget_set(self, event: BudgetSet) -> List[Command]:
        budget = self.budget.set_budget(event.budget)
        return [Status(f"Budget set to {budget}"), *self._maybe_fetch()]

    def _on_adaptive_toggled(self, event: AdaptiveToggled) -> List[Command]:
        self.budget.enabled = event.enabled
        return [Status(f"Adaptive budget {'enabled' if event.enabled else 'disabled'}")]

    def _on_metadata(self, event: MetadataReceived) -> List[Command]:
        self.bounds = event.bounds
        self.viewport.set_domain(event.bounds.to_rect())
        return [
            Status(f"Dataset has {event.bounds.total_rows} points"),
            self._render(),
            *self._maybe_fetch(),
        ]

    def _on_fetch_succeeded(self, event: FetchSucceeded) -> List[Command]:
        focus = self.viewport.to_data_rect() if self.viewport.has_domain else None
        added = self.fetcher.on_response(event.request_id, event.points, focus)
        if added is None:
            return []
        commands: List[Command] = [
            self._render(),
            Status(f"Received {len(event.points)} points ({added} new, {len(self.cache)} cached)"),
        ]
        # A response with nothing new means the region is exhausted
        if added:
            commands.extend(self._maybe_fetch())
        return commands

    def _on_fetch_failed(self, event: FetchFailed) -> List[Command]:
        self.fetcher.on_failure(event.request_id)
        return [Status(f"Query failed: {event.message}", level="error")]

    def _on_selection_requested(self, event: SelectionRequested) -> List[Command]:
        if not self.viewport.has_domain:
            return [Status("Dataset bounds not loaded yet", level="warning")]
        selection = self.selections.select(
            self.cache, self.viewport, event.corner1, event.corner2, event.name
        )
        if selection is None:
            return [Status("No points in selection")]
        return [
            SendSelection(selection, self.next_request_id()),
            Status(f"Saving {len(selection)} points as '{selection.name}'"),
        ]

    def _on_selection_saved(self, event: SelectionSaved) -> List[Command]:
        self.selections.on_saved(event.name, event.count, event.next_counter)
        return [Status(f"Selection saved as '{event.name}' with {event.count} points")]

    def _on_selection_failed(self, event: SelectionFailed) -> List[Command]:
        self.selections.on_failed(event.name, event.message)
        return [Status(f"Failed to save selection '{event.name}': {event.message}", level="error")]

    def _on_connection_lost(self, event: ConnectionLost) -> List[Command]:
        self.connected = False
        self.fetcher.reset()
        reason = f": {event.reason}" if event.reason else ""
        return [Status(f"Connection closed{reason}", level="error")]
