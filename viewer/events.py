"""
Typed events and commands of the viewer dispatcher.

Everything that can change session state (gestures, frame ticks, channel
replies, user toggles) is an event; everything the dispatcher wants done in
the outside world (network sends, drawing, status lines) is a command.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar, Optional

from shared.types import Bounds, Point

from .fetch import FetchRequest
from .selection import Selection
from .viewport import Transform, ViewportController


class EventType(str, Enum):
    """Kinds of dispatcher events."""

    VIEWPORT_CHANGED = "viewport_changed"
    FRAME_RENDERED = "frame_rendered"
    TIMER_TICK = "timer_tick"
    BUDGET_SET = "budget_set"
    USER_TOGGLE = "user_toggle"
    METADATA_RECEIVED = "metadata_received"
    RESPONSE_RECEIVED = "response_received"
    REQUEST_FAILED = "request_failed"
    SELECTION_REQUESTED = "selection_requested"
    SELECTION_SAVED = "selection_saved"
    SELECTION_FAILED = "selection_failed"
    CONNECTION_LOST = "connection_lost"


class Event:
    type: ClassVar[EventType]


# ============= Viewport gestures =============


class ViewportEvent(Event):
    type = EventType.VIEWPORT_CHANGED

    def apply(self, viewport: ViewportController) -> None:
        raise NotImplementedError


@dataclass(frozen=True)
class Pan(ViewportEvent):
    dx: float
    dy: float

    def apply(self, viewport: ViewportController) -> None:
        viewport.pan(self.dx, self.dy)


@dataclass(frozen=True)
class Zoom(ViewportEvent):
    factor: float
    cx: Optional[float] = None
    cy: Optional[float] = None

    def apply(self, viewport: ViewportController) -> None:
        viewport.zoom(self.factor, self.cx, self.cy)


@dataclass(frozen=True)
class SetTransform(ViewportEvent):
    transform: Transform

    def apply(self, viewport: ViewportController) -> None:
        viewport.set_transform(self.transform)


@dataclass(frozen=True)
class ResetView(ViewportEvent):
    def apply(self, viewport: ViewportController) -> None:
        viewport.reset()


@dataclass(frozen=True)
class Resize(ViewportEvent):
    width: float
    height: float

    def apply(self, viewport: ViewportController) -> None:
        viewport.resize(self.width, self.height)


# ============= Ticks and user controls =============


@dataclass(frozen=True)
class FrameRendered(Event):
    type = EventType.FRAME_RENDERED
    timestamp_ms: float


@dataclass(frozen=True)
class TimerTick(Event):
    type = EventType.TIMER_TICK


@dataclass(frozen=True)
class BudgetSet(Event):
    type = EventType.BUDGET_SET
    budget: int


@dataclass(frozen=True)
class AdaptiveToggled(Event):
    type = EventType.USER_TOGGLE
    enabled: bool


@dataclass(frozen=True)
class SelectionRequested(Event):
    type = EventType.SELECTION_REQUESTED
    corner1: tuple[float, float]
    corner2: tuple[float, float]
    name: Optional[str] = None


# ============= Channel outcomes =============


@dataclass(frozen=True)
class MetadataReceived(Event):
    type = EventType.METADATA_RECEIVED
    bounds: Bounds


@dataclass(frozen=True)
class FetchSucceeded(Event):
    type = EventType.RESPONSE_RECEIVED
    request_id: int
    points: list[Point] = field(default_factory=list)


@dataclass(frozen=True)
class FetchFailed(Event):
    type = EventType.REQUEST_FAILED
    request_id: int
    message: str


@dataclass(frozen=True)
class SelectionSaved(Event):
    type = EventType.SELECTION_SAVED
    name: str
    count: int
    next_counter: int


@dataclass(frozen=True)
class SelectionFailed(Event):
    type = EventType.SELECTION_FAILED
    name: Optional[str]
    message: str


@dataclass(frozen=True)
class ConnectionLost(Event):
    type = EventType.CONNECTION_LOST
    reason: str = ""


# ============= Commands =============


@dataclass(frozen=True)
class SendFetch:
    request: FetchRequest


@dataclass(frozen=True)
class SendSelection:
    selection: Selection
    request_id: int


@dataclass(frozen=True)
class Render:
    transform: Transform
    points: list[Point]


@dataclass(frozen=True)
class Status:
    message: str
    level: str = "info"


Command = SendFetch | SendSelection | Render | Status
