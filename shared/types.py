"""
Data types shared by the server and the viewer.

Performance notes:
- Point is a NamedTuple: immutable and cheap, millions may sit in a cache
- Rect validates its ordering invariant on construction
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import NamedTuple, Union

Category = Union[bool, str]


class Point(NamedTuple):
    """Single dataset point. ``id`` is unique and stable across fetches."""
    id: int
    x: float
    y: float
    category: Category = True


@dataclass(frozen=True)
class Rect:
    """Axis-aligned rectangle in data space (``x_min < x_max``, ``y_min < y_max``)."""

    x_min: float
    x_max: float
    y_min: float
    y_max: float

    def __post_init__(self):
        if not (self.x_min < self.x_max and self.y_min < self.y_max):
            raise ValueError(
                f"Invalid rectangle: x=[{self.x_min}, {self.x_max}] y=[{self.y_min}, {self.y_max}]"
            )

    @classmethod
    def from_corners(cls, x1: float, y1: float, x2: float, y2: float) -> "Rect":
        """Build a rectangle from two opposite corners in any order."""
        return cls(
            x_min=min(x1, x2),
            x_max=max(x1, x2),
            y_min=min(y1, y2),
            y_max=max(y1, y2),
        )

    def contains(self, x: float, y: float) -> bool:
        """Inclusive containment test."""
        return self.x_min <= x <= self.x_max and self.y_min <= y <= self.y_max

    @property
    def center(self) -> tuple[float, float]:
        return ((self.x_min + self.x_max) / 2.0, (self.y_min + self.y_max) / 2.0)

    @property
    def width(self) -> float:
        return self.x_max - self.x_min

    @property
    def height(self) -> float:
        return self.y_max - self.y_min

    def to_dict(self) -> dict[str, float]:
        return {
            "x_min": self.x_min,
            "x_max": self.x_max,
            "y_min": self.y_min,
            "y_max": self.y_max,
        }


@dataclass(frozen=True)
class Bounds:
    """Aggregate extent of the whole dataset."""

    min_x: float
    max_x: float
    min_y: float
    max_y: float
    total_rows: int

    def to_rect(self, padding: float = 0.5) -> Rect:
        """Return the extent as a Rect, widening degenerate (zero-width) axes."""
        min_x, max_x = self.min_x, self.max_x
        min_y, max_y = self.min_y, self.max_y
        if min_x >= max_x:
            min_x, max_x = min_x - padding, max_x + padding
        if min_y >= max_y:
            min_y, max_y = min_y - padding, max_y + padding
        return Rect(min_x, max_x, min_y, max_y)

    def to_dict(self) -> dict[str, float | int]:
        return {
            "min_x": self.min_x,
            "max_x": self.max_x,
            "min_y": self.min_y,
            "max_y": self.max_y,
            "total_rows": self.total_rows,
        }
