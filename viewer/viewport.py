"""
Viewport controller: zoom/pan transform and coordinate mappings.

Screen space has its origin at the top-left corner with y growing downward;
data space has y growing upward. At scale 1 with no translation the whole
dataset extent (the domain) fills the screen. A transform maps a base screen
position ``b`` to ``b * scale + translate``.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional

from shared.types import Rect


@dataclass(frozen=True)
class Transform:
    """Zoom/pan state: ``screen = base * scale + translate``."""

    scale: float = 1.0
    translate_x: float = 0.0
    translate_y: float = 0.0


IDENTITY = Transform()


class ViewportController:
    """Tracks the current transform and derives the visible data rectangle.

    Only gestures (``pan``, ``zoom``, ``set_transform``, ``reset``) change the
    transform.

    Args:
        width: Screen width in pixels.
        height: Screen height in pixels.
        domain: Full data extent, usually from the dataset bounds. Mappings
            are unavailable until it is set.
        min_scale: Lower zoom limit.
        max_scale: Upper zoom limit.
    """

    def __init__(
        self,
        width: float,
        height: float,
        domain: Optional[Rect] = None,
        min_scale: float = 0.1,
        max_scale: float = 1_000.0,
    ):
        if width <= 0 or height <= 0:
            raise ValueError("Screen size must be positive")
        self.width = float(width)
        self.height = float(height)
        self.domain = domain
        self.min_scale = min_scale
        self.max_scale = max_scale
        self._transform = IDENTITY

    @property
    def transform(self) -> Transform:
        return self._transform

    @property
    def scale(self) -> float:
        return self._transform.scale

    @property
    def has_domain(self) -> bool:
        return self.domain is not None

    def set_domain(self, domain: Rect) -> None:
        self.domain = domain

    def resize(self, width: float, height: float) -> None:
        if width <= 0 or height <= 0:
            raise ValueError("Screen size must be positive")
        self.width = float(width)
        self.height = float(height)

    def _require_domain(self) -> Rect:
        if self.domain is None:
            raise RuntimeError("Viewport domain is not known yet (metadata not received)")
        return self.domain

    def _clamp_scale(self, scale: float) -> float:
        return min(max(scale, self.min_scale), self.max_scale)

    # ============= Gestures =============

    def pan(self, dx: float, dy: float) -> Transform:
        """Translate by a screen-space offset."""
        t = self._transform
        self._transform = replace(t, translate_x=t.translate_x + dx, translate_y=t.translate_y + dy)
        return self._transform

    def zoom(self, factor: float, cx: Optional[float] = None, cy: Optional[float] = None) -> Transform:
        """Multiply the scale by ``factor`` around the screen point (cx, cy).

        The point under (cx, cy) stays fixed; it defaults to the screen centre.
        """
        if factor <= 0:
            raise ValueError("Zoom factor must be positive")
        cx = self.width / 2.0 if cx is None else cx
        cy = self.height / 2.0 if cy is None else cy

        t = self._transform
        new_scale = self._clamp_scale(t.scale * factor)
        base_x = (cx - t.translate_x) / t.scale
        base_y = (cy - t.translate_y) / t.scale
        self._transform = Transform(
            scale=new_scale,
            translate_x=cx - base_x * new_scale,
            translate_y=cy - base_y * new_scale,
        )
        return self._transform

    def set_transform(self, transform: Transform) -> Transform:
        self._transform = replace(transform, scale=self._clamp_scale(transform.scale))
        return self._transform

    def reset(self) -> Transform:
        self._transform = IDENTITY
        return self._transform

    # ============= Mappings =============

    def data_to_screen(self, x: float, y: float) -> tuple[float, float]:
        domain = self._require_domain()
        t = self._transform
        base_x = (x - domain.x_min) / domain.width * self.width
        base_y = self.height - (y - domain.y_min) / domain.height * self.height
        return (base_x * t.scale + t.translate_x, base_y * t.scale + t.translate_y)

    def screen_to_data(self, sx: float, sy: float) -> tuple[float, float]:
        domain = self._require_domain()
        t = self._transform
        base_x = (sx - t.translate_x) / t.scale
        base_y = (sy - t.translate_y) / t.scale
        return (
            domain.x_min + base_x / self.width * domain.width,
            domain.y_min + (self.height - base_y) / self.height * domain.height,
        )

    def screen_rect_to_data(self, corner1: tuple[float, float], corner2: tuple[float, float]) -> Rect:
        """Data-space rectangle spanned by two screen corners in any order."""
        x1, y1 = self.screen_to_data(*corner1)
        x2, y2 = self.screen_to_data(*corner2)
        return Rect.from_corners(x1, y1, x2, y2)

    def to_data_rect(self) -> Rect:
        """The data-space rectangle currently visible on screen."""
        return self.screen_rect_to_data((0.0, 0.0), (self.width, self.height))
