"""
Adaptive budget controller.

Closed-loop control of the target cache size from measured frame rate. The
rule is asymmetric: growth is capped at roughly 5% per frame, shrinking at
10% per frame, which gives a damped oscillation inside the
``[lower_fps, upper_fps]`` band rather than a fixed point.
"""

from __future__ import annotations

import math
from typing import Optional

from shared.logger import get_logger

from .config import ViewerConfig

logger = get_logger(__name__)

MAX_GROWTH_COEFF = 0.95
MIN_SHRINK_COEFF = 0.9


class AdaptiveBudgetController:
    """Owns the session budget.

    Frame samples only adjust the budget while ``moved`` is set (the user has
    panned or zoomed at least once) and adaptation is enabled.
    """

    def __init__(
        self,
        initial_budget: int = 25_000,
        min_budget: int = 1_000,
        max_budget: int = 1_000_000,
        lower_fps: float = 6.0,
        upper_fps: float = 15.0,
        enabled: bool = True,
    ):
        self.min_budget = min_budget
        self.max_budget = max_budget
        self.lower_fps = lower_fps
        self.upper_fps = upper_fps
        self.enabled = enabled
        self.moved = False
        self.last_fps: Optional[float] = None
        self._budget = self._clamp(initial_budget)
        self._last_frame_ms: Optional[float] = None

    @classmethod
    def from_config(cls, config: ViewerConfig) -> "AdaptiveBudgetController":
        return cls(
            initial_budget=config.initial_budget,
            min_budget=config.min_budget,
            max_budget=config.max_budget,
            lower_fps=config.lower_fps,
            upper_fps=config.upper_fps,
            enabled=config.adaptive,
        )

    @property
    def budget(self) -> int:
        return self._budget

    def _clamp(self, value: int) -> int:
        return int(min(max(value, self.min_budget), self.max_budget))

    def mark_moved(self) -> None:
        self.moved = True

    def set_budget(self, value: int) -> int:
        """Explicitly set the budget (clamped to the allowed range)."""
        self._budget = self._clamp(value)
        return self._budget

    def on_frame(self, timestamp_ms: float, cache_size: int) -> int:
        """Feed one rendered-frame timestamp; returns the (possibly new) budget."""
        previous = self._last_frame_ms
        self._last_frame_ms = timestamp_ms

        if previous is None or not (self.enabled and self.moved):
            return self._budget

        interval = timestamp_ms - previous
        if interval <= 0:
            return self._budget

        fps = 1000.0 / interval
        self.last_fps = fps
        return self.adjust(fps, cache_size)

    def adjust(self, fps: float, cache_size: int) -> int:
        """Apply the growth/shrink rule for one fps sample."""
        budget = self._budget

        if fps > self.upper_fps and budget <= cache_size < 2 * budget:
            coeff = min(1.0 - 0.5 * (self.upper_fps / fps), MAX_GROWTH_COEFF)
            new_budget = min(self.max_budget, math.floor(budget / coeff))
        elif fps < self.lower_fps:
            coeff = max(fps / self.lower_fps, MIN_SHRINK_COEFF)
            new_budget = max(self.min_budget, math.floor(budget * coeff))
        else:
            new_budget = budget

        self._budget = self._clamp(new_budget)
        if self._budget != budget:
            logger.debug("Budget %d -> %d (fps=%.1f, cache=%d)", budget, self._budget, fps, cache_size)
        return self._budget
