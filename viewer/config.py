"""
Viewer policy constants.

All tunables of the streaming loop live in one dataclass so a session can be
configured from a plain dict (e.g. loaded from JSON by the host).
"""

from dataclasses import asdict, dataclass, fields
from enum import Enum
from typing import Any, Dict

from shared.logger import get_logger

logger = get_logger(__name__)


class EvictionPolicy(str, Enum):
    """Which cached points are dropped first when the cache overflows."""

    FIFO = "fifo"
    VIEWPORT_DISTANCE = "viewport_distance"


@dataclass
class ViewerConfig:
    """Tunables for one viewer session."""
    # Budget (target cache size)
    initial_budget: int = 25_000
    min_budget: int = 1_000
    max_budget: int = 1_000_000
    # Frame-rate hysteresis band for the adaptive controller
    lower_fps: float = 6.0
    upper_fps: float = 15.0
    adaptive: bool = True
    # Cache
    eviction_ratio: float = 1.2
    eviction_policy: EvictionPolicy = EvictionPolicy.FIFO
    # Fetch
    exclusion_cap: int = 5_000
    zoom_out_ratio: float = 0.8
    # Viewport
    min_scale: float = 0.1
    max_scale: float = 1_000.0
    # Channel
    connect_timeout: float = 5.0
    request_timeout: float = 10.0

    def __post_init__(self):
        if not 0 < self.min_budget <= self.initial_budget <= self.max_budget:
            raise ValueError("Budgets must satisfy 0 < min_budget <= initial_budget <= max_budget")
        if not 0 < self.lower_fps <= self.upper_fps:
            raise ValueError("FPS limits must satisfy 0 < lower_fps <= upper_fps")
        if self.eviction_ratio < 1.0:
            raise ValueError("eviction_ratio must be >= 1.0")
        if not 0 < self.min_scale <= self.max_scale:
            raise ValueError("Scale extent must satisfy 0 < min_scale <= max_scale")
        self.eviction_policy = EvictionPolicy(self.eviction_policy)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["eviction_policy"] = self.eviction_policy.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ViewerConfig":
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            logger.warning("Ignoring unknown viewer settings: %s", ", ".join(sorted(unknown)))
        return cls(**{k: v for k, v in data.items() if k in known})
