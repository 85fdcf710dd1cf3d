"""
Shared building blocks for the pointstream server and viewer.

- Point / Rect / Bounds data model (types.py)
- Arrow IPC row-set codec (codec.py)
- Logging setup (logger.py)
"""

from .types import Bounds, Point, Rect

__all__ = [
    "Bounds",
    "Point",
    "Rect",
]
