"""
pointstream viewer: client-side cache, budget control and fetch orchestration.
"""

from .budget import AdaptiveBudgetController
from .cache import PointCache
from .config import EvictionPolicy, ViewerConfig
from .connection import (
    Connection,
    ConnectionClosed,
    ConnectionState,
    ConnectionTimeout,
    RequestTimeout,
    WebSocketTransport,
)
from .dispatcher import SessionContext
from .fetch import FetchOrchestrator, FetchRequest
from .selection import Selection, SelectionManager
from .session import ViewerSession
from .viewport import Transform, ViewportController

__all__ = [
    "AdaptiveBudgetController",
    "Connection",
    "ConnectionClosed",
    "ConnectionState",
    "ConnectionTimeout",
    "EvictionPolicy",
    "FetchOrchestrator",
    "FetchRequest",
    "PointCache",
    "RequestTimeout",
    "Selection",
    "SelectionManager",
    "SessionContext",
    "Transform",
    "ViewerConfig",
    "ViewerSession",
    "ViewportController",
    "WebSocketTransport",
]
