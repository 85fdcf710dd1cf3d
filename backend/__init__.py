"""
Server-side package for pointstream.

This package provides:
- Server configuration (app_config.py)
- Dataset loading and column mapping (dataset.py)
- DuckDB query backend adapter (query_backend.py)
- Persisted selections store and routes (selections.py)
- System health and info routes (system.py)
"""

from .app_config import ServerConfig, load_server_config
from .query_backend import DuckDBBackend, QueryError
from .selections import SelectionStore

__all__ = [
    "DuckDBBackend",
    "QueryError",
    "SelectionStore",
    "ServerConfig",
    "load_server_config",
]
