"""
Root conftest.py for pointstream tests.

This file contains shared fixtures and pytest configuration
that applies to all test modules.
"""

import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

# Ensure the repo root is in the path
repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from backend.query_backend import DuckDBBackend  # noqa: E402
from shared.types import Point  # noqa: E402

# ============================================================================
# Pytest Hooks
# ============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "websocket: mark test as involving WebSocket communication",
    )
    config.addinivalue_line(
        "markers",
        "duckdb: mark test as running queries against DuckDB",
    )


def pytest_collection_modifyitems(config, items):
    """
    Automatically mark tests based on their name.

    - Tests with 'websocket' in name are marked with 'websocket'
    - Tests using the DuckDB grid fixture are marked with 'duckdb'
    """
    for item in items:
        if "websocket" in item.name.lower():
            item.add_marker(pytest.mark.websocket)

        if "grid_backend" in getattr(item, "fixturenames", ()):
            item.add_marker(pytest.mark.duckdb)


# ============================================================================
# Shared Fixtures
# ============================================================================


@pytest.fixture
def grid_frame():
    """10 x 10 grid of points on [0, 9] x [0, 9] with an extra label column."""
    xs, ys = np.meshgrid(np.arange(10, dtype=float), np.arange(10, dtype=float))
    return pd.DataFrame({
        "px": xs.ravel(),
        "py": ys.ravel(),
        "group": np.where(xs.ravel() < 5, "left", "right"),
        "weight": np.arange(100, dtype=float),
    })


@pytest.fixture
def grid_backend(grid_frame):
    """DuckDB backend over the grid; ids are 1..100 in row order."""
    backend = DuckDBBackend.from_frame(grid_frame, x_col="px", y_col="py", color_col="group")
    yield backend
    backend.close()


@pytest.fixture
def make_points():
    """Factory for ``Point`` lists with consecutive ids."""

    def _make(count, start=1, x=0.0, y=0.0):
        return [Point(start + i, x + i, y + i, bool(i % 2)) for i in range(count)]

    return _make
