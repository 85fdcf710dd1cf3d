"""
Dataset loading and preparation.

The streaming engine works on four columns: ``id``, ``x``, ``y`` and
``category``. ``prepare_points_frame`` maps arbitrary user columns onto
them while keeping the source frame (with its original column names) around
so persisted selections can return complete rows.
"""

from __future__ import annotations

from pathlib import Path

import numpy as np
import pandas as pd

from shared.logger import get_logger

logger = get_logger(__name__)

REQUIRED_COLUMNS = ("id", "x", "y", "category")


def load_dataset(path: str | Path) -> pd.DataFrame:
    """Read a CSV or Parquet file into a DataFrame."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Dataset not found: {path}")

    suffix = path.suffix.lower()
    if suffix in (".parquet", ".pq"):
        df = pd.read_parquet(path)
    elif suffix in (".csv", ".txt", ".tsv"):
        df = pd.read_csv(path, sep="\t" if suffix == ".tsv" else ",")
    else:
        raise ValueError(f"Unsupported dataset format: {suffix or path.name}")

    logger.info("Loaded dataset %s (%d rows, %d columns)", path.name, len(df), len(df.columns))
    return df


def ensure_id_column(data: pd.DataFrame, id_col: str = "index") -> pd.DataFrame:
    """Return a copy of ``data`` with a 1-based ``id_col`` if it was missing."""
    source = data.copy()
    if id_col not in source.columns:
        source[id_col] = np.arange(1, len(source) + 1, dtype=np.int64)
    elif source[id_col].duplicated().any():
        raise ValueError(f"Identity column '{id_col}' contains duplicate values")
    return source


def _to_category(values: pd.Series) -> pd.Series:
    """Coerce a colour column to boolean.

    Numeric: non-zero is True. Text / categorical: equal to the first level
    (or first distinct value) is True.
    """
    if pd.api.types.is_bool_dtype(values):
        return values.astype(bool)
    if pd.api.types.is_numeric_dtype(values):
        return values.fillna(0) != 0
    if isinstance(values.dtype, pd.CategoricalDtype) and len(values.cat.categories) > 0:
        first_level = values.cat.categories[0]
    else:
        distinct = values.dropna().unique()
        if len(distinct) == 0:
            return pd.Series(True, index=values.index)
        first_level = distinct[0]
    return values == first_level


def prepare_points_frame(
    data: pd.DataFrame,
    x_col: str,
    y_col: str,
    color_col: str | None = None,
    id_col: str = "index",
) -> pd.DataFrame:
    """Map user columns onto the ``id, x, y, category`` frame served to clients.

    Args:
        data: Source data. Must already contain ``id_col`` (see ensure_id_column).
        x_col: Column used for the horizontal axis.
        y_col: Column used for the vertical axis.
        color_col: Optional column mapped to ``category``; without one every
            point gets ``True``.
        id_col: Identity column.

    Returns:
        DataFrame with exactly the columns ``id, x, y, category``.
    """
    missing = [c for c in (id_col, x_col, y_col) if c not in data.columns]
    if color_col is not None and color_col not in data.columns:
        missing.append(color_col)
    if missing:
        raise ValueError(f"Missing required columns: {', '.join(missing)}")

    points = pd.DataFrame({
        "id": data[id_col].astype(np.int64).to_numpy(),
        "x": data[x_col].astype(np.float64).to_numpy(),
        "y": data[y_col].astype(np.float64).to_numpy(),
    })
    if color_col is not None:
        points["category"] = _to_category(data[color_col]).to_numpy()
    else:
        points["category"] = True
    return points
