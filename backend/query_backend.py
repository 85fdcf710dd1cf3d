"""Query backend adapter over an embedded DuckDB database.

The adapter owns a private in-memory DuckDB connection holding two tables:

- ``points``: the ``id, x, y, category`` frame sampled for streaming
- ``source``: the complete rows with their original column names, used to
  resolve persisted selections against the full dataset

The dataset is immutable for the lifetime of the adapter. Each query runs
on its own cursor so calls may come from worker threads.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Iterable, Optional, Sequence

import duckdb
import pandas as pd
import pyarrow as pa

from shared.logger import get_logger
from shared.types import Bounds, Rect

from .dataset import ensure_id_column, load_dataset, prepare_points_frame

logger = get_logger(__name__)

POINTS_TABLE = "points"
SOURCE_TABLE = "source"


class QueryError(RuntimeError):
    """Raised when the backend cannot execute a query."""


def _quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


def build_sample_query(
    rect: Rect,
    exclude_ids: Optional[Sequence[int]],
    limit: int,
    table: str = POINTS_TABLE,
) -> tuple[str, list[Any]]:
    """Build the viewport sample query.

    The bounding box is inclusive on all sides. The exclusion clause is only
    emitted when ``exclude_ids`` is non-empty.

    Returns:
        (sql, parameters)
    """
    sql = (
        f"SELECT id, x, y, category FROM {_quote(table)} "
        "WHERE x BETWEEN ? AND ? AND y BETWEEN ? AND ?"
    )
    params: list[Any] = [rect.x_min, rect.x_max, rect.y_min, rect.y_max]

    if exclude_ids:
        sql += " AND id NOT IN (SELECT unnest(?::BIGINT[]))"
        params.append([int(i) for i in exclude_ids])

    sql += " ORDER BY random() LIMIT ?"
    params.append(int(limit))
    return sql, params


class DuckDBBackend:
    """Serves samples, bounds and selection lookups from DuckDB.

    Use ``from_frame`` or ``from_file`` rather than the constructor unless the
    frames are already prepared. The backend should be closed when no longer
    needed (or used as a context-manager).

    Args:
        points: Frame with columns ``id, x, y, category``.
        source: Complete rows, including the identity column ``id_col``.
        id_col: Name of the identity column in ``source``.
    """

    def __init__(self, points: pd.DataFrame, source: pd.DataFrame, id_col: str = "index") -> None:
        self._id_col = id_col
        self._con = duckdb.connect(database=":memory:")
        try:
            self._load_table(POINTS_TABLE, points)
            self._load_table(SOURCE_TABLE, source)
        except duckdb.Error as e:
            self._con.close()
            raise QueryError(f"Failed to load dataset into DuckDB: {e}") from e

    def _load_table(self, name: str, frame: pd.DataFrame) -> None:
        staging = f"_staging_{name}"
        self._con.register(staging, frame)
        self._con.execute(f"CREATE TABLE {_quote(name)} AS SELECT * FROM {_quote(staging)}")
        self._con.unregister(staging)

    @classmethod
    def from_frame(
        cls,
        data: pd.DataFrame,
        x_col: str = "x",
        y_col: str = "y",
        color_col: Optional[str] = None,
        id_col: str = "index",
    ) -> "DuckDBBackend":
        """Prepare ``data`` and load it."""
        source = ensure_id_column(data, id_col)
        points = prepare_points_frame(source, x_col, y_col, color_col, id_col)
        return cls(points, source, id_col=id_col)

    @classmethod
    def from_file(
        cls,
        path: str | Path,
        x_col: str = "x",
        y_col: str = "y",
        color_col: Optional[str] = None,
        id_col: str = "index",
    ) -> "DuckDBBackend":
        return cls.from_frame(load_dataset(path), x_col, y_col, color_col, id_col)

    def __enter__(self) -> "DuckDBBackend":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    @property
    def id_col(self) -> str:
        return self._id_col

    def _run(self, sql: str, params: Optional[list[Any]], fetch: Callable[[Any], Any]) -> Any:
        try:
            cursor = self._con.cursor()
        except duckdb.Error as e:
            raise QueryError(str(e)) from e
        try:
            return fetch(cursor.execute(sql, params or []))
        except duckdb.Error as e:
            raise QueryError(str(e)) from e
        finally:
            cursor.close()

    def _fetch_df(self, sql: str, params: Optional[list[Any]] = None) -> pd.DataFrame:
        return self._run(sql, params, lambda result: result.df())

    def _fetch_arrow(self, sql: str, params: Optional[list[Any]] = None) -> pa.Table:
        return self._run(sql, params, lambda result: result.fetch_arrow_table())

    def bounds(self) -> Bounds:
        """Return min/max of each axis and the total row count."""
        df = self._fetch_df(
            f"SELECT MIN(x) AS min_x, MAX(x) AS max_x, MIN(y) AS min_y, MAX(y) AS max_y, "
            f"COUNT(*) AS total_rows FROM {_quote(POINTS_TABLE)}"
        )
        row = df.iloc[0]
        total = int(row["total_rows"])
        if total == 0:
            return Bounds(0.0, 0.0, 0.0, 0.0, 0)
        return Bounds(
            min_x=float(row["min_x"]),
            max_x=float(row["max_x"]),
            min_y=float(row["min_y"]),
            max_y=float(row["max_y"]),
            total_rows=total,
        )

    def sample(
        self,
        rect: Rect,
        exclude_ids: Optional[Sequence[int]],
        limit: int,
    ) -> pa.Table:
        """Random sample of at most ``limit`` points inside ``rect``."""
        sql, params = build_sample_query(rect, exclude_ids, limit)
        return self._fetch_arrow(sql, params)

    def lookup(self, ids: Iterable[int]) -> pd.DataFrame:
        """Return the complete source rows whose identity is in ``ids``."""
        id_list = sorted({int(i) for i in ids})
        if not id_list:
            return self._fetch_df(f"SELECT * FROM {_quote(SOURCE_TABLE)} LIMIT 0")
        id_col = _quote(self._id_col)
        return self._fetch_df(
            f"SELECT * FROM {_quote(SOURCE_TABLE)} "
            f"WHERE {id_col} IN (SELECT unnest(?::BIGINT[])) ORDER BY {id_col}",
            [id_list],
        )

    def close(self) -> None:
        self._con.close()
