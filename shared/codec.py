"""
Row-set codec: Arrow IPC stream format, base64-wrapped for JSON envelopes.

The server encodes query results straight from DuckDB's Arrow output; the
viewer decodes them into Point tuples. Only the ``id``, ``x``, ``y`` and
``category`` columns are interpreted, other columns are ignored.
"""

from __future__ import annotations

import base64
import binascii
from typing import Iterable

import pyarrow as pa

from .types import Point

POINT_COLUMNS = ("id", "x", "y", "category")


class CodecError(ValueError):
    """Raised when a payload cannot be decoded into a row set."""


def points_to_table(points: Iterable[Point]) -> pa.Table:
    """Build an Arrow table from points.

    Boolean categories are kept as ``bool``; anything else is stored as text.
    """
    points = list(points)
    categories = [p.category for p in points]
    if all(isinstance(c, bool) for c in categories):
        category_array = pa.array(categories, type=pa.bool_())
    else:
        category_array = pa.array([str(c) for c in categories], type=pa.string())

    return pa.table({
        "id": pa.array([p.id for p in points], type=pa.int64()),
        "x": pa.array([p.x for p in points], type=pa.float64()),
        "y": pa.array([p.y for p in points], type=pa.float64()),
        "category": category_array,
    })


def table_to_points(table: pa.Table) -> list[Point]:
    """Convert an Arrow table into points (``category`` defaults to True)."""
    missing = [c for c in ("id", "x", "y") if c not in table.column_names]
    if missing:
        raise CodecError(f"Row set is missing columns: {', '.join(missing)}")

    nullable = [c for c in ("id", "x", "y") if table.column(c).null_count]
    if nullable:
        raise CodecError(f"Row set has null values in: {', '.join(nullable)}")

    ids = table.column("id").to_pylist()
    xs = table.column("x").to_pylist()
    ys = table.column("y").to_pylist()
    if "category" in table.column_names:
        categories = table.column("category").to_pylist()
    else:
        categories = [True] * table.num_rows

    try:
        return [
            Point(int(i), float(x), float(y), True if c is None else c)
            for i, x, y, c in zip(ids, xs, ys, categories)
        ]
    except (TypeError, ValueError) as e:
        raise CodecError(f"Row set has non-numeric coordinates: {e}") from e


def encode_table(table: pa.Table) -> bytes:
    """Serialize an Arrow table to the IPC stream format."""
    sink = pa.BufferOutputStream()
    with pa.ipc.new_stream(sink, table.schema) as writer:
        writer.write_table(table)
    return sink.getvalue().to_pybytes()


def decode_table(data: bytes) -> pa.Table:
    """Deserialize an Arrow IPC stream."""
    try:
        reader = pa.ipc.open_stream(pa.py_buffer(data))
        return reader.read_all()
    except (pa.ArrowInvalid, OSError) as e:
        raise CodecError(f"Invalid Arrow payload: {e}") from e


def encode_points(points: Iterable[Point]) -> bytes:
    return encode_table(points_to_table(points))


def decode_points(data: bytes) -> list[Point]:
    return table_to_points(decode_table(data))


def to_base64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def from_base64(text: str) -> bytes:
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as e:
        raise CodecError(f"Invalid base64 payload: {e}") from e
