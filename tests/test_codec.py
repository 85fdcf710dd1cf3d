"""
Tests for the shared data model and the Arrow row-set codec.

Run tests:
    pytest tests/test_codec.py -v
"""

import pyarrow as pa
import pytest

from shared.codec import (
    CodecError,
    decode_points,
    decode_table,
    encode_points,
    encode_table,
    from_base64,
    points_to_table,
    table_to_points,
    to_base64,
)
from shared.types import Bounds, Point, Rect

# ============================================================================
# Rect / Bounds
# ============================================================================


class TestRect:
    def test_from_corners_orders_coordinates(self):
        rect = Rect.from_corners(5.0, -1.0, 1.0, 3.0)
        assert rect == Rect(1.0, 5.0, -1.0, 3.0)

    def test_contains_is_inclusive(self):
        rect = Rect(0.0, 1.0, 0.0, 1.0)
        assert rect.contains(0.0, 0.0)
        assert rect.contains(1.0, 1.0)
        assert not rect.contains(1.0001, 0.5)

    def test_zero_area_rejected(self):
        with pytest.raises(ValueError):
            Rect(1.0, 1.0, 0.0, 2.0)

    def test_center_and_size(self):
        rect = Rect(0.0, 4.0, 2.0, 4.0)
        assert rect.center == (2.0, 3.0)
        assert rect.width == 4.0
        assert rect.height == 2.0


class TestBounds:
    def test_to_rect(self):
        bounds = Bounds(0.0, 10.0, -5.0, 5.0, 42)
        assert bounds.to_rect() == Rect(0.0, 10.0, -5.0, 5.0)

    def test_degenerate_axis_is_padded(self):
        rect = Bounds(3.0, 3.0, 0.0, 1.0, 1).to_rect(padding=0.5)
        assert rect.x_min == 2.5
        assert rect.x_max == 3.5


# ============================================================================
# Codec
# ============================================================================


class TestPointCodec:
    def test_500_points_survive_encoding(self):
        points = [Point(i, i * 0.5, -i * 0.25, i % 3 == 0) for i in range(1, 501)]

        decoded = decode_points(encode_points(points))

        assert len(decoded) == 500
        by_id = {p.id: p for p in decoded}
        for original in points:
            assert by_id[original.id] == original

    def test_empty_row_set(self):
        assert decode_points(encode_points([])) == []

    def test_text_categories_are_kept(self):
        points = [Point(1, 0.0, 0.0, "a"), Point(2, 1.0, 1.0, "b")]
        table = points_to_table(points)
        assert table.schema.field("category").type == pa.string()
        assert [p.category for p in table_to_points(table)] == ["a", "b"]

    def test_missing_category_defaults_to_true(self):
        table = pa.table({"id": [7], "x": [1.0], "y": [2.0]})
        assert table_to_points(table) == [Point(7, 1.0, 2.0, True)]

    def test_null_coordinates_are_rejected(self):
        table = pa.table({"id": [1, 2], "x": [1.0, None], "y": [0.0, 0.0]})
        with pytest.raises(CodecError, match="null values in: x"):
            table_to_points(table)

    def test_missing_required_column(self):
        table = pa.table({"id": [1], "x": [1.0]})
        with pytest.raises(CodecError, match="y"):
            table_to_points(table)

    def test_table_roundtrip_keeps_extra_columns(self):
        table = pa.table({"id": [1, 2], "x": [0.0, 1.0], "y": [0.0, 1.0], "label": ["p", "q"]})
        assert decode_table(encode_table(table)).equals(table)

    def test_garbage_payload(self):
        with pytest.raises(CodecError):
            decode_table(b"not an arrow stream")


class TestBase64:
    def test_roundtrip(self):
        payload = encode_points([Point(1, 0.0, 0.0)])
        assert from_base64(to_base64(payload)) == payload

    def test_invalid_text(self):
        with pytest.raises(CodecError):
            from_base64("***")
