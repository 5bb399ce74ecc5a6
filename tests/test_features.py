"""Tests for feature points."""

import pytest

from visual_objects.base import MAX_DISTANCE
from visual_objects.binary import deserialize, serialize
from visual_objects.errors import ObjectParseError
from visual_objects.features import ByteFeature, FloatFeature, QuantizedFeature


class TestDistances:
    """Tests for point distances."""

    def test_quantized_keys(self):
        a = QuantizedFeature(0.1, 0.2, quantized_keys=[1, 2])
        assert a.get_distance(QuantizedFeature(0.5, 0.5, quantized_keys=[1, 2])) == 0.0
        assert a.get_distance(QuantizedFeature(0.1, 0.2, quantized_keys=[3])) == MAX_DISTANCE

    def test_byte_descriptor_l2(self):
        a = ByteFeature(0, 0, descriptor=[0, 0])
        b = ByteFeature(0.5, 0.5, descriptor=[3, 4])
        assert a.get_distance(b) == pytest.approx(5.0)

    def test_byte_descriptor_range(self):
        with pytest.raises(ValueError, match="0..255"):
            ByteFeature(0, 0, descriptor=[256])

    def test_empty_keys_are_none(self):
        assert ByteFeature(0, 0, quantized_keys=[]).quantized_keys is None

    def test_float32_precision(self):
        point = FloatFeature(0.1, 0.2, descriptor=[0.5])
        restored = deserialize(serialize(point))
        assert restored.data_equals(point)


class TestFeatureText:
    """Tests for the point text form."""

    def test_write(self):
        point = ByteFeature(0.25, 0.5, 90.0, 12.0, [1, 2, 3], quantized_keys=[7, 9])
        assert point.to_text() == (
            "0.25, 0.5, 90.0, 12.0; 7, 9\n"
            "1, 2, 3\n"
        )

    def test_round_trip(self):
        points = [
            ByteFeature(0.25, 0.5, 90.0, 12.0, [1, 2, 3], quantized_keys=[7, 9]),
            FloatFeature(0.75, 0.125, 0.0, 2.0, [0.5, -1.5]),
            QuantizedFeature(0.5, 0.5, 45.0, 3.0, quantized_keys=[42]),
        ]
        for point in points:
            restored = type(point).from_text(point.to_text())
            assert restored.data_equals(point)
            assert restored.to_text() == point.to_text()

    def test_round_trip_inexact_decimals(self):
        point = QuantizedFeature(1 / 3, 0.123456789, 2 / 3, 1.1234567, [4])
        restored = QuantizedFeature.from_text(point.to_text())
        assert restored.x == point.x
        assert restored.scale == point.scale
        assert restored.data_equals(point)

    def test_shortest_float32_text(self):
        point = FloatFeature(1 / 3, 0.1, 0.0, 2.0, [0.5])
        assert point.point_line() == "0.33333334, 0.1, 0.0, 2.0"

    def test_whitespace_separated(self):
        point = QuantizedFeature.from_text("0.5 0.25 0 1; 3 4\n")
        assert (point.x, point.y) == (0.5, 0.25)
        assert point.quantized_keys == (3, 4)

    def test_wrong_field_count(self):
        with pytest.raises(ObjectParseError, match="orientation and scale"):
            QuantizedFeature.from_text("0.5, 0.25, 1\n")

    def test_missing_descriptor_line(self):
        with pytest.raises(ObjectParseError):
            ByteFeature.from_text("0.5, 0.25, 0, 1\n")


class TestFeatureBinary:
    """Tests for the point binary form."""

    def test_round_trip_and_size(self):
        points = [
            ByteFeature(0.25, 0.5, 90.0, 12.0, [1, 255], quantized_keys=[2 ** 40]),
            FloatFeature(0.75, 0.125, descriptor=[]),
            QuantizedFeature(0.5, 0.5),
        ]
        for point in points:
            assert len(point.to_bytes()) == point.binary_size()
            restored = deserialize(serialize(point))
            assert type(restored) is type(point)
            assert restored.data_equals(point)
