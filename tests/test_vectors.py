"""Tests for primitive vectors and their metrics."""

import io
import math

import numpy as np
import pytest

from visual_objects.base import MAX_DISTANCE, LineReader
from visual_objects.binary import deserialize, serialize
from visual_objects.errors import (
    DimensionalityError,
    IncompatibleObjectError,
    ObjectParseError,
    ZeroVectorError,
)
from visual_objects.keys import ObjectKey
from visual_objects.metrics import COSINE, L1, get_metric
from visual_objects.vectors import (
    VECTOR_TYPES,
    ByteVectorL1,
    DoubleVectorL2,
    FloatVectorCosine,
    FloatVectorL1,
    FloatVectorL2,
    IntVectorL1,
    SortedIntVectorJaccard,
    parse_numbers,
)


class TestMetrics:
    """Tests for the distance metrics."""

    def test_l1(self):
        assert IntVectorL1([1, 2, 3]).get_distance(IntVectorL1([4, 2, 0])) == 6.0

    def test_l2(self):
        assert FloatVectorL2([0, 0]).get_distance(FloatVectorL2([3, 4])) == pytest.approx(5.0)

    def test_dimension_mismatch(self):
        with pytest.raises(DimensionalityError):
            FloatVectorL2([1, 2]).get_distance(FloatVectorL2([1, 2, 3]))
        with pytest.raises(ValueError):
            IntVectorL1([1]).get_distance(IntVectorL1([1, 2]))

    def test_cosine_orthogonal(self):
        assert FloatVectorCosine([1, 0]).get_distance(FloatVectorCosine([0, 1])) == pytest.approx(1.0)

    def test_cosine_ignores_sign(self):
        dist = FloatVectorCosine([1, 2]).get_distance(FloatVectorCosine([-1, -2]))
        assert dist == pytest.approx(0.0, abs=1e-7)
        assert dist >= 0

    def test_cosine_zero_vector(self):
        with pytest.raises(ZeroVectorError):
            FloatVectorCosine([0, 0]).get_distance(FloatVectorCosine([1, 1]))

    def test_cosine_nan_propagates(self):
        dist = FloatVectorCosine([float("nan"), 1]).get_distance(FloatVectorCosine([1, 1]))
        assert math.isnan(dist)

    def test_jaccard(self):
        a = SortedIntVectorJaccard([1, 3, 5])
        b = SortedIntVectorJaccard([3, 5, 7])
        assert a.get_distance(b) == pytest.approx(0.5)

    def test_jaccard_empty_sets(self):
        empty = SortedIntVectorJaccard([])
        assert empty.get_distance(SortedIntVectorJaccard([])) == 0.0
        assert empty.get_distance(SortedIntVectorJaccard([1])) == 1.0
        assert SortedIntVectorJaccard([1]).get_distance(empty) == 1.0

    def test_jaccard_sorts_and_deduplicates(self):
        assert SortedIntVectorJaccard([5, 1, 3, 3]).data.tolist() == [1, 3, 5]

    def test_metric_registry(self):
        assert get_metric("L1") is L1
        assert get_metric("cosine") is COSINE
        with pytest.raises(ValueError, match="Unknown distance metric"):
            get_metric("hamming")

    @pytest.mark.parametrize("cls", [FloatVectorL1, FloatVectorL2, DoubleVectorL2])
    def test_metric_axioms(self, cls):
        rng = np.random.RandomState(42)
        for _ in range(50):
            a, b, c = (cls(rng.uniform(-10, 10, 8)) for _ in range(3))
            assert a.get_distance(a) == 0.0
            assert a.get_distance(b) == pytest.approx(b.get_distance(a))
            assert a.get_distance(c) <= a.get_distance(b) + b.get_distance(c) + 1e-6


class TestObjectVector:
    """Tests for the vector container."""

    def test_data_is_read_only(self):
        vector = FloatVectorL2([1, 2])
        with pytest.raises(ValueError):
            vector.data[0] = 5

    def test_incompatible_types(self):
        with pytest.raises(IncompatibleObjectError):
            FloatVectorL2([1]).get_distance(FloatVectorL1([1]))

    def test_metric_override(self):
        a = FloatVectorL2([0, 0], metric=L1)
        assert a.get_distance(FloatVectorL2([3, 4])) == pytest.approx(7.0)

    def test_norm_distance_of_unbounded_metric(self):
        norm = FloatVectorL2([0, 0]).get_norm_distance(FloatVectorL2([3, 4]))
        assert norm == 5.0 / MAX_DISTANCE
        assert 0 < norm < 1
        a = FloatVectorCosine([1, 0])
        assert a.get_norm_distance(FloatVectorCosine([0, 1])) == pytest.approx(1.0)

    def test_rejects_matrix(self):
        with pytest.raises(ValueError, match="one-dimensional"):
            FloatVectorL2([[1, 2], [3, 4]])


class TestVectorText:
    """Tests for the one-line text form."""

    def test_comma_and_whitespace_separated(self):
        assert IntVectorL1.from_text("1, 2, 3\n").data.tolist() == [1, 2, 3]
        assert IntVectorL1.from_text("1 2 3\n").data.tolist() == [1, 2, 3]

    def test_empty_line_is_empty_vector(self):
        assert len(FloatVectorL2.from_text("\n")) == 0

    def test_write(self):
        assert IntVectorL1([1, -2]).to_text() == "1, -2\n"
        keyed = IntVectorL1([4], key=ObjectKey("a.jpg"))
        assert keyed.to_text() == "#objectKey ObjectKey a.jpg\n4\n"
        assert keyed.to_text(write_comments=False) == "4\n"

    def test_text_round_trip(self):
        for cls in VECTOR_TYPES.values():
            vector = cls([1, 2, 3], key=ObjectKey("v"))
            restored = cls.from_text(vector.to_text())
            assert restored.data_equals(vector)
            assert restored.key == vector.key
            assert restored.to_text() == vector.to_text()

    def test_bad_number(self):
        with pytest.raises(ObjectParseError) as exc_info:
            FloatVectorL2.from_text("#objectKey ObjectKey bad.jpg\n1, x\n")
        assert exc_info.value.line == "1, x"
        assert exc_info.value.locator == "bad.jpg"

    def test_out_of_range(self):
        with pytest.raises(ObjectParseError, match="out of range"):
            ByteVectorL1.from_text("1, 300\n")
        with pytest.raises(ValueError, match="out of range"):
            parse_numbers("40000", np.int16)

    def test_end_of_stream(self):
        with pytest.raises(EOFError):
            FloatVectorL2.read(io.StringIO(""))

    def test_sequential_records(self):
        lines = LineReader(io.StringIO("1, 2\n3, 4\n"))
        assert IntVectorL1.read(lines).data.tolist() == [1, 2]
        assert IntVectorL1.read(lines).data.tolist() == [3, 4]
        with pytest.raises(EOFError):
            IntVectorL1.read(lines)


class TestVectorBinary:
    """Tests for the binary form."""

    def test_round_trip_and_size(self):
        for cls in VECTOR_TYPES.values():
            vector = cls([3, 1, 2], key=ObjectKey("v"))
            assert len(vector.to_bytes()) == vector.binary_size()
            restored = deserialize(serialize(vector))
            assert type(restored) is cls
            assert restored.data_equals(vector)
            assert restored.key == vector.key

    def test_empty_vector_without_key(self):
        vector = FloatVectorL2([])
        assert len(vector.to_bytes()) == vector.binary_size()
        assert len(deserialize(serialize(vector))) == 0
