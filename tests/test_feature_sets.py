"""Tests for feature sets, ordering and sliding windows."""

import math

import pytest

from visual_objects.alignment import DEFAULT_COST, SequenceMatchingCost
from visual_objects.base import MAX_DISTANCE
from visual_objects.binary import deserialize, serialize
from visual_objects.errors import (
    IncompatibleObjectError,
    ObjectParseError,
    OrderingNotSetError,
    WindowConfigurationError,
)
from visual_objects.feature_sets import (
    GreedyMatchFeatureSet,
    MinNumOfSimilarFeatureSet,
    NeedlemanWunschFeatureSet,
    SlidingWindow,
    SmithWatermanFeatureSet,
    SortDimension,
    window_bounds,
)
from visual_objects.keys import ObjectKey
from visual_objects.vectors import FloatVectorL2


class TestFeatureSet:
    """Tests for the common feature-set container."""

    def test_rejects_non_points(self):
        with pytest.raises(TypeError, match="FeaturePoint"):
            GreedyMatchFeatureSet([FloatVectorL2([1.0])])

    def test_text_round_trip(self, make_point):
        fs = GreedyMatchFeatureSet([make_point(0.25, 0.5, 1, 2), make_point(0.75, 0.125, 3, 4)],
                                   key=ObjectKey("img.jpg"))
        text = fs.to_text()
        assert text.splitlines()[1] == "ByteFeature : 2"
        restored = GreedyMatchFeatureSet.from_text(text)
        assert restored.data_equals(fs)
        assert restored.locator == "img.jpg"
        assert restored.to_text() == text

    def test_empty_set_text(self):
        text = GreedyMatchFeatureSet().to_text()
        assert text == "FeaturePoint : 0\n"
        assert len(GreedyMatchFeatureSet.from_text(text)) == 0

    def test_bad_header(self):
        with pytest.raises(ObjectParseError, match="header"):
            GreedyMatchFeatureSet.from_text("ByteFeature 2\n")

    def test_truncated_record(self, make_point):
        text = GreedyMatchFeatureSet([make_point(0.25, 0.5, 1)]).to_text()
        text = text.replace(": 1", ": 3")
        with pytest.raises(ObjectParseError):
            GreedyMatchFeatureSet.from_text(text)

    def test_binary_round_trip(self, make_point, image_key):
        for cls in (GreedyMatchFeatureSet, MinNumOfSimilarFeatureSet, NeedlemanWunschFeatureSet):
            fs = cls([make_point(0.25, 0.5, 1, 2), make_point(0.75, 0.125, 3, 4)], key=image_key)
            assert len(fs.to_bytes()) == fs.binary_size()
            restored = deserialize(serialize(fs))
            assert type(restored) is cls
            assert restored.data_equals(fs)
            assert restored.key == image_key

    def test_empty_binary_size(self):
        fs = GreedyMatchFeatureSet()
        assert len(fs.to_bytes()) == fs.binary_size()


class TestGreedyMatch:
    """Tests for the min-of-mins distance."""

    def test_empty_sets(self, make_point):
        assert GreedyMatchFeatureSet().get_distance(GreedyMatchFeatureSet()) == 0.0
        one = GreedyMatchFeatureSet([make_point(0, 0, 1)])
        assert one.get_distance(GreedyMatchFeatureSet()) == MAX_DISTANCE

    def test_averages_both_directions(self, make_point):
        a = GreedyMatchFeatureSet([make_point(0, 0, 0), make_point(0, 0, 10)])
        b = GreedyMatchFeatureSet([make_point(0, 0, 0), make_point(0, 0, 4)])
        # a->b: 0 + 6, b->a: 0 + 4
        assert a.get_distance(b) == pytest.approx(5.0)
        assert b.get_distance(a) == pytest.approx(5.0)

    def test_pruned_result(self, make_point):
        a = GreedyMatchFeatureSet([make_point(0, 0, 0), make_point(0, 0, 10)])
        b = GreedyMatchFeatureSet([make_point(0, 0, 0), make_point(0, 0, 4)])
        full = a.get_distance(b)
        pruned = a.get_distance(b, threshold=1.0)
        assert 1.0 < pruned <= full


class TestMinNumOfSimilar:
    """Tests for the similar-point count distance."""

    def test_counts_exact_and_approximate(self, make_point):
        a = MinNumOfSimilarFeatureSet([make_point(0, 0, v) for v in (0, 30, 100)])
        b = MinNumOfSimilarFeatureSet([make_point(0, 0, v) for v in (0, 5, 200, 255)])
        a.cost = SequenceMatchingCost(equality_threshold=10, equality_upper_threshold=50)
        # 0 exact, 30 approximate, 100 unmatched
        assert a.get_distance(b) == pytest.approx(0.5)

    def test_empty(self, make_point):
        empty = MinNumOfSimilarFeatureSet()
        assert empty.get_distance(MinNumOfSimilarFeatureSet()) == 1.0
        assert empty.get_distance(MinNumOfSimilarFeatureSet([make_point(0, 0, 1)])) == 1.0


class TestOrdering:
    """Tests for sorted sets and range scans."""

    def test_order_and_insert(self, make_point):
        fs = NeedlemanWunschFeatureSet([make_point(0.5, 0.1), make_point(0.2, 0.9)])
        fs.order_features(SortDimension.X)
        fs.add_object(make_point(0.3, 0.3))
        assert [p.x for p in fs] == pytest.approx([0.2, 0.3, 0.5])

    def test_secondary_breaks_ties(self, make_point):
        fs = NeedlemanWunschFeatureSet([make_point(0.5, 0.9), make_point(0.5, 0.1)],
                                       sort_dimension=SortDimension.X)
        assert [p.y for p in fs] == pytest.approx([0.1, 0.9])

    def test_sorted_by_leaves_set_unchanged(self, make_point):
        fs = NeedlemanWunschFeatureSet([make_point(0.5, 0.1), make_point(0.2, 0.9)])
        by_y = fs.sorted_by(SortDimension.Y)
        assert [p.y for p in by_y] == pytest.approx([0.1, 0.9])
        assert [p.x for p in fs] == pytest.approx([0.5, 0.2])
        assert fs.sort_dimension is None

    def test_range_scan_requires_ordering(self, make_point):
        fs = NeedlemanWunschFeatureSet([make_point(0.5, 0.1)])
        with pytest.raises(OrderingNotSetError):
            fs.iter_window(0, 1, 0, 1)

    def test_range_scan(self, make_point):
        fs = NeedlemanWunschFeatureSet(
            [make_point(x, y) for x, y in ((0.1, 0.1), (0.4, 0.6), (0.6, 0.2), (0.45, 0.2))],
            sort_dimension=SortDimension.X,
        )
        selected = fs.iter_window(0.3, 0.5, 0.0, 0.5)
        assert [(p.x, p.y) for p in selected] == [pytest.approx((0.45, 0.2))]

    def test_sort_dimension_text_round_trip(self, make_point, image_key):
        fs = NeedlemanWunschFeatureSet([make_point(0.5, 0.1, 7)], key=image_key,
                                       sort_dimension=SortDimension.Y)
        text = fs.to_text()
        assert "#sortDimension Y\n" in text
        restored = NeedlemanWunschFeatureSet.from_text(text)
        assert restored.sort_dimension is SortDimension.Y
        assert restored.key == image_key

    def test_unknown_sort_dimension(self):
        with pytest.raises(ObjectParseError, match="sort dimension"):
            NeedlemanWunschFeatureSet.from_text("#sortDimension Z\nFeaturePoint : 0\n")

    def test_sort_dimension_binary_round_trip(self, make_point):
        fs = SmithWatermanFeatureSet([make_point(0.5, 0.1, 7)], sort_dimension=SortDimension.X)
        restored = deserialize(serialize(fs))
        assert restored.sort_dimension is SortDimension.X
        assert len(fs.to_bytes()) == fs.binary_size()


class TestSlidingWindows:
    """Tests for window enumeration and iteration."""

    def test_bounds_cover_extent(self):
        assert window_bounds(0.5, 0.5, 0.5, 0.5) == [
            (0.0, 0.5, 0.0, 0.5), (0.5, math.inf, 0.0, 0.5),
            (0.0, 0.5, 0.5, math.inf), (0.5, math.inf, 0.5, math.inf),
        ]

    def test_window_larger_than_extent(self):
        assert window_bounds(1.5, 1.0, 0.0, 0.0) == [(0.0, math.inf, 0.0, math.inf)]

    def test_last_window_clamped(self):
        columns = [(x0, x1) for x0, x1, y0, y1 in window_bounds(0.4, 1.0, 0.3, 0)]
        assert columns == [(0.0, 0.4), (0.3, pytest.approx(0.7)), (pytest.approx(0.6), math.inf)]

    def test_zero_shift(self):
        with pytest.raises(WindowConfigurationError, match="positive shift"):
            window_bounds(0.5, 0.5, 0.0, 0.5)

    def test_iterator_requires_dimensions(self, make_point):
        fs = NeedlemanWunschFeatureSet([make_point(0.1, 0.1)], key=ObjectKey("a"),
                                       sort_dimension=SortDimension.X)
        with pytest.raises(WindowConfigurationError, match="DimensionObjectKey"):
            fs.window_iterator(SlidingWindow(50, 50, 50, 50))

    def test_iterator_requires_ordering(self, make_point, image_key):
        fs = NeedlemanWunschFeatureSet([make_point(0.1, 0.1)], key=image_key)
        with pytest.raises(OrderingNotSetError):
            fs.window_iterator(SlidingWindow(50, 50, 50, 50))

    @pytest.mark.parametrize("dimension", [SortDimension.X, SortDimension.Y])
    def test_one_point_per_quadrant(self, make_point, image_key, dimension):
        coords = [(0.1, 0.1), (0.6, 0.1), (0.1, 0.6), (0.6, 0.6)]
        fs = NeedlemanWunschFeatureSet([make_point(x, y) for x, y in coords], key=image_key,
                                       sort_dimension=dimension)
        windows = list(fs.window_iterator(SlidingWindow(50, 50, 50, 50)))
        assert [[(p.x, p.y) for p in w] for w in windows] == [
            [pytest.approx(c)] for c in coords
        ]


class TestAlignmentSets:
    """Tests for Needleman-Wunsch and Smith-Waterman sets."""

    def test_identical_sets(self, make_point):
        points = [make_point(0.1, 0.2, 10), make_point(0.5, 0.4, 200), make_point(0.9, 0.1, 90)]
        for cls in (NeedlemanWunschFeatureSet, SmithWatermanFeatureSet):
            assert cls(points).get_distance(cls(points)) == pytest.approx(0.0)
            ordered = cls(points, sort_dimension=SortDimension.Y)
            assert ordered.get_distance(cls(points, sort_dimension=SortDimension.Y)) == pytest.approx(0.0)

    def test_disjoint_sets(self, make_point):
        a = NeedlemanWunschFeatureSet([make_point(0.1, 0.1, 0, 0, 0, 0)])
        b = NeedlemanWunschFeatureSet([make_point(0.1, 0.1, 255, 255, 255, 255)])
        assert a.get_distance(b) == pytest.approx(1.0)

    def test_local_versus_global(self, make_point):
        common = make_point(0.1, 0.1, 0, 0, 0, 0)
        noise = make_point(0.9, 0.9, 0, 255, 255, 255)
        sw = SmithWatermanFeatureSet([common, noise]).get_distance(SmithWatermanFeatureSet([common]))
        nw = NeedlemanWunschFeatureSet([common, noise]).get_distance(NeedlemanWunschFeatureSet([common]))
        assert sw == pytest.approx(0.0)
        # One exact match, one trailing gap, out of two possible matches
        expected = 1 - (DEFAULT_COST.match_exact - DEFAULT_COST.gap_opening) / (2 * DEFAULT_COST.match_exact)
        assert nw == pytest.approx(expected)

    def test_max_distance(self):
        assert NeedlemanWunschFeatureSet().get_max_distance() == 1.0

    def test_windowed_distance(self, make_point, image_key):
        window = SlidingWindow(50, 50, 50, 50)
        a = SmithWatermanFeatureSet(
            [make_point(0.1, 0.1, 10), make_point(0.6, 0.6, 100)],
            key=image_key, sort_dimension=SortDimension.X, window=window,
        )
        b = SmithWatermanFeatureSet(
            [make_point(0.7, 0.2, 10)],
            key=image_key, sort_dimension=SortDimension.X, window=window,
        )
        assert a.get_distance(b) == pytest.approx(0.0)

    def test_windowing_type_mismatch(self, make_point, image_key):
        a = SmithWatermanFeatureSet([make_point(0.1, 0.1)], key=image_key,
                                    sort_dimension=SortDimension.X)
        b = NeedlemanWunschFeatureSet([make_point(0.1, 0.1)], key=image_key,
                                      sort_dimension=SortDimension.X)
        with pytest.raises(IncompatibleObjectError):
            a.get_distance_by_windowing(b, SlidingWindow(50, 50, 50, 50))
