"""
Feature sets: collections of feature points describing one image.

Distances between sets:
    GreedyMatchFeatureSet       sum of nearest-point distances both ways
    MinNumOfSimilarFeatureSet   share of points with a close counterpart
    NeedlemanWunschFeatureSet   global alignment of ordered sequences
    SmithWatermanFeatureSet     local alignment, optionally per sliding window

Ordered sets keep their points sorted by a SortDimension once one is set,
which enables range scans and sliding-window iteration over the
normalized ``[0, 1) x [0, 1)`` plane. Window sizes and shifts are given in
pixels and converted through the set's DimensionObjectKey.

Text form:
    #sortDimension X                 (ordered sets with an ordering)
    <PointClass> : <count>
    <count point records>
"""

import os
import math
import bisect
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from .alignment import (
    DEFAULT_COST,
    SequenceMatchingCost,
    alignment_distance,
    needleman_wunsch_max_similarity,
    needleman_wunsch_similarity,
    smith_waterman_max_similarity,
    smith_waterman_similarity,
)
from .base import MAX_DISTANCE, LineReader, LocalObject
from .binary import INT_SIZE, BinaryReader, BinaryWriter, lookup_type, object_size, register_type, string_size
from .errors import IncompatibleObjectError, OrderingNotSetError, WindowConfigurationError
from .features import FeaturePoint
from .keys import DimensionObjectKey, ObjectKey

logger = logging.getLogger(__name__)


class SortDimension(Enum):
    """Axis a feature set is ordered by; the other axis breaks ties."""

    X = "X"
    Y = "Y"

    def primary(self, point: FeaturePoint) -> float:
        return point.x if self is SortDimension.X else point.y

    def secondary(self, point: FeaturePoint) -> float:
        return point.y if self is SortDimension.X else point.x

    def sort_key(self, point: FeaturePoint) -> Tuple[float, float]:
        return self.primary(point), self.secondary(point)


@dataclass(frozen=True)
class SlidingWindow:
    """Window size and step, in pixels."""

    width: float
    height: float
    shift_x: float
    shift_y: float


def _load_default_window() -> Optional[SlidingWindow]:
    width = float(os.environ.get("SW_WINDOW_WIDTH", "0"))
    height = float(os.environ.get("SW_WINDOW_HEIGHT", "0"))
    if width <= 0 or height <= 0:
        return None
    return SlidingWindow(
        width, height,
        float(os.environ.get("SW_WINDOW_SHIFT_X", "0")),
        float(os.environ.get("SW_WINDOW_SHIFT_Y", "0")),
    )


# Smith-Waterman sets compare window by window when this is set
DEFAULT_WINDOW = _load_default_window()


def _axis_ranges(size: float, shift: float) -> List[Tuple[float, float]]:
    """Half-open ranges covering [0, 1) along one axis; the last one is clamped to the end."""
    if size >= 1:
        return [(0.0, math.inf)]
    if shift <= 0:
        raise WindowConfigurationError(
            f"Window of relative size {size:.4f} needs a positive shift to cover the extent"
        )
    ranges = []
    start = 0.0
    while start + size < 1:
        ranges.append((start, start + size))
        start += shift
    ranges.append((max(0.0, 1.0 - size), math.inf))
    return ranges


def window_bounds(width: float, height: float,
                  shift_x: float, shift_y: float) -> List[Tuple[float, float, float, float]]:
    """
    Enumerate sliding windows over the normalized plane, row by row.

    Args:
        width, height: Window size relative to the extent.
        shift_x, shift_y: Step between windows, relative to the extent.

    Returns:
        List of ``(min_x, max_x, min_y, max_y)`` half-open bounds.

    Raises:
        WindowConfigurationError: If a window smaller than the extent has
            a non-positive shift along that axis.
    """
    columns = _axis_ranges(width, shift_x)
    rows = _axis_ranges(height, shift_y)
    return [(x0, x1, y0, y1) for y0, y1 in rows for x0, x1 in columns]


class FeatureSet(LocalObject):
    """
    Mutable sequence of feature points.

    Reads are safe from several threads; ``add_object`` and reordering
    take the set's lock.
    """

    def __init__(self, objects: Sequence[FeaturePoint] = (), key: Optional[ObjectKey] = None):
        super().__init__(key)
        self._lock = threading.RLock()
        self._objects: List[FeaturePoint] = []
        for obj in objects:
            self.add_object(obj)

    def add_object(self, obj: FeaturePoint) -> None:
        if not isinstance(obj, FeaturePoint):
            raise TypeError(f"Feature sets hold FeaturePoint objects, got {type(obj).__name__}")
        with self._lock:
            self._objects.append(obj)

    def get_object(self, index: int) -> FeaturePoint:
        return self._objects[index]

    def get_object_count(self) -> int:
        return len(self._objects)

    @property
    def objects(self) -> List[FeaturePoint]:
        """Snapshot of the points in their current order."""
        with self._lock:
            return list(self._objects)

    def __len__(self):
        return len(self._objects)

    def __iter__(self) -> Iterator[FeaturePoint]:
        return iter(self.objects)

    def data_equals(self, other) -> bool:
        if type(other) is not type(self) or len(other) != len(self):
            return False
        return all(a.data_equals(b) for a, b in zip(self.objects, other.objects))

    def data_hash(self) -> int:
        return hash(tuple(o.data_hash() for o in self.objects))

    # Text

    @classmethod
    def _text_attributes(cls, attributes: Dict[str, str]) -> dict:
        return {}

    @classmethod
    def _parse(cls, lines: LineReader, key, attributes):
        header = lines.read_record_line()
        class_name, separator, count = header.partition(":")
        if not separator:
            raise ValueError(f"Expected '<class> : <count>' header, got {header!r}")
        count = int(count)
        if count < 0:
            raise ValueError(f"Negative feature count {count}")
        objects = []
        if count:
            point_class = lookup_type(class_name.strip())
            if not issubclass(point_class, FeaturePoint):
                raise ValueError(f"{class_name.strip()} is not a feature point class")
            objects = [point_class.read(lines) for _ in range(count)]
        return cls(objects, key=key, **cls._text_attributes(attributes))

    def _write_data(self, stream) -> None:
        objects = self.objects
        class_name = type(objects[0]).__name__ if objects else FeaturePoint.__name__
        stream.write(f"{class_name} : {len(objects)}\n")
        for obj in objects:
            obj.write(stream, write_comments=False)

    # Binary

    def binary_serialize(self, writer: BinaryWriter) -> int:
        objects = self.objects
        written = super().binary_serialize(writer) + writer.write_int(len(objects))
        for obj in objects:
            written += writer.write_object(obj)
        return written

    def binary_size(self) -> int:
        return super().binary_size() + INT_SIZE + sum(object_size(o) for o in self.objects)

    @classmethod
    def _read_binary(cls, reader: BinaryReader) -> dict:
        fields = super()._read_binary(reader)
        count = reader.read_int()
        fields["objects"] = [reader.read_object(FeaturePoint) for _ in range(count)]
        return fields

    def __repr__(self):
        return f"<{type(self).__name__} locator={self.locator!r} points={len(self)}>"


@register_type
class GreedyMatchFeatureSet(FeatureSet):
    """
    Min-of-mins distance.

    Every point of each set is matched to its nearest point in the other
    set; the two directional sums are averaged. Stops as soon as the
    running sum exceeds twice the threshold, so a pruned result is above
    the threshold and never above the exact value.
    """

    def _distance_impl(self, other, threshold, meta_distances=None):
        mine = self.objects
        theirs = other.objects
        if not mine and not theirs:
            return 0.0
        if not mine or not theirs:
            return MAX_DISTANCE

        limit = 2 * threshold
        total = 0.0
        for source, target in ((mine, theirs), (theirs, mine)):
            for point in source:
                total += min(point.get_distance(q) for q in target)
                if total > limit:
                    logger.debug(f"Greedy match pruned at {total / 2:.4f} (threshold {threshold})")
                    return total / 2
        return total / 2


@register_type
class MinNumOfSimilarFeatureSet(FeatureSet):
    """
    ``1 - (exact + 0.5 * approx) / |smaller set|``.

    Each point of the smaller set counts as exact when its nearest
    counterpart lies within the cost's equality threshold, approximate
    when within the upper threshold. An empty set is at the maximum
    distance from every set, including another empty one.
    """

    cost: SequenceMatchingCost = DEFAULT_COST

    def _distance_impl(self, other, threshold, meta_distances=None):
        smaller, larger = sorted((self.objects, other.objects), key=len)
        if not smaller:
            return self.get_max_distance()

        exact = approx = 0
        for point in smaller:
            best = min(point.get_distance(q) for q in larger)
            if best <= self.cost.equality_threshold:
                exact += 1
            elif best <= self.cost.equality_upper_threshold:
                approx += 1
        return 1.0 - (exact + 0.5 * approx) / len(smaller)

    def get_max_distance(self) -> float:
        return 1.0


class OrderedFeatureSet(FeatureSet):
    """
    Feature set that can be kept sorted along a SortDimension.

    Once ordered, ``add_object`` inserts in place. Range scans and window
    iteration require an ordering and raise OrderingNotSetError otherwise.

    Args:
        objects: Initial points.
        key: Usually a DimensionObjectKey with the image size.
        sort_dimension: Ordering to establish right away.
    """

    def __init__(self, objects: Sequence[FeaturePoint] = (), key: Optional[ObjectKey] = None,
                 sort_dimension: Optional[SortDimension] = None):
        self.sort_dimension: Optional[SortDimension] = None
        super().__init__(objects, key)
        if sort_dimension is not None:
            self.order_features(sort_dimension)

    def add_object(self, obj: FeaturePoint) -> None:
        if self.sort_dimension is None:
            super().add_object(obj)
            return
        if not isinstance(obj, FeaturePoint):
            raise TypeError(f"Feature sets hold FeaturePoint objects, got {type(obj).__name__}")
        with self._lock:
            bisect.insort(self._objects, obj, key=self.sort_dimension.sort_key)

    def order_features(self, dimension: SortDimension) -> None:
        """Sort the points along ``dimension`` and keep them sorted from now on."""
        with self._lock:
            if self.sort_dimension is dimension:
                return
            self._objects.sort(key=dimension.sort_key)
            self.sort_dimension = dimension

    def sorted_by(self, dimension: SortDimension) -> List[FeaturePoint]:
        """Points ordered along ``dimension``, without reordering this set."""
        with self._lock:
            if self.sort_dimension is dimension:
                return list(self._objects)
            return sorted(self._objects, key=dimension.sort_key)

    def _require_ordering(self) -> SortDimension:
        if self.sort_dimension is None:
            raise OrderingNotSetError(
                f"{type(self).__name__} has no sort dimension; call order_features() first"
            )
        return self.sort_dimension

    def iter_window(self, min_primary: float, max_primary: float,
                    min_secondary: float, max_secondary: float) -> List[FeaturePoint]:
        """
        Points inside a half-open rectangle, in set order.

        Bounds are along the sort dimension (primary) and the other axis
        (secondary).
        """
        dimension = self._require_ordering()
        objects = self.objects
        start = bisect.bisect_left(objects, min_primary, key=dimension.primary)
        selected = []
        for point in objects[start:]:
            if dimension.primary(point) >= max_primary:
                break
            if min_secondary <= dimension.secondary(point) < max_secondary:
                selected.append(point)
        return selected

    def window_iterator(self, window: SlidingWindow) -> Iterator[List[FeaturePoint]]:
        """
        Slide ``window`` over the set and yield the points of each position.

        Raises:
            OrderingNotSetError: If the set is not ordered.
            WindowConfigurationError: If the set has no image dimensions or
                the window cannot cover the extent.
        """
        dimension = self._require_ordering()
        if not isinstance(self.key, DimensionObjectKey):
            raise WindowConfigurationError(
                "Sliding windows need the image size from a DimensionObjectKey"
            )
        bounds = window_bounds(
            self.key.convert_to_relative(window.width, 0),
            self.key.convert_to_relative(window.height, 1),
            self.key.convert_to_relative(window.shift_x, 0),
            self.key.convert_to_relative(window.shift_y, 1),
        )
        if dimension is SortDimension.X:
            return (self.iter_window(x0, x1, y0, y1) for x0, x1, y0, y1 in bounds)
        return (self.iter_window(y0, y1, x0, x1) for x0, x1, y0, y1 in bounds)

    # Text

    @classmethod
    def _text_attributes(cls, attributes: Dict[str, str]) -> dict:
        value = attributes.get("sortDimension")
        if not value:
            return {}
        try:
            return {"sort_dimension": SortDimension(value.strip())}
        except ValueError:
            raise ValueError(f"Unknown sort dimension {value!r}") from None

    def _write_comments(self, stream) -> None:
        super()._write_comments(stream)
        if self.sort_dimension is not None:
            stream.write(f"#sortDimension {self.sort_dimension.value}\n")

    # Binary

    def binary_serialize(self, writer: BinaryWriter) -> int:
        name = self.sort_dimension.value if self.sort_dimension is not None else None
        return super().binary_serialize(writer) + writer.write_string(name)

    def binary_size(self) -> int:
        name = self.sort_dimension.value if self.sort_dimension is not None else None
        return super().binary_size() + string_size(name)

    @classmethod
    def _read_binary(cls, reader: BinaryReader) -> dict:
        fields = super()._read_binary(reader)
        name = reader.read_string()
        fields["sort_dimension"] = SortDimension(name) if name else None
        return fields


class AlignmentFeatureSet(OrderedFeatureSet):
    """
    Ordered set compared by sequence alignment.

    Sets sharing an ordering are aligned once in that order. Otherwise the
    X-sorted and Y-sorted projections are aligned separately and their
    similarities averaged (see alignment).
    """

    cost: SequenceMatchingCost = DEFAULT_COST
    similarity = staticmethod(needleman_wunsch_similarity)
    max_similarity = staticmethod(needleman_wunsch_max_similarity)

    def __init__(self, objects: Sequence[FeaturePoint] = (), key: Optional[ObjectKey] = None,
                 sort_dimension: Optional[SortDimension] = None,
                 cost: Optional[SequenceMatchingCost] = None):
        super().__init__(objects, key, sort_dimension)
        if cost is not None:
            self.cost = cost

    def get_max_distance(self) -> float:
        return 1.0

    def _projections(self, other: "AlignmentFeatureSet") -> List[Tuple[list, list]]:
        if self.sort_dimension is not None and self.sort_dimension is other.sort_dimension:
            return [(self.objects, other.objects)]
        return [(self.sorted_by(d), other.sorted_by(d)) for d in (SortDimension.X, SortDimension.Y)]

    def _distance_impl(self, other, threshold, meta_distances=None):
        return alignment_distance(self._projections(other), self.cost,
                                  self.similarity, self.max_similarity)

    def get_distance_by_windowing(self, other: "AlignmentFeatureSet", window: SlidingWindow) -> float:
        """
        Minimum distance over all pairs of window positions.

        Each window pair is aligned in the sets' own orderings.
        """
        if not self.is_distance_compatible(other):
            raise IncompatibleObjectError(
                f"Cannot compare {type(self).__name__} with {type(other).__name__}"
            )
        best = MAX_DISTANCE
        for mine in self.window_iterator(window):
            for theirs in other.window_iterator(window):
                dist = alignment_distance([(mine, theirs)], self.cost,
                                          self.similarity, self.max_similarity)
                if dist < best:
                    best = dist
        return best


@register_type
class NeedlemanWunschFeatureSet(AlignmentFeatureSet):
    """Global alignment; maximum similarity is ``max(n, m) * max_cost``."""


@register_type
class SmithWatermanFeatureSet(AlignmentFeatureSet):
    """
    Local alignment with affine gaps; maximum similarity is ``min(n, m) * max_cost``.

    With a sliding window configured (per instance or through
    ``SW_WINDOW_*``), the distance is the minimum over window pairs, which
    requires both sets to be ordered and to carry their image size.
    """

    similarity = staticmethod(smith_waterman_similarity)
    max_similarity = staticmethod(smith_waterman_max_similarity)

    def __init__(self, objects: Sequence[FeaturePoint] = (), key: Optional[ObjectKey] = None,
                 sort_dimension: Optional[SortDimension] = None,
                 cost: Optional[SequenceMatchingCost] = None,
                 window: Optional[SlidingWindow] = None):
        super().__init__(objects, key, sort_dimension, cost)
        self.window = window if window is not None else DEFAULT_WINDOW

    def _distance_impl(self, other, threshold, meta_distances=None):
        if self.window is not None:
            return self.get_distance_by_windowing(other, self.window)
        return super()._distance_impl(other, threshold, meta_distances)
