"""
Distance metric strategies for primitive vectors.

A metric is a stateless callable attached to a vector container, so the
container type and the metric vary independently. All metrics share one
dimension policy: comparing arrays of different lengths raises
DimensionalityError, except Jaccard which compares sets of any size.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict

import numpy as np

from .base import MAX_DISTANCE
from .errors import DimensionalityError, ZeroVectorError

logger = logging.getLogger(__name__)


def _check_dimensions(a: np.ndarray, b: np.ndarray) -> None:
    if len(a) != len(b):
        raise DimensionalityError(
            f"Cannot compute distance on different vector dimensions ({len(a)}, {len(b)})"
        )


class DistanceMetric(ABC):
    """Distance between two 1-D numeric arrays."""

    name = ""
    max_distance = MAX_DISTANCE

    def __call__(self, a: np.ndarray, b: np.ndarray, threshold: float) -> float:
        return self.distance(a, b, threshold)

    @abstractmethod
    def distance(self, a: np.ndarray, b: np.ndarray, threshold: float) -> float:
        """
        Args:
            a, b: Arrays to compare.
            threshold: Pruning hint; the metrics here always return the exact value.
        """

    def __repr__(self):
        return f"{type(self).__name__}()"


class L1Metric(DistanceMetric):
    """City-block distance: sum of absolute coordinate differences."""

    name = "L1"

    def distance(self, a, b, threshold):
        _check_dimensions(a, b)
        diff = a.astype(np.float64) - b.astype(np.float64)
        return float(np.abs(diff).sum())


class L2Metric(DistanceMetric):
    """Euclidean distance."""

    name = "L2"

    def distance(self, a, b, threshold):
        _check_dimensions(a, b)
        diff = a.astype(np.float64) - b.astype(np.float64)
        return float(np.sqrt(np.dot(diff, diff)))


class CosineMetric(DistanceMetric):
    """
    ``1 - |a . b| / (|a| |b|)``.

    The absolute value makes opposite vectors identical. NaN coordinates
    propagate to a NaN distance.
    """

    name = "cosine"
    max_distance = 1.0

    def distance(self, a, b, threshold):
        _check_dimensions(a, b)
        a = a.astype(np.float64)
        b = b.astype(np.float64)
        norm_a = np.linalg.norm(a)
        norm_b = np.linalg.norm(b)
        if norm_a == 0 or norm_b == 0:
            raise ZeroVectorError("Cosine distance is undefined for an all-zero vector")
        dist = 1.0 - abs(float(np.dot(a, b))) / float(norm_a * norm_b)
        # Round-off can push identical vectors slightly below zero
        if dist < 0:
            dist = 0.0
        return dist


class JaccardMetric(DistanceMetric):
    """
    Jaccard distance of two ascending, duplicate-free integer arrays.

    ``1 - |A & B| / |A | B|`` computed with one merge scan. Two empty sets
    are identical (0), one empty set against a non-empty one gives 1.
    """

    name = "jaccard"
    max_distance = 1.0

    def distance(self, a, b, threshold):
        n = len(a)
        m = len(b)
        if n == 0 and m == 0:
            return 0.0
        if n == 0 or m == 0:
            return 1.0

        i = j = intersection = 0
        while i < n and j < m:
            x = a[i]
            y = b[j]
            if x == y:
                intersection += 1
                i += 1
                j += 1
            elif x < y:
                i += 1
            else:
                j += 1
        return 1.0 - intersection / float(n + m - intersection)


L1 = L1Metric()
L2 = L2Metric()
COSINE = CosineMetric()
JACCARD = JaccardMetric()

_METRICS: Dict[str, DistanceMetric] = {m.name: m for m in (L1, L2, COSINE, JACCARD)}


def get_metric(name: str) -> DistanceMetric:
    """
    Look up a metric by name (``L1``, ``L2``, ``cosine``, ``jaccard``).

    Raises:
        ValueError: If the name is unknown.
    """
    try:
        return _METRICS[name]
    except KeyError:
        raise ValueError(f"Unknown distance metric {name!r}; available: {sorted(_METRICS)}") from None


def register_metric(metric: DistanceMetric) -> DistanceMetric:
    """Make ``metric`` available through :func:`get_metric` under its name."""
    if not metric.name:
        raise ValueError("Metric must define a name")
    _METRICS[metric.name] = metric
    logger.debug(f"Registered distance metric {metric.name}")
    return metric
