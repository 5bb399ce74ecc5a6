"""
MPEG-7 visual descriptors and the shape-and-color descriptor set.

Each descriptor uses the matching function of the MPEG-7 reference
software (XM):

    ColorLayout     weighted Euclidean distance per Y/Cb/Cr channel
    EdgeHistogram   L1 over 80 local, 5 global and 65 semi-global bins
    RegionShape     L1 over inverse-quantized ART coefficients

ColorStructure and ScalableColor are plain L1 vectors (ShortVectorL1 and
IntVectorL1). ShapeAndColor bundles all five and sums their normalized
distances with configurable weights.
"""

import os
import logging
from typing import Optional

import numpy as np

from .base import LineReader, LocalObject
from .binary import BYTE_SIZE, BinaryReader, BinaryWriter, array_size, register_type
from .keys import ObjectKey
from .meta import Aggregation, DescriptorSchema, MetaObject, WeightedSum
from .metrics import DistanceMetric, register_metric
from .vectors import IntVectorL1, ObjectVector, ShortVectorL1, format_numbers, parse_numbers

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Color layout
# ---------------------------------------------------------------------------

# Low-frequency coefficients dominate perceived layout
Y_WEIGHTS = np.array([3, 3, 3] + [1] * 61, dtype=np.float64)
CB_WEIGHTS = np.array([2, 2, 2] + [1] * 61, dtype=np.float64)
CR_WEIGHTS = np.array([4, 2, 2] + [1] * 61, dtype=np.float64)


def _weighted_channel_distance(weights: np.ndarray, a: np.ndarray, b: np.ndarray) -> float:
    n = min(len(a), len(b), len(weights))
    diff = a[:n].astype(np.float64) - b[:n].astype(np.float64)
    return float(np.sqrt(np.sum(weights[:n] * diff * diff)))


@register_type
class ColorLayout(LocalObject):
    """
    DCT coefficients of the Y, Cb and Cr channels of an 8x8 thumbnail.

    Channels of different lengths are compared over their common prefix.
    Text form: ``y1, y2, ...; cb1, ...; cr1, ...``.
    """

    def __init__(self, y_coeff=(), cb_coeff=(), cr_coeff=(), key: Optional[ObjectKey] = None):
        super().__init__(key)
        self.y_coeff = np.array(y_coeff, dtype=np.int8).reshape(-1)
        self.cb_coeff = np.array(cb_coeff, dtype=np.int8).reshape(-1)
        self.cr_coeff = np.array(cr_coeff, dtype=np.int8).reshape(-1)

    def _channels(self):
        return self.y_coeff, self.cb_coeff, self.cr_coeff

    def _distance_impl(self, other, threshold, meta_distances=None):
        return (_weighted_channel_distance(Y_WEIGHTS, self.y_coeff, other.y_coeff)
                + _weighted_channel_distance(CB_WEIGHTS, self.cb_coeff, other.cb_coeff)
                + _weighted_channel_distance(CR_WEIGHTS, self.cr_coeff, other.cr_coeff))

    def data_equals(self, other) -> bool:
        return type(other) is type(self) and all(
            np.array_equal(a, b) for a, b in zip(self._channels(), other._channels())
        )

    def data_hash(self) -> int:
        return hash(tuple(c.tobytes() for c in self._channels()))

    @classmethod
    def _parse(cls, lines: LineReader, key, attributes):
        parts = lines.read_record_line().split(";")
        if len(parts) != 3:
            raise ValueError(f"Color layout needs Y, Cb and Cr parts, got {len(parts)}")
        y, cb, cr = (parse_numbers(p, np.int8) for p in parts)
        return cls(y, cb, cr, key=key)

    def _write_data(self, stream) -> None:
        stream.write("; ".join(format_numbers(c) for c in self._channels()) + "\n")

    def binary_serialize(self, writer: BinaryWriter) -> int:
        written = super().binary_serialize(writer)
        for channel in self._channels():
            written += writer.write_array(channel, "byte")
        return written

    def binary_size(self) -> int:
        return super().binary_size() + sum(array_size(c, "byte") for c in self._channels())

    @classmethod
    def _read_binary(cls, reader: BinaryReader) -> dict:
        fields = super()._read_binary(reader)
        for name in ("y_coeff", "cb_coeff", "cr_coeff"):
            channel = reader.read_array("byte")
            fields[name] = channel if channel is not None else ()
        return fields


# ---------------------------------------------------------------------------
# Edge histogram
# ---------------------------------------------------------------------------

EDGE_BINS = 80
# Reconstruction levels of the 8 quantization steps, one row per edge type
EDGE_QUANT_TABLE = np.array([
    [0.010867, 0.057915, 0.099526, 0.144849, 0.195573, 0.260504, 0.358031, 0.530128],
    [0.012266, 0.069934, 0.125879, 0.182307, 0.243396, 0.314563, 0.411728, 0.564319],
    [0.004193, 0.025852, 0.046860, 0.068519, 0.093286, 0.123490, 0.161505, 0.228960],
    [0.004174, 0.025924, 0.046232, 0.067163, 0.089655, 0.115391, 0.151904, 0.217745],
    [0.006778, 0.051667, 0.108650, 0.166257, 0.224226, 0.285691, 0.356375, 0.450972],
], dtype=np.float32)


def total_edge_histogram(bins: np.ndarray) -> np.ndarray:
    """
    Expand 80 quantized local bins into the 150-bin matching histogram.

    The local bins describe 4x4 sub-images with 5 edge types each. Layout
    of the result:
        [0:5]      global histogram (scaled by 5/16)
        [5:85]     local bins
        [85:105]   mean of each sub-image column
        [105:125]  mean of each sub-image row
        [125:145]  the four 2x2 quadrants (upper pair, lower pair)
        [145:150]  the central 2x2 block
    """
    edge_types = np.arange(EDGE_BINS) % 5
    local = EDGE_QUANT_TABLE[edge_types, bins.astype(np.intp)].astype(np.float64)
    blocks = local.reshape(4, 4, 5)
    quadrants = blocks.reshape(2, 2, 2, 2, 5).mean(axis=(1, 3))

    histogram = np.empty(150, dtype=np.float64)
    histogram[0:5] = blocks.sum(axis=(0, 1)) * 5 / 16
    histogram[5:85] = local
    histogram[85:105] = blocks.mean(axis=0).reshape(20)
    histogram[105:125] = blocks.mean(axis=1).reshape(20)
    histogram[125:135] = quadrants[0].reshape(10)
    histogram[135:145] = quadrants[1].reshape(10)
    histogram[145:150] = blocks[1:3, 1:3].mean(axis=(0, 1))
    return histogram


class EdgeHistogramMetric(DistanceMetric):
    """L1 distance between the 150-bin expansions of two edge histograms."""

    name = "edge-histogram"

    def distance(self, a, b, threshold):
        return float(np.abs(total_edge_histogram(a) - total_edge_histogram(b)).sum())


EDGE_HISTOGRAM = register_metric(EdgeHistogramMetric())


@register_type
class EdgeHistogram(ObjectVector):
    """80 local edge bins, each a quantization index in 0..7."""

    element = "byte"
    metric = EDGE_HISTOGRAM

    @classmethod
    def _prepare(cls, data) -> np.ndarray:
        arr = super()._prepare(data)
        if len(arr) != EDGE_BINS:
            raise ValueError(f"Edge histogram needs {EDGE_BINS} bins, got {len(arr)}")
        if arr.min() < 0 or arr.max() > 7:
            raise ValueError("Edge histogram bins must be quantization indexes 0..7")
        return arr


# ---------------------------------------------------------------------------
# Region shape
# ---------------------------------------------------------------------------

ART_ANGULAR = 12
ART_RADIAL = 3
ART_COEFFICIENTS = ART_ANGULAR * ART_RADIAL
REGION_SHAPE_IQUANT_TABLE = np.array([
    0.001763817, 0.005468893, 0.009438835, 0.013714449, 0.018346760, 0.023400748,
    0.028960940, 0.035140141, 0.042093649, 0.050043696, 0.059324478, 0.070472849,
    0.084434761, 0.103127662, 0.131506859, 0.192540857,
])


@register_type
class RegionShape(LocalObject):
    """
    Angular radial transform coefficients (12 angular x 3 radial).

    Stored as quantization indexes 0..15; the (0, 0) coefficient is only a
    normalizer and is skipped by the distance. Binary body is the 36 raw
    index bytes without a length prefix.
    """

    def __init__(self, coefficients, key: Optional[ObjectKey] = None):
        super().__init__(key)
        arr = np.array(coefficients, dtype=np.int8).reshape(-1)
        if arr.size != ART_COEFFICIENTS:
            raise ValueError(f"Region shape needs {ART_COEFFICIENTS} coefficients, got {arr.size}")
        if arr.min() < 0 or arr.max() >= len(REGION_SHAPE_IQUANT_TABLE):
            raise ValueError("Region shape coefficients must be quantization indexes 0..15")
        self.coefficients = arr

    def coefficient(self, angular: int, radial: int) -> float:
        """Inverse-quantized value of one ART coefficient."""
        return float(REGION_SHAPE_IQUANT_TABLE[self.coefficients[angular * ART_RADIAL + radial]])

    def _distance_impl(self, other, threshold, meta_distances=None):
        mine = REGION_SHAPE_IQUANT_TABLE[self.coefficients[1:].astype(np.intp)]
        theirs = REGION_SHAPE_IQUANT_TABLE[other.coefficients[1:].astype(np.intp)]
        return float(np.abs(mine - theirs).sum())

    def data_equals(self, other) -> bool:
        return type(other) is type(self) and np.array_equal(self.coefficients, other.coefficients)

    def data_hash(self) -> int:
        return hash(self.coefficients.tobytes())

    @classmethod
    def _parse(cls, lines: LineReader, key, attributes):
        return cls(parse_numbers(lines.read_record_line(), np.int8), key=key)

    def _write_data(self, stream) -> None:
        stream.write(format_numbers(self.coefficients) + "\n")

    def binary_serialize(self, writer: BinaryWriter) -> int:
        written = super().binary_serialize(writer)
        for value in self.coefficients:
            written += writer.write_byte(int(value))
        return written

    def binary_size(self) -> int:
        return super().binary_size() + ART_COEFFICIENTS * BYTE_SIZE

    @classmethod
    def _read_binary(cls, reader: BinaryReader) -> dict:
        fields = super()._read_binary(reader)
        fields["coefficients"] = [reader.read_byte() for _ in range(ART_COEFFICIENTS)]
        return fields


# ---------------------------------------------------------------------------
# Shape and color descriptor set
# ---------------------------------------------------------------------------

# Weights are loaded from the environment to allow tuning per collection.
SHAPE_AND_COLOR_WEIGHTS = {
    "ColorLayoutType":    float(os.environ.get("SAC_COLOR_LAYOUT_W", "2.0")),
    "ColorStructureType": float(os.environ.get("SAC_COLOR_STRUCTURE_W", "2.0")),
    "ScalableColorType":  float(os.environ.get("SAC_SCALABLE_COLOR_W", "2.0")),
    "EdgeHistogramType":  float(os.environ.get("SAC_EDGE_HISTOGRAM_W", "5.0")),
    "RegionShapeType":    float(os.environ.get("SAC_REGION_SHAPE_W", "4.0")),
}

# Typical distance ranges of each descriptor
SHAPE_AND_COLOR_NORMALIZERS = {
    "ColorLayoutType": 300.0,
    "ColorStructureType": 40.0 * 255.0,
    "ScalableColorType": 3000.0,
    "EdgeHistogramType": 68.0,
    "RegionShapeType": 8.0,
}


@register_type
class ShapeAndColor(MetaObject):
    """
    MPEG-7 color and shape descriptors of one image, compared by weighted sum.

    Each instance starts from its own copy of the default weights, so
    ``set_weight`` on one object leaves the others unchanged.
    """

    schema = DescriptorSchema([
        ("ColorLayoutType", ColorLayout),
        ("ColorStructureType", ShortVectorL1),
        ("ScalableColorType", IntVectorL1),
        ("EdgeHistogramType", EdgeHistogram),
        ("RegionShapeType", RegionShape),
    ])
    aggregation = WeightedSum(SHAPE_AND_COLOR_WEIGHTS, SHAPE_AND_COLOR_NORMALIZERS)

    def __init__(self, objects=None, key: Optional[ObjectKey] = None,
                 aggregation: Optional[Aggregation] = None):
        if aggregation is None:
            aggregation = type(self).aggregation.copy()
        super().__init__(objects, key, aggregation)
