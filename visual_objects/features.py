"""
Local image feature points.

A feature point is a record: relative position (x, y) in ``[0, 1)``,
orientation, scale and an optional list of integer quantization keys.
Absolute pixel positions are recovered through the DimensionObjectKey of
the owning feature set. The distance between two points comes from the
data a concrete subclass carries: quantization keys or a numeric
descriptor.

Text form:
    x, y, orientation, scale[; key1, key2, ...]
    descriptor values            (descriptor-bearing points only)
"""

import re
import logging
from typing import Optional, Sequence

import numpy as np

from .base import MAX_DISTANCE, LineReader, LocalObject
from .binary import FLOAT_SIZE, BinaryReader, BinaryWriter, array_size, register_type
from .keys import ObjectKey
from .metrics import L2, DistanceMetric
from .vectors import ELEMENT_TYPES, format_numbers, parse_numbers

logger = logging.getLogger(__name__)

_FIELD_SPLIT = re.compile(r"[,\s]+")


def _as_float32(value) -> float:
    return float(np.float32(value))


def _format_float32(value: float) -> str:
    # Shortest text that reads back to the same float32
    return np.format_float_positional(np.float32(value), unique=True, trim="0")


class FeaturePoint(LocalObject):
    """
    Position, orientation and scale of one local feature.

    Coordinates are stored with float32 precision so that both formats
    reproduce them exactly.
    """

    def __init__(self, x: float, y: float, orientation: float = 0.0, scale: float = 0.0,
                 quantized_keys: Optional[Sequence[int]] = None,
                 key: Optional[ObjectKey] = None):
        super().__init__(key)
        self.x = _as_float32(x)
        self.y = _as_float32(y)
        self.orientation = _as_float32(orientation)
        self.scale = _as_float32(scale)
        # An empty key list is the same as no keys
        self.quantized_keys = tuple(int(k) for k in quantized_keys) if quantized_keys else None

    def _params(self) -> tuple:
        return (self.x, self.y, self.orientation, self.scale, self.quantized_keys)

    def data_equals(self, other) -> bool:
        return type(other) is type(self) and self._params() == other._params()

    def data_hash(self) -> int:
        return hash(self._params())

    # Text

    @staticmethod
    def parse_point_line(line: str) -> dict:
        """Decode ``x, y, ori, scl[; keys]`` into constructor arguments."""
        params, separator, keys = line.partition(";")
        values = [float(t) for t in _FIELD_SPLIT.split(params.strip()) if t]
        if len(values) != 4:
            raise ValueError(f"Expected x, y, orientation and scale, got {len(values)} values")
        fields = dict(zip(("x", "y", "orientation", "scale"), values))
        if separator:
            fields["quantized_keys"] = [int(t) for t in _FIELD_SPLIT.split(keys.strip()) if t]
        return fields

    def point_line(self) -> str:
        line = ", ".join(_format_float32(v) for v in (self.x, self.y, self.orientation, self.scale))
        if self.quantized_keys:
            line += "; " + ", ".join(str(k) for k in self.quantized_keys)
        return line

    @classmethod
    def _parse(cls, lines: LineReader, key, attributes):
        fields = cls.parse_point_line(lines.read_record_line())
        return cls(key=key, **fields)

    def _write_data(self, stream) -> None:
        stream.write(self.point_line() + "\n")

    # Binary

    def binary_serialize(self, writer: BinaryWriter) -> int:
        return (super().binary_serialize(writer)
                + writer.write_float(self.x)
                + writer.write_float(self.y)
                + writer.write_float(self.orientation)
                + writer.write_float(self.scale)
                + writer.write_array(self.quantized_keys, "long"))

    def binary_size(self) -> int:
        return super().binary_size() + 4 * FLOAT_SIZE + array_size(self.quantized_keys, "long")

    @classmethod
    def _read_binary(cls, reader: BinaryReader) -> dict:
        fields = super()._read_binary(reader)
        fields["x"] = reader.read_float()
        fields["y"] = reader.read_float()
        fields["orientation"] = reader.read_float()
        fields["scale"] = reader.read_float()
        keys = reader.read_array("long")
        fields["quantized_keys"] = keys.tolist() if keys is not None else None
        return fields

    def __repr__(self):
        return f"{type(self).__name__}({self.point_line()!r})"


@register_type
class QuantizedFeature(FeaturePoint):
    """Point matched only by its quantization keys: 0 if equal, otherwise MAX_DISTANCE."""

    def _distance_impl(self, other, threshold, meta_distances=None):
        if self.quantized_keys == other.quantized_keys:
            return 0.0
        return MAX_DISTANCE


class DescriptorFeature(FeaturePoint):
    """
    Point carrying a numeric descriptor compared with ``metric``.

    The descriptor is written on the line following the point line.
    """

    element = "float"
    metric: DistanceMetric = L2

    def __init__(self, x: float, y: float, orientation: float = 0.0, scale: float = 0.0,
                 descriptor=(), quantized_keys: Optional[Sequence[int]] = None,
                 key: Optional[ObjectKey] = None):
        super().__init__(x, y, orientation, scale, quantized_keys, key)
        self.descriptor = self._prepare_descriptor(descriptor)
        self.descriptor.flags.writeable = False

    @classmethod
    def _prepare_descriptor(cls, descriptor) -> np.ndarray:
        return np.array(descriptor, dtype=ELEMENT_TYPES[cls.element]).reshape(-1)

    def _distance_impl(self, other, threshold, meta_distances=None):
        return self.metric(self.descriptor, other.descriptor, threshold)

    def data_equals(self, other) -> bool:
        return super().data_equals(other) and np.array_equal(self.descriptor, other.descriptor)

    def data_hash(self) -> int:
        return hash((super().data_hash(), self.descriptor.tobytes()))

    @classmethod
    def _parse(cls, lines: LineReader, key, attributes):
        fields = cls.parse_point_line(lines.read_record_line())
        fields["descriptor"] = parse_numbers(lines.read_record_line(), ELEMENT_TYPES[cls.element])
        return cls(key=key, **fields)

    def _write_data(self, stream) -> None:
        super()._write_data(stream)
        stream.write(format_numbers(self.descriptor) + "\n")

    def binary_serialize(self, writer: BinaryWriter) -> int:
        return super().binary_serialize(writer) + writer.write_array(self.descriptor, self.element)

    def binary_size(self) -> int:
        return super().binary_size() + array_size(self.descriptor, self.element)

    @classmethod
    def _read_binary(cls, reader: BinaryReader) -> dict:
        fields = super()._read_binary(reader)
        descriptor = reader.read_array(cls.element)
        fields["descriptor"] = descriptor if descriptor is not None else ()
        return fields


@register_type
class ByteFeature(DescriptorFeature):
    """Point with an unsigned byte descriptor (e.g. ORB, SIFT), stored as shorts."""

    element = "short"

    @classmethod
    def _prepare_descriptor(cls, descriptor) -> np.ndarray:
        arr = np.asarray(descriptor).reshape(-1)
        if arr.size and (arr.min() < 0 or arr.max() > 255):
            raise ValueError("Byte descriptor values must lie in 0..255")
        return arr.astype(np.int16)


@register_type
class FloatFeature(DescriptorFeature):
    """Point with a float descriptor (e.g. SURF)."""

    element = "float"
