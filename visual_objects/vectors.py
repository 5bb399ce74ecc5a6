"""
Primitive vector objects.

One container class, ObjectVector, holds a fixed-length numpy array of a
single element type and delegates distance to an injected metric
(see metrics). Concrete serializable types are declared with
:func:`vector_type`, one line per element-type/metric combination.

Text form is one line of comma- or whitespace-separated numbers (a comma
anywhere on the line selects comma splitting); an empty line is the empty
vector. Values are written as ``v1, v2, ...``.
"""

import re
import logging
from typing import Dict, Optional

import numpy as np

from .base import LineReader, LocalObject
from .binary import BinaryReader, BinaryWriter, array_size, register_type
from .keys import ObjectKey
from .metrics import COSINE, JACCARD, L1, L2, DistanceMetric

logger = logging.getLogger(__name__)

# numpy storage type for each wire element type
ELEMENT_TYPES = {
    "byte": np.int8,
    "short": np.int16,
    "int": np.int32,
    "long": np.int64,
    "float": np.float32,
    "double": np.float64,
}

_COMMA_SPLIT = re.compile(r"\s*,\s*")


def parse_numbers(line: str, dtype) -> np.ndarray:
    """
    Parse one text line of numbers into an array of ``dtype``.

    Raises:
        ValueError: On a token that is not a number or does not fit ``dtype``.
    """
    line = line.strip()
    if not line:
        return np.empty(0, dtype=dtype)
    tokens = _COMMA_SPLIT.split(line) if "," in line else line.split()

    if np.issubdtype(dtype, np.integer):
        values = [int(t) for t in tokens]
        info = np.iinfo(dtype)
        for v in values:
            if v < info.min or v > info.max:
                raise ValueError(f"Value {v} is out of range for {np.dtype(dtype).name}")
    else:
        values = [float(t) for t in tokens]
    return np.array(values, dtype=dtype)


def format_numbers(values) -> str:
    return ", ".join(str(v) for v in values)


class ObjectVector(LocalObject):
    """
    Fixed-length numeric vector with a pluggable distance metric.

    The array is read-only after construction. Vectors of different
    lengths raise DimensionalityError from the metric (Jaccard excepted).

    Args:
        data: Sequence of numbers, converted to the class element type.
        key: Optional object key.
        metric: Overrides the class metric for this instance only.
    """

    element = "float"
    metric: DistanceMetric = L2

    def __init__(self, data, key: Optional[ObjectKey] = None,
                 metric: Optional[DistanceMetric] = None):
        super().__init__(key)
        self.data = self._prepare(data)
        self.data.flags.writeable = False
        if metric is not None:
            self.metric = metric

    @classmethod
    def _prepare(cls, data) -> np.ndarray:
        arr = np.array(data, dtype=ELEMENT_TYPES[cls.element])
        if arr.ndim != 1:
            raise ValueError(f"Vector data must be one-dimensional, got shape {arr.shape}")
        return arr

    def __len__(self):
        return len(self.data)

    @property
    def dimension(self) -> int:
        return len(self.data)

    def _distance_impl(self, other, threshold, meta_distances=None):
        return self.metric(self.data, other.data, threshold)

    def get_max_distance(self) -> float:
        return self.metric.max_distance

    def data_equals(self, other) -> bool:
        return type(other) is type(self) and np.array_equal(self.data, other.data)

    def data_hash(self) -> int:
        return hash(self.data.tobytes())

    # Text

    @classmethod
    def _parse(cls, lines: LineReader, key, attributes):
        line = lines.read_record_line()
        return cls(parse_numbers(line, ELEMENT_TYPES[cls.element]), key=key)

    def _write_data(self, stream) -> None:
        stream.write(format_numbers(self.data) + "\n")

    # Binary

    def binary_serialize(self, writer: BinaryWriter) -> int:
        return super().binary_serialize(writer) + writer.write_array(self.data, self.element)

    def binary_size(self) -> int:
        return super().binary_size() + array_size(self.data, self.element)

    @classmethod
    def _read_binary(cls, reader: BinaryReader) -> dict:
        fields = super()._read_binary(reader)
        data = reader.read_array(cls.element)
        fields["data"] = data if data is not None else ()
        return fields

    def __repr__(self):
        return f"{type(self).__name__}({self.data.tolist()!r}, locator={self.locator!r})"


class SortedIntVector(ObjectVector):
    """Integer set kept ascending and duplicate-free, as Jaccard requires."""

    element = "int"

    @classmethod
    def _prepare(cls, data) -> np.ndarray:
        return np.unique(super()._prepare(data))


def vector_type(element: str, metric: DistanceMetric, name: Optional[str] = None,
                base: type = ObjectVector) -> type:
    """
    Declare and register a concrete vector class.

    Args:
        element: Wire element type (``byte``, ``short``, ``int``, ``long``,
                 ``float``, ``double``).
        metric: Distance metric of the new type.
        name: Class name; defaults to e.g. ``FloatVectorL2``.
        base: Container class to derive from.
    """
    if element not in ELEMENT_TYPES:
        raise ValueError(f"Unknown element type {element!r}")
    if name is None:
        name = f"{element.capitalize()}Vector{metric.name[:1].upper()}{metric.name[1:]}"
    cls = type(name, (base,), {
        "element": element,
        "metric": metric,
        "__module__": __name__,
        "__doc__": f"{element} vector compared with the {metric.name} metric.",
    })
    return register_type(cls)


ByteVectorL1 = vector_type("byte", L1)
ByteVectorL2 = vector_type("byte", L2)
ShortVectorL1 = vector_type("short", L1)
ShortVectorL2 = vector_type("short", L2)
IntVectorL1 = vector_type("int", L1)
IntVectorL2 = vector_type("int", L2)
FloatVectorL1 = vector_type("float", L1)
FloatVectorL2 = vector_type("float", L2)
FloatVectorCosine = vector_type("float", COSINE)
DoubleVectorL1 = vector_type("double", L1)
DoubleVectorL2 = vector_type("double", L2)
DoubleVectorCosine = vector_type("double", COSINE)
SortedIntVectorJaccard = vector_type("int", JACCARD, name="SortedIntVectorJaccard", base=SortedIntVector)

VECTOR_TYPES: Dict[str, type] = {
    cls.__name__: cls for cls in (
        ByteVectorL1, ByteVectorL2, ShortVectorL1, ShortVectorL2,
        IntVectorL1, IntVectorL2, FloatVectorL1, FloatVectorL2, FloatVectorCosine,
        DoubleVectorL1, DoubleVectorL2, DoubleVectorCosine, SortedIntVectorJaccard,
    )
}
