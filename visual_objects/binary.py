"""
Compact big-endian binary encoding for distance-bearing objects.

Layout rules:
    scalars   bool/byte 1, short 2, int/float 4, long/double 8 bytes
    arrays    int32 element count (-1 for a null array), then elements
    strings   int32 UTF-16 code-unit count (-1 for null), then UTF-16BE
    objects   int32 size of everything after the prefix (0 for null),
              then the registered type name, then the object body

An object body is the body of its superclass followed by its own fields,
so every serializable class chains ``binary_serialize``, ``binary_size``
and ``_read_binary`` through ``super()``. The byte count returned by
``binary_serialize`` must always equal ``binary_size()``.

The type registry defined here is shared with the text format, which
names classes in ``#objectKey`` comments and meta-object headers.
"""

import io
import struct
import logging
from typing import Dict, Optional

import numpy as np

from .errors import IncompatibleObjectError

logger = logging.getLogger(__name__)

BOOL_SIZE = 1
BYTE_SIZE = 1
SHORT_SIZE = 2
INT_SIZE = 4
LONG_SIZE = 8
FLOAT_SIZE = 4
DOUBLE_SIZE = 8

# Array element types by their wire name
ELEMENT_DTYPES = {
    "bool": np.dtype(">?"),
    "byte": np.dtype(">i1"),
    "short": np.dtype(">i2"),
    "int": np.dtype(">i4"),
    "long": np.dtype(">i8"),
    "float": np.dtype(">f4"),
    "double": np.dtype(">f8"),
}

_TYPE_REGISTRY: Dict[str, type] = {}


def register_type(cls):
    """Class decorator registering ``cls`` under its class name."""
    name = cls.__name__
    existing = _TYPE_REGISTRY.get(name)
    if existing is not None and existing is not cls:
        logger.warning(f"Type name {name} re-registered by {cls.__module__}")
    _TYPE_REGISTRY[name] = cls
    return cls


def lookup_type(name: str) -> type:
    """
    Resolve a registered type name.

    Raises:
        ValueError: If no class is registered under ``name``.
    """
    try:
        return _TYPE_REGISTRY[name]
    except KeyError:
        raise ValueError(f"Unknown object type {name!r}") from None


def type_name(obj) -> str:
    """Return the registered name of ``obj``'s class."""
    name = type(obj).__name__
    if _TYPE_REGISTRY.get(name) is not type(obj):
        raise ValueError(f"Type {type(obj).__qualname__} is not registered")
    return name


# ---------------------------------------------------------------------------
# Size helpers
# ---------------------------------------------------------------------------

def array_size(values, element: str) -> int:
    if values is None:
        return INT_SIZE
    return INT_SIZE + len(values) * ELEMENT_DTYPES[element].itemsize


def string_size(value: Optional[str]) -> int:
    if value is None:
        return INT_SIZE
    return INT_SIZE + len(value.encode("utf-16-be"))


def object_size(obj) -> int:
    """Size of ``obj`` in its nested (type-tagged) form."""
    if obj is None:
        return INT_SIZE
    return INT_SIZE + string_size(type_name(obj)) + obj.binary_size()


# ---------------------------------------------------------------------------
# Writer / reader
# ---------------------------------------------------------------------------

class BinaryWriter:
    """Writes the binary layout into a byte stream. Every method returns the bytes written."""

    def __init__(self, stream=None):
        self.stream = stream if stream is not None else io.BytesIO()

    def _write(self, data: bytes) -> int:
        self.stream.write(data)
        return len(data)

    def write_bool(self, value: bool) -> int:
        return self._write(struct.pack(">?", bool(value)))

    def write_byte(self, value: int) -> int:
        return self._write(struct.pack(">b", value))

    def write_short(self, value: int) -> int:
        return self._write(struct.pack(">h", value))

    def write_int(self, value: int) -> int:
        return self._write(struct.pack(">i", value))

    def write_long(self, value: int) -> int:
        return self._write(struct.pack(">q", value))

    def write_float(self, value: float) -> int:
        return self._write(struct.pack(">f", value))

    def write_double(self, value: float) -> int:
        return self._write(struct.pack(">d", value))

    def write_array(self, values, element: str) -> int:
        if values is None:
            return self.write_int(-1)
        arr = np.asarray(values).astype(ELEMENT_DTYPES[element])
        return self.write_int(arr.size) + self._write(arr.tobytes())

    def write_string(self, value: Optional[str]) -> int:
        if value is None:
            return self.write_int(-1)
        data = value.encode("utf-16-be")
        return self.write_int(len(data) // 2) + self._write(data)

    def write_object(self, obj) -> int:
        """Write ``obj`` with its size prefix and type name (``None`` writes a null marker)."""
        if obj is None:
            return self.write_int(0)
        name = type_name(obj)
        size = string_size(name) + obj.binary_size()
        written = self.write_int(size)
        body = self.write_string(name) + obj.binary_serialize(self)
        if body != size:
            raise ValueError(f"{name} wrote {body} bytes but declared {size}")
        return written + body

    def getvalue(self) -> bytes:
        return self.stream.getvalue()


class BinaryReader:
    """Reads the binary layout from bytes or a binary stream."""

    def __init__(self, source):
        if isinstance(source, (bytes, bytearray, memoryview)):
            source = io.BytesIO(bytes(source))
        self.stream = source

    def _read(self, count: int) -> bytes:
        data = self.stream.read(count)
        if len(data) < count:
            raise EOFError(f"Expected {count} bytes, stream ended after {len(data)}")
        return data

    def read_bool(self) -> bool:
        return struct.unpack(">?", self._read(BOOL_SIZE))[0]

    def read_byte(self) -> int:
        return struct.unpack(">b", self._read(BYTE_SIZE))[0]

    def read_short(self) -> int:
        return struct.unpack(">h", self._read(SHORT_SIZE))[0]

    def read_int(self) -> int:
        return struct.unpack(">i", self._read(INT_SIZE))[0]

    def read_long(self) -> int:
        return struct.unpack(">q", self._read(LONG_SIZE))[0]

    def read_float(self) -> float:
        return struct.unpack(">f", self._read(FLOAT_SIZE))[0]

    def read_double(self) -> float:
        return struct.unpack(">d", self._read(DOUBLE_SIZE))[0]

    def read_array(self, element: str) -> Optional[np.ndarray]:
        count = self.read_int()
        if count < 0:
            return None
        dtype = ELEMENT_DTYPES[element]
        data = self._read(count * dtype.itemsize)
        return np.frombuffer(data, dtype=dtype).astype(dtype.newbyteorder("="))

    def read_string(self) -> Optional[str]:
        count = self.read_int()
        if count < 0:
            return None
        return self._read(count * 2).decode("utf-16-be")

    def read_object(self, expected: Optional[type] = None):
        """
        Read one nested object.

        Args:
            expected: Optional base class the decoded object must derive from.

        Returns:
            The decoded object, or None for a null marker.

        Raises:
            IncompatibleObjectError: If the stored type is not ``expected``.
            ValueError: If the body length disagrees with its size prefix.
        """
        size = self.read_int()
        if size == 0:
            return None
        start = self.stream.tell()
        cls = lookup_type(self.read_string())
        if expected is not None and not issubclass(cls, expected):
            raise IncompatibleObjectError(
                f"Expected {expected.__name__}, stream holds {cls.__name__}"
            )
        obj = cls.binary_deserialize(self)
        consumed = self.stream.tell() - start
        if consumed != size:
            raise ValueError(f"{cls.__name__} consumed {consumed} bytes, prefix declared {size}")
        return obj


class BinarySerializable:
    """
    Mixin for classes with a binary body.

    Subclasses extend ``binary_serialize``/``binary_size`` by calling
    ``super()`` first, and extend ``_read_binary`` by adding their own
    constructor arguments to the dict returned by the superclass.
    """

    def binary_serialize(self, writer: BinaryWriter) -> int:
        return 0

    def binary_size(self) -> int:
        return 0

    @classmethod
    def _read_binary(cls, reader: BinaryReader) -> dict:
        return {}

    @classmethod
    def binary_deserialize(cls, reader: BinaryReader):
        return cls(**cls._read_binary(reader))

    def to_bytes(self) -> bytes:
        writer = BinaryWriter()
        self.binary_serialize(writer)
        return writer.getvalue()

    @classmethod
    def from_bytes(cls, data: bytes):
        return cls.binary_deserialize(BinaryReader(data))


def serialize(obj) -> bytes:
    """Encode ``obj`` in its nested, type-tagged form."""
    writer = BinaryWriter()
    writer.write_object(obj)
    return writer.getvalue()


def deserialize(data: bytes, expected: Optional[type] = None):
    """Decode an object written by :func:`serialize`."""
    return BinaryReader(data).read_object(expected)
