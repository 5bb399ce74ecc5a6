"""
Object keys: the locator of a data object plus optional structured data.

Keys travel with objects in both formats. In text they are a comment line
``#objectKey <KeyClass> <data>`` preceding the object record, in binary
they are the first nested object of every body.
"""

import re
from typing import Optional, Sequence, Tuple

from .binary import BinarySerializable, BinaryReader, BinaryWriter, register_type, array_size, string_size

KEY_COMMENT = "#objectKey"

_DIMENSION_PATTERN = re.compile(r"^\[([^\]]*)\]\s*(.*)$")


@register_type
class ObjectKey(BinarySerializable):
    """Key holding only the locator URI."""

    def __init__(self, locator: Optional[str] = None):
        self.locator = locator

    @classmethod
    def from_text(cls, data: str) -> "ObjectKey":
        """Build a key from the data part of an ``#objectKey`` comment."""
        return cls(data or None)

    def text_data(self) -> str:
        return self.locator or ""

    def write(self, stream) -> None:
        data = self.text_data()
        line = f"{KEY_COMMENT} {type(self).__name__}"
        if data:
            line += f" {data}"
        stream.write(line + "\n")

    def binary_serialize(self, writer: BinaryWriter) -> int:
        return writer.write_string(self.locator)

    def binary_size(self) -> int:
        return string_size(self.locator)

    @classmethod
    def _read_binary(cls, reader: BinaryReader) -> dict:
        return {"locator": reader.read_string()}

    def _identity(self) -> tuple:
        return (type(self), self.locator)

    def __eq__(self, other):
        if not isinstance(other, ObjectKey):
            return NotImplemented
        return self._identity() == other._identity()

    def __hash__(self):
        return hash(self._identity())

    def __repr__(self):
        return f"{type(self).__name__}({self.text_data()!r})"


@register_type
class DimensionObjectKey(ObjectKey):
    """
    Key carrying the pixel dimensions (width, height, ...) of the source image.

    Used by feature sets to convert between relative ``[0, 1)`` point
    coordinates and absolute pixels. Text data is ``[w,h] <locator>``.
    """

    def __init__(self, locator: Optional[str] = None, dimensions: Sequence[int] = ()):
        super().__init__(locator)
        self.dimensions: Tuple[int, ...] = tuple(int(d) for d in dimensions)

    @classmethod
    def from_text(cls, data: str) -> "DimensionObjectKey":
        match = _DIMENSION_PATTERN.match(data.strip())
        if match is None:
            raise ValueError(
                f"Incorrect dimension object key format, expected '[x,y,...] URI', got {data!r}"
            )
        dims = [d for d in re.split(r"[,:]", match.group(1)) if d.strip()]
        return cls(match.group(2) or None, [int(d) for d in dims])

    def text_data(self) -> str:
        dims = "[" + ",".join(str(d) for d in self.dimensions) + "]"
        if self.locator:
            return f"{dims} {self.locator}"
        return dims

    @property
    def width(self) -> int:
        return self.dimensions[0]

    @property
    def height(self) -> int:
        return self.dimensions[1]

    def convert_to_relative(self, value: float, dimension: int) -> float:
        return value / float(self.dimensions[dimension])

    def convert_to_absolute(self, value: float, dimension: int) -> int:
        return int(value * self.dimensions[dimension])

    def binary_serialize(self, writer: BinaryWriter) -> int:
        return super().binary_serialize(writer) + writer.write_array(self.dimensions, "int")

    def binary_size(self) -> int:
        return super().binary_size() + array_size(self.dimensions, "int")

    @classmethod
    def _read_binary(cls, reader: BinaryReader) -> dict:
        fields = super()._read_binary(reader)
        dims = reader.read_array("int")
        fields["dimensions"] = () if dims is None else dims.tolist()
        return fields

    def _identity(self) -> tuple:
        return super()._identity() + (self.dimensions,)
