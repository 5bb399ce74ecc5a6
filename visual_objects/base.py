"""
Common supertype of every distance-bearing object.

A LocalObject carries an optional key (locator plus auxiliary data), knows
how to compute its distance to a compatible object, and reads/writes
itself in the line-oriented text format and the binary format.

Text records may be preceded by comment lines:
    #objectKey <KeyClass> <data>    the object's key
    #<name> <value>                 an attribute handed to the parser
"""

import io
import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple

import numpy as np

from .binary import BinarySerializable, BinaryReader, BinaryWriter, lookup_type, object_size
from .errors import IncompatibleObjectError, ObjectParseError
from .keys import KEY_COMMENT, ObjectKey

logger = logging.getLogger(__name__)

MAX_DISTANCE = float(np.finfo(np.float32).max)
MIN_DISTANCE = 0.0
# Reported for a component whose distance could not be computed
UNKNOWN_DISTANCE = float("-inf")


class LineReader:
    """Line reader with one line of lookahead over a text stream."""

    def __init__(self, stream):
        self._stream = stream
        self._pending: Optional[str] = None
        self.last_line: Optional[str] = None
        self.line_number = 0

    @classmethod
    def wrap(cls, stream) -> "LineReader":
        return stream if isinstance(stream, LineReader) else cls(stream)

    def peek(self) -> str:
        """Return the next raw line (with newline) without consuming it; '' at end of stream."""
        if self._pending is None:
            self._pending = self._stream.readline()
        return self._pending

    def readline(self) -> str:
        line = self.peek()
        self._pending = None
        if line:
            self.line_number += 1
            self.last_line = line.rstrip("\r\n")
        return line

    def read_record_line(self) -> str:
        """
        Consume one data line and return it without the line terminator.

        Raises:
            EOFError: If the stream is exhausted.
        """
        line = self.readline()
        if not line:
            raise EOFError("Unexpected end of stream while reading object data")
        return line.rstrip("\r\n")


def read_comments(lines: LineReader) -> Tuple[Optional[ObjectKey], Dict[str, str]]:
    """
    Consume the comment lines preceding a record.

    Returns:
        Tuple of (key or None, attribute dict).

    Raises:
        EOFError: If the stream ends before a data line.
        ObjectParseError: If an ``#objectKey`` comment is malformed.
    """
    key = None
    attributes: Dict[str, str] = {}
    while True:
        line = lines.peek()
        if not line:
            raise EOFError("End of stream reached while looking for an object")
        if not line.startswith("#"):
            return key, attributes
        text = lines.readline().rstrip("\r\n")
        name, _, value = text[1:].partition(" ")
        if "#" + name == KEY_COMMENT:
            class_name, _, data = value.partition(" ")
            try:
                key_class = lookup_type(class_name)
                if not issubclass(key_class, ObjectKey):
                    raise ValueError(f"{class_name} is not a key class")
                key = key_class.from_text(data)
            except ValueError as e:
                raise ObjectParseError(f"Invalid object key: {e}", line=text) from e
        else:
            attributes[name] = value


class LocalObject(BinarySerializable, ABC):
    """
    Abstract distance-bearing object.

    Subclasses implement ``_distance_impl``, ``data_equals``, ``data_hash``,
    the text pair ``_parse``/``_write_data`` and extend the binary chain.
    """

    def __init__(self, key: Optional[ObjectKey] = None):
        self.key = key

    @property
    def locator(self) -> Optional[str]:
        return self.key.locator if self.key is not None else None

    # ------------------------------------------------------------------
    # Distance
    # ------------------------------------------------------------------

    def get_distance(self, other: "LocalObject", threshold: float = MAX_DISTANCE,
                     meta_distances: Optional[dict] = None) -> float:
        """
        Compute the distance to ``other``.

        Args:
            other: Object of a compatible type.
            threshold: Callers only care about distances up to this value;
                implementations may stop early and return any value above it.
            meta_distances: Optional dict that composite objects fill with
                their per-component distances.

        Raises:
            IncompatibleObjectError: If ``other`` is not distance-compatible.
        """
        if not self.is_distance_compatible(other):
            raise IncompatibleObjectError(
                f"Cannot compute distance between {type(self).__name__} "
                f"and {type(other).__name__}"
            )
        return self._distance_impl(other, threshold, meta_distances)

    @abstractmethod
    def _distance_impl(self, other, threshold: float, meta_distances: Optional[dict] = None) -> float:
        """Distance to an object already checked for compatibility."""

    def get_norm_distance(self, other: "LocalObject", threshold: float = MAX_DISTANCE) -> float:
        """
        Distance divided by :meth:`get_max_distance`, in ``[0, 1]``.

        Types without a natural bound divide by MAX_DISTANCE, so their
        normalized distances are tiny but still ordered.
        """
        max_distance = self.get_max_distance()
        if threshold < MAX_DISTANCE:
            threshold = threshold * max_distance
        return self.get_distance(other, threshold) / max_distance

    def get_max_distance(self) -> float:
        return MAX_DISTANCE

    def is_distance_compatible(self, other) -> bool:
        return type(other) is type(self)

    @abstractmethod
    def data_equals(self, other) -> bool:
        """True when ``other`` holds the same data (keys are ignored)."""

    @abstractmethod
    def data_hash(self) -> int:
        """Hash consistent with :meth:`data_equals`."""

    # ------------------------------------------------------------------
    # Text format
    # ------------------------------------------------------------------

    @classmethod
    def read(cls, stream, **options):
        """
        Read one object from a text stream.

        Args:
            stream: Text stream or LineReader positioned at the record.
            **options: Type-specific parsing options (e.g. the slot
                classes of an ArrayMetaObject).

        Raises:
            EOFError: If the stream holds no further record.
            ObjectParseError: If the record is malformed.
        """
        lines = LineReader.wrap(stream)
        key, attributes = read_comments(lines)
        try:
            return cls._parse(lines, key, attributes, **options)
        except ObjectParseError:
            raise
        except (ValueError, EOFError) as e:
            # A record that started but ended early is corrupt, not exhausted
            locator = key.locator if key is not None else None
            raise ObjectParseError(f"Cannot parse {cls.__name__}: {e}",
                                   line=lines.last_line, locator=locator) from e

    @classmethod
    def _parse(cls, lines: LineReader, key: Optional[ObjectKey], attributes: Dict[str, str]):
        raise NotImplementedError(f"{cls.__name__} cannot be read from text")

    def write(self, stream, write_comments: bool = True) -> None:
        if write_comments:
            self._write_comments(stream)
        self._write_data(stream)

    def _write_comments(self, stream) -> None:
        if self.key is not None:
            self.key.write(stream)

    @abstractmethod
    def _write_data(self, stream) -> None:
        """Write the data line(s) of this object."""

    def to_text(self, write_comments: bool = True) -> str:
        buffer = io.StringIO()
        self.write(buffer, write_comments)
        return buffer.getvalue()

    @classmethod
    def from_text(cls, text: str, **options):
        return cls.read(io.StringIO(text), **options)

    # ------------------------------------------------------------------
    # Binary format
    # ------------------------------------------------------------------

    def binary_serialize(self, writer: BinaryWriter) -> int:
        return writer.write_object(self.key)

    def binary_size(self) -> int:
        return object_size(self.key)

    @classmethod
    def _read_binary(cls, reader: BinaryReader) -> dict:
        return {"key": reader.read_object(ObjectKey)}

    def __repr__(self):
        return f"<{type(self).__name__} locator={self.locator!r}>"
