"""
Face descriptor compared by an external similarity oracle.

The descriptor itself is an opaque byte string produced by a face
recognition engine; only that engine can compare two of them. The engine
is reached through a SimilarityOracle, obtained lazily from an
OracleHandle the first time a distance is computed. The default handle
loads a native library with ctypes:

    FACE_ORACLE_LIBRARY   path or name of the shared library
    FACE_ORACLE_SYMBOL    exported function, default ``face_similarity``

The exported function must have the C signature
``float f(const uint8_t *a, size_t len_a, const uint8_t *b, size_t len_b)``
and return a similarity in ``[0, 1]``.
"""

import os
import ctypes
import ctypes.util
import logging
import threading
from typing import Callable, Optional, Protocol

import numpy as np

from .base import LineReader, LocalObject
from .binary import BinaryReader, BinaryWriter, array_size, register_type
from .errors import LibraryUnavailableError
from .keys import ObjectKey

logger = logging.getLogger(__name__)

FACE_ORACLE_LIBRARY = os.environ.get("FACE_ORACLE_LIBRARY", "")
FACE_ORACLE_SYMBOL = os.environ.get("FACE_ORACLE_SYMBOL", "face_similarity")


class SimilarityOracle(Protocol):
    """Compares two raw face descriptors."""

    def similarity(self, a: bytes, b: bytes) -> float:
        """Similarity of two descriptors, 1 for the same face."""
        ...


class NativeFaceOracle:
    """
    SimilarityOracle backed by a native shared library.

    Args:
        library: File path or short name of the library.
        symbol: Name of the exported similarity function.

    Raises:
        LibraryUnavailableError: If the library or symbol cannot be loaded.
    """

    def __init__(self, library: str, symbol: str = FACE_ORACLE_SYMBOL):
        if not library:
            raise LibraryUnavailableError("No face oracle library configured (FACE_ORACLE_LIBRARY)")
        path = library if os.path.sep in library else (ctypes.util.find_library(library) or library)
        try:
            self._lib = ctypes.CDLL(path)
            func = getattr(self._lib, symbol)
        except (OSError, AttributeError) as e:
            raise LibraryUnavailableError(f"Cannot load face oracle {symbol} from {library}: {e}") from e

        func.argtypes = [ctypes.c_char_p, ctypes.c_size_t, ctypes.c_char_p, ctypes.c_size_t]
        func.restype = ctypes.c_float
        self._func = func
        logger.info(f"Loaded face oracle {symbol} from {path}")

    def similarity(self, a: bytes, b: bytes) -> float:
        return float(self._func(a, len(a), b, len(b)))


def _default_oracle() -> SimilarityOracle:
    return NativeFaceOracle(FACE_ORACLE_LIBRARY, FACE_ORACLE_SYMBOL)


class OracleHandle:
    """
    Lazily created, replaceable reference to a SimilarityOracle.

    The factory runs at most once per successful initialization; a failure
    is remembered so every later call fails fast with the same reason
    until :meth:`reset`.
    """

    def __init__(self, factory: Callable[[], SimilarityOracle] = _default_oracle):
        self._factory = factory
        self._lock = threading.Lock()
        self._oracle: Optional[SimilarityOracle] = None
        self._error: Optional[LibraryUnavailableError] = None

    def get(self) -> SimilarityOracle:
        """
        Return the oracle, creating it on first use.

        Raises:
            LibraryUnavailableError: If the oracle cannot be created.
        """
        with self._lock:
            if self._oracle is not None:
                return self._oracle
            if self._error is None:
                try:
                    self._oracle = self._factory()
                    return self._oracle
                except LibraryUnavailableError as e:
                    logger.warning(f"Face oracle unavailable: {e}")
                    self._error = e
            raise LibraryUnavailableError(
                f"Cannot compute face distance: {self._error}"
            ) from self._error

    def is_available(self) -> bool:
        """Try to initialize the oracle and log whether it is loaded."""
        try:
            self.get()
        except LibraryUnavailableError:
            logger.info("Face oracle not loaded; face distances will fail")
            return False
        logger.info("Face oracle loaded")
        return True

    def install(self, oracle: SimilarityOracle) -> None:
        """Use ``oracle`` from now on instead of the factory's."""
        with self._lock:
            self._oracle = oracle
            self._error = None

    def reset(self) -> None:
        """Forget the current oracle and any failure; the factory runs again on next use."""
        with self._lock:
            self._oracle = None
            self._error = None


default_oracle_handle = OracleHandle()


@register_type
class FaceDescriptor(LocalObject):
    """
    Opaque face descriptor; distance is ``1 - similarity``.

    Not a metric. Text form is one line of hexadecimal digits, binary form
    a byte array.

    Args:
        data: Raw descriptor bytes.
        key: Optional object key (typically the face's image locator).
        oracle_handle: Handle to compare with; defaults to the shared one.
    """

    def __init__(self, data: bytes = b"", key: Optional[ObjectKey] = None,
                 oracle_handle: Optional[OracleHandle] = None):
        super().__init__(key)
        self.data = bytes(data)
        self.oracle_handle = oracle_handle if oracle_handle is not None else default_oracle_handle

    def _distance_impl(self, other, threshold, meta_distances=None):
        oracle = self.oracle_handle.get()
        return 1.0 - oracle.similarity(self.data, other.data)

    def get_max_distance(self) -> float:
        return 1.0

    def data_equals(self, other) -> bool:
        return type(other) is type(self) and self.data == other.data

    def data_hash(self) -> int:
        return hash(self.data)

    @classmethod
    def _parse(cls, lines: LineReader, key, attributes):
        return cls(bytes.fromhex(lines.read_record_line().strip()), key=key)

    def _write_data(self, stream) -> None:
        stream.write(self.data.hex() + "\n")

    def binary_serialize(self, writer: BinaryWriter) -> int:
        signed = np.frombuffer(self.data, dtype=np.uint8).view(np.int8)
        return super().binary_serialize(writer) + writer.write_array(signed, "byte")

    def binary_size(self) -> int:
        return super().binary_size() + array_size(self.data, "byte")

    @classmethod
    def _read_binary(cls, reader: BinaryReader) -> dict:
        fields = super()._read_binary(reader)
        data = reader.read_array("byte")
        fields["data"] = data.astype("u1").tobytes() if data is not None else b""
        return fields
