"""
Exception types raised by distance computation and record parsing.

Every class derives from the builtin family a caller would already catch
(ValueError, TypeError, RuntimeError, ArithmeticError), so code that only
knows the builtins keeps working. End of stream is signalled with the
builtin EOFError when it falls between records; inside a record it
becomes an ObjectParseError.
"""

from typing import Optional


class DimensionalityError(ValueError):
    """Two vectors of different lengths were compared."""


class IncompatibleObjectError(TypeError):
    """Distance was requested between objects of incompatible types."""


class ZeroVectorError(ArithmeticError):
    """Cosine distance is undefined for an all-zero vector."""


class ObjectParseError(ValueError):
    """
    A text record could not be decoded.

    Attributes:
        line: The raw line being decoded when the failure happened.
        locator: Locator of the object being read, if it was known.
    """

    def __init__(self, message: str, line: Optional[str] = None,
                 locator: Optional[str] = None):
        self.line = line
        self.locator = locator
        details = []
        if locator is not None:
            details.append(f"locator={locator!r}")
        if line is not None:
            details.append(f"line={line!r}")
        if details:
            message = f"{message} ({', '.join(details)})"
        super().__init__(message)


class LibraryUnavailableError(RuntimeError):
    """The native similarity library could not be initialized."""


class OrderingNotSetError(RuntimeError):
    """A positional operation was used on a feature set with no sort dimension."""


class WindowConfigurationError(ValueError):
    """A sliding window cannot cover the normalized extent."""
