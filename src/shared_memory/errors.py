"""
Error taxonomy for shared-memory.

Every error raised by the library derives from SharedMemoryError so callers
can catch the whole family at once. Input and vector errors also derive from
ValueError, missing items from LookupError.
"""

from typing import Optional


class SharedMemoryError(Exception):
    """Base class for all shared-memory errors."""


class InvalidInputError(SharedMemoryError, ValueError):
    """Empty text, malformed query parameters or an unusable document."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class DimensionMismatchError(SharedMemoryError, ValueError):
    """Two vectors of different length were compared."""


class StorageError(SharedMemoryError):
    """The persistence layer failed. The original exception is chained as __cause__."""


class ModelUnavailableError(SharedMemoryError):
    """The embedding model failed to load or to run inference."""


class NotFoundError(SharedMemoryError, LookupError):
    """A conversation, document or memory item does not exist."""
