"""Decode error taxonomy.

Only :class:`DecodeOutOfMemory` is meant to escape the loader; the other
errors are reported as ``(None, error)`` results or turned into ``None`` /
``False`` at the point of use.
"""

from __future__ import annotations


class DecodeError(Exception):
    """Base class for all decode failures."""

    def __init__(self, message: str, handle: str | None = None):
        super().__init__(message)
        self.handle = handle


class SourceNotFound(DecodeError):
    """The source stream could not be opened."""


class SourceUnreadable(DecodeError):
    """The source opened but its header could not be decoded (empty or corrupt)."""


class MalformedMetadata(DecodeError):
    """Orientation or bounds metadata could not be parsed."""


class DecodeOutOfMemory(DecodeError, MemoryError):
    """Allocation kept failing after the whole backoff budget was spent."""

    def __init__(self, message: str, handle: str | None = None, attempts: int = 0, sample_size: int = 1):
        super().__init__(message, handle)
        self.attempts = attempts
        self.sample_size = sample_size
