from __future__ import annotations

from typing import Optional


class InvertypeRError(Exception):
    """Base class for errors raised by invertyper."""


class InputError(InvertypeRError, ValueError):
    """Raised for missing/unindexed files, malformed intervals or malformed priors."""


class DataError(InvertypeRError, ValueError):
    """Raised when a composite file does not have the expected strand composition.

    This is not transient: the composite file has to be rebuilt.
    """

    def __init__(self, message: str, *, mode: Optional[float] = None) -> None:
        super().__init__(message)
        self.mode = mode
