"""Exception types raised by rireq.

Pure helpers (normalisation, ranking, merging) never raise; everything
here originates at a storage transaction boundary or while parsing
import / selector input.
"""

from __future__ import annotations


class RireqError(Exception):
    """Base class for all errors surfaced to the command line."""


class StorageUnavailable(RireqError):
    """The history database could not be created, opened, or read."""


class TransactionConflict(RireqError):
    """A write transaction kept losing the database lock to other writers."""


class Corruption(RireqError):
    """A stored usage-stats value could not be decoded."""


class MalformedImportRecord(RireqError):
    """A row of a structured (CSV) import could not be parsed.

    Attributes:
        line: 1-based line number of the offending row in the input, or
            ``None`` if unknown.
    """

    def __init__(self, message: str, line: int | None = None) -> None:
        if line is not None:
            message = f"line {line}: {message}"
        super().__init__(message)
        self.line = line


class SelectorError(RireqError):
    """The external interactive selector could not be run."""
