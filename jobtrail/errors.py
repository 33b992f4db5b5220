"""Exceptions raised by the import pipeline."""

from typing import Optional


class ImportFailedError(Exception):
    """An import run ended in the failed stage."""

    def __init__(self, message: str, stage: Optional[str] = None):
        super().__init__(message)
        self.stage = stage


class ImportCancelled(ImportFailedError):
    """The caller cancelled the run between batches."""


class CSVParseError(Exception):
    """The decoded text could not be read as CSV."""


class ConversionError(Exception):
    """A validated row could not be turned into an application record."""

    def __init__(self, message: str, row: Optional[int] = None):
        super().__init__(message)
        self.row = row
