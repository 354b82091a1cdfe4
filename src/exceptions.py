"""
Custom exceptions for the Resi Checker application.

This module defines application-specific exceptions for order reconciliation.
Expected domain outcomes of a scan (tracking number not found, order already
scanned) are NOT exceptions: they are returned as ScanOutcome values so the
scan station can react without try/except around every scan.

Exceptions are reserved for:
- Storage failures (database locked, disk full, corrupted file)
- Invalid input reaching the core (empty tracking number, unreadable file)
- In-batch collisions detected while extracting an import file
- Invalid configuration values

Exception hierarchy:
    ResiCheckerError (base)
    ├── StorageError (SQLite failures, including locked/timeout)
    ├── ValidationError (missing required field, bad import file)
    ├── DuplicateInBatchError (same tracking number twice in one import)
    └── ConfigError (invalid config.ini value)
"""

from typing import Optional


class ResiCheckerError(Exception):
    """
    Base exception for all Resi Checker errors.

    Catch this to handle any application error in one place:
        try:
            store.archive(selected_ids)
        except ResiCheckerError as e:
            logger.error(f"Application error: {e}")
    """
    pass


class StorageError(ResiCheckerError):
    """
    Raised when the order database cannot be read or written.

    Wraps sqlite3 errors so callers never need to import sqlite3. Every
    mutation in the store is idempotent or convergent, so the operation that
    raised this can simply be retried once the cause is gone.

    Attributes:
        operation (str): Store operation that failed, e.g. "mark_scanned"
    """

    def __init__(self, message: str, operation: Optional[str] = None):
        super().__init__(message)
        self.operation = operation

    def get_display_message(self) -> str:
        """Message suitable for a warning banner at the scan station."""
        if self.operation:
            return f"Database error during {self.operation}: {self}\n\nPlease try again."
        return f"Database error: {self}\n\nPlease try again."


class ValidationError(ResiCheckerError):
    """
    Raised when input validation fails.

    Examples:
    - An import row or scan with an empty tracking number
    - An import file that is not CSV/XLSX, is unreadable, or has no data rows
    - No tracking number column could be found in an import file
    """
    pass


class DuplicateInBatchError(ResiCheckerError):
    """
    Raised when a tracking number appears more than once in one import file.

    The first occurrence is kept; every later occurrence raises this error
    during extraction and is reported as a row error.

    Attributes:
        tracking_number (str): The colliding tracking number
        row (int): Spreadsheet row number of the later occurrence
        first_row (int): Spreadsheet row number of the kept occurrence
    """

    def __init__(self, tracking_number: str, row: int, first_row: Optional[int] = None):
        message = f"Duplicate in file: {tracking_number}"
        if first_row is not None:
            message += f" (first seen on row {first_row})"
        super().__init__(message)
        self.tracking_number = tracking_number
        self.row = row
        self.first_row = first_row


class ConfigError(ResiCheckerError):
    """Raised when config.ini contains a value that cannot be used."""
    pass
