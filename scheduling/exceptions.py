"""Exceptions raised by occurrence scheduling."""
from typing import Optional


class SchedulingError(Exception):
    """Base class for scheduling errors."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field


class InvalidDateError(SchedulingError):
    """A date value is not a valid YYYY-MM-DD calendar date."""


class InvalidTimeError(SchedulingError):
    """A time value is not a valid time of day."""


class InvalidRangeError(SchedulingError):
    """Range end precedes range start."""


class EmptyDateSetError(SchedulingError):
    """An occurrence kind received zero days."""


class RangeEditError(SchedulingError):
    """Individual days cannot be removed from a range occurrence."""


class KindChangeNotConfirmedError(SchedulingError):
    """A kind change would drop persisted days and was not confirmed."""


class ReconciliationPartialFailureError(SchedulingError):
    """
    One or more store operations in a reconciliation batch failed.

    The ``result`` attribute holds the BatchResult with the operations that
    did succeed, so callers can re-fetch and re-diff instead of retrying.
    """

    def __init__(self, message: str, result):
        super().__init__(message)
        self.result = result
