"""
Domain-specific exception hierarchy for the booking engine.

Expected booking outcomes (closed day, too soon, double booked) are returned as
``ValidationResult`` values. Exceptions are reserved for caller bugs and for
failures the client has to recover from by refreshing availability.
"""

from typing import Optional, Sequence


class BookingError(Exception):
    """Base class for all engine-level errors."""


class ServiceNotFound(BookingError):
    """Raised when a service id cannot be resolved through the catalog."""


class EmployeeNotResolved(BookingError):
    """Raised when a booking is checked against the "any employee" placeholder."""


class RetryableBookingError(BookingError):
    """
    Failures after which the client must refresh availability and resubmit.

    Retrying the same window blindly is never correct.
    """

    retryable = True


class ConflictOnCommit(RetryableBookingError):
    """Raised when the atomic insert finds an overlapping appointment (the race was lost)."""

    def __init__(
        self,
        message: str = "This time slot is no longer available",
        *,
        conflicting_id: Optional[str] = None,
        suggestions: Sequence = (),
    ):
        super().__init__(message)
        self.conflicting_id = conflicting_id
        self.suggestions = tuple(suggestions)


class StoreUnavailable(RetryableBookingError):
    """Raised when a store call times out or cannot connect. Availability is not confirmed."""
