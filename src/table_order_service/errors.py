"""Exception types raised by the table order service.

Storage and submission failures are raised rather than returned as sentinel
values so the caller at the UI boundary decides how to degrade.
"""


class TableOrderError(Exception):
    """Base class for all service errors."""


class StorageError(TableOrderError):
    """A read, write or subscription against the backing store failed."""


class OrderSubmissionError(TableOrderError):
    """Creating the order or its tracking rows failed."""


class InvalidSessionError(TableOrderError):
    """The entry payload did not carry a table identifier."""


class SessionNotFoundError(TableOrderError):
    """No participant session is registered for the given table and user."""


class SessionExpiredError(TableOrderError):
    """The participant session outlived its configured duration."""


class ReservationError(TableOrderError):
    """The reservation name did not match the reservation on record."""


class AIServiceError(TableOrderError):
    """The AI provider could not be reached or returned an error."""
