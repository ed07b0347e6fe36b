"""Domain errors raised by the queue core.

Each error carries the HTTP status the API layer answers with, so routers
never translate them one by one.
"""

from __future__ import annotations

from typing import Optional


class QueueError(Exception):
    """Base class for all queue-core failures."""

    status_code: int = 400
    default_message: str = "Queue operation failed"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class InvalidConfiguration(QueueError):
    status_code = 422
    default_message = "Invalid operating hours configuration"


class InvalidBooking(QueueError):
    status_code = 422
    default_message = "Invalid booking request"


class ScopeLockTimeout(QueueError):
    status_code = 503
    default_message = "Could not complete the booking, please retry"


class TooManyConflicts(QueueError):
    status_code = 503
    default_message = "Could not complete the booking, please retry"


class InvalidTransition(QueueError):
    """Raised for a lifecycle change the state machine does not allow."""

    status_code = 409

    def __init__(self, current: str, requested: str) -> None:
        super().__init__(f"Cannot move appointment from '{current}' to '{requested}'")
        self.current = current
        self.requested = requested


class QueueConflict(QueueError):
    status_code = 409
    default_message = "Another appointment is already ongoing for this clinic and date"


class NotFound(QueueError):
    status_code = 404
    default_message = "Not found"
