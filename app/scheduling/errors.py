# app/scheduling/errors.py

from typing import Optional


class SchedulingError(Exception):
    """Base for errors the scheduling engine reports to its callers."""


class ValidationError(SchedulingError):
    """Rejected before any state changed: missing professional, no services, bad time..."""

    def __init__(self, field: str, message: str):
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message


class PersistenceError(SchedulingError):
    """The remote store refused or failed a write."""

    def __init__(self, message: str, appointment_id: Optional[str] = None):
        super().__init__(message)
        self.appointment_id = appointment_id


class SyncExhaustedError(SchedulingError):
    """A queued mutation failed more times than the retry ceiling allows and was dropped."""

    def __init__(self, item, last_error: Optional[BaseException] = None):
        super().__init__(
            f"Gave up syncing {item.action} for appointment {item.mutation.appointment_id} "
            f"after {item.retry_count} attempts"
        )
        self.item = item
        self.last_error = last_error
