from __future__ import annotations


class ReminderError(Exception):
    """Base class for reminder pipeline errors."""


class ValidationError(ReminderError):
    """Request is malformed or logically invalid. Never retried."""


class DuplicateReminderError(ValidationError):
    """An active reminder already exists for the user and event."""


class NotFoundError(ReminderError):
    """Referenced reminder, event or user does not exist."""


class InvalidTransitionError(ReminderError):
    """Requested status change is not an edge of the state machine."""

    def __init__(self, reminder_id: str, current: str, target: str) -> None:
        super().__init__(
            f"Reminder {reminder_id} cannot move from {current} to {target}"
        )
        self.reminder_id = reminder_id
        self.current = current
        self.target = target


class DeliveryError(ReminderError):
    """Delivery failed and retrying will not help."""


class TransientDeliveryError(DeliveryError):
    """Delivery failed because of an external dependency (SMTP, network)."""


class SchedulingError(ReminderError):
    """A local timer could not be registered or cancelled."""
