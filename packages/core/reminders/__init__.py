from .errors import (
    DeliveryError,
    DuplicateReminderError,
    InvalidTransitionError,
    NotFoundError,
    ReminderError,
    SchedulingError,
    TransientDeliveryError,
    ValidationError,
)
from .models import (
    EventRecord,
    ReminderPreferences,
    ReminderState,
    ReminderStatus,
    ReminderType,
    UserRecord,
)

__all__ = [
    "DeliveryError",
    "DuplicateReminderError",
    "EventRecord",
    "InvalidTransitionError",
    "NotFoundError",
    "ReminderError",
    "ReminderPreferences",
    "ReminderState",
    "ReminderStatus",
    "ReminderType",
    "SchedulingError",
    "TransientDeliveryError",
    "UserRecord",
    "ValidationError",
]
