from .jobs import (
    PRIORITY_DEFAULT,
    PRIORITY_NEAR_TERM,
    PRIORITY_SCHEDULED,
    PRIORITY_URGENT,
    DeliveryJob,
    SendCancellation,
    SendConfirmation,
    SendDigest,
    SendReminder,
    SendWelcome,
)
from .queue import QueuedJobState, SQLiteDeliveryQueue

__all__ = [
    "PRIORITY_DEFAULT",
    "PRIORITY_NEAR_TERM",
    "PRIORITY_SCHEDULED",
    "PRIORITY_URGENT",
    "DeliveryJob",
    "QueuedJobState",
    "SQLiteDeliveryQueue",
    "SendCancellation",
    "SendConfirmation",
    "SendDigest",
    "SendReminder",
    "SendWelcome",
]
