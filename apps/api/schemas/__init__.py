from .admin import (
    EventCancellationRequest,
    QueueCleanRequest,
    QueuedJobResponse,
    QueueStatsResponse,
)
from .reminders import (
    PreferencesResponse,
    PreferencesUpdateRequest,
    ReminderCreateRequest,
    ReminderResponse,
    ReminderSnoozeRequest,
    ReminderStatsResponse,
    ReminderUpdateRequest,
)

__all__ = [
    "EventCancellationRequest",
    "PreferencesResponse",
    "PreferencesUpdateRequest",
    "QueueCleanRequest",
    "QueueStatsResponse",
    "QueuedJobResponse",
    "ReminderCreateRequest",
    "ReminderResponse",
    "ReminderSnoozeRequest",
    "ReminderStatsResponse",
    "ReminderUpdateRequest",
]
