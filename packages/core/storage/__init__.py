from .base import EventLookup, ReminderStore, UserLookup
from .sqlite import SQLiteReminderStore, from_iso, to_iso

__all__ = [
    "EventLookup",
    "ReminderStore",
    "UserLookup",
    "SQLiteReminderStore",
    "from_iso",
    "to_iso",
]
