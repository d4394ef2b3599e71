from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, FrozenSet, Optional


MAX_CUSTOM_MESSAGE_LENGTH = 500


class ReminderStatus(str, Enum):
    PENDING = "pending"
    SNOOZED = "snoozed"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"
    ACKNOWLEDGED = "acknowledged"


class ReminderType(str, Enum):
    EMAIL = "email"
    PUSH = "push"
    BOTH = "both"


ACTIVE_STATUSES: FrozenSet[ReminderStatus] = frozenset(
    {ReminderStatus.PENDING, ReminderStatus.SNOOZED}
)
TERMINAL_STATUSES: FrozenSet[ReminderStatus] = frozenset(
    {ReminderStatus.CANCELLED, ReminderStatus.ACKNOWLEDGED}
)

# Edges reachable through user actions and delivery outcomes.
TRANSITIONS: Dict[ReminderStatus, FrozenSet[ReminderStatus]] = {
    ReminderStatus.PENDING: frozenset(
        {
            ReminderStatus.SENT,
            ReminderStatus.FAILED,
            ReminderStatus.CANCELLED,
            ReminderStatus.SNOOZED,
        }
    ),
    ReminderStatus.SNOOZED: frozenset(
        {
            ReminderStatus.PENDING,
            ReminderStatus.SENT,
            ReminderStatus.FAILED,
            ReminderStatus.CANCELLED,
        }
    ),
    ReminderStatus.SENT: frozenset({ReminderStatus.ACKNOWLEDGED}),
    ReminderStatus.FAILED: frozenset(),
    ReminderStatus.CANCELLED: frozenset(),
    ReminderStatus.ACKNOWLEDGED: frozenset(),
}

# Only reachable through the admin re-trigger operation.
ADMIN_TRANSITIONS: Dict[ReminderStatus, FrozenSet[ReminderStatus]] = {
    ReminderStatus.FAILED: frozenset({ReminderStatus.PENDING}),
}


def can_transition(
    current: ReminderStatus, target: ReminderStatus, admin: bool = False
) -> bool:
    if target in TRANSITIONS.get(current, frozenset()):
        return True
    if admin:
        return target in ADMIN_TRANSITIONS.get(current, frozenset())
    return False


def sources_for(target: ReminderStatus, admin: bool = False) -> FrozenSet[ReminderStatus]:
    """Statuses from which ``target`` may be entered."""
    sources = {status for status, targets in TRANSITIONS.items() if target in targets}
    if admin:
        sources.update(
            status for status, targets in ADMIN_TRANSITIONS.items() if target in targets
        )
    return frozenset(sources)


@dataclass(frozen=True)
class ReminderState:
    id: str
    user_id: str
    event_id: str
    reminder_date: dt.datetime
    reminder_type: ReminderType
    status: ReminderStatus
    custom_message: Optional[str]
    snoozed_until: Optional[dt.datetime]
    notified_at: Optional[dt.datetime]
    acknowledged_at: Optional[dt.datetime]
    failure_reason: Optional[str]
    retry_count: int
    last_retry_at: Optional[dt.datetime]
    created_at: dt.datetime
    updated_at: dt.datetime

    @property
    def fire_at(self) -> dt.datetime:
        if self.status == ReminderStatus.SNOOZED and self.snoozed_until is not None:
            return self.snoozed_until
        return self.reminder_date

    @property
    def notified(self) -> bool:
        # Derived from status rather than stored separately.
        return self.status in (ReminderStatus.SENT, ReminderStatus.ACKNOWLEDGED)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def is_overdue(self, now: dt.datetime) -> bool:
        return self.is_active and self.fire_at <= now

    def evolve(self, **changes) -> "ReminderState":
        return replace(self, **changes)


@dataclass(frozen=True)
class EventRecord:
    id: str
    title: str
    date: dt.datetime
    location: Optional[str] = None
    image_url: Optional[str] = None
    description: Optional[str] = None
    price: Optional[str] = None
    status: str = "published"


@dataclass(frozen=True)
class ReminderPreferences:
    email_enabled: bool = True
    push_enabled: bool = False
    default_reminder_hours: int = 24


@dataclass(frozen=True)
class UserRecord:
    id: str
    name: str
    email: Optional[str]
    preferences: ReminderPreferences = ReminderPreferences()
