from __future__ import annotations

import datetime as dt
from typing import Dict, Iterable, List, Optional, Protocol, runtime_checkable

from ..reminders.models import (
    EventRecord,
    ReminderPreferences,
    ReminderState,
    ReminderStatus,
    UserRecord,
)


@runtime_checkable
class EventLookup(Protocol):
    def get_event(self, event_id: str) -> Optional[EventRecord]:
        """Return an event by id, or None if it does not exist."""


@runtime_checkable
class UserLookup(Protocol):
    def get_user(self, user_id: str) -> Optional[UserRecord]:
        """Return a user by id, or None if it does not exist."""


@runtime_checkable
class ReminderStore(EventLookup, UserLookup, Protocol):
    def create_reminder(self, reminder: ReminderState) -> None:
        """Persist a new reminder."""

    def get_reminder(self, reminder_id: str) -> Optional[ReminderState]:
        """Return reminder by id."""

    def find_active_reminder(self, user_id: str, event_id: str) -> Optional[ReminderState]:
        """Return the pending/snoozed reminder for a user and event, if any."""

    def transition(
        self,
        reminder_id: str,
        sources: Iterable[ReminderStatus],
        target: ReminderStatus,
        now: dt.datetime,
        increment_retry: bool = False,
        **fields: object,
    ) -> bool:
        """Move a reminder to ``target`` only if its status is in ``sources``.

        Returns True if the row was updated. Extra ``fields`` are written in
        the same statement.
        """

    def update_schedule(
        self,
        reminder_id: str,
        reminder_date: dt.datetime,
        reminder_type: str,
        custom_message: Optional[str],
        now: dt.datetime,
    ) -> bool:
        """Reset an active reminder to pending with a new fire time."""

    def claim_for_delivery(
        self, reminder_id: str, token: str, now: dt.datetime, lease_seconds: int
    ) -> bool:
        """Take a short exclusive delivery lease on an active reminder."""

    def release_delivery_claim(self, reminder_id: str, token: str) -> None:
        """Drop a delivery lease held under ``token``."""

    def list_reminders_for_user(
        self, user_id: str, status: Optional[ReminderStatus] = None
    ) -> List[ReminderState]:
        """List a user's reminders ordered by reminder date."""

    def list_reminders_for_event(
        self, event_id: str, user_id: Optional[str] = None, active_only: bool = False
    ) -> List[ReminderState]:
        """List reminders that target an event."""

    def list_by_status(self, status: ReminderStatus, limit: int = 100) -> List[ReminderState]:
        """List reminders in one status, most recently updated first."""

    def list_overdue(self, now: dt.datetime, limit: int = 50) -> List[ReminderState]:
        """Active reminders whose effective fire time is at or before ``now``."""

    def list_pending_future(self, now: dt.datetime) -> List[ReminderState]:
        """Active reminders whose effective fire time is after ``now``."""

    def list_due_between(self, start: dt.datetime, end: dt.datetime) -> List[ReminderState]:
        """Active reminders firing in the half-open window [start, end)."""

    def count_by_status(self, user_id: str) -> Dict[str, int]:
        """Return reminder counts per status for a user."""

    def upsert_event(self, event: EventRecord) -> None:
        """Insert or update an event record."""

    def upsert_user(self, user: UserRecord) -> None:
        """Insert or update a user record."""

    def update_preferences(self, user_id: str, preferences: ReminderPreferences) -> bool:
        """Replace a user's reminder preferences. Returns False if missing."""
