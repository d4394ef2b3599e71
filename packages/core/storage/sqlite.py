from __future__ import annotations

import datetime as dt
import os
import sqlite3
from typing import Any, Dict, Iterable, List, Optional, Sequence

from ..reminders.models import (
    ACTIVE_STATUSES,
    EventRecord,
    ReminderPreferences,
    ReminderState,
    ReminderStatus,
    ReminderType,
    UserRecord,
)
from .base import ReminderStore


_REMINDER_COLUMNS = """
    id, user_id, event_id, reminder_date, reminder_type, status, custom_message,
    snoozed_until, notified_at, acknowledged_at, failure_reason, retry_count,
    last_retry_at, created_at, updated_at
"""

# Snoozed reminders fire at snoozed_until, everything else at reminder_date.
_FIRE_AT_SQL = (
    "CASE WHEN status = 'snoozed' AND snoozed_until IS NOT NULL "
    "THEN snoozed_until ELSE reminder_date END"
)

_TRANSITION_FIELDS = frozenset(
    {
        "reminder_date",
        "snoozed_until",
        "notified_at",
        "acknowledged_at",
        "failure_reason",
        "last_retry_at",
    }
)


def to_iso(value: Optional[dt.datetime]) -> Optional[str]:
    """Fixed-width UTC ISO string, so SQL string comparison orders correctly."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: Optional[str]) -> Optional[dt.datetime]:
    if not value:
        return None
    parsed = dt.datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.timezone.utc)
    return parsed


def _placeholders(values: Sequence[Any]) -> str:
    return ", ".join("?" for _ in values)


class SQLiteReminderStore(ReminderStore):
    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        directory = os.path.dirname(db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        self._init_db()

    @property
    def db_path(self) -> str:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self._db_path, timeout=30)

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS reminders (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    event_id TEXT NOT NULL,
                    reminder_date TEXT NOT NULL,
                    reminder_type TEXT NOT NULL,
                    status TEXT NOT NULL,
                    custom_message TEXT,
                    snoozed_until TEXT,
                    notified_at TEXT,
                    acknowledged_at TEXT,
                    failure_reason TEXT,
                    retry_count INTEGER NOT NULL DEFAULT 0,
                    last_retry_at TEXT,
                    claim_token TEXT,
                    claimed_at TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS reminders_user_event_idx
                ON reminders (user_id, event_id)
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS reminders_user_status_idx
                ON reminders (user_id, status)
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS reminders_date_status_idx
                ON reminders (reminder_date, status)
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS events (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    date TEXT NOT NULL,
                    location TEXT,
                    image_url TEXT,
                    description TEXT,
                    price TEXT,
                    status TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    email TEXT,
                    email_enabled INTEGER NOT NULL DEFAULT 1,
                    push_enabled INTEGER NOT NULL DEFAULT 0,
                    default_reminder_hours INTEGER NOT NULL DEFAULT 24
                )
                """
            )

    def _row_to_reminder(self, row: Sequence[Any]) -> ReminderState:
        return ReminderState(
            id=row[0],
            user_id=row[1],
            event_id=row[2],
            reminder_date=from_iso(row[3]),
            reminder_type=ReminderType(row[4]),
            status=ReminderStatus(row[5]),
            custom_message=row[6],
            snoozed_until=from_iso(row[7]),
            notified_at=from_iso(row[8]),
            acknowledged_at=from_iso(row[9]),
            failure_reason=row[10],
            retry_count=row[11] or 0,
            last_retry_at=from_iso(row[12]),
            created_at=from_iso(row[13]),
            updated_at=from_iso(row[14]),
        )

    def _select(self, where: str, params: Sequence[Any], order: str) -> List[ReminderState]:
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_REMINDER_COLUMNS} FROM reminders WHERE {where} ORDER BY {order}",
                tuple(params),
            ).fetchall()
            return [self._row_to_reminder(row) for row in rows]

    def create_reminder(self, reminder: ReminderState) -> None:
        with self._connect() as conn:
            conn.execute(
                f"""
                INSERT INTO reminders ({_REMINDER_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    reminder.id,
                    reminder.user_id,
                    reminder.event_id,
                    to_iso(reminder.reminder_date),
                    reminder.reminder_type.value,
                    reminder.status.value,
                    reminder.custom_message,
                    to_iso(reminder.snoozed_until),
                    to_iso(reminder.notified_at),
                    to_iso(reminder.acknowledged_at),
                    reminder.failure_reason,
                    reminder.retry_count,
                    to_iso(reminder.last_retry_at),
                    to_iso(reminder.created_at),
                    to_iso(reminder.updated_at),
                ),
            )

    def get_reminder(self, reminder_id: str) -> Optional[ReminderState]:
        reminders = self._select("id = ?", (reminder_id,), "id")
        return reminders[0] if reminders else None

    def find_active_reminder(self, user_id: str, event_id: str) -> Optional[ReminderState]:
        active = [status.value for status in ACTIVE_STATUSES]
        reminders = self._select(
            f"user_id = ? AND event_id = ? AND status IN ({_placeholders(active)})",
            (user_id, event_id, *active),
            "created_at DESC",
        )
        return reminders[0] if reminders else None

    def transition(
        self,
        reminder_id: str,
        sources: Iterable[ReminderStatus],
        target: ReminderStatus,
        now: dt.datetime,
        increment_retry: bool = False,
        **fields: object,
    ) -> bool:
        unknown = set(fields) - _TRANSITION_FIELDS
        if unknown:
            raise ValueError(f"Unsupported reminder fields: {sorted(unknown)}")
        source_values = [ReminderStatus(status).value for status in sources]
        if not source_values:
            return False

        assignments = ["status = ?", "updated_at = ?", "claim_token = NULL", "claimed_at = NULL"]
        params: List[Any] = [target.value, to_iso(now)]
        for name, value in fields.items():
            assignments.append(f"{name} = ?")
            params.append(to_iso(value) if isinstance(value, dt.datetime) else value)
        if increment_retry:
            assignments.append("retry_count = retry_count + 1")

        with self._connect() as conn:
            result = conn.execute(
                f"""
                UPDATE reminders
                SET {", ".join(assignments)}
                WHERE id = ? AND status IN ({_placeholders(source_values)})
                """,
                (*params, reminder_id, *source_values),
            )
            return result.rowcount > 0

    def update_schedule(
        self,
        reminder_id: str,
        reminder_date: dt.datetime,
        reminder_type: str,
        custom_message: Optional[str],
        now: dt.datetime,
    ) -> bool:
        active = [status.value for status in ACTIVE_STATUSES]
        with self._connect() as conn:
            result = conn.execute(
                f"""
                UPDATE reminders
                SET reminder_date = ?, reminder_type = ?, custom_message = ?,
                    status = 'pending', snoozed_until = NULL, updated_at = ?
                WHERE id = ? AND status IN ({_placeholders(active)})
                """,
                (
                    to_iso(reminder_date),
                    ReminderType(reminder_type).value,
                    custom_message,
                    to_iso(now),
                    reminder_id,
                    *active,
                ),
            )
            return result.rowcount > 0

    def claim_for_delivery(
        self, reminder_id: str, token: str, now: dt.datetime, lease_seconds: int
    ) -> bool:
        active = [status.value for status in ACTIVE_STATUSES]
        stale_before = now - dt.timedelta(seconds=lease_seconds)
        with self._connect() as conn:
            result = conn.execute(
                f"""
                UPDATE reminders
                SET claim_token = ?, claimed_at = ?
                WHERE id = ?
                  AND status IN ({_placeholders(active)})
                  AND (claim_token IS NULL OR claimed_at <= ?)
                """,
                (token, to_iso(now), reminder_id, *active, to_iso(stale_before)),
            )
            return result.rowcount > 0

    def release_delivery_claim(self, reminder_id: str, token: str) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE reminders
                SET claim_token = NULL, claimed_at = NULL
                WHERE id = ? AND claim_token = ?
                """,
                (reminder_id, token),
            )

    def list_reminders_for_user(
        self, user_id: str, status: Optional[ReminderStatus] = None
    ) -> List[ReminderState]:
        if status is not None:
            return self._select(
                "user_id = ? AND status = ?",
                (user_id, ReminderStatus(status).value),
                "reminder_date ASC",
            )
        return self._select("user_id = ?", (user_id,), "reminder_date ASC")

    def list_reminders_for_event(
        self, event_id: str, user_id: Optional[str] = None, active_only: bool = False
    ) -> List[ReminderState]:
        where = ["event_id = ?"]
        params: List[Any] = [event_id]
        if user_id is not None:
            where.append("user_id = ?")
            params.append(user_id)
        if active_only:
            active = [status.value for status in ACTIVE_STATUSES]
            where.append(f"status IN ({_placeholders(active)})")
            params.extend(active)
        return self._select(" AND ".join(where), params, "reminder_date ASC")

    def list_by_status(self, status: ReminderStatus, limit: int = 100) -> List[ReminderState]:
        return self._select(
            "status = ?",
            (ReminderStatus(status).value,),
            f"updated_at DESC LIMIT {int(limit)}",
        )

    def list_overdue(self, now: dt.datetime, limit: int = 50) -> List[ReminderState]:
        active = [status.value for status in ACTIVE_STATUSES]
        return self._select(
            f"status IN ({_placeholders(active)}) AND {_FIRE_AT_SQL} <= ?",
            (*active, to_iso(now)),
            f"{_FIRE_AT_SQL} ASC LIMIT {int(limit)}",
        )

    def list_pending_future(self, now: dt.datetime) -> List[ReminderState]:
        active = [status.value for status in ACTIVE_STATUSES]
        return self._select(
            f"status IN ({_placeholders(active)}) AND {_FIRE_AT_SQL} > ?",
            (*active, to_iso(now)),
            f"{_FIRE_AT_SQL} ASC",
        )

    def list_due_between(self, start: dt.datetime, end: dt.datetime) -> List[ReminderState]:
        active = [status.value for status in ACTIVE_STATUSES]
        return self._select(
            f"status IN ({_placeholders(active)}) "
            f"AND {_FIRE_AT_SQL} >= ? AND {_FIRE_AT_SQL} < ?",
            (*active, to_iso(start), to_iso(end)),
            "user_id ASC, reminder_date ASC",
        )

    def count_by_status(self, user_id: str) -> Dict[str, int]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT status, COUNT(*)
                FROM reminders
                WHERE user_id = ?
                GROUP BY status
                """,
                (user_id,),
            ).fetchall()
            return {row[0]: row[1] for row in rows}

    def upsert_event(self, event: EventRecord) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO events (
                    id, title, date, location, image_url, description, price, status
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    title = excluded.title,
                    date = excluded.date,
                    location = excluded.location,
                    image_url = excluded.image_url,
                    description = excluded.description,
                    price = excluded.price,
                    status = excluded.status
                """,
                (
                    event.id,
                    event.title,
                    to_iso(event.date),
                    event.location,
                    event.image_url,
                    event.description,
                    event.price,
                    event.status,
                ),
            )

    def get_event(self, event_id: str) -> Optional[EventRecord]:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT id, title, date, location, image_url, description, price, status
                FROM events
                WHERE id = ?
                """,
                (event_id,),
            ).fetchone()
            if row is None:
                return None
            return EventRecord(
                id=row[0],
                title=row[1],
                date=from_iso(row[2]),
                location=row[3],
                image_url=row[4],
                description=row[5],
                price=row[6],
                status=row[7],
            )

    def upsert_user(self, user: UserRecord) -> None:
        prefs = user.preferences
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO users (
                    id, name, email, email_enabled, push_enabled, default_reminder_hours
                )
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name,
                    email = excluded.email,
                    email_enabled = excluded.email_enabled,
                    push_enabled = excluded.push_enabled,
                    default_reminder_hours = excluded.default_reminder_hours
                """,
                (
                    user.id,
                    user.name,
                    user.email,
                    1 if prefs.email_enabled else 0,
                    1 if prefs.push_enabled else 0,
                    prefs.default_reminder_hours,
                ),
            )

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT id, name, email, email_enabled, push_enabled, default_reminder_hours
                FROM users
                WHERE id = ?
                """,
                (user_id,),
            ).fetchone()
            if row is None:
                return None
            return UserRecord(
                id=row[0],
                name=row[1],
                email=row[2],
                preferences=ReminderPreferences(
                    email_enabled=bool(row[3]),
                    push_enabled=bool(row[4]),
                    default_reminder_hours=row[5],
                ),
            )

    def update_preferences(self, user_id: str, preferences: ReminderPreferences) -> bool:
        with self._connect() as conn:
            result = conn.execute(
                """
                UPDATE users
                SET email_enabled = ?, push_enabled = ?, default_reminder_hours = ?
                WHERE id = ?
                """,
                (
                    1 if preferences.email_enabled else 0,
                    1 if preferences.push_enabled else 0,
                    preferences.default_reminder_hours,
                    user_id,
                ),
            )
            return result.rowcount > 0
