from __future__ import annotations

import datetime as dt
import logging
import uuid
from typing import TYPE_CHECKING, Dict, List, Optional

from ..delivery.jobs import (
    PRIORITY_DEFAULT,
    PRIORITY_URGENT,
    WELCOME_DELAY_SECONDS,
    SendCancellation,
    SendConfirmation,
    SendWelcome,
)
from ..storage.base import ReminderStore
from .errors import DuplicateReminderError, InvalidTransitionError, NotFoundError, ValidationError
from .models import (
    ACTIVE_STATUSES,
    MAX_CUSTOM_MESSAGE_LENGTH,
    ReminderPreferences,
    ReminderState,
    ReminderStatus,
    ReminderType,
    UserRecord,
    sources_for,
)

if TYPE_CHECKING:
    from ..delivery.queue import SQLiteDeliveryQueue
    from .scheduler import ReminderScheduler


logger = logging.getLogger("event_reminders.reminders")


def _utc_now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _as_utc(value: dt.datetime) -> dt.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc)


def _parse_type(reminder_type: Optional[str]) -> ReminderType:
    if reminder_type is None:
        return ReminderType.EMAIL
    try:
        return ReminderType(reminder_type)
    except ValueError as exc:
        raise ValidationError(f"Invalid reminder type: {reminder_type}") from exc


def _clean_message(custom_message: Optional[str]) -> Optional[str]:
    if custom_message is None:
        return None
    message = custom_message.strip()
    if len(message) > MAX_CUSTOM_MESSAGE_LENGTH:
        raise ValidationError(
            f"Custom message cannot exceed {MAX_CUSTOM_MESSAGE_LENGTH} characters"
        )
    return message or None


def _validate_fire_time(
    store: ReminderStore, event_id: str, reminder_date: dt.datetime, now: dt.datetime
) -> None:
    if reminder_date <= now:
        raise ValidationError("Reminder date must be in the future")
    event = store.get_event(event_id)
    if event is None:
        raise NotFoundError(f"Event not found: {event_id}")
    if event.status != "published":
        raise ValidationError("Cannot set reminder for unpublished events")
    if reminder_date >= event.date:
        raise ValidationError("Reminder must be set before the event date")


def _require(store: ReminderStore, reminder_id: str) -> ReminderState:
    reminder = store.get_reminder(reminder_id)
    if reminder is None:
        raise NotFoundError(f"Reminder not found: {reminder_id}")
    return reminder


def create_reminder(
    store: ReminderStore,
    scheduler: "ReminderScheduler",
    user_id: str,
    event_id: str,
    reminder_date: dt.datetime,
    reminder_type: Optional[str] = None,
    custom_message: Optional[str] = None,
    now: Optional[dt.datetime] = None,
) -> ReminderState:
    now = now or scheduler.now()
    reminder_date = _as_utc(reminder_date)
    parsed_type = _parse_type(reminder_type)
    message = _clean_message(custom_message)

    if reminder_date <= now:
        raise ValidationError("Reminder date must be in the future")
    if store.get_user(user_id) is None:
        raise NotFoundError(f"User not found: {user_id}")
    _validate_fire_time(store, event_id, reminder_date, now)
    if store.find_active_reminder(user_id, event_id) is not None:
        raise DuplicateReminderError("Active reminder already exists for this event")

    reminder = ReminderState(
        id=str(uuid.uuid4()),
        user_id=user_id,
        event_id=event_id,
        reminder_date=reminder_date,
        reminder_type=parsed_type,
        status=ReminderStatus.PENDING,
        custom_message=message,
        snoozed_until=None,
        notified_at=None,
        acknowledged_at=None,
        failure_reason=None,
        retry_count=0,
        last_retry_at=None,
        created_at=now,
        updated_at=now,
    )
    store.create_reminder(reminder)
    logger.info(
        "reminder_created id=%s user_id=%s event_id=%s fire_at=%s",
        reminder.id,
        user_id,
        event_id,
        reminder_date.isoformat(),
    )
    scheduler.schedule(reminder.id)
    scheduler.queue.enqueue(
        SendConfirmation(reminder_id=reminder.id), priority=PRIORITY_DEFAULT, now=now
    )
    return reminder


def reschedule_reminder(
    store: ReminderStore,
    scheduler: "ReminderScheduler",
    user_id: str,
    event_id: str,
    reminder_date: dt.datetime,
    reminder_type: Optional[str] = None,
    custom_message: Optional[str] = None,
    now: Optional[dt.datetime] = None,
) -> ReminderState:
    now = now or scheduler.now()
    reminder_date = _as_utc(reminder_date)
    reminder = store.find_active_reminder(user_id, event_id)
    if reminder is None:
        raise NotFoundError(f"No active reminder for event {event_id}")
    parsed_type = _parse_type(reminder_type) if reminder_type else reminder.reminder_type
    message = (
        _clean_message(custom_message) if custom_message is not None else reminder.custom_message
    )
    _validate_fire_time(store, event_id, reminder_date, now)

    scheduler.cancel(reminder.id)
    if not store.update_schedule(reminder.id, reminder_date, parsed_type.value, message, now):
        current = _require(store, reminder.id)
        raise InvalidTransitionError(reminder.id, current.status.value, ReminderStatus.PENDING.value)
    logger.info("reminder_rescheduled id=%s fire_at=%s", reminder.id, reminder_date.isoformat())
    scheduler.schedule(reminder.id)
    return _require(store, reminder.id)


def cancel_reminder(
    store: ReminderStore,
    scheduler: "ReminderScheduler",
    reminder_id: str,
    now: Optional[dt.datetime] = None,
) -> ReminderState:
    """Cancel a reminder and drop its timer.

    Idempotent: a reminder that is already cancelled is returned unchanged.
    Reminders that were sent, failed or acknowledged are left as they are.
    """
    now = now or scheduler.now()
    reminder = _require(store, reminder_id)
    scheduler.cancel(reminder_id)
    if reminder.status not in ACTIVE_STATUSES:
        return reminder
    if store.transition(
        reminder_id, sources_for(ReminderStatus.CANCELLED), ReminderStatus.CANCELLED, now
    ):
        logger.info("reminder_cancelled id=%s", reminder_id)
    return _require(store, reminder_id)


def cancel_event_reminder(
    store: ReminderStore,
    scheduler: "ReminderScheduler",
    user_id: str,
    event_id: str,
    now: Optional[dt.datetime] = None,
) -> ReminderState:
    reminder = store.find_active_reminder(user_id, event_id)
    if reminder is None:
        raise NotFoundError(f"No active reminder for event {event_id}")
    return cancel_reminder(store, scheduler, reminder.id, now=now)


def snooze_reminder(
    store: ReminderStore,
    scheduler: "ReminderScheduler",
    reminder_id: str,
    snoozed_until: dt.datetime,
    now: Optional[dt.datetime] = None,
) -> ReminderState:
    now = now or scheduler.now()
    snoozed_until = _as_utc(snoozed_until)
    reminder = _require(store, reminder_id)
    if snoozed_until <= now:
        raise ValidationError("Snooze time must be in the future")
    if not store.transition(
        reminder_id,
        sources_for(ReminderStatus.SNOOZED),
        ReminderStatus.SNOOZED,
        now,
        snoozed_until=snoozed_until,
    ):
        current = _require(store, reminder_id)
        raise InvalidTransitionError(reminder_id, current.status.value, ReminderStatus.SNOOZED.value)
    logger.info(
        "reminder_snoozed id=%s from=%s until=%s",
        reminder_id,
        reminder.fire_at.isoformat(),
        snoozed_until.isoformat(),
    )
    scheduler.schedule(reminder_id)
    return _require(store, reminder_id)


def acknowledge_reminder(
    store: ReminderStore, reminder_id: str, now: Optional[dt.datetime] = None
) -> ReminderState:
    now = now or _utc_now()
    _require(store, reminder_id)
    if not store.transition(
        reminder_id,
        sources_for(ReminderStatus.ACKNOWLEDGED),
        ReminderStatus.ACKNOWLEDGED,
        now,
        acknowledged_at=now,
    ):
        current = _require(store, reminder_id)
        if current.status == ReminderStatus.ACKNOWLEDGED:
            return current
        raise InvalidTransitionError(
            reminder_id, current.status.value, ReminderStatus.ACKNOWLEDGED.value
        )
    return _require(store, reminder_id)


def mark_sent(store: ReminderStore, reminder_id: str, now: Optional[dt.datetime] = None) -> bool:
    """Record a successful delivery. Returns False if the reminder was no longer active."""
    now = now or _utc_now()
    updated = store.transition(
        reminder_id,
        sources_for(ReminderStatus.SENT),
        ReminderStatus.SENT,
        now,
        notified_at=now,
    )
    if updated:
        logger.info("reminder_sent id=%s", reminder_id)
    else:
        logger.info("reminder_mark_sent_skipped id=%s", reminder_id)
    return updated


def mark_failed(
    store: ReminderStore, reminder_id: str, reason: str, now: Optional[dt.datetime] = None
) -> bool:
    now = now or _utc_now()
    updated = store.transition(
        reminder_id,
        sources_for(ReminderStatus.FAILED),
        ReminderStatus.FAILED,
        now,
        increment_retry=True,
        failure_reason=reason,
        last_retry_at=now,
    )
    if updated:
        logger.warning("reminder_failed id=%s reason=%s", reminder_id, reason)
    return updated


def retrigger_reminder(
    store: ReminderStore,
    scheduler: "ReminderScheduler",
    reminder_id: str,
    now: Optional[dt.datetime] = None,
) -> ReminderState:
    """Admin action: put a failed reminder back in the pending state."""
    now = now or scheduler.now()
    if not store.transition(
        reminder_id,
        sources_for(ReminderStatus.PENDING, admin=True) - ACTIVE_STATUSES,
        ReminderStatus.PENDING,
        now,
        failure_reason=None,
    ):
        current = _require(store, reminder_id)
        raise InvalidTransitionError(reminder_id, current.status.value, ReminderStatus.PENDING.value)
    logger.info("reminder_retriggered id=%s", reminder_id)
    scheduler.schedule(reminder_id)
    return _require(store, reminder_id)


def cancel_event_reminders(
    store: ReminderStore,
    scheduler: "ReminderScheduler",
    event_id: str,
    reason: str = "",
    now: Optional[dt.datetime] = None,
) -> List[ReminderState]:
    """Cancel every active reminder for an event and notify each affected user."""
    now = now or scheduler.now()
    cancelled: List[ReminderState] = []
    notified_users = set()
    for reminder in store.list_reminders_for_event(event_id, active_only=True):
        cancelled.append(cancel_reminder(store, scheduler, reminder.id, now=now))
        if reminder.user_id in notified_users:
            continue
        notified_users.add(reminder.user_id)
        scheduler.queue.enqueue(
            SendCancellation(user_id=reminder.user_id, event_id=event_id, reason=reason),
            priority=PRIORITY_URGENT,
            now=now,
        )
    logger.info(
        "event_reminders_cancelled event_id=%s reminders=%s users=%s",
        event_id,
        len(cancelled),
        len(notified_users),
    )
    return cancelled


def get_reminder(store: ReminderStore, reminder_id: str, user_id: Optional[str] = None) -> ReminderState:
    reminder = _require(store, reminder_id)
    if user_id is not None and reminder.user_id != user_id:
        raise NotFoundError(f"Reminder not found: {reminder_id}")
    return reminder


def list_reminders(
    store: ReminderStore, user_id: str, status: Optional[str] = None
) -> List[ReminderState]:
    parsed: Optional[ReminderStatus] = None
    if status:
        try:
            parsed = ReminderStatus(status)
        except ValueError as exc:
            raise ValidationError(f"Invalid status: {status}") from exc
    return store.list_reminders_for_user(user_id, status=parsed)


def list_event_reminders(
    store: ReminderStore, user_id: str, event_id: str
) -> List[ReminderState]:
    return store.list_reminders_for_event(event_id, user_id=user_id)


def list_upcoming(
    store: ReminderStore, user_id: str, days: int = 7, now: Optional[dt.datetime] = None
) -> List[ReminderState]:
    now = now or _utc_now()
    horizon = now + dt.timedelta(days=days)
    return sorted(
        (
            reminder
            for reminder in store.list_reminders_for_user(user_id)
            if reminder.is_active and now <= reminder.fire_at <= horizon
        ),
        key=lambda reminder: reminder.fire_at,
    )


def reminder_stats(
    store: ReminderStore, user_id: str, now: Optional[dt.datetime] = None
) -> Dict[str, int]:
    now = now or _utc_now()
    counts = store.count_by_status(user_id)
    upcoming = sum(
        1
        for reminder in store.list_reminders_for_user(user_id)
        if reminder.is_active and reminder.fire_at >= now
    )
    return {
        "total": sum(counts.values()),
        "pending": counts.get(ReminderStatus.PENDING.value, 0),
        "sent": counts.get(ReminderStatus.SENT.value, 0),
        "acknowledged": counts.get(ReminderStatus.ACKNOWLEDGED.value, 0),
        "upcoming": upcoming,
    }


def get_preferences(store: ReminderStore, user_id: str) -> ReminderPreferences:
    user = store.get_user(user_id)
    if user is None:
        raise NotFoundError(f"User not found: {user_id}")
    return user.preferences


def update_preferences(
    store: ReminderStore,
    user_id: str,
    email_enabled: Optional[bool] = None,
    push_enabled: Optional[bool] = None,
    default_reminder_hours: Optional[int] = None,
) -> ReminderPreferences:
    current = get_preferences(store, user_id)
    if default_reminder_hours is not None and not 1 <= default_reminder_hours <= 168:
        raise ValidationError("default_reminder_hours must be between 1 and 168 hours")
    updated = ReminderPreferences(
        email_enabled=current.email_enabled if email_enabled is None else email_enabled,
        push_enabled=current.push_enabled if push_enabled is None else push_enabled,
        default_reminder_hours=(
            current.default_reminder_hours
            if default_reminder_hours is None
            else default_reminder_hours
        ),
    )
    store.update_preferences(user_id, updated)
    return updated


def register_user(
    store: ReminderStore,
    queue: "SQLiteDeliveryQueue",
    user: UserRecord,
    now: Optional[dt.datetime] = None,
) -> UserRecord:
    """Add a user to the directory and queue their welcome email."""
    if not user.email:
        raise ValidationError("User email is required")
    existing = store.get_user(user.id)
    store.upsert_user(user)
    if existing is None:
        queue.enqueue(
            SendWelcome(user_id=user.id),
            delay_seconds=WELCOME_DELAY_SECONDS,
            priority=PRIORITY_DEFAULT,
            now=now,
        )
        logger.info("user_registered id=%s", user.id)
    return user
