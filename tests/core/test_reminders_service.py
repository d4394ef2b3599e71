import datetime as dt

import pytest

from packages.core.delivery.jobs import (
    PRIORITY_URGENT,
    SendCancellation,
    SendConfirmation,
    SendReminder,
    SendWelcome,
)
from packages.core.reminders import service
from packages.core.reminders.errors import (
    DuplicateReminderError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from packages.core.reminders.models import ReminderStatus, ReminderType, UserRecord


def _jobs(queue, job_type):
    return [queued for queued in queue.list_jobs() if isinstance(queued.job, job_type)]


def _create(seeded, scheduler, clock, event_id="e1", user_id="u1", hours=24, **kwargs):
    return service.create_reminder(
        seeded,
        scheduler,
        user_id=user_id,
        event_id=event_id,
        reminder_date=clock.now + dt.timedelta(hours=hours),
        **kwargs,
    )


def test_create_persists_schedules_and_confirms(seeded, scheduler, queue, clock):
    reminder = _create(seeded, scheduler, clock, custom_message="  bring the tickets ")

    stored = seeded.get_reminder(reminder.id)
    assert stored.status == ReminderStatus.PENDING
    assert stored.reminder_type == ReminderType.EMAIL
    assert stored.custom_message == "bring the tickets"
    assert scheduler.timers.get(reminder.id).fire_at == reminder.reminder_date

    confirmations = _jobs(queue, SendConfirmation)
    assert len(confirmations) == 1
    assert confirmations[0].job.reminder_id == reminder.id
    assert _jobs(queue, SendReminder) == []


def test_create_rejects_past_date_without_persisting(seeded, scheduler, queue, clock):
    with pytest.raises(ValidationError):
        _create(seeded, scheduler, clock, hours=-1)
    with pytest.raises(ValidationError):
        service.create_reminder(seeded, scheduler, "u1", "e1", clock.now)

    assert seeded.list_reminders_for_user("u1") == []
    assert queue.list_jobs() == []
    assert len(scheduler.timers) == 0


@pytest.mark.parametrize(
    "kwargs",
    [
        {"reminder_type": "carrier-pigeon"},
        {"custom_message": "x" * 501},
        {"hours": 24 * 4},
    ],
)
def test_create_validation_errors(seeded, scheduler, clock, kwargs):
    with pytest.raises(ValidationError):
        _create(seeded, scheduler, clock, **kwargs)
    assert seeded.list_reminders_for_user("u1") == []


def test_create_accepts_message_at_limit(seeded, scheduler, clock):
    reminder = _create(seeded, scheduler, clock, custom_message="x" * 500)
    assert len(reminder.custom_message) == 500


def test_create_rejects_unpublished_and_unknown_references(seeded, scheduler, clock):
    with pytest.raises(ValidationError):
        _create(seeded, scheduler, clock, event_id="draft")
    with pytest.raises(NotFoundError):
        _create(seeded, scheduler, clock, event_id="nope")
    with pytest.raises(NotFoundError):
        _create(seeded, scheduler, clock, user_id="ghost")


def test_duplicate_active_reminder_rejected(seeded, scheduler, clock):
    first = _create(seeded, scheduler, clock)
    with pytest.raises(DuplicateReminderError):
        _create(seeded, scheduler, clock, hours=30)

    service.cancel_reminder(seeded, scheduler, first.id)
    second = _create(seeded, scheduler, clock, hours=30)
    assert second.id != first.id


def test_cancel_is_idempotent_and_stops_timer(seeded, scheduler, queue, clock):
    reminder = _create(seeded, scheduler, clock)

    first = service.cancel_reminder(seeded, scheduler, reminder.id)
    second = service.cancel_reminder(seeded, scheduler, reminder.id)

    assert first.status == ReminderStatus.CANCELLED
    assert second == first
    assert reminder.id not in scheduler.timers

    # A timer callback that was already in flight finds no live handle.
    assert scheduler.fire(reminder.id) is None
    assert _jobs(queue, SendReminder) == []


def test_cancel_leaves_sent_reminder_alone(seeded, scheduler, clock):
    reminder = _create(seeded, scheduler, clock)
    assert service.mark_sent(seeded, reminder.id, now=clock.now)

    result = service.cancel_reminder(seeded, scheduler, reminder.id)
    assert result.status == ReminderStatus.SENT


def test_cancel_unknown_reminder(seeded, scheduler):
    with pytest.raises(NotFoundError):
        service.cancel_reminder(seeded, scheduler, "missing")


def test_snooze_moves_effective_fire_time(seeded, scheduler, clock):
    reminder = _create(seeded, scheduler, clock, hours=1)
    until = clock.now + dt.timedelta(hours=6)

    snoozed = service.snooze_reminder(seeded, scheduler, reminder.id, until)
    assert snoozed.status == ReminderStatus.SNOOZED
    assert snoozed.fire_at == until
    assert scheduler.timers.get(reminder.id).fire_at == until


def test_snooze_only_from_pending(seeded, scheduler, clock):
    reminder = _create(seeded, scheduler, clock, hours=1)
    until = clock.now + dt.timedelta(hours=2)
    service.snooze_reminder(seeded, scheduler, reminder.id, until)

    with pytest.raises(InvalidTransitionError):
        service.snooze_reminder(seeded, scheduler, reminder.id, clock.now + dt.timedelta(hours=3))

    current = service.get_reminder(seeded, reminder.id)
    assert current.status == ReminderStatus.SNOOZED
    assert current.fire_at == until
    assert scheduler.timers.get(reminder.id).fire_at == until


def test_snooze_rejects_past_time_and_terminal_reminders(seeded, scheduler, clock):
    reminder = _create(seeded, scheduler, clock)
    with pytest.raises(ValidationError):
        service.snooze_reminder(seeded, scheduler, reminder.id, clock.now - dt.timedelta(minutes=1))

    service.cancel_reminder(seeded, scheduler, reminder.id)
    with pytest.raises(InvalidTransitionError):
        service.snooze_reminder(seeded, scheduler, reminder.id, clock.now + dt.timedelta(hours=1))


def test_acknowledge_requires_sent(seeded, scheduler, clock):
    reminder = _create(seeded, scheduler, clock)
    with pytest.raises(InvalidTransitionError) as excinfo:
        service.acknowledge_reminder(seeded, reminder.id, now=clock.now)
    assert excinfo.value.current == "pending"

    service.mark_sent(seeded, reminder.id, now=clock.now)
    acknowledged = service.acknowledge_reminder(seeded, reminder.id, now=clock.now)
    assert acknowledged.status == ReminderStatus.ACKNOWLEDGED
    assert acknowledged.acknowledged_at == clock.now
    assert acknowledged.notified is True
    assert service.acknowledge_reminder(seeded, reminder.id).status == ReminderStatus.ACKNOWLEDGED


def test_mark_sent_and_failed_are_compare_and_set(seeded, scheduler, clock):
    reminder = _create(seeded, scheduler, clock)
    assert service.mark_sent(seeded, reminder.id, now=clock.now) is True
    assert service.mark_sent(seeded, reminder.id, now=clock.now) is False
    assert service.mark_failed(seeded, reminder.id, "late", now=clock.now) is False

    other = _create(seeded, scheduler, clock, event_id="e2")
    assert service.mark_failed(seeded, other.id, "smtp down", now=clock.now) is True
    failed = seeded.get_reminder(other.id)
    assert failed.status == ReminderStatus.FAILED
    assert failed.failure_reason == "smtp down"
    assert failed.retry_count == 1


def test_retrigger_moves_failed_back_to_pending(seeded, scheduler, queue, clock):
    reminder = _create(seeded, scheduler, clock)
    with pytest.raises(InvalidTransitionError):
        service.retrigger_reminder(seeded, scheduler, reminder.id)

    service.mark_failed(seeded, reminder.id, "smtp down", now=clock.now)
    clock.advance(days=2)
    retried = service.retrigger_reminder(seeded, scheduler, reminder.id)

    assert retried.status == ReminderStatus.PENDING
    assert retried.failure_reason is None
    urgent = _jobs(queue, SendReminder)
    assert len(urgent) == 1
    assert urgent[0].priority == PRIORITY_URGENT


def test_reschedule_resets_snooze_and_timer(seeded, scheduler, clock):
    reminder = _create(seeded, scheduler, clock)
    service.snooze_reminder(seeded, scheduler, reminder.id, clock.now + dt.timedelta(hours=30))

    new_date = clock.now + dt.timedelta(hours=48)
    updated = service.reschedule_reminder(
        seeded, scheduler, "u1", "e1", new_date, reminder_type="both"
    )
    assert updated.status == ReminderStatus.PENDING
    assert updated.snoozed_until is None
    assert updated.reminder_date == new_date
    assert updated.reminder_type == ReminderType.BOTH
    assert scheduler.timers.get(reminder.id).fire_at == new_date

    with pytest.raises(NotFoundError):
        service.reschedule_reminder(seeded, scheduler, "u2", "e1", new_date)


def test_cancel_event_reminders_notifies_each_user(seeded, scheduler, queue, clock):
    _create(seeded, scheduler, clock, user_id="u1")
    _create(seeded, scheduler, clock, user_id="u2")
    _create(seeded, scheduler, clock, user_id="u1", event_id="e2")

    cancelled = service.cancel_event_reminders(seeded, scheduler, "e1", reason="Storm warning")

    assert {reminder.user_id for reminder in cancelled} == {"u1", "u2"}
    assert all(reminder.status == ReminderStatus.CANCELLED for reminder in cancelled)
    notices = _jobs(queue, SendCancellation)
    assert {queued.job.user_id for queued in notices} == {"u1", "u2"}
    assert all(queued.priority == PRIORITY_URGENT for queued in notices)
    assert notices[0].job.reason == "Storm warning"
    assert seeded.find_active_reminder("u1", "e2") is not None


def test_listing_upcoming_and_stats(seeded, scheduler, clock):
    soon = _create(seeded, scheduler, clock, hours=24)
    _create(seeded, scheduler, clock, event_id="e2", hours=24 * 8)

    upcoming = service.list_upcoming(seeded, "u1", days=7, now=clock.now)
    assert [reminder.id for reminder in upcoming] == [soon.id]

    service.mark_sent(seeded, soon.id, now=clock.now)
    stats = service.reminder_stats(seeded, "u1", now=clock.now)
    assert stats == {"total": 2, "pending": 1, "sent": 1, "acknowledged": 0, "upcoming": 1}

    assert len(service.list_reminders(seeded, "u1", status="sent")) == 1
    with pytest.raises(ValidationError):
        service.list_reminders(seeded, "u1", status="bogus")


def test_preferences_validation(seeded):
    updated = service.update_preferences(seeded, "u1", default_reminder_hours=48)
    assert updated.default_reminder_hours == 48
    assert updated.email_enabled is True

    with pytest.raises(ValidationError):
        service.update_preferences(seeded, "u1", default_reminder_hours=169)
    with pytest.raises(NotFoundError):
        service.get_preferences(seeded, "ghost")


def test_register_user_queues_delayed_welcome(store, queue, clock):
    service.register_user(store, queue, UserRecord(id="u9", name="Lin", email="lin@example.com"), now=clock.now)
    service.register_user(store, queue, UserRecord(id="u9", name="Lin", email="lin@example.com"), now=clock.now)

    welcomes = _jobs(queue, SendWelcome)
    assert len(welcomes) == 1
    assert welcomes[0].available_at == clock.now + dt.timedelta(seconds=5)

    with pytest.raises(ValidationError):
        service.register_user(store, queue, UserRecord(id="u10", name="No Mail", email=None))
