import datetime as dt

import pytest

from packages.core.reminders.models import (
    ReminderState,
    ReminderStatus,
    ReminderType,
    can_transition,
    sources_for,
)


NOW = dt.datetime(2026, 6, 1, 12, 0, tzinfo=dt.timezone.utc)


def _reminder(**overrides) -> ReminderState:
    values = dict(
        id="r1",
        user_id="u1",
        event_id="e1",
        reminder_date=NOW + dt.timedelta(hours=1),
        reminder_type=ReminderType.EMAIL,
        status=ReminderStatus.PENDING,
        custom_message=None,
        snoozed_until=None,
        notified_at=None,
        acknowledged_at=None,
        failure_reason=None,
        retry_count=0,
        last_retry_at=None,
        created_at=NOW,
        updated_at=NOW,
    )
    values.update(overrides)
    return ReminderState(**values)


@pytest.mark.parametrize(
    "current,target",
    [
        (ReminderStatus.PENDING, ReminderStatus.SENT),
        (ReminderStatus.PENDING, ReminderStatus.FAILED),
        (ReminderStatus.PENDING, ReminderStatus.CANCELLED),
        (ReminderStatus.PENDING, ReminderStatus.SNOOZED),
        (ReminderStatus.SNOOZED, ReminderStatus.PENDING),
        (ReminderStatus.SNOOZED, ReminderStatus.SENT),
        (ReminderStatus.SENT, ReminderStatus.ACKNOWLEDGED),
    ],
)
def test_allowed_transitions(current, target):
    assert can_transition(current, target)


@pytest.mark.parametrize(
    "current,target",
    [
        (ReminderStatus.SENT, ReminderStatus.PENDING),
        (ReminderStatus.SENT, ReminderStatus.CANCELLED),
        (ReminderStatus.CANCELLED, ReminderStatus.PENDING),
        (ReminderStatus.CANCELLED, ReminderStatus.SENT),
        (ReminderStatus.ACKNOWLEDGED, ReminderStatus.SENT),
        (ReminderStatus.FAILED, ReminderStatus.PENDING),
        (ReminderStatus.PENDING, ReminderStatus.ACKNOWLEDGED),
        (ReminderStatus.SNOOZED, ReminderStatus.SNOOZED),
    ],
)
def test_rejected_transitions(current, target):
    assert not can_transition(current, target)


def test_failed_to_pending_is_admin_only():
    assert can_transition(ReminderStatus.FAILED, ReminderStatus.PENDING, admin=True)
    assert ReminderStatus.FAILED not in sources_for(ReminderStatus.PENDING)
    assert ReminderStatus.FAILED in sources_for(ReminderStatus.PENDING, admin=True)


def test_terminal_states_have_no_exits():
    for terminal in (ReminderStatus.CANCELLED, ReminderStatus.ACKNOWLEDGED):
        for target in ReminderStatus:
            assert not can_transition(terminal, target, admin=True)


def test_effective_fire_time_follows_snooze():
    snoozed_until = NOW + dt.timedelta(hours=5)
    pending = _reminder(snoozed_until=snoozed_until)
    snoozed = _reminder(status=ReminderStatus.SNOOZED, snoozed_until=snoozed_until)

    assert pending.fire_at == pending.reminder_date
    assert snoozed.fire_at == snoozed_until
    assert snoozed.is_overdue(NOW + dt.timedelta(hours=2)) is False
    assert snoozed.is_overdue(snoozed_until) is True


def test_notified_is_derived_from_status():
    assert _reminder().notified is False
    assert _reminder(status=ReminderStatus.SENT).notified is True
    assert _reminder(status=ReminderStatus.ACKNOWLEDGED).notified is True
    assert _reminder(status=ReminderStatus.FAILED).notified is False


def test_evolve_returns_new_record():
    original = _reminder()
    changed = original.evolve(status=ReminderStatus.CANCELLED)
    assert original.status == ReminderStatus.PENDING
    assert changed.status == ReminderStatus.CANCELLED
    assert changed.is_terminal and not changed.is_active
