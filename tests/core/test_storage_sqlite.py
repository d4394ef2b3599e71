import datetime as dt

from packages.core.reminders.models import (
    EventRecord,
    ReminderPreferences,
    ReminderState,
    ReminderStatus,
    ReminderType,
    UserRecord,
)
from packages.core.storage.sqlite import SQLiteReminderStore, from_iso, to_iso


NOW = dt.datetime(2026, 6, 1, 12, 0, tzinfo=dt.timezone.utc)


def _reminder(reminder_id, fire_at, status=ReminderStatus.PENDING, user_id="u1", event_id="e1", **extra):
    values = dict(
        id=reminder_id,
        user_id=user_id,
        event_id=event_id,
        reminder_date=fire_at,
        reminder_type=ReminderType.EMAIL,
        status=status,
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
    values.update(extra)
    return ReminderState(**values)


def test_iso_helpers_are_fixed_width_utc():
    local = dt.datetime(2026, 6, 1, 14, 0, tzinfo=dt.timezone(dt.timedelta(hours=2)))
    text = to_iso(local)
    assert text == "2026-06-01T12:00:00.000000+00:00"
    assert from_iso(text) == NOW
    assert to_iso(None) is None and from_iso(None) is None


def test_reminder_round_trip(tmp_path):
    store = SQLiteReminderStore(db_path=str(tmp_path / "reminders.db"))
    store.create_reminder(_reminder("r1", NOW + dt.timedelta(hours=2), custom_message="bring cash"))

    loaded = store.get_reminder("r1")
    assert loaded.reminder_date == NOW + dt.timedelta(hours=2)
    assert loaded.reminder_type == ReminderType.EMAIL
    assert loaded.custom_message == "bring cash"
    assert store.get_reminder("missing") is None


def test_transition_is_compare_and_set(tmp_path):
    store = SQLiteReminderStore(db_path=str(tmp_path / "reminders.db"))
    store.create_reminder(_reminder("r1", NOW))

    assert store.transition(
        "r1", [ReminderStatus.PENDING], ReminderStatus.SENT, NOW, notified_at=NOW
    )
    assert not store.transition(
        "r1", [ReminderStatus.PENDING], ReminderStatus.SENT, NOW, notified_at=NOW
    )
    sent = store.get_reminder("r1")
    assert sent.status == ReminderStatus.SENT
    assert sent.notified_at == NOW


def test_transition_can_increment_retry_count(tmp_path):
    store = SQLiteReminderStore(db_path=str(tmp_path / "reminders.db"))
    store.create_reminder(_reminder("r1", NOW))

    store.transition(
        "r1",
        [ReminderStatus.PENDING],
        ReminderStatus.FAILED,
        NOW,
        increment_retry=True,
        failure_reason="smtp down",
        last_retry_at=NOW,
    )
    failed = store.get_reminder("r1")
    assert failed.retry_count == 1
    assert failed.failure_reason == "smtp down"
    assert failed.last_retry_at == NOW


def test_overdue_uses_effective_fire_time(tmp_path):
    store = SQLiteReminderStore(db_path=str(tmp_path / "reminders.db"))
    store.create_reminder(_reminder("late", NOW - dt.timedelta(minutes=5)))
    store.create_reminder(_reminder("oldest", NOW - dt.timedelta(hours=1), event_id="e2"))
    store.create_reminder(_reminder("future", NOW + dt.timedelta(hours=1), event_id="e3"))
    store.create_reminder(
        _reminder(
            "snoozed-later",
            NOW - dt.timedelta(hours=2),
            status=ReminderStatus.SNOOZED,
            snoozed_until=NOW + dt.timedelta(hours=1),
            event_id="e4",
        )
    )
    store.create_reminder(
        _reminder("done", NOW - dt.timedelta(hours=3), status=ReminderStatus.SENT, event_id="e5")
    )

    overdue = store.list_overdue(NOW)
    assert [reminder.id for reminder in overdue] == ["oldest", "late"]

    future = store.list_pending_future(NOW)
    assert {reminder.id for reminder in future} == {"future", "snoozed-later"}


def test_delivery_claim_is_exclusive_until_lease_expires(tmp_path):
    store = SQLiteReminderStore(db_path=str(tmp_path / "reminders.db"))
    store.create_reminder(_reminder("r1", NOW))

    assert store.claim_for_delivery("r1", "a", NOW, lease_seconds=60)
    assert not store.claim_for_delivery("r1", "b", NOW, lease_seconds=60)
    assert store.claim_for_delivery("r1", "b", NOW + dt.timedelta(seconds=61), lease_seconds=60)

    store.release_delivery_claim("r1", "b")
    assert store.claim_for_delivery("r1", "c", NOW, lease_seconds=60)


def test_claim_refused_for_inactive_reminder(tmp_path):
    store = SQLiteReminderStore(db_path=str(tmp_path / "reminders.db"))
    store.create_reminder(_reminder("r1", NOW, status=ReminderStatus.CANCELLED))
    assert not store.claim_for_delivery("r1", "a", NOW, lease_seconds=60)


def test_find_active_ignores_terminal_records(tmp_path):
    store = SQLiteReminderStore(db_path=str(tmp_path / "reminders.db"))
    store.create_reminder(_reminder("old", NOW, status=ReminderStatus.CANCELLED))
    assert store.find_active_reminder("u1", "e1") is None

    store.create_reminder(_reminder("new", NOW + dt.timedelta(hours=1)))
    assert store.find_active_reminder("u1", "e1").id == "new"
    assert len(store.list_reminders_for_event("e1")) == 2
    assert [r.id for r in store.list_reminders_for_event("e1", active_only=True)] == ["new"]


def test_count_by_status_and_list_by_status(tmp_path):
    store = SQLiteReminderStore(db_path=str(tmp_path / "reminders.db"))
    store.create_reminder(_reminder("a", NOW))
    store.create_reminder(_reminder("b", NOW, status=ReminderStatus.FAILED, event_id="e2"))
    store.create_reminder(_reminder("c", NOW, status=ReminderStatus.FAILED, event_id="e3"))

    assert store.count_by_status("u1") == {"pending": 1, "failed": 2}
    assert {r.id for r in store.list_by_status(ReminderStatus.FAILED)} == {"b", "c"}


def test_events_users_and_preferences(tmp_path):
    store = SQLiteReminderStore(db_path=str(tmp_path / "reminders.db"))
    store.upsert_event(EventRecord(id="e1", title="Jazz", date=NOW, location="Pier 4"))
    store.upsert_user(UserRecord(id="u1", name="Ada", email="ada@example.com"))

    assert store.get_event("e1").location == "Pier 4"
    assert store.get_user("u1").preferences == ReminderPreferences()

    assert store.update_preferences(
        "u1", ReminderPreferences(email_enabled=False, push_enabled=True, default_reminder_hours=48)
    )
    prefs = store.get_user("u1").preferences
    assert prefs.email_enabled is False
    assert prefs.push_enabled is True
    assert prefs.default_reminder_hours == 48
    assert store.get_user("nobody") is None
