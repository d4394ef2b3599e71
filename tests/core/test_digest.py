import datetime as dt

from packages.core.delivery.jobs import SendDigest
from packages.core.reminders import service
from packages.core.reminders.digest import group_by_user, next_day_window, queue_daily_digests


def test_next_day_window_in_utc():
    now = dt.datetime(2026, 6, 1, 8, 0, tzinfo=dt.timezone.utc)
    start, end = next_day_window(now, "UTC")
    assert start == dt.datetime(2026, 6, 2, tzinfo=dt.timezone.utc)
    assert end == dt.datetime(2026, 6, 3, tzinfo=dt.timezone.utc)


def test_next_day_window_follows_local_calendar():
    # 02:00 UTC on June 2 is still June 1 in New York (UTC-4).
    now = dt.datetime(2026, 6, 2, 2, 0, tzinfo=dt.timezone.utc)
    start, end = next_day_window(now, "America/New_York")
    assert start == dt.datetime(2026, 6, 2, 4, 0, tzinfo=dt.timezone.utc)
    assert end - start == dt.timedelta(hours=24)


def test_group_by_user_keeps_order(seeded, scheduler, clock):
    a = service.create_reminder(seeded, scheduler, "u1", "e1", clock.now + dt.timedelta(hours=20))
    b = service.create_reminder(seeded, scheduler, "u2", "e1", clock.now + dt.timedelta(hours=21))
    c = service.create_reminder(seeded, scheduler, "u1", "e2", clock.now + dt.timedelta(hours=22))

    grouped = group_by_user([a, b, c])
    assert list(grouped) == ["u1", "u2"]
    assert [r.id for r in grouped["u1"]] == [a.id, c.id]


def test_digest_only_for_users_with_several_reminders(seeded, scheduler, queue, clock):
    tomorrow = clock.now + dt.timedelta(days=1)
    first = service.create_reminder(seeded, scheduler, "u1", "e1", tomorrow)
    second = service.create_reminder(seeded, scheduler, "u1", "e2", tomorrow + dt.timedelta(hours=2))
    service.create_reminder(seeded, scheduler, "u2", "e1", tomorrow)

    assert queue_daily_digests(seeded, queue, clock.now, "UTC") == 1

    digests = [queued.job for queued in queue.list_jobs() if isinstance(queued.job, SendDigest)]
    assert digests == [SendDigest(user_id="u1", reminder_ids=(first.id, second.id))]
    assert seeded.get_reminder(first.id).status.value == "pending"


def test_scheduler_digest_job_uses_configured_timezone(seeded, scheduler, queue, clock):
    service.create_reminder(seeded, scheduler, "u1", "e1", clock.now + dt.timedelta(days=1))
    service.create_reminder(seeded, scheduler, "u1", "e2", clock.now + dt.timedelta(days=1, hours=1))

    assert scheduler.send_daily_digests() == 1
