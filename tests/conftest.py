import datetime as dt
from typing import List, Optional

import pytest
from apscheduler.schedulers.background import BackgroundScheduler

from packages.core.delivery.queue import SQLiteDeliveryQueue
from packages.core.delivery.worker import DeliveryWorker
from packages.core.notifications.composer import EmailComposer
from packages.core.reminders.config import ReminderSettings
from packages.core.reminders.models import EventRecord, UserRecord
from packages.core.reminders.scheduler import ReminderScheduler
from packages.core.storage.sqlite import SQLiteReminderStore


START = dt.datetime(2026, 6, 1, 12, 0, tzinfo=dt.timezone.utc)


class FakeClock:
    def __init__(self, start: dt.datetime = START) -> None:
        self.now = start

    def __call__(self) -> dt.datetime:
        return self.now

    def advance(self, **kwargs) -> dt.datetime:
        self.now = self.now + dt.timedelta(**kwargs)
        return self.now


class RecordingSender:
    """Stands in for send_email; can be told to fail the next N calls."""

    def __init__(self) -> None:
        self.messages: List[dict] = []
        self.failures_left = 0
        self.error: Optional[Exception] = None

    def fail_next(self, count: int, error: Optional[Exception] = None) -> None:
        self.failures_left = count
        self.error = error or OSError("smtp unavailable")

    def __call__(self, to_email, subject, body, category=None) -> None:
        if self.failures_left > 0:
            self.failures_left -= 1
            raise self.error
        self.messages.append(
            {"to": to_email, "subject": subject, "body": body, "category": category}
        )

    def subjects(self) -> List[str]:
        return [message["subject"] for message in self.messages]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings(tmp_path):
    return ReminderSettings(db_path=str(tmp_path / "reminders.db"), admin_enabled=True)


@pytest.fixture
def store(settings):
    return SQLiteReminderStore(db_path=settings.db_path)


@pytest.fixture
def queue(settings):
    return SQLiteDeliveryQueue(settings.db_path, default_max_attempts=settings.max_attempts)


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def worker(store, queue, settings, sender, clock):
    composer = EmailComposer(settings.frontend_url, email_sender=sender, clock=clock)
    return DeliveryWorker(store, queue, composer, settings, clock=clock)


@pytest.fixture
def scheduler(store, queue, settings, clock, worker):
    # Never started: timers are fired by calling ReminderScheduler.fire.
    aps = BackgroundScheduler(timezone=dt.timezone.utc)
    return ReminderScheduler(store, queue, settings, clock=clock, scheduler=aps, worker=worker)


@pytest.fixture
def seeded(store, clock):
    store.upsert_user(UserRecord(id="u1", name="Ada", email="ada@example.com"))
    store.upsert_user(UserRecord(id="u2", name="Grace", email="grace@example.com"))
    store.upsert_event(
        EventRecord(
            id="e1",
            title="Harbour Jazz Night",
            date=clock.now + dt.timedelta(days=3),
            location="Pier 4",
            price="$15",
        )
    )
    store.upsert_event(
        EventRecord(id="e2", title="Farmers Market", date=clock.now + dt.timedelta(days=10))
    )
    store.upsert_event(
        EventRecord(
            id="draft",
            title="Unannounced Gig",
            date=clock.now + dt.timedelta(days=5),
            status="draft",
        )
    )
    return store
