from __future__ import annotations

import datetime as dt
import logging
import os
import threading
from dataclasses import dataclass
from typing import Callable, Optional

from apscheduler.schedulers.base import BaseScheduler

from packages.core.delivery.queue import SQLiteDeliveryQueue
from packages.core.delivery.worker import DeliveryWorker
from packages.core.notifications.composer import EmailComposer, EmailSender, PushSender
from packages.core.notifications.email import send_email, smtp_configured
from packages.core.reminders.config import ReminderSettings
from packages.core.reminders.scheduler import ReminderScheduler
from packages.core.storage.sqlite import SQLiteReminderStore


logger = logging.getLogger("event_reminders.api")

_DEFAULT_DB_PATH = os.path.abspath(
    os.path.join(os.path.dirname(__file__), "data", "reminders.db")
)


def _utc_now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


@dataclass
class ReminderRuntime:
    settings: ReminderSettings
    store: SQLiteReminderStore
    queue: SQLiteDeliveryQueue
    composer: EmailComposer
    scheduler: ReminderScheduler
    worker: DeliveryWorker

    def now(self) -> dt.datetime:
        return self.scheduler.now()


def build_runtime(
    settings: Optional[ReminderSettings] = None,
    clock: Callable[[], dt.datetime] = _utc_now,
    email_sender: EmailSender = send_email,
    push_sender: Optional[PushSender] = None,
    scheduler: Optional[BaseScheduler] = None,
) -> ReminderRuntime:
    settings = settings or ReminderSettings.from_env(
        db_path=os.getenv("REMINDERS_DB_PATH") or _DEFAULT_DB_PATH
    )
    store = SQLiteReminderStore(db_path=settings.db_path)
    queue = SQLiteDeliveryQueue(settings.db_path, default_max_attempts=settings.max_attempts)
    composer = EmailComposer(
        settings.frontend_url,
        email_sender=email_sender,
        push_sender=push_sender,
        clock=clock,
    )
    worker = DeliveryWorker(store, queue, composer, settings, clock=clock)
    reminder_scheduler = ReminderScheduler(
        store, queue, settings, clock=clock, scheduler=scheduler, worker=worker
    )
    return ReminderRuntime(
        settings=settings,
        store=store,
        queue=queue,
        composer=composer,
        scheduler=reminder_scheduler,
        worker=worker,
    )


_RUNTIME: Optional[ReminderRuntime] = None
_RUNTIME_LOCK = threading.Lock()


def get_runtime() -> ReminderRuntime:
    global _RUNTIME
    with _RUNTIME_LOCK:
        if _RUNTIME is None:
            _RUNTIME = build_runtime()
        return _RUNTIME


def start_runtime() -> Optional[ReminderRuntime]:
    runtime = get_runtime()
    if not runtime.settings.scheduler_enabled:
        logger.info("reminder_scheduler_disabled")
        return None
    if runtime.scheduler.running:
        return runtime
    if not smtp_configured():
        logger.warning("smtp_not_configured email delivery will be retried until SMTP is set")
    runtime.scheduler.initialize()
    return runtime


def stop_runtime() -> None:
    with _RUNTIME_LOCK:
        runtime = _RUNTIME
    if runtime is not None:
        runtime.scheduler.shutdown()
