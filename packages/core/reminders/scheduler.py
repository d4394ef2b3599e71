from __future__ import annotations

import datetime as dt
import logging
import threading
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Dict, List, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.cron import CronTrigger

from ..delivery.jobs import PRIORITY_NEAR_TERM, PRIORITY_SCHEDULED, PRIORITY_URGENT, SendReminder
from ..delivery.queue import SQLiteDeliveryQueue
from ..storage.base import ReminderStore
from .config import ReminderSettings
from .digest import queue_daily_digests
from .errors import SchedulingError

if TYPE_CHECKING:
    from ..delivery.worker import DeliveryWorker


logger = logging.getLogger("event_reminders.scheduler")

SCHEDULED_NOW = "queued"
SCHEDULED_DELAYED = "delayed"
SCHEDULED_TIMER = "timer"

SWEEP_JOB_ID = "reminders:sweep"
DIGEST_JOB_ID = "reminders:digest"
WORKER_JOB_ID = "delivery:worker"
CLEAN_JOB_ID = "delivery:clean"


def _utc_now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


@dataclass(frozen=True)
class TimerHandle:
    reminder_id: str
    fire_at: dt.datetime
    token: str

    @property
    def job_id(self) -> str:
        return f"reminder:{self.reminder_id}"


class TimerRegistry:
    """Process-local reminder timers backed by APScheduler date jobs.

    Not authoritative: a crash loses every handle, which is what the overdue
    sweep and startup reconciliation are for. All mutations hold one lock so a
    new timer always replaces the previous one for the same reminder.
    """

    def __init__(self, scheduler: BaseScheduler) -> None:
        self._scheduler = scheduler
        self._handles: Dict[str, TimerHandle] = {}
        self._lock = threading.RLock()

    def replace(
        self,
        reminder_id: str,
        fire_at: dt.datetime,
        callback: Callable[[str, str], object],
    ) -> TimerHandle:
        with self._lock:
            self._remove_locked(reminder_id)
            handle = TimerHandle(reminder_id=reminder_id, fire_at=fire_at, token=uuid.uuid4().hex)
            try:
                self._scheduler.add_job(
                    callback,
                    "date",
                    run_date=fire_at,
                    args=[reminder_id, handle.token],
                    id=handle.job_id,
                    replace_existing=True,
                    misfire_grace_time=None,
                )
            except Exception as exc:
                raise SchedulingError(f"Could not register timer for {reminder_id}: {exc}") from exc
            self._handles[reminder_id] = handle
            return handle

    def cancel(self, reminder_id: str) -> bool:
        with self._lock:
            return self._remove_locked(reminder_id)

    def release(self, reminder_id: str, token: Optional[str] = None) -> bool:
        """Forget a handle whose timer has fired.

        Returns False when no live handle matches, i.e. the timer was
        cancelled or replaced before its callback ran.
        """
        with self._lock:
            handle = self._handles.get(reminder_id)
            if handle is None or (token is not None and handle.token != token):
                return False
            del self._handles[reminder_id]
            return True

    def get(self, reminder_id: str) -> Optional[TimerHandle]:
        with self._lock:
            return self._handles.get(reminder_id)

    def snapshot(self) -> List[TimerHandle]:
        with self._lock:
            return sorted(self._handles.values(), key=lambda handle: handle.fire_at)

    def clear(self) -> None:
        with self._lock:
            for reminder_id in list(self._handles):
                self._remove_locked(reminder_id)

    def __contains__(self, reminder_id: object) -> bool:
        with self._lock:
            return reminder_id in self._handles

    def __len__(self) -> int:
        with self._lock:
            return len(self._handles)

    def _remove_locked(self, reminder_id: str) -> bool:
        handle = self._handles.pop(reminder_id, None)
        if handle is None:
            return False
        try:
            self._scheduler.remove_job(handle.job_id)
        except JobLookupError:
            # Date jobs remove themselves once they have run.
            pass
        return True


class ReminderScheduler:
    """Decides when reminders fire and hands them to the delivery queue."""

    def __init__(
        self,
        store: ReminderStore,
        queue: SQLiteDeliveryQueue,
        settings: ReminderSettings,
        clock: Callable[[], dt.datetime] = _utc_now,
        scheduler: Optional[BaseScheduler] = None,
        worker: Optional["DeliveryWorker"] = None,
    ) -> None:
        self._store = store
        self._queue = queue
        self._settings = settings
        self._clock = clock
        self._scheduler = scheduler or BackgroundScheduler(timezone=dt.timezone.utc)
        self._worker = worker
        self.timers = TimerRegistry(self._scheduler)

    @property
    def queue(self) -> SQLiteDeliveryQueue:
        return self._queue

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def now(self) -> dt.datetime:
        return self._clock()

    def schedule(self, reminder_id: str) -> Optional[str]:
        """Arrange delivery of one reminder; safe to call repeatedly.

        Returns how the reminder was scheduled, or None when nothing was
        scheduled. Errors are logged rather than raised so one bad record
        never stops a reconciliation pass.
        """
        try:
            reminder = self._store.get_reminder(reminder_id)
            if reminder is None:
                logger.warning("reminder_schedule_missing id=%s", reminder_id)
                return None
            if not reminder.is_active:
                self.timers.cancel(reminder_id)
                logger.info(
                    "reminder_schedule_skipped id=%s status=%s",
                    reminder_id,
                    reminder.status.value,
                )
                return None

            now = self.now()
            delay = (reminder.fire_at - now).total_seconds()
            if delay <= 0:
                self.timers.cancel(reminder_id)
                self._queue.enqueue(
                    SendReminder(reminder_id=reminder_id), priority=PRIORITY_URGENT, now=now
                )
                logger.info("reminder_queued_immediately id=%s late_by=%.0fs", reminder_id, -delay)
                return SCHEDULED_NOW
            if delay < self._settings.near_term_window_seconds:
                self.timers.cancel(reminder_id)
                self._queue.enqueue(
                    SendReminder(reminder_id=reminder_id),
                    delay_seconds=delay,
                    priority=PRIORITY_NEAR_TERM,
                    now=now,
                )
                logger.info("reminder_queued_with_delay id=%s delay=%.0fs", reminder_id, delay)
                return SCHEDULED_DELAYED

            self.timers.replace(reminder_id, reminder.fire_at, self.fire)
            logger.info(
                "reminder_timer_registered id=%s fire_at=%s",
                reminder_id,
                reminder.fire_at.isoformat(),
            )
            return SCHEDULED_TIMER
        except Exception as exc:
            logger.exception("reminder_schedule_failed id=%s error=%s", reminder_id, exc)
            return None

    def cancel(self, reminder_id: str) -> bool:
        """Drop the local timer. Jobs already on the queue re-check status."""
        try:
            removed = self.timers.cancel(reminder_id)
        except Exception as exc:
            logger.exception("reminder_timer_cancel_failed id=%s error=%s", reminder_id, exc)
            return False
        if removed:
            logger.info("reminder_timer_cancelled id=%s", reminder_id)
        return removed

    def fire(self, reminder_id: str, token: Optional[str] = None) -> Optional[str]:
        """Timer callback: turn the fired timer into a delivery job."""
        if not self.timers.release(reminder_id, token):
            logger.info("reminder_timer_stale id=%s", reminder_id)
            return None
        job_id = self._queue.enqueue(
            SendReminder(reminder_id=reminder_id), priority=PRIORITY_SCHEDULED, now=self.now()
        )
        logger.info("reminder_timer_fired id=%s job_id=%s", reminder_id, job_id)
        return job_id

    def sweep_overdue(self) -> int:
        """Enqueue active reminders whose fire time passed without a delivery job."""
        now = self.now()
        try:
            overdue = self._store.list_overdue(now, limit=self._settings.overdue_batch_size)
            in_flight = self._queue.open_reminder_job_ids()
        except Exception as exc:
            logger.exception("overdue_sweep_failed error=%s", exc)
            return 0

        queued = 0
        for reminder in overdue:
            if reminder.id in in_flight:
                continue
            try:
                self.timers.cancel(reminder.id)
                self._queue.enqueue(
                    SendReminder(reminder_id=reminder.id), priority=PRIORITY_URGENT, now=now
                )
                queued += 1
            except Exception as exc:
                logger.exception("overdue_enqueue_failed id=%s error=%s", reminder.id, exc)
        if queued:
            logger.warning("overdue_reminders_queued count=%s", queued)
        return queued

    def send_daily_digests(self) -> int:
        try:
            return queue_daily_digests(
                self._store, self._queue, self.now(), self._settings.digest_timezone
            )
        except Exception as exc:
            logger.exception("daily_digest_failed error=%s", exc)
            return 0

    def clean_queue(self) -> int:
        try:
            return self._queue.clean(now=self.now())
        except Exception as exc:
            logger.exception("queue_clean_failed error=%s", exc)
            return 0

    def initialize(self, start: bool = True) -> int:
        """Rebuild timers from persisted reminders and install periodic jobs."""
        logger.info("scheduler_initializing")
        now = self.now()
        self._queue.recover_stalled(now=now)

        try:
            pending = self._store.list_pending_future(now)
            in_flight = self._queue.open_reminder_job_ids()
        except Exception as exc:
            logger.exception("scheduler_reconcile_failed error=%s", exc)
            pending, in_flight = [], set()
        # Near-term reminders whose delayed job survived the restart keep that job.
        scheduled = sum(
            1
            for reminder in pending
            if reminder.id not in in_flight and self.schedule(reminder.id) is not None
        )

        self._install_periodic_jobs()
        if start and not self._scheduler.running:
            self._scheduler.start()
        logger.info("scheduler_initialized scheduled=%s of=%s", scheduled, len(pending))
        return scheduled

    def _install_periodic_jobs(self) -> None:
        settings = self._settings
        self._scheduler.add_job(
            self.sweep_overdue,
            "interval",
            seconds=settings.sweep_interval_seconds,
            id=SWEEP_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            next_run_time=_utc_now(),
        )
        self._scheduler.add_job(
            self.send_daily_digests,
            CronTrigger(
                hour=settings.digest_hour,
                minute=settings.digest_minute,
                timezone=settings.digest_timezone,
            ),
            id=DIGEST_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.add_job(
            self.clean_queue,
            "interval",
            hours=1,
            id=CLEAN_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        if self._worker is not None:
            self._scheduler.add_job(
                self._worker.process_available,
                "interval",
                seconds=settings.queue_poll_interval_seconds,
                id=WORKER_JOB_ID,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )

    def shutdown(self, wait: bool = False) -> None:
        dropped = len(self.timers)
        self.timers.clear()
        if self._scheduler.running:
            self._scheduler.shutdown(wait=wait)
        logger.info("scheduler_stopped timers_dropped=%s", dropped)
