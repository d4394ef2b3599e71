from __future__ import annotations

import datetime as dt
import logging
import uuid
from contextlib import nullcontext
from typing import Callable, List, Tuple

from ..notifications.composer import (
    KIND_CANCELLATION,
    KIND_CONFIRMATION,
    KIND_DIGEST,
    KIND_REMINDER,
    KIND_WELCOME,
    NotificationComposer,
    NotificationContext,
)
from ..reminders import service
from ..reminders.config import ReminderSettings
from ..reminders.errors import DeliveryError, NotFoundError, TransientDeliveryError
from ..reminders.models import EventRecord, ReminderState, ReminderStatus, UserRecord
from ..storage.base import ReminderStore
from .jobs import (
    DeliveryJob,
    SendCancellation,
    SendConfirmation,
    SendDigest,
    SendReminder,
    SendWelcome,
)
from .queue import QueuedJobState, SQLiteDeliveryQueue

try:
    from opentelemetry import trace
except Exception:  # pragma: no cover - optional dependency resolution
    trace = None


logger = logging.getLogger("event_reminders.worker")

OUTCOME_COMPLETED = "completed"
OUTCOME_RETRYING = "retrying"
OUTCOME_FAILED = "failed"

RESULT_SENT = "sent"
RESULT_SKIPPED = "skipped"

# Queue delays are computed from the enqueuing clock; allow for rounding.
_DUE_TOLERANCE = dt.timedelta(seconds=1)


def _utc_now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class DeliveryWorker:
    """Claims queued delivery jobs and turns them into notifications."""

    def __init__(
        self,
        store: ReminderStore,
        queue: SQLiteDeliveryQueue,
        composer: NotificationComposer,
        settings: ReminderSettings,
        clock: Callable[[], dt.datetime] = _utc_now,
    ) -> None:
        self._store = store
        self._queue = queue
        self._composer = composer
        self._settings = settings
        self._clock = clock
        self._tracer = trace.get_tracer("event_reminders.worker") if trace else None

    def process_available(self) -> int:
        jobs = self._queue.claim(now=self._clock(), limit=self._settings.queue_batch_size)
        for queued in jobs:
            self.run(queued)
        return len(jobs)

    def backoff_seconds(self, attempts: int) -> int:
        return self._settings.backoff_base_seconds * 2 ** max(0, attempts - 1)

    def run(self, queued: QueuedJobState) -> str:
        """Handle one claimed job and record the outcome on the queue."""
        span_context = (
            self._tracer.start_as_current_span(
                f"delivery.{queued.kind}",
                attributes={
                    "delivery.job_id": queued.id,
                    "delivery.attempt": queued.attempts,
                    "delivery.priority": queued.priority,
                },
            )
            if self._tracer
            else nullcontext()
        )
        with span_context:
            try:
                job = queued.job
            except (KeyError, TypeError, ValueError) as exc:
                logger.error("job_malformed id=%s kind=%s error=%s", queued.id, queued.kind, exc)
                self._queue.fail(queued.id, f"Malformed job: {exc}", now=self._clock())
                return OUTCOME_FAILED

            try:
                result = self.handle(job)
            except TransientDeliveryError as exc:
                return self._retry_or_fail(queued, job, str(exc))
            except (NotFoundError, DeliveryError) as exc:
                return self._fail(queued, job, str(exc))
            except Exception as exc:
                logger.exception("job_crashed id=%s kind=%s", queued.id, queued.kind)
                return self._retry_or_fail(queued, job, f"{type(exc).__name__}: {exc}")

            self._queue.complete(queued.id, now=self._clock())
            logger.info(
                "job_completed id=%s kind=%s result=%s attempts=%s",
                queued.id,
                queued.kind,
                result,
                queued.attempts,
            )
            return OUTCOME_COMPLETED

    def _retry_or_fail(self, queued: QueuedJobState, job: DeliveryJob, error: str) -> str:
        if queued.attempts >= queued.max_attempts:
            return self._fail(queued, job, f"Retries exhausted: {error}")
        now = self._clock()
        delay = self.backoff_seconds(queued.attempts)
        self._queue.retry_later(
            queued.id, error, available_at=now + dt.timedelta(seconds=delay), now=now
        )
        logger.warning(
            "job_retry_scheduled id=%s kind=%s attempt=%s delay=%ss error=%s",
            queued.id,
            queued.kind,
            queued.attempts,
            delay,
            error,
        )
        return OUTCOME_RETRYING

    def _fail(self, queued: QueuedJobState, job: DeliveryJob, error: str) -> str:
        now = self._clock()
        self._queue.fail(queued.id, error, now=now)
        logger.error("job_failed id=%s kind=%s error=%s", queued.id, queued.kind, error)
        if isinstance(job, SendReminder):
            service.mark_failed(self._store, job.reminder_id, error, now=now)
        return OUTCOME_FAILED

    def handle(self, job: DeliveryJob) -> str:
        if isinstance(job, SendReminder):
            return self._send_reminder(job)
        if isinstance(job, SendDigest):
            return self._send_digest(job)
        if isinstance(job, SendConfirmation):
            return self._send_confirmation(job)
        if isinstance(job, SendCancellation):
            return self._send_cancellation(job)
        if isinstance(job, SendWelcome):
            return self._send_welcome(job)
        raise TypeError(f"Unsupported delivery job: {type(job).__name__}")

    def _user(self, user_id: str) -> UserRecord:
        user = self._store.get_user(user_id)
        if user is None:
            raise NotFoundError(f"User not found: {user_id}")
        return user

    def _event(self, event_id: str) -> EventRecord:
        event = self._store.get_event(event_id)
        if event is None:
            raise NotFoundError(f"Event not found: {event_id}")
        return event

    def _reminder(self, reminder_id: str) -> ReminderState:
        reminder = self._store.get_reminder(reminder_id)
        if reminder is None:
            raise NotFoundError(f"Reminder not found: {reminder_id}")
        return reminder

    def _send_reminder(self, job: SendReminder) -> str:
        now = self._clock()
        reminder = self._reminder(job.reminder_id)
        if not reminder.is_active:
            logger.info(
                "reminder_delivery_skipped id=%s status=%s", reminder.id, reminder.status.value
            )
            return RESULT_SKIPPED
        if reminder.fire_at > now + _DUE_TOLERANCE:
            logger.info(
                "reminder_delivery_not_due id=%s fire_at=%s", reminder.id, reminder.fire_at.isoformat()
            )
            return RESULT_SKIPPED
        user = self._user(reminder.user_id)
        event = self._event(reminder.event_id)

        token = uuid.uuid4().hex
        if not self._store.claim_for_delivery(
            reminder.id, token, now, self._settings.claim_lease_seconds
        ):
            logger.info("reminder_delivery_in_progress id=%s", reminder.id)
            return RESULT_SKIPPED

        delivered = False
        try:
            current = self._store.get_reminder(reminder.id)
            if current is None or not current.is_active:
                return RESULT_SKIPPED
            self._composer.send(
                KIND_REMINDER, NotificationContext(user=user, event=event, reminder=current)
            )
            delivered = True
        finally:
            if not delivered:
                self._store.release_delivery_claim(reminder.id, token)

        service.mark_sent(self._store, reminder.id, now=self._clock())
        return RESULT_SENT

    def _send_digest(self, job: SendDigest) -> str:
        user = self._user(job.user_id)
        items: List[Tuple[ReminderState, EventRecord]] = []
        for reminder_id in job.reminder_ids:
            reminder = self._store.get_reminder(reminder_id)
            if reminder is None or not reminder.is_active:
                continue
            event = self._store.get_event(reminder.event_id)
            if event is None:
                continue
            items.append((reminder, event))
        if not items:
            logger.info("digest_skipped user_id=%s reason=no_active_reminders", job.user_id)
            return RESULT_SKIPPED
        self._composer.send(KIND_DIGEST, NotificationContext(user=user, digest_items=items))
        return RESULT_SENT

    def _send_confirmation(self, job: SendConfirmation) -> str:
        reminder = self._reminder(job.reminder_id)
        if reminder.status == ReminderStatus.CANCELLED:
            return RESULT_SKIPPED
        user = self._user(reminder.user_id)
        event = self._event(reminder.event_id)
        self._composer.send(
            KIND_CONFIRMATION, NotificationContext(user=user, event=event, reminder=reminder)
        )
        return RESULT_SENT

    def _send_cancellation(self, job: SendCancellation) -> str:
        user = self._user(job.user_id)
        event = self._event(job.event_id)
        self._composer.send(
            KIND_CANCELLATION,
            NotificationContext(user=user, event=event, reason=job.reason or None),
        )
        return RESULT_SENT

    def _send_welcome(self, job: SendWelcome) -> str:
        self._composer.send(KIND_WELCOME, NotificationContext(user=self._user(job.user_id)))
        return RESULT_SENT
