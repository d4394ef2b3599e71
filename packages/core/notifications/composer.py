from __future__ import annotations

import datetime as dt
import logging
import math
import smtplib
from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol, Sequence, Tuple

from ..reminders.errors import DeliveryError, TransientDeliveryError
from ..reminders.models import EventRecord, ReminderState, ReminderType, UserRecord
from .email import send_email


logger = logging.getLogger("event_reminders.notifications")

KIND_REMINDER = "reminder"
KIND_DIGEST = "digest"
KIND_CONFIRMATION = "confirmation"
KIND_CANCELLATION = "cancellation"
KIND_WELCOME = "welcome"

EmailSender = Callable[..., None]


def _utc_now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


@dataclass(frozen=True)
class NotificationContext:
    user: UserRecord
    event: Optional[EventRecord] = None
    reminder: Optional[ReminderState] = None
    digest_items: Sequence[Tuple[ReminderState, EventRecord]] = ()
    reason: Optional[str] = None

    @property
    def custom_message(self) -> Optional[str]:
        return self.reminder.custom_message if self.reminder else None


@dataclass(frozen=True)
class RenderedMessage:
    subject: str
    body: str
    category: str


class NotificationComposer(Protocol):
    def send(self, kind: str, context: NotificationContext) -> None:
        """Render and transmit a notification. Raises DeliveryError on failure."""


class PushSender(Protocol):
    def push(self, user: UserRecord, title: str, body: str) -> None:
        """Deliver a push notification to the user's devices."""


def _format_when(value: dt.datetime) -> str:
    return value.strftime("%A, %B %d, %Y at %H:%M %Z").strip()


def days_until(event_date: dt.datetime, now: dt.datetime) -> int:
    return math.ceil((event_date - now).total_seconds() / 86400)


def reminder_subject(event: EventRecord, days: int) -> str:
    if days <= 0:
        return f"TODAY: {event.title}"
    if days == 1:
        return f"Tomorrow: {event.title}"
    if days <= 7:
        return f"Coming Up in {days} Days: {event.title}"
    return f"Reminder: {event.title}"


class EmailComposer:
    """Plain-text email notifications with an optional push channel."""

    def __init__(
        self,
        frontend_url: str,
        email_sender: EmailSender = send_email,
        push_sender: Optional[PushSender] = None,
        clock: Callable[[], dt.datetime] = _utc_now,
    ) -> None:
        self._frontend_url = frontend_url.rstrip("/")
        self._email_sender = email_sender
        self._push_sender = push_sender
        self._clock = clock

    def _event_url(self, event: EventRecord) -> str:
        return f"{self._frontend_url}/events/{event.id}"

    def _event_lines(self, event: EventRecord) -> List[str]:
        lines = [f"When: {_format_when(event.date)}"]
        if event.location:
            lines.append(f"Where: {event.location}")
        if event.price:
            lines.append(f"Price: {event.price}")
        lines.append(f"Details: {self._event_url(event)}")
        return lines

    def render(self, kind: str, context: NotificationContext) -> RenderedMessage:
        user = context.user
        greeting = f"Hi {user.name},"

        if kind == KIND_REMINDER:
            event = self._require_event(context)
            lines = [greeting, "", f"Just a reminder that {event.title} is coming up."]
            if context.custom_message:
                lines += ["", f"Your note: {context.custom_message}"]
            if event.description:
                lines += ["", event.description]
            lines += [""] + self._event_lines(event)
            lines += ["", f"Manage your reminders: {self._frontend_url}/profile"]
            subject = reminder_subject(event, days_until(event.date, self._clock()))
            return RenderedMessage(subject, "\n".join(lines), "reminder")

        if kind == KIND_DIGEST:
            items = list(context.digest_items)
            lines = [greeting, "", f"You have {len(items)} events coming up tomorrow:", ""]
            for _, event in items:
                lines.append(f"- {event.title} ({_format_when(event.date)})")
                lines.append(f"  {self._event_url(event)}")
            lines += ["", f"Manage your reminders: {self._frontend_url}/profile"]
            subject = f"{len(items)} Event Reminders for You"
            return RenderedMessage(subject, "\n".join(lines), "digest")

        if kind == KIND_CONFIRMATION:
            event = self._require_event(context)
            reminder = context.reminder
            lines = [greeting, "", f"Your reminder for {event.title} is set."]
            if reminder is not None:
                lines.append(f"We will remind you on {_format_when(reminder.fire_at)}.")
            lines += [""] + self._event_lines(event)
            return RenderedMessage(f"Reminder Set: {event.title}", "\n".join(lines), "confirmation")

        if kind == KIND_CANCELLATION:
            event = self._require_event(context)
            lines = [greeting, "", f"Unfortunately {event.title} has been cancelled."]
            if context.reason:
                lines += ["", f"Reason: {context.reason}"]
            lines += ["", "Your reminder for this event has been removed."]
            return RenderedMessage(
                f"Event Cancelled: {event.title}", "\n".join(lines), "cancellation"
            )

        if kind == KIND_WELCOME:
            lines = [
                greeting,
                "",
                "Welcome! You can now save events and get reminded before they start.",
                "",
                f"Browse events: {self._frontend_url}/events",
            ]
            return RenderedMessage("Welcome to the Events Directory!", "\n".join(lines), "welcome")

        raise ValueError(f"Unknown notification kind: {kind}")

    def _require_event(self, context: NotificationContext) -> EventRecord:
        if context.event is None:
            raise DeliveryError("Event is required for this notification")
        return context.event

    def _wants_email(self, kind: str, context: NotificationContext) -> bool:
        if kind != KIND_REMINDER or context.reminder is None:
            return True
        return context.reminder.reminder_type in (ReminderType.EMAIL, ReminderType.BOTH)

    def _wants_push(self, kind: str, context: NotificationContext) -> bool:
        if kind != KIND_REMINDER or context.reminder is None:
            return False
        return context.reminder.reminder_type in (ReminderType.PUSH, ReminderType.BOTH)

    def _send_email(self, context: NotificationContext, message: RenderedMessage) -> None:
        if not context.user.email:
            raise DeliveryError(f"User {context.user.id} has no email address")
        try:
            self._email_sender(
                context.user.email, message.subject, message.body, category=message.category
            )
        except (OSError, smtplib.SMTPException, RuntimeError) as exc:
            raise TransientDeliveryError(f"Email delivery failed: {exc}") from exc

    def send(self, kind: str, context: NotificationContext) -> None:
        message = self.render(kind, context)
        delivered = False

        if self._wants_push(kind, context):
            if self._push_sender is None:
                if context.reminder.reminder_type == ReminderType.PUSH:
                    raise DeliveryError("Push channel is not configured")
                logger.warning(
                    "push_channel_unavailable reminder_id=%s", context.reminder.id
                )
            else:
                try:
                    self._push_sender.push(context.user, message.subject, message.body)
                except (OSError, TimeoutError) as exc:
                    raise TransientDeliveryError(f"Push delivery failed: {exc}") from exc
                delivered = True

        if self._wants_email(kind, context):
            try:
                self._send_email(context, message)
            except DeliveryError as exc:
                if not delivered:
                    raise
                # A retry would push again; the push already reached the user.
                logger.warning(
                    "email_failed_after_push reminder_id=%s error=%s", context.reminder.id, exc
                )
            else:
                delivered = True

        if not delivered:
            raise DeliveryError(f"No channel delivered {kind} notification")
        logger.info(
            "notification_sent kind=%s user_id=%s subject=%r",
            kind,
            context.user.id,
            message.subject,
        )
