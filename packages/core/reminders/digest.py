from __future__ import annotations

import datetime as dt
import logging
from collections import OrderedDict
from typing import Dict, Iterable, List, Tuple
from zoneinfo import ZoneInfo

from ..delivery.jobs import PRIORITY_DEFAULT, SendDigest
from ..delivery.queue import SQLiteDeliveryQueue
from ..storage.base import ReminderStore
from .models import ReminderState


logger = logging.getLogger("event_reminders.digest")


def next_day_window(now: dt.datetime, tz: str = "UTC") -> Tuple[dt.datetime, dt.datetime]:
    """Start and end (exclusive) of tomorrow in ``tz``, returned in UTC."""
    zone = ZoneInfo(tz)
    local_today = now.astimezone(zone).date()
    tomorrow = local_today + dt.timedelta(days=1)
    start = dt.datetime.combine(tomorrow, dt.time.min, tzinfo=zone)
    end = dt.datetime.combine(tomorrow + dt.timedelta(days=1), dt.time.min, tzinfo=zone)
    return start.astimezone(dt.timezone.utc), end.astimezone(dt.timezone.utc)


def group_by_user(reminders: Iterable[ReminderState]) -> Dict[str, List[ReminderState]]:
    grouped: Dict[str, List[ReminderState]] = OrderedDict()
    for reminder in reminders:
        grouped.setdefault(reminder.user_id, []).append(reminder)
    return grouped


def queue_daily_digests(
    store: ReminderStore,
    queue: SQLiteDeliveryQueue,
    now: dt.datetime,
    tz: str = "UTC",
) -> int:
    """Queue one digest per user with several reminders due tomorrow.

    Reminder states are left alone; the individual reminders still go out
    on their own schedule.
    """
    start, end = next_day_window(now, tz)
    grouped = group_by_user(store.list_due_between(start, end))

    queued = 0
    for user_id, reminders in grouped.items():
        if len(reminders) < 2:
            continue
        queue.enqueue(
            SendDigest(user_id=user_id, reminder_ids=tuple(r.id for r in reminders)),
            priority=PRIORITY_DEFAULT,
            now=now,
        )
        queued += 1
    logger.info(
        "daily_digests_queued users=%s window_start=%s window_end=%s",
        queued,
        start.isoformat(),
        end.isoformat(),
    )
    return queued
