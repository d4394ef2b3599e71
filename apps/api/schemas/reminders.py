from __future__ import annotations

import datetime as dt
from typing import Optional

from pydantic import BaseModel, Field


class ReminderCreateRequest(BaseModel):
    event_id: str = Field(..., min_length=1)
    reminder_date: dt.datetime
    reminder_type: Optional[str] = None
    custom_message: Optional[str] = None


class ReminderUpdateRequest(BaseModel):
    reminder_date: dt.datetime
    reminder_type: Optional[str] = None
    custom_message: Optional[str] = None


class ReminderSnoozeRequest(BaseModel):
    snooze_minutes: int = Field(..., ge=5, le=1440)


class ReminderResponse(BaseModel):
    id: str
    user_id: str
    event_id: str
    reminder_date: dt.datetime
    reminder_type: str
    status: str
    notified: bool
    fire_at: dt.datetime
    custom_message: Optional[str]
    snoozed_until: Optional[dt.datetime]
    notified_at: Optional[dt.datetime]
    acknowledged_at: Optional[dt.datetime]
    failure_reason: Optional[str]
    retry_count: int
    created_at: dt.datetime
    updated_at: dt.datetime


class ReminderStatsResponse(BaseModel):
    total: int
    pending: int
    sent: int
    acknowledged: int
    upcoming: int


class PreferencesResponse(BaseModel):
    email_enabled: bool
    push_enabled: bool
    default_reminder_hours: int


class PreferencesUpdateRequest(BaseModel):
    email_enabled: Optional[bool] = None
    push_enabled: Optional[bool] = None
    default_reminder_hours: Optional[int] = None
