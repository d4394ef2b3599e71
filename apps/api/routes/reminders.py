from __future__ import annotations

import datetime as dt
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException

from apps.api.runtime import ReminderRuntime, get_runtime
from apps.api.schemas.reminders import (
    PreferencesResponse,
    PreferencesUpdateRequest,
    ReminderCreateRequest,
    ReminderResponse,
    ReminderSnoozeRequest,
    ReminderStatsResponse,
    ReminderUpdateRequest,
)
from packages.core.reminders import service
from packages.core.reminders.errors import (
    InvalidTransitionError,
    NotFoundError,
    ReminderError,
    ValidationError,
)
from packages.core.reminders.models import ReminderPreferences, ReminderState


router = APIRouter(prefix="/reminders", tags=["reminders"])


def _runtime() -> ReminderRuntime:
    return get_runtime()


def current_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="missing_user")
    return x_user_id.strip()


def http_error(exc: ReminderError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, InvalidTransitionError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=400, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


def to_response(reminder: ReminderState) -> ReminderResponse:
    return ReminderResponse(
        id=reminder.id,
        user_id=reminder.user_id,
        event_id=reminder.event_id,
        reminder_date=reminder.reminder_date,
        reminder_type=reminder.reminder_type.value,
        status=reminder.status.value,
        notified=reminder.notified,
        fire_at=reminder.fire_at,
        custom_message=reminder.custom_message,
        snoozed_until=reminder.snoozed_until,
        notified_at=reminder.notified_at,
        acknowledged_at=reminder.acknowledged_at,
        failure_reason=reminder.failure_reason,
        retry_count=reminder.retry_count,
        created_at=reminder.created_at,
        updated_at=reminder.updated_at,
    )


def _preferences_response(preferences: ReminderPreferences) -> PreferencesResponse:
    return PreferencesResponse(
        email_enabled=preferences.email_enabled,
        push_enabled=preferences.push_enabled,
        default_reminder_hours=preferences.default_reminder_hours,
    )


@router.post("", response_model=ReminderResponse, status_code=201)
def create(
    payload: ReminderCreateRequest, user_id: str = Depends(current_user_id)
) -> ReminderResponse:
    runtime = _runtime()
    try:
        reminder = service.create_reminder(
            runtime.store,
            runtime.scheduler,
            user_id=user_id,
            event_id=payload.event_id,
            reminder_date=payload.reminder_date,
            reminder_type=payload.reminder_type,
            custom_message=payload.custom_message,
        )
    except ReminderError as exc:
        raise http_error(exc) from exc
    return to_response(reminder)


@router.get("", response_model=List[ReminderResponse])
def list_all(
    status: Optional[str] = None, user_id: str = Depends(current_user_id)
) -> List[ReminderResponse]:
    try:
        reminders = service.list_reminders(_runtime().store, user_id, status=status)
    except ReminderError as exc:
        raise http_error(exc) from exc
    return [to_response(reminder) for reminder in reminders]


@router.get("/upcoming", response_model=List[ReminderResponse])
def upcoming(user_id: str = Depends(current_user_id)) -> List[ReminderResponse]:
    runtime = _runtime()
    reminders = service.list_upcoming(runtime.store, user_id, days=7, now=runtime.now())
    return [to_response(reminder) for reminder in reminders]


@router.get("/stats/summary", response_model=ReminderStatsResponse)
def stats(user_id: str = Depends(current_user_id)) -> ReminderStatsResponse:
    runtime = _runtime()
    return ReminderStatsResponse(
        **service.reminder_stats(runtime.store, user_id, now=runtime.now())
    )


@router.get("/settings/preferences", response_model=PreferencesResponse)
def get_preferences(user_id: str = Depends(current_user_id)) -> PreferencesResponse:
    try:
        preferences = service.get_preferences(_runtime().store, user_id)
    except ReminderError as exc:
        raise http_error(exc) from exc
    return _preferences_response(preferences)


@router.put("/settings/preferences", response_model=PreferencesResponse)
def update_preferences(
    payload: PreferencesUpdateRequest, user_id: str = Depends(current_user_id)
) -> PreferencesResponse:
    try:
        preferences = service.update_preferences(
            _runtime().store,
            user_id,
            email_enabled=payload.email_enabled,
            push_enabled=payload.push_enabled,
            default_reminder_hours=payload.default_reminder_hours,
        )
    except ReminderError as exc:
        raise http_error(exc) from exc
    return _preferences_response(preferences)


@router.get("/event/{event_id}", response_model=List[ReminderResponse])
def for_event(event_id: str, user_id: str = Depends(current_user_id)) -> List[ReminderResponse]:
    reminders = service.list_event_reminders(_runtime().store, user_id, event_id)
    return [to_response(reminder) for reminder in reminders]


@router.put("/{event_id}", response_model=ReminderResponse)
def reschedule(
    event_id: str,
    payload: ReminderUpdateRequest,
    user_id: str = Depends(current_user_id),
) -> ReminderResponse:
    runtime = _runtime()
    try:
        reminder = service.reschedule_reminder(
            runtime.store,
            runtime.scheduler,
            user_id=user_id,
            event_id=event_id,
            reminder_date=payload.reminder_date,
            reminder_type=payload.reminder_type,
            custom_message=payload.custom_message,
        )
    except ReminderError as exc:
        raise http_error(exc) from exc
    return to_response(reminder)


@router.delete("/{event_id}", response_model=ReminderResponse)
def cancel(event_id: str, user_id: str = Depends(current_user_id)) -> ReminderResponse:
    runtime = _runtime()
    try:
        reminder = service.cancel_event_reminder(
            runtime.store, runtime.scheduler, user_id, event_id
        )
    except ReminderError as exc:
        raise http_error(exc) from exc
    return to_response(reminder)


@router.patch("/id/{reminder_id}/snooze", response_model=ReminderResponse)
def snooze(
    reminder_id: str,
    payload: ReminderSnoozeRequest,
    user_id: str = Depends(current_user_id),
) -> ReminderResponse:
    runtime = _runtime()
    try:
        service.get_reminder(runtime.store, reminder_id, user_id=user_id)
        until = runtime.now() + dt.timedelta(minutes=payload.snooze_minutes)
        reminder = service.snooze_reminder(runtime.store, runtime.scheduler, reminder_id, until)
    except ReminderError as exc:
        raise http_error(exc) from exc
    return to_response(reminder)


@router.patch("/id/{reminder_id}/acknowledge", response_model=ReminderResponse)
def acknowledge(reminder_id: str, user_id: str = Depends(current_user_id)) -> ReminderResponse:
    runtime = _runtime()
    try:
        service.get_reminder(runtime.store, reminder_id, user_id=user_id)
        reminder = service.acknowledge_reminder(runtime.store, reminder_id, now=runtime.now())
    except ReminderError as exc:
        raise http_error(exc) from exc
    return to_response(reminder)
