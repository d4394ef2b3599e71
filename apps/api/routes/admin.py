from __future__ import annotations

import datetime as dt
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException

from apps.api.routes.reminders import http_error, to_response
from apps.api.runtime import ReminderRuntime, get_runtime
from apps.api.schemas.admin import (
    EventCancellationRequest,
    QueueCleanRequest,
    QueuedJobResponse,
    QueueStatsResponse,
)
from apps.api.schemas.reminders import ReminderResponse
from packages.core.delivery.queue import QueuedJobState
from packages.core.reminders import service
from packages.core.reminders.errors import ReminderError
from packages.core.reminders.models import ReminderStatus


router = APIRouter(prefix="/api/admin/reminders", tags=["admin"])


def _runtime() -> ReminderRuntime:
    return get_runtime()


def _admin_runtime() -> ReminderRuntime:
    runtime = _runtime()
    if not runtime.settings.admin_enabled:
        raise HTTPException(status_code=404, detail="not_found")
    return runtime


def _job_response(job: QueuedJobState) -> QueuedJobResponse:
    return QueuedJobResponse(
        id=job.id,
        kind=job.kind,
        payload=dict(job.payload),
        priority=job.priority,
        status=job.status,
        attempts=job.attempts,
        max_attempts=job.max_attempts,
        available_at=job.available_at,
        last_error=job.last_error,
        created_at=job.created_at,
        updated_at=job.updated_at,
        finished_at=job.finished_at,
    )


@router.get("/queue-stats", response_model=QueueStatsResponse)
def queue_stats() -> QueueStatsResponse:
    runtime = _admin_runtime()
    return QueueStatsResponse(**runtime.queue.stats(now=runtime.now()))


@router.get("/failed-jobs", response_model=List[QueuedJobResponse])
def failed_jobs(limit: int = 50) -> List[QueuedJobResponse]:
    runtime = _admin_runtime()
    return [_job_response(job) for job in runtime.queue.list_failed(limit=limit)]


@router.post("/jobs/{job_id}/retry", response_model=QueuedJobResponse)
def retry_job(job_id: str) -> QueuedJobResponse:
    runtime = _admin_runtime()
    job = runtime.queue.get(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    if not runtime.queue.retry_failed(job_id, now=runtime.now()):
        raise HTTPException(status_code=409, detail=f"Job is {job.status}, only failed jobs can be retried")
    return _job_response(runtime.queue.get(job_id))


@router.post("/clean")
def clean_queue(payload: Optional[QueueCleanRequest] = None) -> Dict[str, Any]:
    runtime = _admin_runtime()
    payload = payload or QueueCleanRequest()
    removed = runtime.queue.clean(
        completed_older_than=dt.timedelta(hours=payload.completed_older_than_hours),
        failed_older_than=dt.timedelta(hours=payload.failed_older_than_hours),
        now=runtime.now(),
    )
    return {"status": "cleaned", "removed": removed}


@router.get("/failed", response_model=List[ReminderResponse])
def failed_reminders(limit: int = 100) -> List[ReminderResponse]:
    runtime = _admin_runtime()
    reminders = runtime.store.list_by_status(ReminderStatus.FAILED, limit=limit)
    return [to_response(reminder) for reminder in reminders]


@router.post("/{reminder_id}/retrigger", response_model=ReminderResponse)
def retrigger(reminder_id: str) -> ReminderResponse:
    runtime = _admin_runtime()
    try:
        reminder = service.retrigger_reminder(runtime.store, runtime.scheduler, reminder_id)
    except ReminderError as exc:
        raise http_error(exc) from exc
    return to_response(reminder)


@router.post("/events/{event_id}/cancellation")
def cancel_event(event_id: str, payload: EventCancellationRequest) -> Dict[str, Any]:
    runtime = _admin_runtime()
    try:
        cancelled = service.cancel_event_reminders(
            runtime.store, runtime.scheduler, event_id, reason=payload.reason
        )
    except ReminderError as exc:
        raise http_error(exc) from exc
    return {
        "event_id": event_id,
        "cancelled": len(cancelled),
        "users": len({reminder.user_id for reminder in cancelled}),
    }
