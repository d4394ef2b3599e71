from __future__ import annotations

import datetime as dt
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class QueueStatsResponse(BaseModel):
    waiting: int
    active: int
    completed: int
    failed: int
    delayed: int
    total: int


class QueuedJobResponse(BaseModel):
    id: str
    kind: str
    payload: Dict[str, Any]
    priority: int
    status: str
    attempts: int
    max_attempts: int
    available_at: dt.datetime
    last_error: Optional[str]
    created_at: dt.datetime
    updated_at: dt.datetime
    finished_at: Optional[dt.datetime]


class QueueCleanRequest(BaseModel):
    completed_older_than_hours: int = Field(default=24, ge=0)
    failed_older_than_hours: int = Field(default=168, ge=0)


class EventCancellationRequest(BaseModel):
    reason: str = Field(default="", max_length=500)
