from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, ClassVar, Dict, Tuple, Type, Union


# Lower numbers are claimed first.
PRIORITY_URGENT = 1
PRIORITY_NEAR_TERM = 2
PRIORITY_SCHEDULED = 3
PRIORITY_DEFAULT = 5

WELCOME_DELAY_SECONDS = 5


@dataclass(frozen=True)
class SendReminder:
    kind: ClassVar[str] = "send-reminder"
    reminder_id: str


@dataclass(frozen=True)
class SendDigest:
    kind: ClassVar[str] = "send-digest"
    user_id: str
    reminder_ids: Tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class SendConfirmation:
    kind: ClassVar[str] = "send-confirmation"
    reminder_id: str


@dataclass(frozen=True)
class SendCancellation:
    kind: ClassVar[str] = "send-cancellation"
    user_id: str
    event_id: str
    reason: str = ""


@dataclass(frozen=True)
class SendWelcome:
    kind: ClassVar[str] = "send-welcome"
    user_id: str


DeliveryJob = Union[SendReminder, SendDigest, SendConfirmation, SendCancellation, SendWelcome]

JOB_TYPES: Dict[str, Type[Any]] = {
    job_type.kind: job_type
    for job_type in (SendReminder, SendDigest, SendConfirmation, SendCancellation, SendWelcome)
}


def job_to_payload(job: DeliveryJob) -> Dict[str, Any]:
    payload = asdict(job)
    if isinstance(job, SendDigest):
        payload["reminder_ids"] = list(job.reminder_ids)
    return payload


def job_from_payload(kind: str, payload: Dict[str, Any]) -> DeliveryJob:
    job_type = JOB_TYPES.get(kind)
    if job_type is None:
        raise ValueError(f"Unknown delivery job kind: {kind}")
    if job_type is SendDigest:
        return SendDigest(
            user_id=payload["user_id"],
            reminder_ids=tuple(payload.get("reminder_ids") or ()),
        )
    return job_type(**payload)
