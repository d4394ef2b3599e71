from .composer import (
    KIND_CANCELLATION,
    KIND_CONFIRMATION,
    KIND_DIGEST,
    KIND_REMINDER,
    KIND_WELCOME,
    EmailComposer,
    NotificationComposer,
    NotificationContext,
    PushSender,
)
from .email import send_email

__all__ = [
    "KIND_CANCELLATION",
    "KIND_CONFIRMATION",
    "KIND_DIGEST",
    "KIND_REMINDER",
    "KIND_WELCOME",
    "EmailComposer",
    "NotificationComposer",
    "NotificationContext",
    "PushSender",
    "send_email",
]
