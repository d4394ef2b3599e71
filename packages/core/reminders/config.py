from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional


DEFAULT_DB_PATH = os.path.join("apps", "api", "data", "reminders.db")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}") from exc


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() == "true"


@dataclass(frozen=True)
class ReminderSettings:
    db_path: str = DEFAULT_DB_PATH
    scheduler_enabled: bool = True
    sweep_interval_seconds: int = 600
    near_term_window_seconds: int = 300
    overdue_batch_size: int = 50
    max_attempts: int = 3
    backoff_base_seconds: int = 2
    queue_poll_interval_seconds: int = 5
    queue_batch_size: int = 20
    claim_lease_seconds: int = 120
    digest_hour: int = 8
    digest_minute: int = 0
    digest_timezone: str = "UTC"
    frontend_url: str = "http://localhost:3000"
    admin_enabled: bool = False

    @classmethod
    def from_env(cls, db_path: Optional[str] = None) -> "ReminderSettings":
        return cls(
            db_path=db_path or os.getenv("REMINDERS_DB_PATH", DEFAULT_DB_PATH),
            scheduler_enabled=_env_bool("REMINDERS_SCHEDULER_ENABLED", True),
            sweep_interval_seconds=_env_int("REMINDERS_SWEEP_INTERVAL_SECONDS", 600),
            near_term_window_seconds=_env_int("REMINDERS_NEAR_TERM_WINDOW_SECONDS", 300),
            overdue_batch_size=_env_int("REMINDERS_OVERDUE_BATCH_SIZE", 50),
            max_attempts=_env_int("REMINDERS_MAX_ATTEMPTS", 3),
            backoff_base_seconds=_env_int("REMINDERS_BACKOFF_BASE_SECONDS", 2),
            queue_poll_interval_seconds=_env_int("REMINDERS_QUEUE_POLL_INTERVAL_SECONDS", 5),
            queue_batch_size=_env_int("REMINDERS_QUEUE_BATCH_SIZE", 20),
            claim_lease_seconds=_env_int("REMINDERS_CLAIM_LEASE_SECONDS", 120),
            digest_hour=_env_int("REMINDERS_DIGEST_HOUR", 8),
            digest_minute=_env_int("REMINDERS_DIGEST_MINUTE", 0),
            digest_timezone=os.getenv("REMINDERS_DIGEST_TIMEZONE", "UTC"),
            frontend_url=os.getenv("REMINDERS_FRONTEND_URL", "http://localhost:3000").rstrip("/"),
            admin_enabled=_env_bool("REMINDERS_ADMIN_ENABLED", False),
        )
