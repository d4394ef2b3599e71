from __future__ import annotations

import datetime as dt
import json
import logging
import os
import sqlite3
import uuid
from dataclasses import dataclass
from typing import Dict, List, Optional, Set

from ..storage.sqlite import from_iso, to_iso
from .jobs import PRIORITY_DEFAULT, DeliveryJob, SendReminder, job_from_payload, job_to_payload


logger = logging.getLogger("event_reminders.queue")

JOB_WAITING = "waiting"
JOB_ACTIVE = "active"
JOB_COMPLETED = "completed"
JOB_FAILED = "failed"

_JOB_COLUMNS = """
    id, kind, payload, priority, status, attempts, max_attempts, available_at,
    last_error, created_at, updated_at, finished_at
"""


def _utc_now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


@dataclass(frozen=True)
class QueuedJobState:
    id: str
    kind: str
    payload: Dict[str, object]
    priority: int
    status: str
    attempts: int
    max_attempts: int
    available_at: dt.datetime
    last_error: Optional[str]
    created_at: dt.datetime
    updated_at: dt.datetime
    finished_at: Optional[dt.datetime]

    @property
    def job(self) -> DeliveryJob:
        return job_from_payload(self.kind, dict(self.payload))


class SQLiteDeliveryQueue:
    """Durable priority queue of delivery jobs stored next to the reminders."""

    def __init__(self, db_path: str, default_max_attempts: int = 3) -> None:
        self._db_path = db_path
        self._default_max_attempts = default_max_attempts
        directory = os.path.dirname(db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self._db_path, timeout=30)

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS delivery_jobs (
                    id TEXT PRIMARY KEY,
                    kind TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    priority INTEGER NOT NULL,
                    status TEXT NOT NULL,
                    attempts INTEGER NOT NULL DEFAULT 0,
                    max_attempts INTEGER NOT NULL,
                    available_at TEXT NOT NULL,
                    last_error TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    finished_at TEXT
                )
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS delivery_jobs_ready_idx
                ON delivery_jobs (status, priority, available_at)
                """
            )

    def _row_to_job(self, row) -> QueuedJobState:
        return QueuedJobState(
            id=row[0],
            kind=row[1],
            payload=json.loads(row[2] or "{}"),
            priority=row[3],
            status=row[4],
            attempts=row[5],
            max_attempts=row[6],
            available_at=from_iso(row[7]),
            last_error=row[8],
            created_at=from_iso(row[9]),
            updated_at=from_iso(row[10]),
            finished_at=from_iso(row[11]),
        )

    def enqueue(
        self,
        job: DeliveryJob,
        delay_seconds: float = 0,
        priority: int = PRIORITY_DEFAULT,
        max_attempts: Optional[int] = None,
        now: Optional[dt.datetime] = None,
    ) -> str:
        now = now or _utc_now()
        job_id = str(uuid.uuid4())
        available_at = now + dt.timedelta(seconds=max(0.0, delay_seconds))
        with self._connect() as conn:
            conn.execute(
                f"""
                INSERT INTO delivery_jobs ({_JOB_COLUMNS})
                VALUES (?, ?, ?, ?, ?, 0, ?, ?, NULL, ?, ?, NULL)
                """,
                (
                    job_id,
                    job.kind,
                    json.dumps(job_to_payload(job)),
                    priority,
                    JOB_WAITING,
                    max_attempts or self._default_max_attempts,
                    to_iso(available_at),
                    to_iso(now),
                    to_iso(now),
                ),
            )
        logger.info(
            "job_enqueued id=%s kind=%s priority=%s delay=%.1fs",
            job_id,
            job.kind,
            priority,
            max(0.0, delay_seconds),
        )
        return job_id

    def get(self, job_id: str) -> Optional[QueuedJobState]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_JOB_COLUMNS} FROM delivery_jobs WHERE id = ?", (job_id,)
            ).fetchone()
            return self._row_to_job(row) if row else None

    def list_jobs(self, status: Optional[str] = None, limit: int = 100) -> List[QueuedJobState]:
        with self._connect() as conn:
            if status:
                rows = conn.execute(
                    f"""
                    SELECT {_JOB_COLUMNS} FROM delivery_jobs
                    WHERE status = ?
                    ORDER BY priority ASC, available_at ASC
                    LIMIT ?
                    """,
                    (status, limit),
                ).fetchall()
            else:
                rows = conn.execute(
                    f"""
                    SELECT {_JOB_COLUMNS} FROM delivery_jobs
                    ORDER BY created_at ASC
                    LIMIT ?
                    """,
                    (limit,),
                ).fetchall()
            return [self._row_to_job(row) for row in rows]

    def list_failed(self, limit: int = 50) -> List[QueuedJobState]:
        return self.list_jobs(status=JOB_FAILED, limit=limit)

    def open_reminder_job_ids(self) -> Set[str]:
        """Reminder ids that already have a waiting or active send job."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT payload FROM delivery_jobs WHERE kind = ? AND status IN (?, ?)",
                (SendReminder.kind, JOB_WAITING, JOB_ACTIVE),
            ).fetchall()
        return {json.loads(row[0]).get("reminder_id") for row in rows}

    def claim(self, now: Optional[dt.datetime] = None, limit: int = 20) -> List[QueuedJobState]:
        """Move due waiting jobs to active and return them, best priority first."""
        now = now or _utc_now()
        claimed: List[QueuedJobState] = []
        with self._connect() as conn:
            candidates = conn.execute(
                f"""
                SELECT {_JOB_COLUMNS} FROM delivery_jobs
                WHERE status = ? AND available_at <= ?
                ORDER BY priority ASC, available_at ASC
                LIMIT ?
                """,
                (JOB_WAITING, to_iso(now), limit),
            ).fetchall()
            for row in candidates:
                result = conn.execute(
                    """
                    UPDATE delivery_jobs
                    SET status = ?, attempts = attempts + 1, updated_at = ?
                    WHERE id = ? AND status = ?
                    """,
                    (JOB_ACTIVE, to_iso(now), row[0], JOB_WAITING),
                )
                if result.rowcount > 0:
                    job = self._row_to_job(row)
                    claimed.append(
                        QueuedJobState(
                            **{
                                **job.__dict__,
                                "status": JOB_ACTIVE,
                                "attempts": job.attempts + 1,
                                "updated_at": now,
                            }
                        )
                    )
        return claimed

    def complete(self, job_id: str, now: Optional[dt.datetime] = None) -> None:
        now = now or _utc_now()
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE delivery_jobs
                SET status = ?, updated_at = ?, finished_at = ?
                WHERE id = ?
                """,
                (JOB_COMPLETED, to_iso(now), to_iso(now), job_id),
            )

    def retry_later(
        self,
        job_id: str,
        error: str,
        available_at: dt.datetime,
        now: Optional[dt.datetime] = None,
    ) -> None:
        now = now or _utc_now()
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE delivery_jobs
                SET status = ?, last_error = ?, available_at = ?, updated_at = ?
                WHERE id = ?
                """,
                (JOB_WAITING, error, to_iso(available_at), to_iso(now), job_id),
            )

    def fail(self, job_id: str, error: str, now: Optional[dt.datetime] = None) -> None:
        now = now or _utc_now()
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE delivery_jobs
                SET status = ?, last_error = ?, updated_at = ?, finished_at = ?
                WHERE id = ?
                """,
                (JOB_FAILED, error, to_iso(now), to_iso(now), job_id),
            )

    def recover_stalled(self, now: Optional[dt.datetime] = None) -> int:
        """Return jobs left active by a stopped process to the waiting state."""
        now = now or _utc_now()
        with self._connect() as conn:
            result = conn.execute(
                """
                UPDATE delivery_jobs
                SET status = ?, available_at = ?, updated_at = ?
                WHERE status = ?
                """,
                (JOB_WAITING, to_iso(now), to_iso(now), JOB_ACTIVE),
            )
            count = result.rowcount
        if count:
            logger.warning("stalled_jobs_recovered count=%s", count)
        return count

    def retry_failed(self, job_id: str, now: Optional[dt.datetime] = None) -> bool:
        now = now or _utc_now()
        with self._connect() as conn:
            result = conn.execute(
                """
                UPDATE delivery_jobs
                SET status = ?, attempts = 0, available_at = ?, updated_at = ?,
                    finished_at = NULL
                WHERE id = ? AND status = ?
                """,
                (JOB_WAITING, to_iso(now), to_iso(now), job_id, JOB_FAILED),
            )
            return result.rowcount > 0

    def clean(
        self,
        completed_older_than: dt.timedelta = dt.timedelta(days=1),
        failed_older_than: dt.timedelta = dt.timedelta(days=7),
        now: Optional[dt.datetime] = None,
    ) -> int:
        now = now or _utc_now()
        with self._connect() as conn:
            completed = conn.execute(
                "DELETE FROM delivery_jobs WHERE status = ? AND finished_at <= ?",
                (JOB_COMPLETED, to_iso(now - completed_older_than)),
            ).rowcount
            failed = conn.execute(
                "DELETE FROM delivery_jobs WHERE status = ? AND finished_at <= ?",
                (JOB_FAILED, to_iso(now - failed_older_than)),
            ).rowcount
        logger.info("jobs_cleaned completed=%s failed=%s", completed, failed)
        return completed + failed

    def stats(self, now: Optional[dt.datetime] = None) -> Dict[str, int]:
        now_iso = to_iso(now or _utc_now())
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT
                    CASE
                        WHEN status = 'waiting' AND available_at > ? THEN 'delayed'
                        ELSE status
                    END AS bucket,
                    COUNT(*)
                FROM delivery_jobs
                GROUP BY bucket
                """,
                (now_iso,),
            ).fetchall()
        counts = {JOB_WAITING: 0, JOB_ACTIVE: 0, JOB_COMPLETED: 0, JOB_FAILED: 0, "delayed": 0}
        for bucket, count in rows:
            counts[bucket] = count
        counts["total"] = sum(counts.values())
        return counts
