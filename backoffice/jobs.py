"""
Background job queue, persisted in the ``jobs`` table.

The core only enqueues (document processing, outgoing email).  A worker
drains the queue with pending() / mark_done() / mark_failed().  enqueue()
never raises: a failure is logged and None is returned, so the write that
triggered the job still succeeds.
"""
import json
import logging
from typing import Optional

from .database import Database, new_id, utcnow
from .errors import BackofficeError

logger = logging.getLogger(__name__)

JOB_SEND_EMAIL = "send_email"
JOB_PROCESS_DOCUMENT = "process_document"

# Attempts before a failing job stops being retried
MAX_ATTEMPTS = 3


class JobQueue:

    def __init__(self, db: Database) -> None:
        self.db = db

    def enqueue(self, job_type: str, payload: dict) -> Optional[str]:
        job_id = new_id()
        now = utcnow()
        try:
            self.db.execute(
                """INSERT INTO jobs (id, job_type, payload, status, attempts, created_at, updated_at)
                   VALUES (?, ?, ?, 'pending', 0, ?, ?)""",
                (job_id, job_type, json.dumps(payload, default=str), now, now),
            )
        except (BackofficeError, TypeError, ValueError) as exc:
            logger.error("Could not enqueue %s job: %s", job_type, exc)
            return None
        logger.debug("Enqueued %s job %s", job_type, job_id)
        return job_id

    def pending(self, limit: int = 20, job_type: Optional[str] = None) -> list[dict]:
        """Oldest pending (or retryable failed) jobs first."""
        sql = (
            "SELECT * FROM jobs WHERE (status = 'pending' "
            "OR (status = 'failed' AND attempts < ?))"
        )
        params: list = [MAX_ATTEMPTS]
        if job_type:
            sql += " AND job_type = ?"
            params.append(job_type)
        sql += " ORDER BY created_at ASC LIMIT ?"
        params.append(limit)
        rows = self.db.fetch_all(sql, params)
        for r in rows:
            r["payload"] = json.loads(r["payload"]) if r.get("payload") else {}
        return rows

    def get(self, job_id: str) -> Optional[dict]:
        row = self.db.fetch_one("SELECT * FROM jobs WHERE id = ?", [job_id])
        if row and row.get("payload"):
            row["payload"] = json.loads(row["payload"])
        return row

    def mark_done(self, job_id: str) -> bool:
        return self.db.execute(
            "UPDATE jobs SET status = 'done', attempts = attempts + 1, last_error = NULL, "
            "updated_at = ? WHERE id = ?",
            (utcnow(), job_id),
        ) > 0

    def mark_failed(self, job_id: str, error: str) -> bool:
        return self.db.execute(
            "UPDATE jobs SET status = 'failed', attempts = attempts + 1, last_error = ?, "
            "updated_at = ? WHERE id = ?",
            (error, utcnow(), job_id),
        ) > 0

    def stats(self) -> dict[str, int]:
        rows = self.db.fetch_all("SELECT status, COUNT(*) AS n FROM jobs GROUP BY status")
        return {r["status"]: r["n"] for r in rows}
