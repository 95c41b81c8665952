"""Job repository using SQLite."""
import json
import os
import sqlite3
import time
from contextlib import contextmanager
from typing import Any

import structlog

from dbdump_core.jobs.models import Job, JobState
from dbdump_core.util.errors import JobNotFound

logger = structlog.get_logger()

SCHEMA = """
CREATE TABLE IF NOT EXISTS jobs (
    job_id TEXT PRIMARY KEY,
    status TEXT NOT NULL,
    state TEXT NOT NULL,
    created_at INTEGER,
    updated_at INTEGER
);
CREATE TABLE IF NOT EXISTS site_options (
    name TEXT PRIMARY KEY,
    value TEXT,
    expires_at INTEGER
);
CREATE TABLE IF NOT EXISTS locks (
    name TEXT PRIMARY KEY,
    locked_until INTEGER NOT NULL DEFAULT 0
);
"""

# Set once at creation, never rewritten afterwards.
FIXED_FIELDS = ("tables", "output_path")
WRITE_ONCE_FLAGS = ("header_written", "footer_written")


def _get_sqlite_path() -> str:
    return os.environ.get("SQLITE_PATH", "/data/jobs.db")


@contextmanager
def get_conn():
    """Get a database connection."""
    path = _get_sqlite_path()
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    conn = sqlite3.connect(path, timeout=30)
    conn.row_factory = sqlite3.Row
    try:
        conn.executescript(SCHEMA)
        yield conn
        conn.commit()
    finally:
        conn.close()


def init_db():
    """Initialize the database."""
    with get_conn():
        pass


def merge_state(current: Job, update: dict[str, Any]) -> Job:
    """Apply a partial update to a job without breaking its invariants.

    The cursor only moves forward, the header/footer flags and a terminal
    status are sticky, and the catalog and output path are fixed once set.
    """
    data = current.model_dump()
    for key, value in update.items():
        if key == "id" or key not in Job.model_fields:
            raise KeyError(f"Unknown job field: {key}")
        if key in FIXED_FIELDS and data.get(key):
            continue
        data[key] = value

    if current.status.terminal:
        data["status"] = current.status
        data["error"] = current.error
    data["cursor"] = max(current.cursor, int(data["cursor"]))
    for flag in WRITE_ONCE_FLAGS:
        data[flag] = getattr(current, flag) or bool(data[flag])
    return Job.model_validate(data)


def _write(conn: sqlite3.Connection, job: Job):
    now = int(time.time())
    conn.execute(
        """
        INSERT INTO jobs (job_id, status, state, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?)
        ON CONFLICT(job_id) DO UPDATE SET
            status = excluded.status,
            state = excluded.state,
            updated_at = excluded.updated_at
        """,
        (job.id, job.status.value, job.model_dump_json(), now, now),
    )


def create_job(job: Job) -> Job:
    """Insert a new job, replacing nothing that already exists."""
    with get_conn() as conn:
        existing = conn.execute(
            "SELECT 1 FROM jobs WHERE job_id = ?", (job.id,)
        ).fetchone()
        if existing is not None:
            raise ValueError(f"Job already exists: {job.id}")
        _write(conn, job)
    logger.info("job_created", job_id=job.id, tables=job.total_tables)
    return job


def get_job(job_id: str) -> Job | None:
    """Get a job by ID."""
    with get_conn() as conn:
        row = conn.execute(
            "SELECT state FROM jobs WHERE job_id = ?", (job_id,)
        ).fetchone()
        if row is None:
            return None
        return Job.model_validate_json(row["state"])


def save_job(job_id: str, update: dict[str, Any]) -> Job:
    """Merge fields into a stored job and return the merged state."""
    with get_conn() as conn:
        conn.execute("BEGIN IMMEDIATE")
        row = conn.execute(
            "SELECT state FROM jobs WHERE job_id = ?", (job_id,)
        ).fetchone()
        if row is None:
            raise JobNotFound(job_id)
        job = merge_state(Job.model_validate_json(row["state"]), update)
        _write(conn, job)
        return job


def delete_job(job_id: str) -> bool:
    """Delete a job's state. Returns False if there was nothing to delete."""
    with get_conn() as conn:
        cur = conn.execute("DELETE FROM jobs WHERE job_id = ?", (job_id,))
        deleted = cur.rowcount > 0
    if deleted:
        logger.info("job_deleted", job_id=job_id)
    return deleted


def list_jobs(status: JobState | None = None) -> list[Job]:
    """List jobs, most recently updated first."""
    with get_conn() as conn:
        if status is None:
            rows = conn.execute(
                "SELECT state FROM jobs ORDER BY updated_at DESC"
            ).fetchall()
        else:
            rows = conn.execute(
                "SELECT state FROM jobs WHERE status = ? ORDER BY updated_at DESC",
                (status.value,),
            ).fetchall()
        return [Job.model_validate_json(r["state"]) for r in rows]


def get_option(name: str, default: Any = None) -> Any:
    """Read a process-wide option, ignoring expired values."""
    with get_conn() as conn:
        row = conn.execute(
            "SELECT value, expires_at FROM site_options WHERE name = ?", (name,)
        ).fetchone()
    if row is None:
        return default
    if row["expires_at"] and row["expires_at"] < time.time():
        return default
    return json.loads(row["value"])


def set_option(name: str, value: Any, ttl: int | None = None):
    """Store a process-wide option, optionally expiring after ttl seconds."""
    expires_at = int(time.time()) + ttl if ttl else None
    with get_conn() as conn:
        conn.execute(
            """
            INSERT INTO site_options (name, value, expires_at) VALUES (?, ?, ?)
            ON CONFLICT(name) DO UPDATE SET
                value = excluded.value,
                expires_at = excluded.expires_at
            """,
            (name, json.dumps(value), expires_at),
        )


class JobHandle:
    """Write-through view of one stored job.

    The engine and the reschedule policy share a handle so that both see
    every update made during a resumption.
    """

    def __init__(self, job: Job):
        self.job = job

    @classmethod
    def load(cls, job_id: str) -> "JobHandle | None":
        job = get_job(job_id)
        return cls(job) if job is not None else None

    @property
    def id(self) -> str:
        return self.job.id

    def update(self, **fields) -> Job:
        self.job = save_job(self.job.id, fields)
        return self.job

    def reload(self) -> Job:
        job = get_job(self.job.id)
        if job is None:
            raise JobNotFound(self.job.id)
        self.job = job
        return job
