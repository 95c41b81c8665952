"""Job-facing operations: create, status, download and delete."""
import os
import time
from typing import Callable

import structlog

from dbdump_core.database import Database
from dbdump_core.jobs import Job, JobState, JobStatus, delete_job, get_job
from dbdump_core.lock import Semaphore
from dbdump_core.resume import DumpOptions, TickSource, clear_all_scheduled, init_job, resume
from dbdump_core.util import JobNotFound, LockBusy

logger = structlog.get_logger()

CREATE_LOCK = "create_dump"


def create_dump(
    db: Database,
    ticks: TickSource,
    options: DumpOptions,
    *,
    run_first: bool = True,
    lock_seconds: int = 300,
    clock: Callable[[], float] = time.time,
) -> Job:
    """Create a dump job and start it.

    Only one job can be created at a time. With ``run_first`` the first
    resumption runs inline, otherwise it is scheduled to run right away.
    """
    semaphore = Semaphore(CREATE_LOCK, locked_for=lock_seconds, clock=clock)
    if not semaphore.acquire():
        raise LockBusy(CREATE_LOCK)
    try:
        job = init_job(db, options, clock=clock)
    finally:
        semaphore.release()

    if run_first:
        outcome = resume(job.id, 0, db, ticks, options, clock=clock)
        logger.info("first_resumption_finished", job_id=job.id, outcome=outcome.value)
    else:
        ticks.schedule_at(clock(), job.id, 0)
    return get_job(job.id) or job


def _require(job_id: str) -> Job:
    job = get_job(job_id)
    if job is None:
        raise JobNotFound(job_id)
    return job


def get_dump_status(
    job_id: str,
    ticks: TickSource | None = None,
    stall_seconds: int = 30,
    clock: Callable[[], float] = time.time,
) -> JobStatus:
    """Report progress; nudges the tick source if a running job went quiet."""
    job = _require(job_id)
    if ticks is not None and job.status == JobState.RUNNING and clock() - job.updated_at > stall_seconds:
        fired = ticks.kick()
        logger.info("stalled_job_kicked", job_id=job_id, idle=int(clock() - job.updated_at), fired=fired)

    complete = job.status == JobState.COMPLETE
    return JobStatus(
        job_id=job.id,
        status=job.status,
        current_table=job.current_table,
        table_index=job.cursor,
        total_tables=job.total_tables,
        started_at=job.started_at,
        updated_at=job.updated_at,
        resumption=job.resumption,
        resume_interval=job.resume_interval,
        file=os.path.basename(job.output_path) if complete else None,
        size=job.file_size if complete else None,
        error=job.error,
    )


def get_download(job_id: str) -> dict:
    """Location of a finished dump."""
    job = _require(job_id)
    if job.status != JobState.COMPLETE or not os.path.exists(job.output_path):
        raise JobNotFound(job_id)
    return {
        "file": os.path.basename(job.output_path),
        "size": os.path.getsize(job.output_path),
        "path": job.output_path,
    }


def delete_dump(job_id: str, ticks: TickSource) -> bool:
    """Stop a job and remove its artifact and state.

    Pending resumptions are retracted first; one that still fires later
    finds no job and does nothing.
    """
    job = _require(job_id)
    clear_all_scheduled(ticks, job_id)
    if job.output_path and os.path.exists(job.output_path):
        os.remove(job.output_path)
    deleted = delete_job(job_id)
    logger.info("dump_deleted", job_id=job_id, status=job.status.value)
    return deleted
