"""Dump tasks run by the rq worker."""
import os

import structlog

from dbdump_core.database.mysql import MySQLDatabase
from dbdump_core.resume import resume
from dbdump_worker.service import create_dump
from dbdump_worker.settings import get_settings
from dbdump_worker.ticks import RQTickSource

logger = structlog.get_logger()


def _use_settings():
    settings = get_settings()
    os.environ.setdefault("SQLITE_PATH", settings.sqlite_path)
    return settings


def resume_dump(dump_id: str, resumption: int) -> str:
    """Run one resumption of a dump job."""
    settings = _use_settings()
    db = MySQLDatabase.from_url(settings.database_url)
    try:
        outcome = resume(
            dump_id,
            resumption,
            db,
            RQTickSource.from_settings(settings),
            settings.dump_options(),
        )
    finally:
        db.close()
    logger.info("resumption_finished", job_id=dump_id, resumption=resumption, outcome=outcome.value)
    return outcome.value


def start_dump() -> str:
    """Create a dump job and run its first resumption."""
    settings = _use_settings()
    db = MySQLDatabase.from_url(settings.database_url)
    try:
        job = create_dump(
            db,
            RQTickSource.from_settings(settings),
            settings.dump_options(),
            lock_seconds=settings.create_lock_seconds,
        )
    finally:
        db.close()
    return job.id
