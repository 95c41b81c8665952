"""Time-boxed, resumable dump engine.

A dump job is created once by ``init_job`` and then advanced by calls to
``resume``, each of which works through the catalog until ``MAX_RUN_TIME``
has passed and then hands over to the next scheduled resumption. Progress
is persisted at table boundaries only.
"""
import os
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable

import structlog

from dbdump_core.catalog import has_case_duplicates, matches_prefix, read_catalog
from dbdump_core.database.base import Database
from dbdump_core.dump.bindump import dump_table_with_binary, find_dump_binary
from dbdump_core.dump.writer import DumpWriter
from dbdump_core.jobs.models import DEFAULT_FETCH_ROWS, Job, JobState, TableEntry
from dbdump_core.jobs.repo import JobHandle, create_job
from dbdump_core.resume.policy import ReschedulePolicy
from dbdump_core.resume.ticks import TickSource
from dbdump_core.util.errors import JobNotFound, SetupError
from dbdump_core.util.ids import generate_id

logger = structlog.get_logger()

MAX_RUN_TIME = 25
YIELD_DELAY = 60


class ResumeOutcome(str, Enum):
    """What a single resumption ended with."""

    SKIPPED = "skipped"
    OVERLAP = "overlap"
    YIELDED = "yielded"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass
class DumpOptions:
    """Settings shared by job creation and every resumption."""

    backup_dir: str
    table_prefix: str = ""
    compress: bool = True
    charset: str = "utf-8"
    fetch_rows: int = DEFAULT_FETCH_ROWS
    max_run_time: float = MAX_RUN_TIME
    mysqldump_path: str | None = None
    use_mysqldump: bool = True
    max_allowed_packet: str = "64M"
    generator: str = "dbdump"


def output_path_for(job_id: str, options: DumpOptions) -> str:
    ext = ".sql.gz" if options.compress else ".sql"
    return os.path.join(options.backup_dir, f"db-{job_id}{ext}")


def init_job(
    db: Database,
    options: DumpOptions,
    job_id: str | None = None,
    clock: Callable[[], float] = time.time,
) -> Job:
    """Read the catalog and persist a new running job."""
    try:
        os.makedirs(options.backup_dir, exist_ok=True)
    except OSError as e:
        raise SetupError(f"Could not create backup directory {options.backup_dir}: {e}") from e
    db.relax_sql_mode()

    tables = read_catalog(db, options.table_prefix)
    duplicates = has_case_duplicates([t.name for t in tables])

    binary = None
    if options.use_mysqldump:
        probe = next((t.name for t in tables if not t.is_view), None)
        binary = find_dump_binary(db, options.backup_dir, probe, configured=options.mysqldump_path)

    job_id = job_id or generate_id()
    now = int(clock())
    job = Job(
        id=job_id,
        status=JobState.RUNNING,
        tables=tables,
        output_path=output_path_for(job_id, options),
        started_at=now,
        updated_at=now,
        fetch_batch_size=options.fetch_rows,
        dump_binary=binary,
        duplicate_tables_exist=duplicates,
        table_prefix=options.table_prefix,
    )
    create_job(job)
    logger.info(
        "dump_job_initialized",
        job_id=job_id,
        tables=len(tables),
        mysqldump=binary,
        duplicate_tables=duplicates,
    )
    return job


def resume(
    job_id: str,
    resumption: int,
    db: Database,
    ticks: TickSource,
    options: DumpOptions,
    clock: Callable[[], float] = time.time,
) -> ResumeOutcome:
    """Run one resumption of a dump job."""
    handle = JobHandle.load(job_id)
    if handle is None:
        logger.info("resume_unknown_job", job_id=job_id, resumption=resumption)
        return ResumeOutcome.SKIPPED
    if handle.job.finished:
        logger.info("resume_finished_job", job_id=job_id, status=handle.job.status.value)
        return ResumeOutcome.SKIPPED

    try:
        policy = ReschedulePolicy.start(handle, ticks, resumption, clock=clock)
        overlap = policy.detect_overlap()
        if overlap is not None:
            policy.terminate_due_to_activity(overlap)
            return ResumeOutcome.OVERLAP

        starts = dict(handle.job.run_start_times)
        starts[resumption] = policy.ctx.started_at
        handle.update(resumption=resumption, updated_at=int(clock()), run_start_times=starts)

        return ResumableDump(handle, policy, db, options, clock=clock).run()
    except JobNotFound:
        # Deleted while this resumption was running.
        logger.info("resume_job_deleted", job_id=job_id, resumption=resumption)
        return ResumeOutcome.SKIPPED


class ResumableDump:
    """One resumption's pass over the catalog."""

    def __init__(
        self,
        handle: JobHandle,
        policy: ReschedulePolicy,
        db: Database,
        options: DumpOptions,
        clock: Callable[[], float] = time.time,
    ):
        self.handle = handle
        self.policy = policy
        self.db = db
        self.options = options
        self.clock = clock
        self._counted = 0

    @property
    def job(self) -> Job:
        return self.handle.job

    def out_of_time(self) -> bool:
        return self.clock() - self.policy.ctx.started_at > self.options.max_run_time

    def run(self) -> ResumeOutcome:
        if not self.job.tables:
            return self.fail("No tables to backup")

        writer = DumpWriter(
            self.db,
            self.job.output_path,
            compress=self.options.compress,
            charset=self.options.charset,
            table_prefix=self.job.table_prefix,
            duplicate_tables=self.job.duplicate_tables_exist,
            fetch_rows=self.job.fetch_batch_size,
            generator=self.options.generator,
        )
        try:
            writer.open(append=self.job.header_written)
        except OSError as e:
            logger.error("dump_open_failed", job_id=self.job.id, path=self.job.output_path, error=str(e))
            return self.fail("Could not open backup file")

        try:
            return self._run(writer)
        except JobNotFound:
            raise
        except Exception as e:
            logger.exception("dump_failed", job_id=self.job.id, table=self.job.current_table)
            return self.fail(str(e))
        finally:
            writer.close()

    def _run(self, writer: DumpWriter) -> ResumeOutcome:
        if not self.job.header_written:
            writer.write_header()
            self.checkpoint(writer, header_written=True)
            self.policy.something_useful_happened()

        tables = self.job.tables
        cursor = self.job.cursor
        while cursor < len(tables):
            if self.out_of_time():
                writer.close()
                self.checkpoint(writer, cursor=cursor)
                self.policy.reschedule(YIELD_DELAY)
                logger.info(
                    "dump_yielded",
                    job_id=self.job.id,
                    resumption=self.policy.ctx.resumption,
                    cursor=cursor,
                    total=len(tables),
                )
                return ResumeOutcome.YIELDED

            entry = tables[cursor]
            if not matches_prefix(entry.name, self.job.table_prefix, exact_case=self.job.duplicate_tables_exist):
                cursor += 1
                continue

            self.handle.update(current_table=entry.name)
            self.dump_table(writer, entry)
            cursor += 1
            self.checkpoint(writer, cursor=cursor)
            self.policy.something_useful_happened()

        if not self.job.footer_written:
            writer.write_triggers()
            writer.write_routines()
            writer.write_footer()
            self.checkpoint(writer, footer_written=True)
        writer.close()
        return self.complete()

    def dump_table(self, writer: DumpWriter, entry: TableEntry):
        binary = self.job.dump_binary
        if binary and not entry.is_view:
            if dump_table_with_binary(
                binary,
                self.db,
                entry.name,
                writer,
                self.options.backup_dir,
                max_allowed_packet=self.options.max_allowed_packet,
            ):
                return
            logger.info("mysqldump_fallback", job_id=self.job.id, table=entry.name)
        writer.write_table(entry.name, entry.kind)

    def checkpoint(self, writer: DumpWriter, **fields):
        """Persist progress along with the bytes written since the last one."""
        written = self.job.bytes_written + writer.raw_bytes - self._counted
        self._counted = writer.raw_bytes
        self.handle.update(bytes_written=written, updated_at=int(self.clock()), **fields)

    def complete(self) -> ResumeOutcome:
        path = self.job.output_path
        self.handle.update(
            status=JobState.COMPLETE,
            updated_at=int(self.clock()),
            file_size=os.path.getsize(path) if os.path.exists(path) else None,
        )
        self.policy.clear_all()
        logger.info(
            "dump_completed",
            job_id=self.job.id,
            tables=len(self.job.tables),
            bytes_written=self.job.bytes_written,
        )
        return ResumeOutcome.COMPLETE

    def fail(self, error: str) -> ResumeOutcome:
        self.handle.update(status=JobState.FAILED, error=error, updated_at=int(self.clock()))
        self.policy.clear_all()
        logger.error("dump_job_failed", job_id=self.job.id, error=error)
        return ResumeOutcome.FAILED
