"""Tick source backed by the rq scheduler."""
import time
from datetime import datetime, timezone

import structlog
from redis import Redis
from rq import Queue
from rq.exceptions import NoSuchJobError
from rq.job import Job, JobStatus as RQJobStatus

from dbdump_core.resume import tick_key
from dbdump_worker.settings import Settings

logger = structlog.get_logger()

RESUME_TASK = "dbdump_worker.tasks.resume_dump"
# Comfortably above MAX_RUN_TIME; a resumption yields long before this.
RESUME_TIMEOUT = "15m"
RETRACTABLE = {RQJobStatus.SCHEDULED, RQJobStatus.QUEUED, RQJobStatus.DEFERRED}


class RQTickSource:
    """Schedules resumptions as rq jobs with deterministic ids."""

    def __init__(self, queue: Queue):
        self.queue = queue

    @classmethod
    def from_settings(cls, settings: Settings) -> "RQTickSource":
        conn = Redis.from_url(settings.redis_url)
        return cls(Queue(settings.queue_name, connection=conn))

    def schedule_at(self, when: float, job_id: str, resumption: int) -> None:
        # Note: the rq id goes in job_id=, the dump id is a positional arg
        self.queue.enqueue_at(
            datetime.fromtimestamp(when, tz=timezone.utc),
            RESUME_TASK,
            job_id,
            resumption,
            job_id=tick_key(job_id, resumption),
            job_timeout=RESUME_TIMEOUT,
        )

    def cancel(self, job_id: str, resumption: int) -> bool:
        key = tick_key(job_id, resumption)
        try:
            job = Job.fetch(key, connection=self.queue.connection)
        except NoSuchJobError:
            return False
        # A started resumption cannot be retracted, and may be the caller.
        if job.get_status() not in RETRACTABLE:
            return False
        job.delete()
        logger.debug("tick_cancelled", key=key)
        return True

    def kick(self) -> int:
        """Move due scheduled resumptions onto the queue right away."""
        registry = self.queue.scheduled_job_registry
        fired = 0
        for rq_id in registry.get_jobs_to_schedule(int(time.time())):
            try:
                job = Job.fetch(rq_id, connection=self.queue.connection)
            except NoSuchJobError:
                registry.remove(rq_id)
                continue
            registry.remove(job)
            self.queue.enqueue_job(job)
            fired += 1
        if fired:
            logger.info("ticks_kicked", fired=fired)
        return fired
