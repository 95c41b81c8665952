"""RQ worker entrypoint."""
import os

import structlog
from redis import Redis
from rq import Worker

from dbdump_core.jobs import init_db
from dbdump_worker.logging import configure_logging
from dbdump_worker.settings import get_settings
from dbdump_worker.tasks import resume_dump  # noqa: F401

logger = structlog.get_logger()


def main():
    """Start the worker."""
    configure_logging()
    settings = get_settings()
    os.environ.setdefault("SQLITE_PATH", settings.sqlite_path)
    init_db()

    conn = Redis.from_url(settings.redis_url)
    # The scheduler moves due resumptions from the scheduled registry onto the queue.
    worker = Worker([settings.queue_name], connection=conn)
    logger.info("worker_starting", queue=settings.queue_name, backup_dir=settings.backup_dir)
    worker.work(with_scheduler=True)


if __name__ == "__main__":
    main()
