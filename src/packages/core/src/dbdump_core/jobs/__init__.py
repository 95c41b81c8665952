"""Job management module."""
from dbdump_core.jobs.repo import (
    init_db,
    create_job,
    get_job,
    save_job,
    delete_job,
    list_jobs,
    get_option,
    set_option,
    JobHandle,
)
from dbdump_core.jobs.models import Job, JobState, JobStatus, TableEntry, BASE_TABLE, VIEW

__all__ = [
    "init_db",
    "create_job",
    "get_job",
    "save_job",
    "delete_job",
    "list_jobs",
    "get_option",
    "set_option",
    "JobHandle",
    "Job",
    "JobState",
    "JobStatus",
    "TableEntry",
    "BASE_TABLE",
    "VIEW",
]
