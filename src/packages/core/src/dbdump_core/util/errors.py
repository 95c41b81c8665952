"""Exceptions raised by the dump engine."""


class DumpError(Exception):
    """Base class for errors that fail a dump job."""


class SetupError(DumpError):
    """The job cannot be set up, e.g. its backup directory cannot be created."""


class SchemaError(DumpError):
    """A table's structure could not be read."""


class JobNotFound(Exception):
    """No persisted state exists for the requested job id."""

    def __init__(self, job_id: str):
        super().__init__(f"Dump job not found: {job_id}")
        self.job_id = job_id


class LockBusy(Exception):
    """A named lock is held by someone else."""

    def __init__(self, name: str):
        super().__init__(f"Lock is busy: {name}")
        self.name = name
