"""Job models."""
from enum import Enum

from pydantic import BaseModel, Field

DEFAULT_FETCH_ROWS = 1000

BASE_TABLE = "BASE TABLE"
VIEW = "VIEW"


class JobState(str, Enum):
    """Lifecycle of a dump job. Complete and failed are terminal."""

    RUNNING = "running"
    COMPLETE = "complete"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self is not JobState.RUNNING


class TableEntry(BaseModel):
    """One catalog entry."""

    name: str
    kind: str = BASE_TABLE

    @property
    def is_view(self) -> bool:
        return self.kind == VIEW


class Job(BaseModel):
    """Persisted state of one dump job."""

    id: str
    status: JobState = JobState.RUNNING
    tables: list[TableEntry] = Field(default_factory=list)
    cursor: int = 0
    current_table: str | None = None
    header_written: bool = False
    footer_written: bool = False
    output_path: str = ""
    bytes_written: int = 0
    file_size: int | None = None
    started_at: int = 0
    updated_at: int = 0
    fetch_batch_size: int = DEFAULT_FETCH_ROWS
    resume_interval: int | None = None
    run_timings: dict[int, float] = Field(default_factory=dict)
    run_start_times: dict[int, float] = Field(default_factory=dict)
    useful_checkins: set[int] = Field(default_factory=set)
    error: str | None = None
    resumption: int = 0
    dump_binary: str | None = None
    duplicate_tables_exist: bool = False
    table_prefix: str = ""
    activity_detected: str | None = None

    @property
    def total_tables(self) -> int:
        return len(self.tables)

    @property
    def finished(self) -> bool:
        return self.status.terminal


class JobStatus(BaseModel):
    """Job status response."""

    job_id: str
    status: JobState
    current_table: str | None = None
    table_index: int = 0
    total_tables: int = 0
    started_at: int = 0
    updated_at: int = 0
    resumption: int | None = None
    resume_interval: int | None = None
    file: str | None = None
    size: int | None = None
    error: str | None = None
