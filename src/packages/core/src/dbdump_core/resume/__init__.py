"""Resumption engine, reschedule policy and tick sources."""
from dbdump_core.resume.engine import (
    MAX_RUN_TIME,
    DumpOptions,
    ResumeOutcome,
    init_job,
    resume,
)
from dbdump_core.resume.policy import ReschedulePolicy, RunContext, clear_all_scheduled
from dbdump_core.resume.ticks import Deferred, MemoryTickSource, TickSource, tick_key

__all__ = [
    "MAX_RUN_TIME",
    "DumpOptions",
    "ResumeOutcome",
    "init_job",
    "resume",
    "ReschedulePolicy",
    "RunContext",
    "clear_all_scheduled",
    "Deferred",
    "MemoryTickSource",
    "TickSource",
    "tick_key",
]
