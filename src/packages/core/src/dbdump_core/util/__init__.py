"""Utility modules."""
from dbdump_core.util.ids import generate_id
from dbdump_core.util.errors import DumpError, SetupError, SchemaError, JobNotFound, LockBusy

__all__ = [
    "generate_id",
    "DumpError",
    "SetupError",
    "SchemaError",
    "JobNotFound",
    "LockBusy",
]
