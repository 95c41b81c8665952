"""Table catalog: enumeration and dump ordering."""
from dbdump_core.catalog.ordering import (
    PRIORITY_TABLES,
    CORE_TABLES,
    sort_tables,
    table_sort_key,
    has_case_duplicates,
    matches_prefix,
    dump_name,
)
from dbdump_core.database.base import Database
from dbdump_core.jobs.models import TableEntry


def read_catalog(db: Database, prefix: str = "") -> list[TableEntry]:
    """List the database's tables and views in dump order."""
    tables = [TableEntry(name=name, kind=kind) for name, kind in db.list_tables()]
    return sort_tables(tables, prefix)


__all__ = [
    "PRIORITY_TABLES",
    "CORE_TABLES",
    "sort_tables",
    "table_sort_key",
    "has_case_duplicates",
    "matches_prefix",
    "dump_name",
    "read_catalog",
]
