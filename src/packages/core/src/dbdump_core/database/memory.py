"""In-memory database, for tests and dry runs."""
from dataclasses import dataclass, field
from typing import Any

from dbdump_core.database.base import Column, ConnectionInfo
from dbdump_core.jobs.models import BASE_TABLE, VIEW


@dataclass
class MemoryTable:
    columns: list[Column]
    rows: list[dict[str, Any]] = field(default_factory=list)
    kind: str = BASE_TABLE
    create: str | None = None


class MemoryDatabase:
    """Implements the ``Database`` protocol over plain dicts and lists."""

    def __init__(self, database: str = "app", host: str = "localhost", version: str = "8.0.36"):
        self.info = ConnectionInfo(host=host, user="root", password="", database=database)
        self.version = version
        self.tables: dict[str, MemoryTable] = {}
        self.triggers: dict[str, str] = {}
        self.routines: dict[tuple[str, str], str] = {}
        self.sql_mode_relaxed = False
        self.fetches: list[tuple[str, Any, int]] = []

    def add_table(
        self,
        name: str,
        columns: list[Column],
        rows: list[dict[str, Any]] | None = None,
        kind: str = BASE_TABLE,
        create: str | None = None,
    ) -> MemoryTable:
        table = MemoryTable(columns=list(columns), rows=list(rows or []), kind=kind, create=create)
        self.tables[name] = table
        return table

    def connection_info(self) -> ConnectionInfo:
        return self.info

    def server_version(self) -> str:
        return self.version

    def relax_sql_mode(self) -> None:
        self.sql_mode_relaxed = True

    def list_tables(self) -> list[tuple[str, str]]:
        return [(name, t.kind) for name, t in self.tables.items()]

    def describe_table(self, table: str) -> list[Column]:
        return list(self.tables[table].columns)

    def show_create_table(self, table: str) -> str | None:
        t = self.tables[table]
        if t.create:
            return t.create
        if t.kind == VIEW:
            return f"CREATE VIEW `{table}` AS select 1 AS `x`"
        cols = ",\n".join(f"  `{c.field}` {c.type}" for c in t.columns)
        return f"CREATE TABLE `{table}` (\n{cols}\n) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4"

    def fetch_rows(
        self,
        table: str,
        limit: int,
        *,
        key: str | None = None,
        after: Any = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        rows = self.tables[table].rows
        if key is None:
            self.fetches.append((table, None, offset))
            page = rows[offset:offset + limit]
        else:
            self.fetches.append((table, after, 0))
            ordered = sorted(rows, key=lambda r: r[key])
            page = [r for r in ordered if after is None or r[key] > after][:limit]
        return [dict(r) for r in page]

    def list_triggers(self) -> list[str]:
        return list(self.triggers)

    def show_create_trigger(self, name: str) -> str | None:
        return self.triggers.get(name)

    def list_routines(self, kind: str) -> list[str]:
        return [name for (k, name) in self.routines if k == kind]

    def show_create_routine(self, kind: str, name: str) -> str | None:
        return self.routines.get((kind, name))
