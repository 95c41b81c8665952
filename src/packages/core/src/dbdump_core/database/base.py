"""Database interface used by the catalog and the dump writer."""
from dataclasses import dataclass
from typing import Any, Protocol


@dataclass(frozen=True)
class Column:
    """One row of DESCRIBE output."""

    field: str
    type: str
    key: str = ""


@dataclass(frozen=True)
class ConnectionInfo:
    """Credentials handed to the external dump binary."""

    host: str
    user: str
    password: str
    database: str
    port: int | None = None
    socket: str | None = None


class Database(Protocol):
    """Read-only access to the database being dumped."""

    def connection_info(self) -> ConnectionInfo:
        """Return the credentials of the current connection."""
        ...

    def server_version(self) -> str:
        """Return the server version string, e.g. ``8.0.36``."""
        ...

    def relax_sql_mode(self) -> None:
        """Drop session SQL modes that reject legacy data."""
        ...

    def list_tables(self) -> list[tuple[str, str]]:
        """Return ``(name, kind)`` pairs, kind being ``BASE TABLE`` or ``VIEW``."""
        ...

    def describe_table(self, table: str) -> list[Column]:
        """Return the table's columns."""
        ...

    def show_create_table(self, table: str) -> str | None:
        """Return the table's CREATE statement."""
        ...

    def fetch_rows(
        self,
        table: str,
        limit: int,
        *,
        key: str | None = None,
        after: Any = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """Fetch one page of rows.

        With ``key`` set, rows are ordered by it and only rows with a key
        greater than ``after`` are returned (all rows when ``after`` is None).
        Otherwise ``offset``/``limit`` paging is used.
        """
        ...

    def list_triggers(self) -> list[str]:
        ...

    def show_create_trigger(self, name: str) -> str | None:
        ...

    def list_routines(self, kind: str) -> list[str]:
        """List stored routines of ``kind`` (``PROCEDURE`` or ``FUNCTION``)."""
        ...

    def show_create_routine(self, kind: str, name: str) -> str | None:
        ...
