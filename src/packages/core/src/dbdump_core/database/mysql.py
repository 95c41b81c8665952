"""MySQL access over SQLAlchemy."""
from typing import Any

import structlog
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from dbdump_core.database.base import Column, ConnectionInfo
from dbdump_core.dump.sql import backquote

logger = structlog.get_logger()

# Session modes that make MySQL reject zero dates and other legacy data.
INCOMPATIBLE_SQL_MODES = {
    "NO_ZERO_DATE",
    "NO_ZERO_IN_DATE",
    "STRICT_TRANS_TABLES",
    "STRICT_ALL_TABLES",
    "TRADITIONAL",
    "ONLY_FULL_GROUP_BY",
    "ANSI_QUOTES",
}

ROUTINE_KINDS = ("PROCEDURE", "FUNCTION")


def _s(value: Any) -> str:
    # MySQL 8 returns some SHOW/DESCRIBE columns as blobs.
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    return "" if value is None else str(value)


def relaxed_sql_mode(current: str) -> str:
    """Return ``current`` without the incompatible modes."""
    modes = [m.strip() for m in current.split(",")]
    return ",".join(m for m in modes if m and m not in INCOMPATIBLE_SQL_MODES)


class MySQLDatabase:
    """Database implementation backed by one long-lived connection.

    A single connection is kept so that session settings (the SQL mode)
    apply to every query of a resumption.
    """

    def __init__(self, engine: Engine):
        self.engine = engine
        self._conn: Connection | None = None

    @classmethod
    def from_url(cls, url: str) -> "MySQLDatabase":
        return cls(create_engine(url, pool_pre_ping=True))

    @property
    def conn(self) -> Connection:
        if self._conn is None:
            self._conn = self.engine.connect()
        return self._conn

    def close(self):
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def _rows(self, sql: str, **params) -> list[dict[str, Any]]:
        return [dict(r) for r in self.conn.execute(text(sql), params).mappings().all()]

    def _tuples(self, sql: str, **params) -> list[tuple]:
        return [tuple(r) for r in self.conn.execute(text(sql), params).all()]

    def connection_info(self) -> ConnectionInfo:
        url = self.engine.url
        return ConnectionInfo(
            host=url.host or "localhost",
            user=url.username or "",
            password=url.password or "",
            database=url.database or "",
            port=url.port,
            socket=url.query.get("unix_socket"),
        )

    def server_version(self) -> str:
        return _s(self.conn.execute(text("SELECT VERSION()")).scalar())

    def relax_sql_mode(self) -> None:
        current = _s(self.conn.execute(text("SELECT @@SESSION.sql_mode")).scalar())
        if not current:
            return
        mode = relaxed_sql_mode(current)
        self.conn.execute(text("SET SESSION sql_mode = :mode"), {"mode": mode})
        logger.debug("sql_mode_relaxed", sql_mode=mode)

    def list_tables(self) -> list[tuple[str, str]]:
        try:
            rows = self._tuples("SHOW FULL TABLES")
        except SQLAlchemyError as e:
            logger.warning("show_full_tables_failed", error=str(e))
            self.conn.rollback()
            return [(_s(r[0]), "BASE TABLE") for r in self._tuples("SHOW TABLES")]
        return [(_s(r[0]), _s(r[1]) if len(r) > 1 else "BASE TABLE") for r in rows]

    def describe_table(self, table: str) -> list[Column]:
        rows = self._rows(f"DESCRIBE {backquote(table)}")
        return [
            Column(field=_s(r["Field"]), type=_s(r["Type"]), key=_s(r.get("Key")))
            for r in rows
        ]

    def show_create_table(self, table: str) -> str | None:
        rows = self._tuples(f"SHOW CREATE TABLE {backquote(table)}")
        return _s(rows[0][1]) if rows else None

    def fetch_rows(
        self,
        table: str,
        limit: int,
        *,
        key: str | None = None,
        after: Any = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        if key is None:
            return self._rows(
                f"SELECT * FROM {backquote(table)} LIMIT :offset, :limit",
                offset=offset,
                limit=limit,
            )
        where = "" if after is None else f" WHERE {backquote(key)} > :after"
        return self._rows(
            f"SELECT * FROM {backquote(table)}{where}"
            f" ORDER BY {backquote(key)} ASC LIMIT :limit",
            after=after,
            limit=limit,
        )

    def list_triggers(self) -> list[str]:
        return [_s(r["Trigger"]) for r in self._rows("SHOW TRIGGERS")]

    def show_create_trigger(self, name: str) -> str | None:
        rows = self._tuples(f"SHOW CREATE TRIGGER {backquote(name)}")
        if not rows or len(rows[0]) < 3:
            return None
        return _s(rows[0][2])

    def list_routines(self, kind: str) -> list[str]:
        if kind not in ROUTINE_KINDS:
            raise ValueError(f"Unknown routine kind: {kind}")
        db = self.connection_info().database
        rows = self._rows(f"SHOW {kind} STATUS WHERE Db = :db", db=db)
        return [_s(r["Name"]) for r in rows]

    def show_create_routine(self, kind: str, name: str) -> str | None:
        if kind not in ROUTINE_KINDS:
            raise ValueError(f"Unknown routine kind: {kind}")
        rows = self._tuples(f"SHOW CREATE {kind} {backquote(name)}")
        if not rows or len(rows[0]) < 3:
            return None
        return _s(rows[0][2])
