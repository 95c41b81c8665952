"""In-process SQL dump writer.

Everything that ends up in the dump file goes through ``DumpWriter.stow``,
which keeps a count of the uncompressed bytes written. The file is opened in
append mode on every resumption after the first, so a gzip dump is a series
of gzip members; readers decompress them as one stream.
"""
import gzip
from datetime import datetime, timezone
from typing import IO, Any

import structlog

from dbdump_core.catalog.ordering import dump_name
from dbdump_core.database.base import Database
from dbdump_core.dump.sql import backquote, classify_columns, normalize_create_statement, TableLayout
from dbdump_core.jobs.models import BASE_TABLE, DEFAULT_FETCH_ROWS, VIEW
from dbdump_core.util.errors import SchemaError

logger = structlog.get_logger()

# Keep each INSERT below the usual max_allowed_packet.
MAX_STATEMENT_BYTES = 512 * 1024

PREAMBLE = (
    "/*!40101 SET @OLD_CHARACTER_SET_CLIENT=@@CHARACTER_SET_CLIENT */;\n"
    "/*!40101 SET @OLD_CHARACTER_SET_RESULTS=@@CHARACTER_SET_RESULTS */;\n"
    "/*!40101 SET @OLD_COLLATION_CONNECTION=@@COLLATION_CONNECTION */;\n"
    "/*!40101 SET @OLD_SQL_MODE=@@SQL_MODE, SQL_MODE='NO_AUTO_VALUE_ON_ZERO' */;\n"
    "/*!40101 SET NAMES utf8mb4 */;\n"
    "/*!40101 SET foreign_key_checks = 0 */;\n\n"
)

FOOTER = (
    "\n/*!40101 SET SQL_MODE=@OLD_SQL_MODE */;\n"
    "/*!40101 SET CHARACTER_SET_CLIENT=@OLD_CHARACTER_SET_CLIENT */;\n"
    "/*!40101 SET CHARACTER_SET_RESULTS=@OLD_CHARACTER_SET_RESULTS */;\n"
    "/*!40101 SET COLLATION_CONNECTION=@OLD_COLLATION_CONNECTION */;\n"
)

ROUTINE_SECTIONS = (("PROCEDURE", "Stored Procedures"), ("FUNCTION", "Stored Functions"))


class DumpWriter:
    """Writes header, table blocks, triggers, routines and footer."""

    def __init__(
        self,
        db: Database,
        path: str,
        *,
        compress: bool = True,
        charset: str = "utf-8",
        table_prefix: str = "",
        duplicate_tables: bool = False,
        fetch_rows: int = DEFAULT_FETCH_ROWS,
        max_statement_bytes: int = MAX_STATEMENT_BYTES,
        generator: str = "dbdump",
    ):
        self.db = db
        self.path = path
        self.compress = compress
        self.charset = charset
        self.table_prefix = table_prefix
        self.duplicate_tables = duplicate_tables
        self.fetch_rows = fetch_rows
        self.max_statement_bytes = max_statement_bytes
        self.generator = generator
        self.raw_bytes = 0
        self._fh: IO[bytes] | None = None

    @property
    def is_open(self) -> bool:
        return self._fh is not None

    def open(self, append: bool = False):
        """Open the output; raises OSError if it cannot be opened."""
        mode = "ab" if append else "wb"
        if self.compress:
            self._fh = gzip.open(self.path, mode)
        else:
            self._fh = open(self.path, mode)
        self.raw_bytes = 0
        return self

    def close(self):
        if self._fh is not None:
            self._fh.close()
            self._fh = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def stow(self, text: str) -> int:
        """Write a chunk of SQL text."""
        if not text:
            return 0
        return self.stow_bytes(text.encode(self.charset, errors="replace"))

    def stow_bytes(self, data: bytes) -> int:
        if self._fh is None:
            raise OSError(f"Dump file is not open: {self.path}")
        self._fh.write(data)
        self.raw_bytes += len(data)
        return len(data)

    def write_header(self, generated_at: datetime | None = None):
        info = self.db.connection_info()
        generated_at = generated_at or datetime.now(timezone.utc)
        try:
            version = self.db.server_version()
        except Exception as e:
            logger.warning("server_version_failed", error=str(e))
            version = "unknown"
        self.stow("# MySQL database backup\n")
        self.stow(f"# Created by {self.generator}\n")
        self.stow(f"# MySQL version: {version}\n")
        self.stow(f"# Table prefix: {self.table_prefix}\n")
        self.stow(
            f"\n# Generated: {generated_at:%A} {generated_at.day}. "
            f"{generated_at:%B %Y %H:%M} UTC\n"
        )
        self.stow(f"# Hostname: {info.host}\n")
        self.stow(f"# Database: {backquote(info.database)}\n")
        self.stow("# --------------------------------------------------------\n\n")
        self.stow(PREAMBLE)

    def write_footer(self):
        self.stow(FOOTER)

    def write_table(self, table: str, kind: str = BASE_TABLE):
        """Dump one table (or view) with the in-process strategy."""
        dump_as = dump_name(table, self.table_prefix, self.duplicate_tables)
        try:
            columns = self.db.describe_table(table)
            create = self.db.show_create_table(table)
        except Exception as e:
            raise SchemaError(f"Could not read structure of {table}: {e}") from e
        if not columns or not create:
            raise SchemaError(f"Could not read structure of {table}")

        self._write_table_beginning(table, dump_as, kind, create)
        if kind != VIEW:
            self._write_rows(table, dump_as, classify_columns(columns))
        self.stow(f"\n# End of data contents of table {backquote(table)}\n\n")

    def _write_table_beginning(self, table: str, dump_as: str, kind: str, create: str):
        self.stow(
            f"\n# Delete any existing table {backquote(table)}\n\n"
            f"DROP TABLE IF EXISTS {backquote(dump_as)};\n"
        )
        if kind == VIEW:
            self.stow(f"DROP VIEW IF EXISTS {backquote(dump_as)};\n")

        description = "view" if kind == VIEW else "table"
        self.stow(f"\n# Table structure of {description} {backquote(table)}\n\n")
        self.stow(normalize_create_statement(create, table, dump_as) + " ;")
        self.stow(f"\n\n# Data contents of {description} {backquote(table)}\n\n")

    def _write_rows(self, table: str, dump_as: str, layout: TableLayout):
        key = layout.keyset_column
        insert = f"INSERT INTO {backquote(dump_as)} VALUES "
        last_key: Any = None
        offset = 0
        pages = 0

        while True:
            try:
                if key:
                    rows = self.db.fetch_rows(table, self.fetch_rows, key=key, after=last_key)
                else:
                    rows = self.db.fetch_rows(table, self.fetch_rows, offset=offset)
            except Exception as e:
                logger.warning("table_fetch_failed", table=table, page=pages, error=str(e))
                self.stow(f"\n# Error fetching data of table {backquote(table)}: {e}\n")
                return
            if not rows:
                break
            pages += 1

            parts: list[str] = []
            size = 0
            for row in rows:
                values = ", ".join(layout.encode(col, val) for col, val in row.items())
                entry = f"({values})"
                parts.append(entry)
                size += len(entry.encode(self.charset, errors="replace")) + 3
                if size > self.max_statement_bytes:
                    self.stow(" \n" + insert + ",\n ".join(parts) + ";")
                    parts, size = [], 0
            if parts:
                self.stow(" \n" + insert + ",\n ".join(parts) + ";")

            if key:
                last_key = rows[-1][key]
            else:
                offset += len(rows)

        logger.debug("table_rows_written", table=table, pages=pages, keyset=bool(key))

    def write_triggers(self):
        names = self._list_or_note("triggers", self.db.list_triggers)
        if not names:
            return
        self.stow("\n# Triggers\n\n")
        self.stow("DELIMITER ;;\n\n")
        for name in names:
            create = self._show_or_note(f"trigger {name}", lambda: self.db.show_create_trigger(name))
            if create:
                self.stow(f"DROP TRIGGER IF EXISTS {backquote(name)};;\n")
                self.stow(create + ";;\n\n")
        self.stow("DELIMITER ;\n\n")

    def write_routines(self):
        for kind, title in ROUTINE_SECTIONS:
            names = self._list_or_note(title.lower(), lambda: self.db.list_routines(kind))
            if not names:
                continue
            self.stow(f"\n# {title}\n\n")
            self.stow("DELIMITER ;;\n\n")
            for name in names:
                create = self._show_or_note(
                    f"{kind.lower()} {name}", lambda: self.db.show_create_routine(kind, name)
                )
                if create:
                    self.stow(f"DROP {kind} IF EXISTS {backquote(name)};;\n")
                    self.stow(create + ";;\n\n")
            self.stow("DELIMITER ;\n\n")

    def _list_or_note(self, what: str, lister) -> list[str]:
        try:
            return lister()
        except Exception as e:
            logger.warning("list_failed", what=what, error=str(e))
            self.stow(f"\n# Error listing {what}: {e}\n")
            return []

    def _show_or_note(self, what: str, reader) -> str | None:
        # A definition that cannot be read is skipped, the rest still get dumped.
        try:
            return reader()
        except Exception as e:
            logger.warning("show_create_failed", what=what, error=str(e))
            self.stow(f"# Error reading {what}: {e}\n")
            return None
