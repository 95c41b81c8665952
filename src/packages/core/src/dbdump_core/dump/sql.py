"""SQL text helpers: quoting, value encoding and CREATE statement fixups."""
import re
from dataclasses import dataclass, field
from typing import Any

from dbdump_core.database.base import Column

INTEGER_TYPE = re.compile(r"^(tiny|small|medium|big)?int", re.IGNORECASE)
BINARY_TYPE = re.compile(r"^(binary|varbinary|tinyblob|mediumblob|blob|longblob)", re.IGNORECASE)
BIT_TYPE = re.compile(r"^bit(?:\(([0-9]+)\))?$", re.IGNORECASE)
# tinyint keys are too small to be worth keyset paging.
KEYSET_KEY_TYPE = re.compile(r"^(small|medium|big)?int(\(| |$)", re.IGNORECASE)
PAGE_CHECKSUM = re.compile(r"PAGE_CHECKSUM=\d\s?")
ENGINE = re.compile(r"ENGINE=([^\s;]+)")

CONTROL_ESCAPES = {"\x00": "\\0", "\n": "\\n", "\r": "\\r", "\x1a": "\\Z"}


def backquote(name: str) -> str:
    """Wrap an identifier in backticks."""
    if not name or name == "*":
        return name
    return f"`{name}`"


def str_lreplace(search: str, replace: str, subject: str) -> str:
    """Replace the last occurrence of ``search``."""
    pos = subject.rfind(search)
    if pos == -1:
        return subject
    return subject[:pos] + replace + subject[pos + len(search):]


def str_replace_once(needle: str, replace: str, haystack: str) -> str:
    """Replace the first occurrence of ``needle``."""
    return haystack.replace(needle, replace, 1)


def normalize_create_statement(create: str, table: str, dump_as: str) -> str:
    """Make a SHOW CREATE TABLE result portable.

    Legacy ``TYPE=`` becomes ``ENGINE=``, MyISAM loses its PAGE_CHECKSUM
    option and the table is renamed when dumped under a different name.
    """
    create = str_lreplace("TYPE=", "ENGINE=", create)
    m = ENGINE.search(create)
    if m and m.group(1).lower() == "myisam":
        create = PAGE_CHECKSUM.sub("", create, count=1)
    if dump_as != table:
        create = str_replace_once(table, dump_as, create)
    return create


def escape_string(value: str) -> str:
    """Quote a value as a MySQL string literal."""
    value = value.replace("\\", "\\\\").replace("'", "\\'")
    for char, escaped in CONTROL_ESCAPES.items():
        value = value.replace(char, escaped)
    return f"'{value}'"


def bit_literal(value: Any, width: int) -> str:
    """Encode a BIT(n) value as ``b'0101'`` zero-padded to ``width``."""
    if isinstance(value, int):
        bits = format(value, "b")
    else:
        bits = "".join(format(b, "08b") for b in bytes(value))
    return f"b'{bits.zfill(width)}'"


@dataclass
class TableLayout:
    """Column classification derived from DESCRIBE output."""

    integer: set[str] = field(default_factory=set)
    binary: set[str] = field(default_factory=set)
    bits: dict[str, int] = field(default_factory=dict)
    primary_key: str | None = None
    primary_key_type: str = ""

    @property
    def keyset_column(self) -> str | None:
        """The single integer primary key usable for keyset paging."""
        if self.primary_key and KEYSET_KEY_TYPE.match(self.primary_key_type):
            return self.primary_key
        return None

    def encode(self, column: str, value: Any) -> str:
        name = column.lower()
        if name in self.integer:
            return "NULL" if value is None or value == "" else str(value)
        if name in self.binary:
            if value is None:
                return "NULL"
            if value == b"" or value == "":
                return "''"
            if isinstance(value, str):
                value = value.encode("utf-8")
            return "0x" + bytes(value).hex()
        if name in self.bits:
            return "NULL" if value is None else bit_literal(value, self.bits[name])
        if value is None:
            return "NULL"
        if isinstance(value, (bytes, bytearray)):
            value = bytes(value).decode("utf-8", errors="replace")
        return escape_string(str(value))


def classify_columns(columns: list[Column]) -> TableLayout:
    """Sort columns into integer, binary and bit buckets and find the key."""
    layout = TableLayout()
    key_columns = []
    for col in columns:
        if col.key == "PRI" and col.field:
            key_columns.append(col)
        kind = col.type.strip()
        name = col.field.lower()
        if INTEGER_TYPE.match(kind):
            layout.integer.add(name)
        if BINARY_TYPE.match(kind):
            layout.binary.add(name)
        m = BIT_TYPE.match(kind)
        if m:
            layout.bits[name] = max(1, int(m.group(1))) if m.group(1) else 1

    if len(key_columns) == 1:
        layout.primary_key = key_columns[0].field
        layout.primary_key_type = key_columns[0].type
    return layout
