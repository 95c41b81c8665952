"""Dump writing: in-process writer and the external mysqldump strategy."""
from dbdump_core.dump.writer import DumpWriter, MAX_STATEMENT_BYTES
from dbdump_core.dump.bindump import dump_table_with_binary, find_dump_binary

__all__ = ["DumpWriter", "MAX_STATEMENT_BYTES", "dump_table_with_binary", "find_dump_binary"]
