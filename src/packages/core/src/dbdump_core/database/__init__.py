"""Database access for the dump engine."""
from dbdump_core.database.base import Column, ConnectionInfo, Database
from dbdump_core.database.memory import MemoryDatabase, MemoryTable

__all__ = ["Column", "ConnectionInfo", "Database", "MemoryDatabase", "MemoryTable"]
