"""Fixtures for the worker service tests."""
import time

import pytest

from dbdump_core.database import Column, MemoryDatabase
from dbdump_core.jobs import VIEW
from dbdump_core.resume import DumpOptions, MemoryTickSource


class FakeClock:
    def __init__(self):
        self.now = time.time()

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture(autouse=True)
def sqlite_path(tmp_path, monkeypatch):
    monkeypatch.setenv("SQLITE_PATH", str(tmp_path / "jobs.db"))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fired():
    return []


@pytest.fixture
def ticks(clock, fired):
    return MemoryTickSource(handler=lambda job_id, n: fired.append((job_id, n)), clock=clock)


@pytest.fixture
def options(tmp_path):
    return DumpOptions(backup_dir=str(tmp_path / "backups"), use_mysqldump=False)


@pytest.fixture
def db():
    db = MemoryDatabase(database="shop")
    db.add_table(
        "orders",
        [Column("id", "int(11)", "PRI"), Column("total", "decimal(10,2)")],
        rows=[{"id": i, "total": f"{i}.50"} for i in range(1, 21)],
    )
    db.add_table("order_totals", [Column("total", "decimal(10,2)")], kind=VIEW)
    return db
