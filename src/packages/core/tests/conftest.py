"""Shared fixtures: isolated job store, fake clock, in-memory database."""
import time

import pytest

from dbdump_core.database import Column, MemoryDatabase
from dbdump_core.jobs import VIEW
from dbdump_core.resume import DumpOptions, MemoryTickSource


class FakeClock:
    """Starts at the real time so file mtimes stay comparable."""

    def __init__(self, start: float | None = None):
        self.now = time.time() if start is None else start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture(autouse=True)
def sqlite_path(tmp_path, monkeypatch):
    path = tmp_path / "jobs.db"
    monkeypatch.setenv("SQLITE_PATH", str(path))
    return path


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ticks(clock):
    return MemoryTickSource(clock=clock)


@pytest.fixture
def options(tmp_path):
    return DumpOptions(
        backup_dir=str(tmp_path / "backups"),
        compress=False,
        use_mysqldump=False,
        fetch_rows=2500,
    )


@pytest.fixture
def site_db():
    """options (10 rows), posts (5000 rows, integer key) and a view."""
    db = MemoryDatabase(database="site")
    db.add_table(
        "a_view",
        [Column("ID", "bigint(20) unsigned"), Column("post_title", "text")],
        kind=VIEW,
    )
    db.add_table(
        "posts",
        [
            Column("ID", "bigint(20) unsigned", "PRI"),
            Column("post_title", "text"),
            Column("post_status", "varchar(20)"),
        ],
        rows=[{"ID": i, "post_title": f"Post {i}", "post_status": "publish"} for i in range(1, 5001)],
    )
    db.add_table(
        "options",
        [
            Column("option_id", "bigint(20) unsigned", "PRI"),
            Column("option_name", "varchar(191)"),
            Column("option_value", "longtext"),
        ],
        rows=[
            {"option_id": i, "option_name": f"opt_{i}", "option_value": f"value {i}"}
            for i in range(1, 11)
        ],
    )
    return db
