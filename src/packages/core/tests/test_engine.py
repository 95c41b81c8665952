"""Tests for the resumption engine."""
import gzip
import os

import pytest

from dbdump_core.database import Column, MemoryDatabase
from dbdump_core.dump import bindump
from dbdump_core.jobs import JobState, delete_job, get_job, save_job
from dbdump_core.resume import DumpOptions, MemoryTickSource, ResumeOutcome, init_job, resume
from dbdump_core.util import SetupError

FINISHED = (ResumeOutcome.COMPLETE, ResumeOutcome.FAILED)


class SlowDatabase(MemoryDatabase):
    """Every page fetched from a table in ``delays`` costs that many seconds."""

    def __init__(self, clock, delays, tables):
        super().__init__(database="site")
        self.clock = clock
        self.delays = delays
        self.tables = tables

    def fetch_rows(self, table, limit, **kwargs):
        self.clock.advance(self.delays.get(table, 0))
        return super().fetch_rows(table, limit, **kwargs)


def _read(path):
    if path.endswith(".gz"):
        with gzip.open(path, "rt") as f:
            return f.read()
    with open(path) as f:
        return f.read()


def _without_timestamp(text):
    return "\n".join(line for line in text.splitlines() if not line.startswith("# Generated:"))


def _drive(job_id, db, ticks, options, clock):
    """Resume a job until it finishes, firing each scheduled resumption when due."""
    outcomes = [resume(job_id, 0, db, ticks, options, clock=clock)]
    while outcomes[-1] not in FINISHED:
        assert len(outcomes) < 20
        [entry] = ticks.pending(job_id)
        clock.now = entry.due_at
        ticks.pop_due()
        outcomes.append(resume(job_id, entry.resumption, db, ticks, options, clock=clock))
    return outcomes


def test_three_table_dump(site_db, ticks, options, clock):
    job = init_job(site_db, options, clock=clock)
    assert site_db.sql_mode_relaxed
    assert job.dump_binary is None
    assert [t.name for t in job.tables] == ["options", "posts", "a_view"]

    assert resume(job.id, 0, site_db, ticks, options, clock=clock) == ResumeOutcome.COMPLETE

    job = get_job(job.id)
    text = _read(job.output_path)
    assert job.status == JobState.COMPLETE
    assert job.cursor == 3
    assert job.header_written and job.footer_written
    assert job.bytes_written == len(text.encode()) > 0
    assert job.file_size == os.path.getsize(job.output_path)
    assert job.useful_checkins == {0}
    assert ticks.pending() == []

    positions = [text.index(f"DROP TABLE IF EXISTS `{name}`;") for name in ("options", "posts", "a_view")]
    assert positions == sorted(positions)
    for name in ("options", "posts", "a_view"):
        assert text.count(f"DROP TABLE IF EXISTS `{name}`;") == 1
    assert text.count("INSERT INTO `posts`") == 2

    view_data = text.split("# Data contents of view `a_view`")[1].split("# End of data contents of table `a_view`")[0]
    assert view_data.strip() == ""
    assert text.startswith("# MySQL database backup")
    assert text.rstrip().endswith("@OLD_COLLATION_CONNECTION */;")


def test_yields_at_table_boundary_after_budget(ticks, options, clock):
    db = MemoryDatabase()
    for name in ("alpha", "beta", "gamma"):
        db.add_table(name, [Column("id", "int(11)", "PRI")], rows=[{"id": 1}])
    slow = SlowDatabase(clock, {"beta": 20}, db.tables)
    job = init_job(slow, options, clock=clock)

    assert resume(job.id, 0, slow, ticks, options, clock=clock) == ResumeOutcome.YIELDED

    job = get_job(job.id)
    text = _read(job.output_path)
    assert job.status == JobState.RUNNING
    assert job.cursor == 2
    assert "`beta`" in text
    assert "`gamma`" not in text
    [entry] = ticks.pending(job.id)
    assert entry.resumption == 1
    assert entry.due_at == clock() + 60

    clock.now = entry.due_at
    ticks.pop_due()
    assert resume(job.id, 1, slow, ticks, options, clock=clock) == ResumeOutcome.COMPLETE
    text = _read(job.output_path)
    assert text.count("# MySQL database backup") == 1
    assert text.index("`beta`") < text.index("`gamma`")


def test_interrupted_dump_matches_uninterrupted(site_db, tmp_path, clock):
    options = DumpOptions(backup_dir=str(tmp_path / "backups"), use_mysqldump=False, fetch_rows=2500)
    whole = init_job(site_db, options, clock=clock)
    assert _drive(whole.id, site_db, MemoryTickSource(clock=clock), options, clock) == [ResumeOutcome.COMPLETE]

    slow = SlowDatabase(clock, {"options": 30, "posts": 30}, site_db.tables)
    split = init_job(slow, options, clock=clock)
    outcomes = _drive(split.id, slow, MemoryTickSource(clock=clock), options, clock)
    assert outcomes == [ResumeOutcome.YIELDED, ResumeOutcome.YIELDED, ResumeOutcome.COMPLETE]

    whole_text = _read(get_job(whole.id).output_path)
    split_job = get_job(split.id)
    split_text = _read(split_job.output_path)
    assert _without_timestamp(split_text) == _without_timestamp(whole_text)
    assert split_job.bytes_written == len(split_text.encode())
    assert split_job.useful_checkins == {0, 1, 2}


def test_header_not_rewritten(site_db, ticks, options, clock):
    job = init_job(site_db, options, clock=clock)
    save_job(job.id, {"header_written": True})
    resume(job.id, 0, site_db, ticks, options, clock=clock)
    text = _read(job.output_path)
    assert "# MySQL database backup" not in text
    assert "DROP TABLE IF EXISTS `options`;" in text


def test_footer_not_rewritten(site_db, ticks, options, clock):
    job = init_job(site_db, options, clock=clock)
    save_job(job.id, {"header_written": True, "footer_written": True, "cursor": 3})
    assert resume(job.id, 0, site_db, ticks, options, clock=clock) == ResumeOutcome.COMPLETE
    assert "@OLD_SQL_MODE" not in _read(job.output_path)


def test_cursor_monotonic_with_out_of_order_resumptions(site_db, ticks, options, clock):
    slow = SlowDatabase(clock, {"options": 30, "posts": 30}, site_db.tables)
    job = init_job(slow, options, clock=clock)
    cursors = []
    for resumption, wait in ((0, 0), (3, 100), (1, 200), (2, 100)):
        clock.advance(wait)
        resume(job.id, resumption, slow, ticks, options, clock=clock)
        cursors.append(get_job(job.id).cursor)
    assert cursors == sorted(cursors)
    assert cursors[-1] == 3
    assert get_job(job.id).status == JobState.COMPLETE


def test_overlapping_resumption_backs_off(site_db, ticks, options, clock):
    slow = SlowDatabase(clock, {"options": 30}, site_db.tables)
    job = init_job(slow, options, clock=clock)
    assert resume(job.id, 0, slow, ticks, options, clock=clock) == ResumeOutcome.YIELDED
    before = get_job(job.id)

    clock.advance(100)
    recent = clock() - 10
    os.utime(job.output_path, (recent, recent))
    size = os.path.getsize(job.output_path)
    ticks.pop_due()

    assert resume(job.id, 1, slow, ticks, options, clock=clock) == ResumeOutcome.OVERLAP
    after = get_job(job.id)
    assert after.cursor == before.cursor
    assert after.resume_interval > before.resume_interval
    assert after.activity_detected
    assert os.path.getsize(job.output_path) == size
    assert [e.resumption for e in ticks.pending(job.id)] == [2]


def test_no_tables_fails(ticks, options, clock):
    db = MemoryDatabase()
    job = init_job(db, options, clock=clock)
    assert resume(job.id, 0, db, ticks, options, clock=clock) == ResumeOutcome.FAILED
    job = get_job(job.id)
    assert job.status == JobState.FAILED
    assert job.error == "No tables to backup"


def test_unopenable_output_fails(site_db, ticks, options, clock):
    job = init_job(site_db, options, clock=clock)
    os.makedirs(job.output_path)
    assert resume(job.id, 0, site_db, ticks, options, clock=clock) == ResumeOutcome.FAILED
    assert get_job(job.id).error == "Could not open backup file"


def test_unreadable_schema_fails(site_db, ticks, options, clock):
    site_db.add_table("broken", [])
    job = init_job(site_db, options, clock=clock)
    assert resume(job.id, 0, site_db, ticks, options, clock=clock) == ResumeOutcome.FAILED
    job = get_job(job.id)
    assert "broken" in job.error
    assert ticks.pending() == []


def test_finished_job_is_left_alone(site_db, ticks, options, clock):
    job = init_job(site_db, options, clock=clock)
    resume(job.id, 0, site_db, ticks, options, clock=clock)
    done = get_job(job.id)

    clock.advance(500)
    assert resume(job.id, 1, site_db, ticks, options, clock=clock) == ResumeOutcome.SKIPPED
    assert get_job(job.id) == done
    assert resume("doesnotexist", 1, site_db, ticks, options, clock=clock) == ResumeOutcome.SKIPPED


def test_tables_outside_prefix_are_skipped(ticks, tmp_path, clock):
    db = MemoryDatabase()
    db.add_table("wp_options", [Column("id", "int(11)", "PRI")], rows=[{"id": 1}])
    db.add_table("other_stuff", [Column("id", "int(11)", "PRI")], rows=[{"id": 1}])
    options = DumpOptions(backup_dir=str(tmp_path / "b"), table_prefix="wp_", compress=False, use_mysqldump=False)
    job = init_job(db, options, clock=clock)
    assert resume(job.id, 0, db, ticks, options, clock=clock) == ResumeOutcome.COMPLETE
    job = get_job(job.id)
    text = _read(job.output_path)
    assert job.cursor == 2
    assert "`wp_options`" in text
    assert "`other_stuff`" not in text
    assert "# Table prefix: wp_" in text


def test_backup_dir_error(site_db, tmp_path, clock):
    blocker = tmp_path / "file"
    blocker.write_text("")
    options = DumpOptions(backup_dir=str(blocker / "backups"), use_mysqldump=False)
    with pytest.raises(SetupError):
        init_job(site_db, options, clock=clock)


def test_binary_failure_falls_back(site_db, ticks, tmp_path, clock, monkeypatch):
    monkeypatch.setattr(bindump, "DEFAULT_CANDIDATES", [])
    monkeypatch.setattr(bindump.shutil, "which", lambda name: None)
    script = tmp_path / "mysqldump"
    script.write_text(
        '#!/bin/sh\ncase "$*" in *--no-data*) echo "CREATE TABLE x (id int);"; exit 0;; esac\nexit 1\n'
    )
    script.chmod(0o755)
    options = DumpOptions(
        backup_dir=str(tmp_path / "b"), compress=False, fetch_rows=2500, mysqldump_path=str(script)
    )
    job = init_job(site_db, options, clock=clock)
    assert job.dump_binary == str(script)

    assert resume(job.id, 0, site_db, ticks, options, clock=clock) == ResumeOutcome.COMPLETE
    text = _read(job.output_path)
    assert text.count("INSERT INTO `posts`") == 2
    assert "CREATE TABLE x" not in text


def test_unreadable_trigger_still_completes(site_db, ticks, options, clock):
    class LostTrigger(MemoryDatabase):
        def show_create_trigger(self, name):
            raise RuntimeError("Lost connection to MySQL server during query")

    db = LostTrigger(database="site")
    db.tables = site_db.tables
    db.triggers["bump"] = "CREATE TRIGGER `bump` BEFORE INSERT ON `posts` FOR EACH ROW SET @x = 1"
    job = init_job(db, options, clock=clock)

    assert resume(job.id, 0, db, ticks, options, clock=clock) == ResumeOutcome.COMPLETE
    job = get_job(job.id)
    assert job.footer_written
    text = _read(job.output_path)
    assert "# Error reading trigger bump" in text
    assert text.count("# Triggers") == 1


def test_unexpected_database_error_fails_job(site_db, ticks, options, clock):
    class Disconnected(MemoryDatabase):
        def connection_info(self):
            raise RuntimeError("Lost connection to MySQL server during query")

    db = Disconnected(database="site")
    db.tables = site_db.tables
    job = init_job(db, options, clock=clock)

    assert resume(job.id, 0, db, ticks, options, clock=clock) == ResumeOutcome.FAILED
    job = get_job(job.id)
    assert job.status == JobState.FAILED
    assert "Lost connection" in job.error
    assert ticks.pending() == []


def test_job_deleted_mid_resumption(site_db, ticks, options, clock):
    class DeletedDuringDump(MemoryDatabase):
        job_id = None

        def fetch_rows(self, table, limit, **kwargs):
            delete_job(self.job_id)
            return super().fetch_rows(table, limit, **kwargs)

    db = DeletedDuringDump(database="site")
    db.tables = site_db.tables
    job = init_job(db, options, clock=clock)
    db.job_id = job.id

    assert resume(job.id, 0, db, ticks, options, clock=clock) == ResumeOutcome.SKIPPED
    assert get_job(job.id) is None
