"""External mysqldump strategy and binary locator."""
import os
import re
import shutil
import subprocess
import tempfile
from contextlib import contextmanager
from typing import Iterable, Iterator

import structlog

from dbdump_core.database.base import ConnectionInfo, Database
from dbdump_core.dump.writer import DumpWriter

logger = structlog.get_logger()

DEFAULT_CANDIDATES = [
    "/usr/bin/mysqldump",
    "/bin/mysqldump",
    "/usr/local/bin/mysqldump",
    "/usr/sfw/bin/mysqldump",
    "/usr/xdg4/bin/mysqldump",
    "/opt/bin/mysqldump",
]

# GTID_PURGED is server specific and may span several lines up to its ';'.
GTID_DIRECTIVE = re.compile(rb"^SET @@GLOBAL\.GTID_PURGED", re.IGNORECASE)

SPOOL_MAX_MEMORY = 8 * 1024 * 1024
COPY_CHUNK = 1024 * 1024
PROBE_OUTPUT_LIMIT = 100 * 1024
PROBE_TIMEOUT = 60


def version_tuple(version: str) -> tuple[int, ...]:
    """``"8.0.36-log"`` -> ``(8, 0, 36)``."""
    m = re.match(r"\d+(?:\.\d+)*", version.strip())
    if not m:
        return ()
    return tuple(int(p) for p in m.group(0).split("."))


def candidate_binaries(configured: str | None = None) -> list[str]:
    """Executable mysqldump candidates, configured path first."""
    candidates = []
    if configured:
        candidates.append(configured)
    on_path = shutil.which("mysqldump")
    if on_path:
        candidates.append(on_path)
    candidates.extend(DEFAULT_CANDIDATES)

    seen = set()
    out = []
    for path in candidates:
        if path in seen:
            continue
        seen.add(path)
        if os.path.isfile(path) and os.access(path, os.X_OK):
            out.append(path)
    return out


@contextmanager
def defaults_file(password: str, directory: str):
    """Temporary option file so the password never shows up in ``ps``."""
    escaped = password.replace("\\", "\\\\").replace('"', '\\"')
    fd, path = tempfile.mkstemp(suffix=".tmp", dir=directory)
    try:
        with os.fdopen(fd, "w") as f:
            f.write(f'[mysqldump]\npassword="{escaped}"\n')
        yield path
    finally:
        try:
            os.unlink(path)
        except FileNotFoundError:
            pass


def build_command(
    binary: str,
    info: ConnectionInfo,
    defaults_path: str,
    server_version: str,
    table: str,
    *,
    max_allowed_packet: str = "64M",
    extra: Iterable[str] = (),
) -> list[str]:
    """mysqldump arguments for a portable dump of a single table."""
    cmd = [
        binary,
        f"--defaults-file={defaults_path}",
        f"--max-allowed-packet={max_allowed_packet}",
        "--quote-names",
        "--add-drop-table",
    ]
    if version_tuple(server_version) >= (5, 1):
        cmd.append("--no-tablespaces")
    cmd += [
        "--single-transaction",
        "--skip-comments",
        "--skip-set-charset",
        "--allow-keywords",
        "--dump-date",
        "--extended-insert",
        f"--user={info.user}",
        f"--host={info.host}",
    ]
    if info.socket:
        cmd.append(f"--socket={info.socket}")
    elif info.port:
        cmd.append(f"--port={info.port}")
    cmd += list(extra)
    cmd += [info.database, table]
    return cmd


def filter_replication_directives(lines: Iterable[bytes]) -> Iterator[bytes]:
    """Drop ``SET @@GLOBAL.GTID_PURGED`` statements from mysqldump output."""
    skipping = False
    for line in lines:
        if not skipping and GTID_DIRECTIVE.match(line):
            skipping = True
        if skipping:
            if b";" in line:
                skipping = False
            continue
        yield line


def dump_table_with_binary(
    binary: str,
    db: Database,
    table: str,
    writer: DumpWriter,
    workdir: str,
    max_allowed_packet: str = "64M",
) -> bool:
    """Dump one table through mysqldump.

    Output is spooled and only copied into the dump when mysqldump exits
    cleanly with some output, so a failed attempt leaves nothing behind for
    the in-process fallback to duplicate.
    """
    info = db.connection_info()
    try:
        version = db.server_version()
    except Exception as e:
        logger.warning("mysqldump_server_version_failed", table=table, error=str(e))
        return False

    with defaults_file(info.password, workdir) as cnf, \
            tempfile.SpooledTemporaryFile(max_size=SPOOL_MAX_MEMORY) as spool, \
            tempfile.TemporaryFile() as errors:
        cmd = build_command(
            binary, info, cnf, version, table,
            max_allowed_packet=max_allowed_packet,
        )
        try:
            proc = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=errors, cwd=workdir)
        except OSError as e:
            logger.warning("mysqldump_spawn_failed", binary=binary, table=table, error=str(e))
            return False

        any_output = False
        with proc.stdout:
            for line in filter_replication_directives(proc.stdout):
                spool.write(line)
                any_output = True
        code = proc.wait()

        if code != 0 or not any_output:
            errors.seek(0)
            logger.warning(
                "mysqldump_table_failed",
                table=table,
                returncode=code,
                any_output=any_output,
                stderr=errors.read(2000).decode("utf-8", errors="replace"),
            )
            return False

        spool.seek(0)
        for chunk in iter(lambda: spool.read(COPY_CHUNK), b""):
            writer.stow_bytes(chunk)
    return True


def find_dump_binary(
    db: Database,
    workdir: str,
    probe_table: str | None,
    configured: str | None = None,
    max_allowed_packet: str = "1M",
) -> str | None:
    """Find a mysqldump that can actually reach the database.

    Each candidate is asked for the schema of ``probe_table``; the first one
    whose output contains a CREATE TABLE wins.
    """
    if not probe_table:
        return None
    candidates = candidate_binaries(configured)
    if not candidates:
        logger.info("mysqldump_not_found")
        return None

    info = db.connection_info()
    version = db.server_version()
    with defaults_file(info.password, workdir) as cnf:
        for binary in candidates:
            cmd = build_command(
                binary, info, cnf, version, probe_table,
                max_allowed_packet=max_allowed_packet,
                extra=["--no-data"],
            )
            try:
                result = subprocess.run(
                    cmd, capture_output=True, cwd=workdir, timeout=PROBE_TIMEOUT
                )
            except (OSError, subprocess.TimeoutExpired) as e:
                logger.warning("mysqldump_probe_failed", binary=binary, error=str(e))
                continue
            output = result.stdout[:PROBE_OUTPUT_LIMIT].lower()
            if result.returncode == 0 and b"create table" in output:
                logger.info("mysqldump_found", binary=binary)
                return binary
            logger.info("mysqldump_rejected", binary=binary, returncode=result.returncode)
    return None
