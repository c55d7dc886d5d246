"""MySQL client tools adapter.

Implements the ``DumpTool`` protocol by running ``mysqldump`` and
``mysql`` as subprocesses.  The password is written to a temporary
``--defaults-extra-file`` (mode 0600) so it never shows up in the process
table.

Usage:
    from db_backup.adapters.mysql_tools import MySQLClientTools

    tools = MySQLClientTools(profile)
    with gzip.open("shop.sql.gz", "wb") as out:
        tools.dump("shop", out)
"""

import logging
import os
import shutil
import subprocess
import tempfile
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import BinaryIO

from db_backup.config.models import DatabaseProfile
from db_backup.errors import CompressionFailed, DumpFailed, LoadFailed

logger = logging.getLogger(__name__)

# Consistent snapshot, stored routines, triggers, events, and a
# DROP/CREATE DATABASE preamble so the dump is self-describing.
DUMP_OPTIONS = (
    "--single-transaction",
    "--routines",
    "--triggers",
    "--events",
    "--add-drop-database",
)

CHUNK_SIZE = 64 * 1024


class _Deadline:
    """Kill a process if it is still running after ``timeout`` seconds."""

    def __init__(self, proc: subprocess.Popen, timeout: float | None) -> None:
        self.expired = False
        self._proc = proc
        self._timer: threading.Timer | None = None
        if timeout:
            self._timer = threading.Timer(timeout, self._kill)
            self._timer.daemon = True
            self._timer.start()

    def _kill(self) -> None:
        if self._proc.poll() is None:
            self.expired = True
            self._proc.kill()

    def cancel(self) -> None:
        if self._timer is not None:
            self._timer.cancel()


def _escape_option_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


class MySQLClientTools:
    """``DumpTool`` backed by the ``mysqldump`` and ``mysql`` binaries.

    Args:
        profile: Connection profile (host, port, user, password).
        mysqldump_path: Dump program name or path.
        mysql_path: Client program name or path.
        chunk_size: Bytes copied per read between process and stream.
    """

    def __init__(
        self,
        profile: DatabaseProfile,
        mysqldump_path: str = "mysqldump",
        mysql_path: str = "mysql",
        chunk_size: int = CHUNK_SIZE,
    ) -> None:
        self._profile = profile
        self._mysqldump = mysqldump_path
        self._mysql = mysql_path
        self._chunk_size = chunk_size

    def missing_programs(self) -> list[str]:
        """Return the client programs that are not on ``PATH``."""
        return [p for p in (self._mysql, self._mysqldump) if shutil.which(p) is None]

    @contextmanager
    def _defaults_file(self) -> Iterator[str]:
        """Write the ``[client]`` password to a private temp file."""
        fd, path = tempfile.mkstemp(prefix="db-backup-", suffix=".cnf")
        try:
            with os.fdopen(fd, "w") as f:
                f.write("[client]\n")
                f.write(f'password="{_escape_option_value(self._profile.password)}"\n')
            os.chmod(path, 0o600)
            yield path
        finally:
            try:
                os.remove(path)
            except FileNotFoundError:
                pass

    def _command(self, program: str, defaults_file: str) -> list[str]:
        # --defaults-extra-file must come first on the command line
        return [
            program,
            f"--defaults-extra-file={defaults_file}",
            f"--host={self._profile.host}",
            f"--port={self._profile.port}",
            f"--user={self._profile.user}",
        ]

    def dump_command(self, database: str, defaults_file: str) -> list[str]:
        """Full ``mysqldump`` argv for ``database``."""
        return [
            *self._command(self._mysqldump, defaults_file),
            *DUMP_OPTIONS,
            "--databases",
            database,
        ]

    def load_command(self, database: str, defaults_file: str) -> list[str]:
        """Full ``mysql`` argv that executes stdin against ``database``."""
        return [*self._command(self._mysql, defaults_file), database]

    # ------------------------------------------------------------------
    # DumpTool
    # ------------------------------------------------------------------

    def dump(self, database: str, output: BinaryIO, timeout: float | None = None) -> None:
        """Stream ``mysqldump`` stdout into ``output``."""
        with self._defaults_file() as cnf, tempfile.TemporaryFile() as stderr:
            cmd = self.dump_command(database, cnf)
            logger.debug(f"Running {self._mysqldump} for database '{database}'")
            try:
                proc = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=stderr)
            except OSError as e:
                raise DumpFailed(
                    f"Cannot start {self._mysqldump}: {e}",
                    stage="dump",
                    recovery_hint="Install the MySQL client tools or set backup.mysqldump_path.",
                ) from e

            deadline = _Deadline(proc, timeout)
            try:
                while chunk := proc.stdout.read(self._chunk_size):
                    try:
                        output.write(chunk)
                    except OSError as e:
                        proc.kill()
                        proc.wait()
                        raise CompressionFailed(
                            f"Writing dump stream failed: {e}", stage="compress"
                        ) from e
                returncode = proc.wait()
            finally:
                deadline.cancel()
                proc.stdout.close()

            if deadline.expired:
                raise DumpFailed(f"{self._mysqldump} timed out after {timeout}s", stage="dump")
            if returncode != 0:
                raise DumpFailed(
                    f"{self._mysqldump} exited with status {returncode}: {_read_stderr(stderr)}",
                    stage="dump",
                )

    def load(self, database: str, source: BinaryIO, timeout: float | None = None) -> None:
        """Feed ``source`` to ``mysql`` connected to ``database``."""
        with self._defaults_file() as cnf, tempfile.TemporaryFile() as stderr:
            cmd = self.load_command(database, cnf)
            logger.debug(f"Running {self._mysql} against database '{database}'")
            try:
                proc = subprocess.Popen(
                    cmd, stdin=subprocess.PIPE, stdout=subprocess.DEVNULL, stderr=stderr
                )
            except OSError as e:
                raise LoadFailed(
                    f"Cannot start {self._mysql}: {e}",
                    stage="loading",
                    recovery_hint="Install the MySQL client tools or set backup.mysql_path.",
                ) from e

            deadline = _Deadline(proc, timeout)
            read_error: Exception | None = None
            try:
                try:
                    while chunk := source.read(self._chunk_size):
                        proc.stdin.write(chunk)
                except BrokenPipeError:
                    # mysql exited early; its exit status explains why
                    pass
                except (OSError, EOFError) as e:
                    read_error = e
                    proc.kill()
                finally:
                    try:
                        proc.stdin.close()
                    except BrokenPipeError:
                        pass
                returncode = proc.wait()
            finally:
                deadline.cancel()

            if read_error is not None:
                raise LoadFailed(f"Reading dump failed: {read_error}", stage="loading") from read_error
            if deadline.expired:
                raise LoadFailed(f"{self._mysql} timed out after {timeout}s", stage="loading")
            if returncode != 0:
                raise LoadFailed(
                    f"{self._mysql} exited with status {returncode}: {_read_stderr(stderr)}",
                    stage="loading",
                )


def _read_stderr(stderr: BinaryIO, limit: int = 4000) -> str:
    stderr.seek(0)
    return stderr.read(limit).decode("utf-8", errors="replace").strip()
