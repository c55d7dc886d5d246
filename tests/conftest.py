"""Shared test doubles and fixtures.

``FakeServer`` keeps databases in memory as ``{db: {table: [row, ...]}}``.
``FakeDumpTool`` writes a mysqldump-shaped text dump of a ``FakeServer``
database and loads such text back, honouring ``CREATE DATABASE``, ``USE``,
``DROP DATABASE``, ``CREATE TABLE`` and one ``INSERT`` per row.  Together
they let the writer, restore and reset flows run end to end without MySQL.
"""

import re
from pathlib import Path
from typing import BinaryIO

import pytest
from sqlalchemy.exc import OperationalError

from db_backup.adapters.mysql import quote_identifier
from db_backup.backup.manager import BackupManager
from db_backup.config.models import BackupSettings, DatabaseProfile
from db_backup.errors import DumpFailed, LoadFailed

_IDENT = re.compile(r"`([^`]+)`")
_INSERT = re.compile(r"^INSERT INTO `([^`]+)` VALUES \((.*)\);$")


# ------------------------------------------------------------------
# Test doubles
# ------------------------------------------------------------------


class FakeServer:
    """In-memory ``DatabaseServer``."""

    def __init__(self, reachable: bool = True, version: str = "8.0.36") -> None:
        self.databases: dict[str, dict[str, list[str]]] = {}
        self.reachable = reachable
        self.version = version
        self.ddl: list[str] = []
        self.fail_create = False
        self.fail_drop = False
        self.closed = False

    def _check(self) -> None:
        if not self.reachable:
            raise OperationalError(
                "SELECT 1", {}, Exception("(2003) Can't connect to MySQL server")
            )

    def ping(self) -> bool:
        self._check()
        return True

    def server_version(self) -> str:
        self._check()
        return self.version

    def database_exists(self, database: str) -> bool:
        self._check()
        return database in self.databases

    def drop_database(self, database: str) -> None:
        self._check()
        quote_identifier(database)
        if self.fail_drop:
            raise OperationalError("DROP DATABASE", {}, Exception("(1010) Error dropping database"))
        self.ddl.append(f"DROP {database}")
        self.databases.pop(database, None)

    def create_database(self, database: str, charset: str, collation: str) -> None:
        self._check()
        quote_identifier(database)
        if self.fail_create:
            raise OperationalError("CREATE DATABASE", {}, Exception("(1044) Access denied"))
        self.ddl.append(f"CREATE {database} {charset} {collation}")
        self.databases.setdefault(database, {})

    def table_count(self, database: str) -> int:
        self._check()
        return len(self.databases.get(database, {}))

    def database_size_mb(self, database: str) -> float:
        self._check()
        rows = sum(len(r) for r in self.databases.get(database, {}).values())
        return round(rows * 0.001, 2)

    def close(self) -> None:
        self.closed = True

    # test helpers

    def seed(self, database: str, tables: dict[str, int]) -> None:
        """Create ``database`` with ``{table: row_count}`` generated rows."""
        self.databases[database] = {
            table: [f"{i},'{table}-{i:04d}-{(i * 7919) % 10007}'" for i in range(1, count + 1)]
            for table, count in tables.items()
        }

    def row_count(self, database: str) -> int:
        return sum(len(rows) for rows in self.databases.get(database, {}).values())


class FakeDumpTool:
    """In-memory ``DumpTool`` over a ``FakeServer``."""

    def __init__(self, server: FakeServer) -> None:
        self.server = server
        self.fail_dump = False
        self.fail_dump_after_bytes: int | None = None
        self.fail_load = False
        self.dumped: list[str] = []
        self.loaded: list[str] = []
        self.load_inputs: list[bytes] = []

    def render(self, database: str) -> bytes:
        lines = [
            "-- MySQL dump 10.13  Distrib 8.0.36",
            "--",
            f"-- Current Database: `{database}`",
            "--",
            "",
            f"/*!40000 DROP DATABASE IF EXISTS `{database}`*/;",
            "",
            f"CREATE DATABASE /*!32312 IF NOT EXISTS*/ `{database}` "
            "/*!40100 DEFAULT CHARACTER SET utf8mb4 */;",
            "",
            f"USE `{database}`;",
            "",
        ]
        for table, rows in self.server.databases[database].items():
            lines += [
                f"DROP TABLE IF EXISTS `{table}`;",
                f"CREATE TABLE `{table}` (",
                "  `id` int NOT NULL,",
                "  `payload` varchar(255) DEFAULT NULL,",
                "  PRIMARY KEY (`id`)",
                ") ENGINE=InnoDB DEFAULT CHARSET=utf8mb4;",
            ]
            lines += [f"INSERT INTO `{table}` VALUES ({row});" for row in rows]
            lines.append("")
        lines.append("-- Dump completed")
        return ("\n".join(lines) + "\n").encode()

    def dump(self, database: str, output: BinaryIO, timeout: float | None = None) -> None:
        self.server._check()
        if self.fail_dump:
            raise DumpFailed("mysqldump exited with status 2: Got error: 1045", stage="dump")
        if database not in self.server.databases:
            raise DumpFailed(
                f"mysqldump exited with status 2: Unknown database '{database}'", stage="dump"
            )
        data = self.render(database)
        if self.fail_dump_after_bytes is not None:
            output.write(data[: self.fail_dump_after_bytes])
            raise DumpFailed("mysqldump exited with status 3: Lost connection", stage="dump")
        output.write(data)
        self.dumped.append(database)

    def load(self, database: str, source: BinaryIO, timeout: float | None = None) -> None:
        self.server._check()
        data = source.read()
        self.load_inputs.append(data)
        if self.fail_load:
            raise LoadFailed("mysql exited with status 1: ERROR 1064 (42000)", stage="loading")
        if database not in self.server.databases:
            raise LoadFailed(f"mysql exited with status 1: Unknown database '{database}'")

        current = database
        for line in data.decode().splitlines():
            if line.startswith("/*!40000 DROP DATABASE"):
                self.server.databases.pop(_IDENT.search(line).group(1), None)
            elif line.startswith("CREATE DATABASE"):
                self.server.databases.setdefault(_IDENT.search(line).group(1), {})
            elif line.startswith("USE "):
                current = _IDENT.search(line).group(1)
            elif line.startswith("CREATE TABLE"):
                self.server.databases[current][_IDENT.search(line).group(1)] = []
            elif line.startswith("INSERT INTO"):
                match = _INSERT.match(line)
                self.server.databases[current][match.group(1)].append(match.group(2))
        self.loaded.append(database)


class ScriptedOperator:
    """``Operator`` with canned answers; records every prompt."""

    def __init__(self, texts=(), yes_no=(), choice: int | None = None) -> None:
        self.texts = list(texts)
        self.yes_no = list(yes_no)
        self.choice = choice
        self.prompts: list[str] = []
        self.shown: list[str] = []
        self.options: list[str] = []

    def ask_text(self, prompt: str) -> str:
        self.prompts.append(prompt)
        return self.texts.pop(0) if self.texts else ""

    def ask_yes_no(self, prompt: str) -> bool:
        self.prompts.append(prompt)
        return self.yes_no.pop(0) if self.yes_no else False

    def choose(self, prompt: str, options: list[str]) -> int | None:
        self.prompts.append(prompt)
        self.options = options
        return self.choice

    def show(self, message: str) -> None:
        self.shown.append(message)


def restore_answers(database: str) -> list[str]:
    """The three typed confirmations for a restore of ``database``."""
    return [database, "RESTORE", "YES I AM SURE"]


INIT_SQL = """\
-- schema
CREATE TABLE `users` (
  `id` int NOT NULL,
  `username` varchar(64)
);
INSERT INTO `users` VALUES (1,'admin');
CREATE TABLE `shipments` (
  `id` int NOT NULL
);
"""


# ------------------------------------------------------------------
# Fixtures
# ------------------------------------------------------------------


@pytest.fixture
def server() -> FakeServer:
    """A server with ``shop``: 3 tables, 100 rows."""
    fake = FakeServer()
    fake.seed("shop", {"customers": 40, "orders": 35, "products": 25})
    return fake


@pytest.fixture
def tools(server) -> FakeDumpTool:
    return FakeDumpTool(server)


@pytest.fixture
def profile() -> DatabaseProfile:
    return DatabaseProfile(host="db.internal", port=3307, user="backup", password="s3cret", database="shop")


@pytest.fixture
def settings() -> BackupSettings:
    return BackupSettings(min_artifact_bytes=64, retention_days=30)


@pytest.fixture
def backup_dir(tmp_path) -> Path:
    return tmp_path / "backups"


@pytest.fixture
def manager(server, tools, profile, settings, backup_dir) -> BackupManager:
    return BackupManager("test", profile, settings, server, tools, backup_dir=backup_dir)


@pytest.fixture
def init_script(tmp_path) -> Path:
    path = tmp_path / "init.sql"
    path.write_text(INIT_SQL)
    return path
