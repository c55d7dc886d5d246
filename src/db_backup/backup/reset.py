"""Full reinitialization of a database from an init script.

``reset`` replaces an existing database with the schema and seed data of
an init script, behind the three-level confirmation (keyword ``RESET``)
and after a ``before_reset`` snapshot.  ``init`` creates a database that
does not exist yet, or reinitializes an existing one when asked to.

Usage:
    reinit = Reinitializer(server, tools, writer, gate, backup_dir=Path("backups"))
    outcome = reinit.reset("shop", Path("init.sql"))
"""

import logging
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from sqlalchemy.exc import SQLAlchemyError

from db_backup.adapters.base import DatabaseServer, DumpTool
from db_backup.backup.confirmation import ConfirmationGate, Operator, require_final
from db_backup.backup.models import BackupArtifact
from db_backup.backup.writer import ArchiveWriter
from db_backup.errors import (
    BackupEngineError,
    ConfigurationError,
    ConfirmationDeclined,
    LoadFailed,
)

logger = logging.getLogger(__name__)

RESET_KEYWORD = "RESET"


class InitAction(str, Enum):
    CREATED = "created"
    RESET = "reset"
    REPLACED = "replaced"
    SKIPPED = "skipped"


@dataclass
class ReinitOutcome:
    database: str
    action: InitAction
    snapshot: BackupArtifact | None = None
    tables: int = 0
    duration_s: float = 0.0


class Reinitializer:
    """Drop/recreate/load cycles driven by an init script.

    Args:
        server: Server adapter for DDL and table counts.
        tools: Dump tool whose ``load`` runs the init script.
        writer: Takes the safety snapshot.
        gate: Confirmation gate.
        backup_dir: Directory for ``pre_init`` snapshots.
        reset_dir: Directory for ``before_reset`` snapshots
            (default ``backup_dir / "reset_backups"``).
        operator: Asked whether to continue when the snapshot fails.
        allow_without_snapshot: Continue past a failed snapshot without asking.
    """

    def __init__(
        self,
        server: DatabaseServer,
        tools: DumpTool,
        writer: ArchiveWriter,
        gate: ConfirmationGate,
        backup_dir: Path,
        reset_dir: Path | None = None,
        operator: Operator | None = None,
        charset: str = "utf8mb4",
        collation: str = "utf8mb4_unicode_ci",
        load_timeout: float | None = None,
        allow_without_snapshot: bool = False,
    ) -> None:
        self._server = server
        self._tools = tools
        self._writer = writer
        self._gate = gate
        self._backup_dir = Path(backup_dir)
        self._reset_dir = Path(reset_dir) if reset_dir else self._backup_dir / "reset_backups"
        self._operator = operator
        self._charset = charset
        self._collation = collation
        self._load_timeout = load_timeout
        self._allow_without_snapshot = allow_without_snapshot
        self._started = 0.0

    @staticmethod
    def _check_script(init_script: Path) -> Path:
        init_script = Path(init_script)
        if not init_script.is_file():
            raise ConfigurationError(
                f"Initialization script '{init_script}' not found",
                recovery_hint="Pass --init-script with the path to init.sql.",
            )
        return init_script

    def reset(self, database: str, init_script: Path) -> ReinitOutcome:
        """Drop ``database`` and rebuild it from ``init_script``.

        Raises:
            ConfigurationError: If the init script is missing.
            LoadFailed: If the database does not exist, or rebuilding fails.
            ConfirmationDeclined: If the operator declines.
        """
        init_script = self._check_script(init_script)
        if not self._server.database_exists(database):
            raise LoadFailed(
                f"Database '{database}' does not exist",
                stage="reset",
                recovery_hint="Run `db-backup init` first.",
            )
        self._show_status(database, "DANGER: RESET DATABASE")
        snapshot = self._replace(database, init_script, self._reset_dir, "before_reset")
        return self._finish(database, InitAction.RESET, snapshot)

    def init(self, database: str, init_script: Path, replace: bool = False) -> ReinitOutcome:
        """Create ``database`` from ``init_script`` if it is absent.

        An existing database is left alone unless ``replace`` is set, in
        which case it is snapshotted (``pre_init``) and reinitialized
        behind the confirmation gate.
        """
        init_script = self._check_script(init_script)
        if self._server.database_exists(database):
            if not replace:
                logger.warning(f"Database '{database}' already exists; skipping initialization")
                return ReinitOutcome(database=database, action=InitAction.SKIPPED)
            self._show_status(database, "Database already exists and will be replaced")
            snapshot = self._replace(database, init_script, self._backup_dir, "pre_init")
            return self._finish(database, InitAction.REPLACED, snapshot)

        self._started = time.monotonic()
        logger.info(f"Creating database '{database}'...")
        try:
            self._server.create_database(database, self._charset, self._collation)
        except SQLAlchemyError as e:
            raise LoadFailed(f"Failed to create database '{database}': {e}", stage="init") from e
        self._run_script(database, init_script, snapshot=None)
        return self._finish(database, InitAction.CREATED, None)

    # ------------------------------------------------------------------

    def _show_status(self, database: str, headline: str) -> None:
        if self._operator is None:
            return
        tables = self._server.table_count(database)
        size = self._server.database_size_mb(database)
        self._operator.show(
            f"{headline}\n"
            f"  Database: {database}\n"
            f"  Tables:   {tables}\n"
            f"  Size:     {size} MB\n"
            "  All data will be deleted and replaced by the init script."
        )

    def _replace(
        self, database: str, init_script: Path, snapshot_dir: Path, kind: str
    ) -> BackupArtifact | None:
        plan_id = uuid.uuid4().hex
        token = self._gate.run(plan_id, database, RESET_KEYWORD)

        snapshot = self._take_snapshot(database, snapshot_dir, kind)

        require_final(token, plan_id)
        self._started = time.monotonic()
        logger.info(f"Resetting database '{database}'...")
        try:
            self._server.drop_database(database)
            self._server.create_database(database, self._charset, self._collation)
        except SQLAlchemyError as e:
            raise LoadFailed(
                f"Failed to recreate database '{database}': {e}",
                stage="reset",
                recovery_hint=_snapshot_hint(database, snapshot),
            ) from e
        self._run_script(database, init_script, snapshot)
        return snapshot

    def _take_snapshot(self, database: str, directory: Path, kind: str) -> BackupArtifact | None:
        logger.info(f"Creating {kind} backup of '{database}'...")
        try:
            snapshot = self._writer.create(database, directory, kind=kind)
        except BackupEngineError as e:
            logger.error(f"Backup failed: {e}")
            if self._allow_without_snapshot:
                logger.warning("Proceeding without backup")
                return None
            if self._operator is None:
                raise
            if not self._operator.ask_yes_no("Backup failed. Continue anyway?"):
                raise ConfirmationDeclined(
                    "Cancelled due to backup failure", stage=kind, recovery_hint=e.recovery_hint
                ) from e
            logger.warning("Proceeding without backup")
            return None
        logger.info(f"Backup created: {snapshot.path.resolve()}")
        return snapshot

    def _run_script(self, database: str, init_script: Path, snapshot: BackupArtifact | None) -> None:
        logger.info(f"Running initialization script {init_script}...")
        with open(init_script, "rb") as source:
            try:
                self._tools.load(database, source, timeout=self._load_timeout)
            except LoadFailed as e:
                e.stage = "init_script"
                e.artifact = init_script
                e.recovery_hint = (
                    f"Check for SQL errors in {init_script}. " + _snapshot_hint(database, snapshot)
                )
                raise

    def _finish(
        self, database: str, action: InitAction, snapshot: BackupArtifact | None
    ) -> ReinitOutcome:
        tables = self._server.table_count(database)
        if tables == 0:
            raise LoadFailed(
                f"Database '{database}' has no tables after initialization",
                stage="verify",
                recovery_hint=_snapshot_hint(database, snapshot),
            )
        duration = time.monotonic() - self._started
        logger.info(f"Database {action.value} in {duration:.1f}s: {tables} tables")
        return ReinitOutcome(
            database=database, action=action, snapshot=snapshot, tables=tables, duration_s=duration
        )


def _snapshot_hint(database: str, snapshot: BackupArtifact | None) -> str:
    if snapshot is None:
        return f"No backup of '{database}' was taken before the change."
    return f"The previous contents of '{database}' are in {snapshot.path.resolve()}"
