"""Backup manager: one profile, one backup directory, every operation.

Wires the probe, writer, verifier, retention, restore and reset
components for a single ``DatabaseProfile``.  Database-touching
operations are gated by the connection probe; mutating operations hold
the backup directory lock.

Usage:
    from db_backup.factory import build_manager

    manager = build_manager(profile_name="local")
    result = manager.create()
    print(result.artifact.path, result.sweep.deleted_count)
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from sqlalchemy.exc import SQLAlchemyError

from db_backup.adapters.base import DatabaseServer, DumpTool
from db_backup.backup.catalog import CatalogEntry, list_artifacts
from db_backup.backup.confirmation import ConfirmationGate, Operator
from db_backup.backup.lock import DirectoryLock
from db_backup.backup.metadata import MetadataStore
from db_backup.backup.models import (
    BackupArtifact,
    HealthReport,
    RetentionPolicy,
    SweepResult,
    VerificationResult,
)
from db_backup.backup.probe import ConnectionProbe
from db_backup.backup.reset import ReinitOutcome, Reinitializer
from db_backup.backup.restore import RestoreOrchestrator, RestoreOutcome
from db_backup.backup.retention import RetentionManager
from db_backup.backup.verifier import IntegrityVerifier
from db_backup.backup.writer import ArchiveWriter
from db_backup.config.models import BackupSettings, DatabaseProfile
from db_backup.errors import DumpFailed

logger = logging.getLogger(__name__)


@dataclass
class CreateResult:
    artifact: BackupArtifact
    verification: VerificationResult
    sweep: SweepResult


class BackupManager:
    """Backup lifecycle for one database profile.

    Args:
        profile_name: Name of the profile (for reports).
        profile: Connection profile; ``profile.database`` is the target.
        settings: ``[backup]`` settings.
        server: Server adapter.
        tools: Dump tool adapter.
        backup_dir: Overrides ``settings.directory``.
        missing_programs: Client programs missing from ``PATH`` (for ``check``).
    """

    def __init__(
        self,
        profile_name: str,
        profile: DatabaseProfile,
        settings: BackupSettings,
        server: DatabaseServer,
        tools: DumpTool,
        backup_dir: Path | None = None,
        missing_programs: list[str] | None = None,
    ) -> None:
        self.profile_name = profile_name
        self.profile = profile
        self.settings = settings
        self.server = server
        self.tools = tools
        self.backup_dir = Path(backup_dir or settings.directory)
        self.reset_dir = self.backup_dir / settings.reset_subdirectory
        self._missing_programs = missing_programs or []

        self.store = MetadataStore()
        self.probe = ConnectionProbe(server, target=profile.describe())
        self.writer = ArchiveWriter(
            tools,
            self.store,
            profile,
            compression_level=settings.compression_level,
            dump_timeout=settings.dump_timeout,
        )
        self.verifier = IntegrityVerifier(self.store, min_artifact_bytes=settings.min_artifact_bytes)
        self.retention = RetentionManager(self.store)

    @property
    def database(self) -> str:
        return self.profile.database

    @contextmanager
    def _locked(self):
        with DirectoryLock(self.backup_dir):
            yield

    # ------------------------------------------------------------------
    # Create / sweep / verify / list
    # ------------------------------------------------------------------

    def create(self, max_age_days: int | None = None) -> CreateResult:
        """Back up the profile database, verify the artifact, then sweep.

        A failed post-create verification is logged, not raised: the
        artifact stays for inspection.
        The sweep never removes the artifact just written, even with
        ``max_age_days=0``.

        Raises:
            DatabaseConnectionError: If the server is unreachable.
            DumpFailed: If the database does not exist or the dump fails.
            CompressionFailed: If writing the artifact fails.
        """
        self.probe.require()
        if not self.server.database_exists(self.database):
            raise DumpFailed(f"Database '{self.database}' does not exist", stage="dump")
        logger.info(f"Database size: {self.server.database_size_mb(self.database)}MB")

        with self._locked():
            artifact = self.writer.create(self.database, self.backup_dir)
            verification = self.verifier.verify(artifact.path)
            if not verification.valid:
                logger.error(f"Backup verification failed: {verification.reason()}")
            sweep = self._sweep(max_age_days, keep=[artifact.path])
        return CreateResult(artifact=artifact, verification=verification, sweep=sweep)

    def _policy(self, max_age_days: int | None) -> RetentionPolicy:
        days = self.settings.retention_days if max_age_days is None else max_age_days
        return RetentionPolicy(max_age_days=days)

    def _sweep(
        self,
        max_age_days: int | None,
        raise_on_partial: bool = False,
        keep: list[Path] | None = None,
    ) -> SweepResult:
        return self.retention.sweep(
            self.backup_dir,
            self._policy(max_age_days),
            raise_on_partial=raise_on_partial,
            keep=keep or (),
        )

    def sweep(self, max_age_days: int | None = None, raise_on_partial: bool = False) -> SweepResult:
        """Delete artifacts older than the retention window. No database access."""
        with self._locked():
            return self._sweep(max_age_days, raise_on_partial)

    def verify(self, artifact_path: Path) -> VerificationResult:
        return self.verifier.verify(Path(artifact_path))

    def list_backups(self) -> list[CatalogEntry]:
        return list_artifacts(self.backup_dir, self.store)

    # ------------------------------------------------------------------
    # Destructive operations
    # ------------------------------------------------------------------

    def restore(
        self,
        select: int | None = None,
        artifact: Path | None = None,
        target_database: str | None = None,
        operator: Operator | None = None,
        assume_yes: bool = False,
        accept_integrity_warnings: bool = False,
        allow_without_snapshot: bool = False,
    ) -> RestoreOutcome:
        """Restore an artifact into the profile database (or ``target_database``).

        See ``RestoreOrchestrator.run`` for the raised errors.
        """
        self.probe.require()
        orchestrator = RestoreOrchestrator(
            self.server,
            self.tools,
            self.writer,
            self.verifier,
            self.store,
            ConfirmationGate(operator, assume_yes=assume_yes),
            backup_dir=self.backup_dir,
            operator=operator,
            charset=self.settings.charset,
            collation=self.settings.collation,
            load_timeout=self.settings.load_timeout,
            accept_integrity_warnings=accept_integrity_warnings,
            allow_without_snapshot=allow_without_snapshot,
        )
        with self._locked():
            return orchestrator.run(target_database or self.database, select=select, artifact=artifact)

    def _reinitializer(
        self, operator: Operator | None, assume_yes: bool, allow_without_snapshot: bool
    ) -> Reinitializer:
        return Reinitializer(
            self.server,
            self.tools,
            self.writer,
            ConfirmationGate(operator, assume_yes=assume_yes),
            backup_dir=self.backup_dir,
            reset_dir=self.reset_dir,
            operator=operator,
            charset=self.settings.charset,
            collation=self.settings.collation,
            load_timeout=self.settings.load_timeout,
            allow_without_snapshot=allow_without_snapshot,
        )

    def reset(
        self,
        init_script: Path,
        operator: Operator | None = None,
        assume_yes: bool = False,
        allow_without_snapshot: bool = False,
    ) -> ReinitOutcome:
        self.probe.require()
        reinit = self._reinitializer(operator, assume_yes, allow_without_snapshot)
        with self._locked():
            return reinit.reset(self.database, init_script)

    def init(
        self,
        init_script: Path,
        replace: bool = False,
        operator: Operator | None = None,
        assume_yes: bool = False,
        allow_without_snapshot: bool = False,
    ) -> ReinitOutcome:
        self.probe.require()
        reinit = self._reinitializer(operator, assume_yes, allow_without_snapshot)
        with self._locked():
            return reinit.init(self.database, init_script, replace=replace)

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def check(self) -> HealthReport:
        """Connection, server version, database existence, table count and size.

        Never raises for an unreachable server; the report says so.
        """
        probe = self.probe.probe()
        report = HealthReport(
            profile=self.profile_name,
            reachable=probe.reachable,
            server_version=probe.server_version,
            database=self.database,
            missing_programs=list(self._missing_programs),
            error=probe.reason,
        )
        if not probe.reachable:
            return report
        try:
            report.database_exists = self.server.database_exists(self.database)
            if report.database_exists:
                report.table_count = self.server.table_count(self.database)
                report.size_mb = self.server.database_size_mb(self.database)
        except SQLAlchemyError as e:
            report.error = str(e)
        return report

    def close(self) -> None:
        self.server.close()
