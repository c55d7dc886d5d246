"""Restore orchestration as an explicit state machine.

States run in this order, each handled by one method that returns the next
state::

    SELECTING -> VERIFYING -> CONFIRM_GATE -> SNAPSHOTTING -> PREPARING
              -> LOADING -> POST_VERIFY -> DONE

Any error moves the machine to ABORTED and is re-raised.  Nothing touches
the target database before LOADING, so an abort in an earlier state leaves
it unchanged.  A failure in LOADING or POST_VERIFY after the drop leaves the
target empty; the raised ``LoadFailed`` then names the pre-restore snapshot
in its recovery hint.  The snapshot is never restored automatically.

Usage:
    orchestrator = RestoreOrchestrator(
        server, tools, writer, verifier, store, gate,
        backup_dir=Path("backups"), operator=operator,
    )
    outcome = orchestrator.run("shop", select=1)
    print(outcome.state, outcome.tables_restored)
"""

import logging
import re
import shutil
import tempfile
import time
import uuid
import zlib
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from sqlalchemy.exc import SQLAlchemyError

from db_backup.adapters.base import DatabaseServer, DumpTool
from db_backup.backup.catalog import CatalogEntry, describe_artifact, list_artifacts
from db_backup.backup.compression import codec_for_path
from db_backup.backup.confirmation import (
    ConfirmationGate,
    ConfirmationLevel,
    FinalConfirmed,
    Operator,
    require_final,
)
from db_backup.backup.metadata import MetadataStore
from db_backup.backup.models import BackupArtifact, IssueKind, VerificationResult
from db_backup.backup.verifier import IntegrityVerifier
from db_backup.backup.writer import ArchiveWriter
from db_backup.config.models import DATABASE_NAME_PATTERN
from db_backup.errors import (
    ArtifactSelectionError,
    BackupEngineError,
    ConfigurationError,
    ConfirmationDeclined,
    IntegrityWarning,
    LoadFailed,
    MetadataError,
)

logger = logging.getLogger(__name__)

CREATE_DATABASE_PATTERN = re.compile(rb"CREATE DATABASE[^`]*`([^`]+)`")
CREATE_TABLE_PREFIX = b"CREATE TABLE"

RESTORE_KEYWORD = "RESTORE"


class RestoreState(str, Enum):
    SELECTING = "selecting"
    VERIFYING = "verifying"
    CONFIRM_GATE = "confirm_gate"
    SNAPSHOTTING = "snapshotting"
    PREPARING = "preparing"
    LOADING = "loading"
    POST_VERIFY = "post_verify"
    DONE = "done"
    ABORTED = "aborted"


TERMINAL_STATES = frozenset({RestoreState.DONE, RestoreState.ABORTED})


@dataclass
class RestorePlan:
    """Working state of one restore. Never persisted."""

    target_database: str
    plan_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    selected_artifact: BackupArtifact | None = None
    pre_restore_snapshot: BackupArtifact | None = None
    database_name_rewrite: tuple[str, str] | None = None
    confirmation_level: ConfirmationLevel = ConfirmationLevel.UNCONFIRMED
    verification: VerificationResult | None = None
    expected_tables: int = 0
    prepared_dump: Path | None = None


@dataclass
class RestoreOutcome:
    state: RestoreState
    plan: RestorePlan
    history: list[RestoreState]
    tables_restored: int = 0
    duration_s: float = 0.0
    reason: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.state == RestoreState.DONE


@dataclass(frozen=True)
class DumpInfo:
    """What a dump file declares about itself."""

    database: str | None
    table_count: int


def scan_dump(path: Path) -> DumpInfo:
    """Read the first ``CREATE DATABASE`` name and count ``CREATE TABLE`` lines."""
    database = None
    tables = 0
    with open(path, "rb") as f:
        for line in f:
            if database is None:
                match = CREATE_DATABASE_PATTERN.search(line)
                if match:
                    database = match.group(1).decode("utf-8", errors="replace")
            if line.startswith(CREATE_TABLE_PREFIX):
                tables += 1
    return DumpInfo(database=database, table_count=tables)


def rewrite_database_name(source: Path, destination: Path, old: str, new: str) -> int:
    """Copy ``source`` to ``destination`` renaming the quoted identifier.

    Only the exact backtick-quoted token `` `old` `` is replaced, so
    `` `old_archive` `` or unquoted text containing ``old`` is untouched.

    Returns:
        Number of lines changed.
    """
    old_token = b"`" + old.encode() + b"`"
    new_token = b"`" + new.encode() + b"`"
    changed = 0
    with open(source, "rb") as src, open(destination, "wb") as dst:
        for line in src:
            if old_token in line:
                line = line.replace(old_token, new_token)
                changed += 1
            dst.write(line)
    return changed


class RestoreOrchestrator:
    """Drives one restore from artifact selection to post-load verification.

    Args:
        server: Server adapter for DDL and introspection on the target.
        tools: Dump tool used to load the prepared dump.
        writer: Takes the pre-restore safety snapshot.
        verifier: Verifies the selected artifact.
        store: Sidecar store, for listing.
        gate: Confirmation gate issuing the ``FinalConfirmed`` token.
        backup_dir: Directory listed for selection and receiving snapshots.
        operator: Answers selection and continue-anyway prompts.
        charset: Character set of the recreated database.
        collation: Collation of the recreated database.
        load_timeout: Seconds before the load is killed (None: no limit).
        accept_integrity_warnings: Continue past a failed verification
            without asking.
        allow_without_snapshot: Continue when the safety snapshot fails
            without asking.
        work_root: Parent of the private working directory (default: the
            system temp dir).
    """

    def __init__(
        self,
        server: DatabaseServer,
        tools: DumpTool,
        writer: ArchiveWriter,
        verifier: IntegrityVerifier,
        store: MetadataStore,
        gate: ConfirmationGate,
        backup_dir: Path,
        operator: Operator | None = None,
        charset: str = "utf8mb4",
        collation: str = "utf8mb4_unicode_ci",
        load_timeout: float | None = None,
        accept_integrity_warnings: bool = False,
        allow_without_snapshot: bool = False,
        work_root: Path | None = None,
    ) -> None:
        self._server = server
        self._tools = tools
        self._writer = writer
        self._verifier = verifier
        self._store = store
        self._gate = gate
        self._backup_dir = Path(backup_dir)
        self._operator = operator
        self._charset = charset
        self._collation = collation
        self._load_timeout = load_timeout
        self._accept_integrity_warnings = accept_integrity_warnings
        self._allow_without_snapshot = allow_without_snapshot
        self._work_root = work_root

        self._handlers = {
            RestoreState.SELECTING: self._select,
            RestoreState.VERIFYING: self._verify,
            RestoreState.CONFIRM_GATE: self._confirm,
            RestoreState.SNAPSHOTTING: self._snapshot,
            RestoreState.PREPARING: self._prepare,
            RestoreState.LOADING: self._load,
            RestoreState.POST_VERIFY: self._post_verify,
        }

        self.state: RestoreState | None = None
        self.history: list[RestoreState] = []
        self.plan: RestorePlan | None = None
        self._select_index: int | None = None
        self._artifact_path: Path | None = None
        self._token: FinalConfirmed | None = None
        self._work_dir: Path | None = None
        self._dropped = False
        self._tables_restored = 0
        self._note: str | None = None

    # ------------------------------------------------------------------
    # Driver
    # ------------------------------------------------------------------

    def _transition(self, state: RestoreState) -> None:
        if self.state is not None:
            logger.debug(f"Restore {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    def run(
        self,
        target_database: str,
        select: int | None = None,
        artifact: Path | None = None,
    ) -> RestoreOutcome:
        """Restore an artifact into ``target_database``.

        Args:
            target_database: Database to replace.
            select: 1-based index into the newest-first listing.
            artifact: Explicit artifact path (takes precedence over ``select``).

        Returns:
            ``RestoreOutcome`` in state DONE.

        Raises:
            ArtifactSelectionError: Nothing to restore, or a bad selection.
            IntegrityWarning: Verification failed and nobody accepted the risk.
            ConfirmationDeclined: The operator declined a confirmation.
            DumpFailed: The safety snapshot failed and nobody accepted the risk.
            LoadFailed: Preparing, loading or post-load verification failed.
        """
        if self.state is not None:
            raise RuntimeError("RestoreOrchestrator instances run once")

        self.plan = RestorePlan(target_database=target_database)
        self._select_index = select
        self._artifact_path = Path(artifact) if artifact is not None else None
        started = time.monotonic()

        self._transition(RestoreState.SELECTING)
        try:
            while self.state not in TERMINAL_STATES:
                self._transition(self._handlers[self.state]())
        except BackupEngineError as e:
            if e.stage is None:
                e.stage = self.state.value
            if self._dropped and e.recovery_hint is None:
                e.recovery_hint = self._recovery_hint()
            self._abort(e.message)
            raise
        except (OSError, SQLAlchemyError) as e:
            stage = self.state.value
            self._abort(str(e))
            raise LoadFailed(
                f"Restore failed while {stage}: {e}",
                stage=stage,
                artifact=self.plan.selected_artifact.path if self.plan.selected_artifact else None,
                recovery_hint=self._recovery_hint() if self._dropped else None,
            ) from e
        except KeyboardInterrupt:
            self._abort("interrupted")
            raise
        finally:
            self._cleanup()

        duration = time.monotonic() - started
        logger.info(f"Database restored in {duration:.1f}s")
        return RestoreOutcome(
            state=self.state,
            plan=self.plan,
            history=list(self.history),
            tables_restored=self._tables_restored,
            duration_s=duration,
            reason=self._note,
        )

    def _abort(self, reason: str) -> None:
        failed_in = self.state
        self._transition(RestoreState.ABORTED)
        if self._dropped:
            logger.error(f"Restore aborted in {failed_in.value}: {reason}")
            logger.error(self._recovery_hint())
        else:
            logger.warning(
                f"Restore aborted in {failed_in.value}: {reason}. "
                f"Database '{self.plan.target_database}' was not modified."
            )

    def _recovery_hint(self) -> str:
        snapshot = self.plan.pre_restore_snapshot
        if snapshot is None:
            return (
                f"Database '{self.plan.target_database}' may be empty and no pre-restore "
                "snapshot was taken."
            )
        return (
            f"Database '{self.plan.target_database}' may be empty. Recover it manually from "
            f"the pre-restore snapshot: {snapshot.path.resolve()}"
        )

    def _cleanup(self) -> None:
        if self._work_dir is not None:
            shutil.rmtree(self._work_dir, ignore_errors=True)
            self._work_dir = None

    # ------------------------------------------------------------------
    # State handlers
    # ------------------------------------------------------------------

    def _select(self) -> RestoreState:
        target = self.plan.target_database
        if not DATABASE_NAME_PATTERN.match(target):
            raise ConfigurationError(
                f"Invalid target database name: {target!r}",
                recovery_hint="Use letters, digits and underscores only (e.g. shop_copy).",
            )

        if self._artifact_path is not None:
            path = self._artifact_path
            if not path.is_file():
                raise ArtifactSelectionError(f"Backup file not found: {path}", artifact=path)
            try:
                metadata = self._store.read(path)
            except MetadataError:
                metadata = None
            self.plan.selected_artifact = describe_artifact(path, metadata)
            return RestoreState.VERIFYING

        entries = list_artifacts(self._backup_dir, self._store)
        if not entries:
            raise ArtifactSelectionError(
                f"No backups found in {self._backup_dir}",
                recovery_hint="Create one with `db-backup create`.",
            )

        if self._select_index is not None:
            if not 1 <= self._select_index <= len(entries):
                raise ArtifactSelectionError(
                    f"Invalid selection {self._select_index}: choose 1-{len(entries)}"
                )
            index = self._select_index - 1
        else:
            if self._operator is None:
                raise ArtifactSelectionError(
                    "No backup selected", recovery_hint="Pass --select N or --artifact PATH."
                )
            index = self._operator.choose(
                "Select backup number", [self._describe_entry(e) for e in entries]
            )
            if index is None:
                raise ConfirmationDeclined("Restore cancelled at selection")
            if not 0 <= index < len(entries):
                raise ArtifactSelectionError(f"Invalid selection {index + 1}")

        self.plan.selected_artifact = entries[index].artifact
        logger.info(f"Selected backup: {self.plan.selected_artifact.name}")
        return RestoreState.VERIFYING

    @staticmethod
    def _describe_entry(entry: CatalogEntry) -> str:
        artifact = entry.artifact
        size_mb = artifact.size_bytes / 1024 / 1024
        return (
            f"{artifact.name}  {size_mb:.2f}MB  "
            f"{artifact.created_at:%Y-%m-%d %H:%M:%S}  [{artifact.source_database}]"
        )

    def _verify(self) -> RestoreState:
        artifact = self.plan.selected_artifact
        result = self._verifier.verify(artifact.path)
        self.plan.verification = result
        if result.valid:
            return RestoreState.CONFIRM_GATE

        if result.has(IssueKind.MISSING):
            raise ArtifactSelectionError(result.reason(), artifact=artifact.path)

        if self._accept_integrity_warnings:
            logger.warning(f"Continuing past failed verification: {result.reason()}")
            return RestoreState.CONFIRM_GATE

        if self._operator is not None:
            self._operator.show(f"Verification failed: {result.reason()}")
            if self._operator.ask_yes_no("Continue anyway?"):
                logger.warning(f"Operator accepted failed verification: {result.reason()}")
                return RestoreState.CONFIRM_GATE

        raise IntegrityWarning(
            f"Backup failed verification: {result.reason()}",
            artifact=artifact.path,
            recovery_hint="Choose another backup, or pass --accept-integrity-warnings.",
        )

    def _confirm(self) -> RestoreState:
        plan = self.plan
        artifact = plan.selected_artifact
        if self._operator is not None:
            exists = self._server.database_exists(plan.target_database)
            current = self._server.table_count(plan.target_database) if exists else 0
            self._operator.show(
                "RESTORE CONFIRMATION REQUIRED\n"
                f"  Backup:   {artifact.name} ({artifact.source_database}, "
                f"{artifact.created_at:%Y-%m-%d %H:%M:%S})\n"
                f"  Target:   {plan.target_database} "
                f"({'exists, ' + str(current) + ' tables' if exists else 'does not exist'})\n"
                "  All current data in the target will be replaced."
            )

        name_token = self._gate.confirm_name(plan.plan_id, plan.target_database)
        plan.confirmation_level = name_token.level
        keyword_token = self._gate.confirm_keyword(name_token, RESTORE_KEYWORD)
        plan.confirmation_level = keyword_token.level
        self._token = self._gate.confirm_final(keyword_token)
        plan.confirmation_level = self._token.level
        return RestoreState.SNAPSHOTTING

    def _snapshot(self) -> RestoreState:
        target = self.plan.target_database
        if not self._server.database_exists(target):
            logger.info(f"Database '{target}' does not exist; no pre-restore snapshot needed")
            return RestoreState.PREPARING

        logger.info("Creating backup of current database...")
        try:
            self.plan.pre_restore_snapshot = self._writer.create(
                target, self._backup_dir, kind="pre_restore"
            )
        except BackupEngineError as e:
            logger.error(f"Failed to create pre-restore backup: {e}")
            if self._allow_without_snapshot:
                logger.warning("Continuing without a pre-restore backup")
                return RestoreState.PREPARING
            if self._operator is None:
                raise
            if not self._operator.ask_yes_no("Continue without pre-restore backup?"):
                raise ConfirmationDeclined(
                    "Restore cancelled: no pre-restore backup", recovery_hint=e.recovery_hint
                ) from e
            logger.warning("Operator chose to continue without a pre-restore backup")
            return RestoreState.PREPARING

        logger.info(f"Pre-restore backup created: {self.plan.pre_restore_snapshot.path.resolve()}")
        return RestoreState.PREPARING

    def _prepare(self) -> RestoreState:
        plan = self.plan
        artifact = plan.selected_artifact
        self._work_dir = Path(tempfile.mkdtemp(prefix="db-backup-restore-", dir=self._work_root))

        raw = self._work_dir / "restore.sql"
        logger.info("Decompressing backup...")
        try:
            with codec_for_path(artifact.path).open_reader(artifact.path) as src, open(raw, "wb") as dst:
                shutil.copyfileobj(src, dst, 1024 * 1024)
        except (OSError, EOFError, zlib.error) as e:
            raise LoadFailed(
                f"Failed to decompress backup: {e}", stage="preparing", artifact=artifact.path
            ) from e

        info = scan_dump(raw)
        plan.expected_tables = info.table_count
        logger.info(f"Backup declares database '{info.database}' with {info.table_count} tables")

        plan.prepared_dump = raw
        if info.database and info.database != plan.target_database:
            logger.info(f"Adjusting database name from '{info.database}' to '{plan.target_database}'")
            adjusted = self._work_dir / "adjusted_backup.sql"
            rewrite_database_name(raw, adjusted, info.database, plan.target_database)
            plan.database_name_rewrite = (info.database, plan.target_database)
            plan.prepared_dump = adjusted
        return RestoreState.LOADING

    def _load(self) -> RestoreState:
        plan = self.plan
        require_final(self._token, plan.plan_id)
        target = plan.target_database

        logger.info("Preparing database...")
        try:
            self._server.drop_database(target)
            self._dropped = True
            self._server.create_database(target, self._charset, self._collation)
        except SQLAlchemyError as e:
            raise LoadFailed(
                f"Failed to recreate database '{target}': {e}",
                stage="loading",
                artifact=plan.selected_artifact.path,
                recovery_hint=self._recovery_hint() if self._dropped else None,
            ) from e

        logger.info("Restoring data...")
        with open(plan.prepared_dump, "rb") as source:
            try:
                self._tools.load(target, source, timeout=self._load_timeout)
            except LoadFailed as e:
                e.artifact = plan.selected_artifact.path
                e.recovery_hint = self._recovery_hint()
                raise
        return RestoreState.POST_VERIFY

    def _post_verify(self) -> RestoreState:
        plan = self.plan
        tables = self._server.table_count(plan.target_database)
        self._tables_restored = tables
        if plan.expected_tables and tables == 0:
            raise LoadFailed(
                f"Restore verification failed: no tables in '{plan.target_database}'",
                stage="post_verify",
                artifact=plan.selected_artifact.path,
                recovery_hint=self._recovery_hint(),
            )
        if tables != plan.expected_tables:
            self._note = (
                f"Table count mismatch: backup declares {plan.expected_tables}, "
                f"database has {tables}"
            )
            logger.warning(self._note)
        logger.info(f"Tables restored: {tables}")
        return RestoreState.DONE
