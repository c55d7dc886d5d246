"""Backup domain models.

Usage:
    from db_backup.backup.models import BackupArtifact, BackupMetadata, RetentionPolicy

    policy = RetentionPolicy(max_age_days=14)
    print(artifact.metadata_path)  # backups/shop_backup_20260101_120000.sql.gz.meta
"""

from datetime import datetime
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

METADATA_VERSION = "1.0"
METADATA_SUFFIX = ".meta"
COMPRESSED_SUFFIX = ".sql.gz"
LEGACY_SUFFIX = ".sql"


# ============================================================================
# Artifacts
# ============================================================================


class BackupArtifact(BaseModel):
    """An immutable compressed logical dump of one database at one instant."""

    model_config = ConfigDict(frozen=True)

    path: Path
    source_database: str
    kind: str = "backup"
    created_at: datetime
    size_bytes: int
    compression_algorithm: str = "gzip"
    compression_level: int | None = None
    checksum: str | None = None

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def metadata_path(self) -> Path:
        """Location of the paired sidecar."""
        return self.path.with_name(self.path.name + METADATA_SUFFIX)

    @property
    def is_legacy(self) -> bool:
        """True for uncompressed ``.sql`` dumps."""
        return self.compression_algorithm == "none"


class BackupMetadata(BaseModel):
    """Sidecar descriptor, 1:1 with a BackupArtifact."""

    schema_version: str = METADATA_VERSION
    backup_date: datetime
    backup_file: str
    source_database: str
    host: str
    port: int
    user: str
    size_bytes: int
    checksum: str
    compression: str = "gzip"
    compression_level: int | None = None
    encrypted: bool = False


class RetentionPolicy(BaseModel):
    """Age-based retention applied uniformly to one directory."""

    max_age_days: int = Field(default=30, ge=0)


# ============================================================================
# Verification
# ============================================================================


class IssueKind(str, Enum):
    MISSING = "missing"
    TOO_SMALL = "too_small"
    CORRUPT_CONTAINER = "corrupt_container"
    CHECKSUM_MISMATCH = "checksum_mismatch"
    METADATA_MISSING = "metadata_missing"
    METADATA_UNREADABLE = "metadata_unreadable"


class VerificationIssue(BaseModel):
    """One finding of the integrity verifier."""

    kind: IssueKind
    message: str
    blocking: bool = True


class VerificationResult(BaseModel):
    """Outcome of ``IntegrityVerifier.verify``.

    ``valid`` is False when any blocking issue was found.  Metadata
    problems are never blocking.
    """

    artifact_path: Path
    issues: list[VerificationIssue] = Field(default_factory=list)
    checksum: str | None = None
    expected_checksum: str | None = None

    @property
    def valid(self) -> bool:
        return not any(issue.blocking for issue in self.issues)

    @property
    def errors(self) -> list[str]:
        return [i.message for i in self.issues if i.blocking]

    @property
    def warnings(self) -> list[str]:
        return [i.message for i in self.issues if not i.blocking]

    def has(self, kind: IssueKind) -> bool:
        return any(issue.kind == kind for issue in self.issues)

    def reason(self) -> str:
        """Blocking issues joined into one line (empty when valid)."""
        return "; ".join(self.errors)


# ============================================================================
# Retention / probe / health results
# ============================================================================


class SweepFailure(BaseModel):
    path: Path
    reason: str


class SweepResult(BaseModel):
    """Outcome of ``RetentionManager.sweep``."""

    deleted_count: int = 0
    bytes_freed: int = 0
    deleted: list[Path] = Field(default_factory=list)
    failures: list[SweepFailure] = Field(default_factory=list)

    @property
    def partial(self) -> bool:
        return bool(self.failures)


class ProbeResult(BaseModel):
    """Outcome of ``ConnectionProbe.probe``."""

    reachable: bool
    reason: str | None = None
    server_version: str | None = None
    latency_ms: float | None = None


class HealthReport(BaseModel):
    """Result of the ``check`` command."""

    profile: str
    reachable: bool
    server_version: str | None = None
    database: str
    database_exists: bool = False
    table_count: int = 0
    size_mb: float = 0.0
    missing_programs: list[str] = Field(default_factory=list)
    error: str | None = None

    @property
    def healthy(self) -> bool:
        return (
            self.reachable
            and self.database_exists
            and self.table_count > 0
            and not self.missing_programs
        )
