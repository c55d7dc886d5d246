"""Exception hierarchy for db-backup.

Every error carries enough context (stage, artifact, recovery hint) for the
CLI to explain what happened and how to recover without re-running with
more verbosity.

Usage:
    from db_backup.errors import DumpFailed, LoadFailed

    try:
        writer.create("shop", backup_dir)
    except DumpFailed as e:
        print(e, e.recovery_hint)
"""

from pathlib import Path


class BackupEngineError(Exception):
    """Base exception for all backup/restore errors.

    Args:
        message: Human-readable failure reason.
        stage: Pipeline stage where the failure happened (e.g. ``"loading"``).
        artifact: Artifact involved in the failure, if any.
        recovery_hint: Concrete next step for the operator.
    """

    def __init__(
        self,
        message: str,
        *,
        stage: str | None = None,
        artifact: Path | str | None = None,
        recovery_hint: str | None = None,
    ) -> None:
        self.message = message
        self.stage = stage
        self.artifact = Path(artifact) if artifact is not None else None
        self.recovery_hint = recovery_hint
        super().__init__(message)

    def __str__(self) -> str:
        parts = [self.message]
        if self.stage:
            parts.append(f"stage={self.stage}")
        if self.artifact:
            parts.append(f"artifact={self.artifact}")
        return " | ".join(parts)


class ConfigurationError(BackupEngineError):
    """Raised when configuration is missing or invalid."""

    pass


class DatabaseConnectionError(BackupEngineError):
    """Raised when the database engine cannot be reached. Always fatal."""

    pass


class DumpFailed(BackupEngineError):
    """Raised when the logical dump process fails or times out."""

    pass


class CompressionFailed(BackupEngineError):
    """Raised when the compression stream cannot be written."""

    pass


class LoadFailed(BackupEngineError):
    """Raised when loading a dump (or preparing the target) fails."""

    pass


class IntegrityWarning(BackupEngineError):
    """Raised when an artifact fails verification and nobody accepted the risk."""

    pass


class ConfirmationDeclined(BackupEngineError):
    """Raised when the operator declines a confirmation. No side effects."""

    pass


class RetentionSweepPartial(BackupEngineError):
    """Raised when some artifacts could not be deleted during a sweep.

    Args:
        message: Summary message.
        result: The ``SweepResult`` with per-file failures.
    """

    def __init__(self, message: str, result, **kwargs) -> None:
        self.result = result
        super().__init__(message, **kwargs)


class MetadataError(BackupEngineError):
    """Raised when a metadata sidecar cannot be parsed."""

    pass


class MetadataNotFoundError(MetadataError):
    """Raised when an artifact has no metadata sidecar."""

    pass


class DirectoryLockedError(BackupEngineError):
    """Raised when another process holds the backup directory lock."""

    pass


class ArtifactSelectionError(BackupEngineError):
    """Raised when no artifact can be selected for restore."""

    pass
