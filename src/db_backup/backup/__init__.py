"""Backup lifecycle: create, verify, retain, restore and reinitialize.

Usage:
    from db_backup.backup import BackupManager, ArchiveWriter, IntegrityVerifier
    from db_backup.backup import RestoreOrchestrator, RestoreState, RetentionManager
"""

from db_backup.backup.catalog import CatalogEntry, list_artifacts, parse_artifact_name
from db_backup.backup.confirmation import (
    ConfirmationGate,
    ConfirmationLevel,
    FinalConfirmed,
    KeywordConfirmed,
    NameConfirmed,
    Operator,
)
from db_backup.backup.lock import DirectoryLock
from db_backup.backup.manager import BackupManager, CreateResult
from db_backup.backup.metadata import MetadataStore
from db_backup.backup.models import (
    BackupArtifact,
    BackupMetadata,
    HealthReport,
    ProbeResult,
    RetentionPolicy,
    SweepResult,
    VerificationResult,
)
from db_backup.backup.probe import ConnectionProbe
from db_backup.backup.reset import Reinitializer, ReinitOutcome
from db_backup.backup.restore import RestoreOrchestrator, RestoreOutcome, RestorePlan, RestoreState
from db_backup.backup.retention import RetentionManager
from db_backup.backup.verifier import IntegrityVerifier
from db_backup.backup.writer import ArchiveWriter

__all__ = [
    # Components
    "ArchiveWriter",
    "BackupManager",
    "ConnectionProbe",
    "DirectoryLock",
    "IntegrityVerifier",
    "MetadataStore",
    "Reinitializer",
    "RestoreOrchestrator",
    "RetentionManager",
    # Confirmation
    "ConfirmationGate",
    "ConfirmationLevel",
    "NameConfirmed",
    "KeywordConfirmed",
    "FinalConfirmed",
    "Operator",
    # Catalog
    "CatalogEntry",
    "list_artifacts",
    "parse_artifact_name",
    # Models
    "BackupArtifact",
    "BackupMetadata",
    "CreateResult",
    "HealthReport",
    "ProbeResult",
    "ReinitOutcome",
    "RestoreOutcome",
    "RestorePlan",
    "RestoreState",
    "RetentionPolicy",
    "SweepResult",
    "VerificationResult",
]
