"""db-backup: MySQL backup, retention and restore lifecycle manager.

Produces verifiable gzip-compressed logical dumps with metadata sidecars,
sweeps them under an age-based retention policy, and restores them behind
a three-level confirmation and a pre-restore safety snapshot.

Usage:
    from db_backup import build_manager, load_db_config
    from db_backup import BackupManager, RestoreOrchestrator, IntegrityVerifier
    from db_backup import DatabaseProfile, BackupConfig
"""

__version__ = "0.1.0"

# Adapters
from db_backup.adapters.base import DatabaseServer, DumpTool
from db_backup.adapters.mysql import MySQLServer
from db_backup.adapters.mysql_tools import MySQLClientTools

# Config
from db_backup.config.loader import load_db_config
from db_backup.config.models import BackupConfig, BackupSettings, DatabaseProfile

# Backup lifecycle
from db_backup.backup.manager import BackupManager
from db_backup.backup.models import BackupArtifact, BackupMetadata, RetentionPolicy
from db_backup.backup.restore import RestoreOrchestrator, RestoreState
from db_backup.backup.verifier import IntegrityVerifier
from db_backup.backup.writer import ArchiveWriter

# Factory
from db_backup.factory import ProfileNotFoundError, build_manager

__all__ = [
    # Adapters
    "DatabaseServer",
    "DumpTool",
    "MySQLServer",
    "MySQLClientTools",
    # Config
    "load_db_config",
    "BackupConfig",
    "BackupSettings",
    "DatabaseProfile",
    # Backup lifecycle
    "ArchiveWriter",
    "BackupManager",
    "IntegrityVerifier",
    "RestoreOrchestrator",
    "RestoreState",
    "BackupArtifact",
    "BackupMetadata",
    "RetentionPolicy",
    # Factory
    "build_manager",
    "ProfileNotFoundError",
]
