"""Artifact naming and directory listing.

Artifact names follow ``{database}_{kind}_{YYYYmmdd_HHMMSS}`` plus the
codec suffix, optionally with a ``_N`` collision counter before the
suffix.  Database names may contain underscores, so the kind is matched
against the known set from the right.

Usage:
    from db_backup.backup.catalog import artifact_name, list_artifacts

    name = artifact_name("shop", "backup", datetime.now())
    for entry in list_artifacts(Path("backups")):
        print(entry.artifact.name, entry.metadata)
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from db_backup.backup.models import (
    COMPRESSED_SUFFIX,
    LEGACY_SUFFIX,
    BackupArtifact,
    BackupMetadata,
)
from db_backup.errors import MetadataError

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"

ARTIFACT_KINDS = ("backup", "pre_restore", "before_reset", "pre_init")

_NAME_PATTERN = re.compile(
    r"^(?P<database>.+)_(?P<kind>" + "|".join(ARTIFACT_KINDS) + r")"
    r"_(?P<stamp>\d{8}_\d{6})(?:_(?P<counter>\d+))?$"
)


@dataclass(frozen=True)
class ParsedName:
    database: str
    kind: str
    timestamp: datetime
    counter: int = 0


@dataclass(frozen=True)
class CatalogEntry:
    """One listed artifact with its sidecar, when readable."""

    artifact: BackupArtifact
    metadata: BackupMetadata | None = None


def strip_suffix(name: str) -> str:
    """Remove ``.sql.gz`` or ``.sql`` from an artifact file name."""
    for suffix in (COMPRESSED_SUFFIX, LEGACY_SUFFIX):
        if name.endswith(suffix):
            return name[: -len(suffix)]
    return name


def is_artifact_name(name: str) -> bool:
    return name.endswith(COMPRESSED_SUFFIX) or name.endswith(LEGACY_SUFFIX)


def artifact_name(
    database: str, kind: str, timestamp: datetime, counter: int = 0, suffix: str = COMPRESSED_SUFFIX
) -> str:
    """Build an artifact file name.

    Args:
        database: Source database name.
        kind: One of ``ARTIFACT_KINDS``.
        timestamp: Capture start time.
        counter: Collision counter; 0 means none.
        suffix: Codec suffix.
    """
    if kind not in ARTIFACT_KINDS:
        raise ValueError(f"Unknown artifact kind: {kind!r}")
    stem = f"{database}_{kind}_{timestamp.strftime(TIMESTAMP_FORMAT)}"
    if counter:
        stem = f"{stem}_{counter}"
    return stem + suffix


def parse_artifact_name(name: str) -> ParsedName | None:
    """Split an artifact file name into its parts.

    Returns:
        ``ParsedName`` or ``None`` when the name does not follow the
        convention (e.g. a hand-copied dump).
    """
    match = _NAME_PATTERN.match(strip_suffix(Path(name).name))
    if not match:
        return None
    try:
        timestamp = datetime.strptime(match["stamp"], TIMESTAMP_FORMAT)
    except ValueError:
        return None
    return ParsedName(
        database=match["database"],
        kind=match["kind"],
        timestamp=timestamp,
        counter=int(match["counter"] or 0),
    )


def describe_artifact(path: Path, metadata: BackupMetadata | None = None) -> BackupArtifact:
    """Build a ``BackupArtifact`` for an existing file.

    Name parts come from the file name; when the name is unconventional
    the sidecar (if given) or the file's mtime fills in.
    """
    path = Path(path)
    stat = path.stat()
    legacy = not path.name.endswith(COMPRESSED_SUFFIX)
    parsed = parse_artifact_name(path.name)

    if parsed is not None:
        database, kind, created_at = parsed.database, parsed.kind, parsed.timestamp
    else:
        database = metadata.source_database if metadata else strip_suffix(path.name)
        kind = "backup"
        created_at = datetime.fromtimestamp(stat.st_mtime)

    return BackupArtifact(
        path=path,
        source_database=database,
        kind=kind,
        created_at=created_at,
        size_bytes=stat.st_size,
        compression_algorithm="none" if legacy else "gzip",
        compression_level=None if legacy else (metadata.compression_level if metadata else None),
        checksum=metadata.checksum if metadata else None,
    )


def find_artifacts(directory: Path) -> list[Path]:
    """Artifact files directly inside ``directory``, newest mtime first."""
    directory = Path(directory)
    if not directory.is_dir():
        return []
    files = [p for p in directory.iterdir() if p.is_file() and is_artifact_name(p.name)]
    # Ties on mtime fall back to the name, which embeds the timestamp
    return sorted(files, key=lambda p: (p.stat().st_mtime, p.name), reverse=True)


def list_artifacts(directory: Path, store=None) -> list[CatalogEntry]:
    """List artifacts newest-first, attaching sidecar metadata when readable.

    Args:
        directory: Backup directory (not searched recursively).
        store: Optional ``MetadataStore``; without one no metadata is read.
    """
    entries = []
    for path in find_artifacts(directory):
        metadata = None
        if store is not None:
            try:
                metadata = store.read(path)
            except MetadataError as e:
                logger.debug(f"No usable metadata for {path.name}: {e}")
        entries.append(CatalogEntry(artifact=describe_artifact(path, metadata), metadata=metadata))
    return entries
