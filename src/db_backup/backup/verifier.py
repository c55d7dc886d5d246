"""Artifact integrity verification.

Checks run in order and every finding is collected:

1. the file exists and is at least ``min_artifact_bytes`` long;
2. the compression container decompresses cleanly (skipped for legacy
   ``.sql`` dumps);
3. the sha256 of the file matches the sidecar ``CHECKSUM``.

A missing or unreadable sidecar is reported but never blocks.  Verifying
an unmodified artifact twice gives the same result.
"""

import hashlib
import logging
from pathlib import Path

from db_backup.backup.compression import codec_for_path
from db_backup.backup.metadata import MetadataStore
from db_backup.backup.models import BackupMetadata, IssueKind, VerificationIssue, VerificationResult
from db_backup.errors import MetadataError, MetadataNotFoundError

logger = logging.getLogger(__name__)

HASH_CHUNK = 1024 * 1024


def file_sha256(path: Path) -> str:
    """sha256 hex digest of a file, read in chunks."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        while chunk := f.read(HASH_CHUNK):
            digest.update(chunk)
    return digest.hexdigest()


class IntegrityVerifier:
    """Validates artifacts before they are trusted for a restore."""

    def __init__(self, store: MetadataStore, min_artifact_bytes: int = 1024) -> None:
        self._store = store
        self._min_bytes = min_artifact_bytes

    def verify(
        self,
        artifact_path: Path,
        metadata: BackupMetadata | None = None,
        load_metadata: bool = True,
    ) -> VerificationResult:
        """Verify one artifact.

        Args:
            artifact_path: Artifact to check.
            metadata: Sidecar contents, when the caller already has them.
            load_metadata: Read the sidecar when ``metadata`` is not given.

        Returns:
            ``VerificationResult``; ``valid`` is False on any blocking issue.
        """
        path = Path(artifact_path)
        result = VerificationResult(artifact_path=path)

        if not path.is_file():
            result.issues.append(
                VerificationIssue(kind=IssueKind.MISSING, message=f"Backup file not found: {path}")
            )
            return result

        size = path.stat().st_size
        if size < self._min_bytes:
            result.issues.append(
                VerificationIssue(
                    kind=IssueKind.TOO_SMALL,
                    message=f"Backup file seems too small: {size} bytes (minimum {self._min_bytes})",
                )
            )

        problem = codec_for_path(path).self_test(path)
        if problem:
            result.issues.append(
                VerificationIssue(
                    kind=IssueKind.CORRUPT_CONTAINER,
                    message=f"Backup file is corrupt or not valid gzip: {problem}",
                )
            )

        if metadata is None and load_metadata:
            try:
                metadata = self._store.read(path)
            except MetadataNotFoundError as e:
                result.issues.append(
                    VerificationIssue(kind=IssueKind.METADATA_MISSING, message=e.message, blocking=False)
                )
            except MetadataError as e:
                result.issues.append(
                    VerificationIssue(
                        kind=IssueKind.METADATA_UNREADABLE, message=e.message, blocking=False
                    )
                )

        try:
            result.checksum = file_sha256(path)
        except OSError as e:
            result.issues.append(
                VerificationIssue(kind=IssueKind.MISSING, message=f"Cannot read {path.name}: {e}")
            )
            return result

        if metadata is not None:
            result.expected_checksum = metadata.checksum
            if metadata.checksum.lower() != result.checksum:
                result.issues.append(
                    VerificationIssue(
                        kind=IssueKind.CHECKSUM_MISMATCH,
                        message=(
                            f"Checksum mismatch: expected {metadata.checksum[:16]}..., "
                            f"got {result.checksum[:16]}..."
                        ),
                    )
                )

        if result.valid:
            logger.info(f"Backup file integrity verified: {path.name}")
        else:
            logger.warning(f"Verification failed for {path.name}: {result.reason()}")
        for warning in result.warnings:
            logger.warning(warning)
        return result
