"""Age-based retention sweep.

Usage:
    from db_backup.backup.retention import RetentionManager

    result = RetentionManager(MetadataStore()).sweep(Path("backups"), RetentionPolicy(max_age_days=30))
    print(result.deleted_count, result.bytes_freed)
"""

import logging
import time
from collections.abc import Iterable
from pathlib import Path

from db_backup.backup.catalog import is_artifact_name
from db_backup.backup.metadata import MetadataStore
from db_backup.backup.models import METADATA_SUFFIX, RetentionPolicy, SweepFailure, SweepResult
from db_backup.errors import RetentionSweepPartial

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400


class RetentionManager:
    """Deletes artifacts older than the policy allows, with their sidecars.

    Only the top level of the directory is swept; ``reset_backups/`` and
    other subdirectories are left alone.
    """

    def __init__(self, store: MetadataStore) -> None:
        self._store = store

    def sweep(
        self,
        directory: Path,
        policy: RetentionPolicy,
        now: float | None = None,
        raise_on_partial: bool = False,
        keep: Iterable[Path] = (),
    ) -> SweepResult:
        """Delete expired artifact/sidecar pairs and orphaned sidecars.

        An artifact expires when ``now - mtime`` exceeds ``max_age_days``.
        The sidecar is removed before its artifact so that a failure never
        leaves a sidecar pointing at nothing.

        Args:
            directory: Backup directory.
            policy: Retention policy.
            now: Reference time as a POSIX timestamp (default: current time).
            raise_on_partial: Raise ``RetentionSweepPartial`` if any pair
                could not be deleted.
            keep: Artifacts never deleted regardless of age, such as the
                one a create just wrote.

        Returns:
            ``SweepResult`` with deleted paths and per-file failures.
        """
        directory = Path(directory)
        result = SweepResult()
        if not directory.is_dir():
            return result

        now = time.time() if now is None else now
        max_age = policy.max_age_days * SECONDS_PER_DAY
        kept = {Path(p).resolve() for p in keep}
        logger.info(f"Cleaning backups older than {policy.max_age_days} days in {directory}")

        for path in sorted(directory.iterdir()):
            if not path.is_file() or not is_artifact_name(path.name):
                continue
            try:
                stat = path.stat()
            except FileNotFoundError:
                continue
            if now - stat.st_mtime <= max_age:
                continue
            if path.resolve() in kept:
                continue

            sidecar = self._store.sidecar_path(path)
            try:
                sidecar_size = sidecar.stat().st_size
            except FileNotFoundError:
                sidecar_size = None
            try:
                self._store.delete(path)
            except OSError as e:
                result.failures.append(SweepFailure(path=sidecar, reason=str(e)))
                logger.warning(f"Could not delete {sidecar.name}: {e}")
                continue
            if sidecar_size is not None:
                result.deleted.append(sidecar)
                result.bytes_freed += sidecar_size

            try:
                path.unlink()
            except OSError as e:
                result.failures.append(SweepFailure(path=path, reason=str(e)))
                logger.warning(f"Could not delete {path.name}: {e}")
                continue
            result.deleted.append(path)
            result.deleted_count += 1
            result.bytes_freed += stat.st_size
            logger.debug(f"Deleted {path.name}")

        self._sweep_orphans(directory, result)

        if result.deleted_count:
            logger.info(
                f"Cleaned {result.deleted_count} old backups, "
                f"freed {result.bytes_freed / 1024 / 1024:.1f}MB"
            )
        else:
            logger.info("No old backups to clean")

        if result.partial and raise_on_partial:
            raise RetentionSweepPartial(
                f"{len(result.failures)} file(s) could not be deleted", result, stage="sweep"
            )
        return result

    def _sweep_orphans(self, directory: Path, result: SweepResult) -> None:
        for sidecar in sorted(directory.glob(f"*{METADATA_SUFFIX}")):
            artifact = sidecar.with_name(sidecar.name.removesuffix(METADATA_SUFFIX))
            if artifact.exists() or not is_artifact_name(artifact.name):
                continue
            try:
                size = sidecar.stat().st_size
                sidecar.unlink()
            except FileNotFoundError:
                continue
            except OSError as e:
                result.failures.append(SweepFailure(path=sidecar, reason=str(e)))
                logger.warning(f"Could not delete orphaned {sidecar.name}: {e}")
                continue
            result.deleted.append(sidecar)
            result.bytes_freed += size
            logger.debug(f"Deleted orphaned sidecar {sidecar.name}")
