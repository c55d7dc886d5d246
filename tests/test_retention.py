"""Tests for RetentionManager."""

import os
import time
from unittest.mock import patch

import pytest

from db_backup.backup.metadata import MetadataStore
from db_backup.backup.models import RetentionPolicy
from db_backup.backup.retention import SECONDS_PER_DAY, RetentionManager
from db_backup.errors import RetentionSweepPartial

NOW = 1_800_000_000.0


def _make(directory, name: str, age_days: float, sidecar: bool = True):
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    path.write_bytes(b"x" * 2048)
    mtime = NOW - age_days * SECONDS_PER_DAY
    os.utime(path, (mtime, mtime))
    if sidecar:
        meta = directory / f"{name}.meta"
        meta.write_text("CHECKSUM=abc\n")
        os.utime(meta, (mtime, mtime))
    return path


@pytest.fixture
def retention() -> RetentionManager:
    return RetentionManager(MetadataStore())


class TestSweep:
    def test_deletes_only_expired(self, retention, backup_dir) -> None:
        old = _make(backup_dir, "shop_backup_20250101_000000.sql.gz", age_days=40)
        fresh = _make(backup_dir, "shop_backup_20250301_000000.sql.gz", age_days=5)

        result = retention.sweep(backup_dir, RetentionPolicy(max_age_days=30), now=NOW)

        assert not old.exists()
        assert fresh.exists()
        assert result.deleted_count == 1
        assert old in result.deleted

    def test_sidecar_deleted_with_artifact(self, retention, backup_dir) -> None:
        old = _make(backup_dir, "shop_backup_20250101_000000.sql.gz", age_days=40)
        fresh = _make(backup_dir, "shop_backup_20250301_000000.sql.gz", age_days=5)

        retention.sweep(backup_dir, RetentionPolicy(max_age_days=30), now=NOW)

        assert not (backup_dir / f"{old.name}.meta").exists()
        assert (backup_dir / f"{fresh.name}.meta").exists()

    def test_bound_holds_after_sweep(self, retention, backup_dir) -> None:
        for age in (1, 10, 29, 31, 45, 400):
            _make(backup_dir, f"shop_backup_2025010{age % 10}_{age:06d}.sql.gz", age_days=age)

        retention.sweep(backup_dir, RetentionPolicy(max_age_days=30), now=NOW)

        for path in backup_dir.glob("*.sql.gz"):
            assert NOW - path.stat().st_mtime <= 30 * SECONDS_PER_DAY
        for meta in backup_dir.glob("*.meta"):
            assert meta.with_name(meta.name.removesuffix(".meta")).exists()

    def test_bytes_freed_counts_both_files(self, retention, backup_dir) -> None:
        old = _make(backup_dir, "shop_backup_20250101_000000.sql.gz", age_days=40)
        meta_size = (backup_dir / f"{old.name}.meta").stat().st_size

        result = retention.sweep(backup_dir, RetentionPolicy(max_age_days=30), now=NOW)
        assert result.bytes_freed == 2048 + meta_size

    def test_legacy_sql_swept(self, retention, backup_dir) -> None:
        legacy = _make(backup_dir, "shop_backup_20190101_000000.sql", age_days=900, sidecar=False)
        retention.sweep(backup_dir, RetentionPolicy(max_age_days=30), now=NOW)
        assert not legacy.exists()

    def test_zero_days_deletes_everything_older_than_now(self, retention, backup_dir) -> None:
        _make(backup_dir, "a_backup_20250101_000000.sql.gz", age_days=0.01)
        result = retention.sweep(backup_dir, RetentionPolicy(max_age_days=0), now=NOW)
        assert result.deleted_count == 1

    def test_orphaned_sidecar_removed(self, retention, backup_dir) -> None:
        _make(backup_dir, "keep_backup_20250301_000000.sql.gz", age_days=1)
        orphan = backup_dir / "gone_backup_20250101_000000.sql.gz.meta"
        orphan.write_text("CHECKSUM=abc\n")

        result = retention.sweep(backup_dir, RetentionPolicy(max_age_days=30), now=NOW)
        assert not orphan.exists()
        assert orphan in result.deleted
        assert result.deleted_count == 0

    def test_not_recursive_and_ignores_other_files(self, retention, backup_dir) -> None:
        nested = _make(
            backup_dir / "reset_backups", "shop_before_reset_20200101_000000.sql.gz", 900
        )
        other = _make(backup_dir, "notes.txt", age_days=900, sidecar=False)
        (backup_dir / ".lock").write_text("")

        retention.sweep(backup_dir, RetentionPolicy(max_age_days=30), now=NOW)
        assert nested.exists()
        assert other.exists()
        assert (backup_dir / ".lock").exists()

    def test_missing_directory_is_empty_result(self, retention, tmp_path) -> None:
        result = retention.sweep(tmp_path / "none", RetentionPolicy(), now=NOW)
        assert result.deleted_count == 0
        assert not result.partial

    def test_defaults_to_current_time(self, retention, backup_dir) -> None:
        path = _make(backup_dir, "shop_backup_20250101_000000.sql.gz", age_days=0)
        old = time.time() - 60 * SECONDS_PER_DAY
        os.utime(path, (old, old))

        result = retention.sweep(backup_dir, RetentionPolicy(max_age_days=30))
        assert result.deleted_count == 1

    def test_kept_artifact_survives(self, retention, backup_dir) -> None:
        kept = _make(backup_dir, "shop_backup_20250101_000000.sql.gz", age_days=90)
        other = _make(backup_dir, "shop_backup_20250102_000000.sql.gz", age_days=90)

        result = retention.sweep(
            backup_dir, RetentionPolicy(max_age_days=0), now=NOW, keep=[kept]
        )

        assert kept.exists()
        assert (backup_dir / f"{kept.name}.meta").exists()
        assert not other.exists()
        assert result.deleted_count == 1


class TestPostCreateSweep:
    def test_zero_day_window_keeps_new_backup(self, manager, backup_dir) -> None:
        old = _make(backup_dir, "shop_backup_20250101_000000.sql.gz", age_days=0)
        stale = time.time() - 5 * SECONDS_PER_DAY
        os.utime(old, (stale, stale))

        result = manager.create(max_age_days=0)

        assert result.artifact.path.exists()
        assert manager.store.read(result.artifact.path).checksum == result.artifact.checksum
        assert not old.exists()
        assert result.sweep.deleted_count == 1
        assert result.artifact.path not in result.sweep.deleted


class TestPartialFailure:
    def test_failures_collected(self, retention, backup_dir) -> None:
        stuck = _make(backup_dir, "shop_backup_20250101_000000.sql.gz", age_days=40)
        gone = _make(backup_dir, "shop_backup_20250102_000000.sql.gz", age_days=40)
        real_unlink = type(stuck).unlink

        def flaky_unlink(self, *args, **kwargs):
            if self.name == stuck.name:
                raise PermissionError("read-only")
            return real_unlink(self, *args, **kwargs)

        with patch.object(type(stuck), "unlink", flaky_unlink):
            result = retention.sweep(backup_dir, RetentionPolicy(max_age_days=30), now=NOW)

        assert result.partial
        assert result.failures[0].path == stuck
        assert "read-only" in result.failures[0].reason
        assert not gone.exists()
        # The sidecar goes first, so no sidecar is left without its artifact
        assert not (backup_dir / f"{stuck.name}.meta").exists()

    def test_raise_on_partial(self, retention, backup_dir) -> None:
        stuck = _make(backup_dir, "shop_backup_20250101_000000.sql.gz", age_days=40)
        real_unlink = type(stuck).unlink

        def flaky_unlink(self, *args, **kwargs):
            if self.name == stuck.name:
                raise PermissionError("read-only")
            return real_unlink(self, *args, **kwargs)

        with patch.object(type(stuck), "unlink", flaky_unlink):
            with pytest.raises(RetentionSweepPartial) as exc_info:
                retention.sweep(
                    backup_dir, RetentionPolicy(max_age_days=30), now=NOW, raise_on_partial=True
                )

        assert exc_info.value.result.failures[0].path == stuck
