"""Tests for ConnectionProbe and DirectoryLock."""

import os

import pytest

from conftest import FakeServer
from db_backup.backup.lock import DirectoryLock
from db_backup.backup.probe import ConnectionProbe
from db_backup.errors import DatabaseConnectionError, DirectoryLockedError


class TestConnectionProbe:
    def test_reachable(self, server) -> None:
        result = ConnectionProbe(server).probe()

        assert result.reachable
        assert result.server_version == "8.0.36"
        assert result.latency_ms is not None
        assert result.reason is None

    def test_unreachable(self) -> None:
        result = ConnectionProbe(FakeServer(reachable=False)).probe()

        assert not result.reachable
        assert "Can't connect" in result.reason

    def test_require_raises(self) -> None:
        probe = ConnectionProbe(FakeServer(reachable=False), target="backup@db.internal:3307/shop")
        with pytest.raises(DatabaseConnectionError) as exc_info:
            probe.require()

        error = exc_info.value
        assert error.stage == "probe"
        assert "db.internal:3307" in error.message
        assert error.recovery_hint

    def test_require_returns_result(self, server) -> None:
        assert ConnectionProbe(server).require().reachable

    def test_manager_operations_gated(self, manager, server, backup_dir) -> None:
        server.reachable = False
        with pytest.raises(DatabaseConnectionError):
            manager.create()
        assert not backup_dir.exists()


class TestDirectoryLock:
    def test_second_holder_fails_fast(self, tmp_path) -> None:
        with DirectoryLock(tmp_path) as first:
            assert first.held
            with pytest.raises(DirectoryLockedError) as exc_info:
                DirectoryLock(tmp_path).acquire()
        assert "retry" in exc_info.value.recovery_hint

    def test_released_on_exit(self, tmp_path) -> None:
        with DirectoryLock(tmp_path):
            pass
        with DirectoryLock(tmp_path) as again:
            assert again.held

    def test_creates_directory_and_records_pid(self, tmp_path) -> None:
        target = tmp_path / "new" / "backups"
        with DirectoryLock(target) as lock:
            assert lock.path.read_text().strip() == str(os.getpid())
        assert not lock.held

    def test_manager_sweep_respects_lock(self, manager, backup_dir) -> None:
        with DirectoryLock(backup_dir):
            with pytest.raises(DirectoryLockedError):
                manager.sweep()
