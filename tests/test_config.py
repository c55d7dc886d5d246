"""Tests for configuration loading and profile resolution."""

from pathlib import Path

import pytest

from db_backup.config import BackupConfig, DatabaseProfile, load_db_config
from db_backup.config.loader import profile_from_env, resolve_config_path
from db_backup.config.models import BackupSettings
from db_backup.errors import ConfigurationError
from db_backup.factory import (
    ENV_PROFILE_NAME,
    ProfileNotFoundError,
    build_manager,
    get_active_profile,
    get_active_profile_name,
    load_config,
)

VALID_TOML = """\
[profiles.local]
host = "localhost"
port = 3306
user = "root"
password = "local-pw"
database = "shop"
description = "Workstation"

[profiles.staging]
host = "staging.internal"
user = "backup"
database = "shop_staging"

[backup]
directory = "/var/backups/shop"
retention_days = 14
compression_level = 9
"""

ENV_VARS = ("DB_HOST", "DB_PORT", "DB_USER", "DB_PASSWORD", "DB_NAME", "DB_PROFILE", "DB_BACKUP_CONFIG")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
        monkeypatch.delenv(f"APP_{name}", raising=False)


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "db.toml"
    path.write_text(VALID_TOML)
    return path


# ============================================================================
# Test: load_db_config
# ============================================================================


class TestLoadDbConfig:
    def test_load_valid_toml(self, config_file: Path) -> None:
        """Profiles and [backup] settings are parsed into models."""
        config = load_db_config(config_file)

        assert isinstance(config, BackupConfig)
        assert set(config.profiles) == {"local", "staging"}
        local = config.profiles["local"]
        assert local.password == "local-pw"
        assert local.description == "Workstation"
        assert config.profiles["staging"].port == 3306
        assert config.backup.retention_days == 14
        assert config.backup.compression_level == 9
        assert config.backup.min_artifact_bytes == 1024

    def test_backup_table_optional(self, tmp_path: Path) -> None:
        path = tmp_path / "db.toml"
        path.write_text('[profiles.only]\ndatabase = "shop"\n')

        config = load_db_config(path)
        assert config.backup == BackupSettings()

    def test_file_not_found_raises(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_db_config(tmp_path / "missing.toml")

    def test_invalid_toml(self, tmp_path: Path) -> None:
        path = tmp_path / "db.toml"
        path.write_text("[profiles.local\n")
        with pytest.raises(ConfigurationError):
            load_db_config(path)

    @pytest.mark.parametrize(
        "body",
        [
            '[profiles.x]\ndatabase = "shop; DROP"\n',
            '[profiles.x]\nport = "not a port"\n',
            '[profiles.x]\ndatabase = "shop"\n[backup]\ncompression_level = 11\n',
            '[profiles.x]\ndatabase = "shop"\n[backup]\nretention_days = -1\n',
        ],
    )
    def test_invalid_values(self, tmp_path: Path, body: str) -> None:
        path = tmp_path / "db.toml"
        path.write_text(body)
        with pytest.raises(ConfigurationError):
            load_db_config(path)

    def test_password_override_from_env(
        self, config_file: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """DB_PASSWORD replaces every profile's password."""
        monkeypatch.setenv("DB_PASSWORD", "from-env")
        config = load_db_config(config_file)
        assert {p.password for p in config.profiles.values()} == {"from-env"}

    def test_env_prefix(self, config_file: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DB_PASSWORD", "unprefixed")
        monkeypatch.setenv("APP_DB_PASSWORD", "prefixed")
        config = load_db_config(config_file, env_prefix="APP_")
        assert config.profiles["local"].password == "prefixed"


class TestResolveConfigPath:
    def test_explicit_wins(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DB_BACKUP_CONFIG", "/etc/other.toml")
        assert resolve_config_path(tmp_path / "x.toml") == tmp_path / "x.toml"

    def test_env_var(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DB_BACKUP_CONFIG", "/etc/db-backup.toml")
        assert resolve_config_path() == Path("/etc/db-backup.toml")

    def test_default_is_cwd_at_runtime(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        assert resolve_config_path() == tmp_path / "db.toml"


class TestProfileFromEnv:
    def test_defaults(self) -> None:
        profile = profile_from_env()
        assert profile.host == "localhost"
        assert profile.port == 3306
        assert profile.user == "root"
        assert profile.database == "logistics_platform"

    def test_values(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DB_HOST", "db.example")
        monkeypatch.setenv("DB_PORT", "3310")
        monkeypatch.setenv("DB_USER", "ops")
        monkeypatch.setenv("DB_PASSWORD", "pw")
        monkeypatch.setenv("DB_NAME", "shop")

        profile = profile_from_env()
        assert profile.describe() == "ops@db.example:3310/shop"
        assert profile.password == "pw"

    def test_bad_port(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DB_PORT", "three")
        with pytest.raises(ConfigurationError):
            profile_from_env()


# ============================================================================
# Test: factory
# ============================================================================


class TestLoadConfig:
    def test_env_fallback_without_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """No db.toml in cwd means a single profile built from DB_* variables."""
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("DB_NAME", "shop")

        config = load_config()
        assert list(config.profiles) == [ENV_PROFILE_NAME]
        assert config.profiles[ENV_PROFILE_NAME].database == "shop"

    def test_explicit_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "missing.toml")

    def test_file_in_cwd(self, config_file: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(config_file.parent)
        assert set(load_config().profiles) == {"local", "staging"}


class TestActiveProfile:
    @pytest.fixture
    def config(self, config_file: Path) -> BackupConfig:
        return load_db_config(config_file)

    def test_argument_wins(self, config: BackupConfig, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DB_PROFILE", "staging")
        assert get_active_profile_name(config, "local") == "local"

    def test_env_var(self, config: BackupConfig, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DB_PROFILE", "staging")
        name, profile = get_active_profile(config)
        assert name == "staging"
        assert profile.database == "shop_staging"

    def test_prefixed_env_var(self, config: BackupConfig, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("APP_DB_PROFILE", "local")
        assert get_active_profile_name(config, env_prefix="APP_") == "local"

    def test_single_profile_is_default(self) -> None:
        config = BackupConfig(profiles={"only": DatabaseProfile(database="shop")})
        assert get_active_profile_name(config) == "only"

    def test_ambiguous_raises(self, config: BackupConfig) -> None:
        with pytest.raises(ProfileNotFoundError) as exc_info:
            get_active_profile_name(config)
        assert "local, staging" in str(exc_info.value)

    def test_unknown_raises(self, config: BackupConfig) -> None:
        with pytest.raises(ProfileNotFoundError):
            get_active_profile_name(config, "prod")


class TestBuildManager:
    def test_wires_profile_and_settings(self, config_file: Path, tmp_path: Path) -> None:
        manager = build_manager("local", config_path=config_file, backup_dir=tmp_path / "b")
        try:
            assert manager.profile_name == "local"
            assert manager.database == "shop"
            assert manager.backup_dir == tmp_path / "b"
            assert manager.reset_dir == tmp_path / "b" / "reset_backups"
            assert manager.settings.compression_level == 9
        finally:
            manager.close()

    def test_settings_directory_by_default(self, config_file: Path) -> None:
        manager = build_manager("staging", config_path=config_file)
        try:
            assert manager.backup_dir == Path("/var/backups/shop")
        finally:
            manager.close()
