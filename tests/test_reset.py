"""Tests for reset and init through BackupManager."""

import pytest

from conftest import ScriptedOperator
from db_backup.backup.confirmation import FINAL_PHRASE
from db_backup.backup.reset import InitAction
from db_backup.errors import ConfigurationError, ConfirmationDeclined, DumpFailed, LoadFailed

RESET_ANSWERS = ["shop", "RESET", FINAL_PHRASE]


class TestReset:
    def test_replaces_contents(self, manager, server, init_script) -> None:
        outcome = manager.reset(init_script, assume_yes=True)

        assert outcome.action == InitAction.RESET
        assert set(server.databases["shop"]) == {"users", "shipments"}
        assert outcome.tables == 2
        assert server.ddl[:2] == ["DROP shop", "CREATE shop utf8mb4 utf8mb4_unicode_ci"]

    def test_snapshot_in_reset_subdirectory(self, manager, init_script) -> None:
        outcome = manager.reset(init_script, assume_yes=True)

        snapshot = outcome.snapshot
        assert snapshot.kind == "before_reset"
        assert snapshot.path.parent == manager.backup_dir / "reset_backups"
        assert manager.store.read(snapshot.path).checksum == snapshot.checksum

    def test_interactive(self, manager, server, init_script) -> None:
        operator = ScriptedOperator(texts=RESET_ANSWERS)
        outcome = manager.reset(init_script, operator=operator)

        assert outcome.action == InitAction.RESET
        assert "RESET" in operator.prompts[1]
        assert operator.shown[0].startswith("DANGER: RESET DATABASE")

    @pytest.mark.parametrize("answers", [["shop", "RESTORE", FINAL_PHRASE], ["shop"], []])
    def test_declined_leaves_database(self, manager, server, init_script, answers) -> None:
        with pytest.raises(ConfirmationDeclined):
            manager.reset(init_script, operator=ScriptedOperator(texts=answers))

        assert server.ddl == []
        assert server.row_count("shop") == 100
        assert not (manager.backup_dir / "reset_backups").exists()

    def test_missing_script(self, manager, server, tmp_path) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            manager.reset(tmp_path / "missing.sql", assume_yes=True)
        assert "--init-script" in exc_info.value.recovery_hint
        assert server.ddl == []

    def test_missing_database(self, manager, server, init_script) -> None:
        del server.databases["shop"]
        with pytest.raises(LoadFailed) as exc_info:
            manager.reset(init_script, assume_yes=True)
        assert "init" in exc_info.value.recovery_hint

    def test_snapshot_failure_stops_reset(self, manager, server, tools, init_script) -> None:
        tools.fail_dump = True
        with pytest.raises(DumpFailed):
            manager.reset(init_script, assume_yes=True)
        assert server.ddl == []

    def test_snapshot_failure_operator_continues(self, manager, server, tools, init_script) -> None:
        tools.fail_dump = True
        operator = ScriptedOperator(texts=RESET_ANSWERS, yes_no=[True])

        outcome = manager.reset(init_script, operator=operator)
        assert outcome.snapshot is None
        assert "Backup failed. Continue anyway?" in operator.prompts

    def test_snapshot_failure_allowed_by_flag(self, manager, tools, init_script) -> None:
        tools.fail_dump = True
        outcome = manager.reset(init_script, assume_yes=True, allow_without_snapshot=True)
        assert outcome.snapshot is None
        assert outcome.tables == 2

    def test_script_error_names_script_and_snapshot(self, manager, tools, init_script) -> None:
        tools.fail_load = True
        with pytest.raises(LoadFailed) as exc_info:
            manager.reset(init_script, assume_yes=True)

        error = exc_info.value
        assert error.stage == "init_script"
        assert error.artifact == init_script
        assert "before_reset" in error.recovery_hint

    def test_empty_script_result(self, manager, tmp_path) -> None:
        script = tmp_path / "empty.sql"
        script.write_text("-- nothing here\n")
        with pytest.raises(LoadFailed) as exc_info:
            manager.reset(script, assume_yes=True)
        assert "no tables" in exc_info.value.message


class TestInit:
    def test_creates_missing_database(self, manager, server, init_script) -> None:
        del server.databases["shop"]

        outcome = manager.init(init_script)

        assert outcome.action == InitAction.CREATED
        assert outcome.snapshot is None
        assert server.databases["shop"]["users"] == ["1,'admin'"]
        assert server.ddl == ["CREATE shop utf8mb4 utf8mb4_unicode_ci"]

    def test_existing_database_skipped(self, manager, server, init_script) -> None:
        outcome = manager.init(init_script)

        assert outcome.action == InitAction.SKIPPED
        assert server.ddl == []
        assert server.row_count("shop") == 100

    def test_replace_takes_pre_init_snapshot(self, manager, server, init_script) -> None:
        outcome = manager.init(init_script, replace=True, assume_yes=True)

        assert outcome.action == InitAction.REPLACED
        assert outcome.snapshot.kind == "pre_init"
        assert outcome.snapshot.path.parent == manager.backup_dir
        assert set(server.databases["shop"]) == {"users", "shipments"}

    def test_replace_needs_confirmation(self, manager, server, init_script) -> None:
        with pytest.raises(ConfirmationDeclined):
            manager.init(init_script, replace=True)
        assert server.ddl == []

    def test_create_failure(self, manager, server, init_script) -> None:
        del server.databases["shop"]
        server.fail_create = True
        with pytest.raises(LoadFailed):
            manager.init(init_script)
