"""CLI module for MySQL backup and restore.

Usage:
    db-backup profiles
    db-backup check
    db-backup create
    db-backup list
    db-backup verify backups/shop_backup_20260101_120000.sql.gz
    db-backup sweep --max-age-days 14
    db-backup restore --select 1
    db-backup restore --artifact backups/shop_backup_20260101_120000.sql.gz --yes
    db-backup reset --init-script init.sql
    db-backup init --init-script init.sql --replace

Commands:
    profiles  - List available profiles
    check     - Show connection and database health
    create    - Create a backup, verify it, then apply retention
    list      - List backups, newest first
    verify    - Verify a backup file
    sweep     - Delete backups older than the retention window
    restore   - Restore a backup (three-level confirmation)
    reset     - Rebuild the database from an init script (three-level confirmation)
    init      - Create the database from an init script if it does not exist

Exit codes: 0 on success, 1 on errors, 2 when a confirmation is declined.
"""

import argparse
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from db_backup import __version__
from db_backup.backup.catalog import CatalogEntry
from db_backup.backup.manager import BackupManager
from db_backup.backup.reset import InitAction
from db_backup.cli.operator import RichOperator
from db_backup.errors import (
    BackupEngineError,
    ConfigurationError,
    ConfirmationDeclined,
    RetentionSweepPartial,
)
from db_backup.factory import (
    ProfileNotFoundError,
    build_manager,
    get_active_profile_name,
    load_config,
)

console = Console()

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_DECLINED = 2

FILE_LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


# ============================================================================
# Helpers
# ============================================================================


def configure_logging(level: str = "INFO", log_file: Path | None = None) -> None:
    """Install a rich console handler and, optionally, a plain file handler.

    Raises:
        ConfigurationError: If ``log_file`` cannot be opened.
    """
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.setLevel(logging.DEBUG)

    console_handler = RichHandler(
        console=Console(stderr=True), show_path=False, markup=False, rich_tracebacks=False
    )
    console_handler.setLevel(level.upper())
    console_handler.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(console_handler)

    if log_file is not None:
        try:
            file_handler = logging.FileHandler(log_file, encoding="utf-8")
        except OSError as e:
            raise ConfigurationError(
                f"Cannot open log file {log_file}: {e.strerror or e}",
                recovery_hint="Point --log-file at a writable path in an existing directory.",
            ) from e
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT))
        root.addHandler(file_handler)

    # SQLAlchemy logs every pool checkout at DEBUG
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)


def _manager(args: argparse.Namespace) -> BackupManager:
    return build_manager(
        profile_name=args.profile,
        config_path=args.config,
        env_prefix=args.env_prefix,
        backup_dir=args.backup_dir,
    )


def _operator() -> RichOperator | None:
    """Prompts need a terminal; without one only explicit flags decide."""
    return RichOperator(console) if sys.stdin.isatty() else None


def _format_size(size: int) -> str:
    value = float(size)
    for unit in ("B", "KB", "MB"):
        if value < 1024:
            return f"{value:.0f}B" if unit == "B" else f"{value:.1f}{unit}"
        value /= 1024
    return f"{value:.1f}GB"


def _non_negative_int(value: str) -> int:
    number = int(value)
    if number < 0:
        raise argparse.ArgumentTypeError(f"must be >= 0, got {number}")
    return number


def _print_error(error: BaseException) -> None:
    console.print(f"[bold red]x[/bold red] {escape(str(error))}")
    hint = getattr(error, "recovery_hint", None)
    if hint:
        console.print(f"  [yellow]Hint:[/yellow] {escape(hint)}")


def _catalog_table(entries: list[CatalogEntry], title: str = "Backups") -> Table:
    table = Table(title=title, show_header=True, header_style="bold")
    table.add_column("#", justify="right")
    table.add_column("File")
    table.add_column("Kind")
    table.add_column("Size", justify="right")
    table.add_column("Created")
    table.add_column("Checksum", style="dim")

    for number, entry in enumerate(entries, start=1):
        artifact = entry.artifact
        if entry.metadata:
            checksum = f"{entry.metadata.checksum[:16]}..."
        else:
            checksum = "[yellow]no metadata[/yellow]"
        table.add_row(
            str(number),
            artifact.name,
            artifact.kind,
            _format_size(artifact.size_bytes),
            f"{artifact.created_at:%Y-%m-%d %H:%M:%S}",
            checksum,
        )
    return table


# ============================================================================
# Commands
# ============================================================================


def cmd_profiles(args: argparse.Namespace) -> int:
    """List available profiles. Reads only local config, no database calls."""
    config = load_config(args.config, args.env_prefix)
    try:
        current = get_active_profile_name(config, args.profile, args.env_prefix)
    except ProfileNotFoundError:
        current = None

    table = Table(title="Database Profiles", show_header=True, header_style="bold")
    table.add_column("", width=2)
    table.add_column("Profile")
    table.add_column("Connection")
    table.add_column("Description")

    for name, profile in config.profiles.items():
        marker = "[bold green]*[/bold green]" if name == current else " "
        name_style = "bold cyan" if name == current else ""
        table.add_row(
            marker,
            f"[{name_style}]{name}[/{name_style}]" if name_style else name,
            profile.describe(),
            profile.description or "",
        )

    console.print(table)
    if current:
        console.print("\n[bold green]*[/bold green] = active profile")
    return EXIT_OK


def cmd_check(args: argparse.Namespace) -> int:
    """Show connection and database health. Returns 1 when unhealthy."""
    manager = _manager(args)
    try:
        report = manager.check()
    finally:
        manager.close()

    table = Table(title="Database Health Check", show_header=False)
    table.add_column("Key", style="dim")
    table.add_column("Value")
    table.add_row("Profile", f"[bold cyan]{report.profile}[/bold cyan]")
    table.add_row("Connection", manager.profile.describe())
    table.add_row(
        "Server",
        f"[green]MySQL {report.server_version}[/green]"
        if report.reachable
        else f"[red]unreachable: {report.error}[/red]",
    )
    if report.reachable:
        table.add_row(
            "Database",
            f"[green]{report.database} exists[/green]"
            if report.database_exists
            else f"[red]{report.database} does not exist[/red]",
        )
        table.add_row("Tables", str(report.table_count))
        table.add_row("Size", f"{report.size_mb} MB")
    if report.missing_programs:
        table.add_row("Missing tools", f"[yellow]{', '.join(report.missing_programs)}[/yellow]")
    console.print(table)

    if report.healthy:
        console.print("\n[bold green]v[/bold green] Database is healthy")
        return EXIT_OK
    console.print("\n[bold red]x[/bold red] Database needs attention")
    return EXIT_ERROR


def cmd_create(args: argparse.Namespace) -> int:
    """Create a backup, verify it, then sweep old ones."""
    manager = _manager(args)
    try:
        result = manager.create(max_age_days=args.max_age_days)
        entries = manager.list_backups()
    finally:
        manager.close()

    artifact = result.artifact
    console.print()
    console.print(f"[bold green]v[/bold green] Backup created: [cyan]{artifact.path}[/cyan]")
    console.print(f"  Size:     {_format_size(artifact.size_bytes)}")
    console.print(f"  Checksum: {artifact.checksum}")
    if result.verification.valid:
        console.print("  Verification: [green]PASSED[/green]")
    else:
        console.print(f"  Verification: [red]FAILED[/red] {result.verification.reason()}")
    if result.sweep.deleted_count:
        console.print(
            f"  Retention: removed {result.sweep.deleted_count} old backups, "
            f"freed {_format_size(result.sweep.bytes_freed)}"
        )

    console.print()
    console.print(_catalog_table(entries[:10], title="Recent Backups"))
    console.print(f"[dim]Location: {manager.backup_dir.resolve()}  Total backups: {len(entries)}[/dim]")
    return EXIT_OK


def cmd_list(args: argparse.Namespace) -> int:
    """List backups newest first."""
    manager = _manager(args)
    try:
        entries = manager.list_backups()
    finally:
        manager.close()

    if not entries:
        console.print(f"[yellow]No backups found in {manager.backup_dir}[/yellow]")
        return EXIT_OK
    console.print(_catalog_table(entries))
    return EXIT_OK


def cmd_verify(args: argparse.Namespace) -> int:
    """Verify one backup file. Returns 1 when invalid."""
    manager = _manager(args)
    try:
        result = manager.verify(args.artifact)
    finally:
        manager.close()

    for warning in result.warnings:
        console.print(f"[yellow]![/yellow] {escape(warning)}")
    if result.valid:
        console.print(f"[bold green]v[/bold green] {args.artifact} is valid")
        if result.checksum:
            console.print(f"  Checksum: {result.checksum}")
        return EXIT_OK
    console.print(f"[bold red]x[/bold red] {args.artifact} is invalid")
    for error in result.errors:
        console.print(f"  - {escape(error)}")
    return EXIT_ERROR


def cmd_sweep(args: argparse.Namespace) -> int:
    """Apply retention. Undeletable files are reported but do not fail the command."""
    manager = _manager(args)
    try:
        result = manager.sweep(max_age_days=args.max_age_days, raise_on_partial=True)
    except RetentionSweepPartial as e:
        result = e.result
        for failure in result.failures:
            console.print(f"[yellow]![/yellow] Could not delete {failure.path}: {failure.reason}")
    finally:
        manager.close()

    console.print(
        f"[bold green]v[/bold green] Removed {result.deleted_count} backups, "
        f"freed {_format_size(result.bytes_freed)}"
    )
    return EXIT_OK


def cmd_restore(args: argparse.Namespace) -> int:
    """Restore a backup into the profile database."""
    manager = _manager(args)
    try:
        outcome = manager.restore(
            select=args.select,
            artifact=args.artifact,
            target_database=args.target,
            operator=_operator(),
            assume_yes=args.yes,
            accept_integrity_warnings=args.accept_integrity_warnings,
            allow_without_snapshot=args.allow_without_snapshot,
        )
    finally:
        manager.close()

    plan = outcome.plan
    console.print()
    console.print("[bold green]v[/bold green] Restore complete")
    table = Table(show_header=False)
    table.add_column("Key", style="dim")
    table.add_column("Value")
    table.add_row("Restored from", plan.selected_artifact.name)
    table.add_row("Target database", plan.target_database)
    if plan.database_name_rewrite:
        table.add_row("Renamed", f"{plan.database_name_rewrite[0]} -> {plan.database_name_rewrite[1]}")
    table.add_row("Tables", f"{outcome.tables_restored} (backup declares {plan.expected_tables})")
    table.add_row("Duration", f"{outcome.duration_s:.1f}s")
    if plan.pre_restore_snapshot:
        table.add_row("Pre-restore backup", str(plan.pre_restore_snapshot.path.resolve()))
    console.print(table)
    if outcome.reason:
        console.print(f"[yellow]![/yellow] {outcome.reason}")
    return EXIT_OK


def _print_reinit(outcome) -> None:
    console.print(
        f"[bold green]v[/bold green] Database '{outcome.database}' {outcome.action.value}: "
        f"{outcome.tables} tables"
    )
    if outcome.snapshot:
        console.print(f"  Previous contents: {outcome.snapshot.path.resolve()}")


def cmd_reset(args: argparse.Namespace) -> int:
    """Drop the database and rebuild it from the init script."""
    manager = _manager(args)
    try:
        outcome = manager.reset(
            args.init_script,
            operator=_operator(),
            assume_yes=args.yes,
            allow_without_snapshot=args.allow_without_snapshot,
        )
    finally:
        manager.close()
    _print_reinit(outcome)
    return EXIT_OK


def cmd_init(args: argparse.Namespace) -> int:
    """Create the database from the init script if absent."""
    manager = _manager(args)
    try:
        outcome = manager.init(
            args.init_script,
            replace=args.replace,
            operator=_operator(),
            assume_yes=args.yes,
            allow_without_snapshot=args.allow_without_snapshot,
        )
    finally:
        manager.close()

    if outcome.action == InitAction.SKIPPED:
        console.print(
            f"[yellow]Database '{outcome.database}' already exists; nothing to do.[/yellow]"
        )
        console.print("[dim]Pass --replace to back it up and reinitialize it.[/dim]")
        return EXIT_OK
    _print_reinit(outcome)
    return EXIT_OK


# ============================================================================
# Entry point
# ============================================================================


def _add_confirmation_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--yes",
        "-y",
        action="store_true",
        help="Pass the three confirmation levels without prompting",
    )
    parser.add_argument(
        "--allow-without-snapshot",
        action="store_true",
        help="Continue if the safety backup fails",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="db-backup",
        description="MySQL backup, retention and restore",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", type=Path, default=None, help="Path to db.toml")
    parser.add_argument("--profile", "-p", default=None, help="Profile name from db.toml")
    parser.add_argument(
        "--env-prefix",
        default="",
        help=(
            "Prefix for environment variable lookup "
            "(e.g., --env-prefix APP_ reads APP_DB_PROFILE)"
        ),
    )
    parser.add_argument(
        "--backup-dir", type=Path, default=None, help="Override [backup].directory"
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Console log level (default: INFO)",
    )
    parser.add_argument("--log-file", type=Path, default=None, help="Also log to this file")

    subparsers = parser.add_subparsers(dest="command", required=True)

    p_profiles = subparsers.add_parser("profiles", help="List available profiles")
    p_profiles.set_defaults(func=cmd_profiles)

    p_check = subparsers.add_parser("check", help="Show connection and database health")
    p_check.set_defaults(func=cmd_check)

    p_create = subparsers.add_parser("create", help="Create a backup and apply retention")
    p_create.add_argument(
        "--max-age-days",
        type=_non_negative_int,
        default=None,
        help="Retention window for the post-create sweep",
    )
    p_create.set_defaults(func=cmd_create)

    p_list = subparsers.add_parser("list", help="List backups, newest first")
    p_list.set_defaults(func=cmd_list)

    p_verify = subparsers.add_parser("verify", help="Verify a backup file")
    p_verify.add_argument("artifact", type=Path, help="Backup file to verify")
    p_verify.set_defaults(func=cmd_verify)

    p_sweep = subparsers.add_parser("sweep", help="Delete backups past the retention window")
    p_sweep.add_argument(
        "--max-age-days",
        type=_non_negative_int,
        default=None,
        help="Override [backup].retention_days",
    )
    p_sweep.set_defaults(func=cmd_sweep)

    p_restore = subparsers.add_parser("restore", help="Restore a backup")
    source = p_restore.add_mutually_exclusive_group()
    source.add_argument(
        "--select", type=int, default=None, help="Backup number from `db-backup list` (1 = newest)"
    )
    source.add_argument("--artifact", type=Path, default=None, help="Backup file to restore")
    p_restore.add_argument(
        "--target", default=None, help="Target database (default: the profile database)"
    )
    p_restore.add_argument(
        "--accept-integrity-warnings",
        action="store_true",
        help="Continue if the backup fails verification",
    )
    _add_confirmation_flags(p_restore)
    p_restore.set_defaults(func=cmd_restore)

    p_reset = subparsers.add_parser("reset", help="Rebuild the database from an init script")
    p_reset.add_argument("--init-script", type=Path, required=True, help="SQL file to load")
    _add_confirmation_flags(p_reset)
    p_reset.set_defaults(func=cmd_reset)

    p_init = subparsers.add_parser("init", help="Create the database from an init script")
    p_init.add_argument("--init-script", type=Path, required=True, help="SQL file to load")
    p_init.add_argument(
        "--replace", action="store_true", help="Back up and reinitialize an existing database"
    )
    _add_confirmation_flags(p_init)
    p_init.set_defaults(func=cmd_init)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point.

    Parses command line arguments and dispatches to appropriate handler.

    Returns:
        Exit code (0 success, 1 error, 2 declined confirmation).
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        configure_logging(args.log_level, args.log_file)
        return args.func(args)
    except ConfirmationDeclined as e:
        console.print(f"[yellow]Cancelled:[/yellow] {escape(e.message)}")
        return EXIT_DECLINED
    except BackupEngineError as e:
        _print_error(e)
        return EXIT_ERROR
    except (ProfileNotFoundError, FileNotFoundError) as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        return EXIT_ERROR
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
