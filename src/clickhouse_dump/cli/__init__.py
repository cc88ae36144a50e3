"""CLI for partition-level ClickHouse backup and restore.

Usage:
    clickhouse-dump backup --out /backups/today
    clickhouse-dump -H ch1 -p 9000 backup --out /backups/today --db shop --workers 4
    clickhouse-dump backup --out /backups/today --no-freeze
    clickhouse-dump restore --in /backups/today --db shop --target-db shop_restored
    clickhouse-dump restore --in /backups/today --db shop --dry-run
    clickhouse-dump validate /backups/today
    clickhouse-dump profiles

Commands:
    backup    - Freeze partitions and copy them with their metadata
    restore   - Replay metadata and attach partitions from a backup
    validate  - Check a backup tree offline
    profiles  - List server profiles from clickhouse-dump.toml
"""

import argparse
import asyncio
import logging
import sys
import tomllib
from pathlib import Path

from pydantic import ValidationError

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from clickhouse_dump import __version__
from clickhouse_dump.backup.filetree import check_directories_exist
from clickhouse_dump.backup.manifest import validate_backup
from clickhouse_dump.backup.models import BackupSummary, ItemFailure, RestoreSummary
from clickhouse_dump.backup.restore import restore_database
from clickhouse_dump.backup.snapshot import run_backup
from clickhouse_dump.config.loader import CONFIG_FILE_NAME, load_dump_config
from clickhouse_dump.config.models import BackupSettings, DumpConfig
from clickhouse_dump.exceptions import ConfigError, DumpError
from clickhouse_dump.factory import connect, get_active_profile_name, select_profile

console = Console()


# ============================================================================
# Helpers
# ============================================================================


def _configure_logging(debug: bool) -> None:
    """Send log records through rich on stderr."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _load_config(args: argparse.Namespace) -> DumpConfig | None:
    """Load the TOML config.

    A missing default ``clickhouse-dump.toml`` is not an error (host flags
    or defaults are used); a missing ``--config`` file is.

    Raises:
        ConfigError: If an explicit config file is missing or any config
            file is malformed.
    """
    config_path = getattr(args, "config", None)
    try:
        return load_dump_config(config_path)
    except FileNotFoundError as e:
        if config_path is not None:
            raise ConfigError(str(e)) from e
        return None
    except (tomllib.TOMLDecodeError, ValidationError) as e:
        raise ConfigError(f"Invalid config: {e}") from e


def _settings(config: DumpConfig | None) -> BackupSettings:
    return config.backup if config is not None else BackupSettings()


def _print_failures(failures: list[ItemFailure]) -> None:
    if not failures:
        return
    table = Table(title="Failures", show_header=True, header_style="bold")
    table.add_column("Kind", style="dim")
    table.add_column("Item")
    table.add_column("Error", style="red")
    for failure in failures:
        table.add_row(failure.kind, failure.item, failure.error)
    console.print(table)


def _print_backup_summary(summary: BackupSummary) -> None:
    table = Table(title="Backup Summary", show_header=False)
    table.add_column("Key", style="dim")
    table.add_column("Value", justify="right")

    table.add_row("Databases", ", ".join(summary.databases) or "-")
    table.add_row("Partitions found", str(summary.partitions_found))
    if not summary.dry_run:
        table.add_row("Partitions frozen", str(summary.partitions_frozen))
        table.add_row("Tables copied", str(summary.tables_copied))
        table.add_row("Metadata copied", str(summary.metadata_copied))
    table.add_row("Partitions failed", str(summary.partitions_failed))
    if summary.tables_incomplete:
        table.add_row("Incomplete tables", f"[yellow]{', '.join(summary.tables_incomplete)}[/yellow]")

    console.print()
    console.print(table)
    _print_failures(summary.failures)


def _print_restore_summary(summary: RestoreSummary) -> None:
    table = Table(title=f"Restore Summary: {summary.target_database}", show_header=False)
    table.add_column("Key", style="dim")
    table.add_column("Value", justify="right")

    table.add_row("Source database", summary.database)
    table.add_row("Tables created", str(summary.tables_created))
    table.add_row("Tables failed", str(summary.tables_failed))
    table.add_row("Tables skipped", str(summary.tables_skipped))
    table.add_row("Partitions attached", str(summary.partitions_attached))
    table.add_row("Partitions failed", str(summary.partitions_failed))
    table.add_row("Objects created", str(summary.objects_created))
    table.add_row("Objects failed", str(summary.objects_failed))

    console.print()
    console.print(table)
    _print_failures(summary.failures)


def _print_statements(statements: list[str]) -> None:
    console.print()
    console.print("[bold yellow]DRY RUN[/bold yellow] - No changes made. Statements:")
    for statement in statements:
        console.print(f"  {statement};", highlight=False, markup=False)


# ============================================================================
# Async command implementations
# ============================================================================


async def _async_backup(args: argparse.Namespace) -> int:
    """Async implementation for backup command.

    Returns:
        0 on success, 1 on fatal error or any failed item.
    """
    try:
        config = _load_config(args)
        settings = _settings(config)
        profile_name, profile = select_profile(
            config,
            profile_name=args.profile,
            host=args.host,
            port=args.port,
            env_prefix=args.env_prefix,
        )
        workers = args.workers or settings.workers
        source_root = Path(args.input or profile.data_dir)
        check_directories_exist(source_root, Path(args.out))

        console.print(f"Connecting to [bold cyan]{profile_name}[/bold cyan]...", style="dim")
        adapter = await connect(profile, workers=workers)
        try:
            summary = await run_backup(
                adapter,
                source_root=source_root,
                dest_root=Path(args.out),
                database=args.db,
                dry_run=args.no_freeze,
                cleanup=settings.cleanup and not args.no_cleanup,
                workers=workers,
                label=settings.freeze_label,
                timeout=args.timeout,
            )
        finally:
            await adapter.close()
    except DumpError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    _print_backup_summary(summary)
    if summary.dry_run:
        _print_statements(summary.statements)

    if summary.failure_count:
        console.print(f"\n[bold red]x[/bold red] Backup completed with {summary.failure_count} failures")
        return 1
    console.print("\n[bold green]v[/bold green] Backup complete.")
    return 0


async def _async_restore(args: argparse.Namespace) -> int:
    """Async implementation for restore command.

    Returns:
        0 on success, 1 on fatal error or any failed item.
    """
    try:
        if not args.db:
            raise ConfigError("please set database for restore (--db)")
        config = _load_config(args)
        settings = _settings(config)
        profile_name, profile = select_profile(
            config,
            profile_name=args.profile,
            host=args.host,
            port=args.port,
            env_prefix=args.env_prefix,
        )
        workers = args.workers or settings.workers

        console.print(f"Connecting to [bold cyan]{profile_name}[/bold cyan]...", style="dim")
        adapter = await connect(profile, workers=workers)
        try:
            summary = await restore_database(
                adapter,
                backup_root=Path(args.input),
                database=args.db,
                data_dir=Path(args.out or profile.data_dir),
                target_database=args.target_db,
                dry_run=args.dry_run,
                workers=workers,
                id_mode=settings.partition_id_mode,
                timeout=args.timeout,
            )
        finally:
            await adapter.close()
    except DumpError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    _print_restore_summary(summary)
    if summary.dry_run:
        _print_statements(summary.statements)

    if summary.failure_count:
        console.print(f"\n[bold red]x[/bold red] {summary.format_report()}")
        return 1
    console.print(f"\n[bold green]v[/bold green] {summary.format_report()}")
    return 0


# ============================================================================
# Command handlers
# ============================================================================


def cmd_backup(args: argparse.Namespace) -> int:
    """Freeze partitions and copy them into a backup tree.

    Wraps the async implementation with ``asyncio.run()``.
    """
    return asyncio.run(_async_backup(args))


def cmd_restore(args: argparse.Namespace) -> int:
    """Restore one database from a backup tree.

    Wraps the async implementation with ``asyncio.run()``.
    """
    return asyncio.run(_async_restore(args))


def cmd_validate(args: argparse.Namespace) -> int:
    """Validate a backup tree.

    Reads only the local tree -- no database calls.

    Returns:
        0 if valid (warnings allowed), 1 if invalid.
    """
    result = validate_backup(args.backup_path, database=args.db)

    console.print(f"Validating: [bold]{args.backup_path}[/bold]")

    if result["errors"]:
        console.print(f"\n[red]INVALID - Found {len(result['errors'])} errors:[/red]")
        for error in result["errors"]:
            console.print(f"   - {error}")

    if result["warnings"]:
        console.print(f"\n[yellow]Found {len(result['warnings'])} warnings:[/yellow]")
        for warning in result["warnings"]:
            console.print(f"   - {warning}")

    if result["valid"]:
        console.print("\n[bold green]v[/bold green] Backup is valid")
        return 0
    console.print("\n[bold red]x[/bold red] Backup is invalid")
    return 1


def cmd_profiles(args: argparse.Namespace) -> int:
    """List server profiles from the config file.

    Reads only local TOML config -- no database calls.

    Returns:
        0 on success, 1 if the config file is missing or invalid.
    """
    try:
        config = _load_config(args)
    except ConfigError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1
    if config is None:
        console.print(f"[red]Error: {CONFIG_FILE_NAME} not found[/red]")
        return 1

    try:
        current = get_active_profile_name(env_prefix=args.env_prefix)
    except ConfigError:
        current = None

    table = Table(title="Server Profiles", show_header=True, header_style="bold")
    table.add_column("", width=2)
    table.add_column("Profile")
    table.add_column("Data directory")
    table.add_column("Description")

    for name, profile in config.profiles.items():
        marker = "[bold green]*[/bold green]" if name == current else " "
        name_style = "bold cyan" if name == current else ""
        table.add_row(
            marker,
            f"[{name_style}]{name}[/{name_style}]" if name_style else name,
            profile.data_dir,
            profile.description or "",
        )

    console.print(table)

    if current:
        console.print("\n[bold green]*[/bold green] = current profile")

    return 0


# ============================================================================
# Main entry point
# ============================================================================


def main() -> int:
    """Main CLI entry point.

    Parses command line arguments and dispatches to appropriate handler.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    parser = argparse.ArgumentParser(
        prog="clickhouse-dump",
        description="Partition-level backup and restore for ClickHouse",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--config",
        default=None,
        help=f"Path to config file (default: ./{CONFIG_FILE_NAME})",
    )
    parser.add_argument("--profile", default=None, help="Server profile from the config file")
    parser.add_argument(
        "--env-prefix",
        default="",
        help=(
            "Prefix for environment variable lookup "
            "(e.g., --env-prefix APP_ reads APP_CLICKHOUSE_DUMP_PROFILE)"
        ),
    )
    parser.add_argument("-H", "--host", default=None, help="Server hostname (default: 127.0.0.1)")
    parser.add_argument("-p", "--port", type=int, default=None, help="Server native port (default: 9000)")
    parser.add_argument("-d", "--debug", action="store_true", help="Show debug info")
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Stop the run after this many seconds",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # backup command
    p_backup = subparsers.add_parser(
        "backup",
        help="Freeze partitions and copy them with their metadata",
    )
    p_backup.add_argument("--out", required=True, help="Destination directory")
    p_backup.add_argument(
        "--in",
        dest="input",
        default=None,
        help="Server data directory (default: profile data_dir, /var/lib/clickhouse)",
    )
    p_backup.add_argument("--db", default=None, help="Database name (default: all databases)")
    p_backup.add_argument(
        "--no-freeze",
        action="store_true",
        help="Do not freeze, only show partitions",
    )
    p_backup.add_argument(
        "--no-cleanup",
        action="store_true",
        help="Do not delete frozen partition hard links after backup",
    )
    p_backup.add_argument("--workers", type=int, default=None, help="Concurrent freezes/copies")
    p_backup.set_defaults(func=cmd_backup)

    # restore command
    p_restore = subparsers.add_parser(
        "restore",
        help="Replay metadata and attach partitions from a backup",
    )
    p_restore.add_argument("--in", dest="input", required=True, help="Backup directory")
    p_restore.add_argument("--db", default=None, help="Database to restore")
    p_restore.add_argument(
        "--target-db",
        default=None,
        help="Database to restore into (default: same as --db)",
    )
    p_restore.add_argument(
        "--out",
        default=None,
        help="Server data directory (default: profile data_dir, /var/lib/clickhouse)",
    )
    p_restore.add_argument(
        "--dry-run",
        action="store_true",
        help="Show statements without executing them or copying files",
    )
    p_restore.add_argument("--workers", type=int, default=None, help="Tables attached concurrently")
    p_restore.set_defaults(func=cmd_restore)

    # validate command
    p_validate = subparsers.add_parser(
        "validate",
        help="Check a backup tree offline",
    )
    p_validate.add_argument("backup_path", help="Backup directory")
    p_validate.add_argument("--db", default=None, help="Only check this database")
    p_validate.set_defaults(func=cmd_validate)

    # profiles command
    p_profiles = subparsers.add_parser(
        "profiles",
        help="List available profiles",
    )
    p_profiles.set_defaults(func=cmd_profiles)

    args = parser.parse_args()
    _configure_logging(args.debug)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
