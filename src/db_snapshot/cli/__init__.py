"""Operator CLI for backups, SQL exports and restores.

Usage:
    DB_PROFILE=prod db-snapshot connect
    db-snapshot status
    db-snapshot profiles
    db-snapshot backup --output backups/today.json
    db-snapshot export-sql
    db-snapshot restore backups/full-backup-2026-01-15T02-00-00-123Z.json --mode replace
    db-snapshot validate backups/full-backup-2026-01-15T02-00-00-123Z.json
    db-snapshot serve --port 8000

Commands:
    connect     - Check connectivity and registry tables, lock the profile
    status      - Show the locked profile and snapshot settings
    profiles    - List available profiles
    backup      - Capture a JSON snapshot (publishes and emails when configured)
    export-sql  - Write a full SQL dump (schema + data)
    restore     - Restore a JSON snapshot into the current profile
    validate    - Check a snapshot file without touching any database
    serve       - Run the HTTP service
"""

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path

from rich.console import Console
from rich.table import Table

from db_snapshot.backup.jobs import EngineContext, run_backup, run_export, run_restore
from db_snapshot.backup.restore import RestoreReport, RestoreRequest
from db_snapshot.backup.snapshot import validate_snapshot_file
from db_snapshot.config.loader import load_db_config
from db_snapshot.errors import AuthError, InvalidSnapshotError
from db_snapshot.factory import (
    ProfileNotFoundError,
    build_context,
    build_registry,
    connect,
    read_profile_lock,
)
from db_snapshot.log import setup_logging
from db_snapshot.registry import default_registry

console = Console()

DEFAULT_OUTPUT_DIR = Path("backups")

_SETUP_ERRORS = (ProfileNotFoundError, FileNotFoundError, ValueError)


def _output_path(requested: str | None, file_name: str) -> Path:
    path = Path(requested) if requested else DEFAULT_OUTPUT_DIR / file_name
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


async def _open_context(args: argparse.Namespace) -> EngineContext | None:
    """Build the engine for the active profile, printing setup errors."""
    try:
        return await build_context(env_prefix=args.env_prefix)
    except _SETUP_ERRORS as e:
        console.print(f"[bold red]x[/bold red] {e}")
        return None


def _print_errors(errors: list[str], title: str = "Errors") -> None:
    console.print(f"\n[bold red]{title} ({len(errors)}):[/bold red]")
    for error in errors:
        console.print(f"  - {error}", markup=False, highlight=False)


# ============================================================================
# Async command implementations
# ============================================================================


async def _async_connect(args: argparse.Namespace) -> int:
    """Check the active profile and lock it in `.db-profile`; exit 1 on failure."""
    locked_before = read_profile_lock()

    console.print("Checking database and registry tables...", style="dim")

    result = await connect(env_prefix=args.env_prefix)

    if not result.success:
        console.print()
        console.print(f"[bold red]x[/bold red] {result.error}")
        return 1

    console.print()
    console.print(
        f"[bold green]v[/bold green] [bold cyan]{result.profile_name}[/bold cyan] is reachable"
    )
    console.print(f"  Registry tables present: [green]{len(result.existing_tables)}[/green]")
    if result.missing_tables:
        console.print(
            f"  Missing tables (captured empty): [yellow]"
            f"{', '.join(result.missing_tables)}[/yellow]"
        )

    if locked_before and locked_before != result.profile_name:
        console.print(f"\n[dim]Lock moved from[/dim] [bold]{locked_before}[/bold] [dim]to the new profile[/dim]")

    return 0


async def _async_backup(args: argparse.Namespace) -> int:
    """Async implementation for backup command.

    Returns:
        0 on a clean backup, 1 on failure or when errors were reported.
    """
    ctx = await _open_context(args)
    if ctx is None:
        return 1

    try:
        if args.no_publish:
            ctx.publisher = None
            ctx.notifier = None
        result = await run_backup(ctx, actor="cli")
    except Exception as e:
        console.print(f"[bold red]x[/bold red] Backup failed: {e}")
        return 1
    finally:
        await ctx.close()

    path = _output_path(args.output, result.file_name)
    path.write_bytes(json.dumps(result.backup_data, indent=2, ensure_ascii=False, default=str).encode("utf-8"))

    table = Table(title="Backup", show_header=True, header_style="bold")
    table.add_column("Table", style="dim")
    table.add_column("Records", justify="right")
    for name, count in result.record_counts.items():
        table.add_row(name, str(count))
    console.print(table)

    console.print(
        f"\n[bold green]v[/bold green] {result.metadata.total_records} records "
        f"in {result.metadata.total_tables} tables written to [cyan]{path}[/cyan]"
    )
    if result.download_url:
        console.print(f"  Download link: {result.download_url}", highlight=False)

    if result.errors:
        _print_errors(result.errors)
        return 1
    return 0


async def _async_export_sql(args: argparse.Namespace) -> int:
    """Async implementation for export-sql command.

    Returns:
        0 on a clean export, 1 on failure or when errors were reported.
    """
    ctx = await _open_context(args)
    if ctx is None:
        return 1

    try:
        export = await run_export(ctx)
    except Exception as e:
        console.print(f"[bold red]x[/bold red] SQL export failed: {e}")
        return 1
    finally:
        await ctx.close()

    path = _output_path(args.output, export.file_name)
    path.write_text(export.content, encoding="utf-8")
    console.print(f"[bold green]v[/bold green] SQL export written to [cyan]{path}[/cyan]")

    if export.errors:
        _print_errors(export.errors)
        return 1
    return 0


def _print_restore_report(report: RestoreReport) -> None:
    table = Table(title="Restore", show_header=True, header_style="bold")
    table.add_column("Table", style="dim")
    table.add_column("Deleted", justify="right")
    table.add_column("Inserted", justify="right", style="green")
    table.add_column("Errors", justify="right")

    for name, result in report.details.items():
        errors = str(len(result.errors))
        table.add_row(
            name,
            str(result.deleted),
            str(result.inserted),
            f"[red]{errors}[/red]" if result.errors else errors,
        )
    console.print(table)

    summary = report.summary
    console.print(
        f"\n{summary.total_records} records restored in {summary.total_tables} tables, "
        f"{summary.total_errors} errors, {summary.delete_errors} delete errors"
    )
    if report.skipped_tables:
        console.print(f"[yellow]Skipped unknown tables: {', '.join(report.skipped_tables)}[/yellow]")
    if report.delete_errors:
        _print_errors(report.delete_errors, "Delete errors")
    for name, result in report.details.items():
        if result.errors:
            _print_errors(result.errors, f"{name} errors")


async def _async_restore(args: argparse.Namespace) -> int:
    """Async implementation for restore command.

    The CLI is an operator path: it uses the emergency override, guarded
    by the configured confirmation phrase.

    Returns:
        0 on a clean restore, 1 on failure or when errors were reported.
    """
    path = Path(args.backup_path)
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        console.print(f"[bold red]x[/bold red] Cannot read {path}: {e}")
        return 1

    ctx = await _open_context(args)
    if ctx is None:
        return 1

    try:
        phrase = ctx.settings.emergency_phrase
        if args.yes:
            confirm_text = phrase
        else:
            console.print(f"[bold yellow]![/bold yellow] This will restore data from: {path}")
            console.print(f"  Mode: {args.mode}")
            if args.mode == "replace":
                console.print("  [bold red]WARNING: every deletable table will be emptied first![/bold red]")
            confirm_text = console.input(f"Type '{phrase}' to continue: ").strip()
            if confirm_text != phrase:
                console.print("Cancelled.")
                return 0

        request = RestoreRequest(
            backup_data=payload,
            mode=args.mode,
            emergency_restore=True,
            confirm_text=confirm_text,
        )
        report = await run_restore(ctx, request)
    except (AuthError, InvalidSnapshotError) as e:
        console.print(f"[bold red]x[/bold red] {e}")
        return 1
    finally:
        await ctx.close()

    _print_restore_report(report)
    if report.summary.total_errors or report.summary.delete_errors:
        return 1
    return 0


# ============================================================================
# Sync command wrappers (status, profiles and validate read local files only)
# ============================================================================


def cmd_connect(args: argparse.Namespace) -> int:
    """Check connectivity and lock the profile."""
    return asyncio.run(_async_connect(args))


def cmd_backup(args: argparse.Namespace) -> int:
    return asyncio.run(_async_backup(args))


def cmd_export_sql(args: argparse.Namespace) -> int:
    return asyncio.run(_async_export_sql(args))


def cmd_restore(args: argparse.Namespace) -> int:
    return asyncio.run(_async_restore(args))


def cmd_status(args: argparse.Namespace) -> int:
    """Print the locked profile and its settings from local files only."""
    profile = read_profile_lock()

    if not profile:
        console.print("[yellow]No connected profile.[/yellow]")
        console.print(
            f"[dim]Run:[/dim] [cyan]{args.env_prefix}DB_PROFILE=<name> db-snapshot connect[/cyan]"
        )
        return 0

    table = Table(title="Snapshot Target", show_header=False)
    table.add_column("Setting", style="dim")
    table.add_column("Value")

    table.add_row("Current profile", f"[bold cyan]{profile}[/bold cyan]")
    table.add_row("Profile source", ".db-profile (connected)")

    try:
        config = load_db_config()
        if profile in config.profiles:
            locked = config.profiles[profile]
            table.add_row("Backend", locked.provider)
            if locked.description:
                table.add_row("About", locked.description)
        table.add_row("Registry tables", str(len(build_registry(config))))
        table.add_row("Bucket", config.snapshot.bucket)
    except FileNotFoundError:
        table.add_row("Config", "[yellow]missing db.toml[/yellow]")

    console.print(table)
    return 0


def cmd_profiles(args: argparse.Namespace) -> int:
    try:
        config = load_db_config()
    except FileNotFoundError as exc:
        console.print(f"[red]{exc}[/red]")
        return 1

    locked = read_profile_lock()

    table = Table(title="Database Profiles", show_header=True, header_style="bold")
    table.add_column("Locked", width=6)
    table.add_column("Name")
    table.add_column("Backend")
    table.add_column("About")

    for name, entry in config.profiles.items():
        is_locked = name == locked
        table.add_row(
            "[bold green]*[/bold green]" if is_locked else "",
            f"[bold cyan]{name}[/bold cyan]" if is_locked else name,
            entry.provider,
            entry.description or "",
        )

    console.print(table)

    if locked:
        console.print("\n[bold green]*[/bold green] = locked in .db-profile")

    return 0


def cmd_validate(args: argparse.Namespace) -> int:
    """Validate a snapshot file against the registry.

    Returns:
        0 if valid (warnings allowed), 1 otherwise.
    """
    try:
        registry = build_registry(load_db_config())
    except FileNotFoundError:
        registry = default_registry()

    report = validate_snapshot_file(args.backup_path, registry)
    console.print(f"Validating: [cyan]{args.backup_path}[/cyan]")

    if report.errors:
        _print_errors(report.errors)
    if report.warnings:
        console.print(f"\n[yellow]Warnings ({len(report.warnings)}):[/yellow]")
        for warning in report.warnings:
            console.print(f"  - {warning}", markup=False, highlight=False)

    if report.valid:
        suffix = " (with warnings)" if report.warnings else ""
        console.print(f"\n[bold green]v[/bold green] Snapshot is valid{suffix}")
        return 0

    console.print("\n[bold red]x[/bold red] Snapshot is invalid")
    return 1


def cmd_serve(args: argparse.Namespace) -> int:
    """Run the HTTP service with uvicorn."""
    import uvicorn

    from db_snapshot.api import create_app

    env_prefix = args.env_prefix

    async def context_factory() -> EngineContext:
        return await build_context(env_prefix=env_prefix)

    uvicorn.run(create_app(context_factory), host=args.host, port=args.port, log_config=None)
    return 0


# ============================================================================
# Main entry point
# ============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="db-snapshot",
        description="Full database backup, SQL export and restore",
    )

    parser.add_argument(
        "--env-prefix",
        default="",
        help=(
            "Prefix for environment variable lookup "
            "(e.g., --env-prefix APP_ reads APP_DB_PROFILE)"
        ),
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("LOG_LEVEL", "WARNING"),
        help="Logging level (default: LOG_LEVEL env var or WARNING)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    p_connect = subparsers.add_parser("connect", help="Check connectivity and lock the profile")
    p_connect.set_defaults(func=cmd_connect)

    p_status = subparsers.add_parser("status", help="Show the locked profile and snapshot settings")
    p_status.set_defaults(func=cmd_status)

    p_profiles = subparsers.add_parser("profiles", help="List available profiles")
    p_profiles.set_defaults(func=cmd_profiles)

    p_backup = subparsers.add_parser("backup", help="Capture a JSON snapshot")
    p_backup.add_argument(
        "--output", "-o",
        help="Output file path (default: backups/<file name>)",
    )
    p_backup.add_argument(
        "--no-publish",
        action="store_true",
        help="Skip the storage upload and the email report",
    )
    p_backup.set_defaults(func=cmd_backup)

    p_export = subparsers.add_parser("export-sql", help="Write a full SQL dump")
    p_export.add_argument(
        "--output", "-o",
        help="Output file path (default: backups/<file name>)",
    )
    p_export.set_defaults(func=cmd_export_sql)

    p_restore = subparsers.add_parser("restore", help="Restore a JSON snapshot")
    p_restore.add_argument("backup_path", help="Path to snapshot JSON file")
    p_restore.add_argument(
        "--mode", "-m",
        choices=["replace", "append"],
        default="replace",
        help="replace empties deletable tables first; append only inserts (default: replace)",
    )
    p_restore.add_argument(
        "--yes", "-y",
        action="store_true",
        help="Skip the confirmation prompt",
    )
    p_restore.set_defaults(func=cmd_restore)

    p_validate = subparsers.add_parser("validate", help="Validate a snapshot file")
    p_validate.add_argument("backup_path", help="Path to snapshot JSON file")
    p_validate.set_defaults(func=cmd_validate)

    p_serve = subparsers.add_parser("serve", help="Run the HTTP service")
    p_serve.add_argument("--host", default="127.0.0.1")
    p_serve.add_argument("--port", type=int, default=8000)
    p_serve.set_defaults(func=cmd_serve)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
