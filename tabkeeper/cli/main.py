#!/usr/bin/env python3
"""
Command-line interface for tab-keeper.

Saves, restores and organizes tab sessions. Commands that touch the live
environment take --environment, a JSON layout file that is loaded into an
InMemoryEnvironment and written back after the command.
"""

from __future__ import annotations

import asyncio
import logging
import traceback
from collections.abc import Coroutine
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, TypeGuard

import attrs
import typer

from tabkeeper.cli.logger import CLILogger
from tabkeeper.config import settings
from tabkeeper.environment.memory import InMemoryEnvironment
from tabkeeper.exceptions import OperationFailedError, TabKeeperError
from tabkeeper.repositories.sessions import SessionStore
from tabkeeper.repositories.undo import UndoHistoryRepository
from tabkeeper.schemas.operations import ExportFormat
from tabkeeper.schemas.snapshot import AUTO_SAVE_PREFIX, RECOVERY_PREFIX, Snapshot
from tabkeeper.services.background import AutoSaveScheduler, BackgroundSaver
from tabkeeper.services.capture import CaptureService
from tabkeeper.services.organize import OrganizeService
from tabkeeper.services.restore import GroupingOptions, SessionRestoreService
from tabkeeper.services.retention import RetentionService
from tabkeeper.services.save import SessionSaveService
from tabkeeper.services.transfer import TransferService
from tabkeeper.services.undo import UndoService
from tabkeeper.storage.local import LocalJsonBackend
from tabkeeper.types import WindowId

app = typer.Typer(
    name='tabkeeper',
    help='Save, restore and organize tab sessions',
    add_completion=False,
)

# Prefixes of system-generated sessions, by CLI name
SYSTEM_PREFIXES: dict[str, str] = {'recovery': RECOVERY_PREFIX, 'auto-save': AUTO_SAVE_PREFIX}


def _is_export_format(value: str) -> TypeGuard[ExportFormat]:
    """Type guard for valid export formats."""
    return value in ('json', 'zst')


def _validate_export_format(value: str | None) -> ExportFormat | None:
    """Validate and narrow the --format option."""
    if value is None:
        return None
    if _is_export_format(value):
        return value
    raise typer.BadParameter("Must be 'json' or 'zst'")


def _validate_kind(value: str) -> str:
    if value not in SYSTEM_PREFIXES:
        raise typer.BadParameter(f'Must be one of: {", ".join(SYSTEM_PREFIXES)}')
    return value


ENVIRONMENT_OPTION = typer.Option(
    ..., '--environment', '-e', help='JSON layout of the live environment (created if missing)'
)
VERBOSE_OPTION = typer.Option(False, '--verbose', '-v', help='Verbose output')


# ==============================================================================
# Wiring
# ==============================================================================


@attrs.define(frozen=True)
class CliContext:
    """Services wired for one CLI invocation."""

    data_dir: Path
    environment: InMemoryEnvironment
    environment_path: Path | None
    store: SessionStore
    history: UndoHistoryRepository

    @classmethod
    def open(cls, data_dir: Path | None, environment_path: Path | None = None) -> CliContext:
        data_dir = data_dir or settings.DATA_DIR
        backend = LocalJsonBackend(data_dir, settings.STORAGE_NAMESPACE)
        environment = InMemoryEnvironment.load(environment_path) if environment_path else InMemoryEnvironment()
        return cls(
            data_dir=data_dir,
            environment=environment,
            environment_path=environment_path,
            store=SessionStore(backend),
            history=UndoHistoryRepository(backend),
        )

    def persist_environment(self) -> None:
        if self.environment_path is not None:
            self.environment.dump(self.environment_path)

    @property
    def capture(self) -> CaptureService:
        return CaptureService(self.environment)

    @property
    def saver(self) -> SessionSaveService:
        return SessionSaveService(self.capture, self.store)

    @property
    def retention(self) -> RetentionService:
        return RetentionService(self.store)

    @property
    def undo(self) -> UndoService:
        return UndoService(self.environment, self.capture, self.history)

    @property
    def background(self) -> BackgroundSaver:
        return BackgroundSaver(self.environment, self.saver, self.retention)


def _run(operation: Coroutine[Any, Any, None], verbose: bool = False) -> None:
    """Run a command's async implementation, mapping failures to exit code 1."""
    try:
        asyncio.run(operation)
    except (TabKeeperError, ValueError, FileNotFoundError) as e:
        typer.secho(f'Error: {e}', fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    except typer.Exit:
        raise
    except Exception as e:
        typer.secho(f'Error: unexpected failure: {e}', fg=typer.colors.RED, err=True)
        if verbose:
            traceback.print_exc()
        raise typer.Exit(1)


def _data_dir(ctx: typer.Context) -> Path | None:
    return ctx.obj.get('data_dir') if ctx.obj else None


def _format_timestamp(timestamp: int) -> str:
    return datetime.fromtimestamp(timestamp / 1000).strftime('%Y-%m-%d %H:%M:%S')


async def _pick_window(environment: InMemoryEnvironment, window_id: WindowId | None) -> WindowId:
    """Explicit window, else the focused one, else the first."""
    if window_id is not None:
        return window_id
    windows = await environment.get_windows()
    if not windows:
        raise OperationFailedError('No open windows')
    focused = next((w for w in windows if w.focused), windows[0])
    return focused.id


@app.callback()
def configure(
    ctx: typer.Context,
    data_dir: Path | None = typer.Option(None, '--data-dir', help='Directory holding stored sessions'),
    debug: bool = typer.Option(False, '--debug', help='Show internal log messages'),
) -> None:
    """Save, restore and organize tab sessions."""
    ctx.obj = {'data_dir': data_dir}
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format='%(levelname)s %(name)s: %(message)s',
    )


# ==============================================================================
# Stored sessions
# ==============================================================================


@app.command('list')
def list_sessions(ctx: typer.Context) -> None:
    """List stored sessions, newest first."""
    _run(_list_async(_data_dir(ctx)))


async def _list_async(data_dir: Path | None) -> None:
    cli = CliContext.open(data_dir)
    snapshots = await cli.store.list()
    if not snapshots:
        typer.echo('No saved sessions')
        return
    for snapshot in snapshots:
        typer.echo(
            f'{snapshot.id}  {_format_timestamp(snapshot.timestamp)}  '
            f'{snapshot.tab_count:>3} tabs  {len(snapshot.groups):>2} groups  {snapshot.name}'
        )


@app.command()
def show(ctx: typer.Context, session_id: str = typer.Argument(..., help='Session ID')) -> None:
    """Show the windows, tabs and groups of a stored session."""
    _run(_show_async(_data_dir(ctx), session_id))


async def _show_async(data_dir: Path | None, session_id: str) -> None:
    cli = CliContext.open(data_dir)
    snapshot = await cli.store.get(session_id)
    _print_snapshot(snapshot)


def _print_snapshot(snapshot: Snapshot) -> None:
    typer.secho(snapshot.name, bold=True)
    typer.echo(f'  ID: {snapshot.id}')
    typer.echo(f'  Saved: {_format_timestamp(snapshot.timestamp)}')
    for index, window in enumerate(snapshot.windows, start=1):
        typer.echo()
        typer.secho(f'Window {index}:', bold=True)
        for tab in window.tabs:
            flags = ''.join(['*' if tab.active else ' ', 'P' if tab.pinned else ' '])
            typer.echo(f'  {flags} {tab.title}  <{tab.url}>')
    if snapshot.groups:
        typer.echo()
        typer.secho('Groups:', bold=True)
        for group in snapshot.groups:
            collapsed = ' (collapsed)' if group.collapsed else ''
            typer.echo(f'  [{group.color}] {group.title}{collapsed}: {len(group.tab_urls)} tabs')


@app.command()
def save(
    ctx: typer.Context,
    name: str = typer.Argument(..., help='Session name'),
    environment: Path = ENVIRONMENT_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Capture the environment and store it as a named session."""
    _run(_save_async(_data_dir(ctx), environment, name, verbose), verbose)


async def _save_async(data_dir: Path | None, environment: Path, name: str, verbose: bool) -> None:
    cli = CliContext.open(data_dir, environment)
    snapshot = await cli.saver.save(name, logger=CLILogger(verbose=verbose))
    typer.secho('✓ Session saved!', fg=typer.colors.GREEN)
    typer.echo(f'  ID: {snapshot.id}')
    typer.echo(f'  Tabs: {snapshot.tab_count} in {len(snapshot.windows)} windows')
    typer.echo(f'  Groups: {len(snapshot.groups)}')


@app.command()
def restore(
    ctx: typer.Context,
    session_id: str = typer.Argument(..., help='Session ID'),
    environment: Path = ENVIRONMENT_OPTION,
    apply_preferences: bool = typer.Option(
        False, '--apply-preferences', help='Apply SKIP_SINGLE_TAB_GROUPS and AUTO_COLLAPSE_GROUPS'
    ),
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Restore a stored session into the environment."""
    _run(_restore_async(_data_dir(ctx), environment, session_id, apply_preferences, verbose), verbose)


async def _restore_async(
    data_dir: Path | None,
    environment: Path,
    session_id: str,
    apply_preferences: bool,
    verbose: bool,
) -> None:
    cli = CliContext.open(data_dir, environment)
    options = GroupingOptions.from_settings() if apply_preferences else GroupingOptions()
    service = SessionRestoreService(cli.environment, cli.store)
    result = await service.restore(session_id, options=options, logger=CLILogger(verbose=verbose))
    cli.persist_environment()

    if result.windows_restored == 0:
        for report in result.windows:
            typer.secho(f'  Window {report.window_index + 1}: {report.skipped_reason}', fg=typer.colors.YELLOW)
        raise OperationFailedError(f'Nothing was restored: all {len(result.windows)} windows failed')

    typer.secho('✓ Session restored!', fg=typer.colors.GREEN)
    typer.echo(f'  Windows: {result.windows_restored}/{len(result.windows)}')
    typer.echo(f'  Groups: {result.groups_restored}')
    skipped = result.groups_skipped
    if skipped:
        typer.secho(f'  Skipped groups: {", ".join(skipped)}', fg=typer.colors.YELLOW)
    for report in result.windows:
        if report.skipped_reason:
            typer.secho(f'  Window {report.window_index + 1}: {report.skipped_reason}', fg=typer.colors.YELLOW)


@app.command()
def rename(
    ctx: typer.Context,
    session_id: str = typer.Argument(..., help='Session ID'),
    name: str = typer.Argument(..., help='New name'),
) -> None:
    """Rename a stored session."""
    _run(_rename_async(_data_dir(ctx), session_id, name))


async def _rename_async(data_dir: Path | None, session_id: str, name: str) -> None:
    cli = CliContext.open(data_dir)
    snapshot = await cli.store.rename(session_id, name)
    typer.secho(f"✓ Renamed to '{snapshot.name}'", fg=typer.colors.GREEN)


@app.command()
def delete(ctx: typer.Context, session_id: str = typer.Argument(..., help='Session ID')) -> None:
    """Delete a stored session."""
    _run(_delete_async(_data_dir(ctx), session_id))


async def _delete_async(data_dir: Path | None, session_id: str) -> None:
    cli = CliContext.open(data_dir)
    await cli.store.remove(session_id)
    typer.secho(f'✓ Deleted {session_id}', fg=typer.colors.GREEN)


@app.command()
def prune(
    ctx: typer.Context,
    kind: str = typer.Argument(..., help='recovery or auto-save', callback=_validate_kind),
    keep: int | None = typer.Option(None, '--keep', '-k', min=0, help='How many to keep (default from settings)'),
) -> None:
    """Keep only the newest recovery or auto-save sessions."""
    _run(_prune_async(_data_dir(ctx), kind, keep))


async def _prune_async(data_dir: Path | None, kind: str, keep: int | None) -> None:
    if keep is None:
        keep = settings.MAX_RECOVERY_SESSIONS if kind == 'recovery' else settings.MAX_AUTO_SAVE_SESSIONS
    cli = CliContext.open(data_dir)
    removed = await cli.retention.prune(SYSTEM_PREFIXES[kind], keep)
    typer.echo(f'Removed {removed} {kind} sessions')


@app.command()
def clean(
    ctx: typer.Context,
    days: int = typer.Option(7, '--days', '-d', min=0, help='Remove recovery sessions older than this'),
) -> None:
    """Remove recovery sessions older than a number of days."""
    _run(_clean_async(_data_dir(ctx), days))


async def _clean_async(data_dir: Path | None, days: int) -> None:
    cli = CliContext.open(data_dir)
    removed = await cli.retention.prune_older_than(RECOVERY_PREFIX, timedelta(days=days))
    typer.echo(f'Removed {removed} recovery sessions older than {days} days')


@app.command()
def usage(ctx: typer.Context) -> None:
    """Show storage usage against the quota."""
    _run(_usage_async(_data_dir(ctx)))


async def _usage_async(data_dir: Path | None) -> None:
    cli = CliContext.open(data_dir)
    stats = await cli.store.usage()
    color = typer.colors.RED if stats.near_quota else None
    typer.secho(
        f'{stats.bytes_in_use:,} / {stats.quota_bytes:,} bytes ({stats.percent_used:.1%})',
        fg=color,
    )
    typer.echo(f'  Sessions: {stats.session_count}')
    typer.echo(f'  Available: {stats.available_bytes:,} bytes')


# ==============================================================================
# Transfer
# ==============================================================================


@app.command('export')
def export_sessions(
    ctx: typer.Context,
    output: Path | None = typer.Argument(None, help='Output file (.json or .json.zst)'),
    format: str | None = typer.Option(None, '--format', '-f', help='Export format: json or zst'),
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Export all stored sessions to a file."""
    _run(_export_async(_data_dir(ctx), output, _validate_export_format(format), verbose), verbose)


async def _export_async(data_dir: Path | None, output: Path | None, format: ExportFormat | None, verbose: bool) -> None:
    cli = CliContext.open(data_dir)
    result = await TransferService(cli.store).export_sessions(output, format, logger=CLILogger(verbose=verbose))
    typer.secho('✓ Sessions exported!', fg=typer.colors.GREEN)
    typer.echo(f'  Path: {result.file_path}')
    typer.echo(f'  Format: {result.format}')
    typer.echo(f'  Sessions: {result.session_count}')
    typer.echo(f'  Size: {result.size_bytes:,} bytes')


@app.command('import')
def import_sessions(
    ctx: typer.Context,
    source: Path = typer.Argument(..., help='Export file to merge'),
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Merge sessions from an export file."""
    _run(_import_async(_data_dir(ctx), source, verbose), verbose)


async def _import_async(data_dir: Path | None, source: Path, verbose: bool) -> None:
    cli = CliContext.open(data_dir)
    result = await TransferService(cli.store).import_sessions(source, logger=CLILogger(verbose=verbose))
    typer.secho(f'✓ Imported {result.imported_count} sessions ({result.total_count} total)', fg=typer.colors.GREEN)


# ==============================================================================
# Organize and undo
# ==============================================================================


@app.command('group-by-domain')
def group_by_domain(
    ctx: typer.Context,
    environment: Path = ENVIRONMENT_OPTION,
    window: int | None = typer.Option(None, '--window', '-w', help='Window ID (default: focused window)'),
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Group a window's tabs by domain (undoable)."""
    _run(_group_by_domain_async(_data_dir(ctx), environment, window, verbose), verbose)


async def _group_by_domain_async(data_dir: Path | None, environment: Path, window: int | None, verbose: bool) -> None:
    cli = CliContext.open(data_dir, environment)
    window_id = await _pick_window(cli.environment, window)
    created = await OrganizeService(cli.environment, cli.undo).group_by_domain(
        window_id, logger=CLILogger(verbose=verbose)
    )
    cli.persist_environment()
    typer.secho(f'✓ Created {len(created)} groups', fg=typer.colors.GREEN)
    for domain, count in created.items():
        typer.echo(f'  {domain}: {count} tabs')


@app.command()
def ungroup(
    ctx: typer.Context,
    environment: Path = ENVIRONMENT_OPTION,
    window: int | None = typer.Option(None, '--window', '-w', help='Window ID (default: focused window)'),
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Ungroup every tab in a window (undoable)."""
    _run(_ungroup_async(_data_dir(ctx), environment, window, verbose), verbose)


async def _ungroup_async(data_dir: Path | None, environment: Path, window: int | None, verbose: bool) -> None:
    cli = CliContext.open(data_dir, environment)
    window_id = await _pick_window(cli.environment, window)
    count = await OrganizeService(cli.environment, cli.undo).ungroup_all(window_id, logger=CLILogger(verbose=verbose))
    cli.persist_environment()
    typer.secho(f'✓ Ungrouped {count} tabs', fg=typer.colors.GREEN)


@app.command()
def undo(
    ctx: typer.Context,
    environment: Path = ENVIRONMENT_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Undo the last grouping action."""
    _run(_undo_async(_data_dir(ctx), environment, verbose), verbose)


async def _undo_async(data_dir: Path | None, environment: Path, verbose: bool) -> None:
    cli = CliContext.open(data_dir, environment)
    service = cli.undo
    if not await service.undo_last(logger=CLILogger(verbose=verbose)):
        typer.secho('Nothing to undo', fg=typer.colors.YELLOW)
        return
    cli.persist_environment()
    result = service.last_result
    assert result is not None
    typer.secho(f"✓ Undid '{result.action_type}'", fg=typer.colors.GREEN)
    typer.echo(f'  Groups recreated: {result.groups_recreated}')
    if result.windows_missing:
        typer.secho(f'  Windows no longer open: {result.windows_missing}', fg=typer.colors.YELLOW)


@app.command()
def history(
    ctx: typer.Context,
    clear: bool = typer.Option(False, '--clear', help='Discard the undo history'),
) -> None:
    """Show (or clear) the undo history."""
    _run(_history_async(_data_dir(ctx), clear))


async def _history_async(data_dir: Path | None, clear: bool) -> None:
    cli = CliContext.open(data_dir)
    service = cli.undo
    if clear:
        await service.clear()
        typer.echo('Undo history cleared')
        return
    entries = await service.history()
    if not entries:
        typer.echo('Undo history is empty')
        return
    for entry in entries:
        groups = sum(len(w.groups) for w in entry.previous_state.windows)
        typer.echo(f'{_format_timestamp(entry.timestamp)}  {entry.action_type}  ({groups} groups before)')


# ==============================================================================
# Background saves
# ==============================================================================


@app.command()
def autosave(
    ctx: typer.Context,
    environment: Path = ENVIRONMENT_OPTION,
    recovery: bool = typer.Option(False, '--recovery', help='Save a recovery snapshot (as after a window closes)'),
    watch: bool = typer.Option(False, '--watch', help='Keep running and save every AUTO_SAVE_INTERVAL_MINUTES'),
) -> None:
    """Run one background save (or keep saving with --watch)."""
    try:
        _run(_autosave_async(_data_dir(ctx), environment, recovery, watch))
    except KeyboardInterrupt:
        typer.echo('Stopped')


async def _autosave_async(data_dir: Path | None, environment: Path, recovery: bool, watch: bool) -> None:
    cli = CliContext.open(data_dir, environment)
    saver = cli.background

    if watch:
        scheduler = AutoSaveScheduler(saver)
        if not scheduler.enabled:
            typer.secho('Auto-save is disabled (AUTO_SAVE_ENABLED=false)', fg=typer.colors.YELLOW)
            return
        scheduler.start()
        typer.echo(f'Auto-saving every {settings.AUTO_SAVE_INTERVAL_MINUTES} minutes, Ctrl-C to stop')
        try:
            await asyncio.Event().wait()
        finally:
            await scheduler.stop()
        return

    snapshot = await (saver.on_window_removed() if recovery else saver.auto_save())
    if snapshot is None:
        typer.echo('Nothing saved')
    else:
        typer.secho(f"✓ Saved '{snapshot.name}'", fg=typer.colors.GREEN)


def main() -> None:
    """Entry point for CLI."""
    app()


if __name__ == '__main__':
    main()
