"""
Command-line interface for contact_sync.

Provides CLI commands for applying offline change batches, queueing and
sweeping pending changes, inspecting sync status, resolving conflicts and
pulling the server change feed.

Usage:
    # Show help
    contact-sync --help

    # Apply a batch of offline changes
    contact-sync push changes.json --user user-1

    # Queue changes for the background sweep, then sweep
    contact-sync queue changes.yaml --user user-1
    contact-sync sweep

    # Inspect and resolve conflicts
    contact-sync status --user user-1
    contact-sync resolve LOG_ID --user user-1 --strategy merge
"""

import json
import logging
import sys
from pathlib import Path
from typing import Any, Optional

import click
import yaml

from contact_sync import __version__
from contact_sync.cli.formatters import (
    show_changes,
    show_contact,
    show_status_report,
    show_sweep_results,
    show_sync_result,
)
from contact_sync.config.generator import save_config_file
from contact_sync.config.loader import DEFAULT_CONFIG_FILE, ConfigError
from contact_sync.config.settings import SyncSettings
from contact_sync.daemon import (
    DaemonAlreadyRunningError,
    DaemonError,
    PIDFileManager,
    SweepScheduler,
    parse_interval,
)
from contact_sync.storage import ContactStore, SyncDatabase, SyncLogStore
from contact_sync.sync.conflict import ResolutionStrategy
from contact_sync.sync.engine import SyncEngine
from contact_sync.sync.errors import SyncError
from contact_sync.utils.logging import cleanup_old_logs, get_logger, setup_logging
from contact_sync.utils.paths import resolve_config_dir

RESOLUTION_CHOICES = [strategy.value for strategy in ResolutionStrategy]


def get_config_dir(config_dir: Optional[str]) -> Path:
    """Get the configuration directory path."""
    return resolve_config_dir(config_dir)


def get_config_file(config_dir: Path, config_file: Optional[str]) -> Path:
    """Get the configuration file path."""
    if config_file:
        return Path(config_file).expanduser()
    return config_dir / DEFAULT_CONFIG_FILE


def read_changes_file(path: Path) -> list[Any]:
    """
    Read a list of changes from a JSON or YAML file.

    The file holds either a list of changes or an object with a
    "changes" list.

    Raises:
        click.ClickException: If the file is unreadable or malformed
    """
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise click.ClickException(f"Could not read changes from {path}: {e}") from e

    if isinstance(data, dict):
        data = data.get("changes")
    if not isinstance(data, list):
        raise click.ClickException(
            f"{path} must contain a list of changes or an object with a "
            "'changes' list"
        )
    return data


def open_engine(ctx: click.Context) -> SyncEngine:
    """
    Open the database and build a SyncEngine from the loaded settings.

    The database is closed when the command finishes.
    """
    settings: SyncSettings = ctx.obj["settings"]

    if isinstance(settings.database_path, Path):
        settings.database_path.parent.mkdir(parents=True, exist_ok=True)

    database = SyncDatabase(str(settings.database_path))
    database.initialize()
    ctx.call_on_close(database.close)

    return SyncEngine.from_settings(
        ContactStore(database), SyncLogStore(database), settings
    )


def fail(message: str) -> None:
    """Print an error in red and exit with status 1."""
    get_logger(__name__).error(message)
    click.echo(click.style(f"Error: {message}", fg="red"), err=True)
    sys.exit(1)


def echo_json(data: Any) -> None:
    """Print data as indented JSON."""
    click.echo(json.dumps(data, indent=2, default=str))


@click.group()
@click.version_option(version=__version__, prog_name="contact-sync")
@click.option(
    "--verbose", "-v", is_flag=True, help="Enable verbose output with detailed logging."
)
@click.option(
    "--config-dir",
    "-c",
    type=click.Path(exists=False, file_okay=False, dir_okay=True),
    envvar="CONTACT_SYNC_CONFIG_DIR",
    help="Configuration directory path (default: ~/.contact-sync).",
)
@click.option(
    "--config-file",
    "-f",
    type=click.Path(exists=False, file_okay=True, dir_okay=False),
    envvar="CONTACT_SYNC_CONFIG_FILE",
    help="Configuration file path (default: <config-dir>/config.yaml).",
)
@click.option(
    "--db",
    "database_path",
    type=click.Path(dir_okay=False),
    help="SQLite database path, overriding the configured database_path.",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    config_dir: Optional[str],
    config_file: Optional[str],
    database_path: Optional[str],
) -> None:
    """
    Offline contact sync and conflict resolution.

    Applies batches of offline contact edits, tracks every change in a
    sync log, and resolves conflicting edits.
    """
    ctx.ensure_object(dict)

    resolved_config_dir = get_config_dir(config_dir)
    resolved_config_file = get_config_file(resolved_config_dir, config_file)
    ctx.obj["config_dir"] = resolved_config_dir
    ctx.obj["config_file"] = resolved_config_file

    try:
        settings = SyncSettings.load(resolved_config_dir, resolved_config_file)
    except ConfigError as e:
        # Fall back to defaults so the CLI keeps working without a valid file
        click.echo(
            click.style(f"Warning: Configuration error: {e}", fg="yellow"), err=True
        )
        settings = SyncSettings.from_dict({}, resolved_config_dir)

    if database_path:
        settings = settings.with_overrides(
            database_path=(
                ":memory:"
                if database_path == ":memory:"
                else Path(database_path).expanduser().resolve()
            )
        )

    effective_verbose = verbose or settings.verbose
    settings = settings.with_overrides(verbose=effective_verbose)
    ctx.obj["settings"] = settings
    ctx.obj["verbose"] = effective_verbose

    log_dir = settings.log_dir or settings.config_dir / "logs"
    setup_logging(
        level=logging.DEBUG if settings.debug else None,
        verbose=effective_verbose,
        log_dir=log_dir,
    )
    if settings.log_retention_count > 0:
        cleanup_old_logs(log_dir=log_dir, keep_count=settings.log_retention_count)


# =============================================================================
# Batch and Queue Commands
# =============================================================================


@cli.command("push")
@click.argument("changes_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--user", "-u", "user_id", required=True, help="User submitting changes.")
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON.")
@click.pass_context
def push_command(
    ctx: click.Context, changes_file: str, user_id: str, as_json: bool
) -> None:
    """
    Apply a batch of offline changes immediately.

    CHANGES_FILE is a JSON or YAML file holding a list of changes, each
    with an operation (CREATE, UPDATE, DELETE), a contact and/or a
    contactId.

    Exits with status 1 if any change failed.

    Examples:

        contact-sync push changes.json --user user-1
    """
    changes = read_changes_file(Path(changes_file))
    engine = open_engine(ctx)

    result = engine.sync_changes(user_id, changes)

    if as_json:
        echo_json(result.to_dict())
    else:
        show_sync_result(result)

    if not result.success:
        sys.exit(1)


@cli.command("queue")
@click.argument("changes_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--user", "-u", "user_id", required=True, help="User submitting changes.")
@click.pass_context
def queue_command(ctx: click.Context, changes_file: str, user_id: str) -> None:
    """
    Queue offline changes for the background sweep.

    The whole file is validated first; nothing is queued if any change
    is invalid.

    Examples:

        contact-sync queue changes.yaml --user user-1
    """
    changes = read_changes_file(Path(changes_file))
    engine = open_engine(ctx)

    try:
        entries = engine.queue_changes(user_id, changes)
    except SyncError as e:
        fail(str(e))
        return

    click.echo(click.style(f"Queued {len(entries)} change(s).", fg="green"))
    for entry in entries:
        click.echo(f"  {entry.id}  {entry.operation.value:<6} {entry.entity_id}")


@cli.command("sweep")
@click.option(
    "--user",
    "-u",
    "user_id",
    default=None,
    help="Only sweep this user (default: every user with pending changes).",
)
@click.pass_context
def sweep_command(ctx: click.Context, user_id: Optional[str]) -> None:
    """
    Process pending changes once.

    Examples:

        contact-sync sweep
        contact-sync sweep --user user-1
    """
    engine = open_engine(ctx)

    if user_id:
        results = {user_id: engine.process_pending_syncs(user_id)}
    else:
        results = engine.sweep_all()

    show_sweep_results(results)


# =============================================================================
# Status, Resolution and Change Feed
# =============================================================================


@cli.command("status")
@click.option("--user", "-u", "user_id", required=True, help="User to report on.")
@click.option("--json", "as_json", is_flag=True, help="Print the report as JSON.")
@click.pass_context
def status_command(ctx: click.Context, user_id: str, as_json: bool) -> None:
    """
    Show pending and conflicted changes for a user.

    Example:

        contact-sync status --user user-1
    """
    engine = open_engine(ctx)
    report = engine.get_sync_status(user_id)

    if as_json:
        echo_json(report.to_dict())
    else:
        show_status_report(user_id, report)


@cli.command("resolve")
@click.argument("sync_log_id")
@click.option("--user", "-u", "user_id", required=True, help="Owner of the entry.")
@click.option(
    "--strategy",
    "-s",
    type=click.Choice(RESOLUTION_CHOICES, case_sensitive=False),
    default=None,
    help="Resolution strategy (default: configured default_resolution).",
)
@click.pass_context
def resolve_command(
    ctx: click.Context, sync_log_id: str, user_id: str, strategy: Optional[str]
) -> None:
    """
    Resolve a conflicted change.

    Strategies: local (client version wins), server (stored version
    wins), merge (field-level merge).

    Example:

        contact-sync resolve 3f2a... --user user-1 --strategy merge
    """
    settings: SyncSettings = ctx.obj["settings"]
    engine = open_engine(ctx)
    effective_strategy = strategy or settings.default_resolution

    try:
        contact = engine.resolve(user_id, sync_log_id, effective_strategy)
    except SyncError as e:
        fail(str(e))
        return

    click.echo(
        click.style(
            f"Conflict resolved with '{effective_strategy}' strategy.", fg="green"
        )
    )
    show_contact(contact)


@cli.command("changes")
@click.option("--user", "-u", "user_id", required=True, help="User pulling changes.")
@click.option(
    "--since",
    required=True,
    help="Time of the last sync (ISO-8601, e.g. 2024-05-01T12:00:00Z).",
)
@click.option("--json", "as_json", is_flag=True, help="Print the changes as JSON.")
@click.pass_context
def changes_command(
    ctx: click.Context, user_id: str, since: str, as_json: bool
) -> None:
    """
    List server-side changes since the last sync.

    Example:

        contact-sync changes --user user-1 --since 2024-05-01T12:00:00Z
    """
    engine = open_engine(ctx)

    try:
        changes = engine.get_changes(user_id, since)
    except SyncError as e:
        fail(str(e))
        return

    if as_json:
        echo_json({"changes": [change.to_dict() for change in changes]})
    else:
        show_changes(changes)


# =============================================================================
# Configuration
# =============================================================================


@cli.command("init-config")
@click.option(
    "--force",
    is_flag=True,
    help="Overwrite existing configuration file if it exists.",
)
@click.pass_context
def init_config_command(ctx: click.Context, force: bool) -> None:
    """
    Generate a default configuration file.

    Creates a configuration file with all available options documented
    and commented out.

    Examples:

        contact-sync init-config
        contact-sync init-config --force
    """
    config_file = ctx.obj["config_file"]
    click.echo(f"Creating configuration file: {config_file}")

    success, error = save_config_file(config_file, overwrite=force)

    if not success:
        fail(str(error))
        return

    click.echo(click.style("Configuration file created successfully!", fg="green"))
    click.echo(f"\nLocation: {config_file}")
    click.echo("\nNext steps:")
    click.echo("1. Edit the file to uncomment and configure desired options")
    click.echo("2. Run 'contact-sync --help' to see available commands")


# =============================================================================
# Daemon Commands
# =============================================================================


@cli.group("daemon")
@click.pass_context
def daemon_group(ctx: click.Context) -> None:
    """
    Manage the background sweep daemon.

    The daemon processes queued changes for every user at a fixed
    interval.

    Examples:

        contact-sync daemon start --interval 1m
        contact-sync daemon status
        contact-sync daemon stop
    """
    pass


@daemon_group.command("start")
@click.option(
    "--interval",
    "-i",
    default=None,
    help="Sweep interval (e.g., '30s', '5m', '1h'). Defaults to config or '5m'.",
)
@click.option(
    "--no-initial-sweep",
    is_flag=True,
    help="Wait one interval before the first sweep.",
)
@click.option(
    "--max-cycles",
    type=click.IntRange(min=1),
    default=None,
    help="Stop after this many sweeps (default: run until stopped).",
)
@click.pass_context
def daemon_start_command(
    ctx: click.Context,
    interval: Optional[str],
    no_initial_sweep: bool,
    max_cycles: Optional[int],
) -> None:
    """
    Run the sweep daemon in the foreground.

    Handles SIGTERM/SIGINT for graceful shutdown and writes a PID file.
    """
    logger = get_logger(__name__)
    settings: SyncSettings = ctx.obj["settings"]

    effective_interval = interval or settings.sweep_interval
    try:
        interval_seconds = parse_interval(effective_interval)
    except ValueError as e:
        fail(str(e))
        return
    if interval_seconds < 1:
        fail("Interval must be at least 1 second")
        return

    engine = open_engine(ctx)
    scheduler = SweepScheduler(
        engine,
        interval=interval_seconds,
        pid_file=settings.pid_file,
        run_immediately=not no_initial_sweep,
        max_cycles=max_cycles,
    )

    click.echo(f"Starting sweep daemon with {effective_interval} interval...")
    click.echo("Running in foreground mode (Ctrl+C to stop)")
    if ctx.obj["verbose"]:
        click.echo(f"  Database: {settings.database_path}")
        click.echo(f"  PID file: {settings.pid_file}")

    try:
        scheduler.run()
    except DaemonAlreadyRunningError as e:
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        click.echo("Use 'contact-sync daemon stop' to stop the running daemon.")
        sys.exit(1)
    except DaemonError as e:
        logger.error(f"Daemon error: {e}")
        fail(f"Daemon error: {e}")
        return

    click.echo(click.style("\nSweep daemon stopped gracefully.", fg="green"))
    click.echo(scheduler.stats.summary())


@daemon_group.command("stop")
@click.pass_context
def daemon_stop_command(ctx: click.Context) -> None:
    """Stop the running sweep daemon."""
    settings: SyncSettings = ctx.obj["settings"]

    pid = SweepScheduler.get_running_pid(settings.pid_file)
    if pid is None:
        click.echo("No sweep daemon is currently running.")
        return

    click.echo(f"Stopping sweep daemon (PID: {pid})...")
    if SweepScheduler.stop_running_daemon(settings.pid_file):
        click.echo(click.style("Stop signal sent successfully.", fg="green"))
    else:
        fail("Failed to send stop signal to daemon.")


@daemon_group.command("status")
@click.pass_context
def daemon_status_command(ctx: click.Context) -> None:
    """Show whether the sweep daemon is running."""
    settings: SyncSettings = ctx.obj["settings"]

    click.echo("=== Sweep Daemon Status ===\n")

    try:
        pid_manager = PIDFileManager(settings.pid_file)
        pid = pid_manager.running_pid()
        recorded_pid = pid_manager.read()
    except DaemonError as e:
        fail(str(e))
        return

    if pid is not None:
        click.echo(f"Status: {click.style('Running', fg='green')}")
        click.echo(f"Process ID: {pid}")
    else:
        click.echo(f"Status: {click.style('Stopped', fg='yellow')}")
        if recorded_pid is not None:
            click.echo(f"Stale PID file exists (PID: {recorded_pid})")

    if ctx.obj["verbose"]:
        click.echo(f"\nPID file: {settings.pid_file}")
