"""CLI output formatting functions.

This module contains functions for displaying batch results, sweep
outcomes, sync status and the change feed on the command line.
"""

from typing import TYPE_CHECKING

import click

if TYPE_CHECKING:
    from contact_sync.sync.contact import Contact
    from contact_sync.sync.engine import (
        SweepResult,
        SyncChange,
        SyncResult,
        SyncStatusReport,
    )
    from contact_sync.sync.sync_log import SyncLogEntry

# Maximum items listed per section before summarizing the rest
MAX_LISTED = 20

STATUS_COLORS = {
    "completed": "green",
    "conflict": "yellow",
    "failed": "red",
}


def _echo_remaining(total: int) -> None:
    if total > MAX_LISTED:
        click.echo(f"  ... and {total - MAX_LISTED} more")


def show_sync_result(result: "SyncResult") -> None:
    """
    Display the outcome of a batch sync, one line per change.

    Args:
        result: The SyncResult returned by SyncEngine.sync_changes()
    """
    click.echo("=== Batch Sync ===\n")

    for change in result.results[:MAX_LISTED]:
        status = click.style(
            change.status.upper(), fg=STATUS_COLORS.get(change.status, "white")
        )
        target = change.contact_id or "-"
        line = f"  #{change.index} {change.operation or '?':<6} {target}  {status}"
        if change.error:
            line += f"  {change.error}"
        if change.conflict_fields:
            line += f"  fields: {', '.join(change.conflict_fields)}"
        click.echo(line)
    _echo_remaining(len(result.results))

    click.echo()
    click.echo(f"Applied:   {result.processed}")
    click.echo(f"Conflicts: {result.conflicts}")
    click.echo(f"Failed:    {result.failed}")

    if result.success:
        click.echo(click.style("\nBatch completed successfully.", fg="green"))
    else:
        click.echo(click.style("\nBatch completed with errors.", fg="red"))


def show_sweep_results(results: dict[str, "SweepResult"]) -> None:
    """
    Display per-user sweep outcomes.

    Args:
        results: SweepResult per user id
    """
    if not results:
        click.echo("No pending changes to process.")
        return

    click.echo("=== Sweep ===\n")
    for user_id, result in results.items():
        click.echo(f"{user_id}: {result.summary()}")


def _describe_entry(entry: "SyncLogEntry") -> str:
    line = (
        f"  {entry.id}  {entry.operation.value:<6} {entry.entity_id}  "
        f"{entry.timestamp.isoformat()}"
    )
    if entry.retry_count:
        line += f"  retries: {entry.retry_count}"
    if entry.error:
        line += f"  last error: {entry.error}"
    return line


def show_status_report(user_id: str, report: "SyncStatusReport") -> None:
    """
    Display a user's pending and conflicted changes.

    Args:
        user_id: User the report belongs to
        report: The SyncStatusReport to display
    """
    click.echo(f"=== Sync Status: {user_id} ===\n")

    counts = ", ".join(f"{status}: {count}" for status, count in report.counts.items())
    click.echo(f"Entries by status: {counts}")
    click.echo(f"Pending changes: {report.pending_changes}")

    if report.pending:
        click.echo("\nPending:")
        for entry in report.pending[:MAX_LISTED]:
            click.echo(_describe_entry(entry))
        _echo_remaining(len(report.pending))

    if report.conflicts:
        click.echo(click.style("\nConflicts awaiting resolution:", fg="yellow"))
        for entry in report.conflicts[:MAX_LISTED]:
            click.echo(_describe_entry(entry))
            if entry.conflict_data is not None:
                fields = ", ".join(entry.conflict_data.conflict_fields)
                click.echo(f"      fields: {fields}")
        _echo_remaining(len(report.conflicts))
        click.echo(
            "\nResolve with: contact-sync resolve LOG_ID --user USER "
            "--strategy local|server|merge"
        )


def show_changes(changes: list["SyncChange"]) -> None:
    """
    Display the server change feed.

    Args:
        changes: Changes returned by SyncEngine.get_changes()
    """
    if not changes:
        click.echo("No changes since the given time.")
        return

    click.echo(f"=== {len(changes)} change(s) ===\n")
    for change in changes:
        operation = getattr(change.operation, "value", change.operation)
        line = f"  {operation:<6} {change.contact_id}"
        if change.contact:
            first = change.contact.get("firstName") or ""
            last = change.contact.get("lastName") or ""
            line += f"  {first} {last}".rstrip()
        click.echo(line)


def show_contact(contact: "Contact") -> None:
    """
    Display a contact's main fields.

    Args:
        contact: The contact to display
    """
    click.echo(f"Contact: {contact.display_name} ({contact.id})")
    for label, value in (
        ("Email", contact.email),
        ("Phone", contact.phone),
        ("Company", contact.company),
        ("Title", contact.title),
    ):
        if value:
            click.echo(f"  {label}: {value}")
    if contact.tags:
        click.echo(f"  Tags: {', '.join(contact.tags)}")
    if contact.social_profiles:
        profiles = ", ".join(f"{k}={v}" for k, v in contact.social_profiles.items())
        click.echo(f"  Profiles: {profiles}")
