"""
CLI interface for the document request tracker.

Commands:
    requests: List and filter tracked requests
    show: Show one request with its files and comments
    status: Change the status of a request
    notifications: List, count, and mark a user's notifications
    sweep: Send deletion reminders and purge expired requests
    stats: Show request statistics
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Optional

import click

from docreq import __version__
from docreq.config import TrackerConfig, load_config
from docreq.errors import DocreqError
from docreq.store.models import RequestPriority, RequestStatus
from docreq.store.requests import RequestFilter
from docreq.tracker import Tracker


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------

@click.group()
@click.version_option(version=__version__, prog_name="docreq")
@click.option("--config", "config_path", default=None, type=click.Path(exists=True, dir_okay=False),
              help="Path to a tracker config JSON file.")
@click.option("--db", default=None, help="Database URL (overrides the config file).")
@click.option("--log-level", default="WARNING",
              type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
              help="Logging verbosity.")
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[str], db: Optional[str], log_level: str) -> None:
    """Document request tracker for organization requests."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    config = load_config(config_path) if config_path else TrackerConfig()
    if db:
        config.database_url = db
    ctx.ensure_object(dict)
    ctx.obj["config"] = config


def _tracker(ctx: click.Context) -> Tracker:
    if "tracker" not in ctx.obj:
        tracker = Tracker.from_config(ctx.obj["config"])
        ctx.obj["tracker"] = tracker
        ctx.call_on_close(tracker.close)
    return ctx.obj["tracker"]


# ---------------------------------------------------------------------------
# requests
# ---------------------------------------------------------------------------

@cli.command(name="requests")
@click.option("--status", type=click.Choice([s.value for s in RequestStatus]), default=None,
              help="Filter by status.")
@click.option("--priority", type=click.Choice([p.value for p in RequestPriority]), default=None,
              help="Filter by priority.")
@click.option("--sender", default=None, help="Filter by sender organization id.")
@click.option("--search", "-q", default=None, help="Match reference number or subject.")
@click.option("--from-date", default=None, help="Received on or after (YYYY-MM-DD).")
@click.option("--to-date", default=None, help="Received on or before (YYYY-MM-DD).")
@click.option("--as-user", default=None, help="Only show requests visible to this user.")
@click.option("--limit", default=50, type=int, help="Maximum rows to show.")
@click.pass_context
def list_requests(
    ctx: click.Context,
    status: Optional[str],
    priority: Optional[str],
    sender: Optional[str],
    search: Optional[str],
    from_date: Optional[str],
    to_date: Optional[str],
    as_user: Optional[str],
    limit: int,
) -> None:
    """List tracked requests, newest received first."""
    tracker = _tracker(ctx)
    flt = RequestFilter(
        status=RequestStatus(status) if status else None,
        priority=RequestPriority(priority) if priority else None,
        sender=sender,
        search=search,
        date_from=_parse_date(from_date) if from_date else None,
        date_to=_parse_date(to_date) if to_date else None,
        limit=limit,
    )
    requests = tracker.engine.list_requests(flt, actor_id=as_user)
    if not requests:
        click.echo("No tracked requests.")
        return

    click.echo(f"Tracked requests ({len(requests)}):")
    for req in requests:
        dup = " [dup]" if req.is_duplicate else ""
        click.echo(
            f"  {req.id} | {req.reference_number[:20]:20s} | {req.date_received} | "
            f"{req.status.value:11s} | {req.priority.value:6s} | {req.subject[:40]}{dup}"
        )


# ---------------------------------------------------------------------------
# show
# ---------------------------------------------------------------------------

@cli.command()
@click.argument("request_id")
@click.option("--internal/--no-internal", default=True, help="Include internal comments.")
@click.pass_context
def show(ctx: click.Context, request_id: str, internal: bool) -> None:
    """Show details for a request."""
    engine = _tracker(ctx).engine
    try:
        req = engine.get_request(request_id)
    except DocreqError as e:
        raise click.ClickException(str(e))

    click.echo(f"Request {req.id}")
    click.echo(f"  Reference:     {req.reference_number}{' (duplicate)' if req.is_duplicate else ''}")
    click.echo(f"  Received:      {req.date_received}")
    click.echo(f"  Sender:        {req.sender}")
    click.echo(f"  Subject:       {req.subject}")
    click.echo(f"  Status:        {req.status.label}")
    click.echo(f"  Priority:      {req.priority.value}")
    click.echo(f"  Created by:    {req.created_by}")
    if req.assigned_to:
        click.echo(f"  Assigned to:   {req.assigned_to}")
    if req.completed_at:
        click.echo(f"  Completed:     {req.completed_at:%Y-%m-%d %H:%M}")
        click.echo(f"  Deletion date: {req.deletion_date:%Y-%m-%d}")
    if req.description:
        click.echo(f"  Description:\n{req.description}")

    files = engine.list_files(req.id)
    if files:
        click.echo(f"\nFiles ({len(files)}):")
        for f in files:
            kind = "response" if f.is_response else "request"
            secured = ", secured" if f.is_secured else ""
            click.echo(f"  {f.file_name} ({kind}, {f.file_size} bytes{secured})")

    comments = [c for c in engine.list_comments(req.id) if internal or not c.is_internal]
    if comments:
        click.echo(f"\nComments ({len(comments)}):")
        for c in comments:
            tag = " [internal]" if c.is_internal else ""
            click.echo(f"  {c.created_at:%Y-%m-%d %H:%M} {c.user_id}{tag}: {c.content}")


# ---------------------------------------------------------------------------
# status
# ---------------------------------------------------------------------------

@cli.command()
@click.argument("request_id")
@click.argument("new_status", type=click.Choice([s.value for s in RequestStatus]))
@click.option("--actor", required=True, help="User id performing the change.")
@click.pass_context
def status(ctx: click.Context, request_id: str, new_status: str, actor: str) -> None:
    """Change the status of a request."""
    engine = _tracker(ctx).engine
    try:
        req = engine.change_status(request_id, new_status, actor)
    except DocreqError as e:
        raise click.ClickException(str(e))
    click.echo(f"Updated request {req.id} to status: {req.status.value}")
    if req.deletion_date:
        click.echo(f"Scheduled for deletion on {req.deletion_date:%Y-%m-%d}")


# ---------------------------------------------------------------------------
# notifications
# ---------------------------------------------------------------------------

@cli.command()
@click.argument("user_id")
@click.option("--unread", is_flag=True, help="Show unread notifications only.")
@click.option("--limit", default=10, type=int, help="Maximum rows to show (0 for all).")
@click.option("--mark-read", "mark_read", default=None, help="Mark one notification as read.")
@click.option("--mark-all", is_flag=True, help="Mark every notification of the user as read.")
@click.pass_context
def notifications(
    ctx: click.Context,
    user_id: str,
    unread: bool,
    limit: int,
    mark_read: Optional[str],
    mark_all: bool,
) -> None:
    """Show a user's notifications."""
    feed = _tracker(ctx).feed

    if mark_read:
        try:
            feed.mark_read(mark_read)
        except DocreqError as e:
            raise click.ClickException(str(e))
        click.echo(f"Notification {mark_read} marked as read.")
        return

    if mark_all:
        count = feed.mark_all_read(user_id)
        click.echo(f"Marked {count} notification(s) as read.")
        return

    items = feed.list_for_user(user_id, limit=limit, unread_only=unread)
    click.echo(f"Unread: {feed.unread_count(user_id)}")
    if not items:
        click.echo("No notifications.")
        return
    for n in items:
        marker = " " if n.is_read else "*"
        click.echo(f" {marker} {n.created_at:%Y-%m-%d %H:%M} | {n.title}: {n.message}")


# ---------------------------------------------------------------------------
# sweep
# ---------------------------------------------------------------------------

@cli.command()
@click.option("--reminder-days", default=None, type=int,
              help="Remind this many days before deletion (default from config).")
@click.option("--reminders-only", is_flag=True, help="Send reminders without purging.")
@click.pass_context
def sweep(ctx: click.Context, reminder_days: Optional[int], reminders_only: bool) -> None:
    """Send deletion reminders and purge requests past their deletion date."""
    tracker = _tracker(ctx)
    sweeper = tracker.sweeper()
    if reminder_days is not None:
        sweeper.reminder_days = reminder_days

    if reminders_only:
        report = sweeper.send_reminders()
    else:
        report = sweeper.run()
    click.echo(report.summary())


# ---------------------------------------------------------------------------
# stats
# ---------------------------------------------------------------------------

@cli.command()
@click.pass_context
def stats(ctx: click.Context) -> None:
    """Show request statistics."""
    stats_data = _tracker(ctx).store.stats()

    click.echo("=== Request Tracker Statistics ===")
    click.echo(f"Total requests: {stats_data.total}")
    click.echo(f"Duplicates: {stats_data.duplicates}")
    click.echo("\nBy status:")
    for name, count in stats_data.by_status.items():
        click.echo(f"  {name:12s}: {count}")
    click.echo("\nBy priority:")
    for name, count in stats_data.by_priority.items():
        click.echo(f"  {name:12s}: {count}")


# ---------------------------------------------------------------------------
# Utility
# ---------------------------------------------------------------------------

def _parse_date(s: str) -> date:
    try:
        return datetime.strptime(s, "%Y-%m-%d").date()
    except ValueError:
        raise click.BadParameter(f"Invalid date format: {s}. Use YYYY-MM-DD.")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
