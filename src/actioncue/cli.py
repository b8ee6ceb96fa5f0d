#!/usr/bin/env python3
"""
actioncue: inspect and manage a scheduler database from the terminal.

Usage:
    actioncue --db actions.db list --status pending --order-by next_due
    actioncue --db actions.db counts
    actioncue --db actions.db show 42
    actioncue --db actions.db cancel 42
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
from datetime import datetime

from rich.console import Console
from rich.table import Table

from actioncue.claims import ClaimManager
from actioncue.errors import ActionCueError, ActionNotFound, InvalidQuery
from actioncue.models import Action, ActionFilter, ActionStatus
from actioncue.store import SORTABLE_COLUMNS, ActionStore

STATUS_STYLES = {
    ActionStatus.PENDING: "cyan",
    ActionStatus.IN_PROGRESS: "yellow",
    ActionStatus.COMPLETE: "green",
    ActionStatus.FAILED: "red",
    ActionStatus.CANCELED: "dim",
}


def configure_logging(verbose: bool = False) -> None:
    """Send actioncue library logs to stderr when verbose, silence them otherwise."""
    actioncue_logger = logging.getLogger("actioncue")
    if verbose:
        actioncue_logger.setLevel(logging.DEBUG)
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
        actioncue_logger.addHandler(handler)
    else:
        actioncue_logger.setLevel(logging.WARNING)


def format_ts(ts: float | None) -> str:
    if ts is None:
        return "-"
    return datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M:%S")


def styled_status(status: ActionStatus) -> str:
    style = STATUS_STYLES.get(status, "white")
    return f"[{style}]{status.value}[/{style}]"


def describe_schedule(action: Action) -> str:
    data = action.schedule.to_dict()
    if data["kind"] == "interval":
        return f"every {data['interval']:g}s"
    if data["kind"] == "cron":
        return f"cron '{data['expression']}' ({data['timezone']})"
    return "once"


async def cmd_list(store: ActionStore, args: argparse.Namespace, console: Console) -> int:
    filter = ActionFilter(
        status=args.status or None,
        group=args.group,
        hook=args.hook,
        search=args.search,
    )
    page = await store.query_page(filter, args.order_by, args.order, page=args.page, per_page=args.per_page)

    table = Table(title=f"Actions (page {page.page}/{max(page.total_pages, 1)}, {page.total} total)")
    table.add_column("ID", justify="right")
    table.add_column("Hook", style="bold")
    table.add_column("Status")
    table.add_column("Group")
    table.add_column("Schedule")
    table.add_column("Next due")
    table.add_column("Attempts", justify="right")
    table.add_column("Args", overflow="fold")

    for action in page.items:
        table.add_row(
            str(action.id),
            action.hook,
            styled_status(action.status),
            action.group or "",
            describe_schedule(action),
            format_ts(action.next_due),
            str(action.attempts),
            ", ".join(repr(a) for a in action.args),
        )
    if not page.items:
        table.add_row("", "[dim]No actions found[/dim]", "", "", "", "", "", "")

    console.print(table)
    return 0


async def cmd_counts(store: ActionStore, args: argparse.Namespace, console: Console) -> int:
    counts = await store.count_by_status(ActionFilter(group=args.group))

    table = Table(title="Actions by status", show_header=False)
    table.add_column("Status")
    table.add_column("Count", justify="right", style="bold")
    for status, count in counts.items():
        table.add_row(styled_status(status), str(count))
    table.add_row("[bold]total[/bold]", str(sum(counts.values())))

    console.print(table)
    return 0


async def cmd_show(store: ActionStore, args: argparse.Namespace, console: Console) -> int:
    action = await store.get(args.action_id)

    table = Table(title=f"Action {action.id}", show_header=False)
    table.add_column("Field", style="dim")
    table.add_column("Value")
    table.add_row("Hook", action.hook)
    table.add_row("Status", styled_status(action.status))
    table.add_row("Args", repr(list(action.args)))
    table.add_row("Group", action.group or "-")
    table.add_row("Priority", str(action.priority))
    table.add_row("Schedule", describe_schedule(action))
    table.add_row("Attempts", str(action.attempts))
    table.add_row("Created", format_ts(action.created_at))
    table.add_row("Next due", format_ts(action.next_due))
    table.add_row("Started", format_ts(action.started_at))
    table.add_row("Completed", format_ts(action.completed_at))
    table.add_row("Claim", action.claim_id or "-")
    if action.cancel_requested:
        table.add_row("Cancel", "[yellow]requested[/yellow]")
    if action.last_error:
        table.add_row("Last error", f"[red]{action.last_error.get('message', '')}[/red]")

    console.print(table)
    return 0


async def cmd_logs(store: ActionStore, args: argparse.Namespace, console: Console) -> int:
    await store.get(args.action_id)
    entries = await store.logs(args.action_id)

    table = Table(title=f"Log for action {args.action_id}")
    table.add_column("Time", style="dim")
    table.add_column("Message")
    for entry in entries:
        table.add_row(format_ts(entry.timestamp), entry.message)

    console.print(table)
    return 0


async def cmd_cancel(store: ActionStore, args: argparse.Namespace, console: Console) -> int:
    if await store.cancel(args.action_id):
        action = await store.get(args.action_id)
        if action.status == ActionStatus.CANCELED:
            console.print(f"Canceled action {args.action_id}")
        else:
            console.print(f"Action {args.action_id} is running; it will not run again")
    else:
        console.print(f"[dim]Nothing to cancel for action {args.action_id}[/dim]")
    return 0


async def cmd_delete(store: ActionStore, args: argparse.Namespace, console: Console) -> int:
    deleted = await store.delete(args.action_ids)
    console.print(f"Deleted {deleted} of {len(set(args.action_ids))} action(s)")
    return 0


async def cmd_reclaim(store: ActionStore, args: argparse.Namespace, console: Console) -> int:
    count = await ClaimManager(store).reclaim_expired()
    console.print(f"Recovered {count} action(s) from expired claims")
    return 0


COMMANDS = {
    "list": cmd_list,
    "counts": cmd_counts,
    "show": cmd_show,
    "logs": cmd_logs,
    "cancel": cmd_cancel,
    "delete": cmd_delete,
    "reclaim": cmd_reclaim,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="actioncue",
        description="actioncue admin - inspect and manage scheduled actions",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  actioncue --db actions.db list --status pending failed
  actioncue --db actions.db list --search invoice --order-by created_at --order desc
  actioncue --db actions.db counts --group billing
  actioncue --db actions.db logs 42
  actioncue --db actions.db delete 3 4 5
        """,
    )
    parser.add_argument(
        "--db",
        default=os.environ.get("ACTIONCUE_DB_PATH"),
        help="Database file (default: $ACTIONCUE_DB_PATH)",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Show library debug logs")

    sub = parser.add_subparsers(dest="command", required=True)

    p_list = sub.add_parser("list", help="List actions")
    p_list.add_argument("--status", nargs="+", choices=[s.value for s in ActionStatus], help="Filter by status")
    p_list.add_argument("--group", help="Filter by group")
    p_list.add_argument("--hook", help="Filter by hook")
    p_list.add_argument("--search", "-s", help="Match hook, args or group")
    p_list.add_argument("--order-by", default="next_due", choices=sorted(SORTABLE_COLUMNS))
    p_list.add_argument("--order", default="asc", choices=["asc", "desc"])
    p_list.add_argument("--page", type=int, default=1)
    p_list.add_argument("--per-page", type=int, default=20)

    p_counts = sub.add_parser("counts", help="Count actions per status")
    p_counts.add_argument("--group", help="Restrict to one group")

    for name, help_text in (("show", "Show one action"), ("logs", "Show an action's log"), ("cancel", "Cancel an action")):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("action_id", type=int)

    p_delete = sub.add_parser("delete", help="Delete actions (running ones are kept)")
    p_delete.add_argument("action_ids", type=int, nargs="+")

    sub.add_parser("reclaim", help="Recover actions held by expired claims")
    return parser


async def run_command(args: argparse.Namespace, console: Console) -> int:
    async with ActionStore(args.db) as store:
        return await COMMANDS[args.command](store, args, console)


def main(argv: list[str] | None = None, console: Console | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.db:
        parser.error("--db is required when ACTIONCUE_DB_PATH is not set")

    configure_logging(verbose=args.verbose)
    err_console = console or Console(stderr=True)
    console = console or Console()

    try:
        return asyncio.run(run_command(args, console))
    except ActionNotFound as e:
        err_console.print(f"[red]Not found:[/red] action {e.action_id}")
        return 1
    except InvalidQuery as e:
        err_console.print(f"[red]Invalid query:[/red] {e}")
        return 1
    except ActionCueError as e:
        err_console.print(f"[red]Error:[/red] {e}")
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
