"""CLI command implementations — every command drives a Mailbox session."""

from __future__ import annotations

import asyncio
import logging
import signal

import click
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from mailsort.agent.scheduler import create_refresh_scheduler
from mailsort.api.types import MailboxStats, SuggestionAction
from mailsort.cache.store import MailboxSnapshot
from mailsort.config import Settings
from mailsort.session import mailbox_session

logger = logging.getLogger(__name__)
console = Console(width=200)

_BULK_ACTIONS = [a.value for a in SuggestionAction if a is not SuggestionAction.KEEP]


def _print_error(snapshot: MailboxSnapshot) -> None:
    if snapshot.error:
        console.print(f"[red]{snapshot.error}[/red]")


# ── inbox ────────────────────────────────────────────────────────────────────────


@click.command()
@click.option("--query", "-q", default=None, help="Search filter (default: in:inbox).")
@click.option("--limit", default=None, type=int, help="Messages per page.")
@click.option("--pages", default=1, show_default=True, type=int, help="Pages to load.")
@click.pass_obj
def inbox(settings: Settings, query: str | None, limit: int | None, pages: int) -> None:
    """List messages for a search, loading extra pages on request."""
    asyncio.run(_inbox_async(settings, query, limit, pages))


async def _inbox_async(
    settings: Settings, query: str | None, limit: int | None, pages: int
) -> None:
    query = query or settings.default_query
    try:
        async with mailbox_session(settings) as mailbox:
            snapshot = await mailbox.refresh(query=query, max_results=limit)
            for _ in range(pages - 1):
                if not snapshot.pagination.has_more:
                    break
                await mailbox.load_more(query, max_results=limit)
                snapshot = mailbox.snapshot()
    except ValueError as exc:
        console.print(f"[red]Configuration error: {exc}[/red]")
        return

    _print_error(snapshot)
    if not snapshot.messages:
        console.print(f"[yellow]No messages for {query!r}.[/yellow]")
        return

    table = Table(box=box.ROUNDED, show_header=True, header_style="bold cyan")
    table.add_column("#", style="dim", width=4)
    table.add_column("ID", style="dim", max_width=18)
    table.add_column("From", max_width=30)
    table.add_column("Subject", max_width=50)
    table.add_column("Date", width=12)

    for i, message in enumerate(snapshot.messages, start=1):
        style = "dim" if message.is_read else "bold"
        table.add_row(
            str(i),
            message.message_id,
            message.sender,
            f"[{style}]{message.subject}[/{style}]",
            (message.received_date or "")[:10],
        )

    console.print(f"\nMessages for [bold]{query!r}[/bold]\n")
    console.print(table)
    pagination = snapshot.pagination
    footer = f"{len(snapshot.messages)} shown"
    if pagination.result_size_estimate:
        footer += f" of ~{pagination.result_size_estimate}"
    if pagination.has_more:
        footer += " — more available (--pages)"
    console.print(f"  [dim]{footer}[/dim]")


# ── senders ──────────────────────────────────────────────────────────────────────


@click.command()
@click.pass_obj
def senders(settings: Settings) -> None:
    """Show the busiest senders and their stored default actions."""
    asyncio.run(_senders_async(settings))


async def _senders_async(settings: Settings) -> None:
    try:
        async with mailbox_session(settings) as mailbox:
            snapshot = await mailbox.refresh()
    except ValueError as exc:
        console.print(f"[red]Configuration error: {exc}[/red]")
        return

    _print_error(snapshot)
    if not snapshot.senders:
        console.print("[yellow]No senders yet.[/yellow]")
        return

    table = Table(box=box.ROUNDED, show_header=True, header_style="bold cyan")
    table.add_column("Sender", max_width=40)
    table.add_column("Name", max_width=24)
    table.add_column("Emails", width=7, justify="right")
    table.add_column("Default", width=18)

    for sender in snapshot.senders:
        pref = sender.preference
        default = ""
        if pref is not None:
            default = pref.default_action
            if pref.default_label:
                default += f" → {pref.default_label}"
        table.add_row(
            sender.sender_email,
            sender.sender_name or "",
            str(sender.email_count),
            default,
        )
    console.print(table)


# ── suggestions ──────────────────────────────────────────────────────────────────


@click.command()
@click.pass_obj
def suggestions(settings: Settings) -> None:
    """List pending AI triage suggestions."""
    asyncio.run(_suggestions_async(settings))


async def _suggestions_async(settings: Settings) -> None:
    try:
        async with mailbox_session(settings) as mailbox:
            snapshot = await mailbox.refresh()
    except ValueError as exc:
        console.print(f"[red]Configuration error: {exc}[/red]")
        return

    _print_error(snapshot)
    if not snapshot.suggestions:
        console.print("[green]No pending suggestions.[/green]")
        return

    subjects = {m.message_id: m.subject for m in snapshot.messages}
    table = Table(box=box.ROUNDED, show_header=True, header_style="bold cyan")
    table.add_column("ID", style="dim", max_width=26)
    table.add_column("Message", max_width=40)
    table.add_column("Action", width=16)
    table.add_column("Conf.", width=5)
    table.add_column("Reasoning", max_width=60)

    for s in snapshot.suggestions:
        action = s.action if not s.label_name else f"{s.action} → {s.label_name}"
        table.add_row(
            s.id or s.legacy_id or "",
            subjects.get(s.email_id, s.email_id),
            action,
            f"{s.confidence:.2f}",
            s.reasoning,
        )
    console.print(table)


# ── stats ────────────────────────────────────────────────────────────────────────


@click.command()
@click.pass_obj
def stats(settings: Settings) -> None:
    """Show mailbox counts."""
    asyncio.run(_stats_async(settings))


def _format_stats(s: MailboxStats) -> str:
    return (
        f"Total:  {s.total_messages}\n"
        f"Inbox:  {s.inbox_count}  ([bold]{s.unread_count}[/bold] unread)\n"
        f"Sent:   {s.sent_count}\n"
        f"Drafts: {s.draft_count}\n"
        f"Spam:   {s.spam_count}\n"
        f"Trash:  {s.trash_count}"
    )


async def _stats_async(settings: Settings) -> None:
    try:
        async with mailbox_session(settings) as mailbox:
            snapshot = await mailbox.refresh()
    except ValueError as exc:
        console.print(f"[red]Configuration error: {exc}[/red]")
        return

    if snapshot.stats is None:
        console.print("[yellow]Mailbox statistics unavailable.[/yellow]")
        return
    console.print(Panel(_format_stats(snapshot.stats), title="[bold]Mailbox[/bold]", border_style="blue"))


# ── apply / reject ───────────────────────────────────────────────────────────────


@click.command()
@click.argument("suggestion_id")
@click.pass_obj
def apply(settings: Settings, suggestion_id: str) -> None:
    """Carry out a pending suggestion."""
    asyncio.run(_decide_async(settings, suggestion_id, accept=True))


@click.command()
@click.argument("suggestion_id")
@click.pass_obj
def reject(settings: Settings, suggestion_id: str) -> None:
    """Dismiss a pending suggestion."""
    asyncio.run(_decide_async(settings, suggestion_id, accept=False))


async def _decide_async(settings: Settings, suggestion_id: str, *, accept: bool) -> None:
    try:
        async with mailbox_session(settings) as mailbox:
            if accept:
                ok = await mailbox.apply_suggestion(suggestion_id)
            else:
                ok = await mailbox.reject_suggestion(suggestion_id)
            snapshot = mailbox.snapshot()
    except ValueError as exc:
        console.print(f"[red]Configuration error: {exc}[/red]")
        return

    if not ok:
        _print_error(snapshot)
        return
    verb = "Applied" if accept else "Rejected"
    console.print(
        f"[green]{verb} {suggestion_id}.[/green] "
        f"[dim]{len(snapshot.suggestions)} suggestion(s) pending.[/dim]"
    )


# ── bulk ─────────────────────────────────────────────────────────────────────────


@click.command()
@click.argument("sender_email")
@click.argument("action", type=click.Choice(_BULK_ACTIONS))
@click.option("--label", default=None, help="Label name (for the label action).")
@click.pass_obj
def bulk(settings: Settings, sender_email: str, action: str, label: str | None) -> None:
    """Apply ACTION to every stored message from SENDER_EMAIL."""
    if action == SuggestionAction.LABEL.value and not label:
        raise click.UsageError("--label is required for the label action")
    asyncio.run(_bulk_async(settings, sender_email, action, label))


async def _bulk_async(
    settings: Settings, sender_email: str, action: str, label: str | None
) -> None:
    try:
        async with mailbox_session(settings) as mailbox:
            result = await mailbox.apply_bulk_action(sender_email, action, label)
            snapshot = mailbox.snapshot()
    except ValueError as exc:
        console.print(f"[red]Configuration error: {exc}[/red]")
        return

    if result is None:
        _print_error(snapshot)
        return
    console.print(
        f"[green]Done.[/green] {result.applied_count} of {result.total} message(s) processed."
    )


# ── analyze ──────────────────────────────────────────────────────────────────────


@click.command()
@click.argument("message_ids", nargs=-1, required=True)
@click.pass_obj
def analyze(settings: Settings, message_ids: tuple[str, ...]) -> None:
    """Request AI suggestions for the given message IDs."""
    asyncio.run(_analyze_async(settings, list(message_ids)))


async def _analyze_async(settings: Settings, message_ids: list[str]) -> None:
    try:
        async with mailbox_session(settings) as mailbox:
            created = await mailbox.analyze_emails(message_ids)
            snapshot = mailbox.snapshot()
    except ValueError as exc:
        console.print(f"[red]Configuration error: {exc}[/red]")
        return

    if created is None:
        _print_error(snapshot)
        return
    console.print(f"[green]{len(created)} suggestion(s) generated.[/green]")


# ── watch ────────────────────────────────────────────────────────────────────────


@click.command()
@click.option("--interval", default=None, type=int, help="Seconds between refreshes.")
@click.option("--query", "-q", default=None, help="Search filter to keep fresh.")
@click.pass_obj
def watch(settings: Settings, interval: int | None, query: str | None) -> None:
    """Keep the mailbox cache fresh in the background until interrupted."""
    try:
        asyncio.run(_watch_async(settings, interval or settings.refresh_interval, query))
    except KeyboardInterrupt:
        # Ctrl+C on Windows (no add_signal_handler) arrives here
        console.print("Interrupted — goodbye")


async def _watch_async(settings: Settings, interval: int, query: str | None) -> None:
    stop = asyncio.Event()
    try:
        async with mailbox_session(settings) as mailbox:
            snapshot = await mailbox.refresh(query=query)
            _print_error(snapshot)
            console.print(
                f"Watching [bold]{query or settings.default_query!r}[/bold] — "
                f"{len(snapshot.messages)} message(s), "
                f"{len(snapshot.suggestions)} suggestion(s). Refreshing every {interval}s."
            )

            scheduler = create_refresh_scheduler(mailbox, interval, query=query)
            loop = asyncio.get_running_loop()
            try:
                for sig in (signal.SIGINT, signal.SIGTERM):
                    loop.add_signal_handler(sig, stop.set)
            except (NotImplementedError, AttributeError):
                pass

            scheduler.start()
            try:
                await stop.wait()
            finally:
                scheduler.shutdown(wait=False)
    except ValueError as exc:
        console.print(f"[red]Configuration error: {exc}[/red]")
        return
    logger.info("Watch stopped")
