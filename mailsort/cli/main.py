"""CLI entry point for the mailsort triage client."""

import logging

import click
from dotenv import load_dotenv

from mailsort.config import Settings

logger = logging.getLogger(__name__)


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Log cache and network activity.")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """Mail triage client — inbox, senders, AI suggestions and bulk actions."""
    load_dotenv()
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    )
    ctx.obj = Settings.from_env()


# Import and register commands after cli is defined to avoid circular imports.
from mailsort.cli.commands import (  # noqa: E402
    analyze,
    apply,
    bulk,
    inbox,
    reject,
    senders,
    stats,
    suggestions,
    watch,
)

for _command in (inbox, senders, suggestions, stats, apply, reject, bulk, analyze, watch):
    cli.add_command(_command)
