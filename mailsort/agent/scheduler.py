"""APScheduler setup for periodic background refreshes."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler

if TYPE_CHECKING:
    from mailsort.cache.mailbox import Mailbox

logger = logging.getLogger(__name__)

_JOB_ID = "mailbox-refresh"


def create_refresh_scheduler(
    mailbox: Mailbox,
    interval_seconds: int,
    query: str | None = None,
) -> AsyncIOScheduler:
    """Return an AsyncIOScheduler that calls Mailbox.refresh() every interval.

    The refresh itself decides whether any network work is due, so the
    interval can be shorter than the cache TTL without extra backend load.
    The caller is responsible for calling scheduler.start() and
    scheduler.shutdown().
    """
    scheduler = AsyncIOScheduler()

    async def _refresh() -> None:
        snapshot = await mailbox.refresh(query=query)
        if snapshot.error:
            logger.warning("Background refresh: %s", snapshot.error)
        else:
            logger.debug(
                "Background refresh: %d message(s), %d suggestion(s)",
                len(snapshot.messages),
                len(snapshot.suggestions),
            )

    scheduler.add_job(
        _refresh,
        "interval",
        seconds=interval_seconds,
        id=_JOB_ID,
        max_instances=1,
        coalesce=True,
    )
    logger.info("Background refresh scheduled every %ds", interval_seconds)
    return scheduler
