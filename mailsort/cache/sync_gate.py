"""Sync gate — runs the expensive upstream mailbox pull at most once per staleness window."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from mailsort.api.types import SyncReport
from mailsort.cache.store import CacheTimestamps, is_fresh

if TYPE_CHECKING:
    from mailsort.api.client import MailSortClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncResult:
    did_sync: bool
    report: SyncReport | None = None
    error: str | None = None


class SyncGate:
    """Throttles ``sync_mailbox`` to one successful call per TTL.

    Best effort: a failed sync is logged and reported, never raised, and
    leaves ``last_sync`` untouched so the next read retries.  Overlapping
    callers queue on a lock and re-check freshness, so a burst of refreshes
    triggers a single upstream pull.
    """

    def __init__(
        self,
        client: MailSortClient,
        timestamps: CacheTimestamps,
        ttl: float,
    ) -> None:
        self._client = client
        self._timestamps = timestamps
        self._ttl = ttl
        self._lock = asyncio.Lock()

    @property
    def in_flight(self) -> bool:
        return self._lock.locked()

    async def maybe_sync(self, now: float) -> SyncResult:
        """Pull new mail upstream unless the last successful sync is still fresh."""
        async with self._lock:
            if is_fresh(self._timestamps.last_sync, now, self._ttl):
                logger.debug("Sync skipped — last sync still fresh")
                return SyncResult(did_sync=False)

            logger.info("Syncing mailbox with upstream provider...")
            try:
                report = await self._client.sync_mailbox()
            except Exception as exc:  # noqa: BLE001
                logger.warning("Mailbox sync failed — continuing with stored data: %s", exc)
                return SyncResult(did_sync=False, error=str(exc))

            self._timestamps.last_sync = now
            logger.info("Mailbox sync done: %d/%d message(s) stored", report.synced, report.total)
            return SyncResult(did_sync=True, report=report)
