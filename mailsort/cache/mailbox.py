"""Mailbox — the session-owned cache that presentation code reads and drives."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING

from mailsort.api.client import APIError
from mailsort.api.types import BulkResult, Suggestion, SuggestionStatus
from mailsort.cache.orchestrator import Clock, FetchOrchestrator, normalize_message_payload
from mailsort.cache.store import CacheStore, MailboxSnapshot, is_fresh
from mailsort.cache.sync_gate import SyncGate
from mailsort.config import Settings

if TYPE_CHECKING:
    from mailsort.api.client import MailSortClient

logger = logging.getLogger(__name__)


class Mailbox:
    """Cache and refresh coordinator for one user's mailbox.

    Created empty at session start (see `mailbox_session()`), populated by
    the first refresh, and emptied by clear_cache() on logout.  Consumers
    read `snapshot()`; they never see the mutable store.

    Reads go through the staleness policy: a refresh for the cached query
    inside the TTL is served from memory with no network traffic.  A miss
    runs the sync gate, then fetches every dataset concurrently.  Nothing
    here raises for backend failures — errors end up in ``snapshot().error``
    or the log.

    Usage::

        mailbox = Mailbox(client, Settings.from_env())
        snapshot = await mailbox.refresh()
        await mailbox.load_more()
    """

    def __init__(
        self,
        client: MailSortClient,
        settings: Settings,
        clock: Clock = time.monotonic,
    ) -> None:
        self._client = client
        self._settings = settings
        self._clock = clock
        self._store = CacheStore()
        self._sync_gate = SyncGate(client, self._store.timestamps, settings.cache_ttl)
        self._orchestrator = FetchOrchestrator(client, self._store, settings.cache_ttl, clock)
        self._load_more_lock = asyncio.Lock()
        self._loading = False
        self._error: str | None = None
        # Bumped by clear_cache() so in-flight page loads can tell they're stale
        self._generation = 0

    # ── Reads ──────────────────────────────────────────────────────────────────

    def snapshot(self) -> MailboxSnapshot:
        store = self._store
        return MailboxSnapshot(
            messages=tuple(store.messages),
            senders=tuple(store.senders),
            suggestions=tuple(store.suggestions),
            stats=store.stats,
            pagination=store.pagination,
            loading=self._loading,
            loading_more=self._load_more_lock.locked(),
            error=self._error,
        )

    @property
    def query(self) -> str | None:
        """The search the cached messages belong to, or None when empty."""
        return self._store.query

    def is_cache_valid(self) -> bool:
        return is_fresh(self._store.timestamps.last_fetch, self._clock(), self._settings.cache_ttl)

    # ── Refresh ────────────────────────────────────────────────────────────────

    async def refresh(
        self,
        *,
        force_refresh: bool = False,
        query: str | None = None,
        max_results: int | None = None,
    ) -> MailboxSnapshot:
        """Return the mailbox, fetching from the backend only when needed.

        A new query or ``force_refresh`` restarts pagination once the first
        page is stored; if that fetch fails the previous messages keep their
        own cursor.  Two overlapping refreshes for different queries
        are not sequenced: whichever settles last owns each dataset slot.
        """
        query = query or self._settings.default_query
        max_results = max_results or self._settings.page_size
        store = self._store
        now = self._clock()

        if (
            not force_refresh
            and query == store.query
            and store.messages
            and is_fresh(store.timestamps.last_fetch, now, self._settings.cache_ttl)
        ):
            logger.debug("Cache hit for %r — serving %d message(s)", query, len(store.messages))
            return self.snapshot()

        logger.debug("Cache miss for %r (force=%s) — fetching", query, force_refresh)

        self._loading = True
        self._error = None
        try:
            await self._sync_gate.maybe_sync(now)
            result = await self._orchestrator.load_all(
                query, max_results, force_stats=force_refresh
            )
            self._error = result.error
        finally:
            self._loading = False
        return self.snapshot()

    async def refresh_suggestions(self) -> None:
        """Refetch only the pending suggestions; keep the old list on failure."""
        try:
            suggestions = await self._client.list_suggestions(SuggestionStatus.PENDING.value)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to refresh suggestions: %s", exc)
            return
        self._store.suggestions = list(suggestions)

    async def refresh_senders(self) -> None:
        """Refetch only the sender list; keep the old list on failure."""
        try:
            senders = await self._client.list_senders()
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to refresh senders: %s", exc)
            return
        self._store.senders = list(senders)

    # ── Pagination ─────────────────────────────────────────────────────────────

    async def load_more(self, query: str | None = None, max_results: int | None = None) -> None:
        """Append the next page of the current query's messages.

        No-op when there is no next page or a page load is already running.
        A query other than the cached one is refused: its cursor would point
        into a different result set.  On failure the cursor is kept so the
        call can simply be retried.
        """
        query = query or self._settings.default_query
        store = self._store
        if not store.pagination.has_more or self._load_more_lock.locked():
            return
        if query != store.query:
            logger.warning(
                "load_more(%r) ignored — cached messages belong to %r; refresh first",
                query,
                store.query,
            )
            return

        async with self._load_more_lock:
            generation = self._generation
            cursor = store.pagination
            token = cursor.next_page_token
            try:
                raw = await self._client.list_messages(
                    query, max_results or self._settings.page_size, page_token=token
                )
                page = normalize_message_payload(raw)
            except Exception as exc:  # noqa: BLE001
                logger.error("Failed to load more messages: %s", exc)
                return

            if generation != self._generation:
                logger.info("Discarding page loaded across a cache clear")
                return
            if store.query != query or store.pagination != cursor:
                logger.info(
                    "Discarding page for %r — messages were replaced by a refresh for %r",
                    query,
                    store.query,
                )
                return
            added = store.append_messages(page)
            logger.info(
                "Loaded %d more message(s) (%d cached, ~%d total)",
                added,
                len(store.messages),
                store.pagination.result_size_estimate,
            )

    # ── Local mutators ─────────────────────────────────────────────────────────

    def remove_suggestion_locally(self, suggestion_id: str) -> None:
        """Drop one suggestion from the cache after the backend accepted it."""
        if not self._store.remove_suggestion(suggestion_id):
            logger.debug("Suggestion %s not cached; nothing to remove", suggestion_id)

    def mark_read_locally(self, message_id: str, is_read: bool = True) -> bool:
        return self._store.patch_message(message_id, is_read=is_read)

    def clear_cache(self) -> None:
        """Forget every dataset and timestamp (logout)."""
        self._store.clear()
        self._error = None
        self._generation += 1
        logger.info("Mailbox cache cleared")

    # ── Remote actions ─────────────────────────────────────────────────────────
    #
    # Each action calls the backend first and touches the cache only after
    # the call succeeded.  Failures become snapshot().error.

    async def apply_suggestion(self, suggestion_id: str) -> bool:
        """Carry out a suggestion, then drop it and reload the affected mailbox."""
        try:
            await self._client.apply_suggestion(suggestion_id)
        except APIError as exc:
            logger.error("Apply suggestion %s failed: %s", suggestion_id, exc)
            self._error = f"Failed to apply suggestion: {exc}"
            return False
        self.remove_suggestion_locally(suggestion_id)
        await self.refresh(force_refresh=True, query=self._store.query)
        return True

    async def reject_suggestion(self, suggestion_id: str) -> bool:
        try:
            await self._client.reject_suggestion(suggestion_id)
        except APIError as exc:
            logger.error("Reject suggestion %s failed: %s", suggestion_id, exc)
            self._error = f"Failed to reject suggestion: {exc}"
            return False
        self.remove_suggestion_locally(suggestion_id)
        return True

    async def apply_bulk_action(
        self, sender_email: str, action: str, label_name: str | None = None
    ) -> BulkResult | None:
        """Apply an action to all of a sender's messages, then force a reload."""
        try:
            result = await self._client.apply_bulk_action(sender_email, action, label_name)
        except APIError as exc:
            logger.error("Bulk %s for %s failed: %s", action, sender_email, exc)
            self._error = f"Failed to apply {action} to {sender_email}: {exc}"
            return None
        await self.refresh(force_refresh=True, query=self._store.query)
        return result

    async def analyze_emails(self, email_ids: list[str]) -> list[Suggestion] | None:
        """Ask for AI suggestions on the given messages, then force a reload."""
        if not email_ids:
            self._error = "Select at least one message to analyze"
            return None
        try:
            suggestions = await self._client.analyze_emails(email_ids)
        except APIError as exc:
            logger.error("Analysis of %d message(s) failed: %s", len(email_ids), exc)
            self._error = f"Analysis failed: {exc}"
            return None
        await self.refresh(force_refresh=True, query=self._store.query)
        return suggestions

    async def analyze_sender(self, sender_email: str) -> bool:
        try:
            await self._client.analyze_sender(sender_email)
        except APIError as exc:
            logger.error("Sender analysis for %s failed: %s", sender_email, exc)
            self._error = f"Sender analysis failed: {exc}"
            return False
        await self.refresh_senders()
        return True
