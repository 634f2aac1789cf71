"""Fetch orchestrator — concurrent dataset loads with independent failure domains."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from mailsort.api.client import APIError, MailSortClient, parse_count
from mailsort.api.types import (
    EMPTY_PAGINATION,
    JsonValue,
    MailboxStats,
    MessagePage,
    MessageSummary,
    PaginationState,
    Sender,
    Suggestion,
    SuggestionStatus,
)
from mailsort.cache.store import CacheStore, is_fresh

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


def normalize_message_payload(raw: JsonValue) -> MessagePage:
    """Turn either list-messages response shape into a MessagePage.

    The backend answers with a bare list of messages (no cursor) or with
    ``{"emails": [...], "nextPageToken": ..., "resultSizeEstimate": ...}``.
    An empty or missing token becomes None.  Any other shape raises APIError.
    """
    if isinstance(raw, list):
        return MessagePage(messages=_parse_messages(raw), pagination=EMPTY_PAGINATION)

    if isinstance(raw, dict) and "emails" in raw:
        token = raw.get("nextPageToken")
        return MessagePage(
            messages=_parse_messages(raw.get("emails") or []),
            pagination=PaginationState(
                next_page_token=str(token) if token else None,
                result_size_estimate=parse_count(raw.get("resultSizeEstimate")),
            ),
        )

    raise APIError(f"Unrecognised message list payload: {type(raw).__name__}")


def _parse_messages(items: list[Any]) -> tuple[MessageSummary, ...]:
    return tuple(
        MailSortClient.parse_message_dict(m)
        for m in items
        if isinstance(m, dict)
    )


@dataclass(frozen=True)
class MergedResult:
    """Per-dataset outcome of one load_all round.

    Each dataset holds the newly fetched value, or the value that was cached
    before the round if its fetch failed.
    """

    messages: tuple[MessageSummary, ...]
    pagination: PaginationState
    senders: tuple[Sender, ...]
    suggestions: tuple[Suggestion, ...]
    stats: MailboxStats | None
    error: str | None = None
    failed: frozenset[str] = frozenset()


class FetchOrchestrator:
    """Fans out the dataset fetches and merges successes into a CacheStore.

    Messages, senders and pending suggestions are always fetched together;
    stats join the same round only when their own timestamp is stale (or the
    caller forces them).  All fetches settle before anything is merged, and
    a dataset slot is only overwritten by its own successful fetch.
    """

    def __init__(
        self,
        client: MailSortClient,
        store: CacheStore,
        ttl: float,
        clock: Clock = time.monotonic,
    ) -> None:
        self._client = client
        self._store = store
        self._ttl = ttl
        self._clock = clock

    async def load_all(
        self,
        query: str,
        max_results: int,
        *,
        force_stats: bool = False,
    ) -> MergedResult:
        """Fetch every dataset concurrently and merge the successes."""
        store = self._store
        started = self._clock()
        want_stats = force_stats or not is_fresh(store.timestamps.last_stats, started, self._ttl)

        fetches: dict[str, Awaitable[Any]] = {
            "messages": self._client.list_messages(query, max_results),
            "senders": self._client.list_senders(),
            "suggestions": self._client.list_suggestions(SuggestionStatus.PENDING.value),
        }
        if want_stats:
            fetches["stats"] = self._client.get_stats()

        settled = await asyncio.gather(*fetches.values(), return_exceptions=True)
        outcomes = dict(zip(fetches, settled))
        for outcome in settled:
            # gather() hands back cancellation and interpreter exits too
            if isinstance(outcome, BaseException) and not isinstance(outcome, Exception):
                raise outcome

        failed: set[str] = set()
        error: str | None = None

        page: MessagePage | None = None
        raw_messages = outcomes["messages"]
        if not isinstance(raw_messages, Exception):
            try:
                page = normalize_message_payload(raw_messages)
            except APIError as exc:
                raw_messages = exc
        if page is not None:
            store.replace_messages(page, query)
            store.timestamps.last_fetch = self._clock()
        else:
            failed.add("messages")
            logger.error("Message fetch failed for %r: %s", query, raw_messages)
            error = f"Failed to load messages: {raw_messages}"

        senders = outcomes["senders"]
        if isinstance(senders, Exception):
            failed.add("senders")
            logger.warning("Sender fetch failed — keeping %d cached: %s", len(store.senders), senders)
        else:
            store.senders = list(senders)

        suggestions = outcomes["suggestions"]
        if isinstance(suggestions, Exception):
            failed.add("suggestions")
            logger.warning(
                "Suggestion fetch failed — keeping %d cached: %s", len(store.suggestions), suggestions
            )
        else:
            store.suggestions = list(suggestions)

        if want_stats:
            stats = outcomes["stats"]
            if isinstance(stats, Exception):
                failed.add("stats")
                logger.warning("Stats fetch failed: %s", stats)
            else:
                store.stats = stats
                store.timestamps.last_stats = started

        logger.info(
            "Loaded %d message(s), %d sender(s), %d suggestion(s)%s",
            len(store.messages),
            len(store.senders),
            len(store.suggestions),
            f" — failed: {', '.join(sorted(failed))}" if failed else "",
        )
        return MergedResult(
            messages=tuple(store.messages),
            pagination=store.pagination,
            senders=tuple(store.senders),
            suggestions=tuple(store.suggestions),
            stats=store.stats,
            error=error,
            failed=frozenset(failed),
        )
