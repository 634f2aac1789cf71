"""Cache store — last known good copy of each mailbox dataset, plus staleness bookkeeping."""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field

from mailsort.api.types import (
    EMPTY_PAGINATION,
    MailboxStats,
    MessagePage,
    MessageSummary,
    PaginationState,
    Sender,
    Suggestion,
)

logger = logging.getLogger(__name__)

# Fields of a cached MessageSummary that local mutations may patch.
_PATCHABLE_MESSAGE_FIELDS = frozenset({"is_read", "label_ids"})


def is_fresh(timestamp: float | None, now: float, ttl: float) -> bool:
    """True iff the dataset has been populated and is younger than ttl.

    A timestamp of None means "never fetched" and is always stale.
    """
    if timestamp is None:
        return False
    return now - timestamp < ttl


@dataclass
class CacheTimestamps:
    """Clock readings of the last successful fetch, sync and stats load.

    Plain mutable fields: updating them never counts as a change consumers
    need to hear about.
    """

    last_fetch: float | None = None
    last_sync: float | None = None
    last_stats: float | None = None

    def reset(self) -> None:
        self.last_fetch = None
        self.last_sync = None
        self.last_stats = None


@dataclass(frozen=True)
class MailboxSnapshot:
    """Read-only view of the cache handed to presentation code."""

    messages: tuple[MessageSummary, ...] = ()
    senders: tuple[Sender, ...] = ()
    suggestions: tuple[Suggestion, ...] = ()
    stats: MailboxStats | None = None
    pagination: PaginationState = EMPTY_PAGINATION
    loading: bool = False
    loading_more: bool = False
    error: str | None = None


@dataclass
class CacheStore:
    """Mutable holder for the four datasets and the message cursor.

    ``query`` records which search the cached messages and cursor belong to;
    it only changes when a message page for a new query is stored.
    """

    messages: list[MessageSummary] = field(default_factory=list)
    senders: list[Sender] = field(default_factory=list)
    suggestions: list[Suggestion] = field(default_factory=list)
    stats: MailboxStats | None = None
    pagination: PaginationState = EMPTY_PAGINATION
    query: str | None = None
    timestamps: CacheTimestamps = field(default_factory=CacheTimestamps)

    def clear(self) -> None:
        """Reset every dataset and timestamp to its empty state.

        Timestamps are reset in place: other components hold a reference to
        the same CacheTimestamps object.
        """
        self.messages = []
        self.senders = []
        self.suggestions = []
        self.stats = None
        self.pagination = EMPTY_PAGINATION
        self.query = None
        self.timestamps.reset()

    # ── Messages ───────────────────────────────────────────────────────────────

    def replace_messages(self, page: MessagePage, query: str) -> None:
        """Store a first page: messages and cursor both replaced."""
        self.messages = _dedupe(page.messages, seen=set())
        self.pagination = page.pagination
        self.query = query

    def append_messages(self, page: MessagePage) -> int:
        """Append a follow-on page in arrival order and advance the cursor.

        Messages whose ID is already cached are dropped: the upstream result
        window can shift between pages.  Returns the number actually added.
        """
        seen = {m.message_id for m in self.messages}
        fresh = _dedupe(page.messages, seen=seen)
        self.messages.extend(fresh)
        self.pagination = page.pagination
        skipped = len(page.messages) - len(fresh)
        if skipped:
            logger.debug("Dropped %d duplicate message(s) from appended page", skipped)
        return len(fresh)

    def patch_message(self, message_id: str, **changes: object) -> bool:
        """Replace one cached message with a copy carrying ``changes``.

        Returns False when the message is not cached.
        """
        unknown = set(changes) - _PATCHABLE_MESSAGE_FIELDS
        if unknown:
            raise ValueError(f"Cannot patch message field(s): {sorted(unknown)}")
        for i, message in enumerate(self.messages):
            if message.message_id == message_id:
                self.messages[i] = dataclasses.replace(message, **changes)  # type: ignore[arg-type]
                return True
        return False

    # ── Suggestions ────────────────────────────────────────────────────────────

    def remove_suggestion(self, suggestion_id: str) -> bool:
        """Drop a suggestion by id (or legacy id).  Messages are untouched."""
        kept = [s for s in self.suggestions if not s.matches(suggestion_id)]
        removed = len(kept) != len(self.suggestions)
        self.suggestions = kept
        return removed


def _dedupe(messages: tuple[MessageSummary, ...], seen: set[str]) -> list[MessageSummary]:
    """Keep the first occurrence of each message ID not already in seen."""
    unique: list[MessageSummary] = []
    for message in messages:
        if message.message_id in seen:
            continue
        seen.add(message.message_id)
        unique.append(message)
    return unique
