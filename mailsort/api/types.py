"""Data types shared between the backend client and the mailbox cache."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class SuggestionAction(str, Enum):
    """Action the triage backend proposes for a message or a sender."""

    ARCHIVE = "archive"
    DELETE = "delete"
    LABEL = "label"
    KEEP = "keep"


class SuggestionStatus(str, Enum):
    PENDING = "pending"
    APPLIED = "applied"
    REJECTED = "rejected"


@dataclass(frozen=True)
class MessageSummary:
    """A message as listed by the backend — headers and snippet, no body.

    Immutable once fetched.  The cache replaces an instance wholesale when a
    local mutation patches a field (e.g. ``is_read``).
    """

    message_id: str
    sender: str
    subject: str
    snippet: str
    received_date: str | None = None
    is_read: bool = False
    label_ids: frozenset[str] = field(default_factory=frozenset)
    recipients: tuple[str, ...] = ()
    thread_id: str = ""


@dataclass(frozen=True)
class SenderPreference:
    """Learned per-sender default, editable via the preferences endpoint."""

    id: str
    default_action: str
    default_label: str | None = None
    auto_apply: bool = False


@dataclass(frozen=True)
class Sender:
    sender_email: str
    email_count: int
    sender_name: str | None = None
    sender_domain: str | None = None
    preference: SenderPreference | None = None


@dataclass(frozen=True)
class Suggestion:
    """An AI triage suggestion for a single message.

    ``email_id`` references a MessageSummary.message_id; removing the
    suggestion never removes the message.
    """

    id: str
    email_id: str
    action: str
    confidence: float
    reasoning: str = ""
    status: str = SuggestionStatus.PENDING.value
    label_name: str | None = None
    legacy_id: str | None = None  # "_id" on older backends

    def matches(self, suggestion_id: str) -> bool:
        """True if suggestion_id is this suggestion's id or its legacy id."""
        return (self.id or self.legacy_id) == suggestion_id


@dataclass(frozen=True)
class LabelStat:
    label_id: str
    label_name: str
    messages_total: int = 0
    messages_unread: int = 0
    threads_total: int = 0
    type: str = ""


@dataclass(frozen=True)
class MailboxStats:
    """Aggregate mailbox counts.  Always replaced as a whole, never merged."""

    total_messages: int = 0
    inbox_count: int = 0
    unread_count: int = 0
    sent_count: int = 0
    draft_count: int = 0
    spam_count: int = 0
    trash_count: int = 0
    total_threads: int = 0
    label_stats: tuple[LabelStat, ...] = ()


@dataclass(frozen=True)
class PaginationState:
    """Continuation cursor for the message list.

    ``next_page_token is None`` means there are no more pages.
    """

    next_page_token: str | None = None
    result_size_estimate: int = 0

    @property
    def has_more(self) -> bool:
        return self.next_page_token is not None


#: Pagination value used for an empty cache, a new query, or a forced refresh.
EMPTY_PAGINATION = PaginationState()


@dataclass(frozen=True)
class MessagePage:
    """One page of messages plus the cursor to the next page."""

    messages: tuple[MessageSummary, ...]
    pagination: PaginationState = EMPTY_PAGINATION


@dataclass(frozen=True)
class SyncReport:
    """Result of an upstream sync: messages written / messages seen."""

    synced: int = 0
    total: int = 0


@dataclass(frozen=True)
class BulkResult:
    applied_count: int
    total: int = 0


# JSON-decoded value from a backend response
JsonValue = dict[str, Any] | list[Any] | str | int | float | bool | None
