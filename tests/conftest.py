"""Shared pytest fixtures."""

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from mailsort.api.types import (
    MailboxStats,
    Sender,
    SenderPreference,
    Suggestion,
    SyncReport,
)
from mailsort.config import Settings


class FakeClock:
    """Manually advanced stand-in for time.monotonic()."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def message_json(message_id: str, subject: str = "Hello", **extra: Any) -> dict[str, Any]:
    """A backend message object as returned by GET /api/emails."""
    data: dict[str, Any] = {
        "messageId": message_id,
        "threadId": f"thread_{message_id}",
        "from": "alice@example.com",
        "to": ["me@example.com"],
        "subject": subject,
        "snippet": "snippet...",
        "receivedDate": "2026-02-27T09:00:00Z",
        "isRead": False,
        "labelIds": ["INBOX", "UNREAD"],
    }
    data.update(extra)
    return data


def page_json(ids: list[str], next_token: str | None = None, estimate: int = 0) -> dict[str, Any]:
    return {
        "emails": [message_json(i) for i in ids],
        "nextPageToken": next_token,
        "resultSizeEstimate": estimate,
    }


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return Settings(user_email="me@example.com", cache_ttl=300, page_size=100)


@pytest.fixture
def fake_client() -> MagicMock:
    """MailSortClient mock whose endpoints all succeed with small datasets."""
    client = MagicMock()
    client.user_email = "me@example.com"
    client.sync_mailbox = AsyncMock(return_value=SyncReport(synced=3, total=3))
    client.list_messages = AsyncMock(
        return_value=page_json(["m1", "m2", "m3"], next_token="tok_2", estimate=250)
    )
    client.list_senders = AsyncMock(return_value=[
        Sender(
            sender_email="alice@example.com",
            email_count=12,
            sender_name="Alice",
            preference=SenderPreference(id="pref_1", default_action="archive"),
        ),
        Sender(sender_email="news@shop.example", email_count=40),
    ])
    client.list_suggestions = AsyncMock(return_value=[
        Suggestion(id="s1", email_id="m1", action="archive", confidence=0.9, reasoning="Newsletter"),
        Suggestion(id="s2", email_id="m2", action="label", label_name="Finance",
                   confidence=0.7, reasoning="Invoice"),
    ])
    client.get_stats = AsyncMock(return_value=MailboxStats(
        total_messages=1200, inbox_count=250, unread_count=17,
    ))
    client.apply_suggestion = AsyncMock(return_value=None)
    client.reject_suggestion = AsyncMock(return_value=None)
    client.apply_bulk_action = AsyncMock()
    client.analyze_emails = AsyncMock(return_value=[])
    client.analyze_sender = AsyncMock(return_value=None)
    return client
