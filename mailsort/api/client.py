"""Mailsort backend client — wraps the triage backend's REST API behind a typed async API."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import httpx

from mailsort.api.types import (
    BulkResult,
    JsonValue,
    LabelStat,
    MailboxStats,
    MessageSummary,
    Sender,
    SenderPreference,
    Suggestion,
    SuggestionAction,
    SuggestionStatus,
    SyncReport,
)
from mailsort.config import Settings

logger = logging.getLogger(__name__)

# Header the backend uses to identify the mailbox owner
_USER_HEADER = "X-User-Email"


class APIError(Exception):
    """Raised when a backend call fails at the transport or HTTP level."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class MailSortClient:
    """Thin async wrapper around the triage backend endpoints.

    Holds one long-lived ``httpx.AsyncClient`` so repeated refreshes reuse
    the same connection pool.  Use the `mailsort_client()` context manager
    to construct and tear down correctly.

    List endpoints return parsed dataclasses, except ``list_messages`` which
    hands back the raw payload: the backend has shipped two response shapes
    for it and normalisation belongs to the cache layer.
    """

    def __init__(self, http: httpx.AsyncClient, user_email: str) -> None:
        self._http = http
        self._user_email = user_email

    @property
    def user_email(self) -> str:
        return self._user_email

    # ── Mailbox ────────────────────────────────────────────────────────────────

    async def sync_mailbox(self) -> SyncReport:
        """Ask the backend to pull new mail from the upstream provider.

        Expensive: the backend fetches full message bodies from the provider.
        Callers should go through SyncGate rather than calling this directly.
        """
        raw = await self._request("POST", "/api/emails/sync")
        if isinstance(raw, dict):
            return SyncReport(
                synced=parse_count(raw.get("synced")),
                total=parse_count(raw.get("total")),
            )
        return SyncReport()

    async def list_messages(
        self,
        query: str,
        max_results: int,
        page_token: str | None = None,
    ) -> JsonValue:
        """Return one page of messages in whichever shape the backend sends.

        Either a bare JSON list of messages or an object carrying
        ``emails``, ``nextPageToken`` and ``resultSizeEstimate``.
        """
        params: dict[str, Any] = {"q": query, "maxResults": max_results}
        if page_token:
            params["pageToken"] = page_token
        return await self._request("GET", "/api/emails", params=params)

    async def get_stats(self) -> MailboxStats:
        raw = await self._request("GET", "/api/stats")
        if not isinstance(raw, dict):
            raise APIError(f"Unexpected response type for stats: {type(raw).__name__}")
        return self.parse_stats_dict(raw)

    # ── Senders ────────────────────────────────────────────────────────────────

    async def list_senders(self) -> list[Sender]:
        raw = await self._request("GET", "/api/senders")
        return [self.parse_sender_dict(s) for s in _as_list(raw) if isinstance(s, dict)]

    async def update_sender_preference(
        self,
        preference_id: str,
        *,
        default_action: str,
        default_label: str = "",
        auto_apply: bool = False,
    ) -> None:
        """Update the stored default action for a sender."""
        await self._request(
            "PUT",
            f"/api/senders/{preference_id}/preferences",
            json={
                "autoApply": auto_apply,
                "defaultAction": default_action,
                "defaultLabel": default_label,
            },
        )
        logger.debug("Updated sender preference %s → %s", preference_id, default_action)

    # ── AI suggestions ─────────────────────────────────────────────────────────

    async def list_suggestions(
        self, status: str = SuggestionStatus.PENDING.value
    ) -> list[Suggestion]:
        raw = await self._request("GET", "/api/ai/suggestions", params={"status": status})
        return [self.parse_suggestion_dict(s) for s in _as_list(raw) if isinstance(s, dict)]

    async def apply_suggestion(self, suggestion_id: str) -> None:
        """Have the backend carry out a suggestion against the mailbox."""
        await self._request("POST", "/api/ai/apply", json={"suggestionId": suggestion_id})
        logger.info("Applied suggestion %s", suggestion_id)

    async def reject_suggestion(self, suggestion_id: str) -> None:
        await self._request("POST", f"/api/ai/suggestions/{suggestion_id}/reject")
        logger.info("Rejected suggestion %s", suggestion_id)

    async def apply_bulk_action(
        self, sender_email: str, action: str, label_name: str | None = None
    ) -> BulkResult:
        """Apply one action to every stored message from a sender."""
        raw = await self._request(
            "POST",
            "/api/ai/apply-bulk",
            json={
                "senderEmail": sender_email,
                "action": action,
                "labelName": label_name or "",
            },
        )
        data = raw if isinstance(raw, dict) else {}
        result = BulkResult(
            applied_count=parse_count(data.get("applied")),
            total=parse_count(data.get("total")),
        )
        logger.info(
            "Bulk %s for %s: %d/%d message(s)",
            action,
            sender_email,
            result.applied_count,
            result.total,
        )
        return result

    async def analyze_emails(self, email_ids: list[str]) -> list[Suggestion]:
        """Request AI suggestions for the given message IDs."""
        raw = await self._request("POST", "/api/ai/analyze", json={"emailIds": email_ids})
        return [self.parse_suggestion_dict(s) for s in _as_list(raw) if isinstance(s, dict)]

    async def analyze_sender(self, sender_email: str) -> JsonValue:
        """Request a sender-level analysis; the backend stores the outcome as a preference."""
        return await self._request(
            "POST", "/api/ai/analyze-sender", json={"senderEmail": sender_email}
        )

    async def health(self) -> bool:
        try:
            await self._request("GET", "/health")
        except APIError:
            return False
        return True

    # ── Internal helpers ───────────────────────────────────────────────────────

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> JsonValue:
        """Send a request and return the decoded JSON body.

        Raises APIError on transport failures and non-2xx responses.  Empty
        bodies (e.g. 204 No Content) return None; non-JSON bodies are
        returned as text.
        """
        logger.debug("HTTP → %s %s %s", method, path, params or json or "")
        try:
            response = await self._http.request(
                method,
                path,
                params=params,
                json=json,
                headers={_USER_HEADER: self._user_email},
            )
        except httpx.HTTPError as exc:
            raise APIError(f"{method} {path} failed: {exc}") from exc

        if response.is_error:
            detail = response.text.strip() or response.reason_phrase
            raise APIError(
                f"{method} {path} returned {response.status_code}: {detail}",
                status_code=response.status_code,
            )

        if not response.content:
            return None
        try:
            parsed: JsonValue = response.json()
            return parsed
        except ValueError:
            return response.text

    @staticmethod
    def parse_message_dict(data: dict[str, Any]) -> MessageSummary:
        """Map a backend message object (camelCase JSON) to a MessageSummary."""
        to_raw = data.get("to") or []
        if isinstance(to_raw, str):
            to_raw = [to_raw]
        date_raw = data.get("receivedDate", "")

        return MessageSummary(
            message_id=str(data.get("messageId") or data.get("id", "")),
            thread_id=str(data.get("threadId", "")),
            sender=str(data.get("from", "")),
            recipients=tuple(str(r) for r in to_raw),
            subject=str(data.get("subject") or "(no subject)"),
            snippet=str(data.get("snippet", "")),
            received_date=str(date_raw) if date_raw else None,
            is_read=bool(data.get("isRead", False)),
            label_ids=frozenset(str(lbl) for lbl in data.get("labelIds") or []),
        )

    @staticmethod
    def parse_sender_dict(data: dict[str, Any]) -> Sender:
        pref_raw = data.get("preference")
        preference = None
        if isinstance(pref_raw, dict):
            preference = SenderPreference(
                id=str(pref_raw.get("id") or pref_raw.get("_id", "")),
                default_action=str(pref_raw.get("defaultAction", "")),
                default_label=str(pref_raw["defaultLabel"]) if pref_raw.get("defaultLabel") else None,
                auto_apply=bool(pref_raw.get("autoApply", False)),
            )
        name = data.get("senderName")
        domain = data.get("senderDomain")
        return Sender(
            sender_email=str(data.get("senderEmail", "")),
            email_count=parse_count(data.get("emailCount")),
            sender_name=str(name) if name else None,
            sender_domain=str(domain) if domain else None,
            preference=preference,
        )

    @staticmethod
    def parse_suggestion_dict(data: dict[str, Any]) -> Suggestion:
        """Map a backend suggestion to a Suggestion.

        Confidence is clamped to [0, 1]; older backends send ``_id`` instead
        of ``id``.
        """
        try:
            confidence = float(data.get("confidence", 0.0))
        except (TypeError, ValueError):
            confidence = 0.0
        label = data.get("labelName")
        legacy = data.get("_id")
        return Suggestion(
            id=str(data.get("id") or ""),
            legacy_id=str(legacy) if legacy else None,
            email_id=str(data.get("emailId", "")),
            action=str(data.get("action", SuggestionAction.KEEP.value)),
            label_name=str(label) if label else None,
            confidence=min(1.0, max(0.0, confidence)),
            reasoning=str(data.get("reasoning", "")),
            status=str(data.get("status") or SuggestionStatus.PENDING.value),
        )

    @staticmethod
    def parse_stats_dict(data: dict[str, Any]) -> MailboxStats:
        label_stats = tuple(
            LabelStat(
                label_id=str(ls.get("labelId", "")),
                label_name=str(ls.get("labelName", "")),
                messages_total=parse_count(ls.get("messagesTotal")),
                messages_unread=parse_count(ls.get("messagesUnread")),
                threads_total=parse_count(ls.get("threadsTotal")),
                type=str(ls.get("type", "")),
            )
            for ls in data.get("labelStats") or []
            if isinstance(ls, dict)
        )
        return MailboxStats(
            total_messages=parse_count(data.get("totalMessages")),
            inbox_count=parse_count(data.get("inboxCount")),
            unread_count=parse_count(data.get("unreadCount")),
            sent_count=parse_count(data.get("sentCount")),
            draft_count=parse_count(data.get("draftCount")),
            spam_count=parse_count(data.get("spamCount")),
            trash_count=parse_count(data.get("trashCount")),
            total_threads=parse_count(data.get("totalThreads")),
            label_stats=label_stats,
        )


def parse_count(value: Any) -> int:
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return 0


def _as_list(raw: JsonValue) -> list[Any]:
    """List endpoints may encode an empty result as JSON null."""
    if raw is None:
        return []
    if isinstance(raw, list):
        return raw
    raise APIError(f"Expected a JSON list, got {type(raw).__name__}")


@asynccontextmanager
async def mailsort_client(settings: Settings) -> AsyncIterator[MailSortClient]:
    """Async context manager that yields a ready-to-use MailSortClient.

    Example::

        async with mailsort_client(Settings.from_env()) as client:
            senders = await client.list_senders()
    """
    if not settings.user_email:
        raise ValueError(
            "user_email must be provided or MAILSORT_USER_EMAIL env var must be set"
        )

    async with httpx.AsyncClient(
        base_url=settings.api_url,
        timeout=settings.request_timeout,
    ) as http:
        logger.info("Mailsort client ready (%s @ %s)", settings.user_email, settings.api_url)
        yield MailSortClient(http, settings.user_email)
