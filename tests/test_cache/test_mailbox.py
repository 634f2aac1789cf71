"""Tests for Mailbox — refresh, pagination, local mutators and remote actions."""

import asyncio
from unittest.mock import MagicMock

import pytest

from conftest import FakeClock, page_json
from mailsort.api.client import APIError
from mailsort.api.types import EMPTY_PAGINATION, BulkResult, PaginationState, Suggestion
from mailsort.cache.mailbox import Mailbox
from mailsort.config import Settings


def network_calls(client: MagicMock) -> int:
    return sum(
        getattr(client, name).await_count
        for name in ("sync_mailbox", "list_messages", "list_senders", "list_suggestions", "get_stats")
    )


@pytest.fixture
def mailbox(fake_client: MagicMock, settings: Settings, clock: FakeClock) -> Mailbox:
    return Mailbox(fake_client, settings, clock=clock)


# ── refresh ────────────────────────────────────────────────────────────────────


class TestRefresh:
    async def test_first_refresh_syncs_and_loads_everything(
        self, mailbox: Mailbox, fake_client: MagicMock
    ) -> None:
        snapshot = await mailbox.refresh(query="in:inbox")

        fake_client.sync_mailbox.assert_awaited_once()
        fake_client.list_messages.assert_awaited_once_with("in:inbox", 100)
        fake_client.list_senders.assert_awaited_once()
        fake_client.list_suggestions.assert_awaited_once()
        fake_client.get_stats.assert_awaited_once()
        assert [m.message_id for m in snapshot.messages] == ["m1", "m2", "m3"]
        assert len(snapshot.senders) == 2
        assert [s.id for s in snapshot.suggestions] == ["s1", "s2"]
        assert snapshot.stats is not None and snapshot.stats.total_messages == 1200
        assert snapshot.pagination == PaginationState("tok_2", 250)
        assert snapshot.loading is False
        assert snapshot.error is None
        assert mailbox.query == "in:inbox"

    async def test_second_refresh_within_ttl_is_served_from_memory(
        self, mailbox: Mailbox, fake_client: MagicMock, clock: FakeClock
    ) -> None:
        first = await mailbox.refresh()
        calls = network_calls(fake_client)
        clock.advance(60)

        second = await mailbox.refresh()

        assert second == first
        assert network_calls(fake_client) == calls

    async def test_refresh_after_ttl_refetches_and_resyncs(
        self, mailbox: Mailbox, fake_client: MagicMock, clock: FakeClock
    ) -> None:
        await mailbox.refresh()
        clock.advance(300)

        await mailbox.refresh()

        assert fake_client.list_messages.await_count == 2
        assert fake_client.sync_mailbox.await_count == 2
        assert fake_client.get_stats.await_count == 2

    async def test_force_refresh_skips_cache_but_not_sync_gate(
        self, mailbox: Mailbox, fake_client: MagicMock, clock: FakeClock
    ) -> None:
        await mailbox.refresh()
        clock.advance(30)

        await mailbox.refresh(force_refresh=True)

        assert fake_client.list_messages.await_count == 2
        assert fake_client.get_stats.await_count == 2
        fake_client.sync_mailbox.assert_awaited_once()

    async def test_new_query_is_a_cache_miss(
        self, mailbox: Mailbox, fake_client: MagicMock
    ) -> None:
        await mailbox.refresh()
        fake_client.list_messages.return_value = page_json(["x1"])

        snapshot = await mailbox.refresh(query="from:bob")

        fake_client.list_messages.assert_awaited_with("from:bob", 100)
        assert [m.message_id for m in snapshot.messages] == ["x1"]
        assert snapshot.pagination == EMPTY_PAGINATION
        assert mailbox.query == "from:bob"

    async def test_failed_new_query_keeps_old_query_pageable(
        self, mailbox: Mailbox, fake_client: MagicMock
    ) -> None:
        await mailbox.refresh()
        fake_client.list_messages.side_effect = APIError("down")

        failed = await mailbox.refresh(query="from:bob")

        assert failed.error is not None
        assert mailbox.query == "in:inbox"
        assert failed.pagination == PaginationState("tok_2", 250)

        fake_client.list_messages.side_effect = None
        fake_client.list_messages.return_value = page_json(["m4"], next_token="tok_3", estimate=250)
        cached = await mailbox.refresh()
        assert cached.pagination == PaginationState("tok_2", 250)
        assert fake_client.list_messages.await_count == 2

        await mailbox.load_more()

        fake_client.list_messages.assert_awaited_with("in:inbox", 100, page_token="tok_2")
        assert [m.message_id for m in mailbox.snapshot().messages] == ["m1", "m2", "m3", "m4"]
        assert mailbox.snapshot().pagination == PaginationState("tok_3", 250)

    async def test_failed_force_refresh_keeps_cursor(
        self, mailbox: Mailbox, fake_client: MagicMock
    ) -> None:
        await mailbox.refresh()
        fake_client.list_messages.side_effect = APIError("down")

        snapshot = await mailbox.refresh(force_refresh=True)

        assert snapshot.pagination == PaginationState("tok_2", 250)
        assert len(snapshot.messages) == 3

    async def test_sync_failure_does_not_block_read(
        self, mailbox: Mailbox, fake_client: MagicMock
    ) -> None:
        fake_client.sync_mailbox.side_effect = APIError("provider timeout")

        snapshot = await mailbox.refresh()

        assert len(snapshot.messages) == 3
        assert snapshot.error is None

    async def test_message_failure_surfaces_error(
        self, mailbox: Mailbox, fake_client: MagicMock
    ) -> None:
        fake_client.list_messages.side_effect = APIError("500: boom")

        snapshot = await mailbox.refresh()

        assert snapshot.messages == ()
        assert snapshot.error is not None and "boom" in snapshot.error
        assert len(snapshot.suggestions) == 2

    async def test_error_cleared_by_next_successful_refresh(
        self, mailbox: Mailbox, fake_client: MagicMock
    ) -> None:
        fake_client.list_messages.side_effect = APIError("500: boom")
        await mailbox.refresh()
        fake_client.list_messages.side_effect = None

        snapshot = await mailbox.refresh()

        assert snapshot.error is None

    async def test_empty_mailbox_is_refetched(
        self, mailbox: Mailbox, fake_client: MagicMock
    ) -> None:
        fake_client.list_messages.return_value = []
        await mailbox.refresh()

        await mailbox.refresh()

        assert fake_client.list_messages.await_count == 2

    async def test_loading_flag_set_while_fetching(
        self, mailbox: Mailbox, fake_client: MagicMock
    ) -> None:
        seen: list[bool] = []

        async def list_senders() -> list:
            seen.append(mailbox.snapshot().loading)
            return []

        fake_client.list_senders.side_effect = list_senders

        snapshot = await mailbox.refresh()

        assert seen == [True]
        assert snapshot.loading is False


# ── load_more ──────────────────────────────────────────────────────────────────


class TestLoadMore:
    async def test_appends_next_page_in_arrival_order(
        self, mailbox: Mailbox, fake_client: MagicMock
    ) -> None:
        await mailbox.refresh()
        fake_client.list_messages.return_value = page_json(["m9", "m4"], next_token="tok_3", estimate=250)

        await mailbox.load_more()

        fake_client.list_messages.assert_awaited_with("in:inbox", 100, page_token="tok_2")
        snapshot = mailbox.snapshot()
        assert [m.message_id for m in snapshot.messages] == ["m1", "m2", "m3", "m9", "m4"]
        assert snapshot.pagination == PaginationState("tok_3", 250)

    async def test_overlapping_page_does_not_duplicate(
        self, mailbox: Mailbox, fake_client: MagicMock
    ) -> None:
        await mailbox.refresh()
        fake_client.list_messages.return_value = page_json(["m3", "m4"])

        await mailbox.load_more()

        assert [m.message_id for m in mailbox.snapshot().messages] == ["m1", "m2", "m3", "m4"]

    async def test_noop_without_next_page(
        self, mailbox: Mailbox, fake_client: MagicMock
    ) -> None:
        fake_client.list_messages.return_value = page_json(["m1"])
        await mailbox.refresh()

        await mailbox.load_more()

        fake_client.list_messages.assert_awaited_once()

    async def test_concurrent_calls_fetch_once(
        self, mailbox: Mailbox, fake_client: MagicMock
    ) -> None:
        await mailbox.refresh()
        release = asyncio.Event()

        async def slow_page(*_args: object, **_kwargs: object) -> dict:
            await release.wait()
            return page_json(["m4"])

        fake_client.list_messages.side_effect = slow_page

        first = asyncio.create_task(mailbox.load_more())
        await asyncio.sleep(0)
        assert mailbox.snapshot().loading_more is True
        await mailbox.load_more()
        release.set()
        await first

        assert fake_client.list_messages.await_count == 2  # refresh + one page
        assert [m.message_id for m in mailbox.snapshot().messages] == ["m1", "m2", "m3", "m4"]
        assert mailbox.snapshot().loading_more is False

    async def test_failure_keeps_cursor_for_retry(
        self, mailbox: Mailbox, fake_client: MagicMock
    ) -> None:
        await mailbox.refresh()
        fake_client.list_messages.side_effect = APIError("timeout")

        await mailbox.load_more()

        snapshot = mailbox.snapshot()
        assert len(snapshot.messages) == 3
        assert snapshot.pagination == PaginationState("tok_2", 250)
        assert snapshot.loading_more is False

    async def test_cancelled_load_releases_guard(
        self, mailbox: Mailbox, fake_client: MagicMock
    ) -> None:
        await mailbox.refresh()

        async def hang(*_args: object, **_kwargs: object) -> dict:
            await asyncio.Event().wait()
            return {}

        fake_client.list_messages.side_effect = hang
        task = asyncio.create_task(mailbox.load_more())
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert mailbox.snapshot().loading_more is False
        assert mailbox.snapshot().pagination.next_page_token == "tok_2"

    async def test_different_query_is_refused(
        self, mailbox: Mailbox, fake_client: MagicMock
    ) -> None:
        await mailbox.refresh()

        await mailbox.load_more("from:bob")

        fake_client.list_messages.assert_awaited_once()
        assert len(mailbox.snapshot().messages) == 3

    async def test_page_landing_after_clear_is_discarded(
        self, mailbox: Mailbox, fake_client: MagicMock
    ) -> None:
        await mailbox.refresh()
        release = asyncio.Event()

        async def slow_page(*_args: object, **_kwargs: object) -> dict:
            await release.wait()
            return page_json(["m4"], next_token="tok_3")

        fake_client.list_messages.side_effect = slow_page
        task = asyncio.create_task(mailbox.load_more())
        await asyncio.sleep(0)
        mailbox.clear_cache()
        release.set()
        await task

        snapshot = mailbox.snapshot()
        assert snapshot.messages == ()
        assert snapshot.pagination == EMPTY_PAGINATION

    async def test_page_landing_after_query_change_is_discarded(
        self, mailbox: Mailbox, fake_client: MagicMock
    ) -> None:
        await mailbox.refresh()
        release = asyncio.Event()

        async def list_messages(query: str, max_results: int, page_token: str | None = None) -> dict:
            if page_token is None:
                return page_json(["bob1"], next_token="bob_tok_2", estimate=40)
            await release.wait()
            return page_json(["inbox_p2"], next_token="inbox_tok_3", estimate=250)

        fake_client.list_messages.side_effect = list_messages
        task = asyncio.create_task(mailbox.load_more())
        await asyncio.sleep(0)
        await mailbox.refresh(query="from:bob")
        release.set()
        await task

        snapshot = mailbox.snapshot()
        assert mailbox.query == "from:bob"
        assert [m.message_id for m in snapshot.messages] == ["bob1"]
        assert snapshot.pagination == PaginationState("bob_tok_2", 40)
        assert snapshot.loading_more is False

    async def test_page_landing_after_forced_reload_is_discarded(
        self, mailbox: Mailbox, fake_client: MagicMock
    ) -> None:
        await mailbox.refresh()
        fake_client.list_messages.return_value = page_json(["m4"], next_token="tok_3", estimate=250)
        await mailbox.load_more()
        release = asyncio.Event()

        async def list_messages(query: str, max_results: int, page_token: str | None = None) -> dict:
            if page_token is None:
                return page_json(["m1", "m2", "m3"], next_token="tok_2", estimate=250)
            await release.wait()
            return page_json(["m5"], next_token="tok_4", estimate=250)

        fake_client.list_messages.side_effect = list_messages
        task = asyncio.create_task(mailbox.load_more())
        await asyncio.sleep(0)
        await mailbox.refresh(force_refresh=True)
        release.set()
        await task

        snapshot = mailbox.snapshot()
        assert [m.message_id for m in snapshot.messages] == ["m1", "m2", "m3"]
        assert snapshot.pagination == PaginationState("tok_2", 250)


# ── Local mutators ─────────────────────────────────────────────────────────────


class TestLocalMutators:
    async def test_remove_suggestion_locally(
        self, mailbox: Mailbox, fake_client: MagicMock
    ) -> None:
        before = await mailbox.refresh()
        calls = network_calls(fake_client)

        mailbox.remove_suggestion_locally("s1")

        after = mailbox.snapshot()
        assert [s.id for s in after.suggestions] == ["s2"]
        assert after.messages == before.messages
        assert after.senders == before.senders
        assert after.stats == before.stats
        assert network_calls(fake_client) == calls

    async def test_remove_suggestion_by_legacy_id(
        self, mailbox: Mailbox, fake_client: MagicMock
    ) -> None:
        fake_client.list_suggestions.return_value = [
            Suggestion(id="", legacy_id="old_1", email_id="m1", action="keep", confidence=0.3),
        ]
        await mailbox.refresh()

        mailbox.remove_suggestion_locally("old_1")

        assert mailbox.snapshot().suggestions == ()

    async def test_mark_read_locally(self, mailbox: Mailbox) -> None:
        await mailbox.refresh()

        assert mailbox.mark_read_locally("m2") is True

        by_id = {m.message_id: m for m in mailbox.snapshot().messages}
        assert by_id["m2"].is_read is True
        assert by_id["m1"].is_read is False

    async def test_clear_cache_empties_everything(
        self, mailbox: Mailbox, fake_client: MagicMock
    ) -> None:
        await mailbox.refresh()
        assert mailbox.is_cache_valid()

        mailbox.clear_cache()

        assert mailbox.snapshot() == type(mailbox.snapshot())()
        assert mailbox.is_cache_valid() is False
        assert mailbox.query is None

    async def test_refresh_after_clear_goes_to_network(
        self, mailbox: Mailbox, fake_client: MagicMock
    ) -> None:
        await mailbox.refresh()
        mailbox.clear_cache()

        await mailbox.refresh()

        assert fake_client.sync_mailbox.await_count == 2
        assert fake_client.list_messages.await_count == 2

    async def test_refresh_suggestions_keeps_old_list_on_failure(
        self, mailbox: Mailbox, fake_client: MagicMock
    ) -> None:
        await mailbox.refresh()
        fake_client.list_suggestions.side_effect = APIError("down")

        await mailbox.refresh_suggestions()

        assert len(mailbox.snapshot().suggestions) == 2


# ── Remote actions ─────────────────────────────────────────────────────────────


class TestRemoteActions:
    async def test_apply_success_removes_and_reloads(
        self, mailbox: Mailbox, fake_client: MagicMock
    ) -> None:
        await mailbox.refresh()
        fake_client.list_suggestions.return_value = [
            Suggestion(id="s2", email_id="m2", action="keep", confidence=0.7),
        ]

        assert await mailbox.apply_suggestion("s1") is True

        fake_client.apply_suggestion.assert_awaited_once_with("s1")
        assert fake_client.list_messages.await_count == 2
        assert [s.id for s in mailbox.snapshot().suggestions] == ["s2"]

    async def test_apply_failure_leaves_cache_untouched(
        self, mailbox: Mailbox, fake_client: MagicMock
    ) -> None:
        before = await mailbox.refresh()
        fake_client.apply_suggestion.side_effect = APIError("404: Suggestion not found")

        assert await mailbox.apply_suggestion("s1") is False

        after = mailbox.snapshot()
        assert after.suggestions == before.suggestions
        assert after.error is not None and "Suggestion not found" in after.error
        fake_client.list_messages.assert_awaited_once()

    async def test_reject_success_removes_without_reload(
        self, mailbox: Mailbox, fake_client: MagicMock
    ) -> None:
        await mailbox.refresh()

        assert await mailbox.reject_suggestion("s2") is True

        assert [s.id for s in mailbox.snapshot().suggestions] == ["s1"]
        fake_client.list_messages.assert_awaited_once()

    async def test_reject_failure_keeps_suggestion(
        self, mailbox: Mailbox, fake_client: MagicMock
    ) -> None:
        await mailbox.refresh()
        fake_client.reject_suggestion.side_effect = APIError("500")

        assert await mailbox.reject_suggestion("s2") is False

        assert len(mailbox.snapshot().suggestions) == 2
        assert mailbox.snapshot().error is not None

    async def test_bulk_action_reloads_on_success(
        self, mailbox: Mailbox, fake_client: MagicMock
    ) -> None:
        await mailbox.refresh()
        fake_client.apply_bulk_action.return_value = BulkResult(applied_count=12, total=12)

        result = await mailbox.apply_bulk_action("news@shop.example", "archive")

        assert result == BulkResult(applied_count=12, total=12)
        fake_client.apply_bulk_action.assert_awaited_once_with("news@shop.example", "archive", None)
        assert fake_client.list_messages.await_count == 2

    async def test_bulk_action_failure_sets_error(
        self, mailbox: Mailbox, fake_client: MagicMock
    ) -> None:
        await mailbox.refresh()
        fake_client.apply_bulk_action.side_effect = APIError("500")

        assert await mailbox.apply_bulk_action("x@y.z", "delete") is None

        assert "x@y.z" in (mailbox.snapshot().error or "")
        fake_client.list_messages.assert_awaited_once()

    async def test_analyze_requires_ids(self, mailbox: Mailbox, fake_client: MagicMock) -> None:
        assert await mailbox.analyze_emails([]) is None
        fake_client.analyze_emails.assert_not_called()
        assert mailbox.snapshot().error

    async def test_analyze_sender_refreshes_senders_only(
        self, mailbox: Mailbox, fake_client: MagicMock
    ) -> None:
        await mailbox.refresh()

        assert await mailbox.analyze_sender("alice@example.com") is True

        assert fake_client.list_senders.await_count == 2
        fake_client.list_messages.assert_awaited_once()
