"""Tests for ThreadMessageAssembler: paging, cross-page dedup and scoping."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock

import pytest
from prometheus_client import REGISTRY

from threadview.config import Settings
from threadview.domain.models import NormalizationContext
from threadview.domain.types import Confidence
from threadview.pagination.assembler import ThreadMessageAssembler, assemble_messages
from threadview.pagination.models import FetchedPage
from threadview.pagination.page import build_page
from threadview.pagination.source import InMemoryMessageSource

RowFactory = Callable[..., dict[str, Any]]

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _minute(n: int) -> str:
    return f"2024-01-01T10:{n:02d}:00Z"


def _cursor(n: int) -> str:
    return f"2024-01-01T10:{n:02d}:00.000Z"


def _sample(name: str, labels: dict[str, str] | None = None) -> float:
    return REGISTRY.get_sample_value(name, labels or {}) or 0.0


class FlakySource:
    """Wraps a source and raises on selected call numbers (1-based)."""

    def __init__(self, inner: InMemoryMessageSource, fail_on: set[int]) -> None:
        self.inner = inner
        self.fail_on = fail_on
        self.attempts = 0

    async def fetch_page(self, conversation_id: str, cursor: str | None, limit: int) -> FetchedPage:
        self.attempts += 1
        if self.attempts in self.fail_on:
            raise ConnectionError("store unavailable")
        return await self.inner.fetch_page(conversation_id, cursor, limit)


class GatedSource:
    """Blocks fetches for one conversation until the gate is opened."""

    def __init__(self, inner: InMemoryMessageSource, gated: str) -> None:
        self.inner = inner
        self.gated = gated
        self.gate = asyncio.Event()
        self.entered = asyncio.Event()

    async def fetch_page(self, conversation_id: str, cursor: str | None, limit: int) -> FetchedPage:
        if conversation_id == self.gated:
            self.entered.set()
            await self.gate.wait()
        return await self.inner.fetch_page(conversation_id, cursor, limit)


class ScriptedSource:
    """Returns canned pages in order, regardless of the request."""

    def __init__(self, *pages: FetchedPage) -> None:
        self.pages = list(pages)

    async def fetch_page(self, conversation_id: str, cursor: str | None, limit: int) -> FetchedPage:
        return self.pages.pop(0)


@pytest.fixture
def source(make_row: RowFactory) -> InMemoryMessageSource:
    """Ten distinct rows, one per minute, in conversation ``c1``."""
    return InMemoryMessageSource({"c1": [make_row(f"msg-{i}", _minute(i)) for i in range(10)]})


@pytest.fixture
def assembler(
    source: InMemoryMessageSource,
    normalization_context: NormalizationContext,
    settings: Settings,
) -> ThreadMessageAssembler:
    assembler = ThreadMessageAssembler(source, normalization_context, settings)
    assembler.select_conversation("c1")
    return assembler


# ---------------------------------------------------------------------------
# Paging
# ---------------------------------------------------------------------------


class TestPaging:
    """Initial load and older pages."""

    @pytest.mark.anyio()
    async def test_initial_load_requests_one_extra_row(
        self, assembler: ThreadMessageAssembler, source: InMemoryMessageSource
    ) -> None:
        view = await assembler.load()

        assert source.calls == [("c1", None, 4)]
        assert [m.id for m in view.messages] == ["msg-7", "msg-8", "msg-9"]
        assert view.total_count == 10
        assert view.normalized_count_loaded == 3
        assert view.has_next_page is True
        assert view.is_loading is False

    @pytest.mark.anyio()
    async def test_next_page_uses_oldest_cursor(
        self, assembler: ThreadMessageAssembler, source: InMemoryMessageSource
    ) -> None:
        await assembler.load()
        view = await assembler.fetch_next_page()

        assert source.calls[1] == ("c1", _cursor(7), 21)
        assert [m.id for m in view.messages] == [f"msg-{i}" for i in range(10)]
        assert view.has_next_page is False
        assert view.total_count == 10

    @pytest.mark.anyio()
    async def test_no_more_pages_is_a_no_op(
        self, assembler: ThreadMessageAssembler, source: InMemoryMessageSource
    ) -> None:
        await assembler.load()
        await assembler.fetch_next_page()
        view = await assembler.fetch_next_page()

        assert len(source.calls) == 2
        assert view.normalized_count_loaded == 10

    @pytest.mark.anyio()
    async def test_fetch_next_without_pages_loads_first(
        self, assembler: ThreadMessageAssembler, source: InMemoryMessageSource
    ) -> None:
        await assembler.fetch_next_page()
        assert source.calls == [("c1", None, 4)]

    @pytest.mark.anyio()
    async def test_no_conversation_selected(
        self,
        source: InMemoryMessageSource,
        normalization_context: NormalizationContext,
        settings: Settings,
    ) -> None:
        assembler = ThreadMessageAssembler(source, normalization_context, settings)

        view = await assembler.load()

        assert view.conversation_id is None
        assert view.messages == []
        assert source.calls == []

    @pytest.mark.anyio()
    async def test_low_confidence_on_small_first_page(self, assembler: ThreadMessageAssembler) -> None:
        view = await assembler.load()

        assert view.confidence == Confidence.LOW
        assert view.total_normalized_estimated == 10

    @pytest.mark.anyio()
    async def test_pages_fetched_metric(self, assembler: ThreadMessageAssembler) -> None:
        initial = _sample("threadview_pages_fetched_total", {"kind": "initial"})
        older = _sample("threadview_pages_fetched_total", {"kind": "older"})

        await assembler.load()
        await assembler.fetch_next_page()

        assert _sample("threadview_pages_fetched_total", {"kind": "initial"}) == initial + 1
        assert _sample("threadview_pages_fetched_total", {"kind": "older"}) == older + 1


# ---------------------------------------------------------------------------
# Cross-page dedup
# ---------------------------------------------------------------------------


class TestCrossPageDedup:
    """Duplicates spanning pages collapse into one message."""

    @pytest.mark.anyio()
    async def test_older_page_copy_replaces_newer_duplicate(
        self, make_row: RowFactory, normalization_context: NormalizationContext, settings: Settings
    ) -> None:
        rows = [
            make_row("original", _minute(0), content="Where is my order?"),
            make_row("filler-1", _minute(1)),
            make_row("filler-2", _minute(2)),
            make_row("echo", _minute(3), content="Where is my order?"),
            make_row("filler-4", _minute(4)),
            make_row("filler-5", _minute(5)),
        ]
        assembler = ThreadMessageAssembler(
            InMemoryMessageSource({"c1": rows}), normalization_context, settings
        )
        assembler.select_conversation("c1")

        first = await assembler.load()
        assert "echo" in [m.id for m in first.messages]

        second = await assembler.fetch_next_page()
        ids = [m.id for m in second.messages]
        assert "original" in ids
        assert "echo" not in ids
        assert second.normalized_count_loaded == 5

    @pytest.mark.anyio()
    async def test_overlapping_rows_collapse(
        self, make_row: RowFactory, normalization_context: NormalizationContext, settings: Settings
    ) -> None:
        """A row returned on both pages is shown once, first-seen copy kept."""
        first_page = FetchedPage(
            rows=[
                make_row("m3", _minute(3)),
                make_row("m2", _minute(2)),
                make_row("m1", _minute(1), content="page one copy"),
                make_row("m0", _minute(0)),
            ],
            total_count=5,
        )
        second_page = FetchedPage(
            rows=[make_row("m1", _minute(1), content="page two copy"), make_row("m0", _minute(0))]
        )
        assembler = ThreadMessageAssembler(
            ScriptedSource(first_page, second_page), normalization_context, settings
        )
        assembler.select_conversation("c1")

        await assembler.load()
        view = await assembler.fetch_next_page()

        assert [m.id for m in view.messages] == ["m0", "m1", "m2", "m3"]
        assert next(m for m in view.messages if m.id == "m1").content == "page one copy"

    @pytest.mark.anyio()
    async def test_duplicates_collapsed_metric(
        self, make_row: RowFactory, normalization_context: NormalizationContext, settings: Settings
    ) -> None:
        rows = [make_row(f"dup-{i}", _minute(i), content="Same") for i in range(3)]
        assembler = ThreadMessageAssembler(
            InMemoryMessageSource({"c1": rows}), normalization_context, settings
        )
        assembler.select_conversation("c1")
        before = _sample("threadview_duplicates_collapsed_total")

        view = await assembler.load()

        assert [m.id for m in view.messages] == ["dup-0"]
        assert _sample("threadview_duplicates_collapsed_total") == before + 2

    @pytest.mark.anyio()
    async def test_reload_does_not_recount_duplicates(
        self, make_row: RowFactory, normalization_context: NormalizationContext, settings: Settings
    ) -> None:
        rows = [make_row(f"dup-{i}", _minute(i), content="Same") for i in range(3)]
        assembler = ThreadMessageAssembler(
            InMemoryMessageSource({"c1": rows}), normalization_context, settings
        )
        assembler.select_conversation("c1")
        await assembler.load()
        before = _sample("threadview_duplicates_collapsed_total")

        await assembler.load()
        await assembler.load()

        assert _sample("threadview_duplicates_collapsed_total") == before

    @pytest.mark.anyio()
    async def test_reload_is_idempotent(self, assembler: ThreadMessageAssembler) -> None:
        first = await assembler.load()
        again = await assembler.load()

        assert [m.id for m in again.messages] == [m.id for m in first.messages]
        assert again.messages == first.messages

    @pytest.mark.anyio()
    async def test_concurrent_next_page_requests(self, assembler: ThreadMessageAssembler) -> None:
        await assembler.load()

        await asyncio.gather(assembler.fetch_next_page(), assembler.fetch_next_page())

        ids = [m.id for m in assembler.messages]
        assert ids == [f"msg-{i}" for i in range(10)]
        assert len(ids) == len(set(ids))


# ---------------------------------------------------------------------------
# Errors and retries
# ---------------------------------------------------------------------------


class TestFetchErrors:
    """Fetch failures surface to the caller without losing loaded pages."""

    @pytest.mark.anyio()
    async def test_error_keeps_loaded_pages(
        self,
        source: InMemoryMessageSource,
        normalization_context: NormalizationContext,
        settings: Settings,
    ) -> None:
        assembler = ThreadMessageAssembler(
            FlakySource(source, fail_on={2}), normalization_context, settings
        )
        assembler.select_conversation("c1")
        await assembler.load()

        with pytest.raises(ConnectionError, match="store unavailable"):
            await assembler.fetch_next_page()

        view = assembler.view()
        assert isinstance(view.error, ConnectionError)
        assert [m.id for m in view.messages] == ["msg-7", "msg-8", "msg-9"]
        assert view.has_next_page is True
        assert view.is_fetching_next_page is False

    @pytest.mark.anyio()
    async def test_successful_fetch_clears_error(
        self,
        source: InMemoryMessageSource,
        normalization_context: NormalizationContext,
        settings: Settings,
    ) -> None:
        assembler = ThreadMessageAssembler(
            FlakySource(source, fail_on={1}), normalization_context, settings
        )
        assembler.select_conversation("c1")

        with pytest.raises(ConnectionError):
            await assembler.load()
        assert assembler.view().is_loading is False

        view = await assembler.load()
        assert view.error is None
        assert view.normalized_count_loaded == 3

    @pytest.mark.anyio()
    async def test_retries_configured_in_settings(
        self, source: InMemoryMessageSource, normalization_context: NormalizationContext
    ) -> None:
        settings = Settings(  # type: ignore[call-arg]
            _env_file=None,
            fetch_retry_attempts=3,
            fetch_retry_wait_initial=0,
            fetch_retry_wait_max=0,
            fetch_retry_jitter=0,
        )
        flaky = FlakySource(source, fail_on={1, 2})
        assembler = ThreadMessageAssembler(flaky, normalization_context, settings)
        assembler.select_conversation("c1")

        view = await assembler.load()

        assert flaky.attempts == 3
        assert view.error is None
        assert view.normalized_count_loaded == 3

    @pytest.mark.anyio()
    async def test_no_retry_by_default(
        self,
        source: InMemoryMessageSource,
        normalization_context: NormalizationContext,
        settings: Settings,
    ) -> None:
        flaky = FlakySource(source, fail_on={1})
        assembler = ThreadMessageAssembler(flaky, normalization_context, settings)
        assembler.select_conversation("c1")

        with pytest.raises(ConnectionError):
            await assembler.load()
        assert flaky.attempts == 1


# ---------------------------------------------------------------------------
# Conversation scoping
# ---------------------------------------------------------------------------


class TestConversationScope:
    """State is scoped to the selected conversation."""

    @pytest.mark.anyio()
    async def test_switch_discards_state(
        self, assembler: ThreadMessageAssembler, source: InMemoryMessageSource, make_row: RowFactory
    ) -> None:
        source.add("c2", make_row("other", _minute(0)))
        await assembler.load()

        assembler.select_conversation("c2")
        assert assembler.view().messages == []
        assert assembler.view().total_count == 0

        view = await assembler.load()
        assert view.conversation_id == "c2"
        assert [m.id for m in view.messages] == ["other"]

    @pytest.mark.anyio()
    async def test_reselecting_same_conversation_keeps_state(
        self, assembler: ThreadMessageAssembler
    ) -> None:
        await assembler.load()
        assembler.select_conversation("c1")
        assert assembler.view().normalized_count_loaded == 3

    @pytest.mark.anyio()
    async def test_stale_page_is_discarded(
        self,
        source: InMemoryMessageSource,
        normalization_context: NormalizationContext,
        settings: Settings,
        make_row: RowFactory,
    ) -> None:
        source.add("c2", make_row("other", _minute(0)))
        gated = GatedSource(source, gated="c1")
        assembler = ThreadMessageAssembler(gated, normalization_context, settings)
        assembler.select_conversation("c1")
        before = _sample("threadview_stale_pages_discarded_total")

        pending = asyncio.create_task(assembler.load())
        await gated.entered.wait()
        assert assembler.view().is_loading is True

        assembler.select_conversation("c2")
        assert assembler.view().is_loading is False
        gated.gate.set()
        view = await pending

        assert view.conversation_id == "c2"
        assert view.messages == []
        assert _sample("threadview_stale_pages_discarded_total") == before + 1

    @pytest.mark.anyio()
    async def test_stale_error_is_not_recorded(
        self,
        source: InMemoryMessageSource,
        normalization_context: NormalizationContext,
        settings: Settings,
    ) -> None:
        class GatedFailure(GatedSource):
            async def fetch_page(
                self, conversation_id: str, cursor: str | None, limit: int
            ) -> FetchedPage:
                await super().fetch_page(conversation_id, cursor, limit)
                raise ConnectionError("late failure")

        gated = GatedFailure(source, gated="c1")
        assembler = ThreadMessageAssembler(gated, normalization_context, settings)
        assembler.select_conversation("c1")

        pending = asyncio.create_task(assembler.load())
        await gated.entered.wait()
        assembler.select_conversation("c2")
        gated.gate.set()

        with pytest.raises(ConnectionError):
            await pending
        assert assembler.view().error is None

    @pytest.mark.anyio()
    async def test_invalidate_refetches_from_newest(
        self, assembler: ThreadMessageAssembler, source: InMemoryMessageSource, make_row: RowFactory
    ) -> None:
        await assembler.load()
        source.add("c1", make_row("msg-new", _minute(30)))

        assembler.invalidate()
        assert assembler.view().messages == []

        view = await assembler.load()
        assert [m.id for m in view.messages] == ["msg-8", "msg-9", "msg-new"]
        assert view.total_count == 11


class TestSourceContract:
    """Requests made against a mocked source."""

    @pytest.mark.anyio()
    async def test_error_is_reraised_untouched(
        self, normalization_context: NormalizationContext, settings: Settings
    ) -> None:
        error = PermissionError("row-level security denied")
        source = AsyncMock()
        source.fetch_page.side_effect = error
        assembler = ThreadMessageAssembler(source, normalization_context, settings)
        assembler.select_conversation("c1")

        with pytest.raises(PermissionError) as exc_info:
            await assembler.load()

        assert exc_info.value is error
        assert assembler.view().error is error
        source.fetch_page.assert_awaited_once_with("c1", None, 4)

    @pytest.mark.anyio()
    async def test_page_size_settings_drive_limits(
        self, make_row: RowFactory, normalization_context: NormalizationContext
    ) -> None:
        settings = Settings(_env_file=None, initial_page_size=2, page_size=5)  # type: ignore[call-arg]
        source = AsyncMock()
        source.fetch_page.side_effect = [
            FetchedPage(rows=[make_row(f"m{i}", _minute(i)) for i in (9, 8, 7)], total_count=9),
            FetchedPage(rows=[make_row("m7", _minute(7))]),
        ]
        assembler = ThreadMessageAssembler(source, normalization_context, settings)
        assembler.select_conversation("c1")

        await assembler.load()
        view = await assembler.fetch_next_page()

        assert source.fetch_page.await_args_list[0].args == ("c1", None, 3)
        assert source.fetch_page.await_args_list[1].args == ("c1", _cursor(8), 6)
        assert [m.id for m in view.messages] == ["m7", "m8", "m9"]

    @pytest.mark.anyio()
    async def test_unparsable_timestamp_is_never_sent_as_cursor(
        self, make_row: RowFactory, normalization_context: NormalizationContext, settings: Settings
    ) -> None:
        source = AsyncMock()
        source.fetch_page.return_value = FetchedPage(
            rows=[
                make_row("m9", _minute(9)),
                make_row("m8", _minute(8)),
                make_row("garbled", "not-a-date"),
                make_row("m6", _minute(6)),
            ],
            total_count=4,
        )
        assembler = ThreadMessageAssembler(source, normalization_context, settings)
        assembler.select_conversation("c1")

        await assembler.load()
        await assembler.fetch_next_page()
        view = await assembler.fetch_next_page()

        cursors = [call.args[1] for call in source.fetch_page.await_args_list]
        assert cursors == [None, _cursor(8)]
        assert view.has_next_page is False


class TestAssembleMessages:
    """The pure merge over accumulated pages."""

    def test_duplicate_page_merges_idempotently(
        self, make_row: RowFactory, normalization_context: NormalizationContext, settings: Settings
    ) -> None:
        first = build_page(
            FetchedPage(rows=[make_row(f"m{i}", _minute(i)) for i in (9, 8, 7, 6)], total_count=10),
            cursor=None,
            take=3,
            ctx=normalization_context,
            settings=settings,
        )
        older = build_page(
            FetchedPage(rows=[make_row(f"m{i}", _minute(i)) for i in (6, 5, 4)]),
            cursor=first.oldest_cursor,
            take=20,
            ctx=normalization_context,
            settings=settings,
        )

        once = assemble_messages([first, older])
        twice = assemble_messages([first, older, older])

        assert twice == once
        assert [m.id for m in once] == [f"m{i}" for i in range(4, 10)]
