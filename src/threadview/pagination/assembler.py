"""Incremental, deduplicating assembly of a conversation's messages.

``ThreadMessageAssembler`` loads a conversation newest-first in pages and
keeps one globally deduplicated, chronologically ascending message list.
Accumulated state is scoped to one conversation id: selecting another
conversation discards it, and results of fetches issued for a previous
selection are dropped when they resolve.
"""

from __future__ import annotations

import structlog

from threadview.config import Settings, get_settings
from threadview.domain.models import NormalizationContext, NormalizedMessage
from threadview.domain.types import Confidence
from threadview.messages.dedup import deduplicate_messages
from threadview.messages.normalizer import BodyExtractor
from threadview.messages.parser import extract_visible_body
from threadview.messages.timestamps import EPOCH, parse_timestamp
from threadview.observability.metrics import DUPLICATES_COLLAPSED, PAGES_FETCHED, STALE_PAGES
from threadview.pagination.models import ThreadPage, ThreadView
from threadview.pagination.page import build_page
from threadview.pagination.source import MessagePageSource
from threadview.resilience.retry import RetryingMessageSource

logger = structlog.get_logger()


def assemble_messages(pages: list[ThreadPage]) -> list[NormalizedMessage]:
    """Flatten pages in fetch order and run the global dedup pass."""
    return deduplicate_messages(message for page in pages for message in page.messages)


def with_retries(source: MessagePageSource, settings: Settings) -> MessagePageSource:
    """Wrap *source* in a ``RetryingMessageSource`` when retries are configured."""
    if settings.fetch_retry_attempts <= 1:
        return source
    return RetryingMessageSource(
        source,
        attempts=settings.fetch_retry_attempts,
        wait_initial=settings.fetch_retry_wait_initial,
        wait_max=settings.fetch_retry_wait_max,
        jitter=settings.fetch_retry_jitter,
    )


class ThreadMessageAssembler:
    """Page-by-page loader producing a deduplicated thread view.

    Args:
        source: Where pages are fetched from.
        ctx: The session normalization context, built once by the caller.
        settings: Page sizes, estimate thresholds and retry knobs.  If
            ``None``, ``get_settings()`` is used.
        body_extractor: Visible body extractor passed to the normalizer.
    """

    def __init__(
        self,
        source: MessagePageSource,
        ctx: NormalizationContext,
        settings: Settings | None = None,
        *,
        body_extractor: BodyExtractor = extract_visible_body,
    ) -> None:
        self._settings = settings if settings is not None else get_settings()
        self._source = with_retries(source, self._settings)
        self._ctx = ctx
        self._body_extractor = body_extractor

        self._conversation_id: str | None = None
        self._generation = 0
        self._pages: list[ThreadPage] = []
        self._messages: list[NormalizedMessage] = []
        self._collapsed = 0
        self._error: Exception | None = None
        self._loading = 0
        self._fetching_next = 0

    # ------------------------------------------------------------------
    # Conversation scope
    # ------------------------------------------------------------------

    @property
    def conversation_id(self) -> str | None:
        """The currently selected conversation."""
        return self._conversation_id

    def select_conversation(self, conversation_id: str | None) -> None:
        """Switch to *conversation_id*, discarding all accumulated state.

        Re-selecting the current conversation is a no-op.

        Args:
            conversation_id: The conversation to show, or ``None`` for none.
        """
        if conversation_id == self._conversation_id:
            return
        logger.debug(
            "conversation_selected",
            previous=self._conversation_id,
            conversation_id=conversation_id,
        )
        self._conversation_id = conversation_id
        self._reset()

    def invalidate(self) -> None:
        """Discard accumulated pages of the current conversation.

        Call when the store signals fresh data; the next ``load()`` rebuilds
        the thread from the newest page.
        """
        self._reset()

    def _reset(self) -> None:
        self._generation += 1
        self._pages = []
        self._messages = []
        self._collapsed = 0
        self._error = None
        self._loading = 0
        self._fetching_next = 0

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------

    def _frontier(self) -> ThreadPage | None:
        """The loaded page reaching furthest back in time."""
        cursored = [page for page in self._pages if page.oldest_cursor is not None]
        if not cursored:
            return None
        return min(
            cursored,
            key=lambda page: parse_timestamp(page.oldest_cursor) or EPOCH,
        )

    @property
    def has_next_page(self) -> bool:
        """Whether older messages remain to be fetched."""
        frontier = self._frontier()
        return frontier is not None and frontier.has_more

    async def load(self) -> ThreadView:
        """Fetch the newest page, replacing any accumulated pages.

        The conversation's total row count is taken from this page only.

        Returns:
            The updated thread view.

        Raises:
            Exception: Any error raised by the page source, untouched.
        """
        if self._conversation_id is None:
            return self.view()
        return await self._fetch(self._conversation_id, cursor=None)

    async def fetch_next_page(self) -> ThreadView:
        """Fetch the next older page, or the first page if none is loaded.

        Returns:
            The updated thread view (unchanged if there is no next page).

        Raises:
            Exception: Any error raised by the page source, untouched.
                Already accumulated pages stay in place.
        """
        if self._conversation_id is None:
            return self.view()
        if not self._pages:
            return await self.load()
        frontier = self._frontier()
        if frontier is None or not frontier.has_more:
            return self.view()
        return await self._fetch(self._conversation_id, cursor=frontier.oldest_cursor)

    async def _fetch(self, conversation_id: str, cursor: str | None) -> ThreadView:
        generation = self._generation
        is_first = cursor is None
        take = self._settings.initial_page_size if is_first else self._settings.page_size

        if is_first:
            self._loading += 1
        else:
            self._fetching_next += 1

        log = logger.bind(conversation_id=conversation_id, cursor=cursor, take=take)
        try:
            fetched = await self._source.fetch_page(conversation_id, cursor, take + 1)
        except Exception as exc:
            if generation == self._generation:
                self._error = exc
            log.error("page_fetch_failed", exception=str(exc))
            raise
        finally:
            if generation == self._generation:
                if is_first:
                    self._loading -= 1
                else:
                    self._fetching_next -= 1

        if generation != self._generation:
            STALE_PAGES.inc()
            log.info("stale_page_discarded")
            return self.view()

        PAGES_FETCHED.labels(kind="initial" if is_first else "older").inc()
        page = build_page(
            fetched,
            cursor=cursor,
            take=take,
            ctx=self._ctx,
            settings=self._settings,
            body_extractor=self._body_extractor,
        )
        if is_first:
            self._pages = [page]
        else:
            self._pages.append(page)
        self._error = None
        self._rebuild()

        log.debug(
            "page_assembled",
            raw_rows=page.raw_count,
            has_more=page.has_more,
            oldest_cursor=page.oldest_cursor,
            messages_loaded=len(self._messages),
        )
        return self.view()

    def _rebuild(self) -> None:
        flattened = sum(len(page.messages) for page in self._pages)
        self._messages = assemble_messages(self._pages)
        collapsed = flattened - len(self._messages)
        if collapsed > self._collapsed:
            DUPLICATES_COLLAPSED.inc(collapsed - self._collapsed)
        self._collapsed = collapsed

    # ------------------------------------------------------------------
    # Read model
    # ------------------------------------------------------------------

    @property
    def messages(self) -> list[NormalizedMessage]:
        """The deduplicated messages loaded so far, oldest first."""
        return list(self._messages)

    def view(self) -> ThreadView:
        """Snapshot the assembled thread for the rendering layer."""
        first = self._pages[0] if self._pages and self._pages[0].is_first else None
        return ThreadView(
            conversation_id=self._conversation_id,
            messages=list(self._messages),
            total_count=(first.total_count or 0) if first else 0,
            normalized_count_loaded=len(self._messages),
            total_normalized_estimated=(first.total_normalized_estimated or 0) if first else 0,
            confidence=(first.confidence or Confidence.LOW) if first else Confidence.LOW,
            has_next_page=self.has_next_page,
            is_fetching_next_page=self._fetching_next > 0,
            is_loading=self._loading > 0,
            error=self._error,
        )
