"""Message page source contract and an in-memory implementation.

A page source returns rows of one conversation newest first, excluding rows
whose ``created_at`` is at or after a non-null cursor ("strictly older
than").
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any, Protocol

from threadview.domain.models import RawMessage
from threadview.messages.timestamps import EPOCH, parse_timestamp
from threadview.pagination.models import FetchedPage


class MessagePageSource(Protocol):
    """Paginated read access to a conversation's messages."""

    async def fetch_page(
        self, conversation_id: str, cursor: str | None, limit: int
    ) -> FetchedPage:
        """Fetch up to *limit* rows strictly older than *cursor*, newest first.

        ``total_count`` must be populated when *cursor* is ``None``.
        """
        ...


def _row_field(row: RawMessage | dict[str, Any], snake: str, camel: str) -> Any:
    if isinstance(row, RawMessage):
        return getattr(row, snake)
    return row.get(snake, row.get(camel))


class InMemoryMessageSource:
    """In-memory ``MessagePageSource`` for tests and local tooling.

    Rows with unparsable timestamps sort as the oldest.  Every call is
    recorded in ``calls`` as ``(conversation_id, cursor, limit)``.
    """

    def __init__(
        self, rows: dict[str, Iterable[RawMessage | dict[str, Any]]] | None = None
    ) -> None:
        self._rows: dict[str, list[RawMessage | dict[str, Any]]] = {}
        self.calls: list[tuple[str, str | None, int]] = []
        for conversation_id, conversation_rows in (rows or {}).items():
            self.add(conversation_id, *conversation_rows)

    def add(self, conversation_id: str, *rows: RawMessage | dict[str, Any]) -> None:
        """Append rows to a conversation."""
        self._rows.setdefault(conversation_id, []).extend(rows)

    @staticmethod
    def _timestamp(row: RawMessage | dict[str, Any]) -> Any:
        value = _row_field(row, "created_at", "createdAt")
        return parse_timestamp(str(value) if value is not None else None) or EPOCH

    async def fetch_page(
        self, conversation_id: str, cursor: str | None, limit: int
    ) -> FetchedPage:
        """Return up to *limit* rows strictly older than *cursor*, newest first."""
        self.calls.append((conversation_id, cursor, limit))
        rows = sorted(self._rows.get(conversation_id, []), key=self._timestamp, reverse=True)
        total_count = len(rows) if cursor is None else None

        if cursor is not None:
            bound = parse_timestamp(cursor)
            if bound is not None:
                rows = [row for row in rows if self._timestamp(row) < bound]

        return FetchedPage(rows=rows[:limit], total_count=total_count)
