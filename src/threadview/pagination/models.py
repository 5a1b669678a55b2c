"""Pydantic v2 models for page fetches and the assembled thread view."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from threadview.domain.models import NormalizedMessage
from threadview.domain.types import Confidence


class FetchedPage(BaseModel):
    """One response from a message page source.

    ``rows`` are newest first and may hold ``RawMessage`` instances or the
    store's raw dicts.  ``total_count`` is only consulted on the first page.
    """

    model_config = ConfigDict(frozen=True)

    rows: list[Any] = Field(default_factory=list)
    total_count: int | None = None


class ThreadPage(BaseModel):
    """A fetched page after trimming and normalization."""

    model_config = ConfigDict(frozen=True)

    cursor: str | None  # the cursor this page was requested with
    messages: list[NormalizedMessage]
    raw_count: int
    has_more: bool
    oldest_cursor: str | None
    total_count: int | None = None
    confidence: Confidence | None = None
    total_normalized_estimated: int | None = None

    @property
    def is_first(self) -> bool:
        """Whether this is the newest (initial) page of the thread."""
        return self.cursor is None


class ThreadView(BaseModel):
    """Snapshot of an assembled thread for the rendering layer.

    ``total_normalized_estimated`` is a projection; it should not be shown
    as a count when ``confidence`` is ``low``.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    conversation_id: str | None
    messages: list[NormalizedMessage] = Field(default_factory=list)
    total_count: int = 0
    normalized_count_loaded: int = 0
    total_normalized_estimated: int = 0
    confidence: Confidence = Confidence.LOW
    has_next_page: bool = False
    is_fetching_next_page: bool = False
    is_loading: bool = False
    error: Exception | None = None
