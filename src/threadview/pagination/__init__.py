"""Cursor-based page fetching and cross-page message assembly."""

from threadview.pagination.assembler import (
    ThreadMessageAssembler,
    assemble_messages,
    with_retries,
)
from threadview.pagination.models import FetchedPage, ThreadPage, ThreadView
from threadview.pagination.page import build_page, coerce_raw_message, estimate_total
from threadview.pagination.source import InMemoryMessageSource, MessagePageSource

__all__ = [
    "FetchedPage",
    "InMemoryMessageSource",
    "MessagePageSource",
    "ThreadMessageAssembler",
    "ThreadPage",
    "ThreadView",
    "assemble_messages",
    "build_page",
    "coerce_raw_message",
    "estimate_total",
    "with_retries",
]
