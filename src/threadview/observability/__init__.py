"""Metrics instrumentation for the thread message pipeline."""

from threadview.observability.metrics import (
    DUPLICATES_COLLAPSED,
    MALFORMED_ROWS,
    PAGES_FETCHED,
    STALE_PAGES,
)

__all__ = [
    "DUPLICATES_COLLAPSED",
    "MALFORMED_ROWS",
    "PAGES_FETCHED",
    "STALE_PAGES",
]
