"""Prometheus metrics for the thread message pipeline.

Counters are incremented where the events happen (page fetch, dedup pass,
row recovery); exposing them is left to the hosting process.
"""

from __future__ import annotations

from prometheus_client import Counter

PAGES_FETCHED: Counter = Counter(
    "threadview_pages_fetched",
    "Message pages fetched from the store",
    ["kind"],
)

DUPLICATES_COLLAPSED: Counter = Counter(
    "threadview_duplicates_collapsed",
    "Normalized messages collapsed into an earlier delivery",
)

MALFORMED_ROWS: Counter = Counter(
    "threadview_malformed_rows",
    "Rows recovered from validation or normalization failures",
    ["stage"],
)

STALE_PAGES: Counter = Counter(
    "threadview_stale_pages_discarded",
    "Page results discarded because the conversation changed mid-fetch",
)
