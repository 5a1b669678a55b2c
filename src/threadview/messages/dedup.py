"""Global deduplication of normalized messages.

A single pure pass: candidates are ordered by ``(timestamp, id)`` with a
stable sort, so the earliest message wins a collision, ``id`` breaks exact
timestamp ties, and rows identical in both keep their input (first-seen)
order.  A message collapses into an already seen one when any of its
identities match: the primary ``id``, the soft ``dedup_key`` or the explicit
``correlation_key``.  Identities of collapsed messages are remembered too, so
collapse is transitive.
"""

from __future__ import annotations

from collections.abc import Iterable

from threadview.domain.models import NormalizedMessage


def chronological_key(message: NormalizedMessage) -> tuple[object, str]:
    """Sort key placing messages in ascending time order, ``id`` as tiebreak."""
    return (message.timestamp, message.id)


def deduplicate_messages(messages: Iterable[NormalizedMessage]) -> list[NormalizedMessage]:
    """Collapse duplicate deliveries and return the thread in time order.

    Args:
        messages: Normalized messages in flattening (first-seen) order,
            possibly spanning several pages.

    Returns:
        One message per identity, sorted ascending by timestamp.
    """
    seen: set[str] = set()
    kept: list[NormalizedMessage] = []

    for message in sorted(messages, key=chronological_key):
        keys = message.identity_keys()
        duplicate = any(key in seen for key in keys)
        seen.update(keys)
        if not duplicate:
            kept.append(message)

    return kept
