"""Pure page building: trimming, cursoring, normalization, and count estimate.

Each fetch asks the source for ``take + 1`` rows.  The extra row only signals
that an older page exists; it is trimmed before normalization.  The cursor for
the next request is the normalized UTC timestamp of the oldest kept row that
has a parsable ``created_at``.
"""

from __future__ import annotations

import json
import math
from collections.abc import Mapping
from typing import Any

import structlog
from pydantic import ValidationError
from pydantic.alias_generators import to_camel, to_snake

from threadview.config import Settings
from threadview.domain.errors import MalformedMessageError, PageSizeError
from threadview.domain.models import (
    NormalizationContext,
    NormalizedMessage,
    RawMessage,
    SenderIdentity,
)
from threadview.domain.types import Confidence, Direction, SenderType
from threadview.messages.dedup import deduplicate_messages
from threadview.messages.fingerprint import content_hash
from threadview.messages.normalizer import BodyExtractor, author_label, normalize_message
from threadview.messages.parser import extract_visible_body
from threadview.messages.timestamps import EPOCH, format_timestamp, parse_timestamp
from threadview.observability.metrics import MALFORMED_ROWS
from threadview.pagination.models import FetchedPage, ThreadPage

logger = structlog.get_logger()


def validate_raw_message(row: Any) -> RawMessage:
    """Validate a store row into a ``RawMessage``.

    Raises:
        MalformedMessageError: If the row is not a mapping or fails validation.
    """
    if isinstance(row, RawMessage):
        return row
    if not isinstance(row, Mapping):
        raise MalformedMessageError(row, f"expected a mapping, got {type(row).__name__}")
    try:
        return RawMessage.model_validate(dict(row))
    except ValidationError as exc:
        fields = sorted({str(err["loc"][0]) for err in exc.errors() if err["loc"]})
        raise MalformedMessageError(row, f"invalid fields: {', '.join(fields)}") from exc


def _salvage(row: Any, exc: MalformedMessageError) -> RawMessage:
    """Rebuild a row from its valid fields, synthesizing an id if needed."""
    data: dict[str, Any] = dict(row) if isinstance(row, Mapping) else {}
    cause = exc.__cause__
    if isinstance(cause, ValidationError):
        bad = {str(err["loc"][0]) for err in cause.errors() if err["loc"]}
        data = {
            key: value
            for key, value in data.items()
            if not ({str(key), to_camel(str(key)), to_snake(str(key))} & bad)
        }
    if not data.get("id"):
        fingerprint = json.dumps(row, sort_keys=True, default=str)
        data["id"] = f"malformed:{content_hash(fingerprint)[:16]}"
    return RawMessage.model_validate(data)


def coerce_raw_message(row: Any) -> RawMessage:
    """Validate a row, degrading malformed rows instead of dropping them.

    Invalid fields fall back to their defaults and a missing ``id`` is
    replaced by a deterministic synthetic one.

    Args:
        row: A ``RawMessage`` or a raw store dict.

    Returns:
        A ``RawMessage``; never raises for mapping-shaped input.
    """
    try:
        return validate_raw_message(row)
    except MalformedMessageError as exc:
        MALFORMED_ROWS.labels(stage="validate").inc()
        salvaged = _salvage(row, exc)
        logger.warning("message_row_malformed", reason=exc.reason, message_id=salvaged.id)
        return salvaged


def degraded_message(raw: RawMessage) -> NormalizedMessage:
    """Build a minimal message for a row that could not be normalized.

    Uses only steps that cannot fail on a validated row: the sender comes
    from ``sender_type`` alone, the body is the raw content, and the dedup
    key is derived from the id.  An unusable timestamp becomes the epoch.
    """
    parsed = parse_timestamp(raw.created_at)
    created = parsed if parsed is not None else EPOCH
    sender = SenderIdentity(type=raw.sender_type)
    return NormalizedMessage(
        id=raw.id,
        dedup_key=f"degraded:{content_hash(raw.id)[:32]}",
        created_at=format_timestamp(created),
        timestamp=created,
        timestamp_recovered=parsed is None,
        channel=raw.channel,
        from_=sender,
        direction=Direction.OUTBOUND if sender.type == SenderType.AGENT else Direction.INBOUND,
        author_label=author_label(sender),
        visible_body=raw.content,
        raw=raw,
    )


def normalize_or_degrade(
    raw: RawMessage,
    ctx: NormalizationContext,
    body_extractor: BodyExtractor = extract_visible_body,
) -> NormalizedMessage:
    """Normalize a row, falling back to ``degraded_message`` on failure."""
    try:
        return normalize_message(raw, ctx, body_extractor=body_extractor)
    except Exception:
        MALFORMED_ROWS.labels(stage="normalize").inc()
        logger.warning("message_normalization_degraded", message_id=raw.id, exc_info=True)
        return degraded_message(raw)


def estimate_total(
    raw_count: int,
    normalized_count: int,
    total_count: int,
    settings: Settings,
) -> tuple[Confidence, int]:
    """Project the normalized size of the whole thread from the first page.

    ``ratio`` is normalized messages kept per raw row fetched.  Confidence
    is ``high`` only for a large enough sample whose ratio falls inside the
    configured plausible band.

    Args:
        raw_count: Raw rows kept on the first page.
        normalized_count: Messages left after normalizing and deduplicating
            that page.
        total_count: Raw row count of the whole conversation.
        settings: Thresholds for the confidence decision.

    Returns:
        ``(confidence, total_normalized_estimated)``.
    """
    ratio = normalized_count / raw_count if raw_count else 0.0
    plausible = settings.confidence_ratio_min <= ratio <= settings.confidence_ratio_max
    if raw_count >= settings.confidence_min_raw and plausible:
        confidence = Confidence.HIGH
    else:
        confidence = Confidence.LOW
    return confidence, math.floor(total_count * ratio + 0.5)


def oldest_cursor_of(kept: list[RawMessage]) -> str | None:
    """Return the cursor for the page older than *kept*.

    This is the formatted timestamp of the last kept row whose
    ``created_at`` parses, or ``None`` if no kept row has one.
    """
    for raw in reversed(kept):
        parsed = parse_timestamp(raw.created_at)
        if parsed is not None:
            return format_timestamp(parsed)
    return None


def build_page(
    fetched: FetchedPage,
    *,
    cursor: str | None,
    take: int,
    ctx: NormalizationContext,
    settings: Settings,
    body_extractor: BodyExtractor = extract_visible_body,
) -> ThreadPage:
    """Turn a source response into a normalized ``ThreadPage``.

    Args:
        fetched: The source response (up to ``take + 1`` rows, newest first).
        cursor: The cursor the page was requested with; ``None`` for the
            first page.
        take: Number of rows the page keeps.
        ctx: The session normalization context.
        settings: Page and estimate settings.
        body_extractor: Visible body extractor passed to the normalizer.

    Returns:
        The built page.

    Raises:
        PageSizeError: If *take* is less than 1.
    """
    if take < 1:
        raise PageSizeError(take)

    rows = list(fetched.rows)
    kept = [coerce_raw_message(row) for row in rows[:take]]
    oldest_cursor = oldest_cursor_of(kept)
    has_more = len(rows) > take and oldest_cursor is not None

    visible = [raw for raw in kept if not (settings.hide_internal and raw.is_internal)]
    messages = [normalize_or_degrade(raw, ctx, body_extractor) for raw in visible]

    page = ThreadPage(
        cursor=cursor,
        messages=messages,
        raw_count=len(kept),
        has_more=has_more,
        oldest_cursor=oldest_cursor,
    )
    if cursor is not None:
        return page

    total_count = fetched.total_count or 0
    confidence, estimated = estimate_total(
        len(kept), len(deduplicate_messages(messages)), total_count, settings
    )
    return page.model_copy(
        update={
            "total_count": total_count,
            "confidence": confidence,
            "total_normalized_estimated": estimated,
        }
    )
