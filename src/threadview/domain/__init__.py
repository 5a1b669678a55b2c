"""Domain types, models, and errors for the thread message pipeline."""

from threadview.domain.errors import (
    MalformedMessageError,
    PageSizeError,
    ThreadViewError,
)
from threadview.domain.models import (
    NormalizationContext,
    NormalizedMessage,
    QuotedBlock,
    RawMessage,
    SenderIdentity,
)
from threadview.domain.types import (
    HTML_CONTENT_TYPES,
    PHONE_CHANNELS,
    Channel,
    Confidence,
    Direction,
    QuoteKind,
    SenderType,
    TimestampFallback,
)

__all__ = [
    "HTML_CONTENT_TYPES",
    "PHONE_CHANNELS",
    "Channel",
    "Confidence",
    "Direction",
    "MalformedMessageError",
    "NormalizationContext",
    "NormalizedMessage",
    "PageSizeError",
    "QuoteKind",
    "QuotedBlock",
    "RawMessage",
    "SenderIdentity",
    "SenderType",
    "ThreadViewError",
    "TimestampFallback",
]
