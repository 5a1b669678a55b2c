"""Message normalization and cross-page deduplication for helpdesk threads."""

from threadview.domain.models import (
    NormalizationContext,
    NormalizedMessage,
    RawMessage,
    SenderIdentity,
)
from threadview.logging_config import configure_logging
from threadview.messages.dedup import deduplicate_messages
from threadview.messages.normalizer import create_normalization_context, normalize_message
from threadview.pagination.assembler import ThreadMessageAssembler
from threadview.pagination.models import FetchedPage, ThreadView
from threadview.pagination.source import InMemoryMessageSource, MessagePageSource

__all__ = [
    "FetchedPage",
    "InMemoryMessageSource",
    "MessagePageSource",
    "NormalizationContext",
    "NormalizedMessage",
    "RawMessage",
    "SenderIdentity",
    "ThreadMessageAssembler",
    "ThreadView",
    "configure_logging",
    "create_normalization_context",
    "deduplicate_messages",
    "normalize_message",
]
