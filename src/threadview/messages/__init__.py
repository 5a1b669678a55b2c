"""Message normalization: parsing, fingerprints, threading, and dedup."""

from threadview.messages.dedup import deduplicate_messages
from threadview.messages.fingerprint import content_hash, sender_key, soft_key
from threadview.messages.normalizer import (
    create_normalization_context,
    normalize_message,
    resolve_sender,
)
from threadview.messages.parser import (
    VisibleBody,
    extract_latest_reply,
    extract_visible_body,
    html_to_text,
)
from threadview.messages.threading import (
    MessageThreadInfo,
    extract_message_ids,
    normalize_subject,
)
from threadview.messages.timestamps import day_bucket, format_timestamp, parse_timestamp

__all__ = [
    "MessageThreadInfo",
    "VisibleBody",
    "content_hash",
    "create_normalization_context",
    "day_bucket",
    "deduplicate_messages",
    "extract_latest_reply",
    "extract_message_ids",
    "extract_visible_body",
    "format_timestamp",
    "html_to_text",
    "normalize_message",
    "normalize_subject",
    "parse_timestamp",
    "resolve_sender",
    "sender_key",
    "soft_key",
]
