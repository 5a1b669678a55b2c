"""Domain enumerations for the thread message pipeline."""

from enum import StrEnum


class SenderType(StrEnum):
    """Who authored a message, as recorded by the store."""

    CUSTOMER = "customer"
    AGENT = "agent"


class Direction(StrEnum):
    """Message direction relative to the helpdesk."""

    INBOUND = "inbound"
    OUTBOUND = "outbound"


class Channel(StrEnum):
    """Delivery channels with channel-specific sender resolution."""

    EMAIL = "email"
    SMS = "sms"
    VOICE = "voice"
    CHAT = "chat"


class Confidence(StrEnum):
    """Whether the projected thread total can be shown as a count."""

    HIGH = "high"
    LOW = "low"


class QuoteKind(StrEnum):
    """Client style of a quoted history block stripped from a message body."""

    GMAIL = "gmail"
    OUTLOOK = "outlook"
    BLOCKQUOTE = "blockquote"
    GENERIC = "generic"


class TimestampFallback(StrEnum):
    """Substitute used when a row's ``created_at`` cannot be parsed."""

    NOW = "now"
    EPOCH = "epoch"


# Content types rendered from HTML source
HTML_CONTENT_TYPES: frozenset[str] = frozenset({"html", "text/html"})

# Channels whose sender is identified by phone number rather than email
PHONE_CHANNELS: frozenset[str] = frozenset({Channel.SMS, Channel.VOICE})
