"""Pydantic v2 models for raw and normalized thread messages.

``RawMessage`` mirrors a row from the message store and accepts both the
store's snake_case columns and camelCase keys.  ``NormalizedMessage`` is the
canonical display/identity form produced by the normalizer, and
``NormalizationContext`` carries the per-session agent identity data that
the normalizer needs.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator
from pydantic.alias_generators import to_camel

from threadview.domain.types import (
    Direction,
    QuoteKind,
    SenderType,
    TimestampFallback,
)


class RawMessage(BaseModel):
    """A message row exactly as fetched from the store.

    Rows are immutable once fetched.  Only ``id`` is required; every other
    field has a default so that a partially populated row still renders.
    """

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    id: str
    content: str = ""
    content_type: str = "text/plain"
    sender_type: SenderType = SenderType.CUSTOMER
    sender_id: str | None = None
    is_internal: bool = False
    attachments: list[Any] | None = None
    created_at: str = ""  # ISO 8601
    email_headers: dict[str, Any] | list[Any] | None = None
    email_subject: str | None = None
    external_id: str | None = None
    email_message_id: str | None = None
    channel: str = "email"
    customer_phone: str | None = None

    @field_validator("id", mode="before")
    @classmethod
    def stringify_id(cls, v: object) -> object:
        """Accept integer primary keys from stores that use them."""
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("content", "content_type", "channel", mode="before")
    @classmethod
    def none_to_default(cls, v: object, info: ValidationInfo) -> object:
        """Treat explicit nulls as the field default."""
        if v is None:
            return cls.model_fields[info.field_name].default
        return v

    @field_validator("created_at", mode="before")
    @classmethod
    def stringify_created_at(cls, v: object) -> object:
        """Keep the timestamp as text; parsing happens during normalization."""
        if v is None:
            return ""
        if isinstance(v, datetime):
            return v.isoformat()
        if isinstance(v, int | float) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("sender_type", mode="before")
    @classmethod
    def lenient_sender_type(cls, v: object) -> object:
        """Map unknown or missing sender types to ``customer``."""
        if isinstance(v, str) and v.strip().lower() in {s.value for s in SenderType}:
            return v.strip().lower()
        return SenderType.CUSTOMER

    @field_validator("is_internal", mode="before")
    @classmethod
    def none_is_not_internal(cls, v: object) -> object:
        """A null ``is_internal`` column means a customer-visible message."""
        return False if v is None else v


class SenderIdentity(BaseModel):
    """Resolved sender of a message."""

    model_config = ConfigDict(frozen=True)

    type: SenderType
    email: str | None = None
    display_name: str | None = None
    phone: str | None = None
    user_id: str | None = None


class QuotedBlock(BaseModel):
    """Quoted history removed from the visible body of a message."""

    model_config = ConfigDict(frozen=True)

    kind: QuoteKind
    raw: str


class NormalizedMessage(BaseModel):
    """Canonical form of a message, ready for deduplication and display.

    ``dedup_key`` is the soft content identity; ``id`` and
    ``correlation_key`` are the stronger identities checked alongside it
    (see :func:`threadview.messages.dedup.deduplicate_messages`).
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    dedup_key: str
    correlation_key: str | None = None
    created_at: str  # normalized ISO 8601, UTC
    timestamp: datetime
    timestamp_recovered: bool = False
    channel: str
    from_: SenderIdentity = Field(alias="from")
    direction: Direction
    author_label: str
    visible_body: str
    quoted_blocks: list[QuotedBlock] = Field(default_factory=list)
    subject: str = ""
    raw: RawMessage

    @property
    def content(self) -> str:
        """The original, unmodified message content."""
        return self.raw.content

    @property
    def is_internal(self) -> bool:
        """Whether the message is an internal agent note."""
        return self.raw.is_internal

    def identity_keys(self) -> tuple[str, ...]:
        """All identities under which this message collapses with another."""
        keys = [f"id:{self.id}", self.dedup_key]
        if self.correlation_key:
            keys.append(self.correlation_key)
        return tuple(keys)


class NormalizationContext(BaseModel):
    """Per-session agent identity data used to classify senders.

    Built once at the call boundary (see
    :func:`threadview.messages.normalizer.create_normalization_context`) and
    passed explicitly into every normalization call.  Email addresses and
    domains are stored lowercased and trimmed.
    """

    model_config = ConfigDict(frozen=True)

    current_user_email: str | None = None
    agent_emails: frozenset[str] = frozenset()
    agent_phones: frozenset[str] = frozenset()
    agent_domains: frozenset[str] = frozenset()
    timestamp_fallback: TimestampFallback = TimestampFallback.NOW
    clock: Callable[[], datetime] | None = None

    @field_validator("agent_emails", "agent_domains", mode="before")
    @classmethod
    def casefold_addresses(cls, v: Iterable[str] | None) -> frozenset[str]:
        """Lowercase and trim addresses so membership is case-insensitive."""
        return frozenset(item.strip().lower() for item in (v or ()) if item.strip())

    @field_validator("agent_phones", mode="before")
    @classmethod
    def trim_phones(cls, v: Iterable[str] | None) -> frozenset[str]:
        """Trim phone numbers; they are compared verbatim otherwise."""
        return frozenset(item.strip() for item in (v or ()) if item.strip())

    @field_validator("current_user_email", mode="before")
    @classmethod
    def casefold_current_user(cls, v: str | None) -> str | None:
        """Lowercase and trim the current user's address."""
        if v is None:
            return None
        return v.strip().lower() or None
