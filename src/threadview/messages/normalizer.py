"""Raw message normalization into the canonical display/identity form.

``normalize_message`` is pure and total: it never raises for a row that
validated into a ``RawMessage``.  An unparsable ``created_at`` is replaced by
the context's fallback (current time or the epoch) and the message is flagged
with ``timestamp_recovered`` rather than dropped.
"""

from __future__ import annotations

import email.utils
import re
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from typing import Any

import structlog

from threadview.config import get_settings
from threadview.domain.models import (
    NormalizationContext,
    NormalizedMessage,
    RawMessage,
    SenderIdentity,
)
from threadview.domain.types import (
    PHONE_CHANNELS,
    Direction,
    SenderType,
    TimestampFallback,
)
from threadview.messages.fingerprint import soft_key
from threadview.messages.parser import VisibleBody, extract_visible_body
from threadview.messages.threading import extract_message_ids, normalize_subject
from threadview.messages.timestamps import EPOCH, format_timestamp, parse_timestamp

logger = structlog.get_logger()

BodyExtractor = Callable[[str, str], VisibleBody]

_EMAIL_ADDRESS = re.compile(r"^[^@\s<>]+@[^@\s<>]+$")


def create_normalization_context(
    *,
    current_user_email: str | None = None,
    agent_emails: Iterable[str] = (),
    agent_phones: Iterable[str] = (),
    agent_domains: Iterable[str] = (),
    timestamp_fallback: TimestampFallback | str | None = None,
    clock: Callable[[], datetime] | None = None,
) -> NormalizationContext:
    """Build the per-session context passed into every normalization call.

    Args:
        current_user_email: Address of the signed-in agent.
        agent_emails: Known agent addresses (case-insensitive).
        agent_phones: Known agent phone numbers for SMS/voice channels.
        agent_domains: Organization domains whose addresses are agents.
        timestamp_fallback: Substitute for unparsable timestamps.  If
            ``None``, ``Settings.timestamp_fallback`` is used.
        clock: Source of "now" for the ``now`` fallback; defaults to the
            system clock.

    Returns:
        A frozen ``NormalizationContext``.
    """
    if timestamp_fallback is None:
        timestamp_fallback = get_settings().timestamp_fallback
    return NormalizationContext(
        current_user_email=current_user_email,
        agent_emails=list(agent_emails),
        agent_phones=list(agent_phones),
        agent_domains=list(agent_domains),
        timestamp_fallback=TimestampFallback(timestamp_fallback),
        clock=clock,
    )


def _header(headers: Any, name: str) -> Any:
    """Case-insensitive lookup in a dict or ``[{name, value}]`` header bag."""
    if isinstance(headers, dict):
        for key, value in headers.items():
            if str(key).lower() == name:
                return value
    elif isinstance(headers, list):
        for item in headers:
            if isinstance(item, dict) and str(item.get("name", "")).lower() == name:
                return item.get("value")
    return None


def parse_from_header(value: Any) -> tuple[str | None, str | None]:
    """Parse a ``From`` header into ``(email, display_name)``.

    Accepts ``"Name <addr>"`` / ``"addr"`` strings (via
    :func:`email.utils.parseaddr`) and ``{"email": ..., "name": ...}``
    dicts.  The email is ``None`` unless it looks like a real address.
    """
    name: str | None
    if isinstance(value, dict):
        addr = str(value.get("email") or "").strip()
        name = value.get("name") or None
    elif isinstance(value, str):
        name, addr = email.utils.parseaddr(value)
        addr = addr.strip()
    else:
        return None, None

    if name:
        name = str(name).strip().strip('"').strip() or None
    if not _EMAIL_ADDRESS.match(addr):
        return None, name
    return addr, name


def _is_agent_email(address: str | None, ctx: NormalizationContext) -> bool:
    if not address:
        return False
    lowered = address.strip().lower()
    if lowered == ctx.current_user_email or lowered in ctx.agent_emails:
        return True
    domain = lowered.rpartition("@")[2]
    return domain in ctx.agent_domains


def resolve_sender(raw: RawMessage, ctx: NormalizationContext) -> SenderIdentity:
    """Resolve who sent a message.

    Identity comes from the first available of: a valid ``From`` header
    address, the store's ``sender_id``, or the bare ``sender_type``.  A
    resolved address belonging to a known agent (current user, agent list or
    agent domain) classifies the message as ``agent`` even when the row says
    ``customer``; the same applies to a known agent phone on SMS/voice rows.
    Otherwise ``sender_type`` is trusted verbatim.

    Args:
        raw: The raw message row.
        ctx: The session normalization context.

    Returns:
        The resolved ``SenderIdentity``.
    """
    address, display_name = parse_from_header(_header(raw.email_headers, "from"))
    phone = None
    if raw.channel in PHONE_CHANNELS and raw.customer_phone:
        phone = raw.customer_phone.strip() or None
    user_id = raw.sender_id if address is None and raw.sender_id else None

    sender_type = raw.sender_type
    if _is_agent_email(address, ctx) or (phone is not None and phone in ctx.agent_phones):
        sender_type = SenderType.AGENT

    return SenderIdentity(
        type=sender_type,
        email=address,
        display_name=display_name,
        phone=phone,
        user_id=user_id,
    )


def author_label(sender: SenderIdentity) -> str:
    """Human-readable author line for a message card."""
    if sender.type == SenderType.AGENT:
        if sender.display_name:
            return f"{sender.display_name} ({sender.email})" if sender.email else sender.display_name
        if sender.email:
            return f"Agent ({sender.email})"
        return "Agent"
    return sender.display_name or sender.email or sender.phone or "Customer"


def correlation_key(raw: RawMessage) -> str | None:
    """Return the explicit cross-channel identity of a row, if it has one.

    Uses ``external_id``, then the ``Message-ID`` header, then
    ``email_message_id``.
    """
    explicit = (
        raw.external_id
        or extract_message_ids(raw.email_headers).message_id
        or raw.email_message_id
    )
    if not explicit or not str(explicit).strip():
        return None
    return f"msgid:{str(explicit).strip()}"


def _resolve_timestamp(raw: RawMessage, ctx: NormalizationContext) -> tuple[datetime, bool]:
    parsed = parse_timestamp(raw.created_at)
    if parsed is not None:
        return parsed, False
    if ctx.timestamp_fallback == TimestampFallback.EPOCH:
        fallback = EPOCH
    else:
        fallback = ctx.clock() if ctx.clock is not None else datetime.now(tz=UTC)
        if fallback.tzinfo is None:
            fallback = fallback.replace(tzinfo=UTC)
    logger.warning(
        "message_timestamp_unparsable",
        message_id=raw.id,
        created_at=raw.created_at,
        fallback=ctx.timestamp_fallback.value,
    )
    return fallback, True


def normalize_message(
    raw: RawMessage,
    ctx: NormalizationContext,
    *,
    body_extractor: BodyExtractor = extract_visible_body,
) -> NormalizedMessage:
    """Convert one raw row into its canonical ``NormalizedMessage``.

    Args:
        raw: The raw message row.
        ctx: The session normalization context.
        body_extractor: Callable producing the visible body from
            ``(content, content_type)``.

    Returns:
        The normalized message; every ``RawMessage`` field stays reachable
        through ``.raw``.
    """
    sender = resolve_sender(raw, ctx)
    created, recovered = _resolve_timestamp(raw, ctx)
    body = body_extractor(raw.content, raw.content_type)

    return NormalizedMessage(
        id=raw.id,
        dedup_key=soft_key(raw.content, sender, created),
        correlation_key=correlation_key(raw),
        created_at=format_timestamp(created),
        timestamp=created,
        timestamp_recovered=recovered,
        channel=raw.channel,
        from_=sender,
        direction=Direction.OUTBOUND if sender.type == SenderType.AGENT else Direction.INBOUND,
        author_label=author_label(sender),
        visible_body=body.visible,
        quoted_blocks=body.quoted_blocks,
        subject=normalize_subject(raw.email_subject),
        raw=raw,
    )
