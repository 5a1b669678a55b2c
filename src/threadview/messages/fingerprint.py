"""Content and identity fingerprints used for message deduplication."""

from __future__ import annotations

import hashlib
from datetime import datetime

from threadview.domain.models import SenderIdentity
from threadview.messages.timestamps import day_bucket


def content_hash(content: str) -> str:
    """Hash message content exactly as given.

    No whitespace or case folding is applied, so any differing character
    (including case) yields a different hash.  The hash is unsalted and
    stable across processes.

    Args:
        content: The raw message content.

    Returns:
        The hex SHA-256 digest of the UTF-8 encoded content.  Lone
        surrogates are encoded as-is rather than rejected.
    """
    return hashlib.sha256(content.encode("utf-8", "surrogatepass")).hexdigest()


def sender_key(sender: SenderIdentity) -> str:
    """Return the sender component of the soft key.

    Prefers the resolved email address (case-insensitive), then the store's
    sender id, then the phone number, and finally the bare sender type.
    """
    if sender.email:
        return f"email:{sender.email.strip().lower()}"
    if sender.user_id:
        return f"user:{sender.user_id}"
    if sender.phone:
        return f"phone:{sender.phone}"
    return f"type:{sender.type}"


def soft_key(content: str, sender: SenderIdentity, created: datetime) -> str:
    """Build the soft dedup key from content, sender and UTC day.

    Two deliveries of the identical text from the identical sender on the
    same calendar day share a soft key; a different sender or a different day
    does not.

    Args:
        content: The raw message content.
        sender: The resolved sender identity.
        created: The parsed creation timestamp.

    Returns:
        A ``soft:``-prefixed key.
    """
    material = f"{content_hash(content)}|{sender_key(sender)}|{day_bucket(created)}"
    return "soft:" + hashlib.sha256(material.encode("utf-8")).hexdigest()[:32]
