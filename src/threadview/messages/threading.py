"""Email threading metadata: subjects and Message-ID headers.

Provides helpers for:
- Normalizing a subject line for display and thread matching
- Extracting ``Message-ID``, ``In-Reply-To`` and ``References`` from the
  header shapes stored on message rows
"""

from __future__ import annotations

import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

_SUBJECT_PREFIX = re.compile(r"^\s*(re|fwd?|aw)\s*:\s*", re.IGNORECASE)
_WHITESPACE = re.compile(r"\s+")
_HEADER_LINE = re.compile(r"^([A-Za-z][A-Za-z0-9-]*):(.*)$")


class MessageThreadInfo(BaseModel):
    """Threading identifiers extracted from a message's headers."""

    model_config = ConfigDict(frozen=True)

    message_id: str | None = None
    in_reply_to: str | None = None
    references: list[str] = Field(default_factory=list)


def normalize_subject(subject: str | None) -> str:
    """Strip reply/forward prefixes, collapse whitespace and lowercase.

    Repeated prefixes (``Re: Fwd: Re:``) are all removed.

    Args:
        subject: The raw subject line.

    Returns:
        The normalized subject, or an empty string.
    """
    if not subject:
        return ""
    text = subject
    while True:
        stripped = _SUBJECT_PREFIX.sub("", text, count=1)
        if stripped == text:
            break
        text = stripped
    return _WHITESPACE.sub(" ", text).strip().lower()


def clean_message_id(value: Any) -> str | None:
    """Remove surrounding angle brackets and whitespace from a Message-ID."""
    if not isinstance(value, str):
        return None
    cleaned = value.strip().removeprefix("<").removesuffix(">").strip()
    return cleaned or None


def parse_references(value: Any) -> list[str]:
    """Split a ``References`` header into bare Message-IDs."""
    if not isinstance(value, str):
        return []
    refs = (clean_message_id(part) for part in re.split(r"[,\s]+", value))
    return [ref for ref in refs if ref]


def _collect(headers: dict[str, Any]) -> MessageThreadInfo:
    return MessageThreadInfo(
        message_id=clean_message_id(headers.get("message-id")),
        in_reply_to=clean_message_id(headers.get("in-reply-to")),
        references=parse_references(headers.get("references")),
    )


def _unfold_raw_headers(raw: str) -> dict[str, str]:
    headers: dict[str, str] = {}
    current: str | None = None
    for line in raw.splitlines():
        match = _HEADER_LINE.match(line)
        if match and not line[:1].isspace():
            current = match.group(1).lower()
            headers[current] = match.group(2).strip()
        elif current is not None and line.strip():
            # Folded continuation of the previous header
            headers[current] = f"{headers[current]} {line.strip()}"
    return headers


def extract_message_ids(headers: Any) -> MessageThreadInfo:
    """Extract threading identifiers from stored email headers.

    Accepts the three shapes found on message rows: a list of
    ``{"name": ..., "value": ...}`` dicts, a dict with a ``raw`` header
    block, or a plain header dict (any key case).

    Args:
        headers: The ``email_headers`` value of a row, possibly ``None``.

    Returns:
        A ``MessageThreadInfo`` (all fields empty if nothing was found).
    """
    if not headers:
        return MessageThreadInfo()

    if isinstance(headers, list):
        flat = {
            str(h.get("name", "")).lower(): h.get("value")
            for h in headers
            if isinstance(h, dict)
        }
        return _collect(flat)

    if isinstance(headers, dict):
        raw = headers.get("raw")
        if isinstance(raw, str):
            return _collect(_unfold_raw_headers(raw))
        return _collect({str(k).lower(): v for k, v in headers.items()})

    return MessageThreadInfo()
