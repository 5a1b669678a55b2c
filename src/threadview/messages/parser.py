"""Message body parsing: HTML to text and reply/quote separation.

Provides helpers for:
- Converting stored HTML bodies into plain text
- Extracting only the latest reply from a body that carries quoted history
- Splitting a body into its visible part and classified quoted blocks
"""

from __future__ import annotations

import html
import re

from mailparser_reply import EmailReplyParser  # type: ignore[import-untyped]
from pydantic import BaseModel, ConfigDict, Field

from threadview.domain.models import QuotedBlock
from threadview.domain.types import HTML_CONTENT_TYPES, QuoteKind

_BLOCK_BREAK = re.compile(r"<\s*(br\s*/?|/p|/div|/li|/tr)\s*>", re.IGNORECASE)
_TAG = re.compile(r"<[^>]+>")
_HIDDEN_ELEMENT = re.compile(
    r"<\s*(style|script|head)\b[^>]*>.*?<\s*/\s*\1\s*>", re.IGNORECASE | re.DOTALL
)
_BLANK_RUNS = re.compile(r"\n{3,}")
_HTML_QUOTE_START = re.compile(
    r"<blockquote\b|<div\b[^>]*class=[\"'][^\"']*"
    r"(gmail_quote|yahoo_quoted|outlook_quote|AppleMailQuote)",
    re.IGNORECASE,
)


class VisibleBody(BaseModel):
    """A message body split into what is displayed and what is collapsed."""

    model_config = ConfigDict(frozen=True)

    visible: str
    quoted_blocks: list[QuotedBlock] = Field(default_factory=list)


def html_to_text(markup: str) -> str:
    """Convert an HTML body into readable plain text.

    Line-level elements become newlines, all remaining tags are stripped
    and entities are unescaped.

    Args:
        markup: The HTML source.

    Returns:
        The plain-text rendering.
    """
    text = _HIDDEN_ELEMENT.sub("", markup)
    text = _BLOCK_BREAK.sub("\n", text)
    text = _TAG.sub("", text)
    text = html.unescape(text).replace("\xa0", " ")
    lines = [line.rstrip() for line in text.splitlines()]
    return _BLANK_RUNS.sub("\n\n", "\n".join(lines)).strip()


def extract_latest_reply(full_body: str) -> str:
    """Extract only the latest reply text from an email thread body.

    Uses ``mail-parser-reply`` to strip quoted content, signature blocks,
    and forwarded message headers, returning only the new content from the
    most recent reply.

    If the parser returns an empty string (e.g. the entire message was
    detected as quoted content), the original ``full_body`` is returned
    as a fallback.

    Args:
        full_body: The full text body of the message.

    Returns:
        The extracted latest reply text, or the original body if
        extraction yields nothing.
    """
    parsed: str = EmailReplyParser(languages=["en"]).parse_reply(text=full_body)
    if not parsed or not parsed.strip():
        return full_body
    return parsed


def classify_quote(quoted: str) -> QuoteKind:
    """Identify the mail client style of a quoted block."""
    lowered = quoted.lower()
    if "-----original message-----" in lowered:
        return QuoteKind.OUTLOOK
    if "<blockquote" in lowered or "blockquote>" in lowered:
        return QuoteKind.BLOCKQUOTE
    if re.search(r"^\s*on .+ wrote:\s*$", lowered, re.MULTILINE):
        return QuoteKind.GMAIL
    if "gmail_quote" in lowered:
        return QuoteKind.GMAIL
    return QuoteKind.GENERIC


def _split_html_quote(markup: str) -> tuple[str, str]:
    match = _HTML_QUOTE_START.search(markup)
    if match is None:
        return markup, ""
    return markup[: match.start()], markup[match.start() :]


def extract_visible_body(content: str, content_type: str = "text/plain") -> VisibleBody:
    """Split a message body into its visible text and quoted history.

    HTML bodies are first cut at the earliest quote container and rendered
    to text; the text is then reduced to its latest reply.  Whatever was
    removed is returned as classified ``QuotedBlock`` entries.  The result
    depends only on the arguments.

    Args:
        content: The raw message content.
        content_type: The stored content type (``html``/``text/html`` or
            plain text).

    Returns:
        A ``VisibleBody`` with the displayable text and quoted blocks.
    """
    if not content or not content.strip():
        return VisibleBody(visible="")

    blocks: list[QuotedBlock] = []
    text = content
    if content_type.strip().lower() in HTML_CONTENT_TYPES:
        head, quoted_markup = _split_html_quote(content)
        if quoted_markup:
            blocks.append(QuotedBlock(kind=classify_quote(quoted_markup), raw=quoted_markup))
        text = html_to_text(head)
        if not text:
            # Entire body was a quote container; show it rather than nothing
            text = html_to_text(content)
            blocks = []

    visible = extract_latest_reply(text).strip()
    start = text.find(visible)
    if visible and start >= 0:
        remainder = text[start + len(visible) :].strip()
        if remainder:
            blocks.insert(0, QuotedBlock(kind=classify_quote(remainder), raw=remainder))

    return VisibleBody(visible=visible, quoted_blocks=blocks)
