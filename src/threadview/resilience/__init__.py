"""Retry support for page fetches."""

from threadview.resilience.retry import RetryingMessageSource, resilient_fetch

__all__ = ["RetryingMessageSource", "resilient_fetch"]
