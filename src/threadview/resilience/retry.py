"""Retrying wrapper for message page sources, built on tenacity.

Retries a failed page fetch with exponential backoff and jitter, logs a
warning before each retry, and re-raises the original exception once the
attempts are exhausted so the assembler still surfaces it to the caller.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, TypeVar

import structlog
from tenacity import (
    RetryCallState,
    retry,
    stop_after_attempt,
    wait_exponential_jitter,
)

if TYPE_CHECKING:
    from threadview.pagination.models import FetchedPage
    from threadview.pagination.source import MessagePageSource

logger = structlog.get_logger()

F = TypeVar("F", bound=Callable[..., Awaitable[Any]])


def _before_sleep_log(retry_state: RetryCallState) -> None:
    """Log a warning before each retry attempt.

    Args:
        retry_state: Tenacity retry state with attempt info.
    """
    conversation_id = retry_state.args[0] if retry_state.args else None
    exception = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "page_fetch_retrying",
        conversation_id=conversation_id,
        attempt=retry_state.attempt_number,
        wait=retry_state.next_action.sleep if retry_state.next_action else 0,
        exception=str(exception),
    )


def resilient_fetch(
    attempts: int = 3,
    wait_initial: float = 1.0,
    wait_max: float = 30.0,
    jitter: float = 5.0,
) -> Callable[[F], F]:
    """Create a retry decorator for an async page fetch.

    Args:
        attempts: Maximum number of attempts (1 disables retrying).
        wait_initial: Initial backoff in seconds.
        wait_max: Maximum backoff in seconds.
        jitter: Maximum random jitter added to each wait, in seconds.

    Returns:
        A decorator that wraps the coroutine function with retry logic.
    """

    def decorator(func: F) -> F:
        wrapped = retry(
            stop=stop_after_attempt(attempts),
            wait=wait_exponential_jitter(initial=wait_initial, max=wait_max, jitter=jitter),
            before_sleep=_before_sleep_log,
            reraise=True,
        )(func)
        return wrapped  # type: ignore[return-value]

    return decorator


class RetryingMessageSource:
    """A ``MessagePageSource`` that retries the wrapped source's fetches.

    Args:
        source: The page source to wrap.
        attempts: Maximum number of attempts per page.
        wait_initial: Initial backoff in seconds.
        wait_max: Maximum backoff in seconds.
        jitter: Maximum random jitter in seconds.
    """

    def __init__(
        self,
        source: MessagePageSource,
        *,
        attempts: int = 3,
        wait_initial: float = 1.0,
        wait_max: float = 30.0,
        jitter: float = 5.0,
    ) -> None:
        self._source = source
        self._attempts = attempts
        self._fetch = resilient_fetch(attempts, wait_initial, wait_max, jitter)(
            source.fetch_page
        )

    async def fetch_page(
        self, conversation_id: str, cursor: str | None, limit: int
    ) -> FetchedPage:
        """Fetch a page, retrying transient failures.

        Raises:
            Exception: Whatever the wrapped source raised on the last attempt.
        """
        try:
            return await self._fetch(conversation_id, cursor, limit)
        except Exception as exc:
            logger.error(
                "page_fetch_failed_after_retries",
                conversation_id=conversation_id,
                cursor=cursor,
                attempts=self._attempts,
                exception=str(exc),
            )
            raise
