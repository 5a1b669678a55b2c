"""Domain-specific exception classes for the thread message pipeline."""


class ThreadViewError(Exception):
    """Base class for all domain errors in the thread message pipeline."""


class MalformedMessageError(ThreadViewError):
    """Raised when a raw row cannot be coerced into a ``RawMessage``.

    Recovered inside page building: the row is rebuilt from its valid fields
    rather than dropped.

    Attributes:
        row: The offending raw row as received from the store.
        reason: Short description of why validation failed.
    """

    def __init__(self, row: object, reason: str) -> None:
        self.row = row
        self.reason = reason
        super().__init__(f"Malformed message row: {reason}")


class PageSizeError(ThreadViewError):
    """Raised when a page is requested with a non-positive size.

    Attributes:
        take: The rejected page size.
    """

    def __init__(self, take: int) -> None:
        self.take = take
        super().__init__(f"Page size must be at least 1, got {take}")
