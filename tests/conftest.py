"""Shared pytest fixtures for the threadview test suite."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from threadview.config import Settings, get_settings
from threadview.domain.models import NormalizationContext
from threadview.messages.normalizer import create_normalization_context

RowFactory = Callable[..., dict[str, Any]]


@pytest.fixture
def anyio_backend() -> str:
    """Run ``@pytest.mark.anyio`` tests on asyncio only."""
    return "asyncio"


@pytest.fixture(autouse=True)
def _clear_settings_cache() -> None:
    """Clear the get_settings lru_cache before each test."""
    get_settings.cache_clear()


@pytest.fixture
def settings() -> Settings:
    """Default settings, isolated from any local ``.env`` file."""
    return Settings(_env_file=None)  # type: ignore[call-arg]


@pytest.fixture
def normalization_context() -> NormalizationContext:
    """A session context for a signed-in agent."""
    return create_normalization_context(
        current_user_email="agent@test.com",
        agent_emails=["agent@test.com"],
    )


@pytest.fixture
def make_row() -> RowFactory:
    """Factory for store rows in the store's snake_case shape."""

    def _make_row(id: str, created_at: str = "2024-01-01T10:00:00Z", **overrides: Any) -> dict[str, Any]:
        row: dict[str, Any] = {
            "id": id,
            "content": f"Message {id}",
            "content_type": "text/plain",
            "sender_type": "customer",
            "sender_id": "customer1",
            "is_internal": False,
            "attachments": None,
            "created_at": created_at,
        }
        row.update(overrides)
        return row

    return _make_row
