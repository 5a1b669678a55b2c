"""Centralized, typed configuration using pydantic-settings.

Provides a single ``Settings`` class backed by ``.env`` file and environment
variables (prefixed ``THREADVIEW_``) and a cached ``get_settings()``
accessor.

IMPORTANT: This module has ZERO imports from the ``threadview`` package to
prevent circular imports.  Only stdlib, pydantic, pydantic_settings, and
structlog are used.
"""

from __future__ import annotations

import sys
from functools import lru_cache
from typing import Literal

import structlog
from pydantic import Field, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = structlog.get_logger()


class Settings(BaseSettings):
    """Pipeline settings loaded from environment variables and ``.env`` file.

    The confidence thresholds are heuristic tuning knobs for the projected
    thread total, not correctness properties.
    """

    model_config = SettingsConfigDict(
        env_prefix="THREADVIEW_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # -- General ---------------------------------------------------------------
    production: bool = False
    log_level: Literal["debug", "info", "warning", "error"] | None = None

    # -- Pagination ------------------------------------------------------------
    initial_page_size: int = Field(default=3, ge=1)
    page_size: int = Field(default=20, ge=1)
    hide_internal: bool = False

    # -- Count estimate --------------------------------------------------------
    confidence_min_raw: int = Field(default=20, ge=0)
    confidence_ratio_min: float = Field(default=0.3, ge=0.0)
    confidence_ratio_max: float = Field(default=1.0, ge=0.0)

    # -- Normalization ---------------------------------------------------------
    timestamp_fallback: Literal["now", "epoch"] = "now"

    # -- Page fetch retries ----------------------------------------------------
    fetch_retry_attempts: int = Field(default=1, ge=1)
    fetch_retry_wait_initial: float = Field(default=1.0, ge=0.0)
    fetch_retry_wait_max: float = Field(default=30.0, ge=0.0)
    fetch_retry_jitter: float = Field(default=5.0, ge=0.0)

    @model_validator(mode="after")
    def ratio_band_must_be_ordered(self) -> Settings:
        """Ensure the plausible ratio band is not inverted."""
        if self.confidence_ratio_min > self.confidence_ratio_max:
            raise ValueError(
                f"confidence_ratio_min ({self.confidence_ratio_min}) must not exceed "
                f"confidence_ratio_max ({self.confidence_ratio_max})"
            )
        return self


@lru_cache
def get_settings() -> Settings:
    """Return a cached ``Settings`` instance.

    The ``@lru_cache`` decorator ensures environment variables are parsed
    exactly once.  Call ``get_settings.cache_clear()`` in tests to reset.

    Returns:
        The application ``Settings``.
    """
    try:
        return Settings()
    except ValidationError as exc:
        logger.error("settings_validation_failed", errors=exc.errors())
        sys.exit(1)
