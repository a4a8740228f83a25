"""Loop settings.

``LoopSettings`` reads ``PHASELOOP_*`` environment variables (and a local
``.env`` file) and validates them with pydantic, so a bad value fails at
startup instead of mid-iteration.

Examples:
    >>> import os
    >>> os.environ["PHASELOOP_MICROTASK_POLICY"] = "phase"
    >>> reset_settings()
    >>> get_settings().microtask_policy
    <MicrotaskPolicy.PHASE: 'phase'>

Fields
──────
log_level                 : structlog log level
json_logs                 : True for JSON, False for console, None for auto
microtask_policy          : iteration | phase
max_io_callbacks_per_poll : poll budget; overflow is deferred to PENDING
slow_callback_threshold   : seconds before a callback is logged as slow
max_wait_seconds          : cap on a single wait (None = wait for next timer)
stop_on_error             : re-raise callback failures out of run()
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from phaseloop.core.enums import MicrotaskPolicy


class LoopSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="PHASELOOP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    json_logs: bool | None = None
    slow_callback_threshold: float = Field(default=0.1, ge=0)

    # ── Scheduling ───────────────────────────────────────────────
    microtask_policy: MicrotaskPolicy = MicrotaskPolicy.ITERATION
    max_io_callbacks_per_poll: int = Field(default=1024, ge=1)
    max_wait_seconds: float | None = Field(default=None, gt=0)
    stop_on_error: bool = False


# ── Settings factory with caching ────────────────────────────────────────

_settings_cache: LoopSettings | None = None


def get_settings(*, _force_reload: bool = False) -> LoopSettings:
    """Load, validate, and cache a :class:`LoopSettings` instance."""
    global _settings_cache
    if _settings_cache is None or _force_reload:
        _settings_cache = LoopSettings()
    return _settings_cache


def reset_settings() -> None:
    """Drop the cached settings so the next ``get_settings()`` re-reads env."""
    global _settings_cache
    _settings_cache = None
