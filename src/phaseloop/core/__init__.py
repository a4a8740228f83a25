"""Core primitives: errors, logging, settings and enums."""

from __future__ import annotations

from .enums import HandleState, MicrotaskPolicy, Phase
from .errors import (
    CallbackError,
    ConfigError,
    ErrorCategory,
    ErrorContext,
    InvalidConfigError,
    InvalidDelayError,
    LoopClosedError,
    LoopError,
    LoopRunningError,
    LoopStalledError,
    PollError,
    SchedulingError,
    categorize_error,
)
from .logging import LogContext, configure_logging, get_logger

__all__ = [
    "Phase",
    "HandleState",
    "MicrotaskPolicy",
    "ErrorCategory",
    "ErrorContext",
    "LoopError",
    "ConfigError",
    "InvalidConfigError",
    "SchedulingError",
    "InvalidDelayError",
    "LoopClosedError",
    "LoopRunningError",
    "CallbackError",
    "PollError",
    "LoopStalledError",
    "categorize_error",
    "configure_logging",
    "get_logger",
    "LogContext",
]
