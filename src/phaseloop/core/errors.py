"""
Structured error types for phaseloop.

Every failure the loop raises carries a category, an ``ErrorContext``
describing where in the cycle it happened, and an optional chained cause.

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────┐
        │                        LoopError                             │
        │              (category, context, cause)                      │
        ├─────────────────────────────────────────────────────────────┤
        │                                                              │
        │  ConfigError        SchedulingError       CallbackError      │
        │  (CONFIG)           (SCHEDULING)          (CALLBACK)         │
        │       │                  │                                   │
        │  InvalidConfigError InvalidDelayError     PollError (POLL)   │
        │                     LoopClosedError            │             │
        │                     LoopRunningError      LoopStalledError   │
        └─────────────────────────────────────────────────────────────┘

Examples:
    >>> error = InvalidDelayError("delay must be >= 0").with_context(phase="timers")
    >>> error.context.phase
    'timers'
    >>> error.to_dict()["category"]
    'SCHEDULING'

Guardrails:
    ❌ DON'T: Raise bare ValueError/RuntimeError from loop internals
    ✅ DO: Raise the matching LoopError subclass

    ❌ DON'T: Swallow the exception a callback raised
    ✅ DO: Wrap it in CallbackError(cause=exc)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Error categories used for log routing and stats."""

    CONFIG = "CONFIG"              # Invalid settings or arguments
    SCHEDULING = "SCHEDULING"      # Bad schedule requests, closed loop
    CALLBACK = "CALLBACK"          # User callback raised
    POLL = "POLL"                  # Wait point / poller failures
    INTERNAL = "INTERNAL"          # Bugs, unexpected state
    UNKNOWN = "UNKNOWN"            # Uncategorized errors


@dataclass
class ErrorContext:
    """
    Structured metadata attached to a LoopError.

    Attributes:
        phase: Phase the loop was in when the error happened
        seq: Registration sequence number of the handle involved
        callback: Qualified name of the callback involved
        iteration: Loop iteration counter
        metadata: Additional key-value pairs
    """

    phase: str | None = None
    seq: int | None = None
    callback: str | None = None
    iteration: int | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["phase", "seq", "callback", "iteration"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class LoopError(Exception):
    """
    Base exception for all phaseloop errors.

    Subclasses set ``default_category``; callers may override it per
    instance. ``cause`` is chained as ``__cause__`` so tracebacks show the
    original exception.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> LoopError:
        """
        Add context to this error (fluent API).

        Usage:
            raise LoopClosedError("loop is closed").with_context(phase="check")
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = repr(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================


class ConfigError(LoopError):
    """Loop configuration is unusable."""

    default_category = ErrorCategory.CONFIG


class InvalidConfigError(ConfigError):
    """A setting or constructor argument has an invalid value."""

    def __init__(self, message: str, *, key: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        if key:
            self.context.metadata["config_key"] = key


# =============================================================================
# SCHEDULING ERRORS
# =============================================================================


class SchedulingError(LoopError):
    """A callback could not be scheduled."""

    default_category = ErrorCategory.SCHEDULING


class InvalidDelayError(SchedulingError):
    """Timer delay or interval out of range."""


class LoopClosedError(SchedulingError):
    """Operation attempted on a closed loop."""


class LoopRunningError(SchedulingError):
    """``run()`` called while the loop is already running."""


# =============================================================================
# CALLBACK / POLL ERRORS
# =============================================================================


class CallbackError(LoopError):
    """A user callback raised an exception."""

    default_category = ErrorCategory.CALLBACK


class PollError(LoopError):
    """The wait point or the poller failed."""

    default_category = ErrorCategory.POLL


class LoopStalledError(PollError):
    """The loop would block forever: no timer and nothing can become ready."""


def categorize_error(error: BaseException) -> ErrorCategory:
    """Return the category of ``error``; non-loop exceptions are UNKNOWN."""
    if isinstance(error, LoopError):
        return error.category
    return ErrorCategory.UNKNOWN


__all__ = [
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
]
