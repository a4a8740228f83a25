"""Tests for phaseloop.core.errors module."""

import pytest

from phaseloop.core.errors import (
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


class TestErrorCategory:
    """Test ErrorCategory enum."""

    def test_all_categories_defined(self):
        """Verify all categories are available."""
        assert {c.value for c in ErrorCategory} == {
            "CONFIG",
            "SCHEDULING",
            "CALLBACK",
            "POLL",
            "INTERNAL",
            "UNKNOWN",
        }

    def test_is_string_enum(self):
        assert ErrorCategory.CALLBACK == "CALLBACK"


class TestErrorContext:
    """Test ErrorContext dataclass."""

    def test_create_empty_context(self):
        """Create context with no fields set."""
        ctx = ErrorContext()
        assert ctx.phase is None
        assert ctx.seq is None
        assert ctx.metadata == {}
        assert ctx.to_dict() == {}

    def test_to_dict_skips_none_and_merges_metadata(self):
        ctx = ErrorContext(phase="timers", seq=7, metadata={"loop_id": "abc"})
        assert ctx.to_dict() == {"phase": "timers", "seq": 7, "loop_id": "abc"}


class TestLoopError:
    """Test the base error."""

    def test_defaults(self):
        error = LoopError("boom")
        assert error.message == "boom"
        assert str(error) == "boom"
        assert error.category is ErrorCategory.INTERNAL
        assert error.cause is None

    def test_category_override(self):
        error = LoopError("boom", category=ErrorCategory.POLL)
        assert error.category is ErrorCategory.POLL

    def test_with_context_sets_fields_and_metadata(self):
        """Known fields go on the context, unknown keys into metadata."""
        error = LoopError("boom").with_context(phase="check", loop_id="l1")
        assert error.context.phase == "check"
        assert error.context.metadata == {"loop_id": "l1"}

    def test_with_context_returns_self(self):
        error = LoopError("boom")
        assert error.with_context(seq=1) is error

    def test_cause_is_chained(self):
        original = ValueError("inner")
        error = LoopError("outer", cause=original)
        assert error.cause is original
        assert error.__cause__ is original

    def test_to_dict(self):
        error = CallbackError("cb failed", cause=KeyError("k")).with_context(phase="poll")
        data = error.to_dict()
        assert data["error_type"] == "CallbackError"
        assert data["message"] == "cb failed"
        assert data["category"] == "CALLBACK"
        assert data["context"] == {"phase": "poll"}
        assert "KeyError" in data["cause"]

    def test_to_dict_without_context(self):
        assert "context" not in LoopError("x").to_dict()

    def test_repr(self):
        assert repr(InvalidDelayError("bad")) == "InvalidDelayError('bad', category=SCHEDULING)"


class TestHierarchy:
    """Each subclass lands in the right branch and category."""

    @pytest.mark.parametrize(
        "cls, parent, category",
        [
            (InvalidConfigError, ConfigError, ErrorCategory.CONFIG),
            (InvalidDelayError, SchedulingError, ErrorCategory.SCHEDULING),
            (LoopClosedError, SchedulingError, ErrorCategory.SCHEDULING),
            (LoopRunningError, SchedulingError, ErrorCategory.SCHEDULING),
            (LoopStalledError, PollError, ErrorCategory.POLL),
            (CallbackError, LoopError, ErrorCategory.CALLBACK),
        ],
    )
    def test_subclass(self, cls, parent, category):
        error = cls("x")
        assert isinstance(error, parent)
        assert isinstance(error, LoopError)
        assert error.category is category

    def test_invalid_config_records_key(self):
        error = InvalidConfigError("bad budget", key="max_io_callbacks_per_poll")
        assert error.context.metadata["config_key"] == "max_io_callbacks_per_poll"


class TestCategorizeError:
    def test_loop_error(self):
        assert categorize_error(LoopStalledError("x")) is ErrorCategory.POLL

    def test_foreign_error(self):
        assert categorize_error(RuntimeError("x")) is ErrorCategory.UNKNOWN
