"""
Tests for the built-in hooks
============================

Tests for llm_router/hooks/builtin/
"""

import pytest

from llm_router.hooks.builtin import ErrorTracker, RateLimitTracker, register_builtin_hooks
from llm_router.hooks.builtin.error_recovery import suggest_recovery
from llm_router.hooks.builtin.rate_limit import DEFAULT_COOLDOWN_SECONDS
from llm_router.hooks.types import (
    ErrorEvent,
    ExpertCallEvent,
    ExpertResultEvent,
    HookDecision,
    HookEventType,
    RateLimitEvent,
    ToolResultEvent,
)


class FakeClock:
    def __init__(self):
        self.now = 500.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def tracker(clock):
    return RateLimitTracker(clock=clock)


class TestRateLimitTracker:
    """Cool-down bookkeeping."""

    def test_record_and_check(self, tracker, clock):
        tracker.record("openai", "gpt-5.2", 30)

        limited, remaining = tracker.check("openai", "gpt-5.2")
        assert limited
        assert remaining == 30

        clock.now += 31
        assert tracker.check("openai", "gpt-5.2") == (False, None)

    def test_default_cooldown(self, tracker, clock):
        tracker.record("google", "gemini-2.5-pro")
        clock.now += DEFAULT_COOLDOWN_SECONDS - 1
        assert tracker.check("google", "gemini-2.5-flash")[0]

    def test_model_limit_applies_across_providers_lookup(self, tracker):
        tracker.record("openai", "gpt-5.2", 10)
        limited, _ = tracker.check("unknown", "gpt-5.2")
        assert limited

    def test_consecutive_counter(self, tracker, clock):
        tracker.record("openai", "gpt-5.2")
        clock.now += 10
        tracker.record("openai", "gpt-5.2")
        assert tracker.consecutive_rate_limits == 2

        clock.now += 120
        tracker.record("openai", "gpt-5.2")
        assert tracker.consecutive_rate_limits == 1

    def test_clear_and_reset(self, tracker):
        tracker.record("openai", "gpt-5.2")
        tracker.clear("openai", "gpt-5.2")
        assert tracker.check("openai", "gpt-5.2") == (False, None)

        tracker.record("openai", "gpt-5.2")
        tracker.reset()
        assert tracker.snapshot() == {"provider_limits": {}, "model_limits": {}, "consecutive_rate_limits": 0}


class TestRateLimitHooks:
    """Rate-limit hooks annotate but never block."""

    @pytest.mark.asyncio
    async def test_precheck_notes_cooling_model(self, hooks, tracker):
        register_builtin_hooks(hooks, tracker)
        tracker.record("openai", "gpt-5.2", 12.2)

        result = await hooks.dispatch(ExpertCallEvent(expert_id="strategist", model="gpt-5.2"))

        assert result.decision == HookDecision.CONTINUE
        assert "openai/gpt-5.2 is currently rate limited. Retry after 13s" in result.inject_message
        assert result.metadata["rate_limited"] is True

    @pytest.mark.asyncio
    async def test_rate_limit_event_records_tracker(self, hooks, tracker):
        register_builtin_hooks(hooks, tracker)

        await hooks.dispatch(RateLimitEvent(
            provider="anthropic", model="claude-sonnet-4-5-20250929",
            expert_id="researcher", retry_after_seconds=20, fallback_available=True,
        ))

        assert tracker.check("anthropic", "claude-sonnet-4-5-20250929")[0]

    @pytest.mark.asyncio
    async def test_warning_after_three_consecutive(self, hooks, tracker):
        register_builtin_hooks(hooks, tracker)
        event = RateLimitEvent(provider="openai", model="gpt-5.2", fallback_available=True)

        await hooks.dispatch(event)
        await hooks.dispatch(event)
        result = await hooks.dispatch(event)

        assert "Multiple rate limits detected (3 consecutive)" in result.inject_message
        assert result.metadata["warning_level"] == "high"

    @pytest.mark.asyncio
    async def test_no_fallback_suggests_waiting(self, hooks, tracker):
        register_builtin_hooks(hooks, tracker)

        result = await hooks.dispatch(RateLimitEvent(
            provider="google", model="gemini-2.5-flash", retry_after_seconds=15, fallback_available=False,
        ))

        assert "Rate limited on gemini-2.5-flash with no fallback available. Please wait 15 seconds." in (
            result.inject_message
        )


class TestRegisterBuiltinHooks:
    def test_count_without_journal(self, hooks, tracker):
        count = register_builtin_hooks(hooks, tracker)

        assert count == 14
        assert hooks.get_hook("builtin_log_expert_call") is not None
        assert hooks.get_hook("builtin_track_rate_limit") is not None
        assert hooks.get_hook("builtin_track_error") is not None

    def test_logging_hooks_are_low_priority(self, hooks, tracker):
        register_builtin_hooks(hooks, tracker)
        logging_hooks = [h for h in hooks.hooks_for_event(HookEventType.ERROR) if h.id.startswith("builtin_log_")]
        assert logging_hooks
        for hook in logging_hooks:
            assert hook.priority.value == "low"
        assert hooks.get_hook("builtin_track_error").priority.value == "high"


@pytest.fixture
def errors(clock):
    return ErrorTracker(clock=clock)


class TestErrorTracker:
    """Recent errors per source in a five-minute window."""

    def test_counts_expire(self, errors, clock):
        errors.record("expert:reviewer", "boom")
        errors.record("expert:reviewer", "boom")
        assert errors.recent_count("expert:reviewer") == 2

        clock.now += 301
        assert errors.recent_count("expert:reviewer") == 0
        assert errors.record("workflow", "bad") == 1
        assert "expert:reviewer" not in errors.recent
        assert errors.total_errors == 3

    def test_keeps_last_ten_per_source(self, errors):
        for i in range(15):
            errors.record("tool:search", f"error {i}")

        assert errors.recent_count("tool:search") == 10
        assert errors.recent["tool:search"][0][1] == "error 5"
        assert errors.snapshot() == {"total_errors": 15, "recent_errors_by_source": {"tool:search": 10}}

    def test_suggestions(self):
        assert "Check network connectivity" in suggest_recovery("Connection reset", "expert:writer")
        assert "Wait before retrying" in suggest_recovery("429 Too Many Requests", "expert:writer")
        assert "Verify the tool parameters" in suggest_recovery("bad input", "tool:search")
        assert suggest_recovery("weird", "workflow") == [
            "Try again with a simpler request",
            "Check the logs for earlier failures",
        ]


class TestErrorRecoveryHooks:
    """Error-recovery hooks annotate but never block."""

    @pytest.mark.asyncio
    async def test_repeated_errors_warn(self, hooks, tracker, errors):
        register_builtin_hooks(hooks, tracker, error_tracker=errors)
        event = ErrorEvent(error_message="network down", source="expert:reviewer", error_code="timeout")

        first = await hooks.dispatch(event)
        await hooks.dispatch(event)
        third = await hooks.dispatch(event)

        assert first.inject_message is None
        assert first.metadata["recent_error_count"] == 1
        assert first.decision == HookDecision.CONTINUE
        assert "Multiple errors from expert:reviewer (3 in the last 5 minutes)" in third.inject_message
        assert "- Check network connectivity" in third.inject_message

    @pytest.mark.asyncio
    async def test_recurring_tool_failure(self, hooks, tracker, errors):
        register_builtin_hooks(hooks, tracker, error_tracker=errors)

        ok = await hooks.dispatch(ToolResultEvent(tool_name="search", success=True))
        assert ok.inject_message is None
        assert errors.total_errors == 0

        failed = ToolResultEvent(tool_name="search", success=False, error="timeout")
        first = await hooks.dispatch(failed)
        second = await hooks.dispatch(failed)

        assert first.inject_message is None
        assert 'Tool "search" has failed 2 times recently.' in second.inject_message
        assert "Error: timeout" in second.inject_message

    @pytest.mark.asyncio
    async def test_fallback_result_noted(self, hooks, tracker, errors):
        register_builtin_hooks(hooks, tracker, error_tracker=errors)

        result = await hooks.dispatch(ExpertResultEvent(
            expert_id="explorer", response_length=200, used_fallback=True, original_expert="reviewer",
        ))

        assert result.inject_message == "Response from fallback expert explorer (original: reviewer)."
        assert result.metadata["fallback_used"] is True

    @pytest.mark.asyncio
    async def test_short_response_flagged(self, hooks, tracker, errors):
        register_builtin_hooks(hooks, tracker, error_tracker=errors)

        result = await hooks.dispatch(ExpertResultEvent(expert_id="writer", response_length=3))
        cached = await hooks.dispatch(ExpertResultEvent(expert_id="writer", response_length=3, from_cache=True))

        assert result.metadata == {"warning": "short_response", "response_length": 3}
        assert cached.metadata == {}
        assert result.inject_message is None
