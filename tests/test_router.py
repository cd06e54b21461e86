"""
Tests for the Fallback Router
=============================

Tests for llm_router/router.py
"""

import asyncio

import pytest

from llm_router.cache import ResponseCache
from llm_router.config import CacheConfig
from llm_router.errors import (
    AuthError,
    BadRequestError,
    ExpertTimeoutError,
    FallbackExhaustedError,
    HookBlockedError,
    OverloadedError,
    RateLimitError,
    ServerError,
    UnknownExpertError,
)
from llm_router.hooks.types import (
    HookDecision,
    HookDefinition,
    HookEventType,
    HookResult,
)
from llm_router.router import FallbackRouter, ParallelCall, classify_error

from conftest import FakeExpertClient


def capture(hooks, event_type, result=None, hook_id=None):
    """Register a hook that records the events it sees."""
    events = []

    def handler(context):
        events.append(context.event)
        return result(context) if callable(result) else result

    hooks.register_hook(HookDefinition(
        id=hook_id or f"capture_{event_type.value}",
        event_type=event_type,
        handler=handler,
    ))
    return events


class TestClassifyError:
    """Structural and message-based classification."""

    @pytest.mark.parametrize("error, reason, retryable", [
        (RateLimitError("strategist", "gpt-5.2", 30), "rate_limit", True),
        (ExpertTimeoutError("strategist", "gpt-5.2", 60), "timeout", True),
        (asyncio.TimeoutError(), "timeout", True),
        (ServerError("boom", 502), "server_error", True),
        (OverloadedError("busy"), "overloaded", True),
        (AuthError("denied"), "auth_error", False),
        (BadRequestError("nope"), "bad_request", False),
    ])
    def test_typed_errors(self, error, reason, retryable):
        classification = classify_error(error)
        assert classification.reason == reason
        assert classification.retryable is retryable

    @pytest.mark.parametrize("message, reason", [
        ("HTTP 429 Too Many Requests", "rate_limit"),
        ("request timed out", "timeout"),
        ("503 Service Unavailable", "server_error"),
        ("model is overloaded", "overloaded"),
        ("401 Unauthorized", "auth_error"),
        ("missing API key", "auth_error"),
        ("400 bad request: invalid field", "bad_request"),
        ("something odd happened", "unknown"),
    ])
    def test_message_fallback(self, message, reason):
        assert classify_error(RuntimeError(message)).reason == reason

    def test_unknown_is_retryable(self):
        assert classify_error(RuntimeError("???")).retryable is True


class TestPrimaryCall:
    """Calls that succeed on the first expert."""

    @pytest.mark.asyncio
    async def test_success_returns_primary(self, router, client):
        response = await router.call_with_fallback("strategist", "Design it")

        assert response.response == "strategist response"
        assert response.actual_expert_id == "strategist"
        assert response.fell_back is False
        assert client.calls[0]["model"] == "gpt-5.2"

    @pytest.mark.asyncio
    async def test_unknown_expert(self, router):
        with pytest.raises(UnknownExpertError):
            await router.call_with_fallback("nobody", "hi")

    @pytest.mark.asyncio
    async def test_result_hook_dispatched(self, router, hooks):
        results = capture(hooks, HookEventType.EXPERT_RESULT)

        await router.call_with_fallback("reviewer", "Check this")

        assert len(results) == 1
        assert results[0].expert_id == "reviewer"
        assert results[0].response_length == len("reviewer response")
        assert results[0].used_fallback is False

    @pytest.mark.asyncio
    async def test_block_raises(self, router, hooks, client):
        capture(hooks, HookEventType.EXPERT_CALL,
                result=HookResult(decision=HookDecision.BLOCK, reason="quota"))

        with pytest.raises(HookBlockedError) as exc_info:
            await router.call_with_fallback("reviewer", "Check this")

        assert exc_info.value.reason == "quota"
        assert "quota" in str(exc_info.value)
        assert client.calls == []

    @pytest.mark.asyncio
    async def test_injected_message_appended_to_context(self, router, hooks, client):
        capture(hooks, HookEventType.EXPERT_CALL, result=HookResult(inject_message="Be brief."))

        await router.call_with_fallback("reviewer", "Check this", "existing context")

        assert client.calls[0]["context"] == "existing context\n\nBe brief."


class TestFallback:
    """Walking the fallback chain."""

    @pytest.mark.asyncio
    async def test_falls_back_in_chain_order(self, registry, hooks):
        client = FakeExpertClient(errors={
            "reviewer": RateLimitError("reviewer", "gemini-2.5-pro", 30),
            "explorer": ServerError("503", 503),
        })
        router = FallbackRouter(registry, client, hooks)

        response = await router.call_with_fallback("reviewer", "Review")

        assert client.called_experts() == ["reviewer", "explorer", "writer"]
        assert response.actual_expert_id == "writer"
        assert response.fell_back is True

    @pytest.mark.asyncio
    async def test_rate_limit_event_dispatched_once(self, registry, hooks):
        client = FakeExpertClient(errors={
            "strategist": RateLimitError("strategist", "gpt-5.2", 42),
            "researcher": RateLimitError("researcher", "claude", 10),
        })
        router = FallbackRouter(registry, client, hooks)
        events = capture(hooks, HookEventType.RATE_LIMIT)

        await router.call_with_fallback("strategist", "Plan")

        assert len(events) == 1
        event = events[0]
        assert event.provider == "openai"
        assert event.model == "gpt-5.2"
        assert event.expert_id == "strategist"
        assert event.retry_after_seconds == 42
        assert event.fallback_available is True
        assert event.reason == "rate_limit"

    @pytest.mark.asyncio
    async def test_fallback_call_events_marked(self, registry, hooks):
        client = FakeExpertClient(errors={"strategist": OverloadedError("busy")})
        router = FallbackRouter(registry, client, hooks)
        calls = capture(hooks, HookEventType.EXPERT_CALL)
        results = capture(hooks, HookEventType.EXPERT_RESULT)

        await router.call_with_fallback("strategist", "Plan")

        assert [(e.expert_id, e.is_fallback, e.original_expert) for e in calls] == [
            ("strategist", False, None),
            ("researcher", True, "strategist"),
        ]
        assert results[0].used_fallback is True
        assert results[0].original_expert == "strategist"

    @pytest.mark.asyncio
    async def test_exhaustion(self, registry, hooks):
        client = FakeExpertClient(errors={
            "strategist": RateLimitError("strategist", "gpt-5.2", 30),
            "researcher": ExpertTimeoutError("researcher", "claude", 60),
            "reviewer": RuntimeError("weird failure"),
        })
        router = FallbackRouter(registry, client, hooks)
        errors = capture(hooks, HookEventType.ERROR)

        with pytest.raises(FallbackExhaustedError) as exc_info:
            await router.call_with_fallback("strategist", "Plan")

        message = str(exc_info.value)
        assert message.startswith("All experts exhausted for strategist. Chain: strategist (rate_limit: ")
        assert " -> researcher (timeout: " in message
        assert " -> reviewer (unknown: weird failure)" in message
        assert message.endswith("Please try again later.")
        assert [a.expert_id for a in exc_info.value.attempts] == ["strategist", "researcher", "reviewer"]
        assert errors[-1].error_code == "fallback_exhausted"

    @pytest.mark.asyncio
    async def test_fatal_primary_skips_fallback(self, registry, hooks):
        client = FakeExpertClient(errors={"strategist": AuthError("401 unauthorized")})
        router = FallbackRouter(registry, client, hooks)
        rate_limits = capture(hooks, HookEventType.RATE_LIMIT)
        errors = capture(hooks, HookEventType.ERROR)

        with pytest.raises(AuthError):
            await router.call_with_fallback("strategist", "Plan")

        assert client.called_experts() == ["strategist"]
        assert rate_limits == []
        assert errors[0].error_code == "auth_error"

    @pytest.mark.asyncio
    async def test_fatal_fallback_stops_chain(self, registry, hooks):
        client = FakeExpertClient(errors={
            "reviewer": RateLimitError("reviewer", "gemini-2.5-pro"),
            "explorer": BadRequestError("400 bad request"),
        })
        router = FallbackRouter(registry, client, hooks)

        with pytest.raises(BadRequestError):
            await router.call_with_fallback("reviewer", "Review")

        assert client.called_experts() == ["reviewer", "explorer"]

    @pytest.mark.asyncio
    async def test_blocked_fallback_is_skipped(self, registry, hooks):
        client = FakeExpertClient(errors={"reviewer": RateLimitError("reviewer", "gemini-2.5-pro")})
        router = FallbackRouter(registry, client, hooks)

        def block_explorer(context):
            if context.event.expert_id == "explorer":
                return HookResult(decision=HookDecision.BLOCK, reason="explorer disabled")
            return HookResult()

        capture(hooks, HookEventType.EXPERT_CALL, result=block_explorer)

        response = await router.call_with_fallback("reviewer", "Review")

        assert client.called_experts() == ["reviewer", "writer"]
        assert response.actual_expert_id == "writer"

    @pytest.mark.asyncio
    async def test_no_fallbacks_defined(self, registry, hooks):
        registry.fallback_chain["writer"] = []
        client = FakeExpertClient(errors={"writer": RateLimitError("writer", "gemini-2.5-flash")})
        router = FallbackRouter(registry, client, hooks)
        rate_limits = capture(hooks, HookEventType.RATE_LIMIT)

        with pytest.raises(FallbackExhaustedError):
            await router.call_with_fallback("writer", "Write")

        assert rate_limits[0].fallback_available is False


class TestCaching:
    """The response cache sits in front of the primary call."""

    def _router(self, registry, client, hooks):
        return FallbackRouter(registry, client, hooks, cache=ResponseCache(CacheConfig()))

    @pytest.mark.asyncio
    async def test_second_call_served_from_cache(self, registry, client, hooks):
        router = self._router(registry, client, hooks)
        results = capture(hooks, HookEventType.EXPERT_RESULT)

        first = await router.call_with_fallback("reviewer", "Review", "ctx")
        second = await router.call_with_fallback("reviewer", "Review", "ctx")

        assert first.cached is False
        assert second.cached is True
        assert second.response == first.response
        assert len(client.calls) == 1
        assert results[-1].from_cache is True

    @pytest.mark.asyncio
    async def test_skip_cache_bypasses(self, registry, client, hooks):
        router = self._router(registry, client, hooks)

        await router.call_with_fallback("reviewer", "Review")
        await router.call_with_fallback("reviewer", "Review", skip_cache=True)

        assert len(client.calls) == 2

    @pytest.mark.asyncio
    async def test_image_calls_not_cached(self, registry, client, hooks):
        router = self._router(registry, client, hooks)

        await router.call_with_fallback("reviewer", "Describe", image_path="/tmp/shot.png")
        await router.call_with_fallback("reviewer", "Describe", image_path="/tmp/shot.png")

        assert len(client.calls) == 2

    @pytest.mark.asyncio
    async def test_context_is_part_of_key(self, registry, client, hooks):
        router = self._router(registry, client, hooks)

        await router.call_with_fallback("reviewer", "Review", "a")
        await router.call_with_fallback("reviewer", "Review", "b")

        assert len(client.calls) == 2

    @pytest.mark.asyncio
    async def test_fallback_result_not_cached(self, registry, hooks):
        client = FakeExpertClient(errors={"reviewer": RateLimitError("reviewer", "gemini-2.5-pro")})
        cache = ResponseCache(CacheConfig())
        router = FallbackRouter(registry, client, hooks, cache=cache)

        await router.call_with_fallback("reviewer", "Review")
        second = await router.call_with_fallback("reviewer", "Review")

        assert second.cached is False
        assert client.called_experts() == ["reviewer", "explorer", "reviewer", "explorer"]
        assert cache.get("explorer", "Review") is None
        assert cache.get("reviewer", "Review") is None


class TestParallel:
    @pytest.mark.asyncio
    async def test_results_in_call_order(self, router):
        responses = await router.call_experts_parallel([
            ParallelCall("strategist", "a"),
            ParallelCall("reviewer", "b"),
            ParallelCall("explorer", "c", "ctx"),
        ])

        assert [r.actual_expert_id for r in responses] == ["strategist", "reviewer", "explorer"]
