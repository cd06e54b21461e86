"""
Tests for the Hook Manager
==========================

Tests for llm_router/hooks/manager.py and llm_router/hooks/types.py
"""

import pytest

from llm_router.errors import HookExecutionError
from llm_router.hooks.manager import HookManager, match_pattern
from llm_router.hooks.types import (
    ErrorEvent,
    ExpertCallEvent,
    HookContext,
    HookDecision,
    HookDefinition,
    HookEventType,
    HookPriority,
    HookResult,
    RateLimitEvent,
    ToolCallEvent,
)


def recording_hook(hook_id, calls, priority=HookPriority.NORMAL, result=None, **kwargs):
    def handler(context):
        calls.append(hook_id)
        return result or HookResult()

    return HookDefinition(
        id=hook_id,
        event_type=kwargs.pop("event_type", HookEventType.EXPERT_CALL),
        handler=handler,
        priority=priority,
        **kwargs,
    )


class TestMatchPattern:
    """Tests for hook name patterns."""

    def test_exact_match_is_case_insensitive(self):
        assert match_pattern("Reviewer", "reviewer")
        assert not match_pattern("reviewer", "reviewer2")

    def test_wildcard(self):
        assert match_pattern("git_*", "git_status")
        assert match_pattern("*_review*", "code_reviewer")
        assert not match_pattern("git_*", "search_code")

    def test_pipe_alternatives(self):
        assert match_pattern("strategist | reviewer", "reviewer")
        assert match_pattern("a|b*|c", "beta")
        assert not match_pattern("a|b|c", "d")


class TestHookResultMerge:
    """Tests for folding hook results."""

    def test_block_wins_over_modify(self):
        merged = HookResult(decision=HookDecision.MODIFY).merge(HookResult(decision=HookDecision.BLOCK))
        assert merged.decision == HookDecision.BLOCK

    def test_continue_keeps_previous_decision(self):
        merged = HookResult(decision=HookDecision.MODIFY).merge(HookResult())
        assert merged.decision == HookDecision.MODIFY

    def test_messages_and_metadata_accumulate(self):
        first = HookResult(inject_message="one", metadata={"a": 1}, reason="first")
        second = HookResult(inject_message="two", metadata={"b": 2})
        merged = first.merge(second)

        assert merged.inject_message == "one\ntwo"
        assert merged.metadata == {"a": 1, "b": 2}
        assert merged.reason == "first"

    def test_suppress_output_takes_latest_set_value(self):
        merged = HookResult(suppress_output=True).merge(HookResult())
        assert merged.suppress_output is True
        merged = merged.merge(HookResult(suppress_output=False))
        assert merged.suppress_output is False

    def test_from_dict_reads_camel_case(self):
        result = HookResult.from_dict({
            "decision": "modify",
            "modifiedData": {"prompt": "x"},
            "injectMessage": "note",
            "suppressOutput": True,
        })
        assert result.decision == HookDecision.MODIFY
        assert result.modified_data == {"prompt": "x"}
        assert result.inject_message == "note"
        assert result.suppress_output is True

    def test_from_dict_unknown_decision_continues(self):
        assert HookResult.from_dict({"decision": "explode"}).decision == HookDecision.CONTINUE


class TestDispatchOrdering:
    """Hooks run by priority, ties by registration order."""

    @pytest.mark.asyncio
    async def test_priority_order(self, hooks):
        calls = []
        hooks.register_hook(recording_hook("low", calls, HookPriority.LOW))
        hooks.register_hook(recording_hook("critical", calls, HookPriority.CRITICAL))
        hooks.register_hook(recording_hook("normal", calls, HookPriority.NORMAL))
        hooks.register_hook(recording_hook("high_a", calls, HookPriority.HIGH))
        hooks.register_hook(recording_hook("high_b", calls, HookPriority.HIGH))

        await hooks.dispatch(ExpertCallEvent(expert_id="reviewer"))

        assert calls == ["critical", "high_a", "high_b", "normal", "low"]

    @pytest.mark.asyncio
    async def test_overwrite_keeps_registration_slot(self, hooks):
        calls = []
        hooks.register_hook(recording_hook("first", calls))
        hooks.register_hook(recording_hook("second", calls))
        hooks.register_hook(recording_hook("first", calls))

        await hooks.dispatch(ExpertCallEvent(expert_id="reviewer"))

        assert calls == ["first", "second"]

    @pytest.mark.asyncio
    async def test_only_matching_event_type_runs(self, hooks):
        calls = []
        hooks.register_hook(recording_hook("expert", calls))
        hooks.register_hook(recording_hook("tool", calls, event_type=HookEventType.TOOL_CALL))

        await hooks.dispatch(ToolCallEvent(tool_name="search"))

        assert calls == ["tool"]

    @pytest.mark.asyncio
    async def test_no_hooks_returns_continue(self, hooks):
        result = await hooks.dispatch(ExpertCallEvent(expert_id="reviewer"))
        assert result.decision == HookDecision.CONTINUE
        assert result.inject_message is None


class TestDispatchDecisions:
    """Block, modify and injection behavior."""

    @pytest.mark.asyncio
    async def test_block_short_circuits(self, hooks):
        calls = []
        hooks.register_hook(recording_hook(
            "blocker", calls, HookPriority.HIGH,
            result=HookResult(decision=HookDecision.BLOCK, reason="not allowed"),
        ))
        hooks.register_hook(recording_hook("after", calls, HookPriority.LOW))

        result = await hooks.dispatch(ExpertCallEvent(expert_id="reviewer"))

        assert result.blocked
        assert result.reason == "not allowed"
        assert calls == ["blocker"]
        assert hooks.get_stats()["blocker"].blocked_executions == 1

    @pytest.mark.asyncio
    async def test_modify_is_seen_by_later_hooks(self, hooks):
        seen = []

        def rewrite(context):
            return HookResult(decision=HookDecision.MODIFY, modified_data={"prompt": "rewritten"})

        def observe(context):
            seen.append(context.event.prompt)
            return HookResult()

        hooks.register_hook(HookDefinition(
            id="rewrite", event_type=HookEventType.EXPERT_CALL, handler=rewrite, priority=HookPriority.HIGH,
        ))
        hooks.register_hook(HookDefinition(
            id="observe", event_type=HookEventType.EXPERT_CALL, handler=observe, priority=HookPriority.LOW,
        ))

        result = await hooks.dispatch(ExpertCallEvent(expert_id="reviewer", prompt="original"))

        assert seen == ["rewritten"]
        assert result.decision == HookDecision.MODIFY
        assert result.modified_data == {"prompt": "rewritten"}

    @pytest.mark.asyncio
    async def test_modify_accepts_camel_case_keys(self, hooks):
        seen = []

        hooks.register_hook(HookDefinition(
            id="rewrite",
            event_type=HookEventType.EXPERT_CALL,
            handler=lambda ctx: HookResult(decision=HookDecision.MODIFY, modified_data={"skipCache": True}),
            priority=HookPriority.HIGH,
        ))
        hooks.register_hook(HookDefinition(
            id="observe",
            event_type=HookEventType.EXPERT_CALL,
            handler=lambda ctx: seen.append(ctx.event.skip_cache),
        ))

        await hooks.dispatch(ExpertCallEvent(expert_id="reviewer"))

        assert seen == [True]

    @pytest.mark.asyncio
    async def test_async_handlers_and_injected_messages(self, hooks):
        async def first(context):
            return HookResult(inject_message="first note")

        async def second(context):
            return HookResult(inject_message="second note")

        hooks.register_hook(HookDefinition(id="a", event_type=HookEventType.EXPERT_CALL, handler=first))
        hooks.register_hook(HookDefinition(id="b", event_type=HookEventType.EXPERT_CALL, handler=second))

        result = await hooks.dispatch(ExpertCallEvent(expert_id="reviewer"))

        assert result.inject_message == "first note\nsecond note"


class TestFailures:
    """Hook exceptions."""

    @pytest.mark.asyncio
    async def test_non_critical_failure_is_skipped(self, hooks):
        calls = []

        def broken(context):
            raise RuntimeError("boom")

        hooks.register_hook(HookDefinition(
            id="broken", event_type=HookEventType.EXPERT_CALL, handler=broken, priority=HookPriority.HIGH,
        ))
        hooks.register_hook(recording_hook("after", calls))

        result = await hooks.dispatch(ExpertCallEvent(expert_id="reviewer"))

        assert not result.blocked
        assert calls == ["after"]
        stats = hooks.get_stats()["broken"]
        assert stats.total_executions == 1
        assert stats.failed_executions == 1

    @pytest.mark.asyncio
    async def test_critical_failure_blocks(self, hooks):
        calls = []

        def broken(context):
            raise RuntimeError("boom")

        hooks.register_hook(HookDefinition(
            id="guard", event_type=HookEventType.EXPERT_CALL, handler=broken, priority=HookPriority.CRITICAL,
        ))
        hooks.register_hook(recording_hook("after", calls))

        result = await hooks.dispatch(ExpertCallEvent(expert_id="reviewer"))

        assert result.blocked
        assert result.reason == "Critical hook failed: boom"
        assert calls == []

    @pytest.mark.asyncio
    async def test_handler_error_is_wrapped(self, hooks):
        def broken(context):
            raise ValueError("bad payload")

        hook = HookDefinition(id="broken", event_type=HookEventType.ERROR, handler=broken)
        context = HookContext(event=ErrorEvent(error_message="x"), cwd=hooks.cwd)

        with pytest.raises(HookExecutionError) as exc_info:
            await hooks._execute_hook(hook, context)

        assert exc_info.value.hook_id == "broken"
        assert isinstance(exc_info.value.cause, ValueError)
        assert str(exc_info.value) == "Hook broken failed: bad payload"


class TestEnablement:
    """Disabled hooks and the global switch."""

    @pytest.mark.asyncio
    async def test_disabled_hook_is_skipped(self, hooks):
        calls = []
        hooks.register_hook(recording_hook("off", calls))
        assert hooks.set_hook_enabled("off", False)

        await hooks.dispatch(ExpertCallEvent(expert_id="reviewer"))

        assert calls == []
        assert not hooks.set_hook_enabled("missing", False)

    @pytest.mark.asyncio
    async def test_disabled_hooks_set(self, tmp_path):
        calls = []
        manager = HookManager(disabled_hooks=["quiet"], cwd=str(tmp_path))
        manager.register_hook(recording_hook("quiet", calls))

        await manager.dispatch(ExpertCallEvent(expert_id="reviewer"))

        assert calls == []

    @pytest.mark.asyncio
    async def test_global_disable(self, hooks):
        calls = []
        hooks.register_hook(recording_hook("any", calls, result=HookResult(decision=HookDecision.BLOCK)))
        hooks.set_enabled(False)

        result = await hooks.dispatch(ExpertCallEvent(expert_id="reviewer"))

        assert not result.blocked
        assert calls == []

    def test_unregister(self, hooks):
        hooks.register_hook(recording_hook("gone", []))
        assert hooks.unregister_hook("gone")
        assert hooks.get_hook("gone") is None
        assert not hooks.unregister_hook("gone")


class TestPatterns:
    """Name patterns restrict which events a hook sees."""

    @pytest.mark.asyncio
    async def test_expert_pattern(self, hooks):
        calls = []
        hooks.register_hook(recording_hook("reviewers", calls, expert_pattern="*reviewer"))

        await hooks.dispatch(ExpertCallEvent(expert_id="strategist"))
        await hooks.dispatch(ExpertCallEvent(expert_id="codex_reviewer"))

        assert calls == ["reviewers"]

    @pytest.mark.asyncio
    async def test_tool_pattern(self, hooks):
        calls = []
        hooks.register_hook(recording_hook(
            "git", calls, event_type=HookEventType.TOOL_CALL, tool_pattern="git_*",
        ))

        await hooks.dispatch(ToolCallEvent(tool_name="search"))
        await hooks.dispatch(ToolCallEvent(tool_name="git_diff"))

        assert calls == ["git"]

    @pytest.mark.asyncio
    async def test_expert_pattern_on_rate_limit_event(self, hooks):
        calls = []
        hooks.register_hook(recording_hook(
            "rl", calls, event_type=HookEventType.RATE_LIMIT, expert_pattern="strategist",
        ))

        await hooks.dispatch(RateLimitEvent(provider="openai", model="gpt-5.2", expert_id="strategist"))
        await hooks.dispatch(RateLimitEvent(provider="openai", model="gpt-5.2"))

        assert calls == ["rl"]


class TestHookContext:
    """The envelope handed to hooks."""

    def test_to_dict_is_flat_camel_case(self):
        context = HookContext(
            event=ExpertCallEvent(expert_id="reviewer", model="gemini-2.5-pro", skip_cache=True),
            cwd="/work",
        )
        data = context.to_dict()

        assert data["eventType"] == "onExpertCall"
        assert data["expertId"] == "reviewer"
        assert data["skipCache"] is True
        assert data["cwd"] == "/work"
        assert data["hookExecutionId"] == context.hook_execution_id

    def test_event_type_comes_from_payload_class(self):
        context = HookContext(event=RateLimitEvent(provider="google"), cwd="/")
        assert context.event_type == HookEventType.RATE_LIMIT

    def test_system_stats(self, hooks):
        hooks.register_hook(recording_hook("a", []))
        stats = hooks.get_system_stats()
        assert stats["total_hooks"] == 1
        assert stats["internal_hooks"] == 1
        assert stats["external_hooks"] == 0
