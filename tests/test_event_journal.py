"""
Integration tests for the event journal (SQLite via aiosqlite).
"""

import pytest

from llm_router.hooks.builtin import RateLimitTracker, register_builtin_hooks
from llm_router.hooks.manager import HookManager
from llm_router.hooks.types import (
    ExpertCallEvent,
    HookContext,
    ToolCallEvent,
    WorkflowEndEvent,
)
from llm_router.observability import EventJournal


class TestEventJournal:
    """Recording and querying journal rows."""

    @pytest.mark.asyncio
    async def test_record_and_list(self, tmp_path):
        journal = EventJournal(tmp_path)
        assert await journal.init()
        try:
            context = HookContext(
                event=ExpertCallEvent(expert_id="reviewer", model="gemini-2.5-pro", prompt="Check"),
                cwd=str(tmp_path),
            )
            row_id = await journal.record(context)
            assert row_id is not None

            events = await journal.list_events()
            assert len(events) == 1
            entry = events[0]
            assert entry.execution_id == context.hook_execution_id
            assert entry.event_type == "onExpertCall"
            assert entry.subject == "reviewer"
            assert entry.payload["prompt"] == "Check"
        finally:
            await journal.close()

        assert (tmp_path / ".llm-router" / "events.db").exists()

    @pytest.mark.asyncio
    async def test_filters_and_counts(self, tmp_path):
        journal = EventJournal(tmp_path)
        await journal.init()
        try:
            for name in ("search", "git_diff", "search"):
                await journal.record(HookContext(event=ToolCallEvent(tool_name=name), cwd=str(tmp_path)))
            await journal.record(HookContext(
                event=WorkflowEndEvent(success=True, phases_executed=["intent", "completion"]),
                cwd=str(tmp_path),
            ))

            searches = await journal.list_events(subject="search")
            assert len(searches) == 2
            assert all(e.event_type == "onToolCall" for e in searches)

            ends = await journal.list_events(event_type="onWorkflowEnd")
            assert ends[0].payload["phasesExecuted"] == ["intent", "completion"]
            assert ends[0].subject is None

            newest_first = await journal.list_events(limit=2)
            assert newest_first[0].id > newest_first[1].id

            counts = await journal.count_by_type()
            assert counts == {"onToolCall": 3, "onWorkflowEnd": 1}
        finally:
            await journal.close()

    @pytest.mark.asyncio
    async def test_record_before_init_is_noop(self, tmp_path):
        journal = EventJournal(tmp_path)
        context = HookContext(event=ToolCallEvent(tool_name="x"), cwd=str(tmp_path))

        assert await journal.record(context) is None
        assert await journal.list_events() == []
        assert await journal.count_by_type() == {}

    @pytest.mark.asyncio
    async def test_journal_hooks_record_dispatches(self, tmp_path):
        journal = EventJournal(tmp_path)
        await journal.init()
        try:
            manager = HookManager(cwd=str(tmp_path))
            register_builtin_hooks(manager, RateLimitTracker(), journal)

            await manager.dispatch(ExpertCallEvent(expert_id="strategist", model="gpt-5.2"))
            await manager.dispatch(ToolCallEvent(tool_name="search"))

            counts = await journal.count_by_type()
            assert counts == {"onExpertCall": 1, "onToolCall": 1}
        finally:
            await journal.close()
