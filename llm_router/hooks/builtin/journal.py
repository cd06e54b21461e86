"""
Journal Hooks
=============

One low-priority hook per event type that writes the event to the
EventJournal.
"""

from typing import List

from llm_router.hooks.types import HookContext, HookDefinition, HookEventType, HookPriority, HookResult
from llm_router.observability import EventJournal


def journal_hooks(journal: EventJournal) -> List[HookDefinition]:
    async def record(context: HookContext) -> HookResult:
        await journal.record(context)
        return HookResult()

    return [
        HookDefinition(
            id=f"builtin_journal_{event_type.value}",
            name="Journal Event",
            description=f"Persists {event_type.value} events to the event journal",
            event_type=event_type,
            handler=record,
            priority=HookPriority.LOW,
        )
        for event_type in HookEventType
    ]
