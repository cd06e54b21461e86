"""
Hook System
===========

Event-driven hooks that can observe, block or modify every call.
"""

from llm_router.hooks.manager import HookManager, match_pattern
from llm_router.hooks.types import (
    BackgroundLoopEndEvent,
    BackgroundLoopIterationEvent,
    BackgroundLoopStartEvent,
    ErrorEvent,
    ExpertCallEvent,
    ExpertResultEvent,
    ExternalHookDefinition,
    HookContext,
    HookDecision,
    HookDefinition,
    HookEvent,
    HookEventType,
    HookPriority,
    HookResult,
    HookStats,
    RateLimitEvent,
    ServerStartEvent,
    ServerStopEvent,
    ToolCallEvent,
    ToolResultEvent,
    WorkflowEndEvent,
    WorkflowPhaseEvent,
    WorkflowStartEvent,
)
