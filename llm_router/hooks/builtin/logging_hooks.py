"""
Logging Hooks
=============

Built-in low-priority hooks that log events through the `logging` module.
"""

import logging
from typing import List

from llm_router.hooks.types import (
    ErrorEvent,
    ExpertCallEvent,
    ExpertResultEvent,
    HookContext,
    HookDefinition,
    HookEventType,
    HookPriority,
    HookResult,
    RateLimitEvent,
    ToolCallEvent,
    ToolResultEvent,
    WorkflowEndEvent,
    WorkflowStartEvent,
)

logger = logging.getLogger(__name__)


def _log_tool_call(context: HookContext) -> HookResult:
    event: ToolCallEvent = context.event
    logger.debug("[Hook] Tool call %s (inputs: %s)", event.tool_name, ", ".join(event.tool_input))
    return HookResult()


def _log_tool_result(context: HookContext) -> HookResult:
    event: ToolResultEvent = context.event
    logger.debug(
        "[Hook] Tool result %s success=%s duration=%dms%s",
        event.tool_name, event.success, event.duration_ms,
        f" error={event.error}" if event.error else "",
    )
    return HookResult()


def _log_expert_call(context: HookContext) -> HookResult:
    event: ExpertCallEvent = context.event
    logger.info(
        "[Hook] Expert call %s (%s) prompt=%d chars%s",
        event.expert_id, event.model, len(event.prompt),
        " [fallback]" if event.is_fallback else "",
    )
    return HookResult()


def _log_expert_result(context: HookContext) -> HookResult:
    event: ExpertResultEvent = context.event
    origin = f" (fallback from {event.original_expert})" if event.used_fallback else ""
    logger.info(
        "[Hook] Expert result %s (%s) %d chars in %dms%s%s",
        event.expert_id, event.model, event.response_length, event.duration_ms,
        " [cached]" if event.from_cache else "", origin,
    )
    return HookResult()


def _log_workflow_start(context: HookContext) -> HookResult:
    event: WorkflowStartEvent = context.event
    logger.info("[Hook] Workflow started: %s (max attempts %d)", event.request[:100], event.max_attempts)
    return HookResult()


def _log_workflow_end(context: HookContext) -> HookResult:
    event: WorkflowEndEvent = context.event
    logger.info(
        "[Hook] Workflow ended: success=%s escalated=%s phases=%s duration=%dms",
        event.success, event.escalated, " -> ".join(event.phases_executed), event.total_duration_ms,
    )
    return HookResult()


def _log_error(context: HookContext) -> HookResult:
    event: ErrorEvent = context.event
    logger.error(
        "[Hook] Error from %s: %s (recoverable=%s)",
        event.source, event.error_message, event.recoverable,
    )
    return HookResult()


def _log_rate_limit(context: HookContext) -> HookResult:
    event: RateLimitEvent = context.event
    logger.warning(
        "[Hook] %s on %s/%s (expert %s, retry after %s, fallback %s)",
        event.reason, event.provider, event.model, event.expert_id,
        event.retry_after_seconds, "available" if event.fallback_available else "unavailable",
    )
    return HookResult()


def logging_hooks() -> List[HookDefinition]:
    """All logging hooks, priority low."""
    specs = [
        ("builtin_log_tool_call", "Log Tool Call", HookEventType.TOOL_CALL, _log_tool_call),
        ("builtin_log_tool_result", "Log Tool Result", HookEventType.TOOL_RESULT, _log_tool_result),
        ("builtin_log_expert_call", "Log Expert Call", HookEventType.EXPERT_CALL, _log_expert_call),
        ("builtin_log_expert_result", "Log Expert Result", HookEventType.EXPERT_RESULT, _log_expert_result),
        ("builtin_log_workflow_start", "Log Workflow Start", HookEventType.WORKFLOW_START, _log_workflow_start),
        ("builtin_log_workflow_end", "Log Workflow End", HookEventType.WORKFLOW_END, _log_workflow_end),
        ("builtin_log_error", "Log Error", HookEventType.ERROR, _log_error),
        ("builtin_log_rate_limit", "Log Rate Limit", HookEventType.RATE_LIMIT, _log_rate_limit),
    ]
    return [
        HookDefinition(
            id=hook_id,
            name=name,
            description=f"{name} for debugging and monitoring",
            event_type=event_type,
            handler=handler,
            priority=HookPriority.LOW,
        )
        for hook_id, name, event_type, handler in specs
    ]
