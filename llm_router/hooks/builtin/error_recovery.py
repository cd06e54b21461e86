"""
Error Recovery Hooks
====================

Built-in hooks that count recent errors per source and suggest recovery
steps when the same source keeps failing.

Sources are free-form strings: `expert:<id>` and `workflow` from onError,
`tool:<name>` for failed tool results. State lives on an ErrorTracker
instance; none of these hooks block.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Dict, List, Tuple

from llm_router.hooks.types import (
    ErrorEvent,
    ExpertResultEvent,
    HookContext,
    HookDefinition,
    HookEventType,
    HookPriority,
    HookResult,
    ToolResultEvent,
)

logger = logging.getLogger(__name__)

ERROR_WINDOW_SECONDS = 5 * 60
MAX_ERRORS_PER_SOURCE = 10
REPEATED_ERROR_THRESHOLD = 3
REPEATED_TOOL_ERROR_THRESHOLD = 2
SHORT_RESPONSE_LENGTH = 50


class ErrorTracker:
    """Recent errors by source inside a sliding five-minute window."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self.recent: Dict[str, List[Tuple[float, str]]] = {}
        self.total_errors = 0

    def record(self, source: str, message: str) -> int:
        """Record one error and return the recent count for `source`."""
        now = self._clock()
        self.total_errors += 1
        errors = self.recent.setdefault(source, [])
        errors.append((now, message))
        del errors[:-MAX_ERRORS_PER_SOURCE]
        self._expire(now)
        return self.recent_count(source)

    def recent_count(self, source: str) -> int:
        cutoff = self._clock() - ERROR_WINDOW_SECONDS
        return sum(1 for timestamp, _ in self.recent.get(source, []) if timestamp > cutoff)

    def _expire(self, now: float) -> None:
        cutoff = now - ERROR_WINDOW_SECONDS
        for source in list(self.recent):
            kept = [entry for entry in self.recent[source] if entry[0] > cutoff]
            if kept:
                self.recent[source] = kept
            else:
                del self.recent[source]

    def reset(self) -> None:
        self.recent.clear()
        self.total_errors = 0

    def snapshot(self) -> Dict[str, object]:
        by_source = {source: self.recent_count(source) for source in self.recent}
        return {
            "total_errors": self.total_errors,
            "recent_errors_by_source": {source: count for source, count in by_source.items() if count},
        }


def suggest_recovery(message: str, source: str) -> List[str]:
    """Recovery steps keyed off words in the error message."""
    text = message.lower()
    suggestions: List[str] = []

    if any(word in text for word in ("network", "fetch", "connection", "timeout")):
        suggestions += [
            "Check network connectivity",
            "Check that the model endpoint is reachable",
            "Try again after a brief delay",
        ]
    if any(word in text for word in ("rate", "429", "too many")):
        suggestions += ["Wait before retrying", "Use a different expert or model"]
    if any(word in text for word in ("auth", "401", "403", "unauthorized")):
        suggestions.append("Check the provider credentials")
    if any(word in text for word in ("context", "token", "too long", "max length")):
        suggestions += ["Reduce the prompt length", "Split the task into smaller parts"]
    if source.startswith("tool:"):
        suggestions += ["Verify the tool parameters", "Try a simpler version of the request"]

    if not suggestions:
        suggestions = ["Try again with a simpler request", "Check the logs for earlier failures"]
    return suggestions


def _bullets(items: List[str]) -> str:
    return "\n".join(f"- {item}" for item in items)


def error_recovery_hooks(tracker: ErrorTracker) -> List[HookDefinition]:
    """Build the error-recovery hooks bound to `tracker`."""

    def track_error(context: HookContext) -> HookResult:
        event: ErrorEvent = context.event
        count = tracker.record(event.source, event.error_message)
        suggestions = suggest_recovery(event.error_message, event.source)
        logger.info(
            "[Hook] Error tracked from %s (code=%s, recent=%d, recoverable=%s)",
            event.source, event.error_code, count, event.recoverable,
        )

        metadata = {"recent_error_count": count, "suggestions": suggestions}
        if count >= REPEATED_ERROR_THRESHOLD:
            return HookResult(
                inject_message=(
                    f"Multiple errors from {event.source} ({count} in the last 5 minutes).\n\n"
                    f"Suggestions:\n{_bullets(suggestions)}"
                ),
                metadata=metadata,
            )
        return HookResult(metadata=metadata)

    def tool_error_recovery(context: HookContext) -> HookResult:
        event: ToolResultEvent = context.event
        if event.success:
            return HookResult()

        source = f"tool:{event.tool_name}"
        message = event.error or "Unknown error"
        count = tracker.record(source, message)
        if count < REPEATED_TOOL_ERROR_THRESHOLD:
            return HookResult()

        logger.warning("[Hook] Tool %s failed %d times recently: %s", event.tool_name, count, message)
        return HookResult(
            inject_message=(
                f'Tool "{event.tool_name}" has failed {count} times recently.\n\n'
                f"Error: {message}\n\n"
                f"Recovery suggestions:\n{_bullets(suggest_recovery(message, source))}"
            ),
        )

    def expert_result_recovery(context: HookContext) -> HookResult:
        event: ExpertResultEvent = context.event
        if event.response_length < SHORT_RESPONSE_LENGTH and not event.from_cache:
            logger.debug("[Hook] Short response from %s (%d chars)", event.expert_id, event.response_length)
            return HookResult(metadata={"warning": "short_response", "response_length": event.response_length})

        if event.used_fallback:
            original = event.original_expert or "unknown"
            return HookResult(
                inject_message=f"Response from fallback expert {event.expert_id} (original: {original}).",
                metadata={"fallback_used": True, "original_expert": original},
            )
        return HookResult()

    return [
        HookDefinition(
            id="builtin_track_error",
            name="Track Error",
            description="Counts recent errors per source and suggests recovery steps",
            event_type=HookEventType.ERROR,
            handler=track_error,
            priority=HookPriority.HIGH,
        ),
        HookDefinition(
            id="builtin_tool_error_recovery",
            name="Tool Error Recovery",
            description="Warns when a tool keeps failing",
            event_type=HookEventType.TOOL_RESULT,
            handler=tool_error_recovery,
            priority=HookPriority.NORMAL,
        ),
        HookDefinition(
            id="builtin_expert_result_recovery",
            name="Expert Result Recovery",
            description="Notes short responses and answers served by a fallback expert",
            event_type=HookEventType.EXPERT_RESULT,
            handler=expert_result_recovery,
            priority=HookPriority.NORMAL,
        ),
    ]
