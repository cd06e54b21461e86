"""
Rate Limit Hooks
================

Built-in hooks that track provider/model cool-downs after rate limits.

State lives on a RateLimitTracker instance; the hooks are closures over it.
None of these hooks block: the router's fallback walk handles rate limits,
the hooks only annotate calls with notices.
"""

from __future__ import annotations

import logging
import math
import time
from typing import Callable, Dict, List, Optional, Tuple

from llm_router.experts import provider_for_model
from llm_router.hooks.types import (
    ExpertCallEvent,
    HookContext,
    HookDefinition,
    HookEventType,
    HookPriority,
    HookResult,
    RateLimitEvent,
)

logger = logging.getLogger(__name__)

DEFAULT_COOLDOWN_SECONDS = 60.0
CONSECUTIVE_WINDOW_SECONDS = 60.0
CONSECUTIVE_WARNING_THRESHOLD = 3


class RateLimitTracker:
    """Cool-down deadlines per provider and per model."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self.provider_limits: Dict[str, float] = {}
        self.model_limits: Dict[str, float] = {}
        self.consecutive_rate_limits = 0
        self.last_rate_limit_at: Optional[float] = None

    def record(self, provider: str, model: str, retry_after_seconds: Optional[float] = None) -> None:
        now = self._clock()
        deadline = now + (retry_after_seconds or DEFAULT_COOLDOWN_SECONDS)
        self.provider_limits[provider] = deadline
        self.model_limits[model] = deadline

        if self.last_rate_limit_at is not None and now - self.last_rate_limit_at < CONSECUTIVE_WINDOW_SECONDS:
            self.consecutive_rate_limits += 1
        else:
            self.consecutive_rate_limits = 1
        self.last_rate_limit_at = now

    def check(self, provider: str, model: str) -> Tuple[bool, Optional[float]]:
        """Return (limited, seconds remaining)."""
        now = self._clock()
        for deadline in (self.provider_limits.get(provider), self.model_limits.get(model)):
            if deadline is not None and deadline > now:
                return True, deadline - now
        return False, None

    def clear(self, provider: str, model: str) -> None:
        self.provider_limits.pop(provider, None)
        self.model_limits.pop(model, None)

    def reset(self) -> None:
        self.provider_limits.clear()
        self.model_limits.clear()
        self.consecutive_rate_limits = 0
        self.last_rate_limit_at = None

    def snapshot(self) -> Dict[str, object]:
        return {
            "provider_limits": dict(self.provider_limits),
            "model_limits": dict(self.model_limits),
            "consecutive_rate_limits": self.consecutive_rate_limits,
        }


def rate_limit_hooks(tracker: RateLimitTracker) -> List[HookDefinition]:
    """Build the rate-limit hooks bound to `tracker`."""

    def track(context: HookContext) -> HookResult:
        event: RateLimitEvent = context.event
        tracker.record(event.provider, event.model, event.retry_after_seconds)
        logger.info(
            "[Hook] Rate limit tracked for %s/%s (consecutive: %d)",
            event.provider, event.model, tracker.consecutive_rate_limits,
        )

        if tracker.consecutive_rate_limits >= CONSECUTIVE_WARNING_THRESHOLD:
            return HookResult(
                inject_message=(
                    f"Multiple rate limits detected ({tracker.consecutive_rate_limits} consecutive). "
                    f"Consider slowing down requests."
                ),
                metadata={
                    "warning_level": "high",
                    "consecutive_rate_limits": tracker.consecutive_rate_limits,
                },
            )
        return HookResult()

    def precheck(context: HookContext) -> HookResult:
        event: ExpertCallEvent = context.event
        provider = provider_for_model(event.model)
        limited, remaining = tracker.check(provider, event.model)
        if not limited:
            return HookResult()

        retry_after = math.ceil(remaining or DEFAULT_COOLDOWN_SECONDS)
        logger.warning(
            "[Hook] %s/%s is cooling down (%ss left) for expert %s",
            provider, event.model, retry_after, event.expert_id,
        )
        return HookResult(
            inject_message=(
                f"{provider}/{event.model} is currently rate limited. "
                f"Retry after {retry_after}s or fallback will be used."
            ),
            metadata={
                "rate_limited": True,
                "provider": provider,
                "model": event.model,
                "retry_after_seconds": retry_after,
            },
        )

    def suggest_fallback(context: HookContext) -> HookResult:
        event: RateLimitEvent = context.event
        if event.fallback_available:
            return HookResult(metadata={"suggestion_given": True, "use_fallback": True})

        wait = event.retry_after_seconds or DEFAULT_COOLDOWN_SECONDS
        return HookResult(
            inject_message=(
                f"Rate limited on {event.model} with no fallback available. "
                f"Please wait {wait:g} seconds."
            ),
        )

    return [
        HookDefinition(
            id="builtin_track_rate_limit",
            name="Track Rate Limit",
            description="Tracks rate limit events for routing",
            event_type=HookEventType.RATE_LIMIT,
            handler=track,
            priority=HookPriority.HIGH,
        ),
        HookDefinition(
            id="builtin_precheck_rate_limit",
            name="Pre-check Rate Limit",
            description="Notes when the target provider/model is cooling down",
            event_type=HookEventType.EXPERT_CALL,
            handler=precheck,
            priority=HookPriority.HIGH,
        ),
        HookDefinition(
            id="builtin_suggest_fallback",
            name="Suggest Fallback",
            description="Suggests waiting when no fallback expert exists",
            event_type=HookEventType.RATE_LIMIT,
            handler=suggest_fallback,
            priority=HookPriority.NORMAL,
        ),
    ]
