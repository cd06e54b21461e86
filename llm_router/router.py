"""
Fallback Router
===============

Routes a call to an expert and, when the call fails with a retryable error,
walks the expert's fallback chain in order.

Failures are classified once, here, and the classification (not the raw
error) decides between falling back and failing:

- retryable: rate_limit, timeout, server_error, overloaded, unknown
- fatal:     auth_error, bad_request (fallback is skipped)

Hooks run before and after every attempt:
- onExpertCall before each attempt (a block on the primary raises
  HookBlockedError, a block on a fallback skips that expert)
- onExpertResult after a success
- onRateLimit once when the primary fails retryably
- onError on fatal failure and on exhaustion
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Iterable, List, Optional

from llm_router.cache import ResponseCache
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
from llm_router.experts import Expert, ExpertClient, ExpertRegistry
from llm_router.hooks.manager import HookManager
from llm_router.hooks.types import ErrorEvent, ExpertCallEvent, ExpertResultEvent, RateLimitEvent

logger = logging.getLogger(__name__)

RETRYABLE_REASONS = frozenset({"rate_limit", "timeout", "server_error", "overloaded", "unknown"})
FATAL_REASONS = frozenset({"auth_error", "bad_request"})


@dataclass(frozen=True)
class ErrorClassification:
    reason: str
    retryable: bool


def classify_error(error: BaseException) -> ErrorClassification:
    """
    Decide whether a failed call should fall back.

    Typed errors classify structurally. Anything else is matched on its
    message for collaborators that only raise generic exceptions.
    """
    if isinstance(error, RateLimitError):
        return ErrorClassification("rate_limit", True)
    if isinstance(error, (ExpertTimeoutError, asyncio.TimeoutError)):
        return ErrorClassification("timeout", True)
    if isinstance(error, ServerError):
        return ErrorClassification("server_error", True)
    if isinstance(error, OverloadedError):
        return ErrorClassification("overloaded", True)
    if isinstance(error, AuthError):
        return ErrorClassification("auth_error", False)
    if isinstance(error, BadRequestError):
        return ErrorClassification("bad_request", False)

    message = str(error).lower()

    if "rate limit" in message or "429" in message:
        return ErrorClassification("rate_limit", True)
    if any(s in message for s in ("timeout", "timed out", "aborted")):
        return ErrorClassification("timeout", True)
    if any(s in message for s in ("500", "502", "503", "504", "server error", "internal error")):
        return ErrorClassification("server_error", True)
    if any(s in message for s in ("overloaded", "capacity", "unavailable")):
        return ErrorClassification("overloaded", True)
    if any(s in message for s in ("401", "403", "unauthorized", "forbidden", "authentication", "api key")):
        return ErrorClassification("auth_error", False)
    if any(s in message for s in ("400", "bad request", "invalid")):
        return ErrorClassification("bad_request", False)

    return ErrorClassification("unknown", True)


@dataclass
class FallbackAttempt:
    """One failed (or skipped) expert in a routed call."""
    expert_id: str
    reason: str
    message: str
    timestamp: float

    def describe(self) -> str:
        return f"{self.expert_id} ({self.reason}: {self.message[:50]})"


@dataclass
class ExpertResponse:
    """Result of a routed call."""
    response: str
    actual_expert_id: str
    fell_back: bool = False
    cached: bool = False
    latency_ms: int = 0


@dataclass
class ParallelCall:
    expert_id: str
    prompt: str
    context: Optional[str] = None


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def _join_context(context: Optional[str], injected: Optional[str]) -> Optional[str]:
    if not injected:
        return context
    return f"{context}\n\n{injected}" if context else injected


class FallbackRouter:
    """Routes expert calls with hook dispatch, caching and fallback."""

    def __init__(
        self,
        registry: ExpertRegistry,
        client: ExpertClient,
        hooks: HookManager,
        cache: Optional[ResponseCache] = None,
    ):
        self.registry = registry
        self.client = client
        self.hooks = hooks
        self.cache = cache

    async def call_with_fallback(
        self,
        expert_id: str,
        prompt: str,
        context: Optional[str] = None,
        *,
        skip_cache: bool = False,
        image_path: Optional[str] = None,
    ) -> ExpertResponse:
        """
        Call `expert_id`, falling back along its chain on retryable failures.

        Raises:
            UnknownExpertError: expert_id is not registered
            HookBlockedError: an onExpertCall hook blocked the primary call
            FallbackExhaustedError: every expert failed retryably
            ExpertCallError (or the raw error): a fatal failure
        """
        expert = self.registry.get(expert_id)
        if expert is None:
            raise UnknownExpertError(expert_id)

        start = time.monotonic()

        pre = await self.hooks.dispatch(ExpertCallEvent(
            expert_id=expert_id,
            model=expert.model,
            prompt=prompt,
            context=context,
            skip_cache=skip_cache,
        ))
        if pre.blocked:
            raise HookBlockedError(pre.reason)

        final_context = _join_context(context, pre.inject_message)
        use_cache = self.cache is not None and not skip_cache and image_path is None

        if use_cache:
            cached = self.cache.get(expert_id, prompt, context)
            if cached is not None:
                latency_ms = _elapsed_ms(start)
                await self._dispatch_result(expert, cached, latency_ms, from_cache=True)
                return ExpertResponse(cached, expert_id, cached=True, latency_ms=latency_ms)

        try:
            result = await self.client.call(expert_id, expert.model, prompt, final_context, image_path)
        except Exception as error:
            primary_error = error
        else:
            latency_ms = _elapsed_ms(start)
            await self._dispatch_result(expert, result.response, latency_ms, from_cache=result.cached)
            if use_cache:
                self.cache.set(expert_id, prompt, context, result.response)
            return ExpertResponse(result.response, expert_id, cached=result.cached, latency_ms=latency_ms)

        classification = classify_error(primary_error)
        if not classification.retryable:
            await self.hooks.dispatch(ErrorEvent(
                error_message=str(primary_error),
                source=f"expert:{expert_id}",
                error_code=classification.reason,
                recoverable=False,
            ))
            raise primary_error

        fallbacks = self._fallback_candidates(expert_id)
        await self.hooks.dispatch(RateLimitEvent(
            provider=expert.provider,
            model=expert.model,
            expert_id=expert_id,
            retry_after_seconds=getattr(primary_error, "retry_after_seconds", None),
            fallback_available=bool(fallbacks),
            reason=classification.reason,
        ))
        logger.warning("Primary expert %s failed (%s), trying fallbacks", expert_id, classification.reason)

        attempts = [FallbackAttempt(expert_id, classification.reason, str(primary_error), time.time())]

        for i, fallback in enumerate(fallbacks, 1):
            logger.info(
                "Attempting fallback %d/%d: %s -> %s (%s)",
                i, len(fallbacks), expert_id, fallback.id, fallback.model,
            )
            fb_pre = await self.hooks.dispatch(ExpertCallEvent(
                expert_id=fallback.id,
                model=fallback.model,
                prompt=prompt,
                context=final_context,
                skip_cache=skip_cache,
                is_fallback=True,
                original_expert=expert_id,
            ))
            if fb_pre.blocked:
                logger.warning("Fallback %s blocked by hook: %s", fallback.id, fb_pre.reason)
                attempts.append(FallbackAttempt(fallback.id, "blocked", fb_pre.reason or "", time.time()))
                continue

            fb_start = time.monotonic()
            try:
                result = await self.client.call(fallback.id, fallback.model, prompt, final_context, image_path)
            except Exception as fb_error:
                fb_class = classify_error(fb_error)
                attempts.append(FallbackAttempt(fallback.id, fb_class.reason, str(fb_error), time.time()))
                logger.warning(
                    "Fallback attempt %d/%d (%s) failed: %s: %s",
                    i, len(fallbacks), fallback.id, fb_class.reason, fb_error,
                )
                if not fb_class.retryable:
                    logger.error("Fatal error during fallback %s, stopping fallback chain", fallback.id)
                    await self.hooks.dispatch(ErrorEvent(
                        error_message=str(fb_error),
                        source=f"expert:{fallback.id}",
                        error_code=fb_class.reason,
                        recoverable=False,
                    ))
                    raise
                continue

            fb_latency = _elapsed_ms(fb_start)
            logger.info("Fallback %s succeeded in %dms", fallback.id, fb_latency)
            await self._dispatch_result(
                fallback, result.response, fb_latency,
                from_cache=result.cached, original_expert=expert_id,
            )
            return ExpertResponse(
                result.response,
                fallback.id,
                fell_back=True,
                cached=result.cached,
                latency_ms=_elapsed_ms(start),
            )

        exhausted = FallbackExhaustedError(expert_id, attempts)
        logger.error("All fallback attempts exhausted for %s (%d attempts)", expert_id, len(attempts))
        await self.hooks.dispatch(ErrorEvent(
            error_message=str(exhausted),
            source=f"expert:{expert_id}",
            error_code="fallback_exhausted",
            recoverable=False,
        ))
        raise exhausted

    def _fallback_candidates(self, expert_id: str) -> List[Expert]:
        """Fallback experts in chain order, skipping unknown ids, duplicates and the primary."""
        seen = {expert_id}
        candidates = []
        for fallback_id in self.registry.fallbacks_for(expert_id):
            if fallback_id in seen:
                continue
            seen.add(fallback_id)
            fallback = self.registry.get(fallback_id)
            if fallback is None:
                logger.error("Fallback expert %s not found in registry", fallback_id)
                continue
            candidates.append(fallback)
        return candidates

    async def _dispatch_result(
        self,
        expert: Expert,
        response: str,
        duration_ms: int,
        from_cache: bool = False,
        original_expert: Optional[str] = None,
    ) -> None:
        await self.hooks.dispatch(ExpertResultEvent(
            expert_id=expert.id,
            model=expert.model,
            response=response,
            response_length=len(response),
            duration_ms=duration_ms,
            from_cache=from_cache,
            used_fallback=original_expert is not None,
            original_expert=original_expert,
        ))

    async def call_experts_parallel(self, calls: Iterable[ParallelCall]) -> List[ExpertResponse]:
        """Route several calls concurrently; the first failure propagates."""
        return list(await asyncio.gather(*(
            self.call_with_fallback(call.expert_id, call.prompt, call.context) for call in calls
        )))
