"""
Error Taxonomy
==============

Every exception raised by llm-router derives from LlmRouterError.

Expert call failures (raised by the Expert Call collaborator):
- RateLimitError      retryable via fallback, never by re-calling the same expert
- ExpertTimeoutError  retryable via fallback
- ServerError         retryable via fallback (5xx)
- OverloadedError     retryable via fallback
- AuthError           fatal, fallback is skipped
- BadRequestError     fatal, fallback is skipped

Router / orchestration failures:
- FallbackExhaustedError  every expert in the chain failed retryably
- HookBlockedError        a pre-call hook blocked the call
- PhaseExecutionError     a workflow phase failed (PhaseTimeoutError on timeout)
- PersistenceError        disk I/O failure (logged and swallowed by the stores)
"""

from typing import List, Optional


class LlmRouterError(Exception):
    """Base class for all llm-router errors."""


# =============================================================================
# Expert call errors
# =============================================================================

class ExpertCallError(LlmRouterError):
    """An expert call failed."""

    def __init__(self, message: str, expert_id: Optional[str] = None, model: Optional[str] = None):
        super().__init__(message)
        self.expert_id = expert_id
        self.model = model


class RateLimitError(ExpertCallError):
    """The provider rate limited the call."""

    def __init__(
        self,
        expert_id: str,
        model: str,
        retry_after_seconds: Optional[float] = None,
        message: Optional[str] = None,
    ):
        if message is None:
            retry = f"{round(retry_after_seconds)}s" if retry_after_seconds is not None else "unknown"
            message = f"Rate limit exceeded for {expert_id} ({model}). Retry after: {retry}"
        super().__init__(message, expert_id, model)
        self.retry_after_seconds = retry_after_seconds


class ExpertTimeoutError(ExpertCallError):
    """The call did not finish in time."""

    def __init__(self, expert_id: str, model: str, timeout_seconds: float):
        super().__init__(
            f"Request timed out for {expert_id} ({model}) after {round(timeout_seconds)}s. "
            f"The model may be overloaded or the request was too complex.",
            expert_id,
            model,
        )
        self.timeout_seconds = timeout_seconds


class ServerError(ExpertCallError):
    """The provider returned a 5xx response."""

    def __init__(self, message: str, status_code: int = 500, expert_id: Optional[str] = None,
                 model: Optional[str] = None):
        super().__init__(message, expert_id, model)
        self.status_code = status_code


class OverloadedError(ExpertCallError):
    """The provider reported it is over capacity."""


class AuthError(ExpertCallError):
    """Missing or rejected credentials (401/403)."""


class BadRequestError(ExpertCallError):
    """The request itself was malformed (400)."""


class UnknownExpertError(LlmRouterError):
    """The expert id is not in the registry."""

    def __init__(self, expert_id: str):
        super().__init__(f"Unknown expert: {expert_id}")
        self.expert_id = expert_id


# =============================================================================
# Router errors
# =============================================================================

class HookBlockedError(LlmRouterError):
    """A hook returned a 'block' decision for the call."""

    def __init__(self, reason: Optional[str] = None):
        super().__init__(f"Expert call blocked by hook: {reason or 'No reason provided'}")
        self.reason = reason


class FallbackExhaustedError(LlmRouterError):
    """Every expert in the fallback chain failed with a retryable error."""

    def __init__(self, expert_id: str, attempts: List["object"]):
        summary = " -> ".join(attempt.describe() for attempt in attempts)
        super().__init__(
            f"All experts exhausted for {expert_id}. Chain: {summary}. Please try again later."
        )
        self.expert_id = expert_id
        self.attempts = attempts


# =============================================================================
# Hook / workflow / persistence errors
# =============================================================================

class HookExecutionError(LlmRouterError):
    """A hook handler raised while executing."""

    def __init__(self, hook_id: str, cause: BaseException):
        super().__init__(f"Hook {hook_id} failed: {cause}")
        self.hook_id = hook_id
        self.cause = cause


class BoulderAlreadyActiveError(LlmRouterError):
    """An active or crashed boulder already exists for the directory."""

    def __init__(self, boulder_id: Optional[str]):
        super().__init__(
            f"Active boulder already exists (ID: {boulder_id}). "
            f"Complete or cancel it before starting a new one."
        )
        self.boulder_id = boulder_id


class PhaseExecutionError(LlmRouterError):
    """A workflow phase could not produce a result."""

    def __init__(self, phase_id: str, message: str):
        super().__init__(message)
        self.phase_id = phase_id


class PhaseTimeoutError(PhaseExecutionError):
    """A workflow phase hit its hard timeout without a result."""

    def __init__(self, phase_id: str, timeout_seconds: float):
        super().__init__(phase_id, f"Phase {phase_id} timed out after {timeout_seconds}s")
        self.timeout_seconds = timeout_seconds


class PersistenceError(LlmRouterError):
    """Reading or writing persisted state failed."""

    def __init__(self, path: str, cause: BaseException):
        super().__init__(f"Persistence failure at {path}: {cause}")
        self.path = path
        self.cause = cause
