"""
Built-in Hooks
==============

Logging, rate-limit tracking, error recovery and event journaling hooks.
"""

from typing import Optional

from llm_router.hooks.builtin.error_recovery import ErrorTracker, error_recovery_hooks
from llm_router.hooks.builtin.journal import journal_hooks
from llm_router.hooks.builtin.logging_hooks import logging_hooks
from llm_router.hooks.builtin.rate_limit import RateLimitTracker, rate_limit_hooks
from llm_router.hooks.manager import HookManager
from llm_router.observability import EventJournal


def register_builtin_hooks(
    manager: HookManager,
    tracker: RateLimitTracker,
    journal: Optional[EventJournal] = None,
    error_tracker: Optional[ErrorTracker] = None,
) -> int:
    """Register every built-in hook on `manager`. Returns the count."""
    hooks = (
        logging_hooks()
        + rate_limit_hooks(tracker)
        + error_recovery_hooks(error_tracker or ErrorTracker())
    )
    if journal is not None:
        hooks += journal_hooks(journal)
    for hook in hooks:
        manager.register_hook(hook)
    return len(hooks)


__all__ = [
    "ErrorTracker",
    "RateLimitTracker",
    "error_recovery_hooks",
    "journal_hooks",
    "logging_hooks",
    "rate_limit_hooks",
    "register_builtin_hooks",
]
