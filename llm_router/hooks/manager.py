"""
Hook Manager
============

Central manager for registering, executing, and managing hooks.

Hooks for an event run strictly in priority order (critical -> high ->
normal -> low, ties broken by registration order). Their results are folded
into one aggregate: a block short-circuits, modifications are applied to the
event seen by later hooks, injected messages accumulate.

Usage:
    from llm_router.hooks import HookManager, HookDefinition, HookEventType

    hooks = HookManager()
    hooks.register_hook(HookDefinition(
        id="audit_expert_calls",
        event_type=HookEventType.EXPERT_CALL,
        handler=my_handler,
    ))
    result = await hooks.dispatch(ExpertCallEvent(expert_id="reviewer", ...))
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import os
import re
import sys
import time
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set, Tuple

from llm_router.errors import HookExecutionError
from llm_router.hooks.types import (
    AnyHookDefinition,
    ExternalHookDefinition,
    HookContext,
    HookDecision,
    HookDefinition,
    HookEvent,
    HookEventType,
    HookPriority,
    HookResult,
    HookStats,
)

logger = logging.getLogger(__name__)


def match_pattern(pattern: str, value: str) -> bool:
    """
    Match a hook pattern against a name.

    Supports exact, wildcard (*) and pipe-separated (a|b|c) patterns,
    all case-insensitive.
    """
    if "|" in pattern:
        return any(match_pattern(p.strip(), value) for p in pattern.split("|"))

    if "*" in pattern:
        regex = "^" + ".*".join(re.escape(part) for part in pattern.split("*")) + "$"
        return re.match(regex, value, re.IGNORECASE) is not None

    return pattern.lower() == value.lower()


class HookManager:
    """
    Registers hooks and dispatches events to them.

    One instance is owned by the Runtime and passed to every component that
    dispatches events.
    """

    def __init__(
        self,
        enabled: bool = True,
        disabled_hooks: Optional[List[str]] = None,
        cwd: Optional[str] = None,
    ):
        self.enabled = enabled
        self.disabled_hooks: Set[str] = set(disabled_hooks or [])
        self.cwd = cwd or os.getcwd()

        # Single ordered registry; insertion order breaks priority ties
        self._hooks: Dict[str, AnyHookDefinition] = {}
        self._stats: Dict[str, HookStats] = {}
        self._start_time = time.monotonic()

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    def register_hook(self, hook: HookDefinition) -> None:
        """Register an in-process hook, overwriting any hook with the same id."""
        self._register(hook)
        logger.debug("Hook registered: %s (%s, %s)", hook.id, hook.event_type.value, hook.priority.value)

    def register_external_hook(self, hook: ExternalHookDefinition) -> None:
        """Register a shell-command hook, overwriting any hook with the same id."""
        self._register(hook)
        logger.debug("External hook registered: %s (%s): %s", hook.id, hook.event_type.value, hook.command)

    def _register(self, hook: AnyHookDefinition) -> None:
        if hook.id in self._hooks:
            logger.warning("Hook %s already registered, overwriting", hook.id)
            # Overwrite keeps the original registration slot
        self._hooks[hook.id] = hook
        self._stats.setdefault(hook.id, HookStats())

    def unregister_hook(self, hook_id: str) -> bool:
        """Remove a hook. Returns False if it was not registered."""
        return self._hooks.pop(hook_id, None) is not None

    def set_hook_enabled(self, hook_id: str, enabled: bool) -> bool:
        hook = self._hooks.get(hook_id)
        if hook is None:
            return False
        hook.enabled = enabled
        return True

    def get_hook(self, hook_id: str) -> Optional[AnyHookDefinition]:
        return self._hooks.get(hook_id)

    def get_registered_hooks(self) -> Dict[str, List[AnyHookDefinition]]:
        """Registered hooks split into internal and external lists."""
        return {
            "internal": [h for h in self._hooks.values() if isinstance(h, HookDefinition)],
            "external": [h for h in self._hooks.values() if isinstance(h, ExternalHookDefinition)],
        }

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    async def dispatch(self, event: HookEvent) -> HookResult:
        """
        Execute all matching hooks for an event and return the aggregate result.

        Returns the default `continue` result when the hook system is
        disabled or nothing matches.
        """
        if not self.enabled:
            return HookResult()

        context = HookContext(event=event, cwd=self.cwd)
        hooks = self._matching_hooks(context)
        if not hooks:
            return HookResult()

        logger.debug(
            "Executing %d hook(s) for %s [%s]",
            len(hooks), context.event_type.value, context.hook_execution_id,
        )

        aggregate = HookResult()
        for hook in hooks:
            start = time.monotonic()
            try:
                result = await self._execute_hook(hook, context)
            except HookExecutionError as e:
                self._update_stats(hook.id, success=False, duration_ms=(time.monotonic() - start) * 1000)
                logger.error("%s", e)
                if hook.priority == HookPriority.CRITICAL:
                    aggregate.decision = HookDecision.BLOCK
                    aggregate.reason = f"Critical hook failed: {e.cause}"
                    break
                continue

            self._update_stats(
                hook.id,
                success=True,
                duration_ms=(time.monotonic() - start) * 1000,
                blocked=result.blocked,
            )
            aggregate = aggregate.merge(result)

            if result.blocked:
                logger.info("Hook %s blocked execution: %s", hook.id, result.reason)
                break

            if result.decision == HookDecision.MODIFY and result.modified_data:
                context.event = context.event.with_modifications(result.modified_data)

        return aggregate

    def _matching_hooks(self, context: HookContext) -> List[AnyHookDefinition]:
        matched: List[Tuple[int, int, AnyHookDefinition]] = []
        for order, hook in enumerate(self._hooks.values()):
            if hook.event_type != context.event_type:
                continue
            if not hook.enabled or hook.id in self.disabled_hooks:
                continue
            if not self._matches_pattern(hook, context.event):
                continue
            matched.append((-hook.priority.weight, order, hook))

        matched.sort(key=lambda item: (item[0], item[1]))
        return [hook for _, _, hook in matched]

    @staticmethod
    def _matches_pattern(hook: AnyHookDefinition, event: HookEvent) -> bool:
        field_name = event.pattern_field
        for attr, pattern in (("tool_name", hook.tool_pattern), ("expert_id", hook.expert_pattern)):
            if not pattern:
                continue
            value = event.subject_name() if field_name == attr else None
            if not value or not match_pattern(pattern, value):
                return False
        return True

    async def _execute_hook(self, hook: AnyHookDefinition, context: HookContext) -> HookResult:
        if isinstance(hook, ExternalHookDefinition):
            return await self._execute_external_hook(hook, context)

        try:
            result = hook.handler(context)
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            raise HookExecutionError(hook.id, e) from e
        return result if result is not None else HookResult()

    async def _execute_external_hook(self, hook: ExternalHookDefinition, context: HookContext) -> HookResult:
        """
        Run a shell-command hook.

        The context is sent as camelCase JSON on stdin and in HOOK_CONTEXT.
        Exit code 2 blocks, exit code 1 continues with stderr as the reason,
        otherwise JSON stdout is read as a HookResult. Never raises.
        """
        payload = json.dumps(context.to_dict(), default=str)
        if sys.platform == "win32":
            argv = ["cmd.exe", "/c", hook.command]
        else:
            argv = ["bash", "-c", hook.command]

        env = dict(os.environ)
        env["HOOK_CONTEXT"] = payload

        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                cwd=hook.cwd or self.cwd,
                env=env,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.error("External hook %s error: %s", hook.id, e)
            return HookResult(reason=f"Hook error: {e}")

        try:
            stdout_b, stderr_b = await asyncio.wait_for(
                proc.communicate(payload.encode("utf-8")),
                timeout=hook.timeout_seconds,
            )
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            return HookResult(reason=f"Hook {hook.id} timed out after {hook.timeout_seconds}s")

        stdout = stdout_b.decode("utf-8", errors="replace")
        stderr = stderr_b.decode("utf-8", errors="replace")

        if proc.returncode == 2:
            return HookResult(decision=HookDecision.BLOCK, reason=stderr.strip() or "Blocked by external hook")

        if proc.returncode == 1:
            return HookResult(reason=stderr.strip() or "External hook requested continue")

        try:
            data = json.loads(stdout.strip())
        except json.JSONDecodeError:
            data = None
        if not isinstance(data, dict):
            return HookResult(metadata={"stdout": stdout, "stderr": stderr})
        return HookResult.from_dict(data)

    # -------------------------------------------------------------------------
    # Statistics
    # -------------------------------------------------------------------------

    def _update_stats(self, hook_id: str, success: bool, duration_ms: float, blocked: bool = False) -> None:
        stats = self._stats.get(hook_id)
        if stats is None:
            return

        stats.total_executions += 1
        if success:
            stats.successful_executions += 1
        else:
            stats.failed_executions += 1
        if blocked:
            stats.blocked_executions += 1

        total = stats.average_execution_time_ms * (stats.total_executions - 1) + duration_ms
        stats.average_execution_time_ms = total / stats.total_executions
        stats.last_execution_at = datetime.now(timezone.utc).isoformat()

    def get_stats(self) -> Dict[str, HookStats]:
        """Copy of the per-hook statistics."""
        return {hook_id: HookStats(**asdict(stats)) for hook_id, stats in self._stats.items()}

    def get_system_stats(self) -> Dict[str, int]:
        hooks = list(self._hooks.values())
        external = [h for h in hooks if isinstance(h, ExternalHookDefinition)]
        return {
            "total_hooks": len(hooks),
            "internal_hooks": len(hooks) - len(external),
            "external_hooks": len(external),
            "enabled_hooks": sum(1 for h in hooks if h.enabled),
            "total_executions": sum(s.total_executions for s in self._stats.values()),
            "uptime_ms": int((time.monotonic() - self._start_time) * 1000),
        }

    def set_enabled(self, enabled: bool) -> None:
        """Enable or disable the hook system globally."""
        self.enabled = enabled
        logger.info("Hook system enabled: %s", enabled)

    def hooks_for_event(self, event_type: HookEventType) -> List[AnyHookDefinition]:
        return [h for h in self._hooks.values() if h.event_type == event_type]
