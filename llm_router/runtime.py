"""
Runtime
=======

The process entry object. Builds one instance of every component and
passes them to each other by reference:

    config -> HookManager -> FallbackRouter -> WorkflowOrchestrator
                          -> BackgroundTaskManager
           -> EventJournal, BoulderStateManager, ResponseCache

Usage:
    runtime = Runtime(RouterConfig.load(project_dir), client)
    await runtime.start()
    try:
        result = await runtime.orchestrator.execute("Add a logout button")
    finally:
        await runtime.stop()
"""

import logging
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional

from llm_router import __version__
from llm_router.background import BackgroundTaskManager
from llm_router.boulder.manager import BoulderStateManager
from llm_router.cache import ResponseCache
from llm_router.config import RouterConfig
from llm_router.errors import HookBlockedError
from llm_router.experts import ExpertClient, ExpertRegistry
from llm_router.hooks.builtin import ErrorTracker, RateLimitTracker, register_builtin_hooks
from llm_router.hooks.config_loader import initialize_hook_system
from llm_router.hooks.manager import HookManager
from llm_router.hooks.types import (
    ServerStartEvent,
    ServerStopEvent,
    ToolCallEvent,
    ToolResultEvent,
)
from llm_router.observability import EventJournal
from llm_router.router import FallbackRouter
from llm_router.workflow.orchestrator import WorkflowOrchestrator
from llm_router.workflow.phases import DefaultPhases
from llm_router.workflow.types import WorkflowConfig

logger = logging.getLogger(__name__)


class Runtime:
    """Owns the components for one working directory."""

    def __init__(
        self,
        config: RouterConfig,
        client: ExpertClient,
        workflow_config: Optional[WorkflowConfig] = None,
        home: Optional[Path] = None,
    ):
        self.config = config
        self.home = home
        self.hooks = HookManager(cwd=str(config.project_dir))
        self.rate_limits = RateLimitTracker()
        self.error_tracker = ErrorTracker()
        self.journal: Optional[EventJournal] = EventJournal(config.project_dir) if config.journal_enabled else None
        self.registry = ExpertRegistry.default(config.model_overrides)
        self.cache = ResponseCache(config.cache) if config.cache.enabled else None
        self.router = FallbackRouter(self.registry, client, self.hooks, self.cache)
        self.boulders = BoulderStateManager(config.project_dir)
        self.orchestrator = WorkflowOrchestrator(
            self.hooks,
            self.boulders,
            DefaultPhases(self.router).handlers(),
            workflow_config,
        )
        self.background = BackgroundTaskManager(
            config.background_data_dir,
            self.router,
            self.registry,
            config.concurrency,
            hooks=self.hooks,
        )
        self.tool_count = 0
        self._started_at: Optional[float] = None

    async def start(self) -> None:
        """Register hooks, load hook config, open the journal and start background work."""
        if self._started_at is not None:
            return
        self._started_at = time.monotonic()

        journal = None
        if self.journal is not None and await self.journal.init():
            journal = self.journal
        builtin = register_builtin_hooks(self.hooks, self.rate_limits, journal, self.error_tracker)
        initialize_hook_system(self.hooks, self.config.project_dir, self.home)
        logger.info("Registered %d built-in hooks", builtin)

        await self.hooks.dispatch(ServerStartEvent(version=__version__, tool_count=self.tool_count))
        await self.background.start()
        logger.info("llm-router %s started in %s", __version__, self.config.project_dir)

    async def stop(self) -> None:
        if self._started_at is None:
            return
        uptime_ms = int((time.monotonic() - self._started_at) * 1000)
        await self.hooks.dispatch(ServerStopEvent(uptime_ms=uptime_ms))
        await self.background.shutdown()
        if self.journal is not None:
            await self.journal.close()
        self._started_at = None
        logger.info("llm-router stopped after %dms", uptime_ms)

    async def run_tool(
        self,
        tool_name: str,
        tool_input: Dict[str, Any],
        fn: Callable[[Dict[str, Any]], Awaitable[Any]],
    ) -> Any:
        """
        Run a tool wrapped in onToolCall/onToolResult.

        A block on onToolCall raises HookBlockedError; a modify replaces the
        input the tool receives.
        """
        call = ToolCallEvent(tool_name=tool_name, tool_input=dict(tool_input))
        pre = await self.hooks.dispatch(call)
        if pre.blocked:
            raise HookBlockedError(pre.reason)
        if pre.modified_data:
            tool_input = call.with_modifications(pre.modified_data).tool_input

        start = time.monotonic()
        try:
            result = await fn(tool_input)
        except Exception as e:
            await self.hooks.dispatch(ToolResultEvent(
                tool_name=tool_name,
                tool_input=tool_input,
                duration_ms=int((time.monotonic() - start) * 1000),
                success=False,
                error=str(e),
            ))
            raise

        await self.hooks.dispatch(ToolResultEvent(
            tool_name=tool_name,
            tool_input=tool_input,
            tool_result=result,
            duration_ms=int((time.monotonic() - start) * 1000),
        ))
        return result
