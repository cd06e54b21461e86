"""
Workflow Orchestrator
=====================

Drives a request through the fixed phase sequence, checkpointing every
phase to the boulder store so a crashed run can be resumed.

Long phases (assessment, exploration, implementation, verification) run
under stability polling instead of a flat timeout: the handler runs as a
task and is only accepted once its result has been observed unchanged for
several consecutive polls.

Usage:
    orchestrator = WorkflowOrchestrator(hooks, boulders, DefaultPhases(router).handlers())
    result = await orchestrator.execute("Add a logout button to the header")

    # After a restart
    if orchestrator.check_for_crash().can_recover:
        result = await orchestrator.resume_crashed()
"""

import asyncio
import logging
import time
from typing import Any, Dict, Optional

from llm_router.boulder.manager import BoulderStateManager
from llm_router.boulder.types import BoulderRecoveryResult, BoulderState, WorkflowPhase
from llm_router.errors import BoulderAlreadyActiveError, PhaseExecutionError, PhaseTimeoutError
from llm_router.hooks.manager import HookManager
from llm_router.hooks.types import ErrorEvent, WorkflowEndEvent, WorkflowPhaseEvent, WorkflowStartEvent
from llm_router.workflow.types import (
    LONG_PHASES,
    CancellationToken,
    PhaseHandler,
    PhaseHistoryEntry,
    PhaseResult,
    WorkflowConfig,
    WorkflowContext,
    WorkflowResult,
)

logger = logging.getLogger(__name__)

PREVIOUS_OUTPUT_LIMIT = 500
END_OUTPUT_LIMIT = 1000


class WorkflowOrchestrator:
    """Runs workflows phase by phase with crash-recoverable state."""

    def __init__(
        self,
        hooks: HookManager,
        boulders: Optional[BoulderStateManager],
        handlers: Dict[WorkflowPhase, PhaseHandler],
        config: Optional[WorkflowConfig] = None,
    ):
        self.hooks = hooks
        self.boulders = boulders
        self.handlers = handlers
        self.config = config or WorkflowConfig()
        self.current_context: Optional[WorkflowContext] = None

    # -------------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------------

    async def execute(
        self,
        request: str,
        *,
        cancel_token: Optional[CancellationToken] = None,
        config_overrides: Optional[Dict[str, Any]] = None,
    ) -> WorkflowResult:
        """Run a new workflow for `request`."""
        config = self.config.with_overrides(config_overrides)
        context = WorkflowContext(request=request, max_attempts=config.max_attempts)
        logger.info("Starting workflow: %s", request[:100])

        boulder = None
        if self.boulders is not None:
            try:
                boulder = self.boulders.create_boulder(request, max_attempts=config.max_attempts)
                logger.debug("Boulder %s created for workflow", boulder.id)
            except BoulderAlreadyActiveError as e:
                logger.warning("%s; continuing without crash recovery", e)

        return await self._run(context, config, boulder, WorkflowPhase.INTENT, cancel_token)

    def check_for_crash(self) -> BoulderRecoveryResult:
        if self.boulders is None:
            return BoulderRecoveryResult(can_recover=False, message="Crash recovery disabled")
        return self.boulders.check_for_crashed_boulder()

    async def resume_crashed(
        self,
        *,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Optional[WorkflowResult]:
        """
        Resume a crashed boulder in place.

        The run continues from the phase after the last successful
        checkpoint, keeping the attempts already recorded. Returns None when
        there is nothing to resume.
        """
        recovery = self.check_for_crash()
        if not recovery.can_recover or recovery.boulder is None:
            logger.info("No crashed workflow to resume")
            return None

        boulder = self.boulders.resume_boulder()
        if boulder is None:
            return None

        config = self.config.with_overrides({"max_attempts": boulder.max_attempts})
        context = WorkflowContext(
            request=boulder.request,
            max_attempts=boulder.max_attempts,
            intent=boulder.intent,
            implementation_attempts=boulder.attempts_made,
            exploration_context=boulder.exploration_context,
            relevant_files=list(boulder.relevant_files),
        )
        last_ok = [c for c in boulder.checkpoints if c.success]
        if last_ok and last_ok[-1].phase_id == WorkflowPhase.IMPLEMENTATION.value:
            context.last_implementation = last_ok[-1].output

        logger.info("Resuming crashed workflow %s from phase %s", boulder.id, recovery.resume_from_phase.value)
        return await self._run(context, config, boulder, recovery.resume_from_phase, cancel_token)

    # -------------------------------------------------------------------------
    # Main loop
    # -------------------------------------------------------------------------

    async def _run(
        self,
        context: WorkflowContext,
        config: WorkflowConfig,
        boulder: Optional[BoulderState],
        first_phase: WorkflowPhase,
        cancel_token: Optional[CancellationToken],
    ) -> WorkflowResult:
        self.current_context = context
        boulder_id = boulder.id if boulder else None

        await self.hooks.dispatch(WorkflowStartEvent(
            request=context.request,
            max_attempts=config.max_attempts,
            boulder_id=boulder_id,
        ))

        current: Optional[WorkflowPhase] = first_phase
        previous: Optional[WorkflowPhase] = None
        last_output = ""
        cancelled = False

        try:
            while current is not None:
                if cancel_token is not None and cancel_token.cancelled:
                    cancelled = True
                    break

                if boulder:
                    self.boulders.start_phase(current)

                await self.hooks.dispatch(WorkflowPhaseEvent(
                    phase_id=current.value,
                    previous_phase=previous.value if previous else None,
                    attempt_number=context.implementation_attempts + 1,
                    previous_output=last_output[:PREVIOUS_OUTPUT_LIMIT],
                ))

                result = await self._execute_phase(context, current, config)

                if boulder:
                    if current == WorkflowPhase.IMPLEMENTATION:
                        self.boulders.record_attempt(
                            expert=result.metadata.get("expert") or context.current_expert or "unknown",
                            success=result.success,
                            output=result.output,
                            error=None if result.success else result.output,
                        )
                    self.boulders.checkpoint(
                        current,
                        result.success,
                        output=result.output,
                        error=None if result.success else result.output,
                    )
                    self._sync_boulder(context)

                last_output = result.output
                previous = current
                current = result.next_phase

                if current is not None and context.elapsed_seconds > config.timeout_seconds:
                    logger.warning(
                        "Workflow timeout after %.1fs (limit %ss)",
                        context.elapsed_seconds, config.timeout_seconds,
                    )
                    context.escalation_required = True
                    context.escalation_reason = f"Workflow timed out after {config.timeout_seconds}s"
                    if previous != WorkflowPhase.COMPLETION:
                        current = WorkflowPhase.COMPLETION

            if cancelled:
                return await self._finish_cancelled(context, cancel_token, boulder_id)

            success = (
                not context.escalation_required
                and context.implementation_attempts < context.max_attempts
            )
            result = WorkflowResult(
                success=success,
                output=last_output,
                phases_executed=context.phases_executed(),
                total_time_ms=int(context.elapsed_seconds * 1000),
                attempts_made=context.implementation_attempts,
                escalated=context.escalation_required,
                boulder_id=boulder_id,
            )

            if boulder:
                if success:
                    self.boulders.complete(last_output)
                else:
                    reason = context.escalation_reason or (
                        "Escalation required" if context.escalation_required else "Max attempts reached"
                    )
                    failed = self.boulders.fail(reason)
                    if failed is not None:
                        result.escalation_report = self.boulders.generate_escalation_report(failed)

            await self.hooks.dispatch(WorkflowEndEvent(
                success=result.success,
                phases_executed=result.phases_executed,
                total_duration_ms=result.total_time_ms,
                escalated=result.escalated,
                output=result.output[:END_OUTPUT_LIMIT],
            ))
            logger.info(
                "Workflow finished: success=%s phases=%d attempts=%d",
                result.success, len(result.phases_executed), result.attempts_made,
            )
            return result

        except Exception as e:
            logger.exception("Workflow execution failed")
            result = WorkflowResult(
                success=False,
                output=f"Workflow failed: {e}",
                phases_executed=context.phases_executed(),
                total_time_ms=int(context.elapsed_seconds * 1000),
                attempts_made=context.implementation_attempts,
                escalated=True,
                boulder_id=boulder_id,
            )
            if boulder:
                self.boulders.fail(str(e))

            await self.hooks.dispatch(WorkflowEndEvent(
                success=False,
                phases_executed=result.phases_executed,
                total_duration_ms=result.total_time_ms,
                escalated=True,
                output=result.output,
            ))
            await self.hooks.dispatch(ErrorEvent(
                error_message=str(e),
                source="workflow",
                recoverable=False,
            ))
            return result

        finally:
            self.current_context = None

    async def _finish_cancelled(
        self,
        context: WorkflowContext,
        cancel_token: CancellationToken,
        boulder_id: Optional[str],
    ) -> WorkflowResult:
        context.escalation_required = True
        context.escalation_reason = cancel_token.reason or "Workflow cancelled"
        logger.info("Workflow cancelled: %s", context.escalation_reason)

        if boulder_id:
            self.boulders.cancel()

        result = WorkflowResult(
            success=False,
            output=context.escalation_reason,
            phases_executed=context.phases_executed(),
            total_time_ms=int(context.elapsed_seconds * 1000),
            attempts_made=context.implementation_attempts,
            escalated=True,
            boulder_id=boulder_id,
        )
        await self.hooks.dispatch(WorkflowEndEvent(
            success=False,
            phases_executed=result.phases_executed,
            total_duration_ms=result.total_time_ms,
            escalated=True,
            output=result.output,
        ))
        return result

    def _sync_boulder(self, context: WorkflowContext) -> None:
        self.boulders.update_boulder(
            intent=context.intent,
            exploration_context=context.exploration_context,
            relevant_files=context.relevant_files or None,
        )

    # -------------------------------------------------------------------------
    # Phase execution
    # -------------------------------------------------------------------------

    async def _execute_phase(
        self,
        context: WorkflowContext,
        phase: WorkflowPhase,
        config: WorkflowConfig,
    ) -> PhaseResult:
        """
        Run one phase. Handler errors and timeouts become a failed result
        routed to recovery (from implementation) or completion.

        Raises:
            PhaseExecutionError: no handler is registered for `phase`
        """
        handler = self.handlers.get(phase)
        if handler is None:
            raise PhaseExecutionError(phase.value, f"Unknown phase: {phase.value}")

        timeout = config.timeout_for(phase)
        started = time.monotonic()
        logger.debug("Executing phase %s (timeout %ss)", phase.value, timeout)

        try:
            if phase in LONG_PHASES:
                result = await self._execute_with_stability_polling(handler(context), phase, timeout, config)
            else:
                try:
                    result = await asyncio.wait_for(handler(context), timeout)
                except asyncio.TimeoutError:
                    raise PhaseTimeoutError(phase.value, timeout) from None
        except Exception as e:
            context.phase_history.append(PhaseHistoryEntry(phase, started, time.monotonic(), False, str(e)))
            context.last_error = str(e)
            logger.error("Phase %s failed: %s", phase.value, e)
            return PhaseResult(
                phase_id=phase,
                success=False,
                output=f"Phase {phase.value} failed: {e}",
                next_phase=(
                    WorkflowPhase.RECOVERY if phase == WorkflowPhase.IMPLEMENTATION
                    else WorkflowPhase.COMPLETION
                ),
            )

        context.phase_history.append(PhaseHistoryEntry(phase, started, time.monotonic(), result.success))
        logger.info(
            "Phase %s completed: success=%s next=%s (%dms)",
            phase.value, result.success,
            result.next_phase.value if result.next_phase else None,
            (time.monotonic() - started) * 1000,
        )
        return result

    async def _execute_with_stability_polling(
        self,
        coro,
        phase: WorkflowPhase,
        timeout: float,
        config: WorkflowConfig,
    ) -> PhaseResult:
        """
        Wait for a phase result that stays the same across polls.

        After `min_stability_seconds`, the signature (success, output length)
        of the finished result is sampled every poll; it is accepted after
        `stability_polls_required` identical samples in a row. A handler
        error is raised as soon as it is seen.

        Raises:
            PhaseTimeoutError: the hard timeout passed with no result
        """
        loop = asyncio.get_running_loop()
        task = asyncio.ensure_future(coro)
        started = loop.time()
        last_signature = None
        stable_polls = 0

        try:
            while loop.time() - started < timeout:
                await asyncio.sleep(config.poll_interval_seconds)
                elapsed = loop.time() - started

                if not task.done():
                    continue
                if task.exception() is not None:
                    raise task.exception()
                if elapsed < config.min_stability_seconds:
                    continue

                result = task.result()
                signature = (result.success, len(result.output))
                if signature == last_signature:
                    stable_polls += 1
                else:
                    last_signature = signature
                    stable_polls = 1
                logger.debug(
                    "Stability poll for %s: %d/%d",
                    phase.value, stable_polls, config.stability_polls_required,
                )
                if stable_polls >= config.stability_polls_required:
                    logger.debug("Phase %s stable after %.2fs", phase.value, elapsed)
                    return result

            if task.done() and task.exception() is None:
                logger.warning("Phase %s hit its timeout with a result available", phase.value)
                return task.result()
            if task.done():
                raise task.exception()
            raise PhaseTimeoutError(phase.value, timeout)
        finally:
            if not task.done():
                task.cancel()
