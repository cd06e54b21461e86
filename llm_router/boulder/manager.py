"""
Boulder State Manager
=====================

Lifecycle of the persisted workflow record: create, checkpoint phases,
record implementation attempts, finish (complete/fail/cancel), and detect
and resume crashed runs.

Every operation re-reads the active record from disk and writes it back,
so the file is always the source of truth for crash recovery.

Usage:
    from llm_router.boulder import BoulderStateManager, WorkflowPhase

    manager = BoulderStateManager(project_dir)
    boulder = manager.create_boulder("Add pagination to the users API")
    manager.start_phase(WorkflowPhase.INTENT)
    manager.checkpoint(WorkflowPhase.INTENT, success=True, output="implementation")

    # After a restart
    recovery = manager.check_for_crashed_boulder()
    if recovery.can_recover:
        manager.resume_boulder()
"""

import logging
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from llm_router.boulder.storage import BoulderStorage, elapsed_ms_since, utc_now
from llm_router.boulder.types import (
    ATTEMPT_OUTPUT_LIMIT,
    CHECKPOINT_OUTPUT_LIMIT,
    RESUME_ORDER,
    BoulderRecoveryResult,
    BoulderState,
    BoulderStateConfig,
    BoulderStatus,
    BoulderSummary,
    ImplementationAttempt,
    PhaseCheckpoint,
    TaskIntent,
    WorkflowPhase,
)
from llm_router.errors import BoulderAlreadyActiveError

logger = logging.getLogger(__name__)

PhaseLike = Union[WorkflowPhase, str]

_RECOVERY_SUGGESTIONS = {
    WorkflowPhase.INTENT: "Re-analyze the request to classify intent",
    WorkflowPhase.ASSESSMENT: "Re-assess the codebase for the task",
    WorkflowPhase.EXPLORATION: "Continue exploring relevant files and context",
    WorkflowPhase.VERIFICATION: "Re-verify the implementation",
    WorkflowPhase.COMPLETION: "Finalize and complete the task",
}


def _phase(phase: PhaseLike) -> WorkflowPhase:
    return phase if isinstance(phase, WorkflowPhase) else WorkflowPhase(phase)


class BoulderStateManager:
    """Manages the boulder for one working directory."""

    def __init__(self, directory: Path, config: Optional[BoulderStateConfig] = None):
        self.directory = Path(directory)
        self.config = config or BoulderStateConfig()
        self.storage = BoulderStorage(self.directory, self.config)

    # -------------------------------------------------------------------------
    # Creation and updates
    # -------------------------------------------------------------------------

    def create_boulder(
        self,
        request: str,
        max_attempts: int = 3,
        intent: Optional[TaskIntent] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> BoulderState:
        """
        Create and persist a new active boulder.

        Raises:
            BoulderAlreadyActiveError: an active or crashed boulder exists
        """
        existing = self.storage.read()
        if existing is not None and existing.status in (BoulderStatus.ACTIVE, BoulderStatus.CRASHED):
            raise BoulderAlreadyActiveError(existing.id)

        now = utc_now()
        boulder = BoulderState(
            id=uuid.uuid4().hex[:8],
            request=request,
            status=BoulderStatus.ACTIVE,
            version=self.config.state_version,
            intent=intent,
            current_phase=WorkflowPhase.INTENT,
            max_attempts=max_attempts,
            created_at=now,
            updated_at=now,
            metadata=dict(metadata or {}),
        )
        self.storage.write(boulder)
        logger.info("Boulder %s created: %s", boulder.id, request[:100])
        return boulder

    def get_current_boulder(self) -> Optional[BoulderState]:
        return self.storage.read()

    def update_boulder(self, **updates: Any) -> Optional[BoulderState]:
        """
        Apply field updates to the active boulder.

        `metadata` is merged into the existing metadata; None values are
        ignored. Unknown field names raise AttributeError.
        """
        boulder = self.storage.read()
        if boulder is None:
            logger.warning("No active boulder to update")
            return None

        for name, value in updates.items():
            if value is None:
                continue
            if not hasattr(boulder, name):
                raise AttributeError(f"BoulderState has no field {name!r}")
            if name == "metadata":
                boulder.metadata = {**boulder.metadata, **value}
            elif name == "current_phase":
                boulder.current_phase = _phase(value)
            elif name == "status":
                boulder.status = value if isinstance(value, BoulderStatus) else BoulderStatus(value)
            elif name == "intent":
                boulder.intent = value if isinstance(value, TaskIntent) else TaskIntent(value)
            else:
                setattr(boulder, name, value)

        self.storage.write(boulder)
        return boulder

    # -------------------------------------------------------------------------
    # Phases and attempts
    # -------------------------------------------------------------------------

    def start_phase(self, phase: PhaseLike) -> Optional[BoulderState]:
        """Open a checkpoint for `phase` and make it the current phase."""
        boulder = self.storage.read()
        if boulder is None:
            logger.warning("No active boulder to start phase")
            return None

        phase = _phase(phase)
        boulder.checkpoints.append(PhaseCheckpoint(phase_id=phase.value, started_at=utc_now()))
        boulder.current_phase = phase
        self.storage.write(boulder)
        logger.debug("Boulder %s: phase %s started", boulder.id, phase.value)
        return boulder

    def checkpoint(
        self,
        phase: PhaseLike,
        success: bool,
        output: Optional[str] = None,
        error: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[BoulderState]:
        """Close the open checkpoint for `phase` (or append a closed one)."""
        boulder = self.storage.read()
        if boulder is None:
            logger.warning("No active boulder for checkpoint")
            return None

        phase = _phase(phase)
        checkpoint = next(
            (c for c in reversed(boulder.checkpoints) if c.phase_id == phase.value and c.is_open),
            None,
        )
        if checkpoint is None:
            checkpoint = PhaseCheckpoint(phase_id=phase.value, started_at=utc_now())
            boulder.checkpoints.append(checkpoint)

        checkpoint.completed_at = utc_now()
        checkpoint.success = success
        if output:
            checkpoint.output = output[:CHECKPOINT_OUTPUT_LIMIT]
        if error:
            checkpoint.error = error
        if metadata:
            checkpoint.metadata = metadata

        boulder.current_phase = phase
        self.storage.write(boulder)
        logger.info("Boulder %s checkpoint: %s %s", boulder.id, phase.value, "ok" if success else "failed")
        return boulder

    def record_attempt(
        self,
        expert: str,
        success: bool,
        approach: Optional[str] = None,
        output: Optional[str] = None,
        error: Optional[str] = None,
    ) -> Optional[BoulderState]:
        """
        Append an implementation attempt.

        Reaching max_attempts with no successful attempt sets
        escalation_required.
        """
        boulder = self.storage.read()
        if boulder is None:
            logger.warning("No active boulder to record attempt")
            return None

        boulder.implementation_attempts.append(ImplementationAttempt(
            attempt_number=boulder.attempts_made + 1,
            timestamp=utc_now(),
            expert=expert,
            success=success,
            approach=approach,
            error=error,
            output=output[:ATTEMPT_OUTPUT_LIMIT] if output else None,
        ))

        if (
            not success
            and boulder.attempts_made >= boulder.max_attempts
            and not boulder.has_successful_attempt
        ):
            boulder.escalation_required = True
            boulder.escalation_reason = f"Max attempts ({boulder.max_attempts}) reached without success"
            logger.warning(
                "Boulder %s reached max attempts (%d); escalation required",
                boulder.id, boulder.attempts_made,
            )

        self.storage.write(boulder)
        return boulder

    # -------------------------------------------------------------------------
    # Finishing
    # -------------------------------------------------------------------------

    def _finish(self, status: BoulderStatus, **updates: Any) -> Optional[BoulderState]:
        boulder = self.storage.read()
        if boulder is None:
            logger.warning("No active boulder to mark %s", status.value)
            return None

        boulder.status = status
        boulder.completed_at = utc_now()
        boulder.total_time_ms = elapsed_ms_since(boulder.created_at)
        for name, value in updates.items():
            if value is not None:
                setattr(boulder, name, value)

        self.storage.archive(boulder)
        self.storage.clear()
        return boulder

    def complete(self, final_output: Optional[str] = None) -> Optional[BoulderState]:
        boulder = self._finish(BoulderStatus.COMPLETED, final_output=final_output)
        if boulder is not None:
            logger.info(
                "Boulder %s completed in %sms (%d attempts)",
                boulder.id, boulder.total_time_ms, boulder.attempts_made,
            )
        return boulder

    def fail(self, reason: str) -> Optional[BoulderState]:
        boulder = self._finish(BoulderStatus.FAILED, escalation_required=True, escalation_reason=reason)
        if boulder is not None:
            logger.warning("Boulder %s failed: %s", boulder.id, reason)
        return boulder

    def cancel(self) -> Optional[BoulderState]:
        boulder = self._finish(BoulderStatus.CANCELLED)
        if boulder is not None:
            logger.info("Boulder %s cancelled", boulder.id)
        return boulder

    # -------------------------------------------------------------------------
    # Crash recovery
    # -------------------------------------------------------------------------

    def detect_crashed_boulder(self) -> Optional[BoulderState]:
        return self.storage.detect_crashed()

    def check_for_crashed_boulder(self) -> BoulderRecoveryResult:
        """Detect a crashed boulder and work out where to resume it."""
        crashed = self.storage.detect_crashed()
        if crashed is None:
            return BoulderRecoveryResult(can_recover=False, message="No crashed boulder found")

        last_ok = self.find_last_successful_phase(crashed)
        resume_phase = self.next_phase_after(last_ok)
        return BoulderRecoveryResult(
            can_recover=True,
            boulder=crashed,
            resume_from_phase=resume_phase,
            suggestions=self.recovery_suggestions(crashed, resume_phase),
            message=(
                f"Found crashed boulder (ID: {crashed.id}). "
                f"Last successful phase: {last_ok.value if last_ok else 'none'}. "
                f"Can resume from: {resume_phase.value}"
            ),
        )

    def resume_boulder(self) -> Optional[BoulderState]:
        """Flip a crashed boulder back to active."""
        boulder = self.storage.read()
        if boulder is None or boulder.status != BoulderStatus.CRASHED:
            logger.warning("No crashed boulder to resume")
            return None

        boulder.status = BoulderStatus.ACTIVE
        self.storage.write(boulder)
        logger.info("Boulder %s resumed at phase %s", boulder.id, boulder.current_phase.value)
        return boulder

    @staticmethod
    def find_last_successful_phase(boulder: BoulderState) -> Optional[WorkflowPhase]:
        done = [c for c in boulder.checkpoints if c.success and c.completed_at]
        if not done:
            return None
        # ISO-8601 UTC strings sort chronologically
        latest = max(done, key=lambda c: c.completed_at)
        return WorkflowPhase(latest.phase_id)

    @staticmethod
    def next_phase_after(phase: Optional[WorkflowPhase]) -> WorkflowPhase:
        """Resume point after `phase`. Recovery resumes into implementation."""
        if phase is None:
            return WorkflowPhase.INTENT
        if phase == WorkflowPhase.RECOVERY:
            return WorkflowPhase.IMPLEMENTATION
        index = RESUME_ORDER.index(phase)
        if index >= len(RESUME_ORDER) - 1:
            return phase
        return RESUME_ORDER[index + 1]

    @staticmethod
    def recovery_suggestions(boulder: BoulderState, resume_phase: WorkflowPhase) -> List[str]:
        suggestions = []
        if resume_phase == WorkflowPhase.IMPLEMENTATION:
            if boulder.attempts_made > 0:
                suggestions.append(f"Previous {boulder.attempts_made} attempt(s) failed")
                suggestions.append("Try a different approach or expert")
        elif resume_phase in _RECOVERY_SUGGESTIONS:
            suggestions.append(_RECOVERY_SUGGESTIONS[resume_phase])

        if boulder.attempts_made >= boulder.max_attempts - 1:
            suggestions.append("Consider escalating to user for guidance")
        if not boulder.exploration_context:
            suggestions.append("Gather more context before implementation")

        suggestions.append(f"Resume from phase '{resume_phase.value}' or cancel the boulder")
        return suggestions

    # -------------------------------------------------------------------------
    # Queries and reports
    # -------------------------------------------------------------------------

    def list_history(self) -> List[BoulderSummary]:
        return self.storage.list_summaries()

    def get_boulder(self, boulder_id: str) -> Optional[BoulderState]:
        return self.storage.find(boulder_id)

    def has_active_boulder(self) -> bool:
        return self.storage.has_active()

    def generate_escalation_report(self, boulder: Optional[BoulderState] = None) -> str:
        """Markdown report combining phase history and attempt history."""
        b = boulder or self.storage.read()
        if b is None:
            return "No boulder found for escalation report."

        phases = "\n".join(
            f"  - {c.phase_id}: {'OK' if c.success else 'Failed'} ({c.error or 'No error'})"
            for c in b.checkpoints
        )
        attempts = "\n".join(
            f"  - Attempt {a.attempt_number} ({a.expert}): "
            f"{'Success' if a.success else 'Failed'} - {a.error or a.approach or 'No details'}"
            for a in b.implementation_attempts
        )
        context = (b.exploration_context or "")[:500] or "No context"
        files = "\n".join(b.relevant_files) or "None identified"

        lines = [
            "## Escalation Report",
            "",
            f"**Boulder ID**: {b.id}",
            f"**Status**: {b.status.value}",
            f"**Request**: {b.request}",
            "",
            "### Phase History",
            phases or "  No phases recorded",
            "",
            f"### Implementation Attempts ({b.attempts_made}/{b.max_attempts})",
            attempts or "  No attempts recorded",
            "",
            "### Escalation Reason",
            b.escalation_reason or "Unknown",
            "",
            "### Suggested Actions",
            "1. Review the error messages above",
            "2. Check if the task needs to be broken down further",
            "3. Consider manual intervention for blocked issues",
            "4. Try a different approach or expert",
            "",
            "### Context Gathered",
            context,
            "",
            "### Relevant Files",
            files,
        ]
        return "\n".join(lines)
