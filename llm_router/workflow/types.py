"""
Workflow Types
==============

Data passed between the orchestrator and the phase handlers.
"""

import time
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Dict, List, Optional

from llm_router.boulder.types import TaskIntent, WorkflowPhase

# Phases that run under stability polling; the rest use a flat timeout
LONG_PHASES = frozenset({
    WorkflowPhase.ASSESSMENT,
    WorkflowPhase.EXPLORATION,
    WorkflowPhase.IMPLEMENTATION,
    WorkflowPhase.VERIFICATION,
})

DEFAULT_PHASE_TIMEOUTS: Dict[WorkflowPhase, float] = {
    WorkflowPhase.INTENT: 30.0,
    WorkflowPhase.ASSESSMENT: 60.0,
    WorkflowPhase.EXPLORATION: 120.0,
    WorkflowPhase.IMPLEMENTATION: 300.0,
    WorkflowPhase.RECOVERY: 60.0,
    WorkflowPhase.VERIFICATION: 120.0,
    WorkflowPhase.COMPLETION: 30.0,
}


@dataclass
class WorkflowConfig:
    """Limits and timing for one workflow run."""
    max_attempts: int = 3
    timeout_seconds: float = 30 * 60
    phase_timeouts: Dict[WorkflowPhase, float] = field(
        default_factory=lambda: dict(DEFAULT_PHASE_TIMEOUTS)
    )
    poll_interval_seconds: float = 1.0
    min_stability_seconds: float = 2.0
    stability_polls_required: int = 3

    def timeout_for(self, phase: WorkflowPhase) -> float:
        return self.phase_timeouts.get(phase, 60.0)

    def with_overrides(self, overrides: Optional[Dict[str, Any]] = None) -> "WorkflowConfig":
        """Copy with fields replaced; phase_timeouts are merged, not replaced."""
        if not overrides:
            return replace(self, phase_timeouts=dict(self.phase_timeouts))
        overrides = dict(overrides)
        timeouts = dict(self.phase_timeouts)
        for phase, seconds in (overrides.pop("phase_timeouts", None) or {}).items():
            timeouts[phase if isinstance(phase, WorkflowPhase) else WorkflowPhase(phase)] = seconds
        return replace(self, phase_timeouts=timeouts, **overrides)


@dataclass
class PhaseResult:
    """What a phase handler hands back to the orchestrator."""
    phase_id: WorkflowPhase
    success: bool
    output: str = ""
    next_phase: Optional[WorkflowPhase] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PhaseHistoryEntry:
    phase_id: WorkflowPhase
    started_at: float
    ended_at: float
    success: bool
    error: Optional[str] = None


@dataclass
class WorkflowContext:
    """
    Mutable state shared by the phases of one run.

    Seeded from the boulder when a crashed run is resumed.
    """
    request: str
    max_attempts: int = 3
    intent: Optional[TaskIntent] = None
    implementation_attempts: int = 0
    verification_attempts: int = 0
    assessment: Optional[str] = None
    exploration_context: Optional[str] = None
    relevant_files: List[str] = field(default_factory=list)
    current_expert: Optional[str] = None
    last_implementation: Optional[str] = None
    last_error: Optional[str] = None
    escalation_required: bool = False
    escalation_reason: Optional[str] = None
    started_at: float = field(default_factory=time.monotonic)
    phase_history: List[PhaseHistoryEntry] = field(default_factory=list)

    @property
    def elapsed_seconds(self) -> float:
        return time.monotonic() - self.started_at

    def phases_executed(self) -> List[str]:
        return [entry.phase_id.value for entry in self.phase_history]


@dataclass
class WorkflowResult:
    """Outcome of a workflow run."""
    success: bool
    output: str
    phases_executed: List[str] = field(default_factory=list)
    total_time_ms: int = 0
    attempts_made: int = 0
    escalated: bool = False
    boulder_id: Optional[str] = None
    escalation_report: Optional[str] = None


class CancellationToken:
    """Cooperative cancellation flag checked between phases."""

    def __init__(self):
        self._cancelled = False
        self.reason: Optional[str] = None

    def cancel(self, reason: Optional[str] = None) -> None:
        self._cancelled = True
        self.reason = reason

    @property
    def cancelled(self) -> bool:
        return self._cancelled


PhaseHandler = Callable[[WorkflowContext], Awaitable[PhaseResult]]
