"""
Boulder State Types
===================

Persistent state for a multi-phase workflow run, kept on disk so a run can
be resumed after the process dies ("rolling the boulder back up the hill").

- PhaseCheckpoint: one attempt at one phase
- ImplementationAttempt: one try at the implementation phase
- BoulderState: the persisted record for one run

Files are written as camelCase JSON.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from llm_router.hooks.types import to_camel

STATE_VERSION = 1
CHECKPOINT_OUTPUT_LIMIT = 2000
ATTEMPT_OUTPUT_LIMIT = 1000
REQUEST_PREVIEW_LIMIT = 100


class TaskIntent(Enum):
    """Task intent classification for routing and recovery."""
    CONCEPTUAL = "conceptual"
    IMPLEMENTATION = "implementation"
    DEBUGGING = "debugging"
    REFACTORING = "refactoring"
    RESEARCH = "research"
    REVIEW = "review"
    DOCUMENTATION = "documentation"
    UNKNOWN = "unknown"


class WorkflowPhase(Enum):
    """Workflow phase identifiers."""
    INTENT = "intent"
    ASSESSMENT = "assessment"
    EXPLORATION = "exploration"
    IMPLEMENTATION = "implementation"
    RECOVERY = "recovery"
    VERIFICATION = "verification"
    COMPLETION = "completion"


# Order used to pick a resume point; recovery is never resumed into
RESUME_ORDER = [
    WorkflowPhase.INTENT,
    WorkflowPhase.ASSESSMENT,
    WorkflowPhase.EXPLORATION,
    WorkflowPhase.IMPLEMENTATION,
    WorkflowPhase.VERIFICATION,
    WorkflowPhase.COMPLETION,
]


class BoulderStatus(Enum):
    ACTIVE = "active"          # Currently executing
    PAUSED = "paused"          # Manually paused
    CRASHED = "crashed"        # Found active on startup
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


def _camel_dict(data: Dict[str, Any]) -> Dict[str, Any]:
    return {to_camel(k): v for k, v in data.items() if v is not None}


def _snake_dict(data: Dict[str, Any], known: Dict[str, str]) -> Dict[str, Any]:
    return {known[k]: v for k, v in data.items() if k in known}


def _known_keys(*names: str) -> Dict[str, str]:
    return {to_camel(name): name for name in names}


@dataclass
class PhaseCheckpoint:
    """Checkpoint data for one phase attempt."""
    phase_id: str
    started_at: str
    completed_at: Optional[str] = None
    success: Optional[bool] = None
    output: Optional[str] = None
    error: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    @property
    def is_open(self) -> bool:
        return self.completed_at is None

    def to_dict(self) -> dict:
        return _camel_dict({
            "phase_id": self.phase_id,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "success": self.success,
            "output": self.output,
            "error": self.error,
            "metadata": self.metadata,
        })

    @classmethod
    def from_dict(cls, data: dict) -> "PhaseCheckpoint":
        known = _known_keys("phase_id", "started_at", "completed_at", "success", "output", "error", "metadata")
        return cls(**_snake_dict(data, known))


@dataclass
class ImplementationAttempt:
    """One implementation try."""
    attempt_number: int
    timestamp: str
    expert: str
    success: bool
    approach: Optional[str] = None
    error: Optional[str] = None
    output: Optional[str] = None

    def to_dict(self) -> dict:
        return _camel_dict({
            "attempt_number": self.attempt_number,
            "timestamp": self.timestamp,
            "expert": self.expert,
            "approach": self.approach,
            "success": self.success,
            "error": self.error,
            "output": self.output,
        })

    @classmethod
    def from_dict(cls, data: dict) -> "ImplementationAttempt":
        known = _known_keys("attempt_number", "timestamp", "expert", "success", "approach", "error", "output")
        return cls(**_snake_dict(data, known))


@dataclass
class BoulderState:
    """
    The persisted record for one workflow run.

    At most one record with status active or crashed exists per working
    directory. Checkpoints and attempts only ever grow within a run.
    """
    id: str
    request: str
    status: BoulderStatus = BoulderStatus.ACTIVE
    version: int = STATE_VERSION
    intent: Optional[TaskIntent] = None
    current_phase: WorkflowPhase = WorkflowPhase.INTENT
    checkpoints: List[PhaseCheckpoint] = field(default_factory=list)
    implementation_attempts: List[ImplementationAttempt] = field(default_factory=list)
    max_attempts: int = 3
    created_at: str = ""
    updated_at: str = ""
    completed_at: Optional[str] = None
    total_time_ms: Optional[int] = None
    escalation_required: bool = False
    escalation_reason: Optional[str] = None
    exploration_context: Optional[str] = None
    relevant_files: List[str] = field(default_factory=list)
    final_output: Optional[str] = None
    crashed_at: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def attempts_made(self) -> int:
        return len(self.implementation_attempts)

    @property
    def has_successful_attempt(self) -> bool:
        return any(a.success for a in self.implementation_attempts)

    def phases_executed(self) -> List[str]:
        return [c.phase_id for c in self.checkpoints]

    def to_dict(self) -> dict:
        """Convert to a camelCase dictionary for JSON serialization."""
        return _camel_dict({
            "id": self.id,
            "version": self.version,
            "status": self.status.value,
            "request": self.request,
            "intent": self.intent.value if self.intent else None,
            "current_phase": self.current_phase.value,
            "checkpoints": [c.to_dict() for c in self.checkpoints],
            "implementation_attempts": [a.to_dict() for a in self.implementation_attempts],
            "max_attempts": self.max_attempts,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "completed_at": self.completed_at,
            "total_time_ms": self.total_time_ms,
            "escalation_required": self.escalation_required,
            "escalation_reason": self.escalation_reason,
            "exploration_context": self.exploration_context,
            "relevant_files": self.relevant_files,
            "final_output": self.final_output,
            "crashed_at": self.crashed_at,
            "metadata": self.metadata,
        })

    @classmethod
    def from_dict(cls, data: dict) -> "BoulderState":
        """
        Create a BoulderState from its JSON form.

        Raises KeyError/ValueError on missing required fields or unknown
        enum values; the storage layer treats those as invalid files.
        """
        intent = data.get("intent")
        return cls(
            id=data["id"],
            request=data["request"],
            status=BoulderStatus(data["status"]),
            version=data.get("version", STATE_VERSION),
            intent=TaskIntent(intent) if intent else None,
            current_phase=WorkflowPhase(data["currentPhase"]),
            checkpoints=[PhaseCheckpoint.from_dict(c) for c in data.get("checkpoints", [])],
            implementation_attempts=[
                ImplementationAttempt.from_dict(a) for a in data.get("implementationAttempts", [])
            ],
            max_attempts=data.get("maxAttempts", 3),
            created_at=data.get("createdAt", ""),
            updated_at=data.get("updatedAt", ""),
            completed_at=data.get("completedAt"),
            total_time_ms=data.get("totalTimeMs"),
            escalation_required=data.get("escalationRequired", False),
            escalation_reason=data.get("escalationReason"),
            exploration_context=data.get("explorationContext"),
            relevant_files=data.get("relevantFiles", []),
            final_output=data.get("finalOutput"),
            crashed_at=data.get("crashedAt"),
            metadata=data.get("metadata", {}),
        )


@dataclass
class BoulderSummary:
    """Listing row for a boulder."""
    id: str
    status: str
    request_preview: str
    current_phase: str
    attempts_made: int
    created_at: str
    updated_at: str
    escalation_required: bool

    @classmethod
    def from_state(cls, state: BoulderState) -> "BoulderSummary":
        request = state.request
        if len(request) > REQUEST_PREVIEW_LIMIT:
            request = request[:REQUEST_PREVIEW_LIMIT] + "..."
        return cls(
            id=state.id,
            status=state.status.value,
            request_preview=request,
            current_phase=state.current_phase.value,
            attempts_made=state.attempts_made,
            created_at=state.created_at,
            updated_at=state.updated_at,
            escalation_required=state.escalation_required,
        )


@dataclass
class BoulderRecoveryResult:
    """Outcome of looking for a crashed boulder."""
    can_recover: bool
    message: str
    boulder: Optional[BoulderState] = None
    resume_from_phase: Optional[WorkflowPhase] = None
    suggestions: List[str] = field(default_factory=list)


@dataclass
class BoulderStateConfig:
    """Where and how boulders are stored, relative to the working directory."""
    state_file_path: str = ".llm-router/boulder-state.json"
    history_dir: str = ".llm-router/boulder-history"
    max_history_count: int = 50
    history_retention_seconds: float = 7 * 24 * 60 * 60
    state_version: int = STATE_VERSION
    history_list_limit: int = 20
