"""
Hook System Types
=================

Event-driven hook types for llm-router.

Every event kind is its own dataclass. The payload class determines the
event type, so a dispatch can never carry a payload for the wrong event:

    ctx = await hooks.dispatch(ExpertCallEvent(expert_id="reviewer", model="gemini-2.5-pro", prompt="..."))

Handlers receive a HookContext (execution id, timestamp, cwd, event) and
return a HookResult.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, ClassVar, Dict, List, Optional, Union


class HookEventType(Enum):
    """Available hook event types."""
    SERVER_START = "onServerStart"
    SERVER_STOP = "onServerStop"
    TOOL_CALL = "onToolCall"
    TOOL_RESULT = "onToolResult"
    EXPERT_CALL = "onExpertCall"
    EXPERT_RESULT = "onExpertResult"
    WORKFLOW_START = "onWorkflowStart"
    WORKFLOW_PHASE = "onWorkflowPhase"
    WORKFLOW_END = "onWorkflowEnd"
    BACKGROUND_LOOP_START = "onBackgroundLoopStart"
    BACKGROUND_LOOP_ITERATION = "onBackgroundLoopIteration"
    BACKGROUND_LOOP_END = "onBackgroundLoopEnd"
    ERROR = "onError"
    RATE_LIMIT = "onRateLimit"


class HookDecision(Enum):
    """Hook execution decision."""
    CONTINUE = "continue"
    BLOCK = "block"
    MODIFY = "modify"


class HookPriority(Enum):
    """Hook priority levels (higher weight runs first)."""
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def weight(self) -> int:
        return PRIORITY_WEIGHTS[self]


PRIORITY_WEIGHTS = {
    HookPriority.CRITICAL: 100,
    HookPriority.HIGH: 75,
    HookPriority.NORMAL: 50,
    HookPriority.LOW: 25,
}


def to_camel(name: str) -> str:
    """snake_case -> camelCase"""
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _wire_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return value


# =============================================================================
# Event payloads
# =============================================================================

@dataclass
class HookEvent:
    """
    Base class for event payloads.

    Subclasses set `event_type` and, for tool/expert events, name the field
    that hook patterns are matched against in `pattern_field`.
    """
    event_type: ClassVar[HookEventType]
    pattern_field: ClassVar[Optional[str]] = None

    def subject_name(self) -> Optional[str]:
        if self.pattern_field is None:
            return None
        return getattr(self, self.pattern_field, None)

    def with_modifications(self, data: Dict[str, Any]) -> "HookEvent":
        """
        Return a copy with `data` applied.

        Keys may be snake_case field names or their camelCase wire names.
        Keys that do not name a field of this event are ignored.
        """
        by_name = {}
        for f in fields(self):
            by_name[f.name] = f.name
            by_name[to_camel(f.name)] = f.name
        changes = {by_name[key]: value for key, value in data.items() if key in by_name}
        if not changes:
            return self
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a camelCase dictionary for JSON serialization."""
        return {to_camel(f.name): _wire_value(getattr(self, f.name)) for f in fields(self)}


@dataclass
class ServerStartEvent(HookEvent):
    event_type: ClassVar[HookEventType] = HookEventType.SERVER_START
    version: str = ""
    tool_count: int = 0


@dataclass
class ServerStopEvent(HookEvent):
    event_type: ClassVar[HookEventType] = HookEventType.SERVER_STOP
    uptime_ms: int = 0


@dataclass
class ToolCallEvent(HookEvent):
    event_type: ClassVar[HookEventType] = HookEventType.TOOL_CALL
    pattern_field: ClassVar[Optional[str]] = "tool_name"
    tool_name: str = ""
    tool_input: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolResultEvent(HookEvent):
    event_type: ClassVar[HookEventType] = HookEventType.TOOL_RESULT
    pattern_field: ClassVar[Optional[str]] = "tool_name"
    tool_name: str = ""
    tool_input: Dict[str, Any] = field(default_factory=dict)
    tool_result: Any = None
    duration_ms: int = 0
    success: bool = True
    error: Optional[str] = None


@dataclass
class ExpertCallEvent(HookEvent):
    event_type: ClassVar[HookEventType] = HookEventType.EXPERT_CALL
    pattern_field: ClassVar[Optional[str]] = "expert_id"
    expert_id: str = ""
    model: str = ""
    prompt: str = ""
    context: Optional[str] = None
    skip_cache: bool = False
    is_fallback: bool = False
    original_expert: Optional[str] = None


@dataclass
class ExpertResultEvent(HookEvent):
    event_type: ClassVar[HookEventType] = HookEventType.EXPERT_RESULT
    pattern_field: ClassVar[Optional[str]] = "expert_id"
    expert_id: str = ""
    model: str = ""
    response: str = ""
    response_length: int = 0
    duration_ms: int = 0
    from_cache: bool = False
    used_fallback: bool = False
    original_expert: Optional[str] = None


@dataclass
class WorkflowStartEvent(HookEvent):
    event_type: ClassVar[HookEventType] = HookEventType.WORKFLOW_START
    request: str = ""
    max_attempts: int = 3
    boulder_id: Optional[str] = None


@dataclass
class WorkflowPhaseEvent(HookEvent):
    event_type: ClassVar[HookEventType] = HookEventType.WORKFLOW_PHASE
    phase_id: str = ""
    previous_phase: Optional[str] = None
    attempt_number: int = 0
    previous_output: Optional[str] = None


@dataclass
class WorkflowEndEvent(HookEvent):
    event_type: ClassVar[HookEventType] = HookEventType.WORKFLOW_END
    success: bool = False
    phases_executed: List[str] = field(default_factory=list)
    total_duration_ms: int = 0
    escalated: bool = False
    output: str = ""


@dataclass
class BackgroundLoopStartEvent(HookEvent):
    event_type: ClassVar[HookEventType] = HookEventType.BACKGROUND_LOOP_START
    restored_tasks: int = 0
    queued_tasks: int = 0


@dataclass
class BackgroundLoopIterationEvent(HookEvent):
    event_type: ClassVar[HookEventType] = HookEventType.BACKGROUND_LOOP_ITERATION
    task_id: str = ""
    expert: str = ""
    status: str = ""
    running_tasks: int = 0
    queued_tasks: int = 0


@dataclass
class BackgroundLoopEndEvent(HookEvent):
    event_type: ClassVar[HookEventType] = HookEventType.BACKGROUND_LOOP_END
    total_tasks: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0
    uptime_ms: int = 0


@dataclass
class ErrorEvent(HookEvent):
    event_type: ClassVar[HookEventType] = HookEventType.ERROR
    error_message: str = ""
    source: str = ""
    error_code: Optional[str] = None
    stack: Optional[str] = None
    recoverable: bool = False


@dataclass
class RateLimitEvent(HookEvent):
    event_type: ClassVar[HookEventType] = HookEventType.RATE_LIMIT
    pattern_field: ClassVar[Optional[str]] = "expert_id"
    provider: str = ""
    model: str = ""
    expert_id: Optional[str] = None
    retry_after_seconds: Optional[float] = None
    fallback_available: bool = False
    reason: str = "rate_limit"


EVENT_CLASSES = {
    cls.event_type: cls
    for cls in (
        ServerStartEvent, ServerStopEvent, ToolCallEvent, ToolResultEvent,
        ExpertCallEvent, ExpertResultEvent, WorkflowStartEvent, WorkflowPhaseEvent,
        WorkflowEndEvent, BackgroundLoopStartEvent, BackgroundLoopIterationEvent,
        BackgroundLoopEndEvent, ErrorEvent, RateLimitEvent,
    )
}


# =============================================================================
# Dispatch envelope and result
# =============================================================================

@dataclass
class HookContext:
    """Context passed to every hook handler."""
    event: HookEvent
    cwd: str
    hook_execution_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def event_type(self) -> HookEventType:
        return self.event.event_type

    def to_dict(self) -> Dict[str, Any]:
        """Flattened camelCase form sent to external hooks."""
        data = {
            "hookExecutionId": self.hook_execution_id,
            "eventType": self.event_type.value,
            "timestamp": self.timestamp,
            "cwd": self.cwd,
        }
        data.update(self.event.to_dict())
        return data


@dataclass
class HookResult:
    """Result returned by hook handlers."""
    decision: HookDecision = HookDecision.CONTINUE
    reason: Optional[str] = None
    modified_data: Dict[str, Any] = field(default_factory=dict)
    inject_message: Optional[str] = None
    suppress_output: Optional[bool] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def blocked(self) -> bool:
        return self.decision == HookDecision.BLOCK

    def merge(self, other: "HookResult") -> "HookResult":
        """Fold a later hook's result into this aggregate."""
        if other.decision == HookDecision.BLOCK:
            decision = HookDecision.BLOCK
        elif other.decision == HookDecision.MODIFY:
            decision = HookDecision.MODIFY
        else:
            decision = self.decision

        messages = [m for m in (self.inject_message, other.inject_message) if m]
        return HookResult(
            decision=decision,
            reason=other.reason or self.reason,
            modified_data={**self.modified_data, **other.modified_data},
            inject_message="\n".join(messages) or None,
            suppress_output=other.suppress_output if other.suppress_output is not None else self.suppress_output,
            metadata={**self.metadata, **other.metadata},
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HookResult":
        """Build a result from the camelCase JSON an external hook prints."""
        try:
            decision = HookDecision(data.get("decision") or "continue")
        except ValueError:
            decision = HookDecision.CONTINUE
        modified = data.get("modifiedData")
        metadata = data.get("metadata")
        return cls(
            decision=decision,
            reason=data.get("reason"),
            modified_data=modified if isinstance(modified, dict) else {},
            inject_message=data.get("injectMessage"),
            suppress_output=data.get("suppressOutput"),
            metadata=metadata if isinstance(metadata, dict) else {},
        )


HookHandler = Callable[[HookContext], Union[HookResult, Awaitable[HookResult]]]


@dataclass
class HookDefinition:
    """An in-process hook."""
    id: str
    event_type: HookEventType
    handler: HookHandler
    name: str = ""
    description: str = ""
    priority: HookPriority = HookPriority.NORMAL
    enabled: bool = True
    tool_pattern: Optional[str] = None
    expert_pattern: Optional[str] = None


@dataclass
class ExternalHookDefinition:
    """A hook backed by a shell command."""
    id: str
    event_type: HookEventType
    command: str
    name: str = ""
    description: str = ""
    cwd: Optional[str] = None
    timeout_seconds: float = 30.0
    priority: HookPriority = HookPriority.NORMAL
    enabled: bool = True
    tool_pattern: Optional[str] = None
    expert_pattern: Optional[str] = None


AnyHookDefinition = Union[HookDefinition, ExternalHookDefinition]


@dataclass
class HookStats:
    """Per-hook execution statistics."""
    total_executions: int = 0
    successful_executions: int = 0
    failed_executions: int = 0
    blocked_executions: int = 0
    average_execution_time_ms: float = 0.0
    last_execution_at: Optional[str] = None
