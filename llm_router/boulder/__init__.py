"""
Boulder State
=============

Crash-recoverable persisted state for workflow runs.
"""

from llm_router.boulder.manager import BoulderStateManager
from llm_router.boulder.storage import BoulderStorage
from llm_router.boulder.types import (
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
