"""
Workflow
========

Phase-based workflow execution with crash-recoverable state.
"""

from llm_router.workflow.orchestrator import WorkflowOrchestrator
from llm_router.workflow.phases import DefaultPhases, classify_intent
from llm_router.workflow.types import (
    CancellationToken,
    PhaseResult,
    WorkflowConfig,
    WorkflowContext,
    WorkflowResult,
)
