"""
Default Phase Handlers
======================

One handler per workflow phase. Handlers mutate the shared WorkflowContext
and return a PhaseResult naming the next phase:

    intent -> assessment -> exploration -> implementation
    implementation ok     -> verification
    implementation failed -> recovery
    recovery              -> implementation (retry) or completion (escalate)
    verification pass     -> completion
    verification fail     -> recovery
    completion            -> end

Every model call goes through the FallbackRouter, so hooks, caching and
fallback apply to phases the same as to ad-hoc calls.
"""

import logging
import re
from typing import Dict, List, Optional, Tuple

from llm_router.boulder.types import TaskIntent, WorkflowPhase
from llm_router.router import FallbackRouter
from llm_router.workflow.types import PhaseHandler, PhaseResult, WorkflowContext

logger = logging.getLogger(__name__)

# First match wins, so more specific intents come first
INTENT_KEYWORDS: List[Tuple[TaskIntent, Tuple[str, ...]]] = [
    (TaskIntent.DEBUGGING, ("fix", "bug", "debug", "error", "crash", "broken", "failing")),
    (TaskIntent.REFACTORING, ("refactor", "clean up", "cleanup", "restructure", "simplify", "rename")),
    (TaskIntent.REVIEW, ("review", "audit", "critique")),
    (TaskIntent.DOCUMENTATION, ("document", "docs", "readme", "docstring", "changelog")),
    (TaskIntent.RESEARCH, ("research", "compare", "investigate", "evaluate", "find out")),
    (TaskIntent.CONCEPTUAL, ("explain", "what is", "why does", "how does", "understand")),
    (TaskIntent.IMPLEMENTATION, ("add", "implement", "create", "build", "write", "make", "support")),
]

# Implementation experts per intent, rotated across attempts
IMPLEMENTATION_EXPERTS: Dict[TaskIntent, List[str]] = {
    TaskIntent.DOCUMENTATION: ["writer", "researcher"],
    TaskIntent.REVIEW: ["reviewer", "codex_reviewer"],
    TaskIntent.RESEARCH: ["researcher", "strategist"],
    TaskIntent.CONCEPTUAL: ["researcher", "strategist"],
}
DEFAULT_IMPLEMENTATION_EXPERTS = ["strategist", "researcher", "codex_reviewer"]

_FILE_PATTERN = re.compile(r"(?<![\w/.-])((?:[\w.-]+/)*[\w-]+\.[A-Za-z]{1,5})(?![\w/])")
_VERDICT_PATTERN = re.compile(r"\b(PASS|FAIL)\b")

MAX_RELEVANT_FILES = 20


def classify_intent(request: str) -> TaskIntent:
    """Keyword classification of a request."""
    lowered = request.lower()
    for intent, keywords in INTENT_KEYWORDS:
        if any(re.search(r"\b" + re.escape(k) + r"\b", lowered) for k in keywords):
            return intent
    return TaskIntent.UNKNOWN


def extract_file_paths(text: str) -> List[str]:
    """Path-like tokens in `text`, in order of first appearance."""
    seen: List[str] = []
    for match in _FILE_PATTERN.finditer(text):
        path = match.group(1)
        if path not in seen and not path[0].isdigit():
            seen.append(path)
        if len(seen) >= MAX_RELEVANT_FILES:
            break
    return seen


def implementation_expert(intent: Optional[TaskIntent], attempt_number: int) -> str:
    experts = IMPLEMENTATION_EXPERTS.get(intent, DEFAULT_IMPLEMENTATION_EXPERTS)
    return experts[(attempt_number - 1) % len(experts)]


def verification_passed(review: str) -> bool:
    """The first PASS/FAIL verdict decides; no verdict counts as a pass."""
    verdict = _VERDICT_PATTERN.search(review.upper())
    return verdict is None or verdict.group(1) == "PASS"


class DefaultPhases:
    """Phase handlers backed by a FallbackRouter."""

    def __init__(
        self,
        router: FallbackRouter,
        assessment_expert: str = "strategist",
        exploration_expert: str = "explorer",
        verification_expert: str = "reviewer",
    ):
        self.router = router
        self.assessment_expert = assessment_expert
        self.exploration_expert = exploration_expert
        self.verification_expert = verification_expert

    def handlers(self) -> Dict[WorkflowPhase, PhaseHandler]:
        return {
            WorkflowPhase.INTENT: self.intent,
            WorkflowPhase.ASSESSMENT: self.assessment,
            WorkflowPhase.EXPLORATION: self.exploration,
            WorkflowPhase.IMPLEMENTATION: self.implementation,
            WorkflowPhase.RECOVERY: self.recovery,
            WorkflowPhase.VERIFICATION: self.verification,
            WorkflowPhase.COMPLETION: self.completion,
        }

    async def intent(self, context: WorkflowContext) -> PhaseResult:
        if context.intent is None:
            context.intent = classify_intent(context.request)
        logger.info("Classified request intent: %s", context.intent.value)
        return PhaseResult(
            phase_id=WorkflowPhase.INTENT,
            success=True,
            output=context.intent.value,
            next_phase=WorkflowPhase.ASSESSMENT,
        )

    async def assessment(self, context: WorkflowContext) -> PhaseResult:
        prompt = (
            f"Assess this {context.intent.value if context.intent else 'unknown'} task. "
            "Outline the approach, the risks, and what must be explored before "
            f"making changes.\n\nTask: {context.request}"
        )
        response = await self.router.call_with_fallback(self.assessment_expert, prompt)
        context.assessment = response.response
        return PhaseResult(
            phase_id=WorkflowPhase.ASSESSMENT,
            success=True,
            output=response.response,
            next_phase=WorkflowPhase.EXPLORATION,
            metadata={"expert": response.actual_expert_id},
        )

    async def exploration(self, context: WorkflowContext) -> PhaseResult:
        prompt = (
            "List the files and existing code relevant to this task, "
            f"one path per line, with a short note for each.\n\nTask: {context.request}"
        )
        response = await self.router.call_with_fallback(
            self.exploration_expert, prompt, context.assessment,
        )
        context.exploration_context = response.response
        context.relevant_files = extract_file_paths(response.response)
        return PhaseResult(
            phase_id=WorkflowPhase.EXPLORATION,
            success=True,
            output=response.response,
            next_phase=WorkflowPhase.IMPLEMENTATION,
            metadata={"expert": response.actual_expert_id, "files": len(context.relevant_files)},
        )

    async def implementation(self, context: WorkflowContext) -> PhaseResult:
        context.implementation_attempts += 1
        attempt = context.implementation_attempts
        expert_id = implementation_expert(context.intent, attempt)
        context.current_expert = expert_id

        sections = [f"Task: {context.request}"]
        if context.assessment:
            sections.append(f"Assessment:\n{context.assessment}")
        if context.relevant_files:
            sections.append("Relevant files:\n" + "\n".join(context.relevant_files))
        if context.last_error:
            sections.append(
                f"Previous attempt failed:\n{context.last_error}\nTry a different approach."
            )
        prompt = f"Implementation attempt {attempt}/{context.max_attempts}.\n\n" + "\n\n".join(sections)

        response = await self.router.call_with_fallback(expert_id, prompt, context.exploration_context)
        context.current_expert = response.actual_expert_id
        output = response.response.strip()
        if not output:
            context.last_error = "Expert returned an empty implementation"
            return PhaseResult(
                phase_id=WorkflowPhase.IMPLEMENTATION,
                success=False,
                output=context.last_error,
                next_phase=WorkflowPhase.RECOVERY,
                metadata={"expert": response.actual_expert_id, "attempt": attempt},
            )

        context.last_implementation = output
        context.last_error = None
        return PhaseResult(
            phase_id=WorkflowPhase.IMPLEMENTATION,
            success=True,
            output=output,
            next_phase=WorkflowPhase.VERIFICATION,
            metadata={"expert": response.actual_expert_id, "attempt": attempt},
        )

    async def recovery(self, context: WorkflowContext) -> PhaseResult:
        if context.implementation_attempts >= context.max_attempts:
            context.escalation_required = True
            context.escalation_reason = f"Max attempts ({context.max_attempts}) reached without success"
            logger.warning(context.escalation_reason)
            return PhaseResult(
                phase_id=WorkflowPhase.RECOVERY,
                success=False,
                output=context.escalation_reason,
                next_phase=WorkflowPhase.COMPLETION,
            )

        return PhaseResult(
            phase_id=WorkflowPhase.RECOVERY,
            success=True,
            output=(
                f"Retrying implementation (attempt {context.implementation_attempts + 1}"
                f"/{context.max_attempts})"
            ),
            next_phase=WorkflowPhase.IMPLEMENTATION,
        )

    async def verification(self, context: WorkflowContext) -> PhaseResult:
        context.verification_attempts += 1
        prompt = (
            "Review the implementation below against the task. Reply with PASS or FAIL "
            f"on the first line, then the reasons.\n\nTask: {context.request}\n\n"
            f"Implementation:\n{context.last_implementation or '(none)'}"
        )
        response = await self.router.call_with_fallback(self.verification_expert, prompt)
        passed = verification_passed(response.response)
        if not passed:
            context.last_error = response.response
        return PhaseResult(
            phase_id=WorkflowPhase.VERIFICATION,
            success=passed,
            output=response.response,
            next_phase=WorkflowPhase.COMPLETION if passed else WorkflowPhase.RECOVERY,
            metadata={"expert": response.actual_expert_id},
        )

    async def completion(self, context: WorkflowContext) -> PhaseResult:
        if context.escalation_required:
            lines = [f"Escalation required: {context.escalation_reason or 'Unknown reason'}"]
            if context.last_error:
                lines.append(f"Last error: {context.last_error}")
            if context.last_implementation:
                lines.append(f"Last implementation:\n{context.last_implementation}")
            output = "\n\n".join(lines)
        else:
            output = context.last_implementation or context.assessment or "Workflow completed"

        return PhaseResult(
            phase_id=WorkflowPhase.COMPLETION,
            success=not context.escalation_required,
            output=output,
            next_phase=None,
        )
