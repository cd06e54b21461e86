"""
Expert Registry
===============

Experts are interchangeable model backends addressed by id. The registry
maps ids to models (overridable with MODEL_<EXPERT_ID>) and holds the static
fallback chain walked by the router.

The network call itself is an external collaborator: anything implementing
the ExpertClient protocol can be plugged into the router.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Optional, Protocol


@dataclass
class Expert:
    """A routable model backend."""
    id: str
    name: str
    model: str
    role: str
    temperature: float = 0.3
    max_tokens: int = 4000

    @property
    def provider(self) -> str:
        return provider_for_model(self.model)


@dataclass
class ExpertCallResult:
    """What an ExpertClient returns for one call."""
    response: str
    latency_ms: int = 0
    cached: bool = False


class ExpertClient(Protocol):
    """
    The Expert Call collaborator.

    Implementations raise RateLimitError (with retry_after_seconds),
    ExpertTimeoutError, AuthError, BadRequestError, ServerError or
    OverloadedError from llm_router.errors where they can tell the failure
    apart; any other exception is classified from its message.
    """

    async def call(
        self,
        expert_id: str,
        model: str,
        prompt: str,
        context: Optional[str] = None,
        image_path: Optional[str] = None,
    ) -> ExpertCallResult:
        ...


DEFAULT_EXPERTS: List[Expert] = [
    Expert("strategist", "GPT Strategist", "gpt-5.2", "architecture and strategy", temperature=0.1),
    Expert("researcher", "Claude Researcher", "claude-sonnet-4-5-20250929", "research and analysis"),
    Expert("reviewer", "Gemini Reviewer", "gemini-2.5-pro", "code review and verification", temperature=0.2),
    Expert("frontend", "Gemini Frontend", "gemini-2.5-pro", "UI and frontend work", temperature=0.7),
    Expert("writer", "Gemini Writer", "gemini-2.5-flash", "documentation and writing"),
    Expert("explorer", "Gemini Explorer", "gemini-2.5-flash", "fast codebase exploration"),
    Expert("codex_reviewer", "Codex Reviewer", "gpt-5.2", "second-opinion code review", temperature=0.1),
    Expert("security", "Claude Security Analyst", "claude-sonnet-4-5-20250929", "security analysis", temperature=0.1),
    Expert("tester", "Claude Tester", "claude-sonnet-4-5-20250929", "test design", temperature=0.2),
    Expert("data", "Gemini Data Analyst", "gemini-2.5-pro", "data analysis", temperature=0.2),
]

FALLBACK_CHAIN: Dict[str, List[str]] = {
    "strategist": ["researcher", "reviewer"],
    "researcher": ["reviewer", "explorer"],
    "reviewer": ["explorer", "writer", "codex_reviewer"],
    "frontend": ["writer", "explorer"],
    "writer": ["explorer", "reviewer"],
    "explorer": ["writer", "researcher"],
    "codex_reviewer": ["reviewer", "strategist"],
    "security": ["reviewer", "strategist"],
    "tester": ["reviewer", "researcher"],
    "data": ["strategist", "researcher"],
}

# Model used for admission accounting when an expert id is unknown
UNKNOWN_EXPERT_MODEL = "gemini-3.0-flash"


def provider_for_model(model: str) -> str:
    """Infer the provider from a model name."""
    lowered = model.lower()
    if "gpt" in lowered or "o1" in lowered or "o3" in lowered:
        return "openai"
    if "claude" in lowered or "anthropic" in lowered:
        return "anthropic"
    if "gemini" in lowered or "google" in lowered:
        return "google"
    return "unknown"


@dataclass
class ExpertRegistry:
    """Expert lookup plus the fallback chain."""
    experts: Dict[str, Expert] = field(default_factory=dict)
    fallback_chain: Dict[str, List[str]] = field(default_factory=dict)

    @classmethod
    def default(cls, model_overrides: Optional[Dict[str, str]] = None) -> "ExpertRegistry":
        """Built-in experts with model overrides applied (keys are expert ids)."""
        overrides = model_overrides or {}
        experts = {}
        for expert in DEFAULT_EXPERTS:
            model = overrides.get(expert.id)
            experts[expert.id] = replace(expert, model=model) if model else expert
        return cls(experts=experts, fallback_chain={k: list(v) for k, v in FALLBACK_CHAIN.items()})

    def get(self, expert_id: str) -> Optional[Expert]:
        return self.experts.get(expert_id)

    def __contains__(self, expert_id: str) -> bool:
        return expert_id in self.experts

    def ids(self) -> Iterable[str]:
        return self.experts.keys()

    def fallbacks_for(self, expert_id: str) -> List[str]:
        return list(self.fallback_chain.get(expert_id, []))

    def model_for(self, expert_id: str) -> str:
        expert = self.experts.get(expert_id)
        return expert.model if expert else UNKNOWN_EXPERT_MODEL
