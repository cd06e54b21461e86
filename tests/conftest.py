"""
Shared fixtures for llm_router tests.
"""

import asyncio
from typing import Callable, Dict, List, Optional, Union

import pytest

from llm_router.experts import ExpertCallResult, ExpertRegistry
from llm_router.hooks.manager import HookManager
from llm_router.router import FallbackRouter


class FakeExpertClient:
    """
    Scripted stand-in for the network call to a model endpoint.

    - responses: expert id -> response text, or a callable taking the prompt
    - errors: expert id -> exception (or list of exceptions raised in turn)
    - gate: when set, every call waits for the event before answering
    """

    def __init__(
        self,
        responses: Optional[Dict[str, Union[str, Callable[[str], str]]]] = None,
        errors: Optional[Dict[str, Union[BaseException, List[BaseException]]]] = None,
        delay: float = 0.0,
    ):
        self.responses = responses or {}
        self.errors = errors or {}
        self.delay = delay
        self.gate: Optional[asyncio.Event] = None
        self.calls: List[dict] = []

    async def call(self, expert_id, model, prompt, context=None, image_path=None):
        self.calls.append({
            "expert_id": expert_id,
            "model": model,
            "prompt": prompt,
            "context": context,
            "image_path": image_path,
        })
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)

        error = self.errors.get(expert_id)
        if isinstance(error, list):
            error = error.pop(0) if error else None
        if error is not None:
            raise error

        response = self.responses.get(expert_id, f"{expert_id} response")
        if callable(response):
            response = response(prompt)
        return ExpertCallResult(response=response, latency_ms=1)

    def called_experts(self) -> List[str]:
        return [c["expert_id"] for c in self.calls]


@pytest.fixture
def hooks(tmp_path):
    return HookManager(cwd=str(tmp_path))


@pytest.fixture
def registry():
    return ExpertRegistry.default()


@pytest.fixture
def client():
    return FakeExpertClient()


@pytest.fixture
def router(registry, client, hooks):
    return FallbackRouter(registry, client, hooks)
