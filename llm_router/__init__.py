"""
llm-router
==========

Multi-expert LLM orchestration harness: a hook pipeline around every call,
a fallback router across expert backends, a crash-recoverable phase
workflow ("boulder") and an admission-controlled background task queue.
"""

__version__ = "0.1.0"
