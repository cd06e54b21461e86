"""Command-line interface for inspecting llm-router state."""

from llm_router.cli.main import build_parser, main
