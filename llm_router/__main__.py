"""
Entry point for running llm_router as a module.

Usage:
    python -m llm_router boulder status
    python -m llm_router tasks list --status pending
    python -m llm_router hooks init
    python -m llm_router events list --type onExpertCall

This is equivalent to:
    python -m llm_router.cli.main [args]
"""

import sys

from llm_router.cli.main import main

if __name__ == "__main__":
    sys.exit(main())
