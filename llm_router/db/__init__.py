"""
Database Package
================

Exports key database components.
"""

from llm_router.db.models import Base, JournalEvent
from llm_router.db.connection import JournalDatabase
