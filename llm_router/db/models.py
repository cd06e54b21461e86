"""
Database Models for llm-router
==============================

SQLAlchemy models for the event journal.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import JSON, DateTime, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    pass


class JournalEvent(Base):
    """One dispatched hook event."""
    __tablename__ = "journal_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    execution_id: Mapped[str] = mapped_column(String(36), index=True)
    event_type: Mapped[str] = mapped_column(String(50), index=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    # Expert id or tool name, when the event has one
    subject: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    cwd: Mapped[str] = mapped_column(String(500), default="")
    payload: Mapped[Dict[str, Any]] = mapped_column(JSON)
