"""
Event Journal
=============

Persists every dispatched hook event to the project SQLite database
(.llm-router/events.db) so runs can be inspected after the fact.

Write failures are logged and swallowed: the journal must never break a
dispatch.

Usage:
    journal = EventJournal(project_dir)
    await journal.init()
    await journal.record(context)
    events = await journal.list_events(event_type="onExpertCall", limit=20)
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from llm_router.db.connection import JournalDatabase
from llm_router.db.models import JournalEvent
from llm_router.hooks.types import HookContext

logger = logging.getLogger(__name__)


@dataclass
class JournalEntry:
    """A journal row as returned to callers."""
    id: int
    execution_id: str
    event_type: str
    timestamp: str
    subject: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: JournalEvent) -> "JournalEntry":
        return cls(
            id=row.id,
            execution_id=row.execution_id,
            event_type=row.event_type,
            timestamp=row.timestamp.isoformat() if row.timestamp else "",
            subject=row.subject,
            payload=row.payload or {},
        )


class EventJournal:
    """DB-backed log of hook events."""

    def __init__(self, project_dir: Path):
        self.project_dir = Path(project_dir)
        self.db = JournalDatabase(self.project_dir)

    async def init(self) -> bool:
        """Open the database. Returns False (and logs) if it cannot be opened."""
        try:
            await self.db.init()
        except (SQLAlchemyError, OSError) as e:
            logger.warning("Event journal disabled, cannot open %s: %s", self.db.db_path, e)
            return False
        return True

    async def record(self, context: HookContext) -> Optional[int]:
        """Persist one event. Returns the row id, or None on failure."""
        if not self.db.initialized:
            return None
        try:
            session_maker = self.db.get_session_maker()
            async with session_maker() as session:
                row = JournalEvent(
                    execution_id=context.hook_execution_id,
                    event_type=context.event_type.value,
                    timestamp=datetime.fromisoformat(context.timestamp),
                    subject=context.event.subject_name(),
                    cwd=context.cwd,
                    payload=_json_safe(context.event.to_dict()),
                )
                session.add(row)
                await session.commit()
                return row.id
        except (SQLAlchemyError, OSError, ValueError) as e:
            logger.warning("Failed to journal %s event: %s", context.event_type.value, e)
            return None

    async def list_events(
        self,
        event_type: Optional[str] = None,
        subject: Optional[str] = None,
        limit: int = 50,
    ) -> List[JournalEntry]:
        """Newest events first."""
        if not self.db.initialized:
            return []
        stmt = select(JournalEvent).order_by(JournalEvent.id.desc()).limit(limit)
        if event_type:
            stmt = stmt.where(JournalEvent.event_type == event_type)
        if subject:
            stmt = stmt.where(JournalEvent.subject == subject)

        session_maker = self.db.get_session_maker()
        async with session_maker() as session:
            result = await session.execute(stmt)
            return [JournalEntry.from_row(row) for row in result.scalars().all()]

    async def count_by_type(self) -> Dict[str, int]:
        if not self.db.initialized:
            return {}
        stmt = select(JournalEvent.event_type, func.count()).group_by(JournalEvent.event_type)
        session_maker = self.db.get_session_maker()
        async with session_maker() as session:
            result = await session.execute(stmt)
            return {event_type: count for event_type, count in result.all()}

    async def close(self) -> None:
        await self.db.close()


def _json_safe(value: Any) -> Any:
    """Coerce a payload into something the JSON column accepts."""
    if isinstance(value, dict):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)
