"""
Database Connection Manager
===========================

Handles the async connection to the project-specific SQLite database.
Each JournalDatabase owns its engine; nothing here is module-global.
"""

from pathlib import Path
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from llm_router.db.models import Base


class JournalDatabase:
    """SQLite database stored at <project>/.llm-router/events.db."""

    def __init__(self, project_path: Path, filename: str = "events.db"):
        self.db_path = Path(project_path) / ".llm-router" / filename
        self._engine: Optional[AsyncEngine] = None
        self._session_maker: Optional[async_sessionmaker[AsyncSession]] = None

    @property
    def initialized(self) -> bool:
        return self._session_maker is not None

    async def init(self) -> async_sessionmaker[AsyncSession]:
        """
        Initialize the database connection and create tables if they don't exist.
        """
        if self._session_maker is not None:
            return self._session_maker

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        db_url = f"sqlite+aiosqlite:///{self.db_path}"

        self._engine = create_async_engine(db_url, echo=False)

        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        self._session_maker = async_sessionmaker(self._engine, expire_on_commit=False)
        return self._session_maker

    def get_session_maker(self) -> async_sessionmaker[AsyncSession]:
        """Get the configured session maker."""
        if self._session_maker is None:
            raise RuntimeError("Database not initialized. Call init() first.")
        return self._session_maker

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
        self._engine = None
        self._session_maker = None
