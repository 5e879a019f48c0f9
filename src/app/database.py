# src/app/database.py
"""
Database Configuration and Session Management
Uses SQLAlchemy with async support
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from src.app.config import get_config
from src.app.models import Base

logger = logging.getLogger(__name__)


class DatabaseManager:
    """
    Owns the async engine and session factory

    Usage:
        async with db_manager.session() as session:
            repo = AnalysisJobRepository(session)
    """

    def __init__(self, url: Optional[str] = None, echo: Optional[bool] = None):
        self._url = url
        self._echo = echo
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker] = None

    @property
    def engine(self) -> AsyncEngine:
        """Lazily created engine"""
        if self._engine is None:
            config = get_config()
            url = self._url or config.database.url
            echo = config.database.echo if self._echo is None else self._echo

            kwargs = {"echo": echo}
            if not url.startswith("sqlite"):
                kwargs["pool_size"] = config.database.pool_size
                kwargs["max_overflow"] = config.database.max_overflow

            self._engine = create_async_engine(url, **kwargs)
            logger.info(f"🔌 Database engine created: {url.split('@')[-1]}")
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker:
        if self._session_factory is None:
            self._session_factory = async_sessionmaker(
                self.engine, class_=AsyncSession, expire_on_commit=False
            )
        return self._session_factory

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Provide a session that is always closed"""
        session = self.session_factory()
        try:
            yield session
        finally:
            await session.close()

    async def init_db(self) -> None:
        """
        Initialize database tables
        Creates all tables defined by models
        """
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            logger.info("✅ Database tables created successfully")
        except Exception as e:
            logger.error(f"❌ Failed to create database tables: {e}")
            raise

    async def drop_all_tables(self) -> None:
        """
        Drop all tables (use with caution!)
        Only use in development/testing
        """
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.drop_all)
            logger.warning("⚠️  All tables dropped")
        except Exception as e:
            logger.error(f"❌ Failed to drop tables: {e}")
            raise

    async def check_connection(self) -> bool:
        """Run SELECT 1 against the configured database"""
        async with self.engine.connect() as conn:
            result = await conn.execute(text("SELECT 1"))
            return result.scalar_one() == 1

    async def dispose(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None


db_manager = DatabaseManager()
